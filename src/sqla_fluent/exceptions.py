from __future__ import annotations


class SqlaFluentError(Exception):
    """Base class for every error raised by sqla_fluent itself.

    Database failures are never wrapped: they surface as the driver's or
    SQLAlchemy's own exceptions.
    """


class ConfigurationError(SqlaFluentError, RuntimeError):
    """An entity type is declared incorrectly (e.g. no primary key)."""


class UsageError(SqlaFluentError, ValueError):
    """The API was called in a way that cannot produce a meaningful statement."""
