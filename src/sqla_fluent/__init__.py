"""Fluent SQL building and relational mapping on top of SQLAlchemy engines.

sqla_fluent renders MySQL-flavoured SQL from chained ``Query`` calls, with
every value kept out of the text as an ``@name`` binding.  Joined results
are decoded into one entity per table and folded by the ``Mapper`` into a
deduplicated object graph; single-table results can pull related entities
in afterwards with ``lazy_load``.  Declare entities as dataclasses with
``@entity("table")`` and run statements through a ``SqlAlchemyExecutor``.
"""

from ._version import __version__, __version_tuple__
from .config import ExecutorConfig
from .core import Query
from .datastructures import Bindings, Snapshot
from .exceptions import ConfigurationError, SqlaFluentError, UsageError
from .executor import ColumnInfo, Executor, SqlAlchemyExecutor, decode_row
from .lazyload import lazy_load
from .mapper import Mapper, Row
from .registry import Registry, get_registry
from .repository import Repository
from .schema import Entity, Schema, entity, one_to_many, one_to_one, primary_key
from .statements import InsertBuilder, UpdateBuilder
from .tools import (
    binding_key,
    cache_clear,
    cache_info,
    get_primary_keys,
    get_table_name,
    is_absent,
    qualify,
    quote,
)


__all__ = (
    "Bindings",
    "ColumnInfo",
    "ConfigurationError",
    "Entity",
    "Executor",
    "ExecutorConfig",
    "InsertBuilder",
    "Mapper",
    "Query",
    "Registry",
    "Repository",
    "Row",
    "Schema",
    "Snapshot",
    "SqlAlchemyExecutor",
    "SqlaFluentError",
    "UpdateBuilder",
    "UsageError",
    "__version__",
    "__version_tuple__",
    "binding_key",
    "cache_clear",
    "cache_info",
    "decode_row",
    "entity",
    "get_primary_keys",
    "get_registry",
    "get_table_name",
    "is_absent",
    "lazy_load",
    "one_to_many",
    "one_to_one",
    "primary_key",
    "qualify",
    "quote",
)
