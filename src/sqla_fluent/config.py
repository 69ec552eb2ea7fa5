from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import sqlalchemy as sa


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Connection settings for ``SqlAlchemyExecutor.from_config``.

    Args:
        url: SQLAlchemy database URL, e.g. ``"mysql+pymysql://user:pw@host/db"``.
        echo: Log every statement through SQLAlchemy's own ``sqlalchemy.engine`` logger.
        pool_pre_ping: Test pooled connections before handing them out.
        engine_options: Extra keyword arguments for ``sqlalchemy.create_engine``.
    """

    url: str | sa.URL
    echo: bool = False
    pool_pre_ping: bool = True
    engine_options: dict[str, Any] = field(default_factory=dict)

    def create_engine(self) -> sa.Engine:
        return sa.create_engine(
            self.url,
            echo=self.echo,
            pool_pre_ping=self.pool_pre_ping,
            **self.engine_options,
        )
