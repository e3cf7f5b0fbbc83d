"""
Engine and session-factory construction.

Module services receive a ``sessionmaker`` and open one short transaction per
aggregate mutation, so this module holds no global engine.  PostgreSQL
engines run at SERIALIZABLE isolation; serialization failures are retried by
``sourcing_kernel.services.conflict_retry``.  SQLite (the default test
backend) gets a 30 second busy timeout and, for ``:memory:`` URLs, a single
shared connection.
"""

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sourcing_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def build_engine(database_url: str, *, echo: bool = False, pool_size: int = 20) -> Engine:
    url = make_url(database_url)
    options: dict[str, Any] = {"echo": echo}

    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
    else:
        options.update(
            pool_size=pool_size,
            pool_pre_ping=True,
            isolation_level="SERIALIZABLE",
        )

    engine = create_engine(url, **options)
    logger.info("engine_built", extra={"dialect": engine.dialect.name})
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Sessions keep loaded state after commit so DTOs can be built from it."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    """Create every table the sourcing modules define."""
    from sourcing_kernel.db.base import Base
    from sourcing_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables(engine: Engine) -> None:
    from sourcing_kernel.db.base import Base
    from sourcing_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.drop_all(engine)
