from collections.abc import Generator

from sqlalchemy import Connection, Engine, event
from sqlmodel import SQLModel, create_engine

from ...config import settings

# Registers the audit log table on SQLModel.metadata
from . import models  # noqa: F401


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Make SQLite enforce foreign keys on every new DBAPI connection."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _get_engine() -> Engine:
    database_url = settings.database_url
    connect_args: dict[str, bool] = {}
    engine_kwargs: dict[str, int | bool] = {}

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    else:
        # MySQL and PostgreSQL deployments
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_size"] = 10
        engine_kwargs["max_overflow"] = 20
        engine_kwargs["pool_recycle"] = 3600

    engine = create_engine(
        database_url,
        # echo=True,  # Enable for SQL debugging
        connect_args=connect_args,
        **engine_kwargs,
    )
    if database_url.startswith("sqlite"):
        enable_sqlite_foreign_keys(engine)
    return engine


def init_db(engine: Engine) -> None:
    """Create the tables this service owns (the security audit log).

    Every other table belongs to the portal and is discovered at runtime.
    """
    SQLModel.metadata.create_all(engine)


_engine: Engine | None = None


def get_main_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = _get_engine()
    return _engine


def get_connection() -> Generator[Connection, None, None]:
    """One dedicated connection per request; services own its transactions."""
    with get_main_engine().connect() as connection:
        yield connection
