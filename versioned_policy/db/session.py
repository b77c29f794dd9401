"""
Engine and session factories.

Nothing is created at import time: callers build an engine from a URL (or from
settings) and hand the resulting session factory to the stores that need it.

- make_engine(url=None, echo=None): SQLAlchemy engine (SQLite pragmas applied).
- make_session_factory(engine): sessionmaker bound to the engine.
- create_schema(engine): create all registered tables.
- get_session_factory(): cached factory built from settings, for app wiring.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from versioned_policy.core.config import get_settings
from versioned_policy.db.base import Base, import_all_models

__all__ = ["make_engine", "make_session_factory", "create_schema", "get_session_factory"]


def make_engine(url: Optional[str] = None, *, echo: Optional[bool] = None) -> Engine:
    settings = get_settings()
    db_url = url or settings.db_url
    echo_sql = settings.sqlalchemy_echo if echo is None else echo

    if db_url.startswith("sqlite"):
        # check_same_thread=False: sessions may be opened from worker threads
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=echo_sql,
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record) -> None:  # pragma: no cover
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute("PRAGMA foreign_keys=ON")
            finally:
                cursor.close()

        return engine

    # For non-SQLite URLs, enable pool_pre_ping to avoid stale connections
    return create_engine(db_url, pool_pre_ping=True, echo=echo_sql)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    # expire_on_commit=False: rows are converted to records after commit
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        class_=Session,
    )


def create_schema(engine: Engine) -> None:
    import_all_models()
    Base.metadata.create_all(bind=engine)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    engine = make_engine()
    create_schema(engine)
    return make_session_factory(engine)
