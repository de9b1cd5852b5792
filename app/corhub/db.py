from __future__ import annotations

import logging
import os
import weakref
from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

ENGINE_KEY = "sqlalchemy_engine"
SESSIONMAKER_KEY = "sqlalchemy_sessionmaker"

# Every engine built by init_db in this process; forked children must not reuse their pools.
_engines: "weakref.WeakSet[Engine]" = weakref.WeakSet()


def _engine_options(db_url: str) -> dict[str, object]:
    opts: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        opts.update(pool_recycle=1800, pool_size=5, max_overflow=10, pool_timeout=30)
    return opts


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    # sqlite ignores ON DELETE clauses unless asked per connection.
    @event.listens_for(engine, "connect")
    def _fk_pragma(dbapi_connection, connection_record):  # type: ignore[no-redef]
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **_engine_options(db_url))
    if engine.url.get_backend_name() == "sqlite":
        _enable_sqlite_foreign_keys(engine)

    _engines.add(engine)
    app.extensions[ENGINE_KEY] = engine
    app.extensions[SESSIONMAKER_KEY] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        expire_on_commit=False,
    )
    logger.debug("DB engine initialised (backend=%s)", engine.url.get_backend_name())


def dispose_engines_after_fork() -> None:
    for engine in list(_engines):
        engine.dispose(close=False)


# gunicorn --preload forks after create_app() has built the engine.
if hasattr(os, "register_at_fork"):
    os.register_at_fork(after_in_child=dispose_engines_after_fork)


def db_session() -> Session:
    """
    Request-scoped session, created on first use and closed at app-context teardown.
    """
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        s = current_app.extensions[SESSIONMAKER_KEY]()
        g.db_session = s
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is None:
        return
    try:
        s.close()
    except Exception:
        logger.exception("Failed to close request DB session")


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Session for scripts and tests: commits on success, rolls back on error.
    """
    s: Session = app.extensions[SESSIONMAKER_KEY]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
