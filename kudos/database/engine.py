"""
kudos.database.engine — Database Connection & Async Helper
===========================================================

The points engine is written against **synchronous** SQLAlchemy.  Request
handlers and the reconciliation worker live on an ``asyncio`` event loop,
so every store call from async code goes through :func:`run_db`, which
ships the synchronous function to a thread pool via
:func:`asyncio.to_thread`.  The event loop never blocks on the database
and no in-process lock is held across store calls.

Usage::

    from kudos.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS + seed

    # Inside an async handler:
    result = await run_db(award_points, engine, catalog, user_id, "new_post")
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from kudos.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    The pool fails fast (``pool_timeout=10``) so a saturated or unreachable
    store surfaces as a ``store_timeout`` award result instead of a hung
    request.

    Raises
    ------
    RuntimeError
        If neither *url* nor ``DATABASE_URL`` is set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine, *, seed: bool = True) -> None:
    """Create all tables and (optionally) seed the default catalogue.

    Safe to call on every startup: ``create_all`` only creates missing
    tables and the seeder only inserts missing rows.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    if seed:
        from kudos.database.seed import ensure_default_catalog

        ensure_default_catalog(engine)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(Profile(user_id="u-1"))
            # commit happens automatically on block exit
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Parameters
    ----------
    func:
        Any sync callable (typically a service function taking an engine).
    *args, **kwargs:
        Forwarded to *func*.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
