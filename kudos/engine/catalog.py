"""
kudos.engine.catalog — Rule Catalog Cache with PG LISTEN/NOTIFY
================================================================

In-memory, thread-safe copy of the rule catalogue: action rules, action
aliases and badge tiers.  Lookups never touch the database once loaded.
Admin mutations emit ``NOTIFY config_changed, '<table>'`` inside their
transaction; a background listener reloads the affected partition so edits
propagate to every process near-instantly.

Alias resolution happens exactly once per lookup: the incoming name is
lower-cased, mapped through the alias table if present, and the canonical
rule returned.  Callers never retry under a second name.
"""

from __future__ import annotations

import logging
import random
import select as _select
import threading
from contextlib import closing
from typing import TYPE_CHECKING

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kudos.database.models import ActionAlias, ActionRule, Badge

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# The PG channel name used for catalog invalidation
NOTIFY_CHANNEL = "config_changed"

LISTEN_MAX_ATTEMPTS = 10
LISTEN_POLL_SECONDS = 5.0

# Allowlist of table names accepted by notify_before_commit().
ALLOWED_NOTIFY_TABLES: frozenset[str] = frozenset({
    "action_rules",
    "action_aliases",
    "badges",
})


def normalize_action_name(name: str) -> str:
    """Canonical form for rule names and aliases."""
    return name.strip().lower()


class RuleCatalog:
    """Thread-safe in-memory cache for rules, aliases and badges.

    Usage:
        catalog = RuleCatalog(engine)
        catalog.load_all()
        catalog.start_listener()

        rule = catalog.get_rule("קיבלתי לייק על פוסט")   # → received_like_on_post
        badges = catalog.get_active_badges()
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._loaded = False

        # name → ActionRule (detached)
        self._rules: dict[str, ActionRule] = {}
        # alias → canonical name
        self._aliases: dict[str, str] = {}
        # active badges ordered by threshold (detached)
        self._badges: list[Badge] = []

        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._listener_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    # -------------------------------------------------------------------
    # Cache loading (synchronous, called via run_db or directly)
    # -------------------------------------------------------------------
    def load_all(self) -> None:
        """Load every catalog partition from the DB. Call on startup."""
        self._load_rules()
        self._load_aliases()
        self._load_badges()
        self._loaded = True
        logger.info(
            "RuleCatalog loaded: %d rules, %d aliases, %d active badges",
            len(self._rules), len(self._aliases), len(self._badges),
        )

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load_all()

    def _load_rules(self) -> None:
        with Session(self._engine) as session:
            rows = session.scalars(select(ActionRule)).all()
            rules: dict[str, ActionRule] = {}
            for r in rows:
                session.expunge(r)
                rules[normalize_action_name(r.name)] = r
        with self._lock:
            self._rules = rules

    def _load_aliases(self) -> None:
        with Session(self._engine) as session:
            rows = session.scalars(select(ActionAlias)).all()
            aliases = {
                normalize_action_name(a.alias): normalize_action_name(a.canonical_name)
                for a in rows
            }
        with self._lock:
            self._aliases = aliases

    def _load_badges(self) -> None:
        with Session(self._engine) as session:
            rows = session.scalars(
                select(Badge)
                .where(Badge.is_active.is_(True))
                .order_by(Badge.points_threshold, Badge.display_order)
            ).all()
            for b in rows:
                session.expunge(b)
        with self._lock:
            self._badges = list(rows)

    # -------------------------------------------------------------------
    # Cache reads (thread-safe)
    # -------------------------------------------------------------------
    def resolve_name(self, action_name: str) -> str:
        """Map *action_name* through the alias table (case-insensitive).

        Names that are already canonical, or unknown, come back normalised
        but otherwise unchanged.
        """
        self._ensure_loaded()
        key = normalize_action_name(action_name)
        with self._lock:
            return self._aliases.get(key, key)

    def get_rule(self, action_name: str) -> ActionRule | None:
        """Return the rule for *action_name* (aliases resolved), or None.

        Disabled rules are returned as-is; the award pipeline decides what
        ``enabled=False`` means.
        """
        canonical = self.resolve_name(action_name)
        with self._lock:
            return self._rules.get(canonical)

    def list_rules(self) -> list[ActionRule]:
        self._ensure_loaded()
        with self._lock:
            return sorted(self._rules.values(), key=lambda r: r.name)

    def get_aliases(self) -> dict[str, str]:
        self._ensure_loaded()
        with self._lock:
            return dict(self._aliases)

    def get_active_badges(self) -> list[Badge]:
        self._ensure_loaded()
        with self._lock:
            return list(self._badges)

    # -------------------------------------------------------------------
    # Cache invalidation via NOTIFY
    # -------------------------------------------------------------------
    def handle_notify(self, table_name: str) -> None:
        """Reload the relevant cache partition when a NOTIFY arrives."""
        table_name = table_name.strip().lower()
        logger.info("Rule catalog invalidation for table: %s", table_name)

        if table_name == "action_rules":
            self._load_rules()
        elif table_name == "action_aliases":
            self._load_aliases()
        elif table_name == "badges":
            self._load_badges()
        else:
            logger.warning("Unknown table in NOTIFY: %s — ignoring", table_name)

    @property
    def listener_healthy(self) -> bool:
        """Return True if the LISTEN thread is alive and connected."""
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        """Return True if the listener exhausted reconnect attempts."""
        return self._listener_failed

    def stop_listener(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("Catalog listener stopped")

    def start_listener(self) -> None:
        """Start the background thread that keeps the catalog fresh.

        No-op for non-PostgreSQL engines; callers there reload partitions
        with :meth:`handle_notify` after their own writes.
        """
        if self._engine.dialect.name != "postgresql":
            logger.info(
                "Catalog listener disabled for dialect %s", self._engine.dialect.name,
            )
            return

        self._listener_thread = threading.Thread(
            target=self._run_listener, daemon=True, name="catalog-listener",
        )
        self._listener_thread.start()

    def _listener_dsn(self) -> str:
        # str(engine.url) masks the password; psycopg2 needs the real one.
        raw_url = self._engine.url.render_as_string(hide_password=False)
        return raw_url.replace("postgresql+psycopg2://", "postgresql://")

    def _run_listener(self) -> None:
        """Keep one LISTEN session open, reconnecting with capped backoff.

        After ``LISTEN_MAX_ATTEMPTS`` consecutive failures the catalog is
        marked failed and keeps serving its last loaded snapshot.
        """
        dsn = self._listener_dsn()
        failures = 0
        while not self._shutdown_event.is_set():
            try:
                self._listen_until_shutdown(dsn)
            except Exception:
                if self._listener_healthy:
                    failures = 0
                self._listener_healthy = False
                failures += 1
                if failures >= LISTEN_MAX_ATTEMPTS:
                    logger.critical(
                        "Catalog listener gave up after %d failures; "
                        "serving the last loaded catalog",
                        failures,
                    )
                    self._listener_failed = True
                    return
                wait = _backoff(failures)
                logger.exception(
                    "Catalog listener failure %d/%d, retrying in %.1fs",
                    failures, LISTEN_MAX_ATTEMPTS, wait,
                )
                if self._shutdown_event.wait(timeout=wait):
                    return

    def _listen_until_shutdown(self, dsn: str) -> None:
        """One LISTEN session.  Returns on shutdown; raises on connection loss."""
        import psycopg2

        with closing(psycopg2.connect(dsn)) as conn:
            conn.set_isolation_level(0)  # autocommit
            conn.cursor().execute(f"LISTEN {NOTIFY_CHANNEL};")
            self._listener_healthy = True
            logger.info("Catalog listening on channel '%s'", NOTIFY_CHANNEL)

            while not self._shutdown_event.is_set():
                readable, _, _ = _select.select([conn], [], [], LISTEN_POLL_SECONDS)
                if readable:
                    conn.poll()
                    self._drain_notifies(conn)

    def _drain_notifies(self, conn) -> None:
        while conn.notifies:
            payload = conn.notifies.pop(0).payload or ""
            try:
                self.handle_notify(payload)
            except SQLAlchemyError:
                # Keep listening; the stale partition reloads on the next NOTIFY.
                logger.exception("Catalog reload failed for %r", payload)


def _backoff(failures: int) -> float:
    """Exponential delay (1s doubling, capped at 60s) plus up to 50% jitter."""
    delay = min(2.0 ** (failures - 1), 60.0)
    return delay + random.uniform(0, delay * 0.5)


def notify_before_commit(session: Session, table_name: str) -> None:
    """Execute NOTIFY within the current transaction (fires on commit).

    Skipped on non-PostgreSQL binds (SQLite in tests has no NOTIFY); those
    processes reload the catalog directly.

    Raises
    ------
    ValueError
        If *table_name* is not in :data:`ALLOWED_NOTIFY_TABLES`.
    """
    if table_name not in ALLOWED_NOTIFY_TABLES:
        raise ValueError(
            f"Invalid table name for NOTIFY: '{table_name}'. "
            f"Allowed: {sorted(ALLOWED_NOTIFY_TABLES)}"
        )
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(text(f"NOTIFY {NOTIFY_CHANNEL}, '{table_name}'"))
