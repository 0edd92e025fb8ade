"""
kudos.services.ledger_service — Append-Only Points Ledger
==========================================================

The ledger is the source of truth for every balance.  Entries are only ever
inserted; nothing in normal operation updates or deletes them.

Inserts run inside a SAVEPOINT so a uniqueness violation on
``(user_id, action_name, dedupe_key)`` rolls back only the failed insert
and surfaces as :class:`DuplicateEntryError`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kudos.database.models import LedgerEntry

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class DuplicateEntryError(Exception):
    """The store rejected an entry whose dedupe key already exists."""

    def __init__(self, user_id: str, action_name: str, dedupe_key: str | None) -> None:
        super().__init__(
            f"Ledger already has {action_name!r} for user {user_id!r} "
            f"(dedupe_key={dedupe_key!r})"
        )
        self.user_id = user_id
        self.action_name = action_name
        self.dedupe_key = dedupe_key


def append_entry(
    session: Session,
    *,
    user_id: str,
    action_name: str,
    points: int,
    created_at: datetime,
    related_id: str | None = None,
    dedupe_key: str | None = None,
    metadata: dict | None = None,
) -> LedgerEntry:
    """Insert one ledger row and flush it.

    Raises
    ------
    DuplicateEntryError
        If the unique dedupe constraint rejects the row.
    """
    entry = LedgerEntry(
        user_id=user_id,
        action_name=action_name,
        points=points,
        related_id=related_id,
        dedupe_key=dedupe_key,
        metadata_=metadata,
        created_at=created_at,
    )
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(entry)
            session.flush()
    except IntegrityError as exc:
        raise DuplicateEntryError(user_id, action_name, dedupe_key) from exc
    return entry


def _filtered(
    stmt,
    *,
    user_id: str,
    action_name: str | None,
    related_id: str | None,
    since: datetime | None,
    until: datetime | None,
):
    stmt = stmt.where(LedgerEntry.user_id == user_id)
    if action_name is not None:
        stmt = stmt.where(LedgerEntry.action_name == action_name)
    if related_id is not None:
        stmt = stmt.where(LedgerEntry.related_id == related_id)
    if since is not None:
        stmt = stmt.where(LedgerEntry.created_at >= since)
    if until is not None:
        stmt = stmt.where(LedgerEntry.created_at < until)
    return stmt


def query_entries(
    session: Session,
    user_id: str,
    *,
    action_name: str | None = None,
    related_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int | None = None,
) -> list[LedgerEntry]:
    """Entries for *user_id*, newest first, optionally filtered."""
    stmt = _filtered(
        select(LedgerEntry),
        user_id=user_id,
        action_name=action_name,
        related_id=related_id,
        since=since,
        until=until,
    ).order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.scalars(stmt).all())


def has_entry(
    session: Session,
    user_id: str,
    *,
    action_name: str | None = None,
    related_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> bool:
    """True if at least one matching entry exists."""
    stmt = _filtered(
        select(LedgerEntry.id),
        user_id=user_id,
        action_name=action_name,
        related_id=related_id,
        since=since,
        until=until,
    ).limit(1)
    return session.scalar(stmt) is not None


def sum_points(session: Session, user_id: str) -> int:
    """Authoritative balance: ``SUM(points)`` over the user's entries."""
    total = session.scalar(
        select(func.coalesce(func.sum(LedgerEntry.points), 0))
        .where(LedgerEntry.user_id == user_id)
    )
    return int(total or 0)


def ledger_user_ids(session: Session) -> set[str]:
    """Every user that has at least one ledger entry."""
    return set(session.scalars(select(LedgerEntry.user_id).distinct()).all())


def get_user_points_history(
    engine: Engine,
    user_id: str,
    *,
    limit: int | None = 100,
) -> list[LedgerEntry]:
    """Read-only history report for display, newest first."""
    with Session(engine, expire_on_commit=False) as session:
        entries = query_entries(session, user_id, limit=limit)
        for e in entries:
            session.expunge(e)
        return entries
