"""
kudos.services.balance_service — Cached Balances
=================================================

``profiles.points`` is a materialised view of the ledger.  It is updated
with an in-SQL increment (``points = points + :delta``) so concurrent
awards never lose updates, but it lives in its own transaction: if the
increment fails after the ledger write committed, the balance is stale
until :mod:`kudos.services.reconciliation_service` repairs it.

Casual reads (profile cards, leaderboards) use the cache.  Anything that
needs strong consistency sums the ledger instead.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kudos.database.models import Profile

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def get_or_create_profile(
    session: Session, user_id: str, display_name: str | None = None,
) -> Profile:
    """Fetch or insert a Profile row."""
    profile = session.get(Profile, user_id)
    if profile is None:
        profile = Profile(user_id=user_id, display_name=display_name, points=0)
        session.add(profile)
        session.flush()
    elif display_name:
        profile.display_name = display_name
    return profile


def get_cached_balance(session: Session, user_id: str, *, for_update: bool = False) -> int | None:
    """The cached balance, or ``None`` if the user has no profile row.

    With *for_update* the profile row stays locked until the session ends.
    """
    stmt = select(Profile.points).where(Profile.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    return session.scalar(stmt)


def increment_balance(engine: Engine, user_id: str, delta: int) -> int:
    """Add *delta* to the cached balance in its own transaction.

    Creates the profile row if it doesn't exist yet.  Returns the new
    cached balance.
    """
    with Session(engine) as session:
        result = session.execute(
            update(Profile)
            .where(Profile.user_id == user_id)
            .values(points=Profile.points + delta)
        )
        if result.rowcount == 0:
            try:
                with session.begin_nested():
                    session.add(Profile(user_id=user_id, points=delta))
                    session.flush()
            except IntegrityError:
                # Created concurrently: fall back to the increment.
                session.execute(
                    update(Profile)
                    .where(Profile.user_id == user_id)
                    .values(points=Profile.points + delta)
                )
        balance = session.scalar(
            select(Profile.points).where(Profile.user_id == user_id)
        )
        session.commit()
    return int(balance or 0)


def set_balance(session: Session, user_id: str, points: int) -> None:
    """Overwrite the cached balance (reconciliation only)."""
    profile = get_or_create_profile(session, user_id)
    profile.points = points
    session.flush()


def profile_user_ids(session: Session) -> set[str]:
    return set(session.scalars(select(Profile.user_id)).all())


def get_user_stats(engine: Engine, user_id: str) -> dict:
    """Cached balance plus leaderboard rank (1 = top).

    Unknown users report zero points and no rank.
    """
    with Session(engine) as session:
        points = get_cached_balance(session, user_id)
        if points is None:
            return {"user_id": user_id, "points": 0, "rank": None}
        ahead = session.scalar(
            select(func.count()).select_from(Profile).where(Profile.points > points)
        ) or 0
        return {"user_id": user_id, "points": points, "rank": ahead + 1}
