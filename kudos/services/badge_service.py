"""
kudos.services.badge_service — Badge Evaluation & Grants
=========================================================

Badges are a derived, non-critical side effect of awards.  Evaluation is
idempotent: the composite primary key on ``user_badges(user_id, badge_id)``
rejects duplicates, and a rejected insert means "already has it".
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from kudos.database.models import AdminActionType, AdminLog, Badge, UserBadge
from kudos.engine.tiers import highest_badge, qualifying_badges
from kudos.services.balance_service import get_or_create_profile

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from kudos.engine.catalog import RuleCatalog

logger = logging.getLogger(__name__)


def get_held_badge_ids(session: Session, user_id: str) -> set[int]:
    """Badge IDs the user already holds."""
    rows = session.scalars(
        select(UserBadge.badge_id).where(UserBadge.user_id == user_id)
    ).all()
    return set(rows)


def evaluate_badges(
    engine: Engine,
    catalog: RuleCatalog,
    user_id: str,
    current_balance: int,
) -> list[Badge]:
    """Award every active badge whose threshold *current_balance* meets.

    Safe to call redundantly.  Returns only the badges newly awarded by
    this call.
    """
    awarded: list[Badge] = []
    with Session(engine) as session:
        held = get_held_badge_ids(session, user_id)
        candidates = qualifying_badges(
            catalog.get_active_badges(), current_balance, held,
        )
        if not candidates:
            return awarded

        get_or_create_profile(session, user_id)
        for badge in candidates:
            try:
                with session.begin_nested():   # SAVEPOINT
                    session.add(UserBadge(user_id=user_id, badge_id=badge.id))
                    session.flush()
            except IntegrityError:
                # Raced with another evaluation; the user already has it.
                logger.debug("Badge %d already held by %s", badge.id, user_id)
                continue
            awarded.append(badge)
            logger.info(
                "Badge earned: %s (id=%d, threshold=%d) by %s",
                badge.name, badge.id, badge.points_threshold, user_id,
            )
        session.commit()
    return awarded


def get_badges_for_user(engine: Engine, user_id: str) -> list[UserBadge]:
    """Read-only report: the user's badges, most recently earned first."""
    with Session(engine, expire_on_commit=False) as session:
        rows = session.scalars(
            select(UserBadge)
            .options(joinedload(UserBadge.badge))
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.earned_at.desc())
        ).all()
        for row in rows:
            session.expunge(row.badge)
            session.expunge(row)
        return list(rows)


def get_highest_badge(engine: Engine, user_id: str) -> Badge | None:
    """The user's badge with the greatest threshold, if any."""
    return highest_badge(ub.badge for ub in get_badges_for_user(engine, user_id))


def grant_badge(
    engine: Engine,
    *,
    user_id: str,
    badge_id: int,
    admin_id: str,
) -> tuple[bool, str]:
    """Grant a specific badge regardless of balance.

    Returns (success, message).
    """
    with Session(engine) as session:
        badge = session.get(Badge, badge_id)
        if badge is None:
            return False, "Badge not found."

        if session.get(UserBadge, (user_id, badge_id)) is not None:
            return False, "User already has this badge."

        get_or_create_profile(session, user_id)
        try:
            with session.begin_nested():
                session.add(UserBadge(
                    user_id=user_id,
                    badge_id=badge_id,
                    granted_by=admin_id,
                ))
                session.flush()
        except IntegrityError:
            return False, "User already has this badge."

        session.add(AdminLog(
            actor_id=admin_id,
            action_type=AdminActionType.MANUAL_GRANT.value,
            target_table="user_badges",
            target_id=f"{user_id}:{badge_id}",
            after_snapshot={"user_id": user_id, "badge_id": badge_id},
        ))
        session.commit()
        logger.info("Badge %s granted to %s by %s", badge.name, user_id, admin_id)
        return True, f"Badge '{badge.name}' granted."
