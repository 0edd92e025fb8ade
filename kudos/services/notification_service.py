"""
kudos.services.notification_service — In-App Award Notices
===========================================================

Writes a "you earned points" row to ``notifications`` after each award.
Like badges, notices are best-effort: a failure here is logged and never
reaches the award result.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kudos.database.models import Notification

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from kudos.database.models import ActionRule

logger = logging.getLogger(__name__)

POINTS_NOTIFICATION_TYPE = "points"


def notify_points_awarded(engine: Engine, user_id: str, rule: ActionRule) -> bool:
    """Insert a points notification for *user_id*.  Returns True on success."""
    reason = rule.description or rule.name
    try:
        with Session(engine) as session:
            session.add(Notification(
                user_id=user_id,
                type=POINTS_NOTIFICATION_TYPE,
                title="You earned points!",
                message=f"You earned {rule.points} points for: {reason}",
                link="/profile",
                is_read=False,
            ))
            session.commit()
    except SQLAlchemyError:
        logger.warning(
            "Could not create points notification for %s (%s)",
            user_id, rule.name, exc_info=True,
        )
        return False
    return True


def get_unread_notifications(engine: Engine, user_id: str) -> list[Notification]:
    with Session(engine, expire_on_commit=False) as session:
        rows = session.scalars(
            select(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .order_by(Notification.created_at.desc())
        ).all()
        for row in rows:
            session.expunge(row)
        return list(rows)
