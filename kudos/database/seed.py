"""
kudos.database.seed — Default Catalogue Seeder
===============================================

Baseline rules, aliases and badge tiers seeded on first startup so points
flow immediately after deployment.

Idempotent — only inserts rows that don't already exist.  Point values,
policies and enablement edited by admins are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select

from kudos.database.engine import get_session
from kudos.database.models import ActionAlias, ActionRule, Badge, LimitPolicy

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default rule catalogue
# ---------------------------------------------------------------------------
DEFAULT_RULES: dict[str, tuple[int, LimitPolicy, str]] = {
    "new_post": (10, LimitPolicy.UNLIMITED, "Published a new post"),
    "create_post": (10, LimitPolicy.UNLIMITED, "Created a post"),
    "create_forum_post": (10, LimitPolicy.UNLIMITED, "Started a forum thread"),
    "reply_to_post": (5, LimitPolicy.UNLIMITED, "Replied to a post"),
    "forum_reply": (5, LimitPolicy.UNLIMITED, "Replied in the forum"),
    "comment_on_recording": (5, LimitPolicy.UNLIMITED, "Commented on a recording"),
    "like_post": (1, LimitPolicy.ONCE_PER_RELATED_TARGET, "Liked a post"),
    "received_like_on_post": (
        1, LimitPolicy.ONCE_PER_RELATED_TARGET, "Received a like on your post",
    ),
    "daily_login": (5, LimitPolicy.ONCE_PER_DAY, "Daily visit"),
    "registration": (10, LimitPolicy.ONCE_PER_USER_TOTAL, "Joined the community"),
    "complete_profile": (20, LimitPolicy.ONCE_PER_USER_TOTAL, "Completed your profile"),
    "event_registration": (
        10, LimitPolicy.ONCE_PER_RELATED_TARGET, "Registered for a live event",
    ),
    "host_live_event": (50, LimitPolicy.ONCE_PER_RELATED_TARGET, "Hosted a live event"),
    "lesson_completed": (5, LimitPolicy.ONCE_PER_RELATED_TARGET, "Finished a lesson"),
    "course_completed": (50, LimitPolicy.ONCE_PER_RELATED_TARGET, "Completed a course"),
    "submit_project_offer": (5, LimitPolicy.UNLIMITED, "Submitted a project offer"),
}
"""Each entry maps ``name`` → ``(points, limit_policy, description)``."""


# Legacy and localised action names → canonical rule name.  The platform
# historically fired Hebrew-named actions and retried with English names;
# these aliases fold both into one rule.
DEFAULT_ALIASES: dict[str, str] = {
    "פוסט חדש": "new_post",
    "יצירת פוסט": "create_post",
    "יצירת פוסט בפורום": "create_forum_post",
    "תגובה לפוסט": "reply_to_post",
    "תגובה לנושא": "forum_reply",
    "תגובה להקלטה": "comment_on_recording",
    "לייק לפוסט": "like_post",
    "קיבלתי לייק על פוסט": "received_like_on_post",
    "כניסה יומית": "daily_login",
    "הרשמה": "registration",
    "הרשמה למערכת": "registration",
    "signup": "registration",
    "user_registration": "registration",
    "הרשמה לאירוע": "event_registration",
    "סיום שיעור": "lesson_completed",
    "השלמת קורס": "course_completed",
    "הגשת הצעה": "submit_project_offer",
}


DEFAULT_BADGES: list[dict] = [
    {"name": "Newcomer", "icon": "seedling", "icon_color": "#22c55e",
     "points_threshold": 10, "display_order": 1,
     "description": "Earned your first points"},
    {"name": "Contributor", "icon": "message-circle", "icon_color": "#3b82f6",
     "points_threshold": 100, "display_order": 2,
     "description": "100 points of community activity"},
    {"name": "Regular", "icon": "star", "icon_color": "#a855f7",
     "points_threshold": 250, "display_order": 3,
     "description": "A familiar face around here"},
    {"name": "Expert", "icon": "award", "icon_color": "#f59e0b",
     "points_threshold": 500, "display_order": 4,
     "description": "500 points and counting"},
    {"name": "Legend", "icon": "crown", "icon_color": "#ef4444",
     "points_threshold": 1000, "display_order": 5,
     "description": "A pillar of the community"},
]


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def ensure_default_catalog(engine: Engine) -> dict[str, int]:
    """Insert default rules, aliases and badges that don't yet exist.

    Returns ``{"rules": n, "aliases": n, "badges": n}`` counting inserts.
    """
    inserted = {"rules": 0, "aliases": 0, "badges": 0}
    with get_session(engine) as session:
        existing_rules = set(session.scalars(select(ActionRule.name)).all())
        for name, (points, policy, desc) in DEFAULT_RULES.items():
            if name not in existing_rules:
                session.add(ActionRule(
                    name=name,
                    points=points,
                    limit_policy=policy.value,
                    description=desc,
                    enabled=True,
                ))
                inserted["rules"] += 1

        existing_aliases = set(session.scalars(select(ActionAlias.alias)).all())
        for alias, canonical in DEFAULT_ALIASES.items():
            key = alias.lower()
            if key not in existing_aliases:
                session.add(ActionAlias(alias=key, canonical_name=canonical))
                inserted["aliases"] += 1

        existing_badges = set(session.scalars(select(Badge.name)).all())
        for badge_def in DEFAULT_BADGES:
            if badge_def["name"] not in existing_badges:
                session.add(Badge(**badge_def))
                inserted["badges"] += 1

    if any(inserted.values()):
        logger.info(
            "Seeded %d rules, %d aliases, %d badges.",
            inserted["rules"], inserted["aliases"], inserted["badges"],
        )
    return inserted
