"""
kudos.engine.limits — Limit-Policy Evaluation
==============================================

Pure calculation: turns a rule's limit policy plus the caller's options into
the set of ledger checks the award pipeline must run and the ``dedupe_key``
stamped on the new entry.  No database I/O in here.

Day boundaries are **UTC** calendar days ``[00:00, next 00:00)``.

Dedupe key precedence (one key per entry):

    once_per_user_total   → "total"
    target check active   → "target:<related_id>"
    daily check active    → "day:<YYYY-MM-DD>"
    otherwise             → None  (never collides)

Checks layered on top of the key's scope (e.g. ``check_daily`` on a
once-per-target rule) are enforced by the pre-insert ledger lookup only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from kudos.database.models import LimitPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LimitPlan:
    """Which ledger lookups gate an award, and the key to insert with."""

    check_total: bool = False
    check_target: bool = False
    check_day: bool = False
    related_id: str | None = None
    day_start: datetime | None = None
    day_end: datetime | None = None
    dedupe_key: str | None = None
    dedupe_bypassed: bool = False


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite returns them naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_day_window(now: datetime) -> tuple[datetime, datetime]:
    """Return ``(start, end)`` of the UTC calendar day containing *now*."""
    now = as_utc(now)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def parse_policy(value: str | LimitPolicy | None) -> LimitPolicy:
    """Coerce a stored policy string; unknown values degrade to unlimited."""
    if isinstance(value, LimitPolicy):
        return value
    try:
        return LimitPolicy(value)
    except ValueError:
        logger.warning("Unknown limit policy %r — treating as unlimited", value)
        return LimitPolicy.UNLIMITED


def plan_limits(
    policy: str | LimitPolicy | None,
    *,
    now: datetime,
    related_id: str | None = None,
    check_related_id: bool = False,
    check_daily: bool = False,
) -> LimitPlan:
    """Build the :class:`LimitPlan` for one award attempt.

    Parameters
    ----------
    policy : the rule's ``limit_policy``.
    now : award timestamp (drives the UTC day window and day key).
    related_id : target entity the award is scoped to, if any.
    check_related_id : caller opts into per-target dedupe.
    check_daily : caller opts into once-per-day dedupe.
    """
    policy = parse_policy(policy)
    related_id = related_id or None

    wants_target = policy == LimitPolicy.ONCE_PER_RELATED_TARGET or check_related_id
    check_target = wants_target and related_id is not None
    dedupe_bypassed = (
        policy == LimitPolicy.ONCE_PER_RELATED_TARGET and related_id is None
    )
    check_day = policy == LimitPolicy.ONCE_PER_DAY or check_daily
    check_total = policy == LimitPolicy.ONCE_PER_USER_TOTAL

    day_start = day_end = None
    if check_day:
        day_start, day_end = utc_day_window(now)

    if check_total:
        dedupe_key = "total"
    elif check_target:
        dedupe_key = f"target:{related_id}"
    elif check_day:
        dedupe_key = f"day:{day_start.date().isoformat()}"
    else:
        dedupe_key = None

    return LimitPlan(
        check_total=check_total,
        check_target=check_target,
        check_day=check_day,
        related_id=related_id,
        day_start=day_start,
        day_end=day_end,
        dedupe_key=dedupe_key,
        dedupe_bypassed=dedupe_bypassed,
    )
