"""
kudos.services.award_service — The Award Pipeline
==================================================

Single entry point invoked after any point-worthy action.  Callers never
need a ``try`` around it: every outcome, including store failures, comes
back as an :class:`~kudos.engine.results.AwardResult`, and gamification
never fails the primary action it accompanies.

Pipeline:

    1. Resolve the rule (aliases included); missing/disabled → no award
    2. Plan limit checks + dedupe key (pure, engine.limits)
    3. Pre-insert ledger lookups → already_awarded
    4. Append ledger entry (authoritative; unique key settles races)
    5. Increment cached balance (best effort, own transaction)
    6. Evaluate badges, write notification (best effort)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from kudos.database.models import SPEND_ACTION
from kudos.engine.catalog import normalize_action_name
from kudos.engine.limits import LimitPlan, as_utc, plan_limits
from kudos.engine.results import AwardError, AwardResult, SpendResult
from kudos.services.badge_service import evaluate_badges
from kudos.services.balance_service import increment_balance
from kudos.services.ledger_service import (
    DuplicateEntryError,
    append_entry,
    has_entry,
    sum_points,
)
from kudos.services.notification_service import notify_points_awarded

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from kudos.engine.catalog import RuleCatalog

logger = logging.getLogger(__name__)

_TIMEOUT_MARKERS = ("timeout", "timed out", "canceling statement")


def classify_store_error(exc: Exception) -> AwardError:
    """Map a SQLAlchemy failure onto the award error taxonomy."""
    if isinstance(exc, PoolTimeoutError):
        return AwardError.STORE_TIMEOUT
    if any(marker in str(exc).lower() for marker in _TIMEOUT_MARKERS):
        return AwardError.STORE_TIMEOUT
    return AwardError.STORE_UNAVAILABLE


def _already_awarded(
    session: Session, user_id: str, action_name: str, plan: LimitPlan,
) -> bool:
    """Run the ledger lookups the plan calls for."""
    if plan.check_total and has_entry(session, user_id, action_name=action_name):
        return True
    if plan.check_target and has_entry(
        session, user_id, action_name=action_name, related_id=plan.related_id,
    ):
        return True
    if plan.check_day and has_entry(
        session, user_id,
        action_name=action_name,
        since=plan.day_start,
        until=plan.day_end,
    ):
        return True
    return False


def award_points(
    engine: Engine,
    catalog: RuleCatalog,
    user_id: str,
    action_name: str,
    *,
    related_id: str | None = None,
    check_related_id: bool = False,
    check_daily: bool = False,
    now: datetime | None = None,
    notify: bool = True,
) -> AwardResult:
    """Award the points for *action_name* to *user_id* if eligible.

    Parameters
    ----------
    engine : SQLAlchemy engine for the shared store.
    catalog : loaded :class:`RuleCatalog`.
    user_id : acting user (from the authenticated session, never the body).
    action_name : rule name or any of its aliases.
    related_id : target entity the award is scoped to (post, event…).
    check_related_id : dedupe by *related_id* even if the rule doesn't.
    check_daily : dedupe per UTC day even if the rule doesn't.
    now : award timestamp; defaults to ``datetime.now(UTC)``.
    notify : write a "you earned points" notification on success.

    Returns
    -------
    AwardResult
        ``success=True`` with ``points``/``balance`` on award;
        ``already_awarded=True`` when a limit suppressed it;
        ``error`` set for missing rules, bad input or store failures.
    """
    if not user_id or not action_name:
        return AwardResult(error=AwardError.INVALID_REQUEST)

    now = as_utc(now) if now is not None else datetime.now(UTC)

    # 1. Rule lookup
    try:
        rule = catalog.get_rule(action_name)
    except SQLAlchemyError as exc:
        logger.exception("Rule lookup failed for %r", action_name)
        return AwardResult(error=classify_store_error(exc))

    if rule is None or not rule.enabled:
        logger.info("No enabled rule for action %r — skipping award", action_name)
        return AwardResult(error=AwardError.RULE_NOT_FOUND_OR_DISABLED)

    canonical = normalize_action_name(rule.name)

    # 2. Limit plan
    plan = plan_limits(
        rule.limit_policy,
        now=now,
        related_id=related_id,
        check_related_id=check_related_id,
        check_daily=check_daily,
    )
    if plan.dedupe_bypassed:
        logger.warning(
            "Rule %r is once-per-target but no related_id was given for %s; "
            "awarding without target dedupe",
            canonical, user_id,
        )

    # 3 + 4. Duplicate checks and the authoritative ledger write
    try:
        with Session(engine) as session:
            if _already_awarded(session, user_id, canonical, plan):
                logger.debug("Already awarded %r to %s", canonical, user_id)
                return AwardResult(already_awarded=True, action_name=canonical)

            entry = append_entry(
                session,
                user_id=user_id,
                action_name=canonical,
                points=rule.points,
                related_id=plan.related_id,
                dedupe_key=plan.dedupe_key,
                created_at=now,
            )
            session.commit()
            entry_id = entry.id
    except DuplicateEntryError:
        # Lost a race: a concurrent request inserted the same key first.
        logger.info("Concurrent duplicate award of %r to %s rejected", canonical, user_id)
        return AwardResult(already_awarded=True, action_name=canonical)
    except SQLAlchemyError as exc:
        logger.exception("Ledger write failed for %r / %s", canonical, user_id)
        return AwardResult(error=classify_store_error(exc), action_name=canonical)

    result = AwardResult(
        success=True,
        points=rule.points,
        action_name=canonical,
        entry_id=entry_id,
        dedupe_bypassed=plan.dedupe_bypassed,
    )
    logger.info("Awarded %d points to %s for %r", rule.points, user_id, canonical)

    # 5. Cached balance (best effort, reconciliation repairs drift)
    try:
        result.balance = increment_balance(engine, user_id, rule.points)
    except SQLAlchemyError:
        result.balance_synced = False
        logger.warning(
            "Balance update failed for %s after ledger entry %d; "
            "left for reconciliation",
            user_id, entry_id, exc_info=True,
        )

    # 6. Derived side effects never fail the award
    _evaluate_badges_safely(engine, catalog, user_id, result)
    if notify:
        notify_points_awarded(engine, user_id, rule)

    return result


def _evaluate_badges_safely(
    engine: Engine, catalog: RuleCatalog, user_id: str, result: AwardResult,
) -> None:
    try:
        balance = result.balance
        if balance is None:
            with Session(engine) as session:
                balance = sum_points(session, user_id)
        earned = evaluate_badges(engine, catalog, user_id, balance)
        result.badges_earned = [b.id for b in earned]
    except Exception:
        logger.exception("Badge evaluation failed for %s; award kept", user_id)


def spend_points(
    engine: Engine,
    user_id: str,
    amount: int,
    *,
    reason: str | None = None,
    related_id: str | None = None,
    now: datetime | None = None,
) -> SpendResult:
    """Redeem *amount* points by writing a negative ledger entry.

    The sufficiency check sums the ledger (strong read), not the cache.
    """
    if not user_id or amount <= 0:
        return SpendResult(error=AwardError.INVALID_REQUEST)

    now = as_utc(now) if now is not None else datetime.now(UTC)

    try:
        with Session(engine) as session:
            available = sum_points(session, user_id)
            if available < amount:
                logger.info(
                    "Insufficient points for %s: %d < %d", user_id, available, amount,
                )
                return SpendResult(
                    error=AwardError.INSUFFICIENT_POINTS,
                    points=amount,
                    previous_balance=available,
                )
            entry = append_entry(
                session,
                user_id=user_id,
                action_name=SPEND_ACTION,
                points=-amount,
                related_id=related_id,
                metadata={"reason": reason} if reason else None,
                created_at=now,
            )
            session.commit()
            entry_id = entry.id
    except SQLAlchemyError as exc:
        logger.exception("Spend of %d points failed for %s", amount, user_id)
        return SpendResult(error=classify_store_error(exc), points=amount)

    result = SpendResult(
        success=True,
        points=amount,
        previous_balance=available,
        balance=available - amount,
        entry_id=entry_id,
    )
    try:
        increment_balance(engine, user_id, -amount)
    except SQLAlchemyError:
        logger.warning(
            "Balance update failed for %s after spend entry %d; "
            "left for reconciliation",
            user_id, entry_id, exc_info=True,
        )
    return result
