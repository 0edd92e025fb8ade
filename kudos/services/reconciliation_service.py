"""
kudos.services.reconciliation_service — Balance Reconciliation
===============================================================

Repairs drift between the cached ``profiles.points`` and the ledger.

How it works:
    1. ``SUM(points)`` from ``points_ledger`` for the user (ground truth).
    2. Compare against the cached balance (missing profile counts as 0).
    3. If different, overwrite the cache with the true sum.
    4. Log all corrections for audit.

Running it twice with no intervening awards corrects on the first pass
only.  ``reconcile_all`` covers every user known to either table and
records per-user failures without aborting the batch.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kudos.engine.results import ReconcileReport, ReconcileResult
from kudos.services.balance_service import (
    get_cached_balance,
    profile_user_ids,
    set_balance,
)
from kudos.services.ledger_service import ledger_user_ids, sum_points

logger = logging.getLogger(__name__)


def reconcile_user(engine: Engine, user_id: str) -> ReconcileResult:
    """Recompute one user's balance from the ledger.

    The profile row is locked before the ledger is summed, so a concurrent
    ``increment_balance`` waits for this transaction instead of being
    overwritten.  An award whose ledger row commits before the sum but whose
    increment runs after our commit still leaves the cache off by that
    award; the next pass corrects it.

    Raises
    ------
    SQLAlchemyError
        Store failures propagate; :func:`reconcile_all` records them.
    """
    with Session(engine) as session:
        cached = get_cached_balance(session, user_id, for_update=True)
        actual = sum_points(session, user_id)
        stored = cached if cached is not None else 0

        corrected = stored != actual
        if corrected:
            set_balance(session, user_id, actual)
            session.commit()
            logger.warning(
                "Balance drift for %s: cached=%d ledger=%d (diff %+d) — corrected",
                user_id, stored, actual, actual - stored,
            )

    return ReconcileResult(
        user_id=user_id,
        old_balance=stored,
        new_balance=actual,
        corrected=corrected,
    )


def reconcile_all(engine: Engine) -> ReconcileReport:
    """Reconcile every known user; one failure never stops the batch."""
    report = ReconcileReport()

    with Session(engine) as session:
        user_ids = sorted(profile_user_ids(session) | ledger_user_ids(session))

    for user_id in user_ids:
        try:
            report.results.append(reconcile_user(engine, user_id))
        except SQLAlchemyError as exc:
            report.errors[user_id] = str(exc)
            logger.exception("Reconciliation failed for %s — continuing", user_id)

    if report.corrected:
        logger.warning(
            "Balance reconciliation: corrected %d/%d balances (%d failed)",
            report.corrected, report.checked, len(report.errors),
        )
    else:
        logger.info(
            "Balance reconciliation: all %d balances match (%d failed)",
            report.checked, len(report.errors),
        )
    return report
