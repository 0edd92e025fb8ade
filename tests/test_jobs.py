"""
tests/test_jobs.py — Reconciliation Job Entry Point
====================================================
"""

from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.orm import Session

from kudos.engine.results import ReconcileReport
from kudos.jobs import __main__ as jobs
from kudos.services.balance_service import get_cached_balance, set_balance
from kudos.services.ledger_service import append_entry

EXAMPLE_CONFIG = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config.yaml.example",
)


class TestMain:
    def test_user_flag_repairs_one_user(self, engine):
        with Session(engine) as session:
            append_entry(session, user_id="u1", action_name="new_post", points=10,
                         created_at=datetime(2026, 1, 1, tzinfo=UTC))
            set_balance(session, "u1", 3)
            session.commit()

        with patch.object(jobs, "create_db_engine", return_value=engine):
            assert jobs.main(["--user", "u1", "--config", EXAMPLE_CONFIG]) == 0

        with Session(engine) as session:
            assert get_cached_balance(session, "u1") == 10

    def test_once_runs_single_pass(self, db_engine):
        with (
            patch.object(jobs, "create_db_engine", return_value=db_engine),
            patch.object(jobs, "reconcile_all", return_value=ReconcileReport()) as reconcile,
        ):
            code = jobs.main(["--once", "--config", EXAMPLE_CONFIG])
        reconcile.assert_called_once_with(db_engine)
        assert code == 0

    def test_once_exits_nonzero_on_partial_failure(self, db_engine):
        report = ReconcileReport(errors={"u7": "connection lost"})
        with (
            patch.object(jobs, "create_db_engine", return_value=db_engine),
            patch.object(jobs, "reconcile_all", return_value=report),
        ):
            assert jobs.main(["--once", "--config", EXAMPLE_CONFIG]) == 1


class TestReconciliationLoop:
    def test_failed_pass_does_not_stop_loop(self):
        reconcile = MagicMock(side_effect=[RuntimeError("db down"), ReconcileReport()])
        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])

        with (
            patch.object(jobs, "reconcile_all", reconcile),
            patch.object(jobs.asyncio, "sleep", sleep),
        ):
            with pytest.raises(asyncio.CancelledError):
                asyncio.run(jobs.reconciliation_loop(MagicMock(), 2))

        assert reconcile.call_count == 2
        sleep.assert_awaited_with(2 * 3600)
