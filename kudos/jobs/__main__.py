"""
kudos.jobs.__main__ — Entry point for ``python -m kudos.jobs``
===============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine, ensure tables exist, seed the catalogue.
4. Run balance reconciliation every ``reconcile_interval_hours``.

Run with::

    python -m kudos.jobs              # loop forever
    python -m kudos.jobs --once       # one full pass, then exit
    python -m kudos.jobs --user u-42  # repair a single user, then exit
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
from sqlalchemy import Engine

from kudos.config import load_config
from kudos.database.engine import create_db_engine, init_db, run_db
from kudos.services.reconciliation_service import reconcile_all, reconcile_user

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("kudos")


async def reconciliation_loop(engine: Engine, interval_hours: int) -> None:
    """Reconcile all balances, sleep, repeat.  A failed pass never stops it."""
    while True:
        try:
            report = await run_db(reconcile_all, engine)
            logger.info(
                "Reconciliation pass: %d checked, %d corrected, %d failed",
                report.checked, report.corrected, len(report.errors),
            )
        except Exception:
            logger.exception("Reconciliation pass failed")
        await asyncio.sleep(interval_hours * 3600)


def main(argv: list[str] | None = None) -> int:
    """Bootstrap and run the reconciliation job.

    Returns the process exit code: 1 if a one-shot pass left any user
    unreconciled, else 0.
    """
    parser = argparse.ArgumentParser(prog="python -m kudos.jobs")
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    parser.add_argument("--user", metavar="USER_ID", help="reconcile one user and exit")
    parser.add_argument("--config", default="config.yaml", help="path to config.yaml")
    args = parser.parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config(args.config)
    logger.info("Config loaded — Community: %s", cfg.community_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine, seed=cfg.seed_defaults)

    # 4. Work.
    if args.user:
        result = reconcile_user(engine, args.user)
        logger.info(
            "User %s: %d → %d (corrected=%s)",
            result.user_id, result.old_balance, result.new_balance, result.corrected,
        )
        return 0
    if args.once:
        report = reconcile_all(engine)
        return 1 if report.errors else 0

    try:
        asyncio.run(reconciliation_loop(engine, cfg.reconcile_interval_hours))
    except KeyboardInterrupt:
        logger.info("Reconciliation job stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
