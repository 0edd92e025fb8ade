"""
Kudos — Points, Ledger & Badges for Community Platforms
=========================================================
Awards points for community actions (posting, replying, receiving likes,
attending events, completing a profile), keeps an immutable ledger of every
award, caches a running balance per member and unlocks badges as balances
cross their thresholds.

Package layout::

    kudos/
    ├── config.py          # YAML → typed Python config
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # ORM models (profiles, rules, ledger, badges…)
    │   └── seed.py        # Default rule / alias / badge catalogue
    ├── engine/
    │   ├── catalog.py     # Rule catalog cache + alias resolution + PG NOTIFY
    │   ├── limits.py      # Limit-policy evaluation (pure)
    │   ├── results.py     # AwardResult / ReconcileResult
    │   └── tiers.py       # Badge threshold evaluation (pure)
    ├── services/
    │   ├── award_service.py          # The award pipeline
    │   ├── ledger_service.py         # Append-only points ledger
    │   ├── balance_service.py        # Cached balances + rank
    │   ├── badge_service.py          # Badge evaluation / grants
    │   ├── reconciliation_service.py # Balance drift repair
    │   ├── notification_service.py   # "You earned points" notices
    │   └── admin_service.py          # Audit-logged admin mutations
    ├── api/
    │   ├── main.py        # FastAPI app
    │   └── routes/        # Points + admin REST endpoints
    └── jobs/
        └── __main__.py    # Scheduled reconciliation worker
"""

__version__ = "0.1.0"
