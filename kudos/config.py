"""
kudos.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for **infrastructure-only** settings (community
identity, API port, reconciliation schedule, notification toggle).  The
points catalogue itself (rules, aliases, badges) lives in the database and
is edited through the admin API.

Usage::

    from kudos.config import load_config

    cfg = load_config()                 # reads ./config.yaml by default
    print(cfg.community_name)           # "Kudos Dev"
    print(cfg.reconcile_interval_hours) # 24
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure only.
# The rule catalogue lives in the DB ``action_rules`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class KudosConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # API
    dashboard_port: int

    # Reconciliation job cadence
    reconcile_interval_hours: int = 24

    # Optional behaviour toggles
    notify_on_award: bool = True   # Insert a "you earned points" notification
    seed_defaults: bool = True     # Seed the default catalogue on startup


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> KudosConfig:
    """Read *path* and return a :class:`KudosConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return KudosConfig(
        community_name=raw["community_name"],
        dashboard_port=int(raw["dashboard_port"]),
        reconcile_interval_hours=int(raw.get("reconcile_interval_hours", 24)),
        notify_on_award=bool(raw.get("notify_on_award", True)),
        seed_defaults=bool(raw.get("seed_defaults", True)),
    )
