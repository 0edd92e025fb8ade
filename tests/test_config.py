"""
tests/test_config.py — config.yaml Loading & Engine Bootstrap
==============================================================
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from kudos.config import KudosConfig, load_config
from kudos.database.engine import create_db_engine


class TestLoadConfig:
    def test_full_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "community_name: Makers\n"
            "dashboard_port: 8080\n"
            "reconcile_interval_hours: 6\n"
            "notify_on_award: false\n"
            "seed_defaults: false\n",
            encoding="utf-8",
        )
        assert load_config(path) == KudosConfig(
            community_name="Makers",
            dashboard_port=8080,
            reconcile_interval_hours=6,
            notify_on_award=False,
            seed_defaults=False,
        )

    def test_defaults_for_optional_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("community_name: Makers\ndashboard_port: '8000'\n", encoding="utf-8")
        cfg = load_config(path)
        assert cfg.dashboard_port == 8000
        assert cfg.reconcile_interval_hours == 24
        assert cfg.notify_on_award is True
        assert cfg.seed_defaults is True

    def test_missing_file_has_hint(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("community_name: Makers\n", encoding="utf-8")
        with pytest.raises(KeyError):
            load_config(path)

    def test_example_file_loads(self):
        root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        cfg = load_config(os.path.join(root, "config.yaml.example"))
        assert cfg.reconcile_interval_hours == 24


class TestCreateEngine:
    def test_requires_database_url(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("DATABASE_URL", None)
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                create_db_engine()
