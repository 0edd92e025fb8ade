"""
tests/test_badges.py — Badge Evaluation Tests
==============================================
Threshold evaluation, idempotence, manual grants and the pure tier helpers.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from kudos.database.models import AdminLog, Badge, UserBadge
from kudos.engine.tiers import highest_badge, qualifying_badges
from kudos.services.badge_service import (
    evaluate_badges,
    get_badges_for_user,
    get_highest_badge,
    grant_badge,
)


def _badge_id(catalog, name: str) -> int:
    return next(b.id for b in catalog.get_active_badges() if b.name == name)


def _held_count(engine, user_id: str) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user_id)
        )


class TestTiers:
    def test_qualifying_excludes_held_and_inactive(self):
        badges = [
            Badge(id=1, name="a", points_threshold=10, display_order=1, is_active=True),
            Badge(id=2, name="b", points_threshold=100, display_order=2, is_active=True),
            Badge(id=3, name="c", points_threshold=5, display_order=0, is_active=False),
            Badge(id=4, name="d", points_threshold=500, display_order=3, is_active=True),
        ]
        result = qualifying_badges(badges, 150, already_held={1})
        assert [b.id for b in result] == [2]

    def test_highest_badge(self):
        badges = [
            Badge(id=1, name="a", points_threshold=10),
            Badge(id=2, name="b", points_threshold=250),
        ]
        assert highest_badge(badges).id == 2
        assert highest_badge([]) is None


class TestEvaluateBadges:
    def test_idempotent(self, engine, catalog):
        first = evaluate_badges(engine, catalog, "u1", 120)
        assert {b.name for b in first} == {"Newcomer", "Contributor"}

        assert evaluate_badges(engine, catalog, "u1", 120) == []
        assert _held_count(engine, "u1") == 2

    def test_crossing_new_threshold_awards_only_new(self, engine, catalog):
        evaluate_badges(engine, catalog, "u1", 120)
        newly = evaluate_badges(engine, catalog, "u1", 260)
        assert [b.name for b in newly] == ["Regular"]
        assert _held_count(engine, "u1") == 3

    def test_below_first_threshold(self, engine, catalog):
        assert evaluate_badges(engine, catalog, "u1", 9) == []
        assert get_badges_for_user(engine, "u1") == []

    def test_highest_badge_for_user(self, engine, catalog):
        evaluate_badges(engine, catalog, "u1", 600)
        assert get_highest_badge(engine, "u1").name == "Expert"
        assert get_highest_badge(engine, "u2") is None


class TestGrantBadge:
    def test_grant_regardless_of_balance(self, engine, catalog):
        legend = _badge_id(catalog, "Legend")
        ok, msg = grant_badge(engine, user_id="u1", badge_id=legend, admin_id="admin-1")
        assert ok
        assert "Legend" in msg

        held = get_badges_for_user(engine, "u1")
        assert [ub.badge.name for ub in held] == ["Legend"]
        assert held[0].granted_by == "admin-1"

        with Session(engine) as session:
            log = session.scalar(select(AdminLog))
        assert log.action_type == "MANUAL_GRANT"
        assert log.target_id == f"u1:{legend}"

    def test_grant_twice_is_rejected(self, engine, catalog):
        legend = _badge_id(catalog, "Legend")
        grant_badge(engine, user_id="u1", badge_id=legend, admin_id="a")
        ok, msg = grant_badge(engine, user_id="u1", badge_id=legend, admin_id="a")
        assert not ok
        assert msg == "User already has this badge."

    def test_unknown_badge(self, engine):
        assert grant_badge(engine, user_id="u1", badge_id=9999, admin_id="a") == (
            False, "Badge not found.",
        )
