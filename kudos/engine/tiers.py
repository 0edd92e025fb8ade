"""
kudos.engine.tiers — Badge Threshold Evaluation
================================================

Pure calculation — no database I/O.  Given the active badge tiers, a
balance and the badges a user already holds, decide which badges are newly
earned.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kudos.database.models import Badge


def qualifying_badges(
    badges: Iterable[Badge],
    balance: int,
    already_held: set[int],
) -> list[Badge]:
    """Active badges with ``points_threshold <= balance`` not yet held.

    Returned lowest threshold first so announcements read in tier order.
    """
    earned = [
        b for b in badges
        if b.is_active
        and b.points_threshold <= balance
        and b.id not in already_held
    ]
    earned.sort(key=lambda b: (b.points_threshold, b.display_order))
    return earned


def highest_badge(badges: Iterable[Badge]) -> Badge | None:
    """The badge with the greatest threshold, or ``None`` for an empty set."""
    return max(badges, key=lambda b: b.points_threshold, default=None)
