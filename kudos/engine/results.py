"""
kudos.engine.results — Structured Outcomes
===========================================

Every public engine operation returns one of these instead of raising, so
callers (request handlers, workers) never need a ``try`` around
gamification calls.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


class AwardError(enum.StrEnum):
    """Why an award (or spend) produced no ledger entry."""
    RULE_NOT_FOUND_OR_DISABLED = "rule_not_found_or_disabled"
    STORE_UNAVAILABLE = "store_unavailable"
    STORE_TIMEOUT = "store_timeout"
    INVALID_REQUEST = "invalid_request"
    INSUFFICIENT_POINTS = "insufficient_points"


# ---------------------------------------------------------------------------
# AwardResult — output of award_points()
# ---------------------------------------------------------------------------
@dataclass
class AwardResult:
    """Outcome of one award attempt.

    ``already_awarded`` is deliberately separate from ``error``: it is the
    expected answer for a repeated action, not a failure.
    """

    success: bool = False
    points: int = 0
    balance: int | None = None
    already_awarded: bool = False
    error: AwardError | None = None
    action_name: str | None = None
    entry_id: int | None = None
    badges_earned: list[int] = field(default_factory=list)
    balance_synced: bool = True
    dedupe_bypassed: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["error"] = self.error.value if self.error else None
        return data


# ---------------------------------------------------------------------------
# SpendResult — output of spend_points()
# ---------------------------------------------------------------------------
@dataclass
class SpendResult:
    success: bool = False
    points: int = 0
    balance: int | None = None
    previous_balance: int | None = None
    error: AwardError | None = None
    entry_id: int | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["error"] = self.error.value if self.error else None
        return data


# ---------------------------------------------------------------------------
# Reconciliation outcomes
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """Balance repair outcome for a single user."""

    user_id: str
    old_balance: int
    new_balance: int
    corrected: bool

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "old_balance": self.old_balance,
            "new_balance": self.new_balance,
            "corrected": self.corrected,
        }


@dataclass
class ReconcileReport:
    """Batch outcome of reconcile_all(); per-user failures never abort it."""

    results: list[ReconcileResult] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def checked(self) -> int:
        return len(self.results)

    @property
    def corrected(self) -> int:
        return sum(1 for r in self.results if r.corrected)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "corrected": self.corrected,
            "failed": len(self.errors),
            "results": [r.to_dict() for r in self.results],
            "errors": dict(self.errors),
            "timestamp": self.timestamp.isoformat(),
        }
