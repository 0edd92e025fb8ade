"""
kudos.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- profiles        — Community members; ``points`` is the cached balance
- action_rules    — Point-worthy actions with value, limit policy, enablement
- action_aliases  — Alternate (localised / legacy) names for a rule
- points_ledger   — Append-only award history with store-level dedupe key
- badges          — Threshold-unlocked badge tiers
- user_badges     — Earned badges (unique per user + badge)
- notifications   — In-app notices ("you earned N points")
- admin_log       — Append-only audit trail of admin mutations
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Kudos ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class LimitPolicy(enum.StrEnum):
    """How often a rule may award the same user."""
    UNLIMITED = "unlimited"
    ONCE_PER_RELATED_TARGET = "once_per_related_target"
    ONCE_PER_DAY = "once_per_day"
    ONCE_PER_USER_TOTAL = "once_per_user_total"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MANUAL_GRANT = "MANUAL_GRANT"


# Reserved ledger action for point redemptions (negative entries).
SPEND_ACTION = "points_spent"


# ---------------------------------------------------------------------------
# Profiles — one row per community member
# ---------------------------------------------------------------------------
class Profile(Base):
    """A member's profile row.

    ``points`` is a materialised view of the ledger, not a source of truth.
    Reconciliation overwrites it with ``SUM(points_ledger.points)``.
    """
    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(100), default=None)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    badges: Mapped[list[UserBadge]] = relationship(
        back_populates="profile", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_profiles_points_desc", "points"),
    )

    def __repr__(self) -> str:
        return f"<Profile user={self.user_id!r} points={self.points}>"


# ---------------------------------------------------------------------------
# ActionRule — the rule catalogue
# ---------------------------------------------------------------------------
class ActionRule(Base):
    """A named, point-worthy action.

    ``name`` is stored lower-case; lookups are case-insensitive.
    """
    __tablename__ = "action_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    limit_policy: Mapped[str] = mapped_column(
        String(30), nullable=False, default=LimitPolicy.UNLIMITED.value,
    )
    description: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("name", name="uq_action_rules_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<ActionRule name={self.name!r} points={self.points} "
            f"policy={self.limit_policy}>"
        )


# ---------------------------------------------------------------------------
# ActionAlias — alternate names resolved once by the catalog
# ---------------------------------------------------------------------------
class ActionAlias(Base):
    __tablename__ = "action_aliases"

    alias: Mapped[str] = mapped_column(String(100), primary_key=True)
    canonical_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_action_aliases_canonical", "canonical_name"),
    )

    def __repr__(self) -> str:
        return f"<ActionAlias {self.alias!r} → {self.canonical_name!r}>"


# ---------------------------------------------------------------------------
# LedgerEntry — append-only points history
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    """One point award (or spend).  Never updated or deleted.

    ``action_name`` is a soft reference to :class:`ActionRule` so renaming or
    deleting a rule leaves history intact.  ``dedupe_key`` is derived from
    the rule's limit policy; the unique constraint on
    ``(user_id, action_name, dedupe_key)`` makes the store reject the second
    of two racing awards.  NULL keys never collide.
    """
    __tablename__ = "points_ledger"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_name: Mapped[str] = mapped_column(String(100), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    related_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    dedupe_key: Mapped[str | None] = mapped_column(String(160), nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "action_name", "dedupe_key",
            name="uq_points_ledger_dedupe",
        ),
        Index("ix_points_ledger_user_time", "user_id", "created_at"),
        Index("ix_points_ledger_user_action", "user_id", "action_name", "related_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} user={self.user_id!r} "
            f"action={self.action_name!r} points={self.points}>"
        )


# ---------------------------------------------------------------------------
# Badge — threshold-unlocked tiers
# ---------------------------------------------------------------------------
class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(50), default=None)
    icon_color: Mapped[str | None] = mapped_column(String(20), default=None)
    points_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    earned_by: Mapped[list[UserBadge]] = relationship(
        back_populates="badge", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("name", name="uq_badges_name"),
        Index("ix_badges_threshold", "points_threshold"),
    )

    def __repr__(self) -> str:
        return f"<Badge id={self.id} name={self.name!r} threshold={self.points_threshold}>"


# ---------------------------------------------------------------------------
# UserBadge — earned badges
# ---------------------------------------------------------------------------
class UserBadge(Base):
    __tablename__ = "user_badges"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.user_id", ondelete="CASCADE"),
        primary_key=True,
    )
    badge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True,
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    granted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    profile: Mapped[Profile] = relationship(back_populates="badges")
    badge: Mapped[Badge] = relationship(back_populates="earned_by")

    def __repr__(self) -> str:
        return f"<UserBadge user={self.user_id!r} badge={self.badge_id}>"


# ---------------------------------------------------------------------------
# Notification — in-app notices
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(500), default=None)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id!r} type={self.type}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id!r} action={self.action_type}>"
