"""
kudos.services.admin_service — Admin Mutation Service Layer
============================================================

Every catalogue write (rules, aliases, badges) follows the pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSON
  5. NOTIFY config_changed, '<table>'
  6. Commit

Rule names and aliases are stored lower-case.  Invalid input raises
``ValueError``; the API layer turns that into a 400.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kudos.database.models import (
    SPEND_ACTION,
    ActionAlias,
    ActionRule,
    AdminActionType,
    AdminLog,
    Badge,
    LimitPolicy,
)
from kudos.engine.catalog import normalize_action_name, notify_before_commit

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------

def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for attr in sa_inspect(obj).mapper.column_attrs:
        val = getattr(obj, attr.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[attr.columns[0].name] = val
    return result


def _pk_str(obj: Any) -> str:
    return ":".join(str(v) for v in sa_inspect(obj).identity)


def _log_admin_action(
    session: Session,
    *,
    actor_id: str,
    action_type: AdminActionType,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type.value,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _audited_create(engine, row: Any, *, table_name: str, actor_id: str) -> Any:
    """Generic audited CREATE: add -> flush -> log -> notify -> commit -> return.

    Raises ``ValueError`` if a unique constraint rejects the row.
    """
    with Session(engine, expire_on_commit=False) as session:
        try:
            session.add(row)
            session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise ValueError(f"{table_name}: row already exists") from exc
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_table=table_name,
            target_id=_pk_str(row),
            before=None,
            after=_row_to_dict(row),
        )
        notify_before_commit(session, table_name)
        session.commit()
        session.refresh(row)
        session.expunge(row)
        return row


def _audited_update(
    engine,
    model_cls: type,
    pk: Any,
    *,
    table_name: str,
    actor_id: str,
    frozen_keys: tuple[str, ...] = ("id", "created_at"),
    **kwargs: Any,
) -> Any | None:
    """Generic audited UPDATE: get -> before -> apply kwargs -> log -> commit.

    Returns the updated (expunged) object, or ``None`` if not found.
    """
    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(model_cls, pk)
        if obj is None:
            return None
        before = _row_to_dict(obj)
        for key, value in kwargs.items():
            if hasattr(obj, key) and key not in frozen_keys:
                setattr(obj, key, value)
        try:
            session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise ValueError(f"{table_name}: update conflicts with an existing row") from exc
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE,
            target_table=table_name,
            target_id=_pk_str(obj),
            before=before,
            after=_row_to_dict(obj),
        )
        notify_before_commit(session, table_name)
        session.commit()
        session.refresh(obj)
        session.expunge(obj)
        return obj


def _audited_delete(
    engine, model_cls: type, pk: Any, *, table_name: str, actor_id: str,
) -> bool:
    """Generic audited DELETE.  Returns ``True`` if the row existed."""
    with Session(engine) as session:
        obj = session.get(model_cls, pk)
        if obj is None:
            return False
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE,
            target_table=table_name,
            target_id=_pk_str(obj),
            before=_row_to_dict(obj),
            after=None,
        )
        session.delete(obj)
        notify_before_commit(session, table_name)
        session.commit()
        return True


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _validate_policy(value: str) -> str:
    try:
        return LimitPolicy(value).value
    except ValueError:
        allowed = ", ".join(p.value for p in LimitPolicy)
        raise ValueError(f"Unknown limit_policy {value!r}; expected one of: {allowed}") from None


def _validate_rule_name(session: Session, name: str) -> str:
    name = normalize_action_name(name)
    if not name:
        raise ValueError("Rule name must not be empty")
    if name == SPEND_ACTION:
        raise ValueError(f"{SPEND_ACTION!r} is reserved for point redemptions")
    if session.get(ActionAlias, name) is not None:
        raise ValueError(f"{name!r} is already an alias")
    return name


# ---------------------------------------------------------------------------
# ActionRule CRUD
# ---------------------------------------------------------------------------

def list_rules(engine) -> list[ActionRule]:
    with Session(engine, expire_on_commit=False) as session:
        rows = session.scalars(select(ActionRule).order_by(ActionRule.name)).all()
        for r in rows:
            session.expunge(r)
        return list(rows)


def create_rule(
    engine,
    *,
    name: str,
    points: int,
    limit_policy: str = LimitPolicy.UNLIMITED.value,
    enabled: bool = True,
    description: str | None = None,
    actor_id: str,
) -> ActionRule:
    """Create a rule.  Raises ``ValueError`` on invalid or duplicate input."""
    with Session(engine) as session:
        name = _validate_rule_name(session, name)
    rule = ActionRule(
        name=name,
        points=points,
        limit_policy=_validate_policy(limit_policy),
        enabled=enabled,
        description=description,
    )
    return _audited_create(engine, rule, table_name="action_rules", actor_id=actor_id)


def _cascade_aliases(session: Session, old_name: str, *, new_name: str | None, actor_id: str) -> int:
    """Re-point (or, with ``new_name=None``, drop) aliases of *old_name*.

    Runs inside the caller's transaction and logs one admin_log row per alias.
    """
    aliases = session.scalars(
        select(ActionAlias).where(ActionAlias.canonical_name == old_name)
    ).all()
    for a in aliases:
        before = _row_to_dict(a)
        if new_name is None:
            session.delete(a)
        else:
            a.canonical_name = new_name
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE if new_name is None else AdminActionType.UPDATE,
            target_table="action_aliases",
            target_id=a.alias,
            before=before,
            after=None if new_name is None else _row_to_dict(a),
            reason=f"rule {old_name!r} {'deleted' if new_name is None else 'renamed'}",
        )
    if aliases:
        notify_before_commit(session, "action_aliases")
    return len(aliases)


def update_rule(engine, rule_id: int, *, actor_id: str, **kwargs: Any) -> ActionRule | None:
    """Update a rule's fields.  Returns None if the rule doesn't exist.

    Renaming a rule re-points its aliases in the same transaction.
    """
    if kwargs.get("limit_policy") is not None:
        kwargs["limit_policy"] = _validate_policy(kwargs["limit_policy"])
    kwargs = {k: v for k, v in kwargs.items() if v is not None}
    with Session(engine, expire_on_commit=False) as session:
        if "name" in kwargs:
            kwargs["name"] = _validate_rule_name(session, kwargs["name"])
        rule = session.get(ActionRule, rule_id)
        if rule is None:
            return None
        before = _row_to_dict(rule)
        old_name = rule.name
        for key, value in kwargs.items():
            if hasattr(rule, key) and key not in ("id", "created_at"):
                setattr(rule, key, value)
        try:
            session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise ValueError("action_rules: update conflicts with an existing row") from exc
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE,
            target_table="action_rules",
            target_id=_pk_str(rule),
            before=before,
            after=_row_to_dict(rule),
        )
        if rule.name != old_name:
            moved = _cascade_aliases(session, old_name, new_name=rule.name, actor_id=actor_id)
            logger.info("Rule %r renamed to %r (%d aliases re-pointed)", old_name, rule.name, moved)
        notify_before_commit(session, "action_rules")
        session.commit()
        session.refresh(rule)
        session.expunge(rule)
        return rule


def delete_rule(engine, *, rule_id: int, actor_id: str) -> bool:
    """Delete a rule and its aliases.  Ledger history keeps its (now dangling) action names."""
    with Session(engine) as session:
        rule = session.get(ActionRule, rule_id)
        if rule is None:
            return False
        _cascade_aliases(session, rule.name, new_name=None, actor_id=actor_id)
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE,
            target_table="action_rules",
            target_id=_pk_str(rule),
            before=_row_to_dict(rule),
            after=None,
        )
        session.delete(rule)
        notify_before_commit(session, "action_rules")
        session.commit()
        return True


# ---------------------------------------------------------------------------
# ActionAlias CRUD
# ---------------------------------------------------------------------------

def list_aliases(engine) -> list[ActionAlias]:
    with Session(engine, expire_on_commit=False) as session:
        rows = session.scalars(select(ActionAlias).order_by(ActionAlias.alias)).all()
        for a in rows:
            session.expunge(a)
        return list(rows)


def create_alias(engine, *, alias: str, canonical_name: str, actor_id: str) -> ActionAlias:
    """Map *alias* onto an existing rule.

    Raises ``ValueError`` if the target rule is unknown or the alias would
    shadow a rule name.
    """
    alias = normalize_action_name(alias)
    canonical_name = normalize_action_name(canonical_name)
    if not alias:
        raise ValueError("Alias must not be empty")
    with Session(engine) as session:
        names = set(session.scalars(select(ActionRule.name)).all())
    if canonical_name not in names:
        raise ValueError(f"No rule named {canonical_name!r}")
    if alias in names:
        raise ValueError(f"{alias!r} is already a rule name")
    return _audited_create(
        engine,
        ActionAlias(alias=alias, canonical_name=canonical_name),
        table_name="action_aliases",
        actor_id=actor_id,
    )


def delete_alias(engine, *, alias: str, actor_id: str) -> bool:
    return _audited_delete(
        engine, ActionAlias, normalize_action_name(alias),
        table_name="action_aliases", actor_id=actor_id,
    )


# ---------------------------------------------------------------------------
# Badge CRUD
# ---------------------------------------------------------------------------

def list_badges(engine, *, include_inactive: bool = True) -> list[Badge]:
    with Session(engine, expire_on_commit=False) as session:
        stmt = select(Badge).order_by(Badge.display_order, Badge.points_threshold)
        if not include_inactive:
            stmt = stmt.where(Badge.is_active.is_(True))
        rows = session.scalars(stmt).all()
        for b in rows:
            session.expunge(b)
        return list(rows)


def create_badge(
    engine,
    *,
    name: str,
    points_threshold: int,
    icon: str | None = None,
    icon_color: str | None = None,
    description: str | None = None,
    display_order: int = 0,
    is_active: bool = True,
    actor_id: str,
) -> Badge:
    if points_threshold < 0:
        raise ValueError("points_threshold must be >= 0")
    badge = Badge(
        name=name,
        points_threshold=points_threshold,
        icon=icon,
        icon_color=icon_color,
        description=description,
        display_order=display_order,
        is_active=is_active,
    )
    return _audited_create(engine, badge, table_name="badges", actor_id=actor_id)


def update_badge(engine, badge_id: int, *, actor_id: str, **kwargs: Any) -> Badge | None:
    kwargs = {k: v for k, v in kwargs.items() if v is not None}
    if kwargs.get("points_threshold", 0) < 0:
        raise ValueError("points_threshold must be >= 0")
    return _audited_update(
        engine, Badge, badge_id, table_name="badges", actor_id=actor_id, **kwargs,
    )


def delete_badge(engine, *, badge_id: int, actor_id: str) -> bool:
    return _audited_delete(
        engine, Badge, badge_id, table_name="badges", actor_id=actor_id,
    )


def get_audit_log(engine, *, limit: int = 50) -> list[AdminLog]:
    with Session(engine, expire_on_commit=False) as session:
        rows = session.scalars(
            select(AdminLog).order_by(AdminLog.timestamp.desc(), AdminLog.id.desc()).limit(limit)
        ).all()
        for row in rows:
            session.expunge(row)
        return list(rows)
