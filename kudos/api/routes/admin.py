"""
kudos.api.routes.admin — Admin CRUD endpoints (JWT‑protected)
==============================================================

Catalogue writes refresh this process's :class:`RuleCatalog` directly;
other processes pick the change up through ``NOTIFY config_changed``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from kudos.api.deps import get_catalog, get_current_admin, get_engine
from kudos.database.engine import run_db
from kudos.database.models import ActionAlias, ActionRule, AdminLog, Badge, LimitPolicy
from kudos.database.seed import ensure_default_catalog
from kudos.engine.catalog import RuleCatalog
from kudos.services import admin_service
from kudos.services.badge_service import get_badges_for_user, grant_badge
from kudos.services.ledger_service import get_user_points_history
from kudos.services.reconciliation_service import reconcile_all, reconcile_user

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RuleCreate(BaseModel):
    name: str
    points: int
    limit_policy: str = LimitPolicy.UNLIMITED.value
    enabled: bool = True
    description: str | None = None


class RuleUpdate(BaseModel):
    name: str | None = None
    points: int | None = None
    limit_policy: str | None = None
    enabled: bool | None = None
    description: str | None = None


class AliasCreate(BaseModel):
    alias: str
    canonical_name: str


class BadgeCreate(BaseModel):
    name: str
    points_threshold: int
    icon: str | None = None
    icon_color: str | None = None
    description: str | None = None
    display_order: int = 0
    is_active: bool = True


class BadgeUpdate(BaseModel):
    name: str | None = None
    points_threshold: int | None = None
    icon: str | None = None
    icon_color: str | None = None
    description: str | None = None
    display_order: int | None = None
    is_active: bool | None = None


class SyncPoints(BaseModel):
    user_id: str | None = None
    sync_all: bool = False
    ensure_rules: bool = False


class GrantBadge(BaseModel):
    badge_id: int


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def _rule_dict(r: ActionRule) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "points": r.points,
        "limit_policy": r.limit_policy,
        "enabled": r.enabled,
        "description": r.description,
    }


def _alias_dict(a: ActionAlias) -> dict:
    return {"alias": a.alias, "canonical_name": a.canonical_name}


def _badge_dict(b: Badge) -> dict:
    return {
        "id": b.id,
        "name": b.name,
        "icon": b.icon,
        "icon_color": b.icon_color,
        "points_threshold": b.points_threshold,
        "description": b.description,
        "display_order": b.display_order,
        "is_active": b.is_active,
    }


def _log_dict(row: AdminLog) -> dict:
    return {
        "id": row.id,
        "actor_id": row.actor_id,
        "action_type": row.action_type,
        "target_table": row.target_table,
        "target_id": row.target_id,
        "before": row.before_snapshot,
        "after": row.after_snapshot,
        "reason": row.reason,
        "timestamp": row.timestamp.isoformat() if row.timestamp else None,
    }


# ---------------------------------------------------------------------------
# Action rules
# ---------------------------------------------------------------------------
@router.get("/rules")
def list_rules(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"rules": [_rule_dict(r) for r in admin_service.list_rules(engine)]}


@router.post("/rules", status_code=201)
def create_rule(
    body: RuleCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
):
    try:
        rule = admin_service.create_rule(
            engine,
            name=body.name,
            points=body.points,
            limit_policy=body.limit_policy,
            enabled=body.enabled,
            description=body.description,
            actor_id=str(admin["sub"]),
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    catalog.handle_notify("action_rules")
    return _rule_dict(rule)


@router.patch("/rules/{rule_id}")
def update_rule(
    rule_id: int,
    body: RuleUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
):
    kwargs = body.model_dump(exclude_none=True)
    if not kwargs:
        raise HTTPException(400, "No fields to update")
    try:
        rule = admin_service.update_rule(
            engine, rule_id, actor_id=str(admin["sub"]), **kwargs,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if rule is None:
        raise HTTPException(404, "Rule not found")
    catalog.handle_notify("action_rules")
    catalog.handle_notify("action_aliases")
    return _rule_dict(rule)


@router.delete("/rules/{rule_id}")
def delete_rule(
    rule_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
):
    if not admin_service.delete_rule(engine, rule_id=rule_id, actor_id=str(admin["sub"])):
        raise HTTPException(404, "Rule not found")
    catalog.handle_notify("action_rules")
    catalog.handle_notify("action_aliases")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------
@router.get("/aliases")
def list_aliases(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"aliases": [_alias_dict(a) for a in admin_service.list_aliases(engine)]}


@router.post("/aliases", status_code=201)
def create_alias(
    body: AliasCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
):
    try:
        alias = admin_service.create_alias(
            engine,
            alias=body.alias,
            canonical_name=body.canonical_name,
            actor_id=str(admin["sub"]),
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    catalog.handle_notify("action_aliases")
    return _alias_dict(alias)


@router.delete("/aliases/{alias}")
def delete_alias(
    alias: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
):
    if not admin_service.delete_alias(engine, alias=alias, actor_id=str(admin["sub"])):
        raise HTTPException(404, "Alias not found")
    catalog.handle_notify("action_aliases")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------
@router.get("/badges")
def list_badges(
    include_inactive: bool = True,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    badges = admin_service.list_badges(engine, include_inactive=include_inactive)
    return {"badges": [_badge_dict(b) for b in badges]}


@router.post("/badges", status_code=201)
def create_badge(
    body: BadgeCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
):
    try:
        badge = admin_service.create_badge(
            engine, actor_id=str(admin["sub"]), **body.model_dump(),
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    catalog.handle_notify("badges")
    return _badge_dict(badge)


@router.patch("/badges/{badge_id}")
def update_badge(
    badge_id: int,
    body: BadgeUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
):
    kwargs = body.model_dump(exclude_none=True)
    if not kwargs:
        raise HTTPException(400, "No fields to update")
    try:
        badge = admin_service.update_badge(
            engine, badge_id, actor_id=str(admin["sub"]), **kwargs,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if badge is None:
        raise HTTPException(404, "Badge not found")
    catalog.handle_notify("badges")
    return _badge_dict(badge)


@router.delete("/badges/{badge_id}")
def delete_badge(
    badge_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
):
    if not admin_service.delete_badge(engine, badge_id=badge_id, actor_id=str(admin["sub"])):
        raise HTTPException(404, "Badge not found")
    catalog.handle_notify("badges")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------
@router.post("/sync-points")
async def sync_points(
    body: SyncPoints,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
):
    """Recompute cached balances from the ledger.

    ``ensure_rules`` first inserts any missing default rules, aliases and
    badges.
    """
    if not body.user_id and not body.sync_all:
        raise HTTPException(400, "Provide user_id or sync_all")

    response: dict = {}
    if body.ensure_rules:
        response["seeded"] = await run_db(ensure_default_catalog, engine)
        catalog.load_all()

    if body.sync_all:
        report = await run_db(reconcile_all, engine)
        response.update(report.to_dict())
    else:
        result = await run_db(reconcile_user, engine, body.user_id)
        response.update(result.to_dict())
    return response


# ---------------------------------------------------------------------------
# Per-user reports and grants
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/points-history")
def user_points_history(
    user_id: str,
    limit: int = Query(100, ge=1, le=1000),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    entries = get_user_points_history(engine, user_id, limit=limit)
    return {
        "user_id": user_id,
        "entries": [
            {
                "id": e.id,
                "action_name": e.action_name,
                "points": e.points,
                "related_id": e.related_id,
                "metadata": e.metadata_,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in entries
        ],
    }


@router.get("/users/{user_id}/badges")
def user_badges(
    user_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows = get_badges_for_user(engine, user_id)
    return {
        "user_id": user_id,
        "badges": [
            {
                **_badge_dict(ub.badge),
                "earned_at": ub.earned_at.isoformat() if ub.earned_at else None,
                "granted_by": ub.granted_by,
            }
            for ub in rows
        ],
    }


@router.post("/users/{user_id}/badges")
def grant_user_badge(
    user_id: str,
    body: GrantBadge,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    success, msg = grant_badge(
        engine, user_id=user_id, badge_id=body.badge_id, admin_id=str(admin["sub"]),
    )
    if not success:
        raise HTTPException(400, msg)
    return {"success": True, "message": msg}


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
@router.get("/audit")
def audit_log(
    limit: int = Query(50, ge=1, le=500),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"entries": [_log_dict(r) for r in admin_service.get_audit_log(engine, limit=limit)]}
