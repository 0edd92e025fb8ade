"""
kudos.api.routes.points — Member-facing points endpoints
=========================================================

Every route acts on the authenticated user (``sub`` claim).  Awards always
return 200 with the engine's result; the caller inspects ``success`` and
``error`` rather than the HTTP status.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from kudos.api.deps import get_catalog, get_config, get_current_user, get_engine
from kudos.config import KudosConfig
from kudos.database.engine import run_db
from kudos.database.models import Badge, LedgerEntry
from kudos.engine.catalog import RuleCatalog
from kudos.engine.tiers import highest_badge
from kudos.services.award_service import award_points, spend_points
from kudos.services.badge_service import get_badges_for_user
from kudos.services.balance_service import get_user_stats
from kudos.services.ledger_service import get_user_points_history
from kudos.services.notification_service import get_unread_notifications

router = APIRouter(tags=["points"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AwardRequest(BaseModel):
    action_name: str
    user_id: str | None = None          # admins only; defaults to caller
    related_id: str | None = None
    check_related_id: bool = False
    check_daily: bool = False


class SpendRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: str | None = None
    related_id: str | None = None


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def _entry_dict(e: LedgerEntry) -> dict:
    return {
        "id": e.id,
        "action_name": e.action_name,
        "points": e.points,
        "related_id": e.related_id,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


def _badge_dict(b: Badge) -> dict:
    return {
        "id": b.id,
        "name": b.name,
        "icon": b.icon,
        "icon_color": b.icon_color,
        "points_threshold": b.points_threshold,
        "description": b.description,
        "display_order": b.display_order,
    }


# ---------------------------------------------------------------------------
# POST /points/award
# ---------------------------------------------------------------------------
@router.post("/points/award")
async def award(
    body: AwardRequest,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
    catalog: RuleCatalog = Depends(get_catalog),
    cfg: KudosConfig = Depends(get_config),
):
    """Award points for an action the caller just performed."""
    target = body.user_id or user["sub"]
    if target != user["sub"] and not user.get("is_admin"):
        raise HTTPException(403, "Cannot award points to another user")

    result = await run_db(
        award_points,
        engine,
        catalog,
        target,
        body.action_name,
        related_id=body.related_id,
        check_related_id=body.check_related_id,
        check_daily=body.check_daily,
        notify=cfg.notify_on_award,
    )
    return result.to_dict()


@router.post("/points/spend")
async def spend(
    body: SpendRequest,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    result = await run_db(
        spend_points,
        engine,
        user["sub"],
        body.amount,
        reason=body.reason,
        related_id=body.related_id,
    )
    return result.to_dict()


# ---------------------------------------------------------------------------
# GET /points/me
# ---------------------------------------------------------------------------
@router.get("/points/me")
def my_points(
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    stats = get_user_stats(engine, user["sub"])
    badges = get_badges_for_user(engine, user["sub"])
    stats["badges"] = [
        {**_badge_dict(ub.badge), "earned_at": ub.earned_at.isoformat() if ub.earned_at else None}
        for ub in badges
    ]
    top = highest_badge(ub.badge for ub in badges)
    stats["highest_badge"] = top.name if top else None
    return stats


@router.get("/points/me/history")
def my_history(
    limit: int = Query(100, ge=1, le=500),
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    entries = get_user_points_history(engine, user["sub"], limit=limit)
    return {"entries": [_entry_dict(e) for e in entries]}


# ---------------------------------------------------------------------------
# GET /badges
# ---------------------------------------------------------------------------
@router.get("/badges")
def list_active_badges(catalog: RuleCatalog = Depends(get_catalog)):
    return {"badges": [_badge_dict(b) for b in catalog.get_active_badges()]}


# ---------------------------------------------------------------------------
# GET /notifications
# ---------------------------------------------------------------------------
@router.get("/notifications")
def my_notifications(
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rows = get_unread_notifications(engine, user["sub"])
    return {
        "notifications": [
            {
                "id": n.id,
                "type": n.type,
                "title": n.title,
                "message": n.message,
                "link": n.link,
                "created_at": n.created_at.isoformat() if n.created_at else None,
            }
            for n in rows
        ],
    }
