"""
Incentive API routes.

Provides endpoints for:
- Points balance, history and reconciliation
- Manual points adjustments (admins)
- Coin balance and history
- Red flags (raise / resolve)
- Logged working hours
- Incentive thresholds (super admins)
- The current red list
- Manual triggers for the sweep and the monthly bonus
"""
from typing import Optional

from fastapi import APIRouter, Path, Query

from app.core.database import get_supabase_client
from app.core.exceptions import ForbiddenError, ValidationError
from app.models.enums import UserRole
from app.models.schemas import (
    ManualPointsAdjustment,
    RedFlagCreateRequest,
    RedFlagResolveRequest,
    SettingUpdateRequest,
    WorkingHoursLogRequest,
)
from app.services.config_store import ConfigStore
from app.services.incentives import CoinLedger, PointsLedger
from app.services.redlist import RedListSweeper


router = APIRouter(prefix="/api/incentives", tags=["Incentives"])


def _points() -> PointsLedger:
    return PointsLedger(db=get_supabase_client())


def _coins() -> CoinLedger:
    return CoinLedger(db=get_supabase_client())


# ==========================================
# SPECIFIC PATH ROUTES (MUST BE BEFORE /{user_id})
# ==========================================

@router.get(
    "/red-list",
    summary="Red List",
    description="Files currently on the red list"
)
async def get_red_list(department_id: Optional[str] = Query(None)) -> dict:
    files = RedListSweeper(db=get_supabase_client()).get_red_list_files(department_id)
    return {"files": files, "count": len(files)}


@router.post(
    "/red-list/sweep",
    summary="Run Red-List Sweep",
    description="Run one sweep pass now"
)
async def run_sweep() -> dict:
    result = RedListSweeper(db=get_supabase_client()).sweep()
    return result.to_dict()


@router.post(
    "/points/monthly-bonus",
    summary="Process Monthly Bonus",
    description="Pay the monthly bonus for a period (YYYY-MM). Safe to repeat."
)
async def process_monthly_bonus(period: Optional[str] = Query(None, description="YYYY-MM")) -> dict:
    return _points().process_monthly_bonuses(period)


@router.post(
    "/points/adjust",
    summary="Adjust Points",
    description="Manual points adjustment by an administrator"
)
async def adjust_points(body: ManualPointsAdjustment) -> dict:
    result = _points().manual_adjust_points(body.actor, body.user_id, body.amount, body.reason)
    return {"success": True, "transaction": result}


@router.post(
    "/red-flags",
    summary="Raise Red Flag",
    description="Record a red flag against a user and deduct coins"
)
async def create_red_flag(body: RedFlagCreateRequest) -> dict:
    return _coins().create_red_flag(
        body.actor,
        body.user_id,
        body.flag_type,
        body.description,
        severity=body.severity,
        desk_id=body.desk_id,
        file_id=body.file_id,
    )


@router.post(
    "/red-flags/{flag_id}/resolve",
    summary="Resolve Red Flag",
    description="Mark a red flag resolved"
)
async def resolve_red_flag(body: RedFlagResolveRequest, flag_id: str = Path(...)) -> dict:
    flag = _coins().resolve_red_flag(flag_id, body.actor, body.resolution_note)
    return {"success": True, "red_flag": flag}


@router.post(
    "/working-hours",
    summary="Log Working Hours",
    description="Record a user's hours for a day; admins may log for anyone"
)
async def log_working_hours(body: WorkingHoursLogRequest) -> dict:
    result = _coins().log_working_hours(body.actor, body.user_id, body.hours, body.work_date)
    return {"success": True, **result}


@router.put(
    "/settings/{key}",
    summary="Update Setting",
    description="Change an incentive threshold (super admin only)"
)
async def update_setting(body: SettingUpdateRequest, key: str = Path(...)) -> dict:
    if not body.actor.is_super_admin:
        raise ForbiddenError(
            "Only a super admin can change incentive settings",
            actor_id=body.actor.id,
            required=[UserRole.SUPER_ADMIN.value],
        )
    setting = ConfigStore(db=get_supabase_client()).set(key, body.value, updated_by=body.actor.id)
    return {"success": True, "setting": setting}


# ==========================================
# PER-USER ROUTES
# ==========================================

@router.get(
    "/{user_id}/points",
    summary="Points Balance",
    description="Legacy points balance and counters"
)
async def get_points(user_id: str = Path(...)) -> dict:
    return _points().get_balance(user_id).model_dump()


@router.get(
    "/{user_id}/points/history",
    summary="Points History",
    description="Points transactions, newest first"
)
async def get_points_history(
    user_id: str = Path(...),
    limit: int = Query(50, ge=1, le=500)
) -> dict:
    history = _points().get_history(user_id, limit=limit)
    return {"user_id": user_id, "transactions": history, "count": len(history)}


@router.get(
    "/{user_id}/coins",
    summary="Coin Balance",
    description="Coin balance and unresolved red flags"
)
async def get_coins(user_id: str = Path(...)) -> dict:
    return _coins().get_balance(user_id).model_dump()


@router.get(
    "/{user_id}/coins/history",
    summary="Coin History",
    description="Coin transactions, newest first"
)
async def get_coin_history(
    user_id: str = Path(...),
    limit: int = Query(50, ge=1, le=500)
) -> dict:
    history = _coins().get_history(user_id, limit=limit)
    return {"user_id": user_id, "transactions": history, "count": len(history)}


@router.get(
    "/{user_id}/reconcile",
    summary="Reconcile Ledger",
    description="Replay transactions and compare with the stored balance"
)
async def reconcile(
    user_id: str = Path(...),
    ledger: str = Query("points", description="points or coins")
) -> dict:
    if ledger == "points":
        report = _points().reconcile(user_id)
    elif ledger == "coins":
        report = _coins().reconcile(user_id)
    else:
        raise ValidationError("ledger must be 'points' or 'coins'", field="ledger", value=ledger)
    return report.model_dump()


@router.get(
    "/{user_id}/red-flags",
    summary="Red Flags",
    description="Red flags raised against a user"
)
async def list_red_flags(
    user_id: str = Path(...),
    include_resolved: bool = Query(False)
) -> dict:
    flags = get_supabase_client().list_red_flags(user_id, include_resolved=include_resolved)
    return {"user_id": user_id, "red_flags": flags, "count": len(flags)}


@router.get(
    "/{user_id}/badges",
    summary="Badges",
    description="Performance badges awarded to a user"
)
async def list_badges(user_id: str = Path(...)) -> dict:
    badges = get_supabase_client().list_badges(user_id)
    return {"user_id": user_id, "badges": badges, "count": len(badges)}
