"""
Holiday Calendar API Routes.

Provides endpoints for managing the holiday calendar used in
business-time calculations. Any change drops the cached holiday set so
timers pick it up on the next computation.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Path, Query

from app.core.database import get_supabase_client
from app.models.schemas import HolidayCreate
from app.services.business_days import clear_holiday_cache, is_business_day, is_weekend, load_holidays


router = APIRouter(prefix="/api/holidays", tags=["Holidays"])


# ==========================================
# BUSINESS DAY UTILITIES (MUST BE BEFORE /{holiday_id})
# ==========================================

@router.get(
    "/check-business-day",
    summary="Check Business Day",
    description="Check if a date is a business day"
)
async def check_business_day(
    check_date: date = Query(..., description="Date to check")
) -> dict:
    """Check if a specific date is a business day."""
    db = get_supabase_client()

    holiday_resp = db.client.table("holidays").select(
        "id, name"
    ).eq("holiday_date", check_date.isoformat()).execute()
    holiday = holiday_resp.data[0] if holiday_resp.data else None

    return {
        "date": check_date.isoformat(),
        "day_of_week": check_date.strftime("%A"),
        "is_business_day": is_business_day(check_date, load_holidays(db)),
        "is_weekend": is_weekend(check_date),
        "is_holiday": holiday is not None,
        "holiday_name": holiday["name"] if holiday else None,
    }


# ==========================================
# HOLIDAY CRUD ENDPOINTS
# ==========================================

@router.get(
    "",
    summary="List Holidays",
    description="Get holidays with optional filtering"
)
async def list_holidays(
    year: Optional[int] = Query(None, description="Filter by year"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0)
) -> dict:
    """List holidays with optional filters."""
    db = get_supabase_client()

    query = db.client.table("holidays").select("*")

    if year:
        query = query.gte("holiday_date", f"{year}-01-01").lte("holiday_date", f"{year}-12-31")

    response = query.order("holiday_date").range(offset, offset + limit - 1).execute()

    return {
        "holidays": response.data or [],
        "count": len(response.data or [])
    }


@router.get(
    "/{holiday_id}",
    summary="Get Holiday",
    description="Get a specific holiday by ID"
)
async def get_holiday(holiday_id: str = Path(...)) -> dict:
    """Get a holiday by ID."""
    db = get_supabase_client()

    response = db.client.table("holidays").select("*").eq("id", holiday_id).execute()

    if not response.data:
        raise HTTPException(status_code=404, detail="Holiday not found")

    return response.data[0]


@router.post(
    "",
    summary="Create Holiday",
    description="Add a new holiday to the calendar"
)
async def create_holiday(body: HolidayCreate) -> dict:
    """Create a new holiday."""
    db = get_supabase_client()

    existing = db.client.table("holidays").select("id").eq(
        "holiday_date", body.holiday_date.isoformat()
    ).execute()

    if existing.data:
        raise HTTPException(
            status_code=400,
            detail="A holiday already exists for this date"
        )

    response = db.client.table("holidays").insert({
        "name": body.name,
        "holiday_date": body.holiday_date.isoformat(),
    }).execute()

    if not response.data:
        raise HTTPException(status_code=500, detail="Failed to create holiday")

    clear_holiday_cache()

    return {
        "success": True,
        "holiday": response.data[0]
    }


@router.delete(
    "/{holiday_id}",
    summary="Delete Holiday",
    description="Remove a holiday from the calendar"
)
async def delete_holiday(holiday_id: str = Path(...)) -> dict:
    """Delete a holiday."""
    db = get_supabase_client()

    existing = db.client.table("holidays").select("id, name").eq("id", holiday_id).execute()

    if not existing.data:
        raise HTTPException(status_code=404, detail="Holiday not found")

    db.client.table("holidays").delete().eq("id", holiday_id).execute()
    clear_holiday_cache()

    return {
        "success": True,
        "deleted": existing.data[0]
    }
