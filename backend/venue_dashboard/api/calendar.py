"""
Calendar API endpoints.

Day summaries (covers, private events, open/closed) for the week and month
views, and bookable reservation slots for a single date and party size.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core.auth import get_current_user
from ..core.errors import DataApiError
from ..core.observability import get_tracer
from ..services.dashboard_service import DashboardService
from .dependencies import ApiResponse, envelope, get_dashboard_service

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

router = APIRouter(prefix="/calendar", tags=["Calendar"])

MAX_RANGE_DAYS = 62


@router.get(
    "/days",
    response_model=ApiResponse,
    summary="Day summaries for a date range",
)
async def get_days(
    start: date = Query(..., description="First date (inclusive)"),
    end: date = Query(..., description="Last date (inclusive)"),
    current_user: dict = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service),
) -> ApiResponse:
    """
    Covers, private events and open status for every date in [start, end].

    Raises:
        HTTPException: 422 for an invalid range, 500 if aggregation fails
    """
    if end < start or (end - start).days >= MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"end must be on or after start and the range at most {MAX_RANGE_DAYS} days",
        )

    with tracer.start_as_current_span("api.calendar.days") as span:
        span.set_attribute("user_id", current_user.get("sub"))
        try:
            view = await service.get_calendar(start, end)
            return envelope(view)
        except Exception as e:
            logger.error(f"Calendar aggregation failed for {start}..{end}: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Calendar aggregation failed",
            )


@router.get(
    "/month",
    response_model=ApiResponse,
    summary="Month calendar grid",
)
async def get_month(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    current_user: dict = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service),
) -> ApiResponse:
    """Day summaries for the Sunday-to-Saturday grid covering the month."""
    with tracer.start_as_current_span("api.calendar.month") as span:
        span.set_attribute("month", f"{year}-{month:02d}")
        try:
            return envelope(await service.get_month_calendar(year, month))
        except Exception as e:
            logger.error(f"Month calendar failed for {year}-{month:02d}: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Calendar aggregation failed",
            )


@router.get(
    "/{day}/slots",
    response_model=ApiResponse,
    summary="Bookable reservation slots for a date",
)
async def get_slots(
    day: date,
    party_size: Optional[int] = Query(
        None, ge=1, le=50, description="Only slots where a table for this party is free"
    ),
    current_user: dict = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service),
) -> ApiResponse:
    """
    Bookable hours and slot start times for a date.

    With party_size, a slot is offered only if a table seating the party is
    free for the whole seating (90 minutes up to two guests, else 120) and
    no private event overlaps it.
    """
    with tracer.start_as_current_span("api.calendar.slots") as span:
        span.set_attribute("date", day.isoformat())
        if party_size is not None:
            span.set_attribute("party_size", party_size)
        try:
            return envelope(await service.get_available_slots(day, party_size))
        except DataApiError as e:
            logger.error(f"Slot lookup failed for {day}: {e}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
        except Exception as e:
            logger.error(f"Slot lookup failed for {day}: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Slot lookup failed",
            )
