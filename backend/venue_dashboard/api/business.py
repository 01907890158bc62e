"""
Business dashboard endpoints (admin only).

KPI summary with MRR bridge and retention rates, the monthly chart series,
alert evaluation, cohort retention and the member movement drilldown.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core.auth import require_access_level
from ..core.errors import DataApiError
from ..core.observability import get_tracer
from ..services.dashboard_service import DashboardService
from .dependencies import ApiResponse, envelope, get_business_service

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

router = APIRouter(prefix="/business", tags=["Business"])


def _failure(action: str, e: Exception) -> HTTPException:
    if isinstance(e, DataApiError):
        logger.error(f"{action} failed upstream: {e}")
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"{action} failed",
    )


@router.get(
    "/summary",
    response_model=ApiResponse,
    summary="Business KPI summary for a month",
)
async def get_summary(
    month: Optional[date] = Query(None, description="Any date in the month (default: current month)"),
    current_user: dict = Depends(require_access_level("admin")),
    service: DashboardService = Depends(get_business_service),
) -> ApiResponse:
    """
    MRR, ARR, MRR bridge, member counts, NRR/GRR/churn, ledger rollups and
    display deltas against the prior month.
    """
    with tracer.start_as_current_span("api.business.summary") as span:
        span.set_attribute("user_id", current_user.get("sub"))
        try:
            return envelope(await service.get_business_summary(month))
        except Exception as e:
            raise _failure("Business summary", e)


@router.get(
    "/cohorts",
    response_model=ApiResponse,
    summary="Cohort retention",
)
async def get_cohorts(
    month: Optional[date] = Query(None, description="Last month of the window"),
    months: int = Query(6, ge=1, le=24, description="Number of months in the window"),
    current_user: dict = Depends(require_access_level("admin")),
    service: DashboardService = Depends(get_business_service),
) -> ApiResponse:
    with tracer.start_as_current_span("api.business.cohorts"):
        try:
            return envelope(await service.get_cohorts(month, months))
        except Exception as e:
            raise _failure("Cohort retention", e)


@router.get(
    "/movements",
    response_model=ApiResponse,
    summary="Member MRR movements for a month",
)
async def get_movements(
    month: Optional[date] = Query(None),
    current_user: dict = Depends(require_access_level("admin")),
    service: DashboardService = Depends(get_business_service),
) -> ApiResponse:
    with tracer.start_as_current_span("api.business.movements"):
        try:
            return envelope(await service.get_member_movements(month))
        except Exception as e:
            raise _failure("Member movements", e)


@router.get(
    "/series",
    response_model=ApiResponse,
    summary="Monthly chart series",
)
async def get_series(
    month: Optional[date] = Query(None, description="Last month of the series"),
    months: int = Query(12, ge=1, le=36, description="Number of months"),
    current_user: dict = Depends(require_access_level("admin")),
    service: DashboardService = Depends(get_business_service),
) -> ApiResponse:
    """MRR, member counts, bridge buckets, NRR/GRR and net revenue per month, oldest first."""
    with tracer.start_as_current_span("api.business.series") as span:
        span.set_attribute("months", months)
        try:
            return envelope(await service.get_business_series(month, months))
        except Exception as e:
            raise _failure("Business series", e)


@router.get(
    "/alerts",
    response_model=ApiResponse,
    summary="Evaluate business alert thresholds",
)
async def get_alerts(
    month: Optional[date] = Query(None),
    current_user: dict = Depends(require_access_level("admin")),
    service: DashboardService = Depends(get_business_service),
) -> ApiResponse:
    with tracer.start_as_current_span("api.business.alerts"):
        try:
            return envelope(await service.get_alerts(month))
        except Exception as e:
            raise _failure("Alert evaluation", e)
