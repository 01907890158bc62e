"""
Campaign timing endpoints.

Preview resolves a template's send time without saving anything; the due
endpoint is what the dispatch job calls every dispatch window.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.auth import get_current_user
from ..core.config import Settings, get_settings
from ..core.errors import FormValidationError
from ..core.observability import get_tracer
from ..models.campaign import CampaignTemplate, SendTiming
from ..services.campaign_timing import describe_timing, next_send_time, validate_timing_fields
from ..services.dashboard_service import DashboardService
from .dependencies import ApiResponse, envelope, get_dashboard_service

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

router = APIRouter(prefix="/campaigns", tags=["Campaigns"])


class TimingPreviewRequest(BaseModel):
    """Template plus the context to resolve it in."""

    template: CampaignTemplate
    trigger: Optional[datetime] = Field(
        None, description="Timestamp of the triggering event (relative timing)"
    )
    now: Optional[datetime] = Field(
        None, description="Evaluation time (defaults to the current time)"
    )


class TimingPreview(BaseModel):
    timing: SendTiming
    description: str


@router.post(
    "/timing/preview",
    response_model=ApiResponse,
    summary="Preview a template's send time",
)
async def preview_timing(
    request: TimingPreviewRequest,
    current_user: dict = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
) -> ApiResponse:
    """
    Resolve the template's next send time.

    A template with incomplete timing is not an error here: the result
    carries status 'not_configured' and the reason.
    """
    with tracer.start_as_current_span("api.campaigns.preview") as span:
        timing = next_send_time(
            request.template,
            request.trigger,
            request.now,
            dispatch_window_minutes=settings.dispatch_window_minutes,
            timezone=settings.business_timezone,
        )
        span.set_attribute("timing_status", timing.status.value)
        return envelope(TimingPreview(timing=timing, description=describe_timing(request.template)))


@router.post(
    "/templates/validate",
    response_model=ApiResponse,
    summary="Check a template's required timing fields",
)
async def validate_template(
    template: CampaignTemplate,
    current_user: dict = Depends(get_current_user),
) -> ApiResponse:
    """
    Raises:
        HTTPException: 422 with a message per missing or invalid field
    """
    try:
        validate_timing_fields(template)
    except FormValidationError as e:
        logger.info(f"Template {template.name!r} failed validation: {sorted(e.errors)}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": e.message, "errors": e.errors},
        )
    return envelope({"valid": True, "description": describe_timing(template)})


@router.get(
    "/due",
    response_model=ApiResponse,
    summary="Messages due in the current dispatch window",
)
async def get_due_messages(
    now: Optional[datetime] = Query(None, description="Evaluation time override"),
    current_user: dict = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service),
) -> ApiResponse:
    with tracer.start_as_current_span("api.campaigns.due") as span:
        span.set_attribute("user_id", current_user.get("sub"))
        try:
            return envelope(await service.get_due_campaign_messages(now))
        except Exception as e:
            logger.error(f"Due message evaluation failed: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Due message evaluation failed",
            )
