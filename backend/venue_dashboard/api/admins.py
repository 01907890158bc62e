"""Admin management endpoints (super admins only)."""

import logging

from fastapi import APIRouter, Depends

from ..core.auth import require_access_level
from ..services.data_api_client import DataApiClient
from .dependencies import ApiResponse, envelope, get_data_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admins", tags=["Admins"])


@router.get("", response_model=ApiResponse, summary="List dashboard admins")
async def list_admins(
    current_user: dict = Depends(require_access_level("super_admin")),
    client: DataApiClient = Depends(get_data_client),
) -> ApiResponse:
    admins = await client.list_admins()
    logger.info(f"Listed {len(admins)} admins (user: {current_user.get('sub')})")
    return envelope(admins)
