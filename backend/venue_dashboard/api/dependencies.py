"""
Shared router dependencies and the response envelope.

The data API client is built per request from the caller's own session token
and closed when the request finishes.
"""

from typing import Any, AsyncIterator

from fastapi import Depends
from pydantic import BaseModel, Field

from ..core.auth import get_bearer_token
from ..core.config import Settings, get_settings
from ..services.dashboard_service import DashboardService
from ..services.data_api_client import DataApiClient


class ApiResponse(BaseModel):
    """Standard {success, data} response envelope."""

    success: bool = True
    data: Any = Field(None, description="Response payload")


def envelope(data: Any) -> ApiResponse:
    return ApiResponse(success=True, data=data)


async def get_data_client(
    token: str = Depends(get_bearer_token),
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[DataApiClient]:
    """Data API client acting with the caller's session token."""
    client = DataApiClient.from_settings(settings, access_token=token)
    try:
        yield client
    finally:
        await client.aclose()


async def get_snapshot_client(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[DataApiClient]:
    """Service-key client for the member snapshot table."""
    client = DataApiClient.privileged(settings)
    try:
        yield client
    finally:
        await client.aclose()


def get_dashboard_service(
    client: DataApiClient = Depends(get_data_client),
    settings: Settings = Depends(get_settings),
) -> DashboardService:
    return DashboardService(client, settings)


def get_business_service(
    client: DataApiClient = Depends(get_data_client),
    snapshot_client: DataApiClient = Depends(get_snapshot_client),
    settings: Settings = Depends(get_settings),
) -> DashboardService:
    """Dashboard service that reads and stores snapshots with the service key."""
    return DashboardService(client, settings, snapshot_client=snapshot_client)
