"""
Services package for dashboard business logic and the data API boundary.

- venue_hours: day-status resolver and bookable hours
- reservation_aggregator: per-day covers and event counts
- campaign_timing: template send-time resolution
- business_metrics: MRR bridge, retention rates, ledger rollups
- data_api_client: async client for the hosted data API
- dashboard_service: concurrent fetch and aggregation per view
"""

from .venue_hours import is_day_open, open_time_ranges, available_time_slots
from .reservation_aggregator import aggregate_day, aggregate_range
from .campaign_timing import next_send_time, describe_timing
from .business_metrics import compute_business_summary
from .data_api_client import DataApiClient, normalize_rows
from .dashboard_service import DashboardService

__all__ = [
    "is_day_open",
    "open_time_ranges",
    "available_time_slots",
    "aggregate_day",
    "aggregate_range",
    "next_send_time",
    "describe_timing",
    "compute_business_summary",
    "DataApiClient",
    "normalize_rows",
    "DashboardService",
]
