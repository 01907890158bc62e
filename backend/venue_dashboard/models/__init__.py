"""
Data models for the venue dashboard.

Pydantic models for the rows read from the data API (venue hours, private
events, reservations, campaign templates, ledger, member snapshots) and for
the aggregation results the API returns.
"""

from .venue import DaySlots, PrivateEvent, TimeRange, VenueHourRule, VenueHourType
from .reservation import CalendarView, DaySummary, RangeTotals, Reservation, Table
from .campaign import (
    CampaignTemplate,
    DueCampaignMessage,
    Proximity,
    RecurringType,
    RelativeUnit,
    SendTiming,
    TimingStatus,
    TimingType,
    TriggerType,
)
from .business import (
    AlertStatus,
    BusinessSeriesPoint,
    BusinessSummary,
    DashboardAlert,
    CohortRow,
    LedgerEntry,
    LedgerSummary,
    Member,
    MemberCounts,
    MemberMovement,
    MemberSnapshot,
    MetricDelta,
    MrrBridge,
    RetentionRates,
)

__all__ = [
    "DaySlots",
    "PrivateEvent",
    "TimeRange",
    "VenueHourRule",
    "VenueHourType",
    "CalendarView",
    "DaySummary",
    "RangeTotals",
    "Reservation",
    "Table",
    "CampaignTemplate",
    "DueCampaignMessage",
    "Proximity",
    "RecurringType",
    "RelativeUnit",
    "SendTiming",
    "TimingStatus",
    "TimingType",
    "TriggerType",
    "AlertStatus",
    "BusinessSeriesPoint",
    "BusinessSummary",
    "DashboardAlert",
    "CohortRow",
    "LedgerEntry",
    "LedgerSummary",
    "Member",
    "MemberCounts",
    "MemberMovement",
    "MemberSnapshot",
    "MetricDelta",
    "MrrBridge",
    "RetentionRates",
]
