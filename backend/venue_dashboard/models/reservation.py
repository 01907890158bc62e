"""
Reservation and table models, and the per-day aggregation record.

Reservations linked to a private event are guests of that event and are kept
out of the regular covers count.
"""

# 'date' field names shadow the datetime types inside class bodies
import datetime as dt
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator


class Reservation(BaseModel):
    """
    Reservation entity model.

    Attributes:
        id: Reservation identifier
        start_time: Seating time
        end_time: When the table is released (optional)
        party_size: Number of guests (non-negative)
        table_id: Assigned table (optional)
        private_event_id: Private event the reservation belongs to (optional)
        created_at: When the reservation was booked (optional)
        member_id: Booking member (optional)
    """

    id: Optional[Union[int, str]] = None
    start_time: dt.datetime = Field(..., description="Seating time")
    end_time: Optional[dt.datetime] = Field(None, description="Table released")
    party_size: int = Field(0, ge=0, description="Number of guests")
    table_id: Optional[Union[int, str]] = None
    private_event_id: Optional[Union[int, str]] = None
    created_at: Optional[dt.datetime] = None
    member_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("party_size", mode="before")
    @classmethod
    def null_party_size(cls, v: Any) -> Any:
        return 0 if v is None else v

    @property
    def is_regular(self) -> bool:
        """True when the reservation is not part of a private event."""
        return self.private_event_id is None


class Table(BaseModel):
    """Dining table from the 'tables' table."""

    id: Union[int, str]
    table_number: Optional[Union[int, str]] = None
    seats: int = Field(0, ge=0)

    @field_validator("seats", mode="before")
    @classmethod
    def null_seats(cls, v: Any) -> Any:
        return 0 if v is None else v


class DaySummary(BaseModel):
    """Covers and status for one calendar date."""

    date: dt.date
    covers: int = Field(0, ge=0, description="Guests on regular reservations")
    private_event_count: int = Field(0, ge=0)
    reservation_count: int = Field(0, ge=0, description="Regular reservations")
    is_open: bool
    estimated_revenue: float = Field(
        0.0,
        description="covers x per-cover placeholder, not real pricing",
    )


class RangeTotals(BaseModel):
    """Totals over a run of DaySummary records."""

    covers: int = 0
    estimated_revenue: float = 0.0
    open_days: int = 0
    private_events: int = 0
    days: int = 0


class CalendarView(BaseModel):
    """Day summaries for a date range plus their totals."""

    start: dt.date
    end: dt.date
    days: list[DaySummary] = Field(default_factory=list)
    totals: RangeTotals = Field(default_factory=RangeTotals)
