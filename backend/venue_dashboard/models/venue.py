"""
Venue hours and private event models.

Mapped to the hosted backend's 'venue_hours' and 'private_events' tables.
Rows are read-only inputs to the day-status resolver.
"""

# 'date' field names shadow the datetime types inside class bodies
import datetime as dt
import json
from enum import Enum
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


class VenueHourType(str, Enum):
    """Kind of venue hours rule."""

    BASE = "base"
    EXCEPTIONAL_OPEN = "exceptional_open"
    EXCEPTIONAL_CLOSURE = "exceptional_closure"


class TimeRange(BaseModel):
    """
    Time-of-day range within a single day.

    Older rows store the bounds as 'start'/'end'; both spellings are accepted.
    """

    start_time: dt.time = Field(
        ...,
        validation_alias=AliasChoices("start_time", "start"),
        description="Range start (inclusive)",
    )
    end_time: dt.time = Field(
        ...,
        validation_alias=AliasChoices("end_time", "end"),
        description="Range end (exclusive)",
    )

    @model_validator(mode="after")
    def clip_past_midnight(self) -> "TimeRange":
        """Ranges that run past midnight are clipped to the end of the day."""
        if self.end_time <= self.start_time:
            self.end_time = dt.time.max
        return self


class VenueHourRule(BaseModel):
    """
    Venue hours rule.

    Attributes:
        id: Row identifier (optional)
        type: base (weekly) rule or exceptional date override
        day_of_week: Weekday for base rules (0 = Sunday ... 6 = Saturday)
        date: Calendar date for exceptional rules
        full_day: Whether the rule covers the whole day
        time_ranges: Explicit time ranges (open hours or closed carve-outs)
        created_at: Row creation timestamp, used to break ties between duplicates
    """

    id: Optional[Union[int, str]] = None
    type: VenueHourType = Field(..., description="Rule kind")
    day_of_week: Optional[int] = Field(
        None,
        ge=0,
        le=6,
        description="Weekday for base rules, 0 = Sunday",
    )
    date: Optional[dt.date] = Field(None, description="Date for exceptional rules")
    full_day: bool = Field(False, description="Rule covers the whole day")
    time_ranges: Optional[list[TimeRange]] = Field(
        None,
        description="Explicit time ranges",
    )
    created_at: Optional[dt.datetime] = None

    @field_validator("time_ranges", mode="before")
    @classmethod
    def parse_time_ranges(cls, v: Any) -> Any:
        """Accept time_ranges stored as a JSON string."""
        if isinstance(v, str):
            v = json.loads(v) if v.strip() else None
        return v

    @field_validator("full_day", mode="before")
    @classmethod
    def null_full_day(cls, v: Any) -> Any:
        return False if v is None else v

    @model_validator(mode="after")
    def validate_shape(self) -> "VenueHourRule":
        """Base rules are keyed by weekday, exceptional rules by date."""
        if self.type == VenueHourType.BASE:
            if self.day_of_week is None or self.date is not None:
                raise ValueError("base rules need day_of_week and no date")
        elif self.date is None or self.day_of_week is not None:
            raise ValueError("exceptional rules need date and no day_of_week")
        return self

    @property
    def is_exceptional(self) -> bool:
        return self.type != VenueHourType.BASE

    @property
    def closes_full_day(self) -> bool:
        """An exceptional closure without explicit ranges closes the whole day."""
        return self.type == VenueHourType.EXCEPTIONAL_CLOSURE and (
            self.full_day or not self.time_ranges
        )

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "type": "base",
                "day_of_week": 5,
                "full_day": False,
                "time_ranges": [{"start_time": "18:00", "end_time": "23:00"}],
            }
        }


class PrivateEvent(BaseModel):
    """
    Private event booked at the venue.

    A full-day private event closes its date to ordinary reservations;
    a partial one only blocks its own time span.
    """

    id: Optional[Union[int, str]] = None
    title: str = ""
    start_time: dt.datetime = Field(..., description="Event start")
    end_time: Optional[dt.datetime] = Field(None, description="Event end")
    full_day: bool = False
    status: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def null_title(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("full_day", mode="before")
    @classmethod
    def null_full_day(cls, v: Any) -> Any:
        return False if v is None else v


class DaySlots(BaseModel):
    """
    Bookable hours and reservation slot start times for one date.

    With a party size, slots are limited to those where a table seating the
    party is free for the whole slot duration.
    """

    date: dt.date
    is_open: bool
    party_size: Optional[int] = None
    slot_duration_minutes: Optional[int] = None
    time_ranges: list[TimeRange] = Field(default_factory=list)
    slots: list[dt.time] = Field(default_factory=list)
