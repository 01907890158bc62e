"""
Campaign template model (timing subset) and send-timing result.

Mapped to the hosted backend's 'campaign_templates' table. Exactly one of the
three timing shapes applies to a template, selected by timing_type.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator


class TimingType(str, Enum):
    """How the send time of a template is defined."""

    SPECIFIC_TIME = "specific_time"
    RECURRING = "recurring"
    RELATIVE = "relative"


class RecurringType(str, Enum):
    """Recurring cadence."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class MonthlyOrdinal(str, Enum):
    """Which occurrence within the month."""

    FIRST = "first"
    SECOND = "second"
    THIRD = "third"
    FOURTH = "fourth"
    LAST = "last"


class MonthlyDayKind(str, Enum):
    """Whether a monthly value is a day of month or a weekday."""

    DAY = "day"
    WEEKDAY = "weekday"


class RelativeUnit(str, Enum):
    """Offset unit for relative timing."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class Proximity(str, Enum):
    """Offset direction relative to the trigger."""

    BEFORE = "before"
    AFTER = "after"


# Spellings found in older template rows
_UNIT_ALIASES = {
    "min": "minute",
    "mins": "minute",
    "minutes": "minute",
    "hr": "hour",
    "hrs": "hour",
    "hours": "hour",
    "days": "day",
    "weeks": "week",
    "months": "month",
    "years": "year",
}


class CampaignTemplate(BaseModel):
    """
    Campaign / reminder template.

    Attributes:
        id: Template identifier
        name: Display name
        trigger_type: Event the template reacts to (member_signup, reservation_time, ...)
        is_active: Inactive templates are never dispatched
        timing_type: Selects which group of timing fields applies
    """

    id: Optional[Union[int, str]] = None
    name: str = ""
    trigger_type: Optional[str] = None
    is_active: bool = True

    timing_type: Optional[TimingType] = None

    # specific_time
    specific_time: Optional[str] = Field(None, description="HH:MM")
    specific_date: Optional[date] = None

    # recurring
    recurring_type: Optional[RecurringType] = None
    recurring_time: Optional[str] = Field(None, description="HH:MM")
    recurring_weekdays: Optional[list[int]] = Field(
        None,
        description="Weekdays, 0 = Monday ... 6 = Sunday",
    )
    recurring_monthly_type: Optional[MonthlyOrdinal] = None
    recurring_monthly_day: Optional[MonthlyDayKind] = None
    recurring_monthly_value: Optional[int] = None
    recurring_yearly_date: Optional[str] = Field(None, description="MM-DD or YYYY-MM-DD")

    # relative
    relative_quantity: Optional[int] = Field(None, ge=0)
    relative_unit: Optional[RelativeUnit] = None
    relative_proximity: Optional[Proximity] = None
    relative_time: Optional[str] = Field(None, description="HH:MM")

    @field_validator("relative_unit", mode="before")
    @classmethod
    def normalize_unit(cls, v: Any) -> Any:
        if isinstance(v, str):
            key = v.strip().lower()
            return _UNIT_ALIASES.get(key, key)
        return v

    @field_validator("name", mode="before")
    @classmethod
    def null_name(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("is_active", mode="before")
    @classmethod
    def null_is_active(cls, v: Any) -> Any:
        return True if v is None else v

    @field_validator(
        "timing_type",
        "recurring_type",
        "recurring_monthly_type",
        "recurring_monthly_day",
        "relative_proximity",
        "specific_time",
        "recurring_time",
        "relative_time",
        "recurring_yearly_date",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Form submissions store unset selects as empty strings."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "name": "Weekly newsletter",
                "timing_type": "recurring",
                "recurring_type": "weekly",
                "recurring_weekdays": [1, 3],
                "recurring_time": "10:00",
            }
        }


class TimingStatus(str, Enum):
    """Outcome of send-time resolution."""

    SCHEDULED = "scheduled"
    NOT_CONFIGURED = "not_configured"


class SendTiming(BaseModel):
    """
    Resolved send time for a template.

    Callers must check status (or is_configured) before scheduling:
    a template whose timing fields are incomplete resolves to NOT_CONFIGURED
    with no target time.
    """

    status: TimingStatus
    target_send_time: Optional[datetime] = None
    should_send_now: bool = False
    time_diff_minutes: Optional[float] = Field(
        None,
        description="target - now in minutes; negative when the target has passed",
    )
    reason: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return self.status == TimingStatus.SCHEDULED

    @classmethod
    def not_configured(cls, reason: str) -> "SendTiming":
        return cls(status=TimingStatus.NOT_CONFIGURED, reason=reason)


class TriggerType(str, Enum):
    """Event a template reacts to."""

    MEMBER_SIGNUP = "member_signup"
    RESERVATION_TIME = "reservation_time"
    RESERVATION_CREATED = "reservation_created"
    BIRTHDAY = "birthday"


class DueCampaignMessage(BaseModel):
    """A template/recipient pair whose send time falls in the current dispatch window."""

    template_id: Optional[Union[int, str]] = None
    template_name: str = ""
    trigger_type: Optional[str] = None
    recipient_id: Optional[str] = None
    reservation_id: Optional[Union[int, str]] = None
    target_send_time: datetime
    time_diff_minutes: float
