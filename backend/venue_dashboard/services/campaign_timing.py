"""
Send-time resolution for campaign and reminder templates.

Given a template's timing configuration, the timestamp of the event that
triggered it and the current time, computes the concrete target send time and
whether the dispatch job running now should send it.

Calendar arithmetic happens on the venue's wall clock: aware inputs are
converted to the business timezone first and the target is returned aware in
that timezone. Naive inputs are taken as local and stay naive. Relative
minute and hour offsets are elapsed time, so they stay exact across DST
changes.

Weekday numbers for recurring templates use 0 = Monday ... 6 = Sunday.
"""

import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Optional, Union

from dateutil.relativedelta import relativedelta
from pydantic import ValidationError

from ..core.config import get_settings
from ..core.errors import FormValidationError
from ..models.campaign import (
    CampaignTemplate,
    MonthlyDayKind,
    MonthlyOrdinal,
    Proximity,
    RecurringType,
    RelativeUnit,
    SendTiming,
    TimingStatus,
    TimingType,
)
from ..utils.timezone_utils import (
    from_wall_time,
    get_business_timezone,
    now_in_timezone,
    parse_clock_time,
    parse_datetime,
    to_wall_time,
)

logger = logging.getLogger(__name__)

DEFAULT_RECURRING_TIME = "10:00"

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_ORDINAL_INDEX = {
    MonthlyOrdinal.FIRST: 1,
    MonthlyOrdinal.SECOND: 2,
    MonthlyOrdinal.THIRD: 3,
    MonthlyOrdinal.FOURTH: 4,
}

_ELAPSED_UNITS = (RelativeUnit.MINUTE, RelativeUnit.HOUR)


class TimingNotConfigured(Exception):
    """Internal signal: the template lacks a field its timing type needs."""


def _clock(value: str, field: str) -> time:
    try:
        return parse_clock_time(value)
    except (TypeError, ValueError):
        raise TimingNotConfigured(f"{field} is not a valid time of day: {value!r}")


def _specific_target(
    template: CampaignTemplate, trigger: Optional[datetime]
) -> datetime:
    if not template.specific_time:
        raise TimingNotConfigured("specific_time is not set")
    send_at = _clock(template.specific_time, "specific_time")

    day = template.specific_date or (trigger.date() if trigger else None)
    if day is None:
        raise TimingNotConfigured("specific_date is not set and no trigger timestamp was given")
    return datetime.combine(day, send_at)


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def monthly_occurrence(year: int, month: int, template: CampaignTemplate) -> date:
    """
    Date of a monthly template's occurrence in the given month.

    "day": day-of-month recurring_monthly_value, clamped to the month's length;
    with recurring_monthly_type "last" it is the month's last day.
    "weekday": the first/second/third/fourth/last occurrence of weekday
    recurring_monthly_value.
    """
    kind = template.recurring_monthly_day
    ordinal = template.recurring_monthly_type
    value = template.recurring_monthly_value
    last_day = _days_in_month(year, month)

    if kind is None:
        raise TimingNotConfigured("recurring_monthly_day is not set")

    if kind == MonthlyDayKind.DAY:
        if ordinal == MonthlyOrdinal.LAST:
            return date(year, month, last_day)
        if value is None or not 1 <= value <= 31:
            raise TimingNotConfigured("recurring_monthly_value must be a day of month (1-31)")
        return date(year, month, min(value, last_day))

    if ordinal is None:
        raise TimingNotConfigured("recurring_monthly_type is not set")
    if value is None or not 0 <= value <= 6:
        raise TimingNotConfigured("recurring_monthly_value must be a weekday (0-6)")

    if ordinal == MonthlyOrdinal.LAST:
        last = date(year, month, last_day)
        return last - timedelta(days=(last.weekday() - value) % 7)

    first = date(year, month, 1)
    first_match = first + timedelta(days=(value - first.weekday()) % 7)
    return first_match + timedelta(weeks=_ORDINAL_INDEX[ordinal] - 1)


def _parse_yearly_date(value: Optional[str]) -> tuple[int, int]:
    if not value:
        raise TimingNotConfigured("recurring_yearly_date is not set")
    parts = value.strip().split("-")
    if len(parts) == 3:
        parts = parts[1:]
    try:
        month, day = (int(p) for p in parts)
        # Leap year so that 02-29 is accepted
        date(2000, month, day)
    except ValueError:
        raise TimingNotConfigured(f"recurring_yearly_date is not a valid MM-DD date: {value!r}")
    return month, day


def _recurring_target(template: CampaignTemplate, earliest: datetime) -> datetime:
    """First occurrence of the cadence at or after `earliest`."""
    if template.recurring_type is None:
        raise TimingNotConfigured("recurring_type is not set")
    send_at = _clock(template.recurring_time or DEFAULT_RECURRING_TIME, "recurring_time")
    start_day = earliest.date()

    if template.recurring_type == RecurringType.DAILY:
        candidate = datetime.combine(start_day, send_at)
        if candidate < earliest:
            candidate += timedelta(days=1)
        return candidate

    if template.recurring_type == RecurringType.WEEKLY:
        weekdays = set(template.recurring_weekdays or [])
        if not weekdays:
            raise TimingNotConfigured("recurring_weekdays is empty")
        if any(not 0 <= d <= 6 for d in weekdays):
            raise TimingNotConfigured("recurring_weekdays must be in 0-6")
        for offset in range(8):
            day = start_day + timedelta(days=offset)
            candidate = datetime.combine(day, send_at)
            if day.weekday() in weekdays and candidate >= earliest:
                return candidate

    if template.recurring_type == RecurringType.MONTHLY:
        for offset in range(13):
            month_start = start_day.replace(day=1) + relativedelta(months=offset)
            day = monthly_occurrence(month_start.year, month_start.month, template)
            candidate = datetime.combine(day, send_at)
            if candidate >= earliest:
                return candidate

    if template.recurring_type == RecurringType.YEARLY:
        month, day_of_month = _parse_yearly_date(template.recurring_yearly_date)
        for year in range(start_day.year, start_day.year + 2):
            day = date(year, month, min(day_of_month, _days_in_month(year, month)))
            candidate = datetime.combine(day, send_at)
            if candidate >= earliest:
                return candidate

    raise TimingNotConfigured(f"no occurrence found for recurring_type {template.recurring_type.value}")


def _relative_target(
    template: CampaignTemplate,
    trigger: Optional[datetime],
    timezone: Optional[str] = None,
) -> datetime:
    """
    Trigger shifted by the template's offset.

    Minute and hour offsets are elapsed time: they are applied to the aware
    trigger (a naive trigger is read as venue wall-clock time) and the result
    is returned aware. Day and longer offsets move the wall-clock date and
    keep its time of day, and are returned naive.
    """
    if trigger is None:
        raise TimingNotConfigured("relative timing needs a trigger timestamp")
    if template.relative_quantity is None:
        raise TimingNotConfigured("relative_quantity is not set")
    if template.relative_unit is None:
        raise TimingNotConfigured("relative_unit is not set")

    sign = -1 if (template.relative_proximity or Proximity.AFTER) == Proximity.BEFORE else 1
    unit = template.relative_unit
    quantity = sign * template.relative_quantity

    if unit in _ELAPSED_UNITS and not template.relative_time:
        aware = trigger if trigger.tzinfo is not None else from_wall_time(trigger, timezone)
        shifted = aware + timedelta(**{f"{unit.value}s": quantity})
        return shifted.astimezone(get_business_timezone(timezone))

    target = to_wall_time(trigger, timezone) + relativedelta(**{f"{unit.value}s": quantity})
    if template.relative_time:
        target = datetime.combine(target.date(), _clock(template.relative_time, "relative_time"))
    return target


def next_send_time(
    template: Union[CampaignTemplate, dict[str, Any]],
    trigger: Optional[Union[datetime, str]] = None,
    now: Optional[datetime] = None,
    dispatch_window_minutes: Optional[int] = None,
    timezone: Optional[str] = None,
) -> SendTiming:
    """
    Resolve the target send time of a template.

    Recurring templates resolve to the next occurrence at or after now; a slot
    that passed less than one dispatch window ago is still the current one so
    a dispatch run landing just after it still sends it.

    Never raises for incomplete templates: the result is marked
    NOT_CONFIGURED and carries the reason. Callers must check it before
    scheduling.

    Args:
        template: Template (model or raw row)
        trigger: Timestamp of the triggering event (needed for relative timing)
        now: Evaluation time (defaults to the current time in the business timezone)
        dispatch_window_minutes: Tolerance for "due now" (settings default, 10)
        timezone: Business timezone (settings default)

    Returns:
        SendTiming with target_send_time, should_send_now and time_diff_minutes
    """
    if not isinstance(template, CampaignTemplate):
        try:
            template = CampaignTemplate.model_validate(template)
        except ValidationError as e:
            return SendTiming.not_configured(f"invalid template: {e.errors()[0]['msg']}")

    window = dispatch_window_minutes
    if window is None:
        window = get_settings().dispatch_window_minutes
    if now is None:
        now = now_in_timezone(timezone)
    now_wall = to_wall_time(now, timezone)

    try:
        trigger_at = trigger_wall = None
        if trigger is not None:
            try:
                trigger_at = parse_datetime(trigger)
                trigger_wall = to_wall_time(trigger_at, timezone)
            except (TypeError, ValueError, OverflowError):
                raise TimingNotConfigured(f"trigger timestamp is invalid: {trigger!r}")

        if template.timing_type == TimingType.SPECIFIC_TIME:
            target = _specific_target(template, trigger_wall)
        elif template.timing_type == TimingType.RECURRING:
            target = _recurring_target(template, now_wall - timedelta(minutes=window))
        elif template.timing_type == TimingType.RELATIVE:
            target = _relative_target(template, trigger_at, timezone)
        else:
            raise TimingNotConfigured("timing_type is not set")
    except TimingNotConfigured as e:
        logger.info(f"Template {template.id or template.name!r}: timing not configured ({e})")
        return SendTiming.not_configured(str(e))

    if target.tzinfo is None and now.tzinfo is not None:
        target = from_wall_time(target, timezone)
    elif target.tzinfo is not None and now.tzinfo is None:
        target = to_wall_time(target, timezone)
    diff_minutes = (target - now).total_seconds() / 60

    return SendTiming(
        status=TimingStatus.SCHEDULED,
        target_send_time=target,
        should_send_now=abs(diff_minutes) <= window,
        time_diff_minutes=round(diff_minutes, 2),
    )


def _check_clock(errors: dict[str, str], template: CampaignTemplate, field: str, required: bool = False):
    value = getattr(template, field)
    if not value:
        if required:
            errors[field] = "Time is required"
        return
    try:
        parse_clock_time(value)
    except (TypeError, ValueError):
        errors[field] = "Time must be HH:MM"


def validate_timing_fields(template: CampaignTemplate) -> None:
    """
    Required-field check run before a template is saved.

    Raises:
        FormValidationError: With a message per missing or invalid field
    """
    errors: dict[str, str] = {}
    if not template.name.strip():
        errors["name"] = "Name is required"

    if template.timing_type is None:
        errors["timing_type"] = "Choose when the message is sent"
    elif template.timing_type == TimingType.SPECIFIC_TIME:
        _check_clock(errors, template, "specific_time", required=True)
    elif template.timing_type == TimingType.RELATIVE:
        if template.relative_quantity is None:
            errors["relative_quantity"] = "Quantity is required"
        if template.relative_unit is None:
            errors["relative_unit"] = "Unit is required"
        _check_clock(errors, template, "relative_time")
    else:
        _check_clock(errors, template, "recurring_time")
        cadence = template.recurring_type
        if cadence is None:
            errors["recurring_type"] = "Choose how often the message repeats"
        elif cadence == RecurringType.WEEKLY and not template.recurring_weekdays:
            errors["recurring_weekdays"] = "Pick at least one weekday"
        elif cadence == RecurringType.MONTHLY:
            try:
                monthly_occurrence(2024, 1, template)
            except TimingNotConfigured as e:
                errors["recurring_monthly_value"] = str(e)
        elif cadence == RecurringType.YEARLY:
            try:
                _parse_yearly_date(template.recurring_yearly_date)
            except TimingNotConfigured as e:
                errors["recurring_yearly_date"] = str(e)

    if errors:
        raise FormValidationError(errors)


def describe_timing(template: CampaignTemplate) -> str:
    """Human-readable summary of a template's timing."""
    if template.timing_type == TimingType.SPECIFIC_TIME and template.specific_time:
        if template.specific_date:
            return f"On {template.specific_date.isoformat()} at {template.specific_time}"
        return f"At {template.specific_time} on the trigger date"

    if template.timing_type == TimingType.RECURRING and template.recurring_type:
        at = template.recurring_time or DEFAULT_RECURRING_TIME
        cadence = template.recurring_type
        if cadence == RecurringType.DAILY:
            return f"Daily at {at}"
        if cadence == RecurringType.WEEKLY:
            days = ", ".join(
                WEEKDAY_NAMES[d] for d in sorted(template.recurring_weekdays or []) if 0 <= d <= 6
            )
            return f"Weekly on {days or 'selected days'} at {at}"
        if cadence == RecurringType.MONTHLY:
            ordinal = template.recurring_monthly_type.value if template.recurring_monthly_type else ""
            value = template.recurring_monthly_value
            if template.recurring_monthly_day == MonthlyDayKind.WEEKDAY and value is not None and 0 <= value <= 6:
                return f"Monthly on the {ordinal} {WEEKDAY_NAMES[value]} at {at}"
            if ordinal == MonthlyOrdinal.LAST.value:
                return f"Monthly on the last day at {at}"
            return f"Monthly on day {value} at {at}"
        return f"Yearly on {template.recurring_yearly_date} at {at}"

    if template.timing_type == TimingType.RELATIVE and template.relative_unit:
        proximity = (template.relative_proximity or Proximity.AFTER).value
        text = f"{template.relative_quantity} {template.relative_unit.value}(s) {proximity} trigger"
        if template.relative_time:
            text += f" at {template.relative_time}"
        return text

    return "Timing not configured"
