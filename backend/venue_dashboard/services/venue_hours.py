"""
Venue day-status resolver and bookable-hours calculation.

Decides whether the venue takes ordinary reservations on a date from three
collections already fetched from the data API: weekly base hours, exceptional
date overrides and private events. Every calendar view goes through these
functions so the open/closed rules live in one place.

Resolution order (first match wins):
1. A full-day private event starting on the date closes it.
2. An exceptional closure that is full-day (or has no time ranges) closes it.
3. An exceptional opening opens it.
4. A base rule for the date's weekday opens it.
5. Otherwise the date is closed.

Partial-day exceptional closures and partial-day private events never close a
whole date; they are carved out of the bookable hours by open_time_ranges.
For a given party size, bookable_slots further keeps only the slots where a
table seating the party is free for the whole seating.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional, Sequence, Union

import pytz

from ..core.config import get_settings
from ..models.reservation import Reservation, Table
from ..models.venue import PrivateEvent, TimeRange, VenueHourRule, VenueHourType
from ..utils.timezone_utils import DateLike, coerce_date, local_date, parse_clock_time, to_wall_time
from ..utils.rows import coerce_models

logger = logging.getLogger(__name__)

RuleLike = Union[VenueHourRule, dict[str, Any]]
EventLike = Union[PrivateEvent, dict[str, Any]]

Span = tuple[time, time]

_END_OF_DAY = time.max

SMALL_PARTY_MAX = 2
SMALL_PARTY_MINUTES = 90
LARGE_PARTY_MINUTES = 120


def sunday_based_weekday(day: date) -> int:
    """Weekday number as stored on base rules (0 = Sunday ... 6 = Saturday)."""
    return (day.weekday() + 1) % 7


def _created_rank(rule: VenueHourRule) -> float:
    if rule.created_at is None:
        return float("-inf")
    created = rule.created_at
    if created.tzinfo is None:
        created = pytz.utc.localize(created)
    return created.timestamp()


def select_exceptional_rule(
    day: date, exceptional_rules: Iterable[RuleLike]
) -> Optional[VenueHourRule]:
    """
    Pick the exceptional rule that governs a date.

    Well-formed data has at most one per date. For duplicates the most recently
    created rule wins; rules without created_at rank oldest, and on equal rank a
    closure beats an opening.
    """
    candidates = [
        rule
        for rule in coerce_models(VenueHourRule, exceptional_rules)
        if rule.is_exceptional and rule.date == day
    ]
    if not candidates:
        return None
    if len(candidates) > 1:
        logger.warning(f"{len(candidates)} exceptional rules found for {day}; using most recent")
    return max(
        candidates,
        key=lambda r: (_created_rank(r), r.type == VenueHourType.EXCEPTIONAL_CLOSURE),
    )


def _has_full_day_event(day: date, events: Sequence[PrivateEvent], timezone: Optional[str]) -> bool:
    return any(
        event.full_day and local_date(event.start_time, timezone) == day
        for event in events
    )


def is_day_open(
    day: DateLike,
    base_rules: Iterable[RuleLike],
    exceptional_rules: Iterable[RuleLike],
    private_events: Iterable[EventLike],
    timezone: Optional[str] = None,
) -> bool:
    """
    Decide whether the venue is open for ordinary reservations on a date.

    Never raises: malformed input is logged and treated as closed.

    Args:
        day: Date, datetime or ISO date string
        base_rules: Weekly 'base' rules
        exceptional_rules: Date-specific openings and closures
        private_events: Private events around the date
        timezone: Business timezone used to read event dates (settings default)

    Returns:
        True when the venue is open on the date
    """
    try:
        target = coerce_date(day)
        events = coerce_models(PrivateEvent, private_events)

        if _has_full_day_event(target, events, timezone):
            return False

        exceptional = select_exceptional_rule(target, exceptional_rules)
        if exceptional is not None:
            if exceptional.closes_full_day:
                return False
            if exceptional.type == VenueHourType.EXCEPTIONAL_OPEN:
                return True

        weekday = sunday_based_weekday(target)
        return any(
            rule.type == VenueHourType.BASE and rule.day_of_week == weekday
            for rule in coerce_models(VenueHourRule, base_rules)
        )
    except Exception as e:
        logger.warning(f"Could not resolve day status for {day!r}, treating as closed: {e}")
        return False


def _merge(ranges: list[Span]) -> list[Span]:
    merged: list[Span] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _subtract(ranges: list[Span], blocked: Span) -> list[Span]:
    block_start, block_end = blocked
    remaining = []
    for start, end in ranges:
        if block_end <= start or block_start >= end:
            remaining.append((start, end))
            continue
        if start < block_start:
            remaining.append((start, block_start))
        if block_end < end:
            remaining.append((block_end, end))
    return remaining


def _event_window(event: PrivateEvent, timezone: Optional[str]) -> tuple[datetime, datetime]:
    """
    Wall-clock span blocked by an event.

    An event without end_time runs to the end of its start date; a full-day
    event blocks whole dates.
    """
    start = to_wall_time(event.start_time, timezone)
    end = to_wall_time(event.end_time, timezone) if event.end_time else None
    if event.full_day:
        last = end.date() if end is not None and end.date() > start.date() else start.date()
        return datetime.combine(start.date(), time.min), datetime.combine(last, _END_OF_DAY)
    if end is None or end <= start:
        end = datetime.combine(start.date(), _END_OF_DAY)
    return start, end


def _event_span(event: PrivateEvent, day: date, timezone: Optional[str]) -> Optional[Span]:
    """Part of a partial-day event's span that falls on the given date."""
    start, end = _event_window(event, timezone)
    if start.date() > day or end.date() < day:
        return None
    span_start = start.time() if start.date() == day else time.min
    span_end = end.time() if end.date() == day else _END_OF_DAY
    if span_end <= span_start:
        return None
    return span_start, span_end


def _default_ranges() -> list[Span]:
    settings = get_settings()
    return [(
        parse_clock_time(settings.default_service_start),
        parse_clock_time(settings.default_service_end),
    )]


def open_time_ranges(
    day: DateLike,
    base_rules: Iterable[RuleLike],
    exceptional_rules: Iterable[RuleLike],
    private_events: Iterable[EventLike],
    timezone: Optional[str] = None,
) -> list[TimeRange]:
    """
    Bookable time ranges for a date.

    Hours come from the exceptional opening if it lists ranges, else from the
    base rules for the weekday, else from the configured default service hours.
    Partial closures and partial-day private events are removed from them.
    A closed date has no ranges.
    """
    base = coerce_models(VenueHourRule, base_rules)
    exceptional_list = coerce_models(VenueHourRule, exceptional_rules)
    events = coerce_models(PrivateEvent, private_events)

    if not is_day_open(day, base, exceptional_list, events, timezone=timezone):
        return []

    target = coerce_date(day)
    exceptional = select_exceptional_rule(target, exceptional_list)

    ranges: list[Span] = []
    if exceptional and exceptional.type == VenueHourType.EXCEPTIONAL_OPEN and exceptional.time_ranges:
        ranges = [(r.start_time, r.end_time) for r in exceptional.time_ranges]
    else:
        weekday = sunday_based_weekday(target)
        for rule in base:
            if rule.type == VenueHourType.BASE and rule.day_of_week == weekday:
                ranges.extend((r.start_time, r.end_time) for r in rule.time_ranges or [])
    if not ranges:
        ranges = _default_ranges()
    ranges = _merge(ranges)

    # Partial closure carve-outs
    if exceptional and exceptional.type == VenueHourType.EXCEPTIONAL_CLOSURE:
        for closed in exceptional.time_ranges or []:
            ranges = _subtract(ranges, (closed.start_time, closed.end_time))

    for event in events:
        if event.full_day:
            continue
        span = _event_span(event, target, timezone)
        if span:
            ranges = _subtract(ranges, span)

    return [TimeRange(start_time=start, end_time=end) for start, end in ranges]


def generate_time_slots(ranges: Iterable[TimeRange], interval_minutes: int = 15) -> list[time]:
    """Slot start times every interval_minutes, start-inclusive, end-exclusive."""
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")

    step = timedelta(minutes=interval_minutes)
    anchor = date(2000, 1, 1)
    slots = []
    for time_range in ranges:
        current = datetime.combine(anchor, time_range.start_time)
        end = datetime.combine(anchor, time_range.end_time)
        while current < end:
            slots.append(current.time())
            current += step
    return sorted(set(slots))


def slot_duration_minutes(party_size: int) -> int:
    """Table time held for a party: 90 minutes up to two guests, else 120."""
    return SMALL_PARTY_MINUTES if party_size <= SMALL_PARTY_MAX else LARGE_PARTY_MINUTES


def _reservation_window(reservation: Reservation, timezone: Optional[str]) -> tuple[datetime, datetime]:
    start = to_wall_time(reservation.start_time, timezone)
    if reservation.end_time is not None:
        end = to_wall_time(reservation.end_time, timezone)
        if end > start:
            return start, end
    return start, start + timedelta(minutes=slot_duration_minutes(reservation.party_size))


def bookable_slots(
    day: DateLike,
    slots: Iterable[time],
    party_size: int,
    tables: Iterable[Union[Table, dict[str, Any]]],
    reservations: Iterable[Union[Reservation, dict[str, Any]]],
    private_events: Iterable[EventLike],
    timezone: Optional[str] = None,
) -> list[time]:
    """
    Slot start times at which a party can be seated.

    A slot is kept when its whole seating (see slot_duration_minutes) misses
    every private event and at least one table with enough seats has no
    overlapping reservation. Reservations without a table are not matched to
    any table; those without end_time hold their table for their own
    party's seating duration.

    Args:
        day: Date of the slots
        slots: Candidate start times (usually from generate_time_slots)
        party_size: Guests in the party (at least 1)
        tables: All tables; those with fewer seats than party_size are ignored
        reservations: Reservations around the date
        private_events: Private events around the date
        timezone: Business timezone (settings default)

    Raises:
        ValueError: If party_size is not positive
    """
    if party_size <= 0:
        raise ValueError("party_size must be positive")

    target = coerce_date(day)
    duration = timedelta(minutes=slot_duration_minutes(party_size))
    fitting = [t for t in coerce_models(Table, tables) if t.seats >= party_size]
    if not fitting:
        logger.info(f"No table seats a party of {party_size}")
        return []

    held: dict[str, list[tuple[datetime, datetime]]] = {}
    for reservation in coerce_models(Reservation, reservations):
        if reservation.table_id is None:
            continue
        held.setdefault(str(reservation.table_id), []).append(_reservation_window(reservation, timezone))

    blocked = [_event_window(e, timezone) for e in coerce_models(PrivateEvent, private_events)]

    available = []
    for slot in slots:
        slot_start = datetime.combine(target, slot)
        slot_end = slot_start + duration
        if any(slot_start < end and slot_end > start for start, end in blocked):
            continue
        if any(
            not any(slot_start < end and slot_end > start for start, end in held.get(str(table.id), []))
            for table in fitting
        ):
            available.append(slot)
    return available


def available_time_slots(
    day: DateLike,
    base_rules: Iterable[RuleLike],
    exceptional_rules: Iterable[RuleLike],
    private_events: Iterable[EventLike],
    interval_minutes: Optional[int] = None,
    timezone: Optional[str] = None,
) -> list[time]:
    """Reservation slot start times for a date (empty when closed)."""
    ranges = open_time_ranges(day, base_rules, exceptional_rules, private_events, timezone=timezone)
    return generate_time_slots(ranges, interval_minutes or get_settings().slot_interval_minutes)
