"""
Per-day covers aggregation for the calendar views.

Groups reservations and private events that are already scoped to a date
range by their local date. Each date's open/closed status comes from the
day-status resolver; nothing is carried between dates except the output list.
"""

import calendar
from datetime import date, timedelta
import logging
from typing import Iterable, Optional

from ..core.config import get_settings
from ..core.observability import get_tracer
from ..models.reservation import DaySummary, RangeTotals, Reservation
from ..models.venue import PrivateEvent
from ..utils.timezone_utils import DateLike, coerce_date, local_date
from ..utils.rows import coerce_models
from .venue_hours import EventLike, RuleLike, is_day_open

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


def _revenue_per_cover(value: Optional[float]) -> float:
    return get_settings().revenue_per_cover if value is None else value


def aggregate_day(
    day: DateLike,
    reservations: Iterable[Reservation],
    private_events: Iterable[PrivateEvent],
    is_open: bool,
    revenue_per_cover: Optional[float] = None,
    timezone: Optional[str] = None,
) -> DaySummary:
    """
    Covers and private-event count for one date.

    Only regular reservations (no private_event_id) count toward covers.
    estimated_revenue is covers times a per-cover placeholder, not real pricing.
    """
    target = coerce_date(day)

    regular = [
        r for r in coerce_models(Reservation, reservations)
        if r.is_regular and local_date(r.start_time, timezone) == target
    ]
    covers = sum(r.party_size for r in regular)
    event_count = sum(
        1 for e in coerce_models(PrivateEvent, private_events)
        if local_date(e.start_time, timezone) == target
    )

    return DaySummary(
        date=target,
        covers=covers,
        private_event_count=event_count,
        reservation_count=len(regular),
        is_open=is_open,
        estimated_revenue=round(covers * _revenue_per_cover(revenue_per_cover), 2),
    )


def date_range(start: DateLike, end: DateLike) -> list[date]:
    """Every date from start to end inclusive."""
    first, last = coerce_date(start), coerce_date(end)
    if last < first:
        raise ValueError("end must not be before start")
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


def aggregate_range(
    start: DateLike,
    end: DateLike,
    reservations: Iterable[Reservation],
    private_events: Iterable[EventLike],
    base_rules: Iterable[RuleLike],
    exceptional_rules: Iterable[RuleLike],
    revenue_per_cover: Optional[float] = None,
    timezone: Optional[str] = None,
) -> list[DaySummary]:
    """
    One DaySummary per date in [start, end], each date resolved independently.

    Raises:
        ValueError: If the range bounds are not dates or end precedes start
    """
    days = date_range(start, end)

    with tracer.start_as_current_span("reservation_aggregator.aggregate_range") as span:
        span.set_attribute("day_count", len(days))

        reservation_list = coerce_models(Reservation, reservations)
        events = coerce_models(PrivateEvent, private_events)
        base = list(base_rules or [])
        exceptional = list(exceptional_rules or [])

        summaries = [
            aggregate_day(
                day,
                reservation_list,
                events,
                is_day_open(day, base, exceptional, events, timezone=timezone),
                revenue_per_cover=revenue_per_cover,
                timezone=timezone,
            )
            for day in days
        ]

        span.set_attribute("open_days", sum(1 for s in summaries if s.is_open))
        return summaries


def month_grid_range(year: int, month: int) -> tuple[date, date]:
    """First and last date of the Sunday-start grid that shows a whole month."""
    first = date(year, month, 1)
    last = date(year, month, calendar.monthrange(year, month)[1])
    grid_start = first - timedelta(days=(first.weekday() + 1) % 7)
    grid_end = last + timedelta(days=5 - last.weekday() if last.weekday() != 6 else 6)
    return grid_start, grid_end


def summarize_range(days: Iterable[DaySummary]) -> RangeTotals:
    """Totals for a week or month of day summaries."""
    totals = RangeTotals()
    for day in days:
        totals.days += 1
        totals.covers += day.covers
        totals.estimated_revenue += day.estimated_revenue
        totals.private_events += day.private_event_count
        if day.is_open:
            totals.open_days += 1
    totals.estimated_revenue = round(totals.estimated_revenue, 2)
    return totals
