"""Tests for per-day covers aggregation."""

from datetime import date, timedelta

import pytest

from venue_dashboard.models.reservation import DaySummary
from venue_dashboard.services.reservation_aggregator import (
    aggregate_day,
    aggregate_range,
    date_range,
    month_grid_range,
    summarize_range,
)

FRIDAY = date(2024, 6, 7)


@pytest.fixture
def reservations() -> list[dict]:
    return [
        {"id": 1, "start_time": "2024-06-07T18:30:00", "party_size": 4},
        {"id": 2, "start_time": "2024-06-07T20:00:00", "party_size": 2},
        {"id": 3, "start_time": "2024-06-07T19:00:00", "party_size": 30, "private_event_id": "evt-1"},
        {"id": 4, "start_time": "2024-06-08T19:00:00", "party_size": 6},
        {"id": 5, "start_time": "2024-06-07T21:00:00", "party_size": None},
    ]


class TestAggregateDay:
    """Tests for aggregate_day."""

    def test_covers_exclude_private_event_reservations(self, reservations):
        """Guests booked under a private event are not counted as covers."""
        summary = aggregate_day(FRIDAY, reservations, [], True)
        assert summary.covers == 6
        assert summary.reservation_count == 3

    def test_estimated_revenue_uses_per_cover_value(self, reservations):
        summary = aggregate_day(FRIDAY, reservations, [], True, revenue_per_cover=25.0)
        assert summary.estimated_revenue == 150.0

    def test_default_per_cover_value_from_settings(self, reservations):
        assert aggregate_day(FRIDAY, reservations, [], True).estimated_revenue == 300.0

    def test_private_events_counted_on_their_date(self):
        events = [
            {"start_time": "2024-06-07T18:00:00"},
            {"start_time": "2024-06-08T18:00:00"},
        ]
        assert aggregate_day(FRIDAY, [], events, False).private_event_count == 1

    def test_reservation_date_read_in_business_timezone(self):
        """A UTC timestamp after midnight is counted on the local date."""
        late = [{"start_time": "2024-06-08T02:30:00Z", "party_size": 3}]
        assert aggregate_day(FRIDAY, late, [], True).covers == 3

    def test_is_open_passed_through(self):
        assert aggregate_day(FRIDAY, [], [], False).is_open is False

    def test_empty_inputs(self):
        summary = aggregate_day(FRIDAY, None, None, True)
        assert summary == DaySummary(date=FRIDAY, covers=0, private_event_count=0,
                                     reservation_count=0, is_open=True, estimated_revenue=0.0)


class TestAggregateRange:
    """Tests for aggregate_range."""

    def test_one_summary_per_date(self, reservations, friday_rule):
        days = aggregate_range("2024-06-06", "2024-06-08", reservations, [], [friday_rule], [])
        assert [d.date for d in days] == [
            date(2024, 6, 6),
            date(2024, 6, 7),
            date(2024, 6, 8),
        ]
        assert [d.is_open for d in days] == [False, True, False]
        assert [d.covers for d in days] == [0, 6, 6]

    def test_full_day_event_closes_its_date(self, friday_rule):
        events = [{"start_time": "2024-06-07T10:00:00", "full_day": True}]
        days = aggregate_range(FRIDAY, FRIDAY, [], events, [friday_rule], [])
        assert days[0].is_open is False
        assert days[0].private_event_count == 1

    def test_end_before_start_raises(self):
        with pytest.raises(ValueError):
            date_range("2024-06-08", "2024-06-07")


class TestMonthGrid:
    """Tests for month_grid_range."""

    def test_grid_runs_sunday_to_saturday(self):
        start, end = month_grid_range(2024, 6)
        assert start == date(2024, 5, 26)
        assert end == date(2024, 7, 6)
        assert start.weekday() == 6
        assert end.weekday() == 5

    def test_month_starting_on_sunday(self):
        start, end = month_grid_range(2024, 9)
        assert start == date(2024, 9, 1)
        assert end == date(2024, 10, 5)


class TestSummarizeRange:
    def test_totals(self):
        days = [
            DaySummary(date=FRIDAY, covers=10, private_event_count=1, reservation_count=3,
                       is_open=True, estimated_revenue=500.0),
            DaySummary(date=FRIDAY + timedelta(days=1), covers=0, private_event_count=0,
                       reservation_count=0, is_open=False, estimated_revenue=0.0),
        ]
        totals = summarize_range(days)
        assert (totals.days, totals.covers, totals.open_days, totals.private_events) == (2, 10, 1, 1)
        assert totals.estimated_revenue == 500.0
