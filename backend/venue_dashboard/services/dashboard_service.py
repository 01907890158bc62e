"""
Dashboard Service - data fetching and aggregation for the admin dashboard views.

Each view issues its data API reads concurrently, joins them, then hands the
collections to the pure resolvers and aggregators. A failed read is an empty
collection: views render partial data and never fail because one source is
down.
"""

import asyncio
import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from ..core.config import Settings, get_settings
from ..core.errors import DataApiError
from ..core.observability import get_tracer
from ..models.business import AlertStatus, BusinessSeriesPoint, BusinessSummary, CohortRow, MemberMovement
from ..models.campaign import CampaignTemplate, DueCampaignMessage, TimingType, TriggerType
from ..models.reservation import CalendarView
from ..models.venue import DaySlots
from ..utils.timezone_utils import DateLike, coerce_date, now_in_timezone, to_wall_time
from .business_metrics import (
    build_member_snapshots,
    classify_member_movements,
    compute_business_series,
    compute_business_summary,
    compute_cohort_retention,
    evaluate_alerts,
    month_end,
    month_start,
    months_back,
    prior_month_start,
)
from .campaign_timing import next_send_time
from .data_api_client import DataApiClient
from .reservation_aggregator import aggregate_range, month_grid_range, summarize_range
from .venue_hours import (
    bookable_slots,
    generate_time_slots,
    is_day_open,
    open_time_ranges,
    slot_duration_minutes,
)

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Reservations considered for reservation-triggered templates, around today
RESERVATION_LOOKBACK_DAYS = 7
RESERVATION_LOOKAHEAD_DAYS = 31

# (recipient_id, reservation_id, trigger timestamp)
TriggerRecord = tuple[Optional[str], Optional[object], Optional[datetime]]


class DashboardService:
    """
    High-level service behind the dashboard API.

    Responsibilities:
    - Calendar day summaries and bookable slots
    - Business KPI summary, chart series, alerts, cohorts and member movements
    - Campaign messages due in the current dispatch window
    """

    def __init__(
        self,
        client: DataApiClient,
        settings: Optional[Settings] = None,
        snapshot_client: Optional[DataApiClient] = None,
    ):
        """
        Args:
            client: Data API client bound to the caller's session
            settings: Application settings (module settings when omitted)
            snapshot_client: Privileged client for the snapshot table (defaults to client)
        """
        self.client = client
        self.snapshot_client = snapshot_client or client
        self.settings = settings or get_settings()
        self.timezone = self.settings.business_timezone

    # Calendar

    async def get_calendar(self, start: DateLike, end: DateLike) -> CalendarView:
        """
        Day summaries for every date in [start, end].

        Raises:
            ValueError: If end precedes start
        """
        first, last = coerce_date(start), coerce_date(end)
        if last < first:
            raise ValueError("end must not be before start")

        with tracer.start_as_current_span("dashboard.get_calendar") as span:
            span.set_attribute("start", first.isoformat())
            span.set_attribute("end", last.isoformat())

            (base, exceptional), events, reservations = await asyncio.gather(
                self.client.list_venue_hours(),
                self.client.list_private_events(first, last),
                self.client.list_reservations(first, last),
            )

            days = aggregate_range(
                first,
                last,
                reservations,
                events,
                base,
                exceptional,
                revenue_per_cover=self.settings.revenue_per_cover,
                timezone=self.timezone,
            )
            return CalendarView(start=first, end=last, days=days, totals=summarize_range(days))

    async def get_month_calendar(self, year: int, month: int) -> CalendarView:
        """Calendar for the Sunday-to-Saturday grid that shows a whole month."""
        start, end = month_grid_range(year, month)
        return await self.get_calendar(start, end)

    async def get_available_slots(self, day: DateLike, party_size: Optional[int] = None) -> DaySlots:
        """
        Bookable hours and slot start times for a date.

        With party_size, only slots where a table seating the party is free
        for the whole seating are returned.

        Raises:
            ValueError: If party_size is given and not positive
        """
        target = coerce_date(day)
        if party_size is not None and party_size <= 0:
            raise ValueError("party_size must be positive")

        (base, exceptional), events = await asyncio.gather(
            self.client.list_venue_hours(),
            self.client.list_private_events(target, target),
        )

        is_open = is_day_open(target, base, exceptional, events, timezone=self.timezone)
        ranges = open_time_ranges(target, base, exceptional, events, timezone=self.timezone)
        slots = generate_time_slots(ranges, self.settings.slot_interval_minutes)

        duration = None
        if party_size is not None and slots:
            tables, reservations = await asyncio.gather(
                self.client.list_tables(min_seats=party_size),
                self.client.list_reservations(target, target),
            )
            slots = bookable_slots(
                target, slots, party_size, tables, reservations, events, timezone=self.timezone
            )
        if party_size is not None:
            duration = slot_duration_minutes(party_size)
            logger.info(f"{len(slots)} slots for a party of {party_size} on {target}")

        return DaySlots(
            date=target,
            is_open=is_open,
            party_size=party_size,
            slot_duration_minutes=duration,
            time_ranges=ranges,
            slots=slots,
        )

    # Business metrics

    async def _snapshots_for(self, month: date, generate: bool = False):
        snapshots = await self.snapshot_client.list_member_snapshots(month)
        if snapshots or not generate:
            return snapshots

        logger.info(f"No member snapshots for {month}, generating from member records")
        snapshots = build_member_snapshots(await self.client.list_members(), month)
        try:
            await self.snapshot_client.upsert_member_snapshots(snapshots)
        except DataApiError as e:
            logger.error(f"Failed to store generated snapshots for {month}: {e}")
        return snapshots

    async def get_business_summary(self, month: Optional[DateLike] = None) -> BusinessSummary:
        """
        KPI summary for a month against the month before.

        Snapshots for the requested month are generated from member records
        (and stored) when none exist yet. The month before the prior one is
        read too, so the prior month gets full member counts.
        """
        period = month_start(month or now_in_timezone(self.timezone))
        prior = prior_month_start(period)

        with tracer.start_as_current_span("dashboard.get_business_summary") as span:
            span.set_attribute("month", period.isoformat())

            current, prior_snapshots, before_prior, ledger, prior_ledger = await asyncio.gather(
                self._snapshots_for(period, generate=True),
                self._snapshots_for(prior),
                self._snapshots_for(prior_month_start(prior)),
                self.client.list_ledger(period, month_end(period)),
                self.client.list_ledger(prior, month_end(prior)),
            )

            return compute_business_summary(
                ledger,
                prior_ledger,
                current,
                prior_snapshots,
                month=period,
                before_prior_members=before_prior,
            )

    async def get_cohorts(self, month: Optional[DateLike] = None, months: int = 6) -> list[CohortRow]:
        """Cohort retention over the `months` months ending at month."""
        if months <= 0:
            raise ValueError("months must be positive")
        window = months_back(month or now_in_timezone(self.timezone), months)

        snapshots = await asyncio.gather(*(self.snapshot_client.list_member_snapshots(m) for m in window))
        return compute_cohort_retention(dict(zip(window, snapshots)), window)

    async def get_member_movements(self, month: Optional[DateLike] = None) -> list[MemberMovement]:
        """Drilldown of every member whose MRR moved in the month, with names."""
        period = month_start(month or now_in_timezone(self.timezone))
        current, prior, members = await asyncio.gather(
            self.snapshot_client.list_member_snapshots(period),
            self.snapshot_client.list_member_snapshots(prior_month_start(period)),
            self.client.list_members(),
        )

        names = {m.member_id: m.full_name for m in members}
        movements = classify_member_movements(prior, current, period)
        for movement in movements:
            movement.name = names.get(movement.member_id) or None
        return sorted(movements, key=lambda m: (m.movement.value, m.delta))

    async def get_business_series(
        self, month: Optional[DateLike] = None, months: int = 12
    ) -> list[BusinessSeriesPoint]:
        """Chart series for the `months` months ending at month."""
        if months <= 0:
            raise ValueError("months must be positive")
        window = months_back(month or now_in_timezone(self.timezone), months)
        fetched = [prior_month_start(window[0])] + window

        with tracer.start_as_current_span("dashboard.get_business_series") as span:
            span.set_attribute("months", months)
            snapshots, ledgers = await asyncio.gather(
                asyncio.gather(*(self.snapshot_client.list_member_snapshots(m) for m in fetched)),
                asyncio.gather(*(self.client.list_ledger(m, month_end(m)) for m in window)),
            )
            return compute_business_series(
                dict(zip(fetched, snapshots)), window, dict(zip(window, ledgers))
            )

    async def get_alerts(self, month: Optional[DateLike] = None) -> list[AlertStatus]:
        """
        Evaluate the enabled alert rules against the month's summary.

        The outcome is written back to each rule row; a failed write is
        logged and the evaluation is still returned.
        """
        summary, alerts = await asyncio.gather(
            self.get_business_summary(month),
            self.snapshot_client.list_dashboard_alerts(),
        )
        statuses = evaluate_alerts(summary, alerts)
        for status in statuses:
            try:
                await self.snapshot_client.update_alert_state(status)
            except DataApiError as e:
                logger.error(f"Failed to store state of alert {status.alert_key}: {e}")
        return statuses

    # Campaigns

    def _trigger_records(self, template: CampaignTemplate, members, reservations, now) -> list[TriggerRecord]:
        """Trigger timestamps a template is evaluated against."""
        needs_trigger = template.timing_type == TimingType.RELATIVE or (
            template.timing_type == TimingType.SPECIFIC_TIME and template.specific_date is None
        )
        if not needs_trigger:
            return [(None, None, None)]

        trigger_type = template.trigger_type
        if trigger_type == TriggerType.MEMBER_SIGNUP.value:
            return [
                (m.member_id, None, datetime.combine(m.join_date, time.min))
                for m in members if m.join_date
            ]
        if trigger_type == TriggerType.BIRTHDAY.value:
            records = []
            year = to_wall_time(now, self.timezone).year
            for m in members:
                if not m.dob:
                    continue
                try:
                    birthday = m.dob.replace(year=year)
                except ValueError:
                    birthday = date(year, 2, 28)
                records.append((m.member_id, None, datetime.combine(birthday, time.min)))
            return records
        if trigger_type == TriggerType.RESERVATION_TIME.value:
            return [(r.member_id, r.id, r.start_time) for r in reservations]
        if trigger_type == TriggerType.RESERVATION_CREATED.value:
            return [(r.member_id, r.id, r.created_at) for r in reservations if r.created_at]

        logger.warning(f"Template {template.id or template.name!r} has unsupported trigger_type {trigger_type!r}")
        return []

    async def get_due_campaign_messages(self, now: Optional[datetime] = None) -> list[DueCampaignMessage]:
        """
        Template sends that fall inside the current dispatch window.

        Recurring and fixed-date templates are evaluated once; other
        templates once per trigger record (member signup, birthday,
        reservation time or reservation creation).
        """
        now = now or now_in_timezone(self.timezone)
        today = to_wall_time(now, self.timezone).date()

        with tracer.start_as_current_span("dashboard.get_due_campaign_messages") as span:
            templates, members, reservations = await asyncio.gather(
                self.client.list_campaign_templates(),
                self.client.list_members(),
                self.client.list_reservations(
                    today - timedelta(days=RESERVATION_LOOKBACK_DAYS),
                    today + timedelta(days=RESERVATION_LOOKAHEAD_DAYS),
                ),
            )

            due = []
            for template in templates:
                if not template.is_active:
                    continue
                for recipient_id, reservation_id, trigger in self._trigger_records(
                    template, members, reservations, now
                ):
                    timing = next_send_time(
                        template,
                        trigger,
                        now,
                        dispatch_window_minutes=self.settings.dispatch_window_minutes,
                        timezone=self.timezone,
                    )
                    if not timing.is_configured:
                        break
                    if timing.should_send_now:
                        due.append(DueCampaignMessage(
                            template_id=template.id,
                            template_name=template.name,
                            trigger_type=template.trigger_type,
                            recipient_id=recipient_id,
                            reservation_id=reservation_id,
                            target_send_time=timing.target_send_time,
                            time_diff_minutes=timing.time_diff_minutes,
                        ))

            span.set_attribute("template_count", len(templates))
            span.set_attribute("due_count", len(due))
            logger.info(f"{len(due)} campaign messages due across {len(templates)} templates")
            return due
