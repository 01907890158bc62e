"""Tests for the financial and retention metrics."""

from datetime import date, datetime, timezone

import pytest

from venue_dashboard.models.business import DeltaDirection, MetricDelta, MovementType
from venue_dashboard.services.business_metrics import (
    alert_metric_value,
    build_member_snapshots,
    classify_member_movements,
    compute_business_series,
    compute_business_summary,
    compute_cohort_retention,
    compute_mrr_bridge,
    evaluate_alerts,
    format_currency,
    format_delta,
    format_percent,
    metric_delta,
    month_end,
    months_back,
    prior_month_start,
    summarize_ledger,
)

MAY = "2024-05-01"
JUNE = "2024-06-01"
JULY = "2024-07-01"


def snap(member_id, month, mrr, status="active", first_paid="2023-01-15"):
    return {
        "member_id": member_id,
        "snapshot_month": month,
        "mrr": mrr,
        "subscription_status": status,
        "first_paid_date": first_paid,
    }


@pytest.fixture
def june_snapshots() -> list[dict]:
    return [
        snap("A", JUNE, 100),
        snap("B", JUNE, 100),
        snap("C", JUNE, 50),
        snap("D", JUNE, 80),
        snap("G", JUNE, 40),
    ]


@pytest.fixture
def july_snapshots() -> list[dict]:
    return [
        snap("A", JULY, 100),
        snap("B", JULY, 150),                          # expansion
        snap("C", JULY, 30),                           # contraction
        snap("E", JULY, 70, first_paid="2024-07-05"),  # new
        snap("F", JULY, 60, first_paid="2023-01-01"),  # reactivation
        snap("G", JULY, 0, status="paused"),           # paused
    ]


@pytest.fixture
def july_ledger() -> list[dict]:
    return [
        {"type": "payment", "date": "2024-07-02", "amount": 200, "account_id": "acct-1"},
        {"type": "payment", "date": "2024-07-03", "amount": 100, "account_id": "acct-2"},
        {"type": "purchase", "date": "2024-07-04", "amount": -500, "account_id": "acct-1"},
        {"type": "purchase", "date": "2024-07-05", "amount": -50, "account_id": "acct-2"},
        {"type": "purchase", "date": "2024-07-06T20:00:00Z", "amount": 20, "account_id": "acct-2"},
    ]


class TestMonthHelpers:
    def test_prior_month_across_year(self):
        assert prior_month_start("2024-01-15") == date(2023, 12, 1)

    def test_month_end_in_leap_year(self):
        assert month_end("2024-02-10") == date(2024, 2, 29)

    def test_months_back_oldest_first(self):
        assert months_back("2024-02-20", 3) == [
            date(2023, 12, 1),
            date(2024, 1, 1),
            date(2024, 2, 1),
        ]


class TestMrrBridge:
    """Tests for the MRR bridge."""

    def test_bridge_buckets(self, june_snapshots, july_snapshots):
        bridge = compute_mrr_bridge(june_snapshots, july_snapshots, JULY)
        assert bridge.starting_mrr == 370
        assert bridge.ending_mrr == 410
        assert bridge.new_mrr == 70
        assert bridge.expansion_mrr == 110
        assert bridge.contraction_mrr == 20
        assert bridge.churned_mrr == 80
        assert bridge.paused_mrr == 40
        assert bridge.net_new_mrr == 40

    def test_bridge_identity(self, june_snapshots, july_snapshots):
        """ending = starting + new + expansion - contraction - churned - paused."""
        b = compute_mrr_bridge(june_snapshots, july_snapshots, JULY)
        assert b.ending_mrr == pytest.approx(
            b.starting_mrr + b.new_mrr + b.expansion_mrr - b.contraction_mrr - b.churned_mrr - b.paused_mrr
        )

    def test_unchanged_members_round_trip(self, july_snapshots):
        """Feeding a period back in unchanged produces no movement."""
        bridge = compute_mrr_bridge(july_snapshots, july_snapshots)
        assert bridge.starting_mrr == bridge.ending_mrr
        assert (bridge.new_mrr, bridge.expansion_mrr, bridge.contraction_mrr,
                bridge.churned_mrr, bridge.paused_mrr) == (0, 0, 0, 0, 0)

    def test_empty_periods(self):
        bridge = compute_mrr_bridge([], [])
        assert bridge.starting_mrr == 0
        assert bridge.net_new_mrr == 0


class TestMovements:
    def test_movement_kinds(self, june_snapshots, july_snapshots):
        movements = {m.member_id: m.movement for m in classify_member_movements(june_snapshots, july_snapshots)}
        assert movements == {
            "B": MovementType.EXPANSION,
            "C": MovementType.CONTRACTION,
            "E": MovementType.NEW,
            "F": MovementType.REACTIVATION,
            "G": MovementType.PAUSED,
            "D": MovementType.CHURNED,
        }

    def test_unknown_first_paid_date_counts_as_new(self):
        movements = classify_member_movements([], [snap("Z", JULY, 50, first_paid=None)])
        assert movements[0].movement == MovementType.NEW


class TestBusinessSummary:
    """Tests for compute_business_summary."""

    def test_summary(self, june_snapshots, july_snapshots, july_ledger):
        summary = compute_business_summary(july_ledger, [], july_snapshots, june_snapshots)
        assert summary.month == date(2024, 7, 1)
        assert summary.prior_month == date(2024, 6, 1)
        assert summary.mrr == 410
        assert summary.arr == 4920
        assert summary.member_counts.active_members == 5
        assert summary.member_counts.new_members == 1
        assert summary.member_counts.churned_members == 1
        assert summary.member_counts.paused_members == 1
        assert summary.prior_member_counts.active_members == 5

    def test_retention_rates(self, june_snapshots, july_snapshots):
        rates = compute_business_summary([], [], july_snapshots, june_snapshots).rates
        assert rates.nrr == pytest.approx(380 / 370)
        assert rates.grr == pytest.approx(270 / 370)
        assert rates.logo_churn_rate == pytest.approx(0.2)
        assert rates.revenue_churn_rate == pytest.approx(80 / 370)

    def test_rates_are_zero_without_starting_base(self, july_snapshots):
        """No prior MRR or members gives zero ratios, never an error."""
        rates = compute_business_summary([], [], july_snapshots, []).rates
        assert (rates.nrr, rates.grr, rates.logo_churn_rate, rates.revenue_churn_rate) == (0, 0, 0, 0)

    def test_all_inputs_empty(self):
        summary = compute_business_summary(None, None, None, None)
        assert summary.mrr == 0
        assert summary.rates.nrr == 0
        assert summary.deltas["mrr"].direction == DeltaDirection.NEUTRAL

    def test_round_trip_has_zero_movement(self, july_snapshots):
        summary = compute_business_summary([], [], july_snapshots, july_snapshots)
        bridge = summary.mrr_bridge
        assert bridge.starting_mrr == bridge.ending_mrr == 410
        assert (bridge.new_mrr, bridge.expansion_mrr, bridge.contraction_mrr,
                bridge.churned_mrr, bridge.paused_mrr) == (0, 0, 0, 0, 0)

    def test_deltas(self, june_snapshots, july_snapshots, july_ledger):
        deltas = compute_business_summary(july_ledger, [], july_snapshots, june_snapshots).deltas
        assert deltas["mrr"].delta == 40
        assert deltas["mrr"].direction == DeltaDirection.POSITIVE
        assert deltas["accounts_receivable"].inverse is True
        assert deltas["accounts_receivable"].direction == DeltaDirection.NEGATIVE


@pytest.fixture
def may_snapshots() -> list[dict]:
    return [
        snap("A", MAY, 100),
        snap("B", MAY, 100),
        snap("C", MAY, 50),
        snap("D", MAY, 80),
        snap("G", MAY, 40),
        snap("H", MAY, 60),  # churns in June
    ]


class TestPriorPeriodCounts:
    """Tests for prior-period counts from the month before the prior one."""

    def test_prior_counts_without_earlier_month(self, june_snapshots, july_snapshots):
        summary = compute_business_summary([], [], july_snapshots, june_snapshots)
        assert summary.prior_member_counts.churned_members == 0
        assert summary.prior_rates is None
        assert "logo_churn_rate" not in summary.deltas

    def test_prior_counts_from_earlier_month(self, may_snapshots, june_snapshots, july_snapshots):
        summary = compute_business_summary(
            [], [], july_snapshots, june_snapshots, before_prior_members=may_snapshots
        )
        prior = summary.prior_member_counts
        assert (prior.active_members, prior.new_members, prior.churned_members) == (5, 0, 1)
        assert summary.prior_rates.logo_churn_rate == pytest.approx(1 / 6)
        assert summary.prior_rates.revenue_churn_rate == pytest.approx(60 / 430)

    def test_logo_churn_delta(self, may_snapshots, june_snapshots, july_snapshots):
        """Logo churn rising from 1/6 to 1/5 is a bad change."""
        deltas = compute_business_summary(
            [], [], july_snapshots, june_snapshots, before_prior_members=may_snapshots
        ).deltas
        assert deltas["logo_churn_rate"].delta == pytest.approx(0.2 - 1 / 6, abs=1e-6)
        assert deltas["logo_churn_rate"].direction == DeltaDirection.NEGATIVE
        assert deltas["churned_members"].direction == DeltaDirection.NEUTRAL
        assert deltas["new_members"].direction == DeltaDirection.POSITIVE


class TestBusinessSeries:
    """Tests for compute_business_series."""

    def test_points_per_month(self, may_snapshots, june_snapshots, july_snapshots, july_ledger):
        series = compute_business_series(
            {MAY: may_snapshots, JUNE: june_snapshots, JULY: july_snapshots},
            [JULY, JUNE],
            {JULY: july_ledger},
        )
        assert [p.month for p in series] == [date(2024, 6, 1), date(2024, 7, 1)]

        june, july = series
        assert june.mrr == 370
        assert june.churned_members == 1
        assert june.churned_mrr == 60
        assert june.grr == pytest.approx(370 / 430)
        assert june.net_revenue == 0

        assert july.mrr == 410
        assert july.net_new_mrr == 40
        assert july.new_members == 1
        assert july.nrr == pytest.approx(380 / 370)
        assert july.net_revenue == 530

    def test_missing_earlier_month_starts_from_zero(self, june_snapshots):
        """Members who first paid long ago come back as reactivations."""
        june = compute_business_series({JUNE: june_snapshots}, [JUNE])[0]
        assert (june.new_mrr, june.expansion_mrr) == (0, 370)
        assert june.nrr == 0

    def test_missing_month_is_empty(self):
        point = compute_business_series({}, [JULY])[0]
        assert (point.mrr, point.active_members) == (0, 0)


EVALUATED_AT = datetime(2024, 8, 1, 6, 0, tzinfo=timezone.utc)


def alert(key, metric, threshold, kind="above", **fields):
    return {"alert_key": key, "metric_key": metric, "threshold_value": threshold,
            "threshold_type": kind, **fields}


class TestAlerts:
    """Tests for alert evaluation."""

    @pytest.fixture
    def summary(self, june_snapshots, july_snapshots, july_ledger):
        return compute_business_summary(july_ledger, [], july_snapshots, june_snapshots)

    def test_metric_lookup(self, summary):
        assert alert_metric_value(summary, "mrr") == 410
        assert alert_metric_value(summary, "logoChurnRate") == pytest.approx(0.2)
        assert alert_metric_value(summary, "active_members") == 5
        assert alert_metric_value(summary, "net_revenue") == 530
        assert alert_metric_value(summary, "mrr_drop_pct") == pytest.approx(-40 / 370)
        assert alert_metric_value(summary, "ebitda") is None

    def test_above_threshold_triggers(self, summary):
        [status] = evaluate_alerts(summary, [alert("churn", "logo_churn_rate", 0.1)], now=EVALUATED_AT)
        assert status.is_triggered is True
        assert status.current_value == pytest.approx(0.2)
        assert status.last_evaluated_at == EVALUATED_AT
        assert status.last_triggered_at == EVALUATED_AT

    def test_below_threshold_is_strict(self, summary):
        """Five active members is not below a threshold of five."""
        [status] = evaluate_alerts(summary, [alert("members", "active_members", 5, "below")], now=EVALUATED_AT)
        assert status.is_triggered is False

    def test_untriggered_keeps_last_trigger_time(self, summary):
        earlier = datetime(2024, 3, 1, tzinfo=timezone.utc)
        rule = alert("drop", "mrr_drop_pct", 0.1, last_triggered_at=earlier.isoformat())
        [status] = evaluate_alerts(summary, [rule], now=EVALUATED_AT)
        assert status.is_triggered is False
        assert status.last_triggered_at == earlier

    def test_disabled_rules_skipped(self, summary):
        rules = [alert("churn", "logo_churn_rate", 0.1, is_enabled=False)]
        assert evaluate_alerts(summary, rules, now=EVALUATED_AT) == []

    def test_unknown_metric_never_triggers(self, summary):
        [status] = evaluate_alerts(summary, [alert("profit", "ebitda", -1)], now=EVALUATED_AT)
        assert status.is_triggered is False
        assert status.current_value is None


class TestLedger:
    def test_summarize_ledger(self, july_ledger):
        summary = summarize_ledger(july_ledger)
        assert summary.payments == 300
        assert summary.purchases == 550
        assert summary.net_revenue == 530
        assert summary.accounts_receivable == 230
        assert summary.entry_count == 5
        assert [(a.account_id, a.balance) for a in summary.outstanding_accounts] == [("acct-1", -300)]

    def test_malformed_rows_skipped(self):
        summary = summarize_ledger([{"type": "payment", "amount": 10}, {"type": "payment", "date": "2024-07-01", "amount": None}])
        assert summary.entry_count == 1
        assert summary.payments == 0


class TestDeltasAndFormatting:
    """Tests for metric_delta and the formatters."""

    def test_inverse_metric_rise_is_negative(self):
        assert metric_delta(0.1, 0.05, inverse=True).direction == DeltaDirection.NEGATIVE

    def test_missing_values_are_neutral(self):
        delta = metric_delta(None, 5)
        assert delta.delta is None
        assert delta.direction == DeltaDirection.NEUTRAL

    def test_zero_to_zero_is_neutral(self):
        assert metric_delta(0, 0).direction == DeltaDirection.NEUTRAL

    def test_format_currency(self):
        assert format_currency(1234.4) == "$1,234"
        assert format_currency(-50) == "-$50"
        assert format_currency(None) == "--"
        assert format_currency("abc") == "--"

    def test_format_percent(self):
        assert format_percent(0.125) == "12.5%"
        assert format_percent(None) == "--"
        assert format_percent(float("nan")) == "--"

    def test_format_delta(self):
        assert format_delta(metric_delta(150, 100), "currency") == "+$50"
        assert format_delta(metric_delta(0.1, 0.125), "percent") == "-2.5pp"
        assert format_delta(metric_delta(12, 9)) == "+3"

    def test_format_delta_placeholders(self):
        assert format_delta(None) == "--"
        assert format_delta(metric_delta(0, 0), "currency") == "--"
        assert format_delta(MetricDelta(current=None, prior=None)) == "--"


class TestSnapshotsAndCohorts:
    def test_build_member_snapshots(self):
        members = [
            {"member_id": "1", "status": "active", "monthly_dues": 100, "join_date": "2024-01-03"},
            {"member_id": "2", "status": "inactive", "monthly_dues": 100, "deactivated": False},
            {"member_id": "3", "status": "inactive", "monthly_dues": 100, "deactivated": True},
            {"member_id": "4", "status": "active", "monthly_dues": None},
        ]
        snapshots = {s.member_id: s for s in build_member_snapshots(members, "2024-06-18")}
        assert snapshots["1"].mrr == 100
        assert snapshots["1"].snapshot_month == date(2024, 6, 1)
        assert snapshots["1"].first_paid_date == date(2024, 1, 3)
        assert snapshots["2"].subscription_status == "paused"
        assert snapshots["2"].mrr == 0
        assert snapshots["3"].subscription_status == "canceled"
        assert snapshots["4"].subscription_status == "canceled"

    def test_cohort_retention(self):
        may, june, july = "2024-05-01", "2024-06-01", "2024-07-01"
        by_month = {
            may: [snap("X", may, 100, first_paid="2024-05-10"), snap("Y", may, 100, first_paid="2024-05-20")],
            june: [snap("X", june, 100, first_paid="2024-05-10"), snap("Y", june, 0, first_paid="2024-05-20"),
                   snap("Z", june, 50, first_paid="2024-06-02")],
            july: [snap("X", july, 100, first_paid="2024-05-10"), snap("Z", july, 50, first_paid="2024-06-02")],
        }
        rows = compute_cohort_retention(by_month, [may, june, july])
        assert [(r.cohort_month, r.cohort_size) for r in rows] == [
            (date(2024, 5, 1), 2),
            (date(2024, 6, 1), 1),
        ]
        assert [(p.retained, p.rate) for p in rows[0].retention] == [(2, 1.0), (1, 0.5), (1, 0.5)]
        assert [p.rate for p in rows[1].retention] == [1.0, 1.0]
