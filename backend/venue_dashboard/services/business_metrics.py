"""
Financial and retention metrics for the business dashboard.

Every formula behind the dashboard's KPI cards lives here; routers and the
dashboard service only fetch data and call these functions. Inputs are
end-of-month member subscription snapshots and ledger rows for the period and
the period before it. Nothing here performs I/O.

Bridge identity (always holds):
    ending = starting + new + expansion - contraction - churned - paused

Ratios are 0 whenever their denominator is 0.
"""

import logging
import math
import re
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import pytz
from dateutil.relativedelta import relativedelta

from ..core.observability import get_tracer
from ..models.business import (
    AccountBalance,
    AlertStatus,
    BusinessSeriesPoint,
    BusinessSummary,
    CohortPoint,
    CohortRow,
    DashboardAlert,
    DeltaDirection,
    LedgerEntry,
    LedgerEntryType,
    LedgerSummary,
    Member,
    MemberCounts,
    MemberMovement,
    MemberSnapshot,
    MetricDelta,
    MovementType,
    MrrBridge,
    RetentionRates,
    ThresholdType,
)
from ..utils.rows import coerce_models
from ..utils.timezone_utils import DateLike, coerce_date

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

SnapshotLike = Union[MemberSnapshot, dict[str, Any]]
LedgerLike = Union[LedgerEntry, dict[str, Any]]

PLACEHOLDER = "--"


# Month helpers

def month_start(value: DateLike) -> date:
    """First day of the month containing value."""
    return coerce_date(value).replace(day=1)


def prior_month_start(value: DateLike) -> date:
    return month_start(value) - relativedelta(months=1)


def month_end(value: DateLike) -> date:
    """Last day of the month containing value."""
    return month_start(value) + relativedelta(months=1, days=-1)


def months_back(from_month: DateLike, count: int) -> list[date]:
    """`count` month starts ending at from_month, oldest first."""
    last = month_start(from_month)
    return [last - relativedelta(months=offset) for offset in range(count - 1, -1, -1)]


def safe_divide(numerator: float, denominator: float, fallback: float = 0.0) -> float:
    if not denominator:
        return fallback
    return numerator / denominator


# Snapshots and movements

def build_member_snapshots(
    members: Iterable[Union[Member, dict[str, Any]]], month: DateLike
) -> list[MemberSnapshot]:
    """
    Derive end-of-month subscription snapshots from member records.

    Member status and monthly dues stand in for subscription state: an active
    member with dues pays MRR = dues, an inactive member that is not
    deactivated is paused, anyone else is canceled.
    """
    snapshot_month = month_start(month)
    snapshots = []
    for member in coerce_models(Member, members):
        dues = max(member.monthly_dues, 0.0)
        status = (member.status or "").lower()
        is_active = status == "active" and dues > 0
        is_paused = status == "inactive" and not member.deactivated

        if is_active:
            subscription_status = "active"
        elif is_paused:
            subscription_status = "paused"
        else:
            subscription_status = "canceled"

        snapshots.append(MemberSnapshot(
            member_id=member.member_id,
            snapshot_month=snapshot_month,
            mrr=dues if is_active else 0.0,
            plan_name="Membership" if dues > 0 else None,
            plan_interval="month",
            plan_amount=dues,
            subscription_status=subscription_status,
            first_paid_date=member.join_date,
        ))

    logger.info(f"Built {len(snapshots)} member snapshots for {snapshot_month}")
    return snapshots


def _index(snapshots: Iterable[SnapshotLike]) -> dict[str, MemberSnapshot]:
    # Later rows for the same member replace earlier ones
    return {s.member_id: s for s in coerce_models(MemberSnapshot, snapshots)}


def _mrr(snapshot: Optional[MemberSnapshot]) -> float:
    if snapshot is None:
        return 0.0
    return max(snapshot.mrr, 0.0)


def _period_of(snapshots: Iterable[MemberSnapshot]) -> Optional[date]:
    for snapshot in snapshots:
        if snapshot.snapshot_month is not None:
            return month_start(snapshot.snapshot_month)
    return None


def _starts_paying(snapshot: MemberSnapshot, period: Optional[date]) -> MovementType:
    """A member who first paid before the period is returning, not new."""
    if period is None or snapshot.first_paid_date is None:
        return MovementType.NEW
    if month_start(snapshot.first_paid_date) < period:
        return MovementType.REACTIVATION
    return MovementType.NEW


def classify_member_movements(
    prior: Iterable[SnapshotLike],
    current: Iterable[SnapshotLike],
    month: Optional[DateLike] = None,
) -> list[MemberMovement]:
    """
    Per-member MRR movements from the prior period to the current one.

    Members whose charge did not change produce no row.

    Args:
        prior: Prior-period snapshots
        current: Current-period snapshots
        month: Current period (defaults to the snapshots' snapshot_month)

    Returns:
        Movement rows, current-period members first
    """
    prior_by_id = _index(prior)
    current_by_id = _index(current)
    period = month_start(month) if month is not None else _period_of(current_by_id.values())

    movements = []
    for member_id, snapshot in current_by_id.items():
        prior_mrr = _mrr(prior_by_id.get(member_id))
        current_mrr = _mrr(snapshot)

        if prior_mrr == 0 and current_mrr > 0:
            movement = _starts_paying(snapshot, period)
        elif prior_mrr > 0 and current_mrr > prior_mrr:
            movement = MovementType.EXPANSION
        elif prior_mrr > 0 and 0 < current_mrr < prior_mrr:
            movement = MovementType.CONTRACTION
        else:
            continue

        movements.append(MemberMovement(
            member_id=member_id,
            movement=movement,
            prior_mrr=prior_mrr,
            current_mrr=current_mrr,
            delta=current_mrr - prior_mrr,
        ))

    for member_id, snapshot in prior_by_id.items():
        prior_mrr = _mrr(snapshot)
        if prior_mrr == 0:
            continue
        now = current_by_id.get(member_id)
        if _mrr(now) > 0:
            continue
        movements.append(MemberMovement(
            member_id=member_id,
            movement=MovementType.PAUSED if now is not None and now.is_paused else MovementType.CHURNED,
            prior_mrr=prior_mrr,
            current_mrr=0.0,
            delta=-prior_mrr,
        ))

    return movements


def compute_mrr_bridge(
    prior: Iterable[SnapshotLike],
    current: Iterable[SnapshotLike],
    month: Optional[DateLike] = None,
) -> MrrBridge:
    """Decompose the MRR change between two periods into bridge buckets."""
    prior_by_id = _index(prior)
    current_by_id = _index(current)
    movements = classify_member_movements(
        prior_by_id.values(), current_by_id.values(), month
    )

    buckets: dict[MovementType, float] = defaultdict(float)
    for movement in movements:
        buckets[movement.movement] += abs(movement.delta)

    new_mrr = buckets[MovementType.NEW]
    # Returning members count as expansion
    expansion_mrr = buckets[MovementType.EXPANSION] + buckets[MovementType.REACTIVATION]
    contraction_mrr = buckets[MovementType.CONTRACTION]
    churned_mrr = buckets[MovementType.CHURNED]
    paused_mrr = buckets[MovementType.PAUSED]

    return MrrBridge(
        starting_mrr=round(sum(_mrr(s) for s in prior_by_id.values()), 2),
        ending_mrr=round(sum(_mrr(s) for s in current_by_id.values()), 2),
        new_mrr=round(new_mrr, 2),
        expansion_mrr=round(expansion_mrr, 2),
        contraction_mrr=round(contraction_mrr, 2),
        churned_mrr=round(churned_mrr, 2),
        paused_mrr=round(paused_mrr, 2),
        net_new_mrr=round(new_mrr + expansion_mrr - contraction_mrr - churned_mrr - paused_mrr, 2),
    )


def compute_member_counts(
    current: Iterable[SnapshotLike],
    prior: Iterable[SnapshotLike],
    month: Optional[DateLike] = None,
) -> MemberCounts:
    """Active, new, churned and paused member counts for the current period."""
    current_by_id = _index(current)
    prior_by_id = _index(prior)
    movements = classify_member_movements(prior_by_id.values(), current_by_id.values(), month)

    return MemberCounts(
        active_members=sum(1 for s in current_by_id.values() if _mrr(s) > 0),
        new_members=sum(1 for m in movements if m.movement == MovementType.NEW),
        churned_members=sum(1 for m in movements if m.movement == MovementType.CHURNED),
        paused_members=sum(1 for s in current_by_id.values() if _mrr(s) == 0 and s.is_paused),
    )


def compute_retention_rates(
    bridge: MrrBridge, counts: MemberCounts, prior_active_members: int
) -> RetentionRates:
    """NRR, GRR, logo churn and revenue churn; 0 when the starting base is 0."""
    starting = bridge.starting_mrr
    return RetentionRates(
        nrr=safe_divide(
            starting + bridge.expansion_mrr - bridge.contraction_mrr - bridge.churned_mrr,
            starting,
        ),
        grr=safe_divide(starting - bridge.contraction_mrr - bridge.churned_mrr, starting),
        logo_churn_rate=safe_divide(counts.churned_members, prior_active_members),
        revenue_churn_rate=safe_divide(bridge.churned_mrr, starting),
    )


# Ledger

def summarize_ledger(entries: Iterable[LedgerLike]) -> LedgerSummary:
    """
    Revenue and receivables for a set of ledger rows.

    Purchases are stored negative; a positive purchase row is a refund and
    reduces net revenue. Accounts whose running balance is negative are
    listed as outstanding, largest debt first.
    """
    rows = coerce_models(LedgerEntry, entries)

    payments = 0.0
    gross_purchases = 0.0
    purchase_sum = 0.0
    balances: dict[str, float] = defaultdict(float)
    owners: dict[str, Optional[str]] = {}

    for entry in rows:
        if entry.type == LedgerEntryType.PAYMENT:
            payments += entry.amount
        else:
            purchase_sum += entry.amount
            if entry.amount < 0:
                gross_purchases += -entry.amount

        account = entry.account_id or entry.member_id
        if account:
            balances[account] += entry.amount
            owners.setdefault(account, entry.member_id)

    net_revenue = -purchase_sum
    outstanding = sorted(
        (
            AccountBalance(account_id=account, member_id=owners.get(account), balance=round(balance, 2))
            for account, balance in balances.items()
            if round(balance, 2) < 0
        ),
        key=lambda b: b.balance,
    )

    return LedgerSummary(
        payments=round(payments, 2),
        purchases=round(gross_purchases, 2),
        net_revenue=round(net_revenue, 2),
        accounts_receivable=round(net_revenue - payments, 2),
        entry_count=len(rows),
        outstanding_accounts=outstanding,
    )


# Deltas and formatting

def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def metric_delta(current: Any, prior: Any, inverse: bool = False) -> MetricDelta:
    """
    Current-minus-prior change of a displayed metric.

    direction says whether the change is good (positive) or bad (negative)
    for the business; for inverse metrics such as churn a rise is negative.
    Missing values give a neutral delta of None.
    """
    current_value = _as_number(current)
    prior_value = _as_number(prior)
    if current_value is None or prior_value is None:
        return MetricDelta(current=current_value, prior=prior_value, inverse=inverse)

    delta = round(current_value - prior_value, 6)
    if delta == 0:
        direction = DeltaDirection.NEUTRAL
    elif (delta > 0) != inverse:
        direction = DeltaDirection.POSITIVE
    else:
        direction = DeltaDirection.NEGATIVE

    return MetricDelta(
        current=current_value,
        prior=prior_value,
        delta=delta,
        direction=direction,
        inverse=inverse,
    )


def format_currency(value: Any, decimals: int = 0) -> str:
    """'$1,234' style; '--' for missing values."""
    number = _as_number(value)
    if number is None:
        return PLACEHOLDER
    text = f"${abs(number):,.{decimals}f}"
    return f"-{text}" if round(number, decimals) < 0 else text


def format_percent(value: Any, decimals: int = 1) -> str:
    """Format a ratio (0.125) as '12.5%'; '--' for missing values."""
    number = _as_number(value)
    if number is None:
        return PLACEHOLDER
    return f"{number * 100:.{decimals}f}%"


def format_delta(delta: Optional[MetricDelta], style: str = "number", decimals: int = 0) -> str:
    """
    Signed change for a KPI card.

    style is 'currency' (+$120), 'percent' for ratios (+2.5pp) or 'number' (+3).
    Missing deltas and changes between two zero values render '--'.
    """
    if delta is None or delta.delta is None:
        return PLACEHOLDER
    if not delta.current and not delta.prior:
        return PLACEHOLDER

    sign = "+" if delta.delta >= 0 else "-"
    magnitude = abs(delta.delta)
    if style == "currency":
        return f"{sign}${magnitude:,.{decimals}f}"
    if style == "percent":
        return f"{sign}{magnitude * 100:.{max(decimals, 1)}f}pp"
    return f"{sign}{magnitude:,.{decimals}f}"


# Summary

def compute_business_summary(
    period_ledger: Iterable[LedgerLike],
    prior_period_ledger: Iterable[LedgerLike],
    period_members: Iterable[SnapshotLike],
    prior_period_members: Iterable[SnapshotLike],
    month: Optional[DateLike] = None,
    before_prior_members: Optional[Iterable[SnapshotLike]] = None,
) -> BusinessSummary:
    """
    Full KPI summary for a period against the period before it.

    Args:
        period_ledger: Ledger rows dated in the period
        prior_period_ledger: Ledger rows dated in the prior period
        period_members: Member snapshots at the end of the period
        prior_period_members: Member snapshots at the end of the prior period
        month: Period month (defaults to the snapshots' snapshot_month)
        before_prior_members: Snapshots at the end of the month before the
            prior one. With them the prior period gets full member counts
            and rates (new, churned, logo churn); without them only
            point-in-time counts.

    Returns:
        BusinessSummary with MRR bridge, counts, retention rates, ledger
        rollups and display deltas
    """
    with tracer.start_as_current_span("business_metrics.compute_business_summary") as span:
        current_by_id = _index(period_members)
        prior_by_id = _index(prior_period_members)
        current = list(current_by_id.values())
        prior = list(prior_by_id.values())

        period = month_start(month) if month is not None else _period_of(current)
        prior_period = prior_month_start(period) if period is not None else _period_of(prior)

        bridge = compute_mrr_bridge(prior, current, period)
        counts = compute_member_counts(current, prior, period)
        prior_rates = None
        if before_prior_members is not None:
            before_prior = list(_index(before_prior_members).values())
            prior_counts = compute_member_counts(prior, before_prior, prior_period)
            prior_rates = compute_retention_rates(
                compute_mrr_bridge(before_prior, prior, prior_period),
                prior_counts,
                sum(1 for s in before_prior if _mrr(s) > 0),
            )
        else:
            prior_counts = MemberCounts(
                active_members=sum(1 for s in prior if _mrr(s) > 0),
                paused_members=sum(1 for s in prior if _mrr(s) == 0 and s.is_paused),
            )
        rates = compute_retention_rates(bridge, counts, prior_counts.active_members)
        ledger = summarize_ledger(period_ledger)
        prior_ledger = summarize_ledger(prior_period_ledger)

        mrr = bridge.ending_mrr
        prior_mrr = bridge.starting_mrr
        deltas = {
            "mrr": metric_delta(mrr, prior_mrr),
            "arr": metric_delta(mrr * 12, prior_mrr * 12),
            "active_members": metric_delta(counts.active_members, prior_counts.active_members),
            "paused_members": metric_delta(
                counts.paused_members, prior_counts.paused_members, inverse=True
            ),
            "net_revenue": metric_delta(ledger.net_revenue, prior_ledger.net_revenue),
            "payments": metric_delta(ledger.payments, prior_ledger.payments),
            "accounts_receivable": metric_delta(
                ledger.accounts_receivable, prior_ledger.accounts_receivable, inverse=True
            ),
        }
        if prior_rates is not None:
            deltas["new_members"] = metric_delta(counts.new_members, prior_counts.new_members)
            deltas["churned_members"] = metric_delta(
                counts.churned_members, prior_counts.churned_members, inverse=True
            )
            deltas["logo_churn_rate"] = metric_delta(
                rates.logo_churn_rate, prior_rates.logo_churn_rate, inverse=True
            )

        span.set_attribute("member_count", len(current))
        span.set_attribute("ledger_entries", ledger.entry_count)

        return BusinessSummary(
            month=period,
            prior_month=prior_period,
            mrr=mrr,
            prior_mrr=prior_mrr,
            arr=round(mrr * 12, 2),
            mrr_bridge=bridge,
            member_counts=counts,
            prior_member_counts=prior_counts,
            rates=rates,
            prior_rates=prior_rates,
            ledger=ledger,
            prior_ledger=prior_ledger,
            deltas=deltas,
        )


def compute_business_series(
    snapshots_by_month: Mapping[Any, Iterable[SnapshotLike]],
    months: Sequence[DateLike],
    ledger_by_month: Optional[Mapping[Any, Iterable[LedgerLike]]] = None,
) -> list[BusinessSeriesPoint]:
    """
    Month-by-month chart series.

    Each month is bridged against the month before it, so snapshots_by_month
    should also hold the month before the earliest one; a missing month is
    treated as having no snapshots.

    Args:
        snapshots_by_month: Member snapshots keyed by any date in their month
        months: Months to report, in any order
        ledger_by_month: Optional ledger rows per month for net revenue

    Returns:
        One BusinessSeriesPoint per month, oldest first
    """
    by_month = {month_start(key): list(rows) for key, rows in snapshots_by_month.items()}
    ledgers = {month_start(key): rows for key, rows in (ledger_by_month or {}).items()}

    series = []
    for month in sorted({month_start(m) for m in months}):
        current = by_month.get(month, [])
        prior = by_month.get(prior_month_start(month), [])

        bridge = compute_mrr_bridge(prior, current, month)
        counts = compute_member_counts(current, prior, month)
        prior_active = sum(1 for s in _index(prior).values() if _mrr(s) > 0)
        rates = compute_retention_rates(bridge, counts, prior_active)

        series.append(BusinessSeriesPoint(
            month=month,
            mrr=bridge.ending_mrr,
            active_members=counts.active_members,
            new_members=counts.new_members,
            churned_members=counts.churned_members,
            paused_members=counts.paused_members,
            new_mrr=bridge.new_mrr,
            expansion_mrr=bridge.expansion_mrr,
            contraction_mrr=bridge.contraction_mrr,
            churned_mrr=bridge.churned_mrr,
            paused_mrr=bridge.paused_mrr,
            net_new_mrr=bridge.net_new_mrr,
            nrr=rates.nrr,
            grr=rates.grr,
            net_revenue=summarize_ledger(ledgers.get(month, [])).net_revenue,
        ))
    return series


# Alerts

def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key.strip()).lower()


def alert_metric_value(summary: BusinessSummary, metric_key: str) -> Optional[float]:
    """
    Current value of an alert metric, or None when the summary does not carry it.

    Rates, counts, MRR/ARR and ledger totals are looked up by name
    (logo_churn_rate and logoChurnRate are the same key). mrr_drop_pct is the
    fractional MRR decline against the prior month.
    """
    key = _snake_case(metric_key)
    if key == "mrr_drop_pct":
        return safe_divide(summary.prior_mrr - summary.mrr, summary.prior_mrr)
    if key in ("mrr", "arr"):
        return getattr(summary, key)
    for section in (summary.rates, summary.member_counts, summary.ledger):
        if key in type(section).model_fields:
            value = getattr(section, key)
            return float(value) if isinstance(value, (int, float)) else None
    return None


def evaluate_alerts(
    summary: BusinessSummary,
    alerts: Iterable[Union[DashboardAlert, dict[str, Any]]],
    now: Optional[datetime] = None,
) -> list[AlertStatus]:
    """
    Evaluate enabled alert rules against a business summary.

    A rule triggers when its metric is strictly above (or below) the
    threshold. Rules on metrics the summary does not carry never trigger and
    report current_value None.
    """
    evaluated_at = now or datetime.now(pytz.utc)
    results = []
    for alert in coerce_models(DashboardAlert, alerts):
        if not alert.is_enabled:
            continue
        value = alert_metric_value(summary, alert.metric_key)
        if value is None:
            logger.warning(f"Alert {alert.alert_key!r} uses unknown metric {alert.metric_key!r}")
            triggered = False
        elif alert.threshold_type == ThresholdType.BELOW:
            triggered = value < alert.threshold_value
        else:
            triggered = value > alert.threshold_value

        results.append(AlertStatus(
            alert_key=alert.alert_key,
            label=alert.label,
            description=alert.description,
            metric_key=alert.metric_key,
            threshold_value=alert.threshold_value,
            threshold_type=alert.threshold_type,
            current_value=value,
            is_triggered=triggered,
            last_evaluated_at=evaluated_at,
            last_triggered_at=evaluated_at if triggered else alert.last_triggered_at,
        ))

    triggered_count = sum(1 for r in results if r.is_triggered)
    if triggered_count:
        logger.info(f"{triggered_count} of {len(results)} business alerts triggered")
    return results


# Cohorts

def compute_cohort_retention(
    snapshots_by_month: Mapping[Any, Iterable[SnapshotLike]],
    months: Sequence[DateLike],
) -> list[CohortRow]:
    """
    Month-by-month retention of members grouped by the month they first paid.

    Only cohorts whose month is among `months` are reported. Cohort size is
    the number of cohort members paying at the end of the cohort month;
    empty cohorts are left out.
    """
    month_list = sorted({month_start(m) for m in months})
    by_month: dict[date, list[MemberSnapshot]] = {
        month_start(key): coerce_models(MemberSnapshot, rows)
        for key, rows in snapshots_by_month.items()
    }

    cohort_of: dict[str, date] = {}
    for month in sorted(by_month):
        for snapshot in by_month[month]:
            if snapshot.first_paid_date and snapshot.member_id not in cohort_of:
                cohort_of[snapshot.member_id] = month_start(snapshot.first_paid_date)

    def paying(month: date, members: set[str]) -> int:
        return sum(
            1 for s in by_month.get(month, [])
            if s.member_id in members and _mrr(s) > 0
        )

    rows = []
    for cohort_month in sorted(set(cohort_of.values()) & set(month_list)):
        members = {m for m, c in cohort_of.items() if c == cohort_month}
        size = paying(cohort_month, members)
        if size == 0:
            continue
        retention = []
        for month in month_list:
            if month < cohort_month:
                continue
            retained = paying(month, members)
            retention.append(CohortPoint(month=month, retained=retained, rate=safe_divide(retained, size)))
        rows.append(CohortRow(cohort_month=cohort_month, cohort_size=size, retention=retention))

    return rows
