"""
Member ledger and business-metrics models.

LedgerEntry and MemberSnapshot mirror the 'ledger' and
'member_subscription_snapshots' tables. The remaining models are aggregation
results computed fresh per request and never persisted.
"""

# 'date' field names shadow the datetime types inside class bodies
import datetime as dt
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..utils.timezone_utils import coerce_date


class LedgerEntryType(str, Enum):
    """Ledger transaction kind."""

    PAYMENT = "payment"
    PURCHASE = "purchase"


class LedgerEntry(BaseModel):
    """
    Member ledger transaction.

    Payments are money received; purchases are member spend and are usually
    stored as negative amounts.
    """

    id: Optional[Union[int, str]] = None
    type: LedgerEntryType
    date: dt.date
    amount: float = 0.0
    account_id: Optional[str] = None
    member_id: Optional[str] = None
    note: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        """Ledger dates are sometimes stored as full timestamps."""
        if isinstance(v, str):
            return coerce_date(v)
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def null_amount(cls, v: Any) -> Any:
        return 0.0 if v is None else v


class AccountBalance(BaseModel):
    """Running balance of one account."""

    account_id: str
    member_id: Optional[str] = None
    balance: float


class LedgerSummary(BaseModel):
    """Monthly revenue and receivables rollup."""

    payments: float = Field(0.0, description="Money received")
    purchases: float = Field(0.0, description="Gross member spend")
    net_revenue: float = Field(0.0, description="Member spend net of refunds")
    accounts_receivable: float = Field(0.0, description="net_revenue - payments")
    entry_count: int = 0
    outstanding_accounts: list[AccountBalance] = Field(default_factory=list)


class Member(BaseModel):
    """
    Member record (subset used for subscription snapshots).

    monthly_dues and status stand in for the payment processor's
    subscription state.
    """

    member_id: str
    account_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    monthly_dues: float = 0.0
    join_date: Optional[dt.date] = None
    dob: Optional[dt.date] = None
    deactivated: bool = False

    @field_validator("monthly_dues", mode="before")
    @classmethod
    def null_dues(cls, v: Any) -> Any:
        return 0.0 if v in (None, "") else v

    @field_validator("deactivated", mode="before")
    @classmethod
    def null_deactivated(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("join_date", "dob", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        if isinstance(v, str):
            return coerce_date(v) if v.strip() else None
        return v

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class MemberSnapshot(BaseModel):
    """
    End-of-month subscription snapshot for one member.

    Attributes:
        member_id: Member identifier
        snapshot_month: First day of the month the snapshot describes
        mrr: Normalized monthly recurring charge (0 when not paying)
        subscription_status: active, paused or canceled
        first_paid_date: First date the member paid dues (optional)
    """

    member_id: str
    snapshot_month: Optional[dt.date] = None
    mrr: float = 0.0
    plan_name: Optional[str] = None
    plan_interval: Optional[str] = None
    plan_amount: float = 0.0
    subscription_status: str = "active"
    first_paid_date: Optional[dt.date] = None

    @field_validator("mrr", "plan_amount", mode="before")
    @classmethod
    def null_amount(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @field_validator("snapshot_month", "first_paid_date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        if isinstance(v, str):
            return coerce_date(v) if v.strip() else None
        return v

    @field_validator("subscription_status", mode="before")
    @classmethod
    def null_status(cls, v: Any) -> Any:
        return "active" if v is None else str(v).lower()

    @property
    def is_paused(self) -> bool:
        return self.subscription_status == "paused"


class MovementType(str, Enum):
    """How a member's recurring charge moved between two periods."""

    NEW = "new"
    REACTIVATION = "reactivation"
    EXPANSION = "expansion"
    CONTRACTION = "contraction"
    CHURNED = "churned"
    PAUSED = "paused"


class MemberMovement(BaseModel):
    """Drilldown row for one member's MRR change."""

    member_id: str
    name: Optional[str] = None
    movement: MovementType
    prior_mrr: float
    current_mrr: float
    delta: float


class MrrBridge(BaseModel):
    """Decomposition of the MRR change between two periods."""

    starting_mrr: float = 0.0
    ending_mrr: float = 0.0
    new_mrr: float = 0.0
    expansion_mrr: float = 0.0
    contraction_mrr: float = 0.0
    churned_mrr: float = 0.0
    paused_mrr: float = 0.0
    net_new_mrr: float = 0.0


class MemberCounts(BaseModel):
    """Member counts for a period."""

    active_members: int = 0
    new_members: int = 0
    churned_members: int = 0
    paused_members: int = 0


class RetentionRates(BaseModel):
    """Retention ratios; every ratio is 0 when its denominator is 0."""

    nrr: float = 0.0
    grr: float = 0.0
    logo_churn_rate: float = 0.0
    revenue_churn_rate: float = 0.0


class DeltaDirection(str, Enum):
    """Display classification of a change."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class MetricDelta(BaseModel):
    """Current vs prior value of a displayed metric."""

    current: Optional[float] = None
    prior: Optional[float] = None
    delta: Optional[float] = None
    direction: DeltaDirection = DeltaDirection.NEUTRAL
    inverse: bool = Field(False, description="Lower is better (churn-like metrics)")


class BusinessSummary(BaseModel):
    """Full KPI summary for one period."""

    month: Optional[dt.date] = None
    prior_month: Optional[dt.date] = None
    mrr: float = 0.0
    prior_mrr: float = 0.0
    arr: float = 0.0
    mrr_bridge: MrrBridge
    member_counts: MemberCounts
    prior_member_counts: MemberCounts
    rates: RetentionRates
    prior_rates: Optional[RetentionRates] = Field(
        None,
        description="Prior-period rates, when the month before the prior one is known",
    )
    ledger: LedgerSummary
    prior_ledger: LedgerSummary
    deltas: dict[str, MetricDelta] = Field(default_factory=dict)


class CohortPoint(BaseModel):
    month: dt.date
    retained: int
    rate: float


class CohortRow(BaseModel):
    """Retention of the members who first paid in cohort_month."""

    cohort_month: dt.date
    cohort_size: int
    retention: list[CohortPoint] = Field(default_factory=list)


class BusinessSeriesPoint(BaseModel):
    """One month of the dashboard chart series."""

    month: dt.date
    mrr: float = 0.0
    active_members: int = 0
    new_members: int = 0
    churned_members: int = 0
    paused_members: int = 0
    new_mrr: float = 0.0
    expansion_mrr: float = 0.0
    contraction_mrr: float = 0.0
    churned_mrr: float = 0.0
    paused_mrr: float = 0.0
    net_new_mrr: float = 0.0
    nrr: float = 0.0
    grr: float = 0.0
    net_revenue: float = 0.0


class ThresholdType(str, Enum):
    ABOVE = "above"
    BELOW = "below"


class DashboardAlert(BaseModel):
    """
    Alert rule from the 'business_dashboard_alerts' table.

    Attributes:
        alert_key: Unique key of the rule
        metric_key: Summary metric the threshold applies to
        threshold_value: Trigger threshold
        threshold_type: Trigger when the metric is above or below the threshold
        is_enabled: Disabled rules are not evaluated
    """

    alert_key: str
    label: str = ""
    description: Optional[str] = None
    metric_key: str
    threshold_value: float
    threshold_type: ThresholdType = ThresholdType.ABOVE
    is_enabled: bool = True
    last_triggered_at: Optional[dt.datetime] = None

    @field_validator("label", mode="before")
    @classmethod
    def null_label(cls, v: Any) -> Any:
        return "" if v is None else v


class AlertStatus(BaseModel):
    """Result of evaluating one alert rule against a summary."""

    alert_key: str
    label: str = ""
    description: Optional[str] = None
    metric_key: str
    threshold_value: float
    threshold_type: ThresholdType
    current_value: Optional[float] = Field(None, description="None when the metric is unknown")
    is_triggered: bool = False
    last_evaluated_at: dt.datetime
    last_triggered_at: Optional[dt.datetime] = None
