"""
Client for the hosted data API.

Two surfaces are used:
- the hosted backend's REST table interface (/rest/v1/<table>) for venue
  hours, private events, tables, snapshots, templates, alert rules and
  admins
- the dashboard's own endpoints (/api/members, /api/ledger, ...)

The endpoints answer in several shapes ({success, data}, {data, count, total},
a bare list, or {data, error}); normalize_rows is the only place that knows
about them.

The client is created per request with the caller's session token and passed
to whatever needs it. There is no module-level client.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional, Union

import httpx

from ..core.config import Settings
from ..core.errors import DataApiError
from ..core.observability import get_tracer
from ..models.business import AlertStatus, DashboardAlert, LedgerEntry, Member, MemberSnapshot
from ..models.campaign import CampaignTemplate
from ..models.reservation import Reservation, Table
from ..models.venue import PrivateEvent, VenueHourRule, VenueHourType
from ..utils.rows import coerce_models
from ..utils.timezone_utils import local_date

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

FilterValue = Union[str, int, float, bool, date, datetime]
Filters = dict[str, Union[FilterValue, tuple[str, FilterValue]]]

_LOGIC_KEYS = ("or", "and")


def normalize_rows(payload: Any) -> list[dict[str, Any]]:
    """
    Extract the row list from any response shape the data API uses.

    Raises:
        DataApiError: If the payload carries a non-null 'error' or is not a
            recognizable shape
    """
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise DataApiError.malformed(f"Unexpected response type: {type(payload).__name__}")

    error = payload.get("error")
    if error:
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        raise DataApiError(message, body=payload)
    if payload.get("success") is False:
        raise DataApiError(str(payload.get("message") or "Request was not successful"), body=payload)

    data = payload.get("data")
    if data is None:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    raise DataApiError.malformed(f"Unexpected 'data' type: {type(data).__name__}")


def _filter_value(value: FilterValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def build_filters(filters: Optional[Filters]) -> dict[str, str]:
    """
    Translate filters to REST query parameters.

    A plain value is an equality filter; a (operator, value) tuple uses the
    given operator, e.g. {"date": ("gte", day)} -> date=gte.2024-06-01.
    An "or" entry is passed through as a raw condition group.
    """
    params = {}
    for column, condition in (filters or {}).items():
        if column in _LOGIC_KEYS:
            params[column] = str(condition)
            continue
        operator, value = condition if isinstance(condition, tuple) else ("eq", condition)
        params[column] = f"{operator}.{_filter_value(value)}"
    return params


def _overlaps(event: PrivateEvent, start: date, end: date) -> bool:
    """Whether an event touches any wall-clock date in start..end."""
    first = local_date(event.start_time)
    last = local_date(event.end_time) if event.end_time else first
    return first <= end and max(first, last) >= start


def _monday_based_weekdays(row: Any) -> Any:
    """Stored recurring_weekdays count from Sunday; templates count from Monday."""
    if not isinstance(row, dict) or not isinstance(row.get("recurring_weekdays"), list):
        return row
    weekdays = [
        (d - 1) % 7 if isinstance(d, int) and not isinstance(d, bool) else d
        for d in row["recurring_weekdays"]
    ]
    return {**row, "recurring_weekdays": weekdays}


class DataApiClient:
    """
    Async client for the hosted data API.

    Every read has a strict form that raises DataApiError and a safe form
    (the typed list_* readers) that logs the failure and returns an empty
    list, so a dashboard renders partial data instead of failing.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Data API base URL
            api_key: Project API key sent as 'apikey'
            access_token: Caller's session token (falls back to api_key)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Accept": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        logger.debug(f"DataApiClient initialized for {base_url}")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        access_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "DataApiClient":
        return cls(
            base_url=settings.data_api_url,
            api_key=settings.data_api_key,
            access_token=access_token,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    @classmethod
    def privileged(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "DataApiClient":
        """Client acting with the service key (snapshot table reads and writes)."""
        return cls(
            base_url=settings.data_api_url,
            api_key=settings.privileged_key,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "DataApiClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        with tracer.start_as_current_span("data_api.request") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("data_api.path", path)
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                span.set_attribute("error", True)
                raise DataApiError.network(f"{method} {path} failed: {e}") from e

            span.set_attribute("http.status_code", response.status_code)
            body: Any = None
            if response.content:
                try:
                    body = response.json()
                except ValueError:
                    if response.is_success:
                        raise DataApiError.malformed(f"{method} {path} returned non-JSON body")
                    body = response.text

            if not response.is_success:
                message = f"{method} {path} returned {response.status_code}"
                if isinstance(body, dict) and (body.get("error") or body.get("message")):
                    detail = body.get("error") or body.get("message")
                    if isinstance(detail, dict):
                        detail = detail.get("message", detail)
                    message = f"{message}: {detail}"
                raise DataApiError(message, status_code=response.status_code, body=body)

            return body

    async def fetch_table(
        self,
        table: str,
        filters: Optional[Filters] = None,
        select: str = "*",
        order: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Read rows from a table through the REST interface."""
        params = {"select": select, **build_filters(filters)}
        if order:
            params["order"] = order
        return normalize_rows(await self._request("GET", f"/rest/v1/{table}", params=params))

    async def fetch_endpoint(self, path: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        """Read rows from a dashboard endpoint such as 'members' or 'ledger'."""
        path = path if path.startswith("/") else f"/api/{path}"
        return normalize_rows(await self._request("GET", path, params=params or {}))

    async def safe_fetch_table(self, table: str, filters: Optional[Filters] = None, **kwargs) -> list[dict[str, Any]]:
        try:
            return await self.fetch_table(table, filters, **kwargs)
        except DataApiError as e:
            logger.error(f"Failed to read table {table}, using empty result: {e}")
            return []

    async def safe_fetch_endpoint(self, path: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        try:
            return await self.fetch_endpoint(path, params)
        except DataApiError as e:
            logger.error(f"Failed to read endpoint {path}, using empty result: {e}")
            return []

    # Typed readers

    async def list_venue_hours(self) -> tuple[list[VenueHourRule], list[VenueHourRule]]:
        """Base and exceptional venue-hours rules."""
        rules = coerce_models(VenueHourRule, await self.safe_fetch_table("venue_hours"))
        base = [r for r in rules if r.type == VenueHourType.BASE]
        exceptional = [r for r in rules if r.is_exceptional]
        return base, exceptional

    async def list_private_events(self, start: date, end: date) -> list[PrivateEvent]:
        """
        Private events that overlap start..end (inclusive) on the venue's wall clock.

        The query widens the range by a day on each side so that UTC storage
        never hides an event near midnight, and includes events that started
        earlier but run into the range; the exact overlap is checked here.
        """
        lower = (start - timedelta(days=1)).isoformat()
        rows = await self.safe_fetch_table(
            "private_events",
            {
                "start_time": ("lt", end + timedelta(days=2)),
                "or": f"(end_time.gte.{lower},start_time.gte.{lower})",
            },
            order="start_time.asc",
        )
        return [e for e in coerce_models(PrivateEvent, rows) if _overlaps(e, start, end)]

    async def list_tables(self, min_seats: Optional[int] = None) -> list[Table]:
        """Dining tables, optionally only those seating at least min_seats."""
        filters: Filters = {"seats": ("gte", min_seats)} if min_seats else {}
        return coerce_models(Table, await self.safe_fetch_table("tables", filters, order="table_number.asc"))

    async def list_reservations(
        self, start: date, end: date
    ) -> list[Reservation]:
        """Reservations between start and end (inclusive)."""
        rows = await self.safe_fetch_endpoint(
            "reservations",
            {"start_date": start.isoformat(), "end_date": end.isoformat()},
        )
        return coerce_models(Reservation, rows)

    async def list_member_snapshots(self, month: date) -> list[MemberSnapshot]:
        rows = await self.safe_fetch_table(
            "member_subscription_snapshots", {"snapshot_month": month}
        )
        return coerce_models(MemberSnapshot, rows)

    async def list_members(self) -> list[Member]:
        return coerce_models(Member, await self.safe_fetch_endpoint("members"))

    async def list_ledger(self, start: date, end: date) -> list[LedgerEntry]:
        """Ledger rows dated between start and end (inclusive)."""
        rows = await self.safe_fetch_endpoint(
            "ledger",
            {"start_date": start.isoformat(), "end_date": end.isoformat()},
        )
        entries = coerce_models(LedgerEntry, rows)
        return [e for e in entries if start <= e.date <= end]

    async def list_campaign_templates(self, active_only: bool = True) -> list[CampaignTemplate]:
        """Templates with stored weekdays (0 = Sunday) converted to 0 = Monday."""
        filters: Filters = {"is_active": True} if active_only else {}
        rows = await self.safe_fetch_table("campaign_templates", filters)
        return coerce_models(CampaignTemplate, [_monday_based_weekdays(row) for row in rows])

    async def list_admins(self) -> list[dict[str, Any]]:
        return await self.safe_fetch_table("admins", order="created_at.desc")

    async def list_dashboard_alerts(self) -> list[DashboardAlert]:
        rows = await self.safe_fetch_table("business_dashboard_alerts", {"is_enabled": True})
        return coerce_models(DashboardAlert, rows)

    # Writes

    async def upsert_member_snapshots(self, snapshots: Iterable[MemberSnapshot]) -> int:
        """
        Insert or update snapshot rows keyed by (member_id, snapshot_month).

        Raises:
            DataApiError: If the write fails
        """
        rows = [s.model_dump(mode="json") for s in snapshots]
        if not rows:
            return 0
        await self._request(
            "POST",
            "/rest/v1/member_subscription_snapshots",
            params={"on_conflict": "member_id,snapshot_month"},
            json=rows,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.info(f"Upserted {len(rows)} member snapshots")
        return len(rows)

    async def update_alert_state(self, status: AlertStatus) -> None:
        """
        Store the outcome of an alert evaluation on its rule row.

        Raises:
            DataApiError: If the write fails
        """
        state: dict[str, Any] = {
            "is_triggered": status.is_triggered,
            "current_value": status.current_value,
            "last_evaluated_at": status.last_evaluated_at.isoformat(),
        }
        if status.is_triggered:
            state["last_triggered_at"] = status.last_evaluated_at.isoformat()
        await self._request(
            "PATCH",
            "/rest/v1/business_dashboard_alerts",
            params=build_filters({"alert_key": status.alert_key}),
            json=state,
            headers={"Prefer": "return=minimal"},
        )
