"""Tests for the data API client and response normalization."""

from datetime import date, datetime, timezone

import httpx
import pytest

from venue_dashboard.core.errors import DataApiError, ErrorCode
from venue_dashboard.models.business import AlertStatus, MemberSnapshot, ThresholdType
from venue_dashboard.services.data_api_client import DataApiClient, build_filters, normalize_rows


class TestNormalizeRows:
    """Tests for normalize_rows."""

    def test_success_envelope(self):
        assert normalize_rows({"success": True, "data": [{"id": 1}]}) == [{"id": 1}]

    def test_paginated_envelope(self):
        assert normalize_rows({"data": [{"id": 1}], "count": 1, "total": 40}) == [{"id": 1}]

    def test_bare_list(self):
        assert normalize_rows([{"id": 1}, {"id": 2}]) == [{"id": 1}, {"id": 2}]

    def test_sdk_shape_without_error(self):
        assert normalize_rows({"data": None, "error": None}) == []

    def test_sdk_error_raises(self):
        with pytest.raises(DataApiError) as exc_info:
            normalize_rows({"data": None, "error": {"message": "permission denied"}})
        assert exc_info.value.message == "permission denied"
        assert exc_info.value.code == ErrorCode.API_ERROR

    def test_unsuccessful_envelope_raises(self):
        with pytest.raises(DataApiError):
            normalize_rows({"success": False, "message": "nope"})

    def test_unexpected_shape_is_malformed(self):
        with pytest.raises(DataApiError) as exc_info:
            normalize_rows("<html>")
        assert exc_info.value.code == ErrorCode.MALFORMED_RESPONSE

    def test_none_payload(self):
        assert normalize_rows(None) == []


class TestBuildFilters:
    def test_equality_and_operators(self):
        params = build_filters({
            "is_active": True,
            "snapshot_month": date(2024, 6, 1),
            "start_time": ("gte", date(2024, 6, 1)),
        })
        assert params == {
            "is_active": "eq.true",
            "snapshot_month": "eq.2024-06-01",
            "start_time": "gte.2024-06-01",
        }

    def test_or_group_passed_through(self):
        params = build_filters({"or": "(end_time.gte.2024-06-01,start_time.gte.2024-06-01)"})
        assert params == {"or": "(end_time.gte.2024-06-01,start_time.gte.2024-06-01)"}


class TestDataApiClient:
    """Tests for DataApiClient against a mock transport."""

    async def test_table_read_sends_keys_and_filters(self, fake_api):
        fake_api.tables["member_subscription_snapshots"] = [
            {"member_id": "A", "snapshot_month": "2024-06-01", "mrr": 100},
            {"member_id": "B", "snapshot_month": "2024-05-01", "mrr": 100},
        ]
        async with fake_api.client("session-token") as client:
            snapshots = await client.list_member_snapshots(date(2024, 6, 1))

        assert [s.member_id for s in snapshots] == ["A"]
        request = fake_api.requests[0]
        assert request.url.path == "/rest/v1/member_subscription_snapshots"
        assert request.url.params["snapshot_month"] == "eq.2024-06-01"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer session-token"

    async def test_endpoint_read_unwraps_envelope(self, fake_api):
        fake_api.endpoints["members"] = [{"member_id": "1", "status": "active", "monthly_dues": 100}]
        async with fake_api.client() as client:
            members = await client.list_members()
        assert members[0].monthly_dues == 100
        assert fake_api.requests[0].url.path == "/api/members"

    async def test_venue_hours_split_by_type(self, fake_api, friday_rule):
        fake_api.tables["venue_hours"] = [
            friday_rule,
            {"type": "exceptional_closure", "date": "2024-06-14", "full_day": True},
            {"type": "base"},
        ]
        async with fake_api.client() as client:
            base, exceptional = await client.list_venue_hours()
        assert len(base) == 1
        assert len(exceptional) == 1

    async def test_strict_read_raises_on_error_status(self, fake_api):
        fake_api.failing.add("/api/ledger")
        async with fake_api.client() as client:
            with pytest.raises(DataApiError) as exc_info:
                await client.fetch_endpoint("ledger")
        assert exc_info.value.status_code == 500
        assert "upstream exploded" in exc_info.value.message

    async def test_safe_read_degrades_to_empty(self, fake_api):
        fake_api.failing.add("/api/ledger")
        async with fake_api.client() as client:
            entries = await client.list_ledger(date(2024, 6, 1), date(2024, 6, 30))
        assert entries == []

    async def test_network_failure(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = DataApiClient("http://data-api.test", "anon-key", transport=httpx.MockTransport(refuse))
        try:
            with pytest.raises(DataApiError) as exc_info:
                await client.fetch_table("admins")
            assert exc_info.value.code == ErrorCode.NETWORK_ERROR
            assert await client.list_admins() == []
        finally:
            await client.aclose()

    async def test_ledger_rows_outside_range_dropped(self, fake_api):
        fake_api.endpoints["ledger"] = [
            {"type": "payment", "date": "2024-06-10", "amount": 10},
            {"type": "payment", "date": "2024-07-01", "amount": 10},
        ]
        async with fake_api.client() as client:
            entries = await client.list_ledger(date(2024, 6, 1), date(2024, 6, 30))
        assert [e.date for e in entries] == [date(2024, 6, 10)]

    async def test_upsert_snapshots(self, fake_api):
        snapshots = [MemberSnapshot(member_id="A", snapshot_month=date(2024, 6, 1), mrr=100)]
        async with fake_api.client() as client:
            assert await client.upsert_member_snapshots(snapshots) == 1
        request = fake_api.requests[0]
        assert request.method == "POST"
        assert request.url.params["on_conflict"] == "member_id,snapshot_month"
        assert fake_api.upserted[0]["snapshot_month"] == "2024-06-01"

    async def test_privileged_client_uses_service_key(self, fake_api, test_settings, monkeypatch):
        monkeypatch.setattr(test_settings, "data_api_service_key", "service-key")
        async with DataApiClient.privileged(test_settings, transport=httpx.MockTransport(fake_api.handler)) as client:
            await client.list_member_snapshots(date(2024, 6, 1))
        request = fake_api.requests[0]
        assert request.headers["apikey"] == "service-key"
        assert request.headers["Authorization"] == "Bearer service-key"

    async def test_upsert_failure_raises(self, fake_api):
        fake_api.failing.add("/rest/v1/member_subscription_snapshots")
        async with fake_api.client() as client:
            with pytest.raises(DataApiError):
                await client.upsert_member_snapshots([MemberSnapshot(member_id="A", mrr=1)])

    async def test_private_events_include_events_started_before_range(self, fake_api):
        """An event that began the evening before still overlaps the day."""
        fake_api.tables["private_events"] = [
            {"id": 1, "start_time": "2024-06-07T20:00:00", "end_time": "2024-06-08T16:00:00"},
            {"id": 2, "start_time": "2024-06-07T10:00:00", "end_time": "2024-06-07T12:00:00"},
            {"id": 3, "start_time": "2024-06-08T19:00:00"},
        ]
        async with fake_api.client() as client:
            events = await client.list_private_events(date(2024, 6, 8), date(2024, 6, 8))

        assert [e.id for e in events] == [1, 3]
        params = fake_api.requests[0].url.params
        assert params["start_time"] == "lt.2024-06-10"
        assert params["or"] == "(end_time.gte.2024-06-07,start_time.gte.2024-06-07)"

    async def test_tables_filtered_by_seats(self, fake_api):
        fake_api.tables["tables"] = [
            {"id": 1, "table_number": "1", "seats": 2},
            {"id": 2, "table_number": "2", "seats": 6},
        ]
        async with fake_api.client() as client:
            tables = await client.list_tables(min_seats=4)
        assert [t.id for t in tables] == [2]
        assert fake_api.requests[0].url.params["seats"] == "gte.4"

    async def test_template_weekdays_converted_to_monday_based(self, fake_api):
        """Stored weekdays count from Sunday; 0 (Sunday) becomes 6, 2 (Tuesday) becomes 1."""
        fake_api.tables["campaign_templates"] = [
            {"id": 1, "name": "Weekly", "is_active": True, "timing_type": "recurring",
             "recurring_type": "weekly", "recurring_weekdays": [0, 2]},
        ]
        async with fake_api.client() as client:
            templates = await client.list_campaign_templates()
        assert templates[0].recurring_weekdays == [6, 1]

    async def test_only_enabled_alerts_listed(self, fake_api):
        fake_api.tables["business_dashboard_alerts"] = [
            {"alert_key": "mrr_drop", "metric_key": "mrr_drop_pct", "threshold_value": 0.1, "is_enabled": True},
            {"alert_key": "churn", "metric_key": "logo_churn_rate", "threshold_value": 0.05, "is_enabled": False},
        ]
        async with fake_api.client() as client:
            alerts = await client.list_dashboard_alerts()
        assert [a.alert_key for a in alerts] == ["mrr_drop"]

    async def test_update_alert_state(self, fake_api):
        evaluated = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)
        status = AlertStatus(
            alert_key="mrr_drop", metric_key="mrr_drop_pct", threshold_value=0.1,
            threshold_type=ThresholdType.ABOVE, current_value=0.2, is_triggered=True,
            last_evaluated_at=evaluated,
        )
        async with fake_api.client() as client:
            await client.update_alert_state(status)

        params, body = fake_api.patched[0]
        assert params == {"alert_key": "eq.mrr_drop"}
        assert body["is_triggered"] is True
        assert body["current_value"] == 0.2
        assert body["last_triggered_at"] == evaluated.isoformat()
