"""Pytest configuration and shared fixtures."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest

from venue_dashboard.core.config import get_settings
from venue_dashboard.services.data_api_client import DataApiClient

TEST_JWT_SECRET = "test-secret-with-enough-length-for-hs256"
DATA_API_URL = "http://data-api.test"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings for every test."""
    settings = get_settings()
    monkeypatch.setattr(settings, "jwt_secret", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "data_api_url", DATA_API_URL)
    monkeypatch.setattr(settings, "data_api_key", "anon-key")
    monkeypatch.setattr(settings, "business_timezone", "America/Chicago")
    monkeypatch.setattr(settings, "dispatch_window_minutes", 10)
    monkeypatch.setattr(settings, "revenue_per_cover", 50.0)
    return settings


@pytest.fixture
def make_token(test_settings):
    """Factory for signed session tokens."""

    def _make(access_level=None, expires_in=3600, sub="user-1", **claims):
        payload = {
            "sub": sub,
            "aud": test_settings.jwt_audience,
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        }
        if access_level:
            payload["app_metadata"] = {"access_level": access_level}
        payload.update(claims)
        return jwt.encode(payload, test_settings.jwt_secret, algorithm=test_settings.jwt_algorithm)

    return _make


def _matches(value, operator: str, operand: str) -> bool:
    if operator == "eq":
        return str(value).lower() == operand.lower()
    if value is None:
        return False
    try:
        left, right = float(value), float(operand)
    except (TypeError, ValueError):
        left, right = str(value), operand
    return {
        "lt": left < right,
        "lte": left <= right,
        "gt": left > right,
        "gte": left >= right,
    }.get(operator, True)


class FakeDataApi:
    """
    In-memory stand-in for the hosted data API.

    Table reads honour eq/lt/lte/gt/gte filters (timestamps compare as ISO
    strings) and ignore or/and groups; endpoint reads answer in the
    {success, data} shape. Paths listed in `failing` answer 500.
    """

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.endpoints: dict[str, list[dict]] = {}
        self.failing: set[str] = set()
        self.requests: list[httpx.Request] = []
        self.upserted: list[dict] = []
        self.patched: list[tuple[dict, dict]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.failing:
            return httpx.Response(500, json={"error": {"message": "upstream exploded"}})

        if request.method == "POST":
            self.upserted.extend(json.loads(request.content))
            return httpx.Response(201)

        if request.method == "PATCH":
            self.patched.append((dict(request.url.params), json.loads(request.content)))
            return httpx.Response(204)

        if path.startswith("/rest/v1/"):
            rows = self.tables.get(path[len("/rest/v1/"):], [])
            for column, condition in request.url.params.items():
                if column in ("select", "order", "or", "and"):
                    continue
                operator, _, operand = condition.partition(".")
                rows = [r for r in rows if _matches(r.get(column), operator, operand)]
            return httpx.Response(200, json=rows)

        if path.startswith("/api/"):
            rows = self.endpoints.get(path[len("/api/"):], [])
            return httpx.Response(200, json={"success": True, "data": rows})

        return httpx.Response(404, json={"error": "not found"})

    def client(self, access_token: str = "user-token") -> DataApiClient:
        return DataApiClient(
            DATA_API_URL,
            "anon-key",
            access_token=access_token,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def fake_api() -> FakeDataApi:
    return FakeDataApi()


@pytest.fixture
def friday_rule() -> dict:
    return {
        "id": 1,
        "type": "base",
        "day_of_week": 5,
        "time_ranges": [{"start_time": "18:00", "end_time": "23:00"}],
    }


@pytest.fixture
def saturday_rule() -> dict:
    return {"id": 2, "type": "base", "day_of_week": 6, "time_ranges": None}
