"""Tests for the HTTP API: cron authentication, API keys and endpoints.

The database dependency is overridden with the in-memory test session and
the mailer with a recording fake, so the sweep never reaches the network.
"""

from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import NOW, TODAY, add_aircraft, add_flight, add_pilot
from fleet_compliance.compliance.policy import today_utc


class RecordingMailer:
    def __init__(self, fail_part107=False):
        self.sent = []
        self.fail_part107 = fail_part107

    def send_registration_expiry_alert(self, to, name, aircraft, days_until_expiry):
        self.sent.append(("registration", aircraft["registration_number"], days_until_expiry))
        return {"success": True, "data": {}, "status_code": 200}

    def send_part107_expiry_alert(self, to, name, certificate_number, days_until_expiry):
        if self.fail_part107:
            raise RuntimeError("mail backend exploded")
        self.sent.append(("part107", certificate_number, days_until_expiry))
        return {"success": True, "data": {}, "status_code": 200}

    def send_weekly_summary(self, to, name, stats):
        self.sent.append(("weekly", to))
        return {"success": True, "data": {}, "status_code": 200}


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(db, mailer, monkeypatch):
    """The API with controlled auth config and test dependencies."""
    import fleet_compliance.http_server as srv
    from fleet_compliance.database.session import get_db

    monkeypatch.setattr(srv, "API_KEYS", set())
    monkeypatch.setenv("CRON_SECRET", "cron-s3cret")

    srv.app.dependency_overrides[get_db] = lambda: db
    srv.app.dependency_overrides[srv.get_mailer] = lambda: mailer
    yield srv.app
    srv.app.dependency_overrides.clear()


def _client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestHealthEndpoint:
    @pytest.mark.anyio
    async def test_health(self, app):
        async with _client(app) as client:
            resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["service"] == "fleet-compliance"


class TestCronAuth:
    """The cron endpoint requires an exact 'Bearer <CRON_SECRET>' header."""

    @pytest.mark.anyio
    async def test_missing_header_rejected(self, app):
        async with _client(app) as client:
            resp = await client.get("/api/cron/compliance-alerts")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    @pytest.mark.anyio
    async def test_wrong_secret_rejected(self, app):
        async with _client(app) as client:
            resp = await client.get(
                "/api/cron/compliance-alerts",
                headers={"Authorization": "Bearer wrong"},
            )
        assert resp.status_code == 401

    @pytest.mark.anyio
    async def test_raw_secret_without_bearer_rejected(self, app):
        async with _client(app) as client:
            resp = await client.get(
                "/api/cron/compliance-alerts",
                headers={"Authorization": "cron-s3cret"},
            )
        assert resp.status_code == 401

    @pytest.mark.anyio
    async def test_unset_secret_rejects_everything(self, app, monkeypatch):
        monkeypatch.delenv("CRON_SECRET")
        async with _client(app) as client:
            resp = await client.get(
                "/api/cron/compliance-alerts",
                headers={"Authorization": "Bearer "},
            )
        assert resp.status_code == 401

    @pytest.mark.anyio
    async def test_valid_secret_runs_sweep(self, app, db, mailer):
        add_pilot(db, certificate_expiry=today_utc() + timedelta(days=365))
        add_aircraft(db, registration_expiry=today_utc() + timedelta(days=14))

        async with _client(app) as client:
            resp = await client.get(
                "/api/cron/compliance-alerts",
                headers={"Authorization": "Bearer cron-s3cret"},
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["results"]["registration_alerts"] == 1
        assert data["results"]["errors"] == []
        assert ("registration", "FA3ABC123", 14) in mailer.sent

    @pytest.mark.anyio
    async def test_delivery_exception_recorded_per_item(self, app, db, mailer):
        mailer.fail_part107 = True
        add_pilot(db, certificate_expiry=today_utc() + timedelta(days=30))
        add_aircraft(db, registration_expiry=today_utc() + timedelta(days=7))

        async with _client(app) as client:
            resp = await client.get(
                "/api/cron/compliance-alerts",
                headers={"Authorization": "Bearer cron-s3cret"},
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["results"]["registration_alerts"] == 1
        assert data["results"]["part107_alerts"] == 0
        assert data["results"]["errors"] == [
            "Failed to send Part 107 alert for pilot@example.com: mail backend exploded"
        ]

    @pytest.mark.anyio
    async def test_unexpected_failure_returns_partial_results(self, app, db, monkeypatch):
        import fleet_compliance.cron as cron

        def explode(*args, **kwargs):
            raise RuntimeError("mail backend exploded")

        monkeypatch.setattr(cron, "check_part107_expiries", explode)
        add_pilot(db, certificate_expiry=today_utc() + timedelta(days=365))
        add_aircraft(db, registration_expiry=today_utc() + timedelta(days=7))

        async with _client(app) as client:
            resp = await client.get(
                "/api/cron/compliance-alerts",
                headers={"Authorization": "Bearer cron-s3cret"},
            )

        assert resp.status_code == 500
        data = resp.json()
        assert data["error"] == "mail backend exploded"
        assert data["results"]["registration_alerts"] == 1
        assert data["results"]["part107_alerts"] == 0


class TestApiKeyAuth:
    @pytest.mark.anyio
    async def test_dev_mode_allows_all(self, app):
        async with _client(app) as client:
            resp = await client.get("/api/users/pilot-1/compliance/score")
        assert resp.status_code == 200
        assert resp.json() == {"user_id": "pilot-1", "score": 100}

    @pytest.mark.anyio
    async def test_key_required_when_configured(self, app, monkeypatch):
        import fleet_compliance.http_server as srv

        monkeypatch.setattr(srv, "API_KEYS", {"key-1"})
        async with _client(app) as client:
            missing = await client.get("/api/users/pilot-1/compliance/score")
            wrong = await client.get(
                "/api/users/pilot-1/compliance/score",
                headers={"Authorization": "Bearer nope"},
            )
            bearer = await client.get(
                "/api/users/pilot-1/compliance/score",
                headers={"Authorization": "Bearer key-1"},
            )
            raw = await client.get(
                "/api/users/pilot-1/compliance/score",
                headers={"Authorization": "key-1"},
            )
        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert bearer.status_code == 200
        assert raw.status_code == 200

    def test_load_api_keys(self, monkeypatch):
        from fleet_compliance.http_server import _load_api_keys

        monkeypatch.setenv("COMPLIANCE_API_KEY", "single")
        monkeypatch.setenv("COMPLIANCE_API_KEYS", "a, b,,c")
        assert _load_api_keys() == {"single", "a", "b", "c"}


class TestFlightEndpoints:
    @pytest.mark.anyio
    async def test_evaluate(self, app, db):
        add_pilot(db, certificate_expiry=TODAY + timedelta(days=365))
        add_aircraft(db, registration_expiry=TODAY + timedelta(days=365))
        add_flight(db, max_altitude_ft=420.0)

        async with _client(app) as client:
            resp = await client.post(
                "/api/flights/fl-1/evaluate",
                json={"as_of": TODAY.isoformat(), "notify": False},
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["flight_id"] == "fl-1"
        assert data["status"] == "non_compliant"
        assert [v["type"] for v in data["violations"]] == ["airspace"]

    @pytest.mark.anyio
    async def test_evaluate_without_body(self, app, db):
        add_pilot(db, certificate_expiry=today_utc() + timedelta(days=365))
        add_aircraft(db, registration_expiry=today_utc() + timedelta(days=365))
        add_flight(db)

        async with _client(app) as client:
            resp = await client.post("/api/flights/fl-1/evaluate")

        assert resp.status_code == 200
        assert resp.json()["status"] == "compliant"

    @pytest.mark.anyio
    async def test_evaluate_unknown_flight(self, app):
        async with _client(app) as client:
            resp = await client.post("/api/flights/missing/evaluate")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Flight not found: missing"

    @pytest.mark.anyio
    async def test_reevaluate(self, app, db):
        add_pilot(db, certificate_expiry=TODAY + timedelta(days=365))
        add_aircraft(db, registration_expiry=TODAY + timedelta(days=365))
        add_flight(db, "fl-1")
        add_flight(db, "fl-2", remote_id_verified=False)

        async with _client(app) as client:
            resp = await client.post(
                "/api/users/pilot-1/flights/reevaluate", json={"as_of": TODAY.isoformat()}
            )

        assert resp.json() == {"user_id": "pilot-1", "evaluated": 2, "changed": 2, "errors": []}


class TestComplianceEndpoints:
    @pytest.mark.anyio
    async def test_summary(self, app, db):
        add_pilot(db)
        add_flight(db, "fl-1", compliance_status="compliant", start_time=datetime(2025, 5, 1, 9))
        add_flight(db, "fl-2", compliance_status="non_compliant", start_time=datetime(2025, 5, 20, 9))

        async with _client(app) as client:
            full = await client.get("/api/users/pilot-1/compliance/summary")
            window = await client.get(
                "/api/users/pilot-1/compliance/summary",
                params={"from_date": "2025-05-10", "to_date": "2025-05-31"},
            )

        assert full.json()["total_flights"] == 2
        assert window.json()["total_flights"] == 1
        assert window.json()["score"] == 0

    @pytest.mark.anyio
    async def test_violations_window(self, app, db):
        add_pilot(db, certificate_expiry=today_utc() + timedelta(days=365))
        add_aircraft(db, registration_expiry=today_utc() + timedelta(days=365))
        add_flight(
            db, compliance_status="non_compliant",
            start_time=datetime.combine(today_utc(), datetime.min.time()) - timedelta(days=3),
            max_altitude_ft=500.0,
        )

        async with _client(app) as client:
            resp = await client.get("/api/users/pilot-1/compliance/violations")

        data = resp.json()
        assert resp.status_code == 200
        assert data["count"] == 1
        assert data["violations"][0]["category"] == "Airspace"

    @pytest.mark.anyio
    async def test_violations_rejects_inverted_window(self, app):
        async with _client(app) as client:
            resp = await client.get(
                "/api/users/pilot-1/compliance/violations",
                params={"from_date": "2025-06-01", "to_date": "2025-05-01"},
            )
        assert resp.status_code == 422


class TestNotificationEndpoints:
    @pytest.mark.anyio
    async def test_check_expiry_then_read(self, app, db):
        add_pilot(db, certificate_expiry=today_utc() + timedelta(days=10))

        async with _client(app) as client:
            created = await client.post("/api/users/pilot-1/notifications/check-expiry")
            unread = await client.get("/api/users/pilot-1/notifications/unread-count")
            notification_id = created.json()["created"][0]["id"]
            read = await client.post(f"/api/notifications/{notification_id}/read")
            after = await client.get("/api/users/pilot-1/notifications/unread-count")

        assert created.json()["count"] == 1
        assert created.json()["created"][0]["title"] == "Part 107 Certificate Expiry"
        assert unread.json()["unread"] == 1
        assert read.json() == {"id": notification_id, "read": True}
        assert after.json()["unread"] == 0

    @pytest.mark.anyio
    async def test_list_and_read_all(self, app, db):
        from fleet_compliance.service import create_notification

        create_notification(db, "pilot-1", "Older", "m", created_at=NOW - timedelta(hours=3))
        create_notification(db, "pilot-1", "Newer", "m", created_at=NOW)

        async with _client(app) as client:
            listed = await client.get("/api/users/pilot-1/notifications")
            unread = await client.get(
                "/api/users/pilot-1/notifications", params={"unread": "true", "limit": 1}
            )
            marked = await client.post("/api/users/pilot-1/notifications/read-all")
            after = await client.get(
                "/api/users/pilot-1/notifications", params={"unread": "true"}
            )

        assert [n["title"] for n in listed.json()["notifications"]] == ["Newer", "Older"]
        assert [n["title"] for n in unread.json()["notifications"]] == ["Newer"]
        assert marked.json() == {"user_id": "pilot-1", "marked": 2}
        assert after.json()["count"] == 0

    @pytest.mark.anyio
    async def test_dismiss_unknown(self, app):
        async with _client(app) as client:
            resp = await client.post("/api/notifications/999/dismiss")
        assert resp.status_code == 404
