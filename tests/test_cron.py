"""Tests for the daily compliance alert sweep."""

from datetime import datetime, time, timedelta

import httpx
import respx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from conftest import TODAY, add_aircraft, add_flight, add_pilot
from fleet_compliance.cron import new_results, run_compliance_alerts
from fleet_compliance.database.models import Notification
from fleet_compliance.mailer import EmailClient

MONDAY = TODAY
TUESDAY = TODAY + timedelta(days=1)


class FakeMailer:
    """Records sends; addresses in fail_for get an unsuccessful result."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def _result(self, to):
        if to in self.fail_for:
            return {"success": False, "error": "Email API returned 500", "status_code": 500}
        return {"success": True, "data": {"id": "msg"}, "status_code": 200}

    def send_registration_expiry_alert(self, to, name, aircraft, days_until_expiry):
        self.sent.append(("registration", to, aircraft["registration_number"], days_until_expiry))
        return self._result(to)

    def send_part107_expiry_alert(self, to, name, certificate_number, days_until_expiry):
        self.sent.append(("part107", to, certificate_number, days_until_expiry))
        return self._result(to)

    def send_weekly_summary(self, to, name, stats):
        self.sent.append(("weekly", to, stats["compliance_score"], stats["flights_this_week"]))
        return self._result(to)


def _sweep(db, mailer, today=TUESDAY, hour=6):
    return run_compliance_alerts(db, mailer, today=today, now=datetime.combine(today, time(hour)))


def _notifications(db):
    return db.scalars(select(Notification).order_by(Notification.id)).all()


class TestRegistrationAlerts:
    def test_exact_threshold_dates_only(self, db):
        add_pilot(db)
        add_aircraft(db, "ac-30", registration_number="FA3THIRTY", registration_expiry=TUESDAY + timedelta(days=30))
        add_aircraft(db, "ac-29", registration_number="FA3TWENTYNINE", registration_expiry=TUESDAY + timedelta(days=29))
        add_aircraft(db, "ac-3", registration_number="FA3THREE", registration_expiry=TUESDAY + timedelta(days=3))
        mailer = FakeMailer()

        results = _sweep(db, mailer)

        assert results["registration_alerts"] == 2
        assert results["errors"] == []
        assert sorted(mailer.sent) == [
            ("registration", "pilot@example.com", "FA3THIRTY", 30),
            ("registration", "pilot@example.com", "FA3THREE", 3),
        ]

        notifications = {n.title: n for n in _notifications(db)}
        assert notifications["Aircraft Registration Expiry - FA3THREE"].severity == "error"
        assert notifications["Aircraft Registration Expiry - FA3THIRTY"].severity == "warning"
        assert all(n.type == "expiry" for n in notifications.values())

    def test_inactive_aircraft_skipped(self, db):
        add_pilot(db)
        add_aircraft(db, status="maintenance", registration_expiry=TUESDAY + timedelta(days=7))

        results = _sweep(db, FakeMailer())

        assert results["registration_alerts"] == 0

    def test_opted_out_users_skipped(self, db):
        add_pilot(db, "p-reminders", email="a@example.com", expiry_reminders=False)
        add_pilot(db, "p-email", email="b@example.com", notification_email=False)
        add_aircraft(db, "ac-1", user_id="p-reminders", registration_number="FA3A", registration_expiry=TUESDAY + timedelta(days=14))
        add_aircraft(db, "ac-2", user_id="p-email", registration_number="FA3B", registration_expiry=TUESDAY + timedelta(days=14))
        mailer = FakeMailer()

        results = _sweep(db, mailer)

        assert results["registration_alerts"] == 0
        assert mailer.sent == []
        assert _notifications(db) == []

    def test_missing_settings_counts_as_opted_in(self, db):
        add_pilot(db, settings=False)
        add_aircraft(db, registration_expiry=TUESDAY + timedelta(days=1))

        results = _sweep(db, FakeMailer())

        assert results["registration_alerts"] == 1

    def test_missing_profile_skipped(self, db):
        add_aircraft(db, user_id="ghost", registration_expiry=TUESDAY + timedelta(days=7))

        results = _sweep(db, FakeMailer())

        assert results["registration_alerts"] == 0
        assert results["errors"] == []

    def test_delivery_failure_recorded_and_sweep_continues(self, db):
        add_pilot(db, "p-bad", email="bad@example.com")
        add_pilot(db, "p-good", email="good@example.com")
        add_aircraft(db, "ac-bad", user_id="p-bad", registration_number="FA3BAD", registration_expiry=TUESDAY + timedelta(days=7))
        add_aircraft(db, "ac-good", user_id="p-good", registration_number="FA3GOOD", registration_expiry=TUESDAY + timedelta(days=7))

        results = _sweep(db, FakeMailer(fail_for={"bad@example.com"}))

        assert results["registration_alerts"] == 1
        assert results["errors"] == ["Failed to send alert for FA3BAD: Email API returned 500"]
        assert [n.title for n in _notifications(db)] == ["Aircraft Registration Expiry - FA3GOOD"]

    def test_ledger_failure_not_counted_as_sent(self, db, monkeypatch):
        import fleet_compliance.cron as cron

        def fail(*args, **kwargs):
            raise SQLAlchemyError("ledger unavailable")

        monkeypatch.setattr(cron, "create_notification", fail)
        add_pilot(db)
        add_aircraft(db, registration_expiry=TUESDAY + timedelta(days=7))

        results = _sweep(db, FakeMailer())

        assert results["registration_alerts"] == 0
        assert results["errors"] == ["Failed to send alert for FA3ABC123: ledger unavailable"]

    def test_unexpected_item_error_does_not_abort_sweep(self, db):
        add_pilot(db, "p-bad", email="bad@example.com")
        add_pilot(db, "p-good", email="good@example.com")
        add_aircraft(db, "ac-bad", user_id="p-bad", registration_number="FA3BAD", registration_expiry=TUESDAY + timedelta(days=7))
        add_aircraft(db, "ac-good", user_id="p-good", registration_number="FA3GOOD", registration_expiry=TUESDAY + timedelta(days=7))

        class RaisingMailer(FakeMailer):
            def send_registration_expiry_alert(self, to, name, aircraft, days_until_expiry):
                if to == "bad@example.com":
                    raise ValueError("malformed address")
                return super().send_registration_expiry_alert(to, name, aircraft, days_until_expiry)

        results = _sweep(db, RaisingMailer())

        assert results["registration_alerts"] == 1
        assert results["errors"] == ["Failed to send alert for FA3BAD: malformed address"]

    def test_rerun_within_window_is_deduplicated(self, db):
        add_pilot(db)
        add_aircraft(db, registration_expiry=TUESDAY + timedelta(days=14))
        mailer = FakeMailer()

        first = _sweep(db, mailer, hour=6)
        second = _sweep(db, mailer, hour=18)

        assert first["registration_alerts"] == 1
        assert second["registration_alerts"] == 0
        assert len(mailer.sent) == 1
        assert len(_notifications(db)) == 1


class TestPart107Alerts:
    def test_exact_threshold(self, db):
        add_pilot(db, certificate_expiry=TUESDAY + timedelta(days=14))
        add_pilot(db, "pilot-2", email="two@example.com", certificate_expiry=TUESDAY + timedelta(days=15))
        mailer = FakeMailer()

        results = _sweep(db, mailer)

        assert results["part107_alerts"] == 1
        assert mailer.sent == [("part107", "pilot@example.com", "RP-1001", 14)]
        notification = _notifications(db)[0]
        assert notification.title == "Part 107 Certificate Expiry"
        assert notification.message == "Your Part 107 certificate expires in 14 days"
        assert notification.severity == "error"

    def test_sixty_day_alert_is_warning(self, db):
        add_pilot(db, certificate_expiry=TUESDAY + timedelta(days=60))

        _sweep(db, FakeMailer())

        assert _notifications(db)[0].severity == "warning"


class TestWeeklySummaries:
    def test_sent_on_monday(self, db):
        add_pilot(db)
        add_pilot(db, "pilot-2", email="quiet@example.com", weekly_summary=False)
        now = datetime.combine(MONDAY, time(6))
        add_flight(db, "fl-1", compliance_status="compliant", start_time=now - timedelta(days=1))
        add_flight(db, "fl-2", compliance_status="non_compliant", start_time=now - timedelta(days=2))
        mailer = FakeMailer()

        results = _sweep(db, mailer, today=MONDAY)

        assert results["weekly_summaries"] == 1
        assert mailer.sent == [("weekly", "pilot@example.com", 50, 2)]
        assert [n.title for n in _notifications(db)] == ["Weekly Flight Summary"]

    def test_not_sent_other_days(self, db):
        add_pilot(db)
        mailer = FakeMailer()

        results = _sweep(db, mailer, today=TUESDAY)

        assert results["weekly_summaries"] == 0
        assert mailer.sent == []


class TestResults:
    def test_shape(self, db):
        assert _sweep(db, FakeMailer()) == new_results()

    def test_fills_given_accumulator(self, db):
        add_pilot(db)
        add_aircraft(db, registration_expiry=TUESDAY + timedelta(days=30))
        results = new_results()

        returned = run_compliance_alerts(
            db, FakeMailer(), today=TUESDAY, now=datetime.combine(TUESDAY, time(6)), results=results
        )

        assert returned is results
        assert results["registration_alerts"] == 1


class TestWithEmailClient:
    @respx.mock
    def test_alert_posted_to_email_api(self, db):
        add_pilot(db)
        add_aircraft(db, registration_expiry=TUESDAY + timedelta(days=7))
        route = respx.post("https://api.resend.com/emails").mock(
            return_value=httpx.Response(200, json={"id": "email-1"})
        )

        results = _sweep(db, EmailClient(api_key="re_test"))

        assert results["registration_alerts"] == 1
        assert route.call_count == 1
        request = route.calls[0].request
        assert request.headers["authorization"] == "Bearer re_test"

    def test_unconfigured_client_records_errors(self, db):
        add_pilot(db)
        add_aircraft(db, registration_expiry=TUESDAY + timedelta(days=7))

        results = _sweep(db, EmailClient(api_key=""))

        assert results["registration_alerts"] == 0
        assert results["errors"] == ["Failed to send alert for FA3ABC123: Email delivery not configured"]
        assert _notifications(db) == []
