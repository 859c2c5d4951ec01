"""Daily compliance alert sweep.

Invoked once a day (HTTP cron trigger or `fleetcomply sweep`):
  1. Registration alerts for active aircraft expiring exactly N days out
  2. Part 107 alerts for pilots whose certificate expires exactly N days out
  3. Weekly summaries on Mondays

Each aircraft or pilot is processed independently; failures are
collected in results["errors"] and the sweep continues.
"""

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .compliance.alerts import (
    EXPIRY_NOTIFICATION_TYPE,
    PART107_ALERT_SUBJECT,
    PART107_ALERT_TITLE,
    alert_severity,
    alert_targets,
    registration_alert_title,
)
from .compliance.policy import DEFAULT_POLICY, ThresholdPolicy, utcnow
from .compliance.scoring import compute_score
from .compliance.severity import AircraftStatus, ComplianceStatus
from .database.models import Aircraft, Flight, UserProfile, UserSettings
from .mailer import EmailClient, NotificationDeliveryError
from .service import create_notification, create_weekly_summary_notification, should_notify

logger = logging.getLogger(__name__)

WEEKLY_SUMMARY_WEEKDAY = 0  # Monday


def new_results() -> dict:
    return {
        "registration_alerts": 0,
        "part107_alerts": 0,
        "weekly_summaries": 0,
        "errors": [],
    }


def _email_enabled(settings: UserSettings | None, preference: str) -> bool:
    """Missing settings count as opted in; only an explicit False opts out."""
    if settings is None:
        return True
    return getattr(settings, preference) is not False and settings.notification_email is not False


def _deliver(result: dict) -> None:
    if not result.get("success"):
        raise NotificationDeliveryError(result.get("error", "unknown delivery failure"))


def run_compliance_alerts(
    db: Session,
    mailer: EmailClient,
    today: date | None = None,
    now: datetime | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
    results: dict | None = None,
) -> dict:
    """
    Run the daily alert sweep.

    Args:
        db: Database session
        mailer: Email collaborator
        today: Sweep date (defaults to the current UTC date)
        now: Timestamp for notifications and dedupe (defaults to now, UTC)
        policy: Thresholds to apply
        results: Accumulator to fill in place (see new_results)

    Returns:
        Counts per alert kind plus an errors list
    """
    now = now or utcnow()
    today = today or now.date()
    results = results if results is not None else new_results()

    check_registration_expiries(db, mailer, results, today, now, policy)
    check_part107_expiries(db, mailer, results, today, now, policy)

    if today.weekday() == WEEKLY_SUMMARY_WEEKDAY:
        send_weekly_summaries(db, mailer, results, today, now)

    logger.info(
        "Compliance sweep %s: %d registration, %d Part 107, %d weekly, %d error(s)",
        today.isoformat(),
        results["registration_alerts"],
        results["part107_alerts"],
        results["weekly_summaries"],
        len(results["errors"]),
    )
    return results


def check_registration_expiries(
    db: Session,
    mailer: EmailClient,
    results: dict,
    today: date,
    now: datetime,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> None:
    for days, target in alert_targets("registration", today, policy):
        try:
            aircraft = db.scalars(
                select(Aircraft).where(
                    Aircraft.status == AircraftStatus.ACTIVE.value,
                    Aircraft.registration_expiry == target,
                )
            ).all()
        except SQLAlchemyError as e:
            db.rollback()
            results["errors"].append(f"Registration query error: {e}")
            continue

        for craft in aircraft:
            try:
                profile = db.get(UserProfile, craft.user_id)
                settings = db.get(UserSettings, craft.user_id)
                if profile is None or not _email_enabled(settings, "expiry_reminders"):
                    logger.debug("Skipping registration alert for %s", craft.registration_number)
                    continue

                if not should_notify(
                    db, craft.user_id, EXPIRY_NOTIFICATION_TYPE,
                    craft.registration_number, now, policy.dedupe_window,
                ):
                    logger.debug("Registration alert for %s already sent", craft.registration_number)
                    continue

                _deliver(mailer.send_registration_expiry_alert(
                    to=profile.email,
                    name=profile.full_name,
                    aircraft={
                        "manufacturer": craft.manufacturer,
                        "model": craft.model,
                        "registration_number": craft.registration_number,
                    },
                    days_until_expiry=days,
                ))
                create_notification(
                    db,
                    craft.user_id,
                    registration_alert_title(craft.registration_number),
                    f"{craft.manufacturer} {craft.model} registration expires in {days} days",
                    type=EXPIRY_NOTIFICATION_TYPE,
                    severity=alert_severity("registration", days).value,
                    data={"aircraft_id": craft.id, "days_until_expiry": days},
                    created_at=now,
                )
                results["registration_alerts"] += 1
            except Exception as e:
                db.rollback()
                logger.error("Registration alert failed for %s: %s", craft.registration_number, e)
                results["errors"].append(
                    f"Failed to send alert for {craft.registration_number}: {e}"
                )


def check_part107_expiries(
    db: Session,
    mailer: EmailClient,
    results: dict,
    today: date,
    now: datetime,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> None:
    for days, target in alert_targets("part107", today, policy):
        try:
            profiles = db.scalars(
                select(UserProfile).where(UserProfile.pilot_certificate_expiry == target)
            ).all()
        except SQLAlchemyError as e:
            db.rollback()
            results["errors"].append(f"Part 107 query error: {e}")
            continue

        for profile in profiles:
            try:
                settings = db.get(UserSettings, profile.id)
                if not _email_enabled(settings, "expiry_reminders"):
                    logger.debug("Skipping Part 107 alert for %s", profile.id)
                    continue

                if not should_notify(
                    db, profile.id, EXPIRY_NOTIFICATION_TYPE,
                    PART107_ALERT_SUBJECT, now, policy.dedupe_window,
                ):
                    logger.debug("Part 107 alert for %s already sent", profile.id)
                    continue

                _deliver(mailer.send_part107_expiry_alert(
                    to=profile.email,
                    name=profile.full_name,
                    certificate_number=profile.pilot_certificate_number,
                    days_until_expiry=days,
                ))
                create_notification(
                    db,
                    profile.id,
                    PART107_ALERT_TITLE,
                    f"Your Part 107 certificate expires in {days} days",
                    type=EXPIRY_NOTIFICATION_TYPE,
                    severity=alert_severity("part107", days).value,
                    data={"days_until_expiry": days},
                    created_at=now,
                )
                results["part107_alerts"] += 1
            except Exception as e:
                db.rollback()
                logger.error("Part 107 alert failed for %s: %s", profile.email, e)
                results["errors"].append(f"Failed to send Part 107 alert for {profile.email}: {e}")


def weekly_summary_stats(
    db: Session,
    user_id: str,
    today: date,
    now: datetime,
) -> dict:
    """Stats for the weekly summary email."""
    week_ago = now - timedelta(days=7)
    all_flights = db.scalars(select(Flight).where(Flight.pilot_id == user_id)).all()
    this_week = [f for f in all_flights if f.start_time is not None and f.start_time >= week_ago]

    horizon = today + timedelta(days=30)
    expiring = db.scalars(
        select(Aircraft).where(
            Aircraft.user_id == user_id,
            Aircraft.registration_expiry >= today,
            Aircraft.registration_expiry <= horizon,
        )
    ).all()

    minutes = sum(f.duration_minutes or 0 for f in this_week)
    return {
        "compliance_score": compute_score(all_flights),
        "flights_this_week": len(this_week),
        "flight_hours": round(minutes / 60, 1),
        "upcoming_expirations": [
            {
                "item": f"Registration {craft.registration_number}",
                "days_left": (craft.registration_expiry - today).days,
            }
            for craft in expiring
        ],
        "violations": sum(
            1 for f in this_week
            if f.compliance_status == ComplianceStatus.NON_COMPLIANT.value
        ),
    }


def send_weekly_summaries(
    db: Session,
    mailer: EmailClient,
    results: dict,
    today: date,
    now: datetime,
) -> None:
    try:
        subscribers = db.scalars(
            select(UserSettings).where(
                UserSettings.weekly_summary.is_(True),
                UserSettings.notification_email.is_(True),
            )
        ).all()
    except SQLAlchemyError as e:
        db.rollback()
        results["errors"].append(f"Weekly summary query error: {e}")
        return

    for settings in subscribers:
        profile = None
        try:
            profile = db.get(UserProfile, settings.user_id)
            if profile is None:
                continue
            stats = weekly_summary_stats(db, settings.user_id, today, now)
            _deliver(mailer.send_weekly_summary(
                to=profile.email, name=profile.full_name, stats=stats
            ))
            create_weekly_summary_notification(db, settings.user_id, now)
            results["weekly_summaries"] += 1
        except Exception as e:
            db.rollback()
            email = profile.email if profile is not None else settings.user_id
            logger.error("Weekly summary failed for %s: %s", email, e)
            results["errors"].append(f"Failed to send weekly summary to {email}: {e}")
