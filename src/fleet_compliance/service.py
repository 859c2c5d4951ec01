"""Database-backed compliance operations.

Loads records through SQLAlchemy, runs the pure evaluators in
fleet_compliance.compliance, and persists results:
- Flight evaluation: validate, store compliance_status, notify
- Aggregation: scores, summaries, violation lists
- Notifications: dedupe guard, expiry checks, violation and weekly notices
"""

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .compliance.alerts import (
    COMPLIANCE_NOTIFICATION_TYPE,
    EXPIRY_NOTIFICATION_TYPE,
    INFO_NOTIFICATION_TYPE,
    PART107_ALERT_SUBJECT,
    PART107_ALERT_TITLE,
    registration_alert_title,
)
from .compliance.expiry import check_part107_expiry, check_registration_expiry
from .compliance.policy import DEFAULT_POLICY, ThresholdPolicy, utcnow
from .compliance.scoring import (
    ViolationEntry,
    compute_score,
    flight_violation_entries,
    sort_newest_first,
    standing_violations,
    summarize,
)
from .compliance.severity import ComplianceStatus, Severity
from .compliance.validator import PilotCertificate, validate_flight
from .database.models import Aircraft, Flight, Notification, UserProfile, UserSettings

logger = logging.getLogger(__name__)


# =============================================================================
# Flight evaluation
# =============================================================================

def load_flight_context(db: Session, flight: Flight) -> tuple[Aircraft | None, PilotCertificate | None]:
    """Join a flight with its aircraft and the operating pilot's certificate."""
    aircraft = db.get(Aircraft, flight.aircraft_id)
    profile = db.get(UserProfile, flight.pilot_id)
    return aircraft, PilotCertificate.from_profile(profile)


def evaluate_flight(
    db: Session,
    flight_id: str,
    today: date | None = None,
    notify: bool = True,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> dict:
    """
    Validate a flight and persist its compliance status.

    Args:
        db: Database session
        flight_id: Flight identifier
        today: Reference date for expiry windows
        notify: Record a compliance notification when violations are found
        policy: Thresholds to apply

    Returns:
        Verdict dict with flight_id, or an error dict if the flight is unknown
    """
    flight = db.get(Flight, flight_id)
    if not flight:
        return {"error": f"Flight not found: {flight_id}"}

    aircraft, certificate = load_flight_context(db, flight)
    verdict = validate_flight(flight, aircraft, certificate, today, policy)

    previous = flight.compliance_status
    flight.compliance_status = verdict.status.value

    # Notify on status transitions only
    changed = previous != flight.compliance_status
    if notify and changed and verdict.violations:
        create_compliance_violation_notification(
            db, flight.pilot_id, flight.id, verdict.violations, commit=False
        )

    db.commit()

    if changed:
        logger.info(
            "Flight %s compliance %s -> %s", flight.id, previous, flight.compliance_status
        )

    return {"flight_id": flight.id, **verdict.to_dict()}


def reevaluate_flights(
    db: Session,
    user_id: str,
    today: date | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> dict:
    """
    Recompute compliance for every flight a pilot has logged.

    Each flight is evaluated independently; a failure is recorded in
    errors and the batch continues.
    """
    flight_ids = db.scalars(select(Flight.id).where(Flight.pilot_id == user_id)).all()

    results = {"evaluated": 0, "changed": 0, "errors": []}
    for flight_id in flight_ids:
        try:
            flight = db.get(Flight, flight_id)
            before = flight.compliance_status
            aircraft, certificate = load_flight_context(db, flight)
            verdict = validate_flight(flight, aircraft, certificate, today, policy)
            flight.compliance_status = verdict.status.value
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error("Re-evaluation failed for flight %s: %s", flight_id, e)
            results["errors"].append(f"Failed to evaluate flight {flight_id}: {e}")
            continue

        results["evaluated"] += 1
        if before != verdict.status.value:
            results["changed"] += 1

    return results


# =============================================================================
# Aggregation
# =============================================================================

def calculate_compliance_score(db: Session, user_id: str) -> int:
    """Share of a pilot's flights that are compliant (100 with no flights)."""
    statuses = db.scalars(
        select(Flight.compliance_status).where(Flight.pilot_id == user_id)
    ).all()
    return compute_score(statuses)


def get_compliance_summary(
    db: Session,
    user_id: str,
    window: tuple[date | None, date | None] | None = None,
    today: date | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> dict:
    """
    Compliance summary for a pilot.

    Args:
        db: Database session
        user_id: Pilot identifier
        window: Optional (from_date, to_date) restricting counted flights
        today: Reference date for expiry windows
        policy: Thresholds to apply

    Returns:
        Summary dict (score, flight counts, upcoming_expirations, last_flight_date)
    """
    flights = db.scalars(
        select(Flight).where(Flight.pilot_id == user_id).order_by(Flight.start_time.desc())
    ).all()
    profile = db.get(UserProfile, user_id)
    aircraft = db.scalars(select(Aircraft).where(Aircraft.user_id == user_id)).all()

    summary = summarize(
        flights,
        PilotCertificate.from_profile(profile),
        aircraft,
        today=today,
        window=window,
        policy=policy,
    )
    return {"user_id": user_id, **summary.to_dict()}


def get_violations_for_window(
    db: Session,
    user_id: str,
    from_date: date,
    to_date: date,
    now: datetime | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> dict:
    """
    Violations for a pilot within a date window, newest first.

    Re-validates every non-compliant or warning flight in the window and
    merges standing certificate/registration violations.
    """
    now = now or utcnow()
    start = datetime.combine(from_date, datetime.min.time())
    end = datetime.combine(to_date + timedelta(days=1), datetime.min.time())

    flights = db.scalars(
        select(Flight)
        .where(
            Flight.pilot_id == user_id,
            Flight.start_time >= start,
            Flight.start_time < end,
            Flight.compliance_status.in_([
                ComplianceStatus.NON_COMPLIANT.value,
                ComplianceStatus.WARNING.value,
            ]),
        )
        .order_by(Flight.start_time.desc())
    ).all()

    entries: list[ViolationEntry] = []
    for flight in flights:
        try:
            aircraft, certificate = load_flight_context(db, flight)
            verdict = validate_flight(flight, aircraft, certificate, now.date(), policy)
        except Exception as e:
            logger.error("Compliance check failed for flight %s: %s", flight.id, e)
            entries.append(ViolationEntry(
                id=f"flight-{flight.id}-check_failed",
                type="check_failed",
                message="Compliance check failed due to system error",
                severity=Severity.ERROR,
                date=flight.start_time,
                source="flight",
                source_id=flight.id,
                aircraft_id=flight.aircraft_id,
            ))
            continue
        entries.extend(flight_violation_entries(flight, verdict.violations))

    profile = db.get(UserProfile, user_id)
    aircraft = db.scalars(select(Aircraft).where(Aircraft.user_id == user_id)).all()
    entries.extend(
        standing_violations(PilotCertificate.from_profile(profile), aircraft, now, policy)
    )

    violations = sort_newest_first(entries)
    return {
        "user_id": user_id,
        "from_date": from_date.isoformat(),
        "to_date": to_date.isoformat(),
        "violations": [v.to_dict() for v in violations],
        "count": len(violations),
    }


# =============================================================================
# Notifications
# =============================================================================

def should_notify(
    db: Session,
    user_id: str,
    category: str,
    subject: str,
    now: datetime | None = None,
    window: timedelta = DEFAULT_POLICY.dedupe_window,
) -> bool:
    """
    Dedupe guard: False if a matching notification was created within window.

    Matches on notification type and a case-insensitive title substring
    (registration number, "Part 107").
    """
    now = now or utcnow()
    existing = db.scalars(
        select(Notification.id)
        .where(
            Notification.user_id == user_id,
            Notification.type == category,
            func.lower(Notification.title).contains(subject.lower(), autoescape=True),
            Notification.created_at >= now - window,
        )
        .limit(1)
    ).first()
    return existing is None


def create_notification(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    type: str = INFO_NOTIFICATION_TYPE,
    severity: str = Severity.INFO.value,
    data: dict | None = None,
    created_at: datetime | None = None,
    commit: bool = True,
) -> Notification:
    """Insert a notification row."""
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        severity=severity,
        data=data or {},
        created_at=created_at or utcnow(),
    )
    db.add(notification)
    if commit:
        db.commit()
    else:
        db.flush()
    return notification


def check_expiry_notifications(
    db: Session,
    user_id: str,
    now: datetime | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> list[Notification]:
    """
    Create expiry notifications for a pilot's certificate and active aircraft.

    Only error/warning expiries notify, and only when no matching
    notification exists within the dedupe window.
    """
    now = now or utcnow()
    today = now.date()
    created = []

    profile = db.get(UserProfile, user_id)
    settings = db.get(UserSettings, user_id)
    if not profile or not settings or not settings.expiry_reminders:
        return created

    certificate = PilotCertificate.from_profile(profile)
    if certificate.expiry is not None:
        status = check_part107_expiry(certificate, today, policy)
        if status.severity in (Severity.ERROR, Severity.WARNING) and should_notify(
            db, user_id, EXPIRY_NOTIFICATION_TYPE, PART107_ALERT_SUBJECT, now, policy.dedupe_window
        ):
            created.append(create_notification(
                db,
                user_id,
                PART107_ALERT_TITLE,
                status.message,
                type=EXPIRY_NOTIFICATION_TYPE,
                severity=status.severity.value,
                data={
                    "expiry_date": certificate.expiry.isoformat(),
                    "days_remaining": status.days_remaining,
                },
                created_at=now,
            ))

    aircraft = db.scalars(
        select(Aircraft).where(Aircraft.user_id == user_id, Aircraft.status == "active")
    ).all()
    for ac in aircraft:
        if ac.registration_expiry is None:
            continue
        status = check_registration_expiry(ac, today, policy)
        if status.severity not in (Severity.ERROR, Severity.WARNING):
            continue
        if not should_notify(
            db, user_id, EXPIRY_NOTIFICATION_TYPE, ac.registration_number, now, policy.dedupe_window
        ):
            continue
        created.append(create_notification(
            db,
            user_id,
            registration_alert_title(ac.registration_number),
            status.message,
            type=EXPIRY_NOTIFICATION_TYPE,
            severity=status.severity.value,
            data={
                "aircraft_id": ac.id,
                "registration_number": ac.registration_number,
                "expiry_date": ac.registration_expiry.isoformat(),
                "days_remaining": status.days_remaining,
            },
            created_at=now,
        ))

    return created


def create_compliance_violation_notification(
    db: Session,
    user_id: str,
    flight_id: str,
    violations: list,
    commit: bool = True,
) -> Notification:
    """Notify a pilot that a flight has compliance issues."""
    messages = ", ".join(v.message for v in violations)
    severity = (
        Severity.ERROR if any(v.severity == Severity.ERROR for v in violations)
        else Severity.WARNING
    )
    plural = "s" if len(violations) > 1 else ""
    return create_notification(
        db,
        user_id,
        "Compliance Violation Detected",
        f"Flight has {len(violations)} compliance issue{plural}: {messages}",
        type=COMPLIANCE_NOTIFICATION_TYPE,
        severity=severity.value,
        data={"flight_id": flight_id, "violations": [v.to_dict() for v in violations]},
        commit=commit,
    )


def weekly_flight_stats(db: Session, user_id: str, now: datetime | None = None) -> dict:
    """Flight count, hours, and compliance rate for the trailing 7 days."""
    now = now or utcnow()
    week_ago = now - timedelta(days=7)
    flights = db.scalars(
        select(Flight).where(Flight.pilot_id == user_id, Flight.start_time >= week_ago)
    ).all()

    total_minutes = sum(f.duration_minutes or 0 for f in flights)
    return {
        "total_flights": len(flights),
        "total_hours": round(total_minutes / 60, 1),
        "compliance_rate": compute_score(flights),
        "non_compliant_flights": sum(
            1 for f in flights if f.compliance_status == ComplianceStatus.NON_COMPLIANT.value
        ),
    }


def create_weekly_summary_notification(
    db: Session, user_id: str, now: datetime | None = None
) -> Notification:
    stats = weekly_flight_stats(db, user_id, now)
    message = (
        f"This week: {stats['total_flights']} flights, {stats['total_hours']:.1f} hours, "
        f"{stats['compliance_rate']}% compliance rate"
    )
    return create_notification(
        db,
        user_id,
        "Weekly Flight Summary",
        message,
        type=INFO_NOTIFICATION_TYPE,
        severity=Severity.INFO.value,
        data={**stats, "period": "week"},
        created_at=now,
    )


def get_unread_count(db: Session, user_id: str) -> int:
    return db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.read_at.is_(None),
            Notification.dismissed_at.is_(None),
        )
    ) or 0


def mark_as_read(db: Session, notification_id: int, now: datetime | None = None) -> bool:
    notification = db.get(Notification, notification_id)
    if not notification:
        return False
    notification.read_at = now or utcnow()
    db.commit()
    return True


def dismiss_notification(db: Session, notification_id: int, now: datetime | None = None) -> bool:
    notification = db.get(Notification, notification_id)
    if not notification:
        return False
    notification.dismissed_at = now or utcnow()
    db.commit()
    return True

def get_unread_notifications(db: Session, user_id: str, limit: int = 10) -> list[Notification]:
    """Unread, undismissed notifications, newest first."""
    return list(db.scalars(
        select(Notification)
        .where(
            Notification.user_id == user_id,
            Notification.read_at.is_(None),
            Notification.dismissed_at.is_(None),
        )
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    ).all())


def get_all_notifications(db: Session, user_id: str, limit: int = 50) -> list[Notification]:
    """A user's notifications, newest first, dismissed ones included."""
    return list(db.scalars(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    ).all())


def mark_all_as_read(db: Session, user_id: str, now: datetime | None = None) -> int:
    """Mark every unread notification read; returns how many changed."""
    result = db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read_at.is_(None))
        .values(read_at=now or utcnow())
    )
    db.commit()
    return result.rowcount
