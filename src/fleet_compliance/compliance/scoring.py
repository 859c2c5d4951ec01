"""Compliance scoring and fleet-wide aggregation."""

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime

from .expiry import check_part107_expiry, check_registration_expiry
from .policy import DEFAULT_POLICY, ThresholdPolicy, to_date
from .severity import AircraftStatus, ComplianceStatus, ExpiryState, Severity

_CATEGORIES = {
    "remote_id": "Remote ID",
    "registration": "Registration",
    "part107": "Certification",
    "weight": "Weight Limits",
    "airspace": "Airspace",
    "altitude": "Altitude",
}


def violation_category(violation_type: str) -> str:
    return _CATEGORIES.get(violation_type, "Other")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _status_of(item) -> str:
    status = getattr(item, "compliance_status", item)
    return getattr(status, "value", status)


def compute_score(flights) -> int:
    """
    Percentage of flights with a compliant status.

    Args:
        flights: Flight records or bare status values

    Returns:
        0-100. An empty list scores 100.
    """
    statuses = [_status_of(f) for f in flights]
    if not statuses:
        return 100
    compliant = sum(1 for s in statuses if s == ComplianceStatus.COMPLIANT.value)
    return round_half_up(100 * compliant / len(statuses))


def _is_active(aircraft) -> bool:
    status = getattr(aircraft, "status", None) or AircraftStatus.ACTIVE.value
    return getattr(status, "value", status) == AircraftStatus.ACTIVE.value


def aircraft_label(aircraft) -> str:
    return f"{aircraft.manufacturer} {aircraft.model} ({aircraft.registration_number})"


def upcoming_expirations(
    certificate,
    aircraft: list,
    today: date | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> list[dict]:
    """Certificate and active-registration expiries that need attention.

    Sorted soonest first; unknown dates sort as 0 days remaining.
    """
    upcoming = []

    if certificate is not None:
        result = check_part107_expiry(certificate, today, policy)
        if result.status != ExpiryState.VALID:
            upcoming.append({
                "type": "part107",
                "item": "Part 107 Certificate",
                **result.to_dict(),
            })

    for ac in aircraft:
        if not _is_active(ac):
            continue
        result = check_registration_expiry(ac, today, policy)
        if result.status != ExpiryState.VALID:
            upcoming.append({
                "type": "registration",
                "item": aircraft_label(ac),
                "aircraft_id": ac.id,
                **result.to_dict(),
            })

    upcoming.sort(key=lambda x: x["days_remaining"] if x["days_remaining"] is not None else 0)
    return upcoming


@dataclass
class ComplianceSummary:
    score: int
    total_flights: int
    compliant_flights: int
    non_compliant_flights: int
    warning_flights: int
    pending_flights: int
    upcoming_expirations: list[dict] = field(default_factory=list)
    last_flight_date: datetime | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.last_flight_date is not None:
            data["last_flight_date"] = self.last_flight_date.isoformat()
        return data


def in_window(flight, window: tuple | None) -> bool:
    """Whether a flight's start date falls inside an inclusive (from, to) window."""
    if window is None:
        return True
    start = to_date(flight.start_time)
    if start is None:
        return False
    lower, upper = (to_date(w) for w in window)
    if lower is not None and start < lower:
        return False
    if upper is not None and start > upper:
        return False
    return True


def summarize(
    flights: list,
    certificate,
    aircraft: list,
    today: date | None = None,
    window: tuple | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> ComplianceSummary:
    """
    Aggregate a pilot's flights and credentials into a summary.

    Args:
        flights: Flight records (compliance_status, start_time)
        certificate: PilotCertificate or None
        aircraft: Aircraft records owned by the pilot
        today: Reference date for expiry windows
        window: Optional (from_date, to_date) restricting counted flights
        policy: Thresholds to apply

    Returns:
        ComplianceSummary
    """
    flights = [f for f in flights if in_window(f, window)]
    statuses = [_status_of(f) for f in flights]

    started = [f.start_time for f in flights if f.start_time is not None]

    return ComplianceSummary(
        score=compute_score(statuses),
        total_flights=len(statuses),
        compliant_flights=statuses.count(ComplianceStatus.COMPLIANT.value),
        non_compliant_flights=statuses.count(ComplianceStatus.NON_COMPLIANT.value),
        warning_flights=statuses.count(ComplianceStatus.WARNING.value),
        pending_flights=statuses.count(ComplianceStatus.PENDING.value),
        upcoming_expirations=upcoming_expirations(certificate, aircraft, today, policy),
        last_flight_date=max(started) if started else None,
    )


# =============================================================================
# Violation lists
# =============================================================================

@dataclass
class ViolationEntry:
    """One row in a pilot's violation history."""

    id: str
    type: str
    message: str
    severity: Severity
    date: datetime
    source: str  # flight, certificate, registration, system
    source_id: str | None = None
    aircraft_id: str | None = None

    @property
    def category(self) -> str:
        return violation_category(self.type)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "severity": self.severity.value,
            "date": self.date.isoformat(),
            "source": self.source,
            "source_id": self.source_id,
            "aircraft_id": self.aircraft_id,
            "category": self.category,
        }


def flight_violation_entries(flight, violations: list) -> list[ViolationEntry]:
    return [
        ViolationEntry(
            id=f"flight-{flight.id}-{v.type}",
            type=v.type,
            message=v.message,
            severity=v.severity,
            date=flight.start_time,
            source="flight",
            source_id=flight.id,
            aircraft_id=flight.aircraft_id,
        )
        for v in violations
    ]


def standing_violations(
    certificate,
    aircraft: list,
    now: datetime,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> list[ViolationEntry]:
    """Certificate and registration violations that exist independent of any flight."""
    today = now.date()
    entries = []

    if certificate is not None:
        result = check_part107_expiry(certificate, today, policy)
        if result.severity == Severity.ERROR:
            entries.append(ViolationEntry(
                id="part107-expiry",
                type="part107",
                message=result.message,
                severity=Severity.ERROR,
                date=now,
                source="certificate",
                source_id="part107",
            ))

    for ac in aircraft:
        if not _is_active(ac):
            continue
        result = check_registration_expiry(ac, today, policy)
        if result.severity == Severity.ERROR:
            entries.append(ViolationEntry(
                id=f"registration-{ac.id}",
                type="registration",
                message=f"{aircraft_label(ac)}: {result.message}",
                severity=Severity.ERROR,
                date=now,
                source="registration",
                source_id=ac.id,
                aircraft_id=ac.id,
            ))

    return entries


def sort_newest_first(entries: list[ViolationEntry]) -> list[ViolationEntry]:
    return sorted(entries, key=lambda e: e.date, reverse=True)
