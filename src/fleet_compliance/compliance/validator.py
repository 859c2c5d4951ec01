"""Flight compliance validation.

validate_flight() joins a flight, its aircraft, and the operating pilot's
certificate into a verdict. All five checks run independently:

- remote_id:    aircraft over 0.55 lbs must have Remote ID verified
- registration: aircraft registration expiry windows
- part107:      pilot certificate expiry windows
- weight:       aircraft over 55 lbs is outside Part 107
- airspace:     flights above 400 ft AGL need an authorization
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation

from .expiry import ExpiryStatus, check_part107_expiry, check_registration_expiry
from .policy import DEFAULT_POLICY, ThresholdPolicy, to_date
from .severity import ComplianceStatus, Severity


@dataclass(frozen=True)
class PilotCertificate:
    """Remote Pilot Certificate subset of a user profile."""

    number: str | None
    expiry: date | None

    @classmethod
    def from_profile(cls, profile) -> "PilotCertificate | None":
        if profile is None:
            return None
        return cls(
            number=profile.pilot_certificate_number,
            expiry=to_date(profile.pilot_certificate_expiry),
        )


@dataclass(frozen=True)
class Finding:
    """A single violation or warning."""

    type: str
    message: str
    severity: Severity

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "message": self.message,
            "severity": self.severity.value,
        }


@dataclass
class ComplianceVerdict:
    """Result of validating one flight."""

    status: ComplianceStatus
    violations: list[Finding] = field(default_factory=list)
    warnings: list[Finding] = field(default_factory=list)
    checks: list[dict] = field(default_factory=list)

    @property
    def compliant(self) -> bool:
        return self.status == ComplianceStatus.COMPLIANT

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "violations": [v.to_dict() for v in self.violations],
            "warnings": [w.to_dict() for w in self.warnings],
            "checks": self.checks,
        }


def overall_status(violations: list, warnings: list) -> ComplianceStatus:
    if violations:
        return ComplianceStatus.NON_COMPLIANT
    if warnings:
        return ComplianceStatus.WARNING
    return ComplianceStatus.COMPLIANT


def _weight(aircraft) -> Decimal | None:
    """Aircraft weight as a Decimal, or None when absent or unusable."""
    value = getattr(aircraft, "weight_lbs", None)
    if value is None or value == "":
        return None
    try:
        weight = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return weight if weight.is_finite() else None


def remote_id_required(aircraft, policy: ThresholdPolicy = DEFAULT_POLICY) -> bool:
    """Remote ID applies strictly above the 250 g threshold.

    Missing weight reads as "not required".
    """
    weight = _weight(aircraft)
    if not weight:
        return False
    return weight > policy.remote_id_weight_threshold_lbs


def _expiry_finding(check_type: str, result: ExpiryStatus) -> Finding | None:
    if result.severity in (Severity.ERROR, Severity.WARNING):
        return Finding(check_type, result.message, result.severity)
    return None


def data_missing_verdict() -> ComplianceVerdict:
    """Verdict for a flight whose aircraft or pilot record could not be loaded."""
    return ComplianceVerdict(
        status=ComplianceStatus.NON_COMPLIANT,
        violations=[
            Finding(
                "data_missing",
                "Unable to verify compliance: missing aircraft or user data",
                Severity.ERROR,
            )
        ],
    )


def validate_flight(
    flight,
    aircraft,
    certificate: PilotCertificate | None,
    today: date | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> ComplianceVerdict:
    """
    Validate a flight against Part 107 thresholds.

    Args:
        flight: Flight record (remote_id_verified, max_altitude_ft,
                airspace_authorization_id)
        aircraft: Aircraft record (weight_lbs, registration_expiry)
        certificate: Operating pilot's certificate
        today: Reference date for expiry windows
        policy: Thresholds to apply

    Returns:
        ComplianceVerdict. Pure: identical inputs give identical verdicts.
    """
    if aircraft is None or certificate is None:
        return data_missing_verdict()

    violations: list[Finding] = []
    warnings: list[Finding] = []

    # Remote ID
    required = remote_id_required(aircraft, policy)
    verified = bool(flight.remote_id_verified)
    if required and not verified:
        violations.append(Finding(
            "remote_id",
            f"Remote ID required for aircraft over "
            f"{policy.remote_id_weight_threshold_lbs} lbs but not verified",
            Severity.ERROR,
        ))

    # Registration and certificate expiry
    registration = check_registration_expiry(aircraft, today, policy)
    part107 = check_part107_expiry(certificate, today, policy)
    for check_type, result in (("registration", registration), ("part107", part107)):
        finding = _expiry_finding(check_type, result)
        if finding is None:
            continue
        if finding.severity == Severity.ERROR:
            violations.append(finding)
        else:
            warnings.append(finding)

    # Weight ceiling
    weight = _weight(aircraft)
    overweight = weight is not None and weight > policy.max_weight_lbs
    if overweight:
        violations.append(Finding(
            "weight",
            f"Aircraft exceeds {policy.max_weight_lbs} lbs weight limit "
            f"for Part 107 operations",
            Severity.ERROR,
        ))

    # Airspace authorization
    altitude = flight.max_altitude_ft
    authorization = flight.airspace_authorization_id
    needs_authorization = altitude is not None and altitude > policy.max_altitude_ft
    if needs_authorization and not authorization:
        violations.append(Finding(
            "airspace",
            f"Flight above {policy.max_altitude_ft:g} ft requires airspace authorization",
            Severity.ERROR,
        ))

    checks = [
        {"type": "remote_id", "required": required, "verified": verified},
        {"type": "registration", "status": registration.to_dict()},
        {"type": "part107", "status": part107.to_dict()},
        {
            "type": "weight",
            "weight_lbs": float(weight) if weight is not None else None,
            "limit_lbs": float(policy.max_weight_lbs),
            "exceeded": overweight,
        },
        {
            "type": "airspace",
            "max_altitude_ft": altitude,
            "authorization_required": needs_authorization,
            "authorization_id": authorization,
        },
    ]

    return ComplianceVerdict(
        status=overall_status(violations, warnings),
        violations=violations,
        warnings=warnings,
        checks=checks,
    )
