"""Expiry evaluation for registrations and pilot certificates.

One windowing function serves every expiring credential; callers choose
the ExpiryPolicy (registration: 7/14/30 days, Part 107: 30/60 days).
"""

from dataclasses import dataclass
from datetime import date

from .policy import (
    DEFAULT_POLICY,
    ExpiryPolicy,
    ThresholdPolicy,
    days_until,
    to_date,
    today_utc,
)
from .severity import ExpiryState, Severity


@dataclass(frozen=True)
class ExpiryStatus:
    """Classification of a single expiry date."""

    status: ExpiryState
    message: str
    days_remaining: int | None
    severity: Severity

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "days_remaining": self.days_remaining,
            "severity": self.severity.value,
        }


def evaluate_expiry(
    expiry_date,
    policy: ExpiryPolicy,
    today: date | None = None,
) -> ExpiryStatus:
    """
    Classify an expiry date against a policy's day windows.

    Args:
        expiry_date: date, datetime, ISO string, or None
        policy: Windows to apply
        today: Reference date (defaults to the current UTC date)

    Returns:
        ExpiryStatus; missing or unparseable dates are "unknown" with
        warning severity rather than "valid".
    """
    expiry = to_date(expiry_date)
    if expiry is None:
        return ExpiryStatus(
            status=ExpiryState.UNKNOWN,
            message=f"{policy.label} expiry date not set",
            days_remaining=None,
            severity=Severity.WARNING,
        )

    today = today or today_utc()
    remaining = days_until(expiry, today)

    if remaining < 0:
        return ExpiryStatus(
            status=ExpiryState.EXPIRED,
            message=f"{policy.label} expired {abs(remaining)} days ago",
            days_remaining=remaining,
            severity=Severity.ERROR,
        )

    expiring = f"{policy.label} expires in {remaining} days"

    if remaining <= policy.critical_days:
        return ExpiryStatus(ExpiryState.CRITICAL, expiring, remaining, Severity.ERROR)

    if remaining <= policy.warning_days:
        return ExpiryStatus(ExpiryState.WARNING, expiring, remaining, Severity.WARNING)

    if policy.notice_days is not None and remaining <= policy.notice_days:
        return ExpiryStatus(ExpiryState.NOTICE, expiring, remaining, Severity.INFO)

    return ExpiryStatus(
        status=ExpiryState.VALID,
        message=f"{policy.label} is valid",
        days_remaining=remaining,
        severity=Severity.SUCCESS,
    )


def check_registration_expiry(
    aircraft,
    today: date | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> ExpiryStatus:
    """Evaluate an aircraft's registration_expiry."""
    return evaluate_expiry(aircraft.registration_expiry, policy.registration, today)


def check_part107_expiry(
    certificate,
    today: date | None = None,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> ExpiryStatus:
    """Evaluate a pilot certificate's expiry."""
    return evaluate_expiry(certificate.expiry, policy.part107, today)
