"""Expiry alert triggering and de-duplication.

The daily sweep fires an alert when an expiry lands exactly N days out
(N in ALERT_THRESHOLDS). A missed sweep run therefore skips that
threshold for that day; the dedupe guard only prevents repeats.
"""

from datetime import date, datetime, timedelta

from .policy import DEFAULT_POLICY, ThresholdPolicy, to_date
from .severity import Severity

EXPIRY_NOTIFICATION_TYPE = "expiry"
COMPLIANCE_NOTIFICATION_TYPE = "compliance"
INFO_NOTIFICATION_TYPE = "info"

PART107_ALERT_SUBJECT = "Part 107"
PART107_ALERT_TITLE = "Part 107 Certificate Expiry"


def registration_alert_title(registration_number: str) -> str:
    return f"Aircraft Registration Expiry - {registration_number}"


def alert_days(kind: str, policy: ThresholdPolicy = DEFAULT_POLICY) -> tuple[int, ...]:
    if kind == "registration":
        return policy.registration_alert_days
    if kind == "part107":
        return policy.part107_alert_days
    raise ValueError(f"Unknown alert kind: {kind}")


def alert_targets(
    kind: str,
    today: date,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> list[tuple[int, date]]:
    """(days, target_date) pairs to query for an exact-date sweep."""
    return [(days, today + timedelta(days=days)) for days in alert_days(kind, policy)]


def matched_threshold(expiry, today: date, thresholds) -> int | None:
    """Return N if expiry == today + N for a configured N."""
    expiry = to_date(expiry)
    if expiry is None:
        return None
    remaining = (expiry - today).days
    return remaining if remaining in thresholds else None


def alert_severity(kind: str, days: int) -> Severity:
    """Registration alerts turn to error at 7 days, Part 107 at 14."""
    cutoff = 7 if kind == "registration" else 14
    return Severity.ERROR if days <= cutoff else Severity.WARNING


def should_notify(
    recent,
    category: str,
    subject: str,
    now: datetime,
    window: timedelta = DEFAULT_POLICY.dedupe_window,
) -> bool:
    """
    Decide whether an alert should be (re-)emitted.

    Args:
        recent: Previously created notifications (type, title, created_at)
        category: Notification type to match (e.g. "expiry")
        subject: Substring identifying the subject in the title
                 (registration number, "Part 107")
        now: Current time
        window: Trailing suppression window

    Returns:
        False if a matching notification exists within the window.
    """
    since = now - window
    needle = subject.lower()
    for notification in recent:
        if notification.type != category:
            continue
        if needle not in (notification.title or "").lower():
            continue
        if notification.created_at is not None and notification.created_at >= since:
            return False
    return True
