"""Regulatory thresholds and date helpers.

All FAA limits used by the evaluators live here. Thresholds can be
overridden from a YAML file (COMPLIANCE_POLICY_PATH) without touching
evaluator code.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

REMOTE_ID_WEIGHT_THRESHOLD_LBS = Decimal("0.55")  # 250 g
PART107_MAX_WEIGHT_LBS = Decimal("55")
MAX_ALTITUDE_WITHOUT_AUTHORIZATION_FT = 400

REGISTRATION_WARNING_DAYS = 30
REGISTRATION_ATTENTION_DAYS = 14
REGISTRATION_CRITICAL_DAYS = 7

PART107_WARNING_DAYS = 60
PART107_CRITICAL_DAYS = 30

# Exact day counts (expiry == today + N) for the daily alert sweep
ALERT_THRESHOLDS = {
    "registration": (30, 14, 7, 3, 1),
    "part107": (60, 30, 14, 7),
}

NOTIFICATION_DEDUPE_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class ExpiryPolicy:
    """Nested day windows for one expiring credential.

    notice_days is optional; without it the policy has two windows
    (critical, warning) instead of three.
    """

    label: str
    critical_days: int
    warning_days: int
    notice_days: int | None = None


REGISTRATION_POLICY = ExpiryPolicy(
    label="Registration",
    critical_days=REGISTRATION_CRITICAL_DAYS,
    warning_days=REGISTRATION_ATTENTION_DAYS,
    notice_days=REGISTRATION_WARNING_DAYS,
)

PART107_POLICY = ExpiryPolicy(
    label="Part 107 certificate",
    critical_days=PART107_CRITICAL_DAYS,
    warning_days=PART107_WARNING_DAYS,
)


@dataclass(frozen=True)
class ThresholdPolicy:
    """Every threshold the engine consults, bundled for injection."""

    remote_id_weight_threshold_lbs: Decimal = REMOTE_ID_WEIGHT_THRESHOLD_LBS
    max_weight_lbs: Decimal = PART107_MAX_WEIGHT_LBS
    max_altitude_ft: float = MAX_ALTITUDE_WITHOUT_AUTHORIZATION_FT
    registration: ExpiryPolicy = REGISTRATION_POLICY
    part107: ExpiryPolicy = PART107_POLICY
    registration_alert_days: tuple[int, ...] = ALERT_THRESHOLDS["registration"]
    part107_alert_days: tuple[int, ...] = ALERT_THRESHOLDS["part107"]
    dedupe_window: timedelta = field(default=NOTIFICATION_DEDUPE_WINDOW)


DEFAULT_POLICY = ThresholdPolicy()


# =============================================================================
# YAML overrides
# =============================================================================

_SCALAR_KEYS = {
    "remote_id_weight_threshold_lbs": Decimal,
    "max_weight_lbs": Decimal,
    "max_altitude_ft": float,
}
_EXPIRY_KEYS = {"registration", "part107"}
_ALERT_KEYS = {"registration_alert_days", "part107_alert_days"}


def _expiry_override(base: ExpiryPolicy, values: dict) -> ExpiryPolicy:
    unknown = set(values) - {"label", "critical_days", "warning_days", "notice_days"}
    if unknown:
        raise ValueError(f"Unknown expiry policy keys: {', '.join(sorted(unknown))}")
    return replace(base, **values)


def load_policy(path: str | Path | None = None) -> ThresholdPolicy:
    """Load threshold overrides from a YAML file.

    Args:
        path: YAML file. Defaults to COMPLIANCE_POLICY_PATH; when neither is
              set the built-in thresholds are returned.

    Returns:
        ThresholdPolicy with the overrides applied.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ValueError: If the file contains unknown keys.
    """
    if path is None:
        path = os.environ.get("COMPLIANCE_POLICY_PATH", "").strip() or None
    if path is None:
        return DEFAULT_POLICY

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Policy file must contain a mapping: {path}")

    known = set(_SCALAR_KEYS) | _EXPIRY_KEYS | _ALERT_KEYS | {"dedupe_window_hours"}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown policy keys: {', '.join(sorted(unknown))}")

    overrides = {}
    for key, cast in _SCALAR_KEYS.items():
        if key in data:
            overrides[key] = cast(str(data[key]))
    for key in _EXPIRY_KEYS:
        if key in data:
            overrides[key] = _expiry_override(getattr(DEFAULT_POLICY, key), data[key] or {})
    for key in _ALERT_KEYS:
        if key in data:
            overrides[key] = tuple(int(d) for d in data[key])
    if "dedupe_window_hours" in data:
        overrides["dedupe_window"] = timedelta(hours=float(data["dedupe_window_hours"]))

    logger.info("Loaded %d threshold override(s) from %s", len(overrides), path)
    return replace(DEFAULT_POLICY, **overrides)


# =============================================================================
# Date helpers
# =============================================================================

def to_date(value) -> date | None:
    """Coerce a date, datetime, or ISO string to a date.

    Returns None for empty or unparseable values so one bad record
    reads as "unknown" instead of failing a batch.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            logger.debug("Unparseable date value: %r", value)
            return None
    return None


def days_until(expiry: date, today: date) -> int:
    """Whole calendar days from today to expiry (negative once past)."""
    return (expiry - today).days


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    return utcnow().date()
