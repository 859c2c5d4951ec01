"""Compliance evaluation engine.

Pure functions over aircraft, flight, and pilot-certificate records:

- policy:    regulatory thresholds and date helpers
- expiry:    registration / Part 107 expiry classification
- validator: per-flight compliance verdicts
- scoring:   scores, summaries, violation lists
- alerts:    expiry alert triggering and de-duplication
"""

from .alerts import should_notify
from .expiry import ExpiryStatus, evaluate_expiry
from .policy import DEFAULT_POLICY, ThresholdPolicy, load_policy
from .scoring import ComplianceSummary, compute_score, summarize
from .severity import ComplianceStatus, ExpiryState, Severity
from .validator import ComplianceVerdict, Finding, PilotCertificate, validate_flight

__all__ = [
    "ComplianceStatus",
    "ComplianceSummary",
    "ComplianceVerdict",
    "DEFAULT_POLICY",
    "ExpiryState",
    "ExpiryStatus",
    "Finding",
    "PilotCertificate",
    "Severity",
    "ThresholdPolicy",
    "compute_score",
    "evaluate_expiry",
    "load_policy",
    "should_notify",
    "summarize",
    "validate_flight",
]
