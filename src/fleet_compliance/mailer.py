"""Email delivery client for compliance alerts.

Sends plain-text alerts through the Resend HTTP API. Results use the
standardized shape:
  {"success": True, "data": ..., "status_code": 200}
  {"success": False, "error": "...", "status_code": 500, "details": ...}
"""

import logging
import os
import re
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.resend.com"
DEFAULT_FROM = "Fleet Compliance <alerts@fleetcompliance.app>"

# Default timeout for email API requests (seconds)
DEFAULT_TIMEOUT = 15.0

_MAX_DETAIL_LENGTH = 500


class NotificationDeliveryError(Exception):
    """An alert could not be delivered."""


def _sanitize_error_details(details: Any) -> Any:
    """Strip HTML error pages down to text and cap their length."""
    if not isinstance(details, str):
        return details
    text = details
    if "<html" in text.lower() or "<body" in text.lower():
        text = re.sub(r"<(script|style)[^>]*>.*?</\1>", " ", text, flags=re.S | re.I)
        text = re.sub(r"<[^>]+>", " ", text)
        text = re.sub(r"\s+", " ", text).strip()
        if not text:
            return "HTML error page (no extractable text)"
    if len(text) > _MAX_DETAIL_LENGTH:
        return text[:_MAX_DETAIL_LENGTH] + "..."
    return text


class EmailClient:
    """HTTP client for the transactional email API."""

    def __init__(
        self,
        api_key: str | None = None,
        sender: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the email client.

        Args:
            api_key: API key. Defaults to RESEND_API_KEY.
            sender: From address. Defaults to EMAIL_FROM.
            base_url: Email API base URL.
            timeout: Request timeout in seconds.
        """
        self.api_key = api_key if api_key is not None else os.environ.get("RESEND_API_KEY", "").strip()
        self.sender = sender or os.environ.get("EMAIL_FROM", "").strip() or DEFAULT_FROM
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def send(self, to: str, subject: str, text: str) -> dict[str, Any]:
        """Send one email.

        Returns:
            Standardized response dict (see module docstring).
        """
        if not self.configured:
            logger.warning("Email not sent to %s: RESEND_API_KEY not configured", to)
            return {
                "success": False,
                "error": "Email delivery not configured",
                "status_code": 503,
            }

        url = f"{self.base_url}/emails"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"from": self.sender, "to": [to], "subject": subject, "text": text}

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, headers=headers, json=payload)

            if 200 <= response.status_code < 300:
                try:
                    data = response.json()
                except ValueError:
                    data = response.text
                return {
                    "success": True,
                    "data": data,
                    "status_code": response.status_code,
                }

            try:
                details = response.json()
            except ValueError:
                details = response.text
            details = _sanitize_error_details(details)

            error_msg = f"Email API returned {response.status_code}"
            logger.warning("%s: %s → %s", error_msg, to, details)

            return {
                "success": False,
                "error": error_msg,
                "status_code": response.status_code,
                "details": details,
            }

        except httpx.TimeoutException:
            logger.error("Timeout sending email to %s (%.0fs)", to, self.timeout)
            return {
                "success": False,
                "error": f"Request timed out after {self.timeout}s",
                "status_code": 504,
            }

        except httpx.ConnectError as e:
            logger.error("Connection failed sending email to %s: %s", to, e)
            return {
                "success": False,
                "error": f"Connection failed: {e}",
                "status_code": 502,
            }

        except httpx.RequestError as e:
            logger.error("Request error sending email to %s: %s", to, e)
            return {
                "success": False,
                "error": f"Request error: {e}",
                "status_code": 500,
            }

    # -------------------------------------------------------------------------
    # Alert templates
    # -------------------------------------------------------------------------

    def send_registration_expiry_alert(
        self, to: str, name: str | None, aircraft: dict, days_until_expiry: int
    ) -> dict[str, Any]:
        craft = f"{aircraft['manufacturer']} {aircraft['model']}"
        subject = f"Registration expires in {days_until_expiry} days: {aircraft['registration_number']}"
        text = (
            f"Hi {name or 'there'},\n\n"
            f"The FAA registration for your {craft} ({aircraft['registration_number']}) "
            f"expires in {days_until_expiry} days. Renew it at https://faadronezone.faa.gov "
            f"to keep flying legally.\n"
        )
        return self.send(to, subject, text)

    def send_part107_expiry_alert(
        self, to: str, name: str | None, certificate_number: str | None, days_until_expiry: int
    ) -> dict[str, Any]:
        subject = f"Part 107 certificate expires in {days_until_expiry} days"
        text = (
            f"Hi {name or 'there'},\n\n"
            f"Your Remote Pilot Certificate ({certificate_number or 'number not on file'}) "
            f"expires in {days_until_expiry} days. Complete the recurrent training to stay current.\n"
        )
        return self.send(to, subject, text)

    def send_weekly_summary(self, to: str, name: str | None, stats: dict) -> dict[str, Any]:
        lines = [
            f"Hi {name or 'there'},",
            "",
            f"Compliance score: {stats['compliance_score']}%",
            f"Flights this week: {stats['flights_this_week']} ({stats['flight_hours']} hours)",
            f"Violations: {stats['violations']}",
        ]
        for item in stats.get("upcoming_expirations", []):
            lines.append(f"- {item['item']} expires in {item['days_left']} days")
        return self.send(to, "Your weekly compliance summary", "\n".join(lines) + "\n")
