"""Fleet Compliance HTTP API.

Endpoints:
  GET  /health                                          - Health check
  GET  /api/cron/compliance-alerts                      - Daily alert sweep (Bearer CRON_SECRET)
  POST /api/flights/{flight_id}/evaluate                - Validate and store a flight's status
  POST /api/users/{user_id}/flights/reevaluate          - Recompute all of a pilot's flights
  GET  /api/users/{user_id}/compliance/score            - Compliance score
  GET  /api/users/{user_id}/compliance/summary          - Compliance summary
  GET  /api/users/{user_id}/compliance/violations       - Violations for a date window
  POST /api/users/{user_id}/notifications/check-expiry  - Create due expiry notifications
  GET  /api/users/{user_id}/notifications               - List notifications (newest first)
  GET  /api/users/{user_id}/notifications/unread-count  - Unread notification count
  POST /api/users/{user_id}/notifications/read-all      - Mark every notification read
  POST /api/notifications/{id}/read                     - Mark a notification read
  POST /api/notifications/{id}/dismiss                  - Dismiss a notification
"""

import hmac
import logging
import os
from datetime import date, timedelta

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from . import __version__
from .compliance.policy import load_policy, today_utc
from .cron import new_results, run_compliance_alerts
from .database.session import get_db
from .mailer import EmailClient
from .service import (
    calculate_compliance_score,
    check_expiry_notifications,
    dismiss_notification,
    evaluate_flight,
    get_all_notifications,
    get_compliance_summary,
    get_unread_count,
    get_unread_notifications,
    get_violations_for_window,
    mark_all_as_read,
    mark_as_read,
    reevaluate_flights,
)

logger = logging.getLogger(__name__)

DEFAULT_VIOLATION_WINDOW_DAYS = 30

app = FastAPI(
    title="Fleet Compliance API",
    description="FAA compliance evaluation for drone fleets",
    version=__version__,
)

_policy = load_policy()


# =========================================================================
# Request Models
# =========================================================================

class EvaluateRequest(BaseModel):
    """Flight evaluation options."""
    as_of: date | None = None
    notify: bool = True


class ReevaluateRequest(BaseModel):
    """Batch re-evaluation options."""
    as_of: date | None = None


# =========================================================================
# Authentication
# =========================================================================

def _load_api_keys() -> set[str]:
    """Load all configured API keys."""
    keys = set()

    single_key = os.environ.get("COMPLIANCE_API_KEY", "").strip()
    if single_key:
        keys.add(single_key)

    multi_keys = os.environ.get("COMPLIANCE_API_KEYS", "").strip()
    if multi_keys:
        for key in multi_keys.split(","):
            key = key.strip()
            if key:
                keys.add(key)

    return keys


API_KEYS = _load_api_keys()


def verify_auth(authorization: str | None) -> bool:
    """Verify authorization header against configured API keys."""
    if not API_KEYS:
        return True  # No auth if no keys configured

    if not authorization:
        return False

    # Support both "Bearer <key>" and raw key
    if authorization.startswith("Bearer "):
        token = authorization[7:]
    else:
        token = authorization

    return token in API_KEYS


def require_api_key(authorization: str | None = Header(None)) -> None:
    if not verify_auth(authorization):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


def verify_cron_secret(authorization: str | None) -> bool:
    """Exact match against "Bearer <CRON_SECRET>"; unset secret rejects all."""
    secret = os.environ.get("CRON_SECRET", "").strip()
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {secret}")


def get_mailer() -> EmailClient:
    return EmailClient()


def _notification_dict(notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "severity": notification.severity,
        "data": notification.data,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
        "dismissed_at": notification.dismissed_at.isoformat() if notification.dismissed_at else None,
    }


# =========================================================================
# Endpoints
# =========================================================================

@app.get("/health")
async def health():
    """Health check."""
    return {"status": "healthy", "service": "fleet-compliance", "version": __version__}


@app.get("/api/cron/compliance-alerts")
def compliance_alerts_cron(
    authorization: str | None = Header(None),
    db: Session = Depends(get_db),
    mailer: EmailClient = Depends(get_mailer),
):
    """Run the daily expiry alert sweep."""
    if not verify_cron_secret(authorization):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    results = new_results()
    try:
        run_compliance_alerts(db, mailer, policy=_policy, results=results)
    except Exception as e:
        logger.exception("Cron job error")
        return JSONResponse(status_code=500, content={"error": str(e), "results": results})

    return {"success": True, "results": results}


@app.post("/api/flights/{flight_id}/evaluate", dependencies=[Depends(require_api_key)])
def evaluate_flight_endpoint(
    flight_id: str,
    options: EvaluateRequest | None = None,
    db: Session = Depends(get_db),
):
    """Validate a flight and persist its compliance status."""
    options = options or EvaluateRequest()
    result = evaluate_flight(
        db, flight_id, today=options.as_of, notify=options.notify, policy=_policy
    )
    if "error" in result:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@app.post("/api/users/{user_id}/flights/reevaluate", dependencies=[Depends(require_api_key)])
def reevaluate_flights_endpoint(
    user_id: str,
    options: ReevaluateRequest | None = None,
    db: Session = Depends(get_db),
):
    """Recompute compliance for all of a pilot's flights."""
    options = options or ReevaluateRequest()
    results = reevaluate_flights(db, user_id, today=options.as_of, policy=_policy)
    return {"user_id": user_id, **results}


@app.get("/api/users/{user_id}/compliance/score", dependencies=[Depends(require_api_key)])
def compliance_score_endpoint(user_id: str, db: Session = Depends(get_db)):
    return {"user_id": user_id, "score": calculate_compliance_score(db, user_id)}


@app.get("/api/users/{user_id}/compliance/summary", dependencies=[Depends(require_api_key)])
def compliance_summary_endpoint(
    user_id: str,
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    db: Session = Depends(get_db),
):
    window = (from_date, to_date) if from_date or to_date else None
    return get_compliance_summary(db, user_id, window=window, policy=_policy)


@app.get("/api/users/{user_id}/compliance/violations", dependencies=[Depends(require_api_key)])
def compliance_violations_endpoint(
    user_id: str,
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    db: Session = Depends(get_db),
):
    """Violations in a window (defaults to the trailing 30 days)."""
    to_date = to_date or today_utc()
    from_date = from_date or to_date - timedelta(days=DEFAULT_VIOLATION_WINDOW_DAYS)
    if from_date > to_date:
        raise HTTPException(status_code=422, detail="from_date must not be after to_date")
    return get_violations_for_window(db, user_id, from_date, to_date, policy=_policy)


@app.post(
    "/api/users/{user_id}/notifications/check-expiry",
    dependencies=[Depends(require_api_key)],
)
def check_expiry_endpoint(user_id: str, db: Session = Depends(get_db)):
    created = check_expiry_notifications(db, user_id, policy=_policy)
    return {
        "user_id": user_id,
        "created": [
            {"id": n.id, "title": n.title, "severity": n.severity} for n in created
        ],
        "count": len(created),
    }


@app.get(
    "/api/users/{user_id}/notifications/unread-count",
    dependencies=[Depends(require_api_key)],
)
def unread_count_endpoint(user_id: str, db: Session = Depends(get_db)):
    return {"user_id": user_id, "unread": get_unread_count(db, user_id)}


@app.get("/api/users/{user_id}/notifications", dependencies=[Depends(require_api_key)])
def list_notifications_endpoint(
    user_id: str,
    unread: bool = Query(False),
    limit: int | None = Query(None, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Notifications, newest first; unread=true hides read and dismissed ones."""
    if unread:
        notifications = get_unread_notifications(db, user_id, limit=limit or 10)
    else:
        notifications = get_all_notifications(db, user_id, limit=limit or 50)
    return {
        "user_id": user_id,
        "notifications": [_notification_dict(n) for n in notifications],
        "count": len(notifications),
    }


@app.post(
    "/api/users/{user_id}/notifications/read-all",
    dependencies=[Depends(require_api_key)],
)
def mark_all_read_endpoint(user_id: str, db: Session = Depends(get_db)):
    return {"user_id": user_id, "marked": mark_all_as_read(db, user_id)}


@app.post("/api/notifications/{notification_id}/read", dependencies=[Depends(require_api_key)])
def mark_read_endpoint(notification_id: int, db: Session = Depends(get_db)):
    if not mark_as_read(db, notification_id):
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return {"id": notification_id, "read": True}


@app.post("/api/notifications/{notification_id}/dismiss", dependencies=[Depends(require_api_key)])
def dismiss_endpoint(notification_id: int, db: Session = Depends(get_db)):
    if not dismiss_notification(db, notification_id):
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return {"id": notification_id, "dismissed": True}


# =========================================================================
# Server Entry Points
# =========================================================================

def _print_banner(host: str, port: int):
    print(f"\nStarting Fleet Compliance API v{__version__} on {host}:{port}")
    print(f"  Health:     GET  http://{host}:{port}/health")
    print(f"  Cron:       GET  http://{host}:{port}/api/cron/compliance-alerts")
    print(f"  Evaluate:   POST http://{host}:{port}/api/flights/{{flight_id}}/evaluate")
    print(f"  Summary:    GET  http://{host}:{port}/api/users/{{user_id}}/compliance/summary")
    print(f"  Auth mode:  {'api_key' if API_KEYS else 'none (dev mode)'}\n")


def main():
    """Run the API via gunicorn (production)."""
    import sys
    from pathlib import Path

    host = os.environ.get("COMPLIANCE_HOST", "127.0.0.1")
    port = int(os.environ.get("COMPLIANCE_PORT", "8300"))

    _print_banner(host, port)

    # Locate gunicorn config: check working directory, then package root
    config_path = Path("gunicorn_config.py")
    if not config_path.exists():
        config_path = Path(__file__).parent.parent.parent / "gunicorn_config.py"

    args = [
        "gunicorn",
        "--bind", f"{host}:{port}",
        "fleet_compliance.http_server:app",
    ]
    if config_path.exists():
        args.extend(["--config", str(config_path)])

    sys.argv = args

    from gunicorn.app.wsgiapp import WSGIApplication
    WSGIApplication("%(prog)s [OPTIONS] [APP_MODULE]").run()


def dev():
    """Run the API via uvicorn (development)."""
    import uvicorn

    host = os.environ.get("COMPLIANCE_HOST", "0.0.0.0")
    port = int(os.environ.get("COMPLIANCE_PORT", "8300"))

    _print_banner(host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    dev()
