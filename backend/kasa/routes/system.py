# backend/kasa/routes/system.py
"""
System health, version and event feed endpoints.
"""

import sys
import time

from flask import Blueprint, current_app, request, jsonify

from ..extensions import db
from ..models import CashRegisterSession, Sale
from ..services import event_service
from ..services.register_service import get_active_session
from kasa.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity with a couple of cheap counts.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        sale_count = db.session.query(Sale).count()
        session_count = db.session.query(CashRegisterSession).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "sales": sale_count,
                "register_sessions": session_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_register_health() -> dict:
    """No open register is degraded, not down: sales still complete, with a warning."""
    session = get_active_session()
    if session is None:
        return {"status": "degraded", "details": {"register_id": current_app.config["DEFAULT_REGISTER_ID"], "open": False}}
    return {"status": "healthy", "details": {"register_id": session.register_id, "open": True, "session_id": session.id}}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (no open register)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    if database_health["status"] == "unhealthy":
        register_health = {"status": "unknown"}
    else:
        register_health = check_register_health()

    all_checks = [database_health, register_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "register": register_health,
        },
    }
    return response, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "terminal_mode": current_app.config["TERMINAL_MODE"],
        "server_time": utcnow().isoformat() + "Z",
    }


@system_bp.get("/events")
def list_events_route():
    """
    Outbox feed for dashboard consumers.

    Query params: name, after_id, limit (default 100, max 500)
    """
    limit = min(request.args.get("limit", default=100, type=int) or 100, 500)
    events = event_service.list_events(
        name=request.args.get("name"),
        after_id=request.args.get("after_id", type=int),
        limit=limit,
    )
    return jsonify({"events": [e.to_dict() for e in events]}), 200
