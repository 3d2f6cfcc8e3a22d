# backend/bazaar/routes/system.py
"""
System health and caller introspection endpoints.
"""

import time
from flask import Blueprint, current_app, g

from ..extensions import db
from ..models import Event, User
from ..decorators import require_auth
from ..errors import ServiceError
from ..responses import success_response, error_response, internal_error_response
from ..services import ledger_service as ledger
from bazaar.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Run a trivial query against the store and time it."""
    start_time = time.time()
    try:
        event_count = db.session.query(Event).count()
        user_count = db.session.query(User).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"events": event_count, "users": user_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/system/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"
    data = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }
    return success_response(data, 200 if healthy else 503)


@system_bp.get("/me")
@require_auth
def me():
    """Caller profile, roles and every ledger account the caller holds."""
    try:
        ctx = g.ctx
        user = ctx.load_user()
        accounts = {}
        for name, account in (
            ("seller", user.seller_account),
            ("seller_manager", user.seller_manager_account),
            ("point_seller", user.point_seller_account),
            ("customer", user.customer_account),
        ):
            if account is not None:
                accounts[name] = account.to_dict()
        data = user.to_dict()
        data["accounts"] = accounts
        data["point_value_cents"] = ledger.POINT_VALUE_CENTS
        return success_response(data)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load caller profile")
        return internal_error_response()
