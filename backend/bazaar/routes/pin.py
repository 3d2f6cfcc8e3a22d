# Overview: Transaction PIN enrollment, verification and administrative reset.

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth
from ..errors import ServiceError
from ..responses import success_response, error_response, internal_error_response
from ..services import pin_service
from bazaar.time_utils import to_utc_z


pin_bp = Blueprint("pin", __name__, url_prefix="/api/pin")


@pin_bp.post("/setup")
@require_auth
def setup_pin_route():
    """
    Set or change the caller's PIN.

    Request body:
    {
        "pin": "six digits",
        "current_pin": "six digits" (required when a PIN is already set)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        user = pin_service.setup_pin(g.ctx, data.get("pin"), current_pin=data.get("current_pin"))
        return success_response({"has_pin": user.has_pin}, 200)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set PIN")
        return internal_error_response()


@pin_bp.post("/verify")
@require_auth
def verify_pin_route():
    """
    Check the caller's PIN without performing an operation.

    A wrong PIN counts toward the lockout exactly as it would in front of a
    ledger operation.
    """
    data = request.get_json(silent=True) or {}
    try:
        pin = pin_service.require_pin_format(data.get("pin"))
        result = pin_service.verify(g.ctx.session, g.ctx.user_id, pin, resource=g.ctx.resource)
        return success_response({
            "verified": result.ok,
            "outcome": result.outcome,
            "remaining_attempts": result.remaining_attempts,
            "locked_until": to_utc_z(result.locked_until),
        })
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify PIN")
        return internal_error_response()


@pin_bp.post("/reset")
@require_auth
def reset_pin_route():
    """Event manager clears another user's PIN. Body: {"user_id": int}"""
    data = request.get_json(silent=True) or {}
    try:
        user = pin_service.reset_pin(g.ctx, data.get("user_id"))
        return success_response({"user_id": user.id, "has_pin": user.has_pin})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reset PIN")
        return internal_error_response()
