# Overview: Merchant registry routes (stalls and assistants).

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth
from ..errors import ServiceError
from ..responses import success_response, error_response, internal_error_response
from ..services import merchant_service


merchants_bp = Blueprint("merchants", __name__, url_prefix="/api/merchants")


@merchants_bp.post("")
@require_auth
def create_merchant_route():
    """
    Merchant manager opens a stall.

    Request body:
    {
        "owner_id": int,
        "stall_name": str,
        "description": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        merchant = merchant_service.create_merchant(
            g.ctx,
            data.get("owner_id"),
            data.get("stall_name"),
            description=data.get("description"),
        )
        return success_response(merchant.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create merchant")
        return internal_error_response()


@merchants_bp.get("/<int:merchant_id>")
@require_auth
def get_merchant_route(merchant_id: int):
    try:
        merchant = merchant_service.get_merchant(g.ctx, merchant_id)
        return success_response(merchant.to_dict(include_assistants=True))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load merchant")
        return internal_error_response()


@merchants_bp.post("/<int:merchant_id>/assistants")
@require_auth
def assign_assistant_route(merchant_id: int):
    data = request.get_json(silent=True) or {}
    try:
        assistant = merchant_service.assign_assistant(g.ctx, merchant_id, data.get("user_id"))
        return success_response(assistant.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign merchant assistant")
        return internal_error_response()


@merchants_bp.delete("/<int:merchant_id>/assistants/<int:user_id>")
@require_auth
def remove_assistant_route(merchant_id: int, user_id: int):
    try:
        assistant = merchant_service.remove_assistant(g.ctx, merchant_id, user_id)
        return success_response(assistant.to_dict())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove merchant assistant")
        return internal_error_response()


@merchants_bp.post("/<int:merchant_id>/status")
@require_auth
def set_status_route(merchant_id: int):
    """Open or close a stall. Body: {"is_active": bool}"""
    data = request.get_json(silent=True) or {}
    try:
        merchant = merchant_service.set_merchant_active(g.ctx, merchant_id, data.get("is_active"))
        return success_response(merchant.to_dict())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update merchant status")
        return internal_error_response()
