# Overview: Customer-to-merchant payment routes (pending -> completed -> refunded).

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth
from ..errors import ServiceError
from ..responses import success_response, error_response, internal_error_response
from ..services import transfer_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
@require_auth
def create_payment_route():
    """
    Customer pays a merchant. The payment stays pending until stall staff
    confirm it.

    Request body:
    {
        "merchant_id": int,
        "amount": int,
        "pin": str,
        "note": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        txn = transfer_service.create_payment(
            g.ctx,
            data.get("merchant_id"),
            data.get("amount"),
            data.get("pin"),
            note=data.get("note"),
        )
        return success_response(txn.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return internal_error_response()


@payments_bp.post("/<int:transaction_id>/confirm")
@require_auth
def confirm_payment_route(transaction_id: int):
    try:
        txn = transfer_service.confirm_payment(g.ctx, transaction_id)
        return success_response(txn.to_dict(include_history=True))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return internal_error_response()


@payments_bp.post("/<int:transaction_id>/cancel")
@require_auth
def cancel_payment_route(transaction_id: int):
    data = request.get_json(silent=True) or {}
    try:
        txn = transfer_service.cancel_payment(g.ctx, transaction_id, reason=data.get("reason"))
        return success_response(txn.to_dict(include_history=True))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel payment")
        return internal_error_response()


@payments_bp.post("/<int:transaction_id>/refund")
@require_auth
def refund_payment_route(transaction_id: int):
    """Owner-only refund of a completed payment. Body: {"reason": str}"""
    data = request.get_json(silent=True) or {}
    try:
        txn = transfer_service.refund_payment(g.ctx, transaction_id, data.get("reason"))
        return success_response(txn.to_dict(include_history=True))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return internal_error_response()


@payments_bp.get("/<int:transaction_id>")
@require_auth
def get_payment_route(transaction_id: int):
    try:
        txn = transfer_service.get_transaction(g.ctx, transaction_id)
        return success_response(txn.to_dict(include_history=True))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load transaction")
        return internal_error_response()
