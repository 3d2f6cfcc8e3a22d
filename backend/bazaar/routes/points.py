# Overview: Point issuance and customer transfer routes.

"""
Point movement API routes.

All amounts are whole points. Every route except /grant needs the caller's
transaction PIN in the body.
"""

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth
from ..errors import ServiceError
from ..responses import success_response, error_response, internal_error_response
from ..services import transfer_service


points_bp = Blueprint("points", __name__, url_prefix="/api/points")


@points_bp.post("/allocate")
@require_auth
def allocate_route():
    """
    Seller manager allocates points to a seller.

    Request body:
    {
        "recipient_id": int,
        "amount": int,
        "pin": str,
        "note": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        txn = transfer_service.allocate_points(
            g.ctx,
            data.get("recipient_id"),
            data.get("amount"),
            data.get("pin"),
            note=data.get("note"),
        )
        return success_response(txn.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to allocate points")
        return internal_error_response()


@points_bp.post("/direct-sale")
@require_auth
def direct_sale_route():
    """
    Seller manager or point seller sells points straight to a customer.

    Request body:
    {
        "customer_id": int,
        "amount": int,
        "pin": str,
        "as_role": "sellerManager" | "pointSeller" (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        txn = transfer_service.direct_sale(
            g.ctx,
            data.get("customer_id"),
            data.get("amount"),
            data.get("pin"),
            as_role=data.get("as_role"),
            note=data.get("note"),
        )
        return success_response(txn.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record direct sale")
        return internal_error_response()


@points_bp.post("/seller-sale")
@require_auth
def seller_sale_route():
    data = request.get_json(silent=True) or {}
    try:
        txn = transfer_service.seller_sale(
            g.ctx,
            data.get("customer_id"),
            data.get("amount"),
            data.get("pin"),
            note=data.get("note"),
        )
        return success_response(txn.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record seller sale")
        return internal_error_response()


@points_bp.post("/transfer")
@require_auth
def transfer_route():
    """
    Customer to customer transfer.

    Request body:
    {
        "to_user_id": int  OR  "to_phone": str,
        "amount": int,
        "pin": str
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        txn = transfer_service.transfer_points(
            g.ctx,
            data.get("amount"),
            data.get("pin"),
            to_user_id=data.get("to_user_id"),
            to_phone=data.get("to_phone"),
            note=data.get("note"),
        )
        return success_response(txn.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to transfer points")
        return internal_error_response()


@points_bp.post("/grant")
@require_auth
def grant_route():
    """Event manager grants free points to every customer with an identity tag."""
    data = request.get_json(silent=True) or {}
    try:
        transactions = transfer_service.grant_points(
            g.ctx,
            data.get("identity_tag"),
            data.get("amount"),
            note=data.get("note"),
        )
        return success_response({
            "recipient_count": len(transactions),
            "transactions": [txn.to_dict() for txn in transactions],
        }, 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to grant points")
        return internal_error_response()
