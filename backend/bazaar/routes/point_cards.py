# Overview: Point card issue, lookup, redemption and top-up routes.

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth
from ..errors import ServiceError
from ..responses import success_response, error_response, internal_error_response
from ..services import transfer_service


point_cards_bp = Blueprint("point_cards", __name__, url_prefix="/api/point-cards")


@point_cards_bp.post("")
@require_auth
def issue_card_route():
    """
    Point seller issues a bearer card.

    Request body:
    {
        "amount": int,
        "pin": str,
        "cash_received_cents": int (optional, defaults to the points' cash value)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        card = transfer_service.issue_point_card(
            g.ctx,
            data.get("amount"),
            data.get("pin"),
            cash_received_cents=data.get("cash_received_cents"),
            note=data.get("note"),
        )
        return success_response(card.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to issue point card")
        return internal_error_response()


@point_cards_bp.get("/<card_number>")
@require_auth
def get_card_route(card_number: str):
    try:
        card = transfer_service.get_point_card(g.ctx, card_number)
        return success_response(card.to_dict())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load point card")
        return internal_error_response()


@point_cards_bp.post("/<card_number>/redeem")
@require_auth
def redeem_card_route(card_number: str):
    """Stall staff charge a card. Body: {"merchant_id": int, "amount": int, "pin": str}"""
    data = request.get_json(silent=True) or {}
    try:
        txn = transfer_service.redeem_point_card(
            g.ctx,
            card_number,
            data.get("merchant_id"),
            data.get("amount"),
            data.get("pin"),
        )
        return success_response(txn.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to redeem point card")
        return internal_error_response()


@point_cards_bp.post("/<card_number>/topup")
@require_auth
def topup_card_route(card_number: str):
    """Customer moves a card's whole balance into their account. Body: {"pin": str}"""
    data = request.get_json(silent=True) or {}
    try:
        txn = transfer_service.topup_from_point_card(g.ctx, card_number, data.get("pin"))
        return success_response(txn.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to top up from point card")
        return internal_error_response()
