# Overview: Cash submission routes; create, claim and resolve physical cash handoffs.

"""
Cash submission API routes.

Submitters (seller, sellerManager, pointSeller) hand in cash backed by
ledger source records. Collectors confirm, dispute or reject.
"""

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth
from ..errors import ServiceError, InvalidArgumentError
from ..responses import success_response, error_response, internal_error_response
from ..services import cash_submission_service


cash_submissions_bp = Blueprint("cash_submissions", __name__, url_prefix="/api/cash-submissions")


def _limit_arg() -> int:
    raw = request.args.get("limit", "100")
    try:
        limit = int(raw)
    except ValueError:
        raise InvalidArgumentError("limit must be an integer")
    return max(1, min(limit, 500))


@cash_submissions_bp.post("")
@require_auth
def create_submission_route():
    """
    Request body:
    {
        "amount_cents": int,
        "sources": [{"type": "direct_sale", "id": 12}, ...],
        "pin": str,
        "receiver_id": int (sellers only; omit for the unclaimed pool),
        "as_role": str (optional),
        "note": str (optional)
    }

    Returns:
        201: Submission pending
        400: Malformed sources or declared amount does not match sources
        403: Source belongs to someone else / receiver not your manager
        409: Source already submitted, or not enough cash in hand
    """
    data = request.get_json(silent=True) or {}
    try:
        submission = cash_submission_service.create_submission(
            g.ctx,
            data.get("amount_cents"),
            data.get("sources"),
            data.get("pin"),
            receiver_id=data.get("receiver_id"),
            note=data.get("note"),
            as_role=data.get("as_role"),
        )
        return success_response(submission.to_dict(), 201)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create cash submission")
        return internal_error_response()


@cash_submissions_bp.get("/pool")
@require_auth
def list_pool_route():
    try:
        rows = cash_submission_service.list_pool(g.ctx, limit=_limit_arg())
        return success_response([row.to_dict() for row in rows])
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list cash submission pool")
        return internal_error_response()


@cash_submissions_bp.get("/mine")
@require_auth
def list_mine_route():
    try:
        rows = cash_submission_service.list_mine(
            g.ctx, status=request.args.get("status"), limit=_limit_arg(),
        )
        return success_response([row.to_dict() for row in rows])
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list own cash submissions")
        return internal_error_response()


@cash_submissions_bp.get("/incoming")
@require_auth
def list_incoming_route():
    """Submissions addressed to the calling seller manager. ?status=all for history."""
    status = request.args.get("status", "pending")
    try:
        rows = cash_submission_service.list_incoming(
            g.ctx, status=None if status == "all" else status, limit=_limit_arg(),
        )
        return success_response([row.to_dict() for row in rows])
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list incoming cash submissions")
        return internal_error_response()


@cash_submissions_bp.post("/<int:submission_id>/confirm")
@require_auth
def confirm_submission_route(submission_id: int):
    data = request.get_json(silent=True) or {}
    try:
        submission = cash_submission_service.confirm_submission(
            g.ctx, submission_id, data.get("pin"), note=data.get("note"),
        )
        return success_response(submission.to_dict())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm cash submission")
        return internal_error_response()


@cash_submissions_bp.post("/<int:submission_id>/dispute")
@require_auth
def dispute_submission_route(submission_id: int):
    data = request.get_json(silent=True) or {}
    try:
        submission = cash_submission_service.dispute_submission(
            g.ctx, submission_id, data.get("reason"), data.get("pin"),
        )
        return success_response(submission.to_dict())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to dispute cash submission")
        return internal_error_response()


@cash_submissions_bp.post("/<int:submission_id>/reject")
@require_auth
def reject_submission_route(submission_id: int):
    data = request.get_json(silent=True) or {}
    try:
        submission = cash_submission_service.reject_submission(
            g.ctx, submission_id, data.get("reason"), data.get("pin"),
        )
        return success_response(submission.to_dict())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject cash submission")
        return internal_error_response()
