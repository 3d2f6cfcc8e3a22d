# Overview: Read-only statistics routes plus the manual recompute trigger.

from flask import Blueprint, current_app, g

from ..decorators import require_auth
from ..errors import ServiceError
from ..responses import success_response, error_response, internal_error_response
from ..services import stats_service


stats_bp = Blueprint("stats", __name__, url_prefix="/api/stats")


@stats_bp.get("/departments/<department_code>")
@require_auth
def department_stats_route(department_code: str):
    try:
        row = stats_service.get_department_stats(g.ctx, department_code)
        return success_response(row.to_dict())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load department statistics")
        return internal_error_response()


@stats_bp.get("/departments/<department_code>/alerts")
@require_auth
def department_alerts_route(department_code: str):
    try:
        alerts = stats_service.collection_alerts(g.ctx, department_code)
        return success_response({"department_code": department_code, "alerts": alerts})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load collection alerts")
        return internal_error_response()


@stats_bp.get("/seller-managers/<int:manager_id>")
@require_auth
def seller_manager_stats_route(manager_id: int):
    try:
        row = stats_service.get_seller_manager_stats(g.ctx, manager_id)
        return success_response(row.to_dict())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load seller manager statistics")
        return internal_error_response()


@stats_bp.get("/event")
@require_auth
def event_stats_route():
    try:
        row = stats_service.get_event_stats(g.ctx)
        return success_response(row.to_dict())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load event statistics")
        return internal_error_response()


@stats_bp.get("/finance")
@require_auth
def finance_summary_route():
    try:
        return success_response(stats_service.get_finance_summary(g.ctx))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load finance summary")
        return internal_error_response()


@stats_bp.post("/recompute")
@require_auth
def recompute_route():
    try:
        return success_response(stats_service.recompute_event(g.ctx))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to recompute statistics")
        return internal_error_response()
