# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, g

from .extensions import db
from .errors import ServiceError
from .responses import error_response
from .services import identity_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a bearer credential and establish the caller context.

    MULTI-TENANT: Sets g.ctx, a ServiceContext carrying the session and the
    verified caller (org_id, event_id, user_id, roles). Tenant and role
    fields in the request payload are never consulted.

    SECURITY: Responds with the error envelope when:
    - No Authorization header (401)
    - Unknown, revoked or expired credential (401)
    - User or event deactivated (403)
    - No user registered for the identity in the event (404)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            g.ctx = identity_service.build_context(
                db.session,
                bearer_token(),
                resource=request.path,
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            )
        except ServiceError as e:
            return error_response(e)
        return f(*args, **kwargs)

    return decorated_function
