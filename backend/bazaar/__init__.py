# backend/bazaar/__init__.py
from flask import Flask, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import db, migrate


# Error codes used when Flask itself rejects a request (unknown route, bad method)
HTTP_ERROR_CODES = {
    400: "invalid-argument",
    401: "unauthenticated",
    403: "permission-denied",
    404: "not-found",
    405: "invalid-argument",
    409: "failed-precondition",
}


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before the extensions bind their engine
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.pin import pin_bp
    from .routes.points import points_bp
    from .routes.payments import payments_bp
    from .routes.point_cards import point_cards_bp
    from .routes.cash_submissions import cash_submissions_bp
    from .routes.merchants import merchants_bp
    from .routes.stats import stats_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(pin_bp)
    app.register_blueprint(points_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(point_cards_bp)
    app.register_blueprint(cash_submissions_bp)
    app.register_blueprint(merchants_bp)
    app.register_blueprint(stats_bp)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc):
        code = HTTP_ERROR_CODES.get(exc.code, "internal")
        return {"success": False, "error": {"code": code, "message": exc.description}}, exc.code

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config.get("CORS_ALLOWED_ORIGINS", []):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
