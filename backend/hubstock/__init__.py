# backend/hubstock/__init__.py
from flask import Flask, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import InventoryError, StorageFailureError
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Service loggers ("hubstock.services.*") propagate to app.logger
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stock import stock_bp
    from .routes.transfers import transfers_bp
    from .routes.orders import orders_bp
    from .routes.production import production_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(production_bp)

    register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Actor-Id"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def register_error_handlers(app: Flask) -> None:
    """Map engine errors to JSON responses; storage details never leave the server."""

    @app.errorhandler(InventoryError)
    def handle_inventory_error(exc: InventoryError):
        db.session.rollback()
        if isinstance(exc, StorageFailureError):
            app.logger.error(
                "%s %s failed with storage failure [incident %s]",
                request.method, request.path, exc.incident_ref,
            )
        elif exc.status_code >= 500:
            app.logger.error("%s %s failed: %s", request.method, request.path, exc)
        else:
            app.logger.warning("%s %s rejected: %s", request.method, request.path, exc)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(exc: SQLAlchemyError):
        db.session.rollback()
        failure = StorageFailureError()
        app.logger.exception("Unhandled storage error [incident %s]", failure.incident_ref)
        return jsonify(failure.to_dict()), failure.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description, "code": exc.name.lower().replace(" ", "_")}), exc.code
