# backend/phonestock/__init__.py
import logging

from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import db, migrate
from .errors import PhoneStockError


def create_app(config_object=None, **overrides) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)
    app.config.update(overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.catalog import catalog_bp
    from .routes.inventory import inventory_bp
    from .routes.assignments import assignments_bp
    from .routes.schedules import schedules_bp

    app.register_blueprint(catalog_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(assignments_bp)
    app.register_blueprint(schedules_bp)

    @app.errorhandler(PhoneStockError)
    def handle_domain_error(e: PhoneStockError):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        current_app.logger.exception("Failed to handle %s %s", request.method, request.path)
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
