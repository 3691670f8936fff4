# backend/branchledger/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Must land before db.init_app so the engine sees the override
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Realtime hub: one per app, handed to services by the routes
    from .realtime import RealtimeNotifier
    app.extensions["realtime"] = RealtimeNotifier.from_config(app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.payments import payments_bp
    from .routes.registers import registers_bp
    from .routes.discounts import discounts_bp
    from .routes.documents import documents_bp
    from .routes.notifications import notifications_bp
    from .routes.realtime import realtime_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(registers_bp)
    app.register_blueprint(discounts_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(realtime_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or ())
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
