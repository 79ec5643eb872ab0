# backend/lotkeeper/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate
from .services.commerce_gateway import CommerceGateway


def create_app(test_config: dict | None = None, *, gateway: CommerceGateway | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before extensions bind their engines
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(str(app.config.get("LOG_LEVEL") or "INFO").upper())

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Commerce platform ports; tests and embedders may bind their own
    app.extensions["lotkeeper.gateway"] = gateway or CommerceGateway()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.variant_batches import variant_batches_bp
    from .routes.store import store_bp
    from .routes.events import events_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(variant_batches_bp)
    app.register_blueprint(store_bp)
    app.register_blueprint(events_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
