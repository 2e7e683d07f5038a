# backend/orderledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # External collaborators (tests swap these on app.extensions)
    from .services.gateways import init_refund_gateway
    from .services.notifications import init_notifications
    init_refund_gateway(app)
    init_notifications(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.inventory import inventory_bp
    from .routes.refunds import refunds_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(refunds_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
