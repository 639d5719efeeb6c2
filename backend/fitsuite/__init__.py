# backend/fitsuite/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Collaborators; tests replace these entries with fakes
    from .services.payment_provider import MercadoPagoClient
    from .services.notification_service import InboxNotificationSink

    app.extensions["payment_provider"] = MercadoPagoClient(
        app.config["MP_ACCESS_TOKEN"],
        base_url=app.config["MP_API_BASE_URL"],
        timeout=app.config["MP_TIMEOUT_SECONDS"],
        attempts=app.config["MP_RETRY_ATTEMPTS"],
        backoff_base=app.config["MP_RETRY_BACKOFF"],
        logger=app.logger,
    )
    app.extensions["notification_sink"] = InboxNotificationSink()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.payments import payments_bp
    from .routes.orders import orders_bp
    from .routes.referrals import referrals_bp
    from .routes.devices import devices_bp
    from .routes.licenses import licenses_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(referrals_bp)
    app.register_blueprint(devices_bp)
    app.register_blueprint(licenses_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
