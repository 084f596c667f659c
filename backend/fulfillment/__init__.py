# backend/fulfillment/__init__.py
from flask import Flask

from .config import Config, CoreSettings
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.events import EventNotifier, log_event
    from .services.registry import FulfillmentCore
    from .services.slip_reader import SlipOkReader

    notifier = EventNotifier()
    notifier.subscribe(log_event)

    slip_reader = SlipOkReader(
        api_url=app.config["SLIPOK_API_URL"],
        api_key=app.config["SLIPOK_API_KEY"],
        branch_id=app.config["SLIPOK_BRANCH_ID"],
        timeout=float(app.config["SLIP_READER_TIMEOUT_SECONDS"]),
        retries=int(app.config["SLIP_READER_RETRIES"]),
        tz_name=app.config["DEFAULT_TIMEZONE"],
    )

    app.extensions["fulfillment"] = FulfillmentCore(
        db.session,
        settings=CoreSettings.from_mapping(app.config),
        notifier=notifier,
        slip_reader=slip_reader,
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.stock import stock_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(stock_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
