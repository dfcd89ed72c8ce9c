# Overview: Flask application factory wiring config, extensions, location tracking, and blueprints.

import logging

from flask import Flask, request

from .change_feed import ChangeFeed
from .config import Config
from .extensions import db, migrate
from .scheduling import ThreadScheduler
from .tracking import AppLocationSink, PositionOptions, ReportedPositionProvider, TrackingRegistry


def create_app(config_overrides: dict | None = None, *, scheduler=None) -> Flask:
    """
    Build the app.

    `scheduler` drives location trackers and dashboards; defaults to a
    ThreadScheduler. Tests pass a ManualScheduler to step time explicitly.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    app.logger.setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Location tracking: one change feed and one tracker registry per app
    app.extensions["stockrun.change_feed"] = ChangeFeed()
    app.extensions["stockrun.tracking"] = TrackingRegistry(
        scheduler=scheduler or ThreadScheduler(),
        provider=ReportedPositionProvider(),
        sink=AppLocationSink(app),
        interval=float(app.config["LOCATION_CAPTURE_INTERVAL_SECONDS"]),
        options=PositionOptions.from_config(app.config),
        autostart_delay=float(app.config["TRACKING_AUTOSTART_DELAY_SECONDS"]),
        enabled=bool(app.config["TRACKING_ENABLED"]),
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.products import products_bp
    from .routes.orders import orders_bp
    from .routes.deliveries import deliveries_bp
    from .routes.allocations import allocations_bp
    from .routes.driver_sales import driver_sales_bp, drivers_bp
    from .routes.location import location_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(deliveries_bp)
    app.register_blueprint(allocations_bp)
    app.register_blueprint(driver_sales_bp)
    app.register_blueprint(drivers_bp)
    app.register_blueprint(location_bp)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or ())

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
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
