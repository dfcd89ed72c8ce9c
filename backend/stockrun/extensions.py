# Overview: Flask extension instances for database, migrations, and the location change feed.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def get_change_feed():
    """Change feed bound to the current app (created in create_app)."""
    return current_app.extensions["stockrun.change_feed"]


def get_tracking_registry():
    """Per-app registry of live LocationTracker sessions."""
    return current_app.extensions["stockrun.tracking"]
