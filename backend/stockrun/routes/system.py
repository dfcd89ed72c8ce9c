# Overview: Flask API routes for system health and version.

"""
System health and version endpoints.

Health covers the database (with latency) and the location tracking
runtime (registry and change feed).
"""

import sys
import time
from flask import Blueprint, current_app

from ..extensions import db, get_change_feed, get_tracking_registry
from ..models import DriverAllocation, Order, SessionToken, User
from ..models.allocations import ALLOCATION_STATUS_ALLOCATED
from ..models.orders import ORDER_STATUS_PENDING
from stockrun.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        pending_orders = db.session.query(Order).filter(Order.status == ORDER_STATUS_PENDING).count()
        active_allocations = db.session.query(DriverAllocation).filter(
            DriverAllocation.status == ALLOCATION_STATUS_ALLOCATED
        ).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "pending_orders": pending_orders,
                "active_allocations": active_allocations,
                "active_sessions": active_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_tracking_health() -> dict:
    registry = get_tracking_registry()
    return {
        "status": "healthy" if registry.enabled else "disabled",
        "details": {
            "enabled": registry.enabled,
            "interval_seconds": registry.interval,
            "active_trackers": registry.active_count(),
            "feed_subscribers": get_change_feed().subscriber_count,
        },
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Database reachable
    - 503: Database unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    tracking_health = check_tracking_health()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "location_tracking": tracking_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
