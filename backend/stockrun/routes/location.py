# Overview: Flask API routes for field-staff location: device fixes, tracker control, live dashboard.

"""
Location API routes

Field staff (SHARE_LOCATION):
- POST /fix                     device reports its current position
- GET  /tracking                tracker status
- POST /tracking/start|stop|update-now

Office (VIEW_LIVE_LOCATIONS):
- GET /live?scope=sharing|all   one-shot dashboard payload
- GET /stream?scope=...         server-sent events: a payload on every poll
                                tick (30 s) and on every matching change

Operators (MANAGE_DEMO_LOCATIONS):
- POST/DELETE /demo             seed or clear demo locations
"""

import json
import queue

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..dashboard import LocationDashboard
from ..decorators import require_auth, require_permission
from ..errors import ConflictError, StockRunError, ValidationError
from ..extensions import get_change_feed, get_tracking_registry
from ..records import parse_location
from ..services import location_service
from ..time_utils import to_utc_z, utcnow
from ..tracking import app_context


location_bp = Blueprint("location", __name__, url_prefix="/api/location")

STREAM_KEEPALIVE_SECONDS = 15.0


def _require_field_staff():
    if not g.current_user.is_field_staff:
        raise ValidationError("Only sales reps and drivers share their location")


def _tracker():
    registry = get_tracking_registry()
    if not registry.enabled:
        raise ConflictError("Location tracking is disabled")
    return registry.get(g.current_user.id)


@location_bp.post("/fix")
@require_auth
@require_permission("SHARE_LOCATION")
def report_fix_route():
    """
    Device-reported position.

    Body: {latitude, longitude, accuracy?, timestamp? (ISO-8601, defaults to now)}
    The fix is handed to the user's tracker, which publishes it on its next
    capture cycle.
    """
    try:
        _require_field_staff()
        data = request.get_json(silent=True) or {}
        if data.get("timestamp") is None:
            data = {**data, "timestamp": to_utc_z(utcnow())}
        fix = parse_location(data)
        if fix is None:
            raise ValidationError(
                "latitude and longitude are required and must be valid coordinates",
                details={"received": {k: data.get(k) for k in ("latitude", "longitude", "timestamp")}},
            )

        registry = get_tracking_registry()
        registry.provider.report(g.current_user.id, fix)
        tracker = registry.peek(g.current_user.id)
        return jsonify({
            "accepted": True,
            "fix": fix.to_dict(),
            "tracking": tracker.status() if tracker else None,
        }), 202

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to accept location fix")
        return jsonify({"error": "Internal server error"}), 500


@location_bp.get("/tracking")
@require_auth
@require_permission("SHARE_LOCATION")
def tracking_status_route():
    tracker = get_tracking_registry().peek(g.current_user.id)
    return jsonify({"tracking": tracker.status() if tracker else None}), 200


def _tracking_action(action: str):
    try:
        _require_field_staff()
        tracker = _tracker()
        getattr(tracker, action)()
        return jsonify({"tracking": tracker.status()}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to %s location tracking", action)
        return jsonify({"error": "Internal server error"}), 500


@location_bp.post("/tracking/start")
@require_auth
@require_permission("SHARE_LOCATION")
def start_tracking_route():
    return _tracking_action("start")


@location_bp.post("/tracking/stop")
@require_auth
@require_permission("SHARE_LOCATION")
def stop_tracking_route():
    return _tracking_action("stop")


@location_bp.post("/tracking/update-now")
@require_auth
@require_permission("SHARE_LOCATION")
def update_now_route():
    return _tracking_action("update_now")


@location_bp.get("/live")
@require_auth
@require_permission("VIEW_LIVE_LOCATIONS")
def live_locations_route():
    try:
        return jsonify(location_service.live_locations(request.args.get("scope"))), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load live locations")
        return jsonify({"error": "Internal server error"}), 500


@location_bp.get("/stream")
@require_auth
@require_permission("VIEW_LIVE_LOCATIONS")
def stream_locations_route():
    """Server-sent events fed by a LocationDashboard for this connection."""
    try:
        scope = location_service.normalize_scope(request.args.get("scope"))
    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status

    app = current_app._get_current_object()
    registry = get_tracking_registry()
    updates: queue.Queue = queue.Queue()

    def _fetch(selected_scope: str) -> dict:
        with app_context(app):
            return location_service.live_locations(selected_scope)

    dashboard = LocationDashboard(
        scheduler=registry.scheduler,
        feed=get_change_feed(),
        fetch=_fetch,
        listener=updates.put,
        scope=scope,
        poll_interval=float(app.config.get("DASHBOARD_POLL_SECONDS", 30.0)),
    )

    def _events():
        dashboard.start()
        try:
            while True:
                try:
                    payload = updates.get(timeout=STREAM_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: locations\ndata: {json.dumps(payload)}\n\n"
        finally:
            dashboard.stop()

    return Response(
        _events(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@location_bp.post("/demo")
@require_auth
@require_permission("MANAGE_DEMO_LOCATIONS")
def seed_demo_route():
    try:
        count = location_service.seed_demo()
        return jsonify({"seeded": count}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to seed demo locations")
        return jsonify({"error": "Internal server error"}), 500


@location_bp.delete("/demo")
@require_auth
@require_permission("MANAGE_DEMO_LOCATIONS")
def clear_demo_route():
    try:
        count = location_service.clear_demo()
        return jsonify({"cleared": count}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to clear demo locations")
        return jsonify({"error": "Internal server error"}), 500
