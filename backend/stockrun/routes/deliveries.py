# Overview: Flask API routes for delivery dates, aggregation and allocation to drivers.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import StockRunError, ValidationError
from ..services import allocation_service, delivery_service
from ..validation import coerce_int, date_list_arg, optional_int


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


@deliveries_bp.get("/dates")
@require_auth
@require_permission("VIEW_DELIVERIES")
def delivery_dates_route():
    """Dates with pending orders, order counts, and whether each is already allocated."""
    try:
        dates = delivery_service.delivery_dates_for_store()
        return jsonify({"items": dates, "count": len(dates)}), 200

    except Exception:
        current_app.logger.exception("Failed to list delivery dates")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/aggregate")
@require_auth
@require_permission("VIEW_DELIVERIES")
def aggregate_route():
    """
    Combined and per-date pending demand.

    Query: ?date=YYYY-MM-DD (repeatable) or ?dates=a,b,c
    """
    try:
        dates = delivery_service.parse_date_selection(date_list_arg(request.args))
        if not dates:
            return jsonify({"error": "At least one date is required"}), 400
        return jsonify(delivery_service.aggregate_for_store(dates)), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to aggregate deliveries")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/allocate")
@require_auth
@require_permission("ALLOCATE_DELIVERIES")
def allocate_route():
    """
    Allocate the selected dates to a driver.

    Body: {dates: [...], driver_id, items?: [{product_id, quantity}]}
    When items is omitted the combined pending demand of the dates is used.

    Returns 201 with created allocations and skipped dates; 409 when every
    date is already allocated.
    """
    try:
        data = request.get_json(silent=True) or {}
        dates = data.get("dates")
        if not isinstance(dates, list):
            raise ValidationError("dates must be a list")
        driver_id = coerce_int("driver_id", data.get("driver_id"))

        items = data.get("items")
        if items is None:
            selected = delivery_service.parse_date_selection(dates)
            items = delivery_service.aggregate_across_dates(
                delivery_service.load_pending_orders(), selected
            )
        elif not isinstance(items, list):
            raise ValidationError("items must be a list")

        result = allocation_service.allocate(
            dates, driver_id, items, actor_user_id=g.current_user.id
        )
        return jsonify(result.to_dict()), 201

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to allocate deliveries")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.delete("/allocations")
@require_auth
@require_permission("UNALLOCATE_DELIVERIES")
def unallocate_date_route():
    """Unallocate by date. Query: ?date=YYYY-MM-DD[&driver_id=N]"""
    try:
        allocation_date = request.args.get("date")
        if not allocation_date:
            return jsonify({"error": "date required"}), 400
        removed = allocation_service.unallocate_for_date(
            allocation_date, driver_id=optional_int(request.args, "driver_id")
        )
        return jsonify({"removed": removed}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to unallocate date")
        return jsonify({"error": "Internal server error"}), 500
