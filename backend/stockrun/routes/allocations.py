# Overview: Flask API routes for driver allocations: list, detail, unallocate, reconcile.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import StockRunError, ValidationError
from ..models.auth import ROLE_DRIVER
from ..services import allocation_service
from ..validation import flag, optional_date, optional_int


allocations_bp = Blueprint("allocations", __name__, url_prefix="/api/allocations")


def _own_scope_driver_id(requested: int | None) -> int | None:
    """Drivers are always scoped to their own allocations."""
    if g.current_user.role == ROLE_DRIVER:
        return g.current_user.id
    return requested


@allocations_bp.get("")
@require_auth
@require_permission("VIEW_ALLOCATIONS")
def list_allocations_route():
    """
    Allocations, active only unless ?include_reconciled=1.

    Filters: driver_id, date_from, date_to (YYYY-MM-DD).
    """
    try:
        args = request.args
        allocations = allocation_service.list_allocations(
            include_reconciled=flag(args, "include_reconciled"),
            driver_id=_own_scope_driver_id(optional_int(args, "driver_id")),
            date_from=optional_date(args, "date_from"),
            date_to=optional_date(args, "date_to"),
        )
        return jsonify({"items": [a.to_dict() for a in allocations], "count": len(allocations)}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list allocations")
        return jsonify({"error": "Internal server error"}), 500


@allocations_bp.get("/<int:allocation_id>")
@require_auth
@require_permission("VIEW_ALLOCATIONS")
def get_allocation_route(allocation_id: int):
    try:
        detail = allocation_service.allocation_detail(allocation_id)
        if g.current_user.role == ROLE_DRIVER and detail["driver_id"] != g.current_user.id:
            return jsonify({"error": "Allocation not found"}), 404
        return jsonify({"allocation": detail}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load allocation")
        return jsonify({"error": "Internal server error"}), 500


@allocations_bp.delete("/<int:allocation_id>")
@require_auth
@require_permission("UNALLOCATE_DELIVERIES")
def unallocate_route(allocation_id: int):
    try:
        removed = allocation_service.unallocate(allocation_id)
        return jsonify({"removed": removed}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to unallocate")
        return jsonify({"error": "Internal server error"}), 500


@allocations_bp.post("/<int:allocation_id>/reconcile")
@require_auth
@require_permission("RECONCILE_ALLOCATIONS")
def reconcile_route(allocation_id: int):
    """
    Reconcile an active allocation.

    Body (optional): {returned_items: [{product_id, quantity}]}
    Without returned_items everything unsold is returned.
    """
    try:
        data = request.get_json(silent=True) or {}
        returned_items = data.get("returned_items")
        if returned_items is not None and not isinstance(returned_items, list):
            raise ValidationError("returned_items must be a list")

        summary = allocation_service.reconcile(
            allocation_id, returned_items, actor_user_id=g.current_user.id
        )
        return jsonify({
            "summary": summary.to_dict(),
            "allocation": allocation_service.get_allocation(allocation_id).to_dict(),
        }), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reconcile allocation")
        return jsonify({"error": "Internal server error"}), 500
