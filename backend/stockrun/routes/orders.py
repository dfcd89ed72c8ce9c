# Overview: Flask API routes for orders; the source of pending delivery demand.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import StockRunError
from ..services import order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
@require_permission("CREATE_ORDERS")
def create_order_route():
    """
    Create an order.

    Body: {customer_ref?, customer_name?, delivery_address?, order_date?,
    expected_delivery_date?, status?, lines: [{product_id, quantity, unit_price_cents?}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(data, actor_user_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 201

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
@require_permission("VIEW_ORDERS")
def list_orders_route():
    try:
        orders = order_service.list_orders(request.args.get("status"))
        return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_permission("UPDATE_ORDER_STATUS")
def update_order_status_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400
        order = order_service.update_status(order_id, status)
        return jsonify({"order": order.to_dict()}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500
