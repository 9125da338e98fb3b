# Overview: Flask API routes for sales orders; parses input and returns JSON responses.

# backend/nexus/routes/orders.py
"""Sales order API routes"""

from flask import Blueprint, request, jsonify, g

from ..errors import ErpError
from ..responses import error_response, internal_error
from ..services import order_service, order_state_service
from ..services.audit_service import get_client_ip
from ..decorators import require_auth, require_role


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@require_auth
def list_orders_route():
    """List non-deleted orders, newest first, with customer name and total."""
    try:
        return jsonify(order_service.list_orders()), 200
    except Exception as e:
        return internal_error("Failed to fetch orders", e)


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        return jsonify(order_service.get_order_detail(order_id)), 200
    except ErpError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("Failed to fetch order", e)


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Create a DRAFT sales order.

    Request body:
    {
        "customer_id": int,
        "items": [{"product_id": int, "quantity": int, "unit_price": number}]
    }

    Returns:
        201: {"id": int, "message": "Order created"}
        400: {"error": "Invalid order data", "details": [...every violation...]}
    """
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"error": "Missing body"}), 400

    try:
        order = order_service.create_order(
            data,
            actor_id=g.current_user.id,
            ip=get_client_ip(request),
        )
        return jsonify({
            "id": order.id,
            "total_amount": order.total_amount,
            "message": "Order created",
        }), 201
    except ErpError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("Failed to create order", e)


@orders_bp.put("/<int:order_id>")
@require_auth
@require_role("admin", "manager")
def update_order_status_route(order_id: int):
    """
    Move an order through the transition table.

    Request body: {"status": str}

    Returns:
        200: Status updated
        400: Invalid status transition from X to Y
        404: Order not found
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Missing body"}), 400

    try:
        order = order_state_service.apply_transition(
            order_id,
            data.get("status"),
            actor_id=g.current_user.id,
            ip=get_client_ip(request),
        )
        return jsonify({
            "id": order.id,
            "status": order.status,
            "message": f"Order status updated to {order.status}",
        }), 200
    except ErpError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("Failed to update order", e)


@orders_bp.post("/<int:order_id>/approve")
@require_auth
@require_role("admin", "manager")
def approve_order_route(order_id: int):
    """
    Approve an order and deduct its stock.

    Request body (optional): {"warehouse_id": int}
    Without it the configured DEFAULT_WAREHOUSE_ID is used.

    Returns:
        200: Order approved and stock deducted
        400: Not approvable, or "Insufficient stock for <product>. Available: N, Required: M"
        404: Order or warehouse not found
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}

    try:
        order = order_service.approve_order(
            order_id,
            actor_id=g.current_user.id,
            warehouse_id=data.get("warehouse_id"),
            ip=get_client_ip(request),
        )
        return jsonify({
            "id": order.id,
            "status": order.status,
            "message": "Order approved and stock deducted",
        }), 200
    except ErpError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("Failed to approve order", e)
