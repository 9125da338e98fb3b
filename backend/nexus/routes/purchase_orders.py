# Overview: Flask API routes for purchase orders and receiving into stock.

from flask import Blueprint, request, jsonify, g

from ..errors import ErpError
from ..responses import error_response, internal_error
from ..services import purchasing_service
from ..services.audit_service import get_client_ip
from ..decorators import require_auth, require_role


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.get("")
@require_auth
def list_purchase_orders_route():
    try:
        return jsonify(purchasing_service.list_purchase_orders()), 200
    except Exception as e:
        return internal_error("Failed to fetch purchase orders", e)


@purchase_orders_bp.post("")
@require_auth
@require_role("admin", "manager")
def create_purchase_order_route():
    """
    Request body:
    {
        "supplier_id": int,
        "items": [{"product_id": int, "quantity": int, "price": number}]
    }
    """
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"error": "Missing body"}), 400

    try:
        po = purchasing_service.create_purchase_order(
            data,
            actor_id=g.current_user.id,
            ip=get_client_ip(request),
        )
        return jsonify({"id": po.id, "status": po.status}), 201
    except ErpError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("Failed to create purchase order", e)


@purchase_orders_bp.post("/<int:po_id>/receive")
@require_auth
@require_role("admin", "manager")
def receive_purchase_order_route(po_id: int):
    """
    Receive a purchase order into stock.

    Request body (optional): {"warehouse_id": int}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}

    try:
        po = purchasing_service.receive_purchase_order(
            po_id,
            actor_id=g.current_user.id,
            warehouse_id=data.get("warehouse_id"),
            ip=get_client_ip(request),
        )
        return jsonify({"id": po.id, "status": po.status}), 200
    except ErpError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("Failed to receive purchase order", e)
