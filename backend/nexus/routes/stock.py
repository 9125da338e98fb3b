# Overview: Flask API routes for stock levels, movements, adjustments and transfers.

from flask import Blueprint, request, jsonify, g

from ..errors import ErpError, ValidationError, ForbiddenError
from ..responses import error_response, internal_error
from ..services import stock_service
from ..services.audit_service import get_client_ip
from ..decorators import require_auth, require_role


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _require_fields(data: dict, *fields: str) -> None:
    missing = [field for field in fields if data.get(field) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            [f"{field} is required" for field in missing],
        )


@stock_bp.get("")
@require_auth
def list_stock_route():
    """Current stock per product/warehouse, derived from the movement ledger."""
    try:
        return jsonify(stock_service.list_stock_levels()), 200
    except Exception as e:
        return internal_error("Failed to fetch stock", e)


@stock_bp.get("/movements")
@require_auth
def list_movements_route():
    """Last 100 movements, newest first."""
    try:
        return jsonify(stock_service.list_recent_movements(limit=100)), 200
    except Exception as e:
        return internal_error("Failed to fetch movements", e)


@stock_bp.post("/adjust")
@require_auth
@require_role("admin", "manager")
def adjust_stock_route():
    """
    Manual stock adjustment.

    Request body:
    {
        "product_id": int,
        "warehouse_id": int,
        "quantity": int,
        "type": "IN" | "OUT" | "COUNT_DIFF" | "SCRAP",
        "reason": str (optional),
        "allow_negative": bool (optional, admin only)
    }

    Returns:
        201: Movement recorded
        400: Invalid input or insufficient stock
        403: allow_negative requested by a non-admin
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Missing body"}), 400

    try:
        _require_fields(data, "product_id", "warehouse_id", "quantity", "type")

        allow_negative = data.get("allow_negative") is True
        if allow_negative and g.current_user.role_name != "admin":
            raise ForbiddenError("Only admins may adjust stock below zero")

        movement = stock_service.adjust(
            data["product_id"],
            data["warehouse_id"],
            data["quantity"],
            data["type"],
            g.current_user.id,
            reason=data.get("reason"),
            allow_negative=allow_negative,
            ip=get_client_ip(request),
        )
        return jsonify({"message": "Stock adjusted", "movement": movement.to_dict()}), 201
    except ErpError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("Failed to adjust stock", e)


@stock_bp.post("/transfer")
@require_auth
@require_role("admin", "manager")
def transfer_stock_route():
    """
    Transfer stock between warehouses.

    Request body:
    {
        "product_id": int,
        "from_warehouse_id": int,
        "to_warehouse_id": int,
        "quantity": int
    }

    Returns:
        201: Both movements recorded
        400: Invalid input or insufficient stock at source
        404: Unknown product or warehouse
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Missing body"}), 400

    try:
        _require_fields(data, "product_id", "from_warehouse_id", "to_warehouse_id", "quantity")

        out_movement, in_movement = stock_service.transfer(
            data["product_id"],
            data["from_warehouse_id"],
            data["to_warehouse_id"],
            data["quantity"],
            g.current_user.id,
            ip=get_client_ip(request),
        )
        return jsonify({
            "message": "Transfer successful",
            "movements": [out_movement.to_dict(), in_movement.to_dict()],
        }), 201
    except ErpError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("Transfer failed", e)
