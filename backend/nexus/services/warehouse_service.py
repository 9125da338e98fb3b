from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Warehouse
from ..errors import ValidationError, NotFoundError


def get_active_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None or warehouse.is_deleted:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")
    return warehouse


def resolve_warehouse(warehouse_id: int | None = None) -> Warehouse:
    """
    Pick the warehouse for an allocation or receipt.

    The explicit id wins; otherwise DEFAULT_WAREHOUSE_ID from config. There
    is no "first row" fallback: with neither, the caller gets a
    ValidationError asking for warehouse_id.
    """
    if warehouse_id is None:
        warehouse_id = current_app.config.get("DEFAULT_WAREHOUSE_ID")
    if warehouse_id is None:
        raise ValidationError(
            "warehouse_id is required (no DEFAULT_WAREHOUSE_ID configured)",
            ["warehouse_id is required"],
        )
    return get_active_warehouse(warehouse_id)
