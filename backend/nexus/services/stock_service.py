# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

# backend/nexus/services/stock_service.py

from __future__ import annotations

import re

from sqlalchemy import func

from ..extensions import db
from ..models import Product, Warehouse, StockMovement, User
from ..models.stock import (
    MOVEMENT_TYPES,
    REFERENCE_TYPES,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_COUNT_DIFF,
    MOVEMENT_SCRAP,
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
    REFERENCE_MANUAL_ADJUSTMENT,
    REFERENCE_TRANSFER,
)
from ..errors import ValidationError, NotFoundError, InsufficientStockError
from . import audit_service
from .concurrency import transaction_scope, begin_write, run_with_retry
from .warehouse_service import get_active_warehouse
"""
Stock Ledger Invariants (authoritative)

Inventory model:
- Stock is ledger-derived from StockMovement rows; never stored as a mutable quantity field.
- Current stock for (product, warehouse) is SUM(quantity) over its movements, 0 when none.
- Movements are append-only: no updates, no deletes. Corrections are new movements.

Sufficiency:
- record_movement() never checks sufficiency; callers decide.
- transfer() and approval always check. Manual OUT/SCRAP adjustments check too,
  unless the caller explicitly passes allow_negative=True.

Atomicity:
- Multi-row operations (transfer, approval, receiving) append all their movements
  and their audit entry inside one transaction_scope(); all or nothing.
"""


# Signed direction applied to the absolute quantity of a manual adjustment
ADJUSTMENT_SIGNS = {
    MOVEMENT_IN: 1,
    MOVEMENT_COUNT_DIFF: 1,
    MOVEMENT_OUT: -1,
    MOVEMENT_SCRAP: -1,
}

_INTEGER_RE = re.compile(r"-?[0-9]{1,19}")
# SQLite INTEGER is a signed 64-bit value
MAX_INTEGER = 2 ** 63 - 1


def _require_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", [f"{field} must be an integer"])
    if isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, int):
        number = value
    elif isinstance(value, str) and _INTEGER_RE.fullmatch(value.strip()):
        number = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer", [f"{field} must be an integer"])
    if abs(number) > MAX_INTEGER:
        raise ValidationError(f"{field} is out of range", [f"{field} is out of range"])
    return number


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or product.is_deleted:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def current_stock(product_id: int, warehouse_id: int) -> int:
    """
    Signed sum of all movements for the pair; 0 when there are none.

    Recomputed from the ledger on every call. Pending movements in the
    current session are included (autoflush).
    """
    total = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity), 0)
    ).filter(
        StockMovement.product_id == product_id,
        StockMovement.warehouse_id == warehouse_id,
    ).scalar()
    return int(total or 0)


def record_movement(
    product_id: int,
    warehouse_id: int,
    quantity: int,
    movement_type: str,
    reference_type: str,
    reference_id: int | None,
    actor_id: int | None,
    note: str | None = None,
) -> StockMovement:
    """
    Append one movement to the current session and flush.

    No business checks here; a failure means a storage problem. The caller
    owns the transaction.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type {movement_type!r}")
    if reference_type not in REFERENCE_TYPES:
        raise ValidationError(f"Unknown reference type {reference_type!r}")

    movement = StockMovement(
        product_id=product_id,
        warehouse_id=warehouse_id,
        quantity=quantity,
        movement_type=movement_type,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        created_by=actor_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def ensure_available(product: Product, warehouse_id: int, required: int) -> int:
    """Raise InsufficientStockError unless the pair holds at least `required`."""
    available = current_stock(product.id, warehouse_id)
    if available < required:
        raise InsufficientStockError(
            product_id=product.id,
            required=required,
            available=available,
            product_name=product.name,
        )
    return available


def transfer(
    product_id: int,
    from_warehouse_id: int,
    to_warehouse_id: int,
    quantity,
    actor_id: int | None,
    ip: str | None = None,
) -> tuple[StockMovement, StockMovement]:
    """
    Move stock between warehouses: TRANSFER_OUT at source, TRANSFER_IN at
    destination, both committed together or not at all.

    Raises:
        ValidationError: non-positive quantity or same source/destination
        NotFoundError: unknown product or warehouse
        InsufficientStockError: source holds less than quantity
    """
    product_id = _require_int(product_id, "product_id")
    from_warehouse_id = _require_int(from_warehouse_id, "from_warehouse_id")
    to_warehouse_id = _require_int(to_warehouse_id, "to_warehouse_id")
    qty = _require_int(quantity, "quantity")
    if qty <= 0:
        raise ValidationError("quantity must be positive", ["quantity must be positive"])
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError(
            "Cannot transfer to the same warehouse",
            ["from_warehouse_id and to_warehouse_id must differ"],
        )

    def _op():
        with transaction_scope() as session:
            begin_write()
            product = _get_product(product_id)
            get_active_warehouse(from_warehouse_id)
            get_active_warehouse(to_warehouse_id)

            ensure_available(product, from_warehouse_id, qty)

            out_movement = record_movement(
                product_id, from_warehouse_id, -qty,
                MOVEMENT_TRANSFER_OUT, REFERENCE_TRANSFER, None, actor_id,
                note=f"Transfer to warehouse {to_warehouse_id}",
            )
            in_movement = record_movement(
                product_id, to_warehouse_id, qty,
                MOVEMENT_TRANSFER_IN, REFERENCE_TRANSFER, None, actor_id,
                note=f"Transfer from warehouse {from_warehouse_id}",
            )

            audit_service.record(
                actor_id,
                "STOCK_TRANSFERRED",
                {
                    "entity": "stock_movement",
                    "entity_id": out_movement.id,
                    "product_id": product_id,
                    "from_warehouse_id": from_warehouse_id,
                    "to_warehouse_id": to_warehouse_id,
                    "quantity": qty,
                    "movement_ids": [out_movement.id, in_movement.id],
                },
                ip,
                session=session,
            )
        return out_movement, in_movement

    return run_with_retry(_op)


def adjust(
    product_id: int,
    warehouse_id: int,
    quantity,
    movement_type: str,
    actor_id: int | None,
    reason: str | None = None,
    allow_negative: bool = False,
    ip: str | None = None,
) -> StockMovement:
    """
    Manual correction: IN/COUNT_DIFF add |quantity|, OUT/SCRAP remove |quantity|.

    Decreases are checked for sufficiency unless allow_negative is set.
    """
    if movement_type not in ADJUSTMENT_SIGNS:
        raise ValidationError(
            "Invalid movement type for adjustment",
            [f"type must be one of: {', '.join(sorted(ADJUSTMENT_SIGNS))}"],
        )
    product_id = _require_int(product_id, "product_id")
    warehouse_id = _require_int(warehouse_id, "warehouse_id")
    qty = _require_int(quantity, "quantity")
    if qty == 0:
        raise ValidationError("quantity must not be zero", ["quantity must not be zero"])
    signed_qty = ADJUSTMENT_SIGNS[movement_type] * abs(qty)

    def _op():
        with transaction_scope() as session:
            begin_write()
            product = _get_product(product_id)
            get_active_warehouse(warehouse_id)

            if signed_qty < 0 and not allow_negative:
                ensure_available(product, warehouse_id, -signed_qty)

            movement = record_movement(
                product_id, warehouse_id, signed_qty,
                movement_type, REFERENCE_MANUAL_ADJUSTMENT, None, actor_id,
                note=reason,
            )

            audit_service.record(
                actor_id,
                "STOCK_ADJUSTED",
                {
                    "entity": "stock_movement",
                    "entity_id": movement.id,
                    "product_id": product_id,
                    "warehouse_id": warehouse_id,
                    "quantity": signed_qty,
                    "type": movement_type,
                    "reason": reason,
                    "allow_negative": allow_negative,
                },
                ip,
                session=session,
            )
        return movement

    return run_with_retry(_op)


def list_stock_levels() -> list[dict]:
    """Current stock per (product, warehouse) pair that has any movement."""
    balance = func.sum(StockMovement.quantity).label("quantity")
    rows = (
        db.session.query(
            StockMovement.product_id,
            StockMovement.warehouse_id,
            Product.name.label("product_name"),
            Product.sku,
            Warehouse.name.label("warehouse_name"),
            balance,
        )
        .join(Product, StockMovement.product_id == Product.id)
        .join(Warehouse, StockMovement.warehouse_id == Warehouse.id)
        .group_by(
            StockMovement.product_id,
            StockMovement.warehouse_id,
            Product.name,
            Product.sku,
            Warehouse.name,
        )
        .order_by(Product.name, Warehouse.name)
        .all()
    )
    return [
        {
            "product_id": row.product_id,
            "warehouse_id": row.warehouse_id,
            "product_name": row.product_name,
            "sku": row.sku,
            "warehouse_name": row.warehouse_name,
            "quantity": int(row.quantity or 0),
        }
        for row in rows
    ]


def list_recent_movements(limit: int = 100) -> list[dict]:
    rows = (
        db.session.query(
            StockMovement,
            Product.name.label("product_name"),
            Warehouse.name.label("warehouse_name"),
            User.full_name.label("user_name"),
        )
        .outerjoin(Product, StockMovement.product_id == Product.id)
        .outerjoin(Warehouse, StockMovement.warehouse_id == Warehouse.id)
        .outerjoin(User, StockMovement.created_by == User.id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            **movement.to_dict(),
            "product_name": product_name,
            "warehouse_name": warehouse_name,
            "user_name": user_name,
        }
        for movement, product_name, warehouse_name, user_name in rows
    ]
