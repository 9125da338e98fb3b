# Overview: Service-layer operations for purchase orders; receiving posts IN movements to the ledger.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderItem, Supplier, Product
from ..models.purchasing import PO_STATUS_DRAFT, PO_STATUS_COMPLETED
from ..models.stock import MOVEMENT_IN, REFERENCE_PURCHASE_ORDER
from ..errors import ValidationError, NotFoundError, InvalidStateError
from nexus.time_utils import utcnow
from . import audit_service
from .concurrency import transaction_scope, begin_write, lock_for_update, run_with_retry
from .order_validation import to_money
from .stock_service import record_movement
from .warehouse_service import resolve_warehouse


def _validate_purchase_order_input(data) -> list[str]:
    if not isinstance(data, dict):
        return ["Body must be a JSON object"]

    errors = []
    if not data.get("supplier_id"):
        errors.append("Supplier ID is required")

    items = data.get("items")
    if not isinstance(items, list) or not items:
        errors.append("Purchase order must contain at least one item")
        return errors

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            errors.append(f"Item {index}: must be an object")
            continue
        if not item.get("product_id"):
            errors.append(f"Item {index}: Product ID is required")
        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            errors.append(f"Item {index}: Quantity must be a positive integer")
        try:
            if to_money(item.get("price")) < 0:
                errors.append(f"Item {index}: Price must be non-negative")
        except ValueError:
            errors.append(f"Item {index}: Price must be non-negative")
    return errors


def create_purchase_order(data, *, actor_id: int | None, ip: str | None = None) -> PurchaseOrder:
    errors = _validate_purchase_order_input(data)
    if errors:
        raise ValidationError("Supplier and items are required", errors)

    def _op():
        with transaction_scope() as session:
            supplier = db.session.get(Supplier, data["supplier_id"])
            if supplier is None or supplier.is_deleted:
                raise ValidationError("Invalid purchase order data", [f"Supplier {data['supplier_id']} not found"])

            missing = []
            for index, item in enumerate(data["items"]):
                product = db.session.get(Product, item["product_id"])
                if product is None or product.is_deleted:
                    missing.append(f"Item {index}: Product {item['product_id']} not found")
            if missing:
                raise ValidationError("Invalid purchase order data", missing)

            po = PurchaseOrder(supplier_id=supplier.id, status=PO_STATUS_DRAFT, created_by=actor_id)
            db.session.add(po)
            db.session.flush()

            for item in data["items"]:
                db.session.add(PurchaseOrderItem(
                    purchase_order_id=po.id,
                    product_id=item["product_id"],
                    quantity=item["quantity"],
                    price=to_money(item["price"]),
                ))
            db.session.flush()

            audit_service.record(
                actor_id,
                "PURCHASE_ORDER_CREATED",
                {"entity": "purchase_order", "id": po.id, "supplier_id": supplier.id},
                ip,
                session=session,
            )
        return po

    return run_with_retry(_op)


def receive_purchase_order(
    po_id: int,
    *,
    actor_id: int | None,
    warehouse_id: int | None = None,
    ip: str | None = None,
) -> PurchaseOrder:
    """
    Receive every line of a purchase order into one warehouse.

    Appends one IN movement per line and completes the PO in a single
    transaction. A PO can be received once.
    """
    def _op():
        with transaction_scope() as session:
            begin_write()
            po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
            if po is None:
                raise NotFoundError("Purchase order not found")
            if po.status == PO_STATUS_COMPLETED:
                raise InvalidStateError("Purchase order already received")

            warehouse = resolve_warehouse(warehouse_id)

            movement_ids = []
            for item in po.items:
                movement = record_movement(
                    item.product_id,
                    warehouse.id,
                    item.quantity,
                    MOVEMENT_IN,
                    REFERENCE_PURCHASE_ORDER,
                    po.id,
                    actor_id,
                    note=f"Purchase order {po.id}",
                )
                movement_ids.append(movement.id)

            po.status = PO_STATUS_COMPLETED
            po.received_by = actor_id
            po.received_at = utcnow()

            audit_service.record(
                actor_id,
                "PURCHASE_ORDER_RECEIVED",
                {
                    "entity": "purchase_order",
                    "id": po.id,
                    "warehouse_id": warehouse.id,
                    "movement_ids": movement_ids,
                },
                ip,
                session=session,
            )
        return po

    return run_with_retry(_op)


def list_purchase_orders() -> list[dict]:
    item_count = func.count(PurchaseOrderItem.id).label("item_count")
    total_amount = func.coalesce(
        func.sum(PurchaseOrderItem.quantity * PurchaseOrderItem.price), 0
    ).label("total_amount")

    rows = (
        db.session.query(PurchaseOrder, item_count, total_amount)
        .outerjoin(PurchaseOrderItem, PurchaseOrderItem.purchase_order_id == PurchaseOrder.id)
        .group_by(PurchaseOrder.id)
        .order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
        .all()
    )
    return [
        {**po.to_dict(), "item_count": count, "total_amount": to_money(total or 0)}
        for po, count, total in rows
    ]
