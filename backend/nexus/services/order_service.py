"""
Sales Order Service - order capture and stock allocation

WHY: An order is captured as a DRAFT document first; stock only moves when
the order is approved. Approval is the single bridge between the order
document and the stock ledger, and it is all-or-nothing.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import SalesOrder, SalesOrderItem, Customer, Product
from ..models.stock import MOVEMENT_OUT, REFERENCE_SALES_ORDER
from ..errors import ErpError, ValidationError, NotFoundError, InvalidStateError
from . import audit_service
from .concurrency import transaction_scope, begin_write, lock_for_update, run_with_retry
from .order_state_service import STATUS_DRAFT, STATUS_APPROVED
from .order_validation import require_valid_order_input, calculate_order_total, to_money
from .stock_service import ensure_available, record_movement
from .warehouse_service import resolve_warehouse


def _check_references(data: dict) -> None:
    errors = []
    customer = db.session.get(Customer, data["customer_id"])
    if customer is None or customer.is_deleted:
        errors.append(f"Customer {data['customer_id']} not found")

    for index, item in enumerate(data["items"]):
        product = db.session.get(Product, item["product_id"])
        if product is None or product.is_deleted:
            errors.append(f"Item {index}: Product {item['product_id']} not found")

    if errors:
        raise ValidationError("Invalid order data", errors)


def create_order(data, *, actor_id: int | None, ip: str | None = None) -> SalesOrder:
    """
    Create a DRAFT sales order with its items in one transaction.

    The total is computed once here and cached on the order.
    """
    require_valid_order_input(data)
    total_amount = calculate_order_total(data["items"])

    def _op():
        with transaction_scope() as session:
            _check_references(data)

            order = SalesOrder(
                customer_id=data["customer_id"],
                status=STATUS_DRAFT,
                total_amount=total_amount,
                created_by=actor_id,
            )
            db.session.add(order)
            db.session.flush()

            for item in data["items"]:
                db.session.add(SalesOrderItem(
                    sales_order_id=order.id,
                    product_id=item["product_id"],
                    quantity=int(item["quantity"]),
                    unit_price=to_money(item["unit_price"]),
                ))
            db.session.flush()

            audit_service.record(
                actor_id,
                "SALES_ORDER_CREATED",
                {
                    "entity": "sales_order",
                    "id": order.id,
                    "total_amount": total_amount,
                    "customer_id": data["customer_id"],
                },
                ip,
                session=session,
            )
        return order

    return run_with_retry(_op)


def list_orders() -> list[dict]:
    orders = (
        db.session.query(SalesOrder)
        .filter_by(is_deleted=False)
        .order_by(SalesOrder.created_at.desc(), SalesOrder.id.desc())
        .all()
    )
    return [order.to_dict() for order in orders]


def get_order_detail(order_id: int) -> dict:
    order = db.session.query(SalesOrder).filter_by(id=order_id, is_deleted=False).first()
    if order is None:
        raise NotFoundError("Order not found")
    return {
        **order.to_dict(),
        "items": [item.to_dict() for item in order.items],
    }


def _approve_locked(order: SalesOrder, warehouse_id: int | None, actor_id: int | None) -> list:
    approvable = current_app.config.get("APPROVABLE_STATUSES", (STATUS_DRAFT,))
    if order.status not in approvable:
        raise InvalidStateError(f"Cannot approve order in {order.status} status")

    items = db.session.query(SalesOrderItem).filter_by(
        sales_order_id=order.id
    ).order_by(SalesOrderItem.id).all()
    if not items:
        raise InvalidStateError("Cannot approve order with no items")

    warehouse = resolve_warehouse(warehouse_id)

    # Check every line before writing anything; repeated products are
    # checked against their cumulative requirement
    required_by_product: dict[int, int] = {}
    for item in items:
        required_by_product[item.product_id] = required_by_product.get(item.product_id, 0) + item.quantity
        product = db.session.get(Product, item.product_id)
        ensure_available(product, warehouse.id, required_by_product[item.product_id])

    movements = []
    for item in items:
        movements.append(record_movement(
            item.product_id,
            warehouse.id,
            -item.quantity,
            MOVEMENT_OUT,
            REFERENCE_SALES_ORDER,
            order.id,
            actor_id,
            note=f"Sales order {order.id}",
        ))

    order.status = STATUS_APPROVED
    return movements


def approve_order(
    order_id: int,
    *,
    actor_id: int | None,
    warehouse_id: int | None = None,
    ip: str | None = None,
) -> SalesOrder:
    """
    Approve a sales order: deduct stock for every item and mark it APPROVED.

    One transaction: the order row is locked, every item is checked for
    sufficient stock, one OUT movement per item is appended, the status is
    flipped and the audit entry written. Any failure rolls all of it back,
    including movements already written for earlier items.

    Raises:
        NotFoundError: order (or warehouse) absent
        InvalidStateError: order is not in an approvable status
        ValidationError: no warehouse given and none configured
        InsufficientStockError: any item short; names the product
    """
    def _op():
        with transaction_scope() as session:
            begin_write()
            order = lock_for_update(
                db.session.query(SalesOrder).filter_by(id=order_id, is_deleted=False)
            ).first()
            if order is None:
                raise NotFoundError("Order not found")

            movements = _approve_locked(order, warehouse_id, actor_id)

            audit_service.record(
                actor_id,
                "SALES_ORDER_APPROVED",
                {
                    "entity": "sales_order",
                    "id": order.id,
                    "warehouse_id": movements[0].warehouse_id,
                    "movement_ids": [m.id for m in movements],
                },
                ip,
                session=session,
            )
        return order

    try:
        order = run_with_retry(_op)
    except ErpError as exc:
        current_app.logger.warning("Approval of order %s rejected: %s", order_id, exc)
        raise

    current_app.logger.info("Order %s approved by user %s", order_id, actor_id)
    return order
