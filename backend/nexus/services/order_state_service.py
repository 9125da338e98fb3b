# Overview: Service-layer operations for the sales order state machine.

"""
Sales Order Lifecycle

================================================================================
STATE MACHINE
================================================================================

    DRAFT -> PENDING_APPROVAL -> APPROVED -> PROCESSING -> SHIPPED -> DELIVERED -> COMPLETED
      |             |               |             |            |
      |             +-> REJECTED    +-> CANCELLED +-> CANCELLED +-> RETURNED
      |                   |
      +-> CANCELLED       +-> DRAFT

    DRAFT may also move straight to APPROVED.

Terminal: COMPLETED, CANCELLED, RETURNED (no outgoing transitions).

RULES:
1. apply_transition() only changes the status column. It never touches stock.
2. Any move the table permits is persisted, APPROVED included. Stock is
   allocated only by order_service.approve_order(), which accepts the
   statuses in APPROVABLE_STATUSES.
3. A refused transition leaves the order exactly as it was.
================================================================================
"""

from __future__ import annotations

from ..extensions import db
from ..models import SalesOrder
from ..errors import NotFoundError, InvalidTransitionError, ValidationError
from . import audit_service
from .concurrency import transaction_scope, lock_for_update, run_with_retry


STATUS_DRAFT = "DRAFT"
STATUS_PENDING_APPROVAL = "PENDING_APPROVAL"
STATUS_APPROVED = "APPROVED"
STATUS_PROCESSING = "PROCESSING"
STATUS_SHIPPED = "SHIPPED"
STATUS_DELIVERED = "DELIVERED"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"
STATUS_REJECTED = "REJECTED"
STATUS_RETURNED = "RETURNED"

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_DRAFT: frozenset({STATUS_PENDING_APPROVAL, STATUS_CANCELLED, STATUS_APPROVED}),
    STATUS_PENDING_APPROVAL: frozenset({STATUS_APPROVED, STATUS_REJECTED, STATUS_CANCELLED}),
    STATUS_APPROVED: frozenset({STATUS_PROCESSING, STATUS_CANCELLED}),
    STATUS_PROCESSING: frozenset({STATUS_SHIPPED, STATUS_CANCELLED}),
    STATUS_SHIPPED: frozenset({STATUS_DELIVERED, STATUS_RETURNED}),
    STATUS_DELIVERED: frozenset({STATUS_COMPLETED}),
    STATUS_REJECTED: frozenset({STATUS_DRAFT}),
    STATUS_COMPLETED: frozenset(),
    STATUS_CANCELLED: frozenset(),
    STATUS_RETURNED: frozenset(),
}

ORDER_STATUSES = frozenset(VALID_TRANSITIONS)
TERMINAL_STATUSES = frozenset(s for s, targets in VALID_TRANSITIONS.items() if not targets)


def can_transition(current: str, next_status: str) -> bool:
    """True when the table permits current -> next_status. Unknown statuses never do."""
    return next_status in VALID_TRANSITIONS.get(current, frozenset())


def apply_transition(
    order_id: int,
    next_status,
    *,
    actor_id: int | None,
    ip: str | None = None,
) -> SalesOrder:
    """
    Move an order to next_status via the transition table.

    Raises:
        ValidationError: next_status missing or not a known status
        NotFoundError: order absent or soft-deleted
        InvalidTransitionError: the table does not permit the move
    """
    if not isinstance(next_status, str) or next_status not in ORDER_STATUSES:
        raise ValidationError(
            "Invalid status",
            [f"status must be one of: {', '.join(sorted(ORDER_STATUSES))}"],
        )

    def _op():
        with transaction_scope():
            order = lock_for_update(
                db.session.query(SalesOrder).filter_by(id=order_id, is_deleted=False)
            ).first()
            if order is None:
                raise NotFoundError("Order not found")

            previous = order.status
            if not can_transition(previous, next_status):
                raise InvalidTransitionError(previous, next_status)

            order.status = next_status
        return order, previous

    order, previous = run_with_retry(_op)

    audit_service.record(
        actor_id,
        "SALES_ORDER_STATUS_UPDATED",
        {"entity": "sales_order", "id": order_id, "status": next_status, "previous_status": previous},
        ip,
    )
    return order
