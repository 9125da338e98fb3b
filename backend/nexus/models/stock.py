from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import ImmutableRecordError
from nexus.time_utils import to_utc_z


# Movement types: what happened to the stock
MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_COUNT_DIFF = "COUNT_DIFF"
MOVEMENT_SCRAP = "SCRAP"

MOVEMENT_TYPES = frozenset({
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
    MOVEMENT_COUNT_DIFF,
    MOVEMENT_SCRAP,
})

# Reference types: which business event caused it
REFERENCE_SALES_ORDER = "SALES_ORDER"
REFERENCE_PURCHASE_ORDER = "PURCHASE_ORDER"
REFERENCE_MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
REFERENCE_TRANSFER = "TRANSFER"

REFERENCE_TYPES = frozenset({
    REFERENCE_SALES_ORDER,
    REFERENCE_PURCHASE_ORDER,
    REFERENCE_MANUAL_ADJUSTMENT,
    REFERENCE_TRANSFER,
})


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    Current stock for a (product, warehouse) pair is SUM(quantity) over these
    rows; it is never stored anywhere else. Rows are never updated or deleted,
    corrections are new movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_warehouse", "product_id", "warehouse_id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        db.Index("ix_stock_movements_created_at", "created_at"),
        db.CheckConstraint("quantity <> 0", name="ck_stock_movements_quantity_non_zero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)

    # Signed: positive increases stock, negative decreases it
    quantity = db.Column(db.Integer, nullable=False)

    movement_type = db.Column(db.String(16), nullable=False)
    reference_type = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} "
            f"warehouse_id={self.warehouse_id} quantity={self.quantity} type={self.movement_type}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "movement_type": self.movement_type,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _prevent_movement_update(mapper, connection, target):
    raise ImmutableRecordError(f"Stock movement {target.id} is append-only and cannot be modified")


@event.listens_for(StockMovement, "before_delete")
def _prevent_movement_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Stock movement {target.id} is append-only and cannot be deleted")
