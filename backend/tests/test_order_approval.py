"""
Order creation and approval.

Approval is the only place an order touches the stock ledger: it checks
every line, appends one OUT movement per line and flips the status, all in
one transaction.
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.dialects import postgresql

from nexus import create_app
from nexus.extensions import db
from nexus.models import SalesOrder, SalesOrderItem, StockMovement, AuditLogEntry, Customer, Product, Warehouse
from nexus.errors import (
    ErpError,
    ValidationError,
    NotFoundError,
    InvalidStateError,
    InsufficientStockError,
    StorageError,
)
from nexus.services import order_service, audit_service, stock_service
from nexus.services.concurrency import lock_for_update


def _create(customer, items, actor_id=None):
    return order_service.create_order(
        {"customer_id": customer.id, "items": items},
        actor_id=actor_id,
    )


@pytest.fixture
def file_backed_app(tmp_path):
    """A second app on a SQLite file, so each thread gets its own connection."""
    race_app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'approvals.sqlite3'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 30}},
        "JWT_SECRET": "test-jwt-secret-with-at-least-32-bytes!!",
        "DEFAULT_WAREHOUSE_ID": None,
    })
    with race_app.app_context():
        db.create_all()

    yield race_app

    with race_app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


class TestCreateOrder:

    def test_creates_draft_with_cached_total(self, customer, product_a, product_b, staff_user):
        order = _create(customer, [
            {"product_id": product_a.id, "quantity": 2, "unit_price": 10},
            {"product_id": product_b.id, "quantity": 1, "unit_price": "25.50"},
        ], actor_id=staff_user.id)

        assert order.status == "DRAFT"
        assert order.total_amount == Decimal("45.50")
        assert order.created_by == staff_user.id
        assert [item.quantity for item in order.items] == [2, 1]

    def test_creation_never_moves_stock(self, customer, product_a, warehouse, seed_stock):
        seed_stock(product_a.id, warehouse.id, 10)
        _create(customer, [{"product_id": product_a.id, "quantity": 5, "unit_price": 1}])

        assert stock_service.current_stock(product_a.id, warehouse.id) == 10

    def test_writes_created_audit_entry(self, customer, product_a, staff_user):
        order = _create(customer, [{"product_id": product_a.id, "quantity": 1, "unit_price": 3}], actor_id=staff_user.id)

        entry = db.session.query(AuditLogEntry).filter_by(action="SALES_ORDER_CREATED").one()
        assert entry.entity == "sales_order"
        assert entry.entity_id == str(order.id)
        assert entry.details["total_amount"] == "3.00"

    def test_invalid_input_writes_nothing(self, customer):
        with pytest.raises(ValidationError) as exc_info:
            _create(customer, [{"product_id": 1, "quantity": 0, "unit_price": 1}])

        assert exc_info.value.errors == ["Item 0: Quantity must be positive"]
        assert db.session.query(SalesOrder).count() == 0

    def test_unknown_product_and_customer_reported(self, db_session, customer, product_a):
        with pytest.raises(ValidationError) as exc_info:
            order_service.create_order(
                {"customer_id": 9999, "items": [
                    {"product_id": product_a.id, "quantity": 1, "unit_price": 1},
                    {"product_id": 8888, "quantity": 1, "unit_price": 1},
                ]},
                actor_id=None,
            )

        assert exc_info.value.errors == ["Customer 9999 not found", "Item 1: Product 8888 not found"]
        assert db.session.query(SalesOrder).count() == 0
        assert db.session.query(SalesOrderItem).count() == 0


class TestApproveOrder:

    def test_approval_deducts_stock_and_sets_status(self, customer, product_a, warehouse, seed_stock, manager_user):
        seed_stock(product_a.id, warehouse.id, 10)
        order = _create(customer, [{"product_id": product_a.id, "quantity": 3, "unit_price": 10}])

        approved = order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

        assert approved.status == "APPROVED"
        assert stock_service.current_stock(product_a.id, warehouse.id) == 7

        movement = db.session.query(StockMovement).filter_by(reference_type="SALES_ORDER").one()
        assert movement.quantity == -3
        assert movement.movement_type == "OUT"
        assert movement.reference_id == order.id
        assert movement.created_by == manager_user.id

    def test_one_movement_per_item(self, customer, product_a, product_b, warehouse, seed_stock, manager_user):
        seed_stock(product_a.id, warehouse.id, 10)
        seed_stock(product_b.id, warehouse.id, 10)
        order = _create(customer, [
            {"product_id": product_a.id, "quantity": 2, "unit_price": 1},
            {"product_id": product_b.id, "quantity": 5, "unit_price": 1},
        ])

        order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

        movements = (
            db.session.query(StockMovement)
            .filter_by(reference_type="SALES_ORDER", reference_id=order.id)
            .order_by(StockMovement.id)
            .all()
        )
        assert [(m.product_id, m.quantity) for m in movements] == [(product_a.id, -2), (product_b.id, -5)]

    def test_insufficient_stock_on_any_line_rolls_back_everything(
        self, customer, product_a, product_b, warehouse, seed_stock, manager_user,
    ):
        seed_stock(product_a.id, warehouse.id, 10)
        seed_stock(product_b.id, warehouse.id, 1)
        order = _create(customer, [
            {"product_id": product_a.id, "quantity": 2, "unit_price": 1},
            {"product_id": product_b.id, "quantity": 5, "unit_price": 1},
        ])

        with pytest.raises(InsufficientStockError) as exc_info:
            order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

        assert exc_info.value.message == "Insufficient stock for Widget B. Available: 1, Required: 5"
        assert exc_info.value.details["shortfall"] == 4
        db.session.expire_all()
        assert db.session.get(SalesOrder, order.id).status == "DRAFT"
        assert stock_service.current_stock(product_a.id, warehouse.id) == 10
        assert stock_service.current_stock(product_b.id, warehouse.id) == 1
        assert db.session.query(StockMovement).filter_by(reference_type="SALES_ORDER").count() == 0
        assert db.session.query(AuditLogEntry).filter_by(action="SALES_ORDER_APPROVED").count() == 0

    def test_repeated_product_checked_cumulatively(self, customer, product_a, warehouse, seed_stock, manager_user):
        seed_stock(product_a.id, warehouse.id, 5)
        order = _create(customer, [
            {"product_id": product_a.id, "quantity": 3, "unit_price": 1},
            {"product_id": product_a.id, "quantity": 3, "unit_price": 1},
        ])

        with pytest.raises(InsufficientStockError) as exc_info:
            order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

        assert exc_info.value.required == 6
        assert exc_info.value.available == 5
        assert stock_service.current_stock(product_a.id, warehouse.id) == 5

    def test_exact_stock_can_be_allocated(self, customer, product_a, warehouse, seed_stock, manager_user):
        seed_stock(product_a.id, warehouse.id, 4)
        order = _create(customer, [{"product_id": product_a.id, "quantity": 4, "unit_price": 1}])

        order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)
        assert stock_service.current_stock(product_a.id, warehouse.id) == 0

    def test_second_approval_is_refused_and_stock_deducted_once(
        self, customer, product_a, warehouse, seed_stock, manager_user, admin_user,
    ):
        seed_stock(product_a.id, warehouse.id, 10)
        order = _create(customer, [{"product_id": product_a.id, "quantity": 6, "unit_price": 1}])

        order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)
        with pytest.raises(InvalidStateError) as exc_info:
            order_service.approve_order(order.id, actor_id=admin_user.id, warehouse_id=warehouse.id)

        assert exc_info.value.message == "Cannot approve order in APPROVED status"
        assert stock_service.current_stock(product_a.id, warehouse.id) == 4
        assert db.session.query(StockMovement).filter_by(reference_type="SALES_ORDER").count() == 1

    @pytest.mark.parametrize("status", ["PENDING_APPROVAL", "CANCELLED", "SHIPPED"])
    def test_only_draft_orders_are_approvable(self, customer, product_a, warehouse, seed_stock, manager_user, status):
        seed_stock(product_a.id, warehouse.id, 10)
        order = _create(customer, [{"product_id": product_a.id, "quantity": 1, "unit_price": 1}])
        order.status = status
        db.session.commit()

        with pytest.raises(InvalidStateError):
            order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)
        assert stock_service.current_stock(product_a.id, warehouse.id) == 10

    def test_approvable_statuses_are_configurable(
        self, app, customer, product_a, warehouse, seed_stock, manager_user, monkeypatch,
    ):
        monkeypatch.setitem(app.config, "APPROVABLE_STATUSES", ("DRAFT", "PENDING_APPROVAL"))
        seed_stock(product_a.id, warehouse.id, 10)
        order = _create(customer, [{"product_id": product_a.id, "quantity": 1, "unit_price": 1}])
        order.status = "PENDING_APPROVAL"
        db.session.commit()

        approved = order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)
        assert approved.status == "APPROVED"

    def test_order_without_items_cannot_be_approved(self, customer, warehouse, manager_user):
        order = SalesOrder(customer_id=customer.id, status="DRAFT", total_amount=0)
        db.session.add(order)
        db.session.commit()

        with pytest.raises(InvalidStateError):
            order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

    def test_missing_order(self, db_session, warehouse, manager_user):
        with pytest.raises(NotFoundError):
            order_service.approve_order(4242, actor_id=manager_user.id, warehouse_id=warehouse.id)

    def test_warehouse_required_without_default(self, customer, product_a, manager_user):
        order = _create(customer, [{"product_id": product_a.id, "quantity": 1, "unit_price": 1}])

        with pytest.raises(ValidationError) as exc_info:
            order_service.approve_order(order.id, actor_id=manager_user.id)

        assert exc_info.value.errors == ["warehouse_id is required"]

    def test_default_warehouse_used_when_configured(
        self, app, customer, product_a, warehouse, seed_stock, manager_user, monkeypatch,
    ):
        monkeypatch.setitem(app.config, "DEFAULT_WAREHOUSE_ID", warehouse.id)
        seed_stock(product_a.id, warehouse.id, 3)
        order = _create(customer, [{"product_id": product_a.id, "quantity": 2, "unit_price": 1}])

        order_service.approve_order(order.id, actor_id=manager_user.id)
        assert stock_service.current_stock(product_a.id, warehouse.id) == 1

    def test_unknown_warehouse(self, customer, product_a, manager_user):
        order = _create(customer, [{"product_id": product_a.id, "quantity": 1, "unit_price": 1}])
        with pytest.raises(NotFoundError):
            order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=777)

    def test_approval_audit_lists_movements(self, customer, product_a, warehouse, seed_stock, manager_user):
        seed_stock(product_a.id, warehouse.id, 10)
        order = _create(customer, [{"product_id": product_a.id, "quantity": 2, "unit_price": 1}])

        order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id, ip="192.0.2.1")

        entry = db.session.query(AuditLogEntry).filter_by(action="SALES_ORDER_APPROVED").one()
        movement = db.session.query(StockMovement).filter_by(reference_type="SALES_ORDER").one()
        assert entry.user_id == manager_user.id
        assert entry.entity_id == str(order.id)
        assert entry.ip_address == "192.0.2.1"
        assert entry.details["warehouse_id"] == warehouse.id
        assert entry.details["movement_ids"] == [movement.id]

    def test_audit_failure_rolls_back_approval(
        self, customer, product_a, warehouse, seed_stock, manager_user, monkeypatch,
    ):
        seed_stock(product_a.id, warehouse.id, 10)
        order = _create(customer, [{"product_id": product_a.id, "quantity": 2, "unit_price": 1}])

        real_build = audit_service._build_entry

        def build_invalid_entry(*args, **kwargs):
            entry = real_build(*args, **kwargs)
            entry.action = None  # NOT NULL column: the insert fails
            return entry

        monkeypatch.setattr(audit_service, "_build_entry", build_invalid_entry)

        with pytest.raises(StorageError):
            order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

        db.session.expire_all()
        assert db.session.get(SalesOrder, order.id).status == "DRAFT"
        assert stock_service.current_stock(product_a.id, warehouse.id) == 10


class TestConcurrency:

    def test_order_row_is_locked_for_update(self, db_session):
        query = lock_for_update(db.session.query(SalesOrder).filter_by(id=1))
        sql = str(query.statement.compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" in sql

    def test_competing_approvals_cannot_oversell(self, customer, product_a, warehouse, seed_stock, manager_user):
        # Two orders each want 6 of the 10 on hand; whichever approves second
        # must see the first one's movement
        seed_stock(product_a.id, warehouse.id, 10)
        first = _create(customer, [{"product_id": product_a.id, "quantity": 6, "unit_price": 1}])
        second = _create(customer, [{"product_id": product_a.id, "quantity": 6, "unit_price": 1}])

        order_service.approve_order(first.id, actor_id=manager_user.id, warehouse_id=warehouse.id)
        with pytest.raises(InsufficientStockError):
            order_service.approve_order(second.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

        assert stock_service.current_stock(product_a.id, warehouse.id) == 4

    def test_simultaneous_approvals_of_one_order_deduct_once(self, file_backed_app):
        with file_backed_app.app_context():
            customer = Customer(name="Acme Retail")
            product = Product(sku="WID-A", name="Widget A", price=10)
            warehouse = Warehouse(name="Main Warehouse")
            db.session.add_all([customer, product, warehouse])
            db.session.commit()
            stock_service.adjust(product.id, warehouse.id, 10, "IN", None)
            order_id = _create(customer, [{"product_id": product.id, "quantity": 3, "unit_price": 5}]).id
            product_id, warehouse_id = product.id, warehouse.id
            db.session.remove()

        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def approve():
            with file_backed_app.app_context():
                barrier.wait()
                try:
                    order_service.approve_order(order_id, actor_id=None, warehouse_id=warehouse_id)
                    outcome = "ok"
                except ErpError as exc:
                    outcome = type(exc).__name__
                finally:
                    db.session.remove()
                with lock:
                    results.append(outcome)

        threads = [threading.Thread(target=approve) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert sorted(results) == ["InvalidStateError", "ok"]
        with file_backed_app.app_context():
            assert stock_service.current_stock(product_id, warehouse_id) == 7
            assert db.session.query(StockMovement).filter_by(reference_type="SALES_ORDER").count() == 1
            assert db.session.get(SalesOrder, order_id).status == "APPROVED"


class TestAllocationScenario:

    def test_receive_sell_reject_then_sell_again(self, customer, product_a, warehouse, manager_user):
        # 10 received, order for 4 approved, order for 7 refused, order for 6 approved
        stock_service.adjust(product_a.id, warehouse.id, 10, "IN", manager_user.id, reason="Initial receipt")

        first = _create(customer, [{"product_id": product_a.id, "quantity": 4, "unit_price": 2}])
        order_service.approve_order(first.id, actor_id=manager_user.id, warehouse_id=warehouse.id)
        assert stock_service.current_stock(product_a.id, warehouse.id) == 6

        too_big = _create(customer, [{"product_id": product_a.id, "quantity": 7, "unit_price": 2}])
        with pytest.raises(InsufficientStockError) as exc_info:
            order_service.approve_order(too_big.id, actor_id=manager_user.id, warehouse_id=warehouse.id)
        assert "Available: 6, Required: 7" in exc_info.value.message

        exact = _create(customer, [{"product_id": product_a.id, "quantity": 6, "unit_price": 2}])
        order_service.approve_order(exact.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

        assert stock_service.current_stock(product_a.id, warehouse.id) == 0
        db.session.expire_all()
        statuses = {o.id: o.status for o in db.session.query(SalesOrder).all()}
        assert statuses == {first.id: "APPROVED", too_big.id: "DRAFT", exact.id: "APPROVED"}

    def test_single_line_order_end_to_end(self, customer, product_a, warehouse, seed_stock, manager_user):
        # 5 x 10.00 with exactly 5 on hand
        seed_stock(product_a.id, warehouse.id, 5)
        order = _create(customer, [{"product_id": product_a.id, "quantity": 5, "unit_price": "10.00"}])
        assert order.total_amount == Decimal("50.00")

        order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

        assert stock_service.current_stock(product_a.id, warehouse.id) == 0
        movements = db.session.query(StockMovement).filter_by(reference_type="SALES_ORDER", reference_id=order.id).all()
        assert [(m.movement_type, m.quantity) for m in movements] == [("OUT", -5)]
        entries = db.session.query(AuditLogEntry).filter_by(action="SALES_ORDER_APPROVED").all()
        assert [e.entity_id for e in entries] == [str(order.id)]

    def test_two_line_order_deducts_exact_quantities(
        self, customer, product_a, product_b, warehouse, seed_stock, manager_user,
    ):
        seed_stock(product_a.id, warehouse.id, 8)
        seed_stock(product_b.id, warehouse.id, 8)
        order = _create(customer, [
            {"product_id": product_a.id, "quantity": 3, "unit_price": 1},
            {"product_id": product_b.id, "quantity": 2, "unit_price": 1},
        ])

        approved = order_service.approve_order(order.id, actor_id=manager_user.id, warehouse_id=warehouse.id)

        assert approved.status == "APPROVED"
        assert stock_service.current_stock(product_a.id, warehouse.id) == 5
        assert stock_service.current_stock(product_b.id, warehouse.id) == 6
