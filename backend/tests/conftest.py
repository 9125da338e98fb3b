"""
Pytest fixtures for Nexus backend tests.

Provides an in-memory database, test client, users per role and a small
catalog (customer, products, warehouses) to build orders against.
"""

import pytest
from nexus import create_app
from nexus.extensions import db
from nexus.models import User, Role, Product, Warehouse, Customer, Supplier
from nexus.models.stock import MOVEMENT_IN, REFERENCE_MANUAL_ADJUSTMENT
from nexus.services.auth_service import hash_password, create_default_roles, issue_token
from nexus.services import stock_service


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'JWT_SECRET': 'test-jwt-secret-with-at-least-32-bytes!!',
        'DEFAULT_WAREHOUSE_ID': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt at cost 12 is slow; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope='function')
def setup_roles(db_session):
    create_default_roles()


def _make_user(db_session, email, role_name, password_hash):
    user = User(email=email, full_name=role_name.title(), password_hash=password_hash)
    user.roles.append(db_session.query(Role).filter_by(name=role_name).one())
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session, setup_roles, password_hash):
    return _make_user(db_session, "admin@nexus.test", "admin", password_hash)


@pytest.fixture(scope='function')
def manager_user(db_session, setup_roles, password_hash):
    return _make_user(db_session, "manager@nexus.test", "manager", password_hash)


@pytest.fixture(scope='function')
def staff_user(db_session, setup_roles, password_hash):
    return _make_user(db_session, "staff@nexus.test", "staff", password_hash)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return auth_headers(issue_token(admin_user))


@pytest.fixture(scope='function')
def manager_headers(manager_user):
    return auth_headers(issue_token(manager_user))


@pytest.fixture(scope='function')
def staff_headers(staff_user):
    return auth_headers(issue_token(staff_user))


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Acme Retail", email="buyer@acme.test")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Widget Supply Co", email="sales@widgets.test")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def warehouse(db_session):
    """Main warehouse."""
    warehouse = Warehouse(name="Main Warehouse", location="Dock 1")
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def second_warehouse(db_session):
    warehouse = Warehouse(name="Overflow Warehouse", location="Dock 9")
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def product_a(db_session):
    product = Product(sku="WID-A", name="Widget A", price=10, unit="pcs")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session):
    product = Product(sku="WID-B", name="Widget B", price=25, unit="pcs")
    db_session.add(product)
    db_session.commit()
    return product


def receive_stock(product_id: int, warehouse_id: int, quantity: int, actor_id=None):
    """Seed the ledger with an IN movement and commit it."""
    movement = stock_service.record_movement(
        product_id,
        warehouse_id,
        quantity,
        MOVEMENT_IN,
        REFERENCE_MANUAL_ADJUSTMENT,
        None,
        actor_id,
        note="test seed",
    )
    db.session.commit()
    return movement


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def seed_stock(db_session):
    """Returns receive_stock bound to the fresh database."""
    return receive_stock
