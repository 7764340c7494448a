"""
Pytest fixtures for the sale engine tests.

Provides test database setup, department-scoped catalogue fixtures, and test client.
"""

from decimal import Decimal

import pytest
from app import create_app
from app.extensions import db
from app.models import Department, Ingredient, Product, ProductVariant
from app.models.inventory import TRACKING_VOLUME


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SALE_COMMIT_ATOMIC': True,
        'VOID_RESTORES_MIXTURES': False,
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


@pytest.fixture(scope='function')
def dept_a(db_session):
    """Department A (perfume bar)."""
    dept = Department(name="Perfume Bar", code="PERF", is_active=True)
    db_session.add(dept)
    db_session.commit()
    return dept


@pytest.fixture(scope='function')
def dept_b(db_session):
    """Department B (boutique): stocks an ingredient with the same name as A."""
    dept = Department(name="Boutique", code="BTQ", is_active=True)
    db_session.add(dept)
    db_session.commit()
    return dept


@pytest.fixture(scope='function')
def product(db_session, dept_a):
    """Quantity-tracked product, 10 on hand."""
    product = Product(
        department_id=dept_a.id,
        sku="BOX-001",
        name="Gift Box",
        price_cents=1000,
        stock=10,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def volume_product(db_session, dept_a):
    """Volume-tracked product, 500 ml on hand."""
    product = Product(
        department_id=dept_a.id,
        sku="OIL-BULK",
        name="Body Oil (loose)",
        price_cents=5000,
        tracking_mode=TRACKING_VOLUME,
        stock_volume=Decimal("500"),
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def variant(db_session, dept_a):
    """Variant with 4 on hand under a parent that has 20 of its own."""
    parent = Product(department_id=dept_a.id, sku="TEE", name="T-Shirt", price_cents=2500, stock=20)
    db_session.add(parent)
    db_session.flush()

    variant = ProductVariant(product_id=parent.id, name="Large", sku="TEE-L", price_cents=2700, stock=4)
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def oud(db_session, dept_a):
    ingredient = Ingredient(department_id=dept_a.id, name="Oud", stock_volume=Decimal("50"))
    db_session.add(ingredient)
    db_session.commit()
    return ingredient


@pytest.fixture(scope='function')
def rose(db_session, dept_a):
    ingredient = Ingredient(department_id=dept_a.id, name="Rose", stock_volume=Decimal("50"))
    db_session.add(ingredient)
    db_session.commit()
    return ingredient


@pytest.fixture(scope='function')
def oud_b(db_session, dept_b):
    """Same name as `oud`, different department."""
    ingredient = Ingredient(department_id=dept_b.id, name="Oud", stock_volume=Decimal("80"))
    db_session.add(ingredient)
    db_session.commit()
    return ingredient


def _stock_of(model, row_id) -> Decimal:
    """Fresh read of a row's stock field, bypassing the identity map."""
    db.session.expire_all()
    row = db.session.get(model, row_id)
    if isinstance(row, Ingredient) or (isinstance(row, Product) and row.is_volume_tracked):
        return Decimal(str(row.stock_volume))
    return Decimal(row.stock)


def _mixture_item(*names, container_volume=30, tier="retail", quantity=1, ids=None):
    """Cart payload for a mixture line."""
    ingredients = []
    for i, name in enumerate(names):
        entry = {"name": name}
        if ids and ids[i] is not None:
            entry["ingredient_id"] = ids[i]
        ingredients.append(entry)
    return {
        "quantity": quantity,
        "mixture": {
            "container_volume": container_volume,
            "customer_tier": tier,
            "ingredients": ingredients,
        },
    }


@pytest.fixture
def stock_of(db_session):
    return _stock_of


@pytest.fixture
def mixture_item():
    return _mixture_item
