"""
Shared fixtures: in-memory SQLite store, a shop with an encrypted token, catalog rows, TestClient.
"""
import os

# Must be set before ivy.database builds its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-ivy-tests")
os.environ.setdefault("ENV", "DEV")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ivy.database import Base, get_db, get_session_factory
from ivy.models import InventoryLevel, MetafieldConfig, Product, ProductVariant, Shop
from ivy.services.credentials import encrypt_token

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def shop(db_session):
    shop = Shop(
        name="Ivy Test",
        shopify_url="ivy-test.myshopify.com",
        shopify_token=encrypt_token("shpat_test_token"),
    )
    db_session.add(shop)
    db_session.commit()
    db_session.refresh(shop)
    return shop


def make_variant(db, shop, *, product_shopify_id="100", product_type="T-shirt", title="Tee Bio",
                 variant_shopify_id="1000", inventory_item_id="5000", sku="TEE-M-NAVY",
                 options=("M", "Navy"), cost="7.50", price="19.90", quantities=()):
    product = db.query(Product).filter(
        Product.shop_id == shop.id, Product.shopify_id == product_shopify_id
    ).first()
    if product is None:
        product = Product(shop_id=shop.id, shopify_id=product_shopify_id, title=title, product_type=product_type)
        db.add(product)
        db.flush()
    opts = list(options) + [None] * (3 - len(options))
    variant = ProductVariant(
        product_id=product.id,
        shopify_id=variant_shopify_id,
        title=" / ".join(o for o in options if o),
        sku=sku,
        option1=opts[0],
        option2=opts[1],
        option3=opts[2],
        inventory_item_id=inventory_item_id,
        cost=Decimal(cost),
        price=Decimal(price),
    )
    db.add(variant)
    db.flush()
    for i, qty in enumerate(quantities):
        db.add(InventoryLevel(variant_id=variant.id, location_id=f"loc-{i + 1}", quantity=qty))
    db.commit()
    db.refresh(variant)
    return variant


@pytest.fixture
def variant_factory(db_session, shop):
    def factory(**kwargs):
        return make_variant(db_session, shop, **kwargs)
    return factory


@pytest.fixture
def variant(variant_factory):
    return variant_factory()


@pytest.fixture
def metafield_config(db_session, shop):
    config = MetafieldConfig(shop_id=shop.id, namespace="custom", key="fabric", display_name="Tissu", is_active=True)
    db_session.add(config)
    db_session.commit()
    return config


@pytest.fixture
def client(db_session):
    from main import app
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def sse_exit_event():
    """sse-starlette (2.x) keeps its exit event bound to the first event loop; each TestClient request runs in a new one."""
    import sse_starlette.sse as sse
    status = getattr(sse, "AppStatus", None)
    if status is not None and hasattr(status, "should_exit_event"):
        status.should_exit_event = None
    yield
