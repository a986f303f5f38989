# tests/conftest.py
from datetime import timedelta
from decimal import Decimal

import pytest

from chatcart.data.database import Database
from chatcart.dependencies import CartContext
from chatcart.domain.cart import utcnow
from chatcart.domain.catalog import Coupon, CustomerAccount, ProductInfo
from chatcart.services.cart_service import CartService
from chatcart.services.lock_service import LocalLockService
from chatcart.services.pricing import PricingEngine
from chatcart.utils.settings import Settings

PHONE = "+48500100200"


class FakeCatalog:
    """Product lookup keyed like the real service: variation id first."""

    def __init__(self):
        self.products = {}
        self.calls = 0

    def put(self, product_id, price, name="Product", in_stock=True, stock=None, category_ids=(), variation_id=None, variant_attributes=None):
        key = variation_id or product_id
        self.products[key] = ProductInfo(
            id=key,
            name=name,
            price=Decimal(str(price)),
            in_stock=in_stock,
            stock_quantity=stock,
            category_ids=list(category_ids),
            variant_attributes=variant_attributes,
        )

    def remove(self, product_id):
        self.products.pop(product_id, None)

    def get_product(self, product_id, variation_id=None):
        self.calls += 1
        return self.products.get(variation_id or product_id)


class FakeCoupons:
    def __init__(self):
        self.coupons = {}

    def put(self, **kwargs):
        coupon = Coupon(**kwargs)
        self.coupons[coupon.code] = coupon
        return coupon

    def get_coupon(self, code):
        return self.coupons.get(code)


class FakeCustomers:
    def __init__(self):
        self.accounts = {}

    def put(self, phone, account_id, email=None):
        self.accounts[phone] = CustomerAccount(id=account_id, email=email)

    def find_by_phone(self, phone):
        return self.accounts.get(phone)


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def stop_sequence(self, phone, reason):
        self.calls.append((phone, reason))


@pytest.fixture()
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'carts.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture()
def catalog():
    catalog = FakeCatalog()
    catalog.put(10, "9.99", name="Coffee mug", stock=100, category_ids=[3])
    catalog.put(20, "25.00", name="Tea pot", stock=5, category_ids=[4])
    return catalog


@pytest.fixture()
def coupons():
    return FakeCoupons()


@pytest.fixture()
def customers():
    return FakeCustomers()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def lock_service():
    return LocalLockService()


@pytest.fixture()
def pricing():
    return PricingEngine()


@pytest.fixture()
def make_service(database, catalog, coupons, customers, lock_service, pricing, notifier):
    """One CartService per call, each on its own session (one per thread in concurrency tests)."""
    sessions = []

    def factory(**overrides):
        session = database.session_factory()
        sessions.append(session)
        kwargs = dict(
            db=session,
            product_client=catalog,
            coupon_client=coupons,
            customer_client=customers,
            lock_service=lock_service,
            pricing=pricing,
            notifier=notifier,
        )
        kwargs.update(overrides)
        return CartService(**kwargs)

    yield factory

    for session in sessions:
        session.close()


@pytest.fixture()
def service(make_service):
    return make_service()


@pytest.fixture()
def context(database, catalog, coupons, customers, lock_service, pricing, notifier):
    settings = Settings(
        database_url=str(database.engine.url),
        lock_backend="local",
        expire_batch_size=2,
    )
    return CartContext(
        settings=settings,
        database=database,
        lock_service=lock_service,
        pricing=pricing,
        product_client=catalog,
        coupon_client=coupons,
        customer_client=customers,
        notifier=notifier,
    )


def backdate(service, cart_id, **fields):
    """Move cart timestamps into the past, e.g. backdate(svc, 1, expires_at=hours(-1))."""
    service.repo.update_locked(cart_id, fields)
    service.repo.commit()


def hours(n):
    return utcnow() + timedelta(hours=n)
