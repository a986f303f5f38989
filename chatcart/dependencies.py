# chatcart/dependencies.py
"""Wiring of settings, storage, locks and collaborators into CartService."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from chatcart.data.database import Database
from chatcart.services.cart_service import CartService
from chatcart.services.coupon_client import CouponClient
from chatcart.services.customer_client import CustomerClient
from chatcart.services.lock_service import LocalLockService, LockService, RedisLockService
from chatcart.services.pricing import PricingConfig, PricingEngine, ShippingMethod
from chatcart.services.product_client import ProductClient
from chatcart.utils.settings import Settings


def build_lock_service(settings: Settings) -> LockService:
    if settings.lock_backend == "local":
        return LocalLockService()
    return RedisLockService(url=settings.redis_url)


def build_pricing_engine(settings: Settings) -> PricingEngine:
    methods = []
    if settings.flat_rate_shipping is not None:
        methods.append(ShippingMethod("flat_rate", cost=settings.flat_rate_shipping))
    return PricingEngine(
        PricingConfig(
            tax_enabled=settings.tax_enabled,
            tax_rate=settings.tax_rate or Decimal("0"),
            shipping_methods=methods,
        )
    )


@dataclass
class CartContext:
    """Everything a CartService needs apart from the session."""

    settings: Settings
    database: Database
    lock_service: LockService
    pricing: PricingEngine
    product_client: object
    coupon_client: object
    customer_client: object
    notifier: object = None

    def cart_service(self, db: Session) -> CartService:
        return CartService(
            db=db,
            product_client=self.product_client,
            coupon_client=self.coupon_client,
            customer_client=self.customer_client,
            lock_service=self.lock_service,
            pricing=self.pricing,
            notifier=self.notifier,
            cart_ttl_hours=self.settings.cart_ttl_hours,
            lock_timeout=self.settings.lock_timeout_seconds,
            expire_batch_size=self.settings.expire_batch_size,
        )

    def close(self) -> None:
        self.database.dispose()


def build_context(settings: Settings, notifier=None) -> CartContext:
    return CartContext(
        settings=settings,
        database=Database(settings.database_url),
        lock_service=build_lock_service(settings),
        pricing=build_pricing_engine(settings),
        product_client=ProductClient(settings.product_service_url),
        coupon_client=CouponClient(settings.coupon_service_url),
        customer_client=CustomerClient(settings.customer_service_url),
        notifier=notifier,
    )


# =====================================================
# FastAPI
# =====================================================
def get_context(request: Request) -> CartContext:
    return request.app.state.context


def get_db(context: CartContext = Depends(get_context)) -> Iterator[Session]:
    with context.database.session() as db:
        yield db


def get_cart_service(
    context: CartContext = Depends(get_context),
    db: Session = Depends(get_db),
) -> CartService:
    return context.cart_service(db)
