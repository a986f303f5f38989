# chatcart/domain/cart.py
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CartStatus(str, Enum):
    ACTIVE = "active"
    ABANDONED = "abandoned"
    CONVERTED = "converted"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({CartStatus.CONVERTED, CartStatus.EXPIRED})


class CartItem(BaseModel):
    """One cart line. `price_at_add` is the unit price used for billing."""

    model_config = ConfigDict(frozen=True)

    product_id: int
    variation_id: int | None = None
    quantity: int = Field(..., gt=0)
    price_at_add: Decimal
    product_name: str = ""
    variant_attributes: dict[str, Any] | None = None

    @property
    def line_key(self) -> tuple[int, int | None]:
        return (self.product_id, self.variation_id)

    @property
    def lookup_id(self) -> int:
        return self.variation_id or self.product_id

    @property
    def line_total(self) -> Decimal:
        return self.price_at_add * self.quantity

    def matches(self, product_id: int, variation_id: int | None) -> bool:
        return self.product_id == product_id and self.variation_id == variation_id


class Cart(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    customer_phone: str
    items: List[CartItem] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")
    coupon_code: str | None = None
    shipping_address: dict[str, Any] | None = None
    status: CartStatus = CartStatus.ACTIVE
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    reminder_1_sent_at: datetime | None = None
    reminder_2_sent_at: datetime | None = None
    reminder_3_sent_at: datetime | None = None
    recovered: bool = False
    recovered_order_id: int | None = None
    recovered_revenue: Decimal | None = None

    def is_empty(self) -> bool:
        return not self.items

    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())

    def is_mutable(self, now: datetime | None = None) -> bool:
        return self.status == CartStatus.ACTIVE and not self.is_expired(now)

    def reminders_sent(self) -> int:
        sent = [self.reminder_1_sent_at, self.reminder_2_sent_at, self.reminder_3_sent_at]
        return sum(1 for s in sent if s is not None)

    def find_item(self, product_id: int, variation_id: int | None) -> CartItem | None:
        return next((i for i in self.items if i.matches(product_id, variation_id)), None)


class CartTotals(BaseModel):
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping_estimate: Decimal
    total: Decimal


class CartIssue(BaseModel):
    item_index: int
    product_id: int
    issue: str
    message: str
    blocking: bool = True
    old_price: Decimal | None = None
    new_price: Decimal | None = None


class ValidityReport(BaseModel):
    is_valid: bool
    issues: List[CartIssue] = Field(default_factory=list)
    cart: Cart


class CouponApplication(BaseModel):
    discount: Decimal
    cart: Cart
