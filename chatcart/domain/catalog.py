# chatcart/domain/catalog.py
"""Views of the external catalog, coupon store and customer directory."""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, Field, field_validator

from chatcart.domain.cart import utcnow


class ProductInfo(BaseModel):
    id: int
    name: str
    price: Decimal
    in_stock: bool = True
    # None = catalog does not manage stock for this product
    stock_quantity: int | None = None
    category_ids: List[int] = Field(default_factory=list)
    variant_attributes: dict[str, Any] | None = None

    @property
    def manages_stock(self) -> bool:
        return self.stock_quantity is not None


class DiscountType(str, Enum):
    PERCENT = "percent"
    FIXED_CART = "fixed_cart"
    FIXED_PRODUCT = "fixed_product"


class Coupon(BaseModel):
    id: int
    code: str
    discount_type: str = DiscountType.PERCENT.value
    amount: Decimal = Decimal("0")
    enabled: bool = True
    expires_at: datetime | None = None

    usage_limit: int | None = None
    usage_count: int = 0
    usage_limit_per_user: int | None = None
    # customer ids and emails, as the coupon store records them
    used_by: List[str] = Field(default_factory=list)

    minimum_amount: Decimal | None = None
    maximum_amount: Decimal | None = None
    product_ids: List[int] = Field(default_factory=list)
    excluded_product_ids: List[int] = Field(default_factory=list)
    category_ids: List[int] = Field(default_factory=list)
    excluded_category_ids: List[int] = Field(default_factory=list)

    @field_validator("expires_at")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        # sklep z kuponami czesto zwraca daty bez strefy, traktujemy je jako UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())

    def is_usable(self, now: datetime | None = None) -> bool:
        return self.enabled and not self.is_expired(now)


class CustomerAccount(BaseModel):
    id: int
    email: str | None = None
