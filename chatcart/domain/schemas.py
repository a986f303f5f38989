# chatcart/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from chatcart.domain.cart import CartIssue, CartTotals


class ItemIn(BaseModel):
    """Dodanie produktu do koszyka."""

    product_id: int = Field(..., gt=0, description="ID produktu")
    variation_id: int | None = Field(None, gt=0, description="ID wariantu, jesli produkt ma warianty")
    # <= 0 odrzuca serwis, zeby blad mial ten sam format co reszta
    quantity: int = Field(1, description="Ilosc produktu")


class QuantityIn(BaseModel):
    quantity: int = Field(..., description="Nowa ilosc, 0 usuwa pozycje")


class CouponIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=100)


class ShippingAddressIn(BaseModel):
    address: Dict[str, Any]


class CompleteIn(BaseModel):
    order_id: int = Field(..., gt=0)


class CartItemOut(BaseModel):
    product_id: int
    variation_id: int | None = None
    quantity: int
    price_at_add: Decimal
    product_name: str
    variant_attributes: Dict[str, Any] | None = None
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class CartOut(BaseModel):
    """Koszyk z przeliczonymi sumami (response)."""

    id: int
    customer_phone: str
    status: str
    items: List[CartItemOut]
    coupon_code: str | None = None
    shipping_address: Dict[str, Any] | None = None
    totals: CartTotals
    expires_at: datetime
    created_at: datetime
    updated_at: datetime


class CouponOut(BaseModel):
    discount: Decimal
    cart: CartOut


class ValidityOut(BaseModel):
    is_valid: bool
    issues: List[CartIssue]
    cart: CartOut


class CompleteOut(BaseModel):
    converted: bool


class ErrorOut(BaseModel):
    error: str
    message: str
    retryable: bool = False
    context: Dict[str, Any] = Field(default_factory=dict)
