# chatcart/services/pricing.py
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List

from chatcart.domain.cart import CartItem, CartTotals
from chatcart.domain.catalog import Coupon, DiscountType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ShippingMethod:
    method_id: str
    enabled: bool = True
    cost: Decimal = ZERO


@dataclass(frozen=True)
class PricingConfig:
    tax_enabled: bool = False
    tax_rate: Decimal = ZERO
    shipping_methods: List[ShippingMethod] = field(default_factory=list)


class PricingEngine:
    """Pure price arithmetic over captured cart lines. No I/O."""

    def __init__(self, config: PricingConfig | None = None):
        self.config = config or PricingConfig()

    def subtotal(self, items: Iterable[CartItem], unresolved: Iterable[tuple] = ()) -> Decimal:
        """Sum of price_at_add * quantity over lines whose product still resolves."""
        skip = set(unresolved)
        total = sum(
            (i.line_total for i in items if i.line_key not in skip),
            ZERO,
        )
        return round_money(total)

    def discount(self, coupon: Coupon | None, subtotal: Decimal) -> Decimal:
        if coupon is None:
            return ZERO
        if coupon.discount_type == DiscountType.PERCENT.value:
            return round_money(subtotal * coupon.amount / 100)
        if coupon.discount_type == DiscountType.FIXED_CART.value:
            return round_money(min(coupon.amount, subtotal))
        return ZERO

    def tax(self, amount_after_discount: Decimal) -> Decimal:
        if not self.config.tax_enabled or not self.config.tax_rate:
            return ZERO
        return round_money(amount_after_discount * self.config.tax_rate / 100)

    def shipping_estimate(self) -> Decimal:
        for method in self.config.shipping_methods:
            if not method.enabled:
                continue
            if method.method_id == "flat_rate":
                return round_money(method.cost)
            if method.method_id == "free_shipping":
                return ZERO
        return ZERO

    def totals(self, subtotal: Decimal, discount: Decimal = ZERO) -> CartTotals:
        subtotal = round_money(subtotal)
        discount = round_money(discount)
        after_discount = max(ZERO, subtotal - discount)
        tax = self.tax(after_discount)
        shipping = self.shipping_estimate()

        return CartTotals(
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            shipping_estimate=shipping,
            total=round_money(after_discount + tax + shipping),
        )
