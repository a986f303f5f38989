# tests/test_pricing.py
from decimal import Decimal

from chatcart.domain.cart import CartItem
from chatcart.domain.catalog import Coupon
from chatcart.services.pricing import PricingConfig, PricingEngine, ShippingMethod, round_money


def item(product_id, price, quantity, variation_id=None):
    return CartItem(
        product_id=product_id,
        variation_id=variation_id,
        quantity=quantity,
        price_at_add=Decimal(price),
    )


class TestSubtotal:
    def test_sums_price_at_add_times_quantity(self):
        engine = PricingEngine()
        items = [item(1, "9.99", 3), item(2, "0.50", 4)]
        assert engine.subtotal(items) == Decimal("31.97")

    def test_skips_unresolved_lines(self):
        engine = PricingEngine()
        items = [item(1, "9.99", 1), item(2, "5.00", 1, variation_id=7)]
        assert engine.subtotal(items, unresolved=[(2, 7)]) == Decimal("9.99")

    def test_empty_is_zero_with_two_places(self):
        assert str(PricingEngine().subtotal([])) == "0.00"


class TestDiscount:
    def test_percent(self):
        coupon = Coupon(id=1, code="TEN", discount_type="percent", amount=Decimal("10"))
        assert PricingEngine().discount(coupon, Decimal("29.97")) == Decimal("3.00")

    def test_fixed_cart_capped_at_subtotal(self):
        coupon = Coupon(id=1, code="FIFTY", discount_type="fixed_cart", amount=Decimal("50"))
        assert PricingEngine().discount(coupon, Decimal("19.98")) == Decimal("19.98")

    def test_other_types_give_nothing(self):
        coupon = Coupon(id=1, code="P", discount_type="fixed_product", amount=Decimal("5"))
        assert PricingEngine().discount(coupon, Decimal("19.98")) == Decimal("0.00")

    def test_no_coupon(self):
        assert PricingEngine().discount(None, Decimal("19.98")) == Decimal("0.00")


class TestTotals:
    def test_rounding_half_up(self):
        assert round_money(Decimal("0.125")) == Decimal("0.13")
        assert round_money(Decimal("0.124")) == Decimal("0.12")

    def test_tax_and_flat_rate_shipping(self):
        engine = PricingEngine(
            PricingConfig(
                tax_enabled=True,
                tax_rate=Decimal("23"),
                shipping_methods=[ShippingMethod("flat_rate", cost=Decimal("12.00"))],
            )
        )
        totals = engine.totals(Decimal("100.00"), Decimal("10.00"))

        assert totals.subtotal == Decimal("100.00")
        assert totals.discount == Decimal("10.00")
        assert totals.tax == Decimal("20.70")
        assert totals.shipping_estimate == Decimal("12.00")
        assert totals.total == Decimal("122.70")

    def test_tax_disabled(self):
        engine = PricingEngine(PricingConfig(tax_enabled=False, tax_rate=Decimal("23")))
        assert engine.totals(Decimal("10.00")).tax == Decimal("0.00")

    def test_discount_never_makes_total_negative(self):
        totals = PricingEngine().totals(Decimal("5.00"), Decimal("8.00"))
        assert totals.total == Decimal("0.00")

    def test_first_enabled_shipping_method_wins(self):
        engine = PricingEngine(
            PricingConfig(
                shipping_methods=[
                    ShippingMethod("flat_rate", enabled=False, cost=Decimal("9.00")),
                    ShippingMethod("free_shipping"),
                    ShippingMethod("flat_rate", cost=Decimal("15.00")),
                ]
            )
        )
        assert engine.shipping_estimate() == Decimal("0.00")

    def test_no_shipping_configured(self):
        assert PricingEngine().shipping_estimate() == Decimal("0.00")
