# chatcart/services/coupon_validator.py
from decimal import Decimal
from enum import Enum
from typing import Iterable, List

from chatcart.domain.cart import CartItem
from chatcart.domain.catalog import Coupon
from chatcart.exceptions import CouponError
from chatcart.repos.coupon_usage_repo import CouponUsageRepo
from chatcart.services.pricing import PricingEngine
from chatcart.utils.logging import get_logger

logger = get_logger(__name__)


class CouponRule(str, Enum):
    NOT_FOUND = "not_found"
    DISABLED = "disabled"
    EXPIRED = "expired"
    USAGE_LIMIT = "usage_limit"
    USER_LIMIT = "user_limit"
    MINIMUM_AMOUNT = "minimum_amount"
    MAXIMUM_AMOUNT = "maximum_amount"
    PRODUCT_RESTRICTION = "product_restriction"
    PRODUCT_EXCLUDED = "product_excluded"
    CATEGORY_RESTRICTION = "category_restriction"
    CATEGORY_EXCLUDED = "category_excluded"


class CouponValidator:
    """
    Walidacja kuponu, pierwsza niespelniona regula przerywa.

    1. istnieje i jest wlaczony
    2. nie wygasl
    3. globalny limit uzyc
    4. limit na klienta, liczony dwa razy: ledger po telefonie i used_by kuponu
    5. min/max kwota koszyka
    6. ograniczenia produktow i kategorii
    """

    def __init__(self, usage_repo: CouponUsageRepo, customer_client, pricing: PricingEngine):
        self.usage_repo = usage_repo
        self.customer_client = customer_client
        self.pricing = pricing

    def validate(
        self,
        coupon_code: str,
        coupon: Coupon | None,
        phone: str,
        items: List[CartItem],
        subtotal: Decimal,
        category_ids: Iterable[int] = (),
    ) -> Decimal:
        """Return the discount for `subtotal` or raise CouponError naming the failed rule."""
        if coupon is None:
            raise CouponError(f"Invalid coupon code: {coupon_code}", CouponRule.NOT_FOUND, coupon_code)

        if not coupon.enabled:
            raise CouponError(f"Invalid coupon code: {coupon_code}", CouponRule.DISABLED, coupon_code)

        if coupon.is_expired():
            raise CouponError("This coupon has expired", CouponRule.EXPIRED, coupon_code)

        if coupon.usage_limit and coupon.usage_count >= coupon.usage_limit:
            raise CouponError("This coupon has reached its usage limit", CouponRule.USAGE_LIMIT, coupon_code)

        if coupon.usage_limit_per_user:
            self._check_user_limit(coupon, phone)

        self._check_amount(coupon, subtotal)
        self._check_products(coupon, items)
        self._check_categories(coupon, set(category_ids))

        discount = self.pricing.discount(coupon, subtotal)
        logger.info(f"Coupon {coupon.code} valid for {phone}, discount {discount}")
        return discount

    def _check_user_limit(self, coupon: Coupon, phone: str) -> None:
        limit = coupon.usage_limit_per_user

        # (a) ledger po telefonie, lapie klientow bez konta i zmiane numeru
        phone_count = self.usage_repo.count_for_phone(coupon.id, phone)
        if phone_count >= limit:
            raise CouponError(
                "You have already used this coupon the maximum number of times",
                CouponRule.USER_LIMIT,
                coupon.code,
            )

        # (b) used_by z kuponu, lapie uzycia konta przez inne kanaly
        customer = self.customer_client.find_by_phone(phone)
        if customer is None:
            return

        keys = {str(customer.id)}
        if customer.email:
            keys.add(customer.email)

        account_count = sum(1 for entry in coupon.used_by if str(entry) in keys)
        if account_count >= limit:
            raise CouponError(
                "You have already used this coupon the maximum number of times",
                CouponRule.USER_LIMIT,
                coupon.code,
            )

    def _check_amount(self, coupon: Coupon, subtotal: Decimal) -> None:
        if coupon.minimum_amount and subtotal < coupon.minimum_amount:
            raise CouponError(
                f"Minimum order amount of {coupon.minimum_amount} required for this coupon",
                CouponRule.MINIMUM_AMOUNT,
                coupon.code,
            )

        if coupon.maximum_amount and subtotal > coupon.maximum_amount:
            raise CouponError(
                f"Maximum order amount of {coupon.maximum_amount} exceeded for this coupon",
                CouponRule.MAXIMUM_AMOUNT,
                coupon.code,
            )

    def _check_products(self, coupon: Coupon, items: List[CartItem]) -> None:
        cart_product_ids = {i.product_id for i in items}

        if coupon.product_ids and not cart_product_ids & set(coupon.product_ids):
            raise CouponError(
                "This coupon is not valid for the products in your cart",
                CouponRule.PRODUCT_RESTRICTION,
                coupon.code,
            )

        if cart_product_ids & set(coupon.excluded_product_ids):
            raise CouponError(
                "This coupon cannot be used with some products in your cart",
                CouponRule.PRODUCT_EXCLUDED,
                coupon.code,
            )

    def _check_categories(self, coupon: Coupon, cart_category_ids: set) -> None:
        if coupon.category_ids and not cart_category_ids & set(coupon.category_ids):
            raise CouponError(
                "This coupon is not valid for the product categories in your cart",
                CouponRule.CATEGORY_RESTRICTION,
                coupon.code,
            )

        if cart_category_ids & set(coupon.excluded_category_ids):
            raise CouponError(
                "This coupon cannot be used with some product categories in your cart",
                CouponRule.CATEGORY_EXCLUDED,
                coupon.code,
            )
