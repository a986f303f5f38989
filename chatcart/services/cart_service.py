# chatcart/services/cart_service.py
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chatcart.domain.cart import (
    Cart,
    CartIssue,
    CartItem,
    CartStatus,
    CartTotals,
    CouponApplication,
    ValidityReport,
    utcnow,
)
from chatcart.domain.catalog import ProductInfo
from chatcart.exceptions import (
    InfrastructureError,
    InsufficientStockError,
    OutOfStockError,
    ValidationError,
)
from chatcart.repos.cart_repo import CartRepo
from chatcart.repos.coupon_usage_repo import CouponUsageRepo
from chatcart.services.coupon_validator import CouponValidator
from chatcart.services.lock_service import DEFAULT_LOCK_TIMEOUT, LockService
from chatcart.services.pricing import ZERO, PricingEngine, round_money
from chatcart.utils.logging import get_logger
from chatcart.utils.phone import normalize_phone

logger = get_logger(__name__)

CART_TTL_HOURS = 72


class ProductLookup:
    """Catalog lookups memoized for the duration of one operation."""

    def __init__(self, client):
        self.client = client
        self._cache: Dict[tuple, ProductInfo | None] = {}

    def get(self, product_id: int, variation_id: int | None = None, fresh: bool = False) -> ProductInfo | None:
        key = (product_id, variation_id)
        if fresh or key not in self._cache:
            self._cache[key] = self.client.get_product(product_id, variation_id)
        return self._cache[key]

    def unresolved(self, items: List[CartItem]) -> List[tuple]:
        return [i.line_key for i in items if self.get(i.product_id, i.variation_id) is None]

    def category_ids(self, items: List[CartItem]) -> set:
        ids = set()
        for item in items:
            product = self.get(item.product_id, item.variation_id)
            if product is not None:
                ids.update(product.category_ids)
        return ids


class CartService:
    """
    Operacje na koszyku klienta.

    commands (add, update, remove, coupon, complete) ida przez jedna transakcje
    z lockiem na wierszu koszyka, query (get, totals, validity) tylko czytaja
    """

    def __init__(
        self,
        db: Session,
        product_client,
        coupon_client,
        customer_client,
        lock_service: LockService,
        pricing: PricingEngine,
        notifier=None,
        cart_ttl_hours: int = CART_TTL_HOURS,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        expire_batch_size: int = 100,
    ):
        self.repo = CartRepo(db, lock_service, lock_timeout)
        self.usage_repo = CouponUsageRepo(db)
        self.product_client = product_client
        self.coupon_client = coupon_client
        self.pricing = pricing
        self.validator = CouponValidator(self.usage_repo, customer_client, pricing)
        self.notifier = notifier
        self.cart_ttl = timedelta(hours=cart_ttl_hours)
        self.expire_batch_size = expire_batch_size

    # =====================================================
    # helpers
    # =====================================================
    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.repo.commit()
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise InfrastructureError("Cart storage is unavailable. Please try again.") from e
        except Exception:
            self.repo.rollback()
            raise

    def _new_expiry(self) -> datetime:
        return utcnow() + self.cart_ttl

    def _extended_expiry(self, cart: Cart) -> datetime:
        # expires_at nigdy nie cofa sie
        return max(cart.expires_at, self._new_expiry())

    def _lookup(self) -> ProductLookup:
        return ProductLookup(self.product_client)

    @staticmethod
    def _item_at(cart: Cart, item_index: int) -> CartItem:
        if item_index < 0 or item_index >= len(cart.items):
            raise ValidationError(
                f"Item not found at index: {item_index}",
                code="item_not_found",
                item_index=item_index,
            )
        return cart.items[item_index]

    @staticmethod
    def _check_stock(product_id: int, product: ProductInfo, requested: int) -> None:
        if not product.in_stock:
            raise OutOfStockError(product_id, product.name)

        if product.manages_stock and product.stock_quantity < requested:
            raise InsufficientStockError(
                product_id,
                requested=requested,
                available=product.stock_quantity,
                product_name=product.name,
            )

    def _save_items(self, cart: Cart, items: List[CartItem], lookup: ProductLookup) -> Cart:
        """Persist a new item list with its recomputed total. Caller holds the row lock."""
        total = self.pricing.subtotal(items, lookup.unresolved(items))
        self.repo.update_locked(
            cart.id,
            {
                "items": items,
                "total": total,
                "expires_at": self._extended_expiry(cart),
            },
        )
        return self.repo.find(cart.id)

    def _notify(self, phone: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.stop_sequence(phone, "cart_modified")
        except Exception as e:
            # mutacja jest juz zacommitowana, blad powiadomienia tylko logujemy
            logger.warning(f"Failed to stop recovery sequence for {phone}: {e}")

    # =====================================================
    # queries
    # =====================================================
    def get_cart(self, phone: str) -> Cart:
        """Return the ACTIVE cart for `phone`, creating one with a fresh expiry."""
        phone = normalize_phone(phone)

        with self._transaction():
            cart = self.repo.find_active_by_customer(phone)
        if cart is not None:
            return cart

        # osobna transakcja, lock klienta zawsze bierzemy przed lockiem bazy
        with self._transaction():
            cart = self.repo.find_or_create_for_update(phone, self._new_expiry())
        return cart

    def calculate_totals(self, cart: Cart) -> CartTotals:
        """
        Sumy z cen zapisanych w koszyku, bez zapisu.

        The discount is recomputed from the live coupon definition and only
        counted while the coupon is still enabled and unexpired.
        """
        lookup = self._lookup()
        subtotal = self.pricing.subtotal(cart.items, lookup.unresolved(cart.items))

        discount = ZERO
        if cart.coupon_code:
            coupon = self.coupon_client.get_coupon(cart.coupon_code)
            if coupon is not None and coupon.is_usable():
                discount = self.pricing.discount(coupon, subtotal)

        return self.pricing.totals(subtotal, discount)

    def check_cart_validity(self, phone: str) -> ValidityReport:
        cart = self.get_cart(phone)

        issues: List[CartIssue] = []
        for index, item in enumerate(cart.items):
            product = self.product_client.get_product(item.product_id, item.variation_id)

            if product is None:
                issues.append(
                    CartIssue(
                        item_index=index,
                        product_id=item.product_id,
                        issue="product_not_found",
                        message=f"{item.product_name or item.product_id} is no longer available",
                    )
                )
                continue

            if not product.in_stock:
                issues.append(
                    CartIssue(
                        item_index=index,
                        product_id=item.product_id,
                        issue="out_of_stock",
                        message=f"{product.name} is out of stock",
                    )
                )
                continue

            if product.manages_stock and product.stock_quantity < item.quantity:
                issues.append(
                    CartIssue(
                        item_index=index,
                        product_id=item.product_id,
                        issue="insufficient_stock",
                        message=(
                            f"Only {product.stock_quantity} of {product.name} available "
                            f"(you have {item.quantity} in cart)"
                        ),
                    )
                )
                continue

            # zmiana ceny to tylko ostrzezenie, w koszyku zostaje price_at_add
            live_price = round_money(product.price)
            if live_price != round_money(item.price_at_add):
                issues.append(
                    CartIssue(
                        item_index=index,
                        product_id=item.product_id,
                        issue="price_changed",
                        message=f"Price of {product.name} changed from {item.price_at_add} to {live_price}",
                        blocking=False,
                        old_price=item.price_at_add,
                        new_price=live_price,
                    )
                )

        is_valid = not any(i.blocking for i in issues)
        return ValidityReport(is_valid=is_valid, issues=issues, cart=cart)

    # =====================================================
    # commands
    # =====================================================
    def add_item(self, phone: str, product_id: int, variation_id: int | None = None, quantity: int = 1) -> Cart:
        phone = normalize_phone(phone)

        if quantity <= 0:
            raise ValidationError(
                f"Quantity must be positive, got: {quantity}",
                code="invalid_quantity",
            )

        lookup = self._lookup()
        if lookup.get(product_id, variation_id) is None:
            raise ValidationError(
                f"Product not found: {variation_id or product_id}",
                code="product_not_found",
                product_id=product_id,
            )

        with self._transaction():
            cart = self.repo.find_or_create_for_update(phone, self._new_expiry())

            # stan sprawdzamy ponownie pod lockiem, wczesniejszy odczyt jest tylko orientacyjny
            product = lookup.get(product_id, variation_id, fresh=True)
            if product is None:
                raise ValidationError(
                    f"Product not found: {variation_id or product_id}",
                    code="product_not_found",
                    product_id=product_id,
                )

            existing = cart.find_item(product_id, variation_id)
            requested = quantity + (existing.quantity if existing else 0)
            self._check_stock(product_id, product, requested)

            if existing is not None:
                logger.info(
                    f"Product {product_id} already in cart {cart.id}, "
                    f"quantity {existing.quantity} -> {requested}"
                )
                items = [
                    i.model_copy(update={"quantity": requested}) if i is existing else i
                    for i in cart.items
                ]
            else:
                logger.info(f"Adding product {product_id} to cart {cart.id}")
                items = list(cart.items) + [
                    CartItem(
                        product_id=product_id,
                        variation_id=variation_id,
                        quantity=quantity,
                        price_at_add=round_money(product.price),
                        product_name=product.name,
                        variant_attributes=product.variant_attributes if variation_id else None,
                    )
                ]

            cart = self._save_items(cart, items, lookup)

        self._notify(phone)
        return cart

    def update_quantity(self, phone: str, item_index: int, new_quantity: int) -> Cart:
        if new_quantity <= 0:
            return self.remove_item(phone, item_index)

        phone = normalize_phone(phone)
        lookup = self._lookup()

        with self._transaction():
            cart = self.repo.find_or_create_for_update(phone, self._new_expiry())
            item = self._item_at(cart, item_index)

            product = lookup.get(item.product_id, item.variation_id, fresh=True)
            if product is None:
                raise ValidationError(
                    "Product no longer exists",
                    code="product_not_found",
                    product_id=item.product_id,
                )
            self._check_stock(item.product_id, product, new_quantity)

            items = list(cart.items)
            items[item_index] = item.model_copy(update={"quantity": new_quantity})
            logger.info(f"Cart {cart.id} item {item_index} quantity {item.quantity} -> {new_quantity}")

            cart = self._save_items(cart, items, lookup)

        self._notify(phone)
        return cart

    def remove_item(self, phone: str, item_index: int) -> Cart:
        phone = normalize_phone(phone)
        lookup = self._lookup()

        with self._transaction():
            cart = self.repo.find_or_create_for_update(phone, self._new_expiry())
            item = self._item_at(cart, item_index)

            items = list(cart.items)
            del items[item_index]
            logger.info(f"Removed product {item.product_id} from cart {cart.id}")

            cart = self._save_items(cart, items, lookup)

        self._notify(phone)
        return cart

    def clear_cart(self, phone: str) -> Cart:
        """Reset items, total and coupon. Destructive reset, no advisory lock."""
        cart = self.get_cart(phone)

        with self._transaction():
            updated = self.repo.update(
                cart.id,
                {
                    "items": [],
                    "total": ZERO,
                    "coupon_code": None,
                    "expires_at": self._extended_expiry(cart),
                },
            )
            if not updated:
                raise InfrastructureError(f"Cart {cart.id} disappeared while clearing")
            cart = self.repo.find(cart.id)

        logger.info(f"Cleared cart {cart.id}")
        self._notify(cart.customer_phone)
        return cart

    def apply_coupon(self, phone: str, coupon_code: str) -> CouponApplication:
        phone = normalize_phone(phone)
        code = (coupon_code or "").strip()
        if not code:
            raise ValidationError("Coupon code is required", code="invalid_coupon_code")

        coupon = self.coupon_client.get_coupon(code)
        lookup = self._lookup()

        with self._transaction():
            cart = self.repo.find_or_create_for_update(phone, self._new_expiry())

            subtotal = self.pricing.subtotal(cart.items, lookup.unresolved(cart.items))
            discount = self.validator.validate(
                code,
                coupon,
                phone,
                cart.items,
                subtotal,
                lookup.category_ids(cart.items),
            )

            # zapisujemy tylko kod, rabat liczy calculate_totals
            self.repo.update_locked(
                cart.id,
                {"coupon_code": coupon.code, "expires_at": self._extended_expiry(cart)},
            )
            cart = self.repo.find(cart.id)

        logger.info(f"Applied coupon {coupon.code} to cart {cart.id}")
        self._notify(phone)
        return CouponApplication(discount=discount, cart=cart)

    def remove_coupon(self, phone: str) -> Cart:
        phone = normalize_phone(phone)

        with self._transaction():
            cart = self.repo.find_or_create_for_update(phone, self._new_expiry())
            self.repo.update_locked(
                cart.id,
                {"coupon_code": None, "expires_at": self._extended_expiry(cart)},
            )
            cart = self.repo.find(cart.id)

        logger.info(f"Removed coupon from cart {cart.id}")
        self._notify(phone)
        return cart

    def set_shipping_address(self, phone: str, address: Dict[str, Any]) -> Cart:
        phone = normalize_phone(phone)

        with self._transaction():
            cart = self.repo.find_or_create_for_update(phone, self._new_expiry())
            self.repo.update_locked(
                cart.id,
                {"shipping_address": address, "expires_at": self._extended_expiry(cart)},
            )
            cart = self.repo.find(cart.id)

        logger.info(f"Set shipping address on cart {cart.id}")
        return cart

    def mark_completed(self, phone: str, order_id: int) -> bool:
        """
        Checkout zakonczony: ACTIVE/ABANDONED -> CONVERTED.

        An ABANDONED cart is converted through mark_recovered, which is
        idempotent. Coupon usage of the order goes into the phone ledger.
        """
        phone = normalize_phone(phone)

        with self._transaction():
            cart = self.repo.find_open_by_customer_for_update(phone)
            if cart is None:
                logger.warning(f"No open cart for {phone} to complete with order {order_id}")
                return False

            if cart.status == CartStatus.ACTIVE and cart.is_expired():
                # ten sam przypadek co w find_or_create_for_update
                logger.warning(f"Cart {cart.id} for {phone} passed its expiry, not completing order {order_id}")
                self.repo.update_locked(cart.id, {"status": CartStatus.EXPIRED})
                return False

            if cart.status == CartStatus.ABANDONED:
                converted = self.repo.mark_recovered(cart.id, order_id)
            else:
                self.repo.update_locked(cart.id, {"status": CartStatus.CONVERTED})
                converted = True

            if converted and cart.coupon_code:
                coupon = self.coupon_client.get_coupon(cart.coupon_code)
                if coupon is not None:
                    self.usage_repo.record(coupon.id, phone, order_id)

        logger.info(f"Cart {cart.id} converted with order {order_id} (was {cart.status.value})")
        return converted

    def mark_recovered(self, cart_id: int, order_id: int) -> bool:
        with self._transaction():
            return self.repo.mark_recovered(cart_id, order_id)

    def record_coupon_usage(self, coupon_id: int, phone: str, order_id: int) -> bool:
        phone = normalize_phone(phone)
        with self._transaction():
            return self.usage_repo.record(coupon_id, phone, order_id)

    # =====================================================
    # scheduler hooks
    # =====================================================
    def find_inactive_carts(self, hours: int = 1, limit: int = 100) -> List[Cart]:
        with self._transaction():
            return self.repo.find_inactive(hours, limit)

    def mark_abandoned(self, cart_id: int) -> bool:
        with self._transaction():
            marked = self.repo.mark_abandoned(cart_id)

        if marked:
            logger.info(f"Cart {cart_id} marked abandoned")
        return marked

    def get_abandoned_carts(self, hours: int = 24) -> List[Cart]:
        with self._transaction():
            return self.repo.find_abandoned(hours)

    def find_due_for_reminder(self, reminder_number: int, delay_hours: int, limit: int = 50) -> List[Cart]:
        with self._transaction():
            return self.repo.find_due_for_reminder(reminder_number, delay_hours, limit)

    def mark_reminder_sent(self, cart_id: int, reminder_number: int = 1) -> bool:
        with self._transaction():
            return self.repo.mark_reminder_sent(cart_id, reminder_number)

    # =====================================================
    # sweeps
    # =====================================================
    def cleanup_expired_carts(self) -> int:
        """Flip ACTIVE carts past expires_at to EXPIRED, one batch per transaction."""
        expired = 0
        while True:
            with self._transaction():
                count = self.repo.expire_stale(self.expire_batch_size)
            expired += count
            if count < self.expire_batch_size:
                break

        if expired:
            logger.info(f"Expired {expired} carts")
        return expired

    def purge_expired_carts(self) -> int:
        purged = 0
        while True:
            with self._transaction():
                count = self.repo.purge_expired(self.expire_batch_size)
            purged += count
            if count < self.expire_batch_size:
                break

        if purged:
            logger.info(f"Purged {purged} expired carts")
        return purged

    # =====================================================
    # reporting
    # =====================================================
    def get_recovery_stats(self, start: datetime, end: datetime) -> Dict[str, Any]:
        with self._transaction():
            return self.repo.recovery_stats(start, end)
