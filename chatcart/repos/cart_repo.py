# chatcart/repos/cart_repo.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatcart.data.models.cart import CartModel
from chatcart.domain.cart import Cart, CartItem, CartStatus, utcnow
from chatcart.exceptions import InfrastructureError
from chatcart.services.lock_service import DEFAULT_LOCK_TIMEOUT, LockService, cart_lock_key
from chatcart.utils.logging import get_logger

logger = get_logger(__name__)

# whitelist, numer przypomnienia nigdy nie trafia do SQL jako tekst
REMINDER_COLUMNS = {
    1: CartModel.reminder_1_sent_at,
    2: CartModel.reminder_2_sent_at,
    3: CartModel.reminder_3_sent_at,
}


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite oddaje naive datetime, zapisujemy zawsze UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class CartRepo:
    """
    Dostep do tabeli carts.

    Unlocked reads (find, find_active_by_customer) are for display only.
    The *_for_update reads and update_locked must run inside the caller's
    open transaction; commit/rollback are driven by the service.
    """

    def __init__(
        self,
        db: Session,
        lock_service: LockService,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        self.db = db
        self.lock_service = lock_service
        self.lock_timeout = lock_timeout

    # =====================================================
    # mapping
    # =====================================================
    @staticmethod
    def to_entity(row: CartModel) -> Cart:
        return Cart(
            id=row.id,
            customer_phone=row.customer_phone,
            items=[CartItem.model_validate(i) for i in (row.items or [])],
            total=Decimal(row.total if row.total is not None else 0),
            coupon_code=row.coupon_code,
            shipping_address=row.shipping_address,
            status=CartStatus(row.status),
            expires_at=_as_utc(row.expires_at),
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
            reminder_1_sent_at=_as_utc(row.reminder_1_sent_at),
            reminder_2_sent_at=_as_utc(row.reminder_2_sent_at),
            reminder_3_sent_at=_as_utc(row.reminder_3_sent_at),
            recovered=bool(row.recovered),
            recovered_order_id=row.recovered_order_id,
            recovered_revenue=row.recovered_revenue,
        )

    @staticmethod
    def _prepare(patch: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(patch)

        if "items" in data:
            data["items"] = [
                i.model_dump(mode="json") if isinstance(i, CartItem) else i
                for i in data["items"]
            ]
        if isinstance(data.get("status"), CartStatus):
            data["status"] = data["status"].value

        data.setdefault("updated_at", utcnow())
        return data

    def _select(self):
        # populate_existing: po UPDATE nie chcemy starych obiektow z identity map
        return select(CartModel).execution_options(populate_existing=True)

    def _one(self, stmt) -> Cart | None:
        row = self.db.execute(stmt).scalars().first()
        return self.to_entity(row) if row else None

    def _many(self, stmt) -> List[Cart]:
        return [self.to_entity(r) for r in self.db.execute(stmt).scalars().all()]

    # =====================================================
    # transaction boundaries
    # =====================================================
    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    # =====================================================
    # unlocked reads
    # =====================================================
    def find(self, cart_id: int) -> Cart | None:
        return self._one(self._select().where(CartModel.id == cart_id))

    def find_active_by_customer(self, phone: str) -> Cart | None:
        return self._one(
            self._select()
            .where(
                CartModel.customer_phone == phone,
                CartModel.status == CartStatus.ACTIVE.value,
                CartModel.expires_at > utcnow(),
            )
            .order_by(CartModel.created_at.desc(), CartModel.id.desc())
            .limit(1)
        )

    def find_by_customer(self, phone: str, limit: int = 10) -> List[Cart]:
        return self._many(
            self._select()
            .where(CartModel.customer_phone == phone)
            .order_by(CartModel.created_at.desc(), CartModel.id.desc())
            .limit(limit)
        )

    # =====================================================
    # locked reads (SELECT ... FOR UPDATE)
    # =====================================================
    def find_for_update(self, cart_id: int) -> Cart | None:
        return self._one(
            self._select().where(CartModel.id == cart_id).with_for_update()
        )

    def find_active_by_customer_for_update(self, phone: str, include_expired: bool = False) -> Cart | None:
        stmt = self._select().where(
            CartModel.customer_phone == phone,
            CartModel.status == CartStatus.ACTIVE.value,
        )
        if not include_expired:
            stmt = stmt.where(CartModel.expires_at > utcnow())

        return self._one(
            stmt.order_by(CartModel.created_at.desc(), CartModel.id.desc())
            .limit(1)
            .with_for_update()
        )

    def find_open_by_customer_for_update(self, phone: str) -> Cart | None:
        """Newest ACTIVE or ABANDONED cart, locked. Used at checkout completion."""
        return self._one(
            self._select()
            .where(
                CartModel.customer_phone == phone,
                CartModel.status.in_(
                    [CartStatus.ACTIVE.value, CartStatus.ABANDONED.value]
                ),
            )
            .order_by(CartModel.updated_at.desc(), CartModel.id.desc())
            .limit(1)
            .with_for_update()
        )

    # =====================================================
    # writes
    # =====================================================
    def create(self, phone: str, expires_at: datetime) -> int:
        now = utcnow()
        row = CartModel(
            customer_phone=phone,
            items=[],
            total=Decimal("0.00"),
            status=CartStatus.ACTIVE.value,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
            recovered=False,
        )
        self.db.add(row)
        self.db.flush()
        return row.id

    def update(self, cart_id: int, patch: Dict[str, Any]) -> bool:
        exists = self.db.execute(
            select(CartModel.id).where(CartModel.id == cart_id)
        ).first()
        if not exists:
            return False

        self.update_locked(cart_id, patch)
        return True

    def update_locked(self, cart_id: int, patch: Dict[str, Any]) -> None:
        """Write without an existence check; the caller already holds the row lock."""
        self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id)
            .values(**self._prepare(patch))
            .execution_options(synchronize_session=False)
        )

    def find_or_create_for_update(self, phone: str, expires_at: datetime) -> Cart:
        """
        Atomowy find-or-create pod lockiem klienta.

        The lock is held only while existence is decided; the open transaction
        and the row lock protect the rest of the caller's work.
        """
        with self.lock_service.hold(cart_lock_key(phone), self.lock_timeout):
            cart = self.find_active_by_customer_for_update(phone, include_expired=True)

            if cart is not None and cart.is_expired():
                logger.info(f"Cart {cart.id} for {phone} passed its expiry, marking expired")
                self.update_locked(cart.id, {"status": CartStatus.EXPIRED})
                cart = None

            if cart is not None:
                return cart

            try:
                with self.db.begin_nested():
                    cart_id = self.create(phone, expires_at)
            except IntegrityError:
                # inny proces wstawil aktywny koszyk, czekamy na jego commit i bierzemy go
                logger.warning(f"Concurrent cart creation for {phone}, using the existing cart")
                cart = self.find_active_by_customer_for_update(phone)
                if cart is None:
                    raise InfrastructureError("Failed to create or lock cart")
                return cart

            cart = self.find_for_update(cart_id)
            if cart is None:
                raise InfrastructureError("Failed to lock newly created cart")

            logger.info(f"Created cart {cart_id} for {phone}")
            return cart

    def mark_recovered(self, cart_id: int, order_id: int) -> bool:
        """Lock an ABANDONED row and convert it with recovery fields. Idempotent."""
        cart = self.find_for_update(cart_id)
        if cart is None:
            return False

        if cart.recovered:
            logger.info(f"Cart {cart_id} already recovered, skipping")
            return False

        if cart.status != CartStatus.ABANDONED:
            logger.info(f"Cart {cart_id} is {cart.status.value}, only abandoned carts are recovered")
            return False

        self.update_locked(
            cart_id,
            {
                "status": CartStatus.CONVERTED,
                "recovered": True,
                "recovered_order_id": order_id,
                "recovered_revenue": cart.total,
            },
        )
        return True

    # =====================================================
    # abandoned-cart scheduler hooks
    # =====================================================
    def find_inactive(self, hours: int = 1, limit: int = 100) -> List[Cart]:
        """Active, unexpired, non-empty carts untouched for `hours`."""
        now = utcnow()
        carts = self._many(
            self._select()
            .where(
                CartModel.status == CartStatus.ACTIVE.value,
                CartModel.updated_at < now - timedelta(hours=hours),
                CartModel.expires_at > now,
            )
            .order_by(CartModel.updated_at.asc())
        )
        return [c for c in carts if not c.is_empty()][:limit]

    def mark_abandoned(self, cart_id: int) -> bool:
        # updated_at zostaje, przypomnienia licza czas od ostatniej aktywnosci klienta
        result = self.db.execute(
            update(CartModel)
            .where(
                CartModel.id == cart_id,
                CartModel.status == CartStatus.ACTIVE.value,
            )
            .values(status=CartStatus.ABANDONED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def find_abandoned(self, hours: int = 24) -> List[Cart]:
        return self._many(
            self._select()
            .where(
                CartModel.status == CartStatus.ABANDONED.value,
                CartModel.updated_at < utcnow() - timedelta(hours=hours),
            )
            .order_by(CartModel.updated_at.asc())
        )

    def find_due_for_reminder(self, reminder_number: int, delay_hours: int, limit: int = 50) -> List[Cart]:
        column = REMINDER_COLUMNS.get(reminder_number)
        if column is None:
            return []

        conditions = [
            CartModel.status == CartStatus.ABANDONED.value,
            column.is_(None),
            CartModel.updated_at < utcnow() - timedelta(hours=delay_hours),
        ]
        # przypomnienie 2 i 3 tylko po wyslaniu poprzedniego
        previous = REMINDER_COLUMNS.get(reminder_number - 1)
        if previous is not None:
            conditions.append(previous.is_not(None))

        return self._many(
            self._select()
            .where(*conditions)
            .order_by(CartModel.updated_at.asc())
            .limit(limit)
        )

    def mark_reminder_sent(self, cart_id: int, reminder_number: int) -> bool:
        column = REMINDER_COLUMNS.get(reminder_number)
        if column is None:
            return False

        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id)
            .values({column.key: utcnow()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # =====================================================
    # sweeps
    # =====================================================
    def find_expired(self, limit: int | None = None) -> List[Cart]:
        stmt = (
            self._select()
            .where(
                CartModel.status == CartStatus.ACTIVE.value,
                CartModel.expires_at < utcnow(),
            )
            .order_by(CartModel.expires_at.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._many(stmt)

    def expire_stale(self, batch_size: int = 100) -> int:
        """Flip one batch of past-expiry ACTIVE carts to EXPIRED."""
        now = utcnow()
        ids = self.db.execute(
            select(CartModel.id)
            .where(
                CartModel.status == CartStatus.ACTIVE.value,
                CartModel.expires_at < now,
            )
            .order_by(CartModel.expires_at.asc())
            .limit(batch_size)
        ).scalars().all()

        if not ids:
            return 0

        result = self.db.execute(
            update(CartModel)
            .where(
                CartModel.id.in_(ids),
                CartModel.status == CartStatus.ACTIVE.value,
            )
            .values(status=CartStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def purge_expired(self, batch_size: int = 100) -> int:
        """Delete one batch of EXPIRED carts."""
        ids = self.db.execute(
            select(CartModel.id)
            .where(CartModel.status == CartStatus.EXPIRED.value)
            .order_by(CartModel.id.asc())
            .limit(batch_size)
        ).scalars().all()

        if not ids:
            return 0

        result = self.db.execute(
            delete(CartModel)
            .where(CartModel.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # =====================================================
    # reporting
    # =====================================================
    def converted_value_by_customer(self, phone: str) -> Decimal:
        total = self.db.execute(
            select(func.sum(CartModel.total)).where(
                CartModel.customer_phone == phone,
                CartModel.status == CartStatus.CONVERTED.value,
            )
        ).scalar()
        return Decimal(total or 0)

    def recovery_stats(self, start: datetime, end: datetime) -> Dict[str, Any]:
        recovered_flag = CartModel.recovered.is_(True)
        row = self.db.execute(
            select(
                func.count(CartModel.id),
                func.sum(case((recovered_flag, 1), else_=0)),
                func.sum(case((recovered_flag, CartModel.recovered_revenue), else_=0)),
            ).where(
                or_(
                    CartModel.status == CartStatus.ABANDONED.value,
                    recovered_flag,
                ),
                CartModel.created_at.between(start, end),
            )
        ).one()

        total_abandoned = int(row[0] or 0)
        recovered_count = int(row[1] or 0)
        recovered_revenue = Decimal(row[2] or 0).quantize(Decimal("0.01"))
        recovery_rate = (
            round(recovered_count / total_abandoned * 100, 2) if total_abandoned else 0.0
        )

        return {
            "total_abandoned": total_abandoned,
            "recovered_count": recovered_count,
            "recovered_revenue": recovered_revenue,
            "recovery_rate": recovery_rate,
        }
