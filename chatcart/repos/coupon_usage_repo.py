# chatcart/repos/coupon_usage_repo.py
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatcart.data.models.coupon_usage import CouponPhoneUsageModel
from chatcart.utils.logging import get_logger

logger = get_logger(__name__)


class CouponUsageRepo:
    """Append-only phone-keyed coupon usage ledger."""

    def __init__(self, db: Session):
        self.db = db

    def count_for_phone(self, coupon_id: int, phone: str) -> int:
        count = self.db.execute(
            select(func.count())
            .select_from(CouponPhoneUsageModel)
            .where(
                CouponPhoneUsageModel.coupon_id == coupon_id,
                CouponPhoneUsageModel.phone == phone,
            )
        ).scalar_one()
        return int(count)

    def record(self, coupon_id: int, phone: str, order_id: int) -> bool:
        """Insert one usage row. Returns False if this order was already recorded."""
        try:
            # savepoint, duplikat nie moze zepsuc transakcji wywolujacego
            with self.db.begin_nested():
                self.db.add(
                    CouponPhoneUsageModel(
                        coupon_id=coupon_id,
                        phone=phone,
                        order_id=order_id,
                        used_at=datetime.now(timezone.utc),
                    )
                )
        except IntegrityError:
            logger.info(
                f"Coupon {coupon_id} usage for order {order_id} already recorded, skipping"
            )
            return False

        logger.info(f"Recorded coupon {coupon_id} usage for {phone}, order {order_id}")
        return True
