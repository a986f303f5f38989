# chatcart/data/models/coupon_usage.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from chatcart.data.database import Base


class CouponPhoneUsageModel(Base):
    __tablename__ = "coupon_phone_usage"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, nullable=False, index=True)
    phone = Column(String(32), nullable=False)
    order_id = Column(Integer, nullable=False)
    used_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("coupon_id", "phone", "order_id", name="u_coupon_phone_order"),
    )
