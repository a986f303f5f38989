# chatcart/data/models/cart.py
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, Numeric, String, text

from chatcart.data.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    customer_phone = Column(String(32), nullable=False)

    items = Column(JSON, nullable=False, default=list)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    coupon_code = Column(String(100), nullable=True)
    shipping_address = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default="active")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    reminder_1_sent_at = Column(DateTime(timezone=True), nullable=True)
    reminder_2_sent_at = Column(DateTime(timezone=True), nullable=True)
    reminder_3_sent_at = Column(DateTime(timezone=True), nullable=True)

    recovered = Column(Boolean, nullable=False, default=False)
    recovered_order_id = Column(Integer, nullable=True)
    recovered_revenue = Column(Numeric(10, 2), nullable=True)

    __table_args__ = (
        # backstop for the locked find-or-create: one active cart per phone
        Index(
            "uq_carts_active_phone",
            "customer_phone",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_carts_phone_status", "customer_phone", "status"),
        Index("ix_carts_status_expires", "status", "expires_at"),
        Index("ix_carts_status_updated", "status", "updated_at"),
    )
