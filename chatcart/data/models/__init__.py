#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from chatcart.data.models.cart import CartModel
from chatcart.data.models.coupon_usage import CouponPhoneUsageModel

__all__ = ["CartModel", "CouponPhoneUsageModel"]
