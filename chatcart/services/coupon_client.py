# chatcart/services/coupon_client.py
from urllib.parse import quote

from chatcart.services.http_client import HttpClient
from chatcart.domain.catalog import Coupon


class CouponClient(HttpClient):
    service_name = "coupon_service"

    def get_coupon(self, code: str) -> Coupon | None:
        data = self.get_json(f"/coupons/{quote(code, safe='')}")
        if data is None:
            return None
        return Coupon.model_validate(data)
