# chatcart/services/product_client.py
from chatcart.services.http_client import HttpClient
from chatcart.domain.catalog import ProductInfo


class ProductClient(HttpClient):
    service_name = "product_service"

    def get_product(self, product_id: int, variation_id: int | None = None) -> ProductInfo | None:
        # wariant ma wlasna cene i stan, pytamy o niego jesli jest
        data = self.get_json(f"/products/{variation_id or product_id}")
        if data is None:
            return None
        return ProductInfo.model_validate(data)
