# chatcart/services/customer_client.py
from chatcart.services.http_client import HttpClient
from chatcart.domain.catalog import CustomerAccount


class CustomerClient(HttpClient):
    service_name = "customer_service"

    def find_by_phone(self, phone: str) -> CustomerAccount | None:
        data = self.get_json("/customers", params={"phone": phone})
        if not data:
            return None
        # lista albo pojedynczy obiekt, bierzemy pierwszy
        if isinstance(data, list):
            data = data[0]
        return CustomerAccount.model_validate(data)
