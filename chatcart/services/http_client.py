# chatcart/services/http_client.py
import requests

from chatcart.exceptions import InfrastructureError
from chatcart.utils.logging import get_logger
from chatcart.utils.retry import http_retry

logger = get_logger(__name__)


class HttpClient:
    """GET JSON from a collaborator service. 404 maps to None."""

    service_name = "service"

    def __init__(self, base_url: str, timeout: float = 2, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @http_retry()
    def _get(self, path: str, params: dict | None = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        logger.info(f"{self.__class__.__name__} GET {url}")
        return self.session.get(url, params=params, timeout=self.timeout)

    def get_json(self, path: str, params: dict | None = None) -> dict | None:
        try:
            resp = self._get(path, params=params)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            logger.error(f"{self.service_name} request {path} failed: {e}")
            raise InfrastructureError(
                f"{self.service_name} unavailable",
                code=f"{self.service_name}_unavailable",
            ) from e
