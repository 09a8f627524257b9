# cartsync/services/product_client.py
from decimal import Decimal
from typing import Dict, Iterable

import requests
from requests import RequestException

from cartsync.domain.errors import StoreUnavailable
from cartsync.utils.retry import http_retry
from cartsync.utils.settings import PRODUCT_SERVICE_URL
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


class ProductClient:
    """Price lookup against a remote product service (GET /products/{id})."""

    def __init__(self, base_url: str | None = None, timeout: int = 2, session: requests.Session | None = None):
        self.base_url = (base_url or PRODUCT_SERVICE_URL).rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    @http_retry()
    def fetch_product(self, product_id: int) -> dict | None:
        url = f"{self.base_url}/products/{product_id}"
        logger.info(f"ProductClient GET {url}")

        resp = self.http.get(url, timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def get_prices(self, product_ids: Iterable[int]) -> Dict[int, Decimal]:
        prices: Dict[int, Decimal] = {}
        for product_id in product_ids:
            try:
                pdata = self.fetch_product(product_id)
            except RequestException as e:
                raise StoreUnavailable(f"Product service unavailable: {e}") from e
            if pdata is None:
                continue
            prices[product_id] = Decimal(str(pdata["price"]))
        return prices
