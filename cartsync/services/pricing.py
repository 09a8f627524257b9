# cartsync/services/pricing.py
from decimal import Decimal
from typing import Dict, Iterable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cartsync.domain.errors import StoreUnavailable
from cartsync.repos.product_repo import ProductRepo
from cartsync.services.product_client import ProductClient
from cartsync.utils.settings import PRODUCT_SERVICE_URL


class PriceLookup(Protocol):
    def get_prices(self, product_ids: Iterable[int]) -> Dict[int, Decimal]:
        """Current unit prices; ids that do not resolve are left out."""
        ...


class CatalogPriceLookup:
    """Prices straight from the products table."""

    def __init__(self, db: Session):
        self.repo = ProductRepo(db)

    def get_prices(self, product_ids: Iterable[int]) -> Dict[int, Decimal]:
        try:
            return self.repo.get_prices(product_ids)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Price lookup failed: {e}") from e


def get_price_lookup(db: Session) -> PriceLookup:
    if PRODUCT_SERVICE_URL:
        return ProductClient(PRODUCT_SERVICE_URL)
    return CatalogPriceLookup(db)
