# cartsync/repos/product_repo.py
from decimal import Decimal
from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from cartsync.data.models.product import ProductModel


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_prices(self, product_ids: Iterable[int]) -> Dict[int, Decimal]:
        ids = list(product_ids)
        if not ids:
            return {}
        rows = self.db.execute(
            select(ProductModel.id, ProductModel.price).where(ProductModel.id.in_(ids))
        ).all()
        return {product_id: Decimal(str(price)) for product_id, price in rows}
