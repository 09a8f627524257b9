# cartsync/repos/cart_repo.py
from datetime import datetime
from typing import Dict

from sqlalchemy import select, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from cartsync.data.models.cart import CartModel
from cartsync.data.models.cart_item import CartItemModel


def _insert(db: Session, model):
    #ON CONFLICT lives in the dialect-specific insert
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


class CartRepo:
    """Durable mirror of the cache-side carts. Never commits on its own."""

    def __init__(self, db: Session):
        self.db = db

    def get_items_for_user(self, user_id: str) -> Dict[int, int]:
        rows = self.db.execute(
            select(CartItemModel.product_id, CartItemModel.quantity)
            .join(CartModel, CartItemModel.cart_id == CartModel.id)
            .where(CartModel.user_id == user_id)
        ).all()
        return {product_id: quantity for product_id, quantity in rows if quantity > 0}

    def upsert_cart(self, user_id: str, now: datetime) -> int:
        stmt = _insert(self.db, CartModel).values(
            user_id=user_id,
            updated_at=now,
            last_synced_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CartModel.user_id],
            set_={"updated_at": now, "last_synced_at": now},
        )
        self.db.execute(stmt)

        return self.db.execute(
            select(CartModel.id).where(CartModel.user_id == user_id)
        ).scalar_one()

    def replace_items(self, cart_id: int, items: Dict[int, int], now: datetime) -> None:
        self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.cart_id == cart_id)
            .execution_options(synchronize_session=False)
        )

        if not items:
            return

        stmt = _insert(self.db, CartItemModel).values(
            [
                {
                    "cart_id": cart_id,
                    "product_id": product_id,
                    "quantity": quantity,
                    "updated_at": now,
                }
                for product_id, quantity in items.items()
            ]
        )
        # racing insert for the same (cart, product) must not break uniqueness
        stmt = stmt.on_conflict_do_update(
            index_elements=[CartItemModel.cart_id, CartItemModel.product_id],
            set_={"quantity": stmt.excluded.quantity, "updated_at": now},
        )
        self.db.execute(stmt)

    def delete_cart_for_user(self, user_id: str) -> int:
        cart_ids = select(CartModel.id).where(CartModel.user_id == user_id)
        #items explicitly, sqlite without PRAGMA foreign_keys does not cascade
        self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.cart_id.in_(cart_ids))
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(
            delete(CartModel)
            .where(CartModel.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
