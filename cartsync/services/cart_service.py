from typing import Dict, Iterable, List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cartsync.domain.errors import InvalidInput, StoreUnavailable
from cartsync.repos.cart_repo import CartRepo
from cartsync.services.cart_cache import CartCache
from cartsync.services.lock_service import LockService
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_product_id(product_id) -> int:
    if not _is_int(product_id) or product_id <= 0:
        raise InvalidInput(f"Invalid product id: {product_id!r}")
    return product_id


def validate_quantity(quantity, allow_removal: bool) -> int:
    if quantity is None and allow_removal:
        return 0
    if not _is_int(quantity):
        raise InvalidInput(f"Quantity must be an integer, got {quantity!r}")
    if quantity <= 0 and not allow_removal:
        raise InvalidInput("Quantity must be greater than 0")
    return quantity


class CartService:
    """
    Request-facing cart use cases.
    commands (add, update, bulk, clear) only touch the cache and mark the user dirty,
    query (get) falls back to the durable mirror when the cache entry is gone
    """

    def __init__(self, db: Session, cache: CartCache, lock_service: LockService):
        self.repo = CartRepo(db)
        self.cache = cache
        self.lock_service = lock_service

    #query
    def get_cart(self, user_id: str) -> Dict[int, int]:
        cart = self.cache.get(user_id)
        if cart:
            return cart

        #empty cache + dirty user = the user emptied it, the mirror is stale
        if self.cache.is_dirty(user_id):
            return {}

        #cache miss -> fallback-restore from postgres
        try:
            items = self.repo.get_items_for_user(user_id)
        except SQLAlchemyError as e:
            self.repo.rollback()
            raise StoreUnavailable(f"Database read failed for user {user_id}: {e}") from e

        if not items:
            return {}

        logger.info(f"Restoring cart of user {user_id} from database ({len(items)} items)")
        # already consistent with the mirror, so the user is not marked dirty
        self.cache.restore(user_id, items)
        return items

    #commands
    def add_item(self, user_id: str, product_id, quantity) -> int:
        product_id = validate_product_id(product_id)
        quantity = validate_quantity(quantity, allow_removal=False)

        new_quantity = self.cache.increment(user_id, product_id, quantity)
        logger.info(f"Added {quantity} x product {product_id} for user {user_id}, now {new_quantity}")
        return new_quantity

    def update_item(self, user_id: str, product_id, quantity) -> None:
        product_id = validate_product_id(product_id)
        quantity = validate_quantity(quantity, allow_removal=True)

        self.cache.set_quantity(user_id, product_id, quantity)
        if quantity > 0:
            logger.info(f"Set product {product_id} to {quantity} for user {user_id}")
        else:
            logger.info(f"Removed product {product_id} for user {user_id}")

    def remove_item(self, user_id: str, product_id) -> None:
        self.update_item(user_id, product_id, 0)

    def bulk_update(self, user_id: str, items: Iterable) -> int:
        """
        Use Case: absolute quantities for many products at once.
        Accepts (product_id, quantity) pairs or dicts with product_id/quantity keys.
        Everything is validated before the first write.
        """
        if items is None or isinstance(items, (str, bytes, dict)):
            raise InvalidInput("Items must be a list")

        updates: List[Tuple[int, int]] = []
        for item in items:
            if isinstance(item, dict):
                product_id, quantity = item.get("product_id"), item.get("quantity")
            else:
                try:
                    product_id, quantity = item
                except (TypeError, ValueError):
                    raise InvalidInput(f"Malformed bulk item: {item!r}")
            updates.append(
                (
                    validate_product_id(product_id),
                    validate_quantity(quantity, allow_removal=True),
                )
            )

        if not updates:
            return 0

        self.cache.apply_bulk(user_id, updates)
        logger.info(f"Bulk updated {len(updates)} items for user {user_id}")
        return len(updates)

    def clear_cart(self, user_id: str) -> None:
        #lock so a sync flush cannot recreate the row we delete
        with self.lock_service.user_lock(user_id):
            #cache first: if the database fails the user is already dirty and the next sync prunes the mirror
            self.cache.clear(user_id)

            try:
                deleted = self.repo.delete_cart_for_user(user_id)
                self.repo.commit()
            except SQLAlchemyError as e:
                self.repo.rollback()
                raise StoreUnavailable(f"Database delete failed for user {user_id}: {e}") from e

        logger.info(f"Cleared cart of user {user_id} (durable rows deleted: {deleted})")
