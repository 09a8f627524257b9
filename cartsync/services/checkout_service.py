# cartsync/services/checkout_service.py
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cartsync.data.models.order import OrderModel
from cartsync.data.models.order_item import OrderItemModel
from cartsync.domain.errors import CheckoutFailed, EmptyCart, ProductNotFound, StoreUnavailable
from cartsync.repos.cart_repo import CartRepo
from cartsync.repos.order_repo import OrderRepo
from cartsync.services.cart_cache import CartCache
from cartsync.services.lock_service import LockService
from cartsync.services.pricing import PriceLookup
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

_CENT = Decimal("0.01")


def generate_order_number(user_id: str) -> str:
    return f"ORD-{int(time.time() * 1000)}-{user_id[:4]}-{secrets.token_hex(3)}"


class CheckoutService:
    """
    Turns the cache-side cart into an order.
    Separate from CartService, it is the only path that writes orders.
    """

    def __init__(
        self,
        db: Session,
        cache: CartCache,
        lock_service: LockService,
        price_lookup: PriceLookup,
    ):
        self.db = db
        self.cart_repo = CartRepo(db)
        self.order_repo = OrderRepo(db)
        self.cache = cache
        self.lock_service = lock_service
        self.price_lookup = price_lookup

    def checkout(self, user_id: str) -> int:
        """
        Use Case: checkout.

        1. Reads the cart from the cache
        2. Prices every product with fresh prices
        3. Inserts order + order items and drops the durable cart in one transaction
        4. Deletes the cache cart once the order is committed

        Returns the order id.
        """
        # the lock keeps a sync flush from recreating the durable cart mid-checkout
        with self.lock_service.user_lock(user_id):
            cart = self.cache.get(user_id)
            if not cart:
                raise EmptyCart(user_id)

            prices = self.price_lookup.get_prices(cart.keys())
            missing = set(cart) - set(prices)
            if missing:
                logger.warning(f"Checkout of user {user_id} refused, unknown products {sorted(missing)}")
                raise ProductNotFound(missing)

            total = sum(
                (prices[product_id] * quantity for product_id, quantity in cart.items()),
                Decimal("0.00"),
            ).quantize(_CENT)

            order_id = self._place_order(user_id, cart, prices, total)

            try:
                self.cache.delete(user_id)
            except StoreUnavailable as e:
                # order is committed and authoritative, the cache cart will expire
                logger.error(f"Order {order_id} placed but cache cart of user {user_id} not cleared: {e}")

        logger.info(f"Order {order_id} placed for user {user_id}, total {total}")
        return order_id

    def _place_order(self, user_id, cart, prices, total) -> int:
        order = OrderModel(
            order_number=generate_order_number(user_id),
            user_id=user_id,
            status="pending",
            placed_at=datetime.now(timezone.utc),
            total_amount=total,
            items=[
                OrderItemModel(
                    product_id=product_id,
                    quantity=quantity,
                    price=prices[product_id],
                )
                for product_id, quantity in cart.items()
            ],
        )

        try:
            created = self.order_repo.create_order(order)
            #durable cart goes in the same transaction so fallback-restore cannot bring it back
            self.cart_repo.delete_cart_for_user(user_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Checkout transaction for user {user_id} rolled back: {e}")
            raise CheckoutFailed(f"Checkout failed for user {user_id}") from e

        return created.id
