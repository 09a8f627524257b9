# cartsync/services/cart_cache.py
from typing import Dict, Iterable, Set, Tuple

import redis
from redis.exceptions import RedisError, WatchError

from cartsync.domain.errors import StoreUnavailable
from cartsync.utils.retry import redis_read_retry
from cartsync.utils.settings import (
    REDIS_URL,
    CART_TTL_SECONDS,
    CART_KEY_PREFIX,
    DIRTY_CARTS_KEY,
)
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


def parse_cart(raw: Dict[str, str]) -> Dict[int, int]:
    """Redis hash (strings) -> {product_id: quantity}, dropping non-positive entries."""
    cart: Dict[int, int] = {}
    for field, value in raw.items():
        try:
            product_id, quantity = int(field), int(value)
        except (TypeError, ValueError):
            logger.warning(f"Skipping malformed cart field {field!r}={value!r}")
            continue
        if quantity > 0:
            cart[product_id] = quantity
    return cart


class CartCache:
    """
    Fast path for carts:
    -cart:<user_id> hash, product_id -> quantity, sliding TTL
    -dirtyCarts set, users whose durable mirror may be stale

    Every mutation (fields + EXPIRE + SADD) goes out as one MULTI/EXEC,
    so either all of it lands or none of it does.
    """

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        ttl: int = CART_TTL_SECONDS,
        key_prefix: str = CART_KEY_PREFIX,
        dirty_key: str = DIRTY_CARTS_KEY,
    ):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )
        self.ttl = ttl
        self.key_prefix = key_prefix
        self.dirty_key = dirty_key

    def cart_key(self, user_id: str) -> str:
        return f"{self.key_prefix}{user_id}"

    # =====================================================
    # QUERY
    # =====================================================
    def get(self, user_id: str) -> Dict[int, int]:
        try:
            raw = self._hgetall(self.cart_key(user_id))
        except RedisError as e:
            raise StoreUnavailable(f"Cache read failed for user {user_id}: {e}") from e
        return parse_cart(raw)

    def dirty_users(self) -> Set[str]:
        try:
            return set(self._smembers(self.dirty_key))
        except RedisError as e:
            raise StoreUnavailable(f"Cannot read dirty set: {e}") from e

    def is_dirty(self, user_id: str) -> bool:
        try:
            return bool(self.redis.sismember(self.dirty_key, user_id))
        except RedisError as e:
            raise StoreUnavailable(f"Cannot read dirty set: {e}") from e

    @redis_read_retry()
    def _hgetall(self, key: str) -> Dict[str, str]:
        return self.redis.hgetall(key)

    @redis_read_retry()
    def _smembers(self, key: str):
        return self.redis.smembers(key)

    # =====================================================
    # COMMANDS
    # =====================================================
    def increment(self, user_id: str, product_id: int, delta: int) -> int:
        key = self.cart_key(user_id)
        results = self._execute(user_id, lambda pipe: pipe.hincrby(key, str(product_id), delta))
        return int(results[0])

    def set_quantity(self, user_id: str, product_id: int, quantity: int) -> None:
        key = self.cart_key(user_id)

        def _write(pipe):
            if quantity <= 0:
                pipe.hdel(key, str(product_id))
            else:
                pipe.hset(key, str(product_id), str(quantity))

        self._execute(user_id, _write)

    def apply_bulk(self, user_id: str, items: Iterable[Tuple[int, int]]) -> None:
        key = self.cart_key(user_id)

        def _write(pipe):
            for product_id, quantity in items:
                if quantity > 0:
                    pipe.hset(key, str(product_id), str(quantity))
                else:
                    pipe.hdel(key, str(product_id))

        self._execute(user_id, _write)

    def restore(self, user_id: str, items: Dict[int, int]) -> None:
        """Repopulate from the durable mirror. Does not mark the user dirty."""
        if not items:
            return
        key = self.cart_key(user_id)
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.hset(key, mapping={str(p): str(q) for p, q in items.items()})
            pipe.expire(key, self.ttl)
            pipe.execute()
        except RedisError as e:
            raise StoreUnavailable(f"Cache restore failed for user {user_id}: {e}") from e

    def delete(self, user_id: str) -> None:
        try:
            self.redis.delete(self.cart_key(user_id))
        except RedisError as e:
            raise StoreUnavailable(f"Cache delete failed for user {user_id}: {e}") from e

    def clear(self, user_id: str) -> None:
        """Drops the cart and marks the user dirty in one MULTI/EXEC."""
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.delete(self.cart_key(user_id))
            pipe.sadd(self.dirty_key, user_id)
            pipe.execute()
        except RedisError as e:
            raise StoreUnavailable(f"Cache clear failed for user {user_id}: {e}") from e

    def unmark_dirty_if_unchanged(self, user_id: str, flushed: Dict[int, int]) -> bool:
        """
        SREM the user only if the cart still equals what was flushed.
        Returns False (user stays dirty) when a write landed in between.
        """
        key = self.cart_key(user_id)
        try:
            with self.redis.pipeline(transaction=True) as pipe:
                pipe.watch(key)
                if parse_cart(pipe.hgetall(key)) != flushed:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.srem(self.dirty_key, user_id)
                pipe.execute()
        except WatchError:
            return False
        except RedisError as e:
            raise StoreUnavailable(f"Cannot unmark user {user_id}: {e}") from e
        return True

    def _execute(self, user_id: str, write) -> list:
        key = self.cart_key(user_id)
        try:
            pipe = self.redis.pipeline(transaction=True)
            write(pipe)
            pipe.expire(key, self.ttl)
            pipe.sadd(self.dirty_key, user_id)
            return pipe.execute()
        except RedisError as e:
            raise StoreUnavailable(f"Cache write failed for user {user_id}: {e}") from e
