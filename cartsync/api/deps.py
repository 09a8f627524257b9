# cartsync/api/deps.py
from functools import lru_cache

from fastapi import Header, HTTPException

from cartsync.services.cart_cache import CartCache
from cartsync.services.lock_service import LockService


@lru_cache
def get_cache() -> CartCache:
    return CartCache()


@lru_cache
def get_lock_service() -> LockService:
    return LockService()


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    # authentication happens upstream, it forwards the user id
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="User not authenticated")
    return x_user_id.strip()
