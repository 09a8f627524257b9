#cartsync/api/routers/carts.py
from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cartsync.api.deps import get_cache, get_lock_service, get_user_id
from cartsync.data.database import get_db
from cartsync.domain.schemas import BulkUpdateIn, CheckoutOut, ItemIn, ItemUpdateIn, MessageOut
from cartsync.repos.order_repo import OrderRepo
from cartsync.services.cart_cache import CartCache
from cartsync.services.cart_service import CartService
from cartsync.services.checkout_service import CheckoutService
from cartsync.services.lock_service import LockService
from cartsync.services.pricing import get_price_lookup

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(
    db: Session = Depends(get_db),
    cache: CartCache = Depends(get_cache),
    lock_service: LockService = Depends(get_lock_service),
) -> CartService:
    return CartService(db=db, cache=cache, lock_service=lock_service)


def get_checkout_service(
    db: Session = Depends(get_db),
    cache: CartCache = Depends(get_cache),
    lock_service: LockService = Depends(get_lock_service),
) -> CheckoutService:
    return CheckoutService(
        db=db,
        cache=cache,
        lock_service=lock_service,
        price_lookup=get_price_lookup(db),
    )


@router.post("/add", response_model=MessageOut)
def add_item(payload: ItemIn, user_id: str = Depends(get_user_id), svc: CartService = Depends(get_service)):
    svc.add_item(user_id, payload.product_id, payload.quantity)
    return {"message": "Item added to cart"}


@router.get("", response_model=Dict[int, int])
def get_cart(user_id: str = Depends(get_user_id), svc: CartService = Depends(get_service)):
    return svc.get_cart(user_id)


@router.put("/update", response_model=MessageOut)
def update_item(payload: ItemUpdateIn, user_id: str = Depends(get_user_id), svc: CartService = Depends(get_service)):
    svc.update_item(user_id, payload.product_id, payload.quantity)
    return {"message": "Cart updated"}


@router.delete("/items/{product_id}", response_model=MessageOut)
def remove_item(product_id: int, user_id: str = Depends(get_user_id), svc: CartService = Depends(get_service)):
    svc.remove_item(user_id, product_id)
    return {"message": "Item removed from cart"}


@router.post("/update-bulk", response_model=MessageOut)
def bulk_update(payload: BulkUpdateIn, user_id: str = Depends(get_user_id), svc: CartService = Depends(get_service)):
    svc.bulk_update(user_id, [item.model_dump() for item in payload.items])
    return {"message": "Cart updated in bulk"}


@router.delete("/clear", response_model=MessageOut)
def clear_cart(user_id: str = Depends(get_user_id), svc: CartService = Depends(get_service)):
    svc.clear_cart(user_id)
    return {"message": "Cart cleared"}


@router.post("/checkout", response_model=CheckoutOut)
def checkout(
    user_id: str = Depends(get_user_id),
    svc: CheckoutService = Depends(get_checkout_service),
    db: Session = Depends(get_db),
):
    order_id = svc.checkout(user_id)
    order = OrderRepo(db).get_order(order_id)
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "total_amount": order.total_amount,
    }
