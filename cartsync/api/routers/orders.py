# cartsync/api/routers/orders.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from cartsync.api.deps import get_user_id
from cartsync.data.database import get_db
from cartsync.domain.schemas import OrderOut
from cartsync.repos.order_repo import OrderRepo

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    Order details, only for the user who placed it.
    """
    order = OrderRepo(db).get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.user_id != user_id:
        raise HTTPException(status_code=403, detail="No access to this order")
    return order
