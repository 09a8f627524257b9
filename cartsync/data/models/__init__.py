#import all models so SQLAlchemy registers them in Base.metadata

from cartsync.data.models.cart import CartModel
from cartsync.data.models.cart_item import CartItemModel
from cartsync.data.models.order import OrderModel
from cartsync.data.models.order_item import OrderItemModel
from cartsync.data.models.product import ProductModel

__all__ = ["CartModel", "CartItemModel", "OrderModel", "OrderItemModel", "ProductModel"]
