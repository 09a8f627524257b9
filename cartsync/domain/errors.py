# cartsync/domain/errors.py


class CartError(Exception):
    """Base for failures reported to request handlers."""


class InvalidInput(CartError, ValueError):
    pass


class StoreUnavailable(CartError):
    """Redis or database could not be reached. Safe to retry."""


class CartLocked(StoreUnavailable):
    """Another clear/checkout/sync holds the user's cart lock."""

    def __init__(self, user_id: str):
        super().__init__(f"Cart for user {user_id} is busy, retry later")
        self.user_id = user_id


class EmptyCart(CartError):
    def __init__(self, user_id: str):
        super().__init__(f"Cart for user {user_id} is empty")
        self.user_id = user_id


class ProductNotFound(CartError):
    def __init__(self, product_ids):
        self.product_ids = sorted(product_ids)
        super().__init__(f"Products not found: {self.product_ids}")


class CheckoutFailed(CartError):
    pass


class ReconcileFailed(Exception):
    """Raised for a single user inside a sync run, never outside it."""

    def __init__(self, user_id: str, reason: str):
        super().__init__(f"Sync failed for user {user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason
