# cartsync/api/errors.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cartsync.domain.errors import (
    CartError,
    CartLocked,
    CheckoutFailed,
    EmptyCart,
    InvalidInput,
    ProductNotFound,
    StoreUnavailable,
)
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

_STATUS = [
    (InvalidInput, 400),
    (EmptyCart, 400),
    (ProductNotFound, 404),
    (CartLocked, 409),
    (StoreUnavailable, 503),
    (CheckoutFailed, 500),
]


def status_for(exc: CartError) -> int:
    for exc_type, status in _STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CartError)
    async def cart_error_handler(request: Request, exc: CartError):
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")

        body = {"error": str(exc)}
        if isinstance(exc, ProductNotFound):
            body["product_ids"] = exc.product_ids
        return JSONResponse(status_code=status, content=body)
