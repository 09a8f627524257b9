# cartsync/api/__init__.py
from fastapi import FastAPI

from cartsync.api.errors import register_error_handlers
from cartsync.api.routers import carts, orders
from cartsync.api.routers.health import router as health_router


def create_app(lifespan=None) -> FastAPI:
    app = FastAPI(
        title="Cart Service",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_error_handlers(app)

    # Include routers
    app.include_router(health_router)
    app.include_router(carts.router)
    app.include_router(orders.router)

    return app
