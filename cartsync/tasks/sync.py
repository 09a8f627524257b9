# cartsync/tasks/sync.py
from cartsync.celery_worker import celery_app
from cartsync.data.database import SessionLocal
from cartsync.services.cart_cache import CartCache
from cartsync.services.cart_sync import CartReconciler
from cartsync.services.lock_service import LockService
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

_reconciler: CartReconciler | None = None


def get_reconciler() -> CartReconciler:
    # one per worker process, its guard lock has to outlive a single task
    global _reconciler
    if _reconciler is None:
        _reconciler = CartReconciler(
            session_factory=SessionLocal,
            cache=CartCache(),
            lock_service=LockService(),
        )
    return _reconciler


@celery_app.task(name="cartsync.tasks.sync.sync_dirty_carts_task")
def sync_dirty_carts_task():
    logger.info("Cart sync task started")
    summary = get_reconciler().run()
    return summary.model_dump(mode="json")
