# cartsync/celery_worker.py
from celery import Celery

from cartsync.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    CART_SYNC_INTERVAL_SECONDS,
)

celery_app = Celery(
    "cartsync",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks must be imported explicitly so Celery registers them
celery_app.conf.imports = (
    "cartsync.tasks.sync",
)

# beat schedule; a tick nobody picked up within one period expires instead of piling up
celery_app.conf.beat_schedule = {
    "sync-dirty-carts": {
        "task": "cartsync.tasks.sync.sync_dirty_carts_task",
        "schedule": float(CART_SYNC_INTERVAL_SECONDS),
        "options": {"expires": CART_SYNC_INTERVAL_SECONDS},
    },
}

celery_app.conf.timezone = "UTC"
