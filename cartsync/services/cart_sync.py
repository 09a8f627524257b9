# cartsync/services/cart_sync.py
import threading
from datetime import datetime, timezone
from typing import Callable, Dict

from sqlalchemy.orm import Session

from cartsync.domain.errors import CartLocked, ReconcileFailed, StoreUnavailable
from cartsync.domain.schemas import SyncRunSummary
from cartsync.repos.cart_repo import CartRepo
from cartsync.services.cart_cache import CartCache
from cartsync.services.lock_service import LockService
from cartsync.utils.settings import CART_SYNC_RUN_LOCK_TTL_SECONDS, CART_SYNC_PRUNE_EMPTY
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

SYNCED = "synced"
PRUNED = "pruned"


class CartReconciler:
    """
    Flushes dirty cache carts into the durable mirror.

    One run snapshots the dirty set and handles each user on its own:
    a user whose flush fails stays dirty for the next run, the others
    carry on. Runs never overlap, neither inside one process (guard lock)
    nor across workers (redis job lock); an overlapping tick is skipped.
    """

    JOB_NAME = "cart-sync"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        cache: CartCache,
        lock_service: LockService,
        prune_empty: bool = CART_SYNC_PRUNE_EMPTY,
        run_lock_ttl: int = CART_SYNC_RUN_LOCK_TTL_SECONDS,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.lock_service = lock_service
        self.prune_empty = prune_empty
        self.run_lock_ttl = run_lock_ttl
        self._running = threading.Lock()

    def run(self) -> SyncRunSummary:
        summary = SyncRunSummary(started_at=datetime.now(timezone.utc))

        if not self._running.acquire(blocking=False):
            logger.warning("Cart sync already in progress in this worker, tick skipped")
            summary.skipped_run = True
            summary.finished_at = datetime.now(timezone.utc)
            return summary

        try:
            try:
                token = self.lock_service.acquire_job_lock(self.JOB_NAME, self.run_lock_ttl)
            except StoreUnavailable as e:
                logger.error(f"Cart sync could not take its run lock: {e}")
                token = None

            if token is None:
                logger.warning("Cart sync already in progress elsewhere, tick skipped")
                summary.skipped_run = True
                return summary

            try:
                self._run(summary, token)
            finally:
                self.lock_service.release_job_lock(self.JOB_NAME, token)
        finally:
            self._running.release()
            summary.finished_at = datetime.now(timezone.utc)

        logger.info(
            f"Cart sync finished for {summary.processed} users: {len(summary.synced)} synced, {len(summary.pruned)} pruned, "
            f"{len(summary.skipped)} skipped, {len(summary.failed)} failed"
        )
        return summary

    def _run(self, summary: SyncRunSummary, token: str) -> None:
        logger.info("Running cart sync job (dirty set)...")
        try:
            user_ids = self.cache.dirty_users()
        except StoreUnavailable as e:
            logger.error(f"Cannot snapshot dirty set, run aborted: {e}")
            return

        logger.info(f"Found {len(user_ids)} dirty carts")

        for user_id in sorted(user_ids):
            try:
                outcome = self.flush_user(user_id)
            except CartLocked:
                logger.info(f"Cart of user {user_id} is locked by clear/checkout, left dirty")
                summary.skipped.append(user_id)
            except ReconcileFailed as e:
                logger.error(str(e))
                summary.failed[user_id] = e.reason
            except Exception as e:
                logger.exception(f"Unexpected failure syncing user {user_id}")
                summary.failed[user_id] = str(e) or type(e).__name__
            else:
                if outcome == PRUNED:
                    summary.pruned.append(user_id)
                else:
                    summary.synced.append(user_id)

            # keep the run lock alive, a run longer than its ttl must not let another one start
            if not self.lock_service.extend_job_lock(self.JOB_NAME, token, self.run_lock_ttl):
                logger.error("Cart sync lost its run lock, stopping; remaining users stay dirty")
                break

    def flush_user(self, user_id: str) -> str:
        """
        Mirrors one user's cache cart into the database.
        Raises CartLocked when clear/checkout holds the user, ReconcileFailed on any other error.
        """
        with self.lock_service.user_lock(user_id, wait=0):
            try:
                cart = self.cache.get(user_id)
            except StoreUnavailable as e:
                raise ReconcileFailed(user_id, str(e)) from e

            db = self.session_factory()
            try:
                outcome = self._write(CartRepo(db), user_id, cart)
            except Exception as e:
                db.rollback()
                raise ReconcileFailed(user_id, str(e) or type(e).__name__) from e
            finally:
                db.close()

            #unmark only after commit, and only if nobody touched the cart meanwhile
            try:
                unmarked = self.cache.unmark_dirty_if_unchanged(user_id, cart)
            except StoreUnavailable as e:
                raise ReconcileFailed(user_id, str(e)) from e

        if not unmarked:
            logger.info(f"Cart of user {user_id} changed during sync, left dirty for the next run")
        return outcome

    def _write(self, repo: CartRepo, user_id: str, cart: Dict[int, int]) -> str:
        now = datetime.now(timezone.utc)

        if not cart and self.prune_empty:
            # zero items means no cart, in both stores
            repo.delete_cart_for_user(user_id)
            repo.commit()
            logger.info(f"Cart of user {user_id} is empty, durable cart removed")
            return PRUNED

        cart_id = repo.upsert_cart(user_id, now)
        repo.replace_items(cart_id, cart, now)
        repo.commit()

        logger.info(f"Synced cart for user {user_id} with {len(cart)} items")
        return SYNCED

