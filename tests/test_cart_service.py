from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from cartsync.domain.errors import CartLocked, InvalidInput, StoreUnavailable
from cartsync.repos.cart_repo import CartRepo
from cartsync.services.cart_sync import CartReconciler

USER = "8e186c41-86b3-47ae-8d15-ada8f4371f75"
CART_KEY = f"cart:{USER}"


def _seed_durable(db, user_id, items):
    repo = CartRepo(db)
    cart_id = repo.upsert_cart(user_id, datetime.now(timezone.utc))
    repo.replace_items(cart_id, items, datetime.now(timezone.utc))
    repo.commit()


def test_add_item_accumulates_and_marks_dirty(cart_service, cache, redis_client):
    assert cart_service.add_item(USER, 1, 2) == 2
    assert cart_service.add_item(USER, 1, 3) == 5
    cart_service.add_item(USER, 2, 1)

    assert cart_service.get_cart(USER) == {1: 5, 2: 1}
    assert cache.is_dirty(USER)
    assert 0 < redis_client.ttl(CART_KEY) <= 24 * 60 * 60


def test_update_item_sets_absolute_quantity(cart_service):
    cart_service.add_item(USER, 1, 2)
    cart_service.update_item(USER, 1, 7)

    assert cart_service.get_cart(USER) == {1: 7}


def test_net_quantities_drop_items_at_zero(cart_service):
    cart_service.add_item(USER, 1, 2)
    cart_service.add_item(USER, 2, 4)
    cart_service.update_item(USER, 2, 0)
    cart_service.update_item(USER, 1, -3)
    cart_service.add_item(USER, 3, 1)

    assert cart_service.get_cart(USER) == {3: 1}


def test_update_to_zero_twice_is_idempotent(cart_service, redis_client):
    cart_service.add_item(USER, 1, 2)
    cart_service.add_item(USER, 2, 1)

    cart_service.update_item(USER, 1, 0)
    once = redis_client.hgetall(CART_KEY)
    cart_service.update_item(USER, 1, 0)

    assert redis_client.hgetall(CART_KEY) == once == {"2": "1"}


def test_update_with_none_removes(cart_service):
    cart_service.add_item(USER, 1, 2)
    cart_service.update_item(USER, 1, None)

    assert cart_service.get_cart(USER) == {}


def test_removing_last_item_leaves_no_cache_key(cart_service, redis_client):
    cart_service.add_item(USER, 1, 1)
    cart_service.remove_item(USER, 1)

    assert not redis_client.exists(CART_KEY)


@pytest.mark.parametrize("quantity", [0, -1, "3", 1.5, True, None])
def test_add_item_rejects_bad_quantity_before_touching_cache(cart_service, cache, redis_client, quantity):
    with pytest.raises(InvalidInput):
        cart_service.add_item(USER, 1, quantity)

    assert not redis_client.exists(CART_KEY)
    assert not cache.is_dirty(USER)


@pytest.mark.parametrize("product_id", [None, 0, -4, "abc", 2.0])
def test_rejects_bad_product_id(cart_service, product_id):
    with pytest.raises(InvalidInput):
        cart_service.add_item(USER, product_id, 1)
    with pytest.raises(InvalidInput):
        cart_service.update_item(USER, product_id, 1)


def test_update_item_rejects_non_numeric_quantity(cart_service):
    with pytest.raises(InvalidInput):
        cart_service.update_item(USER, 1, "five")


def test_bulk_update_applies_all_items(cart_service, cache, redis_client):
    cart_service.add_item(USER, 1, 1)
    cart_service.add_item(USER, 2, 1)

    applied = cart_service.bulk_update(
        USER,
        [
            {"product_id": 1, "quantity": 4},
            {"product_id": 2, "quantity": 0},
            (3, 2),
        ],
    )

    assert applied == 3
    assert cart_service.get_cart(USER) == {1: 4, 3: 2}
    assert cache.is_dirty(USER)
    assert redis_client.ttl(CART_KEY) > 0


def test_bulk_update_with_bad_item_writes_nothing(cart_service, redis_client):
    cart_service.add_item(USER, 1, 1)

    with pytest.raises(InvalidInput):
        cart_service.bulk_update(USER, [(1, 9), (2, "x")])

    assert cart_service.get_cart(USER) == {1: 1}


def test_bulk_update_requires_a_list(cart_service):
    with pytest.raises(InvalidInput):
        cart_service.bulk_update(USER, {"product_id": 1, "quantity": 1})


def test_get_cart_restores_from_durable_mirror(cart_service, cache, db, redis_client):
    _seed_durable(db, USER, {1: 2, 2: 1})

    assert cart_service.get_cart(USER) == {1: 2, 2: 1}
    assert redis_client.hgetall(CART_KEY) == {"1": "2", "2": "1"}
    assert redis_client.ttl(CART_KEY) > 0
    # restore does not mark dirty
    assert not cache.is_dirty(USER)


def test_get_cart_empty_everywhere(cart_service, redis_client):
    assert cart_service.get_cart(USER) == {}
    assert not redis_client.exists(CART_KEY)


def test_get_cart_prefers_cache_over_mirror(cart_service, db):
    _seed_durable(db, USER, {1: 9})
    cart_service.add_item(USER, 2, 1)

    assert cart_service.get_cart(USER) == {2: 1}


def test_clear_cart_empties_both_stores(cart_row, cart_service, cache, db, redis_client):
    _seed_durable(db, USER, {1: 2})
    cart_service.add_item(USER, 1, 2)
    redis_client.srem("dirtyCarts", USER)

    cart_service.clear_cart(USER)

    assert not redis_client.exists(CART_KEY)
    assert cart_row(USER) is None
    assert cart_service.get_cart(USER) == {}
    assert cache.is_dirty(USER)


def test_clear_cart_waits_for_user_lock(cart_service, lock_service, redis_client):
    cart_service.add_item(USER, 1, 2)

    with lock_service.user_lock(USER):
        with pytest.raises(CartLocked):
            cart_service.clear_cart(USER)

    assert redis_client.hgetall(CART_KEY) == {"1": "2"}


def test_cache_outage_surfaces_as_store_unavailable(cart_service, redis_server):
    redis_server.connected = False

    with pytest.raises(StoreUnavailable):
        cart_service.add_item(USER, 1, 1)


@pytest.fixture
def reconciler(session_factory, cache, lock_service):
    return CartReconciler(session_factory, cache, lock_service, run_lock_ttl=60)


def test_emptied_cart_is_not_restored_from_stale_mirror(reconciler, cart_service, cache, redis_client):
    cart_service.add_item(USER, 1, 2)
    reconciler.run()
    assert not cache.is_dirty(USER)

    cart_service.update_item(USER, 1, 0)

    # the mirror still holds {1: 2} until the next run
    assert cart_service.get_cart(USER) == {}
    assert not redis_client.exists(CART_KEY)
    assert cache.is_dirty(USER)

    reconciler.run()
    assert cart_service.get_cart(USER) == {}


def test_get_cart_database_failure_is_store_unavailable(cart_service, monkeypatch):
    def broken_read(self, user_id):
        raise OperationalError("SELECT cart_items", {}, Exception("connection refused"))

    monkeypatch.setattr(CartRepo, "get_items_for_user", broken_read)

    with pytest.raises(StoreUnavailable):
        cart_service.get_cart(USER)


def test_clear_cart_database_failure_leaves_user_dirty(
    reconciler, cart_row, cart_service, cache, lock_service, redis_client, monkeypatch
):
    cart_service.add_item(USER, 1, 2)
    reconciler.run()
    assert cart_row(USER) is not None

    original = CartRepo.delete_cart_for_user

    def broken_delete(self, user_id):
        raise OperationalError("DELETE FROM carts", {}, Exception("connection lost"))

    monkeypatch.setattr(CartRepo, "delete_cart_for_user", broken_delete)

    with pytest.raises(StoreUnavailable):
        cart_service.clear_cart(USER)

    assert not redis_client.exists(CART_KEY)
    assert cache.is_dirty(USER)
    assert not redis_client.exists(lock_service.user_key(USER))
    # the stale durable cart is not served back
    assert cart_service.get_cart(USER) == {}

    monkeypatch.setattr(CartRepo, "delete_cart_for_user", original)
    summary = reconciler.run()

    assert summary.pruned == [USER]
    assert cart_row(USER) is None
    assert not cache.is_dirty(USER)
