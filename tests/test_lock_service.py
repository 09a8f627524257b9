import pytest

from cartsync.domain.errors import CartLocked


def test_user_lock_is_exclusive(lock_service):
    with lock_service.user_lock("u1", wait=0):
        with pytest.raises(CartLocked):
            with lock_service.user_lock("u1", wait=0):
                pass

        # other users are independent
        with lock_service.user_lock("u2", wait=0):
            pass


def test_user_lock_released_after_block(lock_service, redis_client):
    with lock_service.user_lock("u1", wait=0):
        assert redis_client.exists(lock_service.user_key("u1"))

    assert not redis_client.exists(lock_service.user_key("u1"))


def test_user_lock_released_on_error(lock_service, redis_client):
    with pytest.raises(RuntimeError):
        with lock_service.user_lock("u1", wait=0):
            raise RuntimeError("boom")

    assert not redis_client.exists(lock_service.user_key("u1"))


def test_release_only_by_owner(lock_service, redis_client):
    key = lock_service.user_key("u1")
    token = lock_service.acquire(key, ttl=30)

    assert lock_service.release(key, "someone-else") is False
    assert redis_client.get(key) == token
    assert lock_service.release(key, token) is True


def test_job_lock(lock_service):
    token = lock_service.acquire_job_lock("cart-sync", ttl=60)

    assert token is not None
    assert lock_service.acquire_job_lock("cart-sync", ttl=60) is None
    assert lock_service.release_job_lock("cart-sync", token) is True


def test_user_lock_key_does_not_collide_with_cart_keys(lock_service, cache, redis_client):
    assert lock_service.user_key("42") == "cartlock:42"

    # a user id ending in ":lock" must not share a key with someone else's lock
    cache.increment("42:lock", 1, 1)
    with lock_service.user_lock("42", wait=0):
        assert redis_client.hgetall(cache.cart_key("42:lock")) == {"1": "1"}

    assert cache.get("42:lock") == {1: 1}


def test_extend_only_by_owner(lock_service, redis_client):
    key = lock_service.job_key("cart-sync")
    token = lock_service.acquire(key, ttl=5)

    assert lock_service.extend(key, "someone-else", 600) is False
    assert redis_client.ttl(key) <= 5

    assert lock_service.extend_job_lock("cart-sync", token, 600) is True
    assert redis_client.ttl(key) > 5


def test_extend_of_lost_lock_fails(lock_service):
    token = lock_service.acquire_job_lock("cart-sync", ttl=60)
    lock_service.release_job_lock("cart-sync", token)

    assert lock_service.extend_job_lock("cart-sync", token, 60) is False
