"""Subscription store tests."""
from concurrent.futures import ThreadPoolExecutor

import pytest

from telewind.db.connection import dispose_engines
from telewind.db.init import init_db
from telewind.errors import DuplicateSubscription, NotFound
from telewind.subscription.service import SubscriptionStore


def test_subscribe_assigns_id_and_timestamp(store, clock):
    sub = store.subscribe(42)
    assert sub.user_id == 42
    assert sub.id >= 0
    assert sub.created_at == clock.now
    assert store.is_subscribed(42)
    assert store.count() == 1


def test_subscribe_twice_is_duplicate(store):
    store.subscribe(42)
    with pytest.raises(DuplicateSubscription) as exc:
        store.subscribe(42)
    assert exc.value.user_id == 42
    assert store.count() == 1


def test_negative_user_id_rejected(store):
    with pytest.raises(ValueError):
        store.subscribe(-1)


def test_user_id_zero_is_valid(store):
    assert store.subscribe(0).user_id == 0


def test_unsubscribe_unknown_user(store):
    with pytest.raises(NotFound):
        store.unsubscribe(99)


def test_unsubscribe_twice(store):
    store.subscribe(7)
    store.unsubscribe(7)
    assert not store.is_subscribed(7)
    with pytest.raises(NotFound):
        store.unsubscribe(7)


def test_resubscribe_gets_new_id(store):
    first = store.subscribe(7)
    store.unsubscribe(7)
    second = store.subscribe(7)
    assert second.id != first.id
    assert second.id > first.id


def test_ids_not_reused_after_last_row_deleted(store):
    store.subscribe(1)
    last = store.subscribe(2)
    store.unsubscribe(2)
    assert store.subscribe(3).id > last.id


def test_list_active_ordered_by_id(store):
    for user_id in (30, 10, 20):
        store.subscribe(user_id)
    active = store.list_active()
    assert len(active) == 3
    assert [s.user_id for s in active] == [30, 10, 20]
    ids = [s.id for s in active]
    assert ids == sorted(ids)


def test_list_active_empty(store):
    active = store.list_active()
    assert not active
    assert list(active) == []


def test_list_active_is_snapshot(store):
    store.subscribe(1)
    store.subscribe(2)
    active = store.list_active()
    store.unsubscribe(1)
    store.subscribe(3)

    assert [s.user_id for s in active] == [1, 2]
    # restartable over the same snapshot
    assert [s.user_id for s in active] == [1, 2]
    assert [s.user_id for s in store.list_active()] == [2, 3]


def test_get_returns_current_record(store):
    assert store.get(5) is None
    sub = store.subscribe(5)
    assert store.get(5) == sub


def test_concurrent_subscribe_same_user(store):
    def attempt(_):
        try:
            store.subscribe(77)
            return "ok"
        except DuplicateSubscription:
            return "dup"

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(8)))

    assert results.count("ok") == 1
    assert results.count("dup") == 7
    assert store.count() == 1


def test_concurrent_subscribe_distinct_users(store):
    with ThreadPoolExecutor(max_workers=8) as pool:
        subs = list(pool.map(store.subscribe, range(100, 120)))

    assert len({s.id for s in subs}) == 20
    assert store.count() == 20


def test_concurrent_subscribe_in_memory_database():
    engine = init_db(":memory:")
    try:
        store = SubscriptionStore(engine)
        with ThreadPoolExecutor(max_workers=8) as pool:
            subs = list(pool.map(store.subscribe, range(200)))

        assert len({s.id for s in subs}) == 200
        assert store.count() == 200
        assert sorted(s.user_id for s in store.list_active()) == list(range(200))
    finally:
        dispose_engines()
