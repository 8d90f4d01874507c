"""Delivery worker and pool tests."""
import asyncio
from dataclasses import replace

from sqlmodel import select

from telewind.db.connection import session_scope
from telewind.db.models import DeliveryState, ErrorLog
from telewind.errors import PermanentDeliveryError, TransientDeliveryError
from telewind.notification.channel import Event
from telewind.notification.scheduler import DispatchScheduler
from telewind.notification.worker import DeliveryWorker, DeliveryWorkerPool, RetryPolicy


def _dispatch(store, ledger, key="E1", text="wind"):
    return DispatchScheduler(store, ledger).on_event(Event(key, {"text": text}))


def _errors(engine):
    with session_scope(engine) as session:
        return session.exec(select(ErrorLog)).all()


def test_retry_policy_backoff():
    policy = RetryPolicy(max_retries=3, base_backoff=5, max_backoff=15)
    assert [policy.backoff(n) for n in (1, 2, 3, 4)] == [5, 10, 15, 15]
    assert not policy.exhausted(2)
    assert policy.exhausted(3)


def test_successful_delivery(store, ledger, channel, settings):
    sub = store.subscribe(42)
    _dispatch(store, ledger)
    pool = DeliveryWorkerPool(ledger, channel, store, settings, worker_count=2)

    assert asyncio.run(pool.drain()) == 1
    assert channel.calls == [(42, {"text": "wind"})]
    assert [t.label for t in ledger.history("E1", sub.id)] == ["pending", "sent"]
    assert ledger.is_event_complete("E1")


def test_transient_failures_until_abandoned(store, ledger, channel, settings, clock, engine):
    sub = store.subscribe(7)
    channel.script[7] = [TransientDeliveryError("503")] * 5
    _dispatch(store, ledger)
    pool = DeliveryWorkerPool(ledger, channel, store, settings, worker_count=2)

    asyncio.run(pool.drain())
    assert ledger.get("E1", sub.id).label == "failed(1)"
    # not due yet
    assert asyncio.run(pool.drain()) == 0

    clock.advance(1)
    asyncio.run(pool.drain())
    assert ledger.get("E1", sub.id).label == "failed(2)"

    clock.advance(2)
    asyncio.run(pool.drain())

    entry = ledger.get("E1", sub.id)
    assert entry.state == DeliveryState.ABANDONED
    assert entry.retry_count == 3
    assert [t.label for t in ledger.history("E1", sub.id)] == [
        "pending", "failed(1)", "failed(2)", "failed(3)", "abandoned",
    ]
    assert len(channel.calls_for(7)) == 3
    # transient exhaustion keeps the subscription
    assert store.is_subscribed(7)
    assert [e.code for e in _errors(engine)] == ["abandoned"]

    clock.advance(1000)
    assert asyncio.run(pool.drain()) == 0
    assert len(channel.calls_for(7)) == 3


def test_transient_failure_then_success(store, ledger, channel, settings, clock):
    sub = store.subscribe(7)
    channel.script[7] = [TransientDeliveryError("503")]
    _dispatch(store, ledger)
    pool = DeliveryWorkerPool(ledger, channel, store, settings)

    asyncio.run(pool.drain())
    clock.advance(1)
    asyncio.run(pool.drain())
    assert [t.label for t in ledger.history("E1", sub.id)] == ["pending", "failed(1)", "sent"]


def test_permanent_failure_abandons_and_unsubscribes(store, ledger, channel, settings, engine):
    sub = store.subscribe(9)
    channel.script[9] = [PermanentDeliveryError("bot was blocked by the user")]
    _dispatch(store, ledger)
    pool = DeliveryWorkerPool(ledger, channel, store, settings)

    asyncio.run(pool.drain())
    entry = ledger.get("E1", sub.id)
    assert entry.state == DeliveryState.ABANDONED
    assert entry.retry_count == 0
    assert "blocked" in entry.last_error
    assert len(channel.calls_for(9)) == 1
    assert not store.is_subscribed(9)

    (error,) = _errors(engine)
    assert error.scope == "delivery"
    assert error.context["user_id"] == 9
    assert error.created_at is not None


def test_permanent_failure_keeps_subscription_when_disabled(store, ledger, channel, settings):
    store.subscribe(9)
    channel.script[9] = [PermanentDeliveryError("chat not found")]
    _dispatch(store, ledger)
    pool = DeliveryWorkerPool(ledger, channel, store, replace(settings, auto_unsubscribe=False))

    asyncio.run(pool.drain())
    assert store.is_subscribed(9)


def test_auto_unsubscribe_spares_newer_subscription(store, ledger, channel, settings):
    old = store.subscribe(9)
    _dispatch(store, ledger)
    store.unsubscribe(9)
    new = store.subscribe(9)
    channel.script[9] = [PermanentDeliveryError("chat not found")]

    asyncio.run(DeliveryWorkerPool(ledger, channel, store, settings).drain())
    assert ledger.get("E1", old.id).state == DeliveryState.ABANDONED
    assert store.get(9) == new


def test_send_timeout_counts_as_transient(store, ledger, settings):
    sub = store.subscribe(5)
    _dispatch(store, ledger)

    class SlowChannel:
        async def send(self, user_id, payload):
            await asyncio.sleep(5)

    pool = DeliveryWorkerPool(ledger, SlowChannel(), store, replace(settings, send_timeout=0.05))
    asyncio.run(pool.drain())
    entry = ledger.get("E1", sub.id)
    assert entry.label == "failed(1)"
    assert "timed out" in entry.last_error


def test_unexpected_channel_error_is_retried(store, ledger, channel, settings):
    sub = store.subscribe(5)
    channel.script[5] = [RuntimeError("boom")]
    _dispatch(store, ledger)

    asyncio.run(DeliveryWorkerPool(ledger, channel, store, settings).drain())
    entry = ledger.get("E1", sub.id)
    assert entry.label == "failed(1)"
    assert "RuntimeError" in entry.last_error


def test_each_subscription_delivered_once_by_concurrent_workers(store, ledger, channel, settings):
    subs = [store.subscribe(u) for u in range(1, 21)]
    _dispatch(store, ledger)
    pool = DeliveryWorkerPool(ledger, channel, store, settings, worker_count=4)

    assert asyncio.run(pool.drain()) == 20
    assert sorted(user_id for user_id, _ in channel.calls) == list(range(1, 21))
    assert all(ledger.count_sent("E1", s.id) == 1 for s in subs)


def test_recovery_after_worker_crash(store, ledger, channel, settings, clock):
    subs = [store.subscribe(u) for u in (1, 2)]
    _dispatch(store, ledger)
    # a worker from a previous run took the first entry and died
    ledger.claim("E1", subs[0].id, "dead:1:0", settings.lease_seconds)

    pool = DeliveryWorkerPool(ledger, channel, store, settings)

    async def restart():
        pending = await pool.recover()
        delivered = await pool.drain()
        return pending, delivered

    pending, delivered = asyncio.run(restart())
    assert len(pending) == 2
    assert delivered == 1
    assert ledger.get("E1", subs[0].id).claimed_by == "dead:1:0"

    clock.advance(settings.lease_seconds)
    assert asyncio.run(pool.drain()) == 1
    assert ledger.scan_pending() == []
    assert all(ledger.count_sent("E1", s.id) == 1 for s in subs)
    assert len(channel.calls) == 2


def test_in_flight_delivery_survives_unsubscribe(store, ledger, channel, settings):
    sub = store.subscribe(3)
    _dispatch(store, ledger)
    store.unsubscribe(3)

    asyncio.run(DeliveryWorkerPool(ledger, channel, store, settings).drain())
    assert ledger.get("E1", sub.id).state == DeliveryState.SENT
    assert channel.calls_for(3)


def test_unsubscribe_after_abandon_is_independent(store, ledger, channel, settings):
    sub = store.subscribe(3)
    channel.script[3] = [PermanentDeliveryError("chat not found")]
    _dispatch(store, ledger)
    pool = DeliveryWorkerPool(ledger, channel, store, replace(settings, auto_unsubscribe=False))
    asyncio.run(pool.drain())

    store.unsubscribe(3)
    assert ledger.get("E1", sub.id).state == DeliveryState.ABANDONED
    assert [t.label for t in ledger.history("E1", sub.id)] == ["pending", "abandoned"]


def test_cancelled_delivery_releases_claim(store, ledger, settings):
    sub = store.subscribe(4)
    _dispatch(store, ledger)
    started = []

    class HangingChannel:
        async def send(self, user_id, payload):
            started.append(user_id)
            await asyncio.sleep(60)

    worker = DeliveryWorker("w1", ledger, HangingChannel(), store, replace(settings, send_timeout=120))

    async def go():
        (entry,) = ledger.claimable()
        task = asyncio.create_task(worker.process(entry))
        while not started:
            await asyncio.sleep(0.01)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    asyncio.run(go())
    entry = ledger.get("E1", sub.id)
    assert entry.state == DeliveryState.PENDING
    assert entry.claimed_by is None


def test_running_pool_delivers_dispatched_events(store, ledger, channel, settings):
    store.subscribe(11)
    store.subscribe(12)
    pool = DeliveryWorkerPool(ledger, channel, store, settings, worker_count=2)
    scheduler = DispatchScheduler(store, ledger, on_enqueued=pool.wake)

    async def go():
        pool.start()
        assert pool.running
        await scheduler.dispatch(Event("E1", {"text": "wind"}))
        for _ in range(500):
            if ledger.is_event_complete("E1"):
                break
            await asyncio.sleep(0.01)
        await pool.stop()

    asyncio.run(go())
    assert not pool.running
    assert sorted(u for u, _ in channel.calls) == [11, 12]
