import pytest

from telewind.db.connection import dispose_engines
from telewind.db.init import init_db
from telewind.ledger.service import DeliveryLedger
from telewind.notification.worker import RetryPolicy, WorkerSettings
from telewind.subscription.service import SubscriptionStore


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


class FakeChannel:
    """
    Scripted delivery channel.

    ``script[user_id]`` is a list of outcomes consumed one per send: an
    exception instance is raised, anything else means delivered. Users
    without a script always succeed.
    """

    def __init__(self):
        self.script = {}
        self.calls = []

    async def send(self, user_id, payload):
        self.calls.append((user_id, dict(payload)))
        outcomes = self.script.get(user_id)
        if outcomes:
            outcome = outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome

    def calls_for(self, user_id):
        return [c for c in self.calls if c[0] == user_id]


@pytest.fixture
def engine(tmp_path):
    engine = init_db(str(tmp_path / "telewind.db"))
    yield engine
    dispose_engines()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(engine, clock):
    return SubscriptionStore(engine, clock=clock)


@pytest.fixture
def ledger(engine, clock):
    return DeliveryLedger(engine, clock=clock)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def settings():
    return WorkerSettings(
        retry=RetryPolicy(max_retries=3, base_backoff=1, max_backoff=60),
        lease_seconds=30,
        send_timeout=1.0,
        poll_interval=0.01,
        batch_size=50,
        auto_unsubscribe=True,
    )
