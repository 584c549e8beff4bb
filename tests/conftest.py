"""Shared test doubles."""
import asyncio
import pytest
from eventstream.adapters.base import BrokerProducer
from eventstream.event_models import DeliveryReport


class RecordingSleep:
    """Awaitable sleep that records requested durations and returns at once."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)
        await asyncio.sleep(0)


class FlakyProducer(BrokerProducer):
    """Producer failing its first ``failures`` sends."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.sent: list[tuple[str, bytes | None, bytes]] = []
        self.attempts = 0
        self.connected = False
        self.disconnects = 0

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnects += 1

    async def send(self, topic, key, value, timestamp_ms):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("broker unavailable")
        self.sent.append((topic, key, value))
        return [DeliveryReport(topic=topic, partition=0, offset=len(self.sent) - 1)]


async def _wait_until(predicate, timeout: float = 2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def flaky_producer():
    return FlakyProducer


@pytest.fixture
def wait_until():
    return _wait_until
