"""Tests for the publish engine retry protocol."""
import pytest
import orjson
from prometheus_client import CollectorRegistry
from structlog.testing import capture_logs
from eventstream.catalog import sample_events
from eventstream.errors import PublishExhaustedError
from eventstream.event_models import Event
from eventstream.metrics import Metrics
from eventstream.services.publisher import PublishEngine, backoff_ms


def test_backoff_is_deterministic():
    """Test the delay doubles per attempt without jitter."""
    assert [backoff_ms(i, 1000) for i in range(4)] == [1000, 2000, 4000, 8000]
    assert backoff_ms(2, 250) == 1000


@pytest.mark.asyncio
async def test_publish_first_try(flaky_producer, sleep):
    """Test a successful send needs no retry."""
    producer = flaky_producer()
    engine = PublishEngine(producer, "events-log", sleep=sleep)

    report = await engine.publish(Event(type="order_created", orderId="o-1"))

    assert report.partition == 0
    assert report.offset == 0
    assert producer.attempts == 1
    assert sleep.calls == []

    topic, key, value = producer.sent[0]
    assert topic == "events-log"
    assert key == b"order_created"
    assert orjson.loads(value) == {"type": "order_created", "orderId": "o-1"}


@pytest.mark.asyncio
async def test_publish_recovers_after_failures(flaky_producer, sleep):
    """Test retries with exponential delays until a send succeeds."""
    producer = flaky_producer(failures=2)
    engine = PublishEngine(producer, "events-log", max_retries=3, base_delay_ms=1000, sleep=sleep)

    await engine.publish(Event(type="order_created"))

    assert producer.attempts == 3
    assert sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_publish_exhausts_retries(flaky_producer, sleep):
    """Test a permanently failing send makes exactly max_retries + 1 attempts."""
    producer = flaky_producer(failures=100)
    engine = PublishEngine(producer, "events-log", max_retries=3, base_delay_ms=1000, sleep=sleep)

    with pytest.raises(PublishExhaustedError) as exc_info:
        await engine.publish(Event(type="payment_processed"))

    assert producer.attempts == 4
    assert sleep.calls == [1.0, 2.0, 4.0]
    assert exc_info.value.event_type == "payment_processed"
    assert exc_info.value.attempts == 4
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_publish_without_retries(flaky_producer, sleep):
    """Test max_retries=0 gives a single attempt."""
    producer = flaky_producer(failures=1)
    engine = PublishEngine(producer, "events-log", max_retries=0, sleep=sleep)

    with pytest.raises(PublishExhaustedError):
        await engine.publish(Event(type="order_created"))

    assert producer.attempts == 1
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_batch_is_sequential_and_paced(flaky_producer, sleep):
    """Test catalog order is kept and each success is followed by the pacing delay."""
    producer = flaky_producer()
    engine = PublishEngine(producer, "events-log", pacing_ms=500, sleep=sleep)
    events = sample_events()

    reports = await engine.publish_batch(events)

    assert len(reports) == 6
    assert [key for _, key, _ in producer.sent] == [e.type.encode() for e in events]
    assert [r.offset for r in reports] == list(range(6))
    assert sleep.calls == [0.5] * 6


@pytest.mark.asyncio
async def test_batch_aborts_on_exhausted_event(flaky_producer, sleep):
    """Test the first exhausted event aborts the rest of the batch."""

    class FailSecond(flaky_producer):
        async def send(self, topic, key, value, timestamp_ms):
            if key == b"order_created":
                self.attempts += 1
                raise TimeoutError("request timed out")
            return await super().send(topic, key, value, timestamp_ms)

    producer = FailSecond()
    engine = PublishEngine(producer, "events-log", max_retries=3, base_delay_ms=1000, pacing_ms=500, sleep=sleep)

    with pytest.raises(PublishExhaustedError) as exc_info:
        await engine.publish_batch(sample_events())

    assert exc_info.value.event_type == "order_created"
    assert [key for _, key, _ in producer.sent] == [b"user_signup"]
    assert sleep.calls == [0.5, 1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_publish_records_metrics(flaky_producer, sleep):
    """Test attempts, successes and failures are counted per event type."""
    metrics = Metrics(registry=CollectorRegistry())
    engine = PublishEngine(flaky_producer(failures=1), "events-log", metrics=metrics, sleep=sleep)
    await engine.publish(Event(type="order_created"))

    failing = PublishEngine(flaky_producer(failures=100), "events-log", max_retries=2, metrics=metrics, sleep=sleep)
    with pytest.raises(PublishExhaustedError):
        await failing.publish(Event(type="cart_updated"))

    registry = metrics.registry
    labels = {"event_type": "order_created"}
    assert registry.get_sample_value("eventstream_publish_attempts_total", labels) == 2.0
    assert registry.get_sample_value("eventstream_events_published_total", labels) == 1.0
    assert registry.get_sample_value(
        "eventstream_publish_attempts_total", {"event_type": "cart_updated"}
    ) == 3.0
    assert registry.get_sample_value(
        "eventstream_publish_failures_total", {"event_type": "cart_updated"}
    ) == 1.0


@pytest.mark.asyncio
async def test_failed_attempts_are_logged_with_timing(flaky_producer, sleep):
    """Test each failed attempt reports event type, attempt number and elapsed time."""
    engine = PublishEngine(flaky_producer(failures=2), "events-log", sleep=sleep)

    with capture_logs() as logs:
        await engine.publish(Event(type="order_created"))

    failures = [entry for entry in logs if entry["event"] == "publish.failed"]
    assert [entry["attempt"] for entry in failures] == [1, 2]
    assert all(entry["event_type"] == "order_created" for entry in failures)
    assert all(entry["elapsed_ms"] >= 0 for entry in failures)
    published = [entry for entry in logs if entry["event"] == "event.published"]
    assert published[0]["attempts"] == 3
