"""Tests for the consumption loop."""
import asyncio
import pytest
import orjson
from unittest.mock import MagicMock
from prometheus_client import CollectorRegistry
from eventstream.adapters.base import BrokerConsumer
from eventstream.adapters.memory import InMemoryBroker
from eventstream.event_models import InboundMessage, LogTier
from eventstream.metrics import Metrics
from eventstream.services.consumer import ConsumerMode, ConsumptionLoop, LoopState
from eventstream.sinks import TieredSink

TOPIC = "events-log"
GROUP = "events-consumer-group"


async def _populate(broker: InMemoryBroker, values: list[bytes]):
    for value in values:
        await broker.append(TOPIC, b"key", value, 0)
    # Resume from the start of the topic instead of the latest offset
    broker.commit(GROUP, TOPIC, 0)


def _body(event_type: str, **fields) -> bytes:
    return orjson.dumps({"type": event_type, **fields})


def _message(offset: int, partition: int = 0, value: bytes | None = None) -> InboundMessage:
    return InboundMessage(
        topic=TOPIC,
        key=b"order_created",
        value=value or _body("order_created"),
        partition=partition,
        offset=offset,
    )


@pytest.mark.asyncio
async def test_message_mode_processes_and_commits(sleep, wait_until):
    """Test each message is routed, delayed and committed in order."""
    broker = InMemoryBroker()
    await _populate(broker, [_body("user_signup"), _body("order_created"), _body("payment_processed")])
    sink = MagicMock(spec=TieredSink)
    loop = ConsumptionLoop(broker.consumer(GROUP), sink, TOPIC, poll_timeout_ms=20, sleep=sleep)

    task = asyncio.create_task(loop.run())
    await wait_until(lambda: broker.committed(GROUP, TOPIC) == 3)
    loop.stop()
    await task

    assert loop.message_count == 3
    assert loop.state == LoopState.DISCONNECTED
    tiers = [call.args[2]["tier"] for call in sink.record.call_args_list]
    assert tiers == ["audit", "normal", "protected"]
    assert len(sleep.calls) == 3
    assert all(0.5 <= delay <= 2.5 for delay in sleep.calls)


@pytest.mark.asyncio
async def test_latest_offset_skips_backlog(sleep, wait_until):
    """Test a new group starts at the latest offset."""
    broker = InMemoryBroker()
    await broker.append(TOPIC, None, _body("order_created"), 0)
    sink = MagicMock(spec=TieredSink)
    loop = ConsumptionLoop(broker.consumer(GROUP), sink, TOPIC, poll_timeout_ms=20, sleep=sleep)

    task = asyncio.create_task(loop.run())
    await wait_until(lambda: loop.state == LoopState.RUNNING)
    await broker.append(TOPIC, None, _body("cart_updated"), 0)
    await wait_until(lambda: loop.message_count == 1)
    loop.stop()
    await task

    assert sink.record.call_count == 1
    assert sink.record.call_args.args[2]["eventType"] == "cart_updated"


@pytest.mark.asyncio
async def test_poison_message_is_skipped(sleep, wait_until):
    """Test an undecodable message is reported, committed and not routed."""
    broker = InMemoryBroker()
    await _populate(broker, [b"not json", _body("order_created")])
    sink = MagicMock(spec=TieredSink)
    metrics = Metrics(registry=CollectorRegistry())
    loop = ConsumptionLoop(broker.consumer(GROUP), sink, TOPIC, poll_timeout_ms=20, metrics=metrics, sleep=sleep)

    task = asyncio.create_task(loop.run())
    await wait_until(lambda: broker.committed(GROUP, TOPIC) == 2)
    loop.stop()
    await task

    assert loop.message_count == 2
    assert sink.record.call_count == 1
    # No processing delay is simulated for the failed message
    assert len(sleep.calls) == 1
    assert metrics.registry.get_sample_value("eventstream_decode_failures_total") == 1.0
    assert metrics.registry.get_sample_value(
        "eventstream_messages_consumed_total", {"tier": "normal", "outcome": "success"}
    ) == 1.0


def test_process_returns_failure_for_decode_error():
    """Test process() never raises on a malformed body."""
    loop = ConsumptionLoop(MagicMock(spec=BrokerConsumer), MagicMock(spec=TieredSink), TOPIC)
    result = loop.process(_message(0, value=b"{"))

    assert result.success is False
    assert result.tier == LogTier.NORMAL
    assert result.error


def test_process_reports_sink_failure():
    """Test a sink error becomes a failed result."""
    sink = MagicMock(spec=TieredSink)
    sink.record.side_effect = OSError("disk full")
    loop = ConsumptionLoop(MagicMock(spec=BrokerConsumer), sink, TOPIC)

    result = loop.process(_message(0))

    assert result.success is False
    assert result.error == "disk full"


def test_process_routes_durable_view():
    """Test the sink receives the full payload and identifying fields."""
    sink = MagicMock(spec=TieredSink)
    loop = ConsumptionLoop(MagicMock(spec=BrokerConsumer), sink, TOPIC)
    value = _body("payment_processed", paymentId="payment_789", metadata={"method": "credit_card"})

    result = loop.process(_message(4, value=value), simulate_delay=False)

    assert result.success is True
    assert result.tier == LogTier.PROTECTED
    assert result.processing_delay_ms is None
    level, message, fields = sink.record.call_args.args
    assert level == "info"
    assert fields["tier"] == "protected"
    assert fields["eventId"] == "payment_789"
    assert fields["offset"] == 4
    assert fields["eventData"]["metadata"] == {"method": "credit_card"}


def test_classify_record_views():
    """Test the classified record carries both views."""
    loop = ConsumptionLoop(MagicMock(spec=BrokerConsumer), MagicMock(spec=TieredSink), TOPIC)
    body = {"type": "payment_processed", "metadata": {"method": "credit_card"}}

    record = loop.classify_record(_message(0), body)

    assert record.tier == LogTier.PROTECTED
    assert record.durable == body
    assert record.console["metadata"] == "[REDACTED]"


@pytest.mark.asyncio
async def test_batch_mode_commits_and_heartbeats(sleep, wait_until):
    """Test batch mode processes without simulated delay."""
    broker = InMemoryBroker()
    await _populate(broker, [_body("order_created", orderId=str(i)) for i in range(5)])
    sink = MagicMock(spec=TieredSink)
    loop = ConsumptionLoop(
        broker.consumer(GROUP), sink, TOPIC,
        mode=ConsumerMode.BATCH, batch_size=10, poll_timeout_ms=20, sleep=sleep,
    )

    task = asyncio.create_task(loop.run())
    await wait_until(lambda: broker.committed(GROUP, TOPIC) == 5)
    loop.stop()
    await task

    assert loop.message_count == 5
    assert sink.record.call_count == 5
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_batch_stops_at_stale_partition():
    """Test a batch is abandoned once its partition is no longer owned."""
    consumer = MagicMock(spec=BrokerConsumer)
    consumer.is_stale.side_effect = lambda message: message.partition == 1
    loop = ConsumptionLoop(consumer, MagicMock(spec=TieredSink), TOPIC, mode="batch")

    await loop._handle_batch([_message(0), _message(1), _message(0, partition=1), _message(2)])

    assert loop.message_count == 2
    assert consumer.commit.await_count == 2
    assert consumer.heartbeat.await_count == 2


@pytest.mark.asyncio
async def test_batch_stops_when_loop_is_stopping():
    """Test a stop request ends the batch before the next message."""
    consumer = MagicMock(spec=BrokerConsumer)
    consumer.is_stale.return_value = False
    loop = ConsumptionLoop(consumer, MagicMock(spec=TieredSink), TOPIC, mode="batch")
    consumer.heartbeat.side_effect = loop.stop

    await loop._handle_batch([_message(0), _message(1), _message(2)])

    assert loop.message_count == 1
    consumer.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_broker_failure_moves_to_failed():
    """Test a session error surfaces to the caller and marks the loop failed."""
    consumer = MagicMock(spec=BrokerConsumer)
    consumer.fetch.side_effect = ConnectionError("session lost")
    loop = ConsumptionLoop(consumer, MagicMock(spec=TieredSink), TOPIC)

    with pytest.raises(ConnectionError):
        await loop.run()

    assert loop.state == LoopState.FAILED
    consumer.subscribe.assert_awaited_once_with(TOPIC, from_beginning=False)
    consumer.disconnect.assert_not_awaited()


@pytest.mark.asyncio
async def test_stop_before_run_drains_immediately():
    """Test a loop stopped before it starts never fetches."""
    consumer = MagicMock(spec=BrokerConsumer)
    loop = ConsumptionLoop(consumer, MagicMock(spec=TieredSink), TOPIC)
    loop.stop()

    await loop.run()

    consumer.fetch.assert_not_awaited()
    consumer.disconnect.assert_awaited_once()
    assert loop.state == LoopState.DISCONNECTED


@pytest.mark.asyncio
async def test_disconnect_errors_are_not_raised():
    """Test disconnect failures are logged only."""
    consumer = MagicMock(spec=BrokerConsumer)
    consumer.disconnect.side_effect = RuntimeError("already closed")
    loop = ConsumptionLoop(consumer, MagicMock(spec=TieredSink), TOPIC)

    await loop.disconnect()

    assert loop.state == LoopState.DISCONNECTED
