"""In-memory broker adapter."""
import asyncio
from collections import defaultdict
import structlog
from .base import BrokerConsumer, BrokerProducer
from ..errors import BrokerNotConnectedError
from ..event_models import DeliveryReport, InboundMessage

log = structlog.get_logger()


class InMemoryBroker:
    """
    Single-partition, in-process broker.

    Topics are append-only lists; committed offsets are kept per consumer
    group, so a restarted consumer resumes where its group left off.
    """

    def __init__(self):
        self._topics: dict[str, list[InboundMessage]] = defaultdict(list)
        self._committed: dict[tuple[str, str], int] = {}
        self._arrived = asyncio.Condition()

    async def append(self, topic: str, key: bytes | None, value: bytes, timestamp_ms: int) -> DeliveryReport:
        async with self._arrived:
            messages = self._topics[topic]
            message = InboundMessage(
                topic=topic,
                key=key,
                value=value,
                partition=0,
                offset=len(messages),
                timestamp=timestamp_ms,
            )
            messages.append(message)
            self._arrived.notify_all()
        return DeliveryReport(topic=topic, partition=0, offset=message.offset)

    def end_offset(self, topic: str) -> int:
        return len(self._topics[topic])

    def committed(self, group_id: str, topic: str) -> int | None:
        return self._committed.get((group_id, topic))

    def commit(self, group_id: str, topic: str, offset: int):
        self._committed[(group_id, topic)] = offset

    async def read(self, topic: str, position: int, max_records: int, timeout_ms: int) -> list[InboundMessage]:
        """Return up to max_records from position, waiting up to timeout_ms for new ones."""
        async with self._arrived:
            if position >= len(self._topics[topic]):
                try:
                    await asyncio.wait_for(
                        self._arrived.wait_for(lambda: position < len(self._topics[topic])),
                        timeout=timeout_ms / 1000,
                    )
                except asyncio.TimeoutError:
                    return []
            return self._topics[topic][position:position + max_records]

    def producer(self) -> "InMemoryProducer":
        return InMemoryProducer(self)

    def consumer(self, group_id: str) -> "InMemoryConsumer":
        return InMemoryConsumer(self, group_id)


class InMemoryProducer(BrokerProducer):
    """In-memory producer bound to an InMemoryBroker."""

    def __init__(self, broker: InMemoryBroker):
        self._broker = broker
        self._connected = False

    async def connect(self) -> None:
        self._connected = True
        log.info("producer.connected", adapter="memory")

    async def disconnect(self) -> None:
        if self._connected:
            log.info("producer.disconnected", adapter="memory")
        self._connected = False

    async def send(self, topic: str, key: bytes | None, value: bytes, timestamp_ms: int) -> list[DeliveryReport]:
        if not self._connected:
            raise BrokerNotConnectedError("producer is not connected")
        return [await self._broker.append(topic, key, value, timestamp_ms)]


class InMemoryConsumer(BrokerConsumer):
    """In-memory consumer bound to an InMemoryBroker and a consumer group."""

    def __init__(self, broker: InMemoryBroker, group_id: str):
        self._broker = broker
        self._group_id = group_id
        self._connected = False
        self._topic: str | None = None
        self._position = 0

    async def connect(self) -> None:
        self._connected = True
        log.info("consumer.connected", adapter="memory", group_id=self._group_id)

    async def disconnect(self) -> None:
        if self._connected:
            log.info("consumer.disconnected", adapter="memory", group_id=self._group_id)
        self._connected = False
        self._topic = None

    async def subscribe(self, topic: str, from_beginning: bool = False) -> None:
        if not self._connected:
            raise BrokerNotConnectedError("consumer is not connected")
        committed = self._broker.committed(self._group_id, topic)
        if committed is not None:
            self._position = committed
        elif from_beginning:
            self._position = 0
        else:
            self._position = self._broker.end_offset(topic)
        self._topic = topic
        log.info("consumer.subscribed", adapter="memory", topic=topic, position=self._position)

    async def fetch(self, max_records: int, timeout_ms: int) -> list[InboundMessage]:
        if not self._connected or self._topic is None:
            raise BrokerNotConnectedError("consumer is not subscribed")
        messages = await self._broker.read(self._topic, self._position, max_records, timeout_ms)
        self._position += len(messages)
        return messages

    async def commit(self, message: InboundMessage) -> None:
        if not self._connected:
            raise BrokerNotConnectedError("consumer is not connected")
        self._broker.commit(self._group_id, message.topic, message.offset + 1)

    def is_stale(self, message: InboundMessage) -> bool:
        return not self._connected or message.topic != self._topic

    async def heartbeat(self) -> None:
        await asyncio.sleep(0)
