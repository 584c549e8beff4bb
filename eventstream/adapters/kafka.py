"""Apache Kafka broker adapter (aiokafka)."""
import asyncio
import structlog
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, ConsumerRebalanceListener, TopicPartition
from aiokafka.structs import ConsumerRecord
from .base import BrokerConsumer, BrokerProducer
from ..config import Settings, get_settings
from ..errors import BrokerNotConnectedError
from ..event_models import DeliveryReport, InboundMessage

log = structlog.get_logger()


class KafkaProducerAdapter(BrokerProducer):
    """Kafka producer built on AIOKafkaProducer."""

    def __init__(self, settings: Settings | None = None):
        """
        Initialize Kafka producer adapter.

        Args:
            settings: Connection settings (defaults to get_settings())
        """
        self.settings = settings or get_settings()
        self._producer: AIOKafkaProducer | None = None

    async def connect(self) -> None:
        """
        Start the producer.

        Raises:
            KafkaError: If the brokers cannot be reached
        """
        if self._producer is not None:
            return
        producer = AIOKafkaProducer(
            bootstrap_servers=self.settings.bootstrap_servers,
            client_id=self.settings.KAFKA_CLIENT_ID,
            request_timeout_ms=self.settings.PRODUCER_REQUEST_TIMEOUT_MS,
            acks="all",
        )
        try:
            await producer.start()
        except Exception as e:
            log.error("producer.connect_failed", error=str(e), brokers=self.settings.KAFKA_BROKER_URL)
            await _stop_quietly(producer, "producer")
            raise
        self._producer = producer
        log.info("producer.connected", brokers=self.settings.KAFKA_BROKER_URL)

    async def disconnect(self) -> None:
        """Stop the producer; errors are logged, never raised."""
        producer, self._producer = self._producer, None
        if producer is None:
            return
        if await _stop_quietly(producer, "producer"):
            log.info("producer.disconnected")

    async def send(self, topic: str, key: bytes | None, value: bytes, timestamp_ms: int) -> list[DeliveryReport]:
        if self._producer is None:
            raise BrokerNotConnectedError("Kafka producer not initialized")
        metadata = await self._producer.send_and_wait(
            topic,
            value=value,
            key=key,
            timestamp_ms=timestamp_ms,
        )
        return [DeliveryReport(topic=metadata.topic, partition=metadata.partition, offset=metadata.offset)]


class _LogAssignments(ConsumerRebalanceListener):
    async def on_partitions_revoked(self, revoked):
        log.info("consumer.partitions_revoked", partitions=[str(tp) for tp in revoked])

    async def on_partitions_assigned(self, assigned):
        log.info("consumer.partitions_assigned", partitions=[str(tp) for tp in assigned])


class _SeekToBeginning(_LogAssignments):
    """Rewind newly assigned partitions that have no committed offset."""

    def __init__(self, consumer: AIOKafkaConsumer):
        self._consumer = consumer

    async def on_partitions_assigned(self, assigned):
        await super().on_partitions_assigned(assigned)
        for tp in assigned:
            if await self._consumer.committed(tp) is None:
                await self._consumer.seek_to_beginning(tp)


class KafkaConsumerAdapter(BrokerConsumer):
    """
    Kafka consumer built on AIOKafkaConsumer.

    Offsets are committed explicitly per message. Heartbeats are sent by
    aiokafka's coordinator task; heartbeat() only yields to it.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._consumer: AIOKafkaConsumer | None = None

    async def connect(self) -> None:
        if self._consumer is not None:
            return
        consumer = AIOKafkaConsumer(
            bootstrap_servers=self.settings.bootstrap_servers,
            client_id=self.settings.KAFKA_CLIENT_ID,
            group_id=self.settings.KAFKA_CONSUMER_GROUP_ID,
            enable_auto_commit=False,
            auto_offset_reset="latest",
            session_timeout_ms=self.settings.CONSUMER_SESSION_TIMEOUT,
            heartbeat_interval_ms=self.settings.CONSUMER_HEARTBEAT_INTERVAL,
            rebalance_timeout_ms=self.settings.CONSUMER_REBALANCE_TIMEOUT,
            max_partition_fetch_bytes=self.settings.CONSUMER_MAX_PARTITION_FETCH_BYTES,
        )
        try:
            await consumer.start()
        except Exception as e:
            log.error("consumer.connect_failed", error=str(e), brokers=self.settings.KAFKA_BROKER_URL)
            await _stop_quietly(consumer, "consumer")
            raise
        self._consumer = consumer
        log.info(
            "consumer.connected",
            brokers=self.settings.KAFKA_BROKER_URL,
            group_id=self.settings.KAFKA_CONSUMER_GROUP_ID,
        )

    async def disconnect(self) -> None:
        """Stop the consumer; errors are logged, never raised."""
        consumer, self._consumer = self._consumer, None
        if consumer is None:
            return
        if await _stop_quietly(consumer, "consumer"):
            log.info("consumer.disconnected")

    def _require(self) -> AIOKafkaConsumer:
        if self._consumer is None:
            raise BrokerNotConnectedError("Kafka consumer not initialized")
        return self._consumer

    async def subscribe(self, topic: str, from_beginning: bool = False) -> None:
        consumer = self._require()
        listener = _SeekToBeginning(consumer) if from_beginning else _LogAssignments()
        consumer.subscribe([topic], listener=listener)
        log.info("consumer.subscribed", topic=topic, from_beginning=from_beginning)

    async def fetch(self, max_records: int, timeout_ms: int) -> list[InboundMessage]:
        batches = await self._require().getmany(timeout_ms=timeout_ms, max_records=max_records)
        messages = []
        for records in batches.values():
            messages.extend(_to_inbound(record) for record in records)
        return messages

    async def commit(self, message: InboundMessage) -> None:
        tp = TopicPartition(message.topic, message.partition)
        await self._require().commit({tp: message.offset + 1})

    def is_stale(self, message: InboundMessage) -> bool:
        if self._consumer is None:
            return True
        return TopicPartition(message.topic, message.partition) not in self._consumer.assignment()

    async def heartbeat(self) -> None:
        await asyncio.sleep(0)


def _to_inbound(record: ConsumerRecord) -> InboundMessage:
    return InboundMessage(
        topic=record.topic,
        key=record.key,
        value=record.value or b"",
        partition=record.partition,
        offset=record.offset,
        timestamp=record.timestamp,
    )


async def _stop_quietly(client: AIOKafkaProducer | AIOKafkaConsumer, role: str) -> bool:
    """Stop a client, logging instead of raising. Returns True on a clean stop."""
    try:
        await client.stop()
        return True
    except Exception as e:
        log.error(f"{role}.disconnect_failed", error=str(e), error_type=e.__class__.__name__)
        return False
