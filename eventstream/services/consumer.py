"""Consumption loop: decode, classify, redact and route inbound messages."""
import asyncio
import random
from enum import Enum
from typing import Awaitable, Callable
import structlog
from ..adapters.base import BrokerConsumer
from ..catalog import event_identifier
from ..classifier import classify, decode_event
from ..config import Settings
from ..errors import MessageDecodeError
from ..event_models import ClassifiedRecord, InboundMessage, LogTier, ProcessingResult
from ..metrics import Metrics
from ..redactor import redact
from ..sinks import TieredSink

log = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


class LoopState(str, Enum):
    """Lifecycle states of a consumption loop."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    RUNNING = "running"
    DRAINING = "draining"
    FAILED = "failed"


class ConsumerMode(str, Enum):
    """Processing facade selected at configuration time."""
    MESSAGE = "message"
    BATCH = "batch"


class ConsumptionLoop:
    """
    One connect -> subscribe -> run cycle over a topic.

    A single pull loop feeds one processing function. In ``message`` mode
    records are pulled one at a time and each is followed by a simulated
    processing delay; in ``batch`` mode records are pulled in batches and
    processed without delay, stopping early when the loop is stopping or
    the partition is no longer owned.

    Errors raised by the broker client move the loop to ``failed`` and
    propagate; the loop never retries internally. Instances are single use.
    """

    def __init__(
        self,
        consumer: BrokerConsumer,
        sink: TieredSink,
        topic: str,
        mode: ConsumerMode | str = ConsumerMode.MESSAGE,
        batch_size: int = 100,
        poll_timeout_ms: int = 1000,
        delay_range_ms: tuple[int, int] = (500, 2500),
        metrics: Metrics | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._consumer = consumer
        self._sink = sink
        self.topic = topic
        self.mode = ConsumerMode(mode)
        self.batch_size = batch_size
        self.poll_timeout_ms = poll_timeout_ms
        self.delay_range_ms = delay_range_ms
        self._metrics = metrics
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._stop_requested = asyncio.Event()
        self._state = LoopState.DISCONNECTED
        self.message_count = 0

    @classmethod
    def from_settings(
        cls,
        consumer: BrokerConsumer,
        sink: TieredSink,
        settings: Settings,
        metrics: Metrics | None = None,
    ) -> "ConsumptionLoop":
        return cls(
            consumer,
            sink,
            topic=settings.KAFKA_TOPIC,
            mode=settings.CONSUMER_MODE,
            batch_size=settings.CONSUMER_BATCH_SIZE,
            delay_range_ms=(settings.PROCESSING_DELAY_MIN_MS, settings.PROCESSING_DELAY_MAX_MS),
            metrics=metrics,
        )

    @property
    def state(self) -> LoopState:
        return self._state

    def _set_state(self, state: LoopState):
        self._state = state
        log.debug("consumer.state", state=state.value)
        if self._metrics:
            self._metrics.set_consumer_state(state.value)

    def stop(self):
        """Request a graceful stop after the current message or batch."""
        if self._stop_requested.is_set():
            return
        self._stop_requested.set()
        if self._state == LoopState.RUNNING:
            self._set_state(LoopState.DRAINING)

    @property
    def stopping(self) -> bool:
        return self._stop_requested.is_set()

    async def run(self):
        """
        Connect, subscribe from the latest offset, and process until stopped.

        Raises:
            Exception: Any broker failure; the loop is left in ``failed``
        """
        try:
            self._set_state(LoopState.CONNECTING)
            await self._consumer.connect()
            await self._consumer.subscribe(self.topic, from_beginning=False)
            self._set_state(LoopState.SUBSCRIBED)

            if self.stopping:
                self._set_state(LoopState.DRAINING)
            else:
                self._set_state(LoopState.RUNNING)
                log.info("consumer.started", topic=self.topic, mode=self.mode.value)

            while not self.stopping:
                if self.mode == ConsumerMode.MESSAGE:
                    for message in await self._consumer.fetch(1, self.poll_timeout_ms):
                        await self._handle_message(message)
                else:
                    messages = await self._consumer.fetch(self.batch_size, self.poll_timeout_ms)
                    await self._handle_batch(messages)
        except Exception as e:
            self._set_state(LoopState.FAILED)
            log.error("consumer.run_failed", error=str(e), error_type=e.__class__.__name__)
            raise

        await self.disconnect()
        log.info("consumer.stopped", messages=self.message_count)

    async def disconnect(self):
        """Release the broker session. Errors are logged, never raised."""
        try:
            await self._consumer.disconnect()
        except Exception as e:
            log.error("consumer.disconnect_failed", error=str(e), error_type=e.__class__.__name__)
        self._set_state(LoopState.DISCONNECTED)

    async def _handle_message(self, message: InboundMessage):
        self.message_count += 1
        number = self.message_count
        log.info("message.received", message_number=number, partition=message.partition, offset=message.offset)

        result = self.process(message, simulate_delay=True)
        if result.success:
            log.info("message.processed", message_number=number, tier=result.tier.value)
        else:
            log.error("message.failed", message_number=number, error=result.error)

        if result.processing_delay_ms:
            await self._sleep(result.processing_delay_ms / 1000)
        # Undecodable messages are committed too, so they are never redelivered
        await self._consumer.commit(message)

    async def _handle_batch(self, messages: list[InboundMessage]):
        for index, message in enumerate(messages):
            if self.stopping or self._consumer.is_stale(message):
                log.info("batch.aborted", remaining=len(messages) - index, stopping=self.stopping)
                break
            self.message_count += 1
            self.process(message, simulate_delay=False)
            await self._consumer.commit(message)
            await self._consumer.heartbeat()

    def classify_record(self, message: InboundMessage, body: dict) -> ClassifiedRecord:
        tier = classify(body)
        views = redact(body, tier)
        return ClassifiedRecord(message=message, tier=tier, durable=views.durable, console=views.console)

    def process(self, message: InboundMessage, simulate_delay: bool = True) -> ProcessingResult:
        """
        Decode, classify and route one message to the tiered sink.

        Decode failures are reported as a failed result and never raised.

        Args:
            message: Inbound message
            simulate_delay: Draw a processing delay for the caller to wait

        Returns:
            Processing outcome
        """
        try:
            body = decode_event(message.value)
        except MessageDecodeError as e:
            log.error(
                "message.decode_failed",
                partition=message.partition,
                offset=message.offset,
                error=e.reason,
            )
            if self._metrics:
                self._metrics.record_decode_failure()
                self._metrics.record_message(LogTier.NORMAL.value, success=False)
            return ProcessingResult(success=False, tier=LogTier.NORMAL, error=e.reason)

        record = self.classify_record(message, body)
        try:
            self._sink.record(
                "info",
                "Event received",
                {
                    "tier": record.tier.value,
                    "eventType": body["type"],
                    "eventId": event_identifier(body),
                    "key": message.key.decode(errors="replace") if message.key else "N/A",
                    "partition": message.partition,
                    "offset": message.offset,
                    "brokerTimestamp": message.timestamp,
                    "eventData": record.durable,
                },
            )
        except Exception as e:
            log.error("message.sink_failed", offset=message.offset, error=str(e), exc_info=True)
            if self._metrics:
                self._metrics.record_message(record.tier.value, success=False)
            return ProcessingResult(success=False, tier=record.tier, error=str(e))

        log.debug("message.body", tier=record.tier.value, event_data=record.console)
        if self._metrics:
            self._metrics.record_message(record.tier.value, success=True)

        delay_ms = None
        if simulate_delay:
            low, high = self.delay_range_ms
            delay_ms = self._rng.uniform(low, high)
            log.debug("message.processing_delay", delay_ms=round(delay_ms))
        return ProcessingResult(success=True, tier=record.tier, processing_delay_ms=delay_ms)
