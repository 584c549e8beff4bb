"""Sequential event publication with exponential backoff."""
import asyncio
import time
from typing import Awaitable, Callable, Iterable
import orjson
import structlog
from ..adapters.base import BrokerProducer
from ..config import Settings
from ..errors import PublishExhaustedError
from ..event_models import DeliveryReport, Event, PublishAttempt
from ..metrics import Metrics

log = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


def backoff_ms(attempt: int, base_delay_ms: int) -> int:
    """Delay to wait after failed attempt ``attempt`` (0-based) before the next one."""
    return (2 ** attempt) * base_delay_ms


class PublishEngine:
    """
    Publishes events one at a time, retrying failed sends.

    A failed send is retried up to ``max_retries`` times, waiting
    ``2^attempt * base_delay_ms`` (no jitter) before each retry. Exhausting
    the retries raises PublishExhaustedError and aborts the batch.
    """

    def __init__(
        self,
        producer: BrokerProducer,
        topic: str,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        pacing_ms: int = 500,
        metrics: Metrics | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize publish engine.

        Args:
            producer: Connected broker producer
            topic: Target topic
            max_retries: Retries after the initial attempt
            base_delay_ms: Backoff base delay
            pacing_ms: Pause after each successful publish in a batch
            metrics: Optional metrics sink
            sleep: Awaitable sleep, injectable for tests
        """
        self._producer = producer
        self.topic = topic
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.pacing_ms = pacing_ms
        self._metrics = metrics
        self._sleep = sleep

    @classmethod
    def from_settings(cls, producer: BrokerProducer, settings: Settings, metrics: Metrics | None = None) -> "PublishEngine":
        return cls(
            producer,
            topic=settings.KAFKA_TOPIC,
            max_retries=settings.PRODUCER_RETRY_ATTEMPTS,
            base_delay_ms=settings.PRODUCER_RETRY_BASE_MS,
            pacing_ms=settings.PRODUCER_PACING_MS,
            metrics=metrics,
        )

    async def publish(self, event: Event) -> DeliveryReport:
        """
        Publish one event, keyed by its type.

        Args:
            event: Event to publish

        Returns:
            Delivery report of the acknowledged record

        Raises:
            PublishExhaustedError: If every attempt failed; the last broker
                error is chained as ``__cause__``
        """
        key = event.type.encode()
        value = orjson.dumps(event.body())
        started = time.monotonic()
        last_error: Exception | None = None
        delay_ms = 0

        for attempt in range(self.max_retries + 1):
            record = PublishAttempt(event_type=event.type, attempt=attempt, delay_ms=delay_ms)
            log.debug("publish.attempt", **record.model_dump())
            if self._metrics:
                self._metrics.record_publish_attempt(event.type)

            try:
                reports = await self._producer.send(
                    self.topic,
                    key=key,
                    value=value,
                    timestamp_ms=int(time.time() * 1000),
                )
            except Exception as e:
                last_error = e
                log.warning(
                    "publish.failed",
                    event_type=event.type,
                    attempt=attempt + 1,
                    elapsed_ms=round((time.monotonic() - started) * 1000, 2),
                    error=str(e),
                    error_type=e.__class__.__name__,
                )
                if attempt < self.max_retries:
                    delay_ms = backoff_ms(attempt, self.base_delay_ms)
                    log.info("publish.retry_scheduled", event_type=event.type, delay_ms=delay_ms)
                    await self._sleep(delay_ms / 1000)
                continue

            report = reports[0]
            elapsed = time.monotonic() - started
            log.info(
                "event.published",
                type=event.type,
                partition=report.partition,
                offset=report.offset,
                attempts=attempt + 1,
                elapsed_ms=round(elapsed * 1000, 2),
            )
            if self._metrics:
                self._metrics.record_event_published(event.type, elapsed)
            return report

        attempts = self.max_retries + 1
        log.error("publish.exhausted", event_type=event.type, attempts=attempts, retries=self.max_retries)
        if self._metrics:
            self._metrics.record_publish_failure(event.type)
        raise PublishExhaustedError(event.type, attempts) from last_error

    async def publish_batch(self, events: Iterable[Event]) -> list[DeliveryReport]:
        """
        Publish events strictly in order, pausing after each success.

        The first event to exhaust its retries aborts the batch.

        Returns:
            Delivery reports, in publication order
        """
        reports = []
        for event in events:
            reports.append(await self.publish(event))
            await self._sleep(self.pacing_ms / 1000)
        return reports
