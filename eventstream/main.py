"""
Kafka Node Events - event publication and tiered consumption.

Commands:
- produce: publish the sample events, retrying failed sends
- consume: consume the topic until interrupted, restarting on failures
- demo: start the consumer, then publish the sample events to it
"""
import argparse
import asyncio
import signal
import sys
from typing import Callable, Iterable
import structlog
from pydantic import ValidationError
from .adapters.base import BrokerProducer
from .catalog import sample_events
from .config import Settings, get_settings
from .errors import PublishExhaustedError
from .event_models import Event
from .health import HealthChecker, build_health_server, create_health_app
from .logging import setup_logging
from .metrics import Metrics
from .services.broker import create_consumer, create_producer
from .services.consumer import ConsumptionLoop, LoopState
from .services.publisher import PublishEngine
from .services.supervisor import ReconnectionSupervisor
from .sinks import TieredSink

log = structlog.get_logger()

# Exit codes
EXIT_OK = 0
EXIT_PUBLISH_FAILED = 1
EXIT_CONFIG_ERROR = 2


def _install_signal_handlers(callback: Callable[[signal.Signals], None]):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, callback, sig)
        except (NotImplementedError, RuntimeError):
            pass  # add_signal_handler not available on Windows


async def run_produce(
    settings: Settings,
    producer: BrokerProducer | None = None,
    events: Iterable[Event] | None = None,
    metrics: Metrics | None = None,
) -> int:
    """
    Publish a batch of events, disconnecting the producer in all cases.

    Returns:
        Process exit code
    """
    producer = producer or create_producer(settings)
    events = list(events) if events is not None else sample_events()
    engine = PublishEngine.from_settings(producer, settings, metrics)

    try:
        await producer.connect()
        log.info("producer.batch_started", count=len(events), topic=settings.KAFKA_TOPIC)
        await engine.publish_batch(events)
        log.info("producer.batch_completed", count=len(events))
        return EXIT_OK
    except PublishExhaustedError as e:
        log.error("producer.batch_aborted", event_type=e.event_type, attempts=e.attempts)
        print(
            f"Max retries exceeded for event: {e.event_type} (retries: {e.attempts - 1})",
            file=sys.stderr,
        )
        return EXIT_PUBLISH_FAILED
    except asyncio.CancelledError:
        log.info("producer.interrupted")
        return EXIT_OK
    except Exception as e:
        log.error("producer.failed", error=str(e), error_type=e.__class__.__name__, exc_info=True)
        return EXIT_PUBLISH_FAILED
    finally:
        await producer.disconnect()


def build_supervisor(settings: Settings, sink: TieredSink, metrics: Metrics) -> ReconnectionSupervisor:
    """Supervisor building a fresh consumer client and loop for every cycle."""

    def make_loop() -> ConsumptionLoop:
        return ConsumptionLoop.from_settings(create_consumer(settings), sink, settings, metrics)

    return ReconnectionSupervisor(make_loop, delay_ms=settings.RECONNECT_DELAY_MS, metrics=metrics)


def _consumer_state(supervisor: ReconnectionSupervisor) -> Callable[[], str]:
    def state() -> str:
        current = supervisor.current
        return current.state.value if current else LoopState.DISCONNECTED.value

    return state


async def _with_health_server(settings: Settings, supervisor: ReconnectionSupervisor, metrics: Metrics, work):
    """Run ``work`` with the health server alongside it when HEALTH_PORT is set."""
    if settings.HEALTH_PORT is None:
        return await work
    checker = HealthChecker(_consumer_state(supervisor))
    server = build_health_server(create_health_app(checker, metrics), settings.HEALTH_PORT)
    server_task = asyncio.create_task(server.serve())
    log.info("health.listening", port=settings.HEALTH_PORT)
    try:
        return await work
    finally:
        server.should_exit = True
        await server_task


async def run_consume(settings: Settings, metrics: Metrics | None = None, sink: TieredSink | None = None) -> int:
    """Consume until SIGINT/SIGTERM. Failures restart the loop, never end the process."""
    metrics = metrics or Metrics()
    sink = sink or TieredSink(log_dir=settings.LOG_DIR, json_output=settings.LOG_JSON)
    supervisor = build_supervisor(settings, sink, metrics)

    def on_signal(sig: signal.Signals):
        log.info("shutdown.requested", signal=sig.name)
        supervisor.stop()

    _install_signal_handlers(on_signal)
    try:
        await _with_health_server(settings, supervisor, metrics, supervisor.run())
    finally:
        sink.close()
    log.info("consumer.shutdown_complete")
    return EXIT_OK


async def run_demo(settings: Settings, metrics: Metrics | None = None, sink: TieredSink | None = None) -> int:
    """Start the consumer, publish the sample events, keep consuming until interrupted."""
    metrics = metrics or Metrics()
    sink = sink or TieredSink(log_dir=settings.LOG_DIR, json_output=settings.LOG_JSON)
    supervisor = build_supervisor(settings, sink, metrics)
    producer_task: asyncio.Task | None = None

    def on_signal(sig: signal.Signals):
        log.info("shutdown.requested", signal=sig.name)
        supervisor.stop()
        if producer_task is not None and not producer_task.done():
            producer_task.cancel()

    _install_signal_handlers(on_signal)
    consumer_task = asyncio.create_task(
        _with_health_server(settings, supervisor, metrics, supervisor.run())
    )
    try:
        log.info("demo.consumer_warmup", delay_ms=settings.DEMO_CONSUMER_WARMUP_MS)
        await asyncio.sleep(settings.DEMO_CONSUMER_WARMUP_MS / 1000)

        producer_task = asyncio.create_task(run_produce(settings, metrics=metrics))
        code = await producer_task
        if code != EXIT_OK:
            supervisor.stop()
            await consumer_task
            return code

        log.info("demo.waiting_for_consumer")
        await consumer_task
        return EXIT_OK
    finally:
        if not consumer_task.done():
            supervisor.stop()
            await consumer_task
        sink.close()


async def _produce_command(settings: Settings) -> int:
    task = asyncio.current_task()
    _install_signal_handlers(lambda sig: task.cancel())
    return await run_produce(settings, metrics=Metrics())


COMMANDS = {
    "produce": _produce_command,
    "consume": run_consume,
    "demo": run_demo,
}


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="eventstream", description="Kafka event publication and tiered consumption")
    ap.add_argument("command", choices=sorted(COMMANDS))
    args = ap.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(json_output=settings.LOG_JSON, level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR)
    log.info(
        "service_starting",
        command=args.command,
        brokers=settings.KAFKA_BROKER_URL,
        topic=settings.KAFKA_TOPIC,
        group_id=settings.KAFKA_CONSUMER_GROUP_ID,
        adapter=settings.BROKER_ADAPTER,
    )

    try:
        return asyncio.run(COMMANDS[args.command](settings))
    except KeyboardInterrupt:
        log.info("service_stopping", reason="interrupted")
        return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
