"""
Prometheus metrics for the producer and consumer roles.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
import psutil
import os

# Numeric encoding of consumer loop states for the state gauge
LOOP_STATE_CODES = {
    "disconnected": 0,
    "connecting": 1,
    "subscribed": 2,
    "running": 3,
    "draining": 4,
    "failed": 5,
}


class Metrics:
    """
    Centralized metrics for the event streaming service.
    """

    def __init__(self, service_name: str = "kafka-node-events", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        # Application Info
        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Producer
        self.publish_attempts_total = Counter(
            "eventstream_publish_attempts_total",
            "Total send attempts, including retries",
            ["event_type"],
            registry=self.registry,
        )

        self.events_published_total = Counter(
            "eventstream_events_published_total",
            "Total events acknowledged by the broker",
            ["event_type"],
            registry=self.registry,
        )

        self.publish_failures_total = Counter(
            "eventstream_publish_failures_total",
            "Total events that exhausted their retries",
            ["event_type"],
            registry=self.registry,
        )

        self.publish_latency = Histogram(
            "eventstream_publish_latency_seconds",
            "Time from first attempt to acknowledgement, retries included",
            ["event_type"],
            registry=self.registry,
        )

        # Consumer
        self.messages_consumed_total = Counter(
            "eventstream_messages_consumed_total",
            "Total messages consumed",
            ["tier", "outcome"],
            registry=self.registry,
        )

        self.decode_failures_total = Counter(
            "eventstream_decode_failures_total",
            "Total messages skipped because they could not be decoded",
            registry=self.registry,
        )

        self.consumer_restarts_total = Counter(
            "eventstream_consumer_restarts_total",
            "Total consumption loop restarts by the supervisor",
            registry=self.registry,
        )

        self.consumer_state = Gauge(
            "eventstream_consumer_state",
            "Current consumption loop state (see LOOP_STATE_CODES)",
            registry=self.registry,
        )

        # System Metrics
        self.process_memory_bytes = Gauge(
            "process_resident_memory_bytes",
            "Resident memory size in bytes",
            ["service"],
            registry=self.registry,
        )
        self.update_system_metrics()

    def update_system_metrics(self):
        """Update system metrics from psutil."""
        try:
            memory_info = psutil.Process(os.getpid()).memory_info()
            self.process_memory_bytes.labels(service=self.service_name).set(memory_info.rss)
        except psutil.Error:
            # Process information can be unavailable in restricted sandboxes
            pass

    def record_publish_attempt(self, event_type: str):
        self.publish_attempts_total.labels(event_type=event_type).inc()

    def record_event_published(self, event_type: str, latency_seconds: float):
        """Record an acknowledged publication."""
        self.events_published_total.labels(event_type=event_type).inc()
        self.publish_latency.labels(event_type=event_type).observe(latency_seconds)

    def record_publish_failure(self, event_type: str):
        self.publish_failures_total.labels(event_type=event_type).inc()

    def record_message(self, tier: str, success: bool):
        self.messages_consumed_total.labels(tier=tier, outcome="success" if success else "failure").inc()

    def record_decode_failure(self):
        self.decode_failures_total.inc()

    def record_restart(self):
        self.consumer_restarts_total.inc()

    def set_consumer_state(self, state: str):
        self.consumer_state.set(LOOP_STATE_CODES.get(state, -1))
