"""Broker client selection."""
import structlog
from ..adapters.base import BrokerConsumer, BrokerProducer
from ..adapters.kafka import KafkaConsumerAdapter, KafkaProducerAdapter
from ..adapters.memory import InMemoryBroker
from ..config import Settings

log = structlog.get_logger()

# Shared by both roles when BROKER_ADAPTER=memory, so a demo run loops back in-process
memory_broker = InMemoryBroker()


def create_producer(settings: Settings) -> BrokerProducer:
    """
    Create the producer client based on configuration.

    Returns:
        BrokerProducer instance based on BROKER_ADAPTER setting
    """
    if settings.BROKER_ADAPTER == "memory":
        log.info("adapter.selected", role="producer", type="memory")
        return memory_broker.producer()
    log.info("adapter.selected", role="producer", type="kafka", brokers=settings.KAFKA_BROKER_URL)
    return KafkaProducerAdapter(settings)


def create_consumer(settings: Settings) -> BrokerConsumer:
    """
    Create a fresh consumer client based on configuration.

    Returns:
        BrokerConsumer instance based on BROKER_ADAPTER setting
    """
    if settings.BROKER_ADAPTER == "memory":
        log.info("adapter.selected", role="consumer", type="memory")
        return memory_broker.consumer(settings.KAFKA_CONSUMER_GROUP_ID)
    log.info("adapter.selected", role="consumer", type="kafka", brokers=settings.KAFKA_BROKER_URL)
    return KafkaConsumerAdapter(settings)
