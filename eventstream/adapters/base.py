"""Base interfaces for broker client implementations."""
from abc import ABC, abstractmethod
from ..event_models import DeliveryReport, InboundMessage


class BrokerProducer(ABC):
    """Producer side of a broker client."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the producer session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the producer session. Safe to call repeatedly."""
        pass

    @abstractmethod
    async def send(
        self,
        topic: str,
        key: bytes | None,
        value: bytes,
        timestamp_ms: int,
    ) -> list[DeliveryReport]:
        """
        Send one record and wait for the broker acknowledgement.

        Args:
            topic: Target topic
            key: Partition key
            value: Serialized event
            timestamp_ms: Record timestamp

        Returns:
            Delivery reports (partition, offset) for the record

        Raises:
            Exception: Any broker failure, raised to the caller
        """
        pass


class BrokerConsumer(ABC):
    """Consumer side of a broker client."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the consumer session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the consumer session. Safe to call repeatedly."""
        pass

    @abstractmethod
    async def subscribe(self, topic: str, from_beginning: bool = False) -> None:
        """
        Subscribe to a topic.

        Args:
            topic: Topic to consume
            from_beginning: Replay the backlog when the group has no committed
                offset; otherwise start from the latest offset
        """
        pass

    @abstractmethod
    async def fetch(self, max_records: int, timeout_ms: int) -> list[InboundMessage]:
        """
        Pull the next records, in partition order.

        Returns an empty list if nothing arrived within timeout_ms.
        """
        pass

    @abstractmethod
    async def commit(self, message: InboundMessage) -> None:
        """Mark a message (and everything before it in its partition) as consumed."""
        pass

    @abstractmethod
    def is_stale(self, message: InboundMessage) -> bool:
        """Whether this consumer no longer owns the message's partition."""
        pass

    @abstractmethod
    async def heartbeat(self) -> None:
        """Signal liveness to the broker session."""
        pass
