"""Exception types raised by the producer and consumer roles."""


class EventStreamError(Exception):
    """Base class for errors raised by this package."""


class BrokerNotConnectedError(EventStreamError):
    """Raised when a broker call is made before connect() or after disconnect()."""


class MessageDecodeError(EventStreamError):
    """Raised when an inbound message body is not a decodable event."""

    def __init__(self, reason: str, offset: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.offset = offset


class PublishExhaustedError(EventStreamError):
    """
    Raised when an event could not be published within the retry bound.

    Attributes:
        event_type: Type of the event that failed
        attempts: Number of send attempts made (initial + retries)
    """

    def __init__(self, event_type: str, attempts: int):
        super().__init__(
            f"Max retries exceeded for event: {event_type} ({attempts} attempts)"
        )
        self.event_type = event_type
        self.attempts = attempts
