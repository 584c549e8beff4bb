from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict
from enum import Enum
import time


class LogTier(str, Enum):
    """Durability/visibility tier of a consumed event."""
    NORMAL = "normal"
    AUDIT = "audit"
    PROTECTED = "protected"


class Event(BaseModel):
    """An event as produced to the broker. Type-specific fields are kept as extras."""
    model_config = ConfigDict(extra="allow", frozen=True, use_enum_values=True)

    type: str = Field(..., min_length=1, description="Event type discriminator, used as partition key")
    logType: LogTier | None = Field(default=None, description="Optional declared classification tag")

    def body(self) -> Dict[str, Any]:
        """Wire representation, without unset optional tags."""
        return self.model_dump(exclude_none=True)


class DeliveryReport(BaseModel):
    """Broker acknowledgement for one published record."""
    topic: str
    partition: int
    offset: int


class PublishAttempt(BaseModel):
    """One send try for an event."""
    event_type: str
    attempt: int = Field(..., ge=0)
    delay_ms: int = 0


class InboundMessage(BaseModel):
    """A record received from the broker."""
    model_config = ConfigDict(frozen=True)

    topic: str
    key: bytes | None = None
    value: bytes
    partition: int
    offset: int
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))


class ClassifiedRecord(BaseModel):
    """An inbound message with its derived tier and both sink views."""
    message: InboundMessage
    tier: LogTier
    durable: Dict[str, Any] = Field(default_factory=dict)
    console: Dict[str, Any] = Field(default_factory=dict)


class ProcessingResult(BaseModel):
    """Outcome of processing one inbound message."""
    success: bool
    tier: LogTier = LogTier.NORMAL
    processing_delay_ms: float | None = None
    error: str | None = None
