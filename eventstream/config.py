from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Broker
    KAFKA_BROKER_URL: str = "localhost:9092"  # Comma-separated list of brokers
    KAFKA_CLIENT_ID: str = "kafka-node-events"
    KAFKA_TOPIC: str = "events-log"
    KAFKA_CONSUMER_GROUP_ID: str = "events-consumer-group"
    # Backend adapter selection: "kafka" or "memory"
    BROKER_ADAPTER: Literal["kafka", "memory"] = "kafka"
    # Consumer session (milliseconds)
    CONSUMER_SESSION_TIMEOUT: int = 30000
    CONSUMER_HEARTBEAT_INTERVAL: int = 3000
    CONSUMER_REBALANCE_TIMEOUT: int = 60000
    CONSUMER_MAX_PARTITION_FETCH_BYTES: int = 1048576  # 1MB
    CONSUMER_MODE: Literal["message", "batch"] = "message"
    CONSUMER_BATCH_SIZE: int = 100
    # Producer retry policy
    PRODUCER_RETRY_ATTEMPTS: int = 3
    PRODUCER_RETRY_BASE_MS: int = 1000
    PRODUCER_PACING_MS: int = 500
    PRODUCER_REQUEST_TIMEOUT_MS: int = 30000
    # Simulated processing latency for per-message mode
    PROCESSING_DELAY_MIN_MS: int = 500
    PROCESSING_DELAY_MAX_MS: int = 2500
    RECONNECT_DELAY_MS: int = 5000
    DEMO_CONSUMER_WARMUP_MS: int = 3000
    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_DIR: str | None = "logs"
    # Health and metrics HTTP server, disabled when unset
    HEALTH_PORT: int | None = None

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.PRODUCER_RETRY_ATTEMPTS < 0:
            raise ValueError("PRODUCER_RETRY_ATTEMPTS must be >= 0")
        if self.CONSUMER_BATCH_SIZE < 1:
            raise ValueError("CONSUMER_BATCH_SIZE must be >= 1")
        if self.PROCESSING_DELAY_MIN_MS > self.PROCESSING_DELAY_MAX_MS:
            raise ValueError("PROCESSING_DELAY_MIN_MS must not exceed PROCESSING_DELAY_MAX_MS")
        return self

    @property
    def bootstrap_servers(self) -> list[str]:
        return [s.strip() for s in self.KAFKA_BROKER_URL.split(",") if s.strip()]

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
