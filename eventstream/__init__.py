"""Kafka event publication and tiered consumption."""

__version__ = "0.1.0"
