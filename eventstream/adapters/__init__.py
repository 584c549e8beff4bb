"""Broker adapters for the producer and consumer roles."""
