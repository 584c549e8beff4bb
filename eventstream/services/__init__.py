"""Publish engine, consumption loop and reconnection supervisor."""
