"""Ingestion layer.

Turns raw transport messages (topic + payload) into typed field events.
"""

from carsync.ingestion.decode import decode_message, decode_topic

__all__ = ["decode_message", "decode_topic"]
