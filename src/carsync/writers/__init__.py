"""Durable-store collaborators used by the flush loop."""

from carsync.writers.base import InMemoryStateWriter, StateWriter
from carsync.writers.http import HttpStateWriter
from carsync.writers.mysql import MysqlStateWriter

__all__ = ["HttpStateWriter", "InMemoryStateWriter", "MysqlStateWriter", "StateWriter"]
