"""Typed models shared across carsync."""

from carsync.models.buffer import CellReading, VehicleBuffer
from carsync.models.events import FieldEvent, FieldName
from carsync.models.state import VehicleState

__all__ = [
    "CellReading",
    "FieldEvent",
    "FieldName",
    "VehicleBuffer",
    "VehicleState",
]
