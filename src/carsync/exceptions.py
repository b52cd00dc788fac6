"""Custom exception hierarchy for carsync."""

from __future__ import annotations

from enum import StrEnum


class CarSyncError(Exception):
    """Base exception for all carsync errors."""


class CarSyncConfigError(CarSyncError):
    """Invalid or missing configuration."""


class DecodeFailure(StrEnum):
    MALFORMED_TOPIC = "malformed_topic"
    INVALID_VEHICLE_ID = "invalid_vehicle_id"
    UNKNOWN_FIELD = "unknown_field"
    MISSING_CELL_INDEX = "missing_cell_index"
    MALFORMED_PAYLOAD = "malformed_payload"


class DecodeError(CarSyncError):
    """Topic or payload could not be turned into a field event."""

    def __init__(self, message: str, *, reason: DecodeFailure, topic: str = "") -> None:
        self.reason = reason
        self.topic = topic
        super().__init__(message)


class ConversionFailure(StrEnum):
    INVALID_GEAR = "invalid_gear"
    MALFORMED_NUMBER = "malformed_number"
    OUT_OF_RANGE = "out_of_range"


class ConversionError(CarSyncError):
    """A field value could not be converted (bad gear label, bad number)."""

    def __init__(self, message: str, *, reason: ConversionFailure) -> None:
        self.reason = reason
        super().__init__(message)


class CompletenessValidationError(CarSyncError):
    """Vehicle buffer does not (yet) hold a complete record.

    This is the steady state while a vehicle is still accumulating fields,
    so callers should not treat it as a failure.
    """

    def __init__(self, message: str, *, vehicle_id: int, missing: tuple[str, ...] = ()) -> None:
        self.vehicle_id = vehicle_id
        self.missing = missing
        super().__init__(message)


class PersistError(CarSyncError):
    """Durable write of a vehicle state failed."""

    def __init__(self, message: str, *, vehicle_id: int | None = None) -> None:
        self.vehicle_id = vehicle_id
        super().__init__(message)
