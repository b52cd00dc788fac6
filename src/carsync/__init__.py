"""carsync - reconcile per-field vehicle telemetry into persisted vehicle state."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("carsync")
except PackageNotFoundError:
    __version__ = "0+local"
from carsync.config import CarSyncConfig, MqttSettings
from carsync.derive import (
    calculate_state_of_charge,
    convert_gear,
    convert_speed,
    derive_state,
    is_complete,
)
from carsync.exceptions import (
    CarSyncConfigError,
    CarSyncError,
    CompletenessValidationError,
    ConversionError,
    ConversionFailure,
    DecodeError,
    DecodeFailure,
    PersistError,
)
from carsync.flush import FlushReport, PeriodicFlusher
from carsync.ingestion.decode import decode_message
from carsync.models import CellReading, FieldEvent, FieldName, VehicleBuffer, VehicleState
from carsync.reconciler import ReconcileOutcome, Reconciler, VehiclePhase
from carsync.service import TelemetryService
from carsync.state import VehicleBufferStore, VehicleStateTable

__all__ = [
    "__version__",
    "CarSyncConfig",
    "CarSyncConfigError",
    "CarSyncError",
    "CellReading",
    "CompletenessValidationError",
    "ConversionError",
    "ConversionFailure",
    "DecodeError",
    "DecodeFailure",
    "FieldEvent",
    "FieldName",
    "FlushReport",
    "MqttSettings",
    "PeriodicFlusher",
    "PersistError",
    "ReconcileOutcome",
    "Reconciler",
    "TelemetryService",
    "VehicleBuffer",
    "VehicleBufferStore",
    "VehiclePhase",
    "VehicleState",
    "VehicleStateTable",
    "calculate_state_of_charge",
    "convert_gear",
    "convert_speed",
    "decode_message",
    "derive_state",
    "is_complete",
]
