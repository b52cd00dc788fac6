"""Completeness gate and derived-state calculations.

Everything in this module is pure: it reads buffers and states and returns new
values, it never touches the stores.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime

from carsync.exceptions import CompletenessValidationError, ConversionError, ConversionFailure
from carsync.ingestion.normalize import safe_float
from carsync.models.buffer import CellReading, VehicleBuffer
from carsync.models.events import FieldEvent, FieldName
from carsync.models.state import VehicleState

DEFAULT_CELL_COUNT = 2
MPS_TO_KMH = 3.6

_GEARS: dict[str, int] = {"N": 0, **{str(gear): gear for gear in range(1, 7)}}

# ------------------------------------------------------------------
# Conversions
# ------------------------------------------------------------------


def convert_gear(label: str) -> int:
    """Convert a gear label (``"N"``, ``"1"`` .. ``"6"``) to its integer form."""
    gear = _GEARS.get(label.strip()) if isinstance(label, str) else None
    if gear is None:
        raise ConversionError(f"Invalid gear {label!r}", reason=ConversionFailure.INVALID_GEAR)
    return gear


def convert_speed(speed_mps: float) -> float:
    """m/s -> km/h."""
    return speed_mps * MPS_TO_KMH


def calculate_state_of_charge(cells: Mapping[int, CellReading]) -> int | None:
    """Capacity-weighted state of charge over all cells, in percent.

    Returns ``None`` when there are no cells or any cell is missing a value,
    so that callers can keep the previous result.
    """
    if not cells or not all(cell.is_populated for cell in cells.values()):
        return None

    stored = sum(cell.soc * cell.capacity / 100 for cell in cells.values())  # type: ignore[operator]
    total_capacity = sum(cell.capacity for cell in cells.values())  # type: ignore[misc]
    if total_capacity <= 0:
        return None
    return math.trunc(stored * 100 / total_capacity)


def convert_value(event: FieldEvent) -> float | str:
    """Validate and normalize the value carried by *event* before it is merged.

    Gear labels are checked but kept as labels; every other field is parsed
    into a finite float.
    """
    if event.field == FieldName.GEAR:
        label = str(event.value).strip()
        convert_gear(label)
        return label

    number = safe_float(event.value)
    if number is None:
        raise ConversionError(
            f"{event.field} value {event.value!r} is not a finite number",
            reason=ConversionFailure.MALFORMED_NUMBER,
        )
    if event.field == FieldName.BATTERY_SOC and not 0 <= number <= 100:
        raise ConversionError(
            f"Cell {event.cell_index} soc {number} outside 0..100",
            reason=ConversionFailure.OUT_OF_RANGE,
        )
    if event.field == FieldName.BATTERY_CAPACITY and number <= 0:
        raise ConversionError(
            f"Cell {event.cell_index} capacity {number} must be positive",
            reason=ConversionFailure.OUT_OF_RANGE,
        )
    return number


# ------------------------------------------------------------------
# Completeness gate
# ------------------------------------------------------------------


def missing_parts(buffer: VehicleBuffer, cell_count: int = DEFAULT_CELL_COUNT) -> tuple[str, ...]:
    """Names of everything that keeps *buffer* from being complete."""
    missing = [name for name in ("latitude", "longitude", "speed", "gear") if getattr(buffer, name) is None]
    if len(buffer.cells) != cell_count:
        missing.append(f"cells ({len(buffer.cells)}/{cell_count})")
    for index, cell in sorted(buffer.cells.items()):
        if cell.soc is None:
            missing.append(f"cells[{index}].soc")
        if cell.capacity is None:
            missing.append(f"cells[{index}].capacity")
    return tuple(missing)


def is_complete(buffer: VehicleBuffer, cell_count: int = DEFAULT_CELL_COUNT) -> bool:
    return not missing_parts(buffer, cell_count)


def require_complete(buffer: VehicleBuffer, cell_count: int = DEFAULT_CELL_COUNT) -> None:
    missing = missing_parts(buffer, cell_count)
    if missing:
        raise CompletenessValidationError(
            f"Vehicle {buffer.vehicle_id} incomplete, missing: {', '.join(missing)}",
            vehicle_id=buffer.vehicle_id,
            missing=missing,
        )


# ------------------------------------------------------------------
# Derivation
# ------------------------------------------------------------------


def derive_state(
    buffer: VehicleBuffer,
    observed_at: datetime,
    *,
    cell_count: int = DEFAULT_CELL_COUNT,
) -> VehicleState:
    """Build a fresh :class:`VehicleState` from a complete buffer."""
    require_complete(buffer, cell_count)
    state_of_charge = calculate_state_of_charge(buffer.cells)
    if state_of_charge is None:
        raise CompletenessValidationError(
            f"Vehicle {buffer.vehicle_id} has no usable battery capacity",
            vehicle_id=buffer.vehicle_id,
            missing=("cells.capacity",),
        )
    return VehicleState(
        vehicle_id=buffer.vehicle_id,
        observed_at=observed_at,
        latitude=buffer.latitude,
        longitude=buffer.longitude,
        speed_kmh=convert_speed(buffer.speed),  # type: ignore[arg-type]
        gear=convert_gear(buffer.gear),  # type: ignore[arg-type]
        state_of_charge_percent=state_of_charge,
    )


def update_state(
    state: VehicleState,
    buffer: VehicleBuffer,
    field: FieldName,
    observed_at: datetime,
) -> VehicleState:
    """Recompute only the derived field(s) that depend on *field*.

    State of charge is kept at its previous value unless every known cell is
    fully populated.
    """
    changes: dict[str, object] = {"observed_at": observed_at}
    if field == FieldName.LATITUDE:
        changes["latitude"] = buffer.latitude
    elif field == FieldName.LONGITUDE:
        changes["longitude"] = buffer.longitude
    elif field == FieldName.SPEED:
        changes["speed_kmh"] = convert_speed(buffer.speed)  # type: ignore[arg-type]
    elif field == FieldName.GEAR:
        changes["gear"] = convert_gear(buffer.gear)  # type: ignore[arg-type]
    elif field.is_battery:
        state_of_charge = calculate_state_of_charge(buffer.cells)
        if state_of_charge is not None:
            changes["state_of_charge_percent"] = state_of_charge
    else:  # pragma: no cover
        raise ValueError(f"Unhandled field {field}")

    # model_copy(update=...) would skip validation.
    return VehicleState.model_validate({**state.model_dump(), **changes})
