"""In-memory store of per-vehicle field buffers.

This is the only component allowed to merge field events into buffers.
"""

from __future__ import annotations

from carsync.models.buffer import CellReading, VehicleBuffer
from carsync.models.events import FieldEvent, FieldName


def _event_cell(buffer: VehicleBuffer, event: FieldEvent) -> CellReading:
    if event.cell_index is None:
        raise ValueError(f"{event.field} event for vehicle {event.vehicle_id} has no cell index")
    return buffer.cell(event.cell_index)


def apply_event(buffer: VehicleBuffer, event: FieldEvent, value: float | str) -> None:
    """Overwrite the single field addressed by *event* with *value*.

    Cell readings merge field by field: setting ``soc`` keeps a known
    ``capacity`` for the same cell and vice versa.
    """
    match event.field:
        case FieldName.LATITUDE:
            buffer.latitude = float(value)
        case FieldName.LONGITUDE:
            buffer.longitude = float(value)
        case FieldName.SPEED:
            buffer.speed = float(value)
        case FieldName.GEAR:
            buffer.gear = str(value)
        case FieldName.BATTERY_SOC:
            _event_cell(buffer, event).soc = float(value)
        case FieldName.BATTERY_CAPACITY:
            _event_cell(buffer, event).capacity = float(value)


class VehicleBufferStore:
    """Mapping of vehicle ID -> :class:`VehicleBuffer`.

    Callers are expected to serialize merges per vehicle (the reconciler
    holds one lock per vehicle ID); merges for different vehicles are
    independent.
    """

    def __init__(self) -> None:
        self._buffers: dict[int, VehicleBuffer] = {}

    def __contains__(self, vehicle_id: object) -> bool:
        return vehicle_id in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)

    def get(self, vehicle_id: int) -> VehicleBuffer | None:
        return self._buffers.get(vehicle_id)

    def merge(self, event: FieldEvent, value: float | str | None = None) -> VehicleBuffer:
        """Merge *event* into its vehicle's buffer and return that buffer.

        *value* is the already-converted value; defaults to ``event.value``.
        """
        return self.commit(self.stage(event, value))

    def stage(self, event: FieldEvent, value: float | str | None = None) -> VehicleBuffer:
        """Return a copy of the vehicle's buffer with *event* applied.

        The stored buffer is left untouched until the copy is passed to
        :meth:`commit`.
        """
        current = self._buffers.get(event.vehicle_id)
        if current is None:
            staged = VehicleBuffer(vehicle_id=event.vehicle_id)
        else:
            staged = current.model_copy(deep=True)
        apply_event(staged, event, event.value if value is None else value)
        return staged

    def commit(self, buffer: VehicleBuffer) -> VehicleBuffer:
        """Store *buffer* as the current buffer of its vehicle."""
        self._buffers[buffer.vehicle_id] = buffer
        return buffer

    def snapshot(self) -> dict[int, VehicleBuffer]:
        """Deep copy of every buffer."""
        return {vehicle_id: buffer.model_copy(deep=True) for vehicle_id, buffer in self._buffers.items()}

    def delete(self, vehicle_id: int) -> bool:
        return self._buffers.pop(vehicle_id, None) is not None
