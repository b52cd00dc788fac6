"""Table of the latest derived state per vehicle."""

from __future__ import annotations

import logging
import types
from collections.abc import Mapping

from carsync.models.state import VehicleState

_logger = logging.getLogger(__name__)


class VehicleStateTable:
    """Mapping of vehicle ID -> :class:`VehicleState`.

    States are frozen models and are replaced, never mutated, so a snapshot
    only needs to copy the mapping itself.
    """

    def __init__(self) -> None:
        self._states: dict[int, VehicleState] = {}

    def __contains__(self, vehicle_id: object) -> bool:
        return vehicle_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get(self, vehicle_id: int) -> VehicleState | None:
        return self._states.get(vehicle_id)

    def put(self, state: VehicleState) -> None:
        self._states[state.vehicle_id] = state

    def snapshot(self) -> Mapping[int, VehicleState]:
        """Read-only copy of the table taken at call time."""
        return types.MappingProxyType(dict(self._states))

    def delete(self, vehicle_id: int) -> bool:
        removed = self._states.pop(vehicle_id, None) is not None
        if removed:
            _logger.debug("Dropped state for vehicle %s", vehicle_id)
        return removed
