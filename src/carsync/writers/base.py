"""Writer interface and an in-memory implementation."""

from __future__ import annotations

from typing import Protocol

from carsync.models.state import VehicleState


class StateWriter(Protocol):
    """Structural interface of a durable store.

    ``write`` persists one vehicle state and raises on failure. Having a
    protocol here makes it easy to pass test doubles while keeping the
    production writers concrete.
    """

    async def write(self, state: VehicleState) -> None: ...


class InMemoryStateWriter:
    """Collects written states; useful for dry runs and tests."""

    def __init__(self) -> None:
        self.records: list[VehicleState] = []

    async def write(self, state: VehicleState) -> None:
        self.records.append(state)

    def for_vehicle(self, vehicle_id: int) -> list[VehicleState]:
        return [record for record in self.records if record.vehicle_id == vehicle_id]
