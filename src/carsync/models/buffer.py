"""Per-vehicle accumulation buffer."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class CellReading(BaseModel):
    """Last known values for one battery cell."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    soc: float | None = None
    capacity: float | None = None

    @property
    def is_populated(self) -> bool:
        return self.soc is not None and self.capacity is not None


class VehicleBuffer(BaseModel):
    """Partial-to-complete field buffer for one vehicle.

    Parameters
    ----------
    vehicle_id : int
        Vehicle the buffer belongs to.
    latitude, longitude : float or None
        Position in degrees.
    speed : float or None
        Raw speed in m/s (conversion happens on derivation).
    gear : str or None
        Gear label, ``"N"`` or ``"1"`` .. ``"6"``.
    cells : dict
        Battery cell index -> :class:`CellReading`.

    Known fields are only ever overwritten, never cleared.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    vehicle_id: int
    latitude: float | None = None
    longitude: float | None = None
    speed: float | None = None
    gear: str | None = None
    cells: dict[int, CellReading] = Field(default_factory=dict)

    def cell(self, index: int) -> CellReading:
        reading = self.cells.get(index)
        if reading is None:
            reading = CellReading()
            self.cells[index] = reading
        return reading
