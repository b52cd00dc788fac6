"""Decoded telemetry field events.

Every inbound message touches exactly one field of one vehicle (or one
sub-field of one battery cell). The decoder turns it into a
:class:`FieldEvent`; only the reconciler merges these into state.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FieldName(StrEnum):
    LATITUDE = "latitude"
    LONGITUDE = "longitude"
    SPEED = "speed"
    GEAR = "gear"
    BATTERY_SOC = "battery_soc"
    BATTERY_CAPACITY = "battery_capacity"

    @property
    def is_battery(self) -> bool:
        return self in (FieldName.BATTERY_SOC, FieldName.BATTERY_CAPACITY)


class FieldEvent(BaseModel):
    """A single partial update for one vehicle."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    vehicle_id: int
    field: FieldName
    cell_index: int | None = Field(default=None, ge=0)
    value: float | str

    @model_validator(mode="after")
    def _check_cell_index(self) -> FieldEvent:
        if self.field.is_battery and self.cell_index is None:
            raise ValueError(f"{self.field} requires a cell_index")
        if not self.field.is_battery and self.cell_index is not None:
            raise ValueError(f"{self.field} does not take a cell_index")
        return self
