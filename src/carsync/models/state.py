"""Persistence-ready vehicle state."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

VALID_GEARS = frozenset(range(7))


class VehicleState(BaseModel):
    """Latest derived state of a vehicle.

    Parameters
    ----------
    vehicle_id : int
        Vehicle identifier.
    observed_at : datetime
        When the state was last updated (UTC).
    latitude, longitude : float
        Position in degrees.
    speed_kmh : float
        Speed in km/h.
    gear : int
        ``0`` for neutral, ``1`` .. ``6`` otherwise.
    state_of_charge_percent : int
        Capacity-weighted state of charge over all battery cells.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    vehicle_id: int
    observed_at: datetime
    latitude: float
    longitude: float
    speed_kmh: float
    gear: int
    state_of_charge_percent: int = Field(ge=0, le=100)

    @field_validator("gear")
    @classmethod
    def _check_gear(cls, value: int) -> int:
        if value not in VALID_GEARS:
            raise ValueError(f"gear must be one of 0..6, got {value}")
        return value

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def to_record(self) -> dict[str, Any]:
        """Outbound record in the store's camelCase shape."""
        return {
            "vehicleId": self.vehicle_id,
            "observedAt": self.observed_at.isoformat(),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speedKmh": self.speed_kmh,
            "gear": self.gear,
            "stateOfChargePercent": self.state_of_charge_percent,
        }
