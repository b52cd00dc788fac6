"""Per-event reconciliation of field events into vehicle state.

For each event: decode -> filter -> convert -> merge into the vehicle's
buffer -> gate on completeness -> derive/update -> store in the state table.

Per vehicle ID the lifecycle is ``UNSEEN -> ACCUMULATING -> COMPLETE``. Once a
vehicle has a state every further event only updates the derived field(s)
it affects. A vehicle falls back to the gate only when the flush loop drops
its state after a failed write.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from carsync.config import CarSyncConfig
from carsync.derive import convert_value, derive_state, is_complete, require_complete, update_state
from carsync.exceptions import CompletenessValidationError, ConversionError, DecodeError
from carsync.ingestion.decode import decode_message
from carsync.models.events import FieldEvent
from carsync.models.state import VehicleState
from carsync.state.buffers import VehicleBufferStore
from carsync.state.table import VehicleStateTable

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReconcileOutcome(StrEnum):
    ACCEPTED = "accepted"
    IGNORED = "ignored"
    REJECTED = "rejected"

    @property
    def succeeded(self) -> bool:
        """Whether the transport may treat the message as processed."""
        return self is not ReconcileOutcome.REJECTED


class VehiclePhase(StrEnum):
    UNSEEN = "unseen"
    ACCUMULATING = "accumulating"
    COMPLETE = "complete"


class Reconciler:
    """Merge field events into buffers and keep the state table current."""

    def __init__(
        self,
        config: CarSyncConfig,
        *,
        buffers: VehicleBufferStore | None = None,
        states: VehicleStateTable | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._buffers = buffers if buffers is not None else VehicleBufferStore()
        self._states = states if states is not None else VehicleStateTable()
        self._clock = clock
        # One lock per target vehicle; never pruned, bounded by target_vehicle_ids.
        self._locks: dict[int, asyncio.Lock] = {}

    @property
    def buffers(self) -> VehicleBufferStore:
        return self._buffers

    @property
    def states(self) -> VehicleStateTable:
        return self._states

    def vehicle_phase(self, vehicle_id: int) -> VehiclePhase:
        if vehicle_id in self._states:
            return VehiclePhase.COMPLETE
        if vehicle_id in self._buffers:
            return VehiclePhase.ACCUMULATING
        return VehiclePhase.UNSEEN

    def _lock(self, vehicle_id: int) -> asyncio.Lock:
        lock = self._locks.get(vehicle_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[vehicle_id] = lock
        return lock

    async def handle_message(self, topic: str, payload: bytes | str | Mapping[str, Any]) -> ReconcileOutcome:
        """Decode and reconcile one transport message."""
        try:
            event = decode_message(topic, payload)
        except DecodeError as exc:
            _logger.warning("Dropping message on %s (%s): %s", topic, exc.reason, exc)
            return ReconcileOutcome.REJECTED
        return await self.handle_event(event)

    async def handle_event(self, event: FieldEvent) -> ReconcileOutcome:
        """Reconcile one decoded event."""
        if not self._config.is_target(event.vehicle_id):
            _logger.debug("Skipping event for non-target vehicle %s", event.vehicle_id)
            return ReconcileOutcome.IGNORED

        try:
            value = convert_value(event)
        except ConversionError as exc:
            _logger.warning(
                "Dropping %s event for vehicle %s (%s): %s",
                event.field,
                event.vehicle_id,
                exc.reason,
                exc,
            )
            return ReconcileOutcome.REJECTED

        async with self._lock(event.vehicle_id):
            try:
                self._reconcile(event, value)
            except ValidationError as exc:
                _logger.warning("Derived state for vehicle %s is invalid: %s", event.vehicle_id, exc)
                return ReconcileOutcome.REJECTED
        return ReconcileOutcome.ACCEPTED

    def _reconcile(self, event: FieldEvent, value: float | str) -> None:
        # The merged buffer is only committed once derivation succeeded.
        buffer = self._buffers.stage(event, value)
        observed_at = self._clock()
        cell_count = self._config.battery_cell_count

        current = self._states.get(event.vehicle_id)
        if current is not None:
            updated = update_state(current, buffer, event.field, observed_at)
            self._buffers.commit(buffer)
            self._states.put(updated)
            _logger.debug("Updated %s for vehicle %s", event.field, event.vehicle_id)
            return

        if not is_complete(buffer, cell_count):
            self._buffers.commit(buffer)
            _logger.debug("Vehicle %s still accumulating after %s", event.vehicle_id, event.field)
            return

        try:
            state = derive_state(buffer, observed_at, cell_count=cell_count)
        except CompletenessValidationError as exc:
            self._buffers.commit(buffer)
            _logger.debug("%s", exc)
            return
        self._buffers.commit(buffer)
        self._states.put(state)
        _logger.info("Vehicle %s complete, tracking state", event.vehicle_id)

    def revalidate(self, state: VehicleState) -> VehicleState:
        """Re-check *state* and its buffer before it is persisted.

        Raises
        ------
        CompletenessValidationError
            When the vehicle's buffer is missing or no longer complete.
        pydantic.ValidationError
            When the state violates its own invariants.
        """
        buffer = self._buffers.get(state.vehicle_id)
        if buffer is None:
            raise CompletenessValidationError(
                f"Vehicle {state.vehicle_id} has no buffer",
                vehicle_id=state.vehicle_id,
                missing=("buffer",),
            )
        require_complete(buffer, self._config.battery_cell_count)
        return VehicleState.model_validate(state.model_dump())

