"""Reconciler behaviour: filtering, gating, updates and failure handling."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest

from carsync.config import CarSyncConfig
from carsync.exceptions import CompletenessValidationError
from carsync.models.events import FieldEvent, FieldName
from carsync.reconciler import ReconcileOutcome, Reconciler, VehiclePhase

E2E_MESSAGES: list[tuple[str, object]] = [
    ("vehicle/1/location/latitude", 52.1),
    ("vehicle/1/location/longitude", 13.4),
    ("vehicle/1/speed", 20),
    ("vehicle/1/gear", "3"),
    ("vehicle/1/battery/0/soc", 90),
    ("vehicle/1/battery/0/capacity", 50),
    ("vehicle/1/battery/1/soc", 70),
    ("vehicle/1/battery/1/capacity", 50),
]


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _payload(value: object) -> bytes:
    return json.dumps({"value": value}).encode()


async def _feed(reconciler: Reconciler, messages: list[tuple[str, object]]) -> list[ReconcileOutcome]:
    return [await reconciler.handle_message(topic, _payload(value)) for topic, value in messages]


@pytest.fixture
def reconciler() -> Reconciler:
    return Reconciler(CarSyncConfig(), clock=_Clock())


@pytest.mark.asyncio
async def test_end_to_end_scenario_builds_state(reconciler: Reconciler) -> None:
    outcomes = await _feed(reconciler, E2E_MESSAGES)

    assert all(outcome == ReconcileOutcome.ACCEPTED for outcome in outcomes)
    state = reconciler.states.get(1)
    assert state is not None
    assert state.latitude == 52.1
    assert state.longitude == 13.4
    assert state.speed_kmh == 72.0
    assert state.gear == 3
    assert state.state_of_charge_percent == 80


@pytest.mark.asyncio
async def test_state_only_created_on_last_missing_field(reconciler: Reconciler) -> None:
    assert reconciler.vehicle_phase(1) == VehiclePhase.UNSEEN

    await _feed(reconciler, E2E_MESSAGES[:-1])
    assert reconciler.vehicle_phase(1) == VehiclePhase.ACCUMULATING
    assert reconciler.states.get(1) is None

    await _feed(reconciler, E2E_MESSAGES[-1:])
    assert reconciler.vehicle_phase(1) == VehiclePhase.COMPLETE


@pytest.mark.asyncio
async def test_non_target_vehicle_creates_nothing(reconciler: Reconciler) -> None:
    outcome = await reconciler.handle_message("vehicle/2/speed", _payload(10))

    assert outcome == ReconcileOutcome.IGNORED
    assert outcome.succeeded
    assert 2 not in reconciler.buffers
    assert reconciler.vehicle_phase(2) == VehiclePhase.UNSEEN


@pytest.mark.asyncio
async def test_decode_failure_is_rejected_without_side_effects(reconciler: Reconciler) -> None:
    outcome = await reconciler.handle_message("vehicle/1/engine/rpm", _payload(3000))

    assert outcome == ReconcileOutcome.REJECTED
    assert not outcome.succeeded
    assert len(reconciler.buffers) == 0


@pytest.mark.asyncio
async def test_invalid_gear_dropped_and_state_untouched(reconciler: Reconciler) -> None:
    await _feed(reconciler, E2E_MESSAGES)
    before = reconciler.states.get(1)

    outcome = await reconciler.handle_message("vehicle/1/gear", _payload("7"))

    assert outcome == ReconcileOutcome.REJECTED
    assert reconciler.states.get(1) == before
    assert reconciler.buffers.get(1).gear == "3"  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_invalid_gear_while_accumulating_leaves_buffer_unchanged(reconciler: Reconciler) -> None:
    await reconciler.handle_message("vehicle/1/gear", _payload("N"))
    await reconciler.handle_message("vehicle/1/gear", _payload("R"))

    assert reconciler.buffers.get(1).gear == "N"  # type: ignore[union-attr]


@pytest.mark.asyncio
@pytest.mark.parametrize("topic", ["vehicle/+-1/speed", "vehicle/1/battery/--0/soc"])
async def test_garbled_topic_is_rejected(reconciler: Reconciler, topic: str) -> None:
    outcome = await reconciler.handle_message(topic, _payload(1))

    assert outcome == ReconcileOutcome.REJECTED
    assert len(reconciler.buffers) == 0


@pytest.mark.asyncio
async def test_oversized_number_payload_is_rejected(reconciler: Reconciler) -> None:
    payload = b'{"value": ' + b"9" * 5000 + b"}"

    assert await reconciler.handle_message("vehicle/1/speed", payload) == ReconcileOutcome.REJECTED


@pytest.mark.asyncio
async def test_speed_that_cannot_be_derived_leaves_buffer_and_state_untouched(reconciler: Reconciler) -> None:
    await _feed(reconciler, E2E_MESSAGES)
    before = reconciler.states.get(1)

    outcome = await reconciler.handle_message("vehicle/1/speed", _payload(1e308))

    assert outcome == ReconcileOutcome.REJECTED
    assert reconciler.buffers.get(1).speed == 20.0  # type: ignore[union-attr]
    assert reconciler.states.get(1) == before
    assert reconciler.revalidate(before) == before  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_completing_event_that_cannot_be_derived_is_not_merged(reconciler: Reconciler) -> None:
    messages = [(topic, 1e308 if topic.endswith("/speed") else value) for topic, value in E2E_MESSAGES]
    await _feed(reconciler, messages[:-1])

    topic, value = messages[-1]
    outcome = await reconciler.handle_message(topic, _payload(value))

    assert outcome == ReconcileOutcome.REJECTED
    assert reconciler.states.get(1) is None
    assert reconciler.buffers.get(1).cells[1].capacity is None  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_updates_after_completion_touch_only_affected_fields(reconciler: Reconciler) -> None:
    await _feed(reconciler, E2E_MESSAGES)
    first = reconciler.states.get(1)
    assert first is not None

    await _feed(reconciler, [("vehicle/1/speed", 10), ("vehicle/1/gear", "N")])
    updated = reconciler.states.get(1)

    assert updated is not None
    assert updated.speed_kmh == 36.0
    assert updated.gear == 0
    assert updated.latitude == first.latitude
    assert updated.state_of_charge_percent == first.state_of_charge_percent
    assert updated.observed_at > first.observed_at


@pytest.mark.asyncio
async def test_partial_cell_after_completion_keeps_previous_state_of_charge(reconciler: Reconciler) -> None:
    await _feed(reconciler, E2E_MESSAGES)

    # A third cell shows up with only soc known.
    await _feed(reconciler, [("vehicle/1/battery/2/soc", 10)])
    assert reconciler.states.get(1).state_of_charge_percent == 80  # type: ignore[union-attr]

    await _feed(reconciler, [("vehicle/1/battery/0/soc", 50)])
    assert reconciler.states.get(1).state_of_charge_percent == 80  # type: ignore[union-attr]

    # Completing the cell makes the recomputation possible again.
    await _feed(reconciler, [("vehicle/1/battery/2/capacity", 50)])
    # (25 + 35 + 5) * 100 / 150 = 43.3
    assert reconciler.states.get(1).state_of_charge_percent == 43  # type: ignore[union-attr]
    assert reconciler.vehicle_phase(1) == VehiclePhase.COMPLETE


@pytest.mark.asyncio
async def test_state_recreated_after_removal(reconciler: Reconciler) -> None:
    await _feed(reconciler, E2E_MESSAGES)
    reconciler.states.delete(1)
    assert reconciler.vehicle_phase(1) == VehiclePhase.ACCUMULATING

    await _feed(reconciler, [("vehicle/1/location/latitude", 48.0)])

    state = reconciler.states.get(1)
    assert state is not None
    assert state.latitude == 48.0
    assert state.speed_kmh == 72.0


@pytest.mark.asyncio
async def test_multiple_target_vehicles_are_independent() -> None:
    reconciler = Reconciler(CarSyncConfig(target_vehicle_ids=frozenset({1, 5})))
    other = [(topic.replace("vehicle/1/", "vehicle/5/"), value) for topic, value in E2E_MESSAGES]

    interleaved = [msg for pair in zip(E2E_MESSAGES, other, strict=True) for msg in pair]
    await _feed(reconciler, interleaved[:-1])

    assert reconciler.vehicle_phase(1) == VehiclePhase.COMPLETE
    assert reconciler.vehicle_phase(5) == VehiclePhase.ACCUMULATING


@pytest.mark.asyncio
async def test_concurrent_events_for_one_vehicle_apply_in_arrival_order(reconciler: Reconciler) -> None:
    await _feed(reconciler, E2E_MESSAGES)
    speeds = list(range(1, 21))

    await asyncio.gather(
        *(reconciler.handle_event(FieldEvent(vehicle_id=1, field=FieldName.SPEED, value=speed)) for speed in speeds)
    )

    assert reconciler.buffers.get(1).speed == 20.0  # type: ignore[union-attr]
    assert reconciler.states.get(1).speed_kmh == 72.0  # type: ignore[union-attr]


class TestRevalidate:
    @pytest.mark.asyncio
    async def test_accepts_current_state(self, reconciler: Reconciler) -> None:
        await _feed(reconciler, E2E_MESSAGES)
        state = reconciler.states.get(1)
        assert reconciler.revalidate(state) == state  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_rejects_when_buffer_no_longer_complete(self, reconciler: Reconciler) -> None:
        await _feed(reconciler, E2E_MESSAGES)
        await _feed(reconciler, [("vehicle/1/battery/2/soc", 10), ("vehicle/1/battery/2/capacity", 10)])

        with pytest.raises(CompletenessValidationError):
            reconciler.revalidate(reconciler.states.get(1))  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_rejects_corrupted_state(self, reconciler: Reconciler) -> None:
        from pydantic import ValidationError

        await _feed(reconciler, E2E_MESSAGES)
        broken = reconciler.states.get(1).model_copy(update={"gear": 9})  # type: ignore[union-attr]

        with pytest.raises(ValidationError):
            reconciler.revalidate(broken)
