"""Periodic durable writes of the vehicle state table.

Every tick snapshots the table, stamps each state with the tick time and writes
all of them concurrently. A failing entry (re-validation, writer error or
timeout) is removed from the table so that the next complete cycle rebuilds it;
it never affects the other entries or the loop itself.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import ValidationError

from carsync.exceptions import CompletenessValidationError, PersistError
from carsync.models.state import VehicleState
from carsync.state.table import VehicleStateTable
from carsync.writers.base import StateWriter

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _passthrough(state: VehicleState) -> VehicleState:
    return state


@dataclass
class FlushReport:
    """Outcome of one flush tick."""

    tick_at: datetime
    written: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.written and not self.failed


class PeriodicFlusher:
    """Write every tracked vehicle state on a fixed interval.

    Usage::

        flusher = PeriodicFlusher(states, writer, revalidate=reconciler.revalidate)
        flusher.start()
        ...
        await flusher.stop()
    """

    def __init__(
        self,
        states: VehicleStateTable,
        writer: StateWriter,
        *,
        interval: float = 5.0,
        write_timeout: float = 10.0,
        max_concurrent_writes: int = 8,
        revalidate: Callable[[VehicleState], VehicleState] = _passthrough,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._states = states
        self._writer = writer
        self._interval = interval
        self._write_timeout = write_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent_writes)
        self._revalidate = revalidate
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self.last_report: FlushReport | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="carsync-flush")
        _logger.debug("Flush loop started interval=%ss", self._interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        _logger.debug("Flush loop stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.flush_once()
            except Exception:
                _logger.exception("Flush tick failed")

    async def flush_once(self) -> FlushReport:
        """Run a single flush tick."""
        tick_at = self._clock()
        report = FlushReport(tick_at=tick_at)
        snapshot = self._states.snapshot()
        if not snapshot:
            _logger.debug("Flush tick with no tracked vehicles")
            self.last_report = report
            return report

        vehicle_ids = list(snapshot)
        results = await asyncio.gather(
            *(self._write_one(snapshot[vehicle_id], tick_at) for vehicle_id in vehicle_ids),
            return_exceptions=True,
        )

        for vehicle_id, result in zip(vehicle_ids, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                report.failed[vehicle_id] = str(result)
                self._states.delete(vehicle_id)
                _logger.warning("Write for vehicle %s failed, state dropped: %s", vehicle_id, result)
            else:
                report.written.append(vehicle_id)

        _logger.debug("Flush tick wrote=%d failed=%d", len(report.written), len(report.failed))
        self.last_report = report
        return report

    async def _write_one(self, state: VehicleState, tick_at: datetime) -> None:
        try:
            validated = self._revalidate(state)
        except (CompletenessValidationError, ValidationError) as exc:
            raise PersistError(
                f"Vehicle {state.vehicle_id} failed re-validation: {exc}",
                vehicle_id=state.vehicle_id,
            ) from exc

        record = validated.model_copy(update={"observed_at": tick_at})
        async with self._semaphore:
            try:
                await asyncio.wait_for(self._writer.write(record), self._write_timeout)
            except TimeoutError as exc:
                raise PersistError(
                    f"Write for vehicle {state.vehicle_id} timed out after {self._write_timeout}s",
                    vehicle_id=state.vehicle_id,
                ) from exc
            except PersistError:
                raise
            except Exception as exc:
                raise PersistError(
                    f"Write for vehicle {state.vehicle_id} failed: {exc}",
                    vehicle_id=state.vehicle_id,
                ) from exc
