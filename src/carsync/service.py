"""Process wiring: transport -> reconciler, state table -> flush loop -> store."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import aiohttp

from carsync._mqtt import CarSyncMqttRuntime
from carsync.config import CarSyncConfig
from carsync.flush import PeriodicFlusher
from carsync.reconciler import Reconciler
from carsync.writers.base import InMemoryStateWriter, StateWriter
from carsync.writers.http import HttpStateWriter
from carsync.writers.mysql import MysqlStateWriter

_logger = logging.getLogger(__name__)


class TelemetryService:
    """Long-running telemetry reconciliation service.

    Usage::

        async with TelemetryService(config) as service:
            await service.run_until(stop_event)

    Parameters
    ----------
    config : CarSyncConfig
        Service configuration.
    writer : StateWriter or None
        Durable store. When omitted it is built from ``config.store_url`` or
        ``config.mysql_dsn``, falling back to an in-memory writer.
    start_transport : bool
        Connect to the MQTT broker on enter. Disable to feed messages through
        :meth:`Reconciler.handle_message` directly.
    flush_on_exit : bool
        Run one last flush tick when the service shuts down.
    """

    def __init__(
        self,
        config: CarSyncConfig,
        *,
        writer: StateWriter | None = None,
        start_transport: bool = True,
        flush_on_exit: bool = True,
    ) -> None:
        self._config = config
        self._writer = writer
        self._owned_resources: contextlib.AsyncExitStack | None = None
        self._start_transport = start_transport
        self._flush_on_exit = flush_on_exit
        self._loop: asyncio.AbstractEventLoop | None = None
        self._runtime: CarSyncMqttRuntime | None = None
        self.reconciler = Reconciler(config)
        self._flusher: PeriodicFlusher | None = None

    @property
    def flusher(self) -> PeriodicFlusher:
        if self._flusher is None:
            raise RuntimeError("Service not started. Use 'async with TelemetryService(...) as service:'")
        return self._flusher

    async def __aenter__(self) -> TelemetryService:
        self._loop = asyncio.get_running_loop()
        self._owned_resources = contextlib.AsyncExitStack()
        try:
            writer = self._writer if self._writer is not None else await self._build_writer(self._owned_resources)
            self._flusher = PeriodicFlusher(
                self.reconciler.states,
                writer,
                interval=self._config.flush_interval,
                write_timeout=self._config.write_timeout,
                max_concurrent_writes=self._config.max_concurrent_writes,
                revalidate=self.reconciler.revalidate,
            )
            self._flusher.start()
            if self._start_transport:
                await self._start_runtime()
        except BaseException:
            if self._flusher is not None:
                await self._flusher.stop()
            await self._owned_resources.aclose()
            raise
        return self

    async def __aexit__(self, *exc: Any) -> None:
        try:
            await self._stop_runtime()
            if self._flusher is not None:
                await self._flusher.stop()
                if self._flush_on_exit:
                    await self._flusher.flush_once()
        finally:
            if self._owned_resources is not None:
                await self._owned_resources.aclose()
                self._owned_resources = None
            self._loop = None

    async def run_until(self, stop_event: asyncio.Event) -> None:
        """Block until *stop_event* is set."""
        await stop_event.wait()

    async def _build_writer(self, stack: contextlib.AsyncExitStack) -> StateWriter:
        if self._config.store_url:
            http_session = await stack.enter_async_context(aiohttp.ClientSession())
            _logger.info("Persisting vehicle states to %s", self._config.store_url)
            return HttpStateWriter(self._config.store_url, http_session)
        if self._config.mysql_dsn:
            mysql_writer = await MysqlStateWriter.connect(self._config.mysql_dsn)
            stack.push_async_callback(mysql_writer.close)
            _logger.info("Persisting vehicle states to MySQL")
            return mysql_writer
        _logger.warning("No durable store configured; vehicle states are kept in memory only")
        return InMemoryStateWriter()

    async def _start_runtime(self) -> None:
        assert self._loop is not None  # noqa: S101
        runtime = CarSyncMqttRuntime(
            loop=self._loop,
            settings=self._config.mqtt,
            on_message=self.reconciler.handle_message,
            ack_rejected=self._config.ack_rejected,
            logger=_logger,
        )
        await self._loop.run_in_executor(None, runtime.start)
        self._runtime = runtime

    async def _stop_runtime(self) -> None:
        runtime = self._runtime
        self._runtime = None
        if runtime is None or self._loop is None:
            return
        try:
            await self._loop.run_in_executor(None, runtime.stop)
        except Exception:
            _logger.debug("MQTT runtime stop failed", exc_info=True)
