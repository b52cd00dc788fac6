"""Internal MQTT runtime that feeds telemetry messages to the reconciler."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from collections.abc import Awaitable, Callable
from typing import Any, cast

import paho.mqtt.client as mqtt

from carsync.config import MqttSettings
from carsync.reconciler import ReconcileOutcome

MessageHandler = Callable[[str, bytes], Awaitable[ReconcileOutcome]]


def subscription_topics(prefix: str) -> list[str]:
    """Topic filters for every field the reconciler understands."""
    return [
        f"{prefix}/+/location/latitude",
        f"{prefix}/+/location/longitude",
        f"{prefix}/+/speed",
        f"{prefix}/+/gear",
        f"{prefix}/+/battery/+/soc",
        f"{prefix}/+/battery/+/capacity",
    ]


class CarSyncMqttRuntime:
    """Threaded paho-mqtt runtime that hands messages to an asyncio handler.

    Messages are acknowledged manually once the handler has finished, so a
    QoS 1 message is only released by the broker after it was reconciled.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        settings: MqttSettings,
        on_message: MessageHandler,
        ack_rejected: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._settings = settings
        self._on_message = on_message
        self._ack_rejected = ack_rejected
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self) -> None:
        """Connect, subscribe and start the network loop thread."""
        self.stop()
        settings = self._settings
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s prefix=%s client_id=%s",
            settings.host,
            settings.port,
            settings.topic_prefix,
            settings.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv5,
            manual_ack=True,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        topics = [(topic, settings.qos) for topic in subscription_topics(settings.topic_prefix)]

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("Connected to MQTT broker %s:%s", settings.host, settings.port)
            c.subscribe(topics)

        def on_message(c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._dispatch(c, msg.topic, msg.payload, msg.mid, msg.qos)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect the current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def _dispatch(self, client: Any, topic: str, payload: bytes, mid: int, qos: int) -> None:
        """Schedule the handler on the event loop (called from the paho thread)."""
        self._logger.debug("Received PUBLISH topic=%s mid=%s", topic, mid)
        future = asyncio.run_coroutine_threadsafe(self._on_message(topic, payload), self._loop)
        future.add_done_callback(lambda done: self._acknowledge(client, mid, qos, done))

    def _acknowledge(
        self,
        client: Any,
        mid: int,
        qos: int,
        future: concurrent.futures.Future[ReconcileOutcome],
    ) -> bool:
        """Ack *mid* according to the handler outcome; returns whether it was acked."""
        if future.cancelled():
            return False
        exc = future.exception()
        if exc is not None:
            self._logger.error("Message handler failed mid=%s", mid, exc_info=exc)
            return False

        outcome = future.result()
        if not outcome.succeeded and not self._ack_rejected:
            self._logger.debug("Leaving rejected message mid=%s unacknowledged", mid)
            return False
        if qos > 0:
            client.ack(mid, qos)
        return True
