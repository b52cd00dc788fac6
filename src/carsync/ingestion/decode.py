"""Topic/payload decoding into :class:`FieldEvent`.

Topics look like ``<prefix>/<vehicle id>/<category>/.../<leaf>``, for example
``vehicle/1/location/latitude`` or ``vehicle/1/battery/0/soc``. Payloads are
JSON envelopes of the form ``{"value": ...}``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from carsync.exceptions import DecodeError, DecodeFailure
from carsync.ingestion.normalize import gear_label, safe_int
from carsync.models.events import FieldEvent, FieldName

_LEAF_FIELDS: dict[str, FieldName] = {
    "latitude": FieldName.LATITUDE,
    "longitude": FieldName.LONGITUDE,
    "speed": FieldName.SPEED,
    "gear": FieldName.GEAR,
    "soc": FieldName.BATTERY_SOC,
    "capacity": FieldName.BATTERY_CAPACITY,
}

# prefix / id / category / cell / leaf
_MIN_CELL_SEGMENTS = 5


def decode_topic(topic: str) -> tuple[int, FieldName, int | None]:
    """Split a topic into ``(vehicle_id, field, cell_index)``."""
    parts = topic.strip().strip("/").split("/")
    if len(parts) < 3 or not all(parts):
        raise DecodeError(f"Malformed topic: {topic!r}", reason=DecodeFailure.MALFORMED_TOPIC, topic=topic)

    vehicle_id = safe_int(parts[1])
    if vehicle_id is None:
        raise DecodeError(
            f"Vehicle ID {parts[1]!r} is not an integer",
            reason=DecodeFailure.INVALID_VEHICLE_ID,
            topic=topic,
        )

    leaf = parts[-1]
    field = _LEAF_FIELDS.get(leaf)
    if field is None:
        raise DecodeError(f"Unknown field {leaf!r}", reason=DecodeFailure.UNKNOWN_FIELD, topic=topic)

    cell_index: int | None = None
    if field.is_battery:
        cell_index = safe_int(parts[-2]) if len(parts) >= _MIN_CELL_SEGMENTS else None
        if cell_index is None or cell_index < 0:
            raise DecodeError(
                f"Missing battery cell index for {leaf!r}",
                reason=DecodeFailure.MISSING_CELL_INDEX,
                topic=topic,
            )

    return vehicle_id, field, cell_index


def _extract_value(payload: bytes | str | Mapping[str, Any], topic: str) -> float | str:
    envelope: Any = payload
    if isinstance(payload, (bytes, bytearray)):
        try:
            envelope = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(
                "Payload is not valid UTF-8",
                reason=DecodeFailure.MALFORMED_PAYLOAD,
                topic=topic,
            ) from exc
    if isinstance(envelope, str):
        try:
            envelope = json.loads(envelope)
        except ValueError as exc:
            raise DecodeError(
                f"Payload is not JSON: {envelope[:64]!r}",
                reason=DecodeFailure.MALFORMED_PAYLOAD,
                topic=topic,
            ) from exc

    if not isinstance(envelope, Mapping) or "value" not in envelope:
        raise DecodeError(
            "Payload is missing the 'value' envelope",
            reason=DecodeFailure.MALFORMED_PAYLOAD,
            topic=topic,
        )

    value = envelope["value"]
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise DecodeError(
            f"Unsupported value type {type(value).__name__}",
            reason=DecodeFailure.MALFORMED_PAYLOAD,
            topic=topic,
        )
    return value


def decode_message(topic: str, payload: bytes | str | Mapping[str, Any]) -> FieldEvent:
    """Decode one transport message into a :class:`FieldEvent`.

    Raises
    ------
    DecodeError
        When the topic or payload is malformed.
    """
    vehicle_id, field, cell_index = decode_topic(topic)
    value = _extract_value(payload, topic)
    if field == FieldName.GEAR:
        value = gear_label(value)
    return FieldEvent(vehicle_id=vehicle_id, field=field, cell_index=cell_index, value=value)
