"""HTTP writer that POSTs each state to an ingest endpoint."""

from __future__ import annotations

import json
import logging

import aiohttp

from carsync.exceptions import PersistError
from carsync.models.state import VehicleState

_logger = logging.getLogger(__name__)


class HttpStateWriter:
    """POST ``VehicleState.to_record()`` as JSON to *url*.

    Any non-2xx response or client error raises :class:`PersistError`.
    """

    def __init__(
        self,
        url: str,
        http_session: aiohttp.ClientSession,
        *,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._url = url
        self._http = http_session
        self._headers: dict[str, str] = {"content-type": "application/json; charset=UTF-8"}
        if headers:
            self._headers.update(headers)

    async def write(self, state: VehicleState) -> None:
        body = json.dumps(state.to_record(), separators=(",", ":"))
        _logger.debug("POST %s vehicle=%s", self._url, state.vehicle_id)
        try:
            async with self._http.post(self._url, data=body, headers=self._headers) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    raise PersistError(
                        f"HTTP {resp.status} from {self._url}: {text[:200]}",
                        vehicle_id=state.vehicle_id,
                    )
        except PersistError:
            raise
        except aiohttp.ClientError as exc:
            raise PersistError(
                f"Write to {self._url} failed: {exc}",
                vehicle_id=state.vehicle_id,
            ) from exc
