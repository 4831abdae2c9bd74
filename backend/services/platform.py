"""Device platform collaborators: protocols and the aiohttp REST client."""

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from config import PlatformSettings
from core.errors import TransportError

logger = logging.getLogger(__name__)

type Filter = dict[str, str | int | bool]


class InventoryApi(Protocol):
    async def supported_series(self, object_id: str) -> list[str]: ...

    async def list(self, filter: Filter) -> list[dict[str, Any]]: ...

    async def detail(self, object_id: str) -> dict[str, Any]: ...

    async def create(self, obj: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, obj: dict[str, Any]) -> dict[str, Any]: ...

    async def delete(self, object_id: str) -> None: ...


class BinaryApi(Protocol):
    async def download(self, binary_id: str) -> Any: ...

    async def create(self, name: str, data: bytes, content_type: str) -> str: ...


class MeasurementApi(Protocol):
    async def list(self, filter: Filter) -> list[dict[str, Any]]: ...


class EventApi(Protocol):
    async def list(self, filter: Filter) -> list[dict[str, Any]]:
        """Events matching the filter, most recent first."""
        ...


class RealtimeApi(Protocol):
    def on_create(self, device_id: str) -> AsyncIterator[dict[str, Any]]:
        """Stream of measurements created for the device, in arrival order."""
        ...


@dataclass
class PlatformApis:
    inventory: InventoryApi
    binaries: BinaryApi
    measurements: MeasurementApi
    events: EventApi
    realtime: RealtimeApi


# ---------------------------------------------------------------------------
# REST implementation
# ---------------------------------------------------------------------------


def _query_params(filter: Filter) -> dict[str, str]:
    params: dict[str, str] = {}
    for key, value in filter.items():
        params[key] = str(value).lower() if isinstance(value, bool) else str(value)
    return params


class C8yRestClient:
    """Thin aiohttp client for the inventory, binary, measurement and event APIs."""

    def __init__(self, settings: PlatformSettings) -> None:
        self.settings = settings
        self._session: aiohttp.ClientSession | None = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            username = f"{self.settings.tenant}/{self.settings.user}" if self.settings.tenant else self.settings.user
            self._session = aiohttp.ClientSession(
                base_url=self.settings.base_url,
                auth=aiohttp.BasicAuth(username, self.settings.password),
                headers={"Accept": "application/json"},
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def request_json(
        self,
        method: str,
        path: str,
        params: Filter | None = None,
        body: Any = None,
    ) -> Any:
        try:
            async with self.session.request(
                method,
                path,
                params=_query_params(params) if params else None,
                json=body,
            ) as response:
                response.raise_for_status()
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        except aiohttp.ClientResponseError as exc:
            raise TransportError(f"{method} {path} failed: {exc.message}", status=exc.status) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

    async def request_bytes(self, path: str) -> bytes:
        try:
            async with self.session.get(path, headers={"Accept": "*/*"}) as response:
                response.raise_for_status()
                return await response.read()
        except aiohttp.ClientResponseError as exc:
            raise TransportError(f"GET {path} failed: {exc.message}", status=exc.status) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"GET {path} failed: {exc}") from exc

    def apis(self, realtime: RealtimeApi) -> PlatformApis:
        return PlatformApis(
            inventory=_RestInventory(self),
            binaries=_RestBinaries(self),
            measurements=_RestMeasurements(self),
            events=_RestEvents(self),
            realtime=realtime,
        )


class _RestInventory:
    _PATH = "/inventory/managedObjects"

    def __init__(self, client: C8yRestClient) -> None:
        self.client = client

    async def supported_series(self, object_id: str) -> list[str]:
        body = await self.client.request_json("GET", f"{self._PATH}/{object_id}/supportedSeries")
        return body.get("c8y_SupportedSeries", [])

    async def list(self, filter: Filter) -> list[dict[str, Any]]:
        body = await self.client.request_json("GET", self._PATH, params=filter)
        return body.get("managedObjects", [])

    async def detail(self, object_id: str) -> dict[str, Any]:
        return await self.client.request_json("GET", f"{self._PATH}/{object_id}")

    async def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        return await self.client.request_json("POST", self._PATH, body=obj)

    async def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in obj.items() if key != "id"}
        return await self.client.request_json("PUT", f"{self._PATH}/{obj['id']}", body=payload)

    async def delete(self, object_id: str) -> None:
        await self.client.request_json("DELETE", f"{self._PATH}/{object_id}")


class _RestBinaries:
    _PATH = "/inventory/binaries"

    def __init__(self, client: C8yRestClient) -> None:
        self.client = client

    async def download(self, binary_id: str) -> bytes:
        return await self.client.request_bytes(f"{self._PATH}/{binary_id}")

    async def create(self, name: str, data: bytes, content_type: str) -> str:
        form = aiohttp.FormData()
        form.add_field("object", json.dumps({"name": name, "type": content_type}), content_type="application/json")
        form.add_field("file", data, filename=name, content_type=content_type)
        try:
            async with self.client.session.post(self._PATH, data=form) as response:
                response.raise_for_status()
                body = await response.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise TransportError(f"Binary upload of {name} failed: {exc}") from exc
        return str(body["id"])


class _RestMeasurements:
    def __init__(self, client: C8yRestClient) -> None:
        self.client = client

    async def list(self, filter: Filter) -> list[dict[str, Any]]:
        body = await self.client.request_json("GET", "/measurement/measurements", params=filter)
        return body.get("measurements", [])


class _RestEvents:
    def __init__(self, client: C8yRestClient) -> None:
        self.client = client

    async def list(self, filter: Filter) -> list[dict[str, Any]]:
        body = await self.client.request_json("GET", "/event/events", params=filter)
        return body.get("events", [])
