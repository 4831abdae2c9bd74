"""Realtime measurement stream over CometD long polling."""

import logging
from collections.abc import AsyncIterator
from typing import Any

from core.errors import TransportError
from services.platform import C8yRestClient

logger = logging.getLogger(__name__)

_REALTIME_PATH = "/notification/realtime"


class C8yRealtime:
    """Opens one CometD client per device subscription."""

    def __init__(self, client: C8yRestClient) -> None:
        self.client = client

    async def _send(self, message: dict[str, Any]) -> list[dict[str, Any]]:
        replies = await self.client.request_json("POST", _REALTIME_PATH, body=[message])
        return replies or []

    async def _handshake(self) -> str:
        replies = await self._send(
            {
                "channel": "/meta/handshake",
                "version": "1.0",
                "supportedConnectionTypes": ["long-polling"],
            }
        )
        for reply in replies:
            if reply.get("channel") == "/meta/handshake" and reply.get("successful"):
                return str(reply["clientId"])
        raise TransportError(f"Realtime handshake rejected: {replies}")

    async def on_create(self, device_id: str) -> AsyncIterator[dict[str, Any]]:
        channel = f"/measurements/{device_id}"
        client_id = await self._handshake()
        try:
            await self._send({"channel": "/meta/subscribe", "clientId": client_id, "subscription": channel})
            while True:
                replies = await self._send(
                    {"channel": "/meta/connect", "clientId": client_id, "connectionType": "long-polling"}
                )
                for reply in replies:
                    if reply.get("channel") != channel:
                        continue
                    notification = reply.get("data") or {}
                    if notification.get("realtimeAction") == "CREATE":
                        yield notification.get("data") or {}
        finally:
            try:
                await self._send({"channel": "/meta/disconnect", "clientId": client_id})
            except TransportError as exc:
                logger.warning("Realtime disconnect for %s failed: %s", device_id, exc)
