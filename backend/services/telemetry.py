"""Live telemetry routing from the realtime stream to marker listeners.

One realtime subscription is held per device. Each incoming measurement is
matched against the primary datapoint and every secondary datapoint, and
each match is published on the corresponding channel. A single measurement
can therefore produce zero, one or many emissions.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from contextlib import aclosing
from enum import StrEnum
from typing import Any

from core.errors import TransportError
from core.models import Datapoint, Measurement
from services.platform import RealtimeApi

logger = logging.getLogger(__name__)

type MeasurementListener = Callable[[str, Measurement], None]


class Channel:
    """Synchronous fan-out of ``(device_id, measurement)`` pairs."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[MeasurementListener] = []

    def connect(self, listener: MeasurementListener) -> Callable[[], None]:
        """Register a listener; returns the callable that removes it again."""
        self._listeners.append(listener)

        def disconnect() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return disconnect

    def emit(self, device_id: str, measurement: Measurement) -> None:
        for listener in list(self._listeners):
            listener(device_id, measurement)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class RouterState(StrEnum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"


class TelemetryRouter:
    def __init__(self, realtime: RealtimeApi) -> None:
        self.realtime = realtime
        self.primary = Channel("primary")
        self.secondary = Channel("secondary")
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._cancelled: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> RouterState:
        return RouterState.SUBSCRIBED if self._tasks else RouterState.IDLE

    @property
    def device_ids(self) -> list[str]:
        return list(self._tasks)

    def subscribe(self, device_ids: Iterable[str], primary: Datapoint, secondary: list[Datapoint]) -> None:
        """Replace the current subscription set with one for ``device_ids``."""
        self.unsubscribe_all()
        loop = asyncio.get_running_loop()
        for device_id in dict.fromkeys(device_ids):
            self._tasks[device_id] = loop.create_task(
                self._consume(device_id, primary, list(secondary)),
                name=f"telemetry-{device_id}",
            )
        if self._tasks:
            logger.info("Subscribed to %d devices", len(self._tasks))

    def unsubscribe_all(self) -> None:
        """Cancel every device subscription. Safe to call repeatedly."""
        tasks, self._tasks = self._tasks, {}
        for task in tasks.values():
            task.cancel()
            self._cancelled.add(task)
            task.add_done_callback(self._cancelled.discard)
        if tasks:
            logger.info("Unsubscribed from %d devices", len(tasks))

    async def aclose(self) -> None:
        """Unsubscribe and wait until every stream has been closed."""
        self.unsubscribe_all()
        if self._cancelled:
            await asyncio.gather(*self._cancelled, return_exceptions=True)

    def route(self, device_id: str, raw: dict[str, Any], primary: Datapoint, secondary: list[Datapoint]) -> int:
        """Publish matches of one raw measurement; returns the emission count."""
        emitted = 0
        measurement = primary.read(raw)
        if measurement is not None:
            self.primary.emit(device_id, measurement)
            emitted += 1
        for datapoint in secondary:
            measurement = datapoint.read(raw)
            if measurement is not None:
                self.secondary.emit(device_id, measurement)
                emitted += 1
        return emitted

    async def _consume(self, device_id: str, primary: Datapoint, secondary: list[Datapoint]) -> None:
        try:
            async with aclosing(self.realtime.on_create(device_id)) as stream:  # pyright: ignore[reportArgumentType]
                async for raw in stream:
                    self.route(device_id, raw, primary, secondary)
        except TransportError as exc:
            logger.warning("Realtime stream for %s ended: %s", device_id, exc)
