"""In-memory device platform.

Implements every collaborator protocol from ``services.platform`` so the
engine can run without a tenant (demo mode) and so tests can drive
realtime traffic deterministically via ``publish``.
"""

import asyncio
import copy
import logging
from collections import Counter, defaultdict, deque
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from itertools import count
from typing import Any

from core.errors import TransportError
from config import DEFAULT
from core.models import parse_timestamp
from data import SAMPLE_BINARIES, SAMPLE_BUILDING, SAMPLE_DEVICES
from services.platform import Filter, PlatformApis
from simulation.generator import alert_for, simulate_measurements

logger = logging.getLogger(__name__)


class SimulatedPlatform:
    def __init__(self, history_size: int = DEFAULT.demo_history_size) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.binaries: dict[str, bytes] = {}
        # Oldest entries drop off once a device holds history_size of them.
        self.measurements: defaultdict[str, deque[dict[str, Any]]] = defaultdict(lambda: deque(maxlen=history_size))
        self.events: defaultdict[str, deque[dict[str, Any]]] = defaultdict(lambda: deque(maxlen=history_size))
        self.calls: Counter[str] = Counter()
        self._ids = count(50000)
        self._subscribers: dict[str, list[asyncio.Queue[dict[str, Any]]]] = defaultdict(list)
        self._tick = 0

    @classmethod
    def with_sample_building(cls) -> "SimulatedPlatform":
        platform = cls()
        for obj in [SAMPLE_BUILDING, *SAMPLE_DEVICES]:
            platform.add_object(obj)
        platform.binaries.update(SAMPLE_BINARIES)
        return platform

    def apis(self) -> PlatformApis:
        return PlatformApis(
            inventory=_SimInventory(self),
            binaries=_SimBinaries(self),
            measurements=_SimMeasurements(self),
            events=_SimEvents(self),
            realtime=_SimRealtime(self),
        )

    def next_id(self) -> str:
        return str(next(self._ids))

    def add_object(self, obj: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(obj)
        stored.setdefault("id", self.next_id())
        self.objects[str(stored["id"])] = stored
        return copy.deepcopy(stored)

    # --- Traffic -----------------------------------------------------------

    def publish(self, device_id: str, raw: dict[str, Any]) -> None:
        """Record a measurement and push it to every realtime subscriber of the device."""
        stored = {"id": self.next_id(), "source": {"id": device_id}, **raw}
        self.measurements[device_id].append(stored)
        for queue in list(self._subscribers.get(device_id, [])):
            queue.put_nowait(stored)

    def add_event(self, raw: dict[str, Any]) -> dict[str, Any]:
        now = datetime.now(UTC).isoformat()
        stored = {"id": self.next_id(), "creationTime": now, "time": now, **raw}
        self.events[_source_id(stored)].append(stored)
        return stored

    def subscriber_count(self, device_id: str | None = None) -> int:
        if device_id is not None:
            return len(self._subscribers.get(device_id, []))
        return sum(len(queues) for queues in self._subscribers.values())

    def step(self) -> None:
        """Generate one tick of telemetry (and alerts) for every device."""
        devices = [obj for obj in self.objects.values() if "c8y_IsDevice" in obj]
        for device_id, raw in simulate_measurements(devices, self._tick):
            self.publish(device_id, raw)
            alert = alert_for(device_id, raw)
            if alert is not None:
                self.add_event(alert)
        self._tick += 1

    async def run(self, interval: float) -> None:
        logger.info("Simulated telemetry running every %.1fs", interval)
        while True:
            self.step()
            await asyncio.sleep(interval)

    # --- Realtime ----------------------------------------------------------

    def _attach(self, device_id: str) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._subscribers[device_id].append(queue)
        return queue

    def _detach(self, device_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        queues = self._subscribers.get(device_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(device_id, None)


def _page(items: list[dict[str, Any]], filter: Filter) -> list[dict[str, Any]]:
    size = int(filter.get("pageSize", 5))
    return [copy.deepcopy(item) for item in items[:size]]


def _source_id(item: dict[str, Any]) -> str:
    source = item.get("source") or {}
    return str(source.get("id", "")) if isinstance(source, dict) else str(source)


class _SimInventory:
    def __init__(self, platform: SimulatedPlatform) -> None:
        self.platform = platform

    async def supported_series(self, object_id: str) -> list[str]:
        series: dict[str, None] = {}
        for raw in self.platform.measurements.get(object_id, ()):
            for fragment, value in raw.items():
                if isinstance(value, dict) and fragment not in ("source",):
                    series.update({f"{fragment}.{name}": None for name in value if isinstance(value[name], dict)})
        return list(series)

    async def list(self, filter: Filter) -> list[dict[str, Any]]:
        self.platform.calls["inventory.list"] += 1
        objects = list(self.platform.objects.values())
        if "ids" in filter:
            wanted = str(filter["ids"]).split(",")
            objects = [self.platform.objects[i] for i in wanted if i in self.platform.objects]
        if "type" in filter:
            objects = [obj for obj in objects if obj.get("type") == filter["type"]]
        return _page(objects, filter)

    async def detail(self, object_id: str) -> dict[str, Any]:
        self.platform.calls["inventory.detail"] += 1
        obj = self.platform.objects.get(object_id)
        if obj is None:
            raise TransportError(f"Managed object {object_id} not found", status=404)
        return copy.deepcopy(obj)

    async def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        return self.platform.add_object({key: value for key, value in obj.items() if key != "id"})

    async def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        object_id = str(obj.get("id", ""))
        if object_id not in self.platform.objects:
            raise TransportError(f"Managed object {object_id} not found", status=404)
        self.platform.objects[object_id].update(copy.deepcopy(obj))
        return copy.deepcopy(self.platform.objects[object_id])

    async def delete(self, object_id: str) -> None:
        if self.platform.objects.pop(object_id, None) is None:
            raise TransportError(f"Managed object {object_id} not found", status=404)


class _SimBinaries:
    def __init__(self, platform: SimulatedPlatform) -> None:
        self.platform = platform

    async def download(self, binary_id: str) -> bytes:
        self.platform.calls["binaries.download"] += 1
        data = self.platform.binaries.get(binary_id)
        if data is None:
            raise TransportError(f"Binary {binary_id} not found", status=404)
        return data

    async def create(self, name: str, data: bytes, content_type: str) -> str:
        binary_id = self.platform.next_id()
        self.platform.binaries[binary_id] = data
        logger.debug("Stored binary %s (%s, %s, %d bytes)", binary_id, name, content_type, len(data))
        return binary_id


class _SimMeasurements:
    def __init__(self, platform: SimulatedPlatform) -> None:
        self.platform = platform

    async def list(self, filter: Filter) -> list[dict[str, Any]]:
        self.platform.calls["measurements.list"] += 1
        items = list(self.platform.measurements.get(str(filter.get("source", "")), ()))
        fragment = filter.get("valueFragmentType")
        series = filter.get("valueFragmentSeries")
        if fragment:
            items = [m for m in items if isinstance(m.get(str(fragment)), dict)]
        if fragment and series:
            items = [m for m in items if str(series) in m[str(fragment)]]
        if filter.get("revert"):
            items = list(reversed(items))
        return _page(items, filter)


class _SimEvents:
    def __init__(self, platform: SimulatedPlatform) -> None:
        self.platform = platform

    async def list(self, filter: Filter) -> list[dict[str, Any]]:
        self.platform.calls["events.list"] += 1
        items = list(self.platform.events.get(str(filter.get("source", "")), ()))
        if "type" in filter:
            items = [e for e in items if e.get("type") == filter["type"]]
        items.sort(key=lambda e: parse_timestamp(e.get("creationTime") or e.get("time")), reverse=True)
        return _page(items, filter)


class _SimRealtime:
    def __init__(self, platform: SimulatedPlatform) -> None:
        self.platform = platform

    async def on_create(self, device_id: str) -> AsyncIterator[dict[str, Any]]:
        queue = self.platform._attach(device_id)
        try:
            while True:
                yield await queue.get()
        finally:
            self.platform._detach(device_id, queue)
