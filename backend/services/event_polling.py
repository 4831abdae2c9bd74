"""Periodic polling of the latest threshold events per device.

At most one poll cycle is in flight at a time: a timer tick that arrives
while the previous cycle is still running is skipped, not queued.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

from config import DEFAULT
from core.errors import TransportError
from core.models import Event, EventThreshold, Threshold
from services.platform import EventApi

logger = logging.getLogger(__name__)

type EventListener = Callable[[str, Event], None]


def group_event_thresholds(thresholds: Iterable[Threshold]) -> dict[str | None, list[EventThreshold]]:
    groups: dict[str | None, list[EventThreshold]] = defaultdict(list)
    for threshold in thresholds:
        if isinstance(threshold, EventThreshold):
            groups[threshold.event_type].append(threshold)
    return dict(groups)


def _matches(event: Event, groups: dict[str | None, list[EventThreshold]]) -> bool:
    # Thresholds without an event type match events of any type.
    candidates = groups.get(event.type, []) + groups.get(None, [])
    return any(threshold.text == event.text for threshold in candidates)


def _parse_event(device_id: str, raw: dict[str, Any]) -> Event | None:
    try:
        return Event.from_dict(raw)
    except ValueError as exc:
        logger.warning("Skipping malformed event %s for device %s: %s", raw.get("id"), device_id, exc)
        return None


def latest_event(events: list[Event]) -> Event | None:
    """Event with the greatest creation time; the first one wins a tie."""
    if not events:
        return None
    latest = events[0]
    for event in events[1:]:
        if event.creation_time > latest.creation_time:
            latest = event
    return latest


class EventPoller:
    def __init__(self, events: EventApi, interval: float = DEFAULT.poll_interval_s) -> None:
        self.events = events
        self.interval = interval
        self.is_running = False
        self._timer: asyncio.Task[None] | None = None
        self._cycles: set[asyncio.Task[None]] = set()
        # Bumped on stop so a cancelled cycle cannot clear a newer cycle's flag.
        self._generation = 0

    @property
    def active(self) -> bool:
        return self._timer is not None

    def start(self, device_ids: Iterable[str], thresholds: Iterable[Threshold], listener: EventListener) -> None:
        """Poll immediately, then every ``interval`` seconds until stopped."""
        self.stop()
        ids = list(device_ids)
        configured = list(thresholds)
        self._timer = asyncio.get_running_loop().create_task(self._run(ids, configured, listener), name="event-poller")

    def stop(self) -> None:
        if self._timer is not None:
            logger.info("Task is stopping...")
            self._timer.cancel()
            self._timer = None
        for cycle in list(self._cycles):
            cycle.cancel()
        self._generation += 1
        self.is_running = False

    async def _run(self, ids: list[str], thresholds: list[Threshold], listener: EventListener) -> None:
        while True:
            self.tick(ids, thresholds, listener)
            await asyncio.sleep(self.interval)

    def tick(self, ids: list[str], thresholds: list[Threshold], listener: EventListener) -> bool:
        """Launch a poll cycle unless one is in flight. Returns False when skipped."""
        if self.is_running:
            logger.info("Task skipped because previous execution is still running")
            return False
        self.is_running = True
        cycle = asyncio.get_running_loop().create_task(self._cycle(ids, thresholds, listener))
        self._cycles.add(cycle)
        cycle.add_done_callback(self._cycles.discard)
        return True

    async def _cycle(self, ids: list[str], thresholds: list[Threshold], listener: EventListener) -> None:
        results = await self.run_task(ids, thresholds)
        for device_id, event in results:
            listener(device_id, event)

    async def run_task(self, ids: list[str], thresholds: list[Threshold]) -> list[tuple[str, Event]]:
        generation = self._generation
        self.is_running = True
        try:
            events = await asyncio.gather(*(self.fetch_latest_event_for_thresholds(i, thresholds) for i in ids))
            return [(device_id, event) for device_id, event in zip(ids, events, strict=True) if event is not None]
        except TransportError as exc:
            logger.error("Task failed: %s", exc)
            return []
        finally:
            if generation == self._generation:
                self.is_running = False

    async def fetch_latest_event_for_thresholds(self, device_id: str, thresholds: list[Threshold]) -> Event | None:
        groups = group_event_thresholds(thresholds)
        if not groups:
            return None
        pages = await asyncio.gather(*(self.events.list(self._filter(device_id, t)) for t in groups))
        parsed = (_parse_event(device_id, raw) for page in pages for raw in page)
        return latest_event([event for event in parsed if event is not None and _matches(event, groups)])

    @staticmethod
    def _filter(device_id: str, event_type: str | None) -> dict[str, str | int | bool]:
        filter: dict[str, str | int | bool] = {"pageSize": 1, "withTotalPages": False, "source": device_id}
        if event_type is not None:
            filter["type"] = event_type
        return filter
