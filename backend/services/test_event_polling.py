"""Threshold event polling: matching, latest-wins and overlap protection."""

import asyncio
from typing import Any

import pytest

from core.errors import TransportError
from core.models import Event, EventThreshold, MeasurementThreshold
from services.event_polling import EventPoller, group_event_thresholds, latest_event
from services.platform import Filter

HOT = EventThreshold(id="hot", label="Hot", color="#F00", text="High temperature", event_type="c8y_TemperatureAlert")
DOOR = EventThreshold(id="door", label="Door", color="#FA0", text="Door open", event_type="c8y_DoorAlert")
ANY = EventThreshold(id="any", label="Reboot", color="#999", text="Rebooted")
COLD = MeasurementThreshold(id="cold", label="Cold", color="#00F", min=0, max=18)


class FakeEvents:
    """Returns canned events per (source, type); can block until released."""

    def __init__(self, events: list[dict[str, Any]] | None = None) -> None:
        self.events = events or []
        self.filters: list[Filter] = []
        self.gate: asyncio.Event | None = None
        self.fail = False

    async def list(self, filter: Filter) -> list[dict[str, Any]]:
        self.filters.append(filter)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise TransportError("events unavailable", status=503)
        items = [e for e in self.events if e["source"]["id"] == filter["source"]]
        if "type" in filter:
            items = [e for e in items if e["type"] == filter["type"]]
        return items[: int(filter["pageSize"])]


def _event(source: str, type: str, text: str, time: str) -> dict[str, Any]:
    return {"id": f"{source}-{time}", "source": {"id": source}, "type": type, "text": text, "creationTime": time}


def test_groups_ignore_measurement_thresholds() -> None:
    groups = group_event_thresholds([HOT, COLD, DOOR, ANY])
    assert groups == {"c8y_TemperatureAlert": [HOT], "c8y_DoorAlert": [DOOR], None: [ANY]}


def test_latest_event_uses_strict_greater_than() -> None:
    first = Event.from_dict(_event("d1", "a", "x", "2024-01-01T10:00:00Z"))
    tie = Event.from_dict(_event("d1", "b", "x", "2024-01-01T10:00:00Z"))
    later = Event.from_dict(_event("d1", "c", "x", "2024-01-01T11:00:00Z"))
    assert latest_event([first, tie]) is first
    assert latest_event([first, later, tie]) is later
    assert latest_event([]) is None


def test_one_query_per_device_and_event_type() -> None:
    async def scenario() -> None:
        events = FakeEvents()
        poller = EventPoller(events)
        await poller.fetch_latest_event_for_thresholds("d1", [HOT, DOOR, COLD])
        assert sorted(str(f["type"]) for f in events.filters) == ["c8y_DoorAlert", "c8y_TemperatureAlert"]
        assert all(f["pageSize"] == 1 and f["withTotalPages"] is False for f in events.filters)

    asyncio.run(scenario())


def test_latest_matching_event_wins() -> None:
    async def scenario() -> None:
        events = FakeEvents(
            [
                _event("d1", "c8y_TemperatureAlert", "High temperature", "2024-01-01T10:00:00Z"),
                _event("d1", "c8y_DoorAlert", "Door open", "2024-01-01T12:00:00Z"),
                _event("d2", "c8y_DoorAlert", "Door closed", "2024-01-01T12:00:00Z"),
            ]
        )
        poller = EventPoller(events)
        result = await poller.run_task(["d1", "d2"], [HOT, DOOR])
        assert [(device_id, event.text) for device_id, event in result] == [("d1", "Door open")]

    asyncio.run(scenario())


def test_untyped_threshold_matches_any_event_type() -> None:
    async def scenario() -> None:
        events = FakeEvents([_event("d1", "c8y_Maintenance", "Rebooted", "2024-01-01T10:00:00Z")])
        poller = EventPoller(events)
        event = await poller.fetch_latest_event_for_thresholds("d1", [ANY])
        assert event is not None and event.type == "c8y_Maintenance"
        assert "type" not in events.filters[0]

    asyncio.run(scenario())


def test_no_event_thresholds_means_no_queries() -> None:
    async def scenario() -> None:
        events = FakeEvents()
        assert await EventPoller(events).fetch_latest_event_for_thresholds("d1", [COLD]) is None
        assert events.filters == []

    asyncio.run(scenario())


def test_failed_cycle_emits_nothing_and_resets() -> None:
    async def scenario() -> None:
        events = FakeEvents()
        events.fail = True
        poller = EventPoller(events)
        assert await poller.run_task(["d1"], [HOT]) == []
        assert not poller.is_running

    asyncio.run(scenario())


def test_overlapping_tick_makes_no_network_calls() -> None:
    async def scenario() -> None:
        events = FakeEvents([_event("d1", "c8y_TemperatureAlert", "High temperature", "2024-01-01T10:00:00Z")])
        events.gate = asyncio.Event()
        received: list[tuple[str, Event]] = []
        poller = EventPoller(events)

        assert poller.tick(["d1"], [HOT], lambda d, e: received.append((d, e)))
        for _ in range(10):
            await asyncio.sleep(0)
        assert poller.is_running
        calls = len(events.filters)
        assert calls == 1

        assert not poller.tick(["d1"], [HOT], lambda d, e: received.append((d, e)))
        await asyncio.sleep(0)
        assert len(events.filters) == calls

        events.gate.set()
        for _ in range(10):
            await asyncio.sleep(0)
        assert not poller.is_running
        assert [d for d, _ in received] == ["d1"]

        assert poller.tick(["d1"], [HOT], lambda d, e: received.append((d, e)))
        poller.stop()

    asyncio.run(scenario())


def test_start_polls_immediately_and_stop_cancels() -> None:
    async def scenario() -> None:
        events = FakeEvents([_event("d1", "c8y_TemperatureAlert", "High temperature", "2024-01-01T10:00:00Z")])
        received: list[str] = []
        poller = EventPoller(events, interval=3600)

        poller.start(["d1"], [HOT], lambda d, _: received.append(d))
        for _ in range(10):
            await asyncio.sleep(0)
        assert received == ["d1"]
        assert poller.active

        poller.stop()
        poller.stop()
        assert not poller.active
        assert not poller.is_running

    asyncio.run(scenario())


def test_restart_during_cycle_keeps_overlap_protection() -> None:
    async def scenario() -> None:
        events = FakeEvents([_event("d1", "c8y_TemperatureAlert", "High temperature", "2024-01-01T10:00:00Z")])
        events.gate = asyncio.Event()
        received: list[str] = []
        poller = EventPoller(events, interval=3600)

        poller.start(["d1"], [HOT], lambda d, _: received.append(d))
        for _ in range(10):
            await asyncio.sleep(0)
        assert len(events.filters) == 1

        # Floor change: the first cycle is still blocked on the platform.
        poller.start(["d1"], [HOT], lambda d, _: received.append(d))
        for _ in range(10):
            await asyncio.sleep(0)
        assert poller.is_running
        assert len(events.filters) == 2

        assert not poller.tick(["d1"], [HOT], lambda d, _: received.append(d))
        for _ in range(10):
            await asyncio.sleep(0)
        assert len(events.filters) == 2

        events.gate.set()
        for _ in range(10):
            await asyncio.sleep(0)
        assert not poller.is_running
        assert received == ["d1"]
        poller.stop()

    asyncio.run(scenario())


def test_malformed_event_time_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    async def scenario() -> list[tuple[str, Event]]:
        events = FakeEvents(
            [
                _event("d1", "c8y_TemperatureAlert", "High temperature", "yesterday"),
                _event("d2", "c8y_TemperatureAlert", "High temperature", "2024-01-01T10:00:00"),
            ]
        )
        return await EventPoller(events).run_task(["d1", "d2"], [HOT])

    result = asyncio.run(scenario())
    assert [device_id for device_id, _ in result] == ["d2"]
    assert result[0][1].creation_time.tzinfo is not None
    assert "Skipping malformed event" in caplog.text
