"""Render sessions against the simulated platform.

Every scenario runs inside a single ``asyncio.run`` because subscriptions
and the poller are tasks bound to the running loop.
"""

import asyncio
import dataclasses
import json
from typing import Any

from core.markers import MarkerEmphasis
from core.models import WidgetConfig
from core.render import LayerKind, RenderCoordinator, SceneSurface
from data import SAMPLE_WIDGET
from data.sample_building import BUILDING_ID
from services.building import BuildingService
from services.event_polling import EventPoller
from services.telemetry import TelemetryRouter
from simulation import SimulatedPlatform

PLAIN_WIDGET = {key: value for key, value in SAMPLE_WIDGET.items() if key != "legend"}


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _open(platform: SimulatedPlatform, widget: dict[str, Any] = PLAIN_WIDGET) -> RenderCoordinator:
    apis = platform.apis()
    buildings = BuildingService(apis)
    store = await buildings.load_building_with_images(BUILDING_ID)
    await buildings.populate_markers(store)
    coordinator = RenderCoordinator(
        store,
        SceneSurface(),
        TelemetryRouter(apis.realtime),
        EventPoller(apis.events, interval=3600),
        WidgetConfig.from_dict(widget),
        buildings,
    )
    assert await coordinator.change_level(0)
    await _settle()
    return coordinator


def _surface(coordinator: RenderCoordinator) -> SceneSurface:
    assert isinstance(coordinator.surface, SceneSurface)
    return coordinator.surface


# -----------------------------------------------------------------------------
# Level lifecycle
# -----------------------------------------------------------------------------


def test_enter_level_draws_overlay_zones_and_placed_markers() -> None:
    async def scenario() -> None:
        platform = SimulatedPlatform.with_sample_building()
        coordinator = await _open(platform)
        surface = _surface(coordinator)

        assert len(surface.of_kind(LayerKind.TILES)) == 1
        assert len(surface.of_kind(LayerKind.OVERLAY)) == 1
        assert len(surface.of_kind(LayerKind.ZONES)) == 2
        # The gateway has no position: annotated, but not drawn.
        assert len(surface.of_kind(LayerKind.MARKERS)) == 6
        assert "30099" in [device.id for device in coordinator.devices()]
        assert "30099" not in [layer.data["device_id"] for layer in surface.of_kind(LayerKind.MARKERS)]
        assert coordinator.anchors is not None
        await coordinator.shutdown()

    asyncio.run(scenario())


def test_level_round_trip_keeps_zones_and_one_subscription_set() -> None:
    async def scenario() -> None:
        platform = SimulatedPlatform.with_sample_building()
        coordinator = await _open(platform)
        surface = _surface(coordinator)
        assert platform.subscriber_count() == 7

        assert await coordinator.change_level(1)
        await _settle()
        assert surface.of_kind(LayerKind.ZONES) == []
        assert len(surface.of_kind(LayerKind.MARKERS)) == 5
        assert platform.subscriber_count() == 5
        assert platform.subscriber_count("30010") == 0

        assert await coordinator.change_level(0)
        await _settle()
        assert len(surface.of_kind(LayerKind.ZONES)) == 2
        assert len(surface.of_kind(LayerKind.TILES)) == 1
        assert len(surface.of_kind(LayerKind.OVERLAY)) == 1
        assert platform.subscriber_count() == 7
        await coordinator.shutdown()

    asyncio.run(scenario())


def test_out_of_range_level_is_ignored() -> None:
    async def scenario() -> None:
        coordinator = await _open(SimulatedPlatform.with_sample_building())
        assert not await coordinator.change_level(5)
        assert coordinator.level_index == 0
        assert len(_surface(coordinator).of_kind(LayerKind.MARKERS)) == 6
        await coordinator.shutdown()

    asyncio.run(scenario())


def test_shutdown_releases_everything_and_is_idempotent() -> None:
    async def scenario() -> None:
        platform = SimulatedPlatform.with_sample_building()
        coordinator = await _open(platform, SAMPLE_WIDGET)
        assert coordinator.poller.active

        await coordinator.shutdown()
        await coordinator.shutdown()
        await _settle()

        assert platform.subscriber_count() == 0
        assert not coordinator.poller.active
        assert _surface(coordinator).torn_down
        assert coordinator.store.overlay is None
        assert coordinator.router.primary.listener_count == 0
        assert not await coordinator.change_level(1)

    asyncio.run(scenario())


def test_missing_boundary_disables_overlay_only() -> None:
    async def scenario() -> None:
        platform = SimulatedPlatform.with_sample_building()
        platform.objects[BUILDING_ID]["coordinates"] = {}
        coordinator = await _open(platform)
        surface = _surface(coordinator)
        assert coordinator.anchors is None
        assert surface.of_kind(LayerKind.OVERLAY) == []
        assert len(surface.of_kind(LayerKind.ZONES)) == 2
        assert len(surface.of_kind(LayerKind.MARKERS)) == 6
        await coordinator.shutdown()

    asyncio.run(scenario())


# -----------------------------------------------------------------------------
# Live updates
# -----------------------------------------------------------------------------


def test_latest_primary_is_preloaded() -> None:
    async def scenario() -> None:
        platform = SimulatedPlatform.with_sample_building()
        platform.publish("30011", {"c8y_Temperature": {"T": {"value": 19.5, "unit": "C"}}})
        platform.publish("30011", {"c8y_Temperature": {"T": {"value": 20.5, "unit": "C"}}})
        coordinator = await _open(platform)
        device = coordinator.store.markers_for_level(0)["30011"]
        assert device.latest_primary is not None and device.latest_primary.value == 20.5
        await coordinator.shutdown()

    asyncio.run(scenario())


def test_realtime_measurements_update_only_the_active_level() -> None:
    async def scenario() -> None:
        platform = SimulatedPlatform.with_sample_building()
        coordinator = await _open(platform)
        markers = coordinator.store.markers_for_level(0)

        platform.publish("30010", {"c8y_Humidity": {"RH": {"value": 55, "unit": "%"}}})
        await _settle()
        assert markers["30010"].latest_primary is None
        assert markers["30010"].measurements["c8y_Humidity.RH"].value == 55

        platform.publish("30010", {"c8y_Temperature": {"T": {"value": 23.0, "unit": "C"}}})
        await _settle()
        latest = markers["30010"].latest_primary
        assert latest is not None and latest.value == 23.0

        layer = next(
            layer for layer in _surface(coordinator).of_kind(LayerKind.MARKERS) if layer.data["device_id"] == "30010"
        )
        assert "55%" in layer.data["popup"]

        # Level 1 devices are not subscribed while level 0 is active.
        platform.publish("30020", {"c8y_Temperature": {"T": {"value": 30.0, "unit": "C"}}})
        await _settle()
        assert coordinator.store.markers_for_level(1)["30020"].latest_primary is None
        await coordinator.shutdown()

    asyncio.run(scenario())


def test_repeated_navigation_does_not_duplicate_updates() -> None:
    async def scenario() -> None:
        platform = SimulatedPlatform.with_sample_building()
        coordinator = await _open(platform)
        for index in (1, 0, 1, 0):
            await coordinator.change_level(index)
        await _settle()

        seen: list[str] = []
        coordinator.router.primary.connect(lambda device_id, _: seen.append(device_id))
        platform.publish("30012", {"c8y_Temperature": {"T": {"value": 22.0, "unit": "C"}}})
        await _settle()
        assert seen == ["30012"]
        await coordinator.shutdown()

    asyncio.run(scenario())


def test_threshold_events_reach_markers() -> None:
    async def scenario() -> None:
        platform = SimulatedPlatform.with_sample_building()
        platform.add_event({"type": "c8y_TemperatureAlert", "text": "High temperature", "source": {"id": "30013"}})
        platform.add_event({"type": "c8y_TemperatureAlert", "text": "Sensor reboot", "source": {"id": "30014"}})
        coordinator = await _open(platform, SAMPLE_WIDGET)
        await _settle(20)

        markers = coordinator.store.markers_for_level(0)
        event = markers["30013"].latest_event
        assert event is not None and event.text == "High temperature"
        assert markers["30014"].latest_event is None
        await coordinator.shutdown()

    asyncio.run(scenario())


# -----------------------------------------------------------------------------
# Filter and zones
# -----------------------------------------------------------------------------


def test_search_filter_restyles_markers_in_place() -> None:
    async def scenario() -> None:
        platform = SimulatedPlatform.with_sample_building()
        coordinator = await _open(platform)
        surface = _surface(coordinator)
        subscribed = platform.subscriber_count()

        coordinator.set_filter("SENSOR-12")
        styles = {layer.data["device_id"]: layer.data["style"].emphasis for layer in surface.of_kind(LayerKind.MARKERS)}
        assert styles.pop("30012") == MarkerEmphasis.HIGHLIGHTED
        assert set(styles.values()) == {MarkerEmphasis.FADED}
        assert len(surface.of_kind(LayerKind.MARKERS)) == 6
        assert platform.subscriber_count() == subscribed

        coordinator.set_filter("")
        emphasis = {layer.data["style"].emphasis for layer in surface.of_kind(LayerKind.MARKERS)}
        assert emphasis == {MarkerEmphasis.NEUTRAL}
        await coordinator.shutdown()

    asyncio.run(scenario())


def test_isolated_zone_is_sticky_until_restored() -> None:
    async def scenario() -> None:
        coordinator = await _open(SimulatedPlatform.with_sample_building())
        surface = _surface(coordinator)

        coordinator.isolate_zone(1)
        assert [layer.data["index"] for layer in surface.of_kind(LayerKind.ZONES)] == [1]

        coordinator.set_zones_visible(False)
        assert surface.of_kind(LayerKind.ZONES) == []
        coordinator.set_zones_visible(True)
        assert [layer.data["index"] for layer in surface.of_kind(LayerKind.ZONES)] == [1]

        coordinator.restore_zones()
        assert len(surface.of_kind(LayerKind.ZONES)) == 2

        coordinator.isolate_zone(0)
        await coordinator.change_level(1)
        assert coordinator.isolated_zone == 0
        assert surface.of_kind(LayerKind.ZONES) == []
        await coordinator.change_level(0)
        assert coordinator.isolated_zone == 0
        assert [layer.data["index"] for layer in surface.of_kind(LayerKind.ZONES)] == [0]

        coordinator.restore_zones()
        assert len(surface.of_kind(LayerKind.ZONES)) == 2
        await coordinator.shutdown()

    asyncio.run(scenario())


def test_view_state_is_json_serialisable() -> None:
    async def scenario() -> None:
        coordinator = await _open(SimulatedPlatform.with_sample_building())
        coordinator.set_filter("lobby")
        state = coordinator.view_state()

        payload = json.loads(json.dumps(dataclasses.asdict(state)))
        assert payload["level_index"] == 0
        assert payload["levels"] == ["Ground Floor", "First Floor"]
        assert len(payload["markers"]) == 6
        assert len(payload["devices"]) == 7
        assert [m["emphasis"] for m in payload["markers"]].count("highlighted") == 1
        assert len(payload["anchors"]) == 3
        assert payload["overlay"] is True
        await coordinator.shutdown()

    asyncio.run(scenario())
