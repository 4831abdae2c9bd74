"""Render coordination: one building session drawn onto a map surface.

``enter_level`` and ``exit_level`` own the lifetime of the live telemetry
subscription and the event poller, so exactly one subscription set is
active at any time. Everything else (filtering, zone visibility, live
updates) restyles the already-drawn layers in place.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from itertools import count
from typing import Any, Protocol, override

from config import DEFAULT, EngineConfig
from core.geometry import AnchorPoints, boundary_center, resolve_anchors
from core.markers import MarkerFilter, MarkerStyle, device_types, marker_style, popup_content
from core.models import Event, EventThreshold, LatLng, MarkerDevice, Measurement, WidgetConfig, Zone
from core.store import BuildingStore
from services.building import BuildingService
from services.event_polling import EventPoller
from services.telemetry import TelemetryRouter

logger = logging.getLogger(__name__)


class LayerKind(StrEnum):
    TILES = "tiles"
    OVERLAY = "overlay"
    ZONES = "zones"
    MARKERS = "markers"


@dataclass(frozen=True)
class ZoneStyle:
    color: str
    weight: int
    fill_opacity: float


class MapSurface(Protocol):
    """Drawing primitives of the map the session renders into."""

    def set_view(self, center: LatLng, zoom: float) -> None: ...

    def add_tile_layer(self, url_template: str) -> Any: ...

    def add_image_overlay(self, url: str, anchors: AnchorPoints, opacity: float) -> Any: ...

    def add_circle_marker(self, position: LatLng, style: MarkerStyle, device_id: str) -> Any: ...

    def set_marker_style(self, marker: Any, style: MarkerStyle) -> None: ...

    def set_marker_popup(self, marker: Any, content: str) -> None: ...

    def add_zone(self, zone: Zone, index: int, style: ZoneStyle) -> Any: ...

    def clear_layers(self, kinds: set[LayerKind]) -> None: ...

    def teardown(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory surface
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Layer:
    id: int
    kind: LayerKind
    data: dict[str, Any] = field(default_factory=dict)


class SceneSurface(MapSurface):
    """Keeps drawn layers as plain data; used for the API view and in tests."""

    def __init__(self) -> None:
        self._ids = count(1)
        self.layers: list[Layer] = []
        self.center: LatLng | None = None
        self.zoom: float | None = None
        self.torn_down = False

    def _add(self, kind: LayerKind, **data: Any) -> Layer:
        layer = Layer(id=next(self._ids), kind=kind, data=data)
        self.layers.append(layer)
        return layer

    def of_kind(self, kind: LayerKind) -> list[Layer]:
        return [layer for layer in self.layers if layer.kind == kind]

    @override
    def set_view(self, center: LatLng, zoom: float) -> None:
        self.center = center
        self.zoom = zoom

    @override
    def add_tile_layer(self, url_template: str) -> Layer:
        return self._add(LayerKind.TILES, url=url_template)

    @override
    def add_image_overlay(self, url: str, anchors: AnchorPoints, opacity: float) -> Layer:
        return self._add(LayerKind.OVERLAY, url=url, anchors=anchors, opacity=opacity)

    @override
    def add_circle_marker(self, position: LatLng, style: MarkerStyle, device_id: str) -> Layer:
        return self._add(LayerKind.MARKERS, position=position, style=style, device_id=device_id, popup="")

    @override
    def set_marker_style(self, marker: Layer, style: MarkerStyle) -> None:
        marker.data["style"] = style

    @override
    def set_marker_popup(self, marker: Layer, content: str) -> None:
        marker.data["popup"] = content

    @override
    def add_zone(self, zone: Zone, index: int, style: ZoneStyle) -> Layer:
        return self._add(LayerKind.ZONES, zone=zone, index=index, style=style)

    @override
    def clear_layers(self, kinds: set[LayerKind]) -> None:
        self.layers = [layer for layer in self.layers if layer.kind not in kinds]

    @override
    def teardown(self) -> None:
        self.layers = []
        self.torn_down = True


# ---------------------------------------------------------------------------
# View state
# ---------------------------------------------------------------------------


@dataclass
class MarkerView:
    id: str
    name: str
    type: str
    lat: float
    lng: float
    emphasis: str
    color: str
    fill_opacity: float
    value: str | None
    event: str | None
    popup: str


@dataclass
class ViewState:
    """Everything the hosting shell needs to render the current session."""

    building_id: str | None
    building_name: str
    levels: list[str]
    level_index: int | None
    level_name: str
    center: tuple[float, float] | None
    anchors: list[tuple[float, float]] | None
    overlay: bool
    zones_visible: bool
    isolated_zone: int | None
    zones: list[dict[str, Any]]
    search: str
    type_filter: str | None
    types: list[str]
    markers: list[MarkerView]
    devices: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class RenderCoordinator:
    def __init__(
        self,
        store: BuildingStore,
        surface: MapSurface,
        router: TelemetryRouter,
        poller: EventPoller,
        widget: WidgetConfig,
        buildings: BuildingService,
        config: EngineConfig = DEFAULT,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.store = store
        self.surface = surface
        self.router = router
        self.poller = poller
        self.widget = widget
        self.buildings = buildings
        self.config = config
        self.on_change = on_change

        self.level_index: int | None = None
        self.filter = MarkerFilter()
        self.zones_visible = True
        self.isolated_zone: int | None = None
        self.anchors: AnchorPoints | None = None

        self._zone_style = ZoneStyle(
            color=config.zone_color, weight=config.zone_weight, fill_opacity=config.zone_fill_opacity
        )
        self._disconnects: list[Callable[[], None]] = []
        self._lock = asyncio.Lock()
        self._base_drawn = False
        self._closed = False

    # --- Level lifecycle ---------------------------------------------------

    async def enter_level(self, index: int) -> bool:
        level = self.store.level(index)
        if level is None:
            logger.warning("Level %d does not exist, ignoring", index)
            return False
        self._draw_base()
        self.level_index = index
        markers = self.store.markers_for_level(index)
        device_ids = list(markers)

        latest = await self.buildings.load_latest_measurements(device_ids, self.widget.measurement)
        if self._closed or self.level_index != index:
            return False
        for device_id, measurement in zip(device_ids, latest, strict=True):
            device = markers.get(device_id)
            if device is not None and measurement is not None:
                device.latest_primary = measurement
                device.measurements[measurement.datapoint.path] = measurement

        self._disconnects = [
            self.router.primary.connect(self.on_primary_measurement),
            self.router.secondary.connect(self.on_measurement),
        ]
        self.router.subscribe(device_ids, self.widget.measurement, self.widget.secondary_datapoints)
        thresholds = self.widget.thresholds
        if any(isinstance(t, EventThreshold) for t in thresholds):
            self.poller.start(device_ids, thresholds, self.on_event)

        self.anchors = resolve_anchors(self.store.building.coordinates)
        self._draw_overlay(index)
        self._draw_zones()
        self._build_markers(index)
        logger.info("Entered level %d (%s) with %d devices", index, level.name, len(device_ids))
        self._notify()
        return True

    def exit_level(self) -> None:
        """Release subscriptions and clear every layer except the base tiles."""
        self.router.unsubscribe_all()
        for disconnect in self._disconnects:
            disconnect()
        self._disconnects = []
        self.poller.stop()
        self.surface.clear_layers({LayerKind.OVERLAY, LayerKind.ZONES, LayerKind.MARKERS})
        self.store.release_overlay()
        if self.level_index is not None:
            for device in list(self.store.markers_for_level(self.level_index).values()):
                device.instance = None
        self.level_index = None
        self.anchors = None

    async def change_level(self, index: int) -> bool:
        async with self._lock:
            if self._closed:
                return False
            if self.store.level(index) is None:
                logger.warning("Level %d is out of range, staying on %s", index, self.level_index)
                return False
            self.exit_level()
            return await self.enter_level(index)

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.exit_level()
        await self.router.aclose()
        self.surface.teardown()
        logger.info("Render session for building %s closed", self.store.building.id)

    # --- Drawing -----------------------------------------------------------

    def _draw_base(self) -> None:
        if self._base_drawn:
            return
        boundary = self.store.building.coordinates
        self.surface.add_tile_layer(self.config.tile_url)
        zoom = boundary.zoom_level if boundary.zoom_level is not None else self.config.default_zoom
        self.surface.set_view(boundary_center(boundary, self.config.default_center), zoom)
        self._base_drawn = True

    def _draw_overlay(self, index: int) -> None:
        if self.anchors is None:
            logger.warning("Building %s has no usable boundary, image overlay disabled", self.store.building.id)
            return
        handle = self.store.open_overlay(index)
        if handle is not None:
            self.surface.add_image_overlay(handle.url, self.anchors, self.config.overlay_opacity)

    def _visible_zones(self) -> list[tuple[int, Zone]]:
        if self.level_index is None or not self.zones_visible:
            return []
        zones = self.store.get_zones_for_level(self.level_index)
        if self.isolated_zone is not None:
            # Stays isolated across levels; a level without that zone shows none.
            if not 0 <= self.isolated_zone < len(zones):
                return []
            return [(self.isolated_zone, zones[self.isolated_zone])]
        return list(enumerate(zones))

    def _draw_zones(self) -> None:
        self.surface.clear_layers({LayerKind.ZONES})
        for index, zone in self._visible_zones():
            self.surface.add_zone(zone, index, self._zone_style)

    def _build_markers(self, index: int) -> None:
        self.surface.clear_layers({LayerKind.MARKERS})
        for device in list(self.store.markers_for_level(index).values()):
            device.instance = None
            if device.position is None:
                continue
            device.instance = self.surface.add_circle_marker(
                device.position, marker_style(device, self.filter, self.config), device.id
            )
            self.surface.set_marker_popup(device.instance, self.open_popup(device))

    def _restyle(self, device: MarkerDevice) -> None:
        if device.instance is None:
            return
        self.surface.set_marker_style(device.instance, marker_style(device, self.filter, self.config))
        self.surface.set_marker_popup(device.instance, self.open_popup(device))

    def open_popup(self, device: MarkerDevice) -> str:
        return popup_content(device, self.widget.datapoints_popup)

    # --- User interaction --------------------------------------------------

    def set_filter(self, search: str = "", type: str | None = None) -> None:
        self.filter = MarkerFilter(search=search.strip(), type=type or None)
        for device in self.devices():
            self._restyle(device)
        self._notify()

    def set_zones_visible(self, visible: bool) -> None:
        self.zones_visible = visible
        self._draw_zones()
        self._notify()

    def isolate_zone(self, index: int) -> None:
        self.isolated_zone = index
        self._draw_zones()
        self._notify()

    def restore_zones(self) -> None:
        self.isolated_zone = None
        self._draw_zones()
        self._notify()

    # --- Live updates ------------------------------------------------------

    def _device(self, device_id: str) -> MarkerDevice | None:
        if self.level_index is None:
            return None
        return self.store.markers_for_level(self.level_index).get(device_id)

    def on_primary_measurement(self, device_id: str, measurement: Measurement) -> None:
        device = self._device(device_id)
        if device is None:
            return
        device.latest_primary = measurement
        device.measurements[measurement.datapoint.path] = measurement
        self._restyle(device)
        self._notify()

    def on_measurement(self, device_id: str, measurement: Measurement) -> None:
        device = self._device(device_id)
        if device is None:
            return
        device.measurements[measurement.datapoint.path] = measurement
        self._restyle(device)
        self._notify()

    def on_event(self, device_id: str, event: Event) -> None:
        device = self._device(device_id)
        if device is None:
            return
        device.latest_event = event
        self._restyle(device)
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()

    # --- Views -------------------------------------------------------------

    def devices(self) -> list[MarkerDevice]:
        """All devices of the current level, placed or not."""
        if self.level_index is None:
            return []
        return list(self.store.markers_for_level(self.level_index).values())

    def view_state(self) -> ViewState:
        building = self.store.building
        level = self.store.level(self.level_index) if self.level_index is not None else None
        devices = self.devices()
        markers = []
        for device in devices:
            if device.position is None:
                continue
            style = marker_style(device, self.filter, self.config)
            markers.append(
                MarkerView(
                    id=device.id,
                    name=device.name,
                    type=device.type,
                    lat=device.position.lat,
                    lng=device.position.lng,
                    emphasis=str(style.emphasis),
                    color=style.fill_color,
                    fill_opacity=style.fill_opacity,
                    value=device.latest_primary.display() if device.latest_primary else None,
                    event=device.latest_event.text if device.latest_event else None,
                    popup=self.open_popup(device),
                )
            )
        anchors = None
        if self.anchors is not None:
            corners = (self.anchors.top_left, self.anchors.top_right, self.anchors.bottom_left)
            anchors = [(corner.lat, corner.lng) for corner in corners]
        center = boundary_center(building.coordinates, self.config.default_center)
        return ViewState(
            building_id=building.id,
            building_name=building.name,
            levels=[lvl.name for lvl in self.store.levels],
            level_index=self.level_index,
            level_name=level.name if level else "",
            center=(center.lat, center.lng),
            anchors=anchors,
            overlay=self.store.overlay is not None,
            zones_visible=self.zones_visible,
            isolated_zone=self.isolated_zone,
            zones=[{"index": i, **zone.to_dict()} for i, zone in self._visible_zones()],
            search=self.filter.search,
            type_filter=self.filter.type,
            types=device_types(devices),
            markers=markers,
            devices=[device.to_row() for device in devices],
        )
