"""FastAPI entry point - thin layer over the domain."""

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import DEFAULT, PlatformSettings
from core.errors import ConfigurationError, ImageDecodeError, SaveError, TransportError
from core.geometry import resolve_anchors, resolve_bounds
from core.images import sniff_media_type
from core.models import Building, WidgetConfig, Zone
from core.render import RenderCoordinator, SceneSurface
from core.store import BuildingStore
from services.building import BuildingService
from services.event_polling import EventPoller
from services.platform import C8yRestClient
from services.realtime import C8yRealtime
from services.telemetry import TelemetryRouter
from simulation import SimulatedPlatform

logging.basicConfig(level=logging.WARNING, format="%(name)s | %(message)s")
logging.getLogger("core.render").setLevel(logging.INFO)
logging.getLogger("services.building").setLevel(logging.INFO)
logging.getLogger("services.event_polling").setLevel(logging.INFO)

logger = logging.getLogger(__name__)

# --- module-level state, initialised at import time ---
settings = PlatformSettings.from_env()
simulated: SimulatedPlatform | None = None
rest_client: C8yRestClient | None = None
if settings.simulated:
    simulated = SimulatedPlatform.with_sample_building()
    apis = simulated.apis()
else:
    rest_client = C8yRestClient(settings)
    apis = rest_client.apis(C8yRealtime(rest_client))
buildings = BuildingService(apis)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    ticker = None
    if simulated is not None:
        logger.warning("C8Y_BASE_URL is not set, serving the simulated platform")
        ticker = asyncio.create_task(simulated.run(DEFAULT.demo_tick_s))
    try:
        yield
    finally:
        if ticker is not None:
            ticker.cancel()
            await asyncio.gather(ticker, return_exceptions=True)
        if rest_client is not None:
            await rest_client.close()


app = FastAPI(title="Indoor Map API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class BuildingSummary(BaseModel):
    id: str | None
    name: str
    location: str
    levels: list[str]


class ZoneModel(BaseModel):
    geometry: dict[str, Any]
    rotation: float = 0.0


class AnchorResponse(BaseModel):
    top_left: tuple[float, float]
    top_right: tuple[float, float]
    bottom_left: tuple[float, float]
    bottom_right: tuple[float, float]
    bounds: tuple[tuple[float, float], tuple[float, float]] | None


def _summary(building: Building) -> BuildingSummary:
    return BuildingSummary(
        id=building.id,
        name=building.name,
        location=building.location,
        levels=[level.name for level in building.levels],
    )


async def _require_building(building_id: str) -> Building:
    building = await buildings.load_building(building_id)
    if building is None:
        raise HTTPException(status_code=404, detail=f"Building {building_id} not found")
    return building


@app.get("/buildings")
async def list_buildings() -> list[BuildingSummary]:
    return [_summary(building) for building in await buildings.load_buildings()]


@app.get("/buildings/{building_id}")
async def get_building(building_id: str) -> dict[str, Any]:
    building = await _require_building(building_id)
    return building.to_managed_object()


@app.post("/buildings")
async def save_building(body: dict[str, Any]) -> dict[str, Any]:
    """Create a building, or update it when the body carries an id."""
    try:
        building = Building.from_managed_object({**body, "type": DEFAULT.building_type})
        saved = await buildings.create_or_update_building(building)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SaveError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return saved.to_managed_object()


@app.delete("/buildings/{building_id}")
async def delete_building(building_id: str) -> dict[str, str]:
    try:
        await buildings.delete_building(building_id)
    except SaveError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"status": "deleted"}


@app.get("/buildings/{building_id}/series")
async def get_supported_series(building_id: str) -> list[str]:
    building = await _require_building(building_id)
    return await buildings.supported_series(building)


@app.get("/buildings/{building_id}/anchors")
async def get_anchors(building_id: str) -> AnchorResponse:
    building = await _require_building(building_id)
    anchors = resolve_anchors(building.coordinates)
    if anchors is None:
        raise HTTPException(status_code=404, detail="Building has no usable boundary")
    bounds = resolve_bounds(building.coordinates)
    return AnchorResponse(
        top_left=(anchors.top_left.lat, anchors.top_left.lng),
        top_right=(anchors.top_right.lat, anchors.top_right.lng),
        bottom_left=(anchors.bottom_left.lat, anchors.bottom_left.lng),
        bottom_right=(anchors.bottom_right.lat, anchors.bottom_right.lng),
        bounds=(
            ((bounds.south_west.lat, bounds.south_west.lng), (bounds.north_east.lat, bounds.north_east.lng))
            if bounds
            else None
        ),
    )


@app.get("/buildings/{building_id}/levels/{index}/zones")
async def get_zones(building_id: str, index: int) -> list[ZoneModel]:
    store = BuildingStore(await _require_building(building_id))
    if store.level(index) is None:
        raise HTTPException(status_code=404, detail=f"Level {index} not found")
    return [ZoneModel(geometry=zone.geometry, rotation=zone.rotation) for zone in store.get_zones_for_level(index)]


@app.put("/buildings/{building_id}/levels/{index}/zones")
async def put_zones(building_id: str, index: int, zones: list[ZoneModel]) -> list[ZoneModel]:
    store = BuildingStore(await _require_building(building_id))
    if store.level(index) is None:
        raise HTTPException(status_code=404, detail=f"Level {index} not found")
    store.set_zones_for_level(index, [Zone(geometry=z.geometry, rotation=z.rotation) for z in zones])
    try:
        await buildings.create_or_update_building(store.building)
    except SaveError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return zones


@app.get("/buildings/{building_id}/levels/{index}/image")
async def get_level_image(building_id: str, index: int) -> Response:
    try:
        store = await buildings.load_building_with_images(building_id)
    except (ConfigurationError, ImageDecodeError, TransportError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    level = store.level(index)
    if level is None or level.image is None:
        raise HTTPException(status_code=404, detail=f"Level {index} has no image")
    return Response(content=level.image, media_type=sniff_media_type(level.image))


@app.put("/buildings/{building_id}/levels/{index}/image")
async def put_level_image(building_id: str, index: int, request: Request, name: str = "floorplan") -> dict[str, Any]:
    """Forward raw image bytes to the binary store and link them to the level."""
    building = await _require_building(building_id)
    if not 0 <= index < len(building.levels):
        raise HTTPException(status_code=404, detail=f"Level {index} not found")
    try:
        level = await buildings.upload_level_image(building, index, name, await request.body())
        await buildings.create_or_update_building(building)
    except ImageDecodeError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SaveError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return level.to_dict()


# ---------------------------------------------------------------------------
# Live view
# ---------------------------------------------------------------------------


async def _push_view_state(websocket: WebSocket, coordinator: RenderCoordinator, changed: asyncio.Event) -> None:
    while True:
        await changed.wait()
        changed.clear()
        await websocket.send_json(dataclasses.asdict(coordinator.view_state()))


async def _handle_action(coordinator: RenderCoordinator, message: dict[str, Any]) -> None:
    match message.get("action"):
        case "level":
            await coordinator.change_level(int(message["index"]))
        case "filter":
            coordinator.set_filter(str(message.get("search") or ""), message.get("type") or None)
        case "zones":
            coordinator.set_zones_visible(bool(message.get("visible", True)))
        case "isolate":
            coordinator.isolate_zone(int(message["index"]))
        case "restore":
            coordinator.restore_zones()
        case other:
            logger.warning("Ignoring unknown action %r", other)


@app.websocket("/ws/{building_id}")
async def websocket_endpoint(websocket: WebSocket, building_id: str) -> None:
    """Stream view state for one building.

    The first client message is the widget configuration; later messages
    are actions (level, filter, zones, isolate, restore).
    """
    await websocket.accept()
    try:
        raw_config = await websocket.receive_json()
        widget = WidgetConfig.from_dict({**raw_config, "buildingId": building_id})
        store = await buildings.load_building_with_images(widget.building_id)
    except WebSocketDisconnect:
        return
    except (ConfigurationError, ImageDecodeError, TransportError) as exc:
        logger.error("Failed to open building %s: %s", building_id, exc)
        await websocket.send_json({"error": str(exc)})
        await websocket.close(code=1011)
        return
    await buildings.populate_markers(store)

    changed = asyncio.Event()
    coordinator = RenderCoordinator(
        store,
        SceneSurface(),
        TelemetryRouter(apis.realtime),
        EventPoller(apis.events),
        widget,
        buildings,
        on_change=changed.set,
    )
    pusher = asyncio.create_task(_push_view_state(websocket, coordinator, changed))
    try:
        if not await coordinator.change_level(0):
            changed.set()
        while True:
            message = await websocket.receive_json()
            try:
                await _handle_action(coordinator, message)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Malformed action %r: %s", message, exc)
    except WebSocketDisconnect:
        pass
    finally:
        pusher.cancel()
        await asyncio.gather(pusher, return_exceptions=True)
        await coordinator.shutdown()
