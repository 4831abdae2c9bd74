"""Building configuration service.

Background loads degrade silently: transport failures are logged and an
empty result is returned. User-initiated saves and deletes raise SaveError
so the failure reaches the operator.
"""

import asyncio
import logging
from datetime import UTC, datetime

from config import DEFAULT, EngineConfig
from core.errors import ConfigurationError, SaveError, TransportError
from core.images import read_dimensions, sniff_media_type
from core.models import Building, Datapoint, Level, MarkerDevice, Measurement, is_building
from core.store import BuildingStore
from services.platform import PlatformApis

logger = logging.getLogger(__name__)


class BuildingService:
    def __init__(self, apis: PlatformApis, config: EngineConfig = DEFAULT) -> None:
        self.apis = apis
        self.config = config

    async def load_building_with_images(self, building_id: str) -> BuildingStore:
        """Load a building and the floor-plan images of all its levels."""
        if not building_id:
            raise ConfigurationError("Missing building id!")
        obj = await self.apis.inventory.detail(building_id)
        building = Building.from_managed_object(obj)
        store = BuildingStore(building)
        if building.levels:
            await store.load_images_for_levels(self.apis.binaries)
        return store

    async def load_buildings(self) -> list[Building]:
        try:
            objects = await self.apis.inventory.list(
                {"pageSize": self.config.inventory_page_size, "type": self.config.building_type}
            )
        except TransportError as exc:
            logger.error("Failed to list buildings: %s", exc)
            return []
        return [Building.from_managed_object(obj) for obj in objects if is_building(obj)]

    async def load_building(self, building_id: str) -> Building | None:
        try:
            obj = await self.apis.inventory.detail(building_id)
        except TransportError as exc:
            logger.error("Failed to load building %s: %s", building_id, exc)
            return None
        return Building.from_managed_object(obj) if is_building(obj) else None

    async def create_or_update_building(self, building: Building) -> Building:
        inventory = self.apis.inventory
        try:
            if building.id:
                saved = await inventory.update(building.to_managed_object())
            else:
                saved = await inventory.create(building.to_managed_object())
        except TransportError as exc:
            raise SaveError(f"Failed to save building {building.name!r}: {exc}") from exc
        if not is_building(saved):
            raise SaveError(f"Platform returned an invalid building for {building.name!r}")
        logger.info("Building %s saved", saved.get("id"))
        return Building.from_managed_object(saved)

    async def delete_building(self, building_id: str) -> None:
        try:
            await self.apis.inventory.delete(building_id)
        except TransportError as exc:
            raise SaveError(f"Failed to delete building {building_id}: {exc}") from exc
        logger.info("Building %s deleted", building_id)

    async def upload_level_image(self, building: Building, index: int, name: str, data: bytes) -> Level:
        """Store a floor-plan image and point the level at it; the building is not saved."""
        level = building.levels[index]
        dimensions = read_dimensions(data)
        try:
            level.binary_id = await self.apis.binaries.create(name, data, sniff_media_type(data))
        except TransportError as exc:
            raise SaveError(f"Failed to upload image {name!r}: {exc}") from exc
        level.dimensions = dimensions
        level.image = data
        return level

    # --- Markers -------------------------------------------------------------

    async def load_markers(self, device_ids: list[str]) -> list[MarkerDevice]:
        if not device_ids:
            return []
        try:
            objects = await self.apis.inventory.list(
                {"ids": ",".join(device_ids), "pageSize": self.config.inventory_page_size}
            )
        except TransportError as exc:
            logger.error("Failed to load markers %s: %s", device_ids, exc)
            return []
        return [MarkerDevice.from_managed_object(obj) for obj in objects]

    async def load_markers_for_levels(self, levels: list[Level]) -> list[list[MarkerDevice]]:
        return list(await asyncio.gather(*(self.load_markers(level.marker_ids) for level in levels)))

    async def populate_markers(self, store: BuildingStore) -> None:
        per_level = await self.load_markers_for_levels(store.levels)
        for index, devices in enumerate(per_level):
            store.set_markers_for_level(index, devices)

    # --- Measurements --------------------------------------------------------

    async def load_latest_measurement(self, device_id: str, datapoint: Datapoint) -> Measurement | None:
        filter = {
            "source": device_id,
            "dateFrom": "1970-01-01",
            "dateTo": datetime.now(UTC).isoformat(),
            "valueFragmentType": datapoint.fragment,
            "valueFragmentSeries": datapoint.series,
            "pageSize": 1,
            "revert": True,
        }
        try:
            page = await self.apis.measurements.list(filter)
        except TransportError as exc:
            logger.warning("Failed to load latest %s for %s: %s", datapoint.path, device_id, exc)
            return None
        if len(page) != 1:
            return None
        return datapoint.read(page[0])

    async def load_latest_measurements(self, device_ids: list[str], datapoint: Datapoint) -> list[Measurement | None]:
        """Latest measurement per device, positionally aligned with ``device_ids``."""
        return list(await asyncio.gather(*(self.load_latest_measurement(d, datapoint) for d in device_ids)))

    async def supported_series(self, building: Building) -> list[str]:
        device_ids = list(dict.fromkeys(m.id for level in building.levels for m in level.markers))
        try:
            per_device = await asyncio.gather(*(self.apis.inventory.supported_series(d) for d in device_ids))
        except TransportError as exc:
            logger.error("Failed to load supported series: %s", exc)
            return []
        return list(dict.fromkeys(series for device_series in per_device for series in device_series))
