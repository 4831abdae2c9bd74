"""In-memory building state: levels, per-level zones, markers and images.

Everything per level is keyed by the level's array position. Zones live in
the building's ``all_zones_by_level`` map as one JSON string per index, so
they round-trip unchanged through floor navigation and persistence.
"""

import asyncio
import json
import logging

from core.errors import TransportError
from core.images import ImageHandle, normalize_binary, read_dimensions
from core.models import Building, Level, MarkerDevice, MarkerRef, Zone
from services.platform import BinaryApi

logger = logging.getLogger(__name__)


class BuildingStore:
    """Owns one building's mutable per-level state for a session."""

    def __init__(self, building: Building) -> None:
        self.building = building
        self._markers_by_level: dict[int, dict[str, MarkerDevice]] = {}
        self._overlay: ImageHandle | None = None
        self._overlay_level: int | None = None

    @property
    def levels(self) -> list[Level]:
        return self.building.levels

    def level(self, index: int) -> Level | None:
        if 0 <= index < len(self.building.levels):
            return self.building.levels[index]
        return None

    # --- Images -------------------------------------------------------------

    async def load_images_for_levels(self, binaries: BinaryApi) -> None:
        """Download and measure the image of every level that references one.

        Images already loaded in this session are not downloaded again. A level
        whose download fails keeps no image and is shown without an overlay.
        Raises ImageDecodeError if an image defeats every decode path.
        """
        pending = [level for level in self.building.levels if level.binary_id and level.image is None]
        if not pending:
            return
        downloads = await asyncio.gather(
            *(binaries.download(level.binary_id or "") for level in pending), return_exceptions=True
        )
        for level, downloaded in zip(pending, downloads, strict=True):
            if isinstance(downloaded, TransportError):
                logger.warning("Image %s for level %s unavailable: %s", level.binary_id, level.name, downloaded)
                continue
            if isinstance(downloaded, BaseException):
                raise downloaded
            try:
                data = normalize_binary(downloaded)
            except TypeError as exc:
                logger.warning("Image %s for level %s unusable: %s", level.binary_id, level.name, exc)
                continue
            level.dimensions = read_dimensions(data)
            level.image = data
            logger.debug(
                "Loaded image for level %s (%dx%d)", level.name, level.dimensions.width, level.dimensions.height
            )

    def open_overlay(self, index: int) -> ImageHandle | None:
        """Create the display handle for a level image, releasing the previous one."""
        self.release_overlay()
        level = self.level(index)
        if level is None or level.image is None:
            return None
        self._overlay = ImageHandle(level.image)
        self._overlay_level = index
        return self._overlay

    def release_overlay(self) -> None:
        if self._overlay is not None:
            self._overlay.release()
        self._overlay = None
        self._overlay_level = None

    @property
    def overlay(self) -> ImageHandle | None:
        return self._overlay

    # --- Zones --------------------------------------------------------------

    def get_zones_for_level(self, index: int) -> list[Zone]:
        raw = self.building.all_zones_by_level.get(str(index))
        if not raw:
            return []
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            return [Zone.from_dict(item) for item in data if isinstance(item, dict)]
        except (ValueError, TypeError) as exc:
            logger.error("Failed to parse zones JSON for level %d: %s", index, exc)
            return []

    def set_zones_for_level(self, index: int, zones: list[Zone]) -> None:
        self.building.all_zones_by_level[str(index)] = json.dumps([zone.to_dict() for zone in zones])

    # --- Levels -------------------------------------------------------------

    def add_level(self, name: str, binary_id: str | None = None, markers: list[MarkerRef] | None = None) -> int:
        self.building.levels.append(Level(name=name, binary_id=binary_id, markers=markers or []))
        return len(self.building.levels) - 1

    def remove_level(self, index: int) -> Level:
        """Remove a level and shift later levels' zone and marker state down."""
        if self.level(index) is None:
            raise IndexError(f"No level at index {index}")
        if self._overlay_level == index:
            self.release_overlay()
        elif self._overlay_level is not None and self._overlay_level > index:
            self._overlay_level -= 1
        removed = self.building.levels.pop(index)
        removed.image = None

        zones = self.building.all_zones_by_level
        shifted: dict[str, str] = {}
        for key, value in zones.items():
            position = int(key) if key.isdigit() else None
            if position is None:
                shifted[key] = value
            elif position < index:
                shifted[key] = value
            elif position > index:
                shifted[str(position - 1)] = value
        self.building.all_zones_by_level = shifted

        self._markers_by_level = {
            (position - 1 if position > index else position): devices
            for position, devices in self._markers_by_level.items()
            if position != index
        }
        return removed

    # --- Marker annotations -------------------------------------------------

    def set_markers_for_level(self, index: int, devices: list[MarkerDevice]) -> None:
        self._markers_by_level[index] = {device.id: device for device in devices}

    def markers_for_level(self, index: int) -> dict[str, MarkerDevice]:
        """Live annotation map for a level; empty if none were loaded."""
        return self._markers_by_level.setdefault(index, {})

    def has_markers(self, index: int) -> bool:
        return bool(self._markers_by_level.get(index))
