"""Core data models for buildings, levels, zones, markers and thresholds.

Buildings are persisted as a single inventory object with a fixed type tag.
The ``from_*``/``to_*`` helpers translate between that camelCase wire layout
and the dataclasses used throughout the engine.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from core.errors import ConfigurationError

BUILDING_TYPE = "c8y_Building"

# Extra managed-object fields that take part in marker search.
SEARCHABLE_EXTRA_FIELDS: tuple[str, ...] = ("owner", "creationTime", "lastUpdated")

EPOCH = datetime.fromtimestamp(0, UTC)


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


@dataclass(frozen=True)
class Datapoint:
    """One telemetry channel, addressed as ``fragment.series``."""

    fragment: str
    series: str

    @property
    def path(self) -> str:
        return f"{self.fragment}.{self.series}"

    @classmethod
    def parse(cls, path: str) -> "Datapoint":
        fragment, _, series = path.partition(".")
        return cls(fragment=fragment, series=series)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Datapoint":
        return cls(fragment=str(data.get("fragment", "")), series=str(data.get("series", "")))

    def to_dict(self) -> dict[str, str]:
        return {"fragment": self.fragment, "series": self.series}

    def is_in(self, raw: dict[str, Any]) -> bool:
        """True if the raw measurement carries an entry at ``fragment.series``."""
        fragment = raw.get(self.fragment)
        return isinstance(fragment, dict) and self.series in fragment

    def read(self, raw: dict[str, Any]) -> "Measurement | None":
        """Extract the value/unit pair at this datapoint, if present."""
        if not self.is_in(raw):
            return None
        entry = raw[self.fragment][self.series]
        if not isinstance(entry, dict):
            return Measurement(value=None, unit=None, datapoint=self)
        return Measurement(value=entry.get("value"), unit=entry.get("unit"), datapoint=self)


@dataclass
class Measurement:
    value: float | None
    unit: str | None
    datapoint: Datapoint

    def display(self) -> str:
        return f"{self.value}{self.unit}" if self.unit else f"{self.value}"


# ---------------------------------------------------------------------------
# Boundary / building configuration
# ---------------------------------------------------------------------------


class PlacementMode(StrEnum):
    CORNERS = "corners"
    POLYGON = "polygon"


@dataclass
class Boundary:
    """Real-world placement of a building: a box, a polygon, or both."""

    top_left_lat: float | None = None
    top_left_lng: float | None = None
    bottom_right_lat: float | None = None
    bottom_right_lng: float | None = None
    polygon_vertices_json: str | None = None
    placement_mode: str = PlacementMode.CORNERS
    rotation_angle: float | None = None
    zoom_level: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Boundary":
        if not data:
            return cls()
        return cls(
            top_left_lat=data.get("topLeftLat"),
            top_left_lng=data.get("topLeftLng"),
            bottom_right_lat=data.get("bottomRightLat"),
            bottom_right_lng=data.get("bottomRightLng"),
            polygon_vertices_json=data.get("polygonVerticesJson") or None,
            placement_mode=data.get("placementMode") or PlacementMode.CORNERS,
            rotation_angle=data.get("rotationAngle"),
            zoom_level=data.get("zoomLevel"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "topLeftLat": self.top_left_lat,
            "topLeftLng": self.top_left_lng,
            "bottomRightLat": self.bottom_right_lat,
            "bottomRightLng": self.bottom_right_lng,
            "polygonVerticesJson": self.polygon_vertices_json,
            "placementMode": str(self.placement_mode),
            "rotationAngle": self.rotation_angle,
            "zoomLevel": self.zoom_level,
        }
        return {key: value for key, value in data.items() if value is not None}


@dataclass
class MarkerRef:
    id: str
    name: str = ""

    @classmethod
    def from_raw(cls, raw: Any) -> "MarkerRef":
        # Older configurations stored bare device ids.
        if isinstance(raw, dict):
            return cls(id=str(raw.get("id", "")), name=str(raw.get("name", "")))
        return cls(id=str(raw))


@dataclass
class ImageDimensions:
    width: int
    height: int


@dataclass
class Level:
    """One floor: optional floor-plan image plus marker references."""

    name: str
    binary_id: str | None = None
    markers: list[MarkerRef] = field(default_factory=list)
    dimensions: ImageDimensions | None = None
    image: bytes | None = None  # loaded lazily, never persisted

    @property
    def marker_ids(self) -> list[str]:
        return [m.id for m in self.markers]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Level":
        dims = (data.get("imageDetails") or {}).get("dimensions")
        return cls(
            name=str(data.get("name", "")),
            binary_id=data.get("binaryId") or None,
            markers=[MarkerRef.from_raw(m) for m in data.get("markers") or []],
            dimensions=ImageDimensions(width=int(dims["width"]), height=int(dims["height"])) if dims else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "markers": [{"id": m.id, "name": m.name} for m in self.markers],
            "imageDetails": {},
        }
        if self.binary_id:
            data["binaryId"] = self.binary_id
        if self.dimensions:
            data["imageDetails"]["dimensions"] = {"width": self.dimensions.width, "height": self.dimensions.height}
        return data


@dataclass
class Zone:
    """A drawn area on one level. Geometry is GeoJSON in map coordinates."""

    geometry: dict[str, Any]
    rotation: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Zone":
        return cls(geometry=data.get("geometry") or {}, rotation=float(data.get("rotation") or 0.0))

    def to_dict(self) -> dict[str, Any]:
        return {"geometry": self.geometry, "rotation": self.rotation}


@dataclass
class Building:
    id: str | None
    name: str
    coordinates: Boundary = field(default_factory=Boundary)
    levels: list[Level] = field(default_factory=list)
    all_zones_by_level: dict[str, str] = field(default_factory=dict)
    location: str = ""
    asset_type: str = ""

    @classmethod
    def from_managed_object(cls, obj: dict[str, Any]) -> "Building":
        if obj.get("levels") is None or obj.get("type") != BUILDING_TYPE:
            raise ConfigurationError(f"Managed object {obj.get('id')} is not a building configuration")
        zones = obj.get("allZonesByLevel") or {}
        return cls(
            id=str(obj["id"]) if obj.get("id") is not None else None,
            name=str(obj.get("name", "")),
            coordinates=Boundary.from_dict(obj.get("coordinates")),
            levels=[Level.from_dict(level) for level in obj["levels"]],
            all_zones_by_level={str(key): value for key, value in zones.items() if isinstance(value, str)},
            location=str(obj.get("location", "")),
            asset_type=str(obj.get("assetType", "")),
        )

    def to_managed_object(self) -> dict[str, Any]:
        obj: dict[str, Any] = {
            "name": self.name,
            "type": BUILDING_TYPE,
            "coordinates": self.coordinates.to_dict(),
            "location": self.location,
            "assetType": self.asset_type,
            "levels": [level.to_dict() for level in self.levels],
            "allZonesByLevel": dict(self.all_zones_by_level),
        }
        if self.id is not None:
            obj["id"] = self.id
        return obj


def is_building(obj: dict[str, Any]) -> bool:
    return obj.get("levels") is not None and obj.get("type") == BUILDING_TYPE


# ---------------------------------------------------------------------------
# Devices and events
# ---------------------------------------------------------------------------


@dataclass
class Event:
    id: str
    type: str
    text: str
    source: str
    creation_time: datetime

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        source = data.get("source") or {}
        return cls(
            id=str(data.get("id", "")),
            type=str(data.get("type", "")),
            text=str(data.get("text", "")),
            source=str(source.get("id", "")) if isinstance(source, dict) else str(source),
            creation_time=parse_timestamp(data.get("creationTime") or data.get("time")),
        )


@dataclass(eq=False)
class MarkerDevice:
    """A device placed on a level, plus its transient live annotations."""

    id: str
    name: str
    type: str = ""
    position: LatLng | None = None
    extra: dict[str, str] = field(default_factory=dict)
    measurements: dict[str, Measurement] = field(default_factory=dict)
    latest_primary: Measurement | None = None
    latest_event: Event | None = None
    instance: Any = None  # handle returned by the map surface

    @classmethod
    def from_managed_object(cls, obj: dict[str, Any]) -> "MarkerDevice":
        pos = obj.get("c8y_Position")
        position = None
        if isinstance(pos, dict) and pos.get("lat") is not None and pos.get("lng") is not None:
            position = LatLng(lat=float(pos["lat"]), lng=float(pos["lng"]))
        return cls(
            id=str(obj["id"]),
            name=str(obj.get("name", "")),
            type=str(obj.get("type", "")),
            position=position,
            extra={key: obj[key] for key in SEARCHABLE_EXTRA_FIELDS if isinstance(obj.get(key), str)},
        )

    def searchable_values(self) -> list[str]:
        return [self.name, self.type, self.id, *self.extra.values()]

    def to_row(self) -> dict[str, Any]:
        """Flat representation for tabular display, including unplaced devices."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "placed": self.position is not None,
            **self.extra,
        }


# ---------------------------------------------------------------------------
# Widget configuration
# ---------------------------------------------------------------------------


@dataclass
class MeasurementThreshold:
    id: str
    label: str
    color: str
    min: float
    max: float


@dataclass
class EventThreshold:
    id: str
    label: str
    color: str
    text: str
    event_type: str | None = None


type Threshold = MeasurementThreshold | EventThreshold


def threshold_from_dict(data: dict[str, Any]) -> Threshold:
    common = {"id": str(data.get("id", "")), "label": str(data.get("label", "")), "color": str(data.get("color", ""))}
    match data.get("type"):
        case "measurement":
            return MeasurementThreshold(**common, min=float(data["min"]), max=float(data["max"]))
        case "event":
            return EventThreshold(**common, text=str(data.get("text", "")), event_type=data.get("eventType"))
        case other:
            raise ConfigurationError(f"Unknown threshold type: {other!r}")


@dataclass
class DatapointPopup:
    label: str
    measurement: Datapoint


@dataclass
class Legend:
    title: str = ""
    thresholds: list[Threshold] = field(default_factory=list)


@dataclass
class MarkerStyleConfig:
    use_icons: bool = False
    default_icon: str | None = None
    icon_size: tuple[int, int] | None = None


@dataclass
class WidgetConfig:
    """Configuration supplied by the hosting shell."""

    building_id: str
    measurement: Datapoint
    building_name: str = ""
    datapoints_popup: list[DatapointPopup] = field(default_factory=list)
    legend: Legend | None = None
    marker_style: MarkerStyleConfig = field(default_factory=MarkerStyleConfig)

    @property
    def secondary_datapoints(self) -> list[Datapoint]:
        return [popup.measurement for popup in self.datapoints_popup]

    @property
    def thresholds(self) -> list[Threshold]:
        return self.legend.thresholds if self.legend else []

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WidgetConfig":
        building_id = data.get("buildingId") or data.get("mapConfigurationId")
        if not building_id:
            raise ConfigurationError("Widget configuration has no building id")
        legend_data = data.get("legend")
        legend = None
        if legend_data:
            legend = Legend(
                title=str(legend_data.get("title", "")),
                thresholds=[threshold_from_dict(t) for t in legend_data.get("thresholds") or []],
            )
        style = data.get("markerStyle") or {}
        icon_size = style.get("iconSize")
        return cls(
            building_id=str(building_id),
            building_name=str(data.get("buildingName", "")),
            measurement=Datapoint.from_dict(data.get("measurement") or {}),
            datapoints_popup=[
                DatapointPopup(label=str(p.get("label", "")), measurement=Datapoint.from_dict(p["measurement"]))
                for p in data.get("datapointsPopup") or []
            ],
            legend=legend,
            marker_style=MarkerStyleConfig(
                use_icons=bool(style.get("useIcons", False)),
                default_icon=style.get("defaultIcon"),
                icon_size=(int(icon_size[0]), int(icon_size[1])) if icon_size else None,
            ),
        )


def parse_timestamp(value: str | None) -> datetime:
    if not value:
        return EPOCH
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    # Offset-less timestamps are UTC.
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
