"""Sample building, devices and floor plans for demo mode and tests."""

import json
from typing import Any

from core.geometry import AnchorPoints, image_affine, image_point_to_map
from core.models import BUILDING_TYPE, LatLng

BUILDING_ID = "10001"

# Footprint of the building in metres; floor plans are drawn at 20 px/m.
WIDTH_M = 30.0
HEIGHT_M = 18.0
PX_PER_M = 20

# Drawn corners in tool order: TL, TR, BR, BL.
FOOTPRINT = [
    LatLng(lat=51.23590, lng=6.79550),
    LatLng(lat=51.23590, lng=6.79650),
    LatLng(lat=51.23540, lng=6.79650),
    LatLng(lat=51.23540, lng=6.79550),
]

type Room = tuple[str, str, tuple[float, float, float, float]]  # id, name, (x, y, w, h) in metres

GROUND_FLOOR: list[Room] = [
    ("r-001", "Lobby", (0, 0, 10, 9)),
    ("r-002", "Kitchen", (10, 0, 10, 9)),
    ("r-003", "Common Room", (20, 0, 10, 9)),
    ("r-004", "Laundry", (0, 9, 10, 9)),
    ("r-005", "Study Room A", (10, 9, 10, 9)),
    ("r-006", "Storage", (20, 9, 10, 9)),
]

FIRST_FLOOR: list[Room] = [
    ("r-101", "Bedroom 101", (0, 0, 10, 9)),
    ("r-102", "Bedroom 102", (10, 0, 10, 9)),
    ("r-103", "Bedroom 103", (20, 0, 10, 9)),
    ("r-104", "Bedroom 104", (0, 9, 15, 9)),
    ("r-105", "Shared Bathroom", (15, 9, 15, 9)),
]


def _anchors() -> AnchorPoints:
    return AnchorPoints(top_left=FOOTPRINT[0], top_right=FOOTPRINT[1], bottom_left=FOOTPRINT[3])


def _to_map(x_m: float, y_m: float) -> LatLng:
    affine = image_affine(_anchors(), int(WIDTH_M * PX_PER_M), int(HEIGHT_M * PX_PER_M))
    return image_point_to_map(affine, x_m * PX_PER_M, y_m * PX_PER_M)


def floor_plan_svg(label: str, rooms: list[Room]) -> bytes:
    """Render a floor plan as SVG with one labelled rectangle per room."""
    width, height = int(WIDTH_M * PX_PER_M), int(HEIGHT_M * PX_PER_M)
    shapes = []
    for _, name, (x, y, w, h) in rooms:
        px, py, pw, ph = (v * PX_PER_M for v in (x, y, w, h))
        shapes.append(f'<rect x="{px}" y="{py}" width="{pw}" height="{ph}" fill="#f5f5f5" stroke="#333"/>')
        shapes.append(f'<text x="{px + pw / 2}" y="{py + ph / 2}" text-anchor="middle">{name}</text>')
    body = "".join(shapes)
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}">'
        f"<title>{label}</title>{body}</svg>"
    ).encode()


def _zone_for(room: Room) -> dict[str, Any]:
    _, _, (x, y, w, h) = room
    corners = [_to_map(x, y), _to_map(x + w, y), _to_map(x + w, y + h), _to_map(x, y + h)]
    ring = [[c.lng, c.lat] for c in corners]
    return {"geometry": {"type": "Polygon", "coordinates": [[*ring, ring[0]]]}, "rotation": 0}


def _device(device_id: str, room: Room, device_type: str, placed: bool = True) -> dict[str, Any]:
    room_id, name, (x, y, w, h) = room
    obj: dict[str, Any] = {
        "id": device_id,
        "name": f"sensor-{device_id[-2:]} {name}",
        "type": device_type,
        "owner": "facility-ops",
        "c8y_IsDevice": {},
        "roomId": room_id,
    }
    if placed:
        centre = _to_map(x + w / 2, y + h / 2)
        obj["c8y_Position"] = {"lat": centre.lat, "lng": centre.lng}
    return obj


def _devices() -> list[dict[str, Any]]:
    devices = []
    for offset, room in enumerate(GROUND_FLOOR):
        device_type = "c8y_HumiditySensor" if room[0] == "r-004" else "c8y_TemperatureSensor"
        devices.append(_device(f"300{offset + 10}", room, device_type))
    for offset, room in enumerate(FIRST_FLOOR):
        devices.append(_device(f"300{offset + 20}", room, "c8y_TemperatureSensor"))
    # Gateway in the storage room without a recorded position.
    devices.append(_device("30099", GROUND_FLOOR[5], "c8y_Gateway", placed=False))
    return devices


SAMPLE_DEVICES: list[dict[str, Any]] = _devices()

SAMPLE_BINARIES: dict[str, bytes] = {
    "20001": floor_plan_svg("Ground Floor", GROUND_FLOOR),
    "20002": floor_plan_svg("First Floor", FIRST_FLOOR),
}


def _markers(prefix: str) -> list[dict[str, str]]:
    return [{"id": d["id"], "name": d["name"]} for d in SAMPLE_DEVICES if d["id"].startswith(prefix)]


SAMPLE_BUILDING: dict[str, Any] = {
    "id": BUILDING_ID,
    "name": "Student Housing A",
    "type": BUILDING_TYPE,
    "location": "Campus North",
    "assetType": "residential",
    "coordinates": {
        "topLeftLat": FOOTPRINT[0].lat,
        "topLeftLng": FOOTPRINT[0].lng,
        "bottomRightLat": FOOTPRINT[2].lat,
        "bottomRightLng": FOOTPRINT[2].lng,
        "polygonVerticesJson": json.dumps([[{"lat": c.lat, "lng": c.lng} for c in FOOTPRINT]]),
        "placementMode": "polygon",
        "zoomLevel": 19,
    },
    "levels": [
        {
            "name": "Ground Floor",
            "binaryId": "20001",
            "markers": _markers("3001") + _markers("30099"),
            "imageDetails": {},
        },
        {
            "name": "First Floor",
            "binaryId": "20002",
            # Older configurations list bare device ids.
            "markers": [m["id"] for m in _markers("3002")],
            "imageDetails": {},
        },
    ],
    "allZonesByLevel": {
        "0": json.dumps([_zone_for(GROUND_FLOOR[0]), _zone_for(GROUND_FLOOR[4])]),
    },
}

SAMPLE_WIDGET: dict[str, Any] = {
    "buildingId": BUILDING_ID,
    "measurement": {"fragment": "c8y_Temperature", "series": "T"},
    "datapointsPopup": [
        {"label": "Humidity", "measurement": {"fragment": "c8y_Humidity", "series": "RH"}},
    ],
    "legend": {
        "title": "Room temperature",
        "thresholds": [
            {"id": "t-cold", "type": "measurement", "label": "Cold", "color": "#2196F3", "min": 0, "max": 19},
            {"id": "t-ok", "type": "measurement", "label": "Comfortable", "color": "#4CAF50", "min": 19, "max": 24},
            {
                "id": "t-hot",
                "type": "event",
                "label": "Overheating",
                "color": "#F44336",
                "text": "High temperature",
                "eventType": "c8y_TemperatureAlert",
            },
        ],
    },
}
