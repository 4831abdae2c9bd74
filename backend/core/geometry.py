"""Georeferencing of floor-plan images onto the map.

A rectangular image can be placed under rotation and skew from three of its
corners (top-left, top-right, bottom-left). Those anchors come either from a
drawn quadrilateral or, as a fallback, from an axis-aligned bounding box.

Vertex order of a stored polygon is fixed by the drawing tool:
index 0 = TL, 1 = TR, 2 = BR, 3 = BL.

A coordinate of exactly zero counts as "not configured" for the box
fallback, so a genuine (0, 0) boundary cannot be expressed as a box.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from core.models import Boundary, LatLng

logger = logging.getLogger(__name__)

_MIN_POLYGON_VERTICES = 4


@dataclass(frozen=True)
class AnchorPoints:
    top_left: LatLng
    top_right: LatLng
    bottom_left: LatLng

    @property
    def bottom_right(self) -> LatLng:
        """Fourth corner of the parallelogram spanned by the anchors."""
        return LatLng(
            lat=self.top_right.lat + self.bottom_left.lat - self.top_left.lat,
            lng=self.top_right.lng + self.bottom_left.lng - self.top_left.lng,
        )


@dataclass(frozen=True)
class Bounds:
    south_west: LatLng
    north_east: LatLng

    @property
    def center(self) -> LatLng:
        return LatLng(
            lat=(self.south_west.lat + self.north_east.lat) / 2,
            lng=(self.south_west.lng + self.north_east.lng) / 2,
        )


def parse_polygon_ring(polygon_json: str | None) -> list[dict[str, Any]] | None:
    """Return the outer ring of a serialized polygon, or None if unusable.

    Accepts both ``[[{lat, lng}, ...]]`` and a bare ``[{lat, lng}, ...]``.
    """
    if not polygon_json:
        return None
    try:
        data = json.loads(polygon_json)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse polygon vertices: %s", exc)
        return None
    if not isinstance(data, list) or not data:
        return None
    ring = data[0] if isinstance(data[0], list) else data
    if not all(isinstance(vertex, dict) for vertex in ring):
        logger.error("Polygon vertices are not lat/lng objects")
        return None
    return ring


def _vertex(raw: dict[str, Any]) -> LatLng:
    return LatLng(lat=float(raw.get("lat") or 0), lng=float(raw.get("lng") or 0))


def _box_corners(boundary: Boundary) -> tuple[float, float, float, float] | None:
    """(top, left, bottom, right), or None when any corner is unset or zero."""
    top, left = boundary.top_left_lat, boundary.top_left_lng
    bottom, right = boundary.bottom_right_lat, boundary.bottom_right_lng
    if not top or not left or not bottom or not right:
        return None
    return top, left, bottom, right


def resolve_anchors(boundary: Boundary) -> AnchorPoints | None:
    """Derive image anchor points from a boundary.

    Polygon data wins over the box whenever it holds at least four vertices.
    Returns None when neither source is usable; the caller then renders
    without an image overlay.
    """
    ring = parse_polygon_ring(boundary.polygon_vertices_json)
    if ring is not None and len(ring) >= _MIN_POLYGON_VERTICES:
        return AnchorPoints(top_left=_vertex(ring[0]), top_right=_vertex(ring[1]), bottom_left=_vertex(ring[3]))

    corners = _box_corners(boundary)
    if corners is None:
        return None

    top, left, bottom, right = corners
    return AnchorPoints(
        top_left=LatLng(lat=top, lng=left),
        top_right=LatLng(lat=top, lng=right),
        bottom_left=LatLng(lat=bottom, lng=left),
    )


def resolve_bounds(boundary: Boundary) -> Bounds | None:
    """Axis-aligned box of the boundary, or None if any corner is unset."""
    corners = _box_corners(boundary)
    if corners is None:
        logger.error("GPS corner coordinates are missing from the configuration.")
        return None
    top, left, bottom, right = corners
    return Bounds(south_west=LatLng(lat=bottom, lng=left), north_east=LatLng(lat=top, lng=right))


def boundary_center(boundary: Boundary, default: tuple[float, float]) -> LatLng:
    bounds = resolve_bounds(boundary) if _box_corners(boundary) is not None else None
    if bounds is None:
        return LatLng(lat=default[0], lng=default[1])
    return bounds.center


def anchors_from_unordered_ring(ring: list[dict[str, Any]]) -> AnchorPoints | None:
    """Pick TL/TR/BL from a ring of unknown vertex order.

    The two northernmost vertices form the top edge (west one is TL), and
    the western of the remaining two is BL.
    """
    if len(ring) < _MIN_POLYGON_VERTICES:
        return None
    vertices = [_vertex(v) for v in ring]
    by_lat = sorted(vertices, key=lambda v: v.lat, reverse=True)
    top_left, top_right = sorted(by_lat[:2], key=lambda v: v.lng)
    remaining = [v for v in vertices if v not in (top_left, top_right)]
    if len(remaining) < 2:
        return None
    bottom_left = remaining[0] if remaining[0].lng < remaining[1].lng else remaining[1]
    return AnchorPoints(top_left=top_left, top_right=top_right, bottom_left=bottom_left)


def image_affine(anchors: AnchorPoints, width: int, height: int) -> NDArray[np.float64]:
    """2x3 matrix mapping image pixel (x, y, 1) to map (lat, lng).

    Pixel (0, 0) lands on TL, (width, 0) on TR and (0, height) on BL.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    origin = np.array([anchors.top_left.lat, anchors.top_left.lng])
    x_axis = (np.array([anchors.top_right.lat, anchors.top_right.lng]) - origin) / width
    y_axis = (np.array([anchors.bottom_left.lat, anchors.bottom_left.lng]) - origin) / height
    return np.column_stack([x_axis, y_axis, origin])


def image_point_to_map(affine: NDArray[np.float64], x: float, y: float) -> LatLng:
    lat, lng = affine @ np.array([x, y, 1.0])
    return LatLng(lat=float(lat), lng=float(lng))
