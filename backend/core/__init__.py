"""Core domain models, geometry and per-building state."""

from core.errors import ConfigurationError, ImageDecodeError, IndoorMapError, SaveError, TransportError
from core.geometry import AnchorPoints, resolve_anchors
from core.models import Boundary, Building, Datapoint, Level, MarkerDevice, Measurement, WidgetConfig, Zone

__all__ = [
    "AnchorPoints",
    "Boundary",
    "Building",
    "ConfigurationError",
    "Datapoint",
    "ImageDecodeError",
    "IndoorMapError",
    "Level",
    "MarkerDevice",
    "Measurement",
    "SaveError",
    "TransportError",
    "WidgetConfig",
    "Zone",
    "resolve_anchors",
]
