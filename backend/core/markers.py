"""Marker filtering, styling and popup content."""

import html
from dataclasses import dataclass
from enum import StrEnum

from config import DEFAULT, EngineConfig
from core.models import DatapointPopup, Legend, MarkerDevice, Measurement, MeasurementThreshold


class MarkerEmphasis(StrEnum):
    NEUTRAL = "neutral"
    HIGHLIGHTED = "highlighted"
    FADED = "faded"


@dataclass(frozen=True)
class MarkerStyle:
    emphasis: MarkerEmphasis
    color: str
    fill_color: str
    fill_opacity: float
    weight: int
    radius: int


@dataclass(frozen=True)
class MarkerFilter:
    search: str = ""
    type: str | None = None

    @property
    def active(self) -> bool:
        return bool(self.search) or bool(self.type)

    def matches(self, device: MarkerDevice) -> bool:
        if self.type and device.type != self.type:
            return False
        if not self.search:
            return True
        term = self.search.lower()
        return any(term in value.lower() for value in device.searchable_values())


def marker_color(measurement: Measurement | None, config: EngineConfig = DEFAULT) -> str:
    # Thresholds do not drive the colour yet; every marker gets the default.
    return config.marker_default_color


def marker_style(device: MarkerDevice, filter: MarkerFilter, config: EngineConfig = DEFAULT) -> MarkerStyle:
    color = marker_color(device.latest_primary, config)
    if not filter.active:
        return MarkerStyle(
            emphasis=MarkerEmphasis.NEUTRAL,
            color=color,
            fill_color=color,
            fill_opacity=config.marker_fill_opacity,
            weight=config.marker_weight,
            radius=config.marker_radius,
        )
    if filter.matches(device):
        return MarkerStyle(
            emphasis=MarkerEmphasis.HIGHLIGHTED,
            color=config.marker_highlight_stroke,
            fill_color=color,
            fill_opacity=config.marker_highlight_fill_opacity,
            weight=config.marker_highlight_weight,
            radius=config.marker_radius,
        )
    return MarkerStyle(
        emphasis=MarkerEmphasis.FADED,
        color=config.marker_faded_stroke,
        fill_color=color,
        fill_opacity=config.marker_faded_fill_opacity,
        weight=config.marker_faded_weight,
        radius=config.marker_radius,
    )


def popup_content(device: MarkerDevice, datapoints_popup: list[DatapointPopup]) -> str:
    """HTML shown when a marker is clicked.

    Lists the configured secondary datapoints that have a value, or the
    device type when none has arrived yet.
    """
    name = html.escape(device.name or device.id)
    parts = [f'<a href="#/device/{html.escape(device.id)}"><h5>{name}</h5></a><hr />']
    lines = []
    for popup in datapoints_popup:
        measurement = device.measurements.get(popup.measurement.path)
        if measurement is None:
            continue
        value = html.escape(measurement.display())
        lines.append(f'<p>{html.escape(popup.label)}: <span class="measurement-value">{value}</span></p>')
    if lines:
        parts.extend(lines)
    else:
        parts.append(f"<p>Type : {html.escape(device.type)}</p>")
    return "".join(parts)


@dataclass
class LegendEntry:
    label: str
    color: str
    range: tuple[float, float] | None = None


def legend_entries(legend: Legend | None) -> list[LegendEntry]:
    if legend is None:
        return []
    entries = []
    for threshold in legend.thresholds:
        bounds = (threshold.min, threshold.max) if isinstance(threshold, MeasurementThreshold) else None
        entries.append(LegendEntry(label=threshold.label, color=threshold.color, range=bounds))
    return entries


def device_types(devices: list[MarkerDevice]) -> list[str]:
    """Distinct device types, sorted, for the type filter dropdown."""
    return sorted({device.type for device in devices if device.type})
