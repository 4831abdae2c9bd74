"""Centralised engine tunables.

Every magic number that controls polling, styling and loading lives here.
Create a custom ``EngineConfig`` to tweak values for testing::

    cfg = EngineConfig(poll_interval_s=0.01)
    poller = EventPoller(events, interval=cfg.poll_interval_s)
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class EngineConfig:
    """All engine tunables, grouped by category."""

    # --- Threshold event polling ---
    poll_interval_s: float = 10.0

    # --- Marker styling ---
    marker_default_color: str = "#1776BF"
    marker_radius: int = 13
    marker_fill_opacity: float = 0.75
    marker_weight: int = 2
    marker_highlight_fill_opacity: float = 0.95
    marker_highlight_stroke: str = "#FF9800"
    marker_highlight_weight: int = 3
    marker_faded_fill_opacity: float = 0.15
    marker_faded_stroke: str = "#DDDDDD"
    marker_faded_weight: int = 1

    # --- Zone styling ---
    zone_color: str = "#0000FF"
    zone_weight: int = 2
    zone_fill_opacity: float = 0.4

    # --- Image overlay ---
    overlay_opacity: float = 1.0

    # --- Inventory queries ---
    inventory_page_size: int = 2000
    building_type: str = "c8y_Building"

    # --- Map defaults ---
    tile_url: str = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
    default_center: tuple[float, float] = (51.23544, 6.79599)
    default_zoom: int = 0

    # --- Demo mode ---
    demo_tick_s: float = 2.0
    demo_history_size: int = 200  # per device, measurements and events each


DEFAULT = EngineConfig()


@dataclass(frozen=True)
class PlatformSettings:
    """Connection settings for the device platform.

    An empty ``base_url`` selects the in-memory simulated platform.
    """

    base_url: str = ""
    tenant: str = ""
    user: str = ""
    password: str = ""

    @property
    def simulated(self) -> bool:
        return not self.base_url

    @classmethod
    def from_env(cls) -> "PlatformSettings":
        return cls(
            base_url=os.environ.get("C8Y_BASE_URL", "").rstrip("/"),
            tenant=os.environ.get("C8Y_TENANT", ""),
            user=os.environ.get("C8Y_USER", ""),
            password=os.environ.get("C8Y_PASSWORD", ""),
        )
