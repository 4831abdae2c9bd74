"""Sample data and fixtures."""

from data.sample_building import SAMPLE_BINARIES, SAMPLE_BUILDING, SAMPLE_DEVICES, SAMPLE_WIDGET

__all__ = ["SAMPLE_BINARIES", "SAMPLE_BUILDING", "SAMPLE_DEVICES", "SAMPLE_WIDGET"]
