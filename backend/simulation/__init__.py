"""Simulation module - in-memory platform and synthetic telemetry."""

from simulation.generator import alert_for, simulate_measurements
from simulation.platform import SimulatedPlatform

__all__ = [
    "SimulatedPlatform",
    "alert_for",
    "simulate_measurements",
]
