"""Synthetic telemetry for demo mode."""

import math
import random
from datetime import UTC, datetime, timedelta
from typing import Any

HIGH_TEMPERATURE_C = 25.0
ALERT_TYPE = "c8y_TemperatureAlert"
ALERT_TEXT = "High temperature"

_BASE_TIME = datetime(2025, 1, 15, 6, 0, 0, tzinfo=UTC)
_TICK_S = 180.0


def tick_time(tick: int) -> datetime:
    return _BASE_TIME + timedelta(seconds=tick * _TICK_S)


def simulate_measurements(devices: list[dict[str, Any]], tick: int) -> list[tuple[str, dict[str, Any]]]:
    """One raw measurement per device for the given tick.

    Temperature sensors report ``c8y_Temperature.T`` plus humidity; humidity
    sensors report humidity only. Values drift with time of day rather than
    jumping randomly between ticks.
    """
    hour = (tick * 0.05) % 24
    time = tick_time(tick).isoformat()
    out = []
    for device in devices:
        device_id = device["id"]
        raw: dict[str, Any] = {"type": "c8y_Measurement", "time": time, "source": {"id": device_id}}
        match device.get("type"):
            case "c8y_TemperatureSensor":
                raw["c8y_Temperature"] = {"T": {"value": _sim_temperature(device_id, hour, tick), "unit": "°C"}}
                raw["c8y_Humidity"] = {"RH": {"value": _sim_humidity(device_id, hour, tick), "unit": "%"}}
            case "c8y_HumiditySensor":
                raw["c8y_Humidity"] = {"RH": {"value": _sim_humidity(device_id, hour, tick), "unit": "%"}}
            case _:
                continue
        out.append((device_id, raw))
    return out


def alert_for(device_id: str, raw: dict[str, Any]) -> dict[str, Any] | None:
    """Overheating event for a measurement above the alert temperature."""
    value = raw.get("c8y_Temperature", {}).get("T", {}).get("value")
    if value is None or value <= HIGH_TEMPERATURE_C:
        return None
    return {
        "type": ALERT_TYPE,
        "text": ALERT_TEXT,
        "time": raw["time"],
        "creationTime": raw["time"],
        "source": {"id": device_id},
    }


def _sim_temperature(device_id: str, hour: float, tick: int) -> float:
    """Temperature with daily swing and per-device drift, 16-28C range."""
    seed = _seed(device_id)
    base = 21.0
    base += math.sin((hour - 6) * math.pi / 12) * 1.5  # warmer midday
    if _is_overheating(seed, tick):
        base += 4.0
    base += math.sin(tick * 0.3 + seed) * 0.5
    base += random.Random(tick * 100 + seed).uniform(-0.1, 0.1)
    return round(max(16.0, min(28.0, base)), 1)


def _sim_humidity(device_id: str, hour: float, tick: int) -> float:
    seed = _seed(device_id)
    base = 45.0 - math.sin((hour - 6) * math.pi / 12) * 5
    base += math.sin(tick * 0.2 + seed) * 3
    return round(max(20.0, min(80.0, base)), 0)


def _is_overheating(seed: int, tick: int) -> bool:
    """Periodic overheating window for some devices."""
    cycle = (tick + (seed % 7) * 5) % 40
    return cycle < 8


def _seed(device_id: str) -> int:
    # hash() of str is salted per process; digits keep runs reproducible.
    return sum(ord(c) for c in device_id) % 100
