"""In-memory platform: bounded history and collaborator signatures."""

import asyncio
import inspect

from data import SAMPLE_DEVICES
from services.platform import InventoryApi, _RestInventory
from simulation.platform import SimulatedPlatform, _SimInventory


def _reading(value: float) -> dict[str, object]:
    return {"c8y_Temperature": {"T": {"value": value, "unit": "C"}}}


def test_inventory_annotations_resolve_to_builtin_list() -> None:
    for cls in (InventoryApi, _RestInventory, _SimInventory):
        assert inspect.signature(cls.supported_series).return_annotation == list[str]


def test_history_is_bounded_per_device() -> None:
    platform = SimulatedPlatform(history_size=3)
    for value in range(10):
        platform.publish("d1", _reading(value))
    platform.publish("d2", _reading(99))

    assert [raw["c8y_Temperature"]["T"]["value"] for raw in platform.measurements["d1"]] == [7, 8, 9]
    assert len(platform.measurements["d2"]) == 1

    for _ in range(5):
        platform.add_event({"source": {"id": "d1"}, "type": "c8y_TemperatureAlert", "text": "High temperature"})
    assert len(platform.events["d1"]) == 3


def test_demo_ticks_do_not_grow_without_bound() -> None:
    limit = 4
    platform = SimulatedPlatform(history_size=limit)
    for device in SAMPLE_DEVICES:
        platform.add_object(device)
    for _ in range(limit * 3):
        platform.step()

    assert platform.measurements
    assert all(len(history) == limit for history in platform.measurements.values())
    assert all(len(history) <= limit for history in platform.events.values())


def test_latest_measurement_is_newest_retained() -> None:
    platform = SimulatedPlatform(history_size=2)
    for value in (1.0, 2.0, 3.0):
        platform.publish("d1", _reading(value))

    async def latest() -> list[dict[str, object]]:
        filter = {"source": "d1", "pageSize": 1, "revert": True, "valueFragmentType": "c8y_Temperature"}
        return await platform.apis().measurements.list(filter)

    page = asyncio.run(latest())
    assert page[0]["c8y_Temperature"] == {"T": {"value": 3.0, "unit": "C"}}
    assert asyncio.run(platform.apis().inventory.supported_series("d1")) == ["c8y_Temperature.T"]
