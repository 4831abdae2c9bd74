"""Marker filter predicate, styles and popup content."""

from config import DEFAULT
from core.markers import (
    MarkerEmphasis,
    MarkerFilter,
    device_types,
    legend_entries,
    marker_color,
    marker_style,
    popup_content,
)
from core.models import (
    Datapoint,
    DatapointPopup,
    EventThreshold,
    LatLng,
    Legend,
    MarkerDevice,
    Measurement,
    MeasurementThreshold,
)

DEVICES = [
    MarkerDevice(id="12", name="Sensor-12 Lobby", type="thermo", position=LatLng(1, 1)),
    MarkerDevice(id="13", name="Kitchen", type="thermo", position=LatLng(1, 2), extra={"owner": "ops-sensor-12"}),
    MarkerDevice(id="14", name="Laundry", type="hygro", position=LatLng(1, 3)),
    MarkerDevice(id="sensor-120", name="Gateway", type="gateway"),
]


def test_search_highlights_matches_and_fades_the_rest() -> None:
    filter = MarkerFilter(search="sensor-12")
    emphasis = {d.id: marker_style(d, filter).emphasis for d in DEVICES}
    assert emphasis == {
        "12": MarkerEmphasis.HIGHLIGHTED,
        "13": MarkerEmphasis.HIGHLIGHTED,
        "14": MarkerEmphasis.FADED,
        "sensor-120": MarkerEmphasis.HIGHLIGHTED,
    }


def test_type_filter_combines_with_search() -> None:
    assert [d.id for d in DEVICES if MarkerFilter(type="thermo").matches(d)] == ["12", "13"]
    assert [d.id for d in DEVICES if MarkerFilter(search="KITCHEN", type="thermo").matches(d)] == ["13"]
    assert [d.id for d in DEVICES if MarkerFilter(search="kitchen", type="hygro").matches(d)] == []


def test_no_filter_is_neutral() -> None:
    filter = MarkerFilter()
    assert not filter.active
    assert {marker_style(d, filter).emphasis for d in DEVICES} == {MarkerEmphasis.NEUTRAL}


def test_styles_use_configured_values() -> None:
    neutral = marker_style(DEVICES[0], MarkerFilter())
    faded = marker_style(DEVICES[2], MarkerFilter(search="lobby"))
    highlighted = marker_style(DEVICES[0], MarkerFilter(search="lobby"))
    assert neutral.fill_opacity == DEFAULT.marker_fill_opacity
    assert neutral.radius == DEFAULT.marker_radius
    assert faded.fill_opacity < neutral.fill_opacity < highlighted.fill_opacity
    assert highlighted.color == DEFAULT.marker_highlight_stroke


def test_color_ignores_measurement_value() -> None:
    hot = Measurement(value=90.0, unit="C", datapoint=Datapoint("c8y_Temperature", "T"))
    assert marker_color(hot) == marker_color(None) == DEFAULT.marker_default_color


def test_popup_lists_available_measurements() -> None:
    humidity = Datapoint("c8y_Humidity", "RH")
    co2 = Datapoint("c8y_CO2", "ppm")
    device = MarkerDevice(id="12", name="Lobby <1>", type="thermo")
    device.measurements[humidity.path] = Measurement(value=40, unit="%", datapoint=humidity)
    popups = [DatapointPopup(label="Humidity", measurement=humidity), DatapointPopup(label="CO2", measurement=co2)]

    content = popup_content(device, popups)

    assert content.startswith('<a href="#/device/12"><h5>Lobby &lt;1&gt;</h5></a><hr />')
    assert '<p>Humidity: <span class="measurement-value">40%</span></p>' in content
    assert "CO2" not in content


def test_popup_falls_back_to_type() -> None:
    device = MarkerDevice(id="14", name="Laundry", type="hygro")
    assert popup_content(device, []).endswith("<p>Type : hygro</p>")


def test_legend_and_types() -> None:
    legend = Legend(
        title="Temp",
        thresholds=[
            MeasurementThreshold(id="a", label="Cold", color="#00F", min=0, max=18),
            EventThreshold(id="b", label="Hot", color="#F00", text="High"),
        ],
    )
    entries = legend_entries(legend)
    assert [(e.label, e.color, e.range) for e in entries] == [("Cold", "#00F", (0, 18)), ("Hot", "#F00", None)]
    assert legend_entries(None) == []
    assert device_types(DEVICES) == ["gateway", "hygro", "thermo"]
