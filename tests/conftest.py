import io

import pytest
from PIL import Image

from src import constants
from src.report_generator.utils.data_model import (
    ChartImages,
    ExperimentData,
    GeneratedInsights,
    load_experiment_file,
)


def _scenario(number, kpi_value, equipment_specification=None, kpi="Yield (%)"):
    return {
        "scenario": f"Scenario {number}",
        "equipment_specification": equipment_specification or [],
        "kpi": kpi,
        "kpi_value": kpi_value,
    }


@pytest.fixture
def make_scenario():
    """Returns a factory for raw scenario dictionaries."""
    return _scenario


@pytest.fixture
def make_experiment():
    """Returns a factory building ExperimentData from KPI values and impact tuples."""

    def _make(kpi_values=(), setpoints=(), conditions=(), scenarios=None):
        if scenarios is None:
            scenarios = [_scenario(i + 1, v) for i, v in enumerate(kpi_values)]
        return ExperimentData.model_validate(
            {
                "setpoint_impact_summary": [
                    {"equipment": e, "setpoint": f, "weightage": w} for e, f, w in setpoints
                ],
                "condition_impact_summary": [
                    {"equipment": e, "condition": f, "weightage": w} for e, f, w in conditions
                ],
                "simulated_summary": {"simulated_data": list(scenarios)},
            }
        )

    return _make


@pytest.fixture
def mock_data():
    return load_experiment_file(constants.MOCK_DATA_PATH)


@pytest.fixture
def png_bytes():
    """A small valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (40, 30), "white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def chart_images(png_bytes):
    return ChartImages(bar_chart=png_bytes, line_chart=png_bytes, comparison_chart=png_bytes)


@pytest.fixture
def insights():
    return GeneratedInsights(
        executive_summary="The optimization raised yield across the tested range.",
        variable_analysis="Reactor temperature dominates the yield response.",
        scenario_comparison="The best scenarios combine high temperature and flow.",
        performance_drivers="Top scenarios run the pump roughly six m3/h faster.",
    )
