import plotly.graph_objects as go
import pytest

from src.report_generator.utils.charts import (
    ChartSize,
    ChartSpec,
    comparison_spec,
    draw_chart,
    impact_bar_spec,
    impact_color,
    kpi_line_spec,
    render_report_charts,
    render_to_image,
    rendering_surface,
)
from src.report_generator.utils.errors import RenderError


@pytest.fixture
def captured_figures(monkeypatch):
    """Replaces the Kaleido export and records every exported figure."""
    figures = []

    def fake_to_image(self, format=None, width=None, height=None, **kwargs):
        figures.append(self)
        return f"png:{width}x{height}".encode()

    monkeypatch.setattr(go.Figure, "to_image", fake_to_image)
    return figures


@pytest.mark.parametrize(
    "weightage, color",
    [(45.0, "#ff4d4f"), (40.0, "#ff4d4f"), (30.0, "#faad14"), (15.0, "#52c41a"), (14.9, "#1890ff")],
)
def test_impact_color_bands(weightage, color):
    assert impact_color(weightage) == color


def test_impact_bar_spec(mock_data):
    spec = impact_bar_spec(mock_data)
    assert spec.kind == "bar"
    assert spec.labels[0] == "Reactor R-101.temperature"
    assert spec.values == sorted(spec.values, reverse=True)
    assert spec.colors[0] == "#ff4d4f"
    assert len(spec.labels) == 5


def test_kpi_line_spec_uses_label_order(make_scenario, make_experiment):
    data = make_experiment(
        scenarios=[make_scenario(10, 1.0), make_scenario(2, 2.0), make_scenario(1, 3.0)]
    )
    spec = kpi_line_spec(data)
    assert spec.labels == ["1", "2", "10"]
    assert spec.values == [3.0, 2.0, 1.0]
    assert spec.y_title == "Yield (%)"


def test_kpi_line_spec_leaves_gap_for_unscored_scenario(make_scenario, make_experiment):
    data = make_experiment(
        scenarios=[make_scenario(1, 3.0), make_scenario(2, None), make_scenario(3, 1.0)]
    )
    assert kpi_line_spec(data).values == [3.0, None, 1.0]


def test_comparison_spec_has_separator(make_experiment):
    """Tests that top and bottom groups are separated by an empty gap row."""
    data = make_experiment(kpi_values=[float(v) for v in range(1, 13)])
    spec = comparison_spec(data, count=3)
    assert spec.labels == ["12", "11", "10", "---", "1", "2", "3"]
    assert spec.values[3] is None
    assert spec.colors[:3] == ["#52c41a"] * 3
    assert spec.colors[-3:] == ["#ff4d4f"] * 3
    assert spec.title == "Top 3 vs Bottom 3 Scenarios"


def test_comparison_spec_with_overlap_keeps_all_rows(make_experiment):
    data = make_experiment(kpi_values=[5.0, 9.0, 7.0])
    spec = comparison_spec(data)
    assert len(spec.labels) == 7


def test_draw_chart_keeps_duplicate_labels_on_separate_rows(make_experiment):
    data = make_experiment(kpi_values=[5.0, 9.0])
    spec = comparison_spec(data)
    with rendering_surface(800, 600) as fig:
        draw_chart(fig, spec)
        assert list(fig.data[0].y) == list(range(len(spec.labels)))
        assert list(fig.layout.yaxis.ticktext) == spec.labels


def test_draw_chart_unknown_kind():
    with rendering_surface(100, 100) as fig:
        with pytest.raises(RenderError):
            draw_chart(fig, ChartSpec(kind="pie", title="Pie", labels=["a"], values=[1.0]))


def test_render_to_image_releases_surface(captured_figures, mock_data):
    image = render_to_image(kpi_line_spec(mock_data), 800, 400)
    assert image == b"png:800x400"
    assert len(captured_figures) == 1
    assert len(captured_figures[0].data) == 0


def test_render_failure_raises_render_error_and_releases_surface(monkeypatch, mock_data):
    figures = []

    def failing_to_image(self, **kwargs):
        figures.append(self)
        raise RuntimeError("Kaleido requires Chrome")

    monkeypatch.setattr(go.Figure, "to_image", failing_to_image)
    with pytest.raises(RenderError, match="Kaleido requires Chrome"):
        render_to_image(impact_bar_spec(mock_data), 800, 600)
    assert len(figures[0].data) == 0


@pytest.mark.parametrize("width, height", [(0, 400), (800, -1)])
def test_render_invalid_size(width, height, mock_data):
    with pytest.raises(RenderError, match="Invalid chart size"):
        render_to_image(kpi_line_spec(mock_data), width, height)


@pytest.mark.asyncio
async def test_render_report_charts(captured_figures, mock_data):
    images = await render_report_charts(mock_data, {"line_chart": ChartSize(640, 320)})
    assert images.bar_chart == b"png:800x600"
    assert images.line_chart == b"png:640x320"
    assert images.comparison_chart == b"png:800x600"
    assert len(captured_figures) == 3
    assert len({id(fig) for fig in captured_figures}) == 3
