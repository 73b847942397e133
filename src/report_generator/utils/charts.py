"""
This module renders the report charts off-screen using Plotly and Kaleido.

It includes:
1.  **Chart Specifications**: Pure builders turning experiment data into a
    `ChartSpec` for the ranked-impact bar chart, the KPI-by-scenario line
    chart, and the top-vs-bottom scenario comparison chart.
2.  **Rendering**: `render_to_image` draws one spec on a fresh, disposable
    figure sized to the request and exports it to PNG bytes.

Every render owns its own figure, so renders issued concurrently from worker
threads share no mutable state. Animations and transitions are disabled so
repeated renders of the same spec are identical.
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, NamedTuple, Optional

import plotly.graph_objects as go

from .aggregation import combined_impact_ranking, scenarios_in_label_order, top_bottom_scenarios
from .constants import (
    BOTTOM_SCENARIO_COLOR,
    DEFAULT_COMPARISON_COUNT,
    IMPACT_COLOR_BANDS,
    IMPACT_COLOR_DEFAULT,
    LINE_COLOR,
    SCENARIO_LABEL_PREFIX,
    SEPARATOR_LABEL,
    TOP_SCENARIO_COLOR,
)
from .data_model import ChartImages, ExperimentData
from .errors import RenderError

logger = logging.getLogger(__name__)
logging.getLogger("kaleido").setLevel(logging.WARNING)
logging.getLogger("choreographer").setLevel(logging.WARNING)


class ChartSize(NamedTuple):
    width: int
    height: int


DEFAULT_CHART_SIZES: Dict[str, ChartSize] = {
    "bar_chart": ChartSize(800, 600),
    "line_chart": ChartSize(800, 400),
    "comparison_chart": ChartSize(800, 600),
}


@dataclass(frozen=True)
class ChartSpec:
    """
    A renderer-independent description of one chart.

    Attributes:
        kind: 'bar', 'line' or 'comparison'.
        title: The chart title.
        labels: Category labels, in drawing order (top to bottom for bars).
        values: One value per label; None leaves a gap.
        colors: Optional per-bar colours.
        x_title: The x-axis title.
        y_title: The y-axis title.
    """

    kind: str
    title: str
    labels: List[str]
    values: List[Optional[float]]
    colors: List[str] = field(default_factory=list)
    x_title: str = ""
    y_title: str = ""


# =============================================================================
# CHART SPECIFICATIONS
# =============================================================================
def impact_color(weightage: float) -> str:
    """Returns the colour band of an impact weightage."""
    for threshold, color in IMPACT_COLOR_BANDS:
        if weightage >= threshold:
            return color
    return IMPACT_COLOR_DEFAULT


def _short_label(scenario_label: str) -> str:
    return scenario_label.replace(SCENARIO_LABEL_PREFIX, "")


def impact_bar_spec(data: ExperimentData) -> ChartSpec:
    """Builds the horizontal ranked-impact bar chart over all variables."""
    ranking = combined_impact_ranking(data)
    values = [item.weightage for item in ranking]
    return ChartSpec(
        kind="bar",
        title="Variable Impact Ranking",
        labels=[item.key for item in ranking],
        values=values,
        colors=[impact_color(v) for v in values],
        x_title="Impact Weightage (%)",
    )


def kpi_line_spec(data: ExperimentData) -> ChartSpec:
    """Builds the KPI line chart with scenarios in label (chronological) order."""
    ordered = scenarios_in_label_order(data.simulated_scenarios)
    return ChartSpec(
        kind="line",
        title="KPI Values Across All Scenarios",
        labels=[_short_label(s.scenario) for s in ordered],
        values=[s.kpi_value for s in ordered],
        colors=[LINE_COLOR],
        x_title="Scenario Number",
        y_title=data.kpi_name,
    )


def comparison_spec(data: ExperimentData, count: int = DEFAULT_COMPARISON_COUNT) -> ChartSpec:
    """Builds the top-vs-bottom comparison chart, separated by an empty gap row."""
    partition = top_bottom_scenarios(data, count)
    labels = (
        [_short_label(s.scenario) for s in partition.top]
        + [SEPARATOR_LABEL]
        + [_short_label(s.scenario) for s in partition.bottom]
    )
    values: List[Optional[float]] = (
        [s.kpi_value for s in partition.top]
        + [None]
        + [s.kpi_value for s in partition.bottom]
    )
    colors = (
        [TOP_SCENARIO_COLOR] * len(partition.top)
        + ["rgba(0,0,0,0)"]
        + [BOTTOM_SCENARIO_COLOR] * len(partition.bottom)
    )
    return ChartSpec(
        kind="comparison",
        title=f"Top {len(partition.top)} vs Bottom {len(partition.bottom)} Scenarios",
        labels=labels,
        values=values,
        colors=colors,
        x_title=data.kpi_name,
        y_title="Scenario",
    )


# =============================================================================
# RENDERING
# =============================================================================
@contextmanager
def rendering_surface(width: int, height: int) -> Iterator[go.Figure]:
    """
    Acquires a fresh figure sized to the request and releases it on exit.

    The figure's traces are dropped in a `finally` block, so a failed draw or
    export never leaves a populated surface behind.
    """
    if width <= 0 or height <= 0:
        raise RenderError(f"Invalid chart size {width}x{height}")
    fig = go.Figure()
    fig.update_layout(
        width=width,
        height=height,
        autosize=False,
        template="plotly_white",
        transition={"duration": 0},
        showlegend=False,
        margin=dict(t=60, b=50, l=50, r=30),
    )
    try:
        yield fig
    finally:
        fig.data = []


def draw_chart(fig: go.Figure, spec: ChartSpec) -> None:
    """Draws a chart specification onto a figure."""
    # Numeric positions keep duplicate labels (overlapping partitions) on separate rows.
    positions = list(range(len(spec.labels)))
    if spec.kind == "line":
        fig.add_trace(
            go.Scatter(
                x=positions,
                y=spec.values,
                mode="lines+markers",
                name="KPI Value",
                line=dict(color=spec.colors[0] if spec.colors else LINE_COLOR, width=2),
                marker=dict(size=6),
            )
        )
        fig.update_xaxes(tickmode="array", tickvals=positions, ticktext=spec.labels)
    elif spec.kind in ("bar", "comparison"):
        fig.add_trace(
            go.Bar(
                x=spec.values,
                y=positions,
                orientation="h",
                marker_color=spec.colors or None,
            )
        )
        fig.update_yaxes(
            tickmode="array", tickvals=positions, ticktext=spec.labels, autorange="reversed"
        )
        numeric_values = [v for v in spec.values if v is not None]
        if spec.kind == "bar" and numeric_values and max(numeric_values) > 0:
            fig.update_xaxes(range=[0, max(numeric_values) * 1.1])
    else:
        raise RenderError(f"Unsupported chart kind '{spec.kind}'")

    fig.update_layout(title=dict(text=f"<b>{spec.title}</b>", font=dict(size=16)))
    fig.update_xaxes(title_text=spec.x_title)
    fig.update_yaxes(title_text=spec.y_title)


def render_to_image(spec: ChartSpec, width: int, height: int) -> bytes:
    """
    Renders one chart specification to PNG bytes.

    Args:
        spec: The chart to draw.
        width: The image width in pixels.
        height: The image height in pixels.

    Returns:
        The encoded PNG image.

    Raises:
        RenderError: If drawing or the Kaleido export fails.
    """
    try:
        with rendering_surface(width, height) as fig:
            draw_chart(fig, spec)
            image = fig.to_image(format="png", width=width, height=height)
    except RenderError:
        raise
    except Exception as e:
        logger.error(f"Failed to render chart '{spec.title}': {e}. Ensure 'kaleido' is installed.")
        raise RenderError(f"Failed to render chart '{spec.title}': {e}") from e
    logger.info(f"  Rendered chart '{spec.title}' ({width}x{height}, {len(image)} bytes)")
    return image


async def render_report_charts(
    data: ExperimentData, sizes: Optional[Dict[str, ChartSize]] = None
) -> ChartImages:
    """
    Renders the three report charts concurrently in worker threads.

    All renders complete before this returns; the first failure is raised.
    """
    sizes = {**DEFAULT_CHART_SIZES, **(sizes or {})}
    specs = {
        "bar_chart": impact_bar_spec(data),
        "line_chart": kpi_line_spec(data),
        "comparison_chart": comparison_spec(data),
    }
    logger.info(f"Rendering {len(specs)} charts...")
    images = await asyncio.gather(
        *(
            asyncio.to_thread(render_to_image, spec, sizes[name].width, sizes[name].height)
            for name, spec in specs.items()
        )
    )
    return ChartImages(**dict(zip(specs.keys(), images)))
