from datetime import date

import pytest

from src.report_generator.utils.aggregation import DriverRow, RankedImpact, VariableAverage
from src.report_generator.utils.document import (
    DocumentComposer,
    _driver_table_rows,
    _format_average,
    compose_report,
)
from src.report_generator.utils.errors import ComposeError


def test_new_composer_starts_at_margin():
    composer = DocumentComposer()
    assert composer.page_count == 1
    assert composer.state.cursor == 20
    assert composer.state.page_height == pytest.approx(297, abs=0.01)


def test_paragraph_breaks_between_lines():
    """Tests that 60 five-millimetre lines fill page one with 51 and continue on page two."""
    composer = DocumentComposer()
    composer.add_paragraph("\n".join(f"Line {i}" for i in range(60)))
    pages = [p.page for p in composer.placements]
    assert pages.count(1) == 51
    assert pages.count(2) == 9
    assert composer.page_count == 2
    assert composer.state.cursor == pytest.approx(65)


def test_content_never_crosses_bottom_margin():
    composer = DocumentComposer()
    composer.add_paragraph("\n".join(f"Line {i}" for i in range(200)))
    limit = composer.state.page_height - composer.state.margin
    for placement in composer.placements:
        assert placement.top + placement.height <= limit + 1e-6


def test_section_title_needs_space():
    composer = DocumentComposer()
    composer.state.cursor = 250
    composer.add_section_title("Executive Summary")
    assert composer.page_count == 2
    assert composer.state.cursor == pytest.approx(30)


def test_subsection_title_fits():
    composer = DocumentComposer()
    composer.state.cursor = 250
    composer.add_subsection_title("Insights")
    assert composer.page_count == 1
    assert composer.state.cursor == pytest.approx(257)


def test_add_image_advances_cursor(png_bytes):
    composer = DocumentComposer()
    composer.add_image(png_bytes, 140, 85)
    assert composer.state.cursor == pytest.approx(115)
    assert composer.placements[-1].kind == "image"


def test_add_image_moves_to_new_page(png_bytes):
    composer = DocumentComposer()
    composer.state.cursor = 200
    composer.add_image(png_bytes, 160, 90)
    assert composer.page_count == 2
    assert composer.placements[-1].top == pytest.approx(20)


def test_image_larger_than_page_raises(png_bytes):
    composer = DocumentComposer()
    with pytest.raises(ComposeError, match="does not fit"):
        composer.add_image(png_bytes, 200, 85)
    with pytest.raises(ComposeError):
        composer.add_image(png_bytes, 140, 250)


def test_invalid_image_bytes_raise():
    composer = DocumentComposer()
    with pytest.raises(ComposeError, match="could not be decoded"):
        composer.add_image(b"not an image", 140, 85)


def test_small_table_advances_below_its_height():
    composer = DocumentComposer()
    composer.add_table(["A", "B"], [["1", "2"], ["3", "4"]])
    table = composer.placements[-1]
    assert table.kind == "table"
    assert composer.state.cursor == pytest.approx(20 + table.height + 10)


def test_long_table_is_split_across_pages():
    composer = DocumentComposer()
    rows = [[f"Variable {i}", f"{i}.00", f"{i}.50", "1.0%"] for i in range(150)]
    composer.add_table(["Variable", "Top", "Bottom", "Impact %"], rows)
    tables = [p for p in composer.placements if p.kind == "table"]
    assert len(tables) > 1
    assert composer.page_count > 1
    limit = composer.state.page_height - composer.state.margin
    assert all(t.top + t.height <= limit + 1e-6 for t in tables)


def test_finalized_document_rejects_changes():
    composer = DocumentComposer()
    composer.add_paragraph("Hello")
    pdf = composer.to_bytes()
    assert pdf.startswith(b"%PDF")
    with pytest.raises(ComposeError):
        composer.add_paragraph("Too late")
    with pytest.raises(ComposeError):
        composer.to_bytes()


def test_format_average():
    assert _format_average(VariableAverage(value=0.0, matched=0, total=3)) == "n/a"
    assert _format_average(VariableAverage(value=12.346, matched=2, total=3)) == "12.35*"
    assert _format_average(VariableAverage(value=12.0, matched=3, total=3)) == "12.00"


def test_driver_table_rows():
    impact = RankedImpact("R-1.temp", "R-1", "temp", 41.53, "setpoint")
    row = DriverRow(
        impact=impact,
        top_average=VariableAverage(195.0, 3, 3),
        bottom_average=VariableAverage(174.0, 3, 3),
    )
    assert _driver_table_rows([row]) == [["R-1.temp", "195.00", "174.00", "41.5%"]]
    assert _driver_table_rows([]) == [["No impact data available", "-", "-", "-"]]


def test_compose_report(mock_data, insights, chart_images):
    """Tests that the full report composes to a multi-page PDF."""
    pdf = compose_report(mock_data, insights, chart_images, generated_on=date(2026, 10, 19))
    assert pdf.startswith(b"%PDF")
    assert pdf.rstrip().endswith(b"%%EOF")


def test_compose_report_without_impacts(make_experiment, insights, chart_images):
    data = make_experiment(kpi_values=[80.0, 82.0, 78.0])
    pdf = compose_report(data, insights, chart_images, generated_on=date(2026, 10, 19))
    assert pdf.startswith(b"%PDF")
