"""
This module composes the paginated PDF report with ReportLab.

Layout is driven by an explicit `LayoutState` owned by a single
`DocumentComposer` instance: a vertical write cursor measured in millimetres
from the top of the page, the page dimensions, and a fixed margin. Every
operation first checks that the content fits in the space left on the page,
starts a new page if it does not, draws at the cursor, and then advances the
cursor by the height of what it drew.

`compose_report` lays out the canonical report: title page, Executive Summary,
Variable Analysis, Scenario Comparison, and Performance Drivers.
"""

import io
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

from PIL import Image
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas
from reportlab.platypus import Table, TableStyle

from .aggregation import (
    DriverRow,
    VariableAverage,
    kpi_summary,
    percentile_count,
    performance_driver_rows,
)
from .constants import (
    DEFAULT_DRIVER_TABLE_LIMIT,
    DEFAULT_QUINTILE_FRACTION,
    IMAGE_ADVANCE_GAP,
    IMAGE_EXTRA_SPACE,
    NOTE_LINE_HEIGHT,
    PAGE_MARGIN_MM,
    PARAGRAPH_LINE_HEIGHT,
    SECTION_GAP,
    SECTION_TITLE_ADVANCE,
    SECTION_TITLE_SPACE,
    SUBSECTION_TITLE_ADVANCE,
    SUBSECTION_TITLE_SPACE,
    TABLE_ADVANCE_GAP,
    TABLE_HEADER_COLOR,
)
from .data_model import ChartImages, ExperimentData, GeneratedInsights
from .errors import ComposeError

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_SPACE = 20.0
LAYOUT_TOLERANCE = 1e-6  # mm; absorbs float error from point/mm conversion
REPORT_TITLE = "Process Optimization Report"
REPORT_SUBTITLE = "Experimental Analysis & KPI Optimization"


@dataclass
class LayoutState:
    """Page geometry and the write cursor, in millimetres from the page top."""

    page_width: float
    page_height: float
    margin: float
    cursor: float
    page_number: int = 1

    @property
    def printable_width(self) -> float:
        return self.page_width - 2 * self.margin

    @property
    def printable_height(self) -> float:
        return self.page_height - 2 * self.margin

    @property
    def remaining(self) -> float:
        return self.page_height - self.margin - self.cursor

    @property
    def at_page_top(self) -> bool:
        return self.cursor <= self.margin


@dataclass(frozen=True)
class Placement:
    """Where one piece of content was drawn: page, top cursor and height (mm)."""

    kind: str
    page: int
    top: float
    height: float


class DocumentComposer:
    """
    Lays out titles, paragraphs, tables and images onto fixed-size pages.

    Attributes:
        state (LayoutState): The page geometry and current write cursor.
        placements (List[Placement]): Every piece of content drawn, in order.
    """

    def __init__(self, pagesize=A4, margin: float = PAGE_MARGIN_MM, title: str = REPORT_TITLE):
        self._buffer = io.BytesIO()
        self._canvas = canvas.Canvas(self._buffer, pagesize=pagesize)
        self._canvas.setTitle(title)
        self._finalized = False
        page_width_pt, page_height_pt = pagesize
        self.state = LayoutState(
            page_width=page_width_pt / mm,
            page_height=page_height_pt / mm,
            margin=margin,
            cursor=margin,
        )
        self.placements: List[Placement] = []

    # -------------- basic layout primitives --------------------------------

    @property
    def page_count(self) -> int:
        return self.state.page_number

    def _y(self, cursor_mm: float) -> float:
        """Converts a top-down cursor in millimetres to a ReportLab y in points."""
        return (self.state.page_height - cursor_mm) * mm

    def _check_open(self) -> None:
        if self._finalized:
            raise ComposeError("Document has already been finalized")

    def _record(self, kind: str, height: float) -> None:
        self.placements.append(
            Placement(kind=kind, page=self.state.page_number, top=self.state.cursor, height=height)
        )

    def new_page(self) -> None:
        self._check_open()
        self._canvas.showPage()
        self.state.page_number += 1
        self.state.cursor = self.state.margin

    def ensure_space(self, required: float = DEFAULT_REQUIRED_SPACE) -> None:
        """Starts a new page if less than `required` mm is left on this one."""
        if self.state.remaining < required:
            self.new_page()

    def add_space(self, space: float) -> None:
        self._check_open()
        self.state.cursor += space

    # -------------- text helpers -------------------------------------------

    def _add_heading(self, title: str, size: int, required: float, advance: float, kind: str) -> None:
        self._check_open()
        self.ensure_space(required)
        self._canvas.setFont("Helvetica-Bold", size)
        self._canvas.drawString(self.state.margin * mm, self._y(self.state.cursor), title)
        self._record(kind, advance)
        self.state.cursor += advance

    def add_section_title(self, title: str) -> None:
        self._add_heading(title, 16, SECTION_TITLE_SPACE, SECTION_TITLE_ADVANCE, "section_title")

    def add_subsection_title(self, title: str) -> None:
        self._add_heading(
            title, 12, SUBSECTION_TITLE_SPACE, SUBSECTION_TITLE_ADVANCE, "subsection_title"
        )

    def wrap_text(self, text: str, font_name: str = "Helvetica", font_size: float = 10) -> List[str]:
        """Wraps text to the printable width of the page."""
        return simpleSplit(text, font_name, font_size, self.state.printable_width * mm)

    def add_paragraph(
        self,
        text: str,
        font_size: float = 10,
        line_height: float = PARAGRAPH_LINE_HEIGHT,
        gray: Optional[float] = None,
        kind: str = "paragraph_line",
    ) -> None:
        """
        Wraps a paragraph and places it line by line.

        Each line checks for its own height before being drawn, so a page
        break only ever falls between two lines.
        """
        self._check_open()
        for line in self.wrap_text(text, "Helvetica", font_size):
            self.ensure_space(line_height)
            self._canvas.setFont("Helvetica", font_size)
            if gray is not None:
                self._canvas.setFillGray(gray)
            self._canvas.drawString(self.state.margin * mm, self._y(self.state.cursor), line)
            self._canvas.setFillGray(0)
            self._record(kind, line_height)
            self.state.cursor += line_height

    def add_note(self, text: str) -> None:
        """Adds small grey explanatory text."""
        self.add_paragraph(text, font_size=9, line_height=NOTE_LINE_HEIGHT, gray=0.31, kind="note_line")

    def add_centered_text(self, text: str, cursor: float, font_size: float, bold: bool = False) -> None:
        """Draws a centred line at an absolute cursor position (title page)."""
        self._check_open()
        self._canvas.setFont("Helvetica-Bold" if bold else "Helvetica", font_size)
        self._canvas.drawCentredString(self.state.page_width / 2 * mm, self._y(cursor), text)
        self.state.cursor = max(self.state.cursor, cursor)

    # -------------- tables and images --------------------------------------

    @staticmethod
    def _table_style() -> TableStyle:
        header_color = colors.Color(*(c / 255 for c in TABLE_HEADER_COLOR))
        return TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), header_color),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.Color(0.95, 0.95, 0.95)]),
                ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )

    def add_table(
        self,
        header: Sequence[str],
        rows: Sequence[Sequence[str]],
        col_fractions: Optional[Sequence[float]] = None,
    ) -> None:
        """
        Draws a striped table and resumes the cursor below its measured height.

        A table that does not fit in the remaining space starts on a new page;
        a table taller than a whole page is split by rows, repeating the header.

        Raises:
            ComposeError: If a table part cannot be split to fit a page.
        """
        self._check_open()
        width_pt = self.state.printable_width * mm
        fractions = list(col_fractions or [1.0 / len(header)] * len(header))
        total = sum(fractions)
        col_widths = [width_pt * f / total for f in fractions]

        table = Table([list(header), *[list(r) for r in rows]], colWidths=col_widths, repeatRows=1)
        table.setStyle(self._table_style())

        pending = [table]
        while pending:
            part = pending.pop(0)
            _, height_pt = part.wrapOn(self._canvas, width_pt, self.state.printable_height * mm)
            height = height_pt / mm
            if height <= self.state.remaining + LAYOUT_TOLERANCE:
                part.drawOn(self._canvas, self.state.margin * mm, self._y(self.state.cursor + height))
                self._record("table", height)
                self.state.cursor += height
            elif not self.state.at_page_top:
                self.new_page()
                pending.insert(0, part)
            else:
                pieces = part.split(width_pt, self.state.remaining * mm)
                if len(pieces) < 2:
                    raise ComposeError("Table row is taller than a whole page")
                pending = list(pieces) + pending

        self.state.cursor += TABLE_ADVANCE_GAP
        self.ensure_space()

    def add_image(self, image_bytes: bytes, width: float, height: float) -> None:
        """
        Places a PNG image centred on the page at the given size in millimetres.

        Raises:
            ComposeError: If the image is larger than the printable area or the
                bytes cannot be decoded.
        """
        self._check_open()
        if width > self.state.printable_width or height + IMAGE_EXTRA_SPACE > self.state.printable_height:
            raise ComposeError(
                f"Image of {width}x{height} mm does not fit on a "
                f"{self.state.printable_width:.0f}x{self.state.printable_height:.0f} mm printable area"
            )
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                img.verify()
        except Exception as e:
            raise ComposeError(f"Chart image could not be decoded: {e}") from e

        self.ensure_space(height + IMAGE_EXTRA_SPACE)
        x = (self.state.page_width - width) / 2
        self._canvas.drawImage(
            ImageReader(io.BytesIO(image_bytes)),
            x * mm,
            self._y(self.state.cursor + height),
            width=width * mm,
            height=height * mm,
        )
        self._record("image", height)
        self.state.cursor += height + IMAGE_ADVANCE_GAP

    def to_bytes(self) -> bytes:
        """Finalizes the document and returns the PDF bytes."""
        self._check_open()
        self._canvas.save()
        self._finalized = True
        return self._buffer.getvalue()


# =============================================================================
# REPORT LAYOUT
# =============================================================================
def _format_average(average: VariableAverage) -> str:
    if average.is_empty:
        return "n/a"
    text = f"{average.value:.2f}"
    return f"{text}*" if average.degraded else text


def _driver_table_rows(rows: Sequence[DriverRow]) -> List[List[str]]:
    if not rows:
        return [["No impact data available", "-", "-", "-"]]
    return [
        [
            row.impact.key,
            _format_average(row.top_average),
            _format_average(row.bottom_average),
            f"{row.impact.weightage:.1f}%",
        ]
        for row in rows
    ]


def add_title_page(
    composer: DocumentComposer,
    data: ExperimentData,
    generated_on: date,
    title: str = REPORT_TITLE,
) -> None:
    summary = kpi_summary(data)
    composer.add_centered_text(title, 60, 24, bold=True)
    composer.add_centered_text(REPORT_SUBTITLE, 75, 14)
    composer.add_centered_text(f"KPI: {data.kpi_name}", 90, 12)
    composer.add_centered_text(
        f"Report Generated: {generated_on:%B} {generated_on.day}, {generated_on.year}", 105, 10
    )
    composer.add_centered_text("Report Summary", 130, 11, bold=True)

    summary_lines = [
        f"Total Scenarios Tested: {len(data.simulated_scenarios)}",
        f"KPI Range: {summary.minimum:.2f} - {summary.maximum:.2f}",
        f"Mean KPI: {summary.mean:.2f} (std {summary.std:.2f})",
        f"Top Variables Analyzed: {len(data.top_variables)}",
    ]
    for i, line in enumerate(summary_lines):
        composer.add_centered_text(line, 145 + i * 7, 10)
    composer.new_page()


def add_performance_drivers_section(
    composer: DocumentComposer,
    data: ExperimentData,
    insights_text: str,
    fraction: float,
    limit: int,
) -> None:
    composer.add_section_title("Performance Drivers")
    group_size = percentile_count(len(data.scored_scenarios), fraction)
    rows = performance_driver_rows(data, fraction, limit)

    composer.add_subsection_title("Variable Configuration Comparison")
    composer.add_note(
        f"Comparison of average variable values between top {group_size} and "
        f"bottom {group_size} performing scenarios."
    )
    composer.add_space(5)
    composer.add_table(
        ["Variable", f"Top {group_size} Avg", f"Bottom {group_size} Avg", "Impact %"],
        _driver_table_rows(rows),
        col_fractions=[0.4, 0.2, 0.2, 0.2],
    )
    if any(r.top_average.degraded or r.bottom_average.degraded for r in rows):
        composer.add_note(
            "* Averaged over fewer scenarios than the group size; the variable had no "
            "value in every scenario. 'n/a' marks variables with no value in any."
        )
        composer.add_space(5)

    composer.add_subsection_title("Insights")
    composer.add_paragraph(insights_text)
    composer.add_space(SECTION_GAP)


def compose_report(
    data: ExperimentData,
    insights: GeneratedInsights,
    charts: ChartImages,
    generated_on: Optional[date] = None,
    fraction: float = DEFAULT_QUINTILE_FRACTION,
    driver_limit: int = DEFAULT_DRIVER_TABLE_LIMIT,
    margin: float = PAGE_MARGIN_MM,
    title: str = REPORT_TITLE,
) -> bytes:
    """
    Composes the full report and returns the PDF bytes.

    Args:
        data: The experiment data.
        insights: The four narrative sections.
        charts: The rendered chart images.
        generated_on: The date printed on the title page; today if omitted.
        fraction: The top/bottom scenario fraction for Performance Drivers.
        driver_limit: The number of variables in the Performance Drivers table.
        margin: The page margin in millimetres.
        title: The document title, shown on the title page and in the metadata.

    Returns:
        The finalized PDF document.
    """
    composer = DocumentComposer(margin=margin, title=title)
    add_title_page(composer, data, generated_on or date.today(), title)

    composer.add_section_title("Executive Summary")
    composer.add_paragraph(insights.executive_summary)
    composer.add_space(SECTION_GAP)

    composer.add_section_title("Variable Analysis")
    composer.add_image(charts.bar_chart, 140, 85)
    composer.add_subsection_title("Insights")
    composer.add_paragraph(insights.variable_analysis)
    composer.add_space(SECTION_GAP)

    composer.add_section_title("Scenario Comparison")
    composer.add_image(charts.line_chart, 160, 90)
    composer.add_image(charts.comparison_chart, 140, 105)
    composer.add_subsection_title("Insights")
    composer.add_paragraph(insights.scenario_comparison)
    composer.add_space(SECTION_GAP)

    add_performance_drivers_section(composer, data, insights.performance_drivers, fraction, driver_limit)

    pdf_bytes = composer.to_bytes()
    logger.info(f"Composed report: {composer.page_count} pages, {len(pdf_bytes)} bytes")
    return pdf_bytes
