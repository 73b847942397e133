"""
This module centralizes all shared constants for the report generator package.

Using a dedicated constants module ensures consistency, avoids magic strings,
and makes the code easier to maintain and understand.
"""

# =============================================================================
# Impact Keys and Scenario Labels
# =============================================================================

IMPACT_KEY_SEPARATOR = "."  # Joins equipment and field name: "HEX-100.temperature".
EQUIPMENT_VARIABLE_SEPARATOR = " - "  # Fallback variable naming: "HEX-100 - temperature".
SCENARIO_LABEL_PREFIX = "Scenario "  # Stripped from labels on chart axes.
MISSING_KPI_NAME = "N/A"

SETPOINT_CATEGORY = "setpoint"
CONDITION_CATEGORY = "condition"

# =============================================================================
# Analysis Defaults
# =============================================================================

DEFAULT_QUINTILE_FRACTION = 0.2  # Top/bottom 20% of scenarios by KPI.
DEFAULT_DRIVER_TABLE_LIMIT = 8  # Variables shown in the Performance Drivers table.
DEFAULT_COMPARISON_COUNT = 10  # Scenarios per side in the comparison chart.

# =============================================================================
# Chart Rendering
# =============================================================================

IMPACT_COLOR_BANDS = (
    (40.0, "#ff4d4f"),
    (25.0, "#faad14"),
    (15.0, "#52c41a"),
)
IMPACT_COLOR_DEFAULT = "#1890ff"
LINE_COLOR = "#4BC0C0"
TOP_SCENARIO_COLOR = "#52c41a"
BOTTOM_SCENARIO_COLOR = "#ff4d4f"
SEPARATOR_LABEL = "---"

# =============================================================================
# Document Layout (millimetres, measured from the top of the page)
# =============================================================================

PAGE_MARGIN_MM = 20.0
SECTION_TITLE_SPACE = 30.0
SECTION_TITLE_ADVANCE = 10.0
SUBSECTION_TITLE_SPACE = 20.0
SUBSECTION_TITLE_ADVANCE = 7.0
PARAGRAPH_LINE_HEIGHT = 5.0
NOTE_LINE_HEIGHT = 4.0
IMAGE_EXTRA_SPACE = 15.0
IMAGE_ADVANCE_GAP = 10.0
TABLE_ADVANCE_GAP = 10.0
SECTION_GAP = 10.0

TABLE_HEADER_COLOR = (52, 152, 219)
