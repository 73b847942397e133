"""
This module provides the aggregation engine of the report pipeline.

All functions are pure: they read an `ExperimentData` value (or a list of
scenarios) and return new objects without mutating their input. They compute:
1.  **Combined impact ranking**: setpoint and condition weightages merged into
    one list sorted by descending impact.
2.  **Scenario partitions**: top/bottom-K scenarios by KPI, and the
    percentile (quintile) split used for performance-driver comparison.
3.  **Variable averages**: the mean value of one equipment variable across a
    subset of scenarios, with tolerant variable-name matching.
4.  **Summary statistics**: KPI range and distribution for the title page.
"""

import logging
import math
import re
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .constants import (
    DEFAULT_DRIVER_TABLE_LIMIT,
    DEFAULT_QUINTILE_FRACTION,
    EQUIPMENT_VARIABLE_SEPARATOR,
)
from .data_model import EquipmentSpecification, ExperimentData, ScenarioData, Variable
from .errors import ValidationError

logger = logging.getLogger(__name__)

_TRAILING_INT_RE = re.compile(r"(\d+)\D*$")


@dataclass(frozen=True)
class RankedImpact:
    """One entry of the combined impact ranking."""

    key: str
    equipment: str
    field_name: str
    weightage: float
    category: str


@dataclass(frozen=True)
class ScenarioPartition:
    """Best-first `top` scenarios and worst-first `bottom` scenarios."""

    top: List[ScenarioData]
    bottom: List[ScenarioData]


@dataclass(frozen=True)
class VariableAverage:
    """
    Average of one variable across a set of scenarios.

    Attributes:
        value: The mean over the scenarios that matched, or 0.0 if none did.
        matched: The number of scenarios in which the variable had a value.
        total: The number of scenarios searched.
    """

    value: float
    matched: int
    total: int

    @property
    def is_empty(self) -> bool:
        return self.matched == 0

    @property
    def degraded(self) -> bool:
        return self.matched < self.total


@dataclass(frozen=True)
class KpiSummary:
    count: int
    minimum: float
    maximum: float
    mean: float
    std: float


@dataclass(frozen=True)
class DriverRow:
    """One row of the Performance Drivers comparison table."""

    impact: RankedImpact
    top_average: VariableAverage
    bottom_average: VariableAverage


# =============================================================================
# IMPACT RANKING
# =============================================================================
def impact_key_collisions(data: ExperimentData) -> List[str]:
    """Returns the impact keys present in both the setpoint and condition lists."""
    setpoint_keys = {entry.key for entry in data.setpoint_impact_summary}
    seen = set()
    collisions = []
    for entry in data.condition_impact_summary:
        if entry.key in setpoint_keys and entry.key not in seen:
            collisions.append(entry.key)
            seen.add(entry.key)
    return collisions


def combined_impact_ranking(
    data: ExperimentData, strict: bool = False
) -> List[RankedImpact]:
    """
    Merges setpoint and condition impacts into one ranking by descending weightage.

    Entries are keyed `"{equipment}.{field_name}"`. Setpoints are merged before
    conditions, and that merge order breaks ties in the stable sort. When the
    same key appears in both lists the condition entry overwrites the setpoint
    entry (last write wins) while keeping the setpoint's merge position.

    Args:
        data: The experiment data to rank.
        strict: If True, a key present in both lists raises instead of being
            overwritten.

    Returns:
        A list of RankedImpact entries sorted non-increasing by weightage.

    Raises:
        ValidationError: If `strict` is set and duplicate keys exist.
    """
    collisions = impact_key_collisions(data)
    if collisions:
        if strict:
            raise ValidationError(
                f"Impact keys present as both setpoint and condition: {collisions}"
            )
        logger.warning(
            f"Condition impacts overwrite setpoint impacts for keys: {collisions}"
        )

    merged: Dict[str, RankedImpact] = {}
    for entry in [*data.setpoint_impact_summary, *data.condition_impact_summary]:
        merged[entry.key] = RankedImpact(
            key=entry.key,
            equipment=entry.equipment,
            field_name=entry.field_name,
            weightage=entry.weightage,
            category=entry.category,
        )
    return sorted(merged.values(), key=lambda item: item.weightage, reverse=True)


# =============================================================================
# SCENARIO PARTITIONS
# =============================================================================
def sort_scenario_label(label: str) -> int:
    """
    Extracts the trailing integer of a scenario label for chronological ordering.

    "Scenario 12" -> 12. Labels without any digits sort last.
    """
    match = _TRAILING_INT_RE.search(label or "")
    if not match:
        return sys.maxsize
    return int(match.group(1))


def scenarios_in_label_order(scenarios: Sequence[ScenarioData]) -> List[ScenarioData]:
    return sorted(scenarios, key=lambda s: sort_scenario_label(s.scenario))


def top_bottom_scenarios(data: ExperimentData, k: int) -> ScenarioPartition:
    """
    Partitions scenarios into the best `k` and the worst `k` by KPI value.

    Scenarios without a KPI value are ignored; the rest are sorted descending
    by KPI (stable for ties). `top` holds the
    first `min(k, n)` scenarios best first; `bottom` holds the last `min(k, n)`
    scenarios reversed, so the worst scenario comes first. When `n < 2k` the two
    lists overlap.

    Raises:
        ValueError: If `k` is negative.
    """
    if k < 0:
        raise ValueError(f"k must be non-negative, got {k}")
    ordered = sorted(data.scored_scenarios, key=lambda s: s.kpi_value, reverse=True)
    count = min(k, len(ordered))
    if count == 0:
        return ScenarioPartition(top=[], bottom=[])
    return ScenarioPartition(
        top=ordered[:count], bottom=list(reversed(ordered[-count:]))
    )


def percentile_count(n: int, fraction: float) -> int:
    # Rounding first keeps float noise (15 * 0.2 == 3.0000000000000004) out of ceil.
    return math.ceil(round(n * fraction, 9))


def percentile_split(
    data: ExperimentData, fraction: float = DEFAULT_QUINTILE_FRACTION
) -> ScenarioPartition:
    """
    Splits scenarios into the top and bottom `fraction` by KPI value.

    Uses `k = ceil(n * fraction)`; the canonical fraction 0.2 yields quintiles.

    Raises:
        ValueError: If `fraction` is not in (0, 1].
    """
    if not 0 < fraction <= 1:
        raise ValueError(f"fraction must be in (0, 1], got {fraction}")
    k = percentile_count(len(data.scored_scenarios), fraction)
    return top_bottom_scenarios(data, k)


# =============================================================================
# VARIABLE MATCHING AND AVERAGES
# =============================================================================
def _find_variable(
    spec: EquipmentSpecification, equipment: str, field_name: str
) -> Optional[Variable]:
    """
    Finds a variable in one equipment entry, trying the exact name first, then
    "{equipment} - {field_name}", then any name ending with `field_name`.
    """
    prefixed_name = f"{equipment}{EQUIPMENT_VARIABLE_SEPARATOR}{field_name}"
    for matches in (
        lambda name: name == field_name,
        lambda name: name == prefixed_name,
        lambda name: bool(field_name) and name.endswith(field_name),
    ):
        for variable in spec.variables:
            if matches(variable.name):
                return variable
    return None


def find_scenario_variable(
    scenario: ScenarioData, equipment: str, field_name: str
) -> Optional[Variable]:
    """
    Returns the variable of `equipment` named `field_name` in one scenario.

    All equipment entries sharing the name are searched in order, and the first
    entry yielding a match wins, so repeated equipment is never double counted.
    """
    for spec in scenario.equipment_specifications:
        if spec.equipment != equipment:
            continue
        variable = _find_variable(spec, equipment, field_name)
        if variable is not None:
            return variable
    return None


def average_variable_across_scenarios(
    scenarios: Sequence[ScenarioData], equipment: str, field_name: str
) -> VariableAverage:
    """
    Averages one equipment variable across a set of scenarios.

    Args:
        scenarios: The scenarios to search.
        equipment: The equipment name to match.
        field_name: The variable name to match (with the documented fallbacks).

    Returns:
        A VariableAverage whose value is 0.0 when no scenario matched. A
        variable found without a numeric value does not count as matched; callers
        must check `is_empty`/`degraded` before presenting it as a true mean.
    """
    values = []
    for scenario in scenarios:
        variable = find_scenario_variable(scenario, equipment, field_name)
        if variable is not None and variable.value is not None:
            values.append(variable.value)

    if not values:
        logger.warning(
            f"Variable '{equipment}.{field_name}' not found in any of "
            f"{len(scenarios)} scenarios; reporting 0."
        )
        return VariableAverage(value=0.0, matched=0, total=len(scenarios))
    return VariableAverage(
        value=sum(values) / len(values), matched=len(values), total=len(scenarios)
    )


# =============================================================================
# SUMMARIES
# =============================================================================
def kpi_summary(data: ExperimentData) -> KpiSummary:
    """Computes count, range, mean and standard deviation of the KPI values."""
    kpi_series = pd.Series(data.kpi_values, dtype="float64")
    if kpi_series.empty:
        return KpiSummary(count=0, minimum=0.0, maximum=0.0, mean=0.0, std=0.0)
    stats = kpi_series.describe()
    std = float(stats["std"]) if pd.notna(stats["std"]) else 0.0
    return KpiSummary(
        count=int(stats["count"]),
        minimum=float(stats["min"]),
        maximum=float(stats["max"]),
        mean=float(stats["mean"]),
        std=std,
    )


def performance_driver_rows(
    data: ExperimentData,
    fraction: float = DEFAULT_QUINTILE_FRACTION,
    limit: int = DEFAULT_DRIVER_TABLE_LIMIT,
) -> List[DriverRow]:
    """
    Compares per-variable averages between top and bottom scenarios.

    The `limit` highest-impact variables are taken from the combined ranking,
    in descending weightage order, and each is averaged over the top and the
    bottom `fraction` of scenarios.
    """
    partition = percentile_split(data, fraction)
    rows = []
    for impact in combined_impact_ranking(data)[:limit]:
        rows.append(
            DriverRow(
                impact=impact,
                top_average=average_variable_across_scenarios(
                    partition.top, impact.equipment, impact.field_name
                ),
                bottom_average=average_variable_across_scenarios(
                    partition.bottom, impact.equipment, impact.field_name
                ),
            )
        )
    return rows
