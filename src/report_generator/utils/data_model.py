"""
This module defines the typed schema of the experiment results and its ingestion.

The experiment JSON produced by the process simulator is parsed into immutable
Pydantic models whose aliases mirror the external field names, so the same
models can be dumped back to the original shape when embedding the data in an
LLM prompt.

Ingestion rules:
1.  **Non-JSON input** is rejected with a `ValidationError`.
2.  **Wrong-shape JSON** is accepted structurally. Missing, null or wrong-typed
    fields fall back to their defaults, and a variable or scenario without a
    usable number is left out of averages and rankings downstream.
3.  **Missing scenario list** is fatal, since nothing can be rendered without it.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, get_origin

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.fields import FieldInfo
from pydantic import ValidationError as PydanticValidationError

from .constants import (
    CONDITION_CATEGORY,
    IMPACT_KEY_SEPARATOR,
    MISSING_KPI_NAME,
    SETPOINT_CATEGORY,
)
from .errors import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# EXPERIMENT DATA MODELS (Pydantic)
# =============================================================================
def _to_float(value: Any) -> Optional[float]:
    """Coerces a JSON scalar to float, or None if it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _lenient_value(value: Any, field: FieldInfo, field_name: str) -> Any:
    """
    Maps a null or wrong-typed JSON value onto something the field accepts.

    Nulls become the field default. Uncoercible scalars become the default,
    non-object list items are dropped, and non-numeric entries are dropped from
    numeric mappings. Each replacement is logged.
    """
    default = field.get_default(call_default_factory=True)
    if value is None:
        return default

    annotation = field.annotation
    origin = get_origin(annotation)
    if annotation is str:
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    elif annotation is float or annotation == Optional[float]:
        number = _to_float(value)
        if number is not None:
            return number
    elif origin is list:
        if isinstance(value, list):
            items = [item for item in value if isinstance(item, dict)]
            if len(items) < len(value):
                logger.warning(
                    f"Dropped {len(value) - len(items)} malformed entries from '{field_name}'."
                )
            return items
    elif origin is dict:
        if isinstance(value, dict):
            numbers = {}
            for key, item in value.items():
                number = _to_float(item)
                if number is not None:
                    numbers[str(key)] = number
            return numbers
    elif isinstance(annotation, type) and issubclass(annotation, BaseModel):
        if isinstance(value, dict):
            return value
    else:
        return value

    logger.warning(f"Ignoring invalid value {value!r} for '{field_name}'; using {default!r}.")
    return default


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _tolerate_wrong_types(cls, value: Any, info: ValidationInfo) -> Any:
        return _lenient_value(value, cls.model_fields[info.field_name], info.field_name)


class Variable(_FrozenModel):
    """A single measured or configured quantity of one equipment unit.

    `value` is None when the source document carries no usable number.
    """

    name: str = ""
    kind: str = Field(default="Setpoint", alias="type")
    value: Optional[float] = None
    unit: str = ""


class TopVariable(Variable):
    """A variable ranked among the most influential on the KPI."""

    equipment: str = ""


class ImpactEntry(_FrozenModel, ABC):
    """The share of KPI variance attributed to one variable, in percent."""

    equipment: str = ""
    field_name: str = ""
    weightage: float = 0.0
    unit: str = ""

    @property
    @abstractmethod
    def category(self) -> str:
        """Either 'setpoint' or 'condition'."""

    @property
    def key(self) -> str:
        return f"{self.equipment}{IMPACT_KEY_SEPARATOR}{self.field_name}"


class SetpointImpact(ImpactEntry):
    field_name: str = Field(default="", alias="setpoint")

    @property
    def category(self) -> str:
        return SETPOINT_CATEGORY


class ConditionImpact(ImpactEntry):
    field_name: str = Field(default="", alias="condition")

    @property
    def category(self) -> str:
        return CONDITION_CATEGORY


class EquipmentSpecification(_FrozenModel):
    """All variables of one equipment instance within one scenario."""

    equipment: str = ""
    variables: List[Variable] = Field(default_factory=list)


class ScenarioData(_FrozenModel):
    """One simulated trial and its resulting KPI value."""

    scenario: str = ""
    equipment_specifications: List[EquipmentSpecification] = Field(
        default_factory=list, alias="equipment_specification"
    )
    kpi_name: str = Field(default="", alias="kpi")
    kpi_value: Optional[float] = None


class SimulatedSummary(_FrozenModel):
    simulated_data: List[ScenarioData] = Field(default_factory=list)


class ExperimentData(_FrozenModel):
    """Aggregate root of one uploaded experiment-results document."""

    main_summary_text: str = ""
    top_summary_text: str = ""
    top_impact: Dict[str, float] = Field(default_factory=dict)
    top_variables: List[TopVariable] = Field(default_factory=list)
    impact_summary_text: str = ""
    setpoint_impact_summary: List[SetpointImpact] = Field(default_factory=list)
    condition_impact_summary: List[ConditionImpact] = Field(default_factory=list)
    simulated_summary: SimulatedSummary = Field(default_factory=SimulatedSummary)

    @property
    def simulated_scenarios(self) -> List[ScenarioData]:
        return self.simulated_summary.simulated_data

    @property
    def kpi_name(self) -> str:
        """The KPI name shared by every scenario, or 'N/A' for an empty dataset."""
        scenarios = self.simulated_scenarios
        if not scenarios or not scenarios[0].kpi_name:
            return MISSING_KPI_NAME
        return scenarios[0].kpi_name

    @property
    def scored_scenarios(self) -> List[ScenarioData]:
        """Scenarios that carry a KPI value; the rest are left out of rankings."""
        return [s for s in self.simulated_scenarios if s.kpi_value is not None]

    @property
    def kpi_values(self) -> List[float]:
        return [s.kpi_value for s in self.scored_scenarios]

    def to_json_dict(self) -> Dict[str, Any]:
        """Dumps the data back to its original external field names."""
        return self.model_dump(by_alias=True)


# =============================================================================
# PIPELINE PRODUCTS
# =============================================================================
@dataclass(frozen=True)
class GeneratedInsights:
    """The four narrative sections written by the LLM for one report run."""

    executive_summary: str
    variable_analysis: str
    scenario_comparison: str
    performance_drivers: str


@dataclass(frozen=True)
class ChartImages:
    """PNG payloads of the three report charts."""

    bar_chart: bytes
    line_chart: bytes
    comparison_chart: bytes


# =============================================================================
# INGESTION
# =============================================================================
def parse_experiment_json(text: str) -> ExperimentData:
    """
    Parses uploaded experiment results into an `ExperimentData` model.

    Both the wrapped upload format (`{"data": {...}}`) and the bare data object
    are accepted.

    Args:
        text: The raw JSON document.

    Returns:
        A validated, immutable ExperimentData instance.

    Raises:
        ValidationError: If the text is not JSON, is not an object, or lacks
            the scenario list entirely.
    """
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        logger.error(f"Uploaded experiment file is not valid JSON: {e}")
        raise ValidationError(f"Invalid JSON file: {e}") from e

    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    if not isinstance(payload, dict):
        raise ValidationError("Experiment JSON must be an object.")

    simulated_summary = payload.get("simulated_summary")
    if not isinstance(simulated_summary, dict) or not isinstance(
        simulated_summary.get("simulated_data"), list
    ):
        raise ValidationError(
            "Experiment JSON has no 'simulated_summary.simulated_data' scenario list."
        )

    try:
        data = ExperimentData.model_validate(payload)
    except PydanticValidationError as e:
        logger.error(f"Experiment JSON does not match the expected schema:\n{e}")
        raise ValidationError(f"Experiment JSON does not match the schema: {e}") from e

    logger.info(
        f"Loaded experiment data: {len(data.simulated_scenarios)} scenarios, "
        f"{len(data.top_variables)} top variables, KPI '{data.kpi_name}'."
    )
    unscored = len(data.simulated_scenarios) - len(data.scored_scenarios)
    if unscored:
        logger.warning(
            f"{unscored} scenario(s) have no numeric KPI value and are excluded from rankings."
        )
    return data


def load_experiment_file(filepath: str) -> ExperimentData:
    """Reads and parses an experiment-results JSON file."""
    if not os.path.exists(filepath):
        raise ValidationError(f"Experiment file not found at {filepath}")
    try:
        with open(filepath, "r", encoding="utf-8") as f:
            text = f.read()
    except UnicodeDecodeError as e:
        logger.error(f"Experiment file {filepath} is not UTF-8 text: {e}")
        raise ValidationError(f"Invalid JSON file: {e}") from e
    return parse_experiment_json(text)
