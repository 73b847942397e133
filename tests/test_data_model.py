import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from src import constants
from src.report_generator.utils.data_model import (
    ImpactEntry,
    load_experiment_file,
    parse_experiment_json,
)
from src.report_generator.utils.errors import ValidationError

BARE_PAYLOAD = {
    "main_summary_text": "Summary",
    "top_variables": [
        {"name": "temperature", "type": "Setpoint", "value": 180, "unit": "degC", "equipment": "R-1"}
    ],
    "setpoint_impact_summary": [
        {"equipment": "R-1", "setpoint": "temperature", "weightage": 40.0, "unit": "degC"}
    ],
    "condition_impact_summary": [
        {"equipment": "R-1", "condition": "feed_temperature", "weightage": 5.0, "unit": "degC"}
    ],
    "simulated_summary": {
        "simulated_data": [
            {
                "scenario": "Scenario 1",
                "equipment_specification": [
                    {
                        "equipment": "R-1",
                        "variables": [
                            {"name": "temperature", "type": "Setpoint", "value": 180, "unit": "degC"}
                        ],
                    }
                ],
                "kpi": "Yield (%)",
                "kpi_value": 81.5,
            }
        ]
    },
}


def test_parse_bare_and_wrapped_payloads_are_equal():
    """Tests that the {"data": ...} wrapper is unwrapped transparently."""
    bare = parse_experiment_json(json.dumps(BARE_PAYLOAD))
    wrapped = parse_experiment_json(json.dumps({"data": BARE_PAYLOAD}))
    assert bare == wrapped
    assert bare.kpi_name == "Yield (%)"
    assert bare.kpi_values == [81.5]
    assert bare.simulated_scenarios[0].equipment_specifications[0].variables[0].kind == "Setpoint"


def test_impact_entries_expose_key_and_category():
    data = parse_experiment_json(json.dumps(BARE_PAYLOAD))
    setpoint = data.setpoint_impact_summary[0]
    condition = data.condition_impact_summary[0]
    assert setpoint.key == "R-1.temperature"
    assert setpoint.category == "setpoint"
    assert condition.key == "R-1.feed_temperature"
    assert condition.category == "condition"


def test_parse_invalid_json_raises_validation_error():
    with pytest.raises(ValidationError, match="Invalid JSON file"):
        parse_experiment_json("{not json")


def test_parse_non_object_raises_validation_error():
    with pytest.raises(ValidationError):
        parse_experiment_json("[1, 2, 3]")


def test_missing_scenario_list_is_fatal():
    """Tests that data without a scenario list is rejected."""
    payload = dict(BARE_PAYLOAD)
    del payload["simulated_summary"]
    with pytest.raises(ValidationError, match="simulated_data"):
        parse_experiment_json(json.dumps(payload))


def test_to_json_dict_uses_external_field_names():
    data = parse_experiment_json(json.dumps(BARE_PAYLOAD))
    dumped = data.to_json_dict()
    assert dumped["setpoint_impact_summary"][0]["setpoint"] == "temperature"
    assert dumped["condition_impact_summary"][0]["condition"] == "feed_temperature"
    scenario = dumped["simulated_summary"]["simulated_data"][0]
    assert scenario["kpi"] == "Yield (%)"
    assert "equipment_specification" in scenario


def test_experiment_data_is_immutable():
    data = parse_experiment_json(json.dumps(BARE_PAYLOAD))
    with pytest.raises(PydanticValidationError):
        data.main_summary_text = "changed"


def test_load_mock_fixture(mock_data):
    """Tests that the bundled mock data parses into twelve scenarios."""
    assert len(mock_data.simulated_scenarios) == 12
    assert mock_data.kpi_name == "Yield (%)"
    assert len(mock_data.top_variables) == 3


def test_load_experiment_file_not_found():
    with pytest.raises(ValidationError, match="not found"):
        load_experiment_file("non_existent_results.json")


def _mock_payload():
    with open(constants.MOCK_DATA_PATH, "r", encoding="utf-8") as f:
        return json.load(f)


def test_missing_fields_fall_back_to_defaults():
    """Tests that a scenario with no fields is accepted and carries no KPI value."""
    data = parse_experiment_json(json.dumps({"simulated_summary": {"simulated_data": [{}]}}))
    assert data.top_variables == []
    assert data.setpoint_impact_summary == []
    assert data.kpi_name == "N/A"
    assert data.simulated_scenarios[0].kpi_value is None
    assert data.scored_scenarios == []
    assert data.kpi_values == []


def test_null_unit_is_accepted():
    """Tests that a null unit on one variable does not reject the upload."""
    payload = _mock_payload()
    scenario = payload["data"]["simulated_summary"]["simulated_data"][0]
    scenario["equipment_specification"][0]["variables"][0]["unit"] = None
    data = parse_experiment_json(json.dumps(payload))
    variable = data.simulated_scenarios[0].equipment_specifications[0].variables[0]
    assert variable.unit == ""
    assert variable.value == 182.0


def test_null_kpi_value_excludes_the_scenario():
    """Tests that a scenario without a KPI value is kept but left out of scoring."""
    payload = _mock_payload()
    payload["data"]["simulated_summary"]["simulated_data"][0]["kpi_value"] = None
    data = parse_experiment_json(json.dumps(payload))
    assert len(data.simulated_scenarios) == 12
    assert len(data.scored_scenarios) == 11
    assert 78.42 not in data.kpi_values


def test_wrong_value_types_degrade_to_defaults():
    payload = {
        "top_variables": "not a list",
        "top_impact": {"R-1.temp": 40, "R-1.flow": "high"},
        "setpoint_impact_summary": [
            {"equipment": "R-1", "setpoint": "temp", "weightage": "heavy", "unit": 5},
            "garbage",
        ],
        "simulated_summary": {
            "simulated_data": [
                {
                    "scenario": 7,
                    "kpi": "Yield (%)",
                    "kpi_value": "high",
                    "equipment_specification": [
                        {"equipment": "R-1", "variables": [{"name": "temp", "value": "hot"}]}
                    ],
                },
                {"scenario": "Scenario 8", "kpi_value": "81.5"},
            ]
        },
    }
    data = parse_experiment_json(json.dumps(payload))
    assert data.top_variables == []
    assert data.top_impact == {"R-1.temp": 40.0}
    assert len(data.setpoint_impact_summary) == 1
    assert data.setpoint_impact_summary[0].weightage == 0.0
    assert data.setpoint_impact_summary[0].unit == "5"
    first, second = data.simulated_scenarios
    assert first.scenario == "7"
    assert first.kpi_value is None
    assert first.equipment_specifications[0].variables[0].value is None
    assert second.kpi_value == 81.5


def test_impact_entry_is_abstract():
    with pytest.raises(TypeError):
        ImpactEntry(equipment="R-1", field_name="temp")


def test_load_experiment_file_not_utf8(tmp_path):
    """Tests that undecodable bytes are reported as an invalid JSON file."""
    file_path = tmp_path / "results.json"
    file_path.write_bytes(b"\xff\xfe\x00garbage")
    with pytest.raises(ValidationError, match="Invalid JSON file"):
        load_experiment_file(str(file_path))
