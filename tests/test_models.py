"""Tests for the experiment data model."""

import json
from datetime import UTC, datetime

import pytest

from src.errors import SchemaError
from src.models import (
    DateTimeDataRow,
    ExperimentRequest,
    ExperimentResult,
    ScalarAqiDataRow,
    StageOutcome,
    parse_datetime_rows,
    parse_scalar_aqi_rows,
)


class TestExperimentRequest:
    """Tests for request message decoding."""

    def test_from_dict_full(self, request_message: dict) -> None:
        request = ExperimentRequest.from_dict(request_message)
        assert request.experiment_id == "exp-42"
        assert request.input_file == "runccproject"
        assert request.name == "SDR render"
        assert request.value1 == "42"
        assert request.value2 == "7"
        assert request.value3 == pytest.approx(50.1)
        assert request.scalar_encoder_aqi == "aqi.json"
        assert request.datetime_data_row == "dates.json"

    def test_from_dict_minimal(self) -> None:
        """Only InputFile is required."""
        request = ExperimentRequest.from_dict({"InputFile": "f"})
        assert request.experiment_id == ""
        assert request.value1 == ""
        assert request.value3 is None
        assert request.datetime_data_row == ""

    def test_numbers_in_string_fields_are_coerced(self) -> None:
        request = ExperimentRequest.from_dict(
            {"ExperimentId": 7, "InputFile": "f", "Value1": 42, "Value2": 2.5}
        )
        assert request.experiment_id == "7"
        assert request.value1 == "42"
        assert request.value2 == "2.5"

    def test_null_fields_become_empty(self) -> None:
        request = ExperimentRequest.from_dict(
            {"ExperimentId": "e", "InputFile": "f", "Name": None, "Value3": None}
        )
        assert request.name == ""
        assert request.value3 is None

    def test_numeric_string_value3(self) -> None:
        request = ExperimentRequest.from_dict({"ExperimentId": "e", "InputFile": "f", "Value3": "50"})
        assert request.value3 == 50.0

    def test_missing_input_file_raises(self, request_message: dict) -> None:
        del request_message["InputFile"]
        with pytest.raises(SchemaError, match="InputFile"):
            ExperimentRequest.from_dict(request_message)

    def test_non_object_raises(self) -> None:
        with pytest.raises(SchemaError, match="JSON object"):
            ExperimentRequest.from_dict(["ExperimentId"])

    def test_wrong_field_type_raises(self) -> None:
        with pytest.raises(SchemaError, match="Value1"):
            ExperimentRequest.from_dict({"ExperimentId": "e", "InputFile": "f", "Value1": [1]})

    def test_invalid_value3_raises(self) -> None:
        with pytest.raises(SchemaError, match="Value3"):
            ExperimentRequest.from_dict({"ExperimentId": "e", "InputFile": "f", "Value3": "north"})

    def test_from_json(self, request_message: dict) -> None:
        request = ExperimentRequest.from_json(json.dumps(request_message))
        assert request.experiment_id == "exp-42"

    def test_from_json_bytes(self) -> None:
        request = ExperimentRequest.from_json(b'{"ExperimentId": "e", "InputFile": "f"}')
        assert request.input_file == "f"

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(SchemaError, match="not valid JSON"):
            ExperimentRequest.from_json("{not json")

    def test_schema_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            ExperimentRequest.from_json("[]")

    def test_to_dict_round_trip(self, request_message: dict) -> None:
        request = ExperimentRequest.from_dict(request_message)
        assert ExperimentRequest.from_dict(request.to_dict()) == request


class TestExperimentResult:
    """Tests for result records."""

    def test_to_dict(self) -> None:
        start = datetime(2026, 2, 11, 12, 0, tzinfo=UTC)
        result = ExperimentResult(
            partition_key="sdr-cc-abc",
            row_key="abc",
            experiment_id="exp-1",
            start_time_utc=start,
            end_time_utc=start,
            test_name="SDR to Bitmap",
            accuracy=100.0,
        )
        d = result.to_dict()
        assert d["PartitionKey"] == "sdr-cc-abc"
        assert d["RowKey"] == "abc"
        assert d["StartTimeUtc"] == "2026-02-11T12:00:00+00:00"
        assert d["TestName"] == "SDR to Bitmap"
        assert d["Accuracy"] == 100.0
        json.dumps(d)

    def test_unset_timestamps_are_none(self) -> None:
        d = ExperimentResult(partition_key="p", row_key="r").to_dict()
        assert d["StartTimeUtc"] is None
        assert d["EndTimeUtc"] is None

    def test_failed_stages(self) -> None:
        result = ExperimentResult(
            partition_key="p",
            row_key="r",
            stages=[
                StageOutcome(name="a", success=True),
                StageOutcome(name="b", success=False, error_message="boom"),
            ],
        )
        assert [stage.name for stage in result.failed_stages] == ["b"]


class TestStageOutcome:
    """Tests for stage outcome serialization."""

    def test_success_has_no_error_key(self) -> None:
        d = StageOutcome(name="single-value", success=True, artifacts=["a.png"]).to_dict()
        assert d == {"Stage": "single-value", "Success": True, "Artifacts": ["a.png"]}

    def test_failure_carries_error(self) -> None:
        d = StageOutcome(name="geospatial", success=False, error_message="bad").to_dict()
        assert d["Error"] == "bad"
        assert d["Artifacts"] == []


class TestParseDatetimeRows:
    """Tests for DateTime batch file parsing."""

    def test_parses_rows(self, datetime_batch: str) -> None:
        rows = parse_datetime_rows(datetime_batch)
        assert rows[0] == DateTimeDataRow(
            w=21, r=1.5, input="2023-08-01T10:00:00", expected_output=[0, 1, 1, 0]
        )
        assert rows[1].input == "12/24/2023"
        assert rows[1].expected_output == []

    def test_empty_list(self) -> None:
        assert parse_datetime_rows('{"DateTimeDataRow": []}') == []

    def test_missing_key_raises(self) -> None:
        with pytest.raises(SchemaError, match="DateTimeDataRow"):
            parse_datetime_rows('{"Rows": []}')

    def test_missing_input_raises(self) -> None:
        with pytest.raises(SchemaError, match="Input"):
            parse_datetime_rows('{"DateTimeDataRow": [{"W": 21}]}')

    def test_bad_expected_output_raises(self) -> None:
        text = json.dumps({"DateTimeDataRow": [{"Input": "2023-01-01", "ExpectedOutput": "0101"}]})
        with pytest.raises(SchemaError, match="ExpectedOutput"):
            parse_datetime_rows(text)

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(SchemaError, match="not valid JSON"):
            parse_datetime_rows("DateTimeDataRow")


class TestParseScalarAqiRows:
    """Tests for scalar/AQI batch file parsing."""

    def test_parses_rows(self, scalar_aqi_batch: str) -> None:
        rows = parse_scalar_aqi_rows(scalar_aqi_batch)
        assert rows == [ScalarAqiDataRow(inputs=[10, 55, 120], min_value=0.0, max_value=200.0)]

    def test_missing_fields_raise(self) -> None:
        text = json.dumps({"ScalarEncoderDataWithAQI": [{"Inputs": [1]}]})
        with pytest.raises(SchemaError, match="MinValue"):
            parse_scalar_aqi_rows(text)

    def test_non_integer_inputs_raise(self) -> None:
        text = json.dumps(
            {"ScalarEncoderDataWithAQI": [{"Inputs": [1.5], "MinValue": 0, "MaxValue": 10}]}
        )
        with pytest.raises(SchemaError, match="Inputs"):
            parse_scalar_aqi_rows(text)

    def test_rows_must_be_objects(self) -> None:
        with pytest.raises(SchemaError, match="list of objects"):
            parse_scalar_aqi_rows('{"ScalarEncoderDataWithAQI": [1, 2]}')
