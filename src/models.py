"""Experiment data model.

Request messages, result records, per-stage outcomes and the rows of the
batch input files, together with their JSON (de)serialization. Field
names on the wire use the PascalCase names of the message schema.
"""

import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.errors import SchemaError

DATETIME_ROWS_KEY = "DateTimeDataRow"
SCALAR_AQI_ROWS_KEY = "ScalarEncoderDataWithAQI"

_REQUEST_STRING_FIELDS: dict[str, str] = {
    "ExperimentId": "experiment_id",
    "InputFile": "input_file",
    "Name": "name",
    "Description": "description",
    "Value1": "value1",
    "Value2": "value2",
    "ScalarEncoderAQI": "scalar_encoder_aqi",
    "DateTimeDataRow": "datetime_data_row",
}


def _require_number(value: Any, where: str) -> float:
    number = value
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            pass
    if (
        isinstance(number, bool)
        or not isinstance(number, (int, float))
        or not math.isfinite(number)
    ):
        msg = f"{where} must be a number, got {value!r}"
        raise SchemaError(msg)
    return float(number)


def _require_int_list(value: Any, where: str) -> list[int]:
    if not isinstance(value, list) or any(
        isinstance(item, bool) or not isinstance(item, int) for item in value
    ):
        msg = f"{where} must be a list of integers, got {value!r}"
        raise SchemaError(msg)
    return list(value)


@dataclass(frozen=True)
class ExperimentRequest:
    """A decoded experiment request message."""

    experiment_id: str
    input_file: str
    name: str = ""
    description: str = ""
    value1: str = ""
    value2: str = ""
    value3: float | None = None
    scalar_encoder_aqi: str = ""
    datetime_data_row: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "ExperimentRequest":
        """Create a request from a decoded JSON object.

        Raises:
            SchemaError: If the object is malformed or misses required fields
        """
        if not isinstance(data, dict):
            msg = f"Request message must be a JSON object, got {type(data).__name__}"
            raise SchemaError(msg)
        if "InputFile" not in data:
            msg = "Request message must have an 'InputFile' field"
            raise SchemaError(msg)

        kwargs: dict[str, Any] = {}
        for wire_name, attr in _REQUEST_STRING_FIELDS.items():
            value = data.get(wire_name)
            if value is None:
                value = ""
            elif isinstance(value, (int, float)) and not isinstance(value, bool):
                value = str(value)
            elif not isinstance(value, str):
                msg = f"Request field '{wire_name}' must be a string, got {value!r}"
                raise SchemaError(msg)
            kwargs[attr] = value

        value3 = data.get("Value3")
        if value3 is not None:
            value3 = _require_number(value3, "Request field 'Value3'")
        return cls(value3=value3, **kwargs)

    @classmethod
    def from_json(cls, text: str | bytes) -> "ExperimentRequest":
        """Decode a request from a JSON message body.

        Raises:
            SchemaError: If the body is not valid JSON or not a valid request
        """
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            msg = f"Request message is not valid JSON: {e}"
            raise SchemaError(msg) from e
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        d: dict[str, Any] = {
            wire_name: getattr(self, attr) for wire_name, attr in _REQUEST_STRING_FIELDS.items()
        }
        d["Value3"] = self.value3
        return d


@dataclass
class StageOutcome:
    """Result of one pipeline stage: uploaded artifacts or a failure reason."""

    name: str
    success: bool
    artifacts: list[str] = field(default_factory=list)
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "Stage": self.name,
            "Success": self.success,
            "Artifacts": list(self.artifacts),
        }
        if self.error_message is not None:
            d["Error"] = self.error_message
        return d


@dataclass
class ExperimentResult:
    """Result record persisted for each processed request."""

    partition_key: str
    row_key: str
    experiment_id: str = ""
    name: str = ""
    description: str = ""
    start_time_utc: datetime | None = None
    end_time_utc: datetime | None = None
    test_name: str = ""
    test_data: str = ""
    accuracy: float = 0.0
    stages: list[StageOutcome] = field(default_factory=list)

    @property
    def failed_stages(self) -> list[StageOutcome]:
        return [stage for stage in self.stages if not stage.success]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted record (timestamps as ISO-8601 strings)."""
        return {
            "PartitionKey": self.partition_key,
            "RowKey": self.row_key,
            "ExperimentId": self.experiment_id,
            "Name": self.name,
            "Description": self.description,
            "StartTimeUtc": self.start_time_utc.isoformat() if self.start_time_utc else None,
            "EndTimeUtc": self.end_time_utc.isoformat() if self.end_time_utc else None,
            "TestName": self.test_name,
            "TestData": self.test_data,
            "Accuracy": self.accuracy,
        }


@dataclass(frozen=True)
class DateTimeDataRow:
    """One row of a DateTime batch file."""

    w: int
    r: float
    input: str
    expected_output: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class ScalarAqiDataRow:
    """One row of a scalar/AQI batch file."""

    inputs: list[int]
    min_value: float
    max_value: float


def _load_rows(text: str, key: str) -> list[dict[str, Any]]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        msg = f"Batch file is not valid JSON: {e}"
        raise SchemaError(msg) from e
    if not isinstance(data, dict) or key not in data:
        msg = f"Batch file must have a top-level '{key}' field"
        raise SchemaError(msg)
    rows = data[key]
    if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
        msg = f"Batch file field '{key}' must be a list of objects"
        raise SchemaError(msg)
    return rows


def parse_datetime_rows(text: str) -> list[DateTimeDataRow]:
    """Parse a ``{"DateTimeDataRow": [...]}`` batch file.

    Raises:
        SchemaError: If the key is missing or a row is malformed
    """
    rows = []
    for index, row in enumerate(_load_rows(text, DATETIME_ROWS_KEY)):
        where = f"{DATETIME_ROWS_KEY}[{index}]"
        if "Input" not in row or not isinstance(row["Input"], str):
            msg = f"{where} must have a string 'Input' field"
            raise SchemaError(msg)
        w = row.get("W", 0)
        if isinstance(w, bool) or not isinstance(w, int):
            msg = f"{where}.W must be an integer, got {w!r}"
            raise SchemaError(msg)
        rows.append(
            DateTimeDataRow(
                w=w,
                r=_require_number(row.get("R", 0), f"{where}.R"),
                input=row["Input"],
                expected_output=_require_int_list(
                    row.get("ExpectedOutput", []), f"{where}.ExpectedOutput"
                ),
            )
        )
    return rows


def parse_scalar_aqi_rows(text: str) -> list[ScalarAqiDataRow]:
    """Parse a ``{"ScalarEncoderDataWithAQI": [...]}`` batch file.

    Raises:
        SchemaError: If the key is missing or a row is malformed
    """
    rows = []
    for index, row in enumerate(_load_rows(text, SCALAR_AQI_ROWS_KEY)):
        where = f"{SCALAR_AQI_ROWS_KEY}[{index}]"
        missing = [name for name in ("Inputs", "MinValue", "MaxValue") if name not in row]
        if missing:
            msg = f"{where} is missing fields {missing}"
            raise SchemaError(msg)
        rows.append(
            ScalarAqiDataRow(
                inputs=_require_int_list(row["Inputs"], f"{where}.Inputs"),
                min_value=_require_number(row["MinValue"], f"{where}.MinValue"),
                max_value=_require_number(row["MaxValue"], f"{where}.MaxValue"),
            )
        )
    return rows
