"""Shared test fixtures and helpers.

Provides an in-memory storage gateway and common request and batch-file
fixtures used across multiple test modules. Each test module can still
define its own specialised fixtures when needed.
"""

import json

import pytest

from src.config import WorkerConfig
from src.errors import NotFoundError, TransientIOError
from src.models import ExperimentRequest, ExperimentResult
from src.storage import result_file_names

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class RecordingStorage:
    """Storage gateway that keeps everything in dictionaries.

    Args:
        inputs: Input file contents by name
        fail_uploads: Make every artifact upload raise TransientIOError
    """

    def __init__(self, inputs: dict[str, str] | None = None, fail_uploads: bool = False) -> None:
        self.inputs = dict(inputs or {})
        self.fail_uploads = fail_uploads
        self.uploaded: dict[str, bytes] = {}
        self.results: list[ExperimentResult] = []

    async def download_input_file(self, name: str) -> str:
        if name not in self.inputs:
            msg = f"The file '{name}' does not exist"
            raise NotFoundError(msg)
        return self.inputs[name]

    async def upload_result_file(self, name: str, data: bytes) -> None:
        if self.fail_uploads:
            msg = f"Upload of {name} failed"
            raise TransientIOError(msg)
        self.uploaded[name] = data

    async def upload_result_files(self, base_name: str, items: list[bytes]) -> None:
        for name, data in zip(result_file_names(base_name, len(items)), items, strict=True):
            await self.upload_result_file(name, data)

    async def upload_experiment_result(self, result: ExperimentResult) -> None:
        self.results.append(result)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def storage() -> RecordingStorage:
    """Empty in-memory storage gateway."""
    return RecordingStorage()


@pytest.fixture
def make_storage() -> type[RecordingStorage]:
    """Factory for storage gateways with input files or failing uploads."""
    return RecordingStorage


@pytest.fixture
def small_config() -> WorkerConfig:
    """Worker config with small images to keep rendering fast."""
    return WorkerConfig(bitmap_size=128, strip_scale=4)


@pytest.fixture
def minimal_request() -> ExperimentRequest:
    """Request that only triggers the single-value stage."""
    return ExperimentRequest(experiment_id="exp-1", input_file="runccproject", value1="42")


@pytest.fixture
def datetime_batch() -> str:
    """DateTime batch file with two rows."""
    return json.dumps(
        {
            "DateTimeDataRow": [
                {
                    "W": 21,
                    "R": 1.5,
                    "Input": "2023-08-01T10:00:00",
                    "ExpectedOutput": [0, 1, 1, 0],
                },
                {"W": 21, "R": 1.5, "Input": "12/24/2023", "ExpectedOutput": []},
            ]
        }
    )


@pytest.fixture
def scalar_aqi_batch() -> str:
    """Scalar/AQI batch file with one row of three inputs."""
    return json.dumps(
        {
            "ScalarEncoderDataWithAQI": [
                {"Inputs": [10, 55, 120], "MinValue": 0, "MaxValue": 200},
            ]
        }
    )


@pytest.fixture
def request_message() -> dict:
    """Full request message as it appears on the queue."""
    return {
        "ExperimentId": "exp-42",
        "InputFile": "runccproject",
        "Name": "SDR render",
        "Description": "Render all encoders",
        "Value1": "42",
        "Value2": "7",
        "Value3": 50.1,
        "ScalarEncoderAQI": "aqi.json",
        "DateTimeDataRow": "dates.json",
    }
