"""Storage gateway contract and a filesystem implementation.

The worker reads batch input files from storage and writes rendered
artifacts and result records back. :class:`StorageGateway` is the
contract; :class:`LocalStorageGateway` keeps everything in two local
directories and is used by the command-line scripts and the tests.
"""

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Protocol

from src.errors import NotFoundError, TransientIOError
from src.models import ExperimentResult

logger = logging.getLogger(__name__)


class StorageGateway(Protocol):
    """Contract for artifact and result storage."""

    async def download_input_file(self, name: str) -> str:
        """Return the text of an input file; NotFoundError if missing."""
        ...

    async def upload_result_file(self, name: str, data: bytes) -> None: ...

    async def upload_result_files(self, base_name: str, items: list[bytes]) -> None:
        """Upload each item as ``{base_name}_{index + 1}.png``."""
        ...

    async def upload_experiment_result(self, result: ExperimentResult) -> None:
        """Upsert a result record; failures are logged, never raised."""
        ...


def result_file_names(base_name: str, count: int) -> list[str]:
    """Names used by :meth:`StorageGateway.upload_result_files`."""
    return [f"{base_name}_{index + 1}.png" for index in range(count)]


def _safe_name(name: str) -> str:
    """Reject names that would escape the storage directory."""
    if not name or Path(name).name != name or name in {".", ".."}:
        msg = f"Invalid storage object name: {name!r}"
        raise NotFoundError(msg)
    return name


class LocalStorageGateway:
    """Storage gateway backed by local directories.

    Input files are read from ``input_dir``. Artifacts are written to
    ``result_dir``; result records go to ``result_dir / "records"`` as one
    JSON file per partition/row key, so writing the same key twice
    replaces the record.
    """

    def __init__(self, input_dir: Path, result_dir: Path) -> None:
        self.input_dir = input_dir
        self.result_dir = result_dir
        self.records_dir = result_dir / "records"
        self.result_dir.mkdir(parents=True, exist_ok=True)

    async def download_input_file(self, name: str) -> str:
        path = self.input_dir / _safe_name(name)
        if not path.is_file():
            msg = f"The file '{name}' does not exist in {self.input_dir}"
            raise NotFoundError(msg)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            msg = f"Could not read input file {path}: {e}"
            raise TransientIOError(msg) from e

    async def upload_result_file(self, name: str, data: bytes) -> None:
        path = self.result_dir / _safe_name(name)
        try:
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as e:
            msg = f"Could not write result file {path}: {e}"
            raise TransientIOError(msg) from e
        logger.info("Uploaded %s (%d bytes)", name, len(data))

    async def upload_result_files(self, base_name: str, items: list[bytes]) -> None:
        for name, data in zip(result_file_names(base_name, len(items)), items, strict=True):
            await self.upload_result_file(name, data)

    def record_path(self, result: ExperimentResult) -> Path:
        key = re.sub(r"[^0-9A-Za-z_.-]+", "-", f"{result.partition_key}_{result.row_key}")
        return self.records_dir / f"{key}.json"

    async def upload_experiment_result(self, result: ExperimentResult) -> None:
        path = self.record_path(result)
        logger.info("Upload ExperimentResult to %s", path)
        try:
            self.records_dir.mkdir(parents=True, exist_ok=True)
            text = json.dumps(result.to_dict(), indent=2)
            await asyncio.to_thread(path.write_text, text, encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to upload experiment result %s: %s", result.row_key, e)
            return
        logger.info("Experiment result %s stored", result.row_key)
