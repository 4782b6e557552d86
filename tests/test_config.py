"""Tests for worker configuration loading."""

import json
from pathlib import Path

import pytest

from src.config import WorkerConfig


class TestWorkerConfig:
    """Tests for WorkerConfig defaults and validation."""

    def test_defaults(self) -> None:
        config = WorkerConfig()
        assert config.group_id == "sdr-cc"
        assert config.poll_interval == 0.5
        assert config.bitmap_size == 1024
        assert config.binary_bits == 156
        assert config.input_dir == Path("data/input")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"poll_interval": 0},
            {"bitmap_size": -1},
            {"binary_bits": 0},
            {"group_id": ""},
            {"log_level": "LOUD"},
        ],
    )
    def test_invalid_values_raise(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            WorkerConfig(**kwargs)

    def test_from_dict(self) -> None:
        config = WorkerConfig.from_dict(
            {"group_id": "lab", "poll_interval": 2, "result_dir": "/tmp/out", "unknown": 1}
        )
        assert config.group_id == "lab"
        assert config.poll_interval == 2.0
        assert config.result_dir == Path("/tmp/out")

    def test_from_dict_wrong_type_raises(self) -> None:
        with pytest.raises(ValueError, match="bitmap_size must be int"):
            WorkerConfig.from_dict({"bitmap_size": "large"})

    def test_from_dict_bool_rejected(self) -> None:
        with pytest.raises(ValueError, match="poll_interval"):
            WorkerConfig.from_dict({"poll_interval": True})

    def test_from_dict_fractional_int_rejected(self) -> None:
        with pytest.raises(ValueError, match="strip_scale"):
            WorkerConfig.from_dict({"strip_scale": 2.5})


class TestWorkerConfigFile:
    """Tests for loading WorkerConfig from JSON files."""

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "worker.json"
        path.write_text(json.dumps({"group_id": "file-group", "bitmap_size": 512}))
        config = WorkerConfig.from_file(path)
        assert config.group_id == "file-group"
        assert config.bitmap_size == 512

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            WorkerConfig.from_file(tmp_path / "missing.json")

    def test_invalid_json_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "worker.json"
        path.write_text("{broken")
        with pytest.raises(ValueError, match="not valid JSON"):
            WorkerConfig.from_file(path)

    def test_non_object_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "worker.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError, match="JSON object"):
            WorkerConfig.from_file(path)


class TestApplyEnv:
    """Tests for environment variable overrides."""

    def test_overrides_applied(self) -> None:
        config = WorkerConfig().apply_env(
            {"SDR_WORKER_POLL_INTERVAL": "1.5", "SDR_WORKER_QUEUE_DIR": "/var/queue"}
        )
        assert config.poll_interval == 1.5
        assert config.queue_dir == Path("/var/queue")

    def test_no_overrides_returns_same_config(self) -> None:
        config = WorkerConfig()
        assert config.apply_env({"OTHER": "1"}) is config

    def test_invalid_override_raises(self) -> None:
        with pytest.raises(ValueError, match="bitmap_size"):
            WorkerConfig().apply_env({"SDR_WORKER_BITMAP_SIZE": "big"})

    def test_reads_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SDR_WORKER_GROUP_ID", "from-env")
        assert WorkerConfig().apply_env().group_id == "from-env"
