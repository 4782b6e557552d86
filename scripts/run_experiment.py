#!/usr/bin/env python3
"""Process a single experiment request without a queue.

The request file holds the same JSON object a queue message would carry.
The result record is stored through the local storage gateway and a
summary of the stages is printed.

Usage:
    python3 scripts/run_experiment.py request.json
    python3 scripts/run_experiment.py request.json --config config/worker.json
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from src.config import WorkerConfig
from src.errors import SchemaError
from src.experiment import ExperimentRunner
from src.models import ExperimentRequest, ExperimentResult
from src.storage import LocalStorageGateway


async def _process(request: ExperimentRequest, config: WorkerConfig) -> ExperimentResult:
    storage = LocalStorageGateway(config.input_dir, config.result_dir)
    runner = ExperimentRunner(storage, config)
    result = await runner.process(request)
    await storage.upload_experiment_result(result)
    return result


def print_summary(result: ExperimentResult) -> None:
    """Print the stage outcomes of a finished experiment."""
    print("=" * 70)
    print(f"Experiment: {result.experiment_id} ({result.test_name})")
    print("=" * 70)
    print(f"Row key:  {result.row_key}")
    print(f"Accuracy: {result.accuracy}")
    if result.start_time_utc and result.end_time_utc:
        elapsed = (result.end_time_utc - result.start_time_utc).total_seconds()
        print(f"Duration: {elapsed:.2f}s")
    print()
    for stage in result.stages:
        status = "ok" if stage.success else "FAILED"
        print(f"  {stage.name:20s} {status}")
        for artifact in stage.artifacts:
            print(f"    {artifact}")
        if stage.error_message:
            print(f"    {stage.error_message}")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run one SDR experiment request through the pipeline.",
    )
    parser.add_argument("request", type=Path, help="Path to the request JSON file")
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to worker config JSON (default: built-in settings)",
    )
    args = parser.parse_args()

    try:
        config = WorkerConfig.from_file(args.config) if args.config else WorkerConfig()
        config = config.apply_env()
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading worker config: {e}")
        return 1

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.request.exists():
        print(f"Error: Request file not found: {args.request}")
        return 1
    try:
        request = ExperimentRequest.from_json(args.request.read_text(encoding="utf-8"))
    except SchemaError as e:
        print(f"Error: {e}")
        return 1

    result = asyncio.run(_process(request, config))
    print_summary(result)
    return 0 if not result.failed_stages else 1


if __name__ == "__main__":
    sys.exit(main())
