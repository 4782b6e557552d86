#!/usr/bin/env python3
"""Run the experiment worker against a local directory queue.

Each ``*.json`` file in the queue directory is one request message.
Batch input files are read from the input directory; rendered images
and result records are written to the result directory.

Usage:
    # Listen until Ctrl+C
    python3 scripts/run_worker.py --config config/worker.json

    # Drain a single message and exit
    python3 scripts/run_worker.py --once
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from src.config import WorkerConfig
from src.experiment import ExperimentRunner
from src.listener import QueueListener
from src.messaging import DirectoryQueue
from src.storage import LocalStorageGateway


def load_config(config_path: Path | None) -> WorkerConfig:
    """Load the worker config file (if any) and apply environment overrides."""
    config = WorkerConfig.from_file(config_path) if config_path is not None else WorkerConfig()
    return config.apply_env()


async def _serve(listener: QueueListener, once: bool) -> None:
    if once:
        await listener.run_once()
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass
    await listener.run(stop_event)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the SDR experiment worker on a local directory queue.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  %(prog)s --config config/worker.json
  %(prog)s --once
""",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to worker config JSON (default: built-in settings)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process at most one message, then exit",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading worker config: {e}")
        return 1

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    storage = LocalStorageGateway(config.input_dir, config.result_dir)
    queue = DirectoryQueue(config.queue_dir)
    runner = ExperimentRunner(storage, config)
    listener = QueueListener(queue, runner, storage, poll_interval=config.poll_interval)

    asyncio.run(_serve(listener, args.once))
    return 0 if listener.messages_failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
