#!/usr/bin/env python3
"""Headless worker that uploads new images from a folder to Discord.

Loads ``config/config.json`` (or ``--config``), checks the Discord connection,
queues images already in the folder and then keeps watching until SIGINT or
SIGTERM, flushing the queue one last time before exiting.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from app.utils.config import DEFAULT_CONFIG_PATH, load_settings
from app.utils.logging_config import configure_logging
from domains.image_upload.exceptions import UploaderError
from domains.image_upload.pipeline import build_pipeline

__version__ = "1.0.0"


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description="Watch a folder and upload new images to Discord.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the JSON configuration file (default: {DEFAULT_CONFIG_PATH}).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING, ...).",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version information and exit.",
    )

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)

    if args.version:
        print("Discord Image Uploader")
        print(f"Version:    {__version__}")
        return 0

    configure_logging(args.log_level or "INFO")
    logger.info("Starting Discord Image Uploader...")

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValidationError) as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    if not args.log_level:
        configure_logging(settings.log_level)

    try:
        pipeline = build_pipeline(settings)
        pipeline.start()
    except UploaderError as e:
        logger.error(f"Failed to start uploader: {e}")
        return 1

    stop_event = threading.Event()

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    logger.info("Discord Image Uploader is running. Press Ctrl+C to stop.")

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    finally:
        pipeline.stop()

    logger.info("Discord Image Uploader stopped.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
