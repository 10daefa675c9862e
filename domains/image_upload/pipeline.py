"""
Wiring and lifecycle for the image upload pipeline.

Builds the delivery client, history, watcher and uploader from settings,
sharing one shutdown signal, and starts/stops them in dependency order.
"""

import threading
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from app.utils.config import Settings
from domains.image_upload.delivery import Delivery
from domains.image_upload.delivery.discord_client import DiscordClient
from domains.image_upload.exceptions import StartupError, UploaderError
from domains.image_upload.history import UploadHistory
from domains.image_upload.retry import RetryPolicy
from domains.image_upload.uploader import Uploader
from domains.image_upload.watcher import WatchEngine


@dataclass
class Pipeline:
    """A running (or runnable) watcher -> uploader -> Discord pipeline."""

    settings: Settings
    delivery: Delivery
    history: UploadHistory
    watcher: WatchEngine
    uploader: Uploader
    shutdown: threading.Event = field(default_factory=threading.Event)
    running: bool = False

    def start(self):
        """
        Start watching and uploading.

        Raises:
            StartupError: If the folder cannot be watched or the initial scan fails
        """
        try:
            self.watcher.start()
            self.uploader.start()
        except UploaderError as e:
            self.watcher.stop()
            self.delivery.close()
            if isinstance(e, StartupError):
                raise
            raise StartupError(str(e)) from e
        self.running = True
        logger.success("Image uploader pipeline is running")

    def stop(self):
        """Stop the uploader (final flush included), then the watcher and transport."""
        logger.info("Shutting down pipeline...")
        self.uploader.stop()
        self.watcher.stop()
        self.delivery.close()
        self.running = False
        logger.success("Pipeline shut down complete")


def build_pipeline(
    settings: Settings,
    delivery: Optional[Delivery] = None,
    retry_policy: Optional[RetryPolicy] = None,
    test_connection: bool = True,
) -> Pipeline:
    """
    Assemble a pipeline from settings.

    Args:
        settings: Loaded settings
        delivery: Transport to use; a DiscordClient from settings by default
        retry_policy: Policy for failed batches; retry forever by default
        test_connection: Check the destination before anything else

    Returns:
        Pipeline ready to start()

    Raises:
        StartupError: If the destination, history file or watch path is unusable
    """
    delivery = delivery or DiscordClient.from_settings(settings.discord)

    try:
        if test_connection:
            delivery.test_connection()

        history = UploadHistory(settings.history.file_path)

        shutdown = threading.Event()
        watcher = WatchEngine(
            settings.watcher.folder_path,
            settings.watcher.supported_formats,
            settings.watcher.delete_after_upload,
            recursive=settings.watcher.recursive,
            shutdown=shutdown,
        )
    except UploaderError as e:
        delivery.close()
        raise StartupError(str(e)) from e

    uploader = Uploader.from_settings(
        settings,
        delivery,
        watcher,
        history,
        retry_policy=retry_policy,
        shutdown=shutdown,
    )

    return Pipeline(
        settings=settings,
        delivery=delivery,
        history=history,
        watcher=watcher,
        uploader=uploader,
        shutdown=shutdown,
    )
