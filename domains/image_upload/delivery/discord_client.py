"""
Discord delivery over the HTTP API.

Supports two modes:
- Webhook: multipart POST to the webhook URL
- Bot: multipart POST to /channels/{id}/messages with a bot token
"""

import mimetypes
import os
from contextlib import ExitStack
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from loguru import logger

from app.utils.config import DiscordSettings
from domains.image_upload.exceptions import DeliveryError

DISCORD_API_BASE = "https://discord.com/api/v10"


class DiscordClient:
    """Uploads image files to a Discord channel."""

    def __init__(
        self,
        webhook_url: str = "",
        token: str = "",
        channel_id: str = "",
        test_message: str = "Test connection from Discord Image Uploader",
        send_test_message: bool = False,
        api_base: str = DISCORD_API_BASE,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize Discord client.

        Args:
            webhook_url: Webhook URL; takes precedence over the bot token
            token: Bot token
            channel_id: Target channel for bot mode
            test_message: Content posted by test_connection() in webhook mode
            send_test_message: Whether webhook test_connection() posts at all
            api_base: Discord REST API root
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        if not webhook_url and not (token and channel_id):
            raise ValueError("either a webhook URL or a bot token and channel ID is required")

        self.webhook_url = webhook_url
        self.channel_id = channel_id
        self.test_message = test_message
        self.send_test_message = send_test_message
        self.api_base = api_base.rstrip("/")

        headers = {"User-Agent": "DiscordImageUploader (https://discord.com, 1.0)"}
        if not webhook_url:
            headers["Authorization"] = f"Bot {token}"

        self._http = httpx.Client(timeout=timeout, headers=headers, transport=transport)

    @classmethod
    def from_settings(cls, settings: DiscordSettings, **kwargs) -> "DiscordClient":
        return cls(
            webhook_url=settings.webhook_url,
            token=settings.token,
            channel_id=settings.channel_id,
            test_message=settings.test_message,
            send_test_message=settings.send_test_message,
            **kwargs,
        )

    @property
    def mode(self) -> str:
        return "webhook" if self.webhook_url else "bot"

    def close(self):
        self._http.close()

    # Delivery --------------------------------------------------------------------

    def deliver_one(self, path: str) -> str:
        """
        Upload a single image.

        Returns:
            Attachment URL, or "" if Discord did not return one

        Raises:
            DeliveryError: If the file cannot be read or Discord rejects it
        """
        references = self._send([path])
        logger.success(f"Successfully uploaded: {os.path.basename(path)}")
        return references.get(path, "")

    def deliver_batch(self, paths: Sequence[str]) -> Dict[str, str]:
        """
        Upload several images in one message.

        Files that cannot be opened are skipped with a warning.

        Returns:
            Attachment URLs keyed by path

        Raises:
            DeliveryError: If no file could be opened or Discord rejects the message
        """
        references = self._send(list(paths))
        logger.success(f"Successfully uploaded batch of {len(references) or len(paths)} files")
        return references

    def test_connection(self):
        """
        Verify the destination is reachable.

        Raises:
            DeliveryError: If Discord is unreachable or rejects the request
        """
        if self.webhook_url:
            if not self.send_test_message:
                logger.info("Skipping webhook test message")
                return
            response = self._request("POST", self.webhook_url, json={"content": self.test_message})
            self._check(response, "webhook test")
            logger.success("Successfully tested webhook connection")
            return

        response = self._request("GET", f"{self.api_base}/channels/{self.channel_id}")
        self._check(response, f"access channel {self.channel_id}")
        logger.success(f"Successfully connected to Discord channel: {self.channel_id}")

    # Internals -------------------------------------------------------------------

    def _send(self, paths: List[str]) -> Dict[str, str]:
        with ExitStack() as stack:
            sent: List[str] = []
            files: List[Tuple[str, Tuple[str, Any, str]]] = []

            for path in paths:
                try:
                    handle = stack.enter_context(open(path, "rb"))
                except OSError as e:
                    logger.warning(f"Failed to open file {path}: {e}")
                    continue

                name = os.path.basename(path)
                content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
                files.append((f"files[{len(sent)}]", (name, handle, content_type)))
                sent.append(path)

            if not files:
                raise DeliveryError("no valid files to upload")

            if self.webhook_url:
                response = self._request("POST", self.webhook_url, params={"wait": "true"}, files=files)
            else:
                response = self._request(
                    "POST", f"{self.api_base}/channels/{self.channel_id}/messages", files=files
                )

        self._check(response, f"upload of {len(sent)} file(s)")
        return self._attachment_urls(response, sent)

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise DeliveryError(f"request to Discord failed: {e}") from e

    @staticmethod
    def _check(response: httpx.Response, action: str):
        if response.status_code not in (200, 201, 204):
            raise DeliveryError(f"{action} returned status {response.status_code}: {response.text[:200]}")

    @staticmethod
    def _attachment_urls(response: httpx.Response, sent: List[str]) -> Dict[str, str]:
        """Pair returned attachments with the uploaded paths, in upload order."""
        if response.status_code == 204 or not response.content:
            return {}

        try:
            message = response.json()
        except ValueError:
            return {}

        if not isinstance(message, dict):
            return {}

        attachments = message.get("attachments") or []
        return {
            path: attachment.get("url", "")
            for path, attachment in zip(sent, attachments)
            if isinstance(attachment, dict)
        }
