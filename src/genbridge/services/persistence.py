"""
Persistence Clients - Image store and history log collaborators.

Both are best-effort from the orchestrator's point of view: it logs and
swallows their failures. The clients themselves raise so callers can
decide.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import aiohttp

from genbridge.config import StudioConfig
from genbridge.core.images import is_data_url, mime_to_extension, split_data_url
from genbridge.errors import BackendExecutionFailed
from genbridge.providers.base import error_message, read_json


logger = logging.getLogger(__name__)


async def _post_json(url: str, body: dict[str, Any]) -> dict[str, Any]:
    async with aiohttp.ClientSession() as session:
        async with session.post(url, json=body) as resp:
            data = await read_json(resp)
            if resp.status >= 400:
                raise BackendExecutionFailed(
                    f"{url} answered {resp.status}: {error_message(data)}"
                )
            return data


class ImageStoreClient:
    """Turns a data URL into a stable path on the image store."""

    def __init__(self, url: str, subdir: str = "outputs"):
        self.url = url
        self.subdir = subdir

    @classmethod
    def from_config(cls, config: StudioConfig) -> ImageStoreClient:
        return cls(config.image_store_url)

    async def save(self, data_url: str, metadata: dict[str, Any] | None = None) -> str:
        """
        Upload ``data_url`` and return the stored path.

        Falls back to ``data_url`` itself when the store answers without a
        path. Non-data URLs are already durable and returned unchanged.
        """
        if not is_data_url(data_url):
            return data_url

        mime_type, _ = split_data_url(data_url)
        ext = mime_to_extension(mime_type).lstrip(".")
        if ext not in ("png", "jpg", "jpeg"):
            ext = "png"
        body: dict[str, Any] = {
            "imageBase64": data_url,
            "ext": ext,
            "subdir": self.subdir,
        }
        if metadata:
            body["metadata"] = metadata

        data = await _post_json(self.url, body)
        path = data.get("path")
        if not path:
            logger.warning("Image store returned no path; keeping data URL")
            return data_url
        return str(path)


class HistoryClient:
    """Appends generated images to the external history log."""

    def __init__(self, url: str):
        self.url = url

    @classmethod
    def from_config(cls, config: StudioConfig) -> HistoryClient:
        return cls(config.history_url)

    async def append(self, image_url: str, prompt: str, timestamp: str | None = None) -> None:
        await _post_json(self.url, {
            "imageUrl": image_url,
            "prompt": prompt,
            "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
        })
