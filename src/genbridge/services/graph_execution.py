"""
Graph Execution Client - Submit an overridden graph to the execution endpoint.

The endpoint takes a multipart form and answers with a binary stream of
output blobs. Each blob is framed as::

    Content-Type: image/png\\r\\n\\r\\n<bytes>--BLOB_SEPARATOR--
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from genbridge.config import StudioConfig
from genbridge.core.execution import CancellationToken, guarded
from genbridge.core.graph import WorkflowGraph
from genbridge.core.images import blob_to_data_url
from genbridge.errors import BackendExecutionFailed, EmptyResult
from genbridge.providers.base import error_message


logger = logging.getLogger(__name__)

BLOB_SEPARATOR = b"--BLOB_SEPARATOR--"
HEADER_END = b"\r\n\r\n"

TIMEOUT_MESSAGE = (
    "Your workflow is taking too long to respond. "
    "The maximum allowed time is 5 minutes."
)


@dataclass
class OutputBlob:
    """One binary output produced by a graph run."""
    mime_type: str
    data: bytes

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def to_data_url(self) -> str:
        return blob_to_data_url(self.data, self.mime_type)


def _parse_part(part: bytes) -> OutputBlob | None:
    header_end = part.find(HEADER_END)
    if header_end == -1:
        return None
    header = part[:header_end].decode("utf-8", errors="replace")
    _, _, mime_type = header.partition(": ")
    return OutputBlob(mime_type=mime_type.strip(), data=part[header_end + len(HEADER_END):])


class OutputStreamParser:
    """Incremental splitter for the separator-framed output stream."""

    def __init__(self):
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[OutputBlob]:
        """Add ``chunk`` and return every blob completed by it."""
        self._buffer += chunk
        blobs = []
        while True:
            index = self._buffer.find(BLOB_SEPARATOR)
            if index == -1:
                break
            part = self._buffer[:index]
            self._buffer = self._buffer[index + len(BLOB_SEPARATOR):]
            blob = _parse_part(part)
            if blob is not None:
                blobs.append(blob)
        return blobs

    @property
    def pending(self) -> bytes:
        return self._buffer


def split_output_stream(payload: bytes) -> list[OutputBlob]:
    """Split a complete response body into blobs; a trailing partial part is dropped."""
    return OutputStreamParser().feed(payload)


class GraphExecutionClient:
    """Client for the external graph-execution endpoint."""

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        comfy_url: str | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.comfy_url = comfy_url

    @classmethod
    def from_config(cls, config: StudioConfig) -> GraphExecutionClient:
        return cls(config.execution_url, config.execution_api_key, config.comfy_url)

    def build_form(
        self,
        graph: WorkflowGraph,
        inputs: list[dict[str, Any]] | None = None,
        endpoint: str | None = None,
        text_output_enabled: bool = False,
    ) -> aiohttp.FormData:
        form = aiohttp.FormData()
        if self.api_key:
            form.add_field("apiKey", self.api_key)
        # Mapping endpoint wins over the configured engine URL
        comfy_url = endpoint or self.comfy_url
        if comfy_url:
            form.add_field("comfyUrl", comfy_url)
        form.add_field("workflow", json.dumps(graph.to_dict(), ensure_ascii=False))
        form.add_field("viewComfy", json.dumps({
            "inputs": inputs or [],
            "textOutputEnabled": text_output_enabled,
        }, ensure_ascii=False))
        form.add_field("viewcomfyEndpoint", endpoint or "")
        return form

    async def run(
        self,
        graph: WorkflowGraph,
        inputs: list[dict[str, Any]] | None = None,
        endpoint: str | None = None,
        token: CancellationToken | None = None,
    ) -> list[OutputBlob]:
        """
        Execute ``graph`` and collect its output blobs.

        Raises:
            BackendExecutionFailed: Non-success status (504 reported as a timeout)
            EmptyResult: The run produced no outputs
        """
        form = self.build_form(graph, inputs, endpoint)
        blobs = await guarded(token, self._submit(form))
        if not blobs:
            raise EmptyResult("Workflow produced no outputs")
        logger.info("Graph run returned %d output(s)", len(blobs))
        return blobs

    async def _submit(self, form: aiohttp.FormData) -> list[OutputBlob]:
        async with aiohttp.ClientSession() as session:
            async with session.post(self.url, data=form) as resp:
                if resp.status == 504:
                    raise BackendExecutionFailed(f"Workflow timed out: {TIMEOUT_MESSAGE}")
                if resp.status >= 400:
                    text = await resp.text()
                    try:
                        data: Any = json.loads(text)
                    except json.JSONDecodeError:
                        data = text
                    raise BackendExecutionFailed(
                        f"Workflow execution failed ({resp.status}): {error_message(data)}"
                    )

                parser = OutputStreamParser()
                blobs: list[OutputBlob] = []
                async for chunk in resp.content.iter_chunked(64 * 1024):
                    blobs.extend(parser.feed(chunk))
                return blobs
