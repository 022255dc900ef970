"""
Tests for the graph execution output stream and client.
"""

import asyncio
import base64
from unittest.mock import AsyncMock, patch

import pytest

from genbridge.config import StudioConfig
from genbridge.core.graph import WorkflowGraph
from genbridge.errors import EmptyResult
from genbridge.services.graph_execution import (
    BLOB_SEPARATOR,
    GraphExecutionClient,
    OutputBlob,
    OutputStreamParser,
    split_output_stream,
)


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-png-body"


def _frame(mime_type: str, data: bytes) -> bytes:
    return f"Content-Type: {mime_type}".encode() + b"\r\n\r\n" + data + BLOB_SEPARATOR


class TestOutputStream:
    """Tests for splitting the separator-framed stream."""

    def test_split_two_blobs(self):
        payload = _frame("image/png", PNG_BYTES) + _frame("text/plain", b"log line")
        blobs = split_output_stream(payload)

        assert blobs == [
            OutputBlob("image/png", PNG_BYTES),
            OutputBlob("text/plain", b"log line"),
        ]
        assert blobs[0].is_image
        assert not blobs[1].is_image

    def test_trailing_partial_part_is_dropped(self):
        payload = _frame("image/png", PNG_BYTES) + b"Content-Type: image/png\r\n\r\npartial"
        assert len(split_output_stream(payload)) == 1

    def test_incremental_feed_across_chunk_boundaries(self):
        payload = _frame("image/png", PNG_BYTES) + _frame("image/png", b"second")
        parser = OutputStreamParser()

        blobs = []
        for i in range(0, len(payload), 7):
            blobs.extend(parser.feed(payload[i:i + 7]))

        assert [b.data for b in blobs] == [PNG_BYTES, b"second"]
        assert parser.pending == b""

    def test_part_without_header_is_skipped(self):
        assert split_output_stream(b"garbage" + BLOB_SEPARATOR) == []

    def test_png_blob_to_data_url(self):
        url = OutputBlob("image/png", PNG_BYTES).to_data_url()
        assert url == "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()

    def test_non_image_blob_has_no_data_url(self):
        with pytest.raises(ValueError):
            OutputBlob("text/plain", b"hello").to_data_url()


class TestGraphExecutionClient:
    """Tests for GraphExecutionClient.run with the transport patched."""

    def test_from_config(self):
        config = StudioConfig(execution_url="http://exec.local/api", comfy_url="http://gpu:8188")
        client = GraphExecutionClient.from_config(config)
        assert client.url == "http://exec.local/api"
        assert client.comfy_url == "http://gpu:8188"

    def test_run_returns_blobs(self, sample_graph_dict):
        client = GraphExecutionClient("http://exec.local/api")
        blobs = [OutputBlob("image/png", PNG_BYTES)]
        with patch.object(client, "_submit", AsyncMock(return_value=blobs)):
            result = asyncio.run(client.run(WorkflowGraph.from_dict(sample_graph_dict)))
        assert result == blobs

    def test_run_without_outputs(self, sample_graph_dict):
        client = GraphExecutionClient("http://exec.local/api")
        with patch.object(client, "_submit", AsyncMock(return_value=[])):
            with pytest.raises(EmptyResult):
                asyncio.run(client.run(WorkflowGraph.from_dict(sample_graph_dict)))
