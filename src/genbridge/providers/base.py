"""
Provider Base - Capability flags, descriptors, and the adapter base class.

This module provides the foundation for all backend adapters:
- Capability / ProviderType: what an adapter can do and how it authenticates
- ProviderDescriptor: one immutable registry entry
- ModelConfig: the resolved per-instance config (model id, endpoint, key)
- Text/Vision/ImageGenerationInput and TextResult/ImageResult
- Provider: base class with capability checks and shared HTTP helpers

Capabilities are declared as an explicit set on each adapter class and
checked before invocation; an adapter only overrides the methods for the
capabilities it declares.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import aiohttp

from genbridge.core.execution import CancellationToken, guarded
from genbridge.errors import (
    AuthenticationError,
    BackendExecutionFailed,
    RateLimitError,
    UnsupportedCapability,
)


logger = logging.getLogger(__name__)


class Capability(Enum):
    """Operations an adapter may implement."""
    TEXT = "text"
    VISION = "vision"
    IMAGE = "image"


class ProviderType(Enum):
    """Adapter family; decides credential handling."""
    OPENAI_COMPATIBLE = "openai-compatible"
    MULTIMODAL_NATIVE = "multimodal-native"
    SIGNED_HOSTED = "signed-hosted"

    @property
    def requires_api_key(self) -> bool:
        return self is not ProviderType.SIGNED_HOSTED


@dataclass(frozen=True)
class ModelConfig:
    """
    Resolved configuration for one provider instance.

    Attributes:
        provider_id: Provider family ("doubao", "deepseek", "google", "bytedance")
        model_id: Model identifier sent to the backend
        base_url: Endpoint root (OpenAI-compatible and REST adapters)
        api_key: Bearer/query credential; None for signed-hosted
        extra: Family specific settings (signed-hosted aid/app_key/app_secret)
    """
    provider_id: str
    model_id: str
    base_url: str | None = None
    api_key: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderDescriptor:
    """One entry of the static provider catalog."""
    id: str
    provider_type: ProviderType
    capabilities: frozenset[Capability]
    default_config: ModelConfig
    label: str = ""

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


# ============================================================================
# Request / result shapes
# ============================================================================

@dataclass
class GenerationOptions:
    """Sampling options forwarded to text and image backends."""
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    seed: int | None = None


@dataclass
class TextGenerationInput:
    input: str
    system_prompt: str | None = None
    options: GenerationOptions = field(default_factory=GenerationOptions)


@dataclass
class VisionGenerationInput:
    image: str  # data URL, bare base64, or URL
    prompt: str | None = None
    system_prompt: str | None = None
    options: GenerationOptions = field(default_factory=GenerationOptions)


@dataclass
class ImageGenerationInput:
    """
    Image generation request.

    ``images`` holds image refs for editing: the original first, then any
    additional references.
    """
    prompt: str
    negative_prompt: str | None = None
    images: list[str] = field(default_factory=list)
    aspect_ratio: str | None = None
    image_size: str | None = None
    width: int | None = None
    height: int | None = None
    batch_size: int | None = None
    options: GenerationOptions = field(default_factory=GenerationOptions)


@dataclass
class TextResult:
    text: str


@dataclass
class ImageResult:
    images: list[str]  # data URLs or http(s) URLs
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def first(self) -> str | None:
        return self.images[0] if self.images else None


# ============================================================================
# Provider base
# ============================================================================

def error_message(data: Any, default: str = "Unknown error") -> str:
    """Pull a human-readable message out of an error payload."""
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or default)
        if error:
            return str(error)
        for key in ("message", "msg", "algo_status_message"):
            if data.get(key):
                return str(data[key])
    elif data:
        return str(data)
    return default


async def read_json(resp: aiohttp.ClientResponse) -> dict[str, Any]:
    """Decode a response body, tolerating non-JSON error pages."""
    text = await resp.text()
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return {"error": text[:500]}
    return data if isinstance(data, dict) else {"data": data}


class Provider:
    """
    Base class for backend adapters.

    Subclasses set ``capabilities`` and override the matching methods.
    The defaults raise UnsupportedCapability so an undeclared capability
    can never silently succeed.
    """

    # Provider identification
    provider_type: ProviderType = ProviderType.OPENAI_COMPATIBLE
    capabilities: frozenset[Capability] = frozenset()
    name: str = ""
    base_url: str = ""

    def __init__(self, config: ModelConfig):
        self.config = config
        if config.base_url:
            self.base_url = config.base_url

    @property
    def model_id(self) -> str:
        return self.config.model_id

    @property
    def api_key(self) -> str:
        return self.config.api_key or ""

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        """
        Raises:
            UnsupportedCapability: If this adapter lacks ``capability``
        """
        if not self.supports(capability):
            raise UnsupportedCapability(
                f"{self.name or type(self).__name__} ({self.model_id}) "
                f"does not support {capability.value}"
            )

    # --- Capabilities ---

    async def generate_text(
        self,
        params: TextGenerationInput,
        token: CancellationToken | None = None,
    ) -> TextResult:
        self.require(Capability.TEXT)
        raise UnsupportedCapability(f"{type(self).__name__} has no text implementation")

    async def describe_image(
        self,
        params: VisionGenerationInput,
        token: CancellationToken | None = None,
    ) -> TextResult:
        self.require(Capability.VISION)
        raise UnsupportedCapability(f"{type(self).__name__} has no vision implementation")

    async def generate_image(
        self,
        params: ImageGenerationInput,
        token: CancellationToken | None = None,
    ) -> ImageResult:
        self.require(Capability.IMAGE)
        raise UnsupportedCapability(f"{type(self).__name__} has no image implementation")

    async def edit_image(
        self,
        instruction: str,
        original: str,
        references: list[str] | tuple[str, ...] = (),
        aspect_ratio: str | None = None,
        image_size: str | None = None,
        token: CancellationToken | None = None,
    ) -> ImageResult:
        """Edit ``original`` following ``instruction``, guided by ``references``."""
        return await self.generate_image(
            ImageGenerationInput(
                prompt=instruction,
                images=[original, *references],
                aspect_ratio=aspect_ratio,
                image_size=image_size,
            ),
            token=token,
        )

    # --- HTTP helpers ---

    def get_headers(self) -> dict[str, str]:
        """Get default headers for API requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str] | None = None,
        token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """POST a JSON body and return the decoded JSON response."""
        return await guarded(token, self._send_json(url, body, headers or self.get_headers()))

    async def _send_json(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=body, headers=headers) as resp:
                data = await read_json(resp)
                self._check_error(resp.status, data)
                return data

    def _check_error(self, status: int, data: dict[str, Any]) -> None:
        """Check for API errors."""
        label = self.name or type(self).__name__
        if status in (401, 403):
            raise AuthenticationError(f"{label}: invalid or rejected API key")
        elif status == 429:
            error = RateLimitError(f"{label} rate limit exceeded")
            error.retry_after = 60
            raise error
        elif status >= 400:
            raise BackendExecutionFailed(f"{label} error {status}: {error_message(data)}")
