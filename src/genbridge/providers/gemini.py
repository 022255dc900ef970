"""
Google Gemini Provider - Text, vision, and image models via REST.

Supports:
- Text generation and image description via :generateContent
- Gemini 3 Pro Image: text-to-image and multi-reference editing

API References:
- https://ai.google.dev/gemini-api/docs/text-generation
- https://ai.google.dev/gemini-api/docs/image-generation
"""

from __future__ import annotations

from typing import Any

from genbridge.core.execution import CancellationToken
from genbridge.core.images import is_data_url, split_data_url
from genbridge.errors import (
    AuthenticationError,
    BackendExecutionFailed,
    EmptyResult,
    RateLimitError,
)
from genbridge.providers.base import (
    Capability,
    ImageGenerationInput,
    ImageResult,
    Provider,
    ProviderType,
    TextGenerationInput,
    TextResult,
    VisionGenerationInput,
    error_message,
)


# Image output is only produced by this model, whatever id the instance was resolved for
IMAGE_MODEL_ID = "gemini-3-pro-image-preview"


def _image_part(image: str) -> dict[str, Any]:
    """http(s) URLs are passed by reference; anything else is sent inline."""
    if is_data_url(image) or not image.startswith("http"):
        mime_type, payload = split_data_url(image)
        return {"inlineData": {"mimeType": mime_type, "data": payload}}
    return {"fileData": {"mimeType": "image/png", "fileUri": image}}


class GeminiProvider(Provider):
    """
    Google Gemini provider.

    One instance covers text, vision and image generation. Image requests
    always go to the image-capable model.
    """

    provider_type = ProviderType.MULTIMODAL_NATIVE
    capabilities = frozenset({Capability.TEXT, Capability.VISION, Capability.IMAGE})
    name = "Google Gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta"

    def _url(self, model_id: str) -> str:
        return f"{self.base_url.rstrip('/')}/models/{model_id}:generateContent"

    def get_headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    # --- Text ---

    async def generate_text(
        self,
        params: TextGenerationInput,
        token: CancellationToken | None = None,
    ) -> TextResult:
        parts = []
        if params.system_prompt:
            parts.append({"text": params.system_prompt})
        parts.append({"text": params.input})

        body: dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        generation_config = self._sampling_config(params.options)
        if generation_config:
            body["generationConfig"] = generation_config

        response = await self._post(self._url(self.model_id), body, token=token)
        return TextResult(text=self.parse_text(response))

    # --- Vision ---

    async def describe_image(
        self,
        params: VisionGenerationInput,
        token: CancellationToken | None = None,
    ) -> TextResult:
        parts: list[dict[str, Any]] = [_image_part(params.image)]
        if params.system_prompt:
            parts.append({"text": params.system_prompt})
        if params.prompt:
            parts.append({"text": params.prompt})

        body: dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        generation_config = self._sampling_config(params.options)
        if generation_config:
            body["generationConfig"] = generation_config

        response = await self._post(self._url(self.model_id), body, token=token)
        return TextResult(text=self.parse_text(response))

    # --- Image ---

    def build_image_body(self, params: ImageGenerationInput) -> dict[str, Any]:
        """Reference images (original first) precede the instruction text."""
        parts: list[dict[str, Any]] = []
        for image in params.images:
            parts.append(_image_part(image))
        parts.append({"text": params.prompt})

        generation_config: dict[str, Any] = {"responseModalities": ["IMAGE"]}
        image_config: dict[str, Any] = {}
        if params.aspect_ratio:
            image_config["aspectRatio"] = params.aspect_ratio
        if params.image_size:
            image_config["imageSize"] = params.image_size
        if image_config:
            generation_config["imageConfig"] = image_config

        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }

    async def generate_image(
        self,
        params: ImageGenerationInput,
        token: CancellationToken | None = None,
    ) -> ImageResult:
        response = await self._post(
            self._url(IMAGE_MODEL_ID), self.build_image_body(params), token=token
        )
        return self.parse_image(response)

    # --- Parsing ---

    def parse_text(self, data: dict[str, Any]) -> str:
        texts = [
            part["text"]
            for part in self._parts(data)
            if isinstance(part.get("text"), str)
        ]
        if not texts:
            raise EmptyResult(f"{self.model_id} returned no text")
        return "".join(texts)

    def parse_image(self, data: dict[str, Any]) -> ImageResult:
        images = []
        for part in self._parts(data):
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                mime_type = inline.get("mimeType") or "image/png"
                images.append(f"data:{mime_type};base64,{inline['data']}")
        if not images:
            raise EmptyResult("No image data returned from Google Gemini")
        return ImageResult(images=images)

    @staticmethod
    def _parts(data: dict[str, Any]) -> list[dict[str, Any]]:
        parts = []
        for candidate in data.get("candidates") or []:
            parts.extend((candidate.get("content") or {}).get("parts") or [])
        return parts

    @staticmethod
    def _sampling_config(options) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if options.temperature is not None:
            config["temperature"] = options.temperature
        if options.max_tokens is not None:
            config["maxOutputTokens"] = options.max_tokens
        if options.top_p is not None:
            config["topP"] = options.top_p
        return config

    def _check_error(self, status: int, data: dict[str, Any]) -> None:
        """Check for API errors."""
        if status == 401 or status == 403:
            raise AuthenticationError("Invalid Google API key")
        elif status == 429:
            error = RateLimitError("Google API rate limit exceeded")
            error.retry_after = 60
            raise error
        elif status >= 400:
            raise BackendExecutionFailed(f"Google API error: {error_message(data)}")
