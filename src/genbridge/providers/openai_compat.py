"""
OpenAI-Compatible Provider - Chat completions for text generation.

Used for every backend that speaks the ``/chat/completions`` dialect
(Doubao on Volcengine Ark, DeepSeek, ...). Text only.

API Reference: https://platform.openai.com/docs/api-reference/chat
"""

from __future__ import annotations

from typing import Any

from genbridge.core.execution import CancellationToken
from genbridge.errors import EmptyResult
from genbridge.providers.base import (
    Capability,
    Provider,
    ProviderType,
    TextGenerationInput,
    TextResult,
)


class OpenAICompatibleProvider(Provider):
    """Text generation over an OpenAI-compatible chat completions endpoint."""

    provider_type = ProviderType.OPENAI_COMPATIBLE
    capabilities = frozenset({Capability.TEXT})
    name = "OpenAI-compatible"
    base_url = "https://api.openai.com/v1"

    def build_body(self, params: TextGenerationInput) -> dict[str, Any]:
        messages = []
        if params.system_prompt:
            messages.append({"role": "system", "content": params.system_prompt})
        messages.append({"role": "user", "content": params.input})

        body: dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "stream": False,
        }
        options = params.options
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        if options.top_p is not None:
            body["top_p"] = options.top_p
        return body

    async def generate_text(
        self,
        params: TextGenerationInput,
        token: CancellationToken | None = None,
    ) -> TextResult:
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        response = await self._post(url, self.build_body(params), token=token)
        return TextResult(text=self.parse_response(response))

    def parse_response(self, data: dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            raise EmptyResult(f"{self.model_id} returned no choices")
        message = choices[0].get("message") or {}
        return message.get("content") or ""
