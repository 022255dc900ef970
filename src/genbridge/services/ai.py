"""
AI Service - Text, vision and image calls routed through the registry.

Adds system-prompt profiles on top of the raw adapters, picks default
models from the configuration, and runs the sequential batch loops
(captioning, prompt optimization) under one shared cancellation token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from genbridge.config import StudioConfig
from genbridge.core.execution import BatchResult, CancellationToken, run_batch
from genbridge.providers.base import (
    Capability,
    GenerationOptions,
    ImageGenerationInput,
    ImageResult,
    Provider,
    TextGenerationInput,
    TextResult,
    VisionGenerationInput,
)
from genbridge.providers.registry import ProviderRegistry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SystemPromptProfile:
    default_prompt: str
    per_provider_override: dict[str, str] = field(default_factory=dict)


SYSTEM_PROMPT_PROFILES: dict[str, SystemPromptProfile] = {
    "optimization": SystemPromptProfile(
        "You are a prompt writer for text-to-image models. Rewrite the user's "
        "idea as one vivid, concrete image prompt: name the subject, list "
        "specific objects instead of vague categories, and describe "
        "composition, lighting, color palette and style. Keep it under 500 "
        "characters, avoid technical generation parameters, and never produce "
        "violent or explicit content. Output only the prompt."
    ),
    "optimization-with-image": SystemPromptProfile(
        "You are an expert prompt engineer. Based on the provided image and "
        "the user's initial prompt, generate an optimized text prompt that "
        "describes the image features while incorporating the user's intent. "
        "The output should be ready for an image generation model. Output "
        "ONLY the optimized prompt."
    ),
    "describe-short": SystemPromptProfile(
        "Describe this image concisely. Focus on the main subject and key elements."
    ),
    "describe-detailed": SystemPromptProfile(
        "Describe this image in detail. Include information about the subject, "
        "lighting, colors, composition, style, and mood.",
        per_provider_override={
            "doubao": "请详细描述这张图片的内容，包括主体、光影、色彩、构图、风格和氛围。",
        },
    ),
}


def get_system_prompt(profile_id: str, provider_id: str) -> str:
    """Profile prompt for ``provider_id``; empty for unknown profiles."""
    profile = SYSTEM_PROMPT_PROFILES.get(profile_id)
    if profile is None:
        return ""
    return profile.per_provider_override.get(provider_id, profile.default_prompt)


class AIService:
    """Capability-checked access to text, vision and image providers."""

    def __init__(self, registry: ProviderRegistry, config: StudioConfig | None = None):
        self.registry = registry
        self.config = config or registry.config

    def _provider(self, model: str, capability: Capability) -> Provider:
        provider = self.registry.resolve(model)
        provider.require(capability)
        return provider

    @staticmethod
    def _system_prompt(
        provider: Provider,
        profile_id: str | None,
        system_prompt: str | None,
    ) -> str | None:
        # explicit > profile > none
        if system_prompt:
            return system_prompt
        if profile_id:
            return get_system_prompt(profile_id, provider.config.provider_id) or None
        return None

    async def generate_text(
        self,
        input: str,
        model: str | None = None,
        profile_id: str | None = None,
        system_prompt: str | None = None,
        options: GenerationOptions | None = None,
        token: CancellationToken | None = None,
    ) -> TextResult:
        if not input:
            raise ValueError("Missing input text")
        provider = self._provider(model or self.config.preferred_models["text"], Capability.TEXT)
        params = TextGenerationInput(
            input=input,
            system_prompt=self._system_prompt(provider, profile_id, system_prompt),
            options=options or GenerationOptions(),
        )
        return await provider.generate_text(params, token=token)

    async def describe_image(
        self,
        image: str,
        model: str | None = None,
        prompt: str | None = None,
        profile_id: str | None = None,
        system_prompt: str | None = None,
        options: GenerationOptions | None = None,
        token: CancellationToken | None = None,
    ) -> TextResult:
        provider = self._provider(model or self.config.preferred_models["vision"], Capability.VISION)
        params = VisionGenerationInput(
            image=image,
            prompt=prompt,
            system_prompt=self._system_prompt(provider, profile_id, system_prompt),
            options=options or GenerationOptions(),
        )
        return await provider.describe_image(params, token=token)

    async def generate_image(
        self,
        model: str,
        params: ImageGenerationInput,
        token: CancellationToken | None = None,
    ) -> ImageResult:
        provider = self._provider(model, Capability.IMAGE)
        return await provider.generate_image(params, token=token)

    # --- Batch loops ---

    async def caption_batch(
        self,
        images: list[str],
        token: CancellationToken,
        model: str | None = None,
        profile_id: str = "describe-short",
        on_progress: Callable[[int, int], None] | None = None,
    ) -> BatchResult[str]:
        """Caption ``images`` one by one; stops early when ``token`` is cancelled."""

        async def caption(image: str, tok: CancellationToken) -> str:
            result = await self.describe_image(image, model=model, profile_id=profile_id, token=tok)
            return result.text.strip()

        return await run_batch(images, caption, token, on_progress=on_progress)

    async def optimize_prompts(
        self,
        prompts: list[str],
        token: CancellationToken,
        model: str | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> BatchResult[str]:
        """Rewrite each prompt with the optimization profile."""
        chosen = model or self.config.preferred_models.get("optimize") or self.config.preferred_models["text"]

        async def optimize(prompt: str, tok: CancellationToken) -> str:
            result = await self.generate_text(
                prompt, model=chosen, profile_id="optimization", token=tok
            )
            return result.text.strip()

        return await run_batch(prompts, optimize, token, on_progress=on_progress)
