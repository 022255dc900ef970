"""
Backend Providers.

This package provides adapters for the generation backends:
- OpenAI-compatible: Doubao, DeepSeek (text)
- Google Gemini: text, image description, image generation and editing
- Signed hosted: proprietary image algorithms behind a signed endpoint

Usage:
    from genbridge.config import load_config
    from genbridge.providers import Capability, ProviderRegistry

    registry = ProviderRegistry(load_config())
    provider = registry.resolve("deepseek-chat")
    provider.require(Capability.TEXT)
"""

from genbridge.providers.base import (
    Capability,
    GenerationOptions,
    ImageGenerationInput,
    ImageResult,
    ModelConfig,
    Provider,
    ProviderDescriptor,
    ProviderType,
    TextGenerationInput,
    TextResult,
    VisionGenerationInput,
)

from genbridge.providers.registry import (
    BUILTIN_DESCRIPTORS,
    FAMILY_FALLBACKS,
    ProviderRegistry,
)

from genbridge.providers.openai_compat import OpenAICompatibleProvider
from genbridge.providers.gemini import GeminiProvider
from genbridge.providers.signed_hosted import SignedHostedProvider


__all__ = [
    # Base classes
    "Capability",
    "GenerationOptions",
    "ImageGenerationInput",
    "ImageResult",
    "ModelConfig",
    "Provider",
    "ProviderDescriptor",
    "ProviderType",
    "TextGenerationInput",
    "TextResult",
    "VisionGenerationInput",
    # Registry
    "BUILTIN_DESCRIPTORS",
    "FAMILY_FALLBACKS",
    "ProviderRegistry",
    # Providers
    "OpenAICompatibleProvider",
    "GeminiProvider",
    "SignedHostedProvider",
]
