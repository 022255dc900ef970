"""
Provider Registry - Static catalog of backends and model id resolution.

This module manages:
- Built-in provider descriptors (capabilities, endpoint, credential shape)
- Family fallbacks for model ids that have no catalog entry
- Resolution of a model id to a configured provider instance
"""

from __future__ import annotations

import logging
from dataclasses import replace

from genbridge.config import StudioConfig
from genbridge.errors import MissingCredential, UnknownModel
from genbridge.providers.base import (
    Capability,
    ModelConfig,
    Provider,
    ProviderDescriptor,
    ProviderType,
)
from genbridge.providers.gemini import GeminiProvider
from genbridge.providers.openai_compat import OpenAICompatibleProvider
from genbridge.providers.signed_hosted import SignedHostedProvider


logger = logging.getLogger(__name__)


# ============================================================================
# Built-in descriptors
# ============================================================================

_TEXT = frozenset({Capability.TEXT})
_TEXT_VISION = frozenset({Capability.TEXT, Capability.VISION})
_ALL = frozenset({Capability.TEXT, Capability.VISION, Capability.IMAGE})
_IMAGE = frozenset({Capability.IMAGE})

BUILTIN_DESCRIPTORS: dict[str, ProviderDescriptor] = {
    d.id: d
    for d in (
        # ---------------------------------------------------------------------
        # OpenAI-compatible chat models
        # ---------------------------------------------------------------------
        ProviderDescriptor(
            id="doubao-seed-1-6-251015",
            provider_type=ProviderType.OPENAI_COMPATIBLE,
            capabilities=_TEXT,
            default_config=ModelConfig(
                provider_id="doubao",
                model_id="doubao-seed-1-6-251015",
                base_url="https://ark.cn-beijing.volces.com/api/v3",
            ),
            label="Doubao Seed 1.6",
        ),
        ProviderDescriptor(
            id="deepseek-chat",
            provider_type=ProviderType.OPENAI_COMPATIBLE,
            capabilities=_TEXT,
            default_config=ModelConfig(
                provider_id="deepseek",
                model_id="deepseek-chat",
                base_url="https://api.deepseek.com",
            ),
            label="DeepSeek Chat",
        ),
        # ---------------------------------------------------------------------
        # Google Gemini (native multimodal)
        # ---------------------------------------------------------------------
        ProviderDescriptor(
            id="gemini-3-pro-image-preview",
            provider_type=ProviderType.MULTIMODAL_NATIVE,
            capabilities=_ALL,
            default_config=ModelConfig(
                provider_id="google",
                model_id="gemini-3-pro-image-preview",
            ),
            label="Nano banana",
        ),
        ProviderDescriptor(
            id="gemini-1.5-flash",
            provider_type=ProviderType.MULTIMODAL_NATIVE,
            capabilities=_TEXT_VISION,
            default_config=ModelConfig(
                provider_id="google",
                model_id="gemini-3-pro-image-preview",
            ),
            label="Gemini Flash",
        ),
        # ---------------------------------------------------------------------
        # Signed hosted algorithms
        # ---------------------------------------------------------------------
        ProviderDescriptor(
            id="seed4_lemo1230",
            provider_type=ProviderType.SIGNED_HOSTED,
            capabilities=_IMAGE,
            default_config=ModelConfig(provider_id="bytedance", model_id="seed4_lemo1230"),
            label="Seed 4.0",
        ),
        ProviderDescriptor(
            id="lemo_2dillustator",
            provider_type=ProviderType.SIGNED_HOSTED,
            capabilities=_IMAGE,
            default_config=ModelConfig(provider_id="bytedance", model_id="lemo_2dillustator"),
            label="Lemo 2D Illustrator",
        ),
    )
}

# Model id prefix -> descriptor reused for unlisted variants of that family
FAMILY_FALLBACKS: dict[str, str] = {
    "doubao-": "doubao-seed-1-6-251015",
    "gemini-": "gemini-3-pro-image-preview",
}

PROVIDER_CLASSES: dict[ProviderType, type[Provider]] = {
    ProviderType.OPENAI_COMPATIBLE: OpenAICompatibleProvider,
    ProviderType.MULTIMODAL_NATIVE: GeminiProvider,
    ProviderType.SIGNED_HOSTED: SignedHostedProvider,
}


class ProviderRegistry:
    """
    Resolves model ids to configured provider instances.

    Credentials and endpoint overrides come from the StudioConfig handed
    in at construction; the catalog itself is immutable.
    """

    def __init__(
        self,
        config: StudioConfig | None = None,
        descriptors: dict[str, ProviderDescriptor] | None = None,
    ):
        self.config = config or StudioConfig()
        self._descriptors = dict(descriptors if descriptors is not None else BUILTIN_DESCRIPTORS)

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def list_descriptors(self, capability: Capability | None = None) -> list[ProviderDescriptor]:
        """All descriptors, optionally only those with ``capability``."""
        if capability is None:
            return list(self._descriptors.values())
        return [d for d in self._descriptors.values() if d.supports(capability)]

    def get_descriptor(self, model_id: str) -> ProviderDescriptor | None:
        return self._descriptors.get(model_id)

    def resolve_descriptor(self, model_id: str) -> ProviderDescriptor:
        """
        Exact catalog match, else the family default with ``model_id`` swapped in.

        Raises:
            UnknownModel: No entry and no family prefix matches
        """
        descriptor = self._descriptors.get(model_id)
        if descriptor is not None:
            return descriptor

        for prefix, family_id in FAMILY_FALLBACKS.items():
            if model_id.startswith(prefix) and family_id in self._descriptors:
                family = self._descriptors[family_id]
                logger.debug("Model %s resolved via %s family fallback", model_id, family_id)
                return replace(
                    family,
                    id=model_id,
                    default_config=replace(family.default_config, model_id=model_id),
                )

        raise UnknownModel(f"Model {model_id} not found in registry")

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve_config(self, descriptor: ProviderDescriptor, exact: bool = True) -> ModelConfig:
        """
        Merge the descriptor defaults with the configured family settings.

        Raises:
            MissingCredential: A key-based provider has no API key, or the
                family is disabled
        """
        defaults = descriptor.default_config
        family = self.config.provider(defaults.provider_id)
        if not family.enabled:
            raise MissingCredential(f"Provider {defaults.provider_id} is disabled")

        model_id = defaults.model_id
        if exact and family.model_id:
            model_id = family.model_id

        resolved = ModelConfig(
            provider_id=defaults.provider_id,
            model_id=model_id,
            base_url=family.base_url or defaults.base_url,
            api_key=family.api_key or defaults.api_key,
            extra={**defaults.extra, **family.extra},
        )
        if descriptor.provider_type.requires_api_key and not resolved.api_key:
            raise MissingCredential(f"API Key for {descriptor.id} is not configured")
        return resolved

    def resolve(self, model_id: str) -> Provider:
        """
        Build a provider instance for ``model_id``.

        Raises:
            UnknownModel: Registry miss with no applicable family
            MissingCredential: Required credential not configured
        """
        descriptor = self.resolve_descriptor(model_id)
        exact = model_id in self._descriptors
        config = self.resolve_config(descriptor, exact=exact)
        provider_class = PROVIDER_CLASSES[descriptor.provider_type]
        provider = provider_class(config)
        # Declared capabilities narrow the adapter's own set
        provider.capabilities = provider_class.capabilities & descriptor.capabilities
        logger.debug("Resolved %s -> %s (%s)", model_id, provider_class.__name__, config.model_id)
        return provider
