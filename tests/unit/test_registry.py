"""
Tests for provider registry resolution.
"""

import pytest

from genbridge.config import ProviderConfig, StudioConfig
from genbridge.errors import MissingCredential, UnknownModel
from genbridge.providers.base import Capability, ProviderType
from genbridge.providers.gemini import GeminiProvider
from genbridge.providers.openai_compat import OpenAICompatibleProvider
from genbridge.providers.registry import BUILTIN_DESCRIPTORS, ProviderRegistry
from genbridge.providers.signed_hosted import SignedHostedProvider


@pytest.fixture
def config():
    return StudioConfig(providers={
        "doubao": ProviderConfig(api_key="doubao-key"),
        "deepseek": ProviderConfig(api_key="deepseek-key"),
        "google": ProviderConfig(api_key="google-key"),
    })


class TestCatalog:
    """Tests for descriptor lookup."""

    def test_builtin_descriptors(self):
        registry = ProviderRegistry()
        ids = {d.id for d in registry.list_descriptors()}
        assert ids == set(BUILTIN_DESCRIPTORS)

    def test_filter_by_capability(self):
        registry = ProviderRegistry()
        image_models = {d.id for d in registry.list_descriptors(Capability.IMAGE)}
        assert "gemini-3-pro-image-preview" in image_models
        assert "seed4_lemo1230" in image_models
        assert "deepseek-chat" not in image_models

    def test_family_fallback_descriptor(self):
        descriptor = ProviderRegistry().resolve_descriptor("gemini-2.5-flash-image")
        assert descriptor.id == "gemini-2.5-flash-image"
        assert descriptor.provider_type is ProviderType.MULTIMODAL_NATIVE
        assert descriptor.default_config.model_id == "gemini-2.5-flash-image"


class TestResolve:
    """Tests for ProviderRegistry.resolve."""

    def test_exact_match(self, config):
        provider = ProviderRegistry(config).resolve("deepseek-chat")
        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider.model_id == "deepseek-chat"
        assert provider.api_key == "deepseek-key"
        assert provider.base_url == "https://api.deepseek.com"

    def test_doubao_family_fallback(self, config):
        provider = ProviderRegistry(config).resolve("doubao-unknown-variant-2024")
        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider.model_id == "doubao-unknown-variant-2024"
        assert provider.api_key == "doubao-key"

    def test_family_model_override_only_for_exact_match(self):
        config = StudioConfig(providers={
            "doubao": ProviderConfig(api_key="k", model_id="doubao-seed-1-6-flash"),
        })
        registry = ProviderRegistry(config)
        assert registry.resolve("doubao-seed-1-6-251015").model_id == "doubao-seed-1-6-flash"
        assert registry.resolve("doubao-other").model_id == "doubao-other"

    def test_unknown_model(self, config):
        with pytest.raises(UnknownModel):
            ProviderRegistry(config).resolve("totally-unknown")

    def test_missing_api_key(self):
        with pytest.raises(MissingCredential):
            ProviderRegistry(StudioConfig()).resolve("deepseek-chat")

    def test_missing_api_key_on_fallback(self):
        with pytest.raises(MissingCredential):
            ProviderRegistry(StudioConfig()).resolve("gemini-2.5-flash")

    def test_disabled_family(self, config):
        config.set_provider("google", ProviderConfig(api_key="google-key", enabled=False))
        with pytest.raises(MissingCredential):
            ProviderRegistry(config).resolve("gemini-3-pro-image-preview")

    def test_signed_hosted_needs_no_api_key(self):
        provider = ProviderRegistry(StudioConfig()).resolve("seed4_lemo1230")
        assert isinstance(provider, SignedHostedProvider)
        assert provider.supports(Capability.IMAGE)
        assert not provider.supports(Capability.TEXT)

    def test_capabilities_narrowed_by_descriptor(self, config):
        provider = ProviderRegistry(config).resolve("gemini-1.5-flash")
        assert isinstance(provider, GeminiProvider)
        assert provider.supports(Capability.VISION)
        assert not provider.supports(Capability.IMAGE)

    def test_base_url_override(self):
        config = StudioConfig(providers={
            "deepseek": ProviderConfig(api_key="k", base_url="http://proxy.local/v1"),
        })
        provider = ProviderRegistry(config).resolve("deepseek-chat")
        assert provider.base_url == "http://proxy.local/v1"
