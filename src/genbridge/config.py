"""
Configuration - Explicit settings threaded through every component.

API keys and endpoint URLs live in one StudioConfig object that is built
once (from the config file, the environment, or both) and passed to the
provider registry, the service clients and the orchestrator. Nothing
below this module reads the environment.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "genbridge" / "config.json"

DEFAULT_EXECUTION_URL = "http://localhost:3000/api/comfy"
DEFAULT_IMAGE_STORE_URL = "http://localhost:3000/api/save-image"
DEFAULT_HISTORY_URL = "http://localhost:3000/api/history"


@dataclass
class ProviderConfig:
    """Configuration for one provider family."""
    api_key: str = ""
    enabled: bool = True
    base_url: str | None = None  # Override default URL
    model_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_key": self.api_key,
            "enabled": self.enabled,
            "base_url": self.base_url,
            "model_id": self.model_id,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProviderConfig:
        return cls(
            api_key=data.get("api_key", "") or "",
            enabled=data.get("enabled", True),
            base_url=data.get("base_url"),
            model_id=data.get("model_id"),
            extra=dict(data.get("extra") or {}),
        )


def _default_preferred_models() -> dict[str, str]:
    return {
        "text": "deepseek-chat",
        "vision": "gemini-3-pro-image-preview",
        "optimize": "deepseek-chat",
    }


@dataclass
class StudioConfig:
    """
    Complete runtime configuration.

    Attributes:
        providers: Provider family id -> ProviderConfig
            ("doubao", "deepseek", "google", "bytedance")
        execution_url: Graph-execution endpoint
        execution_api_key: Optional key forwarded to the execution endpoint
        comfy_url: Optional engine URL forwarded with each graph run
        image_store_url / history_url: Persistence collaborators
        preferred_models: Default model ids per task ("text", "vision", "optimize")
        randomize_seeds: Re-roll unbound seed inputs on every graph submission
    """
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    execution_url: str = DEFAULT_EXECUTION_URL
    execution_api_key: str | None = None
    comfy_url: str | None = None
    image_store_url: str = DEFAULT_IMAGE_STORE_URL
    history_url: str = DEFAULT_HISTORY_URL
    preferred_models: dict[str, str] = field(default_factory=_default_preferred_models)
    randomize_seeds: bool = False

    def provider(self, family: str) -> ProviderConfig:
        """Config for ``family``; an empty (credential-less) one if unset."""
        return self.providers.get(family, ProviderConfig())

    def set_provider(self, family: str, config: ProviderConfig) -> None:
        self.providers[family] = config

    def to_dict(self) -> dict[str, Any]:
        return {
            "providers": {pid: cfg.to_dict() for pid, cfg in self.providers.items()},
            "execution_url": self.execution_url,
            "execution_api_key": self.execution_api_key,
            "comfy_url": self.comfy_url,
            "image_store_url": self.image_store_url,
            "history_url": self.history_url,
            "preferred_models": dict(self.preferred_models),
            "randomize_seeds": self.randomize_seeds,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StudioConfig:
        preferred = _default_preferred_models()
        preferred.update(data.get("preferred_models") or {})
        return cls(
            providers={
                pid: ProviderConfig.from_dict(cfg)
                for pid, cfg in (data.get("providers") or {}).items()
            },
            execution_url=data.get("execution_url") or DEFAULT_EXECUTION_URL,
            execution_api_key=data.get("execution_api_key"),
            comfy_url=data.get("comfy_url"),
            image_store_url=data.get("image_store_url") or DEFAULT_IMAGE_STORE_URL,
            history_url=data.get("history_url") or DEFAULT_HISTORY_URL,
            preferred_models=preferred,
            randomize_seeds=bool(data.get("randomize_seeds", False)),
        )

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        base: StudioConfig | None = None,
    ) -> StudioConfig:
        """
        Overlay credentials from environment variables onto ``base``.

        Only variables that are set replace values; everything else is
        taken from ``base`` (or the defaults).
        """
        env = os.environ if environ is None else environ
        config = StudioConfig.from_dict(base.to_dict()) if base else cls()

        def overlay(family: str, **values: Any) -> None:
            values = {k: v for k, v in values.items() if v}
            if not values:
                return
            current = config.provider(family)
            extra = dict(current.extra)
            extra.update(values.pop("extra", {}))
            config.providers[family] = ProviderConfig(
                api_key=values.get("api_key", current.api_key),
                enabled=current.enabled,
                base_url=current.base_url,
                model_id=values.get("model_id", current.model_id),
                extra=extra,
            )

        overlay("doubao", api_key=env.get("DOUBAO_API_KEY"), model_id=env.get("DOUBAO_MODEL"))
        overlay("deepseek", api_key=env.get("DEEPSEEK_API_KEY"))
        overlay("google", api_key=env.get("GOOGLE_GENAI_API_KEY") or env.get("GOOGLE_API_KEY"))

        signed = {
            key: env[var]
            for key, var in (
                ("aid", "BYTEDANCE_AID"),
                ("app_key", "BYTEDANCE_APP_KEY"),
                ("app_secret", "BYTEDANCE_APP_SECRET"),
            )
            if env.get(var)
        }
        if signed:
            overlay("bytedance", extra=signed)

        if env.get("COMFYUI_API_URL"):
            config.comfy_url = env["COMFYUI_API_URL"]
        return config


def load_config(path: Path | None = None) -> StudioConfig:
    """
    Load configuration from ``path`` (default ~/.config/genbridge/config.json).

    A missing file yields defaults; an unreadable one is logged and also
    yields defaults.
    """
    path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not path.exists():
        return StudioConfig()

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("top-level value must be an object")
        return StudioConfig.from_dict(data)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load config %s: %s", path, e)
        return StudioConfig()


def save_config(config: StudioConfig, path: Path | None = None) -> Path:
    """Save configuration to ``path``, creating the directory."""
    path = Path(path) if path else DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
    return path
