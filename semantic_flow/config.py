"""Configuration for the semantic_flow service and its AI connectors.

Three layers are consulted for every key, highest precedence first:

  1. settings override   a mapping (or object with ``.get``) installed by the
                          host via ``EnvLoader.set_settings``; an ``aiPrompts``
                          entry inside it overrides individual prompt templates
  2. environment         ``os.environ`` after loading the first ``.env`` found
  3. bundled defaults    ``data/ai_prompts.json`` shipped with the package

and finally the caller's hardcoded fallback.

ServerSettings covers the process-level knobs (which connector, CORS, package
info cache) and is read through pydantic-settings. ConnectorConfig is the
immutable per-call view a connector works from.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("semantic_flow.config")

DEFAULT_MAX_FLOW_CONTEXT_CHARS: int = 18000
DEFAULT_AZURE_API_VERSION: str = "2024-12-01-preview"

_PACKAGE_DIR = Path(__file__).resolve().parent
_PROMPTS_PATH = _PACKAGE_DIR / "data" / "ai_prompts.json"


def default_env_candidates() -> list[Path]:
    """Locations searched for a .env file, first existing one wins."""
    return [
        Path.home() / ".semantic-flow" / ".env",
        _PACKAGE_DIR.parent / ".env",
        Path.cwd() / ".env",
    ]


def _load_prompt_defaults(path: Path) -> dict[str, str]:
    try:
        with path.open(encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        logger.warning("Prompt defaults not found at %s", path)
        return {}


# ---------------------------------------------------------------------------
# Layered key lookup
# ---------------------------------------------------------------------------


class EnvLoader:
    """Resolve configuration keys across settings, environment and defaults.

    The .env file is loaded lazily on the first lookup and only once per
    loader. Values already present in os.environ are never overwritten by it.
    """

    def __init__(
        self,
        settings: Any = None,
        env_candidates: list[Path] | None = None,
        prompt_defaults: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings
        self._env_candidates = env_candidates
        self._prompt_defaults = dict(prompt_defaults) if prompt_defaults is not None else None
        self._env_loaded = False

    def set_settings(self, settings: Any) -> None:
        """Install the host settings object (dict or object with .get)."""
        self._settings = settings

    def _load_env(self) -> None:
        if self._env_loaded:
            return
        candidates = self._env_candidates if self._env_candidates is not None else default_env_candidates()
        env_path = next((p for p in candidates if p.exists()), None)
        if env_path is not None:
            load_dotenv(env_path, override=False)
            logger.debug("Loaded environment from %s", env_path)
        if self._prompt_defaults is None:
            self._prompt_defaults = _load_prompt_defaults(_PROMPTS_PATH)
        self._env_loaded = True

    def _from_settings(self, key: str) -> Any:
        if self._settings is None:
            return None
        getter = getattr(self._settings, "get", None)
        value = getter(key) if callable(getter) else getattr(self._settings, key, None)
        if value:
            return value
        prompts = getter("aiPrompts") if callable(getter) else getattr(self._settings, "aiPrompts", None)
        if isinstance(prompts, Mapping):
            return prompts.get(key)
        return None

    def get(self, key: str, fallback: Any = "") -> Any:
        self._load_env()
        for value in (
            self._from_settings(key),
            os.environ.get(key),
            (self._prompt_defaults or {}).get(key),
        ):
            if value:
                return value
        return fallback


default_loader = EnvLoader()


def get_env(key: str, fallback: Any = "") -> Any:
    """Module-level shortcut over the process-wide loader."""
    return default_loader.get(key, fallback)


# ---------------------------------------------------------------------------
# Connector configuration
# ---------------------------------------------------------------------------


def _to_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class ConnectorConfig:
    """Immutable configuration for one connector call.

    Only the fields a provider declares as required are validated; the rest
    stay empty when unset and are ignored by providers that do not use them.
    """

    provider: str
    api_key: str = field(default="", repr=False)
    model: str = ""
    organization: str = ""
    endpoint: str = ""
    deployment_name: str = ""
    api_version: str = DEFAULT_AZURE_API_VERSION
    search_endpoint: str = ""
    search_api_key: str = field(default="", repr=False)
    search_index: str = ""
    embedding_deployment: str = ""
    max_completion_tokens: int | None = None
    max_tokens: int | None = None
    max_flow_context_chars: int = DEFAULT_MAX_FLOW_CONTEXT_CHARS

    @classmethod
    def from_env(
        cls,
        provider: str,
        default_model: str = "",
        loader: EnvLoader | None = None,
    ) -> ConnectorConfig:
        env = loader or default_loader
        return cls(
            provider=provider,
            api_key=str(env.get("AI_API_KEY")),
            model=str(env.get("AI_MODEL", default_model)),
            organization=str(env.get("AI_ORGANIZATION")),
            endpoint=str(env.get("AI_ENDPOINT")),
            deployment_name=str(env.get("AI_DEPLOYMENT_NAME")),
            api_version=str(env.get("AI_API_VERSION", DEFAULT_AZURE_API_VERSION)),
            search_endpoint=str(env.get("AI_SEARCH_ENDPOINT")),
            search_api_key=str(env.get("AI_SEARCH_API_KEY")),
            search_index=str(env.get("AI_SEARCH_INDEX")),
            embedding_deployment=str(env.get("AI_EMBEDDING_DEPLOYMENT")),
            max_completion_tokens=_to_int(env.get("AI_MAX_COMPLETION_TOKENS")),
            max_tokens=_to_int(env.get("AI_MAX_TOKENS")),
            max_flow_context_chars=(
                _to_int(env.get("AI_MAX_FLOW_CONTEXT_CHARS")) or DEFAULT_MAX_FLOW_CONTEXT_CHARS
            ),
        )

    def with_overrides(self, **changes: Any) -> ConnectorConfig:
        return replace(self, **changes)

    @property
    def search_enabled(self) -> bool:
        """True when all three Azure AI Search settings are present."""
        return bool(self.search_endpoint and self.search_api_key and self.search_index)


# ---------------------------------------------------------------------------
# Process-level settings
# ---------------------------------------------------------------------------


class ServerSettings(BaseSettings):
    """Settings for the HTTP service.

    Environment variables:
      AI_CONNECTOR              provider name (default: "azure-openai")
      CORS_ORIGINS              comma-separated origins
      PACKAGE_INFO_CACHE_URL    optional URL of a JSON [{name, description}] list
      PACKAGE_INFO_CACHE        inline JSON [{name, description}] list
      PACKAGE_INFO_TIMEOUT      seconds per registry lookup (default: 5)
      SEMANTIC_FLOW_LOG_LEVEL   logging level (default: INFO)

    Only AI_CONNECTOR is also looked up through the EnvLoader layers (see
    connector_name), so a host settings override can pick the provider the
    same way it sets AI_API_KEY. The other knobs are process-level and read
    from the environment alone.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    connector: str = Field(default="azure-openai", validation_alias="AI_CONNECTOR")
    cors_origins: str = Field(
        default="http://localhost:1880,http://127.0.0.1:1880",
        validation_alias="CORS_ORIGINS",
    )
    package_info_cache_url: str = Field(default="", validation_alias="PACKAGE_INFO_CACHE_URL")
    package_info_cache_raw: str = Field(default="", validation_alias="PACKAGE_INFO_CACHE")
    package_info_timeout: float = Field(default=5.0, validation_alias="PACKAGE_INFO_TIMEOUT")
    log_level: str = Field(default="INFO", validation_alias="SEMANTIC_FLOW_LOG_LEVEL")

    @field_validator("connector", mode="before")
    @classmethod
    def lowercase_connector(cls, v: object) -> str:
        return str(v or "azure-openai").strip().lower()

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_level(cls, v: object) -> str:
        return str(v or "INFO").upper()

    def connector_name(self, loader: EnvLoader | None = None) -> str:
        """AI_CONNECTOR from the loader's settings override or environment, else this field."""
        value = str((loader or default_loader).get("AI_CONNECTOR") or "").strip().lower()
        return value or self.connector

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def package_info_cache(self) -> list[dict[str, Any]]:
        """Parsed PACKAGE_INFO_CACHE; invalid JSON or a non-list yields []."""
        if not self.package_info_cache_raw.strip():
            return []
        try:
            parsed = json.loads(self.package_info_cache_raw)
        except json.JSONDecodeError:
            logger.warning("PACKAGE_INFO_CACHE is not valid JSON; ignoring it")
            return []
        return [p for p in parsed if isinstance(p, dict)] if isinstance(parsed, list) else []
