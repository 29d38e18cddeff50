"""Provider-agnostic connector contract.

Connector is the abstract interface every AI provider satisfies; the rest of
the system only ever talks to it. BaseConnector implements the three
generation operations once, as a template method over three provider hooks:

  build_request(kind, config, system, user) -> (url, headers, body)
  extract_content(data)                     -> reply text or None
  extract_metadata(kind, data, config)      -> usage / model / extras

plus add_tokens(config, body, fallback), the single place where a provider's
token-limit field naming is allowed to leak.

Public operations never raise. Every failure is converted into a
GenerationResult with success=False and a user-facing error string.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx

from semantic_flow.config import ConnectorConfig, EnvLoader, default_loader
from semantic_flow.errors import (
    ProviderError,
    RateLimitError,
    SemanticFlowError,
    TransportError,
)
from semantic_flow.parsing import parse_description_reply, parse_flow_reply, parse_resync_reply
from semantic_flow.prompts import PromptComposer, PromptContext
from semantic_flow.retry import RetryController

logger = logging.getLogger("semantic_flow.connectors")

FLOW = "flow"
RESYNC = "resync"
DESCRIPTION = "description"

_FAILURE_FALLBACKS: dict[str, str] = {
    FLOW: "Failed to generate flow",
    RESYNC: "Failed to resync node",
    DESCRIPTION: "Failed to generate description",
}


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


@dataclass
class GenerationResult:
    """Outcome of one connector operation.

    flow / flow_name   set by generate_flow
    updated_node       set by resync_node
    name / description set by generate_description
    metadata           provider usage, model id and extras (citations, stop reason)
    """

    success: bool = False
    flow: list[dict[str, Any]] = field(default_factory=list)
    flow_name: str = ""
    updated_node: dict[str, Any] | None = None
    name: str = ""
    description: str = ""
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_flow_response(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "flow": self.flow,
            "flowName": self.flow_name,
            "error": self.error,
            "metadata": self.metadata,
        }

    def to_resync_response(self) -> dict[str, Any]:
        return {"success": self.success, "updatedNode": self.updated_node, "error": self.error}

    def to_description_response(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "name": self.name,
            "description": self.description,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class Connector(ABC):
    """The contract every AI provider implements."""

    name: ClassVar[str] = "base"

    @abstractmethod
    def get_config(self) -> ConnectorConfig:
        """Read settings/environment into a fully populated config.

        Never raises for missing fields; unset values stay empty.
        """

    @abstractmethod
    def validate_config(self, config: ConnectorConfig) -> ValidationResult:
        """List every missing required field (does not stop at the first)."""

    @abstractmethod
    def add_tokens(self, config: ConnectorConfig, body: dict[str, Any], fallback: int | None = None) -> None:
        """Write the configured token limit into a request body, provider style."""

    @abstractmethod
    async def generate_flow(
        self,
        prompt: str,
        context: PromptContext | dict[str, Any] | None,
        config_override: ConnectorConfig | None = None,
    ) -> GenerationResult:
        ...

    @abstractmethod
    async def resync_node(
        self,
        node_id: str,
        node_type: str,
        info: str,
        current_config: dict[str, Any],
        config_override: ConnectorConfig | None = None,
        node_name: str = "",
    ) -> GenerationResult:
        ...

    @abstractmethod
    async def generate_description(
        self,
        node_id: str,
        node_type: str,
        current_config: dict[str, Any],
        config_override: ConnectorConfig | None = None,
        node_name: str = "",
    ) -> GenerationResult:
        ...


# ---------------------------------------------------------------------------
# HTTP response helpers
# ---------------------------------------------------------------------------


def _body_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def error_message(response: httpx.Response) -> str:
    """Provider error message, or "HTTP <status>" when none is present."""
    data = _body_or_none(response)
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
    return f"HTTP {response.status_code}"


def retry_after(response: httpx.Response) -> float | None:
    """Retry hint in seconds from the Retry-After header or the error body."""
    raw = response.headers.get("retry-after")
    if raw is None:
        data = _body_or_none(response)
        if isinstance(data, dict):
            raw = data.get("retryAfter", data.get("retry_after"))
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Shared implementation
# ---------------------------------------------------------------------------


class BaseConnector(Connector):
    """Shared plumbing: config, validation, HTTP, retry and result handling.

    Subclasses set name/default_model/required_fields and implement the
    request/response hooks.
    """

    default_model: ClassVar[str] = ""
    required_fields: ClassVar[tuple[str, ...]] = ("api_key",)

    def __init__(
        self,
        loader: EnvLoader | None = None,
        http_client: httpx.AsyncClient | None = None,
        retry: RetryController | None = None,
        composer: PromptComposer | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._loader = loader or default_loader
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))
        self.retry = retry or RetryController()
        self.composer = composer or PromptComposer(self._loader)

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> ConnectorConfig:
        return ConnectorConfig.from_env(self.name, self.default_model, self._loader)

    def validate_config(self, config: ConnectorConfig) -> ValidationResult:
        missing = [f for f in self.required_fields if not getattr(config, f, "")]
        if missing:
            return ValidationResult(valid=False, errors=[f"Missing required field: {f}" for f in missing])
        return ValidationResult(valid=True, errors=[])

    # ------------------------------------------------------------------
    # Provider hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def build_request(
        self,
        kind: str,
        config: ConnectorConfig,
        system_prompt: str,
        user_prompt: str,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Return (url, headers, body) for one call of the given kind."""

    @abstractmethod
    def extract_content(self, data: dict[str, Any]) -> str | None:
        """Pull the reply text out of a provider response body."""

    def extract_metadata(self, kind: str, data: dict[str, Any], config: ConnectorConfig) -> dict[str, Any]:
        return {"usage": data.get("usage"), "model": data.get("model")}

    def describe_url(self, url: str) -> str:
        """URL as it may appear in logs."""
        return url

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _post(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str],
        node_id: str | None = None,
    ) -> dict[str, Any]:
        log_url = self.describe_url(url)

        async def send() -> dict[str, Any]:
            try:
                r = await self._client.post(url, json=body, headers=headers)
            except httpx.TransportError as e:
                logger.error("POST %s failed: %s", log_url, e)
                raise TransportError() from e
            if r.status_code == 429:
                logger.warning("POST %s -> 429", log_url)
                raise RateLimitError(error_message(r), retry_after=retry_after(r))
            if r.is_error:
                logger.error("POST %s -> %s", log_url, r.status_code)
                raise ProviderError(error_message(r), r.status_code)
            data = _body_or_none(r)
            if not isinstance(data, dict):
                raise ProviderError(f"HTTP {r.status_code}: response body is not a JSON object", r.status_code)
            return data

        return await self.retry.run(send, node_id=node_id)

    async def _complete(
        self,
        kind: str,
        config: ConnectorConfig,
        system_prompt: str,
        user_prompt: str,
        node_id: str | None = None,
    ) -> tuple[str | None, dict[str, Any]]:
        url, headers, body = self.build_request(kind, config, system_prompt, user_prompt)
        logger.debug(
            "%s.%s: ~%d payload chars",
            type(self).__name__, kind, len(json.dumps(body, default=str)),
        )
        data = await self._post(url, body, headers, node_id=node_id)
        return self.extract_content(data), data

    def _fail(self, result: GenerationResult, kind: str, exc: Exception) -> GenerationResult:
        if isinstance(exc, SemanticFlowError):
            result.error = str(exc) or _FAILURE_FALLBACKS[kind]
        else:
            logger.exception("%s %s failed unexpectedly", self.name, kind)
            result.error = str(exc) or _FAILURE_FALLBACKS[kind]
        return result

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def generate_flow(
        self,
        prompt: str,
        context: PromptContext | dict[str, Any] | None,
        config_override: ConnectorConfig | None = None,
    ) -> GenerationResult:
        result = GenerationResult()
        try:
            config = config_override or self.get_config()
            if not isinstance(context, PromptContext):
                context = PromptContext.from_dict(context)
            system_prompt = self.composer.build_system_prompt(context.custom_nodes, "flow")
            user_prompt = self.composer.build_user_prompt(prompt, context, config.max_flow_context_chars)
            content, data = await self._complete(FLOW, config, system_prompt, user_prompt)
            if not content:
                result.error = "No content in response"
                return result
            result.flow, result.flow_name = parse_flow_reply(content)
        except Exception as e:
            return self._fail(result, FLOW, e)

        result.success = True
        result.metadata = self.extract_metadata(FLOW, data, config)
        logger.info("%s: generated %d nodes", self.name, len(result.flow))
        return result

    async def resync_node(
        self,
        node_id: str,
        node_type: str,
        info: str,
        current_config: dict[str, Any],
        config_override: ConnectorConfig | None = None,
        node_name: str = "",
    ) -> GenerationResult:
        result = GenerationResult()
        try:
            config = config_override or self.get_config()
            system_prompt = self.composer.build_system_prompt((current_config or {}).get("customNodes"), "node")
            user_prompt = self.composer.build_resync_prompt(node_id, node_type, info, current_config, node_name)
            content, _ = await self._complete(RESYNC, config, system_prompt, user_prompt, node_id=node_id)
            if not content:
                result.error = "No content in response"
                return result
            result.updated_node = parse_resync_reply(content)
        except Exception as e:
            return self._fail(result, RESYNC, e)

        result.success = True
        return result

    async def generate_description(
        self,
        node_id: str,
        node_type: str,
        current_config: dict[str, Any],
        config_override: ConnectorConfig | None = None,
        node_name: str = "",
    ) -> GenerationResult:
        result = GenerationResult()
        try:
            config = config_override or self.get_config()
            system_prompt = self.composer.build_system_prompt((current_config or {}).get("customNodes"), "node")
            user_prompt = self.composer.build_description_prompt(node_id, node_type, current_config, node_name)
            content, _ = await self._complete(DESCRIPTION, config, system_prompt, user_prompt, node_id=node_id)
            if not content:
                result.error = "No description in response"
                return result
            result.name, result.description = parse_description_reply(content)
        except Exception as e:
            return self._fail(result, DESCRIPTION, e)

        result.success = True
        return result
