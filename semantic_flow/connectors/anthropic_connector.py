"""Anthropic Messages API connector."""

from __future__ import annotations

from typing import Any

from semantic_flow.config import ConnectorConfig
from semantic_flow.connectors.base import DESCRIPTION, FLOW, RESYNC, BaseConnector

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

# Default max_tokens per call kind, used when nothing is configured.
DEFAULT_MAX_TOKENS: dict[str, int] = {FLOW: 4000, RESYNC: 2000, DESCRIPTION: 500}
_TEMPERATURES: dict[str, float] = {FLOW: 0.7, RESYNC: 0.3, DESCRIPTION: 0.3}


class AnthropicConnector(BaseConnector):
    """x-api-key authenticated Messages API with a top-level system prompt."""

    name = "anthropic"
    default_model = "claude-3-5-sonnet-20241022"
    required_fields = ("api_key",)

    def add_tokens(self, config: ConnectorConfig, body: dict[str, Any], fallback: int | None = None) -> None:
        # max_tokens is mandatory for this API: completion limit, then token
        # limit, then the caller's default.
        limit = config.max_completion_tokens or config.max_tokens or fallback
        if limit:
            body["max_tokens"] = int(limit)

    def build_request(
        self,
        kind: str,
        config: ConnectorConfig,
        system_prompt: str,
        user_prompt: str,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        body: dict[str, Any] = {
            "model": config.model,
            "max_tokens": DEFAULT_MAX_TOKENS[kind],
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
            "temperature": _TEMPERATURES[kind],
        }
        self.add_tokens(config, body, DEFAULT_MAX_TOKENS[kind])
        return ANTHROPIC_MESSAGES_URL, headers, body

    def extract_content(self, data: dict[str, Any]) -> str | None:
        blocks = data.get("content") or []
        if not blocks:
            return None
        return (blocks[0] or {}).get("text")

    def extract_metadata(self, kind: str, data: dict[str, Any], config: ConnectorConfig) -> dict[str, Any]:
        metadata = super().extract_metadata(kind, data, config)
        metadata["stopReason"] = data.get("stop_reason")
        return metadata
