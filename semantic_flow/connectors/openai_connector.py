"""OpenAI chat-completions connector."""

from __future__ import annotations

from typing import Any

from semantic_flow.config import ConnectorConfig
from semantic_flow.connectors.base import FLOW, RESYNC, BaseConnector

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

# Model families that reject max_tokens in favour of max_completion_tokens.
NEW_STYLE_PREFIXES: tuple[str, ...] = ("gpt-4.1", "gpt-4o", "gpt-5")

_TEMPERATURES: dict[str, float] = {FLOW: 0.7, RESYNC: 0.3}


def chat_messages(system_prompt: str, user_prompt: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def chat_content(data: dict[str, Any]) -> str | None:
    choices = data.get("choices") or []
    if not choices:
        return None
    return ((choices[0] or {}).get("message") or {}).get("content")


class OpenAIConnector(BaseConnector):
    """Bearer-token chat completions with a JSON-object response format."""

    name = "openai"
    default_model = "gpt-4o"
    required_fields = ("api_key",)

    def add_tokens(self, config: ConnectorConfig, body: dict[str, Any], fallback: int | None = None) -> None:
        limit = config.max_completion_tokens or config.max_tokens
        if not limit:
            return
        if config.model.startswith(NEW_STYLE_PREFIXES):
            body["max_completion_tokens"] = int(limit)
        else:
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
            "Authorization": f"Bearer {config.api_key}",
        }
        if config.organization:
            headers["OpenAI-Organization"] = config.organization

        body: dict[str, Any] = {
            "model": config.model,
            "messages": chat_messages(system_prompt, user_prompt),
        }
        if kind in _TEMPERATURES:
            body["temperature"] = _TEMPERATURES[kind]
        body["response_format"] = {"type": "json_object"}
        self.add_tokens(config, body)
        return OPENAI_CHAT_URL, headers, body

    def extract_content(self, data: dict[str, Any]) -> str | None:
        return chat_content(data)
