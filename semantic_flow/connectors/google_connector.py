"""Google Gemini generateContent connector.

Gemini takes no separate system role here: system and user prompt travel as
one text part separated by a blank line. The API key is a query parameter, so
request URLs are redacted before they reach the logs.
"""

from __future__ import annotations

from typing import Any

from semantic_flow.config import ConnectorConfig
from semantic_flow.connectors.anthropic_connector import DEFAULT_MAX_TOKENS
from semantic_flow.connectors.base import DESCRIPTION, FLOW, RESYNC, BaseConnector

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

_TEMPERATURES: dict[str, float] = {FLOW: 0.7, RESYNC: 0.3, DESCRIPTION: 0.3}


class GoogleConnector(BaseConnector):
    """contents/parts request with a generationConfig block."""

    name = "google"
    default_model = "gemini-1.5-pro"
    required_fields = ("api_key",)

    def add_tokens(self, config: ConnectorConfig, body: dict[str, Any], fallback: int | None = None) -> None:
        limit = config.max_completion_tokens or config.max_tokens
        if limit:
            body.setdefault("generationConfig", {})["maxOutputTokens"] = int(limit)

    def build_request(
        self,
        kind: str,
        config: ConnectorConfig,
        system_prompt: str,
        user_prompt: str,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        url = f"{GEMINI_BASE_URL}/{config.model}:generateContent?key={config.api_key}"
        body: dict[str, Any] = {
            "contents": [
                {"role": "user", "parts": [{"text": f"{system_prompt}\n\n{user_prompt}"}]},
            ],
            "generationConfig": {
                "temperature": _TEMPERATURES[kind],
                "maxOutputTokens": DEFAULT_MAX_TOKENS[kind],
                "responseMimeType": "application/json",
            },
        }
        self.add_tokens(config, body)
        return url, {"Content-Type": "application/json"}, body

    def extract_content(self, data: dict[str, Any]) -> str | None:
        candidates = data.get("candidates") or []
        if not candidates:
            return None
        parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
        if not parts:
            return None
        return (parts[0] or {}).get("text")

    def extract_metadata(self, kind: str, data: dict[str, Any], config: ConnectorConfig) -> dict[str, Any]:
        return {"usage": data.get("usageMetadata"), "model": config.model}

    def describe_url(self, url: str) -> str:
        return url.split("?key=", 1)[0] + "?key=***" if "?key=" in url else url
