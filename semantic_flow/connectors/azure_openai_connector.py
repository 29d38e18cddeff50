"""Azure-hosted OpenAI connector.

Flow generation can be grounded on an Azure AI Search index ("On Your Data")
when AI_SEARCH_ENDPOINT, AI_SEARCH_API_KEY and AI_SEARCH_INDEX are all set.
The configured api-version must support ``data_sources`` for that to work.
"""

from __future__ import annotations

from typing import Any

from semantic_flow.config import ConnectorConfig
from semantic_flow.connectors.base import FLOW, BaseConnector
from semantic_flow.connectors.openai_connector import chat_content, chat_messages


def azure_chat_url(config: ConnectorConfig) -> str:
    return (
        f"{config.endpoint.rstrip('/')}/openai/deployments/{config.deployment_name}"
        f"/chat/completions?api-version={config.api_version}"
    )


def search_data_source(config: ConnectorConfig) -> dict[str, Any]:
    parameters: dict[str, Any] = {
        "endpoint": config.search_endpoint,
        "index_name": config.search_index,
        "authentication": {"type": "api_key", "key": config.search_api_key},
        "query_type": "vector_simple_hybrid",
        "in_scope": True,
        "strictness": 3,
        "top_n_documents": 5,
    }
    if config.embedding_deployment:
        parameters["embedding_dependency"] = {
            "type": "deployment_name",
            "deployment_name": config.embedding_deployment,
        }
    return {"type": "azure_search", "parameters": parameters}


class AzureOpenAIConnector(BaseConnector):
    """Deployment-addressed chat completions authenticated with an api-key header."""

    name = "azure-openai"
    default_model = ""
    required_fields = ("endpoint", "api_key", "deployment_name")

    def add_tokens(self, config: ConnectorConfig, body: dict[str, Any], fallback: int | None = None) -> None:
        if config.max_completion_tokens:
            body["max_completion_tokens"] = int(config.max_completion_tokens)
        elif config.max_tokens:
            body["max_tokens"] = int(config.max_tokens)

    def build_request(
        self,
        kind: str,
        config: ConnectorConfig,
        system_prompt: str,
        user_prompt: str,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        headers = {"Content-Type": "application/json", "api-key": config.api_key}
        body: dict[str, Any] = {
            "messages": chat_messages(system_prompt, user_prompt),
            "response_format": {"type": "json_object"},
        }
        self.add_tokens(config, body)
        if kind == FLOW and config.search_enabled:
            body["data_sources"] = [search_data_source(config)]
        return azure_chat_url(config), headers, body

    def extract_content(self, data: dict[str, Any]) -> str | None:
        return chat_content(data)

    def extract_metadata(self, kind: str, data: dict[str, Any], config: ConnectorConfig) -> dict[str, Any]:
        metadata = super().extract_metadata(kind, data, config)
        choices = data.get("choices") or [{}]
        citations = (((choices[0] or {}).get("message") or {}).get("context") or {}).get("citations")
        if citations is not None:
            metadata["citations"] = citations
        return metadata
