"""AI provider connectors and the registry that selects between them."""

from semantic_flow.connectors.anthropic_connector import AnthropicConnector
from semantic_flow.connectors.azure_openai_connector import AzureOpenAIConnector
from semantic_flow.connectors.base import (
    BaseConnector,
    Connector,
    GenerationResult,
    ValidationResult,
)
from semantic_flow.connectors.google_connector import GoogleConnector
from semantic_flow.connectors.openai_connector import OpenAIConnector
from semantic_flow.connectors.registry import (
    available_connectors,
    create_connector,
    get_connector_class,
    register_connector,
)

for _cls in (OpenAIConnector, AzureOpenAIConnector, AnthropicConnector, GoogleConnector):
    register_connector(_cls.name, _cls)

__all__ = [
    "AnthropicConnector",
    "AzureOpenAIConnector",
    "BaseConnector",
    "Connector",
    "GenerationResult",
    "GoogleConnector",
    "OpenAIConnector",
    "ValidationResult",
    "available_connectors",
    "create_connector",
    "get_connector_class",
    "register_connector",
]
