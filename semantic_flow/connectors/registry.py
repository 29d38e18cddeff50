"""Configuration-driven connector lookup.

Connectors are registered by name and resolved from AI_CONNECTOR. A class
that does not fully implement the Connector contract is rejected at
registration time with ConnectorContractError; that is a deployment error,
not something a request can recover from.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any

from semantic_flow.connectors.base import Connector
from semantic_flow.errors import ConnectorContractError

logger = logging.getLogger("semantic_flow.connectors.registry")

CONTRACT_METHODS: tuple[str, ...] = (
    "get_config",
    "validate_config",
    "generate_flow",
    "resync_node",
    "generate_description",
)

_REGISTRY: dict[str, type[Connector]] = {}


def check_contract(cls: type) -> None:
    """Raise ConnectorContractError unless cls implements every contract method."""
    if not (isinstance(cls, type) and issubclass(cls, Connector)):
        raise ConnectorContractError(f"{cls!r} is not a Connector subclass")
    missing = [m for m in CONTRACT_METHODS if not callable(getattr(cls, m, None))]
    abstract = sorted(getattr(cls, "__abstractmethods__", ()))
    if missing or abstract:
        raise ConnectorContractError(
            f"Connector {cls.__name__} does not implement: {', '.join(missing or abstract)}"
        )
    for method in ("generate_flow", "resync_node", "generate_description"):
        if not inspect.iscoroutinefunction(getattr(cls, method)):
            raise ConnectorContractError(f"Connector {cls.__name__}.{method} must be async")


def register_connector(name: str, cls: type[Connector]) -> None:
    check_contract(cls)
    key = name.strip().lower()
    if key in _REGISTRY and _REGISTRY[key] is not cls:
        logger.warning("Replacing connector %r: %s -> %s", key, _REGISTRY[key].__name__, cls.__name__)
    _REGISTRY[key] = cls


def available_connectors() -> list[str]:
    return sorted(_REGISTRY)


def get_connector_class(name: str) -> type[Connector]:
    key = (name or "").strip().lower()
    try:
        return _REGISTRY[key]
    except KeyError:
        raise ValueError(
            f"Unknown AI connector: {name!r}. Valid options: {', '.join(available_connectors())}"
        ) from None


def create_connector(name: str, **kwargs: Any) -> Connector:
    """Instantiate the connector registered under name."""
    cls = get_connector_class(name)
    logger.info("Using AI connector %r (%s)", name, cls.__name__)
    return cls(**kwargs)
