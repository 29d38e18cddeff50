"""FastAPI service exposing the AI synchronization core to the editor.

  POST /ai/build-flow            prompt (+ tab context) -> proposed flow
  POST /ai/resync-node           node intent -> regenerated node config
  POST /ai/generate-description  node config -> name + intent text
  POST /ai/custom-nodes          store the user's custom node catalogue
  GET  /health                   connector name and configuration status

Error bodies keep the shape of the success body with success=false and an
error string. Missing input is a 400, missing AI configuration or an
unexpected failure a 500. A provider failure is still a 200 whose body
carries success=false.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from semantic_flow import __version__
from semantic_flow.config import ServerSettings, default_loader
from semantic_flow.connectors import create_connector
from semantic_flow.connectors.base import Connector
from semantic_flow.custom_nodes import CustomNodeStore, PackageInfoResolver
from semantic_flow.errors import ConfigurationError
from semantic_flow.prompts import PromptContext
from semantic_flow.retry import RetryController
from semantic_flow.service import not_configured_message, require_configured
from semantic_flow.sync import SyncTracker

logger = logging.getLogger("semantic_flow.api")

router = APIRouter()

# Unexpected failures are logged with their traceback; clients only see this.
INTERNAL_ERROR = "Internal server error"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class BuildFlowRequest(_CamelModel):
    prompt: str | None = None
    context: dict[str, Any] | None = None


class ResyncNodeRequest(_CamelModel):
    node_id: str | None = Field(default=None, alias="nodeId")
    node_type: str | None = Field(default=None, alias="nodeType")
    node_name: str | None = Field(default=None, alias="nodeName")
    info: str | None = None
    current_config: dict[str, Any] | None = Field(default=None, alias="currentConfig")


class GenerateDescriptionRequest(_CamelModel):
    node_id: str | None = Field(default=None, alias="nodeId")
    node_type: str | None = Field(default=None, alias="nodeType")
    node_name: str | None = Field(default=None, alias="nodeName")
    current_config: dict[str, Any] | None = Field(default=None, alias="currentConfig")


class CustomNodesRequest(_CamelModel):
    nodes: Any = None


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def _build_connector(settings: ServerSettings, http_client: httpx.AsyncClient, tracker: SyncTracker) -> Connector | None:
    name = settings.connector_name(default_loader)
    try:
        return create_connector(
            name,
            loader=default_loader,
            http_client=http_client,
            retry=RetryController(tracker=tracker),
        )
    except ValueError as e:
        logger.error("Failed to load connector %r: %s", name, e)
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the connector, tracker and custom node store; close clients on shutdown."""
    settings: ServerSettings = app.state.settings
    state = app.state

    owned: list[httpx.AsyncClient] = []
    if getattr(state, "tracker", None) is None:
        state.tracker = SyncTracker()
    if getattr(state, "connector", None) is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(120.0, connect=10.0))
        owned.append(client)
        state.connector = _build_connector(settings, client, state.tracker)
    if getattr(state, "custom_nodes", None) is None:
        resolver_client = httpx.AsyncClient()
        owned.append(resolver_client)
        resolver = PackageInfoResolver(
            http_client=resolver_client,
            timeout=settings.package_info_timeout,
            cache_url=settings.package_info_cache_url,
            seed=settings.package_info_cache,
        )
        await resolver.load_cache()
        state.custom_nodes = CustomNodeStore(resolver)

    logger.info(
        "Semantic Flow AI service %s | connector: %s",
        __version__, getattr(state.connector, "name", "(unavailable)"),
    )
    yield

    for client in owned:
        await client.aclose()
    logger.info("Shutting down Semantic Flow AI service")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _connector(request: Request) -> Connector:
    connector = getattr(request.app.state, "connector", None)
    if connector is None:
        name = request.app.state.settings.connector_name(default_loader)
        raise RuntimeError(f"AI connector {name!r} is not available")
    return connector


def _config_errors(connector: Connector) -> str | None:
    """'AI not configured: ...' when the connector config is incomplete."""
    try:
        require_configured(connector)
    except ConfigurationError as e:
        return not_configured_message(e)
    return None


def _fail(output: dict[str, Any], status: int, error: str) -> JSONResponse:
    output["success"] = False
    output["error"] = error
    return JSONResponse(status_code=status, content=output)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/ai/build-flow", tags=["ai"])
async def build_flow(body: BuildFlowRequest, request: Request):
    output: dict[str, Any] = {"success": False, "flow": [], "error": ""}
    try:
        if not body.prompt or not body.prompt.strip():
            return _fail(output, 400, "Prompt is required")

        connector = _connector(request)
        error = _config_errors(connector)
        if error:
            return _fail(output, 500, error)

        context = PromptContext.from_dict(body.context)
        context.custom_nodes = request.app.state.custom_nodes.summarized()

        result = await connector.generate_flow(body.prompt, context)
        if result.success:
            logger.info("Generated %d nodes from prompt", len(result.flow))
        else:
            logger.warning("Flow generation failed: %s", result.error)
        return result.to_flow_response()
    except Exception:
        logger.exception("build-flow failed")
        return _fail(output, 500, INTERNAL_ERROR)


@router.post("/ai/resync-node", tags=["ai"])
async def resync_node(body: ResyncNodeRequest, request: Request):
    output: dict[str, Any] = {"success": False, "updatedNode": None, "error": ""}
    try:
        if not body.node_id or not body.info or not body.info.strip():
            return _fail(output, 400, "Node ID and info are required")

        connector = _connector(request)
        error = _config_errors(connector)
        if error:
            return _fail(output, 500, error)

        current_config = dict(body.current_config or {})
        current_config["customNodes"] = request.app.state.custom_nodes.summarized()

        async with request.app.state.tracker.syncing(body.node_id):
            result = await connector.resync_node(
                body.node_id,
                body.node_type or "",
                body.info,
                current_config,
                node_name=body.node_name or "",
            )
        if result.success:
            logger.info("Re-synced node %s from its info", body.node_id)
        else:
            logger.warning("Failed to re-sync node %s: %s", body.node_id, result.error)
        return result.to_resync_response()
    except Exception:
        logger.exception("resync-node failed")
        return _fail(output, 500, INTERNAL_ERROR)


@router.post("/ai/generate-description", tags=["ai"])
async def generate_description(body: GenerateDescriptionRequest, request: Request):
    output: dict[str, Any] = {"success": False, "name": "", "description": "", "error": ""}
    try:
        if not body.node_id or body.current_config is None:
            return _fail(output, 400, "Node ID and config are required")

        connector = _connector(request)
        error = _config_errors(connector)
        if error:
            return _fail(output, 500, error)

        async with request.app.state.tracker.syncing(body.node_id):
            result = await connector.generate_description(
                body.node_id,
                body.node_type or "",
                body.current_config,
                node_name=body.node_name or "",
            )
        if result.success:
            logger.info("Generated description for node %s", body.node_id)
        else:
            logger.warning("Description generation failed for node %s: %s", body.node_id, result.error)
        return result.to_description_response()
    except Exception:
        logger.exception("generate-description failed")
        return _fail(output, 500, INTERNAL_ERROR)


@router.post("/ai/custom-nodes", tags=["ai"])
async def store_custom_nodes(body: CustomNodesRequest, request: Request):
    if not isinstance(body.nodes, list):
        return _fail({}, 400, "nodes must be an array")
    try:
        await request.app.state.custom_nodes.replace(body.nodes)
    except Exception:
        logger.exception("custom-nodes failed")
        return _fail({}, 500, INTERNAL_ERROR)
    return {"success": True}


@router.get("/health", tags=["system"])
async def health(request: Request) -> dict:
    """Connector name and whether its configuration is complete."""
    connector = getattr(request.app.state, "connector", None)
    if connector is None:
        return {
            "api": "ok",
            "connector": request.app.state.settings.connector_name(default_loader),
            "configured": False,
            "errors": ["Connector not available"],
            "customNodes": len(request.app.state.custom_nodes),
        }
    validation = connector.validate_config(connector.get_config())
    return {
        "api": "ok",
        "connector": connector.name,
        "configured": validation.valid,
        "errors": validation.errors,
        "customNodes": len(request.app.state.custom_nodes),
    }


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def create_app(
    settings: ServerSettings | None = None,
    connector: Connector | None = None,
    custom_nodes: CustomNodeStore | None = None,
    tracker: SyncTracker | None = None,
) -> FastAPI:
    """Build the app. Anything passed in is used as is instead of being created on startup."""
    settings = settings or ServerSettings()
    app = FastAPI(
        title="Semantic Flow AI API",
        description=(
            "Natural-language flow generation and intent/logic synchronization "
            "for a node-and-wire visual editor."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.connector = connector
    app.state.custom_nodes = custom_nodes
    app.state.tracker = tracker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entry point (for uvicorn programmatic launch)
# ---------------------------------------------------------------------------


def serve(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> None:
    """Launch the FastAPI server via uvicorn."""
    import uvicorn

    settings = ServerSettings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "semantic_flow.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    serve()
