"""Semantic Flow AI synchronization core.

Entry points:
    create_connector(name, **kwargs)        -> Connector for one AI provider
    FlowBuilder(connector, graph).build()   -> prompt to merged graph changes
    NodeSynchronizer(...).resync()          -> keep a node's intent and logic in step
    semantic_flow.api:app                   -> FastAPI service for the editor
"""

__version__ = "0.1.0"
