"""Host graph model, patch ops and the merge engine."""

from semantic_flow.graph.merge import (
    MergeOutcome,
    MergePlan,
    apply_flow,
    classify_intent,
    plan_merge,
    plan_new_tab,
    should_create_new_tab,
)
from semantic_flow.graph.model import HostGraph, InMemoryGraph, Link, extract_node_config
from semantic_flow.graph.patch import apply_patch, op_to_dict

__all__ = [
    "HostGraph",
    "InMemoryGraph",
    "Link",
    "MergeOutcome",
    "MergePlan",
    "apply_flow",
    "apply_patch",
    "classify_intent",
    "extract_node_config",
    "op_to_dict",
    "plan_merge",
    "plan_new_tab",
    "should_create_new_tab",
]
