"""Extract JSON payloads from free-form model replies.

Models are asked for bare JSON but regularly wrap it in a markdown fence, with
or without a ``json`` language tag. The fence is stripped before parsing.
Parse failures carry at most PREVIEW_CHARS of the original reply.
"""

from __future__ import annotations

import json
import re
from typing import Any

from semantic_flow.errors import ParseError, SemanticValidationError

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?([\s\S]*?)\n?```$", re.MULTILINE)


def unwrap_code_fence(text: str) -> str:
    """Trim the reply and strip a surrounding ```json ... ``` fence if present."""
    clean = (text or "").strip()
    match = _FENCE_RE.search(clean)
    if match:
        clean = match.group(1).strip()
    return clean


def parse_json_reply(content: str) -> Any:
    """Parse a reply into JSON, raising ParseError with a bounded preview."""
    try:
        return json.loads(unwrap_code_fence(content))
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(content) from e


def parse_flow_reply(content: str) -> tuple[list[dict[str, Any]], str]:
    """Return (flow, flow_name) from a flow-generation reply.

    A reply without a usable ``flow`` list yields an empty flow rather than a
    failure; the caller decides what an empty flow means.
    """
    parsed = parse_json_reply(content)
    if not isinstance(parsed, dict):
        return [], ""
    flow = parsed.get("flow") or []
    if not isinstance(flow, list):
        flow = []
    flow_name = parsed.get("flowName") or ""
    return [n for n in flow if isinstance(n, dict)], str(flow_name)


def parse_resync_reply(content: str) -> dict[str, Any]:
    """The whole parsed object is the updated node."""
    parsed = parse_json_reply(content)
    if not isinstance(parsed, dict):
        raise SemanticValidationError("AI response is not a node object")
    return parsed


def parse_description_reply(content: str) -> tuple[str, str]:
    """Return trimmed (name, description); both must be non-empty."""
    parsed = parse_json_reply(content)
    if not isinstance(parsed, dict):
        raise SemanticValidationError("AI response missing name or description")
    name = str(parsed.get("name") or "").strip()
    description = str(parsed.get("description") or "").strip()
    if not name or not description:
        raise SemanticValidationError("AI response missing name or description")
    return name, description
