"""Plain-text rendering of node intent text.

Intent text is markdown. Previews shown next to a node want it flat: one line,
no markup. strip_markdown() runs a fixed pipeline of substitutions, in order.
"""

from __future__ import annotations

import re
from typing import Any

PREVIEW_LIMIT = 500

# (pattern, replacement) applied top to bottom; order matters, e.g. bold
# before emphasis so "**x**" is not read as two empty emphases.
_PIPELINE: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"#{1,6}\s+"), ""),
    (re.compile(r"(\*\*|__)(.*?)\1"), r"\2"),
    (re.compile(r"(\*|_)(.*?)\1"), r"\2"),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"```[\s\S]*?```"), ""),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"^\s*[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*\d+\.\s+", re.MULTILINE), ""),
    (re.compile(r"\n\n+"), "\n"),
    (re.compile(r"\s+"), " "),
)


def strip_markdown(text: str) -> str:
    for pattern, replacement in _PIPELINE:
        text = pattern.sub(replacement, text)
    return text


def preview_text(node: dict[str, Any], limit: int = PREVIEW_LIMIT) -> str:
    """One-line label for a node: stripped info, else name, else type."""
    info = node.get("info") or ""
    text = strip_markdown(info).strip() if info.strip() else ""
    if not text:
        text = node.get("name") or node.get("type") or "Node"
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text
