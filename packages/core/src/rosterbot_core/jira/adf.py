"""Conversion between plain text and Atlassian Document Format (ADF).

Jira Cloud stores comment bodies as ADF. The bot writes lightweight
markdown-ish text (``**bold**``, ``# heading``, triple-backtick fences) and
reads comments back as plain text with code blocks re-fenced, so fenced
payloads survive the round trip.
"""

from __future__ import annotations

import re
from typing import Any, Iterator

_FENCE_RE = re.compile(r"```([\w-]*)[ \t]*\n(.*?)\n?```", re.DOTALL)
_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")


def _inline(line: str) -> list[dict]:
    nodes: list[dict] = []
    pos = 0
    for match in _BOLD_RE.finditer(line):
        if match.start() > pos:
            nodes.append({"type": "text", "text": line[pos : match.start()]})
        nodes.append({"type": "text", "text": match.group(1), "marks": [{"type": "strong"}]})
        pos = match.end()
    if pos < len(line):
        nodes.append({"type": "text", "text": line[pos:]})
    return nodes


def _text_blocks(text: str) -> list[dict]:
    blocks = []
    for line in text.splitlines():
        if not line.strip():
            continue
        if line.startswith("# "):
            blocks.append({"type": "heading", "attrs": {"level": 3}, "content": [{"type": "text", "text": line[2:]}]})
        else:
            blocks.append({"type": "paragraph", "content": _inline(line)})
    return blocks


def text_to_adf(text: str) -> dict:
    content: list[dict] = []
    pos = 0
    for match in _FENCE_RE.finditer(text):
        content.extend(_text_blocks(text[pos : match.start()]))
        code = match.group(2)
        block: dict[str, Any] = {"type": "codeBlock", "attrs": {}, "content": []}
        if match.group(1):
            block["attrs"]["language"] = match.group(1)
        if code:
            block["content"].append({"type": "text", "text": code})
        content.append(block)
        pos = match.end()
    content.extend(_text_blocks(text[pos:]))
    return {"type": "doc", "version": 1, "content": content}


def _node_text(node: dict) -> str:
    if node.get("type") == "text":
        return node.get("text", "")
    if node.get("type") == "hardBreak":
        return "\n"
    return "".join(_node_text(child) for child in node.get("content") or [] if isinstance(child, dict))


def _render(node: dict) -> list[str]:
    kind = node.get("type")
    if kind == "codeBlock":
        language = (node.get("attrs") or {}).get("language", "")
        return [f"```{language}\n{_node_text(node)}\n```"]
    if kind in ("paragraph", "heading"):
        return [_node_text(node)]
    lines: list[str] = []
    for child in node.get("content") or []:
        if isinstance(child, dict):
            lines.extend(_render(child))
    return lines


def adf_to_text(document) -> str:
    """Flatten an ADF document to text; strings pass through unchanged."""
    if document is None:
        return ""
    if isinstance(document, str):
        return document
    if not isinstance(document, dict):
        return str(document)
    return "\n".join(_render(document))


def _walk(node) -> Iterator[dict]:
    if isinstance(node, dict):
        yield node
        for child in node.get("content") or []:
            yield from _walk(child)
    elif isinstance(node, list):
        for child in node:
            yield from _walk(child)


def code_blocks(document) -> list[str]:
    """Return the text of every codeBlock node, in document order."""
    return [_node_text(node) for node in _walk(document) if node.get("type") == "codeBlock"]
