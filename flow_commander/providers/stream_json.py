"""Translate Claude Code ``--output-format stream-json`` lines to display text."""

from __future__ import annotations

import json
from typing import Any, Optional


def _assistant_text(event: dict[str, Any]) -> Optional[str]:
    message = event.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, list):
        return None
    texts = [
        item.get("text", "")
        for item in content
        if isinstance(item, dict) and item.get("type") == "text" and item.get("text")
    ]
    return "".join(texts) if texts else None


def parse_claude_stream_line(line: str) -> Optional[str]:
    """Return the text to display for one stream-json line.

    ``None`` means the event carries nothing worth showing. Lines that are
    not JSON objects are passed through unchanged.
    """
    stripped = line.strip()
    if not stripped:
        return None
    try:
        event = json.loads(stripped)
    except json.JSONDecodeError:
        return line
    if not isinstance(event, dict):
        return line

    event_type = event.get("type")
    subtype = event.get("subtype")
    if event_type == "assistant":
        return _assistant_text(event)
    if event_type == "result":
        if subtype == "success":
            result = event.get("result")
            return result if isinstance(result, str) and result else None
        if event.get("is_error") or (isinstance(subtype, str) and subtype.startswith("error")):
            return f"[Error: is_error={str(bool(event.get('is_error'))).lower()}]"
        return None
    if event_type == "system" and subtype == "init":
        return "[Claude Code session started]"
    return None
