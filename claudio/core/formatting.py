"""Chat message rendering helpers (Telegram HTML)."""

from __future__ import annotations

import json
from typing import Optional

from claudio.constants import TOOL_COMMAND_PREVIEW_MAX_CHARS, TRANSCRIPT_PREVIEW_MAX_CHARS
from claudio.core.models import JsonValue

KEYCAP = "\ufe0f\u20e3"


def escape_html(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def slot_emoji(number: int) -> str:
    """Keycap digit for a slot number (1 -> 1️⃣)."""
    clamped = ((number - 1) % 9) + 1
    return f"{clamped}{KEYCAP}"


def friendly_elapsed(seconds: int) -> str:
    """Format elapsed seconds as "12m" or "1h 23m"; anything under a minute reads "1m"."""
    if seconds >= 3600:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    return f"{max(seconds // 60, 1)}m"


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + suffix


def format_tool_input(tool_input: Optional[JsonValue]) -> str:
    """Summarize a tool call's input: command, then file path, then description."""
    if tool_input is None:
        return ""
    command = _field_str(tool_input, "command")
    if command is not None:
        return f"Command: <code>{escape_html(command[:TOOL_COMMAND_PREVIEW_MAX_CHARS])}</code>"
    file_path = _field_str(tool_input, "file_path")
    if file_path is not None:
        return f"File: <code>{escape_html(file_path)}</code>"
    description = _field_str(tool_input, "description")
    if description is not None:
        return escape_html(description[:TOOL_COMMAND_PREVIEW_MAX_CHARS])
    return ""


def _field_str(value: JsonValue, key: str) -> Optional[str]:
    field = value.get(key)
    return field.as_str() if field is not None else None


def decode_record(line: bytes | str) -> Optional[dict[str, object]]:
    """Decode one JSONL record; anything that is not a JSON object yields None."""
    try:
        record = json.loads(line)
    except ValueError:
        return None
    return record if isinstance(record, dict) else None


def assistant_texts(record: dict[str, object]) -> list[str]:
    """Non-empty text blocks of an `assistant` record (transcript and stream-json share the shape)."""
    if record.get("type") != "assistant":
        return []
    message = record.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    texts: list[str] = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "text":
            continue
        text = block.get("text")
        if isinstance(text, str) and text:
            texts.append(text)
    return texts


def transcript_preview(record: dict[str, object], limit: int = TRANSCRIPT_PREVIEW_MAX_CHARS) -> Optional[str]:
    """Joined assistant text of a record, truncated for the chat; None if there is nothing to show."""
    texts = assistant_texts(record)
    if not texts:
        return None
    return truncate("\n".join(texts), limit)
