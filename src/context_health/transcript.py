"""Transcript file loading.

Accepted layouts:

- JSON list of {"role": ..., "text": ...} objects
- JSON object {"url" | "conversationId", "messages": [...], "draft", "visibleChars"}
- JSONL with one message object per line

"content" is accepted in place of "text". Element refs are positions in
the file; the parser skips roles other than user/assistant but they still
hold their position.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from context_health.logging import get_logger
from context_health.models import RawElement
from context_health.parser import conversation_id_from_url

logger = get_logger("transcript")


@dataclass
class Transcript:
    """Extracted transcript ready for parsing."""

    elements: list[RawElement] = field(default_factory=list)
    draft: str = ""
    visible_chars: int = 0
    conversation_id: str = "default"


def _extract_text(content: Any) -> str:
    """Extract text from a string or a list of content blocks."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type", "text") == "text":
                text = block.get("text", "")
                if isinstance(text, str):
                    parts.append(text)
        return "\n".join(parts)
    return ""


def _elements_from_entries(entries: list[Any]) -> list[RawElement]:
    elements: list[RawElement] = []
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            continue
        role = entry.get("role")
        if not isinstance(role, str):
            role = ""
        text = _extract_text(entry.get("text", entry.get("content")))
        elements.append(RawElement(role=role, text=text, ref=position))
    return elements


def _load_jsonl(path: Path) -> list[Any]:
    entries: list[Any] = []
    with open(path, encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Skipping malformed line %d in %s", line_number, path)
    return entries


def load_transcript(path: Path) -> Transcript:
    """Load a transcript file.

    Args:
        path: JSON or JSONL transcript file

    Returns:
        Transcript with elements in file order

    Raises:
        ValueError: If a JSON file holds neither a list nor a transcript object
    """
    if path.suffix.lower() == ".jsonl":
        return Transcript(elements=_elements_from_entries(_load_jsonl(path)))

    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, list):
        return Transcript(elements=_elements_from_entries(data))

    if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
        raise ValueError(f"Unrecognized transcript layout in {path}")

    conversation_id = data.get("conversationId")
    if not isinstance(conversation_id, str) or not conversation_id:
        conversation_id = conversation_id_from_url(data.get("url"))

    draft = data.get("draft")
    visible_chars = data.get("visibleChars")
    return Transcript(
        elements=_elements_from_entries(data["messages"]),
        draft=draft if isinstance(draft, str) else "",
        visible_chars=visible_chars if isinstance(visible_chars, int) else 0,
        conversation_id=conversation_id,
    )
