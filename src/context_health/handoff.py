"""Handoff packet construction.

Builds a condensed markdown summary of a conversation that can be pasted
into a fresh session. Messages outside the recent window are ranked by a
salience score; the best few appear as highlights.
"""

import re

from context_health.config import DetectionConfig, HandoffConfig, HandoffLimits
from context_health.instructions import count_imperative_phrases, has_bullet_list
from context_health.models import ConversationSnapshot, Message, PinSet

TITLE = "# Context handoff from previous chat"
CLOSING_LINE = "Please continue from this context."
SEPARATOR = "\n\n---\n"

LONG_MESSAGE_CHARS = 1200
CODE_FENCE = "```"

_WHITESPACE = re.compile(r"\s+")
_IMPORTANCE = re.compile(r"\bimportant\b|\bmust\b|\bshould\b|\bremember\b", re.IGNORECASE)


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def clip_text(text: str, max_chars: int) -> str:
    """Normalize text and truncate it to max_chars with a trailing ellipsis."""
    normalized = normalize_text(text)
    if len(normalized) <= max_chars:
        return normalized
    return f"{normalized[:max_chars - 3]}..."


def richness_limits(richness: str | None, config: HandoffConfig | None = None) -> HandoffLimits:
    """Resolve a richness preset name; unknown names get the default preset."""
    if config is None:
        config = HandoffConfig()
    return config.limits_for(richness)


def score_salience(msg: Message, detection: DetectionConfig | None = None) -> int:
    """Heuristic worth-keeping score for one message."""
    if detection is None:
        detection = DetectionConfig()

    score = 0
    if msg.is_user:
        score += 1
    if has_bullet_list(msg.text):
        score += 3
    if count_imperative_phrases(msg.text, detection.imperative_phrases) >= detection.min_imperatives:
        score += 2
    if msg.char_count > LONG_MESSAGE_CHARS:
        score += 2
    if CODE_FENCE in msg.text:
        score += 2
    if _IMPORTANCE.search(msg.text):
        score += 2
    return score


def select_salient(
    messages: list[Message],
    exclude_ids: set[str],
    max_count: int,
    detection: DetectionConfig | None = None,
) -> list[Message]:
    """Pick the highest-scoring messages not in exclude_ids.

    Ties go to the earlier message.
    """
    scored = []
    for index, msg in enumerate(messages):
        if msg.id in exclude_ids:
            continue
        salience = score_salience(msg, detection)
        if salience <= 0:
            continue
        scored.append((salience, index, msg))

    scored.sort(key=lambda item: (-item[0], item[1]))
    return [msg for _, _, msg in scored[:max_count]]


def _labeled(msg: Message, max_chars: int) -> str:
    return f"- **{msg.role_label}:** {clip_text(msg.text, max_chars)}"


def build_handoff(
    snapshot: ConversationSnapshot,
    pins: PinSet | None,
    limits: HandoffLimits,
    detection: DetectionConfig | None = None,
) -> str:
    """Assemble the handoff document.

    Args:
        snapshot: Parsed conversation (the draft is ignored)
        pins: Pinned message ids
        limits: Richness limits for clipping and section sizes
        detection: Phrase set and threshold shared with instruction detection

    Returns:
        Markdown document ending with a separator line
    """
    full_messages = snapshot.full_messages
    user_messages = [msg for msg in full_messages if msg.is_user]
    pinned = [msg for msg in full_messages if pins is not None and msg.id in pins]
    recent = full_messages[-limits.max_recent:] if limits.max_recent > 0 else []
    recent_ids = {msg.id for msg in recent}

    lines = [TITLE, ""]

    if user_messages:
        lines.append("## Original request:")
        lines.append(clip_text(user_messages[0].text, limits.max_chars))

    if pinned:
        lines.append("")
        lines.append("### Pinned instructions:")
        lines.extend(_labeled(msg, limits.max_chars) for msg in pinned[:limits.max_pinned])

    salient = select_salient(full_messages, recent_ids, limits.max_salience, detection)
    if salient:
        lines.append("")
        lines.append("### Key highlights:")
        lines.extend(_labeled(msg, limits.max_chars) for msg in salient)

    if user_messages:
        lines.append("")
        lines.append("### Current focus:")
        lines.append(clip_text(user_messages[-1].text, limits.max_chars))

    if recent:
        lines.append("")
        lines.append("### Recent exchange:")
        lines.extend(_labeled(msg, limits.max_chars) for msg in recent)

    lines.append("")
    lines.append(CLOSING_LINE)
    return "\n".join(lines) + SEPARATOR
