"""Core instruction detection.

A user message counts as an instruction when it is pinned, or when the
text heuristics fire: enough imperative phrases, or a bullet/numbered list
in one of the first few user messages.
"""

import re

from context_health.config import DetectionConfig
from context_health.logging import get_logger
from context_health.models import ConversationSnapshot, PinSet

logger = get_logger("instructions")

_BULLET_PATTERNS = (
    re.compile(r"^\s*[-*]\s+", re.MULTILINE),
    re.compile(r"^\s*\d+\.\s+", re.MULTILINE),
)


def count_imperative_phrases(text: str, phrases: list[str] | None = None) -> int:
    """Count how many distinct imperative phrases appear in text.

    Args:
        text: Message text
        phrases: Lowercase phrases to look for (defaults to the built-in set)

    Returns:
        Number of phrases present at least once
    """
    if phrases is None:
        phrases = DetectionConfig().imperative_phrases
    lower_text = text.lower()
    return sum(1 for phrase in phrases if phrase in lower_text)


def has_bullet_list(text: str) -> bool:
    """Check whether text contains a line-leading bullet or numbered item."""
    return any(pattern.search(text) for pattern in _BULLET_PATTERNS)


def detect_instructions(
    snapshot: ConversationSnapshot,
    pins: PinSet | None = None,
    config: DetectionConfig | None = None,
) -> list[int]:
    """Find the transcript indices of core instruction messages.

    Only non-draft user messages are considered. A pinned message is
    always an instruction and skips the heuristics.

    Args:
        snapshot: Parsed conversation
        pins: Manually pinned message ids
        config: Detection thresholds and phrase set

    Returns:
        Indices into snapshot.messages, in transcript order
    """
    if config is None:
        config = DetectionConfig()

    instructions: list[int] = []
    user_rank = 0

    for index, msg in enumerate(snapshot.messages):
        if not msg.is_user or msg.is_draft:
            continue
        user_rank += 1

        if pins is not None and msg.id in pins:
            instructions.append(index)
            continue

        imperative_count = count_imperative_phrases(msg.text, config.imperative_phrases)
        dense = imperative_count >= config.min_imperatives

        is_instruction = dense
        if user_rank <= config.early_message_count and has_bullet_list(msg.text):
            is_instruction = True
        if dense and msg.char_count < config.compact_chars:
            is_instruction = True

        if is_instruction:
            logger.debug(
                "Instruction detected: index=%d imperatives=%d rank=%d",
                index,
                imperative_count,
                user_rank,
            )
            instructions.append(index)

    return instructions
