"""Conversation parser.

Turns the extracted transcript turns into a ConversationSnapshot:

- empty turns are skipped
- every message gets a content-derived id of the form
  msg_<role>_<hash>_<occurrence>, stable across re-parses of the same
  transcript
- pins stored under the legacy positional scheme (msg_<index>) are
  remapped to the new ids as messages are re-identified
- an unsent draft is appended last with the reserved id "draft"
"""

import math
import re
from collections.abc import Callable, Iterable

from context_health.config import ParserConfig
from context_health.logging import get_logger
from context_health.models import DRAFT_ID, ConversationSnapshot, Message, PinSet, RawElement, Role

logger = get_logger("parser")

_CONVERSATION_PATH = re.compile(r"/chat/([a-zA-Z0-9-]+)")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def hash_text(text: str) -> str:
    """Compute a stable djb2 hash of text, rendered in base 36.

    The hash runs over UTF-16 code units with unsigned 32-bit wraparound,
    so ids match those produced by the browser extension for the same text.

    Args:
        text: Message text

    Returns:
        Base-36 string of the unsigned 32-bit hash
    """
    value = 5381
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        value = ((value << 5) + value + unit) & 0xFFFFFFFF

    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def estimate_tokens(char_count: int, chars_per_token: int = 4) -> int:
    """Approximate a token count from a character count."""
    return math.ceil(char_count / chars_per_token)


def legacy_message_id(index: int) -> str:
    """Positional id used by older pin data."""
    return f"msg_{index}"


def conversation_id_from_url(url: str | None) -> str:
    """Extract the conversation identity from a thread address.

    Args:
        url: Page URL or path, e.g. https://claude.ai/chat/abc-123

    Returns:
        The id segment after /chat/, or 'default' when there is none
    """
    if not url:
        return "default"
    match = _CONVERSATION_PATH.search(url)
    return match.group(1) if match else "default"


def normalize_role(role: str) -> Role | None:
    """Map a raw role label onto a Role, or None for anything else."""
    try:
        return Role(role.strip().lower())
    except ValueError:
        return None


def parse(
    elements: Iterable[RawElement],
    draft_text: str | None = None,
    pins: PinSet | None = None,
    *,
    visible_chars: int = 0,
    conversation_id: str | None = None,
    save_pins: Callable[[PinSet], None] | None = None,
    config: ParserConfig | None = None,
) -> ConversationSnapshot:
    """Parse extracted transcript turns into a snapshot.

    Args:
        elements: Transcript turns in display order
        draft_text: Current unsent input, if any
        pins: Pin set for this conversation; legacy entries are migrated in place
        visible_chars: Character count of the broader region holding the transcript
        conversation_id: Conversation identity (defaults to the pin set's)
        save_pins: Called once with the pin set if any legacy pin was migrated
        config: Parser settings

    Returns:
        ConversationSnapshot for this pass
    """
    if config is None:
        config = ParserConfig()
    if conversation_id is None:
        conversation_id = pins.conversation_id if pins is not None else "default"

    messages: list[Message] = []
    occurrences: dict[str, int] = {}
    cumulative_tokens = 0
    total_chars = 0
    migrated = False

    for index, element in enumerate(elements):
        text = element.text or ""
        if not text.strip():
            continue

        role = normalize_role(element.role)
        if role is None:
            logger.debug("Skipping element with unknown role: index=%d role=%s", index, element.role)
            continue

        char_count = len(text)
        tokens = estimate_tokens(char_count, config.chars_per_token)
        total_chars += char_count

        text_hash = hash_text(text)
        key = f"{role.value}:{text_hash}"
        occurrence = occurrences.get(key, 0) + 1
        occurrences[key] = occurrence
        message_id = f"msg_{role.value}_{text_hash}_{occurrence}"

        legacy_id = legacy_message_id(index)
        if pins is not None and legacy_id in pins:
            pins.discard(legacy_id)
            pins.add(message_id)
            migrated = True
            logger.debug("Migrated legacy pin: %s -> %s", legacy_id, message_id)

        messages.append(
            Message(
                id=message_id,
                role=role,
                text=text,
                token_start=cumulative_tokens,
                token_estimate=tokens,
                ref=element.ref,
            )
        )
        cumulative_tokens += tokens

    if migrated and save_pins is not None:
        save_pins(pins)

    if draft_text and draft_text.strip():
        tokens = estimate_tokens(len(draft_text), config.chars_per_token)
        messages.append(
            Message(
                id=DRAFT_ID,
                role=Role.USER,
                text=draft_text,
                token_start=cumulative_tokens,
                token_estimate=tokens,
                is_draft=True,
            )
        )
        cumulative_tokens += tokens

    return ConversationSnapshot(
        messages=tuple(messages),
        total_tokens=cumulative_tokens,
        total_chars=total_chars,
        visible_chars=visible_chars,
        conversation_id=conversation_id,
    )
