"""Noise detection for token-heavy, low-signal response patterns."""

from context_health.config import NoiseConfig
from context_health.models import ConversationSnapshot, Role


def detect_noise(snapshot: ConversationSnapshot, config: NoiseConfig | None = None) -> int:
    """Compute the noise penalty for a conversation.

    A long assistant monologue and assistant token dominance each add a
    fixed penalty; the two stack.

    Args:
        snapshot: Parsed conversation
        config: Noise thresholds and penalties

    Returns:
        Penalty points (0 when neither pattern is present)
    """
    if config is None:
        config = NoiseConfig()

    assistant_tokens = 0
    has_monologue = False
    for msg in snapshot.messages:
        if msg.role is not Role.ASSISTANT:
            continue
        assistant_tokens += msg.token_estimate
        if msg.char_count > config.long_message_threshold:
            has_monologue = True

    penalty = 0
    if has_monologue:
        penalty += config.monologue_penalty

    ratio = assistant_tokens / snapshot.total_tokens if snapshot.total_tokens else 0
    if ratio > config.dominance_ratio:
        penalty += config.dominance_penalty

    return penalty
