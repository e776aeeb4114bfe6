"""Health scoring.

Combines three penalty families into a 0-100 health score:

1. Instruction distance: how far the conversation has moved past the last
   core instruction. The first half of the conversation after it is free.
2. Length: the largest of a token, character and message-count penalty.
   These measure the same thing through different proxies, so they are
   not summed.
3. Noise: long or dominant assistant output (see noise.py).
"""

import math

from context_health.config import ScoringConfig
from context_health.logging import get_logger
from context_health.models import ConversationSnapshot, DebugStats, HealthReport, Tier

logger = get_logger("scoring")

NO_INSTRUCTIONS_REASON = "No core instructions detected"
NOISE_REASON = "Long assistant responses detected"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_count(value: int) -> str:
    """Format a count for display: 1.23M, 42k, or the plain number."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.2f}M"
    if value >= 1000:
        return f"{round_half_up(value / 1000)}k"
    return str(value)


def interpolate_penalty(points: list[tuple[int, float]], value: float) -> float:
    """Piecewise-linear interpolation over (x, penalty) control points.

    Values at or below the first point take its penalty; values above the
    last point saturate at the last penalty.
    """
    if not points:
        return 0
    if value <= points[0][0]:
        return points[0][1]

    for (prev_x, prev_penalty), (next_x, next_penalty) in zip(points, points[1:]):
        if value <= next_x:
            span = next_x - prev_x
            if span <= 0:
                return next_penalty
            ratio = (value - prev_x) / span
            return prev_penalty + ratio * (next_penalty - prev_penalty)

    return points[-1][1]


def threshold_penalty(thresholds: list[tuple[int, float]], value: float) -> float:
    """Return the penalty of the highest threshold strictly exceeded by value."""
    for bound, penalty in thresholds:
        if value > bound:
            return penalty
    return 0


def distance_penalty(distance_ratio: float, config: ScoringConfig | None = None) -> float:
    """Penalty for the share of the conversation after the last instruction."""
    if config is None:
        config = ScoringConfig()
    if distance_ratio <= config.grace_ratio:
        return 0
    return (distance_ratio - config.grace_ratio) * config.distance_multiplier


def tier_for(health: float, config: ScoringConfig | None = None) -> Tier:
    """Map a health score onto its tier; band lower bounds are inclusive."""
    if config is None:
        config = ScoringConfig()
    for lower_bound, tier in config.tier_bands:
        if health >= lower_bound:
            return Tier(tier)
    return Tier.CRITICAL


def _debug_stats(snapshot: ConversationSnapshot, chars_per_token: int, message_count: int) -> DebugStats:
    effective_chars = snapshot.effective_chars
    return DebugStats(
        total_chars=effective_chars,
        total_tokens=max(snapshot.total_tokens, math.ceil(effective_chars / chars_per_token)),
        message_count=message_count,
    )


def empty_report(snapshot: ConversationSnapshot | None = None, chars_per_token: int = 4) -> HealthReport:
    """Report for a transcript with nothing in it yet."""
    if snapshot is None:
        snapshot = ConversationSnapshot()
    return HealthReport(
        health=100,
        tier=Tier.STABLE,
        reasons=(),
        has_user_messages=False,
        debug_stats=_debug_stats(snapshot, chars_per_token, 0),
    )


def score(
    snapshot: ConversationSnapshot,
    instruction_indices: list[int],
    noise_penalty: float,
    config: ScoringConfig | None = None,
    chars_per_token: int = 4,
) -> HealthReport:
    """Score a conversation.

    Args:
        snapshot: Parsed conversation
        instruction_indices: Indices of instruction messages from detect_instructions()
        noise_penalty: Penalty from detect_noise()
        config: Scoring thresholds
        chars_per_token: Ratio used to reconcile the displayed token count

    Returns:
        HealthReport for this snapshot
    """
    if config is None:
        config = ScoringConfig()
    if snapshot.is_empty:
        return empty_report(snapshot, chars_per_token)

    reasons: list[str] = []
    full_messages = snapshot.full_messages
    message_count = len(full_messages)
    has_user_messages = snapshot.has_user_messages
    total_tokens = snapshot.total_tokens
    total_chars = snapshot.effective_chars

    # 1. Instruction distance
    instruction_penalty: float = 0
    if instruction_indices:
        last_instruction = snapshot.messages[max(instruction_indices)]
        distance_from_end = total_tokens - last_instruction.token_end
        distance_ratio = distance_from_end / total_tokens if total_tokens else 0
        instruction_penalty = distance_penalty(distance_ratio, config)

        if distance_from_end > config.distance_reason_tokens:
            reasons.append(f"Primary instruction {distance_from_end // 1000}k tokens back")
    elif has_user_messages:
        scaled = (total_chars / config.no_instruction_ramp_chars) * config.no_instruction_max_penalty
        instruction_penalty = min(config.no_instruction_max_penalty, scaled)
        reasons.append(NO_INSTRUCTIONS_REASON)

    # 2. Length
    token_penalty = threshold_penalty(config.token_thresholds, total_tokens)
    char_penalty = interpolate_penalty(config.char_penalty_points, total_chars)
    message_penalty = threshold_penalty(config.message_thresholds, message_count)

    length_penalty = max(token_penalty, char_penalty, message_penalty)
    if length_penalty == token_penalty and token_penalty > 0:
        reasons.append(f"Conversation length: {format_count(total_tokens)} tokens")
    if length_penalty == char_penalty and char_penalty > 0:
        reasons.append(f"Conversation length: {format_count(total_chars)} chars")
    if length_penalty == message_penalty and message_penalty > 0:
        reasons.append(f"Conversation length: {message_count} messages")

    # 3. Noise
    if noise_penalty > 0:
        reasons.append(NOISE_REASON)

    raw_health = 100 - instruction_penalty - length_penalty - noise_penalty
    health = round_half_up(max(0, min(100, raw_health)))

    logger.debug(
        "Scored conversation: health=%d instruction=%.1f length=%.1f noise=%.1f",
        health,
        instruction_penalty,
        length_penalty,
        noise_penalty,
    )

    return HealthReport(
        health=health,
        tier=tier_for(health, config),
        reasons=tuple(reasons),
        has_user_messages=has_user_messages,
        debug_stats=_debug_stats(snapshot, chars_per_token, message_count),
    )
