"""Heuristic conversation health scoring and handoff summaries."""

from context_health.handoff import build_handoff, richness_limits
from context_health.instructions import detect_instructions
from context_health.models import (
    ConversationSnapshot,
    HandoffRecord,
    HealthReport,
    Message,
    PinSet,
    Preferences,
    RawElement,
    Role,
    Tier,
)
from context_health.noise import detect_noise
from context_health.parser import parse
from context_health.scoring import score

__all__ = [
    "ConversationSnapshot",
    "HandoffRecord",
    "HealthReport",
    "Message",
    "PinSet",
    "Preferences",
    "RawElement",
    "Role",
    "Tier",
    "build_handoff",
    "detect_instructions",
    "detect_noise",
    "parse",
    "richness_limits",
    "score",
]
