"""Canonical data models."""

from dataclasses import dataclass, field
from enum import Enum

DRAFT_ID = "draft"


class Role(str, Enum):
    """Speaker of a transcript turn."""

    USER = "user"
    ASSISTANT = "assistant"


class Tier(str, Enum):
    """Discrete health band derived from the numeric score."""

    STABLE = "stable"
    DEGRADING = "degrading"
    UNRELIABLE = "unreliable"
    CRITICAL = "critical"


@dataclass(frozen=True)
class RawElement:
    """One extracted transcript turn as supplied by the page scraper."""

    role: str  # user, assistant
    text: str
    ref: object = None  # Opaque handle back to the source element


@dataclass(frozen=True)
class Message:
    """A normalized transcript turn with derived token bookkeeping."""

    id: str
    role: Role
    text: str
    token_start: int
    token_estimate: int
    is_draft: bool = False
    ref: object = field(default=None, compare=False, repr=False)

    @property
    def char_count(self) -> int:
        return len(self.text)

    @property
    def token_end(self) -> int:
        """Exclusive upper bound of this message's token range."""
        return self.token_start + self.token_estimate

    @property
    def token_range(self) -> tuple[int, int]:
        return (self.token_start, self.token_end)

    @property
    def is_user(self) -> bool:
        return self.role is Role.USER

    @property
    def role_label(self) -> str:
        """Display label used in handoff documents."""
        return "User" if self.is_user else "Assistant"


@dataclass(frozen=True)
class ConversationSnapshot:
    """Result of one parse pass over the current transcript."""

    messages: tuple[Message, ...] = ()
    total_tokens: int = 0
    total_chars: int = 0  # Non-draft message characters only
    visible_chars: int = 0  # Broader page-region estimate
    conversation_id: str = "default"

    @property
    def effective_chars(self) -> int:
        """Character count to use for any length-based penalty."""
        return max(self.total_chars, self.visible_chars)

    @property
    def is_empty(self) -> bool:
        return not self.messages

    @property
    def full_messages(self) -> list[Message]:
        """Messages excluding the draft."""
        return [msg for msg in self.messages if not msg.is_draft]

    @property
    def has_user_messages(self) -> bool:
        return any(msg.is_user and not msg.is_draft for msg in self.messages)


@dataclass
class PinSet:
    """Message ids the user marked as core instructions for one conversation."""

    conversation_id: str = "default"
    ids: set[str] = field(default_factory=set)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self.ids

    def __len__(self) -> int:
        return len(self.ids)

    def add(self, message_id: str) -> None:
        self.ids.add(message_id)

    def discard(self, message_id: str) -> None:
        self.ids.discard(message_id)

    def to_list(self) -> list[str]:
        return sorted(self.ids)


@dataclass(frozen=True)
class DebugStats:
    total_chars: int
    total_tokens: int
    message_count: int


@dataclass(frozen=True)
class HealthReport:
    """Score, tier and explanation for one scoring call."""

    health: int
    tier: Tier
    reasons: tuple[str, ...]
    has_user_messages: bool
    debug_stats: DebugStats

    def to_dict(self) -> dict:
        """Convert to the JSON shape consumed by the presentation layer."""
        return {
            "health": self.health,
            "tier": self.tier.value,
            "reasons": list(self.reasons),
            "hasUserMessages": self.has_user_messages,
            "debugStats": {
                "totalChars": self.debug_stats.total_chars,
                "totalTokens": self.debug_stats.total_tokens,
                "messageCount": self.debug_stats.message_count,
            },
        }


@dataclass(frozen=True)
class HandoffRecord:
    """A stored handoff packet waiting to be inserted into a new conversation."""

    created_at: int  # Epoch milliseconds
    conversation_id: str
    packet: str

    def to_dict(self) -> dict:
        return {
            "createdAt": self.created_at,
            "conversationId": self.conversation_id,
            "packet": self.packet,
        }


@dataclass
class Preferences:
    """User preferences persisted alongside pins."""

    auto_load_history: bool = True
    handoff_richness: str = "rich"

    def to_dict(self) -> dict:
        return {
            "autoLoadHistory": self.auto_load_history,
            "handoffRichness": self.handoff_richness,
        }
