"""Caller-owned session state for one open conversation.

The scoring and handoff functions are pure. Everything that has to survive
between updates (pins, preferences, the previous tier, whether a pending
handoff was already inserted) lives on a HealthSession instead.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from context_health.config import Config
from context_health.handoff import build_handoff
from context_health.instructions import detect_instructions
from context_health.logging import get_logger
from context_health.models import ConversationSnapshot, HealthReport, Preferences, RawElement, Tier
from context_health.noise import detect_noise
from context_health.parser import parse
from context_health.scoring import empty_report, score
from context_health.storage import StateStore

logger = get_logger("session")


@dataclass(frozen=True)
class SessionUpdate:
    """Outcome of one update pass, ready for rendering."""

    report: HealthReport
    snapshot: ConversationSnapshot
    instruction_indices: tuple[int, ...]
    tier_changed: bool
    can_refresh: bool
    can_copy: bool
    pending_handoff: str | None = None


class HealthSession:
    """Tracks one conversation across repeated parse/score passes."""

    def __init__(self, store: StateStore, config: Config | None = None, conversation_id: str = "default") -> None:
        self.store = store
        self.config = config or Config()
        self.conversation_id = conversation_id
        self.pins = store.load_pins(conversation_id)
        self.preferences = store.load_preferences()
        self.snapshot = ConversationSnapshot(conversation_id=conversation_id)
        self.report: HealthReport | None = None
        self.last_tier = Tier.STABLE
        self.handoff_applied = False

    def switch_conversation(self, conversation_id: str) -> None:
        """Point the session at another conversation and reload its pins."""
        if conversation_id == self.conversation_id:
            return
        logger.info("Switching conversation: %s -> %s", self.conversation_id, conversation_id)
        self.conversation_id = conversation_id
        self.pins = self.store.load_pins(conversation_id)
        self.snapshot = ConversationSnapshot(conversation_id=conversation_id)
        self.report = None
        self.last_tier = Tier.STABLE
        self.handoff_applied = False

    def update(
        self,
        elements: Iterable[RawElement],
        draft_text: str | None = None,
        visible_chars: int = 0,
    ) -> SessionUpdate:
        """Parse the current transcript and score it."""
        snapshot = parse(
            elements,
            draft_text,
            self.pins,
            visible_chars=visible_chars,
            conversation_id=self.conversation_id,
            save_pins=self.store.save_pins,
            config=self.config.parser,
        )
        chars_per_token = self.config.parser.chars_per_token

        if snapshot.is_empty:
            instruction_indices: list[int] = []
            report = empty_report(snapshot, chars_per_token)
        else:
            self.snapshot = snapshot
            instruction_indices = detect_instructions(snapshot, self.pins, self.config.detection)
            noise_penalty = detect_noise(snapshot, self.config.noise)
            report = score(
                snapshot,
                instruction_indices,
                noise_penalty,
                self.config.scoring,
                chars_per_token,
            )

        tier_changed = report.tier is not self.last_tier
        if tier_changed:
            logger.info("Tier changed: %s -> %s (health=%d)", self.last_tier.value, report.tier.value, report.health)
            self.last_tier = report.tier
        self.report = report

        return SessionUpdate(
            report=report,
            snapshot=snapshot,
            instruction_indices=tuple(instruction_indices),
            tier_changed=tier_changed,
            can_refresh=report.has_user_messages and report.health <= self.config.handoff.threshold,
            can_copy=report.has_user_messages,
            pending_handoff=self._pending_handoff(snapshot),
        )

    def _pending_handoff(self, snapshot: ConversationSnapshot) -> str | None:
        if self.handoff_applied or snapshot.has_user_messages:
            return None
        record = self.store.load_handoff()
        return record.packet if record is not None else None

    def mark_handoff_applied(self) -> None:
        """Record that the pending packet was inserted and drop it from storage."""
        self.store.clear_handoff()
        self.handoff_applied = True

    def toggle_pin(self, message_id: str) -> bool:
        """Pin or unpin a message. Returns True if it is now pinned."""
        pinned = self.store.toggle_pin(self.pins, message_id)
        logger.info("Pin %s: %s", "added" if pinned else "removed", message_id)
        return pinned

    def set_preferences(
        self,
        auto_load_history: bool | None = None,
        handoff_richness: str | None = None,
    ) -> Preferences:
        if auto_load_history is not None:
            self.preferences.auto_load_history = auto_load_history
        if handoff_richness is not None:
            self.preferences.handoff_richness = handoff_richness
        self.store.save_preferences(self.preferences)
        return self.preferences

    def copy_handoff(self) -> str | None:
        """Build a handoff packet for the clipboard."""
        if self.snapshot.is_empty:
            return None
        limits = self.config.handoff.limits_for(self.preferences.handoff_richness)
        return build_handoff(self.snapshot, self.pins, limits, self.config.detection)

    def start_handoff(self) -> str | None:
        """Build a handoff packet and store it for the next conversation."""
        packet = self.copy_handoff()
        if packet is None:
            return None
        self.store.save_handoff(packet, self.conversation_id)
        logger.info("Stored handoff packet: conversation=%s chars=%d", self.conversation_id, len(packet))
        return packet
