"""Tests for health scoring."""

import pytest

from context_health.config import ScoringConfig
from context_health.instructions import detect_instructions
from context_health.models import ConversationSnapshot, Message, RawElement, Role, Tier
from context_health.noise import detect_noise
from context_health.parser import parse
from context_health.scoring import (
    NO_INSTRUCTIONS_REASON,
    NOISE_REASON,
    distance_penalty,
    empty_report,
    format_count,
    interpolate_penalty,
    round_half_up,
    score,
    threshold_penalty,
    tier_for,
)

CHAR_POINTS = ScoringConfig().char_penalty_points


def user(text: str) -> RawElement:
    return RawElement(role="user", text=text)


def assistant(text: str) -> RawElement:
    return RawElement(role="assistant", text=text)


def synthetic_snapshot(
    message_count: int,
    total_tokens: int,
    visible_chars: int = 0,
) -> ConversationSnapshot:
    """Alternating user/assistant messages with explicit totals."""
    messages = tuple(
        Message(
            id=f"m{i}",
            role=Role.USER if i % 2 == 0 else Role.ASSISTANT,
            text="hi",
            token_start=i,
            token_estimate=1,
        )
        for i in range(message_count)
    )
    return ConversationSnapshot(
        messages=messages,
        total_tokens=total_tokens,
        total_chars=2 * message_count,
        visible_chars=visible_chars,
    )


def full_score(snapshot: ConversationSnapshot):
    return score(snapshot, detect_instructions(snapshot), detect_noise(snapshot))


class TestTierFor:
    """Tests for tier_for function."""

    @pytest.mark.parametrize(
        "health,tier",
        [
            (100, Tier.STABLE),
            (80, Tier.STABLE),
            (79, Tier.DEGRADING),
            (50, Tier.DEGRADING),
            (49, Tier.UNRELIABLE),
            (20, Tier.UNRELIABLE),
            (19, Tier.CRITICAL),
            (0, Tier.CRITICAL),
        ],
    )
    def test_band_boundaries(self, health: int, tier: Tier) -> None:
        assert tier_for(health) is tier

    def test_custom_bands(self) -> None:
        config = ScoringConfig(tier_bands=[(90, "stable"), (10, "degrading")])
        assert tier_for(85, config) is Tier.DEGRADING
        assert tier_for(5, config) is Tier.CRITICAL


class TestInterpolatePenalty:
    """Tests for interpolate_penalty function."""

    def test_at_control_point(self) -> None:
        assert interpolate_penalty(CHAR_POINTS, 120000) == 25

    def test_midpoint(self) -> None:
        assert interpolate_penalty(CHAR_POINTS, 180000) == pytest.approx(37.5)

    def test_saturates_above_domain(self) -> None:
        assert interpolate_penalty(CHAR_POINTS, 800000) == 100
        assert interpolate_penalty(CHAR_POINTS, 5_000_000) == 100

    def test_zero(self) -> None:
        assert interpolate_penalty(CHAR_POINTS, 0) == 0

    def test_empty_table(self) -> None:
        assert interpolate_penalty([], 1000) == 0


class TestPenaltyHelpers:
    """Tests for threshold_penalty, distance_penalty and formatting."""

    def test_threshold_penalty_is_strict(self) -> None:
        thresholds = ScoringConfig().token_thresholds
        assert threshold_penalty(thresholds, 15000) == 0
        assert threshold_penalty(thresholds, 15001) == 10
        assert threshold_penalty(thresholds, 25001) == 20
        assert threshold_penalty(thresholds, 40001) == 30

    @pytest.mark.parametrize(
        "ratio,penalty",
        [(0.0, 0), (0.25, 0), (0.5, 0), (0.75, 20), (1.0, 40)],
    )
    def test_distance_penalty_grace_period(self, ratio: float, penalty: float) -> None:
        assert distance_penalty(ratio) == pytest.approx(penalty)

    def test_format_count(self) -> None:
        assert format_count(999) == "999"
        assert format_count(1500) == "2k"
        assert format_count(250000) == "250k"
        assert format_count(1234567) == "1.23M"

    def test_round_half_up(self) -> None:
        assert round_half_up(79.5) == 80
        assert round_half_up(80.5) == 81
        assert round_half_up(79.49) == 79


class TestScoreEmpty:
    """Tests for the empty-transcript branch."""

    def test_empty_transcript_is_stable(self) -> None:
        report = full_score(parse([]))
        assert report.health == 100
        assert report.tier is Tier.STABLE
        assert report.reasons == ()
        assert report.has_user_messages is False
        assert report.debug_stats.message_count == 0

    def test_empty_report_uses_visible_chars(self) -> None:
        """Stats should still reflect text visible on the page."""
        report = empty_report(ConversationSnapshot(visible_chars=4000))
        assert report.health == 100
        assert report.debug_stats.total_chars == 4000
        assert report.debug_stats.total_tokens == 1000

    def test_draft_only(self) -> None:
        """A draft alone is not a user message and adds no reasons."""
        report = full_score(parse([], draft_text="You must always answer in French."))
        assert report.health == 100
        assert report.has_user_messages is False
        assert report.reasons == ()
        assert report.debug_stats.message_count == 0


class TestInstructionDistance:
    """Tests for the instruction-distance penalty."""

    def test_single_instruction_message(self) -> None:
        """A lone instruction at the end of the transcript costs nothing."""
        snapshot = parse([user("You must always answer in French.")])
        indices = detect_instructions(snapshot)
        assert indices == [0]

        report = score(snapshot, indices, detect_noise(snapshot))
        assert report.health == 100
        assert report.tier is Tier.STABLE
        assert report.reasons == ("Conversation length: 33 chars",)
        assert report.has_user_messages is True

    def test_half_way_is_within_grace(self) -> None:
        """Instruction ending at exactly half the tokens should not be penalized."""
        instruction = ("You must always be concise. " + "a" * 200)[:200]
        snapshot = parse([user(instruction), assistant("b" * 200)])
        assert snapshot.messages[0].token_end == 50
        assert snapshot.total_tokens == 100

        report = score(snapshot, [0], 0)
        # Only the tiny character penalty (400 chars) applies
        assert report.health == 100

    def test_three_quarters_back(self) -> None:
        """Distance ratio 0.75 should cost 20 points."""
        instruction = ("You must always be concise. " + "a" * 200)[:200]
        snapshot = parse([user(instruction), user("c" * 400), assistant("b" * 200)])
        assert snapshot.total_tokens == 200

        report = score(snapshot, detect_instructions(snapshot), detect_noise(snapshot))
        # 100 - 20 (distance) - 800/120000*25 (chars) = 79.83
        assert report.health == 80
        assert report.tier is Tier.STABLE
        assert report.reasons == ("Conversation length: 800 chars",)

    def test_distance_reason_beyond_5000_tokens(self) -> None:
        """A far-back instruction should be reported in thousands of tokens."""
        snapshot = synthetic_snapshot(message_count=70, total_tokens=16000)
        report = score(snapshot, [0], 0)
        assert report.reasons[0] == "Primary instruction 15k tokens back"

    def test_uses_last_instruction(self) -> None:
        """Only the highest flagged index should matter."""
        snapshot = synthetic_snapshot(message_count=10, total_tokens=10)
        assert score(snapshot, [0, 8], 0).health == 100
        assert score(snapshot, [0], 0).health < 100

    def test_zero_tokens_ratio(self) -> None:
        """Zero total tokens must not divide by zero."""
        message = Message(id="m0", role=Role.USER, text="x", token_start=0, token_estimate=0)
        snapshot = ConversationSnapshot(messages=(message,), total_tokens=0, total_chars=1)
        report = score(snapshot, [0], 0)
        assert report.health == 100


class TestNoInstructions:
    """Tests for the no-instruction branch."""

    def test_reason_added(self) -> None:
        snapshot = parse([user("hello there"), assistant("Hi! How can I help?")])
        report = full_score(snapshot)
        assert report.reasons == (NO_INSTRUCTIONS_REASON, "Conversation length: 30 chars")
        assert report.health == 100

    def test_penalty_ramps_with_chars(self) -> None:
        """60000 chars without instructions should cost 15 points plus length."""
        snapshot = parse([user("hello")], visible_chars=60000)
        report = score(snapshot, [], 0)
        # 15 (no instructions) + 12.5 (char interpolation) = 27.5 -> 72.5 -> 73
        assert report.health == 73
        assert report.tier is Tier.DEGRADING

    def test_penalty_caps_at_30(self) -> None:
        snapshot = parse([user("hello")], visible_chars=120000)
        report = score(snapshot, [], 0)
        # 30 (cap) + 25 (chars)
        assert report.health == 45

    def test_assistant_only_has_no_penalty(self) -> None:
        snapshot = parse([assistant("hello")])
        report = score(snapshot, [], 0)
        assert NO_INSTRUCTIONS_REASON not in report.reasons
        assert report.has_user_messages is False


class TestLengthPenalty:
    """Tests for the length penalty."""

    def test_max_not_sum(self) -> None:
        """Only the largest of the token/char/message penalties applies."""
        snapshot = synthetic_snapshot(message_count=70, total_tokens=16000, visible_chars=250000)
        report = score(snapshot, [], 0)

        # instruction: min(30, 62.5) = 30; length: max(10, 50.89, 10)
        assert report.health == 19
        assert report.tier is Tier.CRITICAL
        assert report.reasons == (NO_INSTRUCTIONS_REASON, "Conversation length: 250k chars")

    def test_tied_reasons_in_fixed_order(self) -> None:
        """Equal token and message penalties both report, token first."""
        snapshot = synthetic_snapshot(message_count=70, total_tokens=16000)
        report = score(snapshot, [68], 0)
        assert report.reasons == (
            "Primary instruction 15k tokens back",
            "Conversation length: 16k tokens",
            "Conversation length: 70 messages",
        )

    def test_message_count_excludes_draft(self) -> None:
        elements = [user(f"q{i}") if i % 2 == 0 else assistant(f"a{i}") for i in range(61)]
        report = score(parse(elements, draft_text="draft"), [], 0)
        assert "Conversation length: 61 messages" in report.reasons

    def test_debug_stats_reconcile_tokens(self) -> None:
        """Displayed tokens should never undercut the character estimate."""
        snapshot = synthetic_snapshot(message_count=2, total_tokens=2, visible_chars=400000)
        report = score(snapshot, [], 0)
        assert report.debug_stats.total_chars == 400000
        assert report.debug_stats.total_tokens == 100000
        assert report.debug_stats.message_count == 2


class TestNoiseAndClamp:
    """Tests for the noise reason and final clamping."""

    def test_noise_reason(self) -> None:
        snapshot = parse([user("You must always answer."), assistant("y" * 5000)])
        report = full_score(snapshot)
        assert NOISE_REASON in report.reasons
        assert report.reasons[-1] == NOISE_REASON

    def test_clamped_to_zero(self) -> None:
        snapshot = synthetic_snapshot(message_count=150, total_tokens=50000, visible_chars=900000)
        report = score(snapshot, [], 25)
        assert report.health == 0
        assert report.tier is Tier.CRITICAL

    def test_health_is_int_in_range(self) -> None:
        for visible in (0, 10000, 130000, 500000, 1000000):
            snapshot = synthetic_snapshot(message_count=20, total_tokens=30000, visible_chars=visible)
            report = score(snapshot, [], 15)
            assert isinstance(report.health, int)
            assert 0 <= report.health <= 100
            assert report.tier is tier_for(report.health)

    def test_deterministic(self) -> None:
        snapshot = synthetic_snapshot(message_count=80, total_tokens=26000, visible_chars=130000)
        assert score(snapshot, [3], 10) == score(snapshot, [3], 10)

    def test_report_to_dict(self) -> None:
        report = full_score(parse([user("hello")]))
        data = report.to_dict()
        assert data["health"] == 100
        assert data["tier"] == "stable"
        assert data["hasUserMessages"] is True
        assert data["debugStats"] == {"totalChars": 5, "totalTokens": 2, "messageCount": 1}
