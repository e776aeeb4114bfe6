"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_IMPERATIVE_PHRASES = [
    "you are",
    "act as",
    "always",
    "never",
    "do not",
    "don't",
    "must",
    "should",
    "follow these",
    "remember to",
    "make sure",
]


@dataclass(frozen=True)
class HandoffLimits:
    """Size limits for one handoff richness level."""

    max_chars: int
    max_pinned: int
    max_recent: int
    max_salience: int


def default_richness_presets() -> dict[str, HandoffLimits]:
    return {
        "compact": HandoffLimits(max_chars=400, max_pinned=5, max_recent=6, max_salience=3),
        "standard": HandoffLimits(max_chars=700, max_pinned=6, max_recent=8, max_salience=4),
        "rich": HandoffLimits(max_chars=900, max_pinned=8, max_recent=12, max_salience=6),
    }


@dataclass
class ParserConfig:
    chars_per_token: int = 4


@dataclass
class DetectionConfig:
    imperative_phrases: list[str] = field(default_factory=lambda: list(DEFAULT_IMPERATIVE_PHRASES))
    min_imperatives: int = 2
    early_message_count: int = 3
    compact_chars: int = 800


@dataclass
class NoiseConfig:
    long_message_threshold: int = 4000
    monologue_penalty: int = 10
    dominance_ratio: float = 0.7
    dominance_penalty: int = 15


@dataclass
class ScoringConfig:
    grace_ratio: float = 0.5
    distance_multiplier: float = 80
    distance_reason_tokens: int = 5000
    no_instruction_max_penalty: float = 30
    no_instruction_ramp_chars: int = 120000
    # (threshold, penalty) pairs, checked highest threshold first
    token_thresholds: list[tuple[int, float]] = field(
        default_factory=lambda: [(40000, 30), (25000, 20), (15000, 10)]
    )
    # (chars, penalty) control points for linear interpolation
    char_penalty_points: list[tuple[int, float]] = field(
        default_factory=lambda: [(0, 0), (120000, 25), (240000, 50), (800000, 100)]
    )
    message_thresholds: list[tuple[int, float]] = field(
        default_factory=lambda: [(140, 30), (100, 20), (60, 10)]
    )
    # (lower bound, tier) bands, anything below the last band is critical
    tier_bands: list[tuple[int, str]] = field(
        default_factory=lambda: [(80, "stable"), (50, "degrading"), (20, "unreliable")]
    )


@dataclass
class HandoffConfig:
    threshold: int = 50
    expiry_seconds: int = 2 * 60 * 60
    default_richness: str = "rich"
    presets: dict[str, HandoffLimits] = field(default_factory=default_richness_presets)

    def limits_for(self, richness: str | None) -> HandoffLimits:
        """Look up the limits for a richness name, falling back to the default."""
        if richness and richness in self.presets:
            return self.presets[richness]
        if self.default_richness in self.presets:
            return self.presets[self.default_richness]
        return default_richness_presets()["rich"]


@dataclass
class StorageConfig:
    state_db: Path = field(
        default_factory=lambda: Path.home() / "context-health" / "state" / "context-health.db"
    )
    pins_key: str = "claude_healthbar_pins"
    handoff_key: str = "claude_healthbar_handoff"
    settings_key: str = "claude_healthbar_settings"


@dataclass
class WatchConfig:
    interval_seconds: float = 1.0
    debounce_ms: int = 500
    log_dir: Path | None = None


@dataclass
class Config:
    parser: ParserConfig = field(default_factory=ParserConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    noise: NoiseConfig = field(default_factory=NoiseConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    handoff: HandoffConfig = field(default_factory=HandoffConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def _pairs(value: Any, default: list[tuple]) -> list[tuple]:
    """Read a threshold table given as a list of pairs or a mapping."""
    if value is None:
        return list(default)
    if isinstance(value, dict):
        items = value.items()
    elif isinstance(value, list):
        items = value
    else:
        raise ValueError(f"Expected a list of pairs or a mapping, got {type(value).__name__}")

    pairs = []
    for item in items:
        if len(item) != 2:
            raise ValueError(f"Threshold entry must have two values: {item!r}")
        pairs.append((item[0], item[1]))
    return pairs


def _threshold_pairs(value: Any, default: list[tuple[int, float]]) -> list[tuple[int, float]]:
    pairs = [(int(bound), float(penalty)) for bound, penalty in _pairs(value, default)]
    return sorted(pairs, key=lambda pair: pair[0], reverse=True)


def _parse_presets(data: dict[str, Any]) -> dict[str, HandoffLimits]:
    presets = default_richness_presets()
    for name, limits in data.items():
        base = presets.get(name, presets["rich"])
        presets[name] = HandoffLimits(
            max_chars=limits.get("max_chars", base.max_chars),
            max_pinned=limits.get("max_pinned", base.max_pinned),
            max_recent=limits.get("max_recent", base.max_recent),
            max_salience=limits.get("max_salience", base.max_salience),
        )
    return presets


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "context-health" / "config.yaml",
            Path("/etc/context-health/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    parser_data = data.get("parser", {})
    parser = ParserConfig(chars_per_token=parser_data.get("chars_per_token", 4))

    detection_data = data.get("detection", {})
    detection = DetectionConfig(
        imperative_phrases=[
            phrase.lower()
            for phrase in detection_data.get("imperative_phrases", DEFAULT_IMPERATIVE_PHRASES)
        ],
        min_imperatives=detection_data.get("min_imperatives", 2),
        early_message_count=detection_data.get("early_message_count", 3),
        compact_chars=detection_data.get("compact_chars", 800),
    )

    noise_data = data.get("noise", {})
    noise = NoiseConfig(
        long_message_threshold=noise_data.get("long_message_threshold", 4000),
        monologue_penalty=noise_data.get("monologue_penalty", 10),
        dominance_ratio=noise_data.get("dominance_ratio", 0.7),
        dominance_penalty=noise_data.get("dominance_penalty", 15),
    )

    scoring_data = data.get("scoring", {})
    defaults = ScoringConfig()
    scoring = ScoringConfig(
        grace_ratio=scoring_data.get("grace_ratio", defaults.grace_ratio),
        distance_multiplier=scoring_data.get("distance_multiplier", defaults.distance_multiplier),
        distance_reason_tokens=scoring_data.get(
            "distance_reason_tokens", defaults.distance_reason_tokens
        ),
        no_instruction_max_penalty=scoring_data.get(
            "no_instruction_max_penalty", defaults.no_instruction_max_penalty
        ),
        no_instruction_ramp_chars=scoring_data.get(
            "no_instruction_ramp_chars", defaults.no_instruction_ramp_chars
        ),
        token_thresholds=_threshold_pairs(
            scoring_data.get("token_thresholds"), defaults.token_thresholds
        ),
        char_penalty_points=sorted(
            (int(chars), float(penalty))
            for chars, penalty in _pairs(
                scoring_data.get("char_penalty_points"), defaults.char_penalty_points
            )
        ),
        message_thresholds=_threshold_pairs(
            scoring_data.get("message_thresholds"), defaults.message_thresholds
        ),
        tier_bands=sorted(
            ((int(bound), str(tier)) for bound, tier in _pairs(
                scoring_data.get("tier_bands"), defaults.tier_bands
            )),
            reverse=True,
        ),
    )

    handoff_data = data.get("handoff", {})
    handoff = HandoffConfig(
        threshold=handoff_data.get("threshold", 50),
        expiry_seconds=handoff_data.get("expiry_seconds", 2 * 60 * 60),
        default_richness=handoff_data.get("default_richness", "rich"),
        presets=_parse_presets(handoff_data.get("presets", {})),
    )

    storage_data = data.get("storage", {})
    storage_defaults = StorageConfig()
    storage = StorageConfig(
        state_db=expand_path(
            expand_env_var(
                storage_data.get("state_db", "~/context-health/state/context-health.db")
            )
        ),
        pins_key=storage_data.get("pins_key", storage_defaults.pins_key),
        handoff_key=storage_data.get("handoff_key", storage_defaults.handoff_key),
        settings_key=storage_data.get("settings_key", storage_defaults.settings_key),
    )

    watch_data = data.get("watch", {})
    log_dir = watch_data.get("log_dir")
    watch = WatchConfig(
        interval_seconds=watch_data.get("interval_seconds", 1.0),
        debounce_ms=watch_data.get("debounce_ms", 500),
        log_dir=expand_path(expand_env_var(log_dir)) if log_dir else None,
    )

    return Config(
        parser=parser,
        detection=detection,
        noise=noise,
        scoring=scoring,
        handoff=handoff,
        storage=storage,
        watch=watch,
    )
