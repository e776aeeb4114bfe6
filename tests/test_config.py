"""Tests for configuration loading."""

from pathlib import Path

import pytest

from context_health.config import (
    Config,
    HandoffLimits,
    expand_env_var,
    expand_path,
    load_config,
)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        """
parser:
  chars_per_token: 3
detection:
  imperative_phrases: ["Please", "Kindly"]
  min_imperatives: 1
noise:
  dominance_ratio: 0.8
scoring:
  grace_ratio: 0.4
  token_thresholds:
    - [15000, 10]
    - [40000, 30]
  char_penalty_points:
    120000: 25
    0: 0
handoff:
  threshold: 40
  expiry_seconds: 600
  presets:
    compact:
      max_chars: 300
storage:
  state_db: ${CONTEXT_HEALTH_TEST_DB}
watch:
  debounce_ms: 250
  log_dir: ~/logs
""",
        encoding="utf-8",
    )
    return path


class TestDefaults:
    """Tests for default configuration values."""

    def test_defaults_match_heuristics(self) -> None:
        config = Config()
        assert config.parser.chars_per_token == 4
        assert config.detection.min_imperatives == 2
        assert config.detection.early_message_count == 3
        assert config.detection.compact_chars == 800
        assert "you are" in config.detection.imperative_phrases
        assert config.noise.long_message_threshold == 4000
        assert config.noise.dominance_ratio == 0.7
        assert config.scoring.grace_ratio == 0.5
        assert config.scoring.distance_multiplier == 80
        assert config.scoring.token_thresholds == [(40000, 30), (25000, 20), (15000, 10)]
        assert config.scoring.message_thresholds == [(140, 30), (100, 20), (60, 10)]
        assert config.handoff.threshold == 50
        assert config.handoff.expiry_seconds == 7200
        assert config.watch.debounce_ms == 500

    def test_default_instances_are_independent(self) -> None:
        first = Config()
        first.detection.imperative_phrases.append("please")
        assert "please" not in Config().detection.imperative_phrases

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        assert load_config(tmp_path / "missing.yaml") == Config()


class TestLoadConfig:
    """Tests for load_config function."""

    def test_reads_values(self, config_file: Path, monkeypatch) -> None:
        monkeypatch.setenv("CONTEXT_HEALTH_TEST_DB", "/tmp/ch-test.db")
        config = load_config(config_file)

        assert config.parser.chars_per_token == 3
        assert config.detection.imperative_phrases == ["please", "kindly"]
        assert config.detection.min_imperatives == 1
        assert config.detection.early_message_count == 3
        assert config.noise.dominance_ratio == 0.8
        assert config.scoring.grace_ratio == 0.4
        assert config.handoff.threshold == 40
        assert config.handoff.expiry_seconds == 600
        assert config.storage.state_db == Path("/tmp/ch-test.db")
        assert config.watch.debounce_ms == 250
        assert config.watch.log_dir == Path.home() / "logs"

    def test_threshold_tables_sorted(self, config_file: Path) -> None:
        config = load_config(config_file)
        assert config.scoring.token_thresholds == [(40000, 30.0), (15000, 10.0)]
        assert config.scoring.char_penalty_points == [(0, 0.0), (120000, 25.0)]
        assert config.scoring.message_thresholds == [(140, 30.0), (100, 20.0), (60, 10.0)]

    def test_partial_preset_override(self, config_file: Path) -> None:
        config = load_config(config_file)
        assert config.handoff.presets["compact"] == HandoffLimits(
            max_chars=300, max_pinned=5, max_recent=6, max_salience=3
        )
        assert config.handoff.presets["rich"].max_chars == 900

    def test_bad_threshold_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("scoring:\n  token_thresholds:\n    - [1, 2, 3]\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(path)

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == Config()


class TestExpansion:
    """Tests for env var and path expansion."""

    def test_expand_env_var(self, monkeypatch) -> None:
        monkeypatch.setenv("CH_VALUE", "resolved")
        assert expand_env_var("${CH_VALUE}") == "resolved"
        assert expand_env_var("${CH_UNSET_VALUE_XYZ}") == "${CH_UNSET_VALUE_XYZ}"
        assert expand_env_var("plain") == "plain"

    def test_expand_path(self) -> None:
        assert expand_path("~/x") == Path.home() / "x"
