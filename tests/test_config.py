import pytest
from pydantic import ValidationError

from civic_feed.config import load_settings, merge_weights, parse_weight_overrides
from civic_feed.errors import ConfigurationError
from civic_feed.models import ScoringWeights


def test_load_settings_with_weight_overrides(tmp_path):
    settings_path = tmp_path / "settings.yml"
    settings_path.write_text(
        """feed:
  default_weights:
    topicSimilarity: 0.4
    randomness: 0.0
  pool_pad: 25
storage:
  path: /tmp/feed.duckdb
""",
        encoding="utf-8",
    )

    cfg = load_settings(settings_path)

    assert cfg.feed.default_weights.topic_similarity == 0.4
    assert cfg.feed.default_weights.randomness == 0.0
    assert cfg.feed.default_weights.recency == 0.30
    assert cfg.feed.pool_pad == 25
    assert cfg.storage.path == "/tmp/feed.duckdb"


def test_load_settings_applies_engagement_preset(tmp_path):
    settings_path = tmp_path / "settings.yml"
    settings_path.write_text(
        """engagement:
  preset: quality
  modifiers:
    half_life_hours: 10
""",
        encoding="utf-8",
    )

    cfg = load_settings(settings_path)

    assert cfg.engagement.preset == "quality"
    assert cfg.engagement.weights.shares == 4.0
    assert cfg.engagement.modifiers.half_life_hours == 10


def test_load_settings_rejects_unknown_weight_in_file(tmp_path):
    settings_path = tmp_path / "settings.yml"
    settings_path.write_text("feed:\n  default_weights:\n    recncy: 0.5\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(settings_path)


def test_missing_settings_file_uses_defaults(tmp_path):
    cfg = load_settings(tmp_path / "absent.yml")
    assert cfg.feed.pool_pad == 50
    assert cfg.engagement.preset == "balanced"


def test_merge_weights_replaces_only_given_keys():
    merged = merge_weights(ScoringWeights(), {"recency": 0.9, "topic_similarity": 0.0})
    assert merged.recency == 0.9
    assert merged.topic_similarity == 0.0
    assert merged.relationship == ScoringWeights().relationship


def test_merge_weights_without_overrides_returns_base():
    base = ScoringWeights(randomness=0.2)
    assert merge_weights(base, None) is base
    assert merge_weights(base, {}) is base


@pytest.mark.parametrize(
    "overrides",
    [{"recenty": 0.5}, {"recency": -0.1}, {"recency": "high"}, {"recency": True}, {"recency": float("inf")}],
)
def test_merge_weights_rejects_bad_overrides(overrides):
    with pytest.raises(ConfigurationError):
        merge_weights(ScoringWeights(), overrides)


def test_scoring_weights_is_closed():
    with pytest.raises(ValidationError):
        ScoringWeights(popularity=1.0)
    assert set(ScoringWeights().as_map()) == {
        "recency",
        "reputation",
        "relationship",
        "topicSimilarity",
        "trending",
        "randomness",
    }


def test_parse_weight_overrides_formats():
    assert parse_weight_overrides("recency=0.5, randomness=0") == {"recency": 0.5, "randomness": 0.0}
    assert parse_weight_overrides('{"topicSimilarity": 0.7}') == {"topicSimilarity": 0.7}
    assert parse_weight_overrides(None) == {}
    with pytest.raises(ConfigurationError):
        parse_weight_overrides("recency")
    with pytest.raises(ConfigurationError):
        parse_weight_overrides("{not json")


def test_merge_weights_rejects_all_zero_map():
    zeros = {name: 0 for name in ScoringWeights().as_map()}
    with pytest.raises(ConfigurationError, match="positive"):
        merge_weights(ScoringWeights(), zeros)
    assert merge_weights(ScoringWeights(), {**zeros, "randomness": 0.1}).randomness == 0.1


def test_load_settings_rejects_all_zero_default_weights(tmp_path):
    settings_path = tmp_path / "settings.yml"
    lines = ["feed:", "  default_weights:"] + [f"    {name}: 0" for name in ScoringWeights().as_map()]
    settings_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(settings_path)
