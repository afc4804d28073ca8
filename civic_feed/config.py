from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigurationError
from .models import ScoringWeights, Settings
from .pipeline.scoring import preset_settings

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_SETTINGS_PATH = PROJECT_ROOT / "config/settings.yml"


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def load_settings(settings_path: Optional[Path] = None) -> Settings:
    path = settings_path or DEFAULT_SETTINGS_PATH
    config = load_yaml(path) if path.exists() else {}

    engagement_cfg = config.get("engagement") or {}
    preset = engagement_cfg.get("preset")
    if preset and preset != "custom":
        # Explicit weights/modifiers in the file refine the named preset.
        base = preset_settings(preset).model_dump()
        base["weights"].update(engagement_cfg.get("weights") or {})
        base["modifiers"].update(engagement_cfg.get("modifiers") or {})
        config["engagement"] = base

    try:
        settings = Settings(**config)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc
    if settings.feed.default_weights.total() <= 0:
        raise ConfigurationError(f"Invalid settings in {path}: feed.default_weights are all zero")
    return settings


def _weight_names() -> Dict[str, str]:
    names: Dict[str, str] = {}
    for name, field in ScoringWeights.model_fields.items():
        names[name] = name
        if field.alias:
            names[field.alias] = name
    return names


def merge_weights(base: ScoringWeights, overrides: Optional[Mapping[str, Any]]) -> ScoringWeights:
    """Replace only the provided keys of ``base``; reject unknown or negative weights."""

    if not overrides:
        return base
    names = _weight_names()
    unknown = sorted(key for key in overrides if key not in names)
    if unknown:
        raise ConfigurationError(
            f"Unknown scoring weight(s): {', '.join(unknown)}. Expected one of: {', '.join(base.as_map())}"
        )

    payload = base.model_dump()
    for key, value in overrides.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"Scoring weight {key!r} must be a number, got {value!r}")
        if not math.isfinite(value) or value < 0:
            raise ConfigurationError(f"Scoring weight {key!r} must be a finite non-negative number")
        payload[names[key]] = float(value)
    merged = ScoringWeights(**payload)
    if merged.total() <= 0:
        raise ConfigurationError("At least one scoring weight must be positive")
    return merged


def parse_weight_overrides(raw: Optional[str]) -> Dict[str, float]:
    """Parse ``'{"recency": 0.5}'`` or ``'recency=0.5,randomness=0'`` into a flat map."""

    if not raw or not raw.strip():
        return {}
    text = raw.strip()
    if text.startswith("{"):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Weight overrides are not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigurationError("Weight overrides must be a JSON object")
        return payload

    overrides: Dict[str, float] = {}
    for chunk in text.split(","):
        key, sep, value = chunk.partition("=")
        if not sep:
            raise ConfigurationError(f"Expected key=value, got {chunk!r}")
        try:
            overrides[key.strip()] = float(value)
        except ValueError as exc:
            raise ConfigurationError(f"Scoring weight {key.strip()!r} must be a number") from exc
    return overrides
