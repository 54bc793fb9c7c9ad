"""Match configuration loading from YAML."""

from __future__ import annotations

import os
from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError

from core.matching.models import MatchConfig

_CONFIG_ENV = "BINDER_MATCH_CONFIG"


def load_match_config(path: Path | None = None) -> MatchConfig:
    """Load and validate matching thresholds from YAML.

    Resolution order: explicit path, ``BINDER_MATCH_CONFIG``, bundled default.
    """

    env_path = os.getenv(_CONFIG_ENV)
    config_path = path or (Path(env_path) if env_path else Path(__file__).with_name("matching.yaml"))

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Match config file not found: {config_path}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in match config file: {config_path}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Match config file must contain a mapping: {config_path}")

    try:
        return MatchConfig.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid match config schema: {config_path}") from exc
