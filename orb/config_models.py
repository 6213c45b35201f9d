"""
Pydantic models for the engine configuration file (args/engine.yaml).

Every field carries a default so a missing or partial file still produces a
usable EngineConfig. Validation failures are logged and fall back to
defaults rather than aborting start-up.

Usage:
    from orb.config_models import load_and_validate

    config = load_and_validate("engine")
    config.persona.sticky_window_seconds  # 300
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from orb import ARGS_DIR

logger = logging.getLogger(__name__)


# =============================================================================
# Evaluator
# =============================================================================

class EvaluatorConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    # Fail-closed: any triggered constraint denies, not only hard ones
    deny_on_any_trigger: bool = Field(default=True)


# =============================================================================
# Persona classifier
# =============================================================================

class PersonaConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    default_persona: str = Field(default="personal")
    default_confidence: float = Field(default=0.25, ge=0.0, le=1.0)
    sticky_window_seconds: int = Field(default=300, ge=0)
    sticky_confidence: float = Field(default=0.9, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_persona(self) -> PersonaConfig:
        from orb.identity import Persona

        if self.default_persona not in Persona.values():
            raise ValueError(f"default_persona must be one of {Persona.values()}")
        return self


# =============================================================================
# Learning
# =============================================================================

class ThresholdsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    auto_apply: float = Field(default=0.9, ge=0.0, le=1.0)
    suggest: float = Field(default=0.7, ge=0.0, le=1.0)
    log_only: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_ordering(self) -> ThresholdsConfig:
        if not (self.log_only <= self.suggest <= self.auto_apply):
            raise ValueError("thresholds must satisfy log_only <= suggest <= auto_apply")
        return self


class PatternCutoffsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    frequent_action: float = Field(default=0.75, ge=0.0, le=1.0)
    mode_preference: float = Field(default=0.85, ge=0.0, le=1.0)
    risk_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    time_based_routine: float = Field(default=0.8, ge=0.0, le=1.0)
    error_pattern: float = Field(default=0.7, ge=0.0, le=1.0)
    efficiency_gain: float = Field(default=0.75, ge=0.0, le=1.0)


class LearningConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    pattern_cutoffs: PatternCutoffsConfig = Field(default_factory=PatternCutoffsConfig)


# =============================================================================
# Storage
# =============================================================================

class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    backend: Literal["memory", "sqlite", "file"] = Field(default="memory")
    database_path: str = Field(default="data/orb.db")
    file_path: str = Field(default="data/constraints.json")
    profiles_file_path: str = Field(default="data/profiles.json")

    def resolve(self, path: str) -> Path:
        """Resolve a configured path relative to the project root."""
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return ARGS_DIR.parent / candidate


# =============================================================================
# EngineConfig (args/engine.yaml)
# =============================================================================

class EngineConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    evaluator: EvaluatorConfig = Field(default_factory=EvaluatorConfig)
    persona: PersonaConfig = Field(default_factory=PersonaConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


_CONFIG_MAP: dict[str, type[BaseModel]] = {
    "engine": EngineConfig,
}


def load_and_validate(config_name: str, model_class: type[BaseModel] | None = None) -> BaseModel:
    if model_class is None:
        model_class = _CONFIG_MAP.get(config_name)
        if model_class is None:
            raise ValueError(f"Unknown config: {config_name}. Available: {list(_CONFIG_MAP.keys())}")

    yaml_path = ARGS_DIR / f"{config_name}.yaml"

    try:
        if yaml_path.exists():
            with open(yaml_path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            raw = {}

        return model_class.model_validate(raw)
    except (OSError, yaml.YAMLError, ValueError) as e:
        logger.warning(f"Config validation failed for {config_name}: {e}, using defaults")
        return model_class()


def load_engine_config() -> EngineConfig:
    return load_and_validate("engine")  # type: ignore[return-value]
