"""Matching configuration model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MatchWeights(BaseModel):
    """Weights of the composite secondary score."""

    model_config = ConfigDict(extra="forbid")

    type: float = Field(default=0.2, ge=0.0, le=1.0)
    name: float = Field(default=0.5, ge=0.0, le=1.0)
    path: float = Field(default=0.3, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> MatchWeights:
        total = self.type + self.name + self.path
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"weights must sum to 1.0, got {total}")
        return self


class MatchConfig(BaseModel):
    """Confidence levels and thresholds used by the match engine."""

    model_config = ConfigDict(extra="forbid")

    exact_path_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    exact_name_confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    substring_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    weights: MatchWeights = Field(default_factory=MatchWeights)
    preferred_type: str = "string"
    similarity_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    secondary_limit: int = Field(default=3, ge=0)
    accept_floor: float = Field(default=0.5, ge=0.0, le=1.0)
