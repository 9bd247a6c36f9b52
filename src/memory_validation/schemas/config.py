"""Threshold configuration contracts.

ARCHITECTURAL INVARIANT: A ThresholdConfig is immutable once constructed.
Calibration produces a new version; readers hold snapshots.

This module provides:
- FactorWeights: Weights combining the four confidence sub-scores
- ThresholdConfig: Versioned decision boundaries plus factor weights
- DistributionBand: Acceptable per-class ratios for a batch
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from memory_validation.utils.config import (
    DEFAULT_AUTO_APPROVE_THRESHOLD,
    DEFAULT_AUTO_REJECT_THRESHOLD,
    DEFAULT_COHERENCE_WEIGHT,
    DEFAULT_CONTEXT_WEIGHT,
    DEFAULT_EXTRACTION_WEIGHT,
    DEFAULT_MAX_APPROVE_RATIO,
    DEFAULT_MAX_REJECT_RATIO,
    DEFAULT_MAX_REVIEW_RATIO,
    DEFAULT_MIN_APPROVE_RATIO,
    DEFAULT_MIN_REJECT_RATIO,
    DEFAULT_MIN_REVIEW_RATIO,
    DEFAULT_RELATIONSHIP_WEIGHT,
    DEFAULT_REVIEW_REQUIRED_THRESHOLD,
    MIN_BATCH_FOR_DISTRIBUTION_CHECK,
    WEIGHT_SUM_EPSILON,
)

FACTOR_NAMES: tuple[str, ...] = (
    "extraction",
    "emotional_coherence",
    "relationship_accuracy",
    "context_quality",
)


# =============================================================================
# FACTOR WEIGHTS
# =============================================================================

class FactorWeights(BaseModel):
    """Weights for the four confidence sub-scores.

    Weights must sum to 1 (within 1e-6). Violations raise
    ``pydantic.ValidationError``; nothing is renormalised silently.
    """

    extraction: float = Field(
        default=DEFAULT_EXTRACTION_WEIGHT,
        ge=0.0,
        le=1.0,
        description="Weight of the upstream extraction confidence",
    )
    emotional_coherence: float = Field(
        default=DEFAULT_COHERENCE_WEIGHT,
        ge=0.0,
        le=1.0,
        description="Weight of mood/pattern/trajectory consistency",
    )
    relationship_accuracy: float = Field(
        default=DEFAULT_RELATIONSHIP_WEIGHT,
        ge=0.0,
        le=1.0,
        description="Weight of relationship-dynamics plausibility",
    )
    context_quality: float = Field(
        default=DEFAULT_CONTEXT_WEIGHT,
        ge=0.0,
        le=1.0,
        description="Weight of content length and emotional richness",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_sum(self) -> "FactorWeights":
        total = sum(self.as_dict().values())
        if abs(total - 1.0) > WEIGHT_SUM_EPSILON:
            raise ValueError(f"factor weights must sum to 1.0, got {total:.6f}")
        return self

    def as_dict(self) -> dict[str, float]:
        """Weights keyed by factor name, in canonical order."""
        return {name: getattr(self, name) for name in FACTOR_NAMES}

    @classmethod
    def normalized(cls, raw: dict[str, float]) -> "FactorWeights":
        """Build weights from arbitrary non-negative values, scaled to sum to 1.

        Falls back to the defaults when every value is zero.
        """
        total = sum(max(0.0, raw.get(name, 0.0)) for name in FACTOR_NAMES)
        if total <= 0.0:
            return cls()
        scaled = {name: max(0.0, raw.get(name, 0.0)) / total for name in FACTOR_NAMES}
        # Absorb float drift into the largest weight so the sum check passes
        drift = 1.0 - sum(scaled.values())
        largest = max(scaled, key=scaled.get)
        scaled[largest] += drift
        return cls(**scaled)


# =============================================================================
# THRESHOLD CONFIG
# =============================================================================

class ThresholdConfig(BaseModel):
    """Versioned decision boundaries and factor weights.

    ARCHITECTURAL INVARIANT: 0 <= auto_reject <= review_required <=
    auto_approve <= 1. Enforced at construction; invalid configs never
    exist.

    Decision bands:
    - confidence <= auto_reject           -> auto_reject
    - confidence >  auto_approve          -> auto_approve
    - otherwise                           -> review_required

    ``review_required`` marks the lower edge of the band worth a reviewer's
    attention; it gates uncertainty reporting and priority.
    """

    auto_approve: float = Field(
        default=DEFAULT_AUTO_APPROVE_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Confidence strictly above this is auto-approved",
    )
    review_required: float = Field(
        default=DEFAULT_REVIEW_REQUIRED_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Lower edge of the review band",
    )
    auto_reject: float = Field(
        default=DEFAULT_AUTO_REJECT_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Confidence at or below this is auto-rejected",
    )
    weights: FactorWeights = Field(
        default_factory=FactorWeights,
        description="Confidence factor weights",
    )
    version: int = Field(
        default=1,
        ge=1,
        description="Monotonic config version, bumped on every calibration",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_ordering(self) -> "ThresholdConfig":
        if not (self.auto_reject <= self.review_required <= self.auto_approve):
            raise ValueError(
                "thresholds must satisfy auto_reject <= review_required <= auto_approve "
                f"(got {self.auto_reject}, {self.review_required}, {self.auto_approve})"
            )
        return self

    def cut_points(self) -> list[float]:
        """Distinct decision boundaries, ascending."""
        return sorted({self.auto_reject, self.review_required, self.auto_approve})

    def evolve(self, **changes: Any) -> "ThresholdConfig":
        """Return a validated copy with the given fields replaced.

        Unlike ``model_copy(update=...)`` the copy is re-validated, so an
        invalid combination raises instead of slipping through.
        """
        data = self.model_dump()
        if isinstance(changes.get("weights"), FactorWeights):
            changes["weights"] = changes["weights"].model_dump()
        data.update(changes)
        return ThresholdConfig.model_validate(data)


# =============================================================================
# DISTRIBUTION BAND
# =============================================================================

class DistributionBand(BaseModel):
    """Acceptable share of each decision class within one batch.

    Used only to flag gross deviation; the healthy distribution is an
    empirical question.
    """

    max_approve_ratio: float = Field(default=DEFAULT_MAX_APPROVE_RATIO, ge=0.0, le=1.0)
    max_review_ratio: float = Field(default=DEFAULT_MAX_REVIEW_RATIO, ge=0.0, le=1.0)
    max_reject_ratio: float = Field(default=DEFAULT_MAX_REJECT_RATIO, ge=0.0, le=1.0)
    min_approve_ratio: float = Field(default=DEFAULT_MIN_APPROVE_RATIO, ge=0.0, le=1.0)
    min_review_ratio: float = Field(default=DEFAULT_MIN_REVIEW_RATIO, ge=0.0, le=1.0)
    min_reject_ratio: float = Field(default=DEFAULT_MIN_REJECT_RATIO, ge=0.0, le=1.0)
    min_batch_size: int = Field(
        default=MIN_BATCH_FOR_DISTRIBUTION_CHECK,
        ge=1,
        description="Batches smaller than this are not checked",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_limits(self) -> "DistributionBand":
        for name in ("approve", "review", "reject"):
            low = getattr(self, f"min_{name}_ratio")
            high = getattr(self, f"max_{name}_ratio")
            if low > high:
                raise ValueError(f"min_{name}_ratio {low} exceeds max_{name}_ratio {high}")
        return self
