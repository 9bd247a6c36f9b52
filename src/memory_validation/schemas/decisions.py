"""Scoring and decision contracts.

ARCHITECTURAL INVARIANT: A ValidationDecision is immutable once created.
Every verdict carries enough context (confidence breakdown, significance,
config version) to be audited later.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ValidationOutcome(str, Enum):
    """The three mutually exclusive verdicts."""
    AUTO_APPROVE = "auto_approve"
    REVIEW_REQUIRED = "review_required"
    AUTO_REJECT = "auto_reject"


class Priority(str, Enum):
    """Review priority attached to every decision."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# =============================================================================
# CONFIDENCE RESULT
# =============================================================================

class ConfidenceResult(BaseModel):
    """Combined confidence for one record with its factor breakdown."""

    overall: float = Field(..., ge=0.0, le=1.0, description="Weighted, clipped confidence")
    factors: dict[str, float] = Field(
        default_factory=dict,
        description="Clipped sub-scores keyed by factor name",
    )
    weights: dict[str, float] = Field(
        default_factory=dict,
        description="Weights the sub-scores were combined with",
    )
    uncertainty_areas: list[str] = Field(
        default_factory=list,
        description="Weak factors hidden behind an acceptable overall score",
    )
    strengths: list[str] = Field(
        default_factory=list,
        description="Factors scoring at or above the strength threshold",
    )
    decision: ValidationOutcome | None = Field(
        default=None,
        description="Verdict, filled in once the decision engine has run",
    )

    model_config = {"frozen": True}


# =============================================================================
# SIGNIFICANCE SCORE
# =============================================================================

class SignificanceScore(BaseModel):
    """Emotional significance of a record on a 0-10 scale.

    Independent of confidence: a record can be trustworthy and trivial, or
    uncertain and important.
    """

    overall: float = Field(..., ge=0.0, le=10.0)
    mood_magnitude: float = Field(default=0.0, ge=0.0, le=10.0)
    relationship_impact: float = Field(default=0.0, ge=0.0, le=10.0)
    psychological_markers: float = Field(default=0.0, ge=0.0, le=10.0)
    turning_point_potential: float = Field(default=0.0, ge=0.0, le=10.0)

    threshold_adjustment: float = Field(
        default=0.0,
        ge=-0.2,
        le=0.2,
        description="Signed threshold shift recommended for this record",
    )
    urgency: float = Field(
        default=0.0,
        ge=0.0,
        le=10.0,
        description="How soon a human should look at this record",
    )
    urgent: bool = Field(default=False, description="Whether the record jumps the queue")
    narrative: str = Field(default="", description="Short human-readable summary")

    model_config = {"frozen": True}

    def breakdown(self) -> dict[str, float]:
        """Sub-factor scores keyed by name."""
        return {
            "mood_magnitude": self.mood_magnitude,
            "relationship_impact": self.relationship_impact,
            "psychological_markers": self.psychological_markers,
            "turning_point_potential": self.turning_point_potential,
        }


# =============================================================================
# DECISION
# =============================================================================

class DecisionReasoning(BaseModel):
    """Why a verdict was reached."""

    primary_driver: str = Field(..., description="Main reason for the verdict")
    uncertainty_areas: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list, description="Secondary observations")

    model_config = {"frozen": True}


class ValidationDecision(BaseModel):
    """The engine's verdict for one record."""

    record_id: str = Field(..., description="Record this decision applies to")
    outcome: ValidationOutcome = Field(..., description="Three-way verdict")
    confidence: float = Field(..., ge=0.0, le=1.0)
    confidence_result: ConfidenceResult = Field(..., description="Full confidence breakdown")
    significance: SignificanceScore = Field(..., description="Significance used for this decision")
    reasoning: DecisionReasoning = Field(..., description="Why this verdict was reached")
    priority: Priority = Field(..., description="Review priority")
    estimated_review_seconds: int = Field(..., ge=0)

    thresholds_adjusted: bool = Field(
        default=False,
        description="Whether a significance shift was applied for this record",
    )
    config_version: int = Field(default=1, description="ThresholdConfig version used")
    record_timestamp: datetime | None = Field(
        default=None,
        description="Timestamp of the underlying record, used for queue recency",
    )
    decided_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}

    @property
    def needs_review(self) -> bool:
        return self.outcome == ValidationOutcome.REVIEW_REQUIRED
