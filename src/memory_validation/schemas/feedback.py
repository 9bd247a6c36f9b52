"""Human feedback and quality-metric contracts.

Feedback is append-only: once a reviewer has reported on a record the
value is never edited. Quality metrics are snapshots computed over a
rolling window of feedback.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from memory_validation.schemas.decisions import ValidationOutcome


class HumanDecision(str, Enum):
    """What the human reviewer decided."""
    APPROVED = "approved"
    REJECTED = "rejected"


class AlertSeverity(str, Enum):
    """Severity of a quality alert."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# =============================================================================
# FEEDBACK
# =============================================================================

class ValidationFeedback(BaseModel):
    """A reviewer's verdict on a record the engine already decided."""

    record_id: str = Field(..., description="Record the feedback refers to")
    predicted_decision: ValidationOutcome = Field(..., description="Engine verdict")
    actual_decision: HumanDecision = Field(..., description="Human verdict")
    reviewer_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    disagreement_reason: str | None = Field(default=None)
    time_taken_seconds: float = Field(default=0.0, ge=0.0)
    quality_rating: int = Field(default=3, ge=1, le=5)

    # Lets calibration replay the decision under a different config
    predicted_confidence: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Overall confidence the engine decided with",
    )
    factors: dict[str, float] = Field(
        default_factory=dict,
        description="Clipped confidence sub-scores at decision time",
    )
    submitted_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}

    @property
    def is_correct(self) -> bool:
        """Whether the engine's verdict agreed with the human.

        Deferring to review is always counted as correct.
        """
        return outcome_is_correct(self.predicted_decision, self.actual_decision)

    @property
    def is_false_positive(self) -> bool:
        return (
            self.predicted_decision == ValidationOutcome.AUTO_APPROVE
            and self.actual_decision == HumanDecision.REJECTED
        )

    @property
    def is_false_negative(self) -> bool:
        return (
            self.predicted_decision == ValidationOutcome.AUTO_REJECT
            and self.actual_decision == HumanDecision.APPROVED
        )


def outcome_is_correct(predicted: ValidationOutcome, actual: HumanDecision) -> bool:
    """Correctness of an engine verdict against a human decision."""
    if predicted == ValidationOutcome.AUTO_APPROVE:
        return actual == HumanDecision.APPROVED
    if predicted == ValidationOutcome.AUTO_REJECT:
        return actual == HumanDecision.REJECTED
    return True


# =============================================================================
# QUALITY METRICS
# =============================================================================

class ConfidenceBucket(BaseModel):
    """Accuracy of decisions made within one confidence range."""

    low: float
    high: float
    count: int = 0
    accuracy: float = 0.0
    average_confidence: float = 0.0

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        return f"{int(self.low * 100)}-{int(self.high * 100)}%"


class AccuracyTrendPoint(BaseModel):
    """Accuracy over one window of the feedback history."""

    end_index: int = Field(..., description="Index one past the last item of the window")
    window_size: int
    accuracy: float
    false_positive_rate: float
    false_negative_rate: float
    timestamp: datetime | None = None

    model_config = {"frozen": True}


class QualityMetrics(BaseModel):
    """Rolling-window quality aggregates."""

    sample_size: int = Field(default=0, ge=0, description="Feedback items in the window")
    window_size: int = Field(default=0, ge=0, description="Maximum window length")

    accuracy: float = Field(default=0.0, ge=0.0, le=1.0)
    auto_approve_accuracy: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Share of auto-approvals the human agreed with",
    )
    auto_reject_accuracy: float = Field(default=0.0, ge=0.0, le=1.0)
    false_positive_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    false_negative_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    review_time_reduction: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Share of items correctly handled without a reviewer",
    )
    average_review_seconds: float = Field(default=0.0, ge=0.0)
    decision_distribution: dict[str, int] = Field(default_factory=dict)
    calibration_score: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="1 minus the weighted gap between confidence and accuracy",
    )
    config_version: int | None = Field(default=None)
    computed_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}


class QualityAlert(BaseModel):
    """An advisory alert raised by the quality monitor."""

    alert_type: str = Field(..., description="Machine-readable alert kind")
    severity: AlertSeverity
    message: str
    observed: float = Field(..., description="Observed metric value")
    threshold: float = Field(..., description="Limit that was crossed")
    recommendation: str
    raised_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}


class EffectivenessMetrics(BaseModel):
    """How much reviewer work the engine saves without losing quality."""

    batches: int = Field(default=0, ge=0, description="Batches the figures cover")
    auto_approval_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    workload_reduction: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Share of records decided without a reviewer",
    )
    quality_maintenance: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Accuracy discounted by the mean error rate",
    )
    time_efficiency: float = Field(default=0.0, ge=0.0, le=1.0)
    overall: float = Field(default=0.0, ge=0.0, le=1.0)

    model_config = {"frozen": True}
