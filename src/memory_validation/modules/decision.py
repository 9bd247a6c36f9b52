"""Decision engine: map confidence onto a three-way verdict.

Boundary policy:
- confidence <= auto_reject          -> auto_reject
- confidence >  auto_approve         -> auto_approve
- otherwise                          -> review_required

Exact ties resolve to the less-automated outcome: a tie at auto_approve
goes to review, a tie at auto_reject goes to reject.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from memory_validation.core.interfaces import DecisionPolicy
from memory_validation.schemas import (
    ConfidenceResult,
    DecisionReasoning,
    MemoryRecord,
    Priority,
    SignificanceScore,
    ThresholdConfig,
    ValidationDecision,
    ValidationOutcome,
)
from memory_validation.utils.confidence import clip_range, nearest_distance
from memory_validation.utils.config import (
    BOUNDARY_PROXIMITY,
    BOUNDARY_TOLERANCE,
    CRITICAL_SIGNIFICANCE,
    HIGH_SIGNIFICANCE,
    MAX_REVIEW_SECONDS,
    MEDIUM_SIGNIFICANCE,
    MIN_REVIEW_SECONDS,
)

if TYPE_CHECKING:
    from memory_validation.utils.logging import SessionLogger, StructuredLogger


def classify(confidence: float, config: ThresholdConfig) -> ValidationOutcome:
    """Total three-way classification of a confidence value."""
    if confidence <= config.auto_reject:
        return ValidationOutcome.AUTO_REJECT
    if confidence > config.auto_approve:
        return ValidationOutcome.AUTO_APPROVE
    return ValidationOutcome.REVIEW_REQUIRED


def estimate_review_seconds(confidence: float, significance: float = 0.0) -> int:
    """Expected reviewer time for a record.

    Falls linearly with confidence (180s at 0, 30s at 1) and grows with
    significance by up to 50%. Clamped to [30, 180].
    """
    base = 180.0 - 150.0 * clip_range(confidence, 0.0, 1.0)
    scaled = base * (1.0 + clip_range(significance, 0.0, 10.0) / 20.0)
    return int(round(clip_range(scaled, MIN_REVIEW_SECONDS, MAX_REVIEW_SECONDS)))


class DecisionEngine(DecisionPolicy):
    """Stateless verdict, priority and review-time assignment."""

    def __init__(
        self,
        boundary_proximity: float = BOUNDARY_PROXIMITY,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        self._boundary_proximity = boundary_proximity
        self._logger = logger

    def decide(
        self,
        record: MemoryRecord,
        confidence: ConfidenceResult,
        significance: SignificanceScore,
        config: ThresholdConfig,
        thresholds_adjusted: bool = False,
    ) -> ValidationDecision:
        """Produce the verdict for one record.

        Args:
            record: Record being decided.
            confidence: Scorer output for the record.
            significance: Significance assessment for the record.
            config: Effective (possibly significance-shifted) config.
            thresholds_adjusted: Whether ``config`` was shifted.

        Returns:
            Immutable ValidationDecision.
        """
        conf = confidence.overall
        outcome = classify(conf, config)
        priority = self.priority_for(outcome, conf, significance.overall, config)
        reasoning = self._reasoning(outcome, confidence, significance, config, thresholds_adjusted)

        decision = ValidationDecision(
            record_id=record.record_id,
            outcome=outcome,
            confidence=conf,
            confidence_result=confidence.model_copy(update={"decision": outcome}),
            significance=significance,
            reasoning=reasoning,
            priority=priority,
            estimated_review_seconds=estimate_review_seconds(conf, significance.overall),
            thresholds_adjusted=thresholds_adjusted,
            config_version=config.version,
            record_timestamp=record.timestamp,
            decided_at=datetime.now(),
        )

        if self._logger:
            self._logger.decision(
                f"{outcome.value} priority={priority.value} ({reasoning.primary_driver})",
                record_id=record.record_id,
                confidence=conf,
                significance=significance.overall,
                config_version=config.version,
            )
        return decision

    def priority_for(
        self,
        outcome: ValidationOutcome,
        confidence: float,
        significance: float,
        config: ThresholdConfig,
    ) -> Priority:
        """Priority from significance and proximity to a cut point."""
        # Inclusive bound; the tolerance absorbs float error in the distance
        near_boundary = (
            nearest_distance(confidence, config.cut_points())
            <= self._boundary_proximity + BOUNDARY_TOLERANCE
        )
        if significance >= CRITICAL_SIGNIFICANCE or near_boundary:
            return Priority.CRITICAL
        if significance >= HIGH_SIGNIFICANCE:
            return Priority.HIGH
        if significance >= MEDIUM_SIGNIFICANCE or (
            outcome == ValidationOutcome.REVIEW_REQUIRED
            and confidence >= config.review_required
        ):
            return Priority.MEDIUM
        return Priority.LOW

    def _reasoning(
        self,
        outcome: ValidationOutcome,
        confidence: ConfidenceResult,
        significance: SignificanceScore,
        config: ThresholdConfig,
        thresholds_adjusted: bool,
    ) -> DecisionReasoning:
        conf = confidence.overall
        notes: list[str] = []

        if outcome == ValidationOutcome.AUTO_APPROVE:
            driver = f"high confidence ({conf:.3f} > {config.auto_approve:.2f})"
        elif outcome == ValidationOutcome.AUTO_REJECT:
            driver = f"low confidence ({conf:.3f} <= {config.auto_reject:.2f})"
        elif thresholds_adjusted and significance.overall >= MEDIUM_SIGNIFICANCE:
            driver = f"emotional significance {significance.overall:.1f} requires human review"
        elif confidence.uncertainty_areas:
            driver = "weak factors behind acceptable confidence: " + ", ".join(
                confidence.uncertainty_areas
            )
        else:
            driver = (
                f"moderate confidence ({conf:.3f} between "
                f"{config.auto_reject:.2f} and {config.auto_approve:.2f})"
            )

        if thresholds_adjusted:
            notes.append(f"thresholds shifted by {abs(significance.threshold_adjustment):.2f}")
        if significance.urgent:
            notes.append(f"urgent (urgency {significance.urgency:.1f})")

        return DecisionReasoning(
            primary_driver=driver,
            uncertainty_areas=list(confidence.uncertainty_areas),
            strengths=list(confidence.strengths),
            notes=notes,
        )
