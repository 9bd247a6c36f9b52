"""Configuration for pytest."""

import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from memory_validation.schemas import (
    ConfidenceResult,
    DecisionReasoning,
    HumanDecision,
    MemoryRecord,
    Priority,
    SignificanceScore,
    ThresholdConfig,
    ValidationDecision,
    ValidationFeedback,
    ValidationOutcome,
)
from memory_validation.utils.logging import StructuredLogger, LogLevel


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


# =============================================================================
# RECORD FACTORIES
# =============================================================================

def build_record(
    record_id: str = "rec-1",
    extraction: float | None = 0.9,
    coherence: float | None = 0.85,
    relationship_score: float | None = 0.8,
    context: float | None = 0.7,
    **fields: Any,
) -> MemoryRecord:
    """Build a record with the given sub-scores.

    With no extra fields the record is emotionally neutral (significance
    0), so its verdict depends on confidence alone.
    """
    data: dict[str, Any] = {
        "record_id": record_id,
        "content": fields.pop("content", ""),
        "confidence_factors": {
            "extraction": extraction,
            "emotional_coherence": coherence,
            "relationship_accuracy": relationship_score,
            "context_quality": context,
        },
    }
    data.update(fields)
    return MemoryRecord.model_validate(data)


def uniform_record(record_id: str, confidence: float) -> MemoryRecord:
    """Neutral record whose overall confidence equals ``confidence``."""
    return build_record(record_id, confidence, confidence, confidence, confidence)


def critical_record_fields() -> dict[str, Any]:
    """Fields that give a record significance above 8."""
    return {
        "content": "We had a terrible fight and I felt desperate.",
        "emotional_analysis": {
            "mood_score": 0.5,
            "descriptors": ["devastated", "anxious", "hurt", "lonely"],
            "trajectory_direction": "volatile",
            "trajectory_significance": 0.9,
            "turning_points": 3,
            "patterns": [
                {"type": "vulnerability", "significance": 0.9, "confidence": 1.0},
                {"type": "support_seeking", "significance": 0.95, "confidence": 1.0},
            ],
        },
        "relationship": {
            "type": "romantic",
            "conflict_level": "high",
            "interaction_quality": "negative",
            "participant_count": 3,
        },
    }


@pytest.fixture
def make_record() -> Callable[..., MemoryRecord]:
    """Factory for memory records."""
    return build_record


@pytest.fixture
def default_config() -> ThresholdConfig:
    """Default thresholds: approve > 0.75, reject <= 0.50."""
    return ThresholdConfig()


# =============================================================================
# DECISION / FEEDBACK FACTORIES
# =============================================================================

def build_decision(
    record_id: str,
    outcome: ValidationOutcome = ValidationOutcome.REVIEW_REQUIRED,
    confidence: float = 0.6,
    significance: float = 0.0,
    urgency: float = 0.0,
    urgent: bool = False,
    priority: Priority = Priority.MEDIUM,
    record_timestamp: datetime | None = None,
    mood_magnitude: float = 0.0,
) -> ValidationDecision:
    """Build a decision directly, bypassing the pipeline."""
    return ValidationDecision(
        record_id=record_id,
        outcome=outcome,
        confidence=confidence,
        confidence_result=ConfidenceResult(overall=confidence, decision=outcome),
        significance=SignificanceScore(
            overall=significance,
            mood_magnitude=mood_magnitude,
            urgency=urgency,
            urgent=urgent,
        ),
        reasoning=DecisionReasoning(primary_driver="test"),
        priority=priority,
        estimated_review_seconds=60,
        record_timestamp=record_timestamp,
    )


def build_feedback(
    predicted: ValidationOutcome,
    actual: HumanDecision,
    record_id: str = "rec",
    confidence: float | None = None,
    factors: dict[str, float] | None = None,
    time_taken: float = 30.0,
) -> ValidationFeedback:
    """Build a feedback item."""
    return ValidationFeedback(
        record_id=record_id,
        predicted_decision=predicted,
        actual_decision=actual,
        predicted_confidence=confidence,
        factors=factors or {},
        time_taken_seconds=time_taken,
    )


def feedback_window(
    correct_approvals: int = 0,
    false_positives: int = 0,
    correct_rejections: int = 0,
    false_negatives: int = 0,
    reviews: int = 0,
    approve_confidence: float = 0.9,
    reject_confidence: float = 0.3,
) -> list[ValidationFeedback]:
    """Feedback window with the given mix of outcomes."""
    items: list[ValidationFeedback] = []
    A, R, V = (
        ValidationOutcome.AUTO_APPROVE,
        ValidationOutcome.AUTO_REJECT,
        ValidationOutcome.REVIEW_REQUIRED,
    )
    for i in range(correct_approvals):
        items.append(build_feedback(A, HumanDecision.APPROVED, f"ca-{i}", approve_confidence))
    for i in range(false_positives):
        items.append(build_feedback(A, HumanDecision.REJECTED, f"fp-{i}", approve_confidence))
    for i in range(correct_rejections):
        items.append(build_feedback(R, HumanDecision.REJECTED, f"cr-{i}", reject_confidence))
    for i in range(false_negatives):
        items.append(build_feedback(R, HumanDecision.APPROVED, f"fn-{i}", reject_confidence))
    for i in range(reviews):
        items.append(build_feedback(V, HumanDecision.APPROVED, f"rv-{i}", 0.6))
    return items


@pytest.fixture
def make_decision() -> Callable[..., ValidationDecision]:
    """Factory for decisions."""
    return build_decision


@pytest.fixture
def logger() -> StructuredLogger:
    """Create a structured logger that keeps debug entries."""
    return StructuredLogger(level=LogLevel.DEBUG)


@pytest.fixture
def temp_runs_dir() -> Generator[Path, None, None]:
    """Create a temporary runs directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
