"""Abstract base classes for the swappable evaluation stages.

The single-record pipeline (scorer -> significance -> decision) depends
only on these interfaces and the schemas, so stages can be replaced in
tests or tuned independently.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memory_validation.schemas import (
        ConfidenceResult,
        MemoryRecord,
        SignificanceScore,
        ThresholdConfig,
        ValidationDecision,
    )


# =============================================================================
# Evaluation Interfaces
# =============================================================================


class ConfidenceScorer(ABC):
    """Combines a record's sub-scores into one confidence value."""

    @abstractmethod
    def score(self, record: MemoryRecord, config: ThresholdConfig) -> ConfidenceResult:
        """Score a record.

        Args:
            record: Record carrying the four confidence sub-scores.
            config: Config supplying factor weights and the review threshold.

        Returns:
            ConfidenceResult with overall confidence and breakdown.

        Raises:
            MalformedRecordError: If a sub-score is missing or non-finite.
        """
        ...


class SignificanceAssessor(ABC):
    """Estimates how emotionally important a record is."""

    @abstractmethod
    def assess(self, record: MemoryRecord) -> SignificanceScore:
        """Assess a record's significance on a 0-10 scale."""
        ...

    @abstractmethod
    def adjust_thresholds(
        self,
        config: ThresholdConfig,
        significance: SignificanceScore,
    ) -> ThresholdConfig:
        """Return a per-record copy of ``config`` shifted for significance.

        Implementations must never mutate ``config`` and must only narrow
        the auto-approve band.
        """
        ...


class DecisionPolicy(ABC):
    """Maps confidence and significance onto a verdict."""

    @abstractmethod
    def decide(
        self,
        record: MemoryRecord,
        confidence: ConfidenceResult,
        significance: SignificanceScore,
        config: ThresholdConfig,
        thresholds_adjusted: bool = False,
    ) -> ValidationDecision:
        """Produce the verdict for one record."""
        ...
