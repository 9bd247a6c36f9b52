"""Confidence scorer: combine four sub-scores into one verdict input.

overall = w_e*extraction + w_c*coherence + w_r*relationship + w_q*context

Each sub-score is clipped into [0, 1] before weighting and the result is
clipped again. Missing or non-finite sub-scores make the record malformed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from memory_validation.core.interfaces import ConfidenceScorer
from memory_validation.errors import MalformedRecordError
from memory_validation.schemas import (
    FACTOR_NAMES,
    ConfidenceResult,
    MemoryRecord,
    ThresholdConfig,
)
from memory_validation.utils.confidence import (
    ConfidenceSignal,
    clip_unit,
    combine_weighted,
    is_finite_number,
)
from memory_validation.utils.config import (
    STRENGTH_FACTOR_THRESHOLD,
    UNCERTAINTY_FACTOR_THRESHOLD,
)

if TYPE_CHECKING:
    from memory_validation.utils.logging import SessionLogger, StructuredLogger

logger = logging.getLogger(__name__)


class WeightedConfidenceScorer(ConfidenceScorer):
    """Weighted-sum confidence scorer.

    Pure and deterministic: identical records and configs always produce
    identical results. Holds no per-record state, so one instance can be
    shared across batch workers.
    """

    def __init__(
        self,
        uncertainty_threshold: float = UNCERTAINTY_FACTOR_THRESHOLD,
        strength_threshold: float = STRENGTH_FACTOR_THRESHOLD,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        """Initialize the scorer.

        Args:
            uncertainty_threshold: Factors below this are uncertainty areas
                when the overall score is above the review threshold.
            strength_threshold: Factors at or above this are strengths.
            logger: Optional structured logger.
        """
        self._uncertainty_threshold = uncertainty_threshold
        self._strength_threshold = strength_threshold
        self._logger = logger

    def score(self, record: MemoryRecord, config: ThresholdConfig) -> ConfidenceResult:
        factors = self.extract_factors(record)
        weights = config.weights.as_dict()

        signals = [
            ConfidenceSignal(name=name, value=factors[name], weight=weights[name])
            for name in FACTOR_NAMES
        ]
        overall = combine_weighted(signals)

        # Hidden-weakness pattern: a weak factor masked by strong ones
        uncertainty_areas: list[str] = []
        if overall > config.review_required:
            uncertainty_areas = [
                name for name in FACTOR_NAMES
                if factors[name] < self._uncertainty_threshold
            ]
        strengths = [
            name for name in FACTOR_NAMES
            if factors[name] >= self._strength_threshold
        ]

        result = ConfidenceResult(
            overall=overall,
            factors=factors,
            weights=weights,
            uncertainty_areas=uncertainty_areas,
            strengths=strengths,
        )

        if self._logger:
            self._logger.scoring(
                f"Scored: overall={overall:.3f} weak={uncertainty_areas or '-'}",
                record_id=record.record_id,
                confidence=overall,
                config_version=config.version,
            )
        return result

    def extract_factors(self, record: MemoryRecord) -> dict[str, float]:
        """Read and clip the four sub-scores.

        Raises:
            MalformedRecordError: If any sub-score is missing, non-numeric
                or non-finite.
        """
        raw = record.resolved_factors()
        missing = [name for name in FACTOR_NAMES if raw.get(name) is None]
        if missing:
            raise MalformedRecordError(
                record.record_id,
                f"missing confidence sub-scores: {', '.join(missing)}",
            )
        bad = [name for name in FACTOR_NAMES if not is_finite_number(raw[name])]
        if bad:
            raise MalformedRecordError(
                record.record_id,
                f"non-finite confidence sub-scores: {', '.join(bad)}",
            )

        clipped: dict[str, float] = {}
        for name in FACTOR_NAMES:
            value = float(raw[name])
            clipped[name] = clip_unit(value)
            if clipped[name] != value:
                logger.debug(
                    "Clipped %s for %s: %.4f -> %.4f",
                    name, record.record_id, value, clipped[name],
                )
        return clipped


def calculate_confidence(
    extraction: float,
    emotional_coherence: float,
    relationship_accuracy: float,
    context_quality: float,
    config: ThresholdConfig | None = None,
) -> float:
    """Overall confidence for four bare sub-scores.

    Convenience wrapper used by calibration replay and quick checks.
    """
    config = config or ThresholdConfig()
    weights = config.weights.as_dict()
    values = {
        "extraction": extraction,
        "emotional_coherence": emotional_coherence,
        "relationship_accuracy": relationship_accuracy,
        "context_quality": context_quality,
    }
    return combine_weighted(
        [ConfidenceSignal(name, values[name], weights[name]) for name in FACTOR_NAMES]
    )
