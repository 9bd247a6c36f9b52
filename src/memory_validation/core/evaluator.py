"""Single-record evaluation pipeline.

The evaluate() method enforces the fixed stage order:
1. Confidence scorer -> overall confidence and breakdown
2. Significance adjustor -> significance and per-record threshold copy
3. Decision engine -> verdict, priority, review time

Evaluation is pure with respect to the config it is given, so any number
of batch workers can share one evaluator and one config snapshot.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from memory_validation.schemas import MemoryRecord, ThresholdConfig, ValidationDecision

if TYPE_CHECKING:
    from memory_validation.core.interfaces import (
        ConfidenceScorer,
        DecisionPolicy,
        SignificanceAssessor,
    )
    from memory_validation.utils.logging import SessionLogger, StructuredLogger


def coerce_record(item: MemoryRecord | Mapping[str, Any]) -> MemoryRecord:
    """Accept a MemoryRecord or a raw mapping.

    Raises:
        pydantic.ValidationError: If a mapping does not describe a record.
        TypeError: For anything else.
    """
    if isinstance(item, MemoryRecord):
        return item
    if isinstance(item, Mapping):
        return MemoryRecord.model_validate(dict(item))
    raise TypeError(f"expected MemoryRecord or mapping, got {type(item).__name__}")


class RecordEvaluator:
    """Runs one record through scorer, significance and decision stages.

    All stages are injected via the constructor; defaults are the
    concrete implementations in ``memory_validation.modules``.
    """

    def __init__(
        self,
        scorer: ConfidenceScorer | None = None,
        significance: SignificanceAssessor | None = None,
        decision: DecisionPolicy | None = None,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        from memory_validation.modules.confidence import WeightedConfidenceScorer
        from memory_validation.modules.decision import DecisionEngine
        from memory_validation.modules.significance import SignificanceAdjustor

        self._scorer = scorer or WeightedConfidenceScorer(logger=logger)
        self._significance = significance or SignificanceAdjustor(logger=logger)
        self._decision = decision or DecisionEngine(logger=logger)

    @property
    def scorer(self) -> ConfidenceScorer:
        return self._scorer

    @property
    def significance(self) -> SignificanceAssessor:
        return self._significance

    def evaluate(
        self,
        record: MemoryRecord | Mapping[str, Any],
        config: ThresholdConfig,
    ) -> ValidationDecision:
        """Evaluate one record against a config snapshot.

        Args:
            record: Record or raw mapping.
            config: Immutable config snapshot.

        Returns:
            The record's ValidationDecision.

        Raises:
            MalformedRecordError: Missing or non-finite sub-scores.
            pydantic.ValidationError: Raw mapping failed validation.
        """
        record = coerce_record(record)

        confidence = self._scorer.score(record, config)
        significance = self._significance.assess(record)
        effective = self._significance.adjust_thresholds(config, significance)
        adjusted = effective is not config

        return self._decision.decide(
            record,
            confidence,
            significance,
            effective,
            thresholds_adjusted=adjusted,
        )
