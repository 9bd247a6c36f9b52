"""Validation engine facade.

Wires the components together around one CalibrationEngine (config
owner) and one QualityMonitor (metrics owner):

    records -> RecordEvaluator / BatchProcessor -> decisions
    decisions -> ReviewQueueBuilder -> review order, session plan
    records -> IntelligentSampler -> spot-check sample
    feedback -> QualityMonitor -> metrics, alerts
    feedback -> CalibrationEngine -> new config version

Every evaluation reads a config snapshot, so calibrating while batches
run is safe.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

from memory_validation.core.evaluator import RecordEvaluator
from memory_validation.metrics.quality import (
    BatchSummary,
    QualityMonitor,
    compute_quality_metrics,
    effectiveness_metrics,
)
from memory_validation.modules.batch import BatchProcessor, BatchResult
from memory_validation.modules.calibration import CalibrationEngine
from memory_validation.modules.review_queue import (
    OptimizedQueue,
    ReviewerExpertise,
    ReviewQueue,
    ReviewQueueBuilder,
)
from memory_validation.modules.sampling import IntelligentSampler
from memory_validation.schemas import (
    CalibrationProposal,
    DistributionBand,
    EffectivenessMetrics,
    MemoryRecord,
    QualityAlert,
    QualityMetrics,
    SampleResult,
    SamplingStrategy,
    ThresholdConfig,
    ValidationDecision,
    ValidationFeedback,
)
from memory_validation.utils.config import EFFECTIVENESS_BATCH_WINDOW

if TYPE_CHECKING:
    from memory_validation.utils.logging import SessionLogger, StructuredLogger


class ValidationEngine:
    """Entry point tying scoring, batching, review and calibration together.

    All collaborators are injectable; defaults are built from the given
    config and logger.
    """

    def __init__(
        self,
        config: ThresholdConfig | None = None,
        evaluator: RecordEvaluator | None = None,
        calibration: CalibrationEngine | None = None,
        monitor: QualityMonitor | None = None,
        queue_builder: ReviewQueueBuilder | None = None,
        sampler: IntelligentSampler | None = None,
        band: DistributionBand | None = None,
        max_workers: int | None = None,
        throughput_target: float | None = None,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Starting config, ignored when ``calibration`` is given.
            evaluator: Single-record pipeline.
            calibration: Config owner.
            monitor: Quality monitor.
            queue_builder: Review queue builder.
            sampler: Validation sampler.
            band: Batch distribution sanity band.
            max_workers: Explicit batch pool size.
            throughput_target: Records/second batches are sized for.
            logger: Optional structured logger shared by all components.
        """
        self._logger = logger
        self._monitor = monitor or QualityMonitor(logger=logger)
        self._calibration = calibration or CalibrationEngine(
            config=config,
            quality_monitor=self._monitor,
            logger=logger,
        )
        self._evaluator = evaluator or RecordEvaluator(logger=logger)
        self._queue_builder = queue_builder or ReviewQueueBuilder(logger=logger)
        self._sampler = sampler or IntelligentSampler(logger=logger)
        self._batch = BatchProcessor(
            evaluator=self._evaluator,
            config_provider=self._calibration.snapshot,
            max_workers=max_workers,
            throughput_target=throughput_target,
            band=band,
            quality_monitor=self._monitor,
            logger=logger,
        )

        # Latest decision per record still awaiting review
        self._decisions: dict[str, ValidationDecision] = {}
        self._decisions_lock = threading.Lock()

        self._recent_batches: deque[BatchSummary] = deque(maxlen=EFFECTIVENESS_BATCH_WINDOW)

    # -------------------------------------------------------------------------
    # COMPONENTS
    # -------------------------------------------------------------------------

    @property
    def calibration(self) -> CalibrationEngine:
        return self._calibration

    @property
    def monitor(self) -> QualityMonitor:
        return self._monitor

    @property
    def batch_processor(self) -> BatchProcessor:
        return self._batch

    @property
    def sampler(self) -> IntelligentSampler:
        return self._sampler

    def config(self) -> ThresholdConfig:
        """Current config snapshot."""
        return self._calibration.snapshot()

    # -------------------------------------------------------------------------
    # EVALUATION
    # -------------------------------------------------------------------------

    def evaluate(self, record: MemoryRecord | Mapping[str, Any]) -> ValidationDecision:
        """Evaluate one record against the current config."""
        decision = self._evaluator.evaluate(record, self._calibration.snapshot())
        self._remember([decision])
        return decision

    def process_batch(
        self,
        records: Iterable[MemoryRecord | Mapping[str, Any]],
        throughput_target: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Evaluate a batch; see BatchProcessor.process."""
        result = self._batch.process(
            records,
            throughput_target=throughput_target,
            cancel_event=cancel_event,
        )
        self._remember(result.decisions)
        self._recent_batches.append(BatchSummary.of(result))
        return result

    def review_queue(
        self,
        decisions: Iterable[ValidationDecision] | None = None,
        now: datetime | None = None,
    ) -> ReviewQueue:
        """Build the review queue from given or remembered decisions."""
        if decisions is None:
            with self._decisions_lock:
                decisions = list(self._decisions.values())
        return self._queue_builder.build(decisions, now=now)

    def plan_review_session(
        self,
        available_minutes: float,
        expertise: ReviewerExpertise | str = ReviewerExpertise.INTERMEDIATE,
        now: datetime | None = None,
    ) -> OptimizedQueue:
        """Trim the current review queue to one session's time budget."""
        return self._queue_builder.optimize(
            self.review_queue(now=now),
            available_minutes,
            ReviewerExpertise(expertise),
        )

    def sample_for_validation(
        self,
        records: Iterable[MemoryRecord],
        strategy: SamplingStrategy | None = None,
        seed: int | None = None,
    ) -> SampleResult:
        """Draw a spot-check sample.

        Without a strategy one is chosen from the population; a sample
        below the coverage floor is logged.
        """
        population = list(records)
        strategy = strategy or self._sampler.optimize_strategy(population, seed=seed)
        result = self._sampler.sample(population, strategy)
        self._sampler.ensure_representative_coverage(result)
        return result

    @property
    def pending_count(self) -> int:
        """Decisions held for the review queue."""
        with self._decisions_lock:
            return len(self._decisions)

    def _remember(self, decisions: Sequence[ValidationDecision]) -> None:
        # Only review queue members are kept
        with self._decisions_lock:
            for decision in decisions:
                if self._queue_builder.is_member(decision):
                    self._decisions[decision.record_id] = decision
                else:
                    self._decisions.pop(decision.record_id, None)

    # -------------------------------------------------------------------------
    # FEEDBACK, QUALITY, CALIBRATION
    # -------------------------------------------------------------------------

    def submit_feedback(self, feedback: ValidationFeedback) -> None:
        """Record a reviewer verdict.

        A reviewed record leaves the review queue.
        """
        self._monitor.record(feedback)
        with self._decisions_lock:
            self._decisions.pop(feedback.record_id, None)

    def feedback_for(
        self,
        decision: ValidationDecision,
        actual_decision: str,
        **kwargs: Any,
    ) -> ValidationFeedback:
        """Build a ValidationFeedback pre-filled from a decision."""
        return ValidationFeedback(
            record_id=decision.record_id,
            predicted_decision=decision.outcome,
            actual_decision=actual_decision,
            predicted_confidence=decision.confidence,
            factors=dict(decision.confidence_result.factors),
            **kwargs,
        )

    def check_quality(self) -> tuple[QualityMetrics, list[QualityAlert]]:
        """Recompute quality metrics and alerts."""
        return self._monitor.evaluate(self._calibration.snapshot())

    def calibrate(self, apply: bool = True) -> CalibrationProposal:
        """Propose (and optionally apply) a calibration from the feedback window.

        Quality metrics are refreshed first so application is judged on
        the current window.
        """
        self._monitor.evaluate(self._calibration.snapshot())
        proposal = self._calibration.propose(self._monitor.feedback())
        if not apply:
            return proposal
        return self._calibration.apply(proposal)

    def rollback(self) -> ThresholdConfig | None:
        """Restore the previous config version."""
        return self._calibration.rollback()

    def effectiveness(self) -> EffectivenessMetrics:
        """Workload saved and quality kept over the recent batches."""
        return effectiveness_metrics(
            list(self._recent_batches),
            compute_quality_metrics(self._monitor.feedback()),
        )
