"""Batch processor: concurrent evaluation with per-item results.

Records are evaluated independently on a bounded worker pool against one
ThresholdConfig snapshot taken at batch start. Each item yields an
explicit ItemOutcome (decision or error); malformed records never abort
the batch.

Concurrency:
- ThreadPoolExecutor sized from the throughput target
- BoundedSemaphore caps in-flight evaluations
- Cancellation stops dispatch; in-flight evaluations finish
"""

from __future__ import annotations

import math
import threading
import uuid
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import numpy as np
from pydantic import ValidationError

from memory_validation.core.evaluator import RecordEvaluator
from memory_validation.errors import MalformedRecordError
from memory_validation.schemas import (
    DistributionBand,
    MemoryRecord,
    QualityMetrics,
    ThresholdConfig,
    ValidationDecision,
    ValidationOutcome,
)
from memory_validation.utils.config import (
    DEFAULT_BATCH_WORKERS,
    MAX_BATCH_WORKERS,
    RECORDS_PER_WORKER_PER_SECOND,
)
from memory_validation.utils.logging import LogLevel

if TYPE_CHECKING:
    from memory_validation.metrics.quality import QualityMonitor
    from memory_validation.utils.logging import SessionLogger, StructuredLogger


def workers_for_throughput(records_per_second: float) -> int:
    """Worker pool size for a sustained throughput target."""
    if records_per_second <= 0:
        return 1
    wanted = math.ceil(records_per_second / RECORDS_PER_WORKER_PER_SECOND)
    return max(1, min(MAX_BATCH_WORKERS, wanted))


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class BatchError:
    """A record that could not be evaluated."""
    index: int
    record_id: str | None
    error_type: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "record_id": self.record_id,
            "error_type": self.error_type,
            "message": self.message,
        }


@dataclass
class ItemOutcome:
    """Per-item result: exactly one of decision or error is set."""
    index: int
    record_id: str | None
    decision: ValidationDecision | None = None
    error: BatchError | None = None

    @property
    def ok(self) -> bool:
        return self.decision is not None


@dataclass
class BatchResult:
    """Result of one batch run."""
    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    total_records: int = 0
    workers: int = 0
    config_version: int = 1

    decisions: list[ValidationDecision] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)
    skipped: int = 0
    cancelled: bool = False

    counts: dict[str, int] = field(
        default_factory=lambda: {o.value: 0 for o in ValidationOutcome}
    )
    average_confidence: float = 0.0
    confidence_stats: dict[str, float] = field(default_factory=dict)

    distribution_flagged: bool = False
    distribution_reasons: list[str] = field(default_factory=list)

    quality_metrics: QualityMetrics | None = None

    def complete(self) -> None:
        """Mark the batch as complete."""
        self.completed_at = datetime.now()

    @property
    def duration_ms(self) -> float:
        """Duration in milliseconds."""
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds() * 1000

    @property
    def processed(self) -> int:
        """Records that produced a decision."""
        return len(self.decisions)

    @property
    def throughput(self) -> float:
        """Evaluated records per second."""
        seconds = self.duration_ms / 1000
        if seconds <= 0:
            return 0.0
        return (self.processed + len(self.errors)) / seconds

    def ratios(self) -> dict[str, float]:
        """Share of each decision class among successful evaluations."""
        if not self.decisions:
            return {o.value: 0.0 for o in ValidationOutcome}
        return {k: v / len(self.decisions) for k, v in self.counts.items()}

    def to_dict(self, include_decisions: bool = False) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        d: dict[str, Any] = {
            "batch_id": self.batch_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "total_records": self.total_records,
            "processed": self.processed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "workers": self.workers,
            "config_version": self.config_version,
            "counts": dict(self.counts),
            "average_confidence": self.average_confidence,
            "confidence_stats": dict(self.confidence_stats),
            "distribution_flagged": self.distribution_flagged,
            "distribution_reasons": list(self.distribution_reasons),
            "errors": [e.to_dict() for e in self.errors],
            "quality_metrics": (
                self.quality_metrics.model_dump(mode="json") if self.quality_metrics else None
            ),
        }
        if include_decisions:
            d["decisions"] = [dec.model_dump(mode="json") for dec in self.decisions]
        return d


# =============================================================================
# BATCH PROCESSOR
# =============================================================================

class BatchProcessor:
    """Evaluates collections of records concurrently.

    The config snapshot is read once per batch, so a calibration landing
    mid-batch never produces a mix of versions within one result.
    """

    def __init__(
        self,
        evaluator: RecordEvaluator | None = None,
        config: ThresholdConfig | None = None,
        config_provider: Callable[[], ThresholdConfig] | None = None,
        max_workers: int | None = None,
        throughput_target: float | None = None,
        max_in_flight: int | None = None,
        band: DistributionBand | None = None,
        quality_monitor: "QualityMonitor | None" = None,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        """Initialize the batch processor.

        Args:
            evaluator: Single-record pipeline (default pipeline if None).
            config: Fixed config to evaluate against.
            config_provider: Callable returning the current config snapshot,
                typically ``CalibrationEngine.snapshot``. Takes precedence
                over ``config``.
            max_workers: Explicit pool size; overrides the throughput target.
            throughput_target: Records/second the pool is sized for.
            max_in_flight: Cap on concurrently dispatched evaluations
                (defaults to twice the pool size).
            band: Distribution sanity band.
            quality_monitor: Monitor whose latest metrics are attached.
            logger: Optional structured logger.
        """
        self._evaluator = evaluator or RecordEvaluator(logger=logger)
        self._config = config or ThresholdConfig()
        self._config_provider = config_provider
        self._max_workers = max_workers
        self._throughput_target = throughput_target
        self._max_in_flight = max_in_flight
        self._band = band or DistributionBand()
        self._quality_monitor = quality_monitor
        self._logger = logger

    @property
    def band(self) -> DistributionBand:
        return self._band

    def worker_count(self, throughput_target: float | None = None) -> int:
        """Resolve the pool size for one batch."""
        if self._max_workers is not None:
            return max(1, min(MAX_BATCH_WORKERS, self._max_workers))
        target = throughput_target if throughput_target is not None else self._throughput_target
        if target is not None:
            return workers_for_throughput(target)
        return DEFAULT_BATCH_WORKERS

    def process(
        self,
        records: Iterable[MemoryRecord | Mapping[str, Any]],
        config: ThresholdConfig | None = None,
        throughput_target: float | None = None,
        cancel_event: threading.Event | None = None,
        batch_id: str | None = None,
    ) -> BatchResult:
        """Evaluate a batch of records.

        Args:
            records: Records or raw mappings, in input order.
            config: Config snapshot override for this batch.
            throughput_target: Per-batch throughput override.
            cancel_event: Set to stop dispatching further records.
            batch_id: Optional batch identifier.

        Returns:
            BatchResult with decisions in input order and one BatchError
            per malformed record.
        """
        items = list(records)
        snapshot = config or self._snapshot()
        workers = self.worker_count(throughput_target)
        in_flight = self._max_in_flight or workers * 2

        result = BatchResult(
            total_records=len(items),
            workers=workers,
            config_version=snapshot.version,
        )
        if batch_id:
            result.batch_id = batch_id

        if self._logger:
            self._logger.batch(
                f"Batch started: {len(items)} records, workers={workers}, in_flight={in_flight}",
                batch_id=result.batch_id,
                config_version=snapshot.version,
            )

        outcomes = self._dispatch(items, snapshot, workers, in_flight, cancel_event)

        dispatched = len(outcomes)
        result.skipped = len(items) - dispatched
        result.cancelled = result.skipped > 0

        for outcome in sorted(outcomes, key=lambda o: o.index):
            if outcome.decision is not None:
                result.decisions.append(outcome.decision)
                result.counts[outcome.decision.outcome.value] += 1
            elif outcome.error is not None:
                result.errors.append(outcome.error)
                if self._logger:
                    self._logger.batch(
                        f"Record {outcome.index} failed: {outcome.error.error_type}: "
                        f"{outcome.error.message}",
                        level=LogLevel.WARNING,
                        record_id=outcome.record_id,
                        batch_id=result.batch_id,
                    )

        self._compute_statistics(result)
        self._check_distribution(result)

        if self._quality_monitor is not None:
            result.quality_metrics = self._quality_monitor.snapshot(snapshot)

        result.complete()

        if self._logger:
            self._logger.batch(
                f"Batch complete: processed={result.processed} errors={len(result.errors)} "
                f"skipped={result.skipped} counts={result.counts} "
                f"duration={result.duration_ms:.1f}ms",
                batch_id=result.batch_id,
                confidence=result.average_confidence,
                config_version=snapshot.version,
            )
        return result

    # -------------------------------------------------------------------------
    # DISPATCH
    # -------------------------------------------------------------------------

    def _snapshot(self) -> ThresholdConfig:
        if self._config_provider is not None:
            return self._config_provider()
        return self._config

    def _dispatch(
        self,
        items: list[MemoryRecord | Mapping[str, Any]],
        snapshot: ThresholdConfig,
        workers: int,
        in_flight: int,
        cancel_event: threading.Event | None,
    ) -> list[ItemOutcome]:
        slots = threading.BoundedSemaphore(in_flight)
        futures: list[Future[ItemOutcome]] = []

        def _release(_future: Future[ItemOutcome]) -> None:
            slots.release()

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="validation") as pool:
            for index, item in enumerate(items):
                if cancel_event is not None and cancel_event.is_set():
                    break
                slots.acquire()
                if cancel_event is not None and cancel_event.is_set():
                    slots.release()
                    break
                future = pool.submit(self._evaluate_item, index, item, snapshot)
                future.add_done_callback(_release)
                futures.append(future)

        return [f.result() for f in futures]

    def _evaluate_item(
        self,
        index: int,
        item: MemoryRecord | Mapping[str, Any],
        snapshot: ThresholdConfig,
    ) -> ItemOutcome:
        record_id = _record_id_of(item)
        try:
            decision = self._evaluator.evaluate(item, snapshot)
        except (MalformedRecordError, ValidationError, TypeError, ValueError) as e:
            return ItemOutcome(
                index=index,
                record_id=record_id,
                error=BatchError(
                    index=index,
                    record_id=record_id,
                    error_type=type(e).__name__,
                    message=_short_message(e),
                ),
            )
        return ItemOutcome(index=index, record_id=decision.record_id, decision=decision)

    # -------------------------------------------------------------------------
    # STATISTICS
    # -------------------------------------------------------------------------

    def _compute_statistics(self, result: BatchResult) -> None:
        if not result.decisions:
            return
        confidences = np.array([d.confidence for d in result.decisions], dtype=float)
        result.average_confidence = float(confidences.mean())
        result.confidence_stats = {
            "mean": float(confidences.mean()),
            "std": float(confidences.std()),
            "min": float(confidences.min()),
            "p10": float(np.percentile(confidences, 10)),
            "p50": float(np.percentile(confidences, 50)),
            "p90": float(np.percentile(confidences, 90)),
            "max": float(confidences.max()),
        }

    def _check_distribution(self, result: BatchResult) -> None:
        """Flag gross dominance or disappearance of a decision class."""
        if result.processed < self._band.min_batch_size:
            return
        ratios = result.ratios()
        band = self._band
        # (max, min) share per outcome
        limits = {
            ValidationOutcome.AUTO_APPROVE.value: (band.max_approve_ratio, band.min_approve_ratio),
            ValidationOutcome.REVIEW_REQUIRED.value: (band.max_review_ratio, band.min_review_ratio),
            ValidationOutcome.AUTO_REJECT.value: (band.max_reject_ratio, band.min_reject_ratio),
        }
        for outcome, (upper, _lower) in limits.items():
            if ratios[outcome] > upper:
                result.distribution_reasons.append(
                    f"{outcome} ratio {ratios[outcome]:.1%} exceeds {upper:.0%}"
                )
        for outcome, (_upper, lower) in limits.items():
            if lower > 0 and ratios[outcome] < lower:
                result.distribution_reasons.append(
                    f"{outcome} ratio {ratios[outcome]:.1%} below {lower:.0%}"
                )
        result.distribution_flagged = bool(result.distribution_reasons)

        if result.distribution_flagged and self._logger:
            self._logger.batch(
                "Distribution check flagged batch: " + "; ".join(result.distribution_reasons),
                level=LogLevel.WARNING,
                batch_id=result.batch_id,
            )


def _record_id_of(item: Any) -> str | None:
    if isinstance(item, MemoryRecord):
        return item.record_id
    if isinstance(item, Mapping):
        value = item.get("record_id")
        return str(value) if value is not None else None
    return None


def _short_message(error: Exception) -> str:
    if isinstance(error, ValidationError):
        first = error.errors()[0] if error.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ()))
        return f"{error.error_count()} validation error(s); first at {loc or '<root>'}: {first.get('msg', '')}"
    return str(error)
