"""Quality monitor: rolling accuracy metrics and advisory alerts.

Computes over a sliding window of ValidationFeedback:
- Overall accuracy (review_required always counts as correct)
- Auto-approve / auto-reject accuracy
- False-positive rate (auto-approved, human rejected)
- False-negative rate (auto-rejected, human approved)
- Review-time reduction (share correctly handled without a reviewer)
- Confidence calibration (1 - weighted |confidence - accuracy|)

Effectiveness combines recent batch decision mixes and throughput with
the quality snapshot to show how much reviewer work is being saved.

ARCHITECTURAL INVARIANT: The monitor is advisory. It never changes
thresholds; all changes flow through the calibration engine.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import numpy as np

from memory_validation.schemas import (
    AccuracyTrendPoint,
    AlertSeverity,
    ConfidenceBucket,
    EffectivenessMetrics,
    QualityAlert,
    QualityMetrics,
    ThresholdConfig,
    ValidationFeedback,
    ValidationOutcome,
)
from memory_validation.utils.config import (
    DEFAULT_QUALITY_CHECK_INTERVAL,
    DEFAULT_QUALITY_WINDOW,
    DEGRADATION_TOLERANCE,
    EFFECTIVENESS_BATCH_WINDOW,
    EFFECTIVENESS_WEIGHTS,
    MAX_FALSE_NEGATIVE_RATE,
    MAX_FALSE_POSITIVE_RATE,
    MIN_ALERT_SAMPLE,
    MIN_AUTO_APPROVE_ACCURACY,
    TARGET_RECORDS_PER_SECOND,
)
from memory_validation.utils.logging import LogLevel

if TYPE_CHECKING:
    from memory_validation.utils.logging import SessionLogger, StructuredLogger

logger = logging.getLogger(__name__)

CONFIDENCE_BUCKET_EDGES: tuple[float, ...] = (0.0, 0.2, 0.4, 0.6, 0.8, 1.0)


# =============================================================================
# METRIC COMPUTATION
# =============================================================================

def compute_quality_metrics(
    feedback: Sequence[ValidationFeedback],
    window_size: int = DEFAULT_QUALITY_WINDOW,
    config_version: int | None = None,
) -> QualityMetrics:
    """Aggregate quality metrics for a feedback sequence."""
    n = len(feedback)
    distribution = {o.value: 0 for o in ValidationOutcome}
    if n == 0:
        return QualityMetrics(
            window_size=window_size,
            decision_distribution=distribution,
            config_version=config_version,
        )

    for fb in feedback:
        distribution[fb.predicted_decision.value] += 1

    correct = np.array([fb.is_correct for fb in feedback], dtype=bool)
    fp = np.array([fb.is_false_positive for fb in feedback], dtype=bool)
    fn = np.array([fb.is_false_negative for fb in feedback], dtype=bool)
    approved = np.array(
        [fb.predicted_decision == ValidationOutcome.AUTO_APPROVE for fb in feedback], dtype=bool
    )
    rejected = np.array(
        [fb.predicted_decision == ValidationOutcome.AUTO_REJECT for fb in feedback], dtype=bool
    )
    automated_correct = (approved | rejected) & correct

    return QualityMetrics(
        sample_size=n,
        window_size=window_size,
        accuracy=float(correct.mean()),
        auto_approve_accuracy=float(correct[approved].mean()) if approved.any() else 0.0,
        auto_reject_accuracy=float(correct[rejected].mean()) if rejected.any() else 0.0,
        false_positive_rate=float(fp.mean()),
        false_negative_rate=float(fn.mean()),
        review_time_reduction=float(automated_correct.mean()),
        average_review_seconds=float(np.mean([fb.time_taken_seconds for fb in feedback])),
        decision_distribution=distribution,
        calibration_score=calibration_score(confidence_buckets(feedback)),
        config_version=config_version,
    )


def confidence_buckets(feedback: Sequence[ValidationFeedback]) -> list[ConfidenceBucket]:
    """Accuracy per 20%-wide confidence bucket.

    Items without a recorded confidence are skipped. The top bucket
    includes 1.0.
    """
    buckets: list[ConfidenceBucket] = []
    scored = [fb for fb in feedback if fb.predicted_confidence is not None]
    last = len(CONFIDENCE_BUCKET_EDGES) - 2
    for i, (low, high) in enumerate(zip(CONFIDENCE_BUCKET_EDGES, CONFIDENCE_BUCKET_EDGES[1:])):
        members = [
            fb for fb in scored
            if low <= fb.predicted_confidence < high
            or (i == last and fb.predicted_confidence == high)
        ]
        if not members:
            buckets.append(
                ConfidenceBucket(low=low, high=high, average_confidence=(low + high) / 2)
            )
            continue
        buckets.append(
            ConfidenceBucket(
                low=low,
                high=high,
                count=len(members),
                accuracy=float(np.mean([fb.is_correct for fb in members])),
                average_confidence=float(np.mean([fb.predicted_confidence for fb in members])),
            )
        )
    return buckets


def calibration_score(buckets: Sequence[ConfidenceBucket]) -> float:
    """1 minus the count-weighted gap between confidence and accuracy."""
    total = sum(b.count for b in buckets)
    if total == 0:
        return 0.0
    error = sum(abs(b.average_confidence - b.accuracy) * b.count for b in buckets)
    return max(0.0, min(1.0, 1.0 - error / total))


def quality_alerts(
    metrics: QualityMetrics,
    config: ThresholdConfig | None = None,
    min_sample: int = MIN_ALERT_SAMPLE,
) -> list[QualityAlert]:
    """Advisory alerts for a metrics snapshot."""
    if metrics.sample_size < min_sample:
        return []

    alerts: list[QualityAlert] = []
    approvals = metrics.decision_distribution.get(ValidationOutcome.AUTO_APPROVE.value, 0)

    if approvals > 0 and metrics.auto_approve_accuracy < MIN_AUTO_APPROVE_ACCURACY:
        alerts.append(QualityAlert(
            alert_type="auto_approve_accuracy",
            severity=AlertSeverity.HIGH,
            message=(
                f"Auto-approve accuracy {metrics.auto_approve_accuracy:.1%} "
                f"below {MIN_AUTO_APPROVE_ACCURACY:.0%}"
            ),
            observed=metrics.auto_approve_accuracy,
            threshold=MIN_AUTO_APPROVE_ACCURACY,
            recommendation="Recalibrate thresholds and factor weights",
        ))

    if metrics.false_positive_rate > MAX_FALSE_POSITIVE_RATE:
        target = f" above {config.auto_approve:.2f}" if config else ""
        alerts.append(QualityAlert(
            alert_type="false_positive_rate",
            severity=AlertSeverity.MEDIUM,
            message=(
                f"False-positive rate {metrics.false_positive_rate:.1%} "
                f"exceeds {MAX_FALSE_POSITIVE_RATE:.0%}"
            ),
            observed=metrics.false_positive_rate,
            threshold=MAX_FALSE_POSITIVE_RATE,
            recommendation=f"Raise the auto_approve threshold{target}",
        ))

    if metrics.false_negative_rate > MAX_FALSE_NEGATIVE_RATE:
        target = f" below {config.auto_reject:.2f}" if config else ""
        alerts.append(QualityAlert(
            alert_type="false_negative_rate",
            severity=AlertSeverity.MEDIUM,
            message=(
                f"False-negative rate {metrics.false_negative_rate:.1%} "
                f"exceeds {MAX_FALSE_NEGATIVE_RATE:.0%}"
            ),
            observed=metrics.false_negative_rate,
            threshold=MAX_FALSE_NEGATIVE_RATE,
            recommendation=f"Lower the auto_reject threshold{target}",
        ))

    return alerts


# =============================================================================
# EFFECTIVENESS
# =============================================================================

@dataclass(frozen=True)
class BatchSummary:
    """Decision mix and speed of one batch, without its decisions."""
    processed: int
    throughput: float
    counts: dict[str, int] = field(default_factory=dict)

    @classmethod
    def of(cls, result: Any) -> "BatchSummary":
        return cls(
            processed=result.processed,
            throughput=result.throughput,
            counts=dict(result.counts),
        )


def effectiveness_metrics(
    batches: Sequence[Any],
    metrics: QualityMetrics,
    target_throughput: float = TARGET_RECORDS_PER_SECOND,
    window: int = EFFECTIVENESS_BATCH_WINDOW,
) -> EffectivenessMetrics:
    """Effectiveness over the most recent ``window`` batches.

    Args:
        batches: BatchResult or BatchSummary items, oldest first.
        metrics: Quality snapshot supplying accuracy and error rates.
        target_throughput: Records/second that counts as fully efficient.
        window: Number of trailing batches considered.
    """
    recent = list(batches)[-window:] if window > 0 else []
    processed = sum(b.processed for b in recent)
    approved = sum(b.counts.get(ValidationOutcome.AUTO_APPROVE.value, 0) for b in recent)
    rejected = sum(b.counts.get(ValidationOutcome.AUTO_REJECT.value, 0) for b in recent)

    approval_rate = approved / processed if processed else 0.0
    workload = (approved + rejected) / processed if processed else 0.0
    error_rate = (metrics.false_positive_rate + metrics.false_negative_rate) / 2
    quality = metrics.accuracy * (1 - error_rate)

    speeds = [b.throughput for b in recent if b.processed]
    time_efficiency = 0.0
    if speeds and target_throughput > 0:
        time_efficiency = min(1.0, float(np.mean(speeds)) / target_throughput)

    w_approval, w_workload, w_quality, w_time = EFFECTIVENESS_WEIGHTS
    overall = (
        w_approval * approval_rate
        + w_workload * workload
        + w_quality * quality
        + w_time * time_efficiency
    )
    return EffectivenessMetrics(
        batches=len(recent),
        auto_approval_rate=approval_rate,
        workload_reduction=workload,
        quality_maintenance=quality,
        time_efficiency=time_efficiency,
        overall=min(1.0, overall),
    )


# =============================================================================
# QUALITY MONITOR
# =============================================================================

class QualityMonitor:
    """Sliding-window quality tracker.

    Single writer for QualityMetrics: feedback appends and metric
    snapshots are taken under a lock; readers get frozen snapshots.
    """

    def __init__(
        self,
        window_size: int = DEFAULT_QUALITY_WINDOW,
        min_alert_sample: int = MIN_ALERT_SAMPLE,
        degradation_tolerance: float = DEGRADATION_TOLERANCE,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            window_size: Feedback items kept in the sliding window.
            min_alert_sample: Minimum window size before alerts are raised.
            degradation_tolerance: Accuracy drop that counts as degrading.
            logger: Optional structured logger.
        """
        self._window_size = window_size
        self._min_alert_sample = min_alert_sample
        self._tolerance = degradation_tolerance
        self._logger = logger

        self._window: deque[ValidationFeedback] = deque(maxlen=window_size)
        self._lock = threading.Lock()

        self._latest: QualityMetrics | None = None
        self._previous: QualityMetrics | None = None
        self._latest_alerts: list[QualityAlert] = []

    # -------------------------------------------------------------------------
    # FEEDBACK
    # -------------------------------------------------------------------------

    def record(self, feedback: ValidationFeedback) -> None:
        """Append one feedback item to the window."""
        with self._lock:
            self._window.append(feedback)

    def record_many(self, feedback: Iterable[ValidationFeedback]) -> int:
        """Append feedback items; returns how many were added."""
        count = 0
        with self._lock:
            for fb in feedback:
                self._window.append(fb)
                count += 1
        return count

    def feedback(self) -> list[ValidationFeedback]:
        """Copy of the current window, oldest first."""
        with self._lock:
            return list(self._window)

    def clear(self) -> None:
        """Drop all feedback and snapshots."""
        with self._lock:
            self._window.clear()
            self._latest = None
            self._previous = None
            self._latest_alerts = []

    @property
    def sample_size(self) -> int:
        with self._lock:
            return len(self._window)

    @property
    def window_size(self) -> int:
        return self._window_size

    # -------------------------------------------------------------------------
    # METRICS
    # -------------------------------------------------------------------------

    def evaluate(
        self,
        config: ThresholdConfig | None = None,
    ) -> tuple[QualityMetrics, list[QualityAlert]]:
        """Recompute metrics and alerts, storing them as the latest snapshot.

        Args:
            config: Current config, used to label metrics and phrase
                recommendations.

        Returns:
            Tuple of (metrics, alerts).
        """
        window = self.feedback()
        metrics = compute_quality_metrics(
            window,
            window_size=self._window_size,
            config_version=config.version if config else None,
        )
        alerts = quality_alerts(metrics, config, self._min_alert_sample)

        with self._lock:
            self._previous = self._latest
            self._latest = metrics
            self._latest_alerts = list(alerts)

        if self._logger:
            self._logger.quality(
                f"Quality: accuracy={metrics.accuracy:.3f} "
                f"approve_acc={metrics.auto_approve_accuracy:.3f} "
                f"fp={metrics.false_positive_rate:.3f} fn={metrics.false_negative_rate:.3f} "
                f"n={metrics.sample_size}",
                config_version=metrics.config_version,
            )
            for alert in alerts:
                level = LogLevel.ERROR if alert.severity == AlertSeverity.HIGH else LogLevel.WARNING
                self._logger.quality(
                    f"ALERT [{alert.severity.value}] {alert.message}; {alert.recommendation}",
                    level=level,
                )
        return metrics, alerts

    def snapshot(self, config: ThresholdConfig | None = None) -> QualityMetrics:
        """Latest metrics, computing a first snapshot if none exists."""
        with self._lock:
            latest = self._latest
        if latest is None:
            latest, _ = self.evaluate(config)
        return latest

    @property
    def latest_metrics(self) -> QualityMetrics | None:
        with self._lock:
            return self._latest

    @property
    def latest_alerts(self) -> list[QualityAlert]:
        with self._lock:
            return list(self._latest_alerts)

    def is_degrading(self) -> bool:
        """Whether accuracy has dropped by more than the tolerance.

        Compares the last two evaluate() snapshots; with fewer than two,
        falls back to the last two points of the accuracy trend.
        """
        with self._lock:
            previous, latest = self._previous, self._latest
        if (
            previous is not None
            and latest is not None
            and previous.sample_size >= self._min_alert_sample
            and latest.sample_size >= self._min_alert_sample
        ):
            return latest.accuracy < previous.accuracy - self._tolerance

        trend = self.accuracy_trend()
        if len(trend) < 2:
            return False
        return trend[-1].accuracy < trend[-2].accuracy - self._tolerance

    def accuracy_trend(self, window_size: int = 50) -> list[AccuracyTrendPoint]:
        """Accuracy over overlapping windows stepping by half a window."""
        history = self.feedback()
        if window_size <= 0 or len(history) < window_size:
            return []
        step = max(1, window_size // 2)
        points: list[AccuracyTrendPoint] = []
        for end in range(window_size, len(history) + 1, step):
            chunk = history[end - window_size:end]
            points.append(AccuracyTrendPoint(
                end_index=end,
                window_size=window_size,
                accuracy=float(np.mean([fb.is_correct for fb in chunk])),
                false_positive_rate=float(np.mean([fb.is_false_positive for fb in chunk])),
                false_negative_rate=float(np.mean([fb.is_false_negative for fb in chunk])),
                timestamp=chunk[-1].submitted_at,
            ))
        return points

    def performance_by_confidence(self) -> list[ConfidenceBucket]:
        """Accuracy per confidence bucket over the current window."""
        return confidence_buckets(self.feedback())


# =============================================================================
# QUALITY CHECK SCHEDULER
# =============================================================================

class QualityCheckScheduler:
    """Runs QualityMonitor.evaluate() periodically on a background thread.

    Alerts are forwarded to the registered callbacks. A failing callback
    is logged and does not stop the loop.
    """

    def __init__(
        self,
        monitor: QualityMonitor,
        config_provider: Callable[[], ThresholdConfig] | None = None,
        interval: float = DEFAULT_QUALITY_CHECK_INTERVAL,
        on_alerts: Callable[[list[QualityAlert]], None] | None = None,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ):
        """Initialize the scheduler.

        Args:
            monitor: The quality monitor to evaluate
            config_provider: Returns the current config snapshot
            interval: Seconds between checks
            on_alerts: Called with the alert list when any alert fires
            logger: Optional structured logger
        """
        self._monitor = monitor
        self._config_provider = config_provider
        self._interval = interval
        self._callbacks: list[Callable[[list[QualityAlert]], None]] = []
        if on_alerts is not None:
            self._callbacks.append(on_alerts)
        self._logger = logger

        self._last_check: float | None = None
        self._check_count = 0
        self._failed_checks = 0
        self._running = False
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def add_alert_callback(self, callback: Callable[[list[QualityAlert]], None]) -> None:
        self._callbacks.append(callback)

    def start(self) -> None:
        """Start the scheduler thread."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="quality-check", daemon=True
        )
        self._thread.start()

        if self._logger:
            self._logger.quality(f"Quality scheduler started (interval={self._interval}s)")

    def stop(self) -> None:
        """Stop the scheduler thread."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None

        if self._logger:
            self._logger.quality("Quality scheduler stopped")

    def run_once(self) -> list[QualityAlert]:
        """Run one check immediately."""
        config = self._config_provider() if self._config_provider else None
        _, alerts = self._monitor.evaluate(config)
        self._last_check = time.time()
        self._check_count += 1

        if alerts:
            for callback in self._callbacks:
                try:
                    callback(alerts)
                except Exception:
                    logger.exception("Quality alert callback failed")
        return alerts

    def _run_loop(self) -> None:
        """Main scheduler loop."""
        while self._running and not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                self._failed_checks += 1
                logger.exception("Quality check failed")
                if self._logger:
                    self._logger.quality("Quality check failed", level=LogLevel.ERROR)
            self._stop_event.wait(timeout=self._interval)

    @property
    def is_running(self) -> bool:
        """Whether scheduler is running."""
        return self._running

    @property
    def check_count(self) -> int:
        """Number of checks run so far."""
        return self._check_count

    @property
    def failed_checks(self) -> int:
        """Checks that raised inside the background loop."""
        return self._failed_checks

    @property
    def last_check_at(self) -> datetime | None:
        if self._last_check is None:
            return None
        return datetime.fromtimestamp(self._last_check)
