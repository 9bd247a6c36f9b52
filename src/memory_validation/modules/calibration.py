"""Calibration engine: bounded threshold updates from human feedback.

The engine owns the only mutable reference to the active ThresholdConfig.
Everyone else reads immutable snapshots via snapshot().

Update rules (per cycle):
- false-positive rate > 5%            -> raise auto_approve
- false-positive rate < 2%, acc > 90% -> lower auto_approve slightly
- false-negative rate > 5%            -> lower auto_reject
- factor weights nudged by factor hit rate, then renormalised

ARCHITECTURAL INVARIANT: No threshold moves by more than
max_threshold_step in one cycle, and a change is only installed when
quality is stable and replaying the feedback does not get worse.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from memory_validation.metrics.quality import compute_quality_metrics
from memory_validation.modules.confidence import calculate_confidence
from memory_validation.modules.decision import classify
from memory_validation.schemas import (
    FACTOR_NAMES,
    BiasAnalysis,
    BiasDirection,
    CalibrationProposal,
    FactorPerformance,
    FactorWeights,
    ProposalStatus,
    QualityMetrics,
    ThresholdConfig,
    ValidationFeedback,
    outcome_is_correct,
)
from memory_validation.utils.config import (
    AUTO_APPROVE_CEILING,
    AUTO_APPROVE_FLOOR,
    AUTO_REJECT_FLOOR,
    BIAS_RATE_GAP,
    MAX_FALSE_NEGATIVE_RATE,
    MAX_FALSE_POSITIVE_RATE,
    MAX_IMPROVEMENT_ESTIMATE,
    MAX_THRESHOLD_STEP,
    MIN_ACCEPTABLE_ACCURACY,
    MIN_CALIBRATION_SAMPLE,
)
from memory_validation.utils.logging import LogLevel

if TYPE_CHECKING:
    from memory_validation.metrics.quality import QualityMonitor
    from memory_validation.utils.logging import SessionLogger, StructuredLogger

# Lowering auto_approve is a small, cautious step
APPROVE_RELAX_STEP: float = 0.02
LOW_FALSE_POSITIVE_RATE: float = 0.02
HIGH_ACCURACY: float = 0.90

# Factor counts as "contributing" when above this value on a correct verdict
FACTOR_HIT_VALUE: float = 0.7
FACTOR_BOOST: float = 1.1
FACTOR_PENALTY: float = 0.9
FACTOR_GOOD_HIT_RATE: float = 0.8
FACTOR_POOR_HIT_RATE: float = 0.5

DEFAULT_HISTORY_LIMIT: int = 20


def replay_accuracy(
    feedback: Sequence[ValidationFeedback],
    config: ThresholdConfig,
) -> float | None:
    """Accuracy if every feedback item had been decided under ``config``.

    Items carrying all four factors are re-scored with the config's
    weights; items with only a recorded confidence are re-classified;
    items with neither keep their original verdict. Significance shifts
    are not replayed.
    """
    if not feedback:
        return None
    correct = 0
    for fb in feedback:
        if all(name in fb.factors for name in FACTOR_NAMES):
            confidence = calculate_confidence(
                fb.factors["extraction"],
                fb.factors["emotional_coherence"],
                fb.factors["relationship_accuracy"],
                fb.factors["context_quality"],
                config,
            )
            outcome = classify(confidence, config)
        elif fb.predicted_confidence is not None:
            outcome = classify(fb.predicted_confidence, config)
        else:
            outcome = fb.predicted_decision
        if outcome_is_correct(outcome, fb.actual_decision):
            correct += 1
    return correct / len(feedback)


def factor_performance(feedback: Sequence[ValidationFeedback]) -> list[FactorPerformance]:
    """Hit rate and correctness correlation for each confidence factor."""
    results: list[FactorPerformance] = []
    for name in FACTOR_NAMES:
        rows = [(fb.factors[name], fb.is_correct) for fb in feedback if name in fb.factors]
        if not rows:
            results.append(FactorPerformance(factor=name))
            continue
        values = np.array([r[0] for r in rows], dtype=float)
        correct = np.array([r[1] for r in rows], dtype=float)
        hits = np.logical_and(correct > 0, values > FACTOR_HIT_VALUE)

        correlation = 0.0
        if len(rows) > 1 and values.std() > 0 and correct.std() > 0:
            correlation = float(np.corrcoef(values, correct)[0, 1])

        results.append(FactorPerformance(
            factor=name,
            sample_size=len(rows),
            average_value=float(values.mean()),
            hit_rate=float(hits.mean()),
            correlation=correlation,
        ))
    return results


def analyze_bias(
    metrics: QualityMetrics,
    performance: Sequence[FactorPerformance],
    gap: float = BIAS_RATE_GAP,
) -> BiasAnalysis:
    """Flag systematic optimism (too many approvals) or pessimism."""
    magnitude = abs(metrics.false_positive_rate - metrics.false_negative_rate)
    underperforming = [
        p.factor for p in performance
        if p.sample_size > 0 and p.hit_rate < FACTOR_POOR_HIT_RATE
    ]
    if magnitude <= gap:
        return BiasAnalysis(magnitude=magnitude, underperforming_factors=underperforming)
    direction = (
        BiasDirection.OPTIMISTIC
        if metrics.false_positive_rate > metrics.false_negative_rate
        else BiasDirection.PESSIMISTIC
    )
    return BiasAnalysis(
        detected=True,
        direction=direction,
        magnitude=magnitude,
        underperforming_factors=underperforming,
    )


# =============================================================================
# CALIBRATION ENGINE
# =============================================================================

class CalibrationEngine:
    """Single owner of the active ThresholdConfig.

    All writes (apply, rollback, replace) take the lock; snapshot() hands
    out the current frozen config, so readers never see a torn update.
    """

    def __init__(
        self,
        config: ThresholdConfig | None = None,
        max_threshold_step: float = MAX_THRESHOLD_STEP,
        min_sample: int = MIN_CALIBRATION_SAMPLE,
        min_accuracy: float = MIN_ACCEPTABLE_ACCURACY,
        quality_monitor: "QualityMonitor | None" = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        """Initialize the calibration engine.

        Args:
            config: Starting config (defaults if None).
            max_threshold_step: Largest move of any threshold per cycle.
            min_sample: Minimum feedback items before changes are applied.
            min_accuracy: Accuracy below which application is deferred.
            quality_monitor: Monitor consulted for degradation and metrics.
            history_limit: Previous configs kept for rollback.
            logger: Optional structured logger.
        """
        self._config = config or ThresholdConfig()
        self._max_step = max_threshold_step
        self._min_sample = min_sample
        self._min_accuracy = min_accuracy
        self._monitor = quality_monitor
        self._history_limit = history_limit
        self._logger = logger

        self._history: list[ThresholdConfig] = []
        self._max_version = self._config.version
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # READERS
    # -------------------------------------------------------------------------

    def snapshot(self) -> ThresholdConfig:
        """The active config. Immutable, safe to share across threads."""
        with self._lock:
            return self._config

    @property
    def version(self) -> int:
        return self.snapshot().version

    @property
    def history(self) -> list[ThresholdConfig]:
        """Previous configs, oldest first."""
        with self._lock:
            return list(self._history)

    @property
    def max_threshold_step(self) -> float:
        return self._max_step

    # -------------------------------------------------------------------------
    # PROPOSE
    # -------------------------------------------------------------------------

    def propose(self, feedback: Sequence[ValidationFeedback]) -> CalibrationProposal:
        """Derive a bounded adjustment from a feedback window.

        Never changes the active config. Fewer than ``min_sample`` items
        yield a deferred proposal that keeps the current config.
        """
        feedback = list(feedback)
        current = self.snapshot()
        metrics = compute_quality_metrics(feedback, config_version=current.version)
        performance = factor_performance(feedback)
        bias = analyze_bias(metrics, performance)

        if len(feedback) < self._min_sample:
            proposal = CalibrationProposal(
                status=ProposalStatus.DEFERRED,
                current_config=current,
                proposed_config=current,
                deltas={"auto_approve": 0.0, "review_required": 0.0, "auto_reject": 0.0},
                reasons=[
                    f"Insufficient feedback: {len(feedback)} < {self._min_sample} items"
                ],
                sample_size=len(feedback),
                current_accuracy=metrics.accuracy,
                bias=bias,
                factor_performance=performance,
            )
            self._log_proposal(proposal)
            return proposal

        reasons = [f"Current accuracy: {metrics.accuracy:.1%} over {len(feedback)} items"]
        approve_delta = self._approve_delta(current, metrics, reasons)
        reject_delta = self._reject_delta(current, metrics, reasons)

        new_approve = current.auto_approve + approve_delta
        new_reject = min(current.auto_reject + reject_delta, new_approve)
        new_review = min(max(current.review_required, new_reject), new_approve)
        deltas = {
            "auto_approve": new_approve - current.auto_approve,
            "review_required": new_review - current.review_required,
            "auto_reject": new_reject - current.auto_reject,
        }

        weights = self._reweight(current.weights, performance, reasons)
        proposed = current.evolve(
            auto_approve=new_approve,
            review_required=new_review,
            auto_reject=new_reject,
            weights=weights,
        )

        improvement = 0.0
        if deltas["auto_approve"] > 0:
            improvement += deltas["auto_approve"] * metrics.false_positive_rate
        if deltas["auto_reject"] < 0:
            improvement += -deltas["auto_reject"] * metrics.false_negative_rate
        improvement = min(MAX_IMPROVEMENT_ESTIMATE, max(0.0, improvement))

        if bias.detected:
            reasons.append(
                f"Systematic {bias.direction.value} bias detected "
                f"(|FP - FN| = {bias.magnitude:.1%})"
            )

        proposal = CalibrationProposal(
            status=ProposalStatus.PROPOSED,
            current_config=current,
            proposed_config=proposed,
            deltas=deltas,
            reasons=reasons,
            sample_size=len(feedback),
            current_accuracy=metrics.accuracy,
            baseline_accuracy=replay_accuracy(feedback, current),
            simulated_accuracy=replay_accuracy(feedback, proposed),
            improvement_potential=improvement,
            bias=bias,
            factor_performance=performance,
        )
        self._log_proposal(proposal)
        return proposal

    def _approve_delta(
        self,
        current: ThresholdConfig,
        metrics: QualityMetrics,
        reasons: list[str],
    ) -> float:
        fp = metrics.false_positive_rate
        if fp > MAX_FALSE_POSITIVE_RATE:
            target = min(AUTO_APPROVE_CEILING, current.auto_approve + self._max_step)
            delta = max(0.0, target - current.auto_approve)
            reasons.append(f"High false-positive rate ({fp:.1%}): raising auto_approve")
        elif fp < LOW_FALSE_POSITIVE_RATE and metrics.accuracy > HIGH_ACCURACY:
            # Never relax below the review cut point
            target = max(
                AUTO_APPROVE_FLOOR,
                current.review_required,
                current.auto_approve - APPROVE_RELAX_STEP,
            )
            delta = min(0.0, target - current.auto_approve)
            if delta < 0:
                reasons.append(
                    f"Low false-positive rate ({fp:.1%}) with high accuracy: "
                    "relaxing auto_approve"
                )
        else:
            delta = 0.0
        return max(-self._max_step, min(self._max_step, delta))

    def _reject_delta(
        self,
        current: ThresholdConfig,
        metrics: QualityMetrics,
        reasons: list[str],
    ) -> float:
        fn = metrics.false_negative_rate
        if fn <= MAX_FALSE_NEGATIVE_RATE:
            return 0.0
        target = max(AUTO_REJECT_FLOOR, current.auto_reject - self._max_step)
        delta = min(0.0, target - current.auto_reject)
        reasons.append(f"High false-negative rate ({fn:.1%}): lowering auto_reject")
        return max(-self._max_step, min(self._max_step, delta))

    def _reweight(
        self,
        weights: FactorWeights,
        performance: Sequence[FactorPerformance],
        reasons: list[str],
    ) -> FactorWeights:
        raw = weights.as_dict()
        changed = False
        for perf in performance:
            if perf.sample_size == 0:
                continue
            if perf.hit_rate > FACTOR_GOOD_HIT_RATE:
                raw[perf.factor] *= FACTOR_BOOST
                changed = True
                reasons.append(f"{perf.factor} performing well ({perf.hit_rate:.1%} hit rate)")
            elif perf.hit_rate < FACTOR_POOR_HIT_RATE:
                raw[perf.factor] *= FACTOR_PENALTY
                changed = True
                reasons.append(f"{perf.factor} underperforming ({perf.hit_rate:.1%} hit rate)")
        if not changed:
            return weights
        return FactorWeights.normalized(raw)

    # -------------------------------------------------------------------------
    # APPLY / ROLLBACK / REPLACE
    # -------------------------------------------------------------------------

    def apply(
        self,
        proposal: CalibrationProposal,
        metrics: QualityMetrics | None = None,
    ) -> CalibrationProposal:
        """Install a proposal if conditions allow.

        Args:
            proposal: Proposal from propose().
            metrics: Latest quality metrics; taken from the attached
                monitor when omitted.

        Returns:
            The proposal with its final status (applied, deferred or
            rejected) and the reasons for it.
        """
        if proposal.status != ProposalStatus.PROPOSED:
            return proposal

        if metrics is None and self._monitor is not None:
            metrics = self._monitor.snapshot(self.snapshot())

        with self._lock:
            current = self._config
            reasons = list(proposal.reasons)

            if proposal.current_config.version != current.version:
                return self._finish(
                    proposal, ProposalStatus.REJECTED, reasons,
                    f"Stale proposal: built against v{proposal.current_config.version}, "
                    f"active is v{current.version}",
                )
            if proposal.sample_size < self._min_sample:
                return self._finish(
                    proposal, ProposalStatus.DEFERRED, reasons,
                    f"Insufficient feedback: {proposal.sample_size} < {self._min_sample}",
                )
            if (
                metrics is not None
                and metrics.sample_size >= self._min_sample
                and metrics.accuracy < self._min_accuracy
            ):
                return self._finish(
                    proposal, ProposalStatus.DEFERRED, reasons,
                    f"Quality outside acceptable bounds: accuracy {metrics.accuracy:.1%} "
                    f"< {self._min_accuracy:.0%}",
                )
            if self._monitor is not None and self._monitor.is_degrading():
                return self._finish(
                    proposal, ProposalStatus.DEFERRED, reasons,
                    "Accuracy is degrading; calibration skipped until it stabilises",
                )
            if (
                proposal.simulated_accuracy is not None
                and proposal.baseline_accuracy is not None
                and proposal.simulated_accuracy < proposal.baseline_accuracy
            ):
                return self._finish(
                    proposal, ProposalStatus.REJECTED, reasons,
                    f"Replay accuracy would drop from {proposal.baseline_accuracy:.1%} "
                    f"to {proposal.simulated_accuracy:.1%}",
                )
            if not proposal.changes_anything:
                return self._finish(
                    proposal, ProposalStatus.DEFERRED, reasons,
                    "No adjustment needed",
                )

            within_bound = all(
                abs(d) <= self._max_step + 1e-9 for d in proposal.deltas.values()
            )
            if self._logger:
                self._logger.check_invariant(
                    within_bound,
                    "threshold_step_bound",
                    f"max |delta|={max(abs(d) for d in proposal.deltas.values()):.3f} "
                    f"<= {self._max_step:.3f}",
                )
            if not within_bound:
                return self._finish(
                    proposal, ProposalStatus.REJECTED, reasons,
                    "Threshold delta exceeds the per-cycle bound",
                )

            installed = proposal.proposed_config.evolve(version=self._max_version + 1)
            self._install(installed)
            result = proposal.model_copy(update={
                "status": ProposalStatus.APPLIED,
                "proposed_config": installed,
                "reasons": reasons + [f"Applied as v{installed.version}"],
            })

        if self._logger:
            self._logger.calibration(
                f"Calibration applied: v{current.version} -> v{installed.version} "
                f"approve={installed.auto_approve:.3f} reject={installed.auto_reject:.3f}",
                config_version=installed.version,
            )
        return result

    def rollback(self) -> ThresholdConfig | None:
        """Restore the previous config version.

        Returns:
            The restored config, or None when there is no history.
        """
        with self._lock:
            if not self._history:
                return None
            dropped = self._config
            self._config = self._history.pop()
            restored = self._config

        if self._logger:
            self._logger.calibration(
                f"Rolled back v{dropped.version} -> v{restored.version}",
                level=LogLevel.WARNING,
                config_version=restored.version,
            )
        return restored

    def replace(self, config: ThresholdConfig | Mapping[str, Any]) -> ThresholdConfig:
        """Operator wholesale replacement.

        Mappings are validated; invalid configs raise
        ``pydantic.ValidationError`` and leave the active config untouched.
        The installed config gets the next version number.
        """
        if not isinstance(config, ThresholdConfig):
            config = ThresholdConfig.model_validate(dict(config))
        with self._lock:
            installed = config.evolve(version=self._max_version + 1)
            previous = self._config
            self._install(installed)

        if self._logger:
            self._logger.config(
                f"Config replaced: v{previous.version} -> v{installed.version}",
                config_version=installed.version,
            )
        return installed

    def _install(self, config: ThresholdConfig) -> None:
        # Caller holds the lock
        self._history.append(self._config)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]
        self._config = config
        self._max_version = max(self._max_version, config.version)

    def _finish(
        self,
        proposal: CalibrationProposal,
        status: ProposalStatus,
        reasons: list[str],
        reason: str,
    ) -> CalibrationProposal:
        if self._logger:
            self._logger.calibration(
                f"Calibration {status.value}: {reason}",
                level=LogLevel.WARNING if status == ProposalStatus.REJECTED else LogLevel.INFO,
                config_version=proposal.current_config.version,
            )
        return proposal.model_copy(update={"status": status, "reasons": reasons + [reason]})

    def _log_proposal(self, proposal: CalibrationProposal) -> None:
        if not self._logger:
            return
        deltas = ", ".join(f"{k}={v:+.3f}" for k, v in proposal.deltas.items())
        self._logger.calibration(
            f"Proposal {proposal.status.value}: {deltas} "
            f"improvement<={proposal.improvement_potential:.3f}",
            config_version=proposal.current_config.version,
        )
