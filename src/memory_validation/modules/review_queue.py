"""Review queue builder: order records for human review.

Membership: every review_required decision plus any decision flagged
urgent by significance (even if it was auto-decided).

Buckets, in queue order:
- critical: urgent or critical-priority; by urgency desc, then
  significance desc, then record id
- high: high-priority; by significance desc, then record id
- remainder: by 0.7 * significance + 0.3 * recency desc, then record id

The queue is rebuilt on demand from the current decision set.

ReviewQueueBuilder.optimize trims a queue to a review session's time
budget, choosing what to keep from the significance mix of the queue.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from memory_validation.schemas import Priority, ValidationDecision, ValidationOutcome
from memory_validation.utils.config import (
    BALANCED_SESSION_MIX,
    EXPERTISE_TIME_FACTORS,
    HIGH_SIGNIFICANCE,
    HIGH_SIGNIFICANCE_FOCUS_SHARE,
    MEDIUM_SIGNIFICANCE,
    QUEUE_RECENCY_WEIGHT,
    QUEUE_SIGNIFICANCE_WEIGHT,
    SHORT_SESSION_MINUTES,
)

if TYPE_CHECKING:
    from memory_validation.utils.logging import SessionLogger, StructuredLogger


class QueueBucket(str, Enum):
    """Review queue buckets, highest first."""
    CRITICAL = "critical"
    HIGH = "high"
    REMAINDER = "remainder"


class ReviewerExpertise(str, Enum):
    """Reviewer experience; scales the time each review takes."""
    EXPERT = "expert"
    INTERMEDIATE = "intermediate"
    BEGINNER = "beginner"


# (max hours since the record, recency score)
RECENCY_TABLE: tuple[tuple[float, float], ...] = (
    (1, 10.0),
    (6, 9.0),
    (24, 8.0),
    (72, 7.0),
    (168, 6.0),
    (720, 5.0),
    (2160, 4.0),
    (4320, 3.0),
    (8760, 2.0),
)

# Recency used when a record carries no timestamp
UNKNOWN_RECENCY: float = 5.0

FOCUS_AREA_LABELS = {
    "mood_magnitude": "verify mood score",
    "relationship_impact": "check relationship dynamics",
    "psychological_markers": "confirm emotional patterns",
    "turning_point_potential": "validate trajectory and turning points",
}


def recency_score(timestamp: datetime | None, now: datetime) -> float:
    """0-10 recency: 10 within the hour, 1 beyond a year."""
    if timestamp is None:
        return UNKNOWN_RECENCY
    if (timestamp.tzinfo is None) != (now.tzinfo is None):
        timestamp = timestamp.replace(tzinfo=now.tzinfo)
    hours = max(0.0, (now - timestamp).total_seconds() / 3600)
    for max_hours, score in RECENCY_TABLE:
        if hours <= max_hours:
            return score
    return 1.0


def focus_areas_for(decision: ValidationDecision) -> list[str]:
    """What a reviewer should look at first."""
    areas = [
        FOCUS_AREA_LABELS[name]
        for name, value in decision.significance.breakdown().items()
        if value >= HIGH_SIGNIFICANCE
    ]
    areas.extend(f"re-check {name}" for name in decision.reasoning.uncertainty_areas)
    if decision.significance.urgent:
        areas.insert(0, "urgent: possible crisis or breakthrough content")
    return areas


@dataclass
class ReviewQueueEntry:
    """One position in the review queue."""
    rank: int
    bucket: QueueBucket
    decision: ValidationDecision
    sort_score: float
    recency: float
    focus_areas: list[str] = field(default_factory=list)

    @property
    def record_id(self) -> str:
        return self.decision.record_id


@dataclass
class ReviewQueue:
    """Ordered review queue snapshot."""
    entries: list[ReviewQueueEntry] = field(default_factory=list)
    built_at: datetime = field(default_factory=datetime.now)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[ReviewQueueEntry]:
        return iter(self.entries)

    def record_ids(self) -> list[str]:
        return [e.record_id for e in self.entries]

    def top(self, n: int) -> list[ReviewQueueEntry]:
        return self.entries[:n]

    def bucket(self, bucket: QueueBucket) -> list[ReviewQueueEntry]:
        return [e for e in self.entries if e.bucket == bucket]



@dataclass
class OptimizedQueue:
    """The part of a review queue that fits one session."""
    strategy: str
    entries: list[ReviewQueueEntry]
    available_minutes: float
    estimated_minutes: float
    deferred: int
    expected_significance: float
    coverage: dict[str, float] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)

    def record_ids(self) -> list[str]:
        return [e.record_id for e in self.entries]


class ReviewQueueBuilder:
    """Builds a deterministic review order from a set of decisions."""

    def __init__(
        self,
        significance_weight: float = QUEUE_SIGNIFICANCE_WEIGHT,
        recency_weight: float = QUEUE_RECENCY_WEIGHT,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        self._significance_weight = significance_weight
        self._recency_weight = recency_weight
        self._logger = logger

    @staticmethod
    def is_member(decision: ValidationDecision) -> bool:
        """Whether a decision belongs in the review queue."""
        return (
            decision.outcome == ValidationOutcome.REVIEW_REQUIRED
            or decision.significance.urgent
        )

    @staticmethod
    def bucket_for(decision: ValidationDecision) -> QueueBucket:
        if decision.significance.urgent or decision.priority == Priority.CRITICAL:
            return QueueBucket.CRITICAL
        if decision.priority == Priority.HIGH:
            return QueueBucket.HIGH
        return QueueBucket.REMAINDER

    def build(
        self,
        decisions: Iterable[ValidationDecision],
        now: datetime | None = None,
    ) -> ReviewQueue:
        """Build the review queue.

        Args:
            decisions: Any decisions; non-members are ignored.
            now: Reference time for recency (defaults to the current time).

        Returns:
            ReviewQueue with ranks starting at 1.
        """
        now = now or datetime.now()
        buckets: dict[QueueBucket, list[tuple[tuple, ValidationDecision, float, float]]] = {
            b: [] for b in QueueBucket
        }

        for decision in decisions:
            if not self.is_member(decision):
                continue
            bucket = self.bucket_for(decision)
            sig = decision.significance.overall
            recency = recency_score(decision.record_timestamp, now)

            if bucket == QueueBucket.CRITICAL:
                score = decision.significance.urgency
                key = (-score, -sig, decision.record_id)
            elif bucket == QueueBucket.HIGH:
                score = sig
                key = (-score, decision.record_id)
            else:
                score = self._significance_weight * sig + self._recency_weight * recency
                key = (-score, decision.record_id)
            buckets[bucket].append((key, decision, score, recency))

        queue = ReviewQueue(built_at=now)
        rank = 1
        for bucket in QueueBucket:
            for _key, decision, score, recency in sorted(buckets[bucket], key=lambda t: t[0]):
                queue.entries.append(
                    ReviewQueueEntry(
                        rank=rank,
                        bucket=bucket,
                        decision=decision,
                        sort_score=score,
                        recency=recency,
                        focus_areas=focus_areas_for(decision),
                    )
                )
                rank += 1

        if self._logger:
            self._logger.queue(
                f"Review queue built: {len(queue)} entries "
                f"(critical={len(buckets[QueueBucket.CRITICAL])}, "
                f"high={len(buckets[QueueBucket.HIGH])}, "
                f"remainder={len(buckets[QueueBucket.REMAINDER])})"
            )
        return queue

    # -------------------------------------------------------------------------
    # SESSION OPTIMIZATION
    # -------------------------------------------------------------------------

    @staticmethod
    def _is_high(entry: ReviewQueueEntry) -> bool:
        return (
            entry.bucket == QueueBucket.CRITICAL
            or entry.decision.significance.overall >= HIGH_SIGNIFICANCE
        )

    @staticmethod
    def _fill(
        entries: Iterable[ReviewQueueEntry],
        budget: float,
        cost: dict[int, float],
    ) -> tuple[list[ReviewQueueEntry], float]:
        """Take entries in order while they fit; oversized ones are skipped."""
        picked: list[ReviewQueueEntry] = []
        spent = 0.0
        for entry in entries:
            if spent + cost[entry.rank] <= budget:
                picked.append(entry)
                spent += cost[entry.rank]
        return picked, spent

    def optimize(
        self,
        queue: ReviewQueue,
        available_minutes: float,
        expertise: ReviewerExpertise = ReviewerExpertise.INTERMEDIATE,
    ) -> OptimizedQueue:
        """Select the entries one review session can get through.

        Strategy:
        - high-significance-focus: more than 30% of the queue is critical
          or significant (>= 6); only those are reviewed
        - balanced-sampling: sessions under an hour split their time
          40/40/20 across high, medium (>= 4) and low significance, and
          spend any leftover in queue order
        - priority-order: everything else, in queue order

        Review time is each decision's estimate scaled by expertise.
        Selected entries keep their queue order.
        """
        expertise = ReviewerExpertise(expertise)
        factor = EXPERTISE_TIME_FACTORS[expertise.value]
        budget = max(0.0, available_minutes) * 60
        entries = list(queue)
        cost = {e.rank: e.decision.estimated_review_seconds * factor for e in entries}

        high: list[ReviewQueueEntry] = []
        medium: list[ReviewQueueEntry] = []
        low: list[ReviewQueueEntry] = []
        for entry in entries:
            if self._is_high(entry):
                high.append(entry)
            elif entry.decision.significance.overall >= MEDIUM_SIGNIFICANCE:
                medium.append(entry)
            else:
                low.append(entry)

        if entries and len(high) / len(entries) > HIGH_SIGNIFICANCE_FOCUS_SHARE:
            strategy = "high-significance-focus"
            selected, spent = self._fill(high, budget, cost)
        elif available_minutes < SHORT_SESSION_MINUTES:
            strategy = "balanced-sampling"
            selected, spent = [], 0.0
            for group, share in zip((high, medium, low), BALANCED_SESSION_MIX):
                picked, used = self._fill(group, budget * share, cost)
                selected.extend(picked)
                spent += used
            chosen = {e.rank for e in selected}
            extra, used = self._fill(
                (e for e in entries if e.rank not in chosen), budget - spent, cost
            )
            selected.extend(extra)
            spent += used
            selected.sort(key=lambda e: e.rank)
        else:
            strategy = "priority-order"
            selected, spent = self._fill(entries, budget, cost)

        significances = [e.decision.significance.overall for e in selected]
        stamps = [e.decision.record_timestamp for e in selected if e.decision.record_timestamp]
        span_days = 0.0
        if len(stamps) >= 2 and all(
            (s.tzinfo is None) == (stamps[0].tzinfo is None) for s in stamps
        ):
            span_days = (max(stamps) - min(stamps)).total_seconds() / 86400
        coverage = {
            "significance_range": (
                (max(significances) - min(significances)) / 10 if significances else 0.0
            ),
            "temporal_span": min(1.0, span_days / 365),
            "bucket_diversity": len({e.bucket for e in selected}) / len(QueueBucket),
        }

        result = OptimizedQueue(
            strategy=strategy,
            entries=selected,
            available_minutes=available_minutes,
            estimated_minutes=spent / 60,
            deferred=len(entries) - len(selected),
            expected_significance=(
                sum(significances) / len(significances) if significances else 0.0
            ),
            coverage=coverage,
        )

        if self._logger:
            self._logger.queue(
                f"Session plan ({strategy}, {expertise.value}): "
                f"{len(selected)}/{len(entries)} entries in "
                f"{result.estimated_minutes:.1f} of {available_minutes:.0f} minutes"
            )
        return result
