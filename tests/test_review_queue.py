"""Tests for review queue construction."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from memory_validation.core.evaluator import RecordEvaluator
from memory_validation.modules.review_queue import (
    UNKNOWN_RECENCY,
    QueueBucket,
    ReviewerExpertise,
    ReviewQueue,
    ReviewQueueBuilder,
    focus_areas_for,
    recency_score,
)
from memory_validation.schemas import Priority, ThresholdConfig, ValidationOutcome
from memory_validation.utils.logging import LogCategory

from conftest import build_decision, build_record, critical_record_fields

NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture
def builder() -> ReviewQueueBuilder:
    return ReviewQueueBuilder()


# =============================================================================
# Recency
# =============================================================================

class TestRecency:
    """Tests for recency_score."""

    @pytest.mark.parametrize(
        "age, expected",
        [
            (timedelta(minutes=30), 10.0),
            (timedelta(hours=5), 9.0),
            (timedelta(hours=20), 8.0),
            (timedelta(days=2), 7.0),
            (timedelta(days=6), 6.0),
            (timedelta(days=20), 5.0),
            (timedelta(days=80), 4.0),
            (timedelta(days=150), 3.0),
            (timedelta(days=300), 2.0),
            (timedelta(days=400), 1.0),
        ],
    )
    def test_table(self, age, expected):
        assert recency_score(NOW - age, NOW) == expected

    def test_missing_timestamp(self):
        assert recency_score(None, NOW) == UNKNOWN_RECENCY

    def test_future_timestamp_is_most_recent(self):
        assert recency_score(NOW + timedelta(hours=3), NOW) == 10.0

    def test_mixed_timezones(self):
        """Naive timestamps are compared as if in the reference zone."""
        aware_now = NOW.replace(tzinfo=timezone.utc)
        assert recency_score(NOW - timedelta(minutes=10), aware_now) == 10.0


# =============================================================================
# Membership and Buckets
# =============================================================================

class TestMembership:
    """Tests for queue membership and bucketing."""

    def test_review_required_is_member(self, builder):
        assert builder.is_member(build_decision("r1"))

    def test_auto_decisions_excluded(self, builder):
        approved = build_decision("a1", outcome=ValidationOutcome.AUTO_APPROVE, confidence=0.9)
        rejected = build_decision("r1", outcome=ValidationOutcome.AUTO_REJECT, confidence=0.2)
        assert len(builder.build([approved, rejected], now=NOW)) == 0

    def test_urgent_auto_decision_included(self, builder):
        """Urgent records are queued even when auto-decided."""
        decision = build_decision(
            "urgent-approve",
            outcome=ValidationOutcome.AUTO_APPROVE,
            confidence=0.95,
            urgency=7.0,
            urgent=True,
            priority=Priority.LOW,
        )
        queue = builder.build([decision], now=NOW)
        assert queue.record_ids() == ["urgent-approve"]
        assert queue.entries[0].bucket == QueueBucket.CRITICAL

    def test_bucket_assignment(self, builder):
        assert builder.bucket_for(build_decision("a", priority=Priority.CRITICAL)) == QueueBucket.CRITICAL
        assert builder.bucket_for(build_decision("b", priority=Priority.HIGH)) == QueueBucket.HIGH
        assert builder.bucket_for(build_decision("c", priority=Priority.MEDIUM)) == QueueBucket.REMAINDER
        assert builder.bucket_for(build_decision("d", priority=Priority.LOW)) == QueueBucket.REMAINDER


# =============================================================================
# Ordering
# =============================================================================

class TestOrdering:
    """Tests for the queue order."""

    def test_bucket_order(self, builder):
        decisions = [
            build_decision("rem", priority=Priority.MEDIUM, significance=9.0),
            build_decision("high", priority=Priority.HIGH, significance=6.5),
            build_decision("crit", priority=Priority.CRITICAL, significance=1.0),
        ]
        queue = builder.build(decisions, now=NOW)
        assert queue.record_ids() == ["crit", "high", "rem"]
        assert [e.rank for e in queue] == [1, 2, 3]

    def test_critical_by_urgency_then_significance(self, builder):
        decisions = [
            build_decision("c1", urgent=True, urgency=6.0, significance=9.0),
            build_decision("c2", urgent=True, urgency=9.0, significance=2.0),
            build_decision("c3", urgent=True, urgency=6.0, significance=9.5),
        ]
        queue = builder.build(decisions, now=NOW)
        assert queue.record_ids() == ["c2", "c3", "c1"]

    def test_high_by_significance(self, builder):
        decisions = [
            build_decision("h1", priority=Priority.HIGH, significance=6.1),
            build_decision("h2", priority=Priority.HIGH, significance=7.5),
        ]
        assert builder.build(decisions, now=NOW).record_ids() == ["h2", "h1"]

    def test_remainder_blends_recency(self, builder):
        """0.7 * significance + 0.3 * recency."""
        old_significant = build_decision(
            "old", significance=3.0, record_timestamp=NOW - timedelta(days=400)
        )
        fresh_trivial = build_decision(
            "fresh", significance=2.0, record_timestamp=NOW - timedelta(minutes=5)
        )
        queue = builder.build([old_significant, fresh_trivial], now=NOW)
        # old: 2.1 + 0.3 = 2.4; fresh: 1.4 + 3.0 = 4.4
        assert queue.record_ids() == ["fresh", "old"]
        assert queue.entries[0].sort_score == pytest.approx(4.4)
        assert queue.entries[0].recency == 10.0

    def test_ties_broken_by_record_id(self, builder):
        decisions = [build_decision(rid) for rid in ("b", "c", "a")]
        assert builder.build(decisions, now=NOW).record_ids() == ["a", "b", "c"]

    def test_deterministic(self, builder):
        """The same decision set always yields the same order."""
        decisions = [
            build_decision(f"r{i}", significance=(i * 7) % 5, priority=Priority.MEDIUM)
            for i in range(20)
        ]
        first = builder.build(decisions, now=NOW).record_ids()
        second = builder.build(list(reversed(decisions)), now=NOW).record_ids()
        assert first == second


class TestQueueHelpers:
    """Tests for ReviewQueue helpers and focus areas."""

    def test_top_and_bucket(self, builder):
        decisions = [build_decision(f"r{i}") for i in range(5)]
        decisions.append(build_decision("c", priority=Priority.CRITICAL))
        queue = builder.build(decisions, now=NOW)
        assert len(queue.top(2)) == 2
        assert [e.record_id for e in queue.bucket(QueueBucket.CRITICAL)] == ["c"]

    def test_focus_areas_from_pipeline(self):
        """An urgent critical record lists the urgency note first."""
        record = build_record("crit", **critical_record_fields())
        decision = RecordEvaluator().evaluate(record, ThresholdConfig())
        areas = focus_areas_for(decision)
        assert areas[0] == "urgent: possible crisis or breakthrough content"
        assert "verify mood score" in areas
        assert "check relationship dynamics" in areas

    def test_focus_areas_for_weak_factors(self):
        record = build_record("weak", extraction=0.9, coherence=0.9, relationship_score=0.2, context=0.2)
        decision = RecordEvaluator().evaluate(record, ThresholdConfig())
        assert focus_areas_for(decision) == [
            "re-check relationship_accuracy",
            "re-check context_quality",
        ]

    def test_logs_build(self, logger):
        builder = ReviewQueueBuilder(logger=logger)
        builder.build([build_decision("r1")], now=NOW)
        entries = logger.filter_by_category(LogCategory.QUEUE)
        assert "1 entries" in entries[0].message


# =============================================================================
# Session Optimization
# =============================================================================

def mixed_queue(builder, high: int, medium: int, low: int) -> ReviewQueue:
    """Queue of 60-second reviews at significance 7 (h), 5 (m) and 1 (l)."""
    decisions = [build_decision(f"h{i}", significance=7.0) for i in range(high)]
    decisions += [build_decision(f"m{i}", significance=5.0) for i in range(medium)]
    decisions += [build_decision(f"l{i:02d}", significance=1.0) for i in range(low)]
    return builder.build(decisions, now=NOW)


class TestSessionOptimization:
    """Tests for ReviewQueueBuilder.optimize."""

    def test_high_significance_focus(self, builder):
        plan = builder.optimize(mixed_queue(builder, 10, 0, 0), available_minutes=5)
        assert plan.strategy == "high-significance-focus"
        assert plan.record_ids() == ["h0", "h1", "h2", "h3", "h4"]
        assert plan.estimated_minutes == pytest.approx(5.0)
        assert plan.deferred == 5
        assert plan.expected_significance == pytest.approx(7.0)

    def test_focus_leaves_out_low_significance(self, builder):
        plan = builder.optimize(mixed_queue(builder, 4, 0, 6), available_minutes=120)
        assert plan.strategy == "high-significance-focus"
        assert plan.record_ids() == ["h0", "h1", "h2", "h3"]
        assert plan.deferred == 6

    def test_urgent_counts_as_high(self, builder):
        decisions = [
            build_decision(f"u{i}", urgent=True, urgency=6.0) for i in range(4)
        ] + [build_decision(f"l{i}", significance=1.0) for i in range(6)]
        plan = builder.optimize(builder.build(decisions, now=NOW), available_minutes=90)
        assert plan.strategy == "high-significance-focus"
        assert plan.record_ids() == ["u0", "u1", "u2", "u3"]

    def test_short_session_balanced(self, builder):
        """Five minutes split 40/40/20 across high, medium and low."""
        plan = builder.optimize(mixed_queue(builder, 2, 4, 4), available_minutes=5)
        assert plan.strategy == "balanced-sampling"
        assert plan.record_ids() == ["h0", "h1", "m0", "m1", "l00"]
        assert plan.deferred == 5

    def test_balanced_leftover_spent_in_queue_order(self, builder):
        plan = builder.optimize(mixed_queue(builder, 1, 1, 8), available_minutes=10)
        assert plan.strategy == "balanced-sampling"
        assert len(plan) == 10
        assert plan.deferred == 0
        assert plan.estimated_minutes == pytest.approx(10.0)

    def test_long_session_priority_order(self, builder):
        plan = builder.optimize(mixed_queue(builder, 0, 0, 100), available_minutes=60)
        assert plan.strategy == "priority-order"
        assert len(plan) == 60
        assert plan.record_ids()[:2] == ["l00", "l01"]

    @pytest.mark.parametrize(
        "expertise, expected",
        [
            (ReviewerExpertise.EXPERT, 8),
            (ReviewerExpertise.INTERMEDIATE, 5),
            (ReviewerExpertise.BEGINNER, 3),
        ],
    )
    def test_expertise_scales_review_time(self, builder, expertise, expected):
        plan = builder.optimize(mixed_queue(builder, 10, 0, 0), 5, expertise)
        assert len(plan) == expected

    def test_expertise_accepts_string(self, builder):
        plan = builder.optimize(mixed_queue(builder, 10, 0, 0), 5, "expert")
        assert len(plan) == 8

    def test_empty_queue(self, builder):
        plan = builder.optimize(ReviewQueue(), available_minutes=30)
        assert len(plan) == 0
        assert plan.expected_significance == 0.0
        assert plan.estimated_minutes == 0.0

    def test_zero_budget(self, builder):
        plan = builder.optimize(mixed_queue(builder, 3, 0, 0), available_minutes=0)
        assert len(plan) == 0
        assert plan.deferred == 3

    def test_expected_coverage(self, builder):
        decisions = [
            build_decision("a", significance=7.0, record_timestamp=NOW - timedelta(days=10)),
            build_decision("b", significance=9.0, record_timestamp=NOW - timedelta(days=100)),
        ]
        plan = builder.optimize(builder.build(decisions, now=NOW), available_minutes=60)
        assert plan.expected_significance == pytest.approx(8.0)
        assert plan.coverage["significance_range"] == pytest.approx(0.2)
        assert plan.coverage["temporal_span"] == pytest.approx(90 / 365)
        assert plan.coverage["bucket_diversity"] == pytest.approx(1 / 3)

    def test_logs_plan(self, logger):
        builder = ReviewQueueBuilder(logger=logger)
        builder.optimize(mixed_queue(builder, 2, 0, 0), available_minutes=30)
        messages = [e.message for e in logger.filter_by_category(LogCategory.QUEUE)]
        assert any(m.startswith("Session plan (high-significance-focus, intermediate)") for m in messages)
