"""Tests for concurrent batch processing."""

from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from memory_validation.core.evaluator import RecordEvaluator
from memory_validation.metrics.quality import QualityMonitor
from memory_validation.modules.batch import (
    BatchProcessor,
    BatchResult,
    workers_for_throughput,
)
from memory_validation.schemas import DistributionBand, ThresholdConfig, ValidationOutcome
from memory_validation.utils.logging import LogCategory, LogLevel

from conftest import build_record, uniform_record


class CancellingEvaluator(RecordEvaluator):
    """Sets a cancel event while evaluating a given record."""

    def __init__(self, cancel_on: str, event: threading.Event) -> None:
        super().__init__()
        self._cancel_on = cancel_on
        self._event = event

    def evaluate(self, record, config):
        decision = super().evaluate(record, config)
        if decision.record_id == self._cancel_on:
            self._event.set()
        return decision


class TrackingEvaluator(RecordEvaluator):
    """Records the peak number of concurrent evaluations."""

    def __init__(self, delay: float = 0.01) -> None:
        super().__init__()
        self._delay = delay
        self._lock = threading.Lock()
        self._active = 0
        self.peak = 0

    def evaluate(self, record, config):
        with self._lock:
            self._active += 1
            self.peak = max(self.peak, self._active)
        try:
            time.sleep(self._delay)
            return super().evaluate(record, config)
        finally:
            with self._lock:
                self._active -= 1


# =============================================================================
# Worker Sizing
# =============================================================================

class TestWorkerSizing:
    """Tests for throughput-based pool sizing."""

    def test_workers_for_throughput(self):
        assert workers_for_throughput(0) == 1
        assert workers_for_throughput(-5) == 1
        assert workers_for_throughput(500) == 1
        assert workers_for_throughput(501) == 2
        assert workers_for_throughput(2000) == 4
        assert workers_for_throughput(1_000_000) == 32

    def test_explicit_workers_win(self):
        processor = BatchProcessor(max_workers=3, throughput_target=10_000)
        assert processor.worker_count() == 3

    def test_explicit_workers_capped(self):
        assert BatchProcessor(max_workers=500).worker_count() == 32
        assert BatchProcessor(max_workers=0).worker_count() == 1

    def test_per_call_throughput(self):
        processor = BatchProcessor(throughput_target=500)
        assert processor.worker_count() == 1
        assert processor.worker_count(throughput_target=5000) == 10

    def test_default(self):
        assert BatchProcessor().worker_count() == 4


# =============================================================================
# Processing
# =============================================================================

class TestBatchProcessing:
    """Tests for BatchProcessor.process."""

    def test_empty_batch(self):
        result = BatchProcessor().process([])
        assert result.total_records == 0
        assert result.processed == 0
        assert result.errors == []
        assert not result.cancelled
        assert result.completed_at is not None

    def test_order_preserved(self):
        """Decisions come back in input order regardless of worker timing."""
        records = [uniform_record(f"rec-{i}", (i % 10) / 10) for i in range(60)]
        result = BatchProcessor(max_workers=8).process(records)
        assert [d.record_id for d in result.decisions] == [f"rec-{i}" for i in range(60)]

    def test_counts_and_stats(self):
        records = [
            uniform_record("a", 0.9),
            uniform_record("b", 0.6),
            uniform_record("c", 0.2),
            uniform_record("d", 0.1),
        ]
        result = BatchProcessor(max_workers=2).process(records)
        assert result.counts == {
            "auto_approve": 1,
            "review_required": 1,
            "auto_reject": 2,
        }
        assert result.average_confidence == pytest.approx(0.45)
        assert result.confidence_stats["min"] == pytest.approx(0.1)
        assert result.confidence_stats["max"] == pytest.approx(0.9)
        assert result.ratios()["auto_reject"] == pytest.approx(0.5)

    def test_malformed_records_isolated(self):
        """N records with K malformed yield N-K decisions and K errors."""
        records: list = [uniform_record(f"ok-{i}", 0.8) for i in range(7)]
        records.insert(2, build_record("bad-missing", extraction=None))
        records.insert(5, {"content": "no id"})
        records.append(42)

        result = BatchProcessor(max_workers=4).process(records)

        assert result.total_records == 10
        assert result.processed == 7
        assert len(result.errors) == 3
        assert [e.index for e in result.errors] == [2, 5, 9]
        assert result.errors[0].record_id == "bad-missing"
        assert result.errors[0].error_type == "MalformedRecordError"
        assert result.errors[1].record_id is None
        assert result.errors[1].error_type == "ValidationError"
        assert result.errors[2].error_type == "TypeError"
        assert result.skipped == 0

    def test_accepts_raw_mappings(self):
        rows = [build_record(f"m-{i}").model_dump(mode="json") for i in range(3)]
        result = BatchProcessor().process(rows)
        assert result.processed == 3
        assert all(d.outcome == ValidationOutcome.AUTO_APPROVE for d in result.decisions)

    def test_single_snapshot_per_batch(self):
        """The config provider is consulted once per batch."""
        calls = []

        def provider() -> ThresholdConfig:
            calls.append(1)
            return ThresholdConfig(version=len(calls))

        processor = BatchProcessor(config_provider=provider, max_workers=4)
        result = processor.process([uniform_record(f"r{i}", 0.6) for i in range(20)])
        assert len(calls) == 1
        assert {d.config_version for d in result.decisions} == {1}
        assert result.config_version == 1

    def test_config_override(self):
        config = ThresholdConfig(auto_approve=0.95, review_required=0.9, auto_reject=0.9, version=4)
        result = BatchProcessor().process([build_record()], config=config)
        assert result.decisions[0].outcome == ValidationOutcome.AUTO_REJECT
        assert result.config_version == 4

    def test_batch_id(self):
        result = BatchProcessor().process([build_record()], batch_id="batch-42")
        assert result.batch_id == "batch-42"


class TestInFlightBound:
    """Tests for the cap on concurrently dispatched evaluations."""

    def test_peak_within_cap(self):
        """More workers than slots never evaluate more than the cap at once."""
        evaluator = TrackingEvaluator()
        processor = BatchProcessor(evaluator=evaluator, max_workers=8, max_in_flight=2)
        result = processor.process([uniform_record(f"r{i}", 0.6) for i in range(20)])
        assert result.processed == 20
        assert 1 <= evaluator.peak <= 2

    def test_single_slot_serialises(self):
        evaluator = TrackingEvaluator(delay=0.005)
        processor = BatchProcessor(evaluator=evaluator, max_workers=4, max_in_flight=1)
        processor.process([uniform_record(f"r{i}", 0.6) for i in range(10)])
        assert evaluator.peak == 1

    def test_default_cap_bounded_by_workers(self):
        evaluator = TrackingEvaluator()
        BatchProcessor(evaluator=evaluator, max_workers=3).process(
            [uniform_record(f"r{i}", 0.6) for i in range(15)]
        )
        assert evaluator.peak <= 3


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_before_start(self):
        event = threading.Event()
        event.set()
        result = BatchProcessor().process(
            [uniform_record(f"r{i}", 0.6) for i in range(5)], cancel_event=event
        )
        assert result.processed == 0
        assert result.skipped == 5
        assert result.cancelled

    def test_cancel_mid_batch(self):
        """In-flight work finishes and nothing further is dispatched."""
        event = threading.Event()
        processor = BatchProcessor(
            evaluator=CancellingEvaluator("rec-2", event),
            max_workers=1,
            max_in_flight=1,
        )
        records = [uniform_record(f"rec-{i}", 0.6) for i in range(10)]
        result = processor.process(records, cancel_event=event)
        assert [d.record_id for d in result.decisions] == ["rec-0", "rec-1", "rec-2"]
        assert result.skipped == 7
        assert result.cancelled


class TestDistributionCheck:
    """Tests for the batch distribution sanity band."""

    def test_dominant_class_flagged(self):
        records = [uniform_record(f"r{i}", 0.2) for i in range(25)]
        result = BatchProcessor().process(records)
        assert result.distribution_flagged
        assert result.distribution_reasons == [
            "auto_reject ratio 100.0% exceeds 80%",
            "auto_approve ratio 0.0% below 2%",
            "review_required ratio 0.0% below 2%",
        ]

    def test_missing_class_flagged(self):
        """No single class dominates but approvals vanish entirely."""
        records = [uniform_record(f"m{i}", 0.6) for i in range(50)]
        records += [uniform_record(f"l{i}", 0.2) for i in range(50)]
        result = BatchProcessor().process(records)
        assert result.counts["auto_approve"] == 0
        assert result.distribution_flagged
        assert result.distribution_reasons == ["auto_approve ratio 0.0% below 2%"]

    def test_no_rejections_allowed_by_default(self):
        records = [uniform_record(f"h{i}", 0.9) for i in range(10)]
        records += [uniform_record(f"m{i}", 0.6) for i in range(10)]
        result = BatchProcessor().process(records)
        assert result.counts["auto_reject"] == 0
        assert not result.distribution_flagged

    def test_custom_lower_bound(self):
        band = DistributionBand(min_reject_ratio=0.1, min_batch_size=4)
        records = [uniform_record(f"r{i}", 0.9) for i in range(2)]
        records += [uniform_record(f"m{i}", 0.6) for i in range(2)]
        result = BatchProcessor(band=band).process(records)
        assert result.distribution_reasons == ["auto_reject ratio 0.0% below 10%"]

    def test_small_batch_not_checked(self):
        records = [uniform_record(f"r{i}", 0.2) for i in range(10)]
        result = BatchProcessor().process(records)
        assert not result.distribution_flagged

    def test_custom_band(self):
        band = DistributionBand(max_review_ratio=0.5, min_batch_size=4)
        records = [uniform_record(f"r{i}", 0.6) for i in range(4)]
        result = BatchProcessor(band=band).process(records)
        assert result.distribution_flagged
        assert result.distribution_reasons[0].startswith("review_required ratio")

    def test_flag_logged(self, logger):
        records = [uniform_record(f"r{i}", 0.9) for i in range(25)]
        BatchProcessor(logger=logger).process(records)
        warnings = [
            e for e in logger.filter_by_category(LogCategory.BATCH)
            if e.level == LogLevel.WARNING
        ]
        assert any("Distribution check flagged" in e.message for e in warnings)

    @pytest.mark.slow
    def test_uniform_confidence_distribution(self):
        """Uniform confidence splits roughly 25/25/50 under default thresholds."""
        rng = np.random.default_rng(1234)
        values = rng.uniform(0.0, 1.0, size=1000)
        records = [uniform_record(f"u-{i}", float(v)) for i, v in enumerate(values)]

        result = BatchProcessor(throughput_target=2000).process(records)
        ratios = result.ratios()

        assert result.processed == 1000
        assert result.workers == 4
        assert ratios["auto_approve"] == pytest.approx(0.25, abs=0.06)
        assert ratios["review_required"] == pytest.approx(0.25, abs=0.06)
        assert ratios["auto_reject"] == pytest.approx(0.50, abs=0.06)
        assert not result.distribution_flagged


class TestBatchResult:
    """Tests for BatchResult reporting."""

    def test_quality_metrics_attached(self):
        monitor = QualityMonitor()
        result = BatchProcessor(quality_monitor=monitor).process([build_record()])
        assert result.quality_metrics is not None
        assert result.quality_metrics.sample_size == 0

    def test_to_dict(self):
        result = BatchProcessor().process([build_record(), {"content": "bad"}])
        d = result.to_dict()
        assert d["processed"] == 1
        assert d["errors"][0]["index"] == 1
        assert "decisions" not in d
        assert len(result.to_dict(include_decisions=True)["decisions"]) == 1

    def test_empty_ratios(self):
        assert BatchResult().ratios() == {
            "auto_approve": 0.0,
            "review_required": 0.0,
            "auto_reject": 0.0,
        }

    def test_errors_logged(self, logger):
        BatchProcessor(logger=logger).process([build_record(extraction=None)])
        assert logger.get_statistics()["warnings"] >= 1
