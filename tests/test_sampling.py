"""Tests for validation sampling and coverage analysis."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from memory_validation.modules.sampling import (
    CoverageAnalyzer,
    IntelligentSampler,
    allocate,
    group_size,
    quality_band,
    stratum_key,
)
from memory_validation.schemas import (
    CoverageAnalysis,
    SamplingAllocation,
    SamplingStrategy,
    TemporalDistribution,
)
from memory_validation.utils.config import TARGET_MOOD_DESCRIPTORS
from memory_validation.utils.logging import LogCategory, LogLevel

from conftest import build_record

START = datetime(2024, 1, 1, 9, 0, 0)


def memory(
    record_id: str,
    descriptors: tuple[str, ...] = (),
    timestamp: datetime | None = None,
    relationship_type: str | None = None,
    participants: int = 2,
    extraction: float | None = 0.9,
):
    """Record with the fields the sampler stratifies on."""
    fields: dict = {"emotional_analysis": {"descriptors": list(descriptors)}}
    if timestamp is not None:
        fields["timestamp"] = timestamp
    if relationship_type is not None:
        fields["relationship"] = {
            "type": relationship_type,
            "participant_count": participants,
        }
    return build_record(record_id, extraction=extraction, **fields)


def quality_only(target_size: int, **kwargs) -> SamplingStrategy:
    return SamplingStrategy(
        target_size=target_size,
        by_mood=False,
        by_time_period=False,
        by_participants=False,
        seed=7,
        **kwargs,
    )


def two_band_population(high: int, low: int) -> list:
    records = [memory(f"r{i:03d}", extraction=0.9) for i in range(high)]
    records += [memory(f"r{high + i:03d}", extraction=0.3) for i in range(low)]
    return records


@pytest.fixture
def sampler() -> IntelligentSampler:
    return IntelligentSampler()


@pytest.fixture
def analyzer() -> CoverageAnalyzer:
    return CoverageAnalyzer()


# =============================================================================
# Strata
# =============================================================================

class TestStrata:
    """Tests for stratum labels and allocation."""

    def test_full_key(self):
        record = memory(
            "a",
            descriptors=("Joy", "calm"),
            timestamp=datetime(2024, 3, 5),
            relationship_type="family",
            participants=4,
        )
        assert stratum_key(record, SamplingStrategy()) == ("joy", "2024-03", "medium", "high")

    def test_unknown_labels(self):
        record = memory("a", extraction=None)
        assert stratum_key(record, SamplingStrategy()) == (
            "unspecified",
            "undated",
            "unknown",
            "medium",
        )

    def test_key_follows_enabled_dimensions(self):
        assert stratum_key(memory("a"), quality_only(10)) == ("high",)

    @pytest.mark.parametrize("participants, expected", [(1, "small"), (2, "small"), (5, "medium"), (6, "large")])
    def test_group_size(self, participants, expected):
        record = memory("a", relationship_type="friend", participants=participants)
        assert group_size(record) == expected

    @pytest.mark.parametrize("extraction, expected", [(0.8, "high"), (0.5, "medium"), (0.49, "low")])
    def test_quality_band(self, extraction, expected):
        assert quality_band(memory("a", extraction=extraction)) == expected

    def test_proportional_allocation_rounds_half_up(self):
        shares = allocate({("a",): 3, ("b",): 1}, 2, SamplingAllocation.PROPORTIONAL)
        assert shares == {("a",): 2, ("b",): 1}

    def test_balanced_allocation_remainder_first(self):
        sizes = {("a",): 10, ("b",): 1, ("c",): 4}
        assert allocate(sizes, 5, SamplingAllocation.BALANCED) == {
            ("a",): 2,
            ("b",): 2,
            ("c",): 1,
        }

    def test_zero_target(self):
        assert allocate({("a",): 3}, 0, SamplingAllocation.PROPORTIONAL) == {("a",): 0}


# =============================================================================
# Sampling
# =============================================================================

class TestSampling:
    """Tests for IntelligentSampler.sample."""

    def test_proportional_draw(self, sampler):
        result = sampler.sample(two_band_population(80, 20), quality_only(10))
        assert result.sample_size == 10
        assert result.strata == 2
        assert result.coverage.quality.high == 8
        assert result.coverage.quality.low == 2
        assert result.sampling_rate == pytest.approx(0.1)

    def test_balanced_draw(self, sampler):
        strategy = quality_only(10, allocation=SamplingAllocation.BALANCED)
        result = sampler.sample(two_band_population(80, 20), strategy)
        assert result.coverage.quality.high == 5
        assert result.coverage.quality.low == 5

    def test_short_stratum_topped_up(self, sampler):
        """A stratum smaller than its share gives all it has; the rest is filled."""
        strategy = quality_only(10, allocation=SamplingAllocation.BALANCED)
        result = sampler.sample(two_band_population(97, 3), strategy)
        assert result.sample_size == 10
        assert result.coverage.quality.low == 3
        assert result.coverage.quality.high == 7

    def test_rounding_overshoot_trimmed(self, sampler):
        result = sampler.sample(two_band_population(15, 15), quality_only(5))
        assert result.sample_size == 5
        assert len(set(result.record_ids())) == 5

    def test_population_order_kept(self, sampler):
        result = sampler.sample(two_band_population(80, 20), quality_only(20))
        ids = result.record_ids()
        assert ids == sorted(ids)

    def test_seed_reproducible(self, sampler):
        population = two_band_population(80, 20)
        first = sampler.sample(population, quality_only(10))
        second = sampler.sample(population, quality_only(10))
        assert first.record_ids() == second.record_ids()

    def test_target_above_population(self, sampler):
        population = two_band_population(3, 2)
        result = sampler.sample(population, quality_only(100))
        assert result.record_ids() == [r.record_id for r in population]
        assert result.sampling_rate == 1.0

    def test_empty_population(self, sampler):
        result = sampler.sample([])
        assert result.sample_size == 0
        assert result.sampling_rate == 0.0
        assert result.coverage == CoverageAnalysis(record_count=0)

    def test_simple_random(self, sampler):
        strategy = SamplingStrategy(
            target_size=10, allocation=SamplingAllocation.RANDOM, seed=3
        )
        result = sampler.sample(two_band_population(50, 50), strategy)
        assert result.sample_size == 10
        assert result.strata == 0
        assert len(set(result.record_ids())) == 10

    def test_sample_logged(self, logger):
        sampler = IntelligentSampler(logger=logger)
        sampler.sample(two_band_population(80, 20), quality_only(10))
        entries = logger.filter_by_category(LogCategory.SAMPLING)
        assert entries[0].message.startswith("Sampled 10/100 records (stratified, 2 strata")
        assert entries[0].context["seed"] == 7


class TestRepresentativeCoverage:
    """Tests for the coverage floor check."""

    def test_poor_coverage_warns(self, logger):
        sampler = IntelligentSampler(logger=logger)
        result = sampler.sample(two_band_population(20, 0), quality_only(10))
        assert not sampler.ensure_representative_coverage(result)
        warnings = [
            e for e in logger.filter_by_category(LogCategory.SAMPLING)
            if e.level == LogLevel.WARNING
        ]
        assert len(warnings) == 1
        assert "missing moods: joy, sadness" in warnings[0].message

    def test_custom_floor(self, sampler):
        result = sampler.sample(two_band_population(20, 0), quality_only(10))
        assert sampler.ensure_representative_coverage(result, min_score=0.0)


class TestStrategySelection:
    """Tests for IntelligentSampler.optimize_strategy."""

    def test_small_population_random(self, sampler):
        strategy = sampler.optimize_strategy(two_band_population(40, 0), seed=11)
        assert strategy.name == "simple-random"
        assert strategy.target_size == 40
        assert strategy.allocation == SamplingAllocation.RANDOM
        assert strategy.seed == 11

    def test_small_population_capped(self, sampler):
        assert sampler.optimize_strategy(two_band_population(99, 0)).target_size == 50

    def test_default_stratified(self, sampler):
        strategy = sampler.optimize_strategy(two_band_population(500, 0))
        assert strategy.name == "stratified"
        assert strategy.allocation == SamplingAllocation.PROPORTIONAL
        assert strategy.target_size == 50

    def test_default_capped(self, sampler):
        assert sampler.optimize_strategy(two_band_population(3000, 0)).target_size == 150

    def test_diverse_population_balanced(self, sampler):
        records = [
            memory(
                f"d{i:04d}",
                descriptors=(TARGET_MOOD_DESCRIPTORS[i % len(TARGET_MOOD_DESCRIPTORS)],),
                timestamp=START + timedelta(days=i),
            )
            for i in range(1000)
        ]
        strategy = sampler.optimize_strategy(records)
        assert strategy.name == "balanced-stratified"
        assert strategy.allocation == SamplingAllocation.BALANCED
        assert strategy.target_size == 100


# =============================================================================
# Coverage
# =============================================================================

class TestEmotionalCoverage:
    def test_target_descriptors(self, analyzer):
        records = [memory("a", descriptors=("Joy", "calm")), memory("b", descriptors=("hope",))]
        coverage = analyzer.emotional(records)
        assert coverage.descriptors_represented == ["joy", "hope"]
        assert coverage.coverage == pytest.approx(2 / 12)
        assert len(coverage.gaps) == 10
        assert "joy" not in coverage.gaps

    def test_custom_targets(self):
        analyzer = CoverageAnalyzer(target_descriptors=("Calm", "joy"))
        coverage = analyzer.emotional([memory("a", descriptors=("calm",))])
        assert coverage.coverage == pytest.approx(0.5)
        assert coverage.gaps == ["joy"]


class TestTemporalCoverage:
    """Tests for temporal spread and gaps."""

    def test_even_daily(self, analyzer):
        records = [memory(f"t{i}", timestamp=START + timedelta(days=i)) for i in range(10)]
        coverage = analyzer.temporal(records)
        assert coverage.distribution == TemporalDistribution.EVEN
        assert coverage.gaps == []
        assert coverage.start == START
        assert coverage.end == START + timedelta(days=9)
        assert coverage.score == pytest.approx(0.8)

    def test_clustered_with_gap(self, analyzer):
        records = [memory(f"c{i}", timestamp=START) for i in range(9)]
        records.append(memory("late", timestamp=START + timedelta(days=30)))
        coverage = analyzer.temporal(records)
        assert coverage.distribution == TemporalDistribution.CLUSTERED
        assert len(coverage.gaps) == 1
        assert coverage.gaps[0].days == pytest.approx(30.0)
        assert coverage.score == pytest.approx(0.4)

    def test_two_timestamps_sparse(self, analyzer):
        records = [memory("a", timestamp=START), memory("b", timestamp=START + timedelta(days=3))]
        coverage = analyzer.temporal(records)
        assert coverage.distribution == TemporalDistribution.SPARSE
        assert coverage.score == pytest.approx(0.6)

    def test_gap_penalty_capped(self, analyzer):
        records = [memory(f"w{i}", timestamp=START + timedelta(days=10 * i)) for i in range(6)]
        coverage = analyzer.temporal(records)
        assert coverage.distribution == TemporalDistribution.EVEN
        assert len(coverage.gaps) == 5
        assert coverage.score == pytest.approx(0.5)

    def test_no_timestamps(self, analyzer):
        coverage = analyzer.temporal([memory("a")])
        assert coverage.start is None
        assert coverage.score == 0.0

    def test_aware_and_naive_mixed(self, analyzer):
        records = [
            memory("utc", timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            memory("naive", timestamp=datetime(2024, 1, 2)),
        ]
        coverage = analyzer.temporal(records)
        assert coverage.start == datetime(2024, 1, 1)
        assert coverage.end == datetime(2024, 1, 2)


class TestRelationshipAndQuality:
    def test_relationship_coverage(self, analyzer):
        records = [
            memory("a", relationship_type="friend"),
            memory("b", relationship_type="family"),
            memory("c", relationship_type="friend"),
            memory("d"),
        ]
        coverage = analyzer.relationship(records)
        assert coverage.types_represented == ["family", "friend"]
        assert coverage.coverage == pytest.approx(0.25)
        assert coverage.group_sizes == {"small": 3, "unknown": 1}

    def test_ideal_quality_mix(self, analyzer):
        records = [memory(f"h{i}", extraction=0.9) for i in range(2)]
        records += [memory(f"m{i}", extraction=0.6) for i in range(6)]
        records += [memory(f"l{i}", extraction=0.3) for i in range(2)]
        mix = analyzer.quality(records)
        assert (mix.high, mix.medium, mix.low) == (2, 6, 2)
        assert mix.score == pytest.approx(1.0)

    def test_skewed_quality_mix(self, analyzer):
        records = [memory(f"h{i}", extraction=0.9) for i in range(5)]
        records += [memory(f"m{i}", extraction=0.6) for i in range(5)]
        assert analyzer.quality(records).score == pytest.approx(0.4)

    def test_single_band_scores_zero(self, analyzer):
        records = [memory(f"h{i}", extraction=0.9) for i in range(10)]
        assert analyzer.quality(records).score == 0.0


class TestOverallCoverage:
    def test_weighted_overall(self, analyzer):
        """Only the quality dimension is covered, so overall is its weight."""
        records = [memory(f"h{i}", extraction=0.9) for i in range(2)]
        records += [memory(f"m{i}", extraction=0.6) for i in range(6)]
        records += [memory(f"l{i}", extraction=0.3) for i in range(2)]
        analysis = analyzer.analyze(records)
        assert analysis.record_count == 10
        assert analysis.overall_score == pytest.approx(0.2)

    def test_well_covered_population(self, analyzer):
        types = ["romantic", "family", "close_friend", "friend",
                 "colleague", "acquaintance", "professional", "therapeutic"]
        extraction = [0.9] * 2 + [0.6] * 6 + [0.3] * 2
        records = [
            memory(
                f"w{i:02d}",
                descriptors=(TARGET_MOOD_DESCRIPTORS[i % 12],),
                timestamp=START + timedelta(days=i),
                relationship_type=types[i % 8],
                extraction=extraction[i % 10],
            )
            for i in range(40)
        ]
        analysis = analyzer.analyze(records)
        assert analysis.emotional.coverage == 1.0
        assert analysis.relationship.coverage == 1.0
        assert analysis.overall_score == pytest.approx(0.3 + 0.25 * 0.8 + 0.25 + 0.2 * analysis.quality.score)
        assert analysis.overall_score > 0.7
