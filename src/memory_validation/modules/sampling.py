"""Validation sampling: pick representative records for human spot-checks.

Records are grouped into strata by any combination of:
- primary mood descriptor (first descriptor, lowercased)
- calendar month of the conversation
- group size (small up to 2 participants, medium up to 5, else large)
- extraction quality (high >= 0.8, medium >= 0.5, else low)

The target size is split across strata proportionally or in equal
shares, drawn with a seeded numpy generator, and topped up at random
when strata run short. The drawn sample keeps population order.

CoverageAnalyzer scores how well any record set spans moods, time,
relationship types and extraction quality.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import numpy as np

from memory_validation.schemas import (
    CoverageAnalysis,
    EmotionalCoverage,
    MemoryRecord,
    QualityMix,
    RelationshipCoverage,
    RelationshipType,
    SampleResult,
    SamplingAllocation,
    SamplingStrategy,
    TemporalCoverage,
    TemporalDistribution,
    TemporalGap,
)
from memory_validation.utils.config import (
    CLUSTERED_CV,
    COVERAGE_WEIGHTS,
    DEFAULT_SAMPLE_CAP,
    DIVERSE_SAMPLE_CAP,
    DIVERSITY_THRESHOLD,
    EVEN_SPREAD_CV,
    HIGH_QUALITY_CONFIDENCE,
    IDEAL_QUALITY_MIX,
    MEDIUM_GROUP_MAX,
    MEDIUM_QUALITY_CONFIDENCE,
    MIN_REPRESENTATIVE_COVERAGE,
    SAMPLE_FRACTION,
    SMALL_GROUP_MAX,
    SMALL_POPULATION,
    SMALL_POPULATION_SAMPLE_CAP,
    TARGET_MOOD_DESCRIPTORS,
    TEMPORAL_GAP_DAYS,
    UNKNOWN_QUALITY_CONFIDENCE,
)
from memory_validation.utils.logging import LogLevel

if TYPE_CHECKING:
    from memory_validation.utils.logging import SessionLogger, StructuredLogger

StratumKey = tuple[str, ...]


# =============================================================================
# STRATUM LABELS
# =============================================================================

def primary_mood(record: MemoryRecord) -> str:
    descriptors = record.emotional_analysis.descriptors
    if not descriptors:
        return "unspecified"
    return descriptors[0].strip().lower()


def time_period(record: MemoryRecord) -> str:
    if record.timestamp is None:
        return "undated"
    return record.timestamp.strftime("%Y-%m")


def group_size(record: MemoryRecord) -> str:
    if record.relationship is None:
        return "unknown"
    count = record.relationship.participant_count
    if count <= SMALL_GROUP_MAX:
        return "small"
    if count <= MEDIUM_GROUP_MAX:
        return "medium"
    return "large"


def quality_band(record: MemoryRecord) -> str:
    """high / medium / low on extraction confidence (unknown counts as 0.5)."""
    value = record.resolved_factors()["extraction"]
    if value is None or not math.isfinite(value):
        value = UNKNOWN_QUALITY_CONFIDENCE
    if value >= HIGH_QUALITY_CONFIDENCE:
        return "high"
    if value >= MEDIUM_QUALITY_CONFIDENCE:
        return "medium"
    return "low"


def stratum_key(record: MemoryRecord, strategy: SamplingStrategy) -> StratumKey:
    parts = []
    if strategy.by_mood:
        parts.append(primary_mood(record))
    if strategy.by_time_period:
        parts.append(time_period(record))
    if strategy.by_participants:
        parts.append(group_size(record))
    if strategy.by_quality:
        parts.append(quality_band(record))
    return tuple(parts)


def allocate(
    sizes: dict[StratumKey, int],
    target: int,
    allocation: SamplingAllocation,
) -> dict[StratumKey, int]:
    """Split ``target`` draws across strata.

    Proportional shares are rounded half up, so the total can differ from
    ``target`` by a few draws; the sampler trims or tops up afterwards.
    Balanced shares are equal, with the remainder going to the first
    strata in iteration order.
    """
    if not sizes or target <= 0:
        return {key: 0 for key in sizes}
    if allocation == SamplingAllocation.BALANCED:
        base, extra = divmod(target, len(sizes))
        return {key: base + (1 if i < extra else 0) for i, key in enumerate(sizes)}
    total = sum(sizes.values())
    return {key: int(size / total * target + 0.5) for key, size in sizes.items()}


def _naive_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp
    return timestamp.astimezone(timezone.utc).replace(tzinfo=None)


# =============================================================================
# COVERAGE
# =============================================================================

class CoverageAnalyzer:
    """Scores how representative a set of records is."""

    def __init__(
        self,
        target_descriptors: Sequence[str] = TARGET_MOOD_DESCRIPTORS,
        gap_days: float = TEMPORAL_GAP_DAYS,
    ) -> None:
        self._targets = tuple(d.lower() for d in target_descriptors)
        self._gap_seconds = gap_days * 86400

    def analyze(self, records: Sequence[MemoryRecord]) -> CoverageAnalysis:
        if not records:
            return CoverageAnalysis()

        emotional = self.emotional(records)
        temporal = self.temporal(records)
        relationship = self.relationship(records)
        quality = self.quality(records)

        w_emotional, w_temporal, w_relationship, w_quality = COVERAGE_WEIGHTS
        overall = (
            w_emotional * emotional.coverage
            + w_temporal * temporal.score
            + w_relationship * relationship.coverage
            + w_quality * quality.score
        )
        return CoverageAnalysis(
            record_count=len(records),
            emotional=emotional,
            temporal=temporal,
            relationship=relationship,
            quality=quality,
            overall_score=min(1.0, max(0.0, overall)),
        )

    def emotional(self, records: Iterable[MemoryRecord]) -> EmotionalCoverage:
        seen = {
            d.strip().lower()
            for r in records
            for d in r.emotional_analysis.descriptors
        }
        represented = [t for t in self._targets if t in seen]
        return EmotionalCoverage(
            descriptors_represented=represented,
            coverage=len(represented) / len(self._targets) if self._targets else 0.0,
            gaps=[t for t in self._targets if t not in seen],
        )

    def temporal(self, records: Iterable[MemoryRecord]) -> TemporalCoverage:
        """Range, spread and gaps of record timestamps.

        Spread uses the coefficient of variation of consecutive intervals:
        below 0.5 is even, above 2 is clustered. Two or fewer timestamps
        are sparse. Score starts at 0.5, gains 0.3 for an even spread (0.1
        for sparse) and loses 0.1 per gap, at most 0.3.
        """
        stamps = sorted(_naive_utc(r.timestamp) for r in records if r.timestamp is not None)
        if not stamps:
            return TemporalCoverage()

        gaps: list[TemporalGap] = []
        distribution = TemporalDistribution.SPARSE
        if len(stamps) >= 2:
            intervals = np.array(
                [(b - a).total_seconds() for a, b in zip(stamps, stamps[1:])],
                dtype=float,
            )
            gaps = [
                TemporalGap(start=stamps[i], end=stamps[i + 1])
                for i in np.flatnonzero(intervals > self._gap_seconds)
            ]
            if len(stamps) > 2:
                mean = float(intervals.mean())
                cv = float(intervals.std()) / mean if mean > 0 else math.inf
                if cv < EVEN_SPREAD_CV:
                    distribution = TemporalDistribution.EVEN
                elif cv > CLUSTERED_CV:
                    distribution = TemporalDistribution.CLUSTERED

        score = 0.5
        if distribution == TemporalDistribution.EVEN:
            score += 0.3
        elif distribution == TemporalDistribution.SPARSE:
            score += 0.1
        score -= min(0.3, 0.1 * len(gaps))

        return TemporalCoverage(
            start=stamps[0],
            end=stamps[-1],
            distribution=distribution,
            gaps=gaps,
            score=min(1.0, max(0.0, score)),
        )

    def relationship(self, records: Iterable[MemoryRecord]) -> RelationshipCoverage:
        records = list(records)
        present = {r.relationship.type for r in records if r.relationship is not None}
        represented = [t.value for t in RelationshipType if t in present]
        return RelationshipCoverage(
            types_represented=represented,
            coverage=len(represented) / len(RelationshipType),
            group_sizes=dict(Counter(group_size(r) for r in records)),
        )

    def quality(self, records: Iterable[MemoryRecord]) -> QualityMix:
        counts = Counter(quality_band(r) for r in records)
        total = sum(counts.values())
        if total == 0:
            return QualityMix()
        shares = (counts["high"] / total, counts["medium"] / total, counts["low"] / total)
        distance = sum(abs(s - ideal) for s, ideal in zip(shares, IDEAL_QUALITY_MIX))
        return QualityMix(
            high=counts["high"],
            medium=counts["medium"],
            low=counts["low"],
            score=max(0.0, 1.0 - distance),
        )


# =============================================================================
# SAMPLER
# =============================================================================

class IntelligentSampler:
    """Draws stratified validation samples and checks their coverage."""

    def __init__(
        self,
        analyzer: CoverageAnalyzer | None = None,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        self._analyzer = analyzer or CoverageAnalyzer()
        self._logger = logger

    @property
    def analyzer(self) -> CoverageAnalyzer:
        return self._analyzer

    @staticmethod
    def stratify(
        records: Sequence[MemoryRecord],
        strategy: SamplingStrategy,
    ) -> dict[StratumKey, list[int]]:
        """Population indices grouped by stratum, in first-seen order."""
        strata: dict[StratumKey, list[int]] = {}
        for index, record in enumerate(records):
            strata.setdefault(stratum_key(record, strategy), []).append(index)
        return strata

    def sample(
        self,
        records: Iterable[MemoryRecord],
        strategy: SamplingStrategy | None = None,
    ) -> SampleResult:
        """Draw a sample of at most ``strategy.target_size`` records.

        Args:
            records: Population to sample from.
            strategy: Strata and size (defaults to a 100-record
                proportional draw over all four dimensions).

        Returns:
            SampleResult with the drawn records in population order.
        """
        strategy = strategy or SamplingStrategy()
        population = list(records)
        target = min(strategy.target_size, len(population))
        rng = np.random.default_rng(strategy.seed)
        strata = self.stratify(population, strategy) if strategy.stratified else {}

        if target == 0:
            chosen: list[int] = []
        elif not strategy.stratified:
            chosen = rng.choice(len(population), size=target, replace=False).tolist()
        else:
            shares = allocate(
                {key: len(members) for key, members in strata.items()},
                target,
                strategy.allocation,
            )
            chosen = []
            for key, members in strata.items():
                take = min(shares[key], len(members))
                if take:
                    chosen.extend(rng.choice(members, size=take, replace=False).tolist())

            if len(chosen) > target:
                chosen = rng.choice(chosen, size=target, replace=False).tolist()
            elif len(chosen) < target:
                taken = set(chosen)
                rest = [i for i in range(len(population)) if i not in taken]
                chosen.extend(
                    rng.choice(rest, size=target - len(chosen), replace=False).tolist()
                )

        drawn = [population[i] for i in sorted(int(i) for i in chosen)]
        coverage = self._analyzer.analyze(drawn)
        result = SampleResult(
            records=drawn,
            coverage=coverage,
            strategy=strategy,
            population_size=len(population),
            strata=len(strata),
        )

        if self._logger:
            self._logger.sampling(
                f"Sampled {result.sample_size}/{result.population_size} records "
                f"({strategy.name}, {len(strata)} strata, "
                f"coverage {coverage.overall_score:.2f})",
                seed=strategy.seed,
            )
        return result

    def ensure_representative_coverage(
        self,
        result: SampleResult,
        min_score: float = MIN_REPRESENTATIVE_COVERAGE,
    ) -> bool:
        """Whether the sample's overall coverage reaches ``min_score``."""
        coverage = result.coverage
        if coverage.overall_score >= min_score:
            return True
        if self._logger:
            missing = ", ".join(coverage.emotional.gaps[:5]) or "none"
            self._logger.sampling(
                f"Sample coverage {coverage.overall_score:.2f} below {min_score:.2f} "
                f"(missing moods: {missing})",
                level=LogLevel.WARNING,
            )
        return False

    def optimize_strategy(
        self,
        records: Sequence[MemoryRecord],
        seed: int | None = None,
    ) -> SamplingStrategy:
        """Pick a strategy suited to the population.

        Small populations get a simple random draw of up to 50. Diverse
        ones (mood coverage and temporal score both above 0.7) get
        balanced strata of up to 200 or 10%. Everything else gets a
        proportional draw of up to 150 or 10%.
        """
        size = len(records)
        if size < SMALL_POPULATION:
            return SamplingStrategy(
                name="simple-random",
                target_size=min(SMALL_POPULATION_SAMPLE_CAP, size),
                allocation=SamplingAllocation.RANDOM,
                seed=seed,
            )

        coverage = self._analyzer.analyze(records)
        fraction = max(1, int(size * SAMPLE_FRACTION))
        if (
            coverage.emotional.coverage > DIVERSITY_THRESHOLD
            and coverage.temporal.score > DIVERSITY_THRESHOLD
        ):
            return SamplingStrategy(
                name="balanced-stratified",
                target_size=min(DIVERSE_SAMPLE_CAP, fraction),
                allocation=SamplingAllocation.BALANCED,
                seed=seed,
            )
        return SamplingStrategy(
            name="stratified",
            target_size=min(DEFAULT_SAMPLE_CAP, fraction),
            seed=seed,
        )
