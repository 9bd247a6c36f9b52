"""Validation sampling and coverage contracts.

A sample is a subset of records picked for human spot-checking. Its
coverage analysis reports how well the subset spans moods, time,
relationships and extraction quality.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from memory_validation.schemas.records import MemoryRecord
from memory_validation.utils.config import DEFAULT_SAMPLE_SIZE


class SamplingAllocation(str, Enum):
    """How the target size is split across strata."""
    RANDOM = "random"                # No strata; uniform draw
    PROPORTIONAL = "proportional"    # Each stratum in proportion to its size
    BALANCED = "balanced"            # Equal share per stratum


class TemporalDistribution(str, Enum):
    """Shape of the gaps between record timestamps."""
    EVEN = "even"
    SPARSE = "sparse"
    CLUSTERED = "clustered"


class SamplingStrategy(BaseModel):
    """Which strata to form and how many records to draw."""

    name: str = Field(default="stratified")
    target_size: int = Field(default=DEFAULT_SAMPLE_SIZE, ge=0)
    allocation: SamplingAllocation = Field(default=SamplingAllocation.PROPORTIONAL)
    by_mood: bool = Field(default=True, description="Stratify by primary mood descriptor")
    by_time_period: bool = Field(default=True, description="Stratify by calendar month")
    by_participants: bool = Field(default=True, description="Stratify by group size")
    by_quality: bool = Field(default=True, description="Stratify by extraction quality")
    seed: int | None = Field(default=None, description="Seed for reproducible draws")

    model_config = {"frozen": True}

    @property
    def stratified(self) -> bool:
        return self.allocation != SamplingAllocation.RANDOM and any(
            (self.by_mood, self.by_time_period, self.by_participants, self.by_quality)
        )


# =============================================================================
# COVERAGE
# =============================================================================

class EmotionalCoverage(BaseModel):
    descriptors_represented: list[str] = Field(default_factory=list)
    coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    gaps: list[str] = Field(default_factory=list, description="Target descriptors never seen")

    model_config = {"frozen": True}


class TemporalGap(BaseModel):
    start: datetime
    end: datetime

    model_config = {"frozen": True}

    @property
    def days(self) -> float:
        return (self.end - self.start).total_seconds() / 86400


class TemporalCoverage(BaseModel):
    """Time range and spread of the timestamped records."""

    start: datetime | None = None
    end: datetime | None = None
    distribution: TemporalDistribution = TemporalDistribution.SPARSE
    gaps: list[TemporalGap] = Field(default_factory=list)
    score: float = Field(default=0.0, ge=0.0, le=1.0)

    model_config = {"frozen": True}


class RelationshipCoverage(BaseModel):
    types_represented: list[str] = Field(default_factory=list)
    coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    group_sizes: dict[str, int] = Field(default_factory=dict)

    model_config = {"frozen": True}


class QualityMix(BaseModel):
    high: int = 0
    medium: int = 0
    low: int = 0
    score: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="1 minus the L1 distance from the ideal mix",
    )

    model_config = {"frozen": True}


class CoverageAnalysis(BaseModel):
    """Coverage of a record set along every sampling dimension."""

    record_count: int = 0
    emotional: EmotionalCoverage = Field(default_factory=EmotionalCoverage)
    temporal: TemporalCoverage = Field(default_factory=TemporalCoverage)
    relationship: RelationshipCoverage = Field(default_factory=RelationshipCoverage)
    quality: QualityMix = Field(default_factory=QualityMix)
    overall_score: float = Field(default=0.0, ge=0.0, le=1.0)

    model_config = {"frozen": True}


class SampleResult(BaseModel):
    """A drawn sample together with its coverage."""

    records: list[MemoryRecord] = Field(default_factory=list)
    coverage: CoverageAnalysis = Field(default_factory=CoverageAnalysis)
    strategy: SamplingStrategy = Field(default_factory=SamplingStrategy)
    population_size: int = 0
    strata: int = Field(default=0, description="Non-empty strata in the population")
    drawn_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}

    @property
    def sample_size(self) -> int:
        return len(self.records)

    @property
    def sampling_rate(self) -> float:
        if self.population_size == 0:
            return 0.0
        return self.sample_size / self.population_size

    def record_ids(self) -> list[str]:
        return [r.record_id for r in self.records]
