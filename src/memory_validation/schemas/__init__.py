"""Data contracts for the memory validation engine."""

from memory_validation.schemas.calibration import (
    BiasAnalysis,
    BiasDirection,
    CalibrationProposal,
    FactorPerformance,
    ProposalStatus,
)
from memory_validation.schemas.config import (
    FACTOR_NAMES,
    DistributionBand,
    FactorWeights,
    ThresholdConfig,
)
from memory_validation.schemas.decisions import (
    ConfidenceResult,
    DecisionReasoning,
    Priority,
    SignificanceScore,
    ValidationDecision,
    ValidationOutcome,
)
from memory_validation.schemas.feedback import (
    AccuracyTrendPoint,
    AlertSeverity,
    ConfidenceBucket,
    EffectivenessMetrics,
    HumanDecision,
    QualityAlert,
    QualityMetrics,
    ValidationFeedback,
    outcome_is_correct,
)
from memory_validation.schemas.records import (
    ConfidenceFactors,
    ConflictLevel,
    EmotionalAnalysis,
    EmotionalPattern,
    InteractionQuality,
    MemoryRecord,
    PatternType,
    RelationshipDynamics,
    RelationshipType,
    TrajectoryDirection,
)
from memory_validation.schemas.sampling import (
    CoverageAnalysis,
    EmotionalCoverage,
    QualityMix,
    RelationshipCoverage,
    SampleResult,
    SamplingAllocation,
    SamplingStrategy,
    TemporalCoverage,
    TemporalDistribution,
    TemporalGap,
)

__all__ = [
    "AccuracyTrendPoint",
    "AlertSeverity",
    "BiasAnalysis",
    "BiasDirection",
    "CalibrationProposal",
    "ConfidenceBucket",
    "ConfidenceFactors",
    "ConfidenceResult",
    "ConflictLevel",
    "CoverageAnalysis",
    "DecisionReasoning",
    "DistributionBand",
    "EffectivenessMetrics",
    "EmotionalAnalysis",
    "EmotionalCoverage",
    "EmotionalPattern",
    "FACTOR_NAMES",
    "FactorPerformance",
    "FactorWeights",
    "HumanDecision",
    "InteractionQuality",
    "MemoryRecord",
    "PatternType",
    "Priority",
    "ProposalStatus",
    "QualityAlert",
    "QualityMetrics",
    "QualityMix",
    "RelationshipCoverage",
    "RelationshipDynamics",
    "RelationshipType",
    "SampleResult",
    "SamplingAllocation",
    "SamplingStrategy",
    "SignificanceScore",
    "TemporalCoverage",
    "TemporalDistribution",
    "TemporalGap",
    "ThresholdConfig",
    "TrajectoryDirection",
    "ValidationDecision",
    "ValidationFeedback",
    "ValidationOutcome",
    "outcome_is_correct",
]
