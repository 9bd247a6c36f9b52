"""Module implementations."""

from memory_validation.modules.batch import (
    BatchError,
    BatchProcessor,
    BatchResult,
    ItemOutcome,
    workers_for_throughput,
)
from memory_validation.modules.calibration import (
    CalibrationEngine,
    analyze_bias,
    factor_performance,
    replay_accuracy,
)
from memory_validation.modules.confidence import (
    WeightedConfidenceScorer,
    calculate_confidence,
)
from memory_validation.modules.decision import (
    DecisionEngine,
    classify,
    estimate_review_seconds,
)
from memory_validation.modules.review_queue import (
    OptimizedQueue,
    QueueBucket,
    ReviewerExpertise,
    ReviewQueue,
    ReviewQueueBuilder,
    ReviewQueueEntry,
    recency_score,
)
from memory_validation.modules.sampling import (
    CoverageAnalyzer,
    IntelligentSampler,
    allocate,
    stratum_key,
)
from memory_validation.modules.significance import (
    SignificanceAdjustor,
    threshold_adjustment_for,
)

__all__ = [
    "BatchError",
    "BatchProcessor",
    "BatchResult",
    "CalibrationEngine",
    "CoverageAnalyzer",
    "DecisionEngine",
    "IntelligentSampler",
    "ItemOutcome",
    "OptimizedQueue",
    "QueueBucket",
    "ReviewQueue",
    "ReviewQueueBuilder",
    "ReviewQueueEntry",
    "ReviewerExpertise",
    "SignificanceAdjustor",
    "WeightedConfidenceScorer",
    "allocate",
    "analyze_bias",
    "calculate_confidence",
    "classify",
    "estimate_review_seconds",
    "factor_performance",
    "recency_score",
    "replay_accuracy",
    "stratum_key",
    "threshold_adjustment_for",
    "workers_for_throughput",
]
