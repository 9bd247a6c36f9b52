"""Configuration constants for the memory validation engine."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memory_validation.schemas.config import ThresholdConfig

# Log format version for JSONL records
LOG_VERSION: str = "v1"

# =============================================================================
# Threshold Defaults
# =============================================================================

# Confidence strictly above this auto-approves
DEFAULT_AUTO_APPROVE_THRESHOLD: float = 0.75

# Lower edge of the "worth reviewing" band (priority and uncertainty gating)
DEFAULT_REVIEW_REQUIRED_THRESHOLD: float = 0.50

# Confidence at or below this auto-rejects
DEFAULT_AUTO_REJECT_THRESHOLD: float = 0.50

# Confidence factor weights (must sum to 1)
DEFAULT_EXTRACTION_WEIGHT: float = 0.40
DEFAULT_COHERENCE_WEIGHT: float = 0.30
DEFAULT_RELATIONSHIP_WEIGHT: float = 0.20
DEFAULT_CONTEXT_WEIGHT: float = 0.10

# Tolerance for the weight-sum invariant
WEIGHT_SUM_EPSILON: float = 1e-6

# =============================================================================
# Confidence Scoring
# =============================================================================

# Factors below this are reported as uncertainty areas
UNCERTAINTY_FACTOR_THRESHOLD: float = 0.5

# Factors at or above this are reported as strengths
STRENGTH_FACTOR_THRESHOLD: float = 0.8

# =============================================================================
# Significance
# =============================================================================

# Sub-factor weights for the 0-10 significance score
MOOD_MAGNITUDE_WEIGHT: float = 0.35
RELATIONSHIP_IMPACT_WEIGHT: float = 0.25
PSYCHOLOGICAL_MARKERS_WEIGHT: float = 0.25
TURNING_POINT_WEIGHT: float = 0.15

# Monotone range table: (minimum significance, threshold adjustment)
SIGNIFICANCE_ADJUSTMENT_TABLE: tuple[tuple[float, float], ...] = (
    (8.0, -0.20),
    (6.0, -0.10),
    (4.0, -0.05),
    (0.0, 0.0),
)

# Hard bound on any significance-driven threshold shift
MAX_SIGNIFICANCE_ADJUSTMENT: float = 0.2

# Patterns above this significance count as high-impact markers
HIGH_IMPACT_PATTERN_SIGNIFICANCE: float = 0.8

# Urgency (0-10) at or above which a record is flagged urgent
URGENCY_FLAG_THRESHOLD: float = 5.0

# =============================================================================
# Decision Priority and Review Time
# =============================================================================

CRITICAL_SIGNIFICANCE: float = 8.0
HIGH_SIGNIFICANCE: float = 6.0
MEDIUM_SIGNIFICANCE: float = 4.0

# Confidence within this distance of any cut point is critical
BOUNDARY_PROXIMITY: float = 0.05
BOUNDARY_TOLERANCE: float = 1e-9

MIN_REVIEW_SECONDS: int = 30
MAX_REVIEW_SECONDS: int = 180

# =============================================================================
# Batch Processing
# =============================================================================

# Sustained evaluations per second a single worker is sized for
RECORDS_PER_WORKER_PER_SECOND: float = 500.0

DEFAULT_BATCH_WORKERS: int = 4
MAX_BATCH_WORKERS: int = 32

# Batches smaller than this skip the distribution sanity check
MIN_BATCH_FOR_DISTRIBUTION_CHECK: int = 20

# Maximum share any single decision class may take before the batch is flagged
DEFAULT_MAX_APPROVE_RATIO: float = 0.90
DEFAULT_MAX_REVIEW_RATIO: float = 0.90
DEFAULT_MAX_REJECT_RATIO: float = 0.80

# Share below which a decision class counts as missing (0 disables the check)
DEFAULT_MIN_APPROVE_RATIO: float = 0.02
DEFAULT_MIN_REVIEW_RATIO: float = 0.02
DEFAULT_MIN_REJECT_RATIO: float = 0.0

# =============================================================================
# Review Queue
# =============================================================================

QUEUE_SIGNIFICANCE_WEIGHT: float = 0.7
QUEUE_RECENCY_WEIGHT: float = 0.3

# =============================================================================
# Quality Monitoring
# =============================================================================

DEFAULT_QUALITY_WINDOW: int = 1000
MIN_AUTO_APPROVE_ACCURACY: float = 0.90
MAX_FALSE_POSITIVE_RATE: float = 0.05
MAX_FALSE_NEGATIVE_RATE: float = 0.05

# Minimum feedback items before alerts are raised
MIN_ALERT_SAMPLE: int = 20

# Accuracy drop between consecutive snapshots that counts as degrading
DEGRADATION_TOLERANCE: float = 0.02

# Seconds between scheduled quality checks
DEFAULT_QUALITY_CHECK_INTERVAL: float = 300.0

# =============================================================================
# Calibration
# =============================================================================

MAX_THRESHOLD_STEP: float = 0.05
MIN_CALIBRATION_SAMPLE: int = 20
MIN_ACCEPTABLE_ACCURACY: float = 0.70

# Bounds calibration will not push thresholds beyond
AUTO_APPROVE_CEILING: float = 0.95
AUTO_APPROVE_FLOOR: float = 0.65
AUTO_REJECT_FLOOR: float = 0.30

# Improvement estimates are capped at a realistic level
MAX_IMPROVEMENT_ESTIMATE: float = 0.1

# FP/FN rate gap that counts as systematic bias
BIAS_RATE_GAP: float = 0.05

# =============================================================================
# Sampling and Coverage
# =============================================================================

DEFAULT_SAMPLE_SIZE: int = 100

# Populations below this use simple random sampling
SMALL_POPULATION: int = 100
SMALL_POPULATION_SAMPLE_CAP: int = 50
DIVERSE_SAMPLE_CAP: int = 200
DEFAULT_SAMPLE_CAP: int = 150
SAMPLE_FRACTION: float = 0.10

# Emotional and temporal scores above this count as a diverse population
DIVERSITY_THRESHOLD: float = 0.7

# Overall coverage below this is reported as unrepresentative
MIN_REPRESENTATIVE_COVERAGE: float = 0.7

# Mood descriptors a representative sample should touch
TARGET_MOOD_DESCRIPTORS: tuple[str, ...] = (
    "joy", "sadness", "anger", "fear", "surprise", "disgust",
    "love", "excitement", "anxiety", "contentment", "frustration", "hope",
)

# Quality strata on record extraction confidence
HIGH_QUALITY_CONFIDENCE: float = 0.8
MEDIUM_QUALITY_CONFIDENCE: float = 0.5
UNKNOWN_QUALITY_CONFIDENCE: float = 0.5

# Ideal (high, medium, low) quality mix in a sample
IDEAL_QUALITY_MIX: tuple[float, float, float] = (0.2, 0.6, 0.2)

# Participant-count buckets: small up to 2, medium up to 5
SMALL_GROUP_MAX: int = 2
MEDIUM_GROUP_MAX: int = 5

# Interval coefficient of variation bounds for temporal spread
EVEN_SPREAD_CV: float = 0.5
CLUSTERED_CV: float = 2.0
TEMPORAL_GAP_DAYS: float = 7.0

# Overall coverage weights: emotional, temporal, relationship, quality
COVERAGE_WEIGHTS: tuple[float, float, float, float] = (0.30, 0.25, 0.25, 0.20)

# =============================================================================
# Review Queue Optimization
# =============================================================================

# Review time multiplier by reviewer expertise
EXPERTISE_TIME_FACTORS: dict[str, float] = {
    "expert": 0.6,
    "intermediate": 1.0,
    "beginner": 1.6,
}

# Share of high-significance entries above which only those are reviewed
HIGH_SIGNIFICANCE_FOCUS_SHARE: float = 0.3

# Sessions shorter than this (minutes) sample across significance levels
SHORT_SESSION_MINUTES: float = 60.0

# (high, medium, low) share of a short session
BALANCED_SESSION_MIX: tuple[float, float, float] = (0.4, 0.4, 0.2)

# =============================================================================
# Effectiveness
# =============================================================================

# Batches considered when computing effectiveness
EFFECTIVENESS_BATCH_WINDOW: int = 10

# Records per second counted as fully time-efficient
TARGET_RECORDS_PER_SECOND: float = 1000.0

# Weights: auto-approval rate, workload reduction, quality maintenance, time efficiency
EFFECTIVENESS_WEIGHTS: tuple[float, float, float, float] = (0.3, 0.3, 0.3, 0.1)


# =============================================================================
# Config file helpers
# =============================================================================

def load_threshold_config(path: str | Path) -> "ThresholdConfig":
    """Load a ThresholdConfig from a JSON file.

    Invariant violations surface as ``pydantic.ValidationError``.
    """
    from memory_validation.schemas.config import ThresholdConfig

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return ThresholdConfig.model_validate(data)


def save_threshold_config(config: "ThresholdConfig", path: str | Path) -> Path:
    """Write a ThresholdConfig to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(config.model_dump_json(indent=2))
    return path
