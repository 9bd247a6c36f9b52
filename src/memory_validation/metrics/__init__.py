"""Quality metrics and monitoring."""

from memory_validation.metrics.quality import (
    BatchSummary,
    QualityCheckScheduler,
    QualityMonitor,
    compute_quality_metrics,
    effectiveness_metrics,
    quality_alerts,
)

__all__ = [
    "BatchSummary",
    "QualityCheckScheduler",
    "QualityMonitor",
    "compute_quality_metrics",
    "effectiveness_metrics",
    "quality_alerts",
]
