"""Significance adjustor: emotional importance and threshold shifts.

Significance (0-10) is independent of confidence. High-significance
records get a per-evaluation threshold shift that steers them toward
human review even when the engine is confident.

ARCHITECTURAL INVARIANT: The shift only ever narrows the auto-approve
band, and is applied to a copy. The shared ThresholdConfig is never
mutated.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from memory_validation.core.interfaces import SignificanceAssessor
from memory_validation.schemas import (
    ConflictLevel,
    InteractionQuality,
    MemoryRecord,
    PatternType,
    RelationshipType,
    SignificanceScore,
    ThresholdConfig,
    TrajectoryDirection,
)
from memory_validation.utils.confidence import clip_range
from memory_validation.utils.config import (
    CRITICAL_SIGNIFICANCE,
    HIGH_IMPACT_PATTERN_SIGNIFICANCE,
    MAX_SIGNIFICANCE_ADJUSTMENT,
    MOOD_MAGNITUDE_WEIGHT,
    PSYCHOLOGICAL_MARKERS_WEIGHT,
    RELATIONSHIP_IMPACT_WEIGHT,
    SIGNIFICANCE_ADJUSTMENT_TABLE,
    TURNING_POINT_WEIGHT,
    URGENCY_FLAG_THRESHOLD,
)

if TYPE_CHECKING:
    from memory_validation.utils.logging import SessionLogger, StructuredLogger


# =============================================================================
# SCORING TABLES
# =============================================================================

RELATIONSHIP_TYPE_WEIGHTS: dict[RelationshipType, float] = {
    RelationshipType.ROMANTIC: 2.0,
    RelationshipType.FAMILY: 1.8,
    RelationshipType.THERAPEUTIC: 1.6,
    RelationshipType.CLOSE_FRIEND: 1.5,
    RelationshipType.FRIEND: 1.0,
    RelationshipType.COLLEAGUE: 0.8,
    RelationshipType.PROFESSIONAL: 0.7,
    RelationshipType.ACQUAINTANCE: 0.5,
}

CONFLICT_WEIGHTS: dict[ConflictLevel, float] = {
    ConflictLevel.HIGH: 2.5,
    ConflictLevel.MEDIUM: 1.5,
    ConflictLevel.LOW: 0.5,
    ConflictLevel.NONE: 0.0,
}

INTERACTION_WEIGHTS: dict[InteractionQuality, float] = {
    InteractionQuality.NEGATIVE: 1.0,
    InteractionQuality.MIXED: 0.8,
    InteractionQuality.POSITIVE: 0.5,
    InteractionQuality.NEUTRAL: 0.0,
}

DIRECTION_WEIGHTS: dict[TrajectoryDirection, float] = {
    TrajectoryDirection.VOLATILE: 2.0,
    TrajectoryDirection.DECLINING: 1.5,
    TrajectoryDirection.IMPROVING: 1.0,
    TrajectoryDirection.STABLE: 0.0,
}

CRISIS_KEYWORDS: tuple[str, ...] = ("crisis", "emergency", "urgent", "help", "desperate")
_CRISIS_RE = re.compile(r"\b(" + "|".join(CRISIS_KEYWORDS) + r")\b", re.IGNORECASE)

BREAKTHROUGH_PATTERNS = frozenset({PatternType.GROWTH, PatternType.MOOD_REPAIR})

_SUBFACTOR_LABELS = {
    "mood_magnitude": "strong mood deviation",
    "relationship_impact": "high relationship impact",
    "psychological_markers": "notable psychological patterns",
    "turning_point_potential": "possible turning point",
}


def threshold_adjustment_for(significance: float) -> float:
    """Signed threshold adjustment for a significance score.

    Looks the score up in the monotone range table; the first row whose
    lower bound the score reaches wins.
    """
    for lower_bound, adjustment in SIGNIFICANCE_ADJUSTMENT_TABLE:
        if significance >= lower_bound:
            return clip_range(adjustment, -MAX_SIGNIFICANCE_ADJUSTMENT, MAX_SIGNIFICANCE_ADJUSTMENT)
    return 0.0


# =============================================================================
# SIGNIFICANCE ADJUSTOR
# =============================================================================

class SignificanceAdjustor(SignificanceAssessor):
    """Scores emotional significance and derives threshold shifts.

    Sub-factors (each 0-10):
    - mood_magnitude: distance of the mood score from neutral
    - relationship_impact: relationship type, conflict and tone
    - psychological_markers: detected patterns and mood descriptors
    - turning_point_potential: trajectory change and turning points

    Weighted 0.35 / 0.25 / 0.25 / 0.15 into the overall score.
    """

    def __init__(
        self,
        urgency_threshold: float = URGENCY_FLAG_THRESHOLD,
        logger: "StructuredLogger | SessionLogger | None" = None,
    ) -> None:
        self._urgency_threshold = urgency_threshold
        self._logger = logger

    def assess(self, record: MemoryRecord) -> SignificanceScore:
        mood = self._mood_magnitude(record)
        relationship = self._relationship_impact(record)
        markers = self._psychological_markers(record)
        turning = self._turning_point_potential(record)

        overall = clip_range(
            MOOD_MAGNITUDE_WEIGHT * mood
            + RELATIONSHIP_IMPACT_WEIGHT * relationship
            + PSYCHOLOGICAL_MARKERS_WEIGHT * markers
            + TURNING_POINT_WEIGHT * turning,
            0.0,
            10.0,
        )
        urgency = self._urgency(record)
        urgent = urgency >= self._urgency_threshold or overall >= CRITICAL_SIGNIFICANCE

        score = SignificanceScore(
            overall=overall,
            mood_magnitude=mood,
            relationship_impact=relationship,
            psychological_markers=markers,
            turning_point_potential=turning,
            threshold_adjustment=threshold_adjustment_for(overall),
            urgency=urgency,
            urgent=urgent,
            narrative="",
        )
        score = score.model_copy(update={"narrative": self._narrative(score)})

        if self._logger:
            self._logger.significance(
                f"Assessed: {score.narrative}",
                record_id=record.record_id,
                significance=overall,
            )
        return score

    def adjust_thresholds(
        self,
        config: ThresholdConfig,
        significance: SignificanceScore,
    ) -> ThresholdConfig:
        """Return a copy of ``config`` shifted toward review.

        A negative adjustment of magnitude ``s`` raises auto_approve by
        ``s`` (capped at 1) and lowers review_required and auto_reject by
        ``s`` (floored at 0). Both moves widen the review band, so the
        auto-approve band can only shrink. ``config`` itself is returned
        when no shift applies; it is immutable, so sharing it is safe.
        """
        shift = min(abs(significance.threshold_adjustment), MAX_SIGNIFICANCE_ADJUSTMENT)
        if shift == 0.0:
            return config

        adjusted = config.evolve(
            auto_approve=min(1.0, config.auto_approve + shift),
            review_required=max(0.0, config.review_required - shift),
            auto_reject=max(0.0, config.auto_reject - shift),
        )
        if self._logger:
            self._logger.significance(
                f"Thresholds shifted by {shift:.2f}: approve>{adjusted.auto_approve:.2f} "
                f"reject<={adjusted.auto_reject:.2f}",
                significance=significance.overall,
                config_version=config.version,
            )
        return adjusted

    # -------------------------------------------------------------------------
    # SUB-FACTORS
    # -------------------------------------------------------------------------

    def _mood_magnitude(self, record: MemoryRecord) -> float:
        # |mood - 5| spans 0-5; scale to 0-10
        return clip_range(abs(record.emotional_analysis.mood_score - 5.0) * 2.0, 0.0, 10.0)

    def _relationship_impact(self, record: MemoryRecord) -> float:
        rel = record.relationship
        if rel is None:
            return 0.0
        impact = 2.0
        impact += 2.0 * RELATIONSHIP_TYPE_WEIGHTS.get(rel.type, 1.0)
        impact += CONFLICT_WEIGHTS.get(rel.conflict_level, 0.0)
        impact += INTERACTION_WEIGHTS.get(rel.interaction_quality, 0.0)
        if rel.participant_count > 2:
            impact += 0.5
        return clip_range(impact, 0.0, 10.0)

    def _psychological_markers(self, record: MemoryRecord) -> float:
        analysis = record.emotional_analysis
        patterns = analysis.patterns
        score = 0.0
        if patterns:
            weighted = sum(p.significance * p.confidence for p in patterns) / len(patterns)
            score += weighted * 6.0
            high_impact = sum(
                1 for p in patterns if p.significance > HIGH_IMPACT_PATTERN_SIGNIFICANCE
            )
            score += min(3.0, 1.5 * high_impact)
        score += min(1.0, 0.25 * len(analysis.descriptors))
        return clip_range(score, 0.0, 10.0)

    def _turning_point_potential(self, record: MemoryRecord) -> float:
        analysis = record.emotional_analysis
        score = analysis.trajectory_significance * 5.0
        score += min(analysis.turning_points, 3) * 1.0
        score += DIRECTION_WEIGHTS.get(analysis.trajectory_direction, 0.0)
        return clip_range(score, 0.0, 10.0)

    # -------------------------------------------------------------------------
    # URGENCY
    # -------------------------------------------------------------------------

    def _urgency(self, record: MemoryRecord) -> float:
        """Urgency from crisis language, low mood, conflict and breakthroughs."""
        urgency = 0.0
        if _CRISIS_RE.search(record.content or ""):
            urgency += 5.0
        if record.emotional_analysis.mood_score < 3.0:
            urgency += 3.0
        if record.relationship and record.relationship.conflict_level == ConflictLevel.HIGH:
            urgency += 2.0
        if any(p.type in BREAKTHROUGH_PATTERNS for p in record.emotional_analysis.patterns):
            urgency += 1.5
        return min(10.0, urgency)

    def _narrative(self, score: SignificanceScore) -> str:
        if score.overall >= 8.0:
            level = "critical"
        elif score.overall >= 6.0:
            level = "high"
        elif score.overall >= 4.0:
            level = "moderate"
        else:
            level = "low"
        drivers = [
            _SUBFACTOR_LABELS[name]
            for name, value in score.breakdown().items()
            if value >= 6.0
        ]
        text = f"{level} significance ({score.overall:.1f}/10)"
        if drivers:
            text += ": " + ", ".join(drivers)
        if score.urgent:
            text += " [urgent]"
        return text
