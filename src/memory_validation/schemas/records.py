"""Memory record contracts supplied by the upstream extraction pipeline.

Records arrive pre-scored: the emotional analysis and the four confidence
sub-scores are computed upstream. The engine reads them and never mutates
them.

This module provides:
- ConfidenceFactors: The four pre-computed confidence sub-scores
- EmotionalPattern / EmotionalAnalysis: Mood, trajectory and patterns
- RelationshipDynamics: Relationship summary for the conversation
- MemoryRecord: The unit of validation
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# =============================================================================
# ENUMS
# =============================================================================

class TrajectoryDirection(str, Enum):
    """Overall direction of the mood trajectory across a conversation."""
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    VOLATILE = "volatile"


class PatternType(str, Enum):
    """Emotional pattern types detected upstream."""
    SUPPORT_SEEKING = "support_seeking"
    MOOD_REPAIR = "mood_repair"
    CELEBRATION = "celebration"
    VULNERABILITY = "vulnerability"
    GROWTH = "growth"


class ConflictLevel(str, Enum):
    """Amount of interpersonal conflict present."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RelationshipType(str, Enum):
    """Relationship between the conversation participants."""
    ROMANTIC = "romantic"
    FAMILY = "family"
    CLOSE_FRIEND = "close_friend"
    FRIEND = "friend"
    COLLEAGUE = "colleague"
    ACQUAINTANCE = "acquaintance"
    PROFESSIONAL = "professional"
    THERAPEUTIC = "therapeutic"


class InteractionQuality(str, Enum):
    """Overall tone of the interaction."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    MIXED = "mixed"


# =============================================================================
# CONFIDENCE SUB-SCORES
# =============================================================================

class ConfidenceFactors(BaseModel):
    """The four confidence sub-scores, each nominally in [0, 1].

    Ranges are deliberately NOT enforced here: out-of-range values are
    clipped by the scorer. A missing or non-finite value makes the record
    malformed and is rejected at scoring time.
    """

    extraction: float | None = Field(
        default=None,
        description="Upstream extraction confidence",
    )
    emotional_coherence: float | None = Field(
        default=None,
        description="Consistency between mood score, patterns and trajectory",
    )
    relationship_accuracy: float | None = Field(
        default=None,
        description="Plausibility of the relationship-dynamics summary",
    )
    context_quality: float | None = Field(
        default=None,
        description="Content length and emotional richness",
    )

    model_config = {"frozen": True}


# =============================================================================
# EMOTIONAL ANALYSIS
# =============================================================================

class EmotionalPattern(BaseModel):
    """A detected emotional pattern."""

    type: PatternType = Field(..., description="Pattern type")
    significance: float = Field(default=0.5, ge=0.0, le=1.0)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    model_config = {"frozen": True}


class EmotionalAnalysis(BaseModel):
    """Mood scoring, trajectory and pattern outputs for one record."""

    mood_score: float = Field(
        default=5.0,
        ge=0.0,
        le=10.0,
        description="Mood on a 0-10 scale where 5 is neutral",
    )
    descriptors: list[str] = Field(
        default_factory=list,
        description="Mood descriptors (e.g. 'anxious', 'relieved')",
    )
    trajectory_direction: TrajectoryDirection = Field(
        default=TrajectoryDirection.STABLE,
        description="Direction of mood change across the conversation",
    )
    trajectory_significance: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="How significant the trajectory change is",
    )
    turning_points: int = Field(
        default=0,
        ge=0,
        description="Number of emotional turning points detected",
    )
    patterns: list[EmotionalPattern] = Field(
        default_factory=list,
        description="Detected emotional patterns",
    )

    model_config = {"frozen": True}


# =============================================================================
# RELATIONSHIP DYNAMICS
# =============================================================================

class RelationshipDynamics(BaseModel):
    """Relationship summary for the conversation a record came from."""

    type: RelationshipType = Field(default=RelationshipType.FRIEND)
    conflict_level: ConflictLevel = Field(default=ConflictLevel.LOW)
    interaction_quality: InteractionQuality = Field(default=InteractionQuality.NEUTRAL)
    participant_count: int = Field(default=2, ge=1)

    model_config = {"frozen": True}


# =============================================================================
# MEMORY RECORD
# =============================================================================

class MemoryRecord(BaseModel):
    """An emotionally-scored memory awaiting validation.

    ARCHITECTURAL INVARIANT: Records are read-only inside the engine.
    """

    record_id: str = Field(..., min_length=1, description="Unique record identifier")
    content: str = Field(default="", description="Text content of the memory")
    timestamp: datetime | None = Field(
        default=None,
        description="When the remembered conversation took place",
    )
    emotional_analysis: EmotionalAnalysis = Field(
        default_factory=EmotionalAnalysis,
        description="Upstream emotional analysis",
    )
    relationship: RelationshipDynamics | None = Field(
        default=None,
        description="Relationship summary, if known",
    )
    extraction_confidence: float | None = Field(
        default=None,
        description="Record-level extraction confidence",
    )
    confidence_factors: ConfidenceFactors = Field(
        default_factory=ConfidenceFactors,
        description="Pre-computed confidence sub-scores",
    )

    model_config = {"frozen": True}

    def resolved_factors(self) -> dict[str, float | None]:
        """Sub-scores keyed by factor name.

        The extraction sub-score falls back to ``extraction_confidence``
        when the factor block leaves it unset.
        """
        factors = self.confidence_factors
        extraction = factors.extraction
        if extraction is None:
            extraction = self.extraction_confidence
        return {
            "extraction": extraction,
            "emotional_coherence": factors.emotional_coherence,
            "relationship_accuracy": factors.relationship_accuracy,
            "context_quality": factors.context_quality,
        }
