"""Calibration proposal contracts."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from memory_validation.schemas.config import ThresholdConfig


class ProposalStatus(str, Enum):
    """Lifecycle of a calibration proposal."""
    PROPOSED = "proposed"
    APPLIED = "applied"
    DEFERRED = "deferred"   # Conditions not right to change thresholds now
    REJECTED = "rejected"   # Applying would make things worse


class BiasDirection(str, Enum):
    """Direction of systematic error."""
    OPTIMISTIC = "optimistic"    # Approves too much
    PESSIMISTIC = "pessimistic"  # Rejects too much
    NONE = "none"


class FactorPerformance(BaseModel):
    """How one confidence factor related to correct verdicts."""

    factor: str
    sample_size: int = 0
    average_value: float = 0.0
    hit_rate: float = Field(
        default=0.0,
        description="Share of items where the factor was high and the verdict correct",
    )
    correlation: float = Field(
        default=0.0,
        description="Pearson correlation between factor value and correctness",
    )

    model_config = {"frozen": True}


class BiasAnalysis(BaseModel):
    """Systematic optimism or pessimism in the engine's verdicts."""

    detected: bool = False
    direction: BiasDirection = BiasDirection.NONE
    magnitude: float = Field(default=0.0, ge=0.0, description="|FP rate - FN rate|")
    underperforming_factors: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class CalibrationProposal(BaseModel):
    """A bounded threshold/weight adjustment derived from feedback."""

    proposal_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: ProposalStatus = ProposalStatus.PROPOSED

    current_config: ThresholdConfig = Field(..., description="Config the proposal starts from")
    proposed_config: ThresholdConfig = Field(..., description="Config the proposal would install")
    deltas: dict[str, float] = Field(
        default_factory=dict,
        description="Per-threshold change, each bounded by the per-cycle step",
    )
    reasons: list[str] = Field(default_factory=list)

    sample_size: int = 0
    current_accuracy: float = Field(default=0.0, description="Observed accuracy of the feedback")
    baseline_accuracy: float | None = Field(
        default=None,
        description="Accuracy when the feedback is replayed under the current config",
    )
    simulated_accuracy: float | None = Field(
        default=None,
        description="Accuracy when the feedback is replayed under the proposed config",
    )
    improvement_potential: float = Field(default=0.0, ge=0.0, le=0.1)

    bias: BiasAnalysis = Field(default_factory=BiasAnalysis)
    factor_performance: list[FactorPerformance] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}

    @property
    def changes_anything(self) -> bool:
        return (
            any(abs(d) > 0.0 for d in self.deltas.values())
            or self.proposed_config.weights != self.current_config.weights
        )
