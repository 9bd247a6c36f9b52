"""Core pipeline and interfaces."""

from memory_validation.core.evaluator import RecordEvaluator, coerce_record
from memory_validation.core.interfaces import (
    ConfidenceScorer,
    DecisionPolicy,
    SignificanceAssessor,
)

__all__ = [
    "ConfidenceScorer",
    "DecisionPolicy",
    "RecordEvaluator",
    "SignificanceAssessor",
    "coerce_record",
]
