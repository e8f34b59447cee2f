"""Outcome learning and rule persistence."""

from tradeintel.learning.learner import (
    AppliedAdjustments,
    LearningAdjustment,
    LearningReport,
    OutcomeLearner,
    collect_outcomes,
)
from tradeintel.learning.store import AdjustmentStore, RulesStore

__all__ = [
    "OutcomeLearner",
    "LearningAdjustment",
    "LearningReport",
    "AppliedAdjustments",
    "collect_outcomes",
    "RulesStore",
    "AdjustmentStore",
]
