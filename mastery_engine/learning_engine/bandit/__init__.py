"""Multi-armed bandit arm selection and value estimation."""

from mastery_engine.learning_engine.bandit.core import ArmSelector
from mastery_engine.learning_engine.bandit.value import ValueEstimator

__all__ = ["ArmSelector", "ValueEstimator"]
