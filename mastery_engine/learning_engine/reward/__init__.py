"""Reward calculation and auditing."""

from mastery_engine.learning_engine.reward.core import (
    RewardCalculator,
    describe_reward,
    normalize_reward,
)

__all__ = ["RewardCalculator", "describe_reward", "normalize_reward"]
