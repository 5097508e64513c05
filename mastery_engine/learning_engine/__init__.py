"""
Adaptive learning engine.

This package contains the learning algorithm logic:
- Arm selection and value estimation (multi-armed bandit)
- Spaced repetition scheduling (SM-2)
- Reward calculation and auditing
- Mastery tracking with dimension-gated Bloom level unlocking
- Phase classification
- Recommendation ranking and response processing

Algorithms are pure and read constants from `learning_engine.config`;
persistence is reached only through the repository contracts in `repo`.
"""

from mastery_engine.learning_engine.constants import Algorithm, Dimension, Phase, RecognitionMethod

__all__ = ["Algorithm", "Dimension", "Phase", "RecognitionMethod"]
