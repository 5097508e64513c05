"""Mastery tracking and dimension-gated Bloom level unlocking."""

from mastery_engine.learning_engine.mastery.tracker import MasteryTracker

__all__ = ["MasteryTracker"]
