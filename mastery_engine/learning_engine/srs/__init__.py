"""Spaced repetition (SM-2) scheduling."""

from mastery_engine.learning_engine.srs.scheduler import ReviewScheduler

__all__ = ["ReviewScheduler"]
