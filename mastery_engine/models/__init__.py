"""Database models."""

from mastery_engine.models.learning import (
    DimensionCoverageRecord,
    ReviewScheduleItem,
    RewardAuditLog,
    Topic,
    TopicMastery,
)

__all__ = [
    "Topic",
    "TopicMastery",
    "DimensionCoverageRecord",
    "ReviewScheduleItem",
    "RewardAuditLog",
]
