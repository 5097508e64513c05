"""Recommendation ranking and response processing."""

from mastery_engine.learning_engine.recommend.service import (
    RankedRecommendations,
    RecommendationOrchestrator,
    ResponseService,
)

__all__ = ["RankedRecommendations", "RecommendationOrchestrator", "ResponseService"]
