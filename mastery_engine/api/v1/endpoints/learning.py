"""Learning engine API endpoints."""

import logging
import random
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from mastery_engine.core.app_exceptions import AppError
from mastery_engine.core.config import settings
from mastery_engine.core.errors import EngineError
from mastery_engine.db.session import get_db
from mastery_engine.learning_engine.bandit.sampling import create_seeded_rng
from mastery_engine.learning_engine.contracts import RecommendationOptions, SpacedRepetitionConfig
from mastery_engine.learning_engine.phase import PhaseController
from mastery_engine.learning_engine.recommend.service import (
    RecommendationOrchestrator,
    ResponseService,
)
from mastery_engine.learning_engine.repo import (
    SqlDimensionCoverageRepository,
    SqlPerformanceRepository,
    SqlReviewRepository,
    SqlTopicCatalog,
)
from mastery_engine.learning_engine.reward.audit import SqlRewardAuditSink
from mastery_engine.learning_engine.reward.core import describe_reward
from mastery_engine.learning_engine.srs.scheduler import ReviewScheduler
from mastery_engine.schemas.learning import (
    PhaseResponse,
    ProgressResetResponse,
    RecommendationListResponse,
    RecommendationOut,
    ResponseSubmitRequest,
    ResponseSubmitResponse,
    ReviewScheduleResponse,
    ScheduledReviewOut,
    TopicUpdateOut,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================


def get_rng() -> random.Random:
    """RNG for arm selection; seeded when RNG_SEED is set."""
    return create_seeded_rng(settings.RNG_SEED)


def get_scheduler() -> ReviewScheduler:
    """Scheduler configured from settings."""
    return ReviewScheduler(
        SpacedRepetitionConfig(
            ease_factor=settings.SR_EASE_FACTOR,
            min_ease_factor=settings.SR_MIN_EASE_FACTOR,
            first_interval=settings.SR_FIRST_INTERVAL_DAYS,
            second_interval=settings.SR_SECOND_INTERVAL_DAYS,
            mastery_threshold_for_advancement=settings.SR_MASTERY_THRESHOLD_ADVANCEMENT,
            mastery_threshold_for_review=settings.SR_MASTERY_THRESHOLD_REVIEW,
        )
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/users/{user_id}/recommendations",
    response_model=RecommendationListResponse,
    summary="Recommend what to practice next",
)
def get_recommendations(
    user_id: str,
    count: int = Query(default=settings.DEFAULT_RECOMMENDATION_COUNT, ge=1, le=50),
    domain: str | None = Query(default=None),
    min_bloom_level: int | None = Query(default=None, ge=1, le=6),
    max_bloom_level: int | None = Query(default=None, ge=1, le=6),
    exclude: list[str] | None = Query(default=None),
    db: Session = Depends(get_db),
    rng: random.Random = Depends(get_rng),
    scheduler: ReviewScheduler = Depends(get_scheduler),
) -> RecommendationListResponse:
    """Rank (topic, Bloom level) arms for a learner."""
    orchestrator = RecommendationOrchestrator(
        performance_repo=SqlPerformanceRepository(db),
        review_repo=SqlReviewRepository(db),
        catalog=SqlTopicCatalog(db),
        rng=rng,
        scheduler=scheduler,
    )
    options = RecommendationOptions(
        count=count,
        domain=domain,
        min_bloom_level=min_bloom_level,
        max_bloom_level=max_bloom_level,
        exclude_ids=frozenset(exclude or ()),
    )

    try:
        ranked = orchestrator.rank(user_id, options)
    except EngineError as e:
        raise AppError.from_engine_error(e)

    return RecommendationListResponse(
        user_id=user_id,
        phase=ranked.phase.value,
        algorithm=ranked.config.algorithm.value,
        recommendations=[
            RecommendationOut.from_recommendation(rec) for rec in ranked.recommendations
        ],
    )


@router.post(
    "/users/{user_id}/responses",
    response_model=ResponseSubmitResponse,
    summary="Submit an answered question",
)
def submit_response(
    user_id: str,
    payload: ResponseSubmitRequest,
    db: Session = Depends(get_db),
    scheduler: ReviewScheduler = Depends(get_scheduler),
) -> ResponseSubmitResponse:
    """Update mastery, coverage and review state from one answer."""
    service = ResponseService(
        performance_repo=SqlPerformanceRepository(db),
        coverage_repo=SqlDimensionCoverageRepository(db),
        review_repo=SqlReviewRepository(db),
        transaction=db,
        audit_sink=SqlRewardAuditSink(db),
        scheduler=scheduler,
    )

    try:
        result = service.submit(user_id, payload.to_event())
    except EngineError as e:
        raise AppError.from_engine_error(e)

    return ResponseSubmitResponse(
        question_id=result.batch.question_id,
        total_reward=result.batch.total_reward,
        updates=[
            TopicUpdateOut.from_update(update, describe_reward(update.reward))
            for update in result.batch.updates
        ],
        audit=[audit.status.value for audit in result.audit_results],
    )


@router.get(
    "/users/{user_id}/phase",
    response_model=PhaseResponse,
    summary="Current learner phase",
)
def get_phase(user_id: str, db: Session = Depends(get_db)) -> PhaseResponse:
    """Classify the learner's phase from their aggregates."""
    performances = SqlPerformanceRepository(db).get(user_id)
    return PhaseResponse.from_info(user_id, PhaseController().info(performances))


@router.get(
    "/users/{user_id}/reviews/schedule",
    response_model=ReviewScheduleResponse,
    summary="Plan upcoming reviews",
)
def get_review_schedule(
    user_id: str,
    max_per_day: int = Query(default=settings.MAX_REVIEWS_PER_DAY, ge=1, le=200),
    db: Session = Depends(get_db),
    scheduler: ReviewScheduler = Depends(get_scheduler),
) -> ReviewScheduleResponse:
    """Assign each review item a day under the daily cap."""
    now = datetime.now(UTC)
    items = SqlReviewRepository(db).get(user_id)
    schedule = scheduler.create_review_schedule(items, now=now, max_reviews_per_day=max_per_day)
    return ReviewScheduleResponse(
        user_id=user_id,
        due_count=len(scheduler.get_due_items(items, now)),
        max_reviews_per_day=max_per_day,
        reviews=[ScheduledReviewOut.from_scheduled(scheduled) for scheduled in schedule],
    )


@router.delete(
    "/users/{user_id}/progress",
    response_model=ProgressResetResponse,
    summary="Reset learner progress",
)
def reset_progress(
    user_id: str,
    topic_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> ProgressResetResponse:
    """Delete progress for a learner, or for one topic."""
    try:
        removed = SqlPerformanceRepository(db).reset(user_id, topic_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    return ProgressResetResponse(user_id=user_id, topic_id=topic_id, arms_removed=removed)
