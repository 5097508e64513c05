"""Pydantic schemas for the learning engine API."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from mastery_engine.learning_engine.constants import (
    BLOOM_LEVEL_NAMES,
    Dimension,
    QuestionFormat,
    RecognitionMethod,
)
from mastery_engine.learning_engine.contracts import (
    PhaseInfo,
    ResponseEvent,
    RewardComponents,
    ScheduledReview,
    TopicRecommendation,
    TopicUpdate,
)

# ============================================================================
# Responses (answer submission)
# ============================================================================


class ResponseSubmitRequest(BaseModel):
    """An answered question."""

    question_id: str = Field(..., min_length=1, max_length=64)
    core_topics: list[str] = Field(..., min_length=1, max_length=20)
    bloom_level: int = Field(..., ge=1, le=6)
    is_correct: bool
    confidence: int = Field(..., ge=1, le=3)
    dimension: Dimension | None = None
    recognition_method: RecognitionMethod = RecognitionMethod.MEMORY
    response_time_seconds: float = Field(default=0.0, ge=0)
    question_text: str = Field(default="", max_length=10000)
    options: list[str] = Field(default_factory=list, max_length=20)
    question_format: QuestionFormat = QuestionFormat.MCQ_SINGLE
    topic_weights: dict[str, float] | None = None
    answered_at: datetime | None = None

    @field_validator("core_topics")
    @classmethod
    def validate_core_topics(cls, value: list[str]) -> list[str]:
        topics = [topic.strip() for topic in value]
        if any(not topic for topic in topics):
            raise ValueError("core_topics cannot contain blank ids")
        return topics

    @field_validator("topic_weights")
    @classmethod
    def validate_topic_weights(cls, value: dict[str, float] | None) -> dict[str, float] | None:
        if value is not None and any(not (0.0 <= w <= 1.0) for w in value.values()):
            raise ValueError("topic weights must be between 0 and 1")
        return value

    def to_event(self) -> ResponseEvent:
        return ResponseEvent(
            question_id=self.question_id,
            core_topics=tuple(self.core_topics),
            bloom_level=self.bloom_level,
            is_correct=self.is_correct,
            confidence=self.confidence,
            dimension=self.dimension,
            recognition_method=self.recognition_method.value,
            response_time_seconds=self.response_time_seconds,
            question_text=self.question_text,
            options=tuple(self.options),
            question_format=self.question_format.value,
            topic_weights=self.topic_weights,
            answered_at=self.answered_at,
        )


class RewardBreakdown(BaseModel):
    """Reward components for one topic."""

    correctness: float
    calibration: float
    streak: float
    recency: float
    response_time: float
    engagement: float
    recognition_multiplier: float
    total: float
    description: str

    @classmethod
    def from_components(cls, components: RewardComponents, description: str) -> "RewardBreakdown":
        return cls(
            correctness=components.correctness,
            calibration=components.calibration,
            streak=components.streak,
            recency=components.recency,
            response_time=components.response_time,
            engagement=components.engagement,
            recognition_multiplier=components.recognition_multiplier,
            total=components.total,
            description=description,
        )


class TopicUpdateOut(BaseModel):
    """What one core topic changed."""

    topic_id: str
    bloom_level: int
    mastery_score: float
    attempts: int
    correct_answers: int
    unlocked_level: int | None
    reward: RewardBreakdown

    @classmethod
    def from_update(cls, update: TopicUpdate, description: str) -> "TopicUpdateOut":
        return cls(
            topic_id=update.topic_id,
            bloom_level=update.bloom_level,
            mastery_score=update.performance.mastery_score,
            attempts=update.performance.attempts,
            correct_answers=update.performance.correct_answers,
            unlocked_level=update.unlocked_level,
            reward=RewardBreakdown.from_components(update.reward, description),
        )


class ResponseSubmitResponse(BaseModel):
    """Result of submitting an answer."""

    question_id: str
    total_reward: float
    updates: list[TopicUpdateOut]
    audit: list[str]


# ============================================================================
# Recommendations
# ============================================================================


class RecommendationOut(BaseModel):
    """One recommended arm."""

    topic_id: str
    bloom_level: int
    arm_key: str
    topic_name: str
    domain: str
    full_path: str
    suggested_bloom_level: int
    suggested_bloom_level_name: str
    suggested_format: str
    recommendation_score: float
    reason: str
    is_due_for_review: bool
    estimated_reward: float
    confidence: float
    expected_difficulty: str
    current_mastery: float
    exploration_value: float
    exploitation_value: float
    days_since_last_review: int | None

    @classmethod
    def from_recommendation(cls, rec: TopicRecommendation) -> "RecommendationOut":
        return cls(
            topic_id=rec.arm.topic_id,
            bloom_level=rec.arm.bloom_level,
            arm_key=rec.arm.key,
            topic_name=rec.topic_name,
            domain=rec.domain,
            full_path=rec.full_path,
            suggested_bloom_level=rec.suggested_bloom_level,
            suggested_bloom_level_name=BLOOM_LEVEL_NAMES[rec.suggested_bloom_level],
            suggested_format=rec.suggested_format,
            recommendation_score=rec.recommendation_score,
            reason=rec.reason,
            is_due_for_review=rec.is_due_for_review,
            estimated_reward=rec.estimated_reward,
            confidence=rec.confidence,
            expected_difficulty=rec.expected_difficulty,
            current_mastery=rec.current_mastery,
            exploration_value=rec.exploration_value,
            exploitation_value=rec.exploitation_value,
            days_since_last_review=rec.days_since_last_review,
        )


class RecommendationListResponse(BaseModel):
    """Ranked recommendations."""

    user_id: str
    phase: str
    algorithm: str
    recommendations: list[RecommendationOut]


# ============================================================================
# Phase
# ============================================================================


class RLConfigOut(BaseModel):
    """Selection config."""

    algorithm: str
    epsilon: float
    exploration_rate: float
    learning_rate: float
    discount_factor: float
    temperature: float


class PhaseResponse(BaseModel):
    """Learner phase and its config."""

    user_id: str
    phase: str
    name: str
    description: str
    progress: float
    exploration_budget: int
    total_attempts: int
    rl_config: RLConfigOut

    @classmethod
    def from_info(cls, user_id: str, info: PhaseInfo) -> "PhaseResponse":
        return cls(
            user_id=user_id,
            phase=info.phase.value,
            name=info.name,
            description=info.description,
            progress=info.progress,
            exploration_budget=info.exploration_budget,
            total_attempts=info.total_attempts,
            rl_config=RLConfigOut(**info.rl_config.to_dict()),
        )


# ============================================================================
# Reviews
# ============================================================================


class ScheduledReviewOut(BaseModel):
    """One planned review."""

    entity_id: str
    scheduled_for: datetime
    next_review_date: datetime
    priority: float
    interval: int
    ease_factor: float
    repetitions: int
    mastery_score: float

    @classmethod
    def from_scheduled(cls, scheduled: ScheduledReview) -> "ScheduledReviewOut":
        item = scheduled.item
        return cls(
            entity_id=item.entity_id,
            scheduled_for=scheduled.scheduled_for,
            next_review_date=item.next_review_date,
            priority=scheduled.priority,
            interval=item.interval,
            ease_factor=item.ease_factor,
            repetitions=item.repetitions,
            mastery_score=item.mastery_score,
        )


class ReviewScheduleResponse(BaseModel):
    """Review plan."""

    user_id: str
    due_count: int
    max_reviews_per_day: int
    reviews: list[ScheduledReviewOut]


# ============================================================================
# Progress reset
# ============================================================================


class ProgressResetResponse(BaseModel):
    """Result of a progress reset."""

    user_id: str
    topic_id: str | None
    arms_removed: int
