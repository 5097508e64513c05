"""Typed contracts shared by the learning engine components.

Plain dataclasses, no I/O. Repositories translate rows into these and the
algorithms only ever see these.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from mastery_engine.learning_engine.config import (
    SM2_EASE_FACTOR,
    SM2_FIRST_INTERVAL_DAYS,
    SM2_MIN_EASE_FACTOR,
    SM2_SECOND_INTERVAL_DAYS,
    SR_MASTERY_THRESHOLD_ADVANCEMENT,
    SR_MASTERY_THRESHOLD_REVIEW,
    UNCERTAINTY_UNATTEMPTED,
    VALUE_UNATTEMPTED,
)
from mastery_engine.learning_engine.constants import Algorithm, AuditStatus, Dimension, Phase


# ============================================================================
# Arms and performance
# ============================================================================


@dataclass(frozen=True)
class Arm:
    """A selectable (topic, Bloom level) pair."""

    topic_id: str
    bloom_level: int
    entity_id: str | None = None

    @property
    def key(self) -> str:
        base = f"{self.topic_id}:{self.bloom_level}"
        return f"{base}:{self.entity_id}" if self.entity_id else base


@dataclass
class FormatStats:
    """Per-format history for one arm."""

    attempts: int = 0
    correct: int = 0
    avg_confidence: float = 0.0  # normalized [0,1]

    @property
    def accuracy(self) -> float:
        return self.correct / self.attempts if self.attempts else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "correct": self.correct,
            "avg_confidence": round(self.avg_confidence, 4),
        }


@dataclass
class TopicPerformance:
    """Learner state for one arm."""

    topic_id: str
    bloom_level: int = 1
    entity_id: str | None = None

    # Catalog fields (denormalized for display)
    topic_name: str = ""
    domain: str = ""
    full_path: str = ""

    attempts: int = 0
    correct_answers: int = 0
    mastery_score: float = 0.0  # [0,100]
    average_confidence: float = 0.0  # [0,1]
    confidence_calibration_error: float = 0.0  # [0,1]
    current_streak: int = 0
    is_unlocked: bool = True

    bloom_level_scores: dict[int, float] = field(default_factory=dict)
    current_bloom_level: int = 1
    format_performance: dict[str, FormatStats] = field(default_factory=dict)

    last_attempt_at: datetime | None = None
    time_since_last_review: float | None = None  # days

    # Filled by ValueEstimator
    estimated_value: float = VALUE_UNATTEMPTED.value
    uncertainty: float = UNCERTAINTY_UNATTEMPTED.value

    # Optimistic concurrency token
    version: int = 0

    @property
    def arm(self) -> Arm:
        return Arm(self.topic_id, self.bloom_level, self.entity_id)

    @property
    def incorrect_answers(self) -> int:
        return max(0, self.attempts - self.correct_answers)

    def copy(self, **changes: Any) -> "TopicPerformance":
        """Copy with changes, without sharing the mutable maps."""
        changes.setdefault("bloom_level_scores", dict(self.bloom_level_scores))
        changes.setdefault(
            "format_performance",
            {fmt: replace(stats) for fmt, stats in self.format_performance.items()},
        )
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "arm": self.arm.key,
            "attempts": self.attempts,
            "correct_answers": self.correct_answers,
            "mastery_score": round(self.mastery_score, 2),
            "calibration_error": round(self.confidence_calibration_error, 3),
            "estimated_value": round(self.estimated_value, 3),
            "uncertainty": round(self.uncertainty, 3),
        }


@dataclass(frozen=True)
class TopicInfo:
    """Catalog entry for a topic."""

    topic_id: str
    name: str
    domain: str = ""
    full_path: str = ""


# ============================================================================
# Configs
# ============================================================================


@dataclass(frozen=True)
class RLConfig:
    """Selection parameters for one phase."""

    algorithm: Algorithm
    epsilon: float
    exploration_rate: float
    learning_rate: float
    discount_factor: float
    temperature: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "algorithm": self.algorithm.value,
            "epsilon": self.epsilon,
            "exploration_rate": self.exploration_rate,
            "learning_rate": self.learning_rate,
            "discount_factor": self.discount_factor,
            "temperature": self.temperature,
        }


@dataclass(frozen=True)
class SpacedRepetitionConfig:
    """SM-2 parameters."""

    ease_factor: float = SM2_EASE_FACTOR.value
    min_ease_factor: float = SM2_MIN_EASE_FACTOR.value
    first_interval: int = SM2_FIRST_INTERVAL_DAYS.value
    second_interval: int = SM2_SECOND_INTERVAL_DAYS.value
    mastery_threshold_for_advancement: float = SR_MASTERY_THRESHOLD_ADVANCEMENT.value
    mastery_threshold_for_review: float = SR_MASTERY_THRESHOLD_REVIEW.value


# ============================================================================
# Spaced repetition
# ============================================================================


@dataclass(frozen=True)
class SpacedRepetitionItem:
    """Review state for one entity (arm key)."""

    entity_id: str
    last_review_date: datetime
    next_review_date: datetime
    interval: int = 0  # days
    ease_factor: float = SM2_EASE_FACTOR.value
    repetitions: int = 0
    mastery_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "interval": self.interval,
            "ease_factor": round(self.ease_factor, 4),
            "repetitions": self.repetitions,
            "last_review_date": self.last_review_date.isoformat(),
            "next_review_date": self.next_review_date.isoformat(),
            "mastery_score": round(self.mastery_score, 2),
        }


@dataclass(frozen=True)
class ScheduledReview:
    """An item placed on a calendar day by the review planner."""

    item: SpacedRepetitionItem
    scheduled_for: datetime
    priority: float


# ============================================================================
# Rewards
# ============================================================================


@dataclass(frozen=True)
class RewardInput:
    """One answered question, as seen by the reward function."""

    is_correct: bool
    confidence: int
    current_mastery: float = 0.0
    days_since_last_practice: float | None = None
    recognition_method: str = "memory"
    response_time_seconds: float = 0.0
    bloom_level: int = 1
    question_text: str = ""
    options: tuple[str, ...] = ()
    question_format: str = "mcq_single"
    current_streak: int = 0


@dataclass(frozen=True)
class RewardComponents:
    """Reward breakdown. `total` is the plain sum and is not bounded."""

    correctness: float = 0.0
    calibration: float = 0.0
    streak: float = 0.0
    recency: float = 0.0
    response_time: float = 0.0
    engagement: float = 0.0
    recognition_multiplier: float = 1.0

    @property
    def total(self) -> float:
        return (
            self.correctness
            + self.calibration
            + self.streak
            + self.recency
            + self.response_time
            + self.engagement
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "correctness": round(self.correctness, 4),
            "calibration": round(self.calibration, 4),
            "streak": round(self.streak, 4),
            "recency": round(self.recency, 4),
            "response_time": round(self.response_time, 4),
            "engagement": round(self.engagement, 4),
            "recognition_multiplier": self.recognition_multiplier,
            "total": round(self.total, 4),
        }


@dataclass(frozen=True)
class AuditEntry:
    """Reward audit record."""

    user_id: str
    topic_id: str
    bloom_level: int
    question_id: str
    reward: RewardComponents
    created_at: datetime


@dataclass(frozen=True)
class AuditResult:
    """Tagged outcome of an audit write. Never raised."""

    status: AuditStatus
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == AuditStatus.LOGGED_OK


# ============================================================================
# Mastery updates
# ============================================================================


@dataclass
class DimensionCoverage:
    """Coverage of one cognitive dimension at (topic, bloom level)."""

    topic_id: str
    bloom_level: int
    dimension: Dimension
    times_tested: int = 0
    unique_questions_answered: set[str] = field(default_factory=set)
    average_score: float = 0.0  # [0,100]
    last_tested_at: datetime | None = None


@dataclass(frozen=True)
class ResponseEvent:
    """A learner's answer to one question."""

    question_id: str
    core_topics: tuple[str, ...]
    bloom_level: int
    is_correct: bool
    confidence: int
    dimension: Dimension | None = None
    recognition_method: str = "memory"
    response_time_seconds: float = 0.0
    question_text: str = ""
    options: tuple[str, ...] = ()
    question_format: str = "mcq_single"
    topic_weights: dict[str, float] | None = None
    answered_at: datetime | None = None


@dataclass(frozen=True)
class MasteryDelta:
    """Write applied to one performance row.

    Counters are increments; the other fields are new absolute values
    (None leaves the stored value alone). `expected_version` is the version
    the delta was computed against.
    """

    attempts_delta: int = 0
    correct_delta: int = 0
    mastery_score: float | None = None
    average_confidence: float | None = None
    confidence_calibration_error: float | None = None
    current_streak: int | None = None
    last_attempt_at: datetime | None = None
    question_format: str | None = None
    confidence: float | None = None  # normalized [0,1], for format stats
    unlock: bool = False
    expected_version: int | None = None

    @classmethod
    def unlock_level(cls) -> "MasteryDelta":
        return cls(unlock=True)


@dataclass
class LearnerSnapshot:
    """Everything the tracker reads, fetched once per response."""

    performances: list[TopicPerformance] = field(default_factory=list)
    # (topic_id, bloom_level) -> dimension -> coverage
    coverage: dict[tuple[str, int], dict[Dimension, DimensionCoverage]] = field(
        default_factory=dict
    )

    def find(self, topic_id: str, bloom_level: int) -> TopicPerformance | None:
        for perf in self.performances:
            if perf.topic_id == topic_id and perf.bloom_level == bloom_level:
                return perf
        return None


@dataclass
class TopicUpdate:
    """Everything one core topic contributes to a response."""

    topic_id: str
    bloom_level: int
    mastery_delta: MasteryDelta
    performance: TopicPerformance  # state after the update
    reward: RewardComponents
    coverage: DimensionCoverage | None = None
    unlocked_level: int | None = None

    @property
    def unlocked(self) -> bool:
        return self.unlocked_level is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic_id": self.topic_id,
            "bloom_level": self.bloom_level,
            "mastery_score": round(self.performance.mastery_score, 2),
            "unlocked_level": self.unlocked_level,
            "reward": self.reward.to_dict(),
        }


@dataclass
class MasteryUpdateBatch:
    """Result of processing one response."""

    question_id: str
    updates: list[TopicUpdate] = field(default_factory=list)

    @property
    def total_reward(self) -> float:
        return sum(update.reward.total for update in self.updates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_id": self.question_id,
            "total_reward": round(self.total_reward, 4),
            "updates": [update.to_dict() for update in self.updates],
        }


# ============================================================================
# Phase and recommendations
# ============================================================================


@dataclass(frozen=True)
class PhaseInfo:
    """Display information for a phase."""

    phase: Phase
    name: str
    description: str
    progress: float  # percent towards the next phase
    exploration_budget: int  # percent
    rl_config: RLConfig
    total_attempts: int = 0


@dataclass(frozen=True)
class RecommendationOptions:
    """Filters and overrides for one recommendation call."""

    count: int = 3
    domain: str | None = None
    min_bloom_level: int | None = None
    max_bloom_level: int | None = None
    exclude_ids: frozenset[str] = frozenset()
    rl_config: RLConfig | None = None


@dataclass(frozen=True)
class TopicRecommendation:
    """One ranked recommendation."""

    arm: Arm
    topic_name: str
    domain: str
    full_path: str
    suggested_bloom_level: int
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
    days_since_last_review: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "arm": self.arm.key,
            "suggested_bloom_level": self.suggested_bloom_level,
            "suggested_format": self.suggested_format,
            "recommendation_score": round(self.recommendation_score, 4),
            "is_due_for_review": self.is_due_for_review,
        }
