"""
Recommendation and response processing services.

RecommendationOrchestrator ranks what a learner should practice next.
ResponseService applies an answered question: it runs the mastery tracker
over a single snapshot, writes the resulting updates in one transaction,
and records reward audit entries after commit.
"""

import logging
import random
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol

from mastery_engine.core.errors import ConcurrencyConflict, InvalidInput, MissingEntity
from mastery_engine.learning_engine.bandit.core import ArmSelector
from mastery_engine.learning_engine.bandit.value import ValueEstimator
from mastery_engine.learning_engine.config import (
    BLOOM_DEFAULT_FORMATS,
    DIFFICULTY_EASY_MASTERY,
    DIFFICULTY_HARD_BLOOM,
    DIFFICULTY_MEDIUM_BLOOM,
    DIFFICULTY_MEDIUM_MASTERY,
    FORMAT_WEIGHT_ACCURACY,
    FORMAT_WEIGHT_CONFIDENCE,
    REASON_CALIBRATION_ERROR,
    REASON_LOW_DATA_ATTEMPTS,
    REASON_STALE_DAYS,
    RECOMMENDATION_WEIGHT_EXPLORATION,
    RECOMMENDATION_WEIGHT_REVIEW,
    RECOMMENDATION_WEIGHT_VALUE,
)
from mastery_engine.learning_engine.constants import MAX_BLOOM_LEVEL, MIN_BLOOM_LEVEL, Phase
from mastery_engine.learning_engine.contracts import (
    AuditEntry,
    AuditResult,
    LearnerSnapshot,
    MasteryDelta,
    MasteryUpdateBatch,
    RecommendationOptions,
    ResponseEvent,
    RLConfig,
    SpacedRepetitionItem,
    TopicInfo,
    TopicPerformance,
    TopicRecommendation,
)
from mastery_engine.learning_engine.mastery.tracker import MasteryTracker
from mastery_engine.learning_engine.phase import PhaseController
from mastery_engine.learning_engine.repo import (
    DimensionCoverageRepository,
    PerformanceRepository,
    ReviewRepository,
    TopicCatalog,
)
from mastery_engine.learning_engine.reward.audit import LoggingAuditSink, RewardAuditSink
from mastery_engine.learning_engine.srs.scheduler import (
    ReviewScheduler,
    is_due_for_review,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Recommendation helpers
# ============================================================================


def clamp_bloom_level(level: int, low: int | None = None, high: int | None = None) -> int:
    level = max(MIN_BLOOM_LEVEL, min(MAX_BLOOM_LEVEL, level))
    if low is not None:
        level = max(level, low)
    if high is not None:
        level = min(level, high)
    return level


def suggest_bloom_level(
    performance: TopicPerformance, advancement: float, review: float
) -> int:
    """
    Advance when the arm is mastered, hold when it is passable, else step back.

    An arm with no attempts holds its level.
    """
    level = performance.bloom_level
    if performance.attempts == 0:
        return level
    if performance.mastery_score >= advancement:
        return level + 1
    if performance.mastery_score >= review:
        return level
    return level - 1


def suggest_format(performance: TopicPerformance, bloom_level: int) -> str:
    """Most effective format so far, else a default for the Bloom level."""
    best_format = None
    best_effectiveness = -1.0
    for fmt, stats in performance.format_performance.items():
        if stats.attempts <= 0:
            continue
        effectiveness = (
            FORMAT_WEIGHT_ACCURACY.value * stats.accuracy
            + FORMAT_WEIGHT_CONFIDENCE.value * stats.avg_confidence
        )
        if effectiveness > best_effectiveness:
            best_format, best_effectiveness = fmt, effectiveness
    if best_format is not None:
        return best_format

    for max_level, fmt in BLOOM_DEFAULT_FORMATS.value:
        if bloom_level <= max_level:
            return fmt
    return BLOOM_DEFAULT_FORMATS.value[-1][1]


def expected_difficulty(mastery: float, bloom_level: int) -> str:
    if bloom_level >= DIFFICULTY_HARD_BLOOM.value:
        return "hard"
    if bloom_level >= DIFFICULTY_MEDIUM_BLOOM.value:
        return "medium"
    if mastery >= DIFFICULTY_EASY_MASTERY.value:
        return "easy"
    if mastery >= DIFFICULTY_MEDIUM_MASTERY.value:
        return "medium"
    return "hard"


def recommendation_score(
    performance: TopicPerformance, review_priority: float, config: RLConfig
) -> float:
    score = (
        RECOMMENDATION_WEIGHT_VALUE.value * performance.estimated_value
        + RECOMMENDATION_WEIGHT_REVIEW.value * review_priority
        + RECOMMENDATION_WEIGHT_EXPLORATION.value
        * performance.uncertainty
        * config.exploration_rate
    )
    return max(0.0, min(1.0, score))


def recommendation_reason(
    performance: TopicPerformance,
    is_due: bool,
    days_since: int | None,
    phase: Phase,
    advancement: float,
    review: float,
) -> str:
    """Human-readable reasons, joined with '; '."""
    reasons: list[str] = []

    if is_due:
        reasons.append("Due for spaced repetition review")
    elif days_since is not None and days_since >= REASON_STALE_DAYS.value:
        reasons.append(f"Haven't practiced in {days_since} days")

    if performance.attempts == 0:
        reasons.append("New topic - not yet practiced")
    elif performance.mastery_score < review:
        reasons.append(f"Needs improvement (below {review:.0f}% mastery)")
    elif performance.mastery_score >= advancement:
        reasons.append("Ready to advance to next level")

    if performance.confidence_calibration_error > REASON_CALIBRATION_ERROR.value:
        reasons.append("Confidence calibration needs work")

    if performance.attempts < REASON_LOW_DATA_ATTEMPTS.value:
        reasons.append("Limited practice data - exploring")

    if phase in (Phase.COLD_START, Phase.EXPLORATION):
        reasons.append("Exploration phase - gathering data")

    return "; ".join(reasons) or "Optimal learning progression"


def validate_options(options: RecommendationOptions) -> None:
    if options.count < 1:
        raise InvalidInput("count must be at least 1", {"count": options.count})
    for name in ("min_bloom_level", "max_bloom_level"):
        level = getattr(options, name)
        if level is not None and not (MIN_BLOOM_LEVEL <= level <= MAX_BLOOM_LEVEL):
            raise InvalidInput(f"{name} must be between 1 and 6", {name: level})
    if (
        options.min_bloom_level is not None
        and options.max_bloom_level is not None
        and options.min_bloom_level > options.max_bloom_level
    ):
        raise InvalidInput(
            "min_bloom_level cannot exceed max_bloom_level",
            {"min_bloom_level": options.min_bloom_level, "max_bloom_level": options.max_bloom_level},
        )


def build_candidate_pool(
    performances: list[TopicPerformance], topics: dict[str, TopicInfo]
) -> list[TopicPerformance]:
    """
    Unlocked arms plus a fresh level-1 arm for each untouched catalog topic.

    Args:
        performances: Learner's arms
        topics: Catalog by topic id

    Returns:
        Candidate arms, existing arms first, in input order
    """
    candidates = [p for p in performances if p.is_unlocked]
    touched = {p.topic_id for p in performances}
    for topic_id, topic in topics.items():
        if topic_id in touched:
            continue
        candidates.append(
            TopicPerformance(
                topic_id=topic_id,
                bloom_level=MIN_BLOOM_LEVEL,
                topic_name=topic.name,
                domain=topic.domain,
                full_path=topic.full_path,
                is_unlocked=True,
            )
        )
    return candidates


def filter_candidates(
    candidates: list[TopicPerformance],
    options: RecommendationOptions,
    topics: dict[str, TopicInfo],
) -> list[TopicPerformance]:
    filtered = []
    for candidate in candidates:
        if options.domain is not None:
            topic = topics.get(candidate.topic_id)
            domain = topic.domain if topic else candidate.domain
            if domain != options.domain:
                continue
        if options.min_bloom_level is not None and candidate.bloom_level < options.min_bloom_level:
            continue
        if options.max_bloom_level is not None and candidate.bloom_level > options.max_bloom_level:
            continue
        excluded = options.exclude_ids
        if candidate.topic_id in excluded or candidate.arm.key in excluded:
            continue
        if candidate.entity_id and candidate.entity_id in excluded:
            continue
        filtered.append(candidate)
    return filtered


# ============================================================================
# Orchestrator
# ============================================================================


@dataclass
class RankedRecommendations:
    """One ranking pass: the recommendations and the phase they came from."""

    phase: Phase
    config: RLConfig
    recommendations: list[TopicRecommendation]


class RecommendationOrchestrator:
    """Ranks arms for a learner."""

    def __init__(
        self,
        performance_repo: PerformanceRepository,
        review_repo: ReviewRepository,
        catalog: TopicCatalog,
        rng: random.Random | None = None,
        scheduler: ReviewScheduler | None = None,
        value_estimator: ValueEstimator | None = None,
        phase_controller: PhaseController | None = None,
    ):
        self.performance_repo = performance_repo
        self.review_repo = review_repo
        self.catalog = catalog
        self.selector = ArmSelector(rng)
        self.scheduler = scheduler or ReviewScheduler()
        self.value_estimator = value_estimator or ValueEstimator()
        self.phase_controller = phase_controller or PhaseController()

    def recommend(
        self,
        user_id: str,
        options: RecommendationOptions | None = None,
        now: datetime | None = None,
    ) -> list[TopicRecommendation]:
        """
        Recommend up to `options.count` arms, best first.

        Arms are drawn without replacement by the phase's selection
        algorithm. An arm whose topic is missing from the catalog is
        skipped and the batch continues.

        Args:
            user_id: Learner ID
            options: Filters, count and optional selection config override
            now: Reference time

        Returns:
            Recommendations sorted by score, descending

        Raises:
            InvalidInput: Invalid options
        """
        return self.rank(user_id, options, now).recommendations

    def rank(
        self,
        user_id: str,
        options: RecommendationOptions | None = None,
        now: datetime | None = None,
    ) -> RankedRecommendations:
        """Recommendations plus the phase and config they were selected under."""
        options = options or RecommendationOptions()
        validate_options(options)
        now = now or datetime.now(UTC)

        performances = self.performance_repo.get(user_id)
        topics = {topic.topic_id: topic for topic in self.catalog.get_topics()}

        phase = self.phase_controller.classify(performances)
        config = options.rl_config or self.phase_controller.rl_config(phase)

        pool = filter_candidates(build_candidate_pool(performances, topics), options, topics)
        pool = self.value_estimator.annotate(pool)
        if not pool:
            logger.info(f"No candidate arms for user {user_id}")
            return RankedRecommendations(phase=phase, config=config, recommendations=[])

        reviews = {item.entity_id: item for item in self.review_repo.get(user_id)}

        recommendations: list[TopicRecommendation] = []
        while pool and len(recommendations) < options.count:
            chosen = self.selector.select(pool, config)
            pool = [candidate for candidate in pool if candidate is not chosen]
            try:
                recommendations.append(
                    self._recommend_arm(chosen, topics, reviews, config, phase, options, now)
                )
            except MissingEntity as e:
                logger.warning(f"Skipping arm {chosen.arm.key} for user {user_id}: {e.message}")

        recommendations.sort(key=lambda rec: rec.recommendation_score, reverse=True)
        logger.info(
            f"Recommended {len(recommendations)} arms for user {user_id} "
            f"(phase={phase.value}, algorithm={config.algorithm.value})"
        )
        return RankedRecommendations(phase=phase, config=config, recommendations=recommendations)

    def _review_item(
        self, performance: TopicPerformance, reviews: dict[str, SpacedRepetitionItem], now: datetime
    ) -> SpacedRepetitionItem:
        item = reviews.get(performance.arm.key)
        if item is not None:
            return item
        return self.scheduler.initialize_item(
            performance.arm.key,
            performance.last_attempt_at or now,
            mastery_score=performance.mastery_score,
        )

    def _recommend_arm(
        self,
        performance: TopicPerformance,
        topics: dict[str, TopicInfo],
        reviews: dict[str, SpacedRepetitionItem],
        config: RLConfig,
        phase: Phase,
        options: RecommendationOptions,
        now: datetime,
    ) -> TopicRecommendation:
        topic = topics.get(performance.topic_id)
        if topic is None:
            raise MissingEntity(
                f"Topic {performance.topic_id} not found in catalog",
                {"topic_id": performance.topic_id},
            )

        sr_config = self.scheduler.config
        item = self._review_item(performance, reviews, now)
        priority = self.scheduler.review_priority(item, now)
        is_due = is_due_for_review(item, now)

        days_since = None
        if performance.time_since_last_review is not None:
            days_since = int(performance.time_since_last_review)

        suggested_level = clamp_bloom_level(
            suggest_bloom_level(
                performance,
                sr_config.mastery_threshold_for_advancement,
                sr_config.mastery_threshold_for_review,
            ),
            options.min_bloom_level,
            options.max_bloom_level,
        )

        return TopicRecommendation(
            arm=performance.arm,
            topic_name=topic.name,
            domain=topic.domain,
            full_path=topic.full_path,
            suggested_bloom_level=suggested_level,
            suggested_format=suggest_format(performance, suggested_level),
            recommendation_score=recommendation_score(performance, priority, config),
            reason=recommendation_reason(
                performance,
                is_due,
                days_since,
                phase,
                sr_config.mastery_threshold_for_advancement,
                sr_config.mastery_threshold_for_review,
            ),
            is_due_for_review=is_due,
            estimated_reward=performance.estimated_value,
            confidence=1.0 - performance.uncertainty,
            expected_difficulty=expected_difficulty(performance.mastery_score, suggested_level),
            current_mastery=performance.mastery_score,
            exploration_value=performance.uncertainty,
            exploitation_value=performance.estimated_value * (1.0 - performance.uncertainty),
            days_since_last_review=days_since,
        )


# ============================================================================
# Response processing
# ============================================================================


class Transaction(Protocol):
    """Unit of work. A SQLAlchemy Session satisfies this."""

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@dataclass
class SubmitResult:
    """Outcome of processing one response."""

    batch: MasteryUpdateBatch
    audit_results: list[AuditResult]
    attempts_made: int = 1


class ResponseService:
    """Applies answered questions to learner state."""

    MAX_ATTEMPTS = 2  # first try plus one retry on conflict

    def __init__(
        self,
        performance_repo: PerformanceRepository,
        coverage_repo: DimensionCoverageRepository,
        review_repo: ReviewRepository,
        transaction: Transaction,
        audit_sink: RewardAuditSink | None = None,
        tracker: MasteryTracker | None = None,
        scheduler: ReviewScheduler | None = None,
    ):
        self.performance_repo = performance_repo
        self.coverage_repo = coverage_repo
        self.review_repo = review_repo
        self.transaction = transaction
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.tracker = tracker or MasteryTracker()
        self.scheduler = scheduler or ReviewScheduler()

    def submit(self, user_id: str, response: ResponseEvent) -> SubmitResult:
        """
        Process a response: read, compute, write, commit, audit.

        The read-modify-write is retried once on ConcurrencyConflict.

        Args:
            user_id: Learner ID
            response: Answered question

        Returns:
            SubmitResult with the applied batch and audit outcomes

        Raises:
            InvalidInput: Malformed response
            ConcurrencyConflict: Conflict persisted after the retry
        """
        if response.answered_at is None:
            response = replace(response, answered_at=datetime.now(UTC))
        elif response.answered_at.tzinfo is None:
            response = replace(response, answered_at=response.answered_at.replace(tzinfo=UTC))

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                batch = self._apply(user_id, response)
                self.transaction.commit()
                break
            except ConcurrencyConflict:
                self.transaction.rollback()
                if attempt == self.MAX_ATTEMPTS:
                    logger.error(
                        f"Concurrency conflict persisted for user {user_id}, "
                        f"question {response.question_id}"
                    )
                    raise
                logger.warning(
                    f"Concurrency conflict for user {user_id}, "
                    f"question {response.question_id}; retrying"
                )
            except Exception:
                self.transaction.rollback()
                raise

        audit_results = [
            self.audit_sink.record(
                AuditEntry(
                    user_id=user_id,
                    topic_id=update.topic_id,
                    bloom_level=update.bloom_level,
                    question_id=response.question_id,
                    reward=update.reward,
                    created_at=response.answered_at,
                )
            )
            for update in batch.updates
        ]
        failed = [result for result in audit_results if not result.ok]
        if failed:
            logger.warning(f"{len(failed)} reward audit writes failed for user {user_id}")

        return SubmitResult(batch=batch, audit_results=audit_results, attempts_made=attempt)

    def _snapshot(self, user_id: str, response: ResponseEvent) -> LearnerSnapshot:
        snapshot = LearnerSnapshot(performances=self.performance_repo.get(user_id))
        for topic_id in dict.fromkeys(response.core_topics):
            snapshot.coverage[(topic_id, response.bloom_level)] = self.coverage_repo.get(
                user_id, topic_id, response.bloom_level
            )
        return snapshot

    def _apply(self, user_id: str, response: ResponseEvent) -> MasteryUpdateBatch:
        snapshot = self._snapshot(user_id, response)
        batch = self.tracker.process(response, snapshot)
        reviews = {item.entity_id: item for item in self.review_repo.get(user_id)}

        for update in batch.updates:
            self.performance_repo.upsert_mastery(
                user_id, update.topic_id, update.bloom_level, update.mastery_delta
            )
            if update.coverage is not None:
                self.coverage_repo.upsert(user_id, update.coverage)
            if update.unlocked_level is not None:
                self.performance_repo.upsert_mastery(
                    user_id, update.topic_id, update.unlocked_level, MasteryDelta.unlock_level()
                )

            performance = update.performance
            current = reviews.get(performance.arm.key) or self.scheduler.initialize_item(
                performance.arm.key, response.answered_at
            )
            self.review_repo.upsert(
                user_id, self.scheduler.schedule_next(current, performance, now=response.answered_at)
            )

        return batch
