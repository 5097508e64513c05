"""
Mastery tracking for answered questions.

One response can declare several core topics. For each of them the tracker
computes the new arm state, the dimension coverage change, whether the next
Bloom level unlocks, and the reward. Nothing is written here: the caller
applies the returned batch in one transaction.
"""

import logging
from datetime import UTC, datetime

from mastery_engine.core.errors import InvalidInput
from mastery_engine.learning_engine.config import (
    DIMENSION_SCORE_CORRECT,
    DIMENSION_SCORE_INCORRECT,
    MASTERY_LEARNING_RATES,
)
from mastery_engine.learning_engine.constants import (
    MAX_BLOOM_LEVEL,
    MIN_BLOOM_LEVEL,
    REQUIRED_DIMENSIONS,
    Dimension,
)
from mastery_engine.learning_engine.contracts import (
    DimensionCoverage,
    FormatStats,
    LearnerSnapshot,
    MasteryDelta,
    MasteryUpdateBatch,
    ResponseEvent,
    RewardInput,
    TopicPerformance,
    TopicUpdate,
)
from mastery_engine.learning_engine.reward.core import RewardCalculator

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


def normalize_confidence(confidence: int) -> float:
    """Map confidence 1-3 onto [0, 1]."""
    return (confidence - 1) / 2.0


def update_mastery_score(
    mastery: float, is_correct: bool, confidence: int, weight: float = 1.0
) -> float:
    """
    Exponential moving average towards 100 (correct) or 0 (incorrect).

    Args:
        mastery: Current mastery [0,100]
        is_correct: Whether the answer was correct
        confidence: Confidence 1-3; higher moves faster
        weight: Topic weight for multi-topic questions

    Returns:
        New mastery, clamped to [0, 100]
    """
    rate = MASTERY_LEARNING_RATES.value[confidence]
    target = 100.0 if is_correct else 0.0
    new_mastery = mastery + rate * (target - mastery) * weight
    return max(0.0, min(100.0, new_mastery))


def rolling_mean(mean: float, count: int, sample: float) -> float:
    return (mean * count + sample) / (count + 1)


def update_coverage(
    coverage: DimensionCoverage | None,
    topic_id: str,
    bloom_level: int,
    dimension: Dimension,
    question_id: str,
    is_correct: bool,
    now: datetime,
) -> DimensionCoverage:
    """
    Coverage after one answer in a dimension.

    The question id joins the unique set (a repeat leaves it unchanged);
    the average moves by one binary sample.
    """
    if coverage is None:
        coverage = DimensionCoverage(topic_id=topic_id, bloom_level=bloom_level, dimension=dimension)

    score = DIMENSION_SCORE_CORRECT.value if is_correct else DIMENSION_SCORE_INCORRECT.value
    return DimensionCoverage(
        topic_id=topic_id,
        bloom_level=bloom_level,
        dimension=dimension,
        times_tested=coverage.times_tested + 1,
        unique_questions_answered=coverage.unique_questions_answered | {question_id},
        average_score=rolling_mean(coverage.average_score, coverage.times_tested, score),
        last_tested_at=now,
    )


def dimensions_complete(coverage: dict[Dimension, DimensionCoverage]) -> bool:
    """All required dimensions have been answered correctly at least once."""
    return all(
        dimension in coverage and coverage[dimension].average_score > 0
        for dimension in REQUIRED_DIMENSIONS
    )


def validate_response(response: ResponseEvent) -> None:
    if not response.question_id:
        raise InvalidInput("Response is missing a question id")
    if not response.core_topics:
        raise InvalidInput(
            "Response must declare at least one core topic", {"question_id": response.question_id}
        )
    if response.confidence not in MASTERY_LEARNING_RATES.value:
        raise InvalidInput("Confidence must be 1, 2 or 3", {"confidence": response.confidence})
    if not (MIN_BLOOM_LEVEL <= response.bloom_level <= MAX_BLOOM_LEVEL):
        raise InvalidInput(
            "Bloom level must be between 1 and 6", {"bloom_level": response.bloom_level}
        )
    for topic_id, weight in (response.topic_weights or {}).items():
        if not (0.0 <= weight <= 1.0):
            raise InvalidInput(
                "Topic weight must be in [0, 1]", {"topic_id": topic_id, "weight": weight}
            )


class MasteryTracker:
    """Turns a response into the updates it implies."""

    def __init__(self, reward_calculator: RewardCalculator | None = None):
        self.reward_calculator = reward_calculator or RewardCalculator()

    def process(self, response: ResponseEvent, snapshot: LearnerSnapshot) -> MasteryUpdateBatch:
        """
        Compute updates for every core topic of a response.

        Args:
            response: The answered question
            snapshot: Learner state read once before processing

        Returns:
            Batch with one TopicUpdate per distinct core topic, in order

        Raises:
            InvalidInput: Malformed response
        """
        validate_response(response)
        now = response.answered_at or datetime.now(UTC)

        batch = MasteryUpdateBatch(question_id=response.question_id)
        for topic_id in dict.fromkeys(response.core_topics):
            batch.updates.append(self._process_topic(topic_id, response, snapshot, now))

        unlocked = [u.unlocked_level for u in batch.updates if u.unlocked]
        logger.info(
            f"Processed question {response.question_id}: {len(batch.updates)} topics, "
            f"total reward {batch.total_reward:.3f}, unlocked levels {unlocked}"
        )
        return batch

    def _process_topic(
        self,
        topic_id: str,
        response: ResponseEvent,
        snapshot: LearnerSnapshot,
        now: datetime,
    ) -> TopicUpdate:
        level = response.bloom_level
        existing = snapshot.find(topic_id, level)
        perf = existing or TopicPerformance(
            topic_id=topic_id, bloom_level=level, is_unlocked=(level == MIN_BLOOM_LEVEL)
        )

        days_since = None
        if perf.last_attempt_at is not None:
            days_since = max(0.0, (now - perf.last_attempt_at).total_seconds() / SECONDS_PER_DAY)

        reward = self.reward_calculator.compute(
            RewardInput(
                is_correct=response.is_correct,
                confidence=response.confidence,
                current_mastery=perf.mastery_score,
                days_since_last_practice=days_since,
                recognition_method=response.recognition_method,
                response_time_seconds=response.response_time_seconds,
                bloom_level=level,
                question_text=response.question_text,
                options=response.options,
                question_format=response.question_format,
                current_streak=perf.current_streak,
            )
        )

        weight = (response.topic_weights or {}).get(topic_id, 1.0)
        confidence = normalize_confidence(response.confidence)
        correctness = 1.0 if response.is_correct else 0.0

        delta = MasteryDelta(
            attempts_delta=1,
            correct_delta=int(response.is_correct),
            mastery_score=update_mastery_score(
                perf.mastery_score, response.is_correct, response.confidence, weight
            ),
            average_confidence=rolling_mean(perf.average_confidence, perf.attempts, confidence),
            confidence_calibration_error=rolling_mean(
                perf.confidence_calibration_error, perf.attempts, abs(confidence - correctness)
            ),
            current_streak=perf.current_streak + 1 if response.is_correct else 0,
            last_attempt_at=now,
            question_format=response.question_format,
            confidence=confidence,
            expected_version=existing.version if existing else None,
        )
        updated = apply_delta(perf, delta)

        coverage = None
        level_coverage = dict(snapshot.coverage.get((topic_id, level), {}))
        if response.dimension is not None:
            coverage = update_coverage(
                level_coverage.get(response.dimension),
                topic_id,
                level,
                response.dimension,
                response.question_id,
                response.is_correct,
                now,
            )
            level_coverage[response.dimension] = coverage

        unlocked_level = None
        if level < MAX_BLOOM_LEVEL and dimensions_complete(level_coverage):
            next_perf = snapshot.find(topic_id, level + 1)
            if next_perf is None or (next_perf.attempts == 0 and not next_perf.is_unlocked):
                unlocked_level = level + 1
                logger.info(f"Unlocking {topic_id} Bloom level {unlocked_level}")

        return TopicUpdate(
            topic_id=topic_id,
            bloom_level=level,
            mastery_delta=delta,
            performance=updated,
            reward=reward,
            coverage=coverage,
            unlocked_level=unlocked_level,
        )


def apply_delta(perf: TopicPerformance, delta: MasteryDelta) -> TopicPerformance:
    """
    Arm state after a delta. Repositories use this to persist the same
    arithmetic the tracker reports.
    """
    changes: dict = {
        "attempts": perf.attempts + delta.attempts_delta,
        "correct_answers": perf.correct_answers + delta.correct_delta,
    }
    if delta.mastery_score is not None:
        changes["mastery_score"] = delta.mastery_score
    if delta.average_confidence is not None:
        changes["average_confidence"] = delta.average_confidence
    if delta.confidence_calibration_error is not None:
        changes["confidence_calibration_error"] = delta.confidence_calibration_error
    if delta.current_streak is not None:
        changes["current_streak"] = delta.current_streak
    if delta.last_attempt_at is not None:
        changes["last_attempt_at"] = delta.last_attempt_at
        changes["time_since_last_review"] = 0.0
    if delta.unlock:
        changes["is_unlocked"] = True

    updated = perf.copy(**changes)
    if delta.mastery_score is not None:
        updated.bloom_level_scores[perf.bloom_level] = delta.mastery_score

    if delta.question_format is not None and delta.attempts_delta:
        stats = updated.format_performance.get(delta.question_format, FormatStats())
        updated.format_performance[delta.question_format] = FormatStats(
            attempts=stats.attempts + delta.attempts_delta,
            correct=stats.correct + delta.correct_delta,
            avg_confidence=rolling_mean(
                stats.avg_confidence, stats.attempts, delta.confidence or 0.0
            ),
        )
    return updated
