"""
Reward computation for a single answered question.

The reward is a sum of independent components:
- correctness, scaled by how the answer was reached (recognition method)
- confidence calibration
- streak bonus
- recency (spacing) bonus
- response time relative to a reading + thinking baseline
- engagement penalty for questions far too easy or too hard

Pure functions only; auditing lives in `reward.audit`.
"""

import math

from mastery_engine.core.errors import InvalidInput
from mastery_engine.learning_engine.config import (
    BLOOM_THINKING_SECONDS,
    CALIBRATION_REWARDS,
    ENGAGEMENT_PENALTY,
    ENGAGEMENT_TOO_EASY_MASTERY,
    ENGAGEMENT_TOO_HARD_MASTERY,
    FORMAT_TIME_MULTIPLIERS,
    READING_WORDS_PER_MINUTE,
    RECENCY_BONUS_TIERS,
    RECOGNITION_MULTIPLIERS,
    RESPONSE_TIME_CORRECT_TIERS,
    RESPONSE_TIME_RUSHED_PENALTY,
    RESPONSE_TIME_RUSHED_RATIO,
    RESPONSE_TIME_SLOW_PENALTY,
    REWARD_CORRECT,
    REWARD_INCORRECT,
    REWARD_RANGE,
    STREAK_BONUS_CAP,
    STREAK_BONUS_PER_ANSWER,
)
from mastery_engine.learning_engine.constants import (
    MAX_BLOOM_LEVEL,
    MIN_BLOOM_LEVEL,
    QuestionFormat,
    RecognitionMethod,
)
from mastery_engine.learning_engine.contracts import RewardComponents, RewardInput


def validate_reward_input(reward_input: RewardInput) -> None:
    """
    Reject inputs outside the accepted domain.

    Raises:
        InvalidInput: With the offending field in details
    """
    if reward_input.confidence not in (1, 2, 3):
        raise InvalidInput(
            "Confidence must be 1, 2 or 3", {"confidence": reward_input.confidence}
        )
    if not (MIN_BLOOM_LEVEL <= reward_input.bloom_level <= MAX_BLOOM_LEVEL):
        raise InvalidInput(
            "Bloom level must be between 1 and 6", {"bloom_level": reward_input.bloom_level}
        )
    if reward_input.recognition_method not in {m.value for m in RecognitionMethod}:
        raise InvalidInput(
            f"Unknown recognition method: {reward_input.recognition_method}",
            {"recognition_method": reward_input.recognition_method},
        )
    if reward_input.question_format not in {f.value for f in QuestionFormat}:
        raise InvalidInput(
            f"Unknown question format: {reward_input.question_format}",
            {"question_format": reward_input.question_format},
        )
    if not (
        math.isfinite(reward_input.response_time_seconds)
        and reward_input.response_time_seconds >= 0
    ):
        raise InvalidInput(
            "Response time must be a non-negative number",
            {"response_time_seconds": reward_input.response_time_seconds},
        )
    if reward_input.current_streak < 0:
        raise InvalidInput("Streak cannot be negative", {"current_streak": reward_input.current_streak})
    days = reward_input.days_since_last_practice
    if days is not None and not (math.isfinite(days) and days >= 0):
        raise InvalidInput(
            "Days since last practice must be a non-negative number",
            {"days_since_last_practice": days},
        )
    if not math.isfinite(reward_input.current_mastery):
        raise InvalidInput(
            "Current mastery must be finite", {"current_mastery": reward_input.current_mastery}
        )


def calibration_reward(is_correct: bool, confidence: int) -> float:
    """Reward confident-correct and unconfident-incorrect answers."""
    return CALIBRATION_REWARDS.value[(confidence, is_correct)]


def streak_bonus(is_correct: bool, current_streak: int) -> float:
    if not is_correct:
        return 0.0
    return min(STREAK_BONUS_PER_ANSWER.value * current_streak, STREAK_BONUS_CAP.value)


def recency_bonus(is_correct: bool, days_since_last_practice: float | None) -> float:
    """Correct answers after a longer gap are worth more (spacing effect)."""
    if not is_correct or days_since_last_practice is None:
        return 0.0
    for min_days, bonus in RECENCY_BONUS_TIERS.value:
        if days_since_last_practice >= min_days:
            return bonus
    return 0.0


def expected_response_seconds(
    question_text: str, options: tuple[str, ...], bloom_level: int, question_format: str
) -> float:
    """
    Baseline time to answer a question.

    Reading time for the stem and options at 200 words per minute, plus
    thinking time for the Bloom level, scaled by the format.

    Args:
        question_text: Question stem
        options: Answer options
        bloom_level: Bloom level (1-6)
        question_format: Question format

    Returns:
        Expected seconds (>0)
    """
    words = len(question_text.split()) + sum(len(option.split()) for option in options)
    reading = words / READING_WORDS_PER_MINUTE.value * 60.0
    thinking = BLOOM_THINKING_SECONDS.value[bloom_level]
    return (reading + thinking) * FORMAT_TIME_MULTIPLIERS.value.get(question_format, 1.0)


def response_time_reward(
    is_correct: bool, response_time_seconds: float, expected_seconds: float
) -> float:
    ratio = response_time_seconds / expected_seconds

    if not is_correct:
        return RESPONSE_TIME_RUSHED_PENALTY.value if ratio < RESPONSE_TIME_RUSHED_RATIO.value else 0.0

    (fast_ratio, fast_reward), (normal_ratio, normal_reward), (slow_ratio, slow_reward) = (
        RESPONSE_TIME_CORRECT_TIERS.value
    )
    if ratio < fast_ratio:
        return fast_reward
    if ratio <= normal_ratio:
        return normal_reward
    if ratio <= slow_ratio:
        return slow_reward
    return RESPONSE_TIME_SLOW_PENALTY.value


def engagement_reward(is_correct: bool, current_mastery: float) -> float:
    """Penalize questions that were far too easy or far too hard."""
    if is_correct and current_mastery > ENGAGEMENT_TOO_EASY_MASTERY.value:
        return ENGAGEMENT_PENALTY.value
    if not is_correct and current_mastery < ENGAGEMENT_TOO_HARD_MASTERY.value:
        return ENGAGEMENT_PENALTY.value
    return 0.0


class RewardCalculator:
    """Maps a response to a reward breakdown."""

    def compute(self, reward_input: RewardInput) -> RewardComponents:
        """
        Compute the reward breakdown for one response.

        Args:
            reward_input: The response and its context

        Returns:
            RewardComponents; `total` is the sum of the components

        Raises:
            InvalidInput: If the input is outside the accepted domain
        """
        validate_reward_input(reward_input)

        is_correct = reward_input.is_correct
        multiplier = RECOGNITION_MULTIPLIERS.value[reward_input.recognition_method]
        base = REWARD_CORRECT.value if is_correct else REWARD_INCORRECT.value

        expected = expected_response_seconds(
            reward_input.question_text,
            reward_input.options,
            reward_input.bloom_level,
            reward_input.question_format,
        )

        return RewardComponents(
            correctness=base * multiplier,
            calibration=calibration_reward(is_correct, reward_input.confidence),
            streak=streak_bonus(is_correct, reward_input.current_streak),
            recency=recency_bonus(is_correct, reward_input.days_since_last_practice),
            response_time=response_time_reward(
                is_correct, reward_input.response_time_seconds, expected
            ),
            engagement=engagement_reward(is_correct, reward_input.current_mastery),
            recognition_multiplier=multiplier,
        )


def normalize_reward(total: float) -> float:
    """Map a total reward onto [0, 1] for posterior updates."""
    low, high = REWARD_RANGE.value
    if math.isnan(total):
        return 0.0
    return max(0.0, min(1.0, (total - low) / (high - low)))


def describe_reward(components: RewardComponents) -> str:
    """Short human-readable summary of a reward breakdown."""
    parts: list[str] = []

    if components.correctness > 0:
        if components.recognition_multiplier < 1.0:
            parts.append("Correct, but not from memory")
        else:
            parts.append("Correct from memory")
    else:
        parts.append("Incorrect")

    if components.calibration > 0:
        parts.append("well-calibrated confidence")
    elif components.calibration < 0:
        parts.append("confidence calibration needs work")

    if components.streak > 0:
        parts.append("streak bonus")
    if components.recency > 0:
        parts.append("spaced retrieval bonus")
    if components.response_time > 0:
        parts.append("fluent response")
    elif components.response_time < 0:
        parts.append("response time off baseline")
    if components.engagement < 0:
        parts.append("question difficulty mismatched")

    return f"{', '.join(parts)} (total {components.total:+.2f})"
