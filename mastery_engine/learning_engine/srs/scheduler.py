"""
SM-2 review scheduler.

Grades a topic's current state into an SM-2 quality (0-5), advances the
review item, and plans review days under a daily cap.

Every function takes `now` explicitly (or derives it from its inputs), so
the same inputs always produce the same schedule.
"""

import logging
import math
from dataclasses import replace
from datetime import UTC, date, datetime, timedelta

from mastery_engine.learning_engine.config import (
    MAX_REVIEWS_PER_DAY,
    REVIEW_PRIORITY_DECAY_PER_DAY,
    REVIEW_PRIORITY_DUE_SOON,
    REVIEW_PRIORITY_DUE_TOMORROW,
    REVIEW_PRIORITY_OVERDUE_BASE,
    REVIEW_PRIORITY_OVERDUE_PER_DAY,
    REVIEW_PRIORITY_SOON_DAYS,
    SM2_EF_BASE_INCREMENT,
    SM2_EF_LINEAR_PENALTY,
    SM2_EF_QUADRATIC_PENALTY,
    SM2_PASSING_QUALITY,
    SR_CALIBRATION_PENALTY,
    SR_QUALITY_THRESHOLDS,
    TREND_ADJUSTMENT_FACTOR,
    TREND_ADJUSTMENT_THRESHOLD,
    UPCOMING_REVIEW_DAYS,
)
from mastery_engine.learning_engine.contracts import (
    ScheduledReview,
    SpacedRepetitionConfig,
    SpacedRepetitionItem,
    TopicPerformance,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
MAX_QUALITY = 5


def round_half_up(value: float) -> int:
    """Nearest whole day, halves rounded up."""
    return math.floor(value + 0.5)


def calculate_quality(performance: TopicPerformance) -> int:
    """
    Map mastery to an SM-2 quality grade.

    Mastery is first reduced by 20 points per unit of calibration error.

    Args:
        performance: Arm state

    Returns:
        Quality 0-5
    """
    adjusted = max(
        0.0,
        performance.mastery_score
        - performance.confidence_calibration_error * SR_CALIBRATION_PENALTY.value,
    )
    for threshold, quality in SR_QUALITY_THRESHOLDS.value:
        if adjusted >= threshold:
            return quality
    return 0


def calculate_ease_factor(ease_factor: float, quality: int, min_ease_factor: float) -> float:
    """
    SM-2 ease factor update, floored at `min_ease_factor`.

    EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
    """
    miss = MAX_QUALITY - quality
    new_ef = ease_factor + (
        SM2_EF_BASE_INCREMENT.value
        - miss * (SM2_EF_LINEAR_PENALTY.value + miss * SM2_EF_QUADRATIC_PENALTY.value)
    )
    return max(min_ease_factor, new_ef)


def days_since_last_review(item: SpacedRepetitionItem, now: datetime) -> int:
    """Whole days since the last review (floored)."""
    return math.floor((now - item.last_review_date).total_seconds() / SECONDS_PER_DAY)


def days_until_next_review(item: SpacedRepetitionItem, now: datetime) -> int:
    """Days until the next review (ceiling); zero or negative when due."""
    return math.ceil((item.next_review_date - now).total_seconds() / SECONDS_PER_DAY)


def is_due_for_review(item: SpacedRepetitionItem, now: datetime) -> bool:
    return now >= item.next_review_date


class ReviewScheduler:
    """SM-2 variant scheduler."""

    def __init__(self, config: SpacedRepetitionConfig | None = None):
        self.config = config or SpacedRepetitionConfig()

    def initialize_item(
        self, entity_id: str, now: datetime, mastery_score: float = 0.0
    ) -> SpacedRepetitionItem:
        """New review item, first due after `first_interval` days."""
        return SpacedRepetitionItem(
            entity_id=entity_id,
            interval=self.config.first_interval,
            ease_factor=self.config.ease_factor,
            repetitions=0,
            last_review_date=now,
            next_review_date=now + timedelta(days=self.config.first_interval),
            mastery_score=mastery_score,
        )

    def schedule_next(
        self,
        item: SpacedRepetitionItem,
        performance: TopicPerformance,
        now: datetime | None = None,
    ) -> SpacedRepetitionItem:
        """
        Advance a review item after practice.

        Args:
            item: Current review state
            performance: Arm state after the practice
            now: Review time; defaults to the performance's last attempt,
                else the item's last review date

        Returns:
            New review item (the input is not modified)
        """
        if now is None:
            now = performance.last_attempt_at or item.last_review_date

        quality = calculate_quality(performance)
        ease_factor = calculate_ease_factor(item.ease_factor, quality, self.config.min_ease_factor)

        if quality < SM2_PASSING_QUALITY.value:
            repetitions = 0
            interval = self.config.first_interval
        else:
            repetitions = item.repetitions + 1
            if repetitions == 1:
                interval = self.config.first_interval
            elif repetitions == 2:
                interval = self.config.second_interval
            else:
                interval = round_half_up(item.interval * ease_factor)

        return SpacedRepetitionItem(
            entity_id=item.entity_id,
            interval=interval,
            ease_factor=ease_factor,
            repetitions=repetitions,
            last_review_date=now,
            next_review_date=now + timedelta(days=interval),
            mastery_score=performance.mastery_score,
        )

    def review_priority(self, item: SpacedRepetitionItem, now: datetime) -> float:
        """
        Priority in [0, 1]; overdue items rank highest.

        Args:
            item: Review item
            now: Current time

        Returns:
            Priority
        """
        days_until = days_until_next_review(item, now)

        if days_until <= 0:
            days_overdue = abs(days_until)
            return min(
                1.0,
                REVIEW_PRIORITY_OVERDUE_BASE.value
                + days_overdue * REVIEW_PRIORITY_OVERDUE_PER_DAY.value,
            )
        if days_until <= 1:
            return REVIEW_PRIORITY_DUE_TOMORROW.value
        if days_until <= REVIEW_PRIORITY_SOON_DAYS.value:
            return REVIEW_PRIORITY_DUE_SOON.value
        return max(
            0.0,
            REVIEW_PRIORITY_DUE_SOON.value - days_until * REVIEW_PRIORITY_DECAY_PER_DAY.value,
        )

    def get_due_items(
        self, items: list[SpacedRepetitionItem], now: datetime
    ) -> list[SpacedRepetitionItem]:
        return [item for item in items if is_due_for_review(item, now)]

    def get_upcoming_reviews(
        self,
        items: list[SpacedRepetitionItem],
        now: datetime,
        days_ahead: int = UPCOMING_REVIEW_DAYS.value,
    ) -> list[SpacedRepetitionItem]:
        """Items not yet due but due within `days_ahead` days."""
        horizon = now + timedelta(days=days_ahead)
        return [item for item in items if now < item.next_review_date <= horizon]

    def adjust_interval_for_trend(
        self, item: SpacedRepetitionItem, current_mastery: float, previous_mastery: float
    ) -> int:
        """Stretch the interval by 20% on a big mastery gain, shrink it on a big loss."""
        change = current_mastery - previous_mastery
        if change > TREND_ADJUSTMENT_THRESHOLD.value:
            return round_half_up(item.interval * (1 + TREND_ADJUSTMENT_FACTOR.value))
        if change < -TREND_ADJUSTMENT_THRESHOLD.value:
            return round_half_up(item.interval * (1 - TREND_ADJUSTMENT_FACTOR.value))
        return item.interval

    def create_review_schedule(
        self,
        items: list[SpacedRepetitionItem],
        now: datetime | None = None,
        max_reviews_per_day: int = MAX_REVIEWS_PER_DAY.value,
    ) -> list[ScheduledReview]:
        """
        Assign review days under a daily cap.

        Items are taken in descending priority (stable for ties). Each goes
        on its due day, or today if overdue; a full day pushes it to the next.

        Args:
            items: Review items
            now: Planning time
            max_reviews_per_day: Daily cap (>=1)

        Returns:
            Scheduled reviews in planning order
        """
        if now is None:
            now = datetime.now(UTC)
        cap = max(1, max_reviews_per_day)

        prioritized = sorted(
            ((self.review_priority(item, now), item) for item in items),
            key=lambda pair: pair[0],
            reverse=True,
        )

        per_day: dict[date, int] = {}
        schedule: list[ScheduledReview] = []
        for priority, item in prioritized:
            target = max(item.next_review_date, now)
            while per_day.get(target.date(), 0) >= cap:
                target += timedelta(days=1)
            per_day[target.date()] = per_day.get(target.date(), 0) + 1
            schedule.append(ScheduledReview(item=item, scheduled_for=target, priority=priority))

        logger.debug(f"Planned {len(schedule)} reviews across {len(per_day)} days (cap {cap})")
        return schedule

    def with_trend(
        self, item: SpacedRepetitionItem, current_mastery: float, previous_mastery: float
    ) -> SpacedRepetitionItem:
        """Item with its interval and next review date adjusted for the mastery trend."""
        interval = self.adjust_interval_for_trend(item, current_mastery, previous_mastery)
        if interval == item.interval:
            return item
        return replace(
            item,
            interval=interval,
            next_review_date=item.last_review_date + timedelta(days=interval),
        )
