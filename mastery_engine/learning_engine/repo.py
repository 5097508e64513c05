"""
Repository layer for the learning engine.

The engine depends only on the Protocols below. The SQLAlchemy classes
implement them over a sync Session and translate rows into contracts.

Writes go through get/upsert primitives. Rows carry a version counter:
a delta computed against a stale version, or an UPDATE racing another
writer, surfaces as ConcurrencyConflict.
"""

import logging
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mastery_engine.core.errors import ConcurrencyConflict
from mastery_engine.learning_engine.constants import MIN_BLOOM_LEVEL, Dimension
from mastery_engine.learning_engine.contracts import (
    DimensionCoverage,
    FormatStats,
    MasteryDelta,
    SpacedRepetitionItem,
    TopicInfo,
    TopicPerformance,
)
from mastery_engine.learning_engine.mastery.tracker import apply_delta
from mastery_engine.models.learning import (
    DimensionCoverageRecord,
    ReviewScheduleItem,
    Topic,
    TopicMastery,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


# ============================================================================
# Contracts
# ============================================================================


class PerformanceRepository(Protocol):
    def get(self, user_id: str) -> list[TopicPerformance]: ...

    def upsert_mastery(
        self, user_id: str, topic_id: str, bloom_level: int, delta: MasteryDelta
    ) -> TopicPerformance: ...

    def reset(self, user_id: str, topic_id: str | None = None) -> int: ...


class DimensionCoverageRepository(Protocol):
    def get(
        self, user_id: str, topic_id: str, bloom_level: int
    ) -> dict[Dimension, DimensionCoverage]: ...

    def upsert(self, user_id: str, coverage: DimensionCoverage) -> None: ...


class ReviewRepository(Protocol):
    def get(self, user_id: str) -> list[SpacedRepetitionItem]: ...

    def upsert(self, user_id: str, item: SpacedRepetitionItem) -> None: ...


class TopicCatalog(Protocol):
    def get_topics(self) -> list[TopicInfo]: ...


# ============================================================================
# Helpers
# ============================================================================


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _flush(db: Session, what: str) -> None:
    try:
        db.flush()
    except (StaleDataError, IntegrityError) as e:
        raise ConcurrencyConflict(f"Concurrent update of {what}", {"error": str(e)}) from e


def _row_to_performance(row: TopicMastery, now: datetime) -> TopicPerformance:
    last_attempt = as_utc(row.last_attempt_at)
    days_since = None
    if last_attempt is not None:
        days_since = max(0.0, (now - last_attempt).total_seconds() / SECONDS_PER_DAY)

    return TopicPerformance(
        topic_id=row.topic_id,
        bloom_level=row.bloom_level,
        attempts=row.attempts,
        correct_answers=row.correct_answers,
        mastery_score=row.mastery_score,
        average_confidence=row.average_confidence,
        confidence_calibration_error=row.confidence_calibration_error,
        current_streak=row.current_streak,
        is_unlocked=row.is_unlocked,
        format_performance={
            fmt: FormatStats(**stats) for fmt, stats in (row.format_performance or {}).items()
        },
        last_attempt_at=last_attempt,
        time_since_last_review=days_since,
        version=row.version_id,
    )


# ============================================================================
# SQLAlchemy implementations
# ============================================================================


class SqlPerformanceRepository:
    """Performance rows in topic_mastery, enriched from the topic catalog."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str, now: datetime | None = None) -> list[TopicPerformance]:
        """
        All arms the learner has touched or unlocked.

        Args:
            user_id: Learner ID
            now: Reference time for time_since_last_review

        Returns:
            Performances ordered by topic then Bloom level
        """
        now = now or datetime.now(UTC)
        rows = self.db.execute(
            select(TopicMastery, Topic)
            .outerjoin(Topic, Topic.id == TopicMastery.topic_id)
            .where(TopicMastery.user_id == user_id)
            .order_by(TopicMastery.topic_id, TopicMastery.bloom_level)
        ).all()

        performances = []
        for mastery_row, topic in rows:
            perf = _row_to_performance(mastery_row, now)
            if topic is not None:
                perf.topic_name = topic.name
                perf.domain = topic.domain
                perf.full_path = topic.full_path
            performances.append(perf)

        # Topic-level views: scores per level and highest unlocked level
        by_topic: dict[str, list[TopicPerformance]] = {}
        for perf in performances:
            by_topic.setdefault(perf.topic_id, []).append(perf)
        for arms in by_topic.values():
            scores = {p.bloom_level: p.mastery_score for p in arms if p.attempts > 0}
            unlocked = [p.bloom_level for p in arms if p.is_unlocked]
            current = max(unlocked, default=MIN_BLOOM_LEVEL)
            for perf in arms:
                perf.bloom_level_scores = dict(scores)
                perf.current_bloom_level = current

        return performances

    def upsert_mastery(
        self, user_id: str, topic_id: str, bloom_level: int, delta: MasteryDelta
    ) -> TopicPerformance:
        """
        Apply a delta to one arm, creating the row on first touch.

        Raises:
            ConcurrencyConflict: The row changed since the delta was computed
        """
        row = self.db.execute(
            select(TopicMastery).where(
                TopicMastery.user_id == user_id,
                TopicMastery.topic_id == topic_id,
                TopicMastery.bloom_level == bloom_level,
            )
        ).scalar_one_or_none()

        if row is None:
            if delta.expected_version is not None:
                raise ConcurrencyConflict(
                    "Performance row disappeared before update",
                    {"topic_id": topic_id, "bloom_level": bloom_level},
                )
            row = TopicMastery(
                user_id=user_id,
                topic_id=topic_id,
                bloom_level=bloom_level,
                attempts=0,
                correct_answers=0,
                mastery_score=0.0,
                average_confidence=0.0,
                confidence_calibration_error=0.0,
                current_streak=0,
                is_unlocked=bloom_level == MIN_BLOOM_LEVEL,
                format_performance={},
            )
            self.db.add(row)
        elif delta.expected_version is None and delta.attempts_delta:
            # Delta was computed from a snapshot without this row
            raise ConcurrencyConflict(
                "Performance row was created concurrently",
                {
                    "topic_id": topic_id,
                    "bloom_level": bloom_level,
                    "actual_version": row.version_id,
                },
            )
        elif delta.expected_version is not None and row.version_id != delta.expected_version:
            raise ConcurrencyConflict(
                "Performance row was modified concurrently",
                {
                    "topic_id": topic_id,
                    "bloom_level": bloom_level,
                    "expected_version": delta.expected_version,
                    "actual_version": row.version_id,
                },
            )

        current = _row_to_performance(row, datetime.now(UTC)) if row.version_id else None
        updated = apply_delta(
            current or TopicPerformance(topic_id, bloom_level, is_unlocked=row.is_unlocked), delta
        )

        row.attempts = updated.attempts
        row.correct_answers = updated.correct_answers
        row.mastery_score = updated.mastery_score
        row.average_confidence = updated.average_confidence
        row.confidence_calibration_error = updated.confidence_calibration_error
        row.current_streak = updated.current_streak
        row.is_unlocked = updated.is_unlocked
        row.last_attempt_at = updated.last_attempt_at
        # New dict so the JSON column registers the change
        row.format_performance = {
            fmt: stats.to_dict() for fmt, stats in updated.format_performance.items()
        }

        _flush(self.db, f"{topic_id}:{bloom_level}")
        updated.version = row.version_id
        return updated

    def reset(self, user_id: str, topic_id: str | None = None) -> int:
        """
        Delete a learner's progress, optionally for one topic only.

        Removes performance, coverage and review rows.

        Returns:
            Number of performance rows deleted
        """
        mastery_stmt = delete(TopicMastery).where(TopicMastery.user_id == user_id)
        coverage_stmt = delete(DimensionCoverageRecord).where(
            DimensionCoverageRecord.user_id == user_id
        )
        review_stmt = delete(ReviewScheduleItem).where(ReviewScheduleItem.user_id == user_id)

        if topic_id is not None:
            mastery_stmt = mastery_stmt.where(TopicMastery.topic_id == topic_id)
            coverage_stmt = coverage_stmt.where(DimensionCoverageRecord.topic_id == topic_id)
            review_stmt = review_stmt.where(
                ReviewScheduleItem.entity_id.startswith(f"{topic_id}:", autoescape=True)
            )

        deleted = self.db.execute(mastery_stmt).rowcount
        self.db.execute(coverage_stmt)
        self.db.execute(review_stmt)

        logger.info(
            f"Reset progress for user {user_id}"
            + (f" topic {topic_id}" if topic_id else "")
            + f": {deleted} arms removed"
        )
        return deleted


class SqlDimensionCoverageRepository:
    """Coverage rows in dimension_coverage."""

    def __init__(self, db: Session):
        self.db = db

    def get(
        self, user_id: str, topic_id: str, bloom_level: int
    ) -> dict[Dimension, DimensionCoverage]:
        rows = self.db.execute(
            select(DimensionCoverageRecord).where(
                DimensionCoverageRecord.user_id == user_id,
                DimensionCoverageRecord.topic_id == topic_id,
                DimensionCoverageRecord.bloom_level == bloom_level,
            )
        ).scalars()

        coverage = {}
        for row in rows:
            dimension = Dimension(row.dimension)
            coverage[dimension] = DimensionCoverage(
                topic_id=row.topic_id,
                bloom_level=row.bloom_level,
                dimension=dimension,
                times_tested=row.times_tested,
                unique_questions_answered=set(row.unique_questions_answered or []),
                average_score=row.average_score,
                last_tested_at=as_utc(row.last_tested_at),
            )
        return coverage

    def upsert(self, user_id: str, coverage: DimensionCoverage) -> None:
        row = self.db.execute(
            select(DimensionCoverageRecord).where(
                DimensionCoverageRecord.user_id == user_id,
                DimensionCoverageRecord.topic_id == coverage.topic_id,
                DimensionCoverageRecord.bloom_level == coverage.bloom_level,
                DimensionCoverageRecord.dimension == coverage.dimension.value,
            )
        ).scalar_one_or_none()

        if row is None:
            row = DimensionCoverageRecord(
                user_id=user_id,
                topic_id=coverage.topic_id,
                bloom_level=coverage.bloom_level,
                dimension=coverage.dimension.value,
            )
            self.db.add(row)

        row.times_tested = coverage.times_tested
        row.unique_questions_answered = sorted(coverage.unique_questions_answered)
        row.average_score = coverage.average_score
        row.last_tested_at = coverage.last_tested_at

        _flush(self.db, f"coverage {coverage.topic_id}:{coverage.bloom_level}")


class SqlReviewRepository:
    """Review items in review_schedule."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> list[SpacedRepetitionItem]:
        rows = self.db.execute(
            select(ReviewScheduleItem)
            .where(ReviewScheduleItem.user_id == user_id)
            .order_by(ReviewScheduleItem.next_review_date, ReviewScheduleItem.entity_id)
        ).scalars()

        return [
            SpacedRepetitionItem(
                entity_id=row.entity_id,
                interval=row.interval_days,
                ease_factor=row.ease_factor,
                repetitions=row.repetitions,
                last_review_date=as_utc(row.last_review_date),
                next_review_date=as_utc(row.next_review_date),
                mastery_score=row.mastery_score,
            )
            for row in rows
        ]

    def upsert(self, user_id: str, item: SpacedRepetitionItem) -> None:
        row = self.db.execute(
            select(ReviewScheduleItem).where(
                ReviewScheduleItem.user_id == user_id,
                ReviewScheduleItem.entity_id == item.entity_id,
            )
        ).scalar_one_or_none()

        if row is None:
            row = ReviewScheduleItem(user_id=user_id, entity_id=item.entity_id)
            self.db.add(row)

        row.interval_days = item.interval
        row.ease_factor = item.ease_factor
        row.repetitions = item.repetitions
        row.last_review_date = item.last_review_date
        row.next_review_date = item.next_review_date
        row.mastery_score = item.mastery_score

        _flush(self.db, f"review item {item.entity_id}")


class SqlTopicCatalog:
    """Topic catalog in topics."""

    def __init__(self, db: Session):
        self.db = db

    def get_topics(self) -> list[TopicInfo]:
        rows = self.db.execute(select(Topic).order_by(Topic.id)).scalars()
        return [
            TopicInfo(topic_id=row.id, name=row.name, domain=row.domain, full_path=row.full_path)
            for row in rows
        ]

    def upsert_topic(self, topic: TopicInfo) -> None:
        row = self.db.get(Topic, topic.topic_id)
        if row is None:
            row = Topic(id=topic.topic_id)
            self.db.add(row)
        row.name = topic.name
        row.domain = topic.domain
        row.full_path = topic.full_path
        self.db.flush()
