"""
SQLAlchemy models for learner mastery, dimension coverage and review state.

Mutable learner rows carry a `version_id` column used as SQLAlchemy's
optimistic concurrency counter: an UPDATE that finds a different version
raises StaleDataError.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mastery_engine.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Topic(Base):
    """Topic catalog entry."""

    __tablename__ = "topics"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    full_path: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_topics_domain", "domain"),)


class TopicMastery(Base):
    """
    Per-user performance on one (topic, Bloom level) arm.

    Created lazily on the first response, removed only by an explicit reset.
    """

    __tablename__ = "topic_mastery"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    topic_id: Mapped[str] = mapped_column(String(64), nullable=False)
    bloom_level: Mapped[int] = mapped_column(Integer, nullable=False)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mastery_score: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, comment="Mastery [0,100]"
    )
    average_confidence: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, comment="Rolling mean of normalized confidence [0,1]"
    )
    confidence_calibration_error: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, comment="Rolling mean calibration error [0,1]"
    )
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_unlocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    format_performance: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=dict, comment="format -> {attempts, correct, avg_confidence}"
    )

    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        UniqueConstraint("user_id", "topic_id", "bloom_level", name="uq_topic_mastery_arm"),
        Index("idx_topic_mastery_user", "user_id"),
    )


class DimensionCoverageRecord(Base):
    """Coverage of one cognitive dimension at (user, topic, Bloom level)."""

    __tablename__ = "dimension_coverage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    topic_id: Mapped[str] = mapped_column(String(64), nullable=False)
    bloom_level: Mapped[int] = mapped_column(Integer, nullable=False)
    dimension: Mapped[str] = mapped_column(String(32), nullable=False)

    times_tested: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_questions_answered: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list, comment="Sorted question ids"
    )
    average_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_tested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        UniqueConstraint(
            "user_id", "topic_id", "bloom_level", "dimension", name="uq_dimension_coverage"
        ),
        Index("idx_dimension_coverage_user_topic", "user_id", "topic_id", "bloom_level"),
    )


class ReviewScheduleItem(Base):
    """SM-2 review state for one (user, entity)."""

    __tablename__ = "review_schedule"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(160), nullable=False, comment="Arm key")

    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ease_factor: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    repetitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_review_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_review_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    mastery_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        UniqueConstraint("user_id", "entity_id", name="uq_review_schedule_entity"),
        Index("idx_review_schedule_user_next", "user_id", "next_review_date"),
    )


class RewardAuditLog(Base):
    """Append-only record of reward calculations."""

    __tablename__ = "reward_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    topic_id: Mapped[str] = mapped_column(String(64), nullable=False)
    bloom_level: Mapped[int] = mapped_column(Integer, nullable=False)
    question_id: Mapped[str] = mapped_column(String(64), nullable=False)
    components_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    total: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_reward_audit_log_user_created", "user_id", "created_at"),)
