"""
Reward audit sinks.

A sink records one reward calculation and reports the outcome as a tagged
AuditResult. Sinks never raise: a failed audit write must not affect the
response that produced it.
"""

import logging
from typing import Protocol

from sqlalchemy.orm import Session

from mastery_engine.core.logging import AUDIT_LOGGER
from mastery_engine.learning_engine.constants import AuditStatus
from mastery_engine.learning_engine.contracts import AuditEntry, AuditResult
from mastery_engine.models.learning import RewardAuditLog

logger = logging.getLogger(__name__)


class RewardAuditSink(Protocol):
    """Destination for reward audit entries."""

    def record(self, entry: AuditEntry) -> AuditResult: ...


class LoggingAuditSink:
    """Writes each entry as one structured log line."""

    def __init__(self, audit_logger: logging.Logger | None = None):
        self.audit_logger = audit_logger or logging.getLogger(AUDIT_LOGGER)

    def record(self, entry: AuditEntry) -> AuditResult:
        try:
            self.audit_logger.info(
                "Reward calculated",
                extra={
                    "user_id": entry.user_id,
                    "topic_id": entry.topic_id,
                    "bloom_level": entry.bloom_level,
                    "question_id": entry.question_id,
                    "reward": entry.reward.to_dict(),
                },
            )
        except Exception as e:
            return AuditResult(status=AuditStatus.LOGGED_FAILED, error=str(e))
        return AuditResult(status=AuditStatus.LOGGED_OK)


class SqlRewardAuditSink:
    """Writes each entry to reward_audit_log inside a SAVEPOINT."""

    def __init__(self, db: Session):
        self.db = db

    def record(self, entry: AuditEntry) -> AuditResult:
        try:
            with self.db.begin_nested():
                self.db.add(
                    RewardAuditLog(
                        user_id=entry.user_id,
                        topic_id=entry.topic_id,
                        bloom_level=entry.bloom_level,
                        question_id=entry.question_id,
                        components_json=entry.reward.to_dict(),
                        total=entry.reward.total,
                        created_at=entry.created_at,
                    )
                )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning(
                f"Reward audit write failed for user {entry.user_id}, "
                f"question {entry.question_id}: {e}"
            )
            return AuditResult(status=AuditStatus.LOGGED_FAILED, error=str(e))
        return AuditResult(status=AuditStatus.LOGGED_OK)
