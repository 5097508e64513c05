"""
Tests for response processing.

Tests:
- Read-compute-write flow and commit
- Retry once on ConcurrencyConflict, then give up
- Unlock and review scheduling side effects
- Audit after commit, failures reported but not raised
- End-to-end against SQLite
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from mastery_engine.core.errors import ConcurrencyConflict, InvalidInput
from mastery_engine.learning_engine.constants import AuditStatus, Dimension
from mastery_engine.learning_engine.contracts import (
    AuditResult,
    DimensionCoverage,
    ResponseEvent,
    SpacedRepetitionItem,
)
from mastery_engine.learning_engine.recommend import ResponseService
from mastery_engine.learning_engine.repo import (
    SqlDimensionCoverageRepository,
    SqlPerformanceRepository,
    SqlReviewRepository,
)
from mastery_engine.learning_engine.reward.audit import SqlRewardAuditSink
from mastery_engine.models.learning import RewardAuditLog, TopicMastery
from tests.helpers.fakes import (
    FakeTransaction,
    InMemoryCoverageRepository,
    InMemoryPerformanceRepository,
    InMemoryReviewRepository,
    make_performance,
)
from tests.helpers.seed import seed_topics

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


def make_response(**kwargs) -> ResponseEvent:
    defaults = {
        "question_id": "q1",
        "core_topics": ("t1",),
        "bloom_level": 1,
        "is_correct": True,
        "confidence": 3,
        "answered_at": NOW,
    }
    defaults.update(kwargs)
    return ResponseEvent(**defaults)


class _FailingAuditSink:
    def record(self, entry):
        return AuditResult(status=AuditStatus.LOGGED_FAILED, error="sink offline")


class _MissesFirstRead(SqlPerformanceRepository):
    """Returns an empty snapshot once, as if read before another writer committed."""

    def __init__(self, db):
        super().__init__(db)
        self.reads = 0

    def get(self, user_id, now=None):
        self.reads += 1
        if self.reads == 1:
            return []
        return super().get(user_id, now=now)


class ServiceHarness:
    """ResponseService wired to in-memory repositories."""

    def __init__(self, performances=None, conflicts=0, reviews=None, audit_sink=None):
        self.performance_repo = InMemoryPerformanceRepository(performances, conflicts=conflicts)
        self.coverage_repo = InMemoryCoverageRepository()
        self.review_repo = InMemoryReviewRepository(reviews)
        self.transaction = FakeTransaction()
        self.service = ResponseService(
            performance_repo=self.performance_repo,
            coverage_repo=self.coverage_repo,
            review_repo=self.review_repo,
            transaction=self.transaction,
            audit_sink=audit_sink,
        )


class TestSubmit:
    """Tests for the happy path."""

    def test_first_response(self):
        harness = ServiceHarness()
        result = harness.service.submit("u1", make_response(dimension=Dimension.WHAT))

        assert result.attempts_made == 1
        assert harness.transaction.commits == 1
        assert harness.transaction.rollbacks == 0

        [perf] = harness.performance_repo.get("u1")
        assert perf.attempts == 1
        assert perf.mastery_score == pytest.approx(40.0)

        coverage = harness.coverage_repo.get("u1", "t1", 1)
        assert coverage[Dimension.WHAT].times_tested == 1

        [item] = harness.review_repo.get("u1")
        assert item.entity_id == "t1:1"
        assert item.last_review_date == NOW

        assert [audit.status for audit in result.audit_results] == [AuditStatus.LOGGED_OK]

    def test_multi_topic_response(self):
        harness = ServiceHarness()
        result = harness.service.submit("u1", make_response(core_topics=("t1", "t2")))

        assert len(result.batch.updates) == 2
        assert len(result.audit_results) == 2
        assert {p.topic_id for p in harness.performance_repo.get("u1")} == {"t1", "t2"}

    def test_answered_at_defaults_to_now(self):
        harness = ServiceHarness()
        result = harness.service.submit("u1", make_response(answered_at=None))
        last_attempt = result.batch.updates[0].performance.last_attempt_at
        assert last_attempt.tzinfo is not None
        assert abs(datetime.now(UTC) - last_attempt) < timedelta(minutes=1)

    def test_naive_answered_at_treated_as_utc(self):
        harness = ServiceHarness()
        harness.service.submit("u1", make_response(answered_at=datetime(2025, 3, 10, 12, 0)))
        [perf] = harness.performance_repo.get("u1")
        assert perf.last_attempt_at == NOW

    def test_unlock_written(self):
        harness = ServiceHarness()
        for dimension in Dimension:
            if dimension == Dimension.WHO:
                continue
            harness.coverage_repo.upsert(
                "u1",
                DimensionCoverage(
                    topic_id="t1",
                    bloom_level=1,
                    dimension=dimension,
                    times_tested=1,
                    unique_questions_answered={"q0"},
                    average_score=100.0,
                ),
            )

        result = harness.service.submit("u1", make_response(dimension=Dimension.WHO))

        assert result.batch.updates[0].unlocked_level == 2
        arms = {p.arm.key: p for p in harness.performance_repo.get("u1")}
        assert arms["t1:2"].is_unlocked
        assert arms["t1:2"].attempts == 0

    def test_stored_review_follows_sm2(self):
        """A mastery jump since the last review does not bend the SM-2 interval."""
        previous = SpacedRepetitionItem(
            entity_id="t1:1",
            last_review_date=NOW - timedelta(days=1),
            next_review_date=NOW,
            interval=1,
            ease_factor=2.5,
            repetitions=1,
            mastery_score=50.0,
        )
        harness = ServiceHarness(
            performances=[make_performance("t1", attempts=1, correct_answers=1, mastery_score=50.0)],
            reviews=[previous],
        )
        result = harness.service.submit("u1", make_response())

        performance = result.batch.updates[0].performance
        assert performance.mastery_score == pytest.approx(70.0)

        [item] = harness.review_repo.get("u1")
        assert item == harness.service.scheduler.schedule_next(previous, performance, now=NOW)
        assert item.repetitions == 2
        assert item.interval == 6
        assert item.next_review_date == NOW + timedelta(days=6)

    def test_audit_failure_does_not_fail_submit(self, caplog):
        harness = ServiceHarness(audit_sink=_FailingAuditSink())
        result = harness.service.submit("u1", make_response())

        assert harness.transaction.commits == 1
        assert not result.audit_results[0].ok
        assert "reward audit writes failed" in caplog.text


class TestConcurrency:
    """Tests for conflict handling."""

    def test_retries_once(self):
        harness = ServiceHarness(conflicts=1)
        result = harness.service.submit("u1", make_response())

        assert result.attempts_made == 2
        assert harness.transaction.rollbacks == 1
        assert harness.transaction.commits == 1
        assert harness.performance_repo.get("u1")[0].attempts == 1
        assert len(result.audit_results) == 1

    def test_persistent_conflict_raises(self):
        harness = ServiceHarness(conflicts=2)
        with pytest.raises(ConcurrencyConflict):
            harness.service.submit("u1", make_response())

        assert harness.transaction.rollbacks == 2
        assert harness.transaction.commits == 0
        assert harness.performance_repo.get("u1") == []

    def test_stale_snapshot_detected(self):
        """A delta computed against an older version is rejected by the store."""
        harness = ServiceHarness(performances=[make_performance("t1", attempts=2, version=1)])
        batch = harness.service.tracker.process(
            make_response(), harness.service._snapshot("u1", make_response())
        )
        harness.service.submit("u1", make_response(question_id="q2"))

        with pytest.raises(ConcurrencyConflict):
            harness.performance_repo.upsert_mastery("u1", "t1", 1, batch.updates[0].mastery_delta)

    def test_invalid_input_rolls_back(self):
        harness = ServiceHarness()
        with pytest.raises(InvalidInput):
            harness.service.submit("u1", make_response(confidence=9))
        assert harness.transaction.rollbacks == 1
        assert harness.transaction.commits == 0


class TestSqlIntegration:
    """ResponseService against the SQLAlchemy repositories."""

    def make_service(self, db) -> ResponseService:
        return ResponseService(
            performance_repo=SqlPerformanceRepository(db),
            coverage_repo=SqlDimensionCoverageRepository(db),
            review_repo=SqlReviewRepository(db),
            transaction=db,
            audit_sink=SqlRewardAuditSink(db),
        )

    def test_two_responses_persist(self, db):
        seed_topics(db, ["t1"])
        service = self.make_service(db)

        service.submit("u1", make_response(dimension=Dimension.WHAT))
        service.submit(
            "u1",
            make_response(question_id="q2", dimension=Dimension.WHY, answered_at=NOW + timedelta(hours=1)),
        )

        row = db.execute(select(TopicMastery).where(TopicMastery.user_id == "u1")).scalar_one()
        assert row.attempts == 2
        assert row.correct_answers == 2
        assert row.mastery_score == pytest.approx(64.0)
        assert row.version_id == 2
        assert row.format_performance["mcq_single"]["attempts"] == 2

        coverage = SqlDimensionCoverageRepository(db).get("u1", "t1", 1)
        assert set(coverage) == {Dimension.WHAT, Dimension.WHY}

        [item] = SqlReviewRepository(db).get("u1")
        assert item.entity_id == "t1:1"
        assert item.last_review_date == NOW + timedelta(hours=1)

        audits = db.execute(select(RewardAuditLog)).scalars().all()
        assert [audit.question_id for audit in audits] == ["q1", "q2"]

    def test_unlock_persists(self, db):
        seed_topics(db, ["t1"])
        service = self.make_service(db)

        for index, dimension in enumerate(Dimension):
            service.submit(
                "u1",
                make_response(
                    question_id=f"q{index}",
                    dimension=dimension,
                    answered_at=NOW + timedelta(minutes=index),
                ),
            )

        arms = {p.arm.key: p for p in SqlPerformanceRepository(db).get("u1")}
        assert arms["t1:1"].attempts == len(Dimension)
        assert arms["t1:2"].is_unlocked
        assert arms["t1:2"].attempts == 0
        assert arms["t1:1"].current_bloom_level == 2

    def test_first_touch_race_retries_on_fresh_snapshot(self, db):
        """A response computed before another writer created the row is redone, not lost."""
        seed_topics(db, ["t1"])
        self.make_service(db).submit("u1", make_response())

        service = self.make_service(db)
        service.performance_repo = _MissesFirstRead(db)
        result = service.submit(
            "u1", make_response(question_id="q2", answered_at=NOW + timedelta(hours=1))
        )

        assert result.attempts_made == 2
        row = db.execute(select(TopicMastery).where(TopicMastery.user_id == "u1")).scalar_one()
        assert row.attempts == 2
        assert row.mastery_score == pytest.approx(64.0)
