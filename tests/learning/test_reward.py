"""
Tests for reward computation and reward auditing.

Tests:
- Component values (correctness, calibration, streak, recency, time, engagement)
- Recognition method ordering
- Input validation
- Normalization and descriptions
- Audit sinks return tagged results and never raise
"""

from datetime import UTC, datetime

import pytest
from sqlalchemy import select

from mastery_engine.core.errors import InvalidInput
from mastery_engine.learning_engine.constants import AuditStatus, RecognitionMethod
from mastery_engine.learning_engine.contracts import AuditEntry, RewardComponents, RewardInput
from mastery_engine.learning_engine.reward import RewardCalculator, describe_reward, normalize_reward
from mastery_engine.learning_engine.reward.audit import LoggingAuditSink, SqlRewardAuditSink
from mastery_engine.learning_engine.reward.core import (
    calibration_reward,
    engagement_reward,
    expected_response_seconds,
    recency_bonus,
    response_time_reward,
    streak_bonus,
)
from mastery_engine.models.learning import RewardAuditLog


class TestComponents:
    """Tests for individual reward components."""

    @pytest.mark.parametrize(
        "confidence,is_correct,expected",
        [(3, True, 0.5), (2, True, 0.2), (1, True, -0.2), (1, False, 0.2), (2, False, -0.2), (3, False, -0.5)],
    )
    def test_calibration(self, confidence, is_correct, expected):
        assert calibration_reward(is_correct, confidence) == expected

    def test_streak_bonus_capped(self):
        assert streak_bonus(True, 2) == pytest.approx(0.1)
        assert streak_bonus(True, 5) == pytest.approx(0.25)
        assert streak_bonus(True, 40) == pytest.approx(0.25)
        assert streak_bonus(False, 40) == 0.0

    @pytest.mark.parametrize(
        "days,expected", [(None, 0.0), (0.5, 0.0), (1.0, 0.1), (3.0, 0.3), (6.9, 0.3), (7.0, 0.5), (90.0, 0.5)]
    )
    def test_recency_tiers(self, days, expected):
        assert recency_bonus(True, days) == expected

    def test_no_recency_bonus_when_incorrect(self):
        assert recency_bonus(False, 30.0) == 0.0

    def test_expected_response_seconds(self):
        """7 words at 200 wpm plus 12s for Bloom 3, times 1.3 for mcq_multi."""
        expected = expected_response_seconds("one two three four", ("a b", "c"), 3, "mcq_multi")
        assert expected == pytest.approx((2.1 + 12.0) * 1.3)

    def test_unlisted_format_uses_baseline(self):
        assert expected_response_seconds("", (), 1, "matching") == pytest.approx(5.0)

    @pytest.mark.parametrize(
        "ratio,expected", [(0.4, 0.2), (0.5, 0.1), (1.0, 0.1), (1.5, 0.1), (2.0, 0.0), (3.0, 0.0), (4.0, -0.1)]
    )
    def test_response_time_correct(self, ratio, expected):
        assert response_time_reward(True, ratio * 10.0, 10.0) == expected

    def test_response_time_incorrect(self):
        assert response_time_reward(False, 2.0, 10.0) == -0.2
        assert response_time_reward(False, 5.0, 10.0) == 0.0
        assert response_time_reward(False, 50.0, 10.0) == 0.0

    def test_engagement(self):
        assert engagement_reward(True, 95.0) == -0.3
        assert engagement_reward(True, 90.0) == 0.0
        assert engagement_reward(False, 10.0) == -0.3
        assert engagement_reward(False, 20.0) == 0.0
        assert engagement_reward(False, 95.0) == 0.0


class TestRewardCalculator:
    """Tests for the full reward breakdown."""

    def test_confident_correct_breakdown(self):
        reward = RewardCalculator().compute(
            RewardInput(
                is_correct=True,
                confidence=3,
                current_mastery=50.0,
                days_since_last_practice=4.0,
                response_time_seconds=5.0,
                current_streak=2,
            )
        )
        assert reward.correctness == 1.0
        assert reward.calibration == 0.5
        assert reward.streak == pytest.approx(0.1)
        assert reward.recency == 0.3
        assert reward.response_time == 0.1
        assert reward.engagement == 0.0
        assert reward.total == pytest.approx(2.0)

    def test_rushed_confident_wrong_breakdown(self):
        reward = RewardCalculator().compute(
            RewardInput(is_correct=False, confidence=3, current_mastery=10.0, response_time_seconds=1.0)
        )
        assert reward.correctness == -0.5
        assert reward.calibration == -0.5
        assert reward.response_time == -0.2
        assert reward.engagement == -0.3
        assert reward.total == pytest.approx(-1.5)

    def test_memory_beats_random_guess(self):
        calculator = RewardCalculator()
        memory = calculator.compute(RewardInput(is_correct=True, confidence=3, recognition_method="memory"))
        guess = calculator.compute(
            RewardInput(is_correct=True, confidence=3, recognition_method="random_guess")
        )
        assert memory.total >= guess.total
        assert guess.correctness == pytest.approx(0.2)
        assert guess.recognition_multiplier == 0.2

    def test_recognition_methods_ordered(self):
        calculator = RewardCalculator()
        totals = [
            calculator.compute(
                RewardInput(is_correct=True, confidence=2, recognition_method=method.value)
            ).total
            for method in RecognitionMethod
        ]
        assert totals == sorted(totals, reverse=True)

    def test_total_is_component_sum(self):
        reward = RewardComponents(
            correctness=1.0, calibration=0.2, streak=0.05, recency=0.1, response_time=-0.1, engagement=-0.3
        )
        assert reward.total == pytest.approx(0.95)
        assert reward.to_dict()["total"] == pytest.approx(0.95)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("confidence", 0),
            ("confidence", 4),
            ("bloom_level", 7),
            ("recognition_method", "telepathy"),
            ("question_format", "essay"),
            ("response_time_seconds", -1.0),
            ("response_time_seconds", float("nan")),
            ("current_streak", -1),
            ("days_since_last_practice", -2.0),
            ("current_mastery", float("inf")),
        ],
    )
    def test_rejects_invalid_input(self, field, value):
        kwargs = {"is_correct": True, "confidence": 2, field: value}
        with pytest.raises(InvalidInput) as exc_info:
            RewardCalculator().compute(RewardInput(**kwargs))
        assert field in exc_info.value.details


class TestNormalizeAndDescribe:
    """Tests for reward normalization and descriptions."""

    def test_normalize_range(self):
        assert normalize_reward(-1.5) == 0.0
        assert normalize_reward(2.45) == 1.0
        assert normalize_reward(0.475) == pytest.approx(0.5)

    def test_normalize_clamps(self):
        assert normalize_reward(-10.0) == 0.0
        assert normalize_reward(10.0) == 1.0
        assert normalize_reward(float("nan")) == 0.0

    def test_describe_correct(self):
        text = describe_reward(
            RewardComponents(correctness=1.0, calibration=0.5, streak=0.1, recency=0.3)
        )
        assert text.startswith("Correct from memory")
        assert "well-calibrated confidence" in text
        assert "streak bonus" in text
        assert text.endswith("(total +1.90)")

    def test_describe_guess_and_miss(self):
        guessed = describe_reward(RewardComponents(correctness=0.2, recognition_multiplier=0.2))
        missed = describe_reward(RewardComponents(correctness=-0.5, calibration=-0.5, engagement=-0.3))
        assert guessed.startswith("Correct, but not from memory")
        assert missed.startswith("Incorrect")
        assert "question difficulty mismatched" in missed


def make_entry(**kwargs) -> AuditEntry:
    defaults = {
        "user_id": "u1",
        "topic_id": "t1",
        "bloom_level": 1,
        "question_id": "q1",
        "reward": RewardComponents(correctness=1.0, calibration=0.5),
        "created_at": datetime(2025, 3, 10, tzinfo=UTC),
    }
    defaults.update(kwargs)
    return AuditEntry(**defaults)


class _RaisingLogger:
    def info(self, *args, **kwargs):
        raise RuntimeError("log pipe closed")


class _BrokenSession:
    def __init__(self):
        self.rollbacks = 0

    def begin_nested(self):
        raise RuntimeError("database unavailable")

    def rollback(self):
        self.rollbacks += 1


class TestAuditSinks:
    """Tests for reward audit sinks."""

    def test_logging_sink_ok(self, caplog):
        caplog.set_level("INFO")
        result = LoggingAuditSink().record(make_entry())
        assert result.status == AuditStatus.LOGGED_OK
        assert result.ok
        assert "Reward calculated" in caplog.text

    def test_logging_sink_failure_is_tagged(self):
        result = LoggingAuditSink(_RaisingLogger()).record(make_entry())
        assert result.status == AuditStatus.LOGGED_FAILED
        assert result.error == "log pipe closed"
        assert not result.ok

    def test_sql_sink_writes_row(self, db):
        result = SqlRewardAuditSink(db).record(make_entry(question_id="q9"))

        assert result.ok
        rows = db.execute(select(RewardAuditLog)).scalars().all()
        assert len(rows) == 1
        assert rows[0].question_id == "q9"
        assert rows[0].total == pytest.approx(1.5)
        assert rows[0].components_json["calibration"] == 0.5

    def test_sql_sink_failure_is_tagged(self):
        session = _BrokenSession()
        result = SqlRewardAuditSink(session).record(make_entry())
        assert result.status == AuditStatus.LOGGED_FAILED
        assert "database unavailable" in result.error
        assert session.rollbacks == 1
