"""Tests for settings, error mapping, logging and session wiring."""

import json
import logging

import pytest

from mastery_engine.common.request_id import learner_route
from mastery_engine.core.app_exceptions import AppError
from mastery_engine.core.config import Settings, settings
from mastery_engine.core.errors import (
    ConcurrencyConflict,
    DegenerateDistribution,
    InvalidInput,
    MissingEntity,
    status_for,
)
from mastery_engine.core.logging import (
    AUDIT_LOGGER,
    ENGINE_LOGGER,
    CustomJsonFormatter,
    bind_request_context,
    current_request_context,
    reset_request_context,
    setup_logging,
)
from mastery_engine.db import session as db_session


class TestErrors:
    def test_status_mapping(self):
        assert status_for(InvalidInput("bad")) == 422
        assert status_for(MissingEntity("gone")) == 404
        assert status_for(ConcurrencyConflict("race")) == 409
        assert status_for(DegenerateDistribution("nan")) == 500

    def test_to_dict(self):
        error = MissingEntity("Topic t9 not found", {"topic_id": "t9"})
        assert error.to_dict() == {
            "code": "MISSING_ENTITY",
            "message": "Topic t9 not found",
            "details": {"topic_id": "t9"},
        }

    def test_app_error_from_engine_error(self):
        app_error = AppError.from_engine_error(ConcurrencyConflict("race", {"arm": "t1:1"}))
        assert app_error.status_code == 409
        assert app_error.code == "CONCURRENCY_CONFLICT"
        assert app_error.detail == {
            "code": "CONCURRENCY_CONFLICT",
            "message": "race",
            "details": {"arm": "t1:1"},
        }


class TestSettings:
    def test_cors_origins_split(self):
        configured = Settings(CORS_ORIGINS="http://a.test, http://b.test,")
        assert configured.cors_origins == ["http://a.test", "http://b.test"]

    def test_log_level_normalized(self):
        assert Settings(LOG_LEVEL=" debug ").LOG_LEVEL == "DEBUG"

    def test_engine_log_level_optional(self):
        assert Settings().ENGINE_LOG_LEVEL is None
        assert Settings(ENGINE_LOG_LEVEL="warning").ENGINE_LOG_LEVEL == "WARNING"


class TestJsonLogging:
    def test_formatter_emits_json_fields(self):
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(logger)s %(message)s")
        record = logging.LogRecord(
            name="mastery_engine.test",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Arm %s skipped",
            args=("t1:1",),
            exc_info=None,
            func="test_formatter_emits_json_fields",
        )
        record.user_id = "u1"

        data = json.loads(formatter.format(record))

        assert data["message"] == "Arm t1:1 skipped"
        assert data["level"] == "WARNING"
        assert data["logger"] == "mastery_engine.test"
        assert data["function"] == "test_formatter_emits_json_fields"
        assert data["user_id"] == "u1"
        assert "timestamp" in data

    def test_bound_request_context_added_to_engine_lines(self):
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(logger)s %(message)s")
        record = logging.LogRecord(
            name=f"{ENGINE_LOGGER}.bandit.core",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Selected arm",
            args=(),
            exc_info=None,
        )

        token = bind_request_context("req-7", "u42")
        try:
            data = json.loads(formatter.format(record))
        finally:
            reset_request_context(token)

        assert data["request_id"] == "req-7"
        assert data["user_id"] == "u42"
        assert current_request_context() == {}

    def test_explicit_extra_wins_over_context(self):
        formatter = CustomJsonFormatter("%(message)s")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "m", (), None)
        record.user_id = "explicit"

        token = bind_request_context("req-8", "bound")
        try:
            data = json.loads(formatter.format(record))
        finally:
            reset_request_context(token)

        assert data["user_id"] == "explicit"
        assert data["request_id"] == "req-8"


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))
        named = {name: logging.getLogger(name).level for name in (ENGINE_LOGGER, AUDIT_LOGGER)}
        yield
        root.setLevel(saved[0])
        root.handlers[:] = saved[1]
        for name, level in named.items():
            logging.getLogger(name).setLevel(level)

    def test_levels(self, monkeypatch):
        monkeypatch.setattr(settings, "ENGINE_LOG_LEVEL", "DEBUG")
        setup_logging("WARNING")

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, CustomJsonFormatter)
        assert logging.getLogger(ENGINE_LOGGER).level == logging.DEBUG
        assert logging.getLogger(AUDIT_LOGGER).level == logging.INFO

    def test_engine_follows_root_by_default(self, monkeypatch):
        monkeypatch.setattr(settings, "ENGINE_LOG_LEVEL", None)
        setup_logging("ERROR")
        assert logging.getLogger(ENGINE_LOGGER).level == logging.ERROR


class TestLearnerRoute:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/v1/users/u1/recommendations", ("u1", "recommendations")),
            ("/v1/users/u1/reviews/schedule", ("u1", "reviews")),
            ("/v1/users/u1", ("u1", None)),
            ("/v1/health", (None, None)),
        ],
    )
    def test_learner_route(self, path, expected):
        assert learner_route(path) == expected


class TestGetDb:
    def test_rolls_back_on_error(self, monkeypatch):
        gen = db_session.get_db()
        db = next(gen)
        calls = []
        monkeypatch.setattr(db, "in_transaction", lambda: True)
        monkeypatch.setattr(db, "rollback", lambda: calls.append("rollback"))

        with pytest.raises(ValueError):
            gen.throw(ValueError("boom"))

        assert calls == ["rollback"]

    def test_closes_without_rollback_on_success(self, monkeypatch):
        gen = db_session.get_db()
        db = next(gen)
        calls = []
        monkeypatch.setattr(db, "rollback", lambda: calls.append("rollback"))

        with pytest.raises(StopIteration):
            next(gen)

        assert calls == []
