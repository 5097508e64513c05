"""
Tests for recommendation ranking.

Tests:
- Candidate pool: unlocked arms plus untouched catalog topics
- Filters and option validation
- Ranking, determinism, missing catalog entries
- Level, format, difficulty and reason helpers
"""

from datetime import UTC, datetime, timedelta

import pytest

from mastery_engine.core.errors import InvalidInput
from mastery_engine.learning_engine.bandit.sampling import create_seeded_rng
from mastery_engine.learning_engine.constants import Algorithm, Phase
from mastery_engine.learning_engine.contracts import (
    FormatStats,
    RecommendationOptions,
    RLConfig,
    SpacedRepetitionItem,
)
from mastery_engine.learning_engine.recommend import RecommendationOrchestrator
from mastery_engine.learning_engine.recommend.service import (
    build_candidate_pool,
    clamp_bloom_level,
    expected_difficulty,
    recommendation_reason,
    recommendation_score,
    suggest_bloom_level,
    suggest_format,
)
from tests.helpers.fakes import (
    InMemoryPerformanceRepository,
    InMemoryReviewRepository,
    InMemoryTopicCatalog,
    make_performance,
    make_topic,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

GREEDY = RLConfig(
    algorithm=Algorithm.EPSILON_GREEDY,
    epsilon=0.0,
    exploration_rate=1.0,
    learning_rate=0.1,
    discount_factor=0.9,
    temperature=1.0,
)


def make_orchestrator(performances=None, topics=None, reviews=None, seed=42) -> RecommendationOrchestrator:
    return RecommendationOrchestrator(
        performance_repo=InMemoryPerformanceRepository(performances or []),
        review_repo=InMemoryReviewRepository(reviews or []),
        catalog=InMemoryTopicCatalog(topics or []),
        rng=create_seeded_rng(seed),
    )


class TestColdStart:
    """Tests for a learner with no history."""

    def test_recommends_new_topics(self):
        topics = [make_topic(f"t{i}") for i in range(5)]
        recs = make_orchestrator(topics=topics).recommend("u1", RecommendationOptions(count=3), now=NOW)

        assert len(recs) == 3
        assert len({rec.arm.key for rec in recs}) == 3
        for rec in recs:
            assert rec.arm.bloom_level == 1
            assert rec.suggested_bloom_level == 1
            assert rec.suggested_format == "mcq_single"
            assert rec.current_mastery == 0.0
            assert rec.estimated_reward == 0.5
            assert rec.confidence == 0.0
            assert "New topic - not yet practiced" in rec.reason
            assert "Exploration phase - gathering data" in rec.reason
            assert not rec.is_due_for_review

    def test_empty_catalog_returns_nothing(self):
        assert make_orchestrator().recommend("u1", now=NOW) == []

    def test_count_larger_than_pool(self):
        topics = [make_topic("a"), make_topic("b")]
        recs = make_orchestrator(topics=topics).recommend("u1", RecommendationOptions(count=10), now=NOW)
        assert sorted(rec.arm.topic_id for rec in recs) == ["a", "b"]


class TestRanking:
    """Tests for ranking and selection."""

    def test_sorted_by_score(self):
        performances = [
            make_performance(f"t{i}", attempts=10, correct_answers=i, mastery_score=i * 10.0)
            for i in range(6)
        ]
        topics = [make_topic(f"t{i}") for i in range(6)]
        recs = make_orchestrator(performances, topics).recommend(
            "u1", RecommendationOptions(count=6), now=NOW
        )
        scores = [rec.recommendation_score for rec in recs]
        assert scores == sorted(scores, reverse=True)

    def test_deterministic_with_seed(self):
        topics = [make_topic(f"t{i}") for i in range(8)]
        first = make_orchestrator(topics=topics, seed=7).recommend("u1", now=NOW)
        second = make_orchestrator(topics=topics, seed=7).recommend("u1", now=NOW)
        assert [r.arm.key for r in first] == [r.arm.key for r in second]

    def test_config_override_is_used(self):
        """A greedy override picks the highest-value arms."""
        performances = [
            make_performance("weak", attempts=20, correct_answers=5, mastery_score=20.0),
            make_performance("strong", attempts=20, correct_answers=18, mastery_score=90.0),
            make_performance("middle", attempts=20, correct_answers=10, mastery_score=50.0),
        ]
        topics = [make_topic("weak"), make_topic("strong"), make_topic("middle")]
        recs = make_orchestrator(performances, topics).recommend(
            "u1", RecommendationOptions(count=2, rl_config=GREEDY), now=NOW
        )
        assert {rec.arm.topic_id for rec in recs} == {"strong", "middle"}

    def test_locked_arms_excluded(self):
        performances = [
            make_performance("t1", 1, attempts=5, mastery_score=60.0),
            make_performance("t1", 2, is_unlocked=False),
        ]
        recs = make_orchestrator(performances, [make_topic("t1")]).recommend(
            "u1", RecommendationOptions(count=5), now=NOW
        )
        assert [rec.arm.key for rec in recs] == ["t1:1"]

    def test_rank_reports_phase_of_its_own_snapshot(self):
        """Phase, config and arms all come from one read of learner state."""
        performances = [make_performance(f"t{i}", attempts=10, mastery_score=50.0) for i in range(8)]
        orchestrator = make_orchestrator(performances, [make_topic(f"t{i}") for i in range(8)])

        ranked = orchestrator.rank("u1", RecommendationOptions(count=2), now=NOW)

        assert orchestrator.performance_repo.reads == 1
        assert ranked.phase == Phase.OPTIMIZATION
        assert ranked.config.algorithm == Algorithm.UCB
        assert len(ranked.recommendations) == 2

    def test_rank_empty_pool_still_reports_phase(self):
        ranked = make_orchestrator().rank("u1", now=NOW)
        assert ranked.phase == Phase.COLD_START
        assert ranked.recommendations == []

    def test_missing_catalog_topic_skipped(self, caplog):
        performances = [
            make_performance("ghost", attempts=3),
            make_performance("real", attempts=3),
        ]
        recs = make_orchestrator(performances, [make_topic("real")]).recommend(
            "u1", RecommendationOptions(count=5), now=NOW
        )
        assert [rec.arm.topic_id for rec in recs] == ["real"]
        assert "Skipping arm ghost:1" in caplog.text

    def test_due_review_flagged(self):
        performances = [make_performance("t1", attempts=4, mastery_score=70.0)]
        reviews = [
            SpacedRepetitionItem(
                entity_id="t1:1",
                last_review_date=NOW - timedelta(days=8),
                next_review_date=NOW - timedelta(days=2),
                interval=6,
                repetitions=2,
            )
        ]
        rec = make_orchestrator(performances, [make_topic("t1")], reviews).recommend("u1", now=NOW)[0]
        assert rec.is_due_for_review
        assert rec.reason.startswith("Due for spaced repetition review")


class TestFilters:
    """Tests for recommendation filters and options."""

    def test_domain_filter(self):
        topics = [make_topic("a", "anatomy"), make_topic("p", "physiology"), make_topic("b", "anatomy")]
        recs = make_orchestrator(topics=topics).recommend(
            "u1", RecommendationOptions(count=5, domain="physiology"), now=NOW
        )
        assert [rec.arm.topic_id for rec in recs] == ["p"]

    def test_exclude_by_topic_and_arm_key(self):
        topics = [make_topic("a"), make_topic("b"), make_topic("c")]
        recs = make_orchestrator(topics=topics).recommend(
            "u1", RecommendationOptions(count=5, exclude_ids=frozenset({"a", "b:1"})), now=NOW
        )
        assert [rec.arm.topic_id for rec in recs] == ["c"]

    def test_bloom_range_filter(self):
        performances = [
            make_performance("t1", 1, attempts=5, mastery_score=90.0),
            make_performance("t1", 2, attempts=5, mastery_score=90.0),
            make_performance("t1", 3, attempts=5, mastery_score=90.0),
        ]
        recs = make_orchestrator(performances, [make_topic("t1")]).recommend(
            "u1", RecommendationOptions(count=5, min_bloom_level=2, max_bloom_level=2), now=NOW
        )
        assert [rec.arm.key for rec in recs] == ["t1:2"]
        assert recs[0].suggested_bloom_level == 2

    def test_filters_can_empty_the_pool(self):
        recs = make_orchestrator(topics=[make_topic("a")]).recommend(
            "u1", RecommendationOptions(domain="nowhere"), now=NOW
        )
        assert recs == []

    @pytest.mark.parametrize(
        "options",
        [
            RecommendationOptions(count=0),
            RecommendationOptions(min_bloom_level=0),
            RecommendationOptions(max_bloom_level=7),
            RecommendationOptions(min_bloom_level=4, max_bloom_level=2),
        ],
    )
    def test_invalid_options(self, options):
        with pytest.raises(InvalidInput):
            make_orchestrator(topics=[make_topic("a")]).recommend("u1", options, now=NOW)


class TestCandidatePool:
    def test_untouched_topics_added_at_level_one(self):
        performances = [make_performance("seen", 2, attempts=3)]
        topics = {t.topic_id: t for t in [make_topic("seen"), make_topic("new")]}
        pool = build_candidate_pool(performances, topics)
        assert [p.arm.key for p in pool] == ["seen:2", "new:1"]
        assert pool[1].topic_name == "Topic new"


class TestHelpers:
    """Tests for recommendation helpers."""

    @pytest.mark.parametrize(
        "mastery,attempts,expected",
        [(85.0, 5, 3), (80.0, 5, 3), (70.0, 5, 2), (30.0, 5, 1), (0.0, 0, 2)],
    )
    def test_suggest_bloom_level(self, mastery, attempts, expected):
        perf = make_performance("t1", 2, attempts=attempts, mastery_score=mastery)
        assert suggest_bloom_level(perf, 80.0, 60.0) == expected

    def test_clamp_bloom_level(self):
        assert clamp_bloom_level(0) == 1
        assert clamp_bloom_level(7) == 6
        assert clamp_bloom_level(5, high=3) == 3
        assert clamp_bloom_level(1, low=2) == 2

    def test_suggest_format_prefers_effective(self):
        perf = make_performance(
            "t1",
            format_performance={
                "mcq_single": FormatStats(attempts=10, correct=4, avg_confidence=0.5),
                "true_false": FormatStats(attempts=10, correct=9, avg_confidence=0.8),
                "matching": FormatStats(attempts=0),
            },
        )
        assert suggest_format(perf, 1) == "true_false"

    @pytest.mark.parametrize("level,expected", [(1, "mcq_single"), (2, "mcq_single"), (3, "mcq_multi"), (6, "open_ended")])
    def test_suggest_format_default_by_level(self, level, expected):
        assert suggest_format(make_performance("t1"), level) == expected

    @pytest.mark.parametrize(
        "mastery,level,expected",
        [(95.0, 5, "hard"), (95.0, 3, "medium"), (85.0, 1, "easy"), (65.0, 2, "medium"), (10.0, 1, "hard")],
    )
    def test_expected_difficulty(self, mastery, level, expected):
        assert expected_difficulty(mastery, level) == expected

    def test_score_in_unit_interval(self):
        perf = make_performance("t1", estimated_value=1.0, uncertainty=1.0)
        config = RLConfig(Algorithm.RANDOM, 1.0, 2.0, 0.1, 0.9, 1.0)
        assert recommendation_score(perf, 1.0, config) == 1.0
        assert recommendation_score(make_performance("t1", estimated_value=0.0, uncertainty=0.0), 0.0, config) == 0.0

    def test_reason_for_stale_practiced_topic(self):
        perf = make_performance(
            "t1", attempts=12, mastery_score=85.0, confidence_calibration_error=0.4
        )
        reason = recommendation_reason(perf, False, 9, Phase.OPTIMIZATION, 80.0, 60.0)
        assert reason == (
            "Haven't practiced in 9 days; Ready to advance to next level; "
            "Confidence calibration needs work"
        )

    def test_reason_needs_improvement(self):
        perf = make_performance("t1", attempts=3, mastery_score=40.0)
        reason = recommendation_reason(perf, False, None, Phase.STABILIZATION, 80.0, 60.0)
        assert reason == "Needs improvement (below 60% mastery); Limited practice data - exploring"

    def test_reason_fallback(self):
        perf = make_performance("t1", attempts=20, mastery_score=70.0)
        reason = recommendation_reason(perf, False, 1, Phase.STABILIZATION, 80.0, 60.0)
        assert reason == "Optimal learning progression"
