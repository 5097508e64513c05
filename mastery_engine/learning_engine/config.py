"""
Learning Engine Configuration - Central Constants Registry.

All constants used by the selection, scheduling, reward and mastery algorithms
are defined here with provenance. Algorithm modules read `.value` and never
hard-code a tunable number.

Each constant includes:
- value: The actual constant value
- source: Citation (paper, algorithm reference, or heuristic label)
- notes: Rationale and context
- validated: Whether the value has been validated against source
"""

import math
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SourcedValue:
    """
    A constant value with documented provenance.

    All learning algorithm constants must use this type to enforce documentation.
    """

    value: Any
    source: str
    notes: str = ""
    validated: bool = False

    def __post_init__(self):
        if not self.source or self.source.strip() == "":
            raise ValueError(f"SourcedValue must have non-empty source. Got: {self.source}")


# =============================================================================
# Value Estimation
# =============================================================================

VALUE_WEIGHT_MASTERY = SourcedValue(
    value=0.6,
    source="Arm value heuristic: mastery dominates expected reward",
    notes="Weight on mastery_score/100 in estimated_value.",
)

VALUE_WEIGHT_CALIBRATION = SourcedValue(
    value=0.2,
    source="Arm value heuristic: well-calibrated topics are more reliable",
    notes="Weight on (1 - calibration_error).",
)

VALUE_WEIGHT_RECENCY = SourcedValue(
    value=0.2,
    source="Arm value heuristic: spacing effect",
    notes="Weight on min(days_since_review / horizon, 1). Counted once.",
)

VALUE_RECENCY_HORIZON_DAYS = SourcedValue(
    value=30.0,
    source="Spaced repetition literature: ~1 month saturates the spacing benefit",
    notes="Days after which the recency term is maxed out.",
)

VALUE_UNATTEMPTED = SourcedValue(
    value=0.5,
    source="Uninformative prior: midpoint of [0, 1]",
    notes="Estimated value of an arm with zero attempts.",
    validated=True,
)

UNCERTAINTY_SAMPLE_WEIGHT = SourcedValue(
    value=0.7,
    source="Standard error heuristic: 1/sqrt(n) shrinkage",
    notes="Weight on 1/sqrt(attempts).",
)

UNCERTAINTY_VARIANCE_WEIGHT = SourcedValue(
    value=0.3,
    source="Bernoulli standard deviation sqrt(p(1-p))",
    notes="Weight on the observed outcome spread.",
)

UNCERTAINTY_UNATTEMPTED = SourcedValue(
    value=1.0,
    source="Maximum-uncertainty default for unobserved arms",
    validated=True,
)

# =============================================================================
# SM-2 Spaced Repetition
# =============================================================================

SM2_EASE_FACTOR = SourcedValue(
    value=2.5,
    source="SM-2 algorithm (Wozniak, 1990): initial E-Factor",
    validated=True,
)

SM2_MIN_EASE_FACTOR = SourcedValue(
    value=1.3,
    source="SM-2 algorithm (Wozniak, 1990): E-Factor floor",
    notes="Items below 1.3 would be repeated annoyingly often.",
    validated=True,
)

SM2_FIRST_INTERVAL_DAYS = SourcedValue(
    value=1,
    source="SM-2 algorithm (Wozniak, 1990): I(1) = 1",
    validated=True,
)

SM2_SECOND_INTERVAL_DAYS = SourcedValue(
    value=6,
    source="SM-2 algorithm (Wozniak, 1990): I(2) = 6",
    validated=True,
)

SM2_PASSING_QUALITY = SourcedValue(
    value=3,
    source="SM-2 algorithm (Wozniak, 1990): q < 3 restarts repetitions",
    validated=True,
)

SM2_EF_BASE_INCREMENT = SourcedValue(
    value=0.1,
    source="SM-2 algorithm (Wozniak, 1990): EF' = EF + (0.1 - (5-q)(0.08 + (5-q)0.02))",
    validated=True,
)

SM2_EF_LINEAR_PENALTY = SourcedValue(
    value=0.08,
    source="SM-2 algorithm (Wozniak, 1990)",
    validated=True,
)

SM2_EF_QUADRATIC_PENALTY = SourcedValue(
    value=0.02,
    source="SM-2 algorithm (Wozniak, 1990)",
    validated=True,
)

SR_QUALITY_THRESHOLDS = SourcedValue(
    value=((95.0, 5), (80.0, 4), (60.0, 3), (40.0, 2), (20.0, 1)),
    source="Mastery-to-quality mapping heuristic",
    notes="Adjusted mastery >= threshold maps to the SM-2 quality grade; below 20 is 0.",
)

SR_CALIBRATION_PENALTY = SourcedValue(
    value=20.0,
    source="Mastery-to-quality mapping heuristic",
    notes="Mastery points removed per unit of calibration error before grading.",
)

SR_MASTERY_THRESHOLD_ADVANCEMENT = SourcedValue(
    value=80.0,
    source="Mastery learning convention (Bloom, 1968): 80% criterion",
    validated=True,
)

SR_MASTERY_THRESHOLD_REVIEW = SourcedValue(
    value=60.0,
    source="Mastery learning heuristic: below 60% needs remediation",
)

REVIEW_PRIORITY_OVERDUE_BASE = SourcedValue(
    value=0.5,
    source="Review priority heuristic",
    notes="Priority of an item due today; grows per overdue day.",
)

REVIEW_PRIORITY_OVERDUE_PER_DAY = SourcedValue(
    value=0.1,
    source="Review priority heuristic",
)

REVIEW_PRIORITY_DUE_TOMORROW = SourcedValue(
    value=0.5,
    source="Review priority heuristic",
)

REVIEW_PRIORITY_DUE_SOON = SourcedValue(
    value=0.3,
    source="Review priority heuristic",
    notes="Items due within SOON_DAYS.",
)

REVIEW_PRIORITY_SOON_DAYS = SourcedValue(
    value=3,
    source="Review priority heuristic",
)

REVIEW_PRIORITY_DECAY_PER_DAY = SourcedValue(
    value=0.05,
    source="Review priority heuristic",
    notes="Linear decay from DUE_SOON for items further out, floored at 0.",
)

MAX_REVIEWS_PER_DAY = SourcedValue(
    value=10,
    source="Workload heuristic: daily review cap",
)

UPCOMING_REVIEW_DAYS = SourcedValue(
    value=3,
    source="Review planning heuristic: three-day lookahead",
)

TREND_ADJUSTMENT_THRESHOLD = SourcedValue(
    value=10.0,
    source="Interval adjustment heuristic",
    notes="Mastery change (points) that triggers an interval adjustment.",
)

TREND_ADJUSTMENT_FACTOR = SourcedValue(
    value=0.2,
    source="Interval adjustment heuristic",
    notes="Interval grows by this fraction on improvement, shrinks on decline.",
)

# =============================================================================
# Reward Shaping
# =============================================================================

REWARD_CORRECT = SourcedValue(value=1.0, source="Reward shaping: base correctness")
REWARD_INCORRECT = SourcedValue(value=-0.5, source="Reward shaping: base correctness")

RECOGNITION_MULTIPLIERS = SourcedValue(
    value={
        "memory": 1.0,
        "recognition": 0.8,
        "educated_guess": 0.5,
        "random_guess": 0.2,
    },
    source="Retrieval practice literature: free recall > recognition > guessing",
    notes="Must stay strictly decreasing in the listed order.",
)

# (confidence, is_correct) -> reward
CALIBRATION_REWARDS = SourcedValue(
    value={
        (3, True): 0.5,
        (2, True): 0.2,
        (1, True): -0.2,
        (1, False): 0.2,
        (2, False): -0.2,
        (3, False): -0.5,
    },
    source="Metacognition calibration heuristic",
    notes="Rewards confident-correct and unconfident-incorrect.",
)

STREAK_BONUS_PER_ANSWER = SourcedValue(value=0.05, source="Reward shaping: streak bonus")
STREAK_BONUS_CAP = SourcedValue(value=0.25, source="Reward shaping: streak bonus cap")

RECENCY_BONUS_TIERS = SourcedValue(
    value=((7.0, 0.5), (3.0, 0.3), (1.0, 0.1)),
    source="Spacing effect (Cepeda et al., 2006): longer gaps make retrieval more valuable",
    notes="(min days since last practice, bonus), checked in order.",
)

READING_WORDS_PER_MINUTE = SourcedValue(
    value=200.0,
    source="Typical silent reading speed for technical text",
)

BLOOM_THINKING_SECONDS = SourcedValue(
    value={1: 5.0, 2: 8.0, 3: 12.0, 4: 15.0, 5: 20.0, 6: 25.0},
    source="Response time heuristic: higher-order levels need more deliberation",
)

FORMAT_TIME_MULTIPLIERS = SourcedValue(
    value={"open_ended": 2.0, "true_false": 0.7, "mcq_multi": 1.3},
    source="Response time heuristic",
    notes="Formats not listed use 1.0.",
)

RESPONSE_TIME_CORRECT_TIERS = SourcedValue(
    value=((0.5, 0.2), (1.5, 0.1), (3.0, 0.0)),
    source="Response time heuristic: fluent retrieval is faster than baseline",
    notes="(ratio strictly below / at most, reward). Slower than the last tier scores SLOW_PENALTY.",
)

RESPONSE_TIME_SLOW_PENALTY = SourcedValue(value=-0.1, source="Response time heuristic")

RESPONSE_TIME_RUSHED_RATIO = SourcedValue(
    value=0.3,
    source="Response time heuristic: answers this fast and wrong were not read",
)

RESPONSE_TIME_RUSHED_PENALTY = SourcedValue(value=-0.2, source="Response time heuristic")

ENGAGEMENT_PENALTY = SourcedValue(
    value=-0.3,
    source="Zone of proximal development (Vygotsky): too easy or too hard disengages",
)

ENGAGEMENT_TOO_EASY_MASTERY = SourcedValue(value=90.0, source="Engagement heuristic")
ENGAGEMENT_TOO_HARD_MASTERY = SourcedValue(value=20.0, source="Engagement heuristic")

REWARD_RANGE = SourcedValue(
    value=(-1.5, 2.45),
    source="Derived: extreme sums of the reward components above",
    notes="Used to map a total reward onto [0, 1].",
)

# =============================================================================
# Mastery Tracking
# =============================================================================

MASTERY_LEARNING_RATES = SourcedValue(
    value={3: 0.4, 2: 0.3, 1: 0.25},
    source="EMA mastery heuristic: confident answers carry more evidence",
    notes="Keyed by confidence (1-3).",
)

DIMENSION_SCORE_CORRECT = SourcedValue(value=100.0, source="Coverage scoring heuristic: binary")
DIMENSION_SCORE_INCORRECT = SourcedValue(value=0.0, source="Coverage scoring heuristic: binary")

# =============================================================================
# Phase Classification
# =============================================================================

PHASE_COLD_START_MAX_ATTEMPTS = SourcedValue(value=10, source="Phase heuristic")
PHASE_EXPLORATION_MAX_ATTEMPTS = SourcedValue(value=50, source="Phase heuristic")
PHASE_OPTIMIZATION_MAX_ATTEMPTS = SourcedValue(value=150, source="Phase heuristic")

PHASE_LOW_VARIANCE = SourcedValue(
    value=100.0,
    source="Phase heuristic",
    notes="Population variance of per-arm mastery (points^2); std dev of 10 points.",
)

PHASE_META_MIN_ATTEMPTS = SourcedValue(value=500, source="Phase heuristic")
PHASE_META_MIN_MASTERY = SourcedValue(value=80.0, source="Phase heuristic")

PHASE_RL_CONFIGS = SourcedValue(
    value={
        "cold_start": ("random", 1.0, 2.0, 0.1, 0.9, 1.0),
        "exploration": ("epsilon_greedy", 0.3, 2.0, 0.1, 0.9, 1.0),
        "optimization": ("ucb", 0.1, 1.5, 0.05, 0.95, 0.5),
        "stabilization": ("epsilon_greedy", 0.05, 1.0, 0.01, 0.95, 0.3),
        "adaptation": ("thompson_sampling", 0.1, 1.2, 0.05, 0.9, 0.5),
        "meta_learning": ("thompson_sampling", 0.05, 1.0, 0.01, 0.95, 0.2),
    },
    source="Bandit schedule heuristic: anneal exploration as evidence accumulates",
    notes="(algorithm, epsilon, exploration_rate, learning_rate, discount_factor, temperature)",
)

PHASE_EXPLORATION_BUDGET = SourcedValue(
    value={
        "cold_start": 100,
        "exploration": 50,
        "optimization": 20,
        "stabilization": 10,
        "adaptation": 30,
        "meta_learning": 5,
    },
    source="Bandit schedule heuristic",
    notes="Percent of selections reserved for exploration, for display.",
)

# =============================================================================
# Recommendation
# =============================================================================

RECOMMENDATION_WEIGHT_VALUE = SourcedValue(value=0.4, source="Recommendation scoring heuristic")
RECOMMENDATION_WEIGHT_REVIEW = SourcedValue(value=0.3, source="Recommendation scoring heuristic")
RECOMMENDATION_WEIGHT_EXPLORATION = SourcedValue(value=0.3, source="Recommendation scoring heuristic")

FORMAT_WEIGHT_ACCURACY = SourcedValue(value=0.7, source="Format effectiveness heuristic")
FORMAT_WEIGHT_CONFIDENCE = SourcedValue(value=0.3, source="Format effectiveness heuristic")

BLOOM_DEFAULT_FORMATS = SourcedValue(
    value=((2, "mcq_single"), (4, "mcq_multi"), (6, "open_ended")),
    source="Assessment design heuristic: recall suits single-answer MCQ, synthesis suits open response",
    notes="(max bloom level, format), checked in order.",
)

DIFFICULTY_HARD_BLOOM = SourcedValue(value=5, source="Difficulty heuristic")
DIFFICULTY_MEDIUM_BLOOM = SourcedValue(value=3, source="Difficulty heuristic")
DIFFICULTY_EASY_MASTERY = SourcedValue(value=80.0, source="Difficulty heuristic")
DIFFICULTY_MEDIUM_MASTERY = SourcedValue(value=60.0, source="Difficulty heuristic")

REASON_STALE_DAYS = SourcedValue(value=7, source="Recommendation reason heuristic")
REASON_CALIBRATION_ERROR = SourcedValue(value=0.3, source="Recommendation reason heuristic")
REASON_LOW_DATA_ATTEMPTS = SourcedValue(value=5, source="Recommendation reason heuristic")


# =============================================================================
# Validation Functions
# =============================================================================


def validate_all_constants():
    """
    Validate all constants at import time.

    Raises:
        ValueError: If any constant fails validation
    """
    errors = []

    value_weights = (
        VALUE_WEIGHT_MASTERY.value + VALUE_WEIGHT_CALIBRATION.value + VALUE_WEIGHT_RECENCY.value
    )
    if not math.isclose(value_weights, 1.0):
        errors.append(f"Value weights must sum to 1, got {value_weights}")

    if SM2_MIN_EASE_FACTOR.value > SM2_EASE_FACTOR.value:
        errors.append("SM2_MIN_EASE_FACTOR must not exceed SM2_EASE_FACTOR")

    multipliers = list(RECOGNITION_MULTIPLIERS.value.values())
    if multipliers != sorted(multipliers, reverse=True):
        errors.append("RECOGNITION_MULTIPLIERS must be ordered memory > ... > random_guess")

    if set(MASTERY_LEARNING_RATES.value) != {1, 2, 3}:
        errors.append("MASTERY_LEARNING_RATES must cover confidence 1, 2 and 3")

    for rate in MASTERY_LEARNING_RATES.value.values():
        if not (0 < rate <= 1):
            errors.append(f"Mastery learning rate must be in (0, 1], got {rate}")

    if set(BLOOM_THINKING_SECONDS.value) != set(range(1, 7)):
        errors.append("BLOOM_THINKING_SECONDS must cover levels 1-6")

    low, high = REWARD_RANGE.value
    if low >= high:
        errors.append("REWARD_RANGE must be (low, high) with low < high")

    if not (
        PHASE_COLD_START_MAX_ATTEMPTS.value
        < PHASE_EXPLORATION_MAX_ATTEMPTS.value
        < PHASE_OPTIMIZATION_MAX_ATTEMPTS.value
    ):
        errors.append("Phase attempt thresholds must be increasing")

    if set(PHASE_RL_CONFIGS.value) != set(PHASE_EXPLORATION_BUDGET.value):
        errors.append("PHASE_RL_CONFIGS and PHASE_EXPLORATION_BUDGET must cover the same phases")

    if errors:
        raise ValueError("Constant validation failed:\n" + "\n".join(f"  - {e}" for e in errors))


# Validate on import
validate_all_constants()


# =============================================================================
# Convenience Accessors
# =============================================================================


def get_sm2_defaults() -> dict:
    """Get SM-2 defaults as a dict."""
    return {
        "ease_factor": SM2_EASE_FACTOR.value,
        "min_ease_factor": SM2_MIN_EASE_FACTOR.value,
        "first_interval": SM2_FIRST_INTERVAL_DAYS.value,
        "second_interval": SM2_SECOND_INTERVAL_DAYS.value,
        "mastery_threshold_for_advancement": SR_MASTERY_THRESHOLD_ADVANCEMENT.value,
        "mastery_threshold_for_review": SR_MASTERY_THRESHOLD_REVIEW.value,
    }
