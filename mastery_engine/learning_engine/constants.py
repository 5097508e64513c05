"""Constants for learning engine algorithms."""

from enum import Enum


class Algorithm(str, Enum):
    """Arm selection algorithm keys."""

    EPSILON_GREEDY = "epsilon_greedy"
    UCB = "ucb"
    THOMPSON_SAMPLING = "thompson_sampling"
    SOFTMAX = "softmax"
    RANDOM = "random"


class Phase(str, Enum):
    """Learner phase, ordered from least to most data."""

    COLD_START = "cold_start"
    EXPLORATION = "exploration"
    OPTIMIZATION = "optimization"
    STABILIZATION = "stabilization"
    ADAPTATION = "adaptation"
    META_LEARNING = "meta_learning"


class RecognitionMethod(str, Enum):
    """How the learner arrived at the answer."""

    MEMORY = "memory"
    RECOGNITION = "recognition"
    EDUCATED_GUESS = "educated_guess"
    RANDOM_GUESS = "random_guess"


class QuestionFormat(str, Enum):
    """Question formats."""

    MCQ_SINGLE = "mcq_single"
    MCQ_MULTI = "mcq_multi"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"
    MATCHING = "matching"
    SEQUENCING = "sequencing"
    OPEN_ENDED = "open_ended"


class Dimension(str, Enum):
    """Cognitive dimensions a question can test at a Bloom level."""

    WHAT = "what"
    WHY = "why"
    WHEN = "when"
    WHERE = "where"
    WHO = "who"
    HOW = "how"
    CHARACTERISTICS = "characteristics"


# All seven must be covered at level N before N+1 unlocks
REQUIRED_DIMENSIONS: tuple[Dimension, ...] = tuple(Dimension)

MIN_BLOOM_LEVEL = 1
MAX_BLOOM_LEVEL = 6

BLOOM_LEVEL_NAMES: dict[int, str] = {
    1: "Remember",
    2: "Understand",
    3: "Apply",
    4: "Analyze",
    5: "Evaluate",
    6: "Create",
}


class AuditStatus(str, Enum):
    """Outcome of recording a reward audit entry."""

    LOGGED_OK = "logged_ok"
    LOGGED_FAILED = "logged_failed"
