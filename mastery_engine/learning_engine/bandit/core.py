"""
Multi-armed bandit arm selection.

Implements:
- Epsilon-greedy
- UCB1
- Thompson Sampling over Beta(1 + correct, 1 + incorrect)
- Softmax (Boltzmann) with cumulative sampling
- Uniform random

Degenerate inputs (NaN values, unusable softmax weights) never raise: the
selector logs a warning and picks uniformly at random instead.
"""

import logging
import math
import random

from mastery_engine.core.errors import DegenerateDistribution, InvalidInput
from mastery_engine.learning_engine.bandit.sampling import sample_beta
from mastery_engine.learning_engine.constants import Algorithm
from mastery_engine.learning_engine.contracts import RLConfig, TopicPerformance

logger = logging.getLogger(__name__)


def _argmax(scores: list[float]) -> int:
    """Index of the highest score, first seen on ties."""
    best_index = 0
    for index, score in enumerate(scores):
        if score > scores[best_index]:
            best_index = index
    return best_index


def _check_finite(values: list[float], what: str) -> None:
    if any(math.isnan(value) for value in values):
        raise DegenerateDistribution(f"NaN in {what}", {"values": values})


class ArmSelector:
    """Chooses one arm from a candidate pool."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def select(self, candidates: list[TopicPerformance], config: RLConfig) -> TopicPerformance:
        """
        Select an arm.

        Args:
            candidates: Annotated arms (estimated_value and uncertainty set)
            config: Selection parameters; `algorithm` picks the strategy

        Returns:
            The chosen candidate

        Raises:
            InvalidInput: Empty pool or unknown algorithm
        """
        if not candidates:
            raise InvalidInput("Cannot select from an empty arm pool")
        if len(candidates) == 1:
            return candidates[0]

        try:
            algorithm = Algorithm(config.algorithm)
        except ValueError:
            raise InvalidInput(
                f"Unknown selection algorithm: {config.algorithm}",
                {"algorithm": str(config.algorithm)},
            )

        strategies = {
            Algorithm.EPSILON_GREEDY: self._epsilon_greedy,
            Algorithm.UCB: self._ucb,
            Algorithm.THOMPSON_SAMPLING: self._thompson,
            Algorithm.SOFTMAX: self._softmax,
            Algorithm.RANDOM: self._uniform,
        }

        try:
            chosen = strategies[algorithm](candidates, config)
        except DegenerateDistribution as e:
            logger.warning(
                f"Degenerate {algorithm.value} distribution ({e.message}); "
                f"falling back to uniform over {len(candidates)} arms"
            )
            chosen = self._uniform(candidates, config)

        logger.debug(f"Selected arm {chosen.arm.key} via {algorithm.value}")
        return chosen

    def _uniform(self, candidates: list[TopicPerformance], config: RLConfig) -> TopicPerformance:
        return candidates[self.rng.randrange(len(candidates))]

    def _epsilon_greedy(
        self, candidates: list[TopicPerformance], config: RLConfig
    ) -> TopicPerformance:
        if all(c.attempts == 0 for c in candidates) or self.rng.random() < config.epsilon:
            return self._uniform(candidates, config)

        values = [c.estimated_value for c in candidates]
        _check_finite(values, "estimated values")
        return candidates[_argmax(values)]

    def _ucb(self, candidates: list[TopicPerformance], config: RLConfig) -> TopicPerformance:
        total_attempts = sum(c.attempts for c in candidates)
        if total_attempts <= 0:
            return self._uniform(candidates, config)

        # Unvisited arms strictly dominate
        for candidate in candidates:
            if candidate.attempts <= 0:
                return candidate

        values = [c.estimated_value for c in candidates]
        _check_finite(values, "estimated values")

        log_total = math.log(total_attempts)
        scores = [
            c.estimated_value + config.exploration_rate * math.sqrt(log_total / c.attempts)
            for c in candidates
        ]
        return candidates[_argmax(scores)]

    def _thompson(self, candidates: list[TopicPerformance], config: RLConfig) -> TopicPerformance:
        samples = [
            sample_beta(self.rng, 1.0 + c.correct_answers, 1.0 + c.incorrect_answers)
            for c in candidates
        ]
        _check_finite(samples, "posterior samples")
        return candidates[_argmax(samples)]

    def _softmax(self, candidates: list[TopicPerformance], config: RLConfig) -> TopicPerformance:
        temperature = config.temperature
        if not (temperature > 0 and math.isfinite(temperature)):
            raise DegenerateDistribution(
                "Softmax temperature must be positive", {"temperature": temperature}
            )

        values = [c.estimated_value for c in candidates]
        _check_finite(values, "estimated values")

        # Shift by the max so the largest exponent is 0
        peak = max(values)
        weights = [math.exp((value - peak) / temperature) for value in values]
        total = sum(weights)
        if not (total > 0 and math.isfinite(total)):
            raise DegenerateDistribution("Softmax weights do not normalize", {"total": total})

        threshold = self.rng.random() * total
        cumulative = 0.0
        for candidate, weight in zip(candidates, weights):
            cumulative += weight
            if threshold < cumulative:
                return candidate
        return candidates[-1]
