"""Estimated value and uncertainty of arms."""

import math

from mastery_engine.learning_engine.config import (
    UNCERTAINTY_SAMPLE_WEIGHT,
    UNCERTAINTY_UNATTEMPTED,
    UNCERTAINTY_VARIANCE_WEIGHT,
    VALUE_RECENCY_HORIZON_DAYS,
    VALUE_UNATTEMPTED,
    VALUE_WEIGHT_CALIBRATION,
    VALUE_WEIGHT_MASTERY,
    VALUE_WEIGHT_RECENCY,
)
from mastery_engine.learning_engine.contracts import TopicPerformance


def _clip01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


class ValueEstimator:
    """Computes estimated_value and uncertainty for arms."""

    def estimate_value(self, performance: TopicPerformance) -> float:
        """
        Expected learning value of practicing an arm.

        value = 0.6 * mastery/100 + 0.2 * (1 - calibration_error)
                + 0.2 * min(days_since_review / 30, 1)

        Args:
            performance: Arm state

        Returns:
            Value in [0, 1]; 0.5 for an arm never attempted
        """
        if performance.attempts <= 0:
            return VALUE_UNATTEMPTED.value

        mastery_term = performance.mastery_score / 100.0
        calibration_term = max(0.0, 1.0 - performance.confidence_calibration_error)
        days = performance.time_since_last_review or 0.0
        recency_term = min(max(days, 0.0) / VALUE_RECENCY_HORIZON_DAYS.value, 1.0)

        value = (
            VALUE_WEIGHT_MASTERY.value * mastery_term
            + VALUE_WEIGHT_CALIBRATION.value * calibration_term
            + VALUE_WEIGHT_RECENCY.value * recency_term
        )
        return _clip01(value)

    def estimate_uncertainty(self, performance: TopicPerformance) -> float:
        """
        Uncertainty of the value estimate.

        Shrinks with 1/sqrt(attempts) and grows with outcome spread.

        Args:
            performance: Arm state

        Returns:
            Uncertainty in [0, 1]; 1.0 for an arm never attempted
        """
        if performance.attempts <= 0:
            return UNCERTAINTY_UNATTEMPTED.value

        p = min(1.0, max(0.0, performance.correct_answers / performance.attempts))
        sample_term = UNCERTAINTY_SAMPLE_WEIGHT.value / math.sqrt(performance.attempts)
        spread_term = UNCERTAINTY_VARIANCE_WEIGHT.value * math.sqrt(p * (1.0 - p))
        return _clip01(sample_term + spread_term)

    def annotate(self, performances: list[TopicPerformance]) -> list[TopicPerformance]:
        """Return copies with estimated_value and uncertainty filled in."""
        return [
            perf.copy(
                estimated_value=self.estimate_value(perf),
                uncertainty=self.estimate_uncertainty(perf),
            )
            for perf in performances
        ]
