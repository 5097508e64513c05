"""
Learner phase classification.

The phase is re-derived from raw aggregates on every call; nothing is
persisted. Each phase carries a fixed selection config, annealing from pure
exploration to mostly exploitation as evidence accumulates.
"""

import logging
from dataclasses import dataclass

from mastery_engine.learning_engine.config import (
    PHASE_COLD_START_MAX_ATTEMPTS,
    PHASE_EXPLORATION_BUDGET,
    PHASE_EXPLORATION_MAX_ATTEMPTS,
    PHASE_LOW_VARIANCE,
    PHASE_META_MIN_ATTEMPTS,
    PHASE_META_MIN_MASTERY,
    PHASE_OPTIMIZATION_MAX_ATTEMPTS,
    PHASE_RL_CONFIGS,
)
from mastery_engine.learning_engine.constants import Algorithm, Phase
from mastery_engine.learning_engine.contracts import PhaseInfo, RLConfig, TopicPerformance

logger = logging.getLogger(__name__)

PHASE_DISPLAY: dict[Phase, tuple[str, str]] = {
    Phase.COLD_START: ("Cold Start", "Building initial understanding - gathering first data points"),
    Phase.EXPLORATION: ("Exploration", "Testing different approaches to find what works best"),
    Phase.OPTIMIZATION: ("Optimization", "Focusing on high-value learning strategies"),
    Phase.STABILIZATION: ("Stabilization", "Performance is stable and consistent"),
    Phase.ADAPTATION: ("Adaptation", "Continuously adjusting to maintain performance"),
    Phase.META_LEARNING: (
        "Meta-Learning",
        "Mastered how to learn - optimal learning patterns established",
    ),
}


@dataclass(frozen=True)
class PhaseAggregates:
    """Raw aggregates the phase is derived from."""

    total_attempts: int
    average_mastery: float
    mastery_variance: float

    @classmethod
    def from_performances(cls, performances: list[TopicPerformance]) -> "PhaseAggregates":
        """Aggregate over arms with at least one attempt (population variance)."""
        attempted = [p for p in performances if p.attempts > 0]
        total = sum(p.attempts for p in attempted)
        if not attempted:
            return cls(total_attempts=0, average_mastery=0.0, mastery_variance=0.0)

        scores = [p.mastery_score for p in attempted]
        mean = sum(scores) / len(scores)
        variance = sum((score - mean) ** 2 for score in scores) / len(scores)
        return cls(total_attempts=total, average_mastery=mean, mastery_variance=variance)


class PhaseController:
    """Classifies a learner's phase and hands out its selection config."""

    def classify_aggregates(self, aggregates: PhaseAggregates) -> Phase:
        """
        Classify a phase from aggregates.

        cold_start (<10 attempts) -> exploration (<50) -> optimization (<150);
        past that, low mastery variance means stabilization, or meta_learning
        with >=500 attempts and >=80 average mastery; high variance means
        adaptation.

        Args:
            aggregates: Totals across the learner's arms

        Returns:
            Phase
        """
        attempts = aggregates.total_attempts
        if attempts < PHASE_COLD_START_MAX_ATTEMPTS.value:
            return Phase.COLD_START
        if attempts < PHASE_EXPLORATION_MAX_ATTEMPTS.value:
            return Phase.EXPLORATION
        if attempts < PHASE_OPTIMIZATION_MAX_ATTEMPTS.value:
            return Phase.OPTIMIZATION

        if aggregates.mastery_variance < PHASE_LOW_VARIANCE.value:
            if (
                attempts >= PHASE_META_MIN_ATTEMPTS.value
                and aggregates.average_mastery >= PHASE_META_MIN_MASTERY.value
            ):
                return Phase.META_LEARNING
            return Phase.STABILIZATION
        return Phase.ADAPTATION

    def classify(self, performances: list[TopicPerformance]) -> Phase:
        return self.classify_aggregates(PhaseAggregates.from_performances(performances))

    def rl_config(self, phase: Phase) -> RLConfig:
        """Fixed selection config for a phase."""
        algorithm, epsilon, exploration_rate, learning_rate, discount, temperature = (
            PHASE_RL_CONFIGS.value[Phase(phase).value]
        )
        return RLConfig(
            algorithm=Algorithm(algorithm),
            epsilon=epsilon,
            exploration_rate=exploration_rate,
            learning_rate=learning_rate,
            discount_factor=discount,
            temperature=temperature,
        )

    def exploration_budget(self, phase: Phase) -> int:
        """Percent of selections reserved for exploration."""
        return PHASE_EXPLORATION_BUDGET.value[Phase(phase).value]

    def progress(self, phase: Phase) -> float:
        """Position of the phase in the phase order, as a percentage."""
        phases = list(Phase)
        return (phases.index(Phase(phase)) + 1) / len(phases) * 100.0

    def info(self, performances: list[TopicPerformance]) -> PhaseInfo:
        """Phase plus its display information and config."""
        aggregates = PhaseAggregates.from_performances(performances)
        phase = self.classify_aggregates(aggregates)
        name, description = PHASE_DISPLAY[phase]
        logger.debug(
            f"Phase {phase.value}: attempts={aggregates.total_attempts}, "
            f"avg_mastery={aggregates.average_mastery:.1f}, "
            f"variance={aggregates.mastery_variance:.1f}"
        )
        return PhaseInfo(
            phase=phase,
            name=name,
            description=description,
            progress=self.progress(phase),
            exploration_budget=self.exploration_budget(phase),
            rl_config=self.rl_config(phase),
            total_attempts=aggregates.total_attempts,
        )
