"""
Random samplers for arm selection.

Every sampler takes the RNG as its first argument so that a seeded
`random.Random` reproduces a selection exactly.
"""

import hashlib
import math
import random

from mastery_engine.core.errors import InvalidInput


def create_seeded_rng(seed: str | int | None) -> random.Random:
    """
    Create a random number generator.

    Args:
        seed: Integer seed, any string (hashed), or None for an unseeded RNG

    Returns:
        Random instance
    """
    if seed is None:
        return random.Random()
    if isinstance(seed, int):
        return random.Random(seed)
    seed_bytes = hashlib.sha256(seed.encode()).digest()
    return random.Random(int.from_bytes(seed_bytes[:8], byteorder="big"))


def sample_normal(rng: random.Random) -> float:
    """Standard normal sample via the Box-Muller transform."""
    # 1 - random() lies in (0, 1], so the log is always defined
    u1 = 1.0 - rng.random()
    u2 = rng.random()
    return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)


def sample_gamma(rng: random.Random, alpha: float) -> float:
    """
    Sample from Gamma(alpha, 1) with Marsaglia and Tsang's method.

    Args:
        rng: RNG
        alpha: Shape parameter (>0)

    Returns:
        Positive sample

    Raises:
        InvalidInput: If alpha is not a positive finite number
    """
    if not (alpha > 0 and math.isfinite(alpha)):
        raise InvalidInput("Gamma shape must be positive", {"alpha": alpha})

    if alpha < 1:
        # Boost: Gamma(a) = Gamma(a + 1) * U^(1/a)
        u = 1.0 - rng.random()
        return sample_gamma(rng, alpha + 1.0) * u ** (1.0 / alpha)

    d = alpha - 1.0 / 3.0
    c = 1.0 / math.sqrt(9.0 * d)

    while True:
        x = sample_normal(rng)
        v = 1.0 + c * x
        if v <= 0:
            continue
        v = v * v * v
        u = 1.0 - rng.random()

        # Squeeze test, then the full acceptance test
        if u < 1.0 - 0.0331 * x**4:
            return d * v
        if math.log(u) < 0.5 * x * x + d * (1.0 - v + math.log(v)):
            return d * v


def sample_beta(rng: random.Random, a: float, b: float) -> float:
    """
    Sample from Beta(a, b) as a ratio of Gamma samples.

    Args:
        rng: RNG
        a: Alpha parameter (>0)
        b: Beta parameter (>0)

    Returns:
        Sample in [0, 1]
    """
    if a <= 0 or b <= 0:
        raise InvalidInput("Beta parameters must be positive", {"a": a, "b": b})

    x = sample_gamma(rng, a)
    y = sample_gamma(rng, b)
    total = x + y
    if total <= 0:
        # Both draws underflowed; fall back to the mean
        return a / (a + b)
    return x / total
