"""
Thompson Sampling primitives.

``RandomSource`` is the only place randomness enters strategy selection,
so a seeded instance makes the whole bandit reproducible.
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Optional, Sequence, TypeVar

T = TypeVar('T')


class RandomSource:
    """
    Seedable random source for the bandit.

    Uniform draws come from numpy's generator; normals use Box-Muller and
    Gamma variates use the Marsaglia-Tsang squeeze method on top of them.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def uniform(self) -> float:
        """Uniform draw on [0, 1)."""
        return float(self._rng.random())

    def normal(self) -> float:
        """Standard normal draw (Box-Muller)."""
        u1 = 1.0 - self.uniform()  # (0, 1], keeps log finite
        u2 = self.uniform()
        return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)

    def gamma(self, shape: float) -> float:
        """Gamma(shape, 1) draw."""
        if shape <= 0:
            raise ValueError(f"Gamma shape must be positive, got {shape}")
        if shape < 1:
            return self.gamma(shape + 1) * self.uniform() ** (1.0 / shape)

        d = shape - 1.0 / 3.0
        c = 1.0 / math.sqrt(9.0 * d)

        while True:
            x = self.normal()
            v = 1.0 + c * x
            if v <= 0:
                continue
            v = v * v * v
            u = self.uniform()

            if u < 1 - 0.0331 * x ** 4:
                return d * v
            if u > 0 and math.log(u) < 0.5 * x * x + d * (1 - v + math.log(v)):
                return d * v

    def beta(self, alpha: float, beta: float) -> float:
        """Beta(alpha, beta) draw as a ratio of Gamma variates."""
        x = self.gamma(alpha)
        y = self.gamma(beta)
        total = x + y
        return x / total if total > 0 else 0.5

    def choice(self, items: Sequence[T]) -> T:
        """Uniformly random element."""
        if not items:
            raise ValueError("Cannot choose from an empty sequence")
        return items[int(self._rng.integers(len(items)))]


@dataclass
class BanditArm:
    """
    Beta-Bernoulli arm for one strategy.

    Starts from the uniform prior (1, 1) with one pseudo-trial and one
    pseudo-win. Counters only move forward.
    """
    strategy_id: str
    wins: int = 1
    trials: int = 1
    alpha: float = 1.0
    beta: float = 1.0

    @property
    def win_rate(self) -> float:
        return self.wins / self.trials if self.trials > 0 else 0.0

    def record(self, profitable: bool):
        """Apply one binary reward."""
        if profitable:
            self.alpha += 1
            self.wins += 1
        else:
            self.beta += 1
        self.trials += 1

    def sample(self, rng: RandomSource) -> float:
        return rng.beta(self.alpha, self.beta)

    def to_dict(self) -> dict:
        return {
            'strategy_id': self.strategy_id,
            'wins': self.wins,
            'trials': self.trials,
            'alpha': self.alpha,
            'beta': self.beta,
            'win_rate': self.win_rate
        }
