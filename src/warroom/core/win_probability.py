"""Win probability from the current score differential.

Each team's final score is modeled as normally distributed around its current
score with standard deviation ``sd``; the lead is then compared against the
combined spread of both teams.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

MIN_WIN_PROBABILITY = 0.05
MAX_WIN_PROBABILITY = 0.95


def normal_cdf(x: float) -> float:
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


@dataclass(frozen=True)
class WinProbabilityModel:
    """Lower ``sd`` is more aggressive: a given lead maps to a higher percentage."""

    sd: float = 40.0

    def probability(self, my_score: float, opponent_score: float) -> float:
        """Probability in [0.05, 0.95] that ``my_score``'s side wins; 0.5 before any scoring."""
        if my_score + opponent_score <= 0:
            return 0.5
        combined_sd = self.sd * math.sqrt(2.0)
        z = (my_score - opponent_score) / combined_sd
        return min(max(normal_cdf(z), MIN_WIN_PROBABILITY), MAX_WIN_PROBABILITY)
