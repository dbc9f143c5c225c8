"""
Running response-time statistics and sequential stopping rules.

The delay table keeps only the sample count, sum and sum of squares, so
memory does not grow with the run length. After every sample the attached
stopping rule decides whether the estimate is good enough.
"""
from __future__ import annotations

import math
from functools import lru_cache
from typing import Optional, Tuple

from scipy import stats as scipy_stats

# Sample count from which the normal quantile replaces Student's t.
LARGE_SAMPLE = 1000


@lru_cache(maxsize=4096)
def critical_value(confidence_level: float, samples: int) -> float:
    """Two-sided critical value for a mean estimated from ``samples`` values."""
    q = (1.0 + confidence_level) / 2.0
    if samples >= LARGE_SAMPLE:
        return float(scipy_stats.norm.ppf(q))
    return float(scipy_stats.t.ppf(q, samples - 1))


# -----------------------------
# Stopping rules
# -----------------------------
class StoppingRule:
    """Decides from the running statistics whether collection can stop."""

    min_samples: int = 1

    def is_satisfied(self, table: "DelayTable") -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


class ConfidenceIntervalRule(StoppingRule):
    """Stop once the interval half width is within ``accuracy`` of the mean."""

    def __init__(self, confidence_level: float = 0.95, accuracy: float = 0.01, min_samples: int = 2) -> None:
        if not 0.0 < confidence_level < 1.0:
            raise ValueError("confidence_level must be in (0, 1)")
        if accuracy <= 0:
            raise ValueError("accuracy must be > 0")
        self.confidence_level = confidence_level
        self.accuracy = accuracy
        self.min_samples = max(2, int(min_samples))

    def is_satisfied(self, table: "DelayTable") -> bool:
        if table.count < self.min_samples:
            return False
        mean = table.mean
        if mean == 0.0:
            return False
        return table.half_width(self.confidence_level) / abs(mean) <= self.accuracy

    def describe(self) -> str:
        return f"confidence_interval(level={self.confidence_level}, accuracy={self.accuracy})"


class FixedSampleCountRule(StoppingRule):
    """Stop after exactly ``samples`` recorded values."""

    def __init__(self, samples: int) -> None:
        if samples < 1:
            raise ValueError("samples must be >= 1")
        self.samples = int(samples)
        self.min_samples = self.samples

    def is_satisfied(self, table: "DelayTable") -> bool:
        return table.count >= self.samples

    def describe(self) -> str:
        return f"fixed_samples({self.samples})"


# -----------------------------
# Delay table
# -----------------------------
class DelayTable:
    def __init__(self, rule: Optional[StoppingRule] = None, confidence_level: float = 0.95) -> None:
        self.rule = rule if rule is not None else ConfidenceIntervalRule(confidence_level)
        self.confidence_level = getattr(self.rule, "confidence_level", confidence_level)
        self.count: int = 0
        self.total: float = 0.0
        self.total_sq: float = 0.0
        self.minimum: float = math.inf
        self.maximum: float = -math.inf
        self.converged: bool = False
        self.converged_at_count: Optional[int] = None

    def record(self, value: float) -> bool:
        """Add one sample; return True once the stopping rule is satisfied."""
        value = float(value)
        self.count += 1
        self.total += value
        self.total_sq += value * value
        self.minimum = min(self.minimum, value)
        self.maximum = max(self.maximum, value)
        if not self.converged and self.rule.is_satisfied(self):
            self.converged = True
            self.converged_at_count = self.count
        return self.converged

    @property
    def mean(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total / self.count

    @property
    def variance(self) -> float:
        if self.count < 2:
            return 0.0
        var = (self.total_sq - self.total * self.total / self.count) / (self.count - 1)
        # rounding can leave a tiny negative value for near-constant samples
        return max(var, 0.0)

    @property
    def stdev(self) -> float:
        return math.sqrt(self.variance)

    def half_width(self, confidence_level: Optional[float] = None) -> float:
        if self.count < 2:
            return math.inf
        level = self.confidence_level if confidence_level is None else confidence_level
        return critical_value(level, self.count) * self.stdev / math.sqrt(self.count)

    def interval(self, confidence_level: Optional[float] = None) -> Tuple[float, float]:
        h = self.half_width(confidence_level)
        return (self.mean - h, self.mean + h)

    def relative_precision(self, confidence_level: Optional[float] = None) -> float:
        if self.mean == 0.0:
            return math.inf
        return self.half_width(confidence_level) / abs(self.mean)
