"""
Multiplier curve — pure pacing functions for the flying phase.

The crash point C is known before takeoff, so the curve only decides how the
climb looks:

  duration(C)             total flight time in seconds, longer for larger C,
                          plus up to MAX_JITTER_S of random slack
  multiplier_at(p, C)     displayed multiplier at progress p ∈ [0, 1]

The climb is exponential, M(t) = e^(k·t) with k = ln(C) / duration, so every
round follows the same relative growth law whatever its size. Displayed
values are floored to hundredths, which keeps them monotonic and never
above C; progress 1 returns C itself.
"""
import math
import random
from typing import Optional

MIN_DURATION_S = 2.5
SECONDS_PER_LOG_UNIT = 4.0  # ~5.3s to 2x, ~11.7s to 10x, ~21s to 100x
MAX_DURATION_S = 30.0
MAX_JITTER_S = 0.5


def quantize(value: float) -> float:
    """Floor to hundredths. The epsilon absorbs float noise such as 1.07 * 100 = 106.999…"""
    return round(math.floor(value * 100 + 1e-9) / 100, 2)


def base_duration(crash_point: float) -> float:
    """Deterministic part of the flight time; non-decreasing in crash_point."""
    if crash_point <= 1.0:
        return MIN_DURATION_S
    return min(MAX_DURATION_S, MIN_DURATION_S + SECONDS_PER_LOG_UNIT * math.log(crash_point))


def duration(
    crash_point: float,
    rng: Optional[random.Random] = None,
    jitter_s: float = MAX_JITTER_S,
) -> float:
    """Flight time in seconds: base_duration plus uniform jitter in [0, jitter_s]."""
    jitter_s = min(max(jitter_s, 0.0), MAX_JITTER_S)
    rng = rng or random
    return base_duration(crash_point) + rng.uniform(0.0, jitter_s)


def growth_rate(crash_point: float, duration_s: float) -> float:
    """k in M(t) = e^(k·t)."""
    if crash_point <= 1.0 or duration_s <= 0:
        return 0.0
    return math.log(crash_point) / duration_s


def multiplier_at(progress: float, crash_point: float) -> float:
    if progress >= 1.0:
        return crash_point
    if progress <= 0.0 or crash_point <= 1.0:
        return 1.00
    raw = math.exp(math.log(crash_point) * progress)
    return min(quantize(raw), crash_point)


def multiplier_after(elapsed_s: float, duration_s: float, crash_point: float) -> float:
    """Displayed multiplier `elapsed_s` into a flight lasting `duration_s`."""
    if duration_s <= 0:
        return crash_point
    return multiplier_at(min(1.0, elapsed_s / duration_s), crash_point)
