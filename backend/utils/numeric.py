"""
Numeric Helpers
===============

Small, pure helpers shared by the full dashboard build, the filtered
re-aggregation and project detail. No state, no logging.

Rounding is half-up (1.5 -> 2, 2.5 -> 3) rather than Python's banker's
rounding, so that PSF and rent figures are stable across both code paths.
"""

import math
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round half away from zero for positive values."""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def round_int(value: float) -> int:
    return int(math.floor(value + 0.5))


def avg(total: float, n: int) -> int:
    """Rounded average; 0 when n <= 0."""
    return round_int(total / n) if n > 0 else 0


def median(values: Iterable[float]) -> float:
    """
    Median of a numeric collection; 0 for empty input.

    Even-length medians are the rounded midpoint of the two middle values.
    """
    s = sorted(values)
    if not s:
        return 0
    m = len(s) // 2
    if len(s) % 2:
        return s[m]
    return round_int((s[m - 1] + s[m]) / 2)


def safe_div(num: float, den: float, decimals: int = 2) -> float:
    """Division rounded to `decimals`; 0 when the denominator is 0."""
    if den == 0:
        return 0
    return round_half_up(num / den, decimals)


def pct_change(current: float, previous: Optional[float], decimals: int = 1) -> Optional[float]:
    """
    Percent change (current / previous - 1) * 100.

    Returns None when there is no usable previous value.
    """
    if not previous or previous <= 0:
        return None
    return round_half_up((current / previous - 1) * 100, decimals)


def cagr_pct(start_value: float, end_value: float, years: int, decimals: int = 1) -> Optional[float]:
    """Compound annual growth rate in percent; None for unusable inputs."""
    if start_value <= 0 or end_value <= 0 or years < 1:
        return None
    return round_half_up(((end_value / start_value) ** (1 / years) - 1) * 100, decimals)


def gross_yield_pct(rent_psf: float, sale_psf: float) -> float:
    """Annualized gross yield in percent: rent_psf * 12 / sale_psf * 100."""
    if not rent_psf or sale_psf <= 0:
        return 0
    return round_half_up(rent_psf * 12 / sale_psf * 100, 2)


def dominant_segment(segment_counts: Optional[Dict[str, int]], default: str = 'RCR') -> str:
    """Segment with the highest count; `default` when counts are empty."""
    best, best_n = default, 0
    for seg, n in (segment_counts or {}).items():
        if n > best_n:
            best, best_n = seg, n
    return best


def percentile(sorted_values: Sequence[float], p: float, min_samples: int = 10) -> float:
    """
    Nearest-rank (floor) percentile of an already sorted sequence.

    Returns 0 when there are `min_samples` or fewer values.
    """
    if len(sorted_values) <= min_samples:
        return 0
    return sorted_values[int(len(sorted_values) * p)]


def histogram(values: Sequence[float], width: int) -> List[Dict[str, object]]:
    """
    Fixed-width histogram with bucket edges on multiples of `width`.

    The range runs from the bucket holding the minimum through the bucket
    holding the maximum, so every value is counted exactly once. Bucket
    labels are "$<lower bound>".
    """
    if len(values) == 0:
        return []
    values = np.asarray(values, dtype=float)
    lo = math.floor(values.min() / width) * width
    hi = (math.floor(values.max() / width) + 1) * width
    counts, _ = np.histogram(values, bins=np.arange(lo, hi + width, width))
    return [{'r': f"${lo + i * width}", 'c': int(c)} for i, c in enumerate(counts)]
