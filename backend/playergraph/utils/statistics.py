"""Statistical utility functions for safe similarity calculations."""

import math
from typing import Dict, Iterable, List, Sequence


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning default if denominator is zero.

    Args:
        numerator: The numerator
        denominator: The denominator
        default: Value to return if denominator is zero

    Returns:
        Result of division or default value
    """
    return numerator / denominator if denominator > 0 else default


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def kill_death_ratio(kills: float, deaths: float) -> float:
    """K/D with the usual convention that zero deaths yields the kill count."""
    return kills / deaths if deaths > 0 else float(kills)


def ratio_similarity(a: float, b: float, epsilon: float = 1e-9) -> float:
    """
    Similarity of two non-negative scalars: ``1 - |a-b| / max(a, b, eps)``.

    Two zeros are identical (1.0). Result is clamped to [0, 1].
    """
    if a == 0 and b == 0:
        return 1.0
    return clamp(1.0 - abs(a - b) / max(a, b, epsilon))


def cosine_similarity(
    first: Dict[str, float], second: Dict[str, float], keys: Iterable[str]
) -> float:
    """
    Cosine similarity of two sparse vectors restricted to ``keys``.

    Args:
        first: Sparse vector (key -> value)
        second: Sparse vector (key -> value)
        keys: Dimensions to compare, usually the keys both vectors share

    Returns:
        Cosine similarity in [0, 1] for non-negative vectors, 0.0 if either
        restricted vector has zero magnitude
    """
    dot = 0.0
    norm_first = 0.0
    norm_second = 0.0
    for key in keys:
        x = first.get(key, 0.0)
        y = second.get(key, 0.0)
        dot += x * y
        norm_first += x * x
        norm_second += y * y

    if norm_first == 0 or norm_second == 0:
        return 0.0
    return clamp(dot / (math.sqrt(norm_first) * math.sqrt(norm_second)))


def normalize_distribution(counts: Sequence[float]) -> List[float]:
    """Turn a histogram into a probability distribution (all zeros stay zero)."""
    total = sum(counts)
    if total <= 0:
        return [0.0 for _ in counts]
    return [c / total for c in counts]


def jensen_shannon_divergence(p: Sequence[float], q: Sequence[float]) -> float:
    """
    Jensen-Shannon divergence of two probability distributions, base 2.

    Bounded to [0, 1]; 0 means identical distributions.
    """
    if len(p) != len(q):
        raise ValueError("Distributions must have the same length")

    m = [(pi + qi) / 2 for pi, qi in zip(p, q)]

    def _kl(a: Sequence[float], b: Sequence[float]) -> float:
        return sum(ai * math.log2(ai / bi) for ai, bi in zip(a, b) if ai > 0 and bi > 0)

    return clamp(0.5 * _kl(p, m) + 0.5 * _kl(q, m))


def jaccard(first: set, second: set) -> float:
    union = first | second
    if not union:
        return 0.0
    return len(first & second) / len(union)


def jaccard_from_counts(intersection: int, union: int) -> float:
    return safe_divide(intersection, union)


def interval_overlap_ratio(
    start_a: float, end_a: float, start_b: float, end_b: float
) -> float:
    """Overlap of two intervals divided by the shorter one (0 when disjoint)."""
    overlap = min(end_a, end_b) - max(start_a, start_b)
    if overlap < 0:
        return 0.0
    shorter = min(end_a - start_a, end_b - start_b)
    if shorter <= 0:
        # A single instant inside the other interval
        return 1.0
    if overlap == 0:
        return 0.0
    return clamp(overlap / shorter)
