"""
RPG Build Calculator - Stat Block Math
======================================
Rounding helpers and key-wise arithmetic over stat blocks.

A stat block is a plain ``Dict[str, float]``. Keys are sparse: a missing key
is worth 0, and every function here treats it that way instead of raising.
"""

import math
from typing import Callable, Dict, List, Mapping, Optional

from .constants import ROUNDING_PRECISION, STAT_EQUALITY_TOLERANCE

StatBlock = Dict[str, float]


# =============================================================================
# ROUNDING
# =============================================================================

def _settle(value: float) -> float:
    """Strip binary representation noise (107.49999999999999 -> 107.5)."""
    return round(value, ROUNDING_PRECISION)


def round_half_away(value: float) -> int:
    """
    Round to the nearest integer, halves away from zero.

    Examples:
        round_half_away(107.5) -> 108
        round_half_away(-2.5) -> -3
        round_half_away(100 * 1.075) -> 108   (107.49999999999999 in binary)
    """
    settled = _settle(value)
    magnitude = math.floor(abs(settled) + 0.5)
    return magnitude if settled >= 0 else -magnitude


def round_up(value: float) -> int:
    """Ceiling after settling representation noise."""
    return math.ceil(_settle(value))


def round_down(value: float) -> int:
    """Floor after settling representation noise."""
    return math.floor(_settle(value))


def _at_decimals(value: float, decimals: int, rounder: Callable[[float], int]) -> float:
    # Negative places divide by an exact integer power of ten so the
    # rescaled result stays integral (round(1234, -1) == 1230, not 1229.99..).
    decimals = int(decimals)
    if decimals >= 0:
        factor = 10 ** decimals
        return rounder(value * factor) / factor
    factor = 10 ** (-decimals)
    return float(rounder(value / factor) * factor)


def round_to(value: float, decimals: int = 0) -> float:
    """Spreadsheet ROUND: half away from zero at ``decimals`` places (may be negative)."""
    return _at_decimals(value, decimals, round_half_away)


def round_up_to(value: float, decimals: int = 0) -> float:
    """Spreadsheet ROUNDUP equivalent built on ceil."""
    return _at_decimals(value, decimals, round_up)


def round_down_to(value: float, decimals: int = 0) -> float:
    """Spreadsheet ROUNDDOWN equivalent built on floor."""
    return _at_decimals(value, decimals, round_down)


# =============================================================================
# SCALAR HELPERS
# =============================================================================

def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def percent_to_multiplier(percent: float) -> float:
    """12.5 (%) -> 1.125"""
    return 1 + percent / 100


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    if denominator == 0:
        return default
    return numerator / denominator


# =============================================================================
# STAT BLOCK OPERATIONS
# =============================================================================

def get_stat(block: Optional[Mapping[str, float]], key: str, default: float = 0) -> float:
    """Read a key, treating a missing block, key or None value as ``default``."""
    if not block:
        return default
    value = block.get(key)
    return default if value is None else value


def clone_stats(block: Optional[Mapping[str, float]]) -> StatBlock:
    return dict(block) if block else {}


def map_stats(block: Mapping[str, float], fn: Callable[[float], float]) -> StatBlock:
    """Apply ``fn`` to every value, keeping the key set."""
    return {key: fn(value) for key, value in block.items()}


def union_keys(*blocks: Optional[Mapping[str, float]]) -> List[str]:
    """Keys present in any block, in first-seen order."""
    seen: Dict[str, None] = {}
    for block in blocks:
        if block:
            for key in block:
                seen.setdefault(key, None)
    return list(seen)


def add_stats(a: Optional[Mapping[str, float]], b: Optional[Mapping[str, float]]) -> StatBlock:
    return {key: get_stat(a, key) + get_stat(b, key) for key in union_keys(a, b)}


def sum_stats(*blocks: Optional[Mapping[str, float]]) -> StatBlock:
    """
    Left-fold addition of any number of stat blocks.

    The result holds the union of keys; each value is the sum across inputs
    with missing keys counted as 0. ``sum_stats()`` is ``{}``.
    """
    total: StatBlock = {}
    for block in blocks:
        total = add_stats(total, block)
    return total


def subtract_stats(a: Optional[Mapping[str, float]], b: Optional[Mapping[str, float]]) -> StatBlock:
    return {key: get_stat(a, key) - get_stat(b, key) for key in union_keys(a, b)}


def multiply_stats(block: Mapping[str, float], factor: float) -> StatBlock:
    return map_stats(block, lambda value: value * factor)


def is_equal_stats(
    a: Optional[Mapping[str, float]],
    b: Optional[Mapping[str, float]],
    tolerance: float = STAT_EQUALITY_TOLERANCE,
) -> bool:
    """True when every key of either block differs by at most ``tolerance``."""
    return all(
        abs(get_stat(a, key) - get_stat(b, key)) <= tolerance
        for key in union_keys(a, b)
    )


def has_nonzero(block: Optional[Mapping[str, float]]) -> bool:
    """True when a block carries at least one non-zero value."""
    if not block:
        return False
    return any(value for value in block.values())
