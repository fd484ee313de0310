"""
RPG Build Calculator - Core Constants
=====================================
Single source of truth for rank tables, damage constants, error codes and
pipeline defaults.

Coefficient tables shipped here are the reference configuration; callers
that load their own EqConst/WeaponCalc data pass it in explicitly.
"""

from enum import Enum
from typing import Dict, List


# =============================================================================
# ENUMS
# =============================================================================

class ErrorCode(Enum):
    """Failure kinds reported through CalcResult."""
    INVALID_INPUT = "INVALID_INPUT"
    CALCULATION_ERROR = "CALCULATION_ERROR"
    DAMAGE_CALC_ERROR = "DAMAGE_CALC_ERROR"
    SKILL_NOT_FOUND = "SKILL_NOT_FOUND"
    SKILL_CALC_ERROR = "SKILL_CALC_ERROR"


class CritMode(Enum):
    """How critical hits are folded into a single damage number."""
    CRIT = "crit"       # Every hit crits
    NOCRIT = "nocrit"   # No hit crits
    AVG = "avg"         # Expected value weighted by crit rate


class DamageCorrectionMode(Enum):
    """Which end of the weapon's damage roll to use."""
    MIN = "min"
    MAX = "max"
    AVG = "avg"


class HitMode(Enum):
    """How a "min~max" hit range collapses to one hit count."""
    MIN = "min"
    MAX = "max"
    AVG = "avg"


class RingType(Enum):
    """Additive ring variants and the stat each one feeds."""
    POWER = "power"
    MAGIC = "magic"
    SPEED = "speed"


# =============================================================================
# RANKS
# =============================================================================

# Highest first. Index comparisons rely on this order.
RANK_ORDER: List[str] = ['SSS', 'SS', 'S', 'A', 'B', 'C', 'D', 'E', 'F']

LOWEST_RANK = 'F'


# =============================================================================
# ROUNDING
# =============================================================================

# Intermediate rounding applied before the final integer rounding so that
# values such as 107.49999999999999 round the way a human expects.
ROUNDING_PRECISION = 10

# Two stat blocks whose values differ by at most this much are equal.
STAT_EQUALITY_TOLERANCE = 1e-4


# =============================================================================
# STAT AGGREGATION
# =============================================================================

# Crit rate = weapon crit rate + dex * CRIT_RATE_PER_DEX
CRIT_RATE_PER_DEX = 0.3

# Hard cap on every convergence loop. Large bonuses never reach a fixed
# point; stopping here is the defined behaviour.
MAX_CONVERGENCE_ITERATIONS = 100

# Additive ring: anchor = equipment value + RING_BASE_VALUE,
# next = anchor + round(current * RING_MULTIPLIER)
RING_BASE_VALUE = 40
RING_MULTIPLIER = 0.1

RING_TARGET_STAT: Dict[RingType, str] = {
    RingType.POWER: 'Power',
    RingType.MAGIC: 'Magic',
    RingType.SPEED: 'Agility',
}

# Keys read (in order) from the final stat block as the dex input to crit rate
CRIT_RATE_DEX_KEYS: List[str] = ['UserCritRate', 'CritRate', 'DEX', 'Dex', 'dex', '器用さ']


# =============================================================================
# DAMAGE
# =============================================================================

DAMAGE_CORRECTION_VALUES: Dict[DamageCorrectionMode, float] = {
    DamageCorrectionMode.MIN: 0.8,
    DamageCorrectionMode.MAX: 1.2,
    DamageCorrectionMode.AVG: 1.0,
}

# External (UI) crit mode names -> internal blend mode
CRIT_MODE_ALIASES: Dict[str, CritMode] = {
    'always': CritMode.CRIT,
    'never': CritMode.NOCRIT,
    'expected': CritMode.AVG,
    'crit': CritMode.CRIT,
    'nocrit': CritMode.NOCRIT,
    'avg': CritMode.AVG,
}

# Crit rate used for blending is clamped to this ceiling
CRIT_RATE_CAP = 100.0

# final = floor(total * max(0, 1 - defense / DEFENSE_DIVISOR))
DEFENSE_DIVISOR = 1000.0

# Type/attribute resistances are clamped to +-RESISTANCE_CAP percent
RESISTANCE_CAP = 100.0

# Optional WeaponCalc entry overriding the built-in mitigation, evaluated per
# hit with HitDamage, EnemyDefence, EnemyTypeResistance, EnemyAttributeResistance
FINAL_DAMAGE_KEY = 'FinalDamage'

# Combo correction for weapons that chain hits (Frypan). Not modelled yet.
DEFAULT_COMBO_CORRECTION = 1.0

# Weapon mismatch penalty when the formula table enables it without a value
DEFAULT_WEAPON_MISMATCH_PENALTY = 0.2

# Skill categories searched first, in this order; any other category follows
SKILL_CATEGORY_ORDER: List[str] = ['SkillBook', 'JobSkill']

# Name of the job correction entry that multiplies base damage
JOB_BONUS_KEY = 'Bonus'


# =============================================================================
# EQUIPMENT LIMITS (reference configuration)
# =============================================================================

WEAPON_MAX_REINFORCEMENT = 80
ARMOR_MAX_REINFORCEMENT = 40
ARMOR_MAX_SMITHING = 12
MAX_RUNES = 4

# A rune set bonus needs at least this many equipped runes, all of one set
MIN_RUNE_SET_PIECES = 2

# Attack rank bonus is scaled by item level / WEAPON_RANK_DENOMINATOR
WEAPON_RANK_DENOMINATOR = 320

ARMOR_EXPONENT = 0.2
ACCESSORY_SCALING_DIVISOR = 550


# =============================================================================
# JOB PROGRESSION
# =============================================================================

MIN_JOB_LEVEL = 1
MAX_JOB_LEVEL = 999

SP_PER_LEVEL = 2

SP_BRANCHES: List[str] = ['A', 'B', 'C']

# Tiers probed per branch when walking an SP tree
MAX_SP_TIERS = 50

# Default ceiling of a branch when the tree has no priced tiers
DEFAULT_BRANCH_MAX_SP = 100
