"""
RPG Build Calculator - Equipment Stat Calculator
================================================
Turns catalog equipment records plus rank, reinforcement, smithing and
alchemy choices into stat contributions.

Slots: weapon, head/body/leg armor, necklace/bracelet accessories, one
emblem (percent bonuses) and up to four runestones.

Rank-indexed numbers come from a CoefficientTables instance, normally built
from an EqConst-shaped mapping with CoefficientTables.from_config().
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from rpg_build_calc.core.constants import (
    ACCESSORY_SCALING_DIVISOR,
    ARMOR_EXPONENT,
    ARMOR_MAX_REINFORCEMENT,
    ARMOR_MAX_SMITHING,
    LOWEST_RANK,
    MAX_RUNES,
    MIN_RUNE_SET_PIECES,
    RANK_ORDER,
    WEAPON_MAX_REINFORCEMENT,
    WEAPON_RANK_DENOMINATOR,
)
from rpg_build_calc.core.stat_math import (
    StatBlock,
    add_stats,
    round_down,
    round_half_away,
    round_up,
    safe_divide,
    sum_stats,
)
from rpg_build_calc.stat_names import (
    AGILITY,
    CRIT_DAMAGE,
    DEFENSE,
    DEX,
    HP,
    MAGIC,
    MIND,
    POWER,
    canonical_stat_name,
    percent_key,
)

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================

class EquipmentSlot(Enum):
    WEAPON = "weapon"
    HEAD = "head"
    BODY = "body"
    LEG = "leg"
    NECKLACE = "necklace"
    BRACELET = "bracelet"


ARMOR_SLOTS = [EquipmentSlot.HEAD, EquipmentSlot.BODY, EquipmentSlot.LEG]
ACCESSORY_SLOTS = [EquipmentSlot.NECKLACE, EquipmentSlot.BRACELET]

# EX coefficient category per stat; anything else uses "Other"
EX_CATEGORY: Dict[str, str] = {
    DEX: "CritR",
    CRIT_DAMAGE: "Speed_CritD",
    AGILITY: "Speed_CritD",
}

# Armor / accessory catalog columns
ARMOR_COLUMNS: Dict[str, str] = {
    '力（初期値）': POWER,
    '魔力（初期値）': MAGIC,
    '体力（初期値）': HP,
    '精神（初期値）': MIND,
    '素早さ（初期値）': AGILITY,
    '器用（初期値）': DEX,
    '撃力（初期値）': CRIT_DAMAGE,
    '守備力（初期値）': DEFENSE,
}

ACCESSORY_COLUMNS: Dict[str, str] = {
    '体力（初期値）': HP,
    '力（初期値）': POWER,
    '魔力（初期値）': MAGIC,
    '精神（初期値）': MIND,
    '撃力（初期値）': CRIT_DAMAGE,
    '素早さ（初期値）': AGILITY,
}

EMBLEM_COLUMNS: Dict[str, str] = {
    '力（%不要）': POWER,
    '魔力（%不要）': MAGIC,
    '体力（%不要）': HP,
    '精神（%不要）': MIND,
    '素早さ（%不要）': AGILITY,
    '器用（%不要）': DEX,
    '撃力（%不要）': CRIT_DAMAGE,
    '守備力（%不要）': DEFENSE,
}

RUNE_COLUMNS: Dict[str, str] = {
    '力': POWER,
    '魔力': MAGIC,
    '体力': HP,
    '精神': MIND,
    '素早さ': AGILITY,
    '器用': DEX,
    '撃力': CRIT_DAMAGE,
    '守備力': DEFENSE,
}

# (resistance type column, value column). Repeated "値" headers arrive as
# 値, 値.1, 値.2 ... once a table loader de-duplicates them.
RUNE_RESISTANCE_COLUMNS: List[Tuple[str, str]] = [
    ('耐性１', '値(%除く)'),
    ('耐性２', '値'),
    ('耐性３', '値.1'),
    ('耐性４', '値.2'),
    ('耐性５', '値.3'),
    ('耐性６', '値.4'),
]


# =============================================================================
# COEFFICIENT TABLES
# =============================================================================

@dataclass(frozen=True)
class WeaponRankValues:
    """Per-rank weapon increments (used for both rank bonus and alchemy)."""
    attack: float = 0
    crit_rate: float = 0
    crit_damage: float = 0
    cool_time: float = 0

    @classmethod
    def from_config(cls, data: Optional[Mapping[str, float]]) -> 'WeaponRankValues':
        data = data or {}
        return cls(
            attack=data.get('AttackP', 0) or 0,
            crit_rate=data.get('CritR', 0) or 0,
            crit_damage=data.get('CritD', 0) or 0,
            cool_time=data.get('CoolT', 0) or 0,
        )


def _check_ranks(ranks, section: str) -> None:
    for rank in ranks:
        if rank not in RANK_ORDER:
            raise ValueError(f"Unknown rank '{rank}' in {section}")


@dataclass(frozen=True)
class CoefficientTables:
    """Rank-indexed equipment coefficients and enhancement multipliers."""
    weapon_bonus: Dict[str, WeaponRankValues]
    weapon_alchemy: Dict[str, WeaponRankValues]
    armor_rank: Dict[str, float]
    accessory_rank: Dict[str, float]
    # category ("CritR", "Speed_CritD", "Other") -> rank -> coefficient
    ex_rank: Dict[str, Dict[str, float]] = field(default_factory=dict)

    weapon_max_reinforcement: int = WEAPON_MAX_REINFORCEMENT
    weapon_reinforcement_attack: float = 2
    weapon_reinforcement_crit_rate: float = 0
    weapon_reinforcement_crit_damage: float = 1
    weapon_denominator: float = WEAPON_RANK_DENOMINATOR
    weapon_forge: float = 1

    armor_max_reinforcement: int = ARMOR_MAX_REINFORCEMENT
    armor_reinforcement_defense: float = 1
    armor_reinforcement_other: float = 2
    armor_forge_defense: float = 1
    armor_forge_other: float = 2
    armor_max_smithing: int = ARMOR_MAX_SMITHING
    armor_exponent: float = ARMOR_EXPONENT

    accessory_divisor: float = ACCESSORY_SCALING_DIVISOR

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'CoefficientTables':
        """
        Build from an EqConst-shaped mapping.

        Expected layout (missing multipliers fall back to the defaults)::

            Weapon:    {Forge: {Other}, Reinforcement: {MAX, AttackP, CritR, CritD,
                        Denominator}, Rank: {<rank>: {Bonus: {...}, Alchemy: {...}}}}
            Armor:     {Forge: {Defence, Other}, Reinforcement: {MAX, Defence, Other},
                        Rank: {<rank>: coef}, ExponentPower}
            Accessory: {Rank: {<rank>: coef}, ScalingDivisor}
            Equipment_EX: {Rank: {CritR: {...}, Speed_CritD: {...}, Other: {...}}}

        Raises:
            ValueError: a rank key is not one of SSS..F.
        """
        weapon = config.get('Weapon') or {}
        armor = config.get('Armor') or {}
        accessory = config.get('Accessory') or {}
        ex = (config.get('Equipment_EX') or {}).get('Rank') or {}

        weapon_ranks = {
            rank: data for rank, data in (weapon.get('Rank') or {}).items()
            if rank != 'Coeff'
        }
        _check_ranks(weapon_ranks, 'Weapon.Rank')
        _check_ranks(armor.get('Rank') or {}, 'Armor.Rank')
        _check_ranks(accessory.get('Rank') or {}, 'Accessory.Rank')
        for category, ranks in ex.items():
            _check_ranks(ranks or {}, f'Equipment_EX.Rank.{category}')

        w_reinf = weapon.get('Reinforcement') or {}
        w_forge = weapon.get('Forge') or {}
        a_reinf = armor.get('Reinforcement') or {}
        a_forge = armor.get('Forge') or {}

        return cls(
            weapon_bonus={
                rank: WeaponRankValues.from_config((data or {}).get('Bonus'))
                for rank, data in weapon_ranks.items()
            },
            weapon_alchemy={
                rank: WeaponRankValues.from_config((data or {}).get('Alchemy'))
                for rank, data in weapon_ranks.items()
            },
            armor_rank=dict(armor.get('Rank') or {}),
            accessory_rank=dict(accessory.get('Rank') or {}),
            ex_rank={category: dict(ranks or {}) for category, ranks in ex.items()},
            weapon_max_reinforcement=w_reinf.get('MAX', WEAPON_MAX_REINFORCEMENT),
            weapon_reinforcement_attack=w_reinf.get('AttackP', 2),
            weapon_reinforcement_crit_rate=w_reinf.get('CritR', 0),
            weapon_reinforcement_crit_damage=w_reinf.get('CritD', 1),
            weapon_denominator=w_reinf.get('Denominator') or WEAPON_RANK_DENOMINATOR,
            weapon_forge=w_forge.get('Other', 1),
            armor_max_reinforcement=a_reinf.get('MAX', ARMOR_MAX_REINFORCEMENT),
            armor_reinforcement_defense=a_reinf.get('Defence', 1),
            armor_reinforcement_other=a_reinf.get('Other', 2),
            armor_forge_defense=a_forge.get('Defence', 1),
            armor_forge_other=a_forge.get('Other', 2),
            armor_max_smithing=a_forge.get('MaxTotal', ARMOR_MAX_SMITHING),
            armor_exponent=armor.get('ExponentPower', ARMOR_EXPONENT),
            accessory_divisor=accessory.get('ScalingDivisor') or ACCESSORY_SCALING_DIVISOR,
        )


def _w(attack, crit_rate, crit_damage, cool_time=0):
    return WeaponRankValues(attack, crit_rate, crit_damage, cool_time)


# Reference configuration. SSS, A and F are the published values; the ranks
# in between are interpolated. Load the live EqConst table for real builds.
DEFAULT_COEFFICIENTS = CoefficientTables(
    weapon_bonus={
        'SSS': _w(31, 5, 5, -0.1), 'SS': _w(29, 4, 4, -0.1), 'S': _w(27, 4, 4),
        'A': _w(25, 3, 3), 'B': _w(20, 2, 2), 'C': _w(15, 2, 2),
        'D': _w(10, 1, 1), 'E': _w(5, 1, 1), 'F': _w(0, 0, 0),
    },
    weapon_alchemy={
        'SSS': _w(118, 11, 48), 'SS': _w(117, 10, 48), 'S': _w(117, 10, 47),
        'A': _w(116, 9, 47), 'B': _w(115, 8, 47), 'C': _w(115, 8, 46),
        'D': _w(114, 7, 46), 'E': _w(114, 7, 46), 'F': _w(113, 7, 46),
    },
    armor_rank={'SSS': 8, 'SS': 7, 'S': 6, 'A': 5, 'B': 4, 'C': 3, 'D': 2, 'E': 1, 'F': 0},
    accessory_rank={'SSS': 55, 'SS': 50, 'S': 45, 'A': 44, 'B': 44, 'C': 35, 'D': 35, 'E': 0, 'F': 0},
    ex_rank={
        'CritR': {'SSS': 0.15, 'SS': 0.13},
        'Speed_CritD': {'SSS': 0.6, 'SS': 0.5},
        'Other': {'SSS': 0.7, 'SS': 0.6},
    },
)


# =============================================================================
# CATALOG RECORDS
# =============================================================================

@dataclass(frozen=True)
class WeaponRecord:
    """A weapon row from the catalog. Stored values are at ``min_rank``."""
    name: str
    weapon_type: str
    level: int
    attack: float
    crit_rate: float = 0
    crit_damage: float = 0
    damage_correction: float = 100
    cool_time: float = 0
    min_rank: Optional[str] = None
    max_rank: Optional[str] = None

    @classmethod
    def from_catalog(cls, row: Mapping[str, Any]) -> 'WeaponRecord':
        return cls(
            name=row.get('アイテム名', ''),
            weapon_type=row.get('武器種', ''),
            level=row.get('使用可能Lv', 0) or 0,
            attack=row.get('攻撃力（初期値）', 0) or 0,
            crit_rate=row.get('会心率（初期値）', 0) or 0,
            crit_damage=row.get('会心ダメージ（初期値）', 0) or 0,
            damage_correction=row.get('ダメージ補正（初期値）', 100) or 0,
            cool_time=row.get('ct(初期値)', 0) or 0,
            min_rank=row.get('最低ランク') or None,
            max_rank=row.get('最高ランク') or None,
        )


@dataclass(frozen=True)
class ArmorRecord:
    name: str
    level: int
    stats: Dict[str, float]
    slot: str = ""
    armor_type: str = ""
    min_rank: Optional[str] = None
    max_rank: Optional[str] = None

    @classmethod
    def from_catalog(cls, row: Mapping[str, Any]) -> 'ArmorRecord':
        return cls(
            name=row.get('アイテム名', ''),
            level=row.get('使用可能Lv', 0) or 0,
            stats=_read_columns(row, ARMOR_COLUMNS),
            slot=row.get('部位を選択', ''),
            armor_type=row.get('タイプを選択', ''),
            min_rank=row.get('最低ランク') or None,
            max_rank=row.get('最高ランク') or None,
        )


@dataclass(frozen=True)
class AccessoryRecord:
    name: str
    level: int
    stats: Dict[str, float]
    accessory_type: str = ""
    min_rank: Optional[str] = None
    max_rank: Optional[str] = None

    @classmethod
    def from_catalog(cls, row: Mapping[str, Any]) -> 'AccessoryRecord':
        return cls(
            name=row.get('アイテム名', ''),
            level=row.get('使用可能Lv', 0) or 0,
            stats=_read_columns(row, ACCESSORY_COLUMNS),
            accessory_type=row.get('タイプを選択', ''),
            min_rank=row.get('最低ランク') or None,
            max_rank=row.get('最高ランク') or None,
        )


@dataclass(frozen=True)
class Emblem:
    """Emblem: percent bonuses keyed by canonical stat name (10 means +10%)."""
    name: str
    percent: Dict[str, float]

    @classmethod
    def from_catalog(cls, row: Mapping[str, Any]) -> 'Emblem':
        return cls(name=row.get('アイテム名', ''), percent=_read_columns(row, EMBLEM_COLUMNS))


@dataclass(frozen=True)
class RuneStone:
    """
    One runestone.

    ``set_bonus`` is granted once when every equipped rune belongs to
    ``set_name`` (see calculate_rune_set_bonus).
    """
    name: str
    grade: str
    stats: Dict[str, float] = field(default_factory=dict)
    resistances: Dict[str, float] = field(default_factory=dict)
    set_name: Optional[str] = None
    set_bonus: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_catalog(cls, row: Mapping[str, Any]) -> 'RuneStone':
        return cls(
            name=row.get('アイテム名（・<グレード>）は不要', row.get('アイテム名', '')),
            grade=row.get('グレード', ''),
            stats=_read_columns(row, RUNE_COLUMNS),
            resistances=_read_resistances(row, RUNE_RESISTANCE_COLUMNS),
            set_name=row.get('セット') or None,
        )


def _read_columns(row: Mapping[str, Any], columns: Mapping[str, str]) -> Dict[str, float]:
    """Positive numeric catalog columns re-keyed to canonical stat names."""
    stats = {}
    for column, key in columns.items():
        value = row.get(column)
        if isinstance(value, (int, float)) and value > 0:
            stats[key] = value
    return stats


def _read_resistances(row: Mapping[str, Any], pairs: Sequence[Tuple[str, str]]) -> Dict[str, float]:
    """Named resistance columns summed by type; blank types and values are skipped."""
    resistances: Dict[str, float] = {}
    for type_column, value_column in pairs:
        kind = str(row.get(type_column) or '').strip()
        value = row.get(value_column)
        if not kind or not isinstance(value, (int, float)) or isinstance(value, bool) or value == 0:
            continue
        resistances[kind] = resistances.get(kind, 0) + value
    return resistances


# =============================================================================
# SELECTIONS & RESULTS
# =============================================================================

@dataclass(frozen=True)
class WeaponSmithing:
    """Per-stat smithing (hammer) counts."""
    attack: int = 0
    crit_rate: int = 0
    crit_damage: int = 0

    @classmethod
    def coerce(cls, smithing: Union[int, 'WeaponSmithing', None]) -> 'WeaponSmithing':
        """A bare count applies to attack power only."""
        if isinstance(smithing, WeaponSmithing):
            return smithing
        return cls(attack=smithing or 0)


@dataclass(frozen=True)
class WeaponSelection:
    weapon: WeaponRecord
    rank: str = LOWEST_RANK
    reinforcement: int = 0
    smithing: Union[int, WeaponSmithing] = 0
    alchemy: bool = False


@dataclass(frozen=True)
class ArmorSelection:
    armor: ArmorRecord
    rank: str = LOWEST_RANK
    reinforcement: int = 0
    smithing: int = 0
    ex_stats: Tuple[str, ...] = ()   # up to two stat keys


@dataclass(frozen=True)
class AccessorySelection:
    accessory: AccessoryRecord
    rank: str = LOWEST_RANK
    ex_stat: Optional[str] = None


@dataclass(frozen=True)
class EquipmentSelection:
    """Everything currently equipped. Empty slots are None."""
    weapon: Optional[WeaponSelection] = None
    head: Optional[ArmorSelection] = None
    body: Optional[ArmorSelection] = None
    leg: Optional[ArmorSelection] = None
    necklace: Optional[AccessorySelection] = None
    bracelet: Optional[AccessorySelection] = None
    emblem: Optional[Emblem] = None
    runes: Tuple[RuneStone, ...] = ()

    def armor_pieces(self) -> List[ArmorSelection]:
        return [piece for piece in (self.head, self.body, self.leg) if piece is not None]

    def accessories(self) -> List[AccessorySelection]:
        return [piece for piece in (self.necklace, self.bracelet) if piece is not None]


@dataclass
class EquipmentStats:
    """Per-stat breakdown of one item's contribution."""
    initial: StatBlock = field(default_factory=dict)
    rank_bonus: StatBlock = field(default_factory=dict)
    reinforcement: StatBlock = field(default_factory=dict)
    forge: StatBlock = field(default_factory=dict)
    alchemy: StatBlock = field(default_factory=dict)
    ex: StatBlock = field(default_factory=dict)
    final: StatBlock = field(default_factory=dict)


@dataclass
class WeaponStats:
    attack_power: float
    crit_rate: float
    crit_damage: float
    cool_time: float
    damage_correction: float
    rank: str
    detail: EquipmentStats = field(default_factory=EquipmentStats)


@dataclass
class EquipmentTotals:
    """Summed contribution of every equipped slot."""
    stats: StatBlock = field(default_factory=dict)
    percent: StatBlock = field(default_factory=dict)
    resistances: StatBlock = field(default_factory=dict)
    attack_power: float = 0
    crit_rate: float = 0
    crit_damage: float = 0
    cool_time: float = 0
    damage_correction: float = 0
    weapon_type: Optional[str] = None

    def as_stat_block(self) -> StatBlock:
        """Flat stats only (percent entries live in ``percent``)."""
        return dict(self.stats)

    def percent_block(self) -> StatBlock:
        """Emblem percent as ``<Stat>_percent`` entries."""
        return {percent_key(key): value for key, value in self.percent.items()}


# =============================================================================
# RANK HELPERS
# =============================================================================

def rank_index(rank: str) -> int:
    """Position in RANK_ORDER (0 = SSS). Raises ValueError for unknown ranks."""
    try:
        return RANK_ORDER.index(rank)
    except ValueError:
        raise ValueError(f"Unknown rank: {rank}") from None


def is_rank_allowed(rank: str, min_rank: Optional[str] = None, max_rank: Optional[str] = None) -> bool:
    index = rank_index(rank)
    if min_rank in RANK_ORDER and index > RANK_ORDER.index(min_rank):
        return False
    if max_rank in RANK_ORDER and index < RANK_ORDER.index(max_rank):
        return False
    return True


def clamp_rank(rank: str, min_rank: Optional[str] = None, max_rank: Optional[str] = None) -> str:
    """Pull a known rank into the item's [min_rank, max_rank] window."""
    index = rank_index(rank)
    if max_rank in RANK_ORDER:
        index = max(index, RANK_ORDER.index(max_rank))
    if min_rank in RANK_ORDER:
        index = min(index, RANK_ORDER.index(min_rank))
    return RANK_ORDER[index]


def _check_range(value: float, upper: float, label: str) -> None:
    if value < 0 or value > upper:
        raise ValueError(f"{label} must be between 0 and {upper}")


# =============================================================================
# WEAPON
# =============================================================================

def back_solve_weapon_base(weapon: WeaponRecord, tables: CoefficientTables) -> WeaponRankValues:
    """
    F-rank base values of a weapon whose catalog values are at ``min_rank``.

    F base = stored - rank bonus[min_rank]; attack is floored.
    """
    stored = WeaponRankValues(weapon.attack, weapon.crit_rate, weapon.crit_damage, weapon.cool_time)
    if not weapon.min_rank or weapon.min_rank == LOWEST_RANK:
        return stored
    bonus = tables.weapon_bonus.get(weapon.min_rank)
    if bonus is None:
        return stored
    return WeaponRankValues(
        attack=round_down(stored.attack - bonus.attack),
        crit_rate=stored.crit_rate - bonus.crit_rate,
        crit_damage=stored.crit_damage - bonus.crit_damage,
        cool_time=stored.cool_time - bonus.cool_time,
    )


def calculate_weapon_stats(
    weapon: WeaponRecord,
    rank: str = LOWEST_RANK,
    reinforcement: int = 0,
    smithing: Union[int, WeaponSmithing] = 0,
    alchemy: bool = False,
    tables: CoefficientTables = DEFAULT_COEFFICIENTS,
) -> WeaponStats:
    """
    Weapon stats at a rank with reinforcement, smithing and alchemy.

    attack     = ceil(base + level * bonus / denominator) + bonus + alchemy
                 + reinforcement * per-level + smithing * forge
    crit rate  = base + bonus + alchemy + reinforcement * per-level + smithing * forge
    crit dmg   = same shape as crit rate
    cool time  = base + bonus
    damage correction is never modified.

    Raises:
        ValueError: unknown rank, or reinforcement outside [0, max].
    """
    requested = rank
    rank = clamp_rank(rank, weapon.min_rank, weapon.max_rank)
    if rank != requested:
        logger.warning("Rank %s clamped to %s for weapon %s", requested, rank, weapon.name)

    _check_range(reinforcement, tables.weapon_max_reinforcement, "Reinforcement")
    counts = WeaponSmithing.coerce(smithing)
    if min(counts.attack, counts.crit_rate, counts.crit_damage) < 0:
        raise ValueError("Smithing count must not be negative")

    base = back_solve_weapon_base(weapon, tables)
    bonus = tables.weapon_bonus.get(rank)
    if bonus is None:
        raise ValueError(f"Rank data not found for {rank}")
    alchemy_values = tables.weapon_alchemy.get(rank, WeaponRankValues()) if alchemy else WeaponRankValues()

    scaled_attack = round_up(base.attack + weapon.level * (bonus.attack / tables.weapon_denominator))
    reinf = {
        'attack_power': tables.weapon_reinforcement_attack * reinforcement,
        'crit_rate': tables.weapon_reinforcement_crit_rate * reinforcement,
        'crit_damage': tables.weapon_reinforcement_crit_damage * reinforcement,
    }
    forge = {
        'attack_power': tables.weapon_forge * counts.attack,
        'crit_rate': tables.weapon_forge * counts.crit_rate,
        'crit_damage': tables.weapon_forge * counts.crit_damage,
    }

    attack_power = scaled_attack + bonus.attack + alchemy_values.attack + reinf['attack_power'] + forge['attack_power']
    crit_rate = base.crit_rate + bonus.crit_rate + alchemy_values.crit_rate + reinf['crit_rate'] + forge['crit_rate']
    crit_damage = (
        base.crit_damage + bonus.crit_damage + alchemy_values.crit_damage
        + reinf['crit_damage'] + forge['crit_damage']
    )
    cool_time = base.cool_time + bonus.cool_time

    detail = EquipmentStats(
        initial={
            'attack_power': base.attack, 'crit_rate': base.crit_rate,
            'crit_damage': base.crit_damage, 'cool_time': base.cool_time,
            'damage_correction': weapon.damage_correction,
        },
        rank_bonus={
            'attack_power': scaled_attack - base.attack + bonus.attack,
            'crit_rate': bonus.crit_rate, 'crit_damage': bonus.crit_damage,
            'cool_time': bonus.cool_time,
        },
        reinforcement=reinf,
        forge=forge,
        alchemy={
            'attack_power': alchemy_values.attack, 'crit_rate': alchemy_values.crit_rate,
            'crit_damage': alchemy_values.crit_damage,
        } if alchemy else {},
        final={
            'attack_power': attack_power, 'crit_rate': crit_rate, 'crit_damage': crit_damage,
            'cool_time': cool_time, 'damage_correction': weapon.damage_correction,
        },
    )
    return WeaponStats(
        attack_power=attack_power,
        crit_rate=crit_rate,
        crit_damage=crit_damage,
        cool_time=cool_time,
        damage_correction=weapon.damage_correction,
        rank=rank,
        detail=detail,
    )


# =============================================================================
# ARMOR & ACCESSORIES
# =============================================================================

def calculate_ex_value(level: int, rank: str, stat: str, tables: CoefficientTables = DEFAULT_COEFFICIENTS) -> int:
    """EX stat value: round(level * coef + 1), at least 1."""
    if level <= 0:
        return 1
    category = EX_CATEGORY.get(canonical_stat_name(stat), "Other")
    coefficient = tables.ex_rank.get(category, {}).get(rank, 0)
    return round_half_away(level * coefficient + 1)


def calculate_armor_stats(
    armor: ArmorRecord,
    rank: str = LOWEST_RANK,
    reinforcement: int = 0,
    smithing: int = 0,
    tables: CoefficientTables = DEFAULT_COEFFICIENTS,
    ex_stats: Sequence[str] = (),
) -> EquipmentStats:
    """
    Armor stats at a rank.

    For every stat with a non-zero base:
        b     = base + forge * smithing + reinforcement * per-level
        final = round(b * (1 + b ** 0.2 * (rank coef / item level)))
    Defense uses the defense multipliers, everything else the "other" ones.
    EX stats are added on top of the scaled values.
    """
    if not is_rank_allowed(rank, armor.min_rank, armor.max_rank):
        raise ValueError(f"Invalid rank {rank} for armor {armor.name}")
    _check_range(reinforcement, tables.armor_max_reinforcement, "Reinforcement")
    _check_range(smithing, tables.armor_max_smithing, "Smithing count")

    rank_value = tables.armor_rank.get(rank, 0)
    scale = safe_divide(rank_value, armor.level)
    result = EquipmentStats()

    for key, base in armor.stats.items():
        if not base:
            continue
        if key == DEFENSE:
            forge = tables.armor_forge_defense * smithing
            reinf = tables.armor_reinforcement_defense * reinforcement
        else:
            forge = tables.armor_forge_other * smithing
            reinf = tables.armor_reinforcement_other * reinforcement
        pre_scale = base + forge + reinf
        final = round_half_away(pre_scale * (1 + pre_scale ** tables.armor_exponent * scale))

        result.initial[key] = base
        result.forge[key] = forge
        result.reinforcement[key] = reinf
        result.rank_bonus[key] = final - pre_scale
        result.final[key] = final

    for stat in ex_stats[:2]:
        key = canonical_stat_name(stat)
        value = calculate_ex_value(armor.level, rank, key, tables)
        result.ex[key] = result.ex.get(key, 0) + value
        result.final[key] = result.final.get(key, 0) + value

    return result


def calculate_accessory_stats(
    accessory: AccessoryRecord,
    rank: str = LOWEST_RANK,
    tables: CoefficientTables = DEFAULT_COEFFICIENTS,
    ex_stat: Optional[str] = None,
) -> EquipmentStats:
    """Per stat: ceil(base + level * rank coef / 550); a zero coefficient keeps the base."""
    if not is_rank_allowed(rank, accessory.min_rank, accessory.max_rank):
        raise ValueError(f"Invalid rank {rank} for accessory {accessory.name}")

    coefficient = tables.accessory_rank.get(rank, 0)
    result = EquipmentStats()
    for key, base in accessory.stats.items():
        if not base:
            continue
        if coefficient:
            final = round_up(base + accessory.level * coefficient / tables.accessory_divisor)
        else:
            final = base
        result.initial[key] = base
        result.rank_bonus[key] = final - base
        result.final[key] = final

    if ex_stat:
        key = canonical_stat_name(ex_stat)
        value = calculate_ex_value(accessory.level, rank, key, tables)
        result.ex[key] = value
        result.final[key] = result.final.get(key, 0) + value
    return result


# =============================================================================
# EMBLEM & RUNES
# =============================================================================

def calculate_emblem_stats(emblem: Optional[Emblem]) -> StatBlock:
    """Emblem percent entries as ``<Stat>_percent`` keys. No flat stats."""
    if emblem is None:
        return {}
    return {percent_key(key): value for key, value in emblem.percent.items() if value > 0}


def validate_runes(runes: Sequence[RuneStone]) -> None:
    """
    At most one rune per grade and at most four runes.

    Raises:
        ValueError: "Duplicate rune grade: X" or "Maximum 4 runes allowed".
    """
    grades = set()
    for rune in runes:
        if rune.grade in grades:
            raise ValueError(f"Duplicate rune grade: {rune.grade}")
        grades.add(rune.grade)
    if len(runes) > MAX_RUNES:
        raise ValueError(f"Maximum {MAX_RUNES} runes allowed")


def calculate_rune_set_bonus(runes: Sequence[RuneStone]) -> StatBlock:
    """
    Set bonus of the equipped runes, or {} when no set is complete.

    The bonus applies once when at least two runes are equipped and all of
    them share a set name. Runes of one set may each carry the bonus table;
    the per-stat maximum is used so rune order does not matter.
    """
    if len(runes) < MIN_RUNE_SET_PIECES:
        return {}
    names = {rune.set_name for rune in runes}
    if len(names) != 1 or None in names:
        return {}
    bonus: StatBlock = {}
    for rune in runes:
        for key, value in rune.set_bonus.items():
            bonus[key] = max(bonus.get(key, value), value)
    if bonus:
        logger.debug("Rune set %s complete: %s", runes[0].set_name, bonus)
    return bonus


def calculate_rune_stats(runes: Sequence[RuneStone]) -> Tuple[StatBlock, StatBlock]:
    """Validated (flat stats including any set bonus, resistances) summed over all runes."""
    validate_runes(runes)
    stats = sum_stats(*(rune.stats for rune in runes), calculate_rune_set_bonus(runes))
    resistances = sum_stats(*(rune.resistances for rune in runes))
    return stats, resistances


# =============================================================================
# AGGREGATE
# =============================================================================

def calculate_equipment_contribution(
    selection: EquipmentSelection,
    tables: CoefficientTables = DEFAULT_COEFFICIENTS,
) -> EquipmentTotals:
    """
    Sum every equipped slot.

    Flat armor/accessory/rune stats go to ``stats``; emblem percent to
    ``percent``; weapon numbers are surfaced separately for the damage engine.
    """
    totals = EquipmentTotals()

    if selection.weapon is not None:
        pick = selection.weapon
        weapon = calculate_weapon_stats(
            pick.weapon, pick.rank, pick.reinforcement, pick.smithing, pick.alchemy, tables
        )
        totals.attack_power = weapon.attack_power
        totals.crit_rate = weapon.crit_rate
        totals.crit_damage = weapon.crit_damage
        totals.cool_time = weapon.cool_time
        totals.damage_correction = weapon.damage_correction
        totals.weapon_type = pick.weapon.weapon_type

    for piece in selection.armor_pieces():
        armor = calculate_armor_stats(
            piece.armor, piece.rank, piece.reinforcement, piece.smithing, tables, piece.ex_stats
        )
        totals.stats = add_stats(totals.stats, armor.final)

    for piece in selection.accessories():
        accessory = calculate_accessory_stats(piece.accessory, piece.rank, tables, piece.ex_stat)
        totals.stats = add_stats(totals.stats, accessory.final)

    if selection.emblem is not None:
        totals.percent = {key: value for key, value in selection.emblem.percent.items() if value > 0}

    if selection.runes:
        rune_stats, resistances = calculate_rune_stats(selection.runes)
        totals.stats = add_stats(totals.stats, rune_stats)
        totals.resistances = resistances

    logger.debug("Equipment totals: %s (attack %s)", totals.stats, totals.attack_power)
    return totals
