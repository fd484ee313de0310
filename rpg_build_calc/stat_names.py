"""
RPG Build Calculator - Standardized Stat Definitions
====================================================
Central definition of every stat key the core understands, with the aliases
each one goes by in catalogs, UI state and formula tables.

Naming Conventions:
- Canonical flat stats: CamelCase English (Power, Magic, CritDamage, ...)
- Percent bonuses: {Stat}_percent (e.g., Power_percent)
- Formula variables: User{Stat} (e.g., UserPower, UserCritRate)

Aliases are resolved once at the boundary; code inside the core works on the
canonical keys.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple


# =============================================================================
# STAT KEY CONSTANTS (use these for consistency)
# =============================================================================

HP = "HP"
MP = "MP"
BP = "BP"
POWER = "Power"
MAGIC = "Magic"
MIND = "Mind"
AGILITY = "Agility"
DEX = "Dex"
CRIT_DAMAGE = "CritDamage"
DEFENSE = "Defense"

PERCENT_SUFFIX = "_percent"


@dataclass(frozen=True)
class StatDefinition:
    """Definition of a stat with all metadata."""
    key: str                          # Canonical key (e.g., "Power")
    display_name: str                 # English label
    catalog_name: str                 # Column name used by the game catalogs
    user_variable: str                # Formula variable (e.g., "UserPower")
    # Lookup order when reading the stat out of an arbitrary block. The
    # first non-zero entry wins.
    aliases: Tuple[str, ...] = field(default_factory=tuple)
    short_variables: Tuple[str, ...] = field(default_factory=tuple)


# =============================================================================
# STAT DEFINITIONS REGISTRY
# =============================================================================

STAT_DEFINITIONS: Dict[str, StatDefinition] = {
    HP: StatDefinition(
        key=HP, display_name="HP", catalog_name="体力", user_variable="UserHP",
        aliases=("UserHP", "HP", "hp", "体力", "Health", "health"),
        short_variables=("HP",),
    ),
    MP: StatDefinition(
        key=MP, display_name="MP", catalog_name="MP", user_variable="UserMP",
        aliases=("UserMP", "MP", "mp"),
        short_variables=("MP",),
    ),
    BP: StatDefinition(
        key=BP, display_name="BP", catalog_name="BP", user_variable="UserBP",
        aliases=("UserBP", "BP", "bp"),
        short_variables=("BP",),
    ),
    POWER: StatDefinition(
        key=POWER, display_name="Power", catalog_name="力", user_variable="UserPower",
        aliases=("UserPower", "Power", "power", "ATK", "atk", "力"),
        short_variables=("Power",),
    ),
    MAGIC: StatDefinition(
        key=MAGIC, display_name="Magic", catalog_name="魔力", user_variable="UserMagic",
        aliases=("UserMagic", "Magic", "magic", "MATK", "matk", "魔力"),
        short_variables=("Magic",),
    ),
    MIND: StatDefinition(
        key=MIND, display_name="Mind", catalog_name="精神", user_variable="UserMind",
        aliases=("UserMind", "Mind", "mind", "MDEF", "mdef", "精神", "Spirit", "spirit"),
        short_variables=("Mind",),
    ),
    AGILITY: StatDefinition(
        key=AGILITY, display_name="Agility", catalog_name="素早さ", user_variable="UserSpeed",
        aliases=("UserSpeed", "Speed", "speed", "Agility", "agility", "AGI", "agi", "素早さ"),
        short_variables=("UserAgility", "Agility"),
    ),
    DEX: StatDefinition(
        key=DEX, display_name="Dexterity", catalog_name="器用さ", user_variable="UserCritRate",
        aliases=("UserCritRate", "CritRate", "critRate", "Dexterity", "dexterity",
                 "Dex", "dex", "DEX", "器用", "器用さ"),
        short_variables=("UserDex", "Dex", "Dexterity", "DEX"),
    ),
    CRIT_DAMAGE: StatDefinition(
        key=CRIT_DAMAGE, display_name="Crit Damage", catalog_name="撃力",
        user_variable="UserCritDamage",
        aliases=("UserCritDamage", "CritDamage", "critDamage", "CriticalDamage",
                 "criticalDamage", "撃力"),
        short_variables=("CritDamage", "CriticalDamage"),
    ),
    DEFENSE: StatDefinition(
        key=DEFENSE, display_name="Defense", catalog_name="守備力", user_variable="UserDefense",
        aliases=("UserDefense", "Defense", "defense", "DEF", "def", "守備力",
                 "Defence", "defence"),
        short_variables=("Defense",),
    ),
}

# Flat stats carried by equipment, in catalog column order
EQUIPMENT_STATS: List[str] = [POWER, MAGIC, HP, MIND, AGILITY, DEX, CRIT_DAMAGE, DEFENSE]

_ALIAS_INDEX: Dict[str, str] = {
    alias: defn.key
    for defn in STAT_DEFINITIONS.values()
    for alias in defn.aliases
}


# =============================================================================
# WEAPON TYPES
# =============================================================================

# Catalog weapon names -> formula table names. 杖 covers several table names.
WEAPON_TYPE_CATALOG_NAMES: Dict[str, List[str]] = {
    "剣": ["Sword"],
    "大剣": ["GreatSword"],
    "短剣": ["Dagger"],
    "斧": ["Axe"],
    "槍": ["Spear"],
    "弓": ["Bow"],
    "杖": ["Wand", "Grimoire", "Staff"],
    "フライパン": ["Frypan"],
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_stat_definition(stat_key: str) -> Optional[StatDefinition]:
    """Get the definition for a canonical key or any of its aliases."""
    canonical = _ALIAS_INDEX.get(stat_key)
    return STAT_DEFINITIONS.get(canonical) if canonical else None


def canonical_stat_name(stat_key: str) -> str:
    """
    Canonical key for an alias; unknown keys come back unchanged.

    Percent keys keep their suffix: "power_percent" -> "Power_percent".
    """
    if stat_key.endswith(PERCENT_SUFFIX):
        stem = stat_key[:-len(PERCENT_SUFFIX)]
        return canonical_stat_name(stem) + PERCENT_SUFFIX
    return _ALIAS_INDEX.get(stat_key, stat_key)


def percent_key(stat_key: str) -> str:
    """Percent-bonus key for a stat (e.g., 'Power' -> 'Power_percent')."""
    return canonical_stat_name(stat_key) + PERCENT_SUFFIX


def is_percent_key(stat_key: str) -> bool:
    return stat_key.endswith(PERCENT_SUFFIX)


def normalize_stat_block(block: Optional[Mapping[str, float]]) -> Dict[str, float]:
    """
    Re-key a block onto canonical names, summing values that collapse onto
    the same key. None values are dropped.
    """
    normalized: Dict[str, float] = {}
    for key, value in (block or {}).items():
        if value is None:
            continue
        canonical = canonical_stat_name(key)
        normalized[canonical] = normalized.get(canonical, 0) + value
    return normalized


def split_percent_stats(block: Mapping[str, float]) -> Tuple[Dict[str, float], Dict[str, float]]:
    """Split a block into (flat, percent) where percent keys lose their suffix."""
    flat: Dict[str, float] = {}
    percent: Dict[str, float] = {}
    for key, value in block.items():
        if is_percent_key(key):
            stem = key[:-len(PERCENT_SUFFIX)]
            percent[stem] = percent.get(stem, 0) + value
        else:
            flat[key] = flat.get(key, 0) + value
    return flat, percent


def resolve_stat(block: Optional[Mapping[str, float]], stat_key: str) -> float:
    """
    Read one logical stat out of a block that may use any alias.

    Aliases are tried in priority order and the first non-zero value wins,
    so {"Power": 0, "ATK": 120} resolves Power to 120.
    """
    defn = get_stat_definition(stat_key)
    if defn is None or not block:
        return (block or {}).get(stat_key, 0) or 0
    for alias in defn.aliases:
        value = block.get(alias)
        if value:
            return value
    return 0


def map_user_stats_to_variables(block: Optional[Mapping[str, float]]) -> Dict[str, float]:
    """
    Formula variables for a user's final stat block.

    Produces the User* names (UserPower, UserCritRate, ...) plus the short
    names older formula tables still use (Power, Dex, CriticalDamage, ...).
    """
    variables: Dict[str, float] = {}
    for defn in STAT_DEFINITIONS.values():
        value = resolve_stat(block, defn.key)
        variables[defn.user_variable] = value
        for name in defn.short_variables:
            variables[name] = value
    return variables


def weapon_type_candidates(weapon_type: str) -> List[str]:
    """Formula table names for a catalog weapon name (or the name itself)."""
    return WEAPON_TYPE_CATALOG_NAMES.get(weapon_type, [weapon_type])


def normalize_weapon_type(weapon_type: str) -> str:
    """Primary formula table name: "杖" -> "Wand", " Sword " -> "Sword"."""
    return weapon_type_candidates(weapon_type.strip())[0]


def formula_key(weapon_type: str) -> str:
    """
    Title-case a weapon type for formula table lookup.

    Catalog names are translated first: "剣" -> "Sword", "SWORD" -> "Sword",
    "greatsword" -> "Greatsword".
    """
    lowered = normalize_weapon_type(weapon_type).lower()
    return lowered[:1].upper() + lowered[1:]


def lookup_by_weapon_type(table: Optional[Mapping[str, object]], weapon_type: str):
    """
    Entry for ``weapon_type`` in a weapon-keyed table, or None.

    Tries the exact name, then the title-cased key, then a
    case-insensitive match (tables mix "GreatSword" and "Greatsword").
    """
    if not table:
        return None
    for name in weapon_type_candidates(weapon_type.strip()):
        if name in table:
            return table[name]
    key = formula_key(weapon_type)
    if key in table:
        return table[key]
    lowered = key.lower()
    for name, value in table.items():
        if name.lower() == lowered:
            return value
    return None
