"""
RPG Build Calculator - Skill Resolution
=======================================
Looks up skill definitions and resolves their MP, cool time, damage, hit
count, buff/debuff, DoT and extra sub-formulas.

Skill tables are nested mappings::

    SkillDefinition:
      SkillBook:            # weapon skill books, searched first
        Sword:
          Zan_gekiha: {MP: "15 + <Level>*5", CT: "7 - <Level>*0.25", Damage: null}
      JobSkill:             # searched second
        Fighter:
          Retsujin_Enzangeki: {MP: 12, CT: 9, Hits: 5, Damage: "BaseDamage.Sword * 0.4"}

MP, CT and hit failures degrade to 0 (or 1 hit) with a warning. A damage
formula that cannot be evaluated fails the skill.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from .constants import (
    DEFAULT_WEAPON_MISMATCH_PENALTY,
    SKILL_CATEGORY_ORDER,
    ErrorCode,
    HitMode,
)
from .formula import FormulaEvaluationError, evaluate_formula, formula_variables, try_evaluate_formula
from .results import CalcResult, DamageCalculationError
from .stat_math import round_down, safe_divide
from rpg_build_calc.stat_names import formula_key, lookup_by_weapon_type

logger = logging.getLogger(__name__)

BASE_DAMAGE_VAR = 'BaseDamage'
BASE_DAMAGE_PREFIX = 'BaseDamage.'
JOB_SKILL_CATEGORY = 'JobSkill'
SKILL_TYPE_HEAL = 'heal'

_RANGE_RE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*~\s*(\d+(?:\.\d+)?)\s*$')


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class SkillDefinition:
    """A skill entry plus where it was found."""
    name: str
    category: str
    group: Optional[str]
    data: Mapping[str, Any]

    @property
    def is_job_skill(self) -> bool:
        return self.category == JOB_SKILL_CATEGORY

    @property
    def weapon_types(self) -> List[str]:
        types = self.data.get('BaseDamageType') or []
        if isinstance(types, str):
            return [types]
        return list(types)

    @property
    def skill_type(self) -> str:
        """heal, buff, debuff, damage or utility, by the first field present in that order."""
        data = self.data
        if data.get('Heal'):
            return SKILL_TYPE_HEAL
        if data.get('Buff'):
            return 'buff'
        if data.get('Debuff'):
            return 'debuff'
        if data.get('Damage'):
            return 'damage'
        return 'utility'


@dataclass(frozen=True)
class HitCount:
    hits: float
    is_variable: bool = False
    min_hits: Optional[float] = None
    max_hits: Optional[float] = None


@dataclass(frozen=True)
class DotEffect:
    count: int
    damage_per_tick: int
    total_damage: int


@dataclass
class SkillOutcome:
    """Everything resolved for one skill."""
    name: str
    damage: float
    hits: float
    skill_type: str = 'damage'
    mp: float = 0
    ct: float = 0
    heal: Optional[float] = None
    buffs: Dict[str, float] = field(default_factory=dict)
    debuffs: Dict[str, float] = field(default_factory=dict)
    extra: Dict[str, float] = field(default_factory=dict)
    dot: Optional[DotEffect] = None
    weapon_mismatch_applied: bool = False
    weapon_mismatch_penalty: float = 1.0
    is_variable_hits: bool = False
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# LOOKUP
# =============================================================================

def _skill_root(skill_formulas: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    if not skill_formulas:
        return {}
    return skill_formulas.get('SkillDefinition', skill_formulas) or {}


def _ordered_categories(root: Mapping[str, Any]) -> List[str]:
    ordered = [name for name in SKILL_CATEGORY_ORDER if name in root]
    return ordered + [name for name in root if name not in SKILL_CATEGORY_ORDER]


def find_skill(skill_name: str, skill_formulas: Optional[Mapping[str, Any]]) -> Optional[SkillDefinition]:
    """
    Find a skill by name.

    Searches SkillBook, then JobSkill, then every other category; inside a
    category both ``category -> skill`` and ``category -> group -> skill``
    layouts are accepted. First match wins.
    """
    root = _skill_root(skill_formulas)
    for category in _ordered_categories(root):
        entries = root.get(category)
        if not isinstance(entries, Mapping):
            continue
        direct = entries.get(skill_name)
        if isinstance(direct, Mapping):
            return SkillDefinition(skill_name, category, None, direct)
        for group, skills in entries.items():
            if isinstance(skills, Mapping):
                found = skills.get(skill_name)
                if isinstance(found, Mapping):
                    return SkillDefinition(skill_name, category, group, found)
    return None


def list_skills(skill_formulas: Optional[Mapping[str, Any]]) -> List[SkillDefinition]:
    """Every skill in search order."""
    skills = []
    root = _skill_root(skill_formulas)
    for category in _ordered_categories(root):
        entries = root.get(category)
        if not isinstance(entries, Mapping):
            continue
        for group, value in entries.items():
            if not isinstance(value, Mapping):
                continue
            nested = [(n, d) for n, d in value.items() if isinstance(d, Mapping)]
            if nested:
                skills.extend(SkillDefinition(n, category, group, d) for n, d in nested)
            else:
                skills.append(SkillDefinition(group, category, None, value))
    return skills


# =============================================================================
# HITS
# =============================================================================

def _pick(low: float, high: float, mode: HitMode) -> float:
    if mode == HitMode.MIN:
        return low
    if mode == HitMode.MAX:
        return high
    return (low + high) / 2


def parse_hits(value: Union[int, float, str, None], mode: Union[HitMode, str] = HitMode.AVG) -> float:
    """
    Hit count from a literal or a "min~max" range.

    >>> parse_hits("5~6")
    5.5
    >>> parse_hits("10~20", "min")
    10
    """
    mode = HitMode(mode)
    if value is None:
        return 1
    if isinstance(value, (int, float)):
        return value
    match = _RANGE_RE.match(value)
    if match:
        low, high = (float(part) for part in match.groups())
        picked = _pick(low, high, mode)
        return int(picked) if float(picked).is_integer() else picked
    try:
        return int(value.strip())
    except ValueError:
        return 1


def resolve_hits(
    value: Any,
    context: Mapping[str, float],
    mode: Union[HitMode, str] = HitMode.AVG,
) -> HitCount:
    """
    Hits field of a skill: int, "min~max", [min, max], "variable" or a formula.

    A list averages to a whole number of hits; a formula is floored.
    """
    mode = HitMode(mode)
    if value is None:
        return HitCount(1)
    if isinstance(value, bool):
        return HitCount(int(value))
    if isinstance(value, (int, float)):
        return HitCount(value)
    if isinstance(value, (list, tuple)) and len(value) == 2:
        low, high = value
        picked = _pick(low, high, mode)
        return HitCount(round_down(picked), min_hits=low, max_hits=high)
    if isinstance(value, str):
        text = value.strip()
        if text.lower() == 'variable':
            return HitCount(1, is_variable=True)
        match = _RANGE_RE.match(text)
        if match:
            low, high = (float(part) for part in match.groups())
            return HitCount(parse_hits(text, mode), min_hits=low, max_hits=high)
        return HitCount(round_down(try_evaluate_formula(text, context, default=1, label="Hits")))
    logger.warning("Unrecognised Hits value %r, using 1", value)
    return HitCount(1)


# =============================================================================
# CONTEXT
# =============================================================================

def weapon_mismatch_penalty(weapon_formulas: Optional[Mapping[str, Any]]) -> Tuple[bool, float]:
    """(enabled, penalty) from AdditionalAttacks.WeaponMismatch."""
    attacks = (weapon_formulas or {}).get('AdditionalAttacks') or {}
    mismatch = attacks.get('WeaponMismatch') or {}
    if mismatch.get('Enabled'):
        return True, mismatch.get('Penalty') or DEFAULT_WEAPON_MISMATCH_PENALTY
    return False, 1.0


def weapon_matches(skill: SkillDefinition, weapon_type: str) -> bool:
    types = skill.weapon_types
    if not types:
        return True
    current = formula_key(weapon_type).lower()
    return any(formula_key(t).lower() == current for t in types)


def _sub_formulas(data: Mapping[str, Any]) -> List[str]:
    """Every string formula of a skill, including Buff/Debuff/Extra/Dot entries."""
    formulas = []
    for value in data.values():
        if isinstance(value, str):
            formulas.append(value)
        elif isinstance(value, Mapping):
            formulas.extend(v for v in value.values() if isinstance(v, str))
    return formulas


def _base_damage_names(formulas: Iterable[Any]) -> Set[str]:
    names: Set[str] = set()
    for formula in formulas:
        if not isinstance(formula, str) or not formula.strip():
            continue
        try:
            variables = formula_variables(formula)
        except FormulaEvaluationError:
            # Reported when the formula itself is evaluated
            continue
        names.update(name for name in variables if name.startswith(BASE_DAMAGE_PREFIX))
    return names


def _nested_base_damage(
    data: Mapping[str, Any],
    context: Mapping[str, float],
    weapon_formulas: Optional[Mapping[str, Any]],
) -> Dict[str, float]:
    """
    Values for every ``BaseDamage.<Type>`` any sub-formula of the skill reads.

    Types read by ``Damage`` must resolve. Types only read by Heal, Buff and
    the other optional fields are skipped when unresolvable, so those fields
    degrade on their own.

    Raises:
        DamageCalculationError / FormulaEvaluationError: a type ``Damage``
            reads has no usable base formula
    """
    based = (weapon_formulas or {}).get('BasedDamage') or {}
    required = _base_damage_names([data.get('Damage')])
    values = {}
    for name in sorted(_base_damage_names(_sub_formulas(data))):
        weapon_type = name[len(BASE_DAMAGE_PREFIX):]
        base_formula = lookup_by_weapon_type(based, weapon_type)
        if name in required:
            if base_formula is None:
                raise DamageCalculationError(f"No base damage formula for weapon type '{weapon_type}'")
            values[name] = round_down(evaluate_formula(base_formula, context))
        elif base_formula is not None:
            try:
                values[name] = round_down(evaluate_formula(base_formula, context))
            except FormulaEvaluationError as e:
                logger.warning("%s unavailable: %s", name, e)
    return values


def _evaluate_map(
    formulas: Optional[Mapping[str, Any]],
    context: Mapping[str, float],
    label: str,
) -> Dict[str, float]:
    return {
        key: try_evaluate_formula(formula, context, label=f"{label}.{key}")
        for key, formula in (formulas or {}).items()
    }


def _degraded(value: Any, context: Mapping[str, float], label: str, warnings: List[str]) -> float:
    if value is None or value == "":
        return 0
    try:
        return evaluate_formula(value, context)
    except FormulaEvaluationError as e:
        logger.warning("%s fell back to 0: %s", label, e)
        warnings.append(f"{label}: {e}")
        return 0


# =============================================================================
# RESOLUTION
# =============================================================================

def resolve_skill(
    skill: SkillDefinition,
    base_damage: float,
    context: Mapping[str, float],
    weapon_type: str,
    weapon_formulas: Optional[Mapping[str, Any]] = None,
    hit_mode: Union[HitMode, str] = HitMode.AVG,
    custom_hits: Optional[float] = None,
) -> SkillOutcome:
    """
    Resolve every sub-field of a skill.

    ``base_damage`` is the crit-blended damage the bare ``BaseDamage``
    variable stands for. ``context`` holds the user and weapon variables.

    Raises:
        FormulaEvaluationError / DamageCalculationError: the damage formula
            cannot be evaluated.
    """
    data = skill.data
    warnings: List[str] = []
    ctx = dict(context)
    ctx[BASE_DAMAGE_VAR] = base_damage
    ctx.update(_nested_base_damage(data, context, weapon_formulas))

    enabled, penalty = weapon_mismatch_penalty(weapon_formulas)
    mismatch = enabled and skill.is_job_skill and not weapon_matches(skill, weapon_type)
    applied_penalty = penalty if mismatch else 1.0

    hit_count = resolve_hits(data.get('Hits'), ctx, hit_mode)
    hits = custom_hits if custom_hits is not None else hit_count.hits

    mp_raw = data.get('MP')
    mp = _degraded(mp_raw, ctx, f"{skill.name}.MP", warnings)
    if isinstance(mp_raw, str):
        mp = round_down(mp)
    ct = _degraded(data.get('CT'), ctx, f"{skill.name}.CT", warnings)

    damage_formula = data.get('Damage')
    if damage_formula is None or damage_formula == "":
        damage = base_damage
    else:
        damage = round_down(evaluate_formula(damage_formula, ctx) * applied_penalty)

    heal = None
    if data.get('Heal'):
        heal = try_evaluate_formula(data['Heal'], ctx, label=f"{skill.name}.Heal")

    skill_type = skill.skill_type
    if skill_type == SKILL_TYPE_HEAL:
        # Heal skills report the heal amount per hit
        damage = round_down(heal)

    dot = None
    dot_data = data.get('Dot')
    if isinstance(dot_data, Mapping):
        dot_ctx = dict(ctx, Hits=hits, Damage=damage)
        count = try_evaluate_formula(dot_data.get('Count'), dot_ctx, label=f"{skill.name}.Dot.Count")
        per_tick = try_evaluate_formula(dot_data.get('Damage'), dot_ctx, label=f"{skill.name}.Dot.Damage")
        dot = DotEffect(round_down(count), round_down(per_tick), round_down(count * per_tick))

    return SkillOutcome(
        name=skill.name,
        damage=damage,
        hits=hits,
        skill_type=skill_type,
        mp=mp,
        ct=ct,
        heal=heal,
        buffs=_evaluate_map(data.get('Buff'), ctx, f"{skill.name}.Buff"),
        debuffs=_evaluate_map(data.get('Debuff'), ctx, f"{skill.name}.Debuff"),
        extra=_evaluate_map(data.get('Extra'), ctx, f"{skill.name}.Extra"),
        dot=dot,
        weapon_mismatch_applied=mismatch,
        weapon_mismatch_penalty=applied_penalty,
        is_variable_hits=hit_count.is_variable and custom_hits is None,
        warnings=warnings,
    )


def calculate_skill_damage(
    skill_name: str,
    base_damage: float,
    context: Mapping[str, float],
    weapon_type: str,
    skill_formulas: Optional[Mapping[str, Any]],
    weapon_formulas: Optional[Mapping[str, Any]] = None,
    hit_mode: Union[HitMode, str] = HitMode.AVG,
    custom_hits: Optional[float] = None,
) -> CalcResult[SkillOutcome]:
    """find_skill() + resolve_skill() as a tagged result."""
    skill = find_skill(skill_name, skill_formulas)
    if skill is None:
        return CalcResult.fail(ErrorCode.SKILL_NOT_FOUND, f"Skill '{skill_name}' not found", skill=skill_name)
    try:
        return CalcResult.ok(resolve_skill(
            skill, base_damage, context, weapon_type, weapon_formulas, hit_mode, custom_hits
        ))
    except (FormulaEvaluationError, DamageCalculationError, ValueError, TypeError) as e:
        logger.warning("Skill %s failed: %s", skill_name, e)
        return CalcResult.fail(ErrorCode.SKILL_CALC_ERROR, str(e), skill=skill_name, cause=e)


def skill_multiplier(skill_damage: float, base_damage: float) -> float:
    """Skill damage as a multiple of the crit-blended base damage."""
    return safe_divide(skill_damage, base_damage, default=1.0)
