"""
RPG Build Calculator - Core Damage Calculation
==============================================
Turns a final stat block plus a weapon into a damage number against an
enemy.

Stages (calculate_damage):
    1. calculate_base_damage  - job/weapon base formula, floored
    2. apply_job_correction   - optional job Bonus multiplier
    3. apply_crit_damage      - crit / no-crit / expected blend
    4. skill                  - optional skill multiplier and hit count
    5. calculate_final_damage - enemy defense and resistance reduction
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .constants import (
    CRIT_MODE_ALIASES,
    CRIT_RATE_CAP,
    DAMAGE_CORRECTION_VALUES,
    DEFAULT_COMBO_CORRECTION,
    DEFENSE_DIVISOR,
    FINAL_DAMAGE_KEY,
    JOB_BONUS_KEY,
    RESISTANCE_CAP,
    CritMode,
    DamageCorrectionMode,
    ErrorCode,
    HitMode,
)
from .formula import FormulaEvaluationError, evaluate_formula
from .results import CalcResult, DamageCalculationError
from .skills import SkillOutcome, calculate_skill_damage, skill_multiplier
from .stat_math import StatBlock, clamp, round_down, safe_divide
from .stats import CalculatedStats
from rpg_build_calc.stat_names import formula_key, lookup_by_weapon_type, map_user_stats_to_variables

logger = logging.getLogger(__name__)


# =============================================================================
# INPUT / RESULT DATACLASSES
# =============================================================================

@dataclass
class EnemyParams:
    """Enemy side of a hit. Resistances are percentages; negative values are weaknesses."""
    defense: float = 0
    hp: Optional[float] = None
    type_resistance: float = 0
    attribute_resistance: float = 0


@dataclass
class DamageOptions:
    """
    How to resolve the random parts of a hit.

    ``crit_mode`` accepts the internal names (crit/nocrit/avg) or the UI
    names (always/never/expected).
    """
    crit_mode: Union[CritMode, str] = CritMode.AVG
    damage_correction_mode: Union[DamageCorrectionMode, str] = DamageCorrectionMode.AVG
    hit_mode: Union[HitMode, str] = HitMode.AVG
    skill_name: Optional[str] = None
    skill_level: int = 1
    custom_hits: Optional[float] = None


@dataclass
class DamageInput:
    """
    One damage calculation.

    ``stats`` is either the CalculatedStats from compute_status() or a bare
    final stat block (any aliases).
    """
    stats: Union[CalculatedStats, StatBlock]
    weapon_type: str
    weapon_attack_power: float
    weapon_crit_rate: float = 0
    weapon_crit_damage: float = 0
    damage_correction: float = 100
    enemy: EnemyParams = field(default_factory=EnemyParams)
    options: DamageOptions = field(default_factory=DamageOptions)
    job_name: Optional[str] = None

    @property
    def final_stats(self) -> StatBlock:
        if isinstance(self.stats, CalculatedStats):
            return self.stats.final
        return dict(self.stats or {})

    @property
    def effective_crit_rate(self) -> float:
        """Aggregated crit rate when available, else the weapon's, clamped to 0-100."""
        if isinstance(self.stats, CalculatedStats):
            rate = self.stats.crit_rate
        else:
            rate = self.weapon_crit_rate
        return clamp(rate or 0, 0, CRIT_RATE_CAP)


@dataclass
class DamageResult:
    """Complete damage calculation result with breakdown."""
    base_damage: int
    corrected_damage: int
    crit_damage: int
    crit_multiplier: float
    skill_multiplier: float
    hits: float
    hit_damage: float
    total_damage: float
    final_damage: int
    mp: float = 0
    ct: float = 0
    dps: Optional[float] = None
    ttk: Optional[int] = None
    mp_efficiency: Optional[float] = None
    skill: Optional[SkillOutcome] = None
    warnings: List[str] = field(default_factory=list)

    def breakdown(self) -> str:
        """Return formatted breakdown of damage calculation."""
        return f"""
Damage Calculation Breakdown
============================
Base Damage:        {self.base_damage:,}
Job Corrected:      {self.corrected_damage:,}
x Crit:             {self.crit_multiplier:.4f}
x Skill:            {self.skill_multiplier:.4f}
x Hits:             {self.hits:g}
----------------------------
= Final Damage:     {self.final_damage:,}
"""


# =============================================================================
# DAMAGE CORRECTION
# =============================================================================

def resolve_damage_correction(mode: Union[DamageCorrectionMode, str]) -> float:
    """min -> 0.8, max -> 1.2, avg -> 1.0"""
    return DAMAGE_CORRECTION_VALUES[DamageCorrectionMode(mode)]


def apply_damage_correction(damage: float, mode: Union[DamageCorrectionMode, str]) -> int:
    return round_down(damage * resolve_damage_correction(mode))


# =============================================================================
# BASE DAMAGE
# =============================================================================

def _job_table(weapon_formulas: Mapping[str, Any], job_name: Optional[str]) -> Mapping[str, Any]:
    if not job_name:
        return {}
    return (weapon_formulas.get('JobCorrection') or {}).get(job_name) or {}


def base_damage_context(damage_input: DamageInput) -> Dict[str, float]:
    """Variables every base damage formula can read."""
    options = damage_input.options
    context = map_user_stats_to_variables(damage_input.final_stats)
    context.update(
        WeaponAttackPower=damage_input.weapon_attack_power,
        WeaponCritRate=damage_input.weapon_crit_rate,
        WeaponCritDamage=damage_input.weapon_crit_damage,
        WeaponDamageCorrection=damage_input.damage_correction,
        DamageCorrection=resolve_damage_correction(options.damage_correction_mode),
        ComboCorrection=DEFAULT_COMBO_CORRECTION,
        SkillLevel=options.skill_level,
    )
    return context


def calculate_base_damage(
    damage_input: DamageInput,
    weapon_formulas: Mapping[str, Any],
    context: Optional[Mapping[str, float]] = None,
) -> int:
    """
    Floor of the base damage formula for the weapon type.

    A job-specific override (JobCorrection[job][WeaponType]) wins over the
    generic BasedDamage[WeaponType] formula.

    Raises:
        DamageCalculationError: no formula exists for the weapon type
        FormulaEvaluationError: the formula cannot be evaluated
    """
    weapon_type = damage_input.weapon_type
    formula = lookup_by_weapon_type(_job_table(weapon_formulas, damage_input.job_name), weapon_type)
    if formula is None:
        formula = lookup_by_weapon_type(weapon_formulas.get('BasedDamage'), weapon_type)
    if formula is None:
        raise DamageCalculationError(
            f"No base damage formula for weapon type '{weapon_type}' ({formula_key(weapon_type)})"
        )
    if context is None:
        context = base_damage_context(damage_input)
    return round_down(evaluate_formula(formula, context))


def apply_job_correction(
    base_damage: int,
    damage_input: DamageInput,
    weapon_formulas: Mapping[str, Any],
) -> int:
    """
    Apply the job's Bonus multiplier.

    Skipped when the job overrides the weapon's base formula (the override
    already includes the job's scaling) or has no Bonus formula.

    Formula:
        corrected = floor(base * Bonus)
    """
    table = _job_table(weapon_formulas, damage_input.job_name)
    if lookup_by_weapon_type(table, damage_input.weapon_type) is not None:
        return base_damage
    bonus_formula = table.get(JOB_BONUS_KEY)
    if bonus_formula is None:
        return base_damage
    context = map_user_stats_to_variables(damage_input.final_stats)
    context['BasedDamage'] = base_damage
    bonus = evaluate_formula(bonus_formula, context)
    return round_down(base_damage * bonus)


# =============================================================================
# CRIT / DEFENSE
# =============================================================================

def resolve_crit_mode(mode: Union[CritMode, str, None]) -> CritMode:
    """UI or internal name -> CritMode; unknown names mean the expected value."""
    if isinstance(mode, CritMode):
        return mode
    resolved = CRIT_MODE_ALIASES.get(str(mode).lower()) if mode is not None else None
    if resolved is None:
        logger.warning("Unknown crit mode %r, using expected value", mode)
        return CritMode.AVG
    return resolved


def apply_crit_damage(
    damage: float,
    crit_rate: float,
    crit_damage: float,
    mode: Union[CritMode, str] = CritMode.AVG,
) -> int:
    """
    Blend crit and non-crit damage.

    Formula:
        crit_hit = floor(damage * (1 + crit_damage/100))
        crit     -> crit_hit
        nocrit   -> damage
        avg      -> floor(damage * (1 - rate/100) + crit_hit * rate/100)

    Args:
        damage: Damage before crit
        crit_rate: Crit chance in percent (0-100)
        crit_damage: Extra crit damage in percent (100 = double)
        mode: Blend mode

    Returns:
        Blended damage, floored
    """
    mode = resolve_crit_mode(mode)
    crit_hit = round_down(damage * (1 + crit_damage / 100))
    if mode == CritMode.CRIT:
        return crit_hit
    if mode == CritMode.NOCRIT:
        return round_down(damage)
    rate = crit_rate / 100
    return round_down(damage * (1 - rate) + crit_hit * rate)


def resistance_multiplier(resistance: float) -> float:
    """20 (%) -> 0.8; -50 (weakness) -> 1.5. Clamped to +-100%."""
    return 1 - clamp(resistance or 0, -RESISTANCE_CAP, RESISTANCE_CAP) / 100


def calculate_final_damage(
    total_damage: float,
    enemy_defense: float,
    type_resistance: float = 0,
    attribute_resistance: float = 0,
    formula: Optional[str] = None,
) -> int:
    """
    Apply enemy defense and resistances.

    Formula (built-in):
        final = floor(total * max(0, 1 - defense/1000) * (1 - type/100) * (1 - attribute/100))

    A ``formula`` (the WeaponCalc FinalDamage entry) replaces the built-in
    rule and reads HitDamage, EnemyDefence, EnemyTypeResistance and
    EnemyAttributeResistance. The result never goes below 0.

    Raises:
        FormulaEvaluationError: ``formula`` cannot be evaluated
    """
    if formula is not None:
        context = {
            'HitDamage': total_damage,
            'EnemyDefence': enemy_defense or 0,
            'EnemyTypeResistance': type_resistance or 0,
            'EnemyAttributeResistance': attribute_resistance or 0,
        }
        return max(0, round_down(evaluate_formula(formula, context)))
    mitigated = total_damage * max(0.0, 1 - (enemy_defense or 0) / DEFENSE_DIVISOR)
    mitigated *= resistance_multiplier(type_resistance) * resistance_multiplier(attribute_resistance)
    return max(0, round_down(mitigated))


def apply_enemy_mitigation(
    hit_damage: float,
    hits: float,
    enemy: EnemyParams,
    weapon_formulas: Mapping[str, Any],
) -> int:
    """
    Final damage for ``hits`` hits of ``hit_damage`` against ``enemy``.

    A FinalDamage formula is applied to each hit and the floored per-hit
    value is multiplied by the hit count; the built-in rule is proportional
    and applies to the total.
    """
    formula = weapon_formulas.get(FINAL_DAMAGE_KEY)
    if formula:
        per_hit = calculate_final_damage(
            hit_damage, enemy.defense, enemy.type_resistance, enemy.attribute_resistance, formula,
        )
        return round_down(per_hit * hits)
    return calculate_final_damage(
        hit_damage * hits, enemy.defense, enemy.type_resistance, enemy.attribute_resistance,
    )


def calculate_ttk(final_damage: float, enemy_hp: Optional[float]) -> Optional[int]:
    """Hits to kill, or None without positive HP and damage."""
    if not enemy_hp or enemy_hp <= 0 or final_damage <= 0:
        return None
    return math.ceil(enemy_hp / final_damage)


# =============================================================================
# FULL CALCULATION
# =============================================================================

def _run_damage(
    damage_input: DamageInput,
    weapon_formulas: Mapping[str, Any],
    skill_formulas: Optional[Mapping[str, Any]],
) -> DamageResult:
    options = damage_input.options
    context = base_damage_context(damage_input)

    base = calculate_base_damage(damage_input, weapon_formulas, context)
    corrected = apply_job_correction(base, damage_input, weapon_formulas)
    crit = apply_crit_damage(
        corrected,
        damage_input.effective_crit_rate,
        damage_input.weapon_crit_damage,
        options.crit_mode,
    )

    warnings: List[str] = []
    skill = None
    multiplier = 1.0
    hits = options.custom_hits if options.custom_hits is not None else 1
    mp = 0
    ct = 0
    if options.skill_name:
        outcome = calculate_skill_damage(
            options.skill_name, crit, context, damage_input.weapon_type,
            skill_formulas, weapon_formulas, options.hit_mode, options.custom_hits,
        )
        if outcome.success:
            skill = outcome.data
            multiplier = skill_multiplier(skill.damage, crit) if crit > 0 else 1.0
            hits = skill.hits
            mp = skill.mp
            ct = skill.ct
            warnings.extend(skill.warnings)
        else:
            # Treated as "no skill selected"
            warnings.append(f"{outcome.error.code.value}: {outcome.error.message}")

    hit_damage = crit * multiplier
    total = hit_damage * hits
    final = apply_enemy_mitigation(hit_damage, hits, damage_input.enemy, weapon_formulas)

    return DamageResult(
        base_damage=base,
        corrected_damage=corrected,
        crit_damage=crit,
        crit_multiplier=safe_divide(crit, corrected, default=1.0),
        skill_multiplier=multiplier,
        hits=hits,
        hit_damage=hit_damage,
        total_damage=total,
        final_damage=final,
        mp=mp,
        ct=ct,
        dps=final / ct if ct > 0 else None,
        ttk=calculate_ttk(final, damage_input.enemy.hp),
        mp_efficiency=final / mp if mp > 0 else None,
        skill=skill,
        warnings=warnings,
    )


def calculate_damage(
    damage_input: DamageInput,
    weapon_formulas: Mapping[str, Any],
    skill_formulas: Optional[Mapping[str, Any]] = None,
) -> CalcResult[DamageResult]:
    """
    Full damage calculation. Never raises.

    A missing or broken base formula fails with DAMAGE_CALC_ERROR. A skill
    that cannot be found or evaluated is reported in ``warnings`` and the
    calculation continues without it.
    """
    try:
        return CalcResult.ok(_run_damage(damage_input, weapon_formulas or {}, skill_formulas))
    except (DamageCalculationError, FormulaEvaluationError) as e:
        logger.warning("Damage calculation failed: %s", e)
        return CalcResult.fail(
            ErrorCode.DAMAGE_CALC_ERROR, str(e),
            weapon_type=damage_input.weapon_type, cause=e,
        )
    except Exception as e:
        logger.exception("Unexpected error in damage calculation")
        return CalcResult.fail(ErrorCode.DAMAGE_CALC_ERROR, str(e) or type(e).__name__, cause=e)
