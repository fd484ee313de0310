"""
RPG Build Calculator - Core Math Module
=======================================
Single source of truth for stat aggregation, formula evaluation and damage
calculation.

All other modules should import from here rather than implementing their own formulas.
"""

from .constants import (
    # Error taxonomy
    ErrorCode,
    # Modes
    CritMode,
    DamageCorrectionMode,
    HitMode,
    RingType,
    # Ranks
    RANK_ORDER,
    LOWEST_RANK,
)

from .results import (
    CalcError,
    CalcResult,
    CalcResultError,
    DamageCalculationError,
)

from .formula import (
    FormulaEvaluationError,
    evaluate_formula,
    try_evaluate_formula,
    formula_variables,
)

from .stats import (
    # Entry point
    compute_status,
    StatusInput,
    JobStats,
    RingOptions,
    CalculatedStats,
    ConvergenceResult,
    # Pipeline stages
    aggregate,
    apply_percent_bonus,
    apply_convergence,
    apply_user_percent_bonus,
    apply_additive_ring,
    derive_crit_rate,
)

from .damage import (
    # Core calculation
    calculate_damage,
    DamageInput,
    DamageOptions,
    DamageResult,
    EnemyParams,
    # Helper functions
    calculate_base_damage,
    apply_job_correction,
    apply_crit_damage,
    apply_damage_correction,
    calculate_final_damage,
    apply_enemy_mitigation,
)

from .skills import (
    SkillOutcome,
    find_skill,
    parse_hits,
    calculate_skill_damage,
)

__all__ = [
    # Constants
    'ErrorCode',
    'CritMode',
    'DamageCorrectionMode',
    'HitMode',
    'RingType',
    'RANK_ORDER',
    'LOWEST_RANK',
    # Results
    'CalcError',
    'CalcResult',
    'CalcResultError',
    'DamageCalculationError',
    # Formulas
    'FormulaEvaluationError',
    'evaluate_formula',
    'try_evaluate_formula',
    'formula_variables',
    # Stats aggregation
    'compute_status',
    'StatusInput',
    'JobStats',
    'RingOptions',
    'CalculatedStats',
    'ConvergenceResult',
    'aggregate',
    'apply_percent_bonus',
    'apply_convergence',
    'apply_user_percent_bonus',
    'apply_additive_ring',
    'derive_crit_rate',
    # Damage calculation
    'calculate_damage',
    'DamageInput',
    'DamageOptions',
    'DamageResult',
    'EnemyParams',
    'calculate_base_damage',
    'apply_job_correction',
    'apply_crit_damage',
    'apply_damage_correction',
    'calculate_final_damage',
    'apply_enemy_mitigation',
    # Skills
    'SkillOutcome',
    'find_skill',
    'parse_hits',
    'calculate_skill_damage',
]
