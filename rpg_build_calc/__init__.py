"""
RPG Build Calculator
====================
Stat aggregation, equipment scaling and damage formulas for an RPG build
planner. The UI owns all state; everything here is a pure function of its
inputs.
"""

from .core import (
    CalcResult,
    CalculatedStats,
    DamageInput,
    DamageOptions,
    DamageResult,
    EnemyParams,
    ErrorCode,
    StatusInput,
    calculate_damage,
    compute_status,
    evaluate_formula,
)
from .equipment import (
    CoefficientTables,
    DEFAULT_COEFFICIENTS,
    EquipmentSelection,
    calculate_equipment_contribution,
)
from .job_classes import JobDefinition, SPTree, calculate_job_stats
from .build import BuildState, recompute

__version__ = "0.3.0"

__all__ = [
    # Entry points
    'compute_status',
    'calculate_damage',
    'calculate_equipment_contribution',
    'evaluate_formula',
    'recompute',
    # Inputs / results
    'StatusInput',
    'CalculatedStats',
    'DamageInput',
    'DamageOptions',
    'DamageResult',
    'EnemyParams',
    'CalcResult',
    'ErrorCode',
    'EquipmentSelection',
    'CoefficientTables',
    'DEFAULT_COEFFICIENTS',
    'JobDefinition',
    'SPTree',
    'calculate_job_stats',
    'BuildState',
]
