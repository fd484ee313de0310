"""
RPG Build Calculator - Build Recalculation
==========================================
Bridge between a caller-owned build state and the core calculators.

recompute() turns the job, SP allocation, equipment and user inputs into a
StatusInput and runs compute_status(). Nothing is cached or stored; the
caller keeps the state and calls recompute() whenever it changes.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from rpg_build_calc.core.constants import ErrorCode
from rpg_build_calc.core.damage import DamageInput, DamageOptions, EnemyParams
from rpg_build_calc.core.results import CalcResult
from rpg_build_calc.core.stat_math import StatBlock
from rpg_build_calc.core.stats import CalculatedStats, RingOptions, StatusInput, compute_status
from rpg_build_calc.equipment import (
    DEFAULT_COEFFICIENTS,
    CoefficientTables,
    EquipmentSelection,
    EquipmentTotals,
    calculate_equipment_contribution,
)
from rpg_build_calc.job_classes import JobDefinition, SPTree, calculate_job_stats

logger = logging.getLogger(__name__)


@dataclass
class BuildState:
    """Everything the planner lets the user change."""
    job: JobDefinition
    level: int = 1
    sp_allocation: Dict[str, float] = field(default_factory=dict)
    sp_tree: Optional[SPTree] = None
    equipment: EquipmentSelection = field(default_factory=EquipmentSelection)
    tables: CoefficientTables = DEFAULT_COEFFICIENTS
    food: StatBlock = field(default_factory=dict)
    user_option: StatBlock = field(default_factory=dict)
    user_percent: StatBlock = field(default_factory=dict)
    user_percent_recursive: bool = False
    ring: Optional[RingOptions] = None


def _ring_options(ring: Optional[RingOptions], totals: EquipmentTotals) -> Optional[RingOptions]:
    # Additive ring without an explicit total reads the equipment stats
    if ring is not None and ring.ring_type is not None and not ring.equipment_total:
        return replace(ring, equipment_total=totals.as_stat_block())
    return ring


def to_status_input(state: BuildState, totals: Optional[EquipmentTotals] = None) -> StatusInput:
    """
    StatusInput for a build.

    Raises:
        ValueError: invalid level, SP allocation or equipment settings
    """
    if totals is None:
        totals = calculate_equipment_contribution(state.equipment, state.tables)
    job_stats = calculate_job_stats(state.job, state.level, state.sp_allocation, state.sp_tree)
    return StatusInput(
        job_stats=job_stats,
        equipment=totals.as_stat_block(),
        emblem_percent=dict(totals.percent),
        food=dict(state.food),
        user_option=dict(state.user_option),
        weapon_crit_rate=totals.crit_rate,
        user_percent=dict(state.user_percent),
        user_percent_recursive=state.user_percent_recursive,
        ring=_ring_options(state.ring, totals),
    )


def recompute(state: BuildState) -> CalcResult[CalculatedStats]:
    """
    Full stat recalculation for a build. Never raises.

    Invalid settings (level, SP, equipment ranges) fail with INVALID_INPUT.
    """
    try:
        status = to_status_input(state)
    except ValueError as e:
        logger.warning("Build rejected: %s", e)
        return CalcResult.fail(ErrorCode.INVALID_INPUT, str(e), job=state.job.name, cause=e)
    return compute_status(status)


def to_damage_input(
    state: BuildState,
    stats: CalculatedStats,
    enemy: Optional[EnemyParams] = None,
    options: Optional[DamageOptions] = None,
    totals: Optional[EquipmentTotals] = None,
) -> DamageInput:
    """
    DamageInput for the equipped weapon.

    Raises:
        ValueError: no weapon is equipped
    """
    if state.equipment.weapon is None:
        raise ValueError("A weapon must be equipped to calculate damage")
    if totals is None:
        totals = calculate_equipment_contribution(state.equipment, state.tables)
    return DamageInput(
        stats=stats,
        weapon_type=totals.weapon_type,
        weapon_attack_power=totals.attack_power,
        weapon_crit_rate=totals.crit_rate,
        weapon_crit_damage=totals.crit_damage,
        damage_correction=totals.damage_correction,
        enemy=enemy or EnemyParams(),
        options=options or DamageOptions(),
        job_name=state.job.name,
    )
