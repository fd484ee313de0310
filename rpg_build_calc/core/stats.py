"""
RPG Build Calculator - Stat Aggregation
=======================================
Combines equipment, job, food and user-option contributions into the final
stat block the damage engine reads.

Pipeline (compute_status):
    1. aggregate            - key-wise sum of every flat source
    2. apply_percent_bonus  - job + emblem percent, rounded per stat
    3. user percent bonus   - optional, single pass or until stable
    4. ring convergence     - optional compounding percent ring
    5. additive ring        - optional Power/Magic/Speed ring
    6. derive_crit_rate     - weapon crit rate + dex * 0.3
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional, Union

from .constants import (
    CRIT_RATE_DEX_KEYS,
    CRIT_RATE_PER_DEX,
    MAX_CONVERGENCE_ITERATIONS,
    RING_BASE_VALUE,
    RING_MULTIPLIER,
    RING_TARGET_STAT,
    ErrorCode,
    RingType,
)
from .results import CalcResult
from .stat_math import (
    StatBlock,
    clone_stats,
    get_stat,
    has_nonzero,
    is_equal_stats,
    round_down,
    round_half_away,
    sum_stats,
    union_keys,
)

logger = logging.getLogger(__name__)


def _camel(name: str) -> str:
    """job_stats -> jobStats"""
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)


def _read(data: Mapping[str, Any], name: str, default: Any = None) -> Any:
    """``data[name]``, falling back to the camelCase spelling of ``name``."""
    if name in data:
        return data[name]
    return data.get(_camel(name), default)



# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ConvergenceResult:
    """Outcome of an iterative bonus loop."""
    final: StatBlock
    iterations: int
    delta: StatBlock


@dataclass(frozen=True)
class BonusPercent:
    job: StatBlock = field(default_factory=dict)
    emblem: StatBlock = field(default_factory=dict)
    total: StatBlock = field(default_factory=dict)


@dataclass(frozen=True)
class StatBreakdown:
    """The flat blocks that went into ``base``, kept for display."""
    equipment: StatBlock = field(default_factory=dict)
    job_initial: StatBlock = field(default_factory=dict)
    job_sp: StatBlock = field(default_factory=dict)
    food: StatBlock = field(default_factory=dict)
    user_option: StatBlock = field(default_factory=dict)
    runestone: StatBlock = field(default_factory=dict)


@dataclass(frozen=True)
class CalculatedStats:
    """Immutable snapshot produced once per recalculation."""
    base: StatBlock
    bonus_percent: BonusPercent
    final: StatBlock
    crit_rate: float
    ring: Optional[ConvergenceResult] = None
    user_percent: Optional[ConvergenceResult] = None
    breakdown: StatBreakdown = field(default_factory=StatBreakdown)


@dataclass
class JobStats:
    """Job contribution: level-scaled initial stats, SP tree stats and job percent."""
    initial: StatBlock = field(default_factory=dict)
    sp: StatBlock = field(default_factory=dict)
    bonus_percent: StatBlock = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'JobStats':
        return cls(
            initial=dict(_read(data, 'initial') or {}),
            sp=dict(_read(data, 'sp') or {}),
            bonus_percent=dict(_read(data, 'bonus_percent') or {}),
        )


@dataclass
class RingOptions:
    """
    Ring settings.

    ``percent`` drives the compounding ring (apply_convergence).
    ``ring_type`` + ``equipment_total`` drive the additive ring.
    """
    percent: StatBlock = field(default_factory=dict)
    ring_type: Optional[RingType] = None
    equipment_total: Union[float, StatBlock] = 0
    base_value: float = RING_BASE_VALUE
    multiplier: float = RING_MULTIPLIER
    max_iterations: int = MAX_CONVERGENCE_ITERATIONS


@dataclass
class StatusInput:
    """Everything compute_status() needs. Only ``job_stats`` is mandatory."""
    job_stats: Optional[JobStats] = None
    equipment: StatBlock = field(default_factory=dict)
    emblem_percent: StatBlock = field(default_factory=dict)
    food: StatBlock = field(default_factory=dict)
    user_option: StatBlock = field(default_factory=dict)
    runestone: StatBlock = field(default_factory=dict)
    weapon_crit_rate: float = 0
    user_percent: StatBlock = field(default_factory=dict)
    user_percent_recursive: bool = False
    ring: Optional[RingOptions] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'StatusInput':
        """
        Build from a plain mapping (UI state); unknown keys are ignored.

        Every key may use snake_case or camelCase (``job_stats`` / ``jobStats``).
        """
        job_stats = _read(data, 'job_stats')
        if isinstance(job_stats, Mapping):
            job_stats = JobStats.from_dict(job_stats)
        ring = _read(data, 'ring')
        if isinstance(ring, Mapping):
            ring = RingOptions(**{
                f.name: _read(ring, f.name) for f in fields(RingOptions)
                if f.name in ring or _camel(f.name) in ring
            })
        return cls(
            job_stats=job_stats,
            equipment=dict(_read(data, 'equipment') or {}),
            emblem_percent=dict(_read(data, 'emblem_percent') or {}),
            food=dict(_read(data, 'food') or {}),
            user_option=dict(_read(data, 'user_option') or {}),
            runestone=dict(_read(data, 'runestone') or {}),
            weapon_crit_rate=_read(data, 'weapon_crit_rate') or 0,
            user_percent=dict(_read(data, 'user_percent') or {}),
            user_percent_recursive=bool(_read(data, 'user_percent_recursive', False)),
            ring=ring,
        )


# =============================================================================
# PIPELINE STAGES
# =============================================================================

def aggregate(
    equipment: Optional[StatBlock],
    job_initial: Optional[StatBlock],
    job_sp: Optional[StatBlock],
    food: Optional[StatBlock],
    user_option: Optional[StatBlock],
    runestone: Optional[StatBlock] = None,
) -> StatBlock:
    """Plain key-wise sum of every flat source. Empty inputs are fine."""
    return sum_stats(equipment, job_initial, job_sp, food, user_option, runestone)


def apply_percent_bonus(
    base: StatBlock,
    job_percent: Optional[StatBlock],
    emblem_percent: Optional[StatBlock],
) -> StatBlock:
    """
    result[k] = round(base[k] * (1 + (job[k] + emblem[k]) / 100))

    Covers every key of all three inputs; a percent without a base gives 0.
    """
    result = {}
    for key in union_keys(base, job_percent, emblem_percent):
        percent = get_stat(job_percent, key) + get_stat(emblem_percent, key)
        result[key] = round_half_away(get_stat(base, key) * (1 + percent / 100))
    return result


def _compound_once(current: StatBlock, percent: Mapping[str, float]) -> StatBlock:
    return {
        key: round_half_away(get_stat(current, key) * (1 + get_stat(percent, key) / 100))
        for key in union_keys(current, percent)
    }


def _delta(final: StatBlock, base: StatBlock) -> StatBlock:
    return {key: value - get_stat(base, key) for key, value in final.items()}


def apply_convergence(
    base: StatBlock,
    ring_percent: Optional[StatBlock],
    max_iterations: int = MAX_CONVERGENCE_ITERATIONS,
) -> ConvergenceResult:
    """
    Apply a compounding percent ring until the block stops changing.

    The iteration that detects the fixed point still counts, so a zero bonus
    finishes in 1 iteration. A bonus large enough to never settle stops at
    ``max_iterations`` with the value reached so far (1 at +100% for 10
    iterations gives 1024).
    """
    current = clone_stats(base)
    iterations = 0
    for _ in range(max_iterations):
        iterations += 1
        nxt = _compound_once(current, ring_percent or {})
        if is_equal_stats(nxt, current):
            break
        current = nxt
    else:
        logger.debug("Ring convergence hit the %d iteration cap", max_iterations)

    return ConvergenceResult(final=current, iterations=iterations, delta=_delta(current, base))


def apply_user_percent_bonus(
    base: StatBlock,
    percent: Optional[StatBlock],
    recursive: bool = False,
    max_iterations: int = MAX_CONVERGENCE_ITERATIONS,
) -> ConvergenceResult:
    """
    User-entered percent bonus, separate from job and emblem percent.

    Non-recursive applies it once. Recursive keeps reapplying it until the
    largest per-stat change drops below 1.
    """
    if not has_nonzero(percent):
        return ConvergenceResult(final=clone_stats(base), iterations=0, delta={})

    if not recursive:
        final = _compound_once(base, percent)
        return ConvergenceResult(final=final, iterations=1, delta=_delta(final, base))

    current = clone_stats(base)
    iterations = 0
    for _ in range(max_iterations):
        iterations += 1
        nxt = _compound_once(current, percent)
        max_change = max(
            (abs(value - get_stat(current, key)) for key, value in nxt.items()),
            default=0,
        )
        current = nxt
        if max_change < 1:
            break

    return ConvergenceResult(final=current, iterations=iterations, delta=_delta(current, base))


def apply_additive_ring(
    base: StatBlock,
    ring_type: Union[RingType, str],
    equipment_total: Union[float, Mapping[str, float]],
    base_value: float = RING_BASE_VALUE,
    multiplier: float = RING_MULTIPLIER,
    max_iterations: int = MAX_CONVERGENCE_ITERATIONS,
) -> ConvergenceResult:
    """
    Additive ring: a flat bonus derived from the equipment total of one stat.

    anchor = equip + base_value
    first  = anchor + equip * multiplier
    next   = anchor + round(current * multiplier), until next == floor(current)

    Example (equip 1000): 1140 -> 1154 -> 1155 -> 1156 -> 1156, five
    iterations, +1156 Power.
    """
    ring_type = RingType(ring_type)
    target = RING_TARGET_STAT[ring_type]
    if isinstance(equipment_total, Mapping):
        equip = get_stat(equipment_total, target)
    else:
        equip = equipment_total or 0

    if equip <= 0:
        return ConvergenceResult(final=clone_stats(base), iterations=0, delta={})

    anchor = equip + base_value
    current = anchor + equip * multiplier
    iterations = 1
    for _ in range(max_iterations):
        nxt = anchor + round_half_away(current * multiplier)
        iterations += 1
        if nxt == round_down(current):
            current = nxt
            break
        current = nxt

    ring_value = round_down(current)
    final = clone_stats(base)
    final[target] = get_stat(final, target) + ring_value
    return ConvergenceResult(final=final, iterations=iterations, delta={target: ring_value})


def derive_crit_rate(weapon_crit_rate: float, user_dex: float) -> float:
    """weapon crit rate + dex * 0.3, unrounded."""
    return weapon_crit_rate + user_dex * CRIT_RATE_PER_DEX


def read_crit_dex(block: Mapping[str, float]) -> float:
    """Dex used for crit rate: the first non-zero of CRIT_RATE_DEX_KEYS."""
    for key in CRIT_RATE_DEX_KEYS:
        value = block.get(key)
        if value:
            return value
    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================

def _run_pipeline(status: StatusInput) -> CalculatedStats:
    job = status.job_stats
    breakdown = StatBreakdown(
        equipment=clone_stats(status.equipment),
        job_initial=clone_stats(job.initial),
        job_sp=clone_stats(job.sp),
        food=clone_stats(status.food),
        user_option=clone_stats(status.user_option),
        runestone=clone_stats(status.runestone),
    )
    base = aggregate(
        breakdown.equipment, breakdown.job_initial, breakdown.job_sp,
        breakdown.food, breakdown.user_option, breakdown.runestone,
    )
    job_percent = clone_stats(job.bonus_percent)
    emblem_percent = clone_stats(status.emblem_percent)
    current = apply_percent_bonus(base, job_percent, emblem_percent)

    user_percent = None
    if has_nonzero(status.user_percent):
        user_percent = apply_user_percent_bonus(
            current, status.user_percent, status.user_percent_recursive
        )
        current = user_percent.final

    ring = None
    options = status.ring
    if options is not None and has_nonzero(options.percent):
        ring = apply_convergence(current, options.percent, options.max_iterations)
        current = ring.final
    if options is not None and options.ring_type is not None:
        additive = apply_additive_ring(
            current, options.ring_type, options.equipment_total,
            options.base_value, options.multiplier, options.max_iterations,
        )
        if additive.iterations:
            # Both rings active: report them as one combined ring
            if ring is not None:
                additive = ConvergenceResult(
                    final=additive.final,
                    iterations=ring.iterations + additive.iterations,
                    delta=sum_stats(ring.delta, additive.delta),
                )
            ring = additive
            current = additive.final

    crit_rate = derive_crit_rate(status.weapon_crit_rate or 0, read_crit_dex(current))
    logger.debug("Status computed: %d stats, crit rate %.2f", len(current), crit_rate)

    return CalculatedStats(
        base=base,
        bonus_percent=BonusPercent(
            job=job_percent,
            emblem=emblem_percent,
            total=sum_stats(job_percent, emblem_percent),
        ),
        final=current,
        crit_rate=crit_rate,
        ring=ring,
        user_percent=user_percent,
        breakdown=breakdown,
    )


def compute_status(status: Union[StatusInput, Mapping[str, Any]]) -> CalcResult[CalculatedStats]:
    """
    Run the full aggregation pipeline.

    Returns INVALID_INPUT when ``job_stats`` is missing and CALCULATION_ERROR
    for anything that goes wrong inside the pipeline. Never raises.
    """
    try:
        if isinstance(status, Mapping):
            status = StatusInput.from_dict(status)
    except (TypeError, ValueError) as e:
        return CalcResult.fail(ErrorCode.INVALID_INPUT, f"Malformed status input: {e}", cause=e)

    if status.job_stats is None:
        return CalcResult.fail(ErrorCode.INVALID_INPUT, "Job stats are required")

    try:
        return CalcResult.ok(_run_pipeline(status))
    except Exception as e:
        logger.warning("Status calculation failed: %s", e)
        return CalcResult.fail(ErrorCode.CALCULATION_ERROR, str(e) or type(e).__name__, cause=e)
