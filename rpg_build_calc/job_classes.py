"""
RPG Build Calculator - Job Class System
=======================================
Job definitions, level scaling and the SP skill tree.

Each job has initial stats that grow with level, a percent job correction
and an SP tree with three branches (A/B/C). SP spent in a branch unlocks its
tiers in order; every reached tier adds its stat bonus.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from rpg_build_calc.core.constants import (
    DEFAULT_BRANCH_MAX_SP,
    MAX_JOB_LEVEL,
    MAX_SP_TIERS,
    MIN_JOB_LEVEL,
    SP_BRANCHES,
    SP_PER_LEVEL,
)
from rpg_build_calc.core.stat_math import StatBlock, add_stats, has_nonzero, sum_stats
from rpg_build_calc.core.stats import JobStats
from rpg_build_calc.stat_names import (
    AGILITY,
    CRIT_DAMAGE,
    DEFENSE,
    DEX,
    HP,
    MAGIC,
    MIND,
    POWER,
    normalize_stat_block,
)

logger = logging.getLogger(__name__)


# Catalog (Japanese) job names -> formula table job names
JOB_NAMES: Dict[str, str] = {
    'ノービス': 'Novice',
    'ファイター': 'Fighter',
    'アコライト': 'Acolyte',
    'アーチャー': 'Archer',
    'メイジ': 'Mage',
    'クレリック': 'Cleric',
    'ハンター': 'Hunter',
    'レンジャー': 'Ranger',
    'ウィザード': 'Wizard',
    'ナイト': 'Knight',
    'ウォーリアー': 'Warrior',
    'スペルリファクター': 'SpellRefactor',
    'ガーディアン': 'Guardian',
    'プリースト': 'Priest',
    'ステラシャフト': 'StellaShaft',
}

ARMOR_TYPE_NAMES: Dict[str, str] = {
    '布': 'Cloth',
    '革': 'Leather',
    '金属': 'Metal',
}

# JobConst field -> stat key
JOB_CONST_STATS: Dict[str, str] = {
    'HP': HP,
    'STR': POWER,
    'INT': MAGIC,
    'MND': MIND,
    'AGI': AGILITY,
    'DEX': DEX,
}

# SP tree column -> stat key
SP_STAT_COLUMNS: Dict[str, str] = {
    '体力': HP,
    '力': POWER,
    '魔力': MAGIC,
    '精神': MIND,
    '素早さ': AGILITY,
    '器用さ': DEX,
    '撃力': CRIT_DAMAGE,
    '守備力': DEFENSE,
}

# Per-level growth: value = initial + per_level * level - per_level
LEVEL_GROWTH: Dict[str, int] = {
    HP: 1,
    MIND: 1,
    POWER: 2,
    MAGIC: 2,
}

STAGE_COLUMN = '解法段階'
REQUIRED_SP_COLUMN = '必要SP'
SKILL_NAME_COLUMN = '解法スキル名'
INITIAL_STAGE = '初期値'
CORRECTION_STAGE = '職業補正(%)'

_NODE_STAGE_RE = re.compile(r'^([A-C])-(\d+)$')


def job_key(name: str) -> str:
    """Formula table job name for a catalog or table name."""
    return JOB_NAMES.get(name, name)


def armor_type_key(name: str) -> str:
    return ARMOR_TYPE_NAMES.get(name, name)


def _number(value: Any) -> float:
    """Catalog cell -> number; blanks and junk are 0."""
    if value is None or value == '':
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


# =============================================================================
# JOB DEFINITIONS
# =============================================================================

@dataclass(frozen=True)
class JobDefinition:
    """One entry of a JobConst table."""
    name: str
    max_level: int = MAX_JOB_LEVEL
    available_weapons: Tuple[str, ...] = ()
    available_armors: Tuple[str, ...] = ()
    initial: StatBlock = field(default_factory=dict)
    job_correction: StatBlock = field(default_factory=dict)

    @classmethod
    def from_config(cls, name: str, data: Mapping[str, Any]) -> 'JobDefinition':
        return cls(
            name=name,
            max_level=int(data.get('MaxLevel') or MAX_JOB_LEVEL),
            available_weapons=tuple(data.get('AvailableWeapons') or ()),
            available_armors=tuple(armor_type_key(a) for a in data.get('AvailableArmors') or ()),
            initial={stat: _number(data.get(column)) for column, stat in JOB_CONST_STATS.items()},
            job_correction=normalize_stat_block(data.get('JobCorrection')),
        )

    def can_equip_weapon(self, weapon_type: str) -> bool:
        return not self.available_weapons or weapon_type in self.available_weapons


def load_job_definitions(job_const: Mapping[str, Any]) -> Dict[str, JobDefinition]:
    """All jobs of a JobConst-shaped mapping, keyed by table name."""
    definitions = (job_const or {}).get('JobDefinition')
    if not definitions:
        raise ValueError("JobConst data has no JobDefinition section")
    return {name: JobDefinition.from_config(name, data) for name, data in definitions.items()}


def get_job_definition(jobs: Mapping[str, JobDefinition], name: str) -> JobDefinition:
    try:
        return jobs[job_key(name)]
    except KeyError:
        raise ValueError(f"Unknown job: {name}") from None


# =============================================================================
# LEVEL SCALING
# =============================================================================

def _check_level(level: int) -> None:
    if level < MIN_JOB_LEVEL:
        raise ValueError(f"Level must be at least {MIN_JOB_LEVEL}: {level}")


def scale_initial_stat(stat: str, initial: float, level: int) -> float:
    growth = LEVEL_GROWTH.get(stat, 0)
    return initial + growth * level - growth


def calculate_job_base_stats(job: JobDefinition, level: int) -> StatBlock:
    """
    Level-scaled base stats.

    Formula:
        HP, Mind      = initial + level - 1
        Power, Magic  = initial + 2 * level - 2
        Agility, Dex  = initial
        Defense, CritDamage = 0
    """
    _check_level(level)
    stats = {stat: scale_initial_stat(stat, job.initial.get(stat, 0), level) for stat in JOB_CONST_STATS.values()}
    stats[DEFENSE] = 0
    stats[CRIT_DAMAGE] = 0
    return stats


def calculate_total_sp(level: int) -> int:
    """SP available at a level (2 per level)."""
    _check_level(level)
    return level * SP_PER_LEVEL


# =============================================================================
# SP TREE
# =============================================================================

@dataclass(frozen=True)
class SPNode:
    branch: str
    tier: int
    required_sp: float
    skill_name: Optional[str] = None
    stats: StatBlock = field(default_factory=dict)

    @property
    def stage(self) -> str:
        return f"{self.branch}-{self.tier}"


@dataclass(frozen=True)
class SPTree:
    """Initial stats, job correction and SP nodes of one job's catalog."""
    initial: StatBlock = field(default_factory=dict)
    job_correction: StatBlock = field(default_factory=dict)
    nodes: Tuple[SPNode, ...] = ()

    @classmethod
    def from_rows(cls, rows: Sequence[Mapping[str, Any]]) -> 'SPTree':
        """
        Build from catalog rows keyed by 解法段階.

        初期値 gives initial stats, 職業補正(%) the job correction and
        every ``A-1``-style stage one node. Other rows are ignored.
        """
        initial: StatBlock = {}
        correction: StatBlock = {}
        nodes: List[SPNode] = []
        for row in rows:
            stage = str(row.get(STAGE_COLUMN) or '').strip()
            stats = {stat: _number(row.get(column)) for column, stat in SP_STAT_COLUMNS.items()}
            if stage == INITIAL_STAGE:
                initial = stats
            elif stage == CORRECTION_STAGE:
                correction = stats
            else:
                match = _NODE_STAGE_RE.match(stage)
                if match:
                    nodes.append(SPNode(
                        branch=match.group(1),
                        tier=int(match.group(2)),
                        required_sp=_number(row.get(REQUIRED_SP_COLUMN)),
                        skill_name=row.get(SKILL_NAME_COLUMN) or None,
                        stats={k: v for k, v in stats.items() if v},
                    ))
        return cls(initial=initial, job_correction=correction, nodes=tuple(nodes))

    def node(self, branch: str, tier: int) -> Optional[SPNode]:
        for node in self.nodes:
            if node.branch == branch and node.tier == tier:
                return node
        return None

    def branch_nodes(self, branch: str) -> List[SPNode]:
        """Tiers 1, 2, ... of a branch, stopping at the first missing tier."""
        found = []
        for tier in range(1, MAX_SP_TIERS + 1):
            node = self.node(branch, tier)
            if node is None:
                break
            found.append(node)
        return found

    def reached_nodes(self, branch: str, allocated_sp: float) -> List[SPNode]:
        """Nodes unlocked by ``allocated_sp``; tiers unlock strictly in order."""
        reached = []
        for node in self.branch_nodes(branch):
            if node.required_sp > allocated_sp:
                break
            reached.append(node)
        return reached


@dataclass(frozen=True)
class UnlockedSkill:
    skill_name: str
    branch: str
    tier: int
    required_sp: float


@dataclass(frozen=True)
class NextSkill:
    branch: str
    skill_name: str
    required_sp: float
    current_sp: float
    need_more_sp: float


def _allocated(allocation: Optional[Mapping[str, float]], branch: str) -> float:
    return (allocation or {}).get(branch) or 0


def calculate_branch_bonus(allocation: Mapping[str, float], tree: SPTree) -> Dict[str, StatBlock]:
    """Stat bonus of every reached tier, per branch."""
    bonus = {}
    for branch in SP_BRANCHES:
        bonus[branch] = sum_stats(*(n.stats for n in tree.reached_nodes(branch, _allocated(allocation, branch))))
    return bonus


def calculate_sp_bonus(allocation: Mapping[str, float], tree: SPTree) -> StatBlock:
    """All branches' bonuses summed."""
    return sum_stats(*calculate_branch_bonus(allocation, tree).values())


def unlocked_skills(allocation: Mapping[str, float], tree: SPTree) -> List[UnlockedSkill]:
    skills = []
    for branch in SP_BRANCHES:
        for node in tree.reached_nodes(branch, _allocated(allocation, branch)):
            if node.skill_name:
                skills.append(UnlockedSkill(node.skill_name, branch, node.tier, node.required_sp))
    return skills


def reached_tier(branch: str, allocated_sp: float, tree: SPTree) -> str:
    """Deepest reached stage, e.g. "A-3"; "A-0" when nothing is reached."""
    reached = tree.reached_nodes(branch, allocated_sp)
    return reached[-1].stage if reached else f"{branch}-0"


def next_skill(allocation: Mapping[str, float], tree: SPTree) -> Optional[NextSkill]:
    """
    The skill that needs the least extra SP to unlock.

    Only the first unreached tier of each branch is a candidate, and only if
    it unlocks a skill. Ties go to the earlier branch.
    """
    best = None
    for branch in SP_BRANCHES:
        current = _allocated(allocation, branch)
        for node in tree.branch_nodes(branch):
            if node.required_sp <= current:
                continue
            if node.skill_name:
                need = node.required_sp - current
                if best is None or need < best.need_more_sp:
                    best = NextSkill(branch, node.skill_name, node.required_sp, current, need)
            break
    return best


def max_sp_by_branch(tree: SPTree) -> Dict[str, float]:
    """Required SP of each branch's last costed tier (100 when the branch is empty)."""
    result = {}
    for branch in SP_BRANCHES:
        last = DEFAULT_BRANCH_MAX_SP
        for node in tree.branch_nodes(branch):
            if node.required_sp > 0:
                last = node.required_sp
        result[branch] = last
    return result


def validate_sp_allocation(
    allocation: Mapping[str, float],
    total_sp: float,
    tree: Optional[SPTree] = None,
) -> List[str]:
    """Every problem with an allocation; empty when it is valid."""
    errors = []
    for branch, value in (allocation or {}).items():
        if branch not in SP_BRANCHES:
            errors.append(f"Unknown SP branch: {branch}")
        elif value is not None and value < 0:
            errors.append(f"SP for branch {branch} must not be negative: {value}")

    used = sum(_allocated(allocation, branch) for branch in SP_BRANCHES)
    if used > total_sp:
        errors.append(f"SP exceeds the limit: used {used}, max {total_sp}")

    if tree is not None:
        limits = max_sp_by_branch(tree)
        for branch in SP_BRANCHES:
            allocated = _allocated(allocation, branch)
            if allocated > limits[branch]:
                errors.append(f"SP for branch {branch} exceeds its maximum: {allocated} > {limits[branch]}")
    return errors


# =============================================================================
# FULL JOB STATS
# =============================================================================

def calculate_initial_stats(job: JobDefinition, level: int, tree: Optional[SPTree] = None) -> StatBlock:
    """
    Base stats, with non-zero 初期値 values from the SP tree replacing the
    job definition's before level scaling.
    """
    stats = calculate_job_base_stats(job, level)
    if tree is not None:
        for stat, value in tree.initial.items():
            if value:
                stats[stat] = scale_initial_stat(stat, value, level)
    return stats


def calculate_job_stats(
    job: JobDefinition,
    level: int,
    allocation: Optional[Mapping[str, float]] = None,
    tree: Optional[SPTree] = None,
) -> JobStats:
    """
    Job contribution for compute_status().

    Raises:
        ValueError: level outside 1-999 or an invalid SP allocation
    """
    if level < MIN_JOB_LEVEL or level > MAX_JOB_LEVEL:
        raise ValueError(f"Level must be between {MIN_JOB_LEVEL} and {MAX_JOB_LEVEL}: {level}")

    initial = calculate_initial_stats(job, level, tree)
    sp: StatBlock = {}
    if allocation:
        errors = validate_sp_allocation(allocation, calculate_total_sp(level), tree)
        if errors:
            raise ValueError("Invalid SP allocation: " + ", ".join(errors))
        if tree is not None:
            sp = calculate_sp_bonus(allocation, tree)

    bonus_percent = dict(job.job_correction)
    if not has_nonzero(bonus_percent) and tree is not None:
        bonus_percent = {k: v for k, v in tree.job_correction.items() if v}

    logger.debug("Job %s level %d: SP bonus %s", job.name, level, sp)
    return JobStats(initial=initial, sp=sp, bonus_percent=bonus_percent)


def total_job_stats(job_stats: JobStats) -> StatBlock:
    """Initial + SP, before job correction."""
    return add_stats(job_stats.initial, job_stats.sp)
