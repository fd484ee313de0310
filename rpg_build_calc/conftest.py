"""
Shared pytest fixtures: formula and coefficient tables loaded from testdata/.
"""
from pathlib import Path

import pytest
import yaml

from rpg_build_calc.equipment import CoefficientTables
from rpg_build_calc.job_classes import SPTree, load_job_definitions

TESTDATA = Path(__file__).parent / "testdata"


def load_yaml(name: str) -> dict:
    with open(TESTDATA / name, encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


@pytest.fixture(scope="session")
def weapon_formulas():
    """BasedDamage / JobCorrection / AdditionalAttacks tables."""
    return load_yaml("weapon_calc.yaml")


@pytest.fixture(scope="session")
def skill_formulas():
    return load_yaml("skill_calc.yaml")


@pytest.fixture(scope="session")
def eq_const():
    return load_yaml("eq_const.yaml")


@pytest.fixture(scope="session")
def coefficient_tables(eq_const):
    return CoefficientTables.from_config(eq_const)


@pytest.fixture(scope="session")
def job_const():
    return load_yaml("job_const.yaml")


@pytest.fixture(scope="session")
def jobs(job_const):
    return load_job_definitions(job_const)


@pytest.fixture(scope="session")
def novice_tree(job_const):
    return SPTree.from_rows(job_const["NoviceSP"])


@pytest.fixture
def user_stats():
    """Final stat block in the aliases a UI hands over."""
    return {
        "Power": 100,
        "Magic": 80,
        "Mind": 60,
        "Agility": 70,
        "HP": 500,
        "Dexterity": 50,
        "Defense": 100,
        "CriticalDamage": 50,
    }
