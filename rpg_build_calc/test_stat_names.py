"""
Unit tests for stat_names.py - stat aliases and weapon type names.
"""
import pytest

from rpg_build_calc.stat_names import (
    STAT_DEFINITIONS,
    canonical_stat_name,
    formula_key,
    get_stat_definition,
    lookup_by_weapon_type,
    map_user_stats_to_variables,
    normalize_stat_block,
    normalize_weapon_type,
    percent_key,
    resolve_stat,
    split_percent_stats,
)


class TestStatDefinitions:
    """Tests for the stat registry."""

    def test_registry_keys_are_canonical(self):
        for key, defn in STAT_DEFINITIONS.items():
            assert defn.key == key
            assert defn.user_variable.startswith("User")

    def test_aliases_resolve(self):
        assert get_stat_definition("力").key == "Power"
        assert get_stat_definition("Dexterity").key == "Dex"
        assert get_stat_definition("Luck") is None


class TestCanonicalNames:
    """Tests for alias normalization."""

    @pytest.mark.parametrize("alias, expected", [
        ("ATK", "Power"),
        ("体力", "HP"),
        ("Speed", "Agility"),
        ("CriticalDamage", "CritDamage"),
        ("Defence", "Defense"),
        ("Unknown", "Unknown"),
    ])
    def test_canonical(self, alias, expected):
        assert canonical_stat_name(alias) == expected

    def test_percent_keys(self):
        assert canonical_stat_name("power_percent") == "Power_percent"
        assert percent_key("魔力") == "Magic_percent"

    def test_normalize_block_merges_aliases(self):
        assert normalize_stat_block({"Power": 10, "ATK": 5, "HP": None}) == {"Power": 15}
        assert normalize_stat_block(None) == {}

    def test_split_percent(self):
        flat, percent = split_percent_stats({"Power": 5, "Power_percent": 10})
        assert flat == {"Power": 5}
        assert percent == {"Power": 10}


class TestResolveStat:
    """Tests for resolve_stat() and formula variables."""

    def test_first_non_zero_alias_wins(self):
        assert resolve_stat({"Power": 0, "ATK": 120}, "Power") == 120
        assert resolve_stat({"UserPower": 7, "Power": 120}, "Power") == 7

    def test_missing_is_zero(self):
        assert resolve_stat({}, "Power") == 0
        assert resolve_stat(None, "Magic") == 0

    def test_user_variables(self, user_stats):
        variables = map_user_stats_to_variables(user_stats)
        assert variables["UserPower"] == 100
        assert variables["UserCritRate"] == 50
        assert variables["UserDex"] == 50
        assert variables["UserSpeed"] == 70
        assert variables["UserAgility"] == 70
        assert variables["UserCritDamage"] == 50
        assert variables["CriticalDamage"] == 50
        assert variables["UserMP"] == 0


class TestWeaponTypes:
    """Tests for weapon type normalization and table lookup."""

    def test_catalog_names(self):
        assert normalize_weapon_type("剣") == "Sword"
        assert normalize_weapon_type("杖") == "Wand"
        assert normalize_weapon_type(" Bow ") == "Bow"

    def test_formula_key(self):
        assert formula_key("SWORD") == "Sword"
        assert formula_key("greatsword") == "Greatsword"
        assert formula_key("大剣") == "Greatsword"

    def test_lookup(self):
        table = {"Sword": 1, "Greatsword": 2, "Staff": 3}
        assert lookup_by_weapon_type(table, "sword") == 1
        assert lookup_by_weapon_type(table, "GreatSword") == 2
        assert lookup_by_weapon_type(table, "杖") == 3
        assert lookup_by_weapon_type(table, "Axe") is None
        assert lookup_by_weapon_type(None, "Sword") is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
