"""
Unit tests for equipment.py - weapon, armor, accessory, emblem and rune stats.

Reference items:
- Weapon: level 10, attack 50, crit rate 5, crit damage 20, cool time 1.5
- Armor: level 10, Power/Magic/Mind/Agility/Dex/CritDamage 10, HP 100, Defense 30
- Accessory: level 20, Power 10
"""
import pytest

# Tables
from rpg_build_calc.equipment import (
    DEFAULT_COEFFICIENTS,
    CoefficientTables,
)

# Records and selections
from rpg_build_calc.equipment import (
    AccessoryRecord,
    AccessorySelection,
    ArmorRecord,
    ArmorSelection,
    Emblem,
    EquipmentSelection,
    RuneStone,
    WeaponRecord,
    WeaponSelection,
    WeaponSmithing,
)

# Calculators
from rpg_build_calc.equipment import (
    calculate_accessory_stats,
    calculate_armor_stats,
    calculate_emblem_stats,
    calculate_equipment_contribution,
    calculate_ex_value,
    calculate_rune_set_bonus,
    calculate_rune_stats,
    calculate_weapon_stats,
    clamp_rank,
    is_rank_allowed,
    validate_runes,
)


@pytest.fixture
def sword():
    return WeaponRecord(
        name="Bronze Sword", weapon_type="Sword", level=10,
        attack=50, crit_rate=5, crit_damage=20, damage_correction=80, cool_time=1.5,
    )


@pytest.fixture
def armor():
    stats = {key: 10 for key in ("Power", "Magic", "Mind", "Agility", "Dex", "CritDamage")}
    stats.update(HP=100, Defense=30)
    return ArmorRecord(name="Leather Cap", level=10, stats=stats)


@pytest.fixture
def necklace():
    return AccessoryRecord(name="Copper Necklace", level=20, stats={"Power": 10})


class TestCoefficientTables:
    """Tests for CoefficientTables.from_config()."""

    def test_loads_eq_const(self, coefficient_tables):
        assert coefficient_tables.weapon_denominator == 320
        assert coefficient_tables.weapon_max_reinforcement == 80
        assert coefficient_tables.armor_max_reinforcement == 40
        assert coefficient_tables.weapon_bonus["A"].attack == 25
        assert coefficient_tables.weapon_alchemy["SSS"].crit_damage == 48
        assert coefficient_tables.accessory_rank["SSS"] == 55

    def test_coeff_row_is_not_a_rank(self, coefficient_tables):
        assert "Coeff" not in coefficient_tables.weapon_bonus

    def test_unknown_rank_key_raises(self):
        with pytest.raises(ValueError):
            CoefficientTables.from_config({"Armor": {"Rank": {"Z": 1}}})

    def test_defaults_match_published_ranks(self, coefficient_tables):
        for rank in ("SSS", "A", "F"):
            assert DEFAULT_COEFFICIENTS.weapon_bonus[rank] == coefficient_tables.weapon_bonus[rank]
            assert DEFAULT_COEFFICIENTS.armor_rank[rank] == coefficient_tables.armor_rank[rank]


class TestRanks:
    """Tests for the [max_rank, min_rank] window helpers."""

    def test_window(self):
        assert is_rank_allowed("A", min_rank="A")
        assert not is_rank_allowed("B", min_rank="A")
        assert not is_rank_allowed("SSS", max_rank="S")
        assert is_rank_allowed("F")

    def test_clamp(self):
        assert clamp_rank("F", min_rank="A") == "A"
        assert clamp_rank("SSS", max_rank="S") == "S"
        assert clamp_rank("B", "C", "S") == "B"

    def test_unknown_rank(self):
        with pytest.raises(ValueError, match="Unknown rank: Z"):
            is_rank_allowed("Z")


class TestWeaponStats:
    """Tests for calculate_weapon_stats()."""

    def test_rank_f_keeps_catalog_values(self, sword, coefficient_tables):
        stats = calculate_weapon_stats(sword, "F", tables=coefficient_tables)
        assert stats.attack_power == 50
        assert stats.crit_rate == 5
        assert stats.crit_damage == 20
        assert stats.cool_time == 1.5
        assert stats.damage_correction == 80

    def test_rank_a(self, sword, coefficient_tables):
        """ceil(50 + 10 * 25/320) + 25 = 76."""
        stats = calculate_weapon_stats(sword, "A", tables=coefficient_tables)
        assert stats.attack_power == 76
        assert stats.crit_rate == 8
        assert stats.crit_damage == 23
        assert stats.rank == "A"

    def test_reinforcement(self, sword, coefficient_tables):
        stats = calculate_weapon_stats(sword, "F", reinforcement=40, tables=coefficient_tables)
        assert stats.attack_power == 130
        assert stats.crit_rate == 5
        assert stats.crit_damage == 60
        assert stats.detail.reinforcement["attack_power"] == 80

    def test_alchemy_uses_target_rank(self, sword, coefficient_tables):
        stats = calculate_weapon_stats(sword, "A", alchemy=True, tables=coefficient_tables)
        assert stats.attack_power == 192
        assert stats.crit_rate == 17
        assert stats.crit_damage == 70

    def test_smithing_count_is_attack_only(self, sword, coefficient_tables):
        stats = calculate_weapon_stats(sword, "F", smithing=20, tables=coefficient_tables)
        assert stats.attack_power == 70
        assert stats.crit_rate == 5

    def test_per_stat_smithing(self, sword, coefficient_tables):
        smithing = WeaponSmithing(attack=2, crit_rate=3, crit_damage=4)
        stats = calculate_weapon_stats(sword, "F", smithing=smithing, tables=coefficient_tables)
        assert (stats.attack_power, stats.crit_rate, stats.crit_damage) == (52, 8, 24)

    def test_min_rank_back_solve(self, coefficient_tables):
        """Stored at A: base attack floor(100 - 25) = 75, then back to A = 101."""
        weapon = WeaponRecord(
            name="Knight Sword", weapon_type="Sword", level=10,
            attack=100, crit_rate=10, min_rank="A",
        )
        stats = calculate_weapon_stats(weapon, "A", tables=coefficient_tables)
        assert stats.attack_power == 101
        assert stats.crit_rate == 10

    def test_rank_outside_window_is_clamped(self, sword, coefficient_tables, caplog):
        capped = WeaponRecord(**{**sword.__dict__, "max_rank": "F"})
        stats = calculate_weapon_stats(capped, "SSS", tables=coefficient_tables)
        assert stats.rank == "F"
        assert stats.attack_power == 50
        assert "clamped" in caplog.text

    def test_unknown_rank_raises(self, sword):
        with pytest.raises(ValueError, match="Unknown rank"):
            calculate_weapon_stats(sword, "Z")

    def test_reinforcement_out_of_range(self, sword):
        with pytest.raises(ValueError, match="Reinforcement must be between 0 and 80"):
            calculate_weapon_stats(sword, "F", reinforcement=81)
        with pytest.raises(ValueError):
            calculate_weapon_stats(sword, "F", reinforcement=-1)

    def test_from_catalog(self):
        weapon = WeaponRecord.from_catalog({
            "アイテム名": "木の剣", "武器種": "剣", "使用可能Lv": 1,
            "攻撃力（初期値）": 12, "会心率（初期値）": 3, "最低ランク": "B",
        })
        assert weapon.weapon_type == "剣"
        assert weapon.attack == 12
        assert weapon.damage_correction == 100
        assert weapon.min_rank == "B"
        assert weapon.max_rank is None


class TestArmorStats:
    """Tests for calculate_armor_stats()."""

    def test_rank_a_scaling(self, armor, coefficient_tables):
        """final = round(b * (1 + b**0.2 * 5/10))."""
        stats = calculate_armor_stats(armor, "A", tables=coefficient_tables)
        assert stats.final["Defense"] == 60
        assert stats.final["HP"] == 226
        assert stats.final["Power"] == 18

    def test_rank_f_reinforcement(self, armor, coefficient_tables):
        """F has no scaling; reinforcement adds 1 Defense / 2 other per level."""
        stats = calculate_armor_stats(armor, "F", reinforcement=20, tables=coefficient_tables)
        assert stats.final["Defense"] == 50
        assert stats.final["HP"] == 140
        assert stats.final["Power"] == 50
        assert stats.reinforcement["Defense"] == 20

    def test_smithing(self, armor, coefficient_tables):
        stats = calculate_armor_stats(armor, "F", smithing=3, tables=coefficient_tables)
        assert stats.final["Defense"] == 33
        assert stats.final["Magic"] == 16

    def test_zero_stats_are_skipped(self, coefficient_tables):
        piece = ArmorRecord(name="Plain", level=10, stats={"Defense": 30, "Power": 0})
        stats = calculate_armor_stats(piece, "A", tables=coefficient_tables)
        assert set(stats.final) == {"Defense"}

    def test_ex_stats(self, armor, coefficient_tables):
        """SSS Other coefficient 0.7: round(10 * 0.7 + 1) = 8."""
        stats = calculate_armor_stats(armor, "SSS", tables=coefficient_tables, ex_stats=("Power",))
        assert stats.ex == {"Power": 8}
        assert stats.final["Power"] == stats.rank_bonus["Power"] + 10 + 8

    def test_rank_below_min_raises(self, coefficient_tables):
        piece = ArmorRecord(name="Helm", level=10, stats={"Defense": 30}, min_rank="A")
        with pytest.raises(ValueError, match="Invalid rank F for armor Helm"):
            calculate_armor_stats(piece, "F", tables=coefficient_tables)

    def test_limits(self, armor):
        with pytest.raises(ValueError, match="Reinforcement must be between 0 and 40"):
            calculate_armor_stats(armor, "F", reinforcement=41)
        with pytest.raises(ValueError, match="Smithing count must be between 0 and 12"):
            calculate_armor_stats(armor, "F", smithing=13)


class TestAccessoryStats:
    """Tests for calculate_accessory_stats()."""

    @pytest.mark.parametrize("rank, expected", [
        ("F", 10),      # zero coefficient keeps the base
        ("A", 12),      # ceil(10 + 20 * 44/550) = ceil(11.6)
        ("SSS", 12),    # ceil(10 + 20 * 55/550) = 12
    ])
    def test_rank_scaling(self, necklace, coefficient_tables, rank, expected):
        stats = calculate_accessory_stats(necklace, rank, tables=coefficient_tables)
        assert stats.final["Power"] == expected

    def test_ex_stat(self, necklace, coefficient_tables):
        """CritR category at SSS: round(20 * 0.15 + 1) = 4."""
        stats = calculate_accessory_stats(necklace, "SSS", tables=coefficient_tables, ex_stat="Dex")
        assert stats.final["Dex"] == 4

    def test_ex_value_without_coefficient(self, coefficient_tables):
        assert calculate_ex_value(20, "A", "Power", coefficient_tables) == 1
        assert calculate_ex_value(0, "SSS", "Power", coefficient_tables) == 1

    def test_rank_above_max_raises(self, coefficient_tables):
        ring = AccessoryRecord(name="Ring", level=20, stats={"Power": 10}, max_rank="A")
        with pytest.raises(ValueError):
            calculate_accessory_stats(ring, "SSS", tables=coefficient_tables)


class TestEmblemAndRunes:
    """Tests for emblem percent and rune validation."""

    def test_emblem_percent_keys(self):
        emblem = Emblem.from_catalog({"アイテム名": "Lion", "力（%不要）": 10, "魔力（%不要）": 0})
        assert emblem.percent == {"Power": 10}
        assert calculate_emblem_stats(emblem) == {"Power_percent": 10}
        assert calculate_emblem_stats(None) == {}

    def test_rune_stats_sum(self):
        runes = [
            RuneStone.from_catalog({"アイテム名": "Red", "グレード": "ノーマル", "力": 5}),
            RuneStone.from_catalog({"アイテム名": "Blue", "グレード": "グレート", "魔力": 7, "体力": 50}),
        ]
        stats, resistances = calculate_rune_stats(runes)
        assert stats == {"Power": 5, "Magic": 7, "HP": 50}
        assert resistances == {}

    def test_duplicate_grade(self):
        runes = [RuneStone("A", "ノーマル"), RuneStone("B", "ノーマル")]
        with pytest.raises(ValueError, match="Duplicate rune grade: ノーマル"):
            calculate_rune_stats(runes)

    def test_validate_runes_accepts_distinct_grades(self):
        validate_runes([RuneStone("A", "ノーマル"), RuneStone("B", "グレート")])
        validate_runes([])

    def test_too_many_runes(self):
        runes = [RuneStone(str(i), f"grade-{i}") for i in range(5)]
        with pytest.raises(ValueError, match="Maximum 4 runes allowed"):
            calculate_rune_stats(runes)

    def test_resistances_sum(self):
        runes = [
            RuneStone("A", "ノーマル", resistances={"Fire": 5}),
            RuneStone("B", "グレート", resistances={"Fire": 3, "Ice": 2}),
        ]
        assert calculate_rune_stats(runes)[1] == {"Fire": 8, "Ice": 2}

    def test_catalog_resistance_columns(self):
        rune = RuneStone.from_catalog({
            "アイテム名": "Red", "グレード": "ノーマル", "力": 5,
            "耐性１": "炎", "値(%除く)": 10,
            "耐性２": "水", "値": 5,
            "耐性３": "炎", "値.1": 3,
            "耐性４": "", "値.2": 7,
        })
        assert rune.stats == {"Power": 5}
        assert rune.resistances == {"炎": 13, "水": 5}
        assert calculate_rune_stats([rune])[1] == {"炎": 13, "水": 5}

    def test_catalog_set_name(self):
        rune = RuneStone.from_catalog({"アイテム名": "Red", "グレード": "ノーマル", "セット": "Dragon"})
        assert rune.set_name == "Dragon"
        assert RuneStone.from_catalog({"アイテム名": "Red", "グレード": "ノーマル"}).set_name is None


class TestRuneSetBonus:
    """Tests for calculate_rune_set_bonus()."""

    @staticmethod
    def dragon(name, grade, **stats):
        return RuneStone(name, grade, stats=stats, set_name="Dragon", set_bonus={"Power": 20})

    def test_complete_set_adds_bonus_once(self):
        runes = [self.dragon("A", "ノーマル", Power=5), self.dragon("B", "グレート", Magic=7)]
        assert calculate_rune_set_bonus(runes) == {"Power": 20}
        stats, _ = calculate_rune_stats(runes)
        assert stats == {"Power": 25, "Magic": 7}

    def test_mixed_sets_give_nothing(self):
        runes = [self.dragon("A", "ノーマル"), RuneStone("B", "グレート", set_name="Wolf")]
        assert calculate_rune_set_bonus(runes) == {}

    def test_rune_without_set_breaks_the_set(self):
        runes = [self.dragon("A", "ノーマル"), RuneStone("B", "グレート")]
        assert calculate_rune_set_bonus(runes) == {}

    def test_single_rune_is_not_a_set(self):
        assert calculate_rune_set_bonus([self.dragon("A", "ノーマル")]) == {}

    def test_largest_bonus_per_stat_wins(self):
        runes = [
            self.dragon("A", "ノーマル"),
            RuneStone("B", "グレート", set_name="Dragon", set_bonus={"Power": 30, "HP": 50}),
        ]
        assert calculate_rune_set_bonus(runes) == {"Power": 30, "HP": 50}

    def test_set_bonus_reaches_equipment_totals(self):
        selection = EquipmentSelection(runes=(self.dragon("A", "ノーマル"), self.dragon("B", "グレート")))
        assert calculate_equipment_contribution(selection).stats == {"Power": 20}


class TestEquipmentContribution:
    """Tests for calculate_equipment_contribution()."""

    def test_empty_selection(self):
        totals = calculate_equipment_contribution(EquipmentSelection())
        assert totals.stats == {}
        assert totals.attack_power == 0
        assert totals.weapon_type is None

    def test_full_selection(self, sword, armor, necklace, coefficient_tables):
        selection = EquipmentSelection(
            weapon=WeaponSelection(sword, "A"),
            head=ArmorSelection(armor, "F"),
            necklace=AccessorySelection(necklace, "F"),
            emblem=Emblem("Lion", {"Power": 10}),
            runes=(RuneStone("Red", "ノーマル", {"Power": 5}),),
        )
        totals = calculate_equipment_contribution(selection, coefficient_tables)
        assert totals.attack_power == 76
        assert totals.crit_rate == 8
        assert totals.damage_correction == 80
        assert totals.weapon_type == "Sword"
        assert totals.stats["Power"] == 25
        assert totals.stats["HP"] == 100
        assert totals.percent == {"Power": 10}
        assert totals.percent_block() == {"Power_percent": 10}
        assert "Power_percent" not in totals.as_stat_block()

    def test_invalid_piece_propagates(self, armor):
        selection = EquipmentSelection(head=ArmorSelection(armor, "F", reinforcement=99))
        with pytest.raises(ValueError):
            calculate_equipment_contribution(selection)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
