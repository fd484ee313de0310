"""
Unit tests for core/damage.py - base damage, job correction, crit blend,
defense and the calculate_damage() entry point.

Reference inputs (see conftest.user_stats):
- Power 100, Magic 80, CritDamage 50
- Weapon attack 100, crit rate 10, crit damage 50
- Sword base: (100 + 100*1.6) * 1.0 * (1 + 0.5 + 50*0.005) = 455
"""
import logging
import math

import pytest

from rpg_build_calc.core.constants import CritMode, ErrorCode
from rpg_build_calc.core.damage import (
    DamageInput,
    DamageOptions,
    EnemyParams,
    apply_crit_damage,
    apply_damage_correction,
    apply_job_correction,
    base_damage_context,
    calculate_base_damage,
    calculate_damage,
    calculate_final_damage,
    calculate_ttk,
    resistance_multiplier,
    resolve_crit_mode,
    resolve_damage_correction,
)
from rpg_build_calc.core.formula import FormulaEvaluationError
from rpg_build_calc.core.results import DamageCalculationError
from rpg_build_calc.core.stats import BonusPercent, CalculatedStats


FINAL_DAMAGE_FORMULA = (
    "(HitDamage-(EnemyDefence/2))*(1-(EnemyTypeResistance/100))*(1-(EnemyAttributeResistance/100))"
)


def make_input(stats, weapon_type="Sword", job_name=None, defense=0, hp=None, **options):
    return DamageInput(
        stats=stats,
        weapon_type=weapon_type,
        weapon_attack_power=100,
        weapon_crit_rate=10,
        weapon_crit_damage=50,
        damage_correction=80,
        enemy=EnemyParams(defense=defense, hp=hp),
        options=DamageOptions(**options),
        job_name=job_name,
    )


class TestDamageCorrection:
    """Tests for the damage correction scalar."""

    def test_mode_values(self):
        assert resolve_damage_correction("min") == 0.8
        assert resolve_damage_correction("max") == 1.2
        assert resolve_damage_correction("avg") == 1.0

    def test_apply_to_plain_number(self):
        assert apply_damage_correction(100, "min") == 80
        assert apply_damage_correction(100, "max") == 120
        assert apply_damage_correction(100, "avg") == 100

    def test_unknown_mode_raises(self):
        with pytest.raises(ValueError):
            resolve_damage_correction("huge")


class TestBaseDamage:
    """Tests for calculate_base_damage()."""

    def test_sword(self, user_stats, weapon_formulas):
        assert calculate_base_damage(make_input(user_stats), weapon_formulas) == 455

    @pytest.mark.parametrize("weapon_type, expected", [
        ("Wand", 379),          # (100 + 80*1.75) * 1.58 = 379.2
        ("Dagger", 740),        # (100 + 125 + 245) * 1.575 = 740.25
        ("Spear", 623),         # (160*100*8/300 + 0.5 + 100) * (1 + 0.55/3)
        ("Frypan", 227),        # round(455) / 2
        ("GreatSword", 2805),   # table key is "Greatsword"
    ])
    def test_weapon_types(self, user_stats, weapon_formulas, weapon_type, expected):
        assert calculate_base_damage(make_input(user_stats, weapon_type), weapon_formulas) == expected

    def test_case_insensitive_lookup(self, user_stats, weapon_formulas):
        """SWORD and sword both resolve to the Sword formula."""
        for name in ("SWORD", "sword", "剣"):
            assert calculate_base_damage(make_input(user_stats, name), weapon_formulas) == 455

    def test_damage_correction_mode(self, user_stats, weapon_formulas):
        low = make_input(user_stats, damage_correction_mode="min")
        high = make_input(user_stats, damage_correction_mode="max")
        assert calculate_base_damage(low, weapon_formulas) == 364
        assert calculate_base_damage(high, weapon_formulas) == 546

    def test_job_override_formula(self, user_stats, weapon_formulas):
        """Novice has its own Wand formula."""
        damage_input = make_input(user_stats, "Wand", job_name="Novice")
        assert calculate_base_damage(damage_input, weapon_formulas) == 379

    def test_unknown_weapon_type_raises(self, user_stats, weapon_formulas):
        with pytest.raises(DamageCalculationError):
            calculate_base_damage(make_input(user_stats, "Hammer"), weapon_formulas)

    def test_context_variables(self, user_stats):
        context = base_damage_context(make_input(user_stats, skill_level=3))
        assert context["WeaponAttackPower"] == 100
        assert context["DamageCorrection"] == 1.0
        assert context["ComboCorrection"] == 1.0
        assert context["UserPower"] == 100
        assert context["UserCritRate"] == 50
        assert context["SkillLevel"] == 3


class TestJobCorrection:
    """Tests for apply_job_correction()."""

    def test_spell_refactor_equal_stats(self, weapon_formulas):
        """Power == Magic: ln(1) = 0, bonus 0.75."""
        damage_input = make_input({"Power": 100, "Magic": 100}, job_name="SpellRefactor")
        assert apply_job_correction(1000, damage_input, weapon_formulas) == 750

    def test_spell_refactor_uneven_stats(self, user_stats, weapon_formulas):
        """0.75 - round(0.475 * ln(1.25), 2) * 2 = 0.53."""
        damage_input = make_input(user_stats, job_name="SpellRefactor")
        assert apply_job_correction(1000, damage_input, weapon_formulas) == 530

    def test_weapon_override_passes_through(self, user_stats, weapon_formulas):
        damage_input = make_input(user_stats, job_name="Novice")
        assert apply_job_correction(455, damage_input, weapon_formulas) == 455

    def test_no_job_passes_through(self, user_stats, weapon_formulas):
        assert apply_job_correction(455, make_input(user_stats), weapon_formulas) == 455
        unknown = make_input(user_stats, job_name="Nobody")
        assert apply_job_correction(455, unknown, weapon_formulas) == 455


class TestCritDamage:
    """Tests for apply_crit_damage() and crit mode names."""

    def test_reference_values(self):
        assert apply_crit_damage(1000, 25, 100, "crit") == 2000
        assert apply_crit_damage(1000, 25, 100, "nocrit") == 1000
        assert apply_crit_damage(1000, 50, 100, "avg") == 1500

    def test_expected_value_floors_crit_hit_first(self):
        """455: crit hit floor(682.5) = 682; 455*0.9 + 682*0.1 = 477.7."""
        assert apply_crit_damage(455, 10, 50, CritMode.AVG) == 477

    def test_ui_mode_names(self):
        assert resolve_crit_mode("always") == CritMode.CRIT
        assert resolve_crit_mode("never") == CritMode.NOCRIT
        assert resolve_crit_mode("expected") == CritMode.AVG

    def test_unknown_mode_is_expected_value(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert resolve_crit_mode("sometimes") == CritMode.AVG
        assert "sometimes" in caplog.text


class TestFinalDamage:
    """Tests for defense mitigation and TTK."""

    def test_reference_values(self):
        assert calculate_final_damage(1000, 0) == 1000
        assert calculate_final_damage(1000, 1000) == 0
        assert calculate_final_damage(1000, 100) == 900

    def test_defense_above_cap_never_negative(self):
        assert calculate_final_damage(1000, 5000) == 0

    def test_resistances_scale_the_result(self):
        """1000 * 0.9 (defense 100) * 0.8 (type 20%) * 0.9 (attribute 10%) = 648."""
        assert calculate_final_damage(1000, 100, type_resistance=20) == 720
        assert calculate_final_damage(1000, 100, 20, 10) == 648

    def test_negative_resistance_is_a_weakness(self):
        assert resistance_multiplier(-50) == 1.5
        assert calculate_final_damage(1000, 0, type_resistance=-50) == 1500

    def test_resistance_is_clamped(self):
        assert resistance_multiplier(150) == 0
        assert calculate_final_damage(1000, 0, attribute_resistance=150) == 0

    def test_final_damage_formula(self):
        """(1000 - 100/2) * 0.8 * 0.9 = 684."""
        assert calculate_final_damage(1000, 100, 20, 10, formula=FINAL_DAMAGE_FORMULA) == 684

    def test_final_damage_formula_never_negative(self):
        assert calculate_final_damage(100, 5000, formula=FINAL_DAMAGE_FORMULA) == 0

    def test_broken_final_damage_formula_raises(self):
        with pytest.raises(FormulaEvaluationError):
            calculate_final_damage(1000, 0, formula="HitDamage * Unknown")

    def test_ttk(self):
        assert calculate_ttk(455, 10000) == 22
        assert calculate_ttk(0, 10000) is None
        assert calculate_ttk(455, None) is None


class TestCalculateDamage:
    """Tests for the calculate_damage() entry point."""

    def test_plain_attack(self, user_stats, weapon_formulas):
        """Expected-value crit then 10% defense: floor(477 * 0.9) = 429."""
        result = calculate_damage(make_input(user_stats, defense=100), weapon_formulas)
        assert result.success
        damage = result.data
        assert damage.base_damage == 455
        assert damage.crit_damage == 477
        assert damage.final_damage == 429
        assert damage.hits == 1
        assert damage.dps is None
        assert damage.mp_efficiency is None
        assert damage.ttk is None

    def test_always_crit(self, user_stats, weapon_formulas):
        result = calculate_damage(make_input(user_stats, crit_mode="always"), weapon_formulas)
        assert result.data.final_damage == 682
        assert result.data.crit_multiplier == pytest.approx(682 / 455)

    def test_crit_rate_from_calculated_stats_is_clamped(self, user_stats, weapon_formulas):
        """A 150% aggregated crit rate behaves like always-crit."""
        stats = CalculatedStats(base={}, bonus_percent=BonusPercent(), final=user_stats, crit_rate=150)
        result = calculate_damage(make_input(stats), weapon_formulas)
        assert result.data.crit_damage == 682

    def test_time_to_kill(self, user_stats, weapon_formulas):
        result = calculate_damage(make_input(user_stats, hp=10000, crit_mode="never"), weapon_formulas)
        assert result.data.final_damage == 455
        assert result.data.ttk == 22

    def test_resistance_without_formula_scales_total(self, user_stats, weapon_formulas):
        """floor(477 * 3 * 0.9 * 0.8) = 1030."""
        damage_input = make_input(user_stats, custom_hits=3)
        damage_input.enemy = EnemyParams(defense=100, type_resistance=20)
        result = calculate_damage(damage_input, weapon_formulas)
        assert result.data.hits == 3
        assert result.data.final_damage == 1030

    def test_final_damage_formula_applies_per_hit(self, user_stats, weapon_formulas):
        """floor((477 - 50) * 0.8) = 341 per hit, 3 hits = 1023."""
        formulas = dict(weapon_formulas, FinalDamage=FINAL_DAMAGE_FORMULA)
        damage_input = make_input(user_stats, custom_hits=3)
        damage_input.enemy = EnemyParams(defense=100, type_resistance=20)
        result = calculate_damage(damage_input, formulas)
        assert result.success
        assert result.data.final_damage == 1023

    def test_broken_final_damage_formula_is_damage_calc_error(self, user_stats, weapon_formulas):
        formulas = dict(weapon_formulas, FinalDamage="HitDamage +")
        result = calculate_damage(make_input(user_stats), formulas)
        assert result.error_code == ErrorCode.DAMAGE_CALC_ERROR

    def test_invalid_weapon_type_is_damage_calc_error(self, user_stats, weapon_formulas):
        result = calculate_damage(make_input(user_stats, "Hammer"), weapon_formulas)
        assert not result.success
        assert result.error_code == ErrorCode.DAMAGE_CALC_ERROR

    def test_spell_refactor_end_to_end(self, weapon_formulas):
        """Never-crit with Power == Magic keeps 75% of the base damage."""
        stats = {"Power": 100, "Magic": 100, "CriticalDamage": 50}
        without = calculate_damage(make_input(stats, crit_mode="never"), weapon_formulas).data
        refactor = calculate_damage(
            make_input(stats, job_name="SpellRefactor", crit_mode="never"), weapon_formulas
        ).data
        assert refactor.final_damage == math.floor(without.base_damage * 0.75)

    def test_skill_damage(self, user_stats, weapon_formulas, skill_formulas):
        """Retsujin_Enzangeki: floor(455 * 0.4) = 182 per hit, 5 hits."""
        damage_input = make_input(
            user_stats, crit_mode="never", hp=10000, skill_name="Retsujin_Enzangeki"
        )
        result = calculate_damage(damage_input, weapon_formulas, skill_formulas)
        damage = result.data
        assert damage.skill_multiplier == pytest.approx(0.4)
        assert damage.hits == 5
        assert damage.final_damage == 910
        assert damage.mp == 12
        assert damage.ct == 9
        assert damage.dps == pytest.approx(910 / 9)
        assert damage.mp_efficiency == pytest.approx(910 / 12)
        assert damage.ttk == 11

    def test_unknown_skill_is_reported_not_fatal(self, user_stats, weapon_formulas, skill_formulas):
        damage_input = make_input(user_stats, crit_mode="never", skill_name="NoSuchSkill")
        result = calculate_damage(damage_input, weapon_formulas, skill_formulas)
        assert result.success
        assert result.data.final_damage == 455
        assert result.data.skill is None
        assert any("SKILL_NOT_FOUND" in w for w in result.data.warnings)

    def test_broken_skill_is_reported_not_fatal(self, user_stats, weapon_formulas, skill_formulas):
        damage_input = make_input(user_stats, skill_name="Broken_Spell")
        result = calculate_damage(damage_input, weapon_formulas, skill_formulas)
        assert result.success
        assert any("SKILL_CALC_ERROR" in w for w in result.data.warnings)

    def test_breakdown_text(self, user_stats, weapon_formulas):
        text = calculate_damage(make_input(user_stats), weapon_formulas).data.breakdown()
        assert "Final Damage" in text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
