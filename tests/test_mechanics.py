"""Tests for the mechanics engine."""

import random

import pytest

from nengine.errors import NotFoundError, ValidationError
from nengine.mechanics.engine import MechanicsEngine


class _FixedRng:
    """Returns queued values from randint, in order."""

    def __init__(self, *values):
        self.values = list(values)

    def randint(self, low, high):
        value = self.values.pop(0)
        assert low <= value <= high
        return value


def _make_engine(*rolls) -> MechanicsEngine:
    return MechanicsEngine(rng=_FixedRng(*rolls))


class TestDice:
    def test_notation(self):
        result = _make_engine(3, 5).roll("2d6+3")
        assert result.rolls == [3, 5]
        assert result.modifier == 3
        assert result.total == 11

    def test_implicit_count_and_negative_modifier(self):
        result = _make_engine(4).roll("d8-1")
        assert result.total == 3

    def test_critical_on_natural_twenty(self):
        result = _make_engine(20).roll("1d20")
        assert result.critical is True
        assert result.fumble is False

    def test_fumble_on_single_natural_one(self):
        assert _make_engine(1).roll("1d20").fumble is True
        assert _make_engine(1, 7).roll("2d20").fumble is False

    def test_no_critical_off_d20(self):
        assert _make_engine(12).roll("1d12").critical is False

    @pytest.mark.parametrize("dice", ["", "abc", "2x6", "0d6", "101d6", "1d1", "1d101"])
    def test_invalid_notation(self, dice):
        with pytest.raises(ValidationError):
            _make_engine().roll(dice)

    def test_seeded_rolls_repeat(self):
        first = MechanicsEngine(rng=random.Random(7)).roll("4d6")
        second = MechanicsEngine(rng=random.Random(7)).roll("4d6")
        assert first.rolls == second.rolls

    def test_advantage_keeps_higher(self):
        result = _make_engine(5, 17).roll_with_advantage("1d20")
        assert result.total == 17
        assert result.advantage_rolls == [5, 17]

    def test_disadvantage_keeps_lower(self):
        result = _make_engine(5, 17).roll_with_advantage("1d20", "disadvantage")
        assert result.total == 5


class TestSkillChecks:
    def test_success_with_modifiers(self):
        result = _make_engine(10).perform_skill_check("player", "stealth", 15, {"dexterity": 3, "proficiency": 2})
        assert result.success is True
        assert result.degree == "success"
        assert result.roll.total == 15
        assert result.margin == 0

    def test_failure(self):
        result = _make_engine(4).perform_skill_check("player", "perception", 15)
        assert result.success is False
        assert result.degree == "failure"
        assert result.margin == -11

    def test_critical_success(self):
        assert _make_engine(20).perform_skill_check("player", "stealth", 15).degree == "critical_success"

    def test_fumble_is_critical_failure(self):
        result = _make_engine(1).perform_skill_check("player", "stealth", 5, {"bonus": 10})
        assert result.degree == "critical_failure"

    def test_unknown_skill(self):
        with pytest.raises(NotFoundError):
            _make_engine(10).perform_skill_check("player", "juggling", 10)


class TestCombat:
    def test_hit_rolls_damage(self):
        result = _make_engine(15, 4).resolve_attack("player", "goblin")
        assert result.hit is True
        assert result.damage == 6
        assert result.message == "player hits goblin for 6 damage!"

    def test_miss(self):
        result = _make_engine(11).resolve_attack("player", "goblin")
        assert result.hit is False
        assert result.damage == 0
        assert result.message == "player misses goblin!"

    def test_spell_is_magical(self):
        result = _make_engine(20, 8).resolve_attack("mage", "goblin", "spell")
        assert result.critical is True
        assert result.damage == 11
        assert result.effects == ["magical"]

    def test_unknown_attack_type(self):
        with pytest.raises(ValidationError):
            _make_engine().resolve_attack("player", "goblin", "psychic")


class TestRules:
    def setup_method(self):
        self.engine = MechanicsEngine()

    def test_forbidden_action(self):
        check = self.engine.can_perform_action("player", "cheat")
        assert check.allowed is False
        assert check.reason == "Action not permitted"

    def test_action_requirements(self):
        check = self.engine.can_perform_action("player", "cast_spell")
        assert check.allowed is True
        assert "Must have spell prepared" in check.requirements

    def test_rule_set(self):
        assert [r.name for r in self.engine.get_rule_set("combat")] == ["attack_roll"]
        assert self.engine.get_rule_set("cooking") == []

    def test_skill_definition(self):
        skill = self.engine.get_skill_definition("persuasion")
        assert skill.attribute == "charisma"
        assert skill.difficulty["hard"] == 20
