"""
Mechanics — dice, skill checks, attack resolution and action validation.

All randomness comes from an injected random.Random so results are
reproducible under a seed.
"""

import random
import re
from typing import Dict, Iterable, List, Optional

import structlog

from nengine.errors import NotFoundError, ValidationError
from nengine.models.mechanics import (
    ActionCheck,
    CombatResult,
    DiceResult,
    RuleDefinition,
    SkillCheckResult,
    SkillDefinition,
)

logger = structlog.get_logger(__name__)

DICE_PATTERN = re.compile(r"^(\d*)d(\d+)([-+]\d+)?$")
MAX_DICE = 100
MIN_SIDES, MAX_SIDES = 2, 100

ATTACK_HIT_THRESHOLD = 12
ATTACK_DAMAGE = {
    "melee": "1d6+2",
    "ranged": "1d6+1",
    "spell": "1d8+3",
}
FORBIDDEN_ACTIONS = ("cheat", "break_game", "admin")
ACTION_REQUIREMENTS = {
    "cast_spell": ["Must have spell prepared", "Must have spell components"],
    "sneak_attack": ["Must be hidden or have advantage"],
    "drink_potion": ["Must have potion in inventory"],
}

STANDARD_DIFFICULTY = {"trivial": 5, "easy": 10, "medium": 15, "hard": 20, "extreme": 25}

DEFAULT_RULES = [
    RuleDefinition(
        category="combat",
        name="attack_roll",
        description="Standard attack roll mechanics",
        mechanics={
            "die": "d20",
            "target": "armor_class",
            "modifiers": ["attribute", "proficiency", "situational"],
        },
    ),
    RuleDefinition(
        category="skill_checks",
        name="ability_check",
        description="Standard ability check mechanics",
        mechanics={
            "die": "d20",
            "target": "difficulty_class",
            "modifiers": ["attribute", "proficiency", "situational"],
        },
    ),
]

DEFAULT_SKILLS = [
    SkillDefinition(name="stealth", attribute="dexterity",
                    description="Move quietly and remain hidden",
                    difficulty=STANDARD_DIFFICULTY),
    SkillDefinition(name="persuasion", attribute="charisma",
                    description="Convince others through reasoned argument",
                    difficulty=STANDARD_DIFFICULTY),
    SkillDefinition(name="perception", attribute="wisdom",
                    description="Notice details in your surroundings",
                    difficulty=STANDARD_DIFFICULTY),
    SkillDefinition(name="investigation", attribute="intelligence",
                    description="Search for clues and deduce conclusions",
                    difficulty=STANDARD_DIFFICULTY),
]


class MechanicsEngine:
    """Stateless rules over an injectable random source."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        rules: Optional[Iterable[RuleDefinition]] = None,
        skills: Optional[Iterable[SkillDefinition]] = None,
    ):
        self.rng = rng or random.Random()
        self._rules: Dict[str, List[RuleDefinition]] = {}
        for rule in (DEFAULT_RULES if rules is None else rules):
            self._rules.setdefault(rule.category, []).append(rule)
        self._skills: Dict[str, SkillDefinition] = {
            s.name: s for s in (DEFAULT_SKILLS if skills is None else skills)
        }

    def roll(self, dice: str) -> DiceResult:
        """Roll `NdS±M` notation. Criticals and fumbles apply to d20 only."""
        match = DICE_PATTERN.match(dice.strip())
        if not match:
            raise ValidationError(f"Invalid dice notation: {dice}")

        count = int(match.group(1) or 1)
        sides = int(match.group(2))
        modifier = int(match.group(3) or 0)
        if count < 1 or count > MAX_DICE:
            raise ValidationError(f"Dice count must be 1-{MAX_DICE}")
        if not MIN_SIDES <= sides <= MAX_SIDES:
            raise ValidationError(f"Invalid die size (must be {MIN_SIDES}-{MAX_SIDES})")

        rolls = [self.rng.randint(1, sides) for _ in range(count)]
        result = DiceResult(
            dice=dice,
            rolls=rolls,
            modifier=modifier,
            total=sum(rolls) + modifier,
            critical=sides == 20 and 20 in rolls,
            fumble=sides == 20 and count == 1 and rolls[0] == 1,
        )
        logger.debug("dice_rolled", dice=dice, rolls=rolls, total=result.total)
        return result

    def roll_with_advantage(self, dice: str, type: str = "advantage") -> DiceResult:
        if type not in ("advantage", "disadvantage"):
            raise ValidationError(f"Unknown roll type '{type}'")
        first, second = self.roll(dice), self.roll(dice)
        if type == "advantage":
            chosen = first if first.total >= second.total else second
        else:
            chosen = first if first.total <= second.total else second
        return chosen.model_copy(update={"advantage_rolls": [first.total, second.total]})

    def perform_skill_check(
        self,
        character: str,
        skill: str,
        difficulty: int,
        modifiers: Optional[Dict[str, int]] = None,
    ) -> SkillCheckResult:
        """d20 plus modifiers against a difficulty class."""
        self.get_skill_definition(skill)

        base = self.roll("1d20")
        total = base.total + sum((modifiers or {}).values())
        success = total >= difficulty

        if base.fumble:
            degree = "critical_failure"
        elif base.critical and success:
            degree = "critical_success"
        elif success:
            degree = "success"
        else:
            degree = "failure"

        logger.info(
            "skill_checked",
            character=character,
            skill=skill,
            total=total,
            difficulty=difficulty,
            degree=degree,
        )
        return SkillCheckResult(
            success=success,
            degree=degree,
            roll=base.model_copy(update={"total": total}),
            difficulty=difficulty,
            margin=total - difficulty,
        )

    def resolve_attack(
        self,
        attacker: str,
        defender: str,
        type: str = "melee",
        weapon: Optional[str] = None,
    ) -> CombatResult:
        if type not in ATTACK_DAMAGE:
            raise ValidationError(f"Unknown attack type '{type}'")

        attack = self.roll("1d20")
        hit = attack.total >= ATTACK_HIT_THRESHOLD
        damage, effects = 0, []
        if hit:
            damage = self.roll(ATTACK_DAMAGE[type]).total
            if type == "spell":
                effects.append("magical")

        if hit:
            message = f"{attacker} hits {defender} for {damage} damage!"
        else:
            message = f"{attacker} misses {defender}!"
        logger.info("attack_resolved", attacker=attacker, defender=defender, hit=hit, damage=damage)
        return CombatResult(
            hit=hit,
            damage=damage,
            critical=attack.critical,
            effects=effects,
            message=message,
        )

    def can_perform_action(self, actor: str, action: str, target: Optional[str] = None) -> ActionCheck:
        if action in FORBIDDEN_ACTIONS:
            return ActionCheck(allowed=False, reason="Action not permitted")
        return ActionCheck(allowed=True, requirements=list(ACTION_REQUIREMENTS.get(action, [])))

    def get_rule_set(self, category: str) -> List[RuleDefinition]:
        return list(self._rules.get(category, []))

    def get_skill_definition(self, skill: str) -> SkillDefinition:
        definition = self._skills.get(skill)
        if definition is None:
            raise NotFoundError(f"Unknown skill: {skill}")
        return definition

    def debug_state(self) -> dict:
        return {
            "rule_categories": sorted(self._rules),
            "skills": sorted(self._skills),
        }
