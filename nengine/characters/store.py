"""Character sheets — stats, health, equipment, conditions and progression."""

from typing import Dict, List, Optional

import structlog

from nengine.content.provider import ContentProvider
from nengine.errors import NotFoundError, ValidationError
from nengine.models.characters import (
    DEFAULT_STATS,
    Character,
    Condition,
    Equipment,
    ExperienceResult,
    HealthChange,
    HealthInfo,
)

logger = structlog.get_logger(__name__)

STAT_MIN, STAT_MAX = 1, 30
BASE_HEALTH = 10
XP_PER_LEVEL = 100
EQUIP_SLOTS = ("main_hand", "off_hand", "armor")
DEFAULT_LEVEL_UP = {"strength": 1, "constitution": 1}
HEALTH_CHANGE_TYPES = ("healing", "damage", "temporary")


def _clamp(value: int) -> int:
    return min(STAT_MAX, max(STAT_MIN, value))


def _detect_slot(item_id: str) -> str:
    if "armor" in item_id or "robe" in item_id:
        return "armor"
    return "main_hand"


class CharacterStore:
    """Owns every character sheet in the session."""

    def __init__(self, templates: Optional[ContentProvider] = None):
        self.templates = templates
        self._characters: Dict[str, Character] = {}

    def _get(self, character_id: str) -> Character:
        character = self._characters.get(character_id)
        if character is None:
            raise NotFoundError(f"Character '{character_id}' not found")
        return character

    def create_character(
        self,
        character_id: str,
        name: str,
        template_id: Optional[str] = None,
        stats: Optional[Dict[str, int]] = None,
    ) -> Character:
        if character_id in self._characters:
            raise ValidationError(f"Character '{character_id}' already exists")

        merged = dict(DEFAULT_STATS)
        if template_id and self.templates is not None:
            template = self.templates.get_npc(template_id)
            if template is None:
                raise NotFoundError(f"Character template '{template_id}' not found")
            merged.update(template.stats)
        merged.update(stats or {})
        merged = {k: _clamp(v) for k, v in merged.items()}

        maximum = BASE_HEALTH + merged["constitution"]
        character = Character(
            id=character_id,
            name=name,
            stats=merged,
            health=HealthInfo(current=maximum, maximum=maximum),
            equipment=Equipment(),
        )
        self._characters[character_id] = character
        logger.info("character_created", character_id=character_id, name=name)
        return character.model_copy(deep=True)

    def get_character(self, character_id: str) -> Character:
        return self._get(character_id).model_copy(deep=True)

    def list_characters(self) -> List[str]:
        return list(self._characters)

    # --- Stats ---

    def get_character_stats(self, character_id: str) -> Dict[str, int]:
        return dict(self._get(character_id).stats)

    def modify_character_stats(self, character_id: str, changes: Dict[str, int]) -> Dict[str, int]:
        """Set stats to new values, clamped. Max health follows constitution."""
        character = self._get(character_id)
        old_con = character.stats.get("constitution", DEFAULT_STATS["constitution"])
        stats = dict(character.stats)
        stats.update(changes)
        character.stats = {k: _clamp(v) for k, v in stats.items()}

        delta = character.stats["constitution"] - old_con
        if delta:
            character.health.maximum += delta
            character.health.current = min(character.health.current, character.health.maximum)
        return dict(character.stats)

    # --- Health ---

    def get_health(self, character_id: str) -> HealthInfo:
        return self._get(character_id).health.model_copy()

    def modify_health(self, character_id: str, amount: int, type: str) -> HealthChange:
        """
        Apply healing, damage or temporary hit points. `amount` is a
        magnitude; temporary hit points absorb damage first.
        """
        if type not in HEALTH_CHANGE_TYPES:
            raise ValidationError(f"Unknown health change type '{type}'")
        character = self._get(character_id)
        health = character.health
        amount = abs(amount)
        raw = health.current

        if type == "healing":
            health.current = min(health.current + amount, health.maximum)
            raw = health.current
        elif type == "damage":
            absorbed = min(amount, health.temporary)
            health.temporary -= absorbed
            raw = health.current - (amount - absorbed)
            health.current = max(0, raw)
        else:
            health.temporary += amount

        logger.info(
            "health_changed",
            character_id=character_id,
            change=type,
            amount=amount,
            current=health.current,
        )
        return HealthChange(
            new_health=health.model_copy(),
            unconscious=health.current == 0,
            dead=raw < -character.stats["constitution"],
        )

    # --- Equipment ---

    def get_inventory(self, character_id: str) -> List[str]:
        return list(self._get(character_id).equipment.consumables)

    def equip_item(self, character_id: str, item_id: str, slot: Optional[str] = None) -> dict:
        slot = slot or _detect_slot(item_id)
        if slot not in EQUIP_SLOTS:
            raise ValidationError(f"Unknown equipment slot '{slot}'")
        equipment = self._get(character_id).equipment

        unequipped = getattr(equipment, slot)
        setattr(equipment, slot, item_id)
        if item_id in equipment.consumables:
            equipment.consumables.remove(item_id)
        if unequipped:
            equipment.consumables.append(unequipped)

        logger.info("item_equipped", character_id=character_id, item_id=item_id, slot=slot)
        return {"success": True, "slot": slot, "unequipped": unequipped}

    def unequip_item(self, character_id: str, slot: str) -> dict:
        if slot not in EQUIP_SLOTS:
            raise ValidationError(f"Unknown equipment slot '{slot}'")
        equipment = self._get(character_id).equipment
        item_id = getattr(equipment, slot)
        if not item_id:
            return {"success": False, "item_id": None}
        setattr(equipment, slot, None)
        equipment.consumables.append(item_id)
        return {"success": True, "item_id": item_id}

    # --- Conditions ---

    def add_condition(self, character_id: str, condition: Condition) -> None:
        """Add a condition, replacing any existing one with the same name."""
        character = self._get(character_id)
        character.conditions = [c for c in character.conditions if c.name != condition.name]
        character.conditions.append(condition.model_copy(deep=True))

    def remove_condition(self, character_id: str, name: str) -> bool:
        character = self._get(character_id)
        before = len(character.conditions)
        character.conditions = [c for c in character.conditions if c.name != name]
        return len(character.conditions) != before

    def get_conditions(self, character_id: str) -> List[Condition]:
        return [c.model_copy(deep=True) for c in self._get(character_id).conditions]

    def update_condition_durations(self, character_id: str, time_units: int) -> List[str]:
        """Tick every condition down. Returns the names that expired."""
        character = self._get(character_id)
        remaining, expired = [], []
        for condition in character.conditions:
            condition.duration -= time_units
            if condition.duration <= 0:
                expired.append(condition.name)
            else:
                remaining.append(condition)
        character.conditions = remaining
        if expired:
            logger.info("conditions_expired", character_id=character_id, expired=expired)
        return expired

    # --- Progression ---

    def add_experience(self, character_id: str, amount: int, reason: Optional[str] = None) -> ExperienceResult:
        character = self._get(character_id)
        old_level = character.level
        character.experience += amount
        new_level = max(old_level, character.experience // XP_PER_LEVEL + 1)
        character.level = new_level

        logger.info(
            "experience_gained",
            character_id=character_id,
            amount=amount,
            reason=reason,
            level=new_level,
        )
        return ExperienceResult(level_up=new_level > old_level, new_level=new_level)

    def level_up(self, character_id: str, stat_increases: Optional[Dict[str, int]] = None) -> dict:
        """Apply stat increases (default +1 strength, +1 constitution)."""
        character = self._get(character_id)
        increases = stat_increases or DEFAULT_LEVEL_UP
        new_stats = {
            stat: character.stats.get(stat, DEFAULT_STATS.get(stat, STAT_MIN)) + delta
            for stat, delta in increases.items()
        }
        stats = self.modify_character_stats(character_id, new_stats)
        return {"success": True, "new_level": character.level, "new_stats": stats}

    def debug_state(self) -> dict:
        return {
            "characters": len(self._characters),
            "unconscious": sum(1 for c in self._characters.values() if c.health.current == 0),
        }
