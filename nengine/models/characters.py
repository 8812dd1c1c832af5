"""Character sheets — stats, health, equipment, conditions, progression."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


DEFAULT_STATS = {
    "strength": 10,
    "dexterity": 10,
    "constitution": 10,
    "intelligence": 10,
    "wisdom": 10,
    "charisma": 10,
}


class HealthInfo(BaseModel):
    current: int = 20
    maximum: int = 20
    temporary: int = 0


class Equipment(BaseModel):
    main_hand: Optional[str] = None
    off_hand: Optional[str] = None
    armor: Optional[str] = None
    accessories: List[str] = []
    consumables: List[str] = []             # Also serves as the carried inventory


class Condition(BaseModel):
    name: str
    duration: int
    effects: Dict[str, Any] = {}
    source: Optional[str] = None


class Character(BaseModel):
    id: str
    name: str
    stats: Dict[str, int] = dict(DEFAULT_STATS)
    health: HealthInfo = HealthInfo()
    equipment: Equipment = Equipment()
    abilities: List[str] = []
    conditions: List[Condition] = []
    experience: int = 0
    level: int = 1


class HealthChange(BaseModel):
    new_health: HealthInfo
    unconscious: bool
    dead: bool


class ExperienceResult(BaseModel):
    level_up: bool
    new_level: int
