"""Mechanics results — dice, skill checks, attacks, action validation."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class DiceResult(BaseModel):
    dice: str
    rolls: List[int]
    modifier: int = 0
    total: int
    critical: bool = False
    fumble: bool = False
    advantage_rolls: Optional[List[int]] = None


class SkillCheckResult(BaseModel):
    success: bool
    degree: str                             # critical_success | success | failure | critical_failure
    roll: DiceResult
    difficulty: int
    margin: int


class CombatResult(BaseModel):
    hit: bool
    damage: int
    critical: bool
    effects: List[str] = []
    message: str


class ActionCheck(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    requirements: List[str] = []


class RuleDefinition(BaseModel):
    category: str
    name: str
    description: str
    mechanics: Dict[str, Any] = {}


class SkillDefinition(BaseModel):
    name: str
    attribute: str
    description: str
    difficulty: Dict[str, int] = {}
