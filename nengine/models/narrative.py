"""Narrative transcript and Clean Slate Context models."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Importance(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Timeframe(str, Enum):
    IMMEDIATE = "immediate"
    RECENT = "recent"
    EXTENDED = "extended"


class InteractionType(str, Enum):
    DIALOGUE = "dialogue"
    ACTION = "action"
    COMBAT = "combat"


class Trajectory(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"
    CHAOTIC = "chaotic"


class SummaryFocus(str, Enum):
    PLOT = "plot"
    CHARACTER = "character"
    WORLD = "world"
    GENERAL = "general"


class TurnInput(BaseModel):
    """What a caller supplies when recording a turn."""

    player_action: str
    narrative: str
    world_state: Dict[str, Any] = {}
    npcs_involved: List[str] = []
    mechanical_results: Dict[str, Any] = {}
    dialogue: Optional[str] = None
    state_changes: List[Any] = []
    mood: str = "neutral"


class TurnRecord(BaseModel):
    """One immutable entry in the append-only play transcript."""

    model_config = {"frozen": True}

    id: str
    timestamp: int                          # Unix milliseconds
    turn_number: int                        # 1-based, never reused
    player_action: str
    world_state: Dict[str, Any] = {}
    npcs_involved: List[str] = []
    mechanical_results: Dict[str, Any] = {}
    narrative: str
    dialogue: Optional[str] = None
    state_changes: List[Any] = []
    mood: str = "neutral"

    @property
    def has_combat(self) -> bool:
        return bool(self.mechanical_results.get("combat"))


class TimeRange(BaseModel):
    start: int
    end: int


class ContextChunk(BaseModel):
    """Ephemeral search hit derived from a TurnRecord. Never persisted."""

    content: str
    relevance: float
    timestamp: int
    turn_number: int
    entities: List[str] = []
    importance: Importance


class Interaction(BaseModel):
    timestamp: int
    turn_number: int
    entity1: str
    entity2: str
    type: InteractionType
    description: str
    outcome: Optional[str] = None
    importance: float = 0.0


class KeyEvent(BaseModel):
    timestamp: int
    turn_number: int
    character: str
    event: str
    importance: float
    consequences: List[str] = []


class EmotionSample(BaseModel):
    timestamp: int
    turn_number: int
    emotion: str
    intensity: float
    trigger: str


class EmotionalArc(BaseModel):
    character: str
    sequence: List[EmotionSample] = []
    current_emotion: str = "neutral"
    trajectory: Trajectory = Trajectory.STABLE


class ContextCurationParams(BaseModel):
    current_action: str
    actors: List[str] = []
    location: str
    max_tokens: int = Field(gt=0)
    importance: Optional[Importance] = None
    timeframe: Timeframe = Timeframe.RECENT


class CuratedContext(BaseModel):
    """Output of the research → synthesize pipeline. Purged every turn."""

    context_id: str
    immediate_situation: str
    relevant_history: str
    character_states: Dict[str, str] = {}
    world_context: str
    mechanical_requirements: str
    narrative_tone: str
    timestamp: int
    token_count: int
