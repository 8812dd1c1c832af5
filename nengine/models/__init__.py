"""Narrative engine data models."""

from nengine.models.characters import (
    Character,
    Condition,
    Equipment,
    ExperienceResult,
    HealthChange,
    HealthInfo,
)
from nengine.models.config import EngineConfig
from nengine.models.content import Environment, HiddenExit, ItemTemplate, NPCTemplate, Room
from nengine.models.mechanics import (
    ActionCheck,
    CombatResult,
    DiceResult,
    RuleDefinition,
    SkillCheckResult,
    SkillDefinition,
)
from nengine.models.narrative import (
    ContextChunk,
    ContextCurationParams,
    CuratedContext,
    EmotionalArc,
    EmotionSample,
    Importance,
    Interaction,
    InteractionType,
    KeyEvent,
    SummaryFocus,
    TimeRange,
    Timeframe,
    Trajectory,
    TurnInput,
    TurnRecord,
)
from nengine.models.tools import BatchResult, DebugInfo, OperationRecord, ServerInfo, ToolCall, ToolSpec
from nengine.models.versioning import (
    Commit,
    CommitDiff,
    CompatibilityResult,
    FileChanges,
    GameSaveMetadata,
)
from nengine.models.world import (
    Coordinates,
    EntityId,
    GameTime,
    InventoryRecord,
    Position,
    PositionRecord,
    StatePatchRecord,
    StateSnapshot,
    WorldState,
)

__all__ = [
    "ActionCheck",
    "BatchResult",
    "Character",
    "CombatResult",
    "Commit",
    "CommitDiff",
    "CompatibilityResult",
    "Condition",
    "ContextChunk",
    "ContextCurationParams",
    "Coordinates",
    "CuratedContext",
    "DebugInfo",
    "DiceResult",
    "EmotionSample",
    "EmotionalArc",
    "EngineConfig",
    "EntityId",
    "Environment",
    "Equipment",
    "ExperienceResult",
    "FileChanges",
    "GameSaveMetadata",
    "GameTime",
    "HealthChange",
    "HealthInfo",
    "HiddenExit",
    "Importance",
    "Interaction",
    "InteractionType",
    "InventoryRecord",
    "ItemTemplate",
    "KeyEvent",
    "NPCTemplate",
    "OperationRecord",
    "Position",
    "PositionRecord",
    "Room",
    "RuleDefinition",
    "ServerInfo",
    "SkillCheckResult",
    "SkillDefinition",
    "StatePatchRecord",
    "StateSnapshot",
    "SummaryFocus",
    "TimeRange",
    "Timeframe",
    "ToolCall",
    "ToolSpec",
    "Trajectory",
    "TurnInput",
    "TurnRecord",
    "WorldState",
]
