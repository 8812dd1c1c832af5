"""World State — positions, inventories, flags and the game clock."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class EntityId(BaseModel):
    """Identity of a designer-authored or runtime-generated entity."""

    model_config = {"frozen": True}

    id: str
    is_static: bool = True                  # False for runtime-generated entities


class Coordinates(BaseModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class Position(BaseModel):
    """
    Where an entity is. `worn` beats `container` beats `room` when deciding
    which field is authoritative.
    """

    room: str
    container: Optional[str] = None
    worn: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    @property
    def authoritative(self) -> tuple:
        """(kind, id) of the field that locates the entity."""
        if self.worn:
            return ("worn", self.worn)
        if self.container:
            return ("container", self.container)
        return ("room", self.room)


class GameTime(BaseModel):
    """In-world calendar. Months are 30 days, years 12 months."""

    year: int = 1423
    month: int = Field(ge=1, le=12, default=3)
    day: int = Field(ge=1, le=30, default=15)
    hour: int = Field(ge=0, le=23, default=14)
    minute: int = Field(ge=0, le=59, default=30)

    def label(self) -> str:
        return f"{self.year}-{self.month}-{self.day} {self.hour}:{self.minute:02d}"


class WorldState(BaseModel):
    """The single mutable root owned by the World State Store."""

    current_room: str
    party: List[EntityId] = []
    world_time: GameTime = GameTime()
    flags: Dict[str, Any] = {}
    dynamic_entities: List[EntityId] = []


# --- Persistence records ---
# Keyed maps are persisted as ordered lists of explicit records so the
# snapshot never depends on ambient map iteration order.

class PositionRecord(BaseModel):
    entity_id: str
    position: Position


class InventoryRecord(BaseModel):
    entity_id: str
    items: List[str] = []


class StatePatchRecord(BaseModel):
    key: str                                # entity id or room id
    state: Dict[str, Any] = {}


class StateSnapshot(BaseModel):
    """Everything the World State Store needs to restore itself."""

    world_state: WorldState
    entity_positions: List[PositionRecord] = []
    inventories: List[InventoryRecord] = []
    entity_states: List[StatePatchRecord] = []
    room_states: List[StatePatchRecord] = []
    turn_count: int = 0
