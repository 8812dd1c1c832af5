"""Read-only game content definitions supplied by the content loader."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class HiddenExit(BaseModel):
    target_room: str
    discovery_condition: str = ""


class Room(BaseModel):
    id: str
    name: str
    description: str = ""
    exits: Dict[str, str] = {}              # direction -> room id
    properties: Dict[str, Any] = {}
    hidden_exits: Dict[str, HiddenExit] = {}


class Environment(BaseModel):
    temperature: float = 20
    hazards: List[str] = []
    sounds: List[str] = []
    smells: List[str] = []


class NPCTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    personality: Dict[str, List[str]] = {}  # traits, goals, fears, values, secrets
    stats: Dict[str, int] = {}
    properties: Dict[str, Any] = {}


class ItemTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    type: str = "misc"                      # weapon | tool | consumable | container | misc
    properties: Dict[str, Any] = {}
    weight: Optional[float] = None
    value: Optional[int] = None
