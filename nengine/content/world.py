"""World content — rooms, exits, lighting and environment."""

from typing import Dict, List, Optional
from uuid import uuid4

import structlog

from nengine.content.entities import EntityContent
from nengine.content.provider import ContentProvider
from nengine.errors import NotFoundError
from nengine.models.content import Environment, Room
from nengine.models.world import EntityId
from nengine.world_state.store import WorldStateStore

logger = structlog.get_logger(__name__)

LIGHTING_LEVELS = ("dark", "dim", "normal", "bright")


class WorldContent:
    """
    Room lookups over the content provider plus rooms created during play.
    Occupants are resolved through World State positions.
    """

    def __init__(
        self,
        provider: ContentProvider,
        world_state: WorldStateStore,
        entities: EntityContent,
    ):
        self.provider = provider
        self.world_state = world_state
        self.entities = entities
        self._dynamic_rooms: Dict[str, Room] = {}

    def get_room(self, room_id: str) -> Room:
        room = self.provider.get_room(room_id) or self._dynamic_rooms.get(room_id)
        if room is None:
            raise NotFoundError(f"Room '{room_id}' not found")
        return room

    def get_rooms_in_region(self, region: str) -> List[Room]:
        rooms = self.provider.list_rooms() + list(self._dynamic_rooms.values())
        return [r for r in rooms if r.properties.get("region") == region]

    def get_connected_rooms(self, room_id: str) -> List[str]:
        """Exit targets followed by hidden-exit targets."""
        room = self.get_room(room_id)
        connected = list(room.exits.values())
        connected.extend(exit.target_room for exit in room.hidden_exits.values())
        return connected

    def create_dynamic_room(
        self,
        parent_room: str,
        type: str,
        name: str,
        description: str = "",
        connections: Optional[Dict[str, str]] = None,
    ) -> EntityId:
        room_id = f"dynamic_room_{type}_{uuid4().hex[:8]}"
        self._dynamic_rooms[room_id] = Room(
            id=room_id,
            name=name,
            description=description,
            exits=dict(connections or {}),
            properties={"type": type, "parent_room": parent_room},
        )
        entity = self.world_state.add_dynamic_entity(room_id)
        logger.info("dynamic_room_created", room_id=room_id, parent_room=parent_room)
        return entity

    def _occupants(self, room_id: str, predicate) -> List[EntityId]:
        dynamic = {e.id for e in self.world_state.get_world_state().dynamic_entities}
        return [
            EntityId(id=eid, is_static=eid not in dynamic)
            for eid in self.world_state.entities_in_room(room_id)
            if predicate(eid)
        ]

    def get_items_in_room(self, room_id: str) -> List[EntityId]:
        return self._occupants(room_id, self.entities.is_item)

    def get_npcs_in_room(self, room_id: str) -> List[EntityId]:
        return self._occupants(room_id, self.entities.is_npc)

    def get_lighting(self, room_id: str) -> str:
        lighting = self.get_room(room_id).properties.get("lighting", "normal")
        return lighting if lighting in LIGHTING_LEVELS else "normal"

    def get_environment(self, room_id: str) -> Environment:
        props = self.get_room(room_id).properties
        return Environment(
            temperature=props.get("temperature", 20),
            hazards=props.get("hazards", []),
            sounds=props.get("sounds", []),
            smells=props.get("smells", []),
        )

    def debug_state(self) -> dict:
        return {
            "static_rooms": len(self.provider.list_rooms()),
            "dynamic_rooms": len(self._dynamic_rooms),
        }

    def warnings(self) -> List[str]:
        warnings = []
        if not self.provider.list_rooms():
            warnings.append("No static rooms loaded")
        if len(self._dynamic_rooms) > 50:
            warnings.append(f"Large number of dynamic rooms: {len(self._dynamic_rooms)}")
        return warnings
