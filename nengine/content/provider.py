"""
Read-only game content, keyed by id.

Loading the content files is the host's job; the engine only sees a
ContentProvider.
"""

from typing import Dict, Iterable, List, Optional, Protocol

from nengine.models.content import ItemTemplate, NPCTemplate, Room


class ContentProvider(Protocol):
    def get_room(self, room_id: str) -> Optional[Room]: ...

    def list_rooms(self) -> List[Room]: ...

    def get_npc(self, npc_id: str) -> Optional[NPCTemplate]: ...

    def list_npcs(self) -> List[NPCTemplate]: ...

    def get_item(self, item_id: str) -> Optional[ItemTemplate]: ...

    def list_items(self) -> List[ItemTemplate]: ...


class InMemoryContentProvider:
    """Content held in dictionaries. Used by tests and embedded hosts."""

    def __init__(
        self,
        rooms: Iterable[Room] = (),
        npcs: Iterable[NPCTemplate] = (),
        items: Iterable[ItemTemplate] = (),
    ):
        self._rooms: Dict[str, Room] = {r.id: r for r in rooms}
        self._npcs: Dict[str, NPCTemplate] = {n.id: n for n in npcs}
        self._items: Dict[str, ItemTemplate] = {i.id: i for i in items}

    @classmethod
    def from_dict(cls, data: dict) -> "InMemoryContentProvider":
        """Build from parsed content: {"rooms": [...], "npcs": [...], "items": [...]}."""
        return cls(
            rooms=[Room.model_validate(r) for r in data.get("rooms", [])],
            npcs=[NPCTemplate.model_validate(n) for n in data.get("npcs", [])],
            items=[ItemTemplate.model_validate(i) for i in data.get("items", [])],
        )

    def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def list_rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def get_npc(self, npc_id: str) -> Optional[NPCTemplate]:
        return self._npcs.get(npc_id)

    def list_npcs(self) -> List[NPCTemplate]:
        return list(self._npcs.values())

    def get_item(self, item_id: str) -> Optional[ItemTemplate]:
        return self._items.get(item_id)

    def list_items(self) -> List[ItemTemplate]:
        return list(self._items.values())
