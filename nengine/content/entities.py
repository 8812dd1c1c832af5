"""Entity content — NPC and item templates, static and runtime-generated."""

from typing import Any, Dict, List, Optional
from uuid import uuid4

import structlog

from nengine.content.provider import ContentProvider
from nengine.errors import NotFoundError
from nengine.models.content import ItemTemplate, NPCTemplate
from nengine.models.characters import DEFAULT_STATS
from nengine.models.world import EntityId, Position
from nengine.world_state.store import WorldStateStore

logger = structlog.get_logger(__name__)


class EntityContent:
    """
    Template lookups over the content provider, plus dynamic NPCs and items
    created during play. Dynamic entities are registered and placed through
    the World State Store.
    """

    def __init__(self, provider: ContentProvider, world_state: WorldStateStore):
        self.provider = provider
        self.world_state = world_state
        self._dynamic_npcs: Dict[str, NPCTemplate] = {}
        self._dynamic_items: Dict[str, ItemTemplate] = {}

    # --- NPCs ---

    def get_npc_template(self, npc_id: str) -> NPCTemplate:
        template = self.provider.get_npc(npc_id) or self._dynamic_npcs.get(npc_id)
        if template is None:
            raise NotFoundError(f"NPC template '{npc_id}' not found")
        return template

    def get_all_npcs(self) -> List[NPCTemplate]:
        return self.provider.list_npcs() + list(self._dynamic_npcs.values())

    def is_npc(self, entity_id: str) -> bool:
        return self.provider.get_npc(entity_id) is not None or entity_id in self._dynamic_npcs

    def create_dynamic_npc(
        self,
        name: str,
        spawn: Position,
        role: str = "",
        personality: Optional[Dict[str, List[str]]] = None,
        base_template: Optional[str] = None,
    ) -> EntityId:
        base = self.get_npc_template(base_template) if base_template else None
        npc_id = f"dynamic_npc_{uuid4().hex[:8]}"
        template = NPCTemplate(
            id=npc_id,
            name=name,
            description=base.description if base else "",
            personality=personality if personality is not None else (base.personality if base else {}),
            stats=dict(base.stats) if base and base.stats else dict(DEFAULT_STATS),
            properties={**(base.properties if base else {}), "role": role},
        )
        self._dynamic_npcs[npc_id] = template

        entity = self.world_state.add_dynamic_entity(npc_id)
        self.world_state.move_entity(npc_id, spawn)
        logger.info("dynamic_npc_created", npc_id=npc_id, name=name, room=spawn.room)
        return entity

    # --- Items ---

    def get_item_template(self, item_id: str) -> ItemTemplate:
        template = self.provider.get_item(item_id) or self._dynamic_items.get(item_id)
        if template is None:
            raise NotFoundError(f"Item template '{item_id}' not found")
        return template

    def is_item(self, entity_id: str) -> bool:
        return self.provider.get_item(entity_id) is not None or entity_id in self._dynamic_items

    def search_items(
        self,
        type: Optional[str] = None,
        name: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> List[ItemTemplate]:
        """Static item templates matching every given filter."""
        results = []
        for template in self.provider.list_items():
            if type and template.type != type:
                continue
            if name and name.lower() not in template.name.lower():
                continue
            if properties and any(template.properties.get(k) != v for k, v in properties.items()):
                continue
            results.append(template)
        return results

    def create_dynamic_item(
        self,
        name: str,
        position: Position,
        properties: Optional[Dict[str, Any]] = None,
        base_template: Optional[str] = None,
    ) -> EntityId:
        base = self.get_item_template(base_template) if base_template else None
        item_id = f"dynamic_item_{uuid4().hex[:8]}"
        template = ItemTemplate(
            id=item_id,
            name=name,
            description=base.description if base else f"A {name}",
            type=base.type if base else "misc",
            properties={**(base.properties if base else {}), **(properties or {})},
            weight=base.weight if base and base.weight is not None else 1,
            value=base.value if base and base.value is not None else 0,
        )
        self._dynamic_items[item_id] = template

        entity = self.world_state.add_dynamic_entity(item_id)
        self.world_state.move_entity(item_id, position)
        logger.info("dynamic_item_created", item_id=item_id, name=name, room=position.room)
        return entity

    def debug_state(self) -> dict:
        return {
            "npc_templates": len(self.provider.list_npcs()),
            "item_templates": len(self.provider.list_items()),
            "dynamic_npcs": len(self._dynamic_npcs),
            "dynamic_items": len(self._dynamic_items),
        }

    def warnings(self) -> List[str]:
        warnings = []
        if not self.provider.list_npcs():
            warnings.append("No NPC templates loaded")
        if not self.provider.list_items():
            warnings.append("No item templates loaded")
        return warnings
