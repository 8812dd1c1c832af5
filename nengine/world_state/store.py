"""
World State Store — the mutable in-memory world: positions, inventories,
per-entity and per-room state, flags, party and the game clock.

Checkpointed into the Commit Store on every save_state() call.

Behavioral Contract:
- WorldState is mutated only through this store's operations.
- transfer_item() is atomic: either both inventories change or neither does.
- set_current_room() re-homes every party member in one step.
- State patches are shallow merges; only the provided keys are overwritten.
- serialize()/deserialize() round-trip exactly.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pydantic
import structlog

from nengine.errors import ItemNotFound, NotFoundError, PersistenceError, ValidationError
from nengine.models.versioning import Commit, GameSaveMetadata
from nengine.models.world import (
    EntityId,
    GameTime,
    InventoryRecord,
    Position,
    PositionRecord,
    StatePatchRecord,
    StateSnapshot,
    WorldState,
)
from nengine.versioning.commit_store import CommitStore

logger = structlog.get_logger(__name__)

DEFAULT_PARTY = ("player",)


class WorldStateStore:
    """Owns the single WorldState of a play session."""

    def __init__(self, commit_store: CommitStore, starting_room: str = "start"):
        self.commit_store = commit_store
        self.starting_room = starting_room
        self.turn_count = 0
        self._metadata: Optional[GameSaveMetadata] = None
        self._reset()

    def _reset(self) -> None:
        self._state = WorldState(
            current_room=self.starting_room,
            party=[EntityId(id=member) for member in DEFAULT_PARTY],
            world_time=GameTime(),
        )
        self._positions: Dict[str, Position] = {
            member: Position(room=self.starting_room) for member in DEFAULT_PARTY
        }
        self._inventories: Dict[str, List[str]] = {}
        self._entity_states: Dict[str, Dict[str, Any]] = {}
        self._room_states: Dict[str, Dict[str, Any]] = {}

    def initialize(self) -> bool:
        """Restore the newest snapshot on the current branch, if any."""
        restored = self.load_state()
        logger.info(
            "world_state_initialised",
            restored=restored,
            branch=self.commit_store.current_branch(),
            current_room=self._state.current_room,
        )
        return restored

    # --- Metadata ---

    @property
    def metadata(self) -> Optional[GameSaveMetadata]:
        return self._metadata

    def set_game_metadata(self, metadata: GameSaveMetadata) -> None:
        """Attach save metadata. Restores the turn counter when resuming."""
        self._metadata = metadata
        self.turn_count = metadata.turn_count
        self._sync_metadata()
        logger.info("game_metadata_set", game_id=metadata.game_id, turn_count=self.turn_count)

    def _sync_metadata(self, **updates) -> None:
        """Point the working-copy metadata at the checked-out commit."""
        if self._metadata is None:
            return
        self._metadata = self._metadata.model_copy(update={
            "last_commit": self.commit_store.head_commit or "",
            "current_branch": self.commit_store.current_branch() or self._metadata.current_branch,
            **updates,
        })
        self.commit_store.write_metadata(self._metadata)

    # --- Positions ---

    def get_entity_position(self, entity_id: str) -> Position:
        position = self._positions.get(entity_id)
        if position is None:
            raise NotFoundError(f"Entity '{entity_id}' has no known position")
        return position.model_copy(deep=True)

    def move_entity(self, entity_id: str, to: Position) -> None:
        old = self._positions.get(entity_id)
        self._positions[entity_id] = to.model_copy(deep=True)
        logger.debug(
            "entity_moved",
            entity_id=entity_id,
            from_room=old.room if old else None,
            to_room=to.room,
        )

    def entities_in_room(self, room_id: str) -> List[str]:
        """Entities whose position places them in `room_id`, in id order."""
        return sorted(eid for eid, pos in self._positions.items() if pos.room == room_id)

    # --- Inventories ---

    def get_inventory(self, entity_id: str) -> List[str]:
        return list(self._inventories.get(entity_id, []))

    def add_to_inventory(self, entity_id: str, item_id: str) -> None:
        self._inventories[entity_id] = self.get_inventory(entity_id) + [item_id]

    def remove_from_inventory(self, entity_id: str, item_id: str) -> None:
        inventory = self.get_inventory(entity_id)
        if item_id not in inventory:
            raise ItemNotFound(f"Item '{item_id}' not found in {entity_id} inventory")
        inventory.remove(item_id)
        self._inventories[entity_id] = inventory

    def transfer_item(self, item_id: str, from_entity: str, to_entity: str) -> None:
        source = self.get_inventory(from_entity)
        if item_id not in source:
            raise ItemNotFound(f"Item '{item_id}' not found in {from_entity} inventory")
        source.remove(item_id)

        target = source if from_entity == to_entity else self.get_inventory(to_entity)
        target.append(item_id)

        # Both lists are fresh copies; swap them in together.
        self._inventories[from_entity] = source
        self._inventories[to_entity] = target
        logger.debug("item_transferred", item_id=item_id, source=from_entity, target=to_entity)

    # --- Free-form state ---

    def get_entity_state(self, entity_id: str) -> Dict[str, Any]:
        return dict(self._entity_states.get(entity_id, {}))

    def modify_entity_state(self, entity_id: str, changes: Dict[str, Any]) -> None:
        merged = self.get_entity_state(entity_id)
        merged.update(changes)
        self._entity_states[entity_id] = merged

    def get_room_state(self, room_id: str) -> Dict[str, Any]:
        return dict(self._room_states.get(room_id, {}))

    def modify_room_state(self, room_id: str, changes: Dict[str, Any]) -> None:
        merged = self.get_room_state(room_id)
        merged.update(changes)
        self._room_states[room_id] = merged

    # --- WorldState root ---

    def get_world_state(self) -> WorldState:
        return self._state.model_copy(deep=True)

    def get_flag(self, flag: str) -> Any:
        return self._state.flags.get(flag)

    def set_flag(self, flag: str, value: Any) -> None:
        self._state.flags[flag] = value
        logger.debug("flag_set", flag=flag, value=value)

    def add_to_party(self, entity_id: str, is_static: bool = True) -> None:
        if any(member.id == entity_id for member in self._state.party):
            return
        self._state.party.append(EntityId(id=entity_id, is_static=is_static))
        self._positions[entity_id] = Position(room=self._state.current_room)
        logger.info("party_joined", entity_id=entity_id)

    def remove_from_party(self, entity_id: str) -> None:
        before = len(self._state.party)
        self._state.party = [m for m in self._state.party if m.id != entity_id]
        if len(self._state.party) != before:
            logger.info("party_left", entity_id=entity_id)

    def set_current_room(self, room_id: str) -> None:
        old_room = self._state.current_room
        positions = dict(self._positions)
        for member in self._state.party:
            positions[member.id] = Position(room=room_id)
        self._positions = positions
        self._state.current_room = room_id
        logger.info("current_room_changed", from_room=old_room, to_room=room_id)

    def add_dynamic_entity(self, entity_id: str, room: Optional[str] = None) -> EntityId:
        """Register a runtime-generated entity, optionally placing it in a room."""
        entity = EntityId(id=entity_id, is_static=False)
        if entity not in self._state.dynamic_entities:
            self._state.dynamic_entities.append(entity)
        if room is not None:
            self._positions[entity_id] = Position(room=room)
        return entity

    def advance_time(self, minutes: int) -> GameTime:
        """Move the clock forward, carrying into hours, days, months and years."""
        if minutes < 0:
            raise ValidationError("Game time cannot run backwards")
        t = self._state.world_time
        total_minutes = t.minute + minutes
        hours = t.hour + total_minutes // 60
        days = (t.day - 1) + hours // 24
        months = (t.month - 1) + days // 30
        self._state.world_time = GameTime(
            year=t.year + months // 12,
            month=months % 12 + 1,
            day=days % 30 + 1,
            hour=hours % 24,
            minute=total_minutes % 60,
        )
        logger.debug("time_advanced", minutes=minutes, now=self._state.world_time.label())
        return self._state.world_time.model_copy()

    # --- Serialization ---

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            world_state=self._state.model_copy(deep=True),
            entity_positions=[
                PositionRecord(entity_id=eid, position=pos)
                for eid, pos in sorted(self._positions.items())
            ],
            inventories=[
                InventoryRecord(entity_id=eid, items=items)
                for eid, items in sorted(self._inventories.items())
            ],
            entity_states=[
                StatePatchRecord(key=eid, state=state)
                for eid, state in sorted(self._entity_states.items())
            ],
            room_states=[
                StatePatchRecord(key=rid, state=state)
                for rid, state in sorted(self._room_states.items())
            ],
            turn_count=self.turn_count,
        )

    def restore(self, snapshot: StateSnapshot) -> None:
        self._state = snapshot.world_state.model_copy(deep=True)
        self._positions = {r.entity_id: r.position for r in snapshot.entity_positions}
        self._inventories = {r.entity_id: list(r.items) for r in snapshot.inventories}
        self._entity_states = {r.key: dict(r.state) for r in snapshot.entity_states}
        self._room_states = {r.key: dict(r.state) for r in snapshot.room_states}
        self.turn_count = snapshot.turn_count

    def serialize(self) -> dict:
        return self.snapshot().model_dump(mode="json")

    def deserialize(self, data: dict) -> None:
        try:
            snapshot = StateSnapshot.model_validate(data)
        except pydantic.ValidationError as e:
            raise PersistenceError(f"Snapshot does not match the world state schema: {e}") from e
        self.restore(snapshot)

    # --- Version control ---

    def save_state(self, message: str) -> str:
        """Checkpoint the world into a new commit and return its hash."""
        self.turn_count += 1
        metadata = None
        if self._metadata is not None:
            metadata = self._metadata.model_copy(update={
                "turn_count": self.turn_count,
                "last_played": datetime.now(timezone.utc).isoformat(),
                "current_branch": self.commit_store.current_branch() or self._metadata.current_branch,
            })

        try:
            sha = self.commit_store.save_state(message, self.serialize(), metadata)
        except PersistenceError:
            self.turn_count -= 1
            raise

        if metadata is not None:
            metadata.last_commit = sha
            self.commit_store.write_metadata(metadata)
            self._metadata = metadata

        logger.info("state_saved", commit=sha[:12], turn=self.turn_count, message=message)
        return sha

    def load_state(self, ref: Optional[str] = None) -> bool:
        """
        Check out `ref` (if given) and restore its newest snapshot.
        With no snapshot on the target, the default world is restored.
        """
        data = self.commit_store.load_state(ref)
        if data is None:
            self._reset()
            self.turn_count = 0
            self._sync_metadata(turn_count=0)
            return False
        self.deserialize(data)
        self._sync_metadata(turn_count=self.turn_count)
        return True

    def switch_branch(self, branch: str) -> None:
        self.commit_store.switch_branch(branch)
        self.load_state()

    def create_branch(self, name: str, from_commit: Optional[str] = None) -> None:
        self.commit_store.create_branch(name, from_commit)
        self.load_state()

    def cherry_pick(self, commits: List[str]) -> List[str]:
        created = self.commit_store.cherry_pick(commits)
        self.load_state()
        return created

    def get_history(self, branch: Optional[str] = None, limit: int = 10) -> List[Commit]:
        return self.commit_store.get_history(branch, limit)

    # --- Diagnostics ---

    def debug_state(self) -> dict:
        return {
            "current_room": self._state.current_room,
            "party_size": len(self._state.party),
            "world_time": self._state.world_time.label(),
            "flags": len(self._state.flags),
            "dynamic_entities": len(self._state.dynamic_entities),
            "tracked_positions": len(self._positions),
            "managed_inventories": len(self._inventories),
            "turn_count": self.turn_count,
        }

    def warnings(self) -> List[str]:
        warnings = []
        if not self._state.party:
            warnings.append("No party members")
        if self._state.current_room == "unknown":
            warnings.append("Current room is unknown")
        if len(self._positions) > 1000:
            warnings.append(f"Large number of tracked entities: {len(self._positions)}")
        return warnings
