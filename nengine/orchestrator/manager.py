"""
Orchestrator — routes tool calls to subsystems, runs batches and
assembles multi-subsystem context bundles.

Behavioral Contract:
- A batch runs its calls sequentially; a failing call leaves None in its
  result slot and an error string, and never aborts the rest.
- Context assembly carries per-call errors forward instead of failing.
- resume() refuses a save whose content hash no longer matches.
- Lifecycle events go to an injected observer, never a global.
"""

import random
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from nengine.characters.store import CharacterStore
from nengine.content.entities import EntityContent
from nengine.content.provider import ContentProvider, InMemoryContentProvider
from nengine.content.world import WorldContent
from nengine.errors import IncompatibleSaveError, ValidationError
from nengine.mechanics.engine import MechanicsEngine
from nengine.models.config import EngineConfig
from nengine.models.narrative import CuratedContext, ContextCurationParams
from nengine.models.tools import BatchResult, DebugInfo, ToolCall, ToolSpec
from nengine.models.versioning import CompatibilityResult
from nengine.narrative.curator import ContextCurator
from nengine.narrative.history import PLAYER_ID, NarrativeHistory
from nengine.narrative.scoring import TurnScorer
from nengine.observability.logging import bind_session
from nengine.orchestrator.servers import (
    create_character_server,
    create_entity_content_server,
    create_mechanics_server,
    create_narrative_server,
    create_state_server,
    create_world_content_server,
)
from nengine.tools.registry import ToolRegistry
from nengine.versioning.commit_store import CommitStore
from nengine.versioning.compatibility import CONTENT_CHANGED, NO_SAVE_METADATA, CachedContentHasher
from nengine.world_state.store import WorldStateStore

logger = structlog.get_logger(__name__)

StatusObserver = Callable[[str, Dict[str, Any]], None]

CONTEXT_KINDS = ("room", "dialogue", "combat", "full")


class Orchestrator:
    """The single entry point a transport talks to."""

    def __init__(
        self,
        config: EngineConfig,
        registry: ToolRegistry,
        world_state: WorldStateStore,
        history: NarrativeHistory,
        curator: ContextCurator,
        hasher: CachedContentHasher,
        observer: Optional[StatusObserver] = None,
    ):
        self.config = config
        self.registry = registry
        self.world_state = world_state
        self.history = history
        self.curator = curator
        self.hasher = hasher
        self.observer = observer
        self.resumed = False

    def _emit(self, event: str, **data) -> None:
        if self.observer is not None:
            self.observer(event, data)

    # --- Dispatch ---

    def execute_tool(self, subsystem: str, operation: str, params: Optional[dict] = None) -> Any:
        return self.registry.execute(subsystem, operation, params)

    def execute_batch(self, calls: List[ToolCall]) -> BatchResult:
        start = time.monotonic()
        results: List[Any] = []
        errors: List[str] = []

        for call in calls:
            try:
                results.append(self.execute_tool(call.subsystem, call.operation, call.params))
            except Exception as e:
                errors.append(f"{call.subsystem}.{call.operation}: {e}")
                results.append(None)

        duration = (time.monotonic() - start) * 1000
        if errors:
            logger.warning("batch_errors", calls=len(calls), errors=errors)
        logger.debug("batch_completed", calls=len(calls), duration_ms=round(duration, 3))
        return BatchResult(results=results, errors=errors, duration_ms=round(duration, 3))

    # --- Context assembly ---

    def assemble_context(self, kind: str, params: Optional[dict] = None) -> dict:
        params = params or {}
        if kind == "room":
            data = self._room_context(params.get("room_id") or self._current_room())
        elif kind == "dialogue":
            data = self._dialogue_context(params.get("participants", []))
        elif kind == "combat":
            data = self._combat_context(params.get("participants", []))
        elif kind == "full":
            data = self._full_context()
        else:
            raise ValidationError(
                f"Unknown context type '{kind}'. Expected one of: {', '.join(CONTEXT_KINDS)}"
            )
        return {"timestamp": int(time.time() * 1000), "context_type": kind, "data": data}

    def _current_room(self) -> str:
        return self.world_state.get_world_state().current_room

    def _room_context(self, room_id: str) -> dict:
        q = {"room_id": room_id}
        batch = self.execute_batch([
            ToolCall(subsystem="world_content", operation="get_room", params=q),
            ToolCall(subsystem="world_content", operation="get_connected_rooms", params=q),
            ToolCall(subsystem="world_content", operation="get_environment", params=q),
            ToolCall(subsystem="world_content", operation="get_items_in_room", params=q),
            ToolCall(subsystem="world_content", operation="get_npcs_in_room", params=q),
        ])
        room, connected, environment, items, npcs = batch.results
        return {
            "room": room["room"] if room else None,
            "connected_rooms": connected or [],
            "environment": environment or {},
            "items": items or [],
            "npcs": npcs or [],
            "errors": batch.errors,
        }

    def _dialogue_context(self, participants: List[str]) -> dict:
        calls = [ToolCall(subsystem="narrative_history", operation="get_recent_turns", params={"count": 5})]
        for name in participants:
            calls += [
                ToolCall(subsystem="entity_content", operation="get_npc_template", params={"npc_id": name}),
                ToolCall(
                    subsystem="narrative_history",
                    operation="find_interactions",
                    params={"entity1": PLAYER_ID, "entity2": name},
                ),
                ToolCall(subsystem="narrative_history", operation="get_emotional_arc", params={"character": name}),
            ]
        batch = self.execute_batch(calls)

        recent = batch.results[0] or []
        relationships = {}
        for i, name in enumerate(participants):
            template, interactions, arc = batch.results[1 + 3 * i: 4 + 3 * i]
            relationships[name] = {
                "template": template["template"] if template else None,
                "interactions": (interactions or [])[-5:],
                "emotional_arc": arc,
            }
        return {
            "participants": participants,
            "relationships": relationships,
            "recent_history": recent,
            "mood": recent[-1]["mood"] if recent else "neutral",
            "errors": batch.errors,
        }

    def _combat_context(self, participants: List[str]) -> dict:
        calls = [
            ToolCall(subsystem="world_content", operation="get_environment", params={"room_id": self._current_room()}),
            ToolCall(subsystem="mechanics", operation="get_rule_set", params={"category": "combat"}),
        ]
        for name in participants:
            calls += [
                ToolCall(subsystem="character_state", operation="get_health", params={"character_id": name}),
                ToolCall(subsystem="character_state", operation="get_conditions", params={"character_id": name}),
            ]
        batch = self.execute_batch(calls)

        combatants = {}
        for i, name in enumerate(participants):
            health, conditions = batch.results[2 + 2 * i: 4 + 2 * i]
            combatants[name] = {"health": health, "conditions": conditions or []}
        return {
            "participants": participants,
            "combatants": combatants,
            "environment": batch.results[0] or {},
            "rules": batch.results[1] or [],
            "errors": batch.errors,
        }

    def _full_context(self) -> dict:
        batch = self.execute_batch([
            ToolCall(subsystem="state", operation="get_world_state"),
            ToolCall(subsystem="state", operation="get_current_branch"),
            ToolCall(subsystem="narrative_history", operation="get_recent_turns", params={"count": 3}),
        ])
        world, branch, recent = batch.results
        room = self._room_context(world["current_room"]) if world else None
        errors = batch.errors + (room["errors"] if room else [])
        return {
            "world_state": world,
            "branch": branch["branch"] if branch else None,
            "recent_turns": recent or [],
            "room": room,
            "errors": errors,
        }

    # --- Clean slate ---

    def build_context(self, params: ContextCurationParams) -> CuratedContext:
        return self.curator.build_curated_context(params)

    def purge_context(self, context_id: Optional[str] = None) -> dict:
        result = self.curator.purge_context(context_id)
        self._emit("context_purged", **result)
        return result

    # --- Session lifecycle ---

    def resume(self) -> CompatibilityResult:
        """
        Check the save against current content, then restore the newest
        state and the transcript. A save without metadata is stamped with
        the current content hash.
        """
        current_hash = self.hasher.get_content_hash(self.config.game_path)
        saved = self.hasher.load_metadata(self.config.save_path)
        result = self.hasher.check_compatibility(current_hash, saved)

        if result.reason == CONTENT_CHANGED:
            logger.error(
                "save_incompatible",
                current_hash=current_hash[:12],
                saved_hash=(result.saved_hash or "")[:12],
            )
            self._emit("save_incompatible", current_hash=current_hash, saved_hash=result.saved_hash)
            raise IncompatibleSaveError(
                "Cannot resume this save: game content has changed since it was written",
                current_hash=current_hash,
                saved_hash=result.saved_hash or "",
            )

        self.world_state.initialize()
        commits = self.world_state.commit_store
        branch = commits.current_branch() or "HEAD"

        if result.reason == NO_SAVE_METADATA:
            metadata = self.hasher.migrate_old_save(
                self.config.save_path,
                self.config.game_path,
                game_id=self.config.game_id,
                game_version=self.config.game_version,
                engine_version=self.config.engine_version,
                last_commit=commits.head_commit or "",
                current_branch=branch,
            )
            metadata.turn_count = self.world_state.turn_count
        else:
            metadata = saved
        self.world_state.set_game_metadata(metadata)
        self.history.load()

        bind_session(metadata.game_id, branch)
        self.resumed = True
        logger.info("session_resumed", reason=result.reason, branch=branch, turn=self.world_state.turn_count)
        self._emit("resumed", reason=result.reason, branch=branch, turn_count=self.world_state.turn_count)
        return result

    def shutdown(self) -> None:
        self.history.flush()
        self.world_state.commit_store.close()
        self._emit("shutdown")
        logger.info("engine_shutdown")

    # --- Diagnostics ---

    def list_servers(self) -> List[str]:
        return self.registry.list_servers()

    def all_tools(self) -> Dict[str, List[ToolSpec]]:
        return self.registry.all_tools()

    def system_status(self) -> dict:
        return {
            "initialized": self.resumed,
            "servers": {s.name: s.get_server_info() for s in self.registry.servers()},
            "performance": {s.name: s.get_performance_metrics() for s in self.registry.servers()},
        }

    def debug_info(self) -> Dict[str, DebugInfo]:
        return {s.name: s.get_debug_info() for s in self.registry.servers()}

    def health_check(self) -> dict:
        issues = []
        if not self.resumed:
            issues.append("Session not resumed")
        servers = self.registry.servers()
        if not servers:
            issues.append("No servers registered")
        for server in servers:
            issues.extend(f"{server.name}: {w}" for w in server.get_debug_info().warnings)
        return {"healthy": not issues, "issues": issues}


def build_engine(
    config: Optional[EngineConfig] = None,
    provider: Optional[ContentProvider] = None,
    rng: Optional[random.Random] = None,
    scorer: Optional[TurnScorer] = None,
    observer: Optional[StatusObserver] = None,
) -> Orchestrator:
    """Wire every subsystem and register its operation table."""
    config = config or EngineConfig.from_env()
    provider = provider or InMemoryContentProvider()
    size = config.operation_history_size

    commit_store = CommitStore(config.save_path)
    world_state = WorldStateStore(commit_store, starting_room=config.starting_room)
    entities = EntityContent(provider, world_state)
    world = WorldContent(provider, world_state, entities)
    history = NarrativeHistory(
        transcript_path=str(Path(config.save_path) / config.transcript_file),
        ceiling=config.transcript_ceiling,
        persist_every=config.transcript_persist_every,
        scorer=scorer,
    )
    curator = ContextCurator(history, cache_ceiling=config.context_cache_ceiling)

    registry = ToolRegistry()
    registry.register_server(create_state_server(world_state, size))
    registry.register_server(create_world_content_server(world, size))
    registry.register_server(create_entity_content_server(entities, size))
    registry.register_server(create_mechanics_server(MechanicsEngine(rng), size))
    registry.register_server(create_character_server(CharacterStore(provider), size))
    registry.register_server(create_narrative_server(history, curator, size))

    logger.info("engine_built", servers=registry.list_servers(), save_path=config.save_path)
    return Orchestrator(
        config=config,
        registry=registry,
        world_state=world_state,
        history=history,
        curator=curator,
        hasher=CachedContentHasher(),
        observer=observer,
    )
