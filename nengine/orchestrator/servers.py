"""
Operation tables — one ToolServer per subsystem, built once at startup.

Each table maps an operation name to a parameter schema and a handler
that unpacks the params dict into the owning service's method.
"""

from typing import Any, Callable, Optional

from nengine.characters.store import EQUIP_SLOTS, HEALTH_CHANGE_TYPES, CharacterStore
from nengine.content.entities import EntityContent
from nengine.content.world import WorldContent
from nengine.mechanics.engine import ATTACK_DAMAGE, MechanicsEngine
from nengine.models.characters import Condition
from nengine.models.narrative import (
    ContextCurationParams,
    Importance,
    InteractionType,
    SummaryFocus,
    TimeRange,
    TurnInput,
)
from nengine.models.world import Position
from nengine.narrative.curator import ContextCurator
from nengine.narrative.history import NarrativeHistory
from nengine.tools.registry import ToolServer, params_schema, parse_model
from nengine.world_state.store import WorldStateStore

STRING = {"type": "string"}
INTEGER = {"type": "integer"}
OBJECT = {"type": "object"}
INT_MAP = {"type": "object", "additionalProperties": INTEGER}
STR_MAP = {"type": "object", "additionalProperties": STRING}
ARRAY = {"type": "array"}
ANY = {}


def _enum(values) -> dict:
    return {"type": "string", "enum": [getattr(v, "value", v) for v in values]}


def _success(**extra) -> dict:
    return {"success": True, **extra}


def _ack(command: Callable[[dict], Any]) -> Callable[[dict], dict]:
    """Handler for a command with no result of its own."""

    def handler(params: dict) -> dict:
        command(params)
        return _success()

    return handler


def create_state_server(store: WorldStateStore, history_size: int = 100) -> ToolServer:
    server = ToolServer(
        "state",
        capabilities=["state-management", "versioning", "branching"],
        history_size=history_size,
        state_probe=store.debug_state,
        warnings_probe=store.warnings,
    )
    commits = store.commit_store

    # Version control
    server.register(
        "get_current_branch", "Name of the checked-out branch",
        lambda p: {"branch": commits.current_branch()},
    )
    server.register(
        "get_branches", "All branch names",
        lambda p: commits.list_branches(),
    )
    server.register(
        "switch_branch", "Check out a branch and reload its newest state",
        _ack(lambda p: store.switch_branch(p["branch"])),
        params_schema(["branch"], branch=STRING),
    )
    server.register(
        "create_branch", "Fork a new branch and check it out",
        _ack(lambda p: store.create_branch(p["name"], p.get("from_commit"))),
        params_schema(["name"], name=STRING, from_commit=STRING),
    )
    server.register(
        "cherry_pick", "Replay snapshot files from other commits onto this branch",
        lambda p: _success(commits=store.cherry_pick(p["commits"])),
        params_schema(["commits"], commits=ARRAY),
    )
    server.register(
        "save_state", "Checkpoint the world into a new commit",
        lambda p: {"commit": store.save_state(p["message"])},
        params_schema(["message"], message=STRING),
        returns={"type": "object", "properties": {"commit": STRING}},
    )
    server.register(
        "load_state", "Restore the newest snapshot, optionally at a commit or branch",
        lambda p: _success(restored=store.load_state(p.get("commit_or_branch"))),
        params_schema(commit_or_branch=STRING),
    )
    server.register(
        "get_history", "Commits newest first",
        lambda p: store.get_history(p.get("branch"), p.get("limit", 10)),
        params_schema(branch=STRING, limit=INTEGER),
    )
    server.register(
        "get_diff", "Files changed between two commits",
        lambda p: commits.get_diff(p["from"], p["to"]),
        params_schema(["from", "to"], **{"from": STRING, "to": STRING}),
    )

    # Positions and inventories
    server.register(
        "get_entity_position", "Where an entity is",
        lambda p: store.get_entity_position(p["entity_id"]),
        params_schema(["entity_id"], entity_id=STRING),
    )
    server.register(
        "move_entity", "Set an entity's position",
        _ack(lambda p: store.move_entity(p["entity_id"], parse_model(Position, p["to"]))),
        params_schema(["entity_id", "to"], entity_id=STRING, to=OBJECT),
    )
    server.register(
        "entities_in_room", "Entities positioned in a room",
        lambda p: store.entities_in_room(p["room_id"]),
        params_schema(["room_id"], room_id=STRING),
    )
    server.register(
        "get_inventory", "Items held by an entity",
        lambda p: store.get_inventory(p["entity_id"]),
        params_schema(["entity_id"], entity_id=STRING),
    )
    server.register(
        "add_to_inventory", "Give an item to an entity",
        _ack(lambda p: store.add_to_inventory(p["entity_id"], p["item_id"])),
        params_schema(["entity_id", "item_id"], entity_id=STRING, item_id=STRING),
    )
    server.register(
        "transfer_item", "Move an item between two inventories",
        _ack(lambda p: store.transfer_item(p["item_id"], p["from"], p["to"])),
        params_schema(["item_id", "from", "to"], item_id=STRING, **{"from": STRING, "to": STRING}),
    )

    # Free-form state
    server.register(
        "get_room_state", "Per-room state",
        lambda p: store.get_room_state(p["room_id"]),
        params_schema(["room_id"], room_id=STRING),
    )
    server.register(
        "modify_room_state", "Shallow-merge changes into a room's state",
        _ack(lambda p: store.modify_room_state(p["room_id"], p["changes"])),
        params_schema(["room_id", "changes"], room_id=STRING, changes=OBJECT),
    )
    server.register(
        "get_entity_state", "Per-entity state",
        lambda p: store.get_entity_state(p["entity_id"]),
        params_schema(["entity_id"], entity_id=STRING),
    )
    server.register(
        "modify_entity_state", "Shallow-merge changes into an entity's state",
        _ack(lambda p: store.modify_entity_state(p["entity_id"], p["changes"])),
        params_schema(["entity_id", "changes"], entity_id=STRING, changes=OBJECT),
    )

    # World root
    server.register(
        "get_world_state", "Current room, party, clock, flags and dynamic entities",
        lambda p: store.get_world_state(),
    )
    server.register(
        "get_flag", "Read a flag",
        lambda p: {"flag": p["flag"], "value": store.get_flag(p["flag"])},
        params_schema(["flag"], flag=STRING),
    )
    server.register(
        "set_flag", "Write a flag",
        _ack(lambda p: store.set_flag(p["flag"], p.get("value"))),
        params_schema(["flag"], flag=STRING, value=ANY),
    )
    server.register(
        "add_to_party", "Add an entity to the party in the current room",
        _ack(lambda p: store.add_to_party(p["entity_id"])),
        params_schema(["entity_id"], entity_id=STRING),
    )
    server.register(
        "remove_from_party", "Remove an entity from the party",
        _ack(lambda p: store.remove_from_party(p["entity_id"])),
        params_schema(["entity_id"], entity_id=STRING),
    )
    server.register(
        "set_current_room", "Move the whole party to a room",
        _ack(lambda p: store.set_current_room(p["room_id"])),
        params_schema(["room_id"], room_id=STRING),
    )
    server.register(
        "advance_time", "Advance the game clock",
        lambda p: store.advance_time(p["minutes"]),
        params_schema(["minutes"], minutes=INTEGER),
    )
    return server


def create_world_content_server(world: WorldContent, history_size: int = 100) -> ToolServer:
    server = ToolServer(
        "world_content",
        capabilities=["rooms", "environment", "dynamic-rooms"],
        history_size=history_size,
        state_probe=world.debug_state,
        warnings_probe=world.warnings,
    )
    room_id = params_schema(["room_id"], room_id=STRING)

    server.register(
        "get_room", "Room definition by id",
        lambda p: {"room": world.get_room(p["room_id"])}, room_id,
    )
    server.register(
        "get_rooms_in_region", "Rooms whose region property matches",
        lambda p: world.get_rooms_in_region(p["region"]),
        params_schema(["region"], region=STRING),
    )
    server.register(
        "get_connected_rooms", "Exit and hidden-exit targets",
        lambda p: world.get_connected_rooms(p["room_id"]), room_id,
    )
    server.register(
        "create_dynamic_room", "Create a room during play",
        lambda p: {"entity_id": world.create_dynamic_room(
            parent_room=p["parent_room"],
            type=p["type"],
            name=p["name"],
            description=p.get("description", ""),
            connections=p.get("connections"),
        )},
        params_schema(
            ["parent_room", "type", "name"],
            parent_room=STRING,
            type=_enum(["hidden", "temporary", "discovered"]),
            name=STRING,
            description=STRING,
            connections=STR_MAP,
        ),
    )
    server.register(
        "get_items_in_room", "Items positioned in a room",
        lambda p: world.get_items_in_room(p["room_id"]), room_id,
    )
    server.register(
        "get_npcs_in_room", "NPCs positioned in a room",
        lambda p: world.get_npcs_in_room(p["room_id"]), room_id,
    )
    server.register(
        "get_lighting", "Lighting level: dark, dim, normal or bright",
        lambda p: world.get_lighting(p["room_id"]), room_id,
    )
    server.register(
        "get_environment", "Temperature, hazards, sounds and smells",
        lambda p: world.get_environment(p["room_id"]), room_id,
    )
    return server


def create_entity_content_server(entities: EntityContent, history_size: int = 100) -> ToolServer:
    server = ToolServer(
        "entity_content",
        capabilities=["npcs", "items", "dynamic-entities"],
        history_size=history_size,
        state_probe=entities.debug_state,
        warnings_probe=entities.warnings,
    )
    server.register(
        "get_npc_template", "NPC template by id",
        lambda p: {"template": entities.get_npc_template(p["npc_id"])},
        params_schema(["npc_id"], npc_id=STRING),
    )
    server.register(
        "get_all_npcs", "Every NPC template, static then dynamic",
        lambda p: entities.get_all_npcs(),
    )
    server.register(
        "get_item_template", "Item template by id",
        lambda p: {"template": entities.get_item_template(p["item_id"])},
        params_schema(["item_id"], item_id=STRING),
    )
    server.register(
        "search_items", "Item templates matching type, name and properties",
        lambda p: entities.search_items(p.get("type"), p.get("name"), p.get("properties")),
        params_schema(type=STRING, name=STRING, properties=OBJECT),
    )
    server.register(
        "create_dynamic_npc", "Create and place an NPC during play",
        lambda p: {"entity_id": entities.create_dynamic_npc(
            name=p["name"],
            spawn=parse_model(Position, p["spawn"]),
            role=p.get("role", ""),
            personality=p.get("personality"),
            base_template=p.get("base_template"),
        )},
        params_schema(
            ["name", "spawn"],
            name=STRING, spawn=OBJECT, role=STRING, personality=OBJECT, base_template=STRING,
        ),
    )
    server.register(
        "create_dynamic_item", "Create and place an item during play",
        lambda p: {"entity_id": entities.create_dynamic_item(
            name=p["name"],
            position=parse_model(Position, p["position"]),
            properties=p.get("properties"),
            base_template=p.get("base_template"),
        )},
        params_schema(
            ["name", "position"],
            name=STRING, position=OBJECT, properties=OBJECT, base_template=STRING,
        ),
    )
    return server


def create_mechanics_server(engine: MechanicsEngine, history_size: int = 100) -> ToolServer:
    server = ToolServer(
        "mechanics",
        capabilities=["dice", "skill-checks", "combat", "rules"],
        history_size=history_size,
        state_probe=engine.debug_state,
    )
    server.register(
        "roll", "Roll dice in NdS+M notation",
        lambda p: engine.roll(p["dice"]),
        params_schema(["dice"], dice=STRING),
    )
    server.register(
        "roll_with_advantage", "Roll twice and keep the higher or lower total",
        lambda p: engine.roll_with_advantage(p["dice"], p.get("type", "advantage")),
        params_schema(["dice"], dice=STRING, type=_enum(["advantage", "disadvantage"])),
    )
    server.register(
        "perform_skill_check", "d20 plus modifiers against a difficulty",
        lambda p: engine.perform_skill_check(
            p["character"], p["skill"], p["difficulty"], p.get("modifiers"),
        ),
        params_schema(
            ["character", "skill", "difficulty"],
            character=STRING, skill=STRING, difficulty=INTEGER, modifiers=INT_MAP,
        ),
    )
    server.register(
        "resolve_attack", "Roll to hit and for damage",
        lambda p: engine.resolve_attack(
            p["attacker"], p["defender"], p.get("type", "melee"), p.get("weapon"),
        ),
        params_schema(
            ["attacker", "defender"],
            attacker=STRING, defender=STRING, type=_enum(ATTACK_DAMAGE), weapon=STRING,
        ),
    )
    server.register(
        "can_perform_action", "Whether an action is permitted and what it requires",
        lambda p: engine.can_perform_action(p["actor"], p["action"], p.get("target")),
        params_schema(["actor", "action"], actor=STRING, action=STRING, target=STRING),
    )
    server.register(
        "get_rule_set", "Rules in a category",
        lambda p: engine.get_rule_set(p["category"]),
        params_schema(["category"], category=STRING),
    )
    server.register(
        "get_skill_definition", "Attribute and difficulty ladder for a skill",
        lambda p: engine.get_skill_definition(p["skill"]),
        params_schema(["skill"], skill=STRING),
    )
    return server


def create_character_server(characters: CharacterStore, history_size: int = 100) -> ToolServer:
    server = ToolServer(
        "character_state",
        capabilities=["stats", "health", "equipment", "conditions", "progression"],
        history_size=history_size,
        state_probe=characters.debug_state,
    )
    character_id = params_schema(["character_id"], character_id=STRING)

    server.register(
        "create_character", "Create a character sheet",
        lambda p: _success(character=characters.create_character(
            p["character_id"], p["name"], p.get("template_id"), p.get("stats"),
        )),
        params_schema(
            ["character_id", "name"],
            character_id=STRING, name=STRING, template_id=STRING, stats=INT_MAP,
        ),
    )
    server.register(
        "get_character", "Full character sheet",
        lambda p: characters.get_character(p["character_id"]), character_id,
    )
    server.register(
        "get_character_stats", "Ability scores",
        lambda p: characters.get_character_stats(p["character_id"]), character_id,
    )
    server.register(
        "modify_character_stats", "Set ability scores (clamped 1-30)",
        lambda p: characters.modify_character_stats(p["character_id"], p["changes"]),
        params_schema(["character_id", "changes"], character_id=STRING, changes=INT_MAP),
    )
    server.register(
        "get_health", "Current, maximum and temporary hit points",
        lambda p: characters.get_health(p["character_id"]), character_id,
    )
    server.register(
        "modify_health", "Apply healing, damage or temporary hit points",
        lambda p: characters.modify_health(p["character_id"], p["amount"], p["type"]),
        params_schema(
            ["character_id", "amount", "type"],
            character_id=STRING, amount=INTEGER, type=_enum(HEALTH_CHANGE_TYPES),
        ),
    )
    server.register(
        "add_condition", "Add or replace a condition",
        _ack(lambda p: characters.add_condition(
            p["character_id"], parse_model(Condition, p["condition"]),
        )),
        params_schema(["character_id", "condition"], character_id=STRING, condition=OBJECT),
    )
    server.register(
        "remove_condition", "Remove a condition by name",
        lambda p: {"success": characters.remove_condition(p["character_id"], p["name"])},
        params_schema(["character_id", "name"], character_id=STRING, name=STRING),
    )
    server.register(
        "get_conditions", "Active conditions",
        lambda p: characters.get_conditions(p["character_id"]), character_id,
    )
    server.register(
        "update_condition_durations", "Tick conditions down and expire them",
        lambda p: _success(expired_conditions=characters.update_condition_durations(
            p["character_id"], p["time_units"],
        )),
        params_schema(["character_id", "time_units"], character_id=STRING, time_units=INTEGER),
    )
    server.register(
        "equip_item", "Equip an item, auto-detecting the slot if omitted",
        lambda p: characters.equip_item(p["character_id"], p["item_id"], p.get("slot")),
        params_schema(
            ["character_id", "item_id"],
            character_id=STRING, item_id=STRING, slot=_enum(EQUIP_SLOTS),
        ),
    )
    server.register(
        "unequip_item", "Move an equipped item back to the pack",
        lambda p: characters.unequip_item(p["character_id"], p["slot"]),
        params_schema(["character_id", "slot"], character_id=STRING, slot=_enum(EQUIP_SLOTS)),
    )
    server.register(
        "get_inventory", "Carried, unequipped items",
        lambda p: characters.get_inventory(p["character_id"]), character_id,
    )
    server.register(
        "add_experience", "Grant experience, levelling up every 100 XP",
        lambda p: characters.add_experience(p["character_id"], p["amount"], p.get("reason")),
        params_schema(
            ["character_id", "amount"],
            character_id=STRING, amount=INTEGER, reason=STRING,
        ),
    )
    server.register(
        "level_up", "Apply level-up stat increases",
        lambda p: characters.level_up(p["character_id"], p.get("stat_increases")),
        params_schema(["character_id"], character_id=STRING, stat_increases=INT_MAP),
    )
    return server


def create_narrative_server(
    history: NarrativeHistory,
    curator: ContextCurator,
    history_size: int = 100,
) -> ToolServer:
    server = ToolServer(
        "narrative_history",
        capabilities=["transcript", "search", "clean-slate-context"],
        history_size=history_size,
        state_probe=lambda: {**history.debug_state(), **curator.debug_state()},
        warnings_probe=lambda: history.warnings() + curator.warnings(),
    )

    def record_turn(p: dict) -> dict:
        record = history.record_turn(parse_model(TurnInput, p["turn"]))
        return _success(turn_id=record.id, turn_number=record.turn_number)

    def search_transcript(p: dict):
        time_range: Optional[TimeRange] = None
        if p.get("time_range") is not None:
            time_range = parse_model(TimeRange, p["time_range"])
        return history.search_transcript(
            p["query"], p.get("max_results", 10), p.get("entity_filter"), time_range,
        )

    server.register(
        "record_turn", "Append a resolved turn to the transcript",
        record_turn,
        params_schema(["turn"], turn=OBJECT),
    )
    server.register(
        "search_transcript", "Turns containing the query, by relevance",
        search_transcript,
        params_schema(
            ["query"],
            query=STRING, max_results=INTEGER, entity_filter=STRING, time_range=OBJECT,
        ),
    )
    server.register(
        "get_recent_turns", "The last N turns",
        lambda p: history.get_recent_turns(p.get("count", 5)),
        params_schema(count=INTEGER),
    )
    server.register(
        "find_interactions", "Turns where two entities appear together",
        lambda p: history.find_interactions(
            p["entity1"], p["entity2"],
            InteractionType(p["interaction_type"]) if p.get("interaction_type") else None,
        ),
        params_schema(
            ["entity1", "entity2"],
            entity1=STRING, entity2=STRING, interaction_type=_enum(InteractionType),
        ),
    )
    server.register(
        "generate_summary", "Plain-text digest of a turn range",
        lambda p: history.generate_summary(
            p["from_turn"], p["to_turn"], SummaryFocus(p.get("focus", "general")),
        ),
        params_schema(
            ["from_turn", "to_turn"],
            from_turn=INTEGER, to_turn=INTEGER, focus=_enum(SummaryFocus),
        ),
    )
    server.register(
        "extract_key_events", "A character's most important turns",
        lambda p: history.extract_key_events(
            p["character"], Importance(p["importance"]) if p.get("importance") else None,
        ),
        params_schema(["character"], character=STRING, importance=_enum(Importance)),
    )
    server.register(
        "get_emotional_arc", "Emotion samples and trajectory for a character",
        lambda p: history.get_emotional_arc(p["character"]),
        params_schema(["character"], character=STRING),
    )
    server.register(
        "build_curated_context", "Research and synthesize a token-bounded context",
        lambda p: curator.build_curated_context(parse_model(ContextCurationParams, p["params"])),
        params_schema(["params"], params=OBJECT),
    )
    server.register(
        "purge_context", "Discard one cached context, or all of them",
        lambda p: curator.purge_context(p.get("context_id")),
        params_schema(context_id=STRING),
    )
    server.register(
        "get_full_transcript", "Transcript as JSON or text",
        lambda p: history.get_full_transcript(p.get("from_turn"), p.get("format", "json")),
        params_schema(from_turn=INTEGER, format=_enum(["json", "text"])),
    )
    return server
