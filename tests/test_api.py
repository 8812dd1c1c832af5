"""Tests for the FastAPI API endpoints."""

import random

import pytest
from fastapi.testclient import TestClient

from nengine.api.app import create_app, status_for
from nengine.content.provider import InMemoryContentProvider
from nengine.errors import (
    EngineError,
    IncompatibleSaveError,
    ItemNotFound,
    PersistenceError,
    UnknownOperation,
    ValidationError,
)
from nengine.models.config import EngineConfig
from nengine.orchestrator.manager import build_engine

CONTENT = {
    "rooms": [
        {"id": "tavern", "name": "The Prancing Pony", "exits": {"north": "street"}},
        {"id": "street", "name": "Main Street"},
    ],
    "npcs": [{"id": "grimwald", "name": "Grimwald"}],
    "items": [{"id": "sword", "name": "Iron Sword", "type": "weapon"}],
}


def _make_game(root) -> None:
    (root / "content").mkdir(parents=True, exist_ok=True)
    (root / "game.yaml").write_text("title: The Sunken Keep\n")
    (root / "content" / "items.yaml").write_text("items: []\n")


@pytest.fixture
def game_dirs(tmp_path):
    _make_game(tmp_path / "game")
    return tmp_path


def _make_client(root) -> TestClient:
    config = EngineConfig(
        game_path=str(root / "game"),
        save_path=str(root / "save"),
        starting_room="tavern",
        game_id="sunken-keep",
    )
    engine = build_engine(
        config,
        provider=InMemoryContentProvider.from_dict(CONTENT),
        rng=random.Random(1),
    )
    return TestClient(create_app(orchestrator=engine, run_flusher=False))


@pytest.fixture
def client(game_dirs):
    with _make_client(game_dirs) as c:
        yield c


class TestToolEndpoints:
    def test_execute_by_path(self, client):
        response = client.post("/tools/world_content/get_room", json={"room_id": "tavern"})
        assert response.status_code == 200
        assert response.json()["result"]["room"]["name"] == "The Prancing Pony"

    def test_execute_envelope(self, client):
        response = client.post("/tools", json={
            "subsystem": "mechanics",
            "operation": "roll",
            "params": {"dice": "2d6"},
        })
        assert response.status_code == 200
        assert len(response.json()["result"]["rolls"]) == 2

    def test_unknown_operation_is_404(self, client):
        response = client.post("/tools/state/teleport", json={})
        assert response.status_code == 404
        assert "error" in response.json()

    def test_unknown_subsystem_is_404(self, client):
        response = client.post("/tools/weather/forecast", json={})
        assert response.status_code == 404

    def test_missing_parameter_is_422(self, client):
        response = client.post("/tools/mechanics/roll", json={})
        assert response.status_code == 422
        assert "dice" in response.json()["error"]

    def test_non_integer_stat_change_is_422(self, client):
        client.post("/tools/character_state/create_character", json={"character_id": "hero", "name": "Hero"})
        response = client.post("/tools/character_state/modify_character_stats", json={
            "character_id": "hero", "changes": {"strength": "high"},
        })
        assert response.status_code == 422
        assert "changes" in response.json()["error"]

    def test_non_string_room_connection_is_422(self, client):
        response = client.post("/tools/world_content/create_dynamic_room", json={
            "parent_room": "tavern", "type": "hidden", "name": "Cellar", "connections": {"n": 5},
        })
        assert response.status_code == 422
        assert "connections" in response.json()["error"]

    def test_missing_entity_is_404(self, client):
        response = client.post("/tools/state/transfer_item", json={
            "item_id": "sword", "from": "player", "to": "grimwald",
        })
        assert response.status_code == 404

    def test_state_round_trip(self, client):
        client.post("/tools/state/add_to_inventory", json={"entity_id": "player", "item_id": "sword"})
        saved = client.post("/tools/state/save_state", json={"message": "Picked up sword"})
        assert saved.status_code == 200
        commit = saved.json()["result"]["commit"]

        history = client.post("/tools/state/get_history", json={}).json()["result"]
        assert history[0]["hash"] == commit
        assert history[0]["message"] == "Picked up sword"

    def test_batch(self, client):
        response = client.post("/tools/batch", json={"calls": [
            {"subsystem": "state", "operation": "get_current_branch"},
            {"subsystem": "state", "operation": "get_entity_position", "params": {"entity_id": "ghost"}},
        ]})
        assert response.status_code == 200
        data = response.json()
        assert data["results"][0] == {"branch": "main"}
        assert data["results"][1] is None
        assert data["errors"][0].startswith("state.get_entity_position:")

    def test_list_tools_and_servers(self, client):
        assert "mechanics" in client.get("/servers").json()
        tools = client.get("/tools").json()
        assert any(t["name"] == "roll" for t in tools["mechanics"])


class TestContextEndpoints:
    def test_room_context(self, client):
        response = client.post("/context/room", json={})
        assert response.status_code == 200
        assert response.json()["data"]["room"]["id"] == "tavern"

    def test_unknown_context_kind(self, client):
        assert client.post("/context/weather", json={}).status_code == 422

    def test_curated_context_lifecycle(self, client):
        created = client.post("/curated-context", json={
            "current_action": "look around",
            "location": "tavern",
            "max_tokens": 400,
        })
        assert created.status_code == 200
        context_id = created.json()["context_id"]

        purged = client.delete("/curated-context", params={"context_id": context_id})
        assert purged.json() == {"success": True, "purged_count": 1}
        assert client.delete("/curated-context").json()["purged_count"] == 0

    def test_curated_context_rejects_bad_budget(self, client):
        response = client.post("/curated-context", json={
            "current_action": "look", "location": "tavern", "max_tokens": 0,
        })
        assert response.status_code == 422


class TestSessionEndpoints:
    def test_resume_then_health(self, client):
        assert client.get("/health").json()["healthy"] is False

        response = client.post("/session/resume")
        assert response.status_code == 200
        assert response.json()["reason"] == "no_save_metadata"
        assert "Session not resumed" not in client.get("/health").json()["issues"]

    def test_incompatible_save_is_409(self, game_dirs):
        with _make_client(game_dirs) as first:
            assert first.post("/session/resume").status_code == 200

        (game_dirs / "game" / "content" / "items.yaml").write_text("items: [shield]\n")
        with _make_client(game_dirs) as second:
            response = second.post("/session/resume")
            assert response.status_code == 409
            assert "content has changed" in response.json()["error"]

    def test_status_and_diagnostics(self, client):
        client.post("/tools/mechanics/roll", json={"dice": "1d20"})
        status = client.get("/status").json()
        assert status["performance"]["mechanics"]["total_operations"] == 1

        diagnostics = client.get("/diagnostics").json()
        assert diagnostics["mechanics"]["last_operations"][0]["method"] == "roll"


class TestErrorMapping:
    @pytest.mark.parametrize("error, status", [
        (UnknownOperation("x"), 404),
        (ItemNotFound("x"), 404),
        (ValidationError("x"), 422),
        (IncompatibleSaveError("x"), 409),
        (PersistenceError("x"), 500),
        (EngineError("x"), 500),
    ])
    def test_status_for(self, error, status):
        assert status_for(error) == status
