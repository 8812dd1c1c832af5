"""Tests for the Tool Registry."""

import pytest

from nengine.errors import UnknownOperation, ValidationError
from nengine.models.world import Position
from nengine.tools.registry import ToolRegistry, ToolServer, params_schema, to_payload


def _boom(params: dict):
    raise RuntimeError("exploded")


def _make_server(history_size: int = 100) -> ToolServer:
    server = ToolServer("echo", history_size=history_size)
    server.register(
        "echo", "Echo the text back",
        lambda p: {"text": p["text"]},
        params_schema(["text"], text={"type": "string"}),
    )
    server.register(
        "count", "Return the count",
        lambda p: p["n"],
        params_schema(["n"], n={"type": "integer"}),
    )
    server.register(
        "pick", "Pick a colour",
        lambda p: p["colour"],
        params_schema(["colour"], colour={"type": "string", "enum": ["red", "blue"]}),
    )
    server.register(
        "position", "Return a model",
        lambda p: Position(room="tavern"),
    )
    server.register(
        "scores", "Sum named scores",
        lambda p: sum(p["scores"].values()),
        params_schema(["scores"], scores={"type": "object", "additionalProperties": {"type": "integer"}}),
    )
    server.register(
        "place", "Build a position from raw input",
        lambda p: Position(room=p["room"]),
    )
    server.register("fail", "Always fails", _boom)
    return server


class TestToolServer:
    def setup_method(self):
        self.server = _make_server()

    def test_execute_returns_handler_result(self):
        assert self.server.execute("echo", {"text": "hi"}) == {"text": "hi"}

    def test_model_results_become_plain_data(self):
        result = self.server.execute("position")
        assert result == {"room": "tavern", "container": None, "worn": None, "coordinates": None}

    def test_unknown_operation(self):
        with pytest.raises(UnknownOperation):
            self.server.execute("nope", {})

    def test_missing_required_parameter(self):
        with pytest.raises(ValidationError, match="text"):
            self.server.execute("echo", {})

    def test_wrong_type_rejected(self):
        with pytest.raises(ValidationError):
            self.server.execute("echo", {"text": 5})

    def test_bool_is_not_an_integer(self):
        with pytest.raises(ValidationError):
            self.server.execute("count", {"n": True})

    def test_enum_values_enforced(self):
        assert self.server.execute("pick", {"colour": "red"}) == "red"
        with pytest.raises(ValidationError):
            self.server.execute("pick", {"colour": "green"})

    def test_typed_map_values_checked(self):
        assert self.server.execute("scores", {"scores": {"a": 2, "b": 3}}) == 5
        with pytest.raises(ValidationError, match="integer"):
            self.server.execute("scores", {"scores": {"a": "high"}})
        with pytest.raises(ValidationError):
            self.server.execute("scores", {"scores": {"a": True}})

    def test_model_errors_in_handler_become_validation_errors(self):
        with pytest.raises(ValidationError, match="place") as excinfo:
            self.server.execute("place", {"room": 5})
        assert excinfo.value.__cause__ is not None
        assert self.server.operations[-1].error.startswith("ValidationError:")

    def test_failure_is_recorded_and_reraised(self):
        with pytest.raises(RuntimeError, match="exploded"):
            self.server.execute("fail", {})

        last = self.server.operations[-1]
        assert last.method == "fail"
        assert last.result is None
        assert last.error == "RuntimeError: exploded"

    def test_validation_failure_is_recorded(self):
        with pytest.raises(ValidationError):
            self.server.execute("echo", {})
        assert self.server.operations[-1].error.startswith("ValidationError")

    def test_success_is_recorded_with_timing(self):
        self.server.execute("echo", {"text": "hi"})
        record = self.server.operations[-1]
        assert record.method == "echo"
        assert record.params == {"text": "hi"}
        assert record.result == {"text": "hi"}
        assert record.error is None
        assert record.duration_ms >= 0

    def test_ring_buffer_keeps_last_operations(self):
        for i in range(150):
            self.server.execute("count", {"n": i})
        ops = self.server.operations
        assert len(ops) == 100
        assert ops[0].result == 50
        assert ops[-1].result == 149

    def test_ring_buffer_never_below_one_hundred(self):
        server = _make_server(history_size=10)
        for i in range(120):
            server.execute("count", {"n": i})
        assert len(server.operations) == 100

    def test_duplicate_registration_rejected(self):
        with pytest.raises(ValueError):
            self.server.register("echo", "again", lambda p: None)

    def test_performance_metrics(self):
        self.server.execute("echo", {"text": "a"})
        with pytest.raises(RuntimeError):
            self.server.execute("fail", {})
        metrics = self.server.get_performance_metrics()
        assert metrics["total_operations"] == 2
        assert metrics["failed_operations"] == 1

    def test_debug_info_uses_probes(self):
        server = ToolServer(
            "probed",
            state_probe=lambda: {"size": 3},
            warnings_probe=lambda: ["low on space"],
        )
        info = server.get_debug_info()
        assert info.server_name == "probed"
        assert info.current_state == {"size": 3}
        assert info.warnings == ["low on space"]

    def test_required_listed_on_spec(self):
        assert self.server.get_spec("echo").required == ["text"]


class TestToolRegistry:
    def setup_method(self):
        self.registry = ToolRegistry()
        self.registry.register_server(_make_server())

    def test_routes_to_server(self):
        assert self.registry.execute("echo", "echo", {"text": "x"}) == {"text": "x"}

    def test_unknown_subsystem(self):
        with pytest.raises(UnknownOperation, match="not found"):
            self.registry.execute("missing", "echo", {})

    def test_duplicate_server_rejected(self):
        with pytest.raises(ValueError):
            self.registry.register_server(_make_server())

    def test_all_tools(self):
        tools = self.registry.all_tools()
        assert list(tools) == ["echo"]
        assert {t.name for t in tools["echo"]} == {"echo", "count", "pick", "position", "fail"}


def test_to_payload_recurses():
    data = to_payload({"where": [Position(room="a")], "n": 1})
    assert data["where"][0]["room"] == "a"
    assert data["n"] == 1
