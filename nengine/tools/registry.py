"""
Tool Registry — the uniform tool-call contract.

Every subsystem exposes its operations as a ToolServer: a table of named
operations, each with a parameter schema, a return schema and a handler.
The table is built once at startup; dispatch is a dictionary lookup.

Behavioral Contract:
- Unknown operation names raise UnknownOperation.
- Parameters are validated against the declared schema before dispatch.
- Model validation failures inside a handler surface as ValidationError.
- Every invocation is timed and kept in a bounded ring buffer.
- Failures are recorded with an error payload and re-raised. The registry
  observes errors, it never swallows them.
"""

import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Type

import pydantic
import structlog
from pydantic import BaseModel

from nengine.errors import UnknownOperation, ValidationError
from nengine.models.tools import DebugInfo, OperationRecord, ServerInfo, ToolSpec

logger = structlog.get_logger(__name__)

Handler = Callable[[dict], Any]

_JSON_TYPES = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}

_MAP_VALUES = {
    "integer": pydantic.TypeAdapter(Dict[str, pydantic.StrictInt]),
    "string": pydantic.TypeAdapter(Dict[str, pydantic.StrictStr]),
}


def now_ms() -> int:
    return int(time.time() * 1000)


def to_payload(value: Any) -> Any:
    """Convert handler output into JSON-compatible data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    if isinstance(value, dict):
        return {k: to_payload(v) for k, v in value.items()}
    return value


def parse_model(model: Type[BaseModel], data: Any) -> BaseModel:
    """Validate tool input into a model, reporting failures as ValidationError."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid {model.__name__}: {e.errors()[0]['msg']}") from e


def validate_params(spec: ToolSpec, params: dict) -> None:
    """Check required fields and declared primitive types."""
    missing = [name for name in spec.required if params.get(name) is None]
    if missing:
        raise ValidationError(
            f"Missing required parameter(s) for '{spec.name}': {', '.join(missing)}"
        )

    properties = spec.parameters.get("properties", {})
    for name, value in params.items():
        prop = properties.get(name)
        if prop is None or value is None:
            continue
        expected = _JSON_TYPES.get(prop.get("type", ""))
        if expected is None:
            continue
        is_bool = isinstance(value, bool)
        if not isinstance(value, expected) or (is_bool and prop["type"] in ("number", "integer")):
            raise ValidationError(
                f"Parameter '{name}' of '{spec.name}' must be of type {prop['type']}"
            )
        allowed = prop.get("enum")
        if allowed and value not in allowed:
            raise ValidationError(
                f"Parameter '{name}' of '{spec.name}' must be one of: {', '.join(allowed)}"
            )
        values = prop.get("additionalProperties", {}).get("type")
        if values in _MAP_VALUES:
            try:
                _MAP_VALUES[values].validate_python(value)
            except pydantic.ValidationError as e:
                raise ValidationError(
                    f"Parameter '{name}' of '{spec.name}' must map names to {values} values"
                ) from e


def params_schema(required: Optional[List[str]] = None, **properties: dict) -> dict:
    """Shorthand for an object parameter schema."""
    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(required)
    return schema


class ToolServer:
    """
    A named collection of operations owned by one subsystem.
    Subsystems populate it once; callers only ever go through execute().
    """

    def __init__(
        self,
        name: str,
        version: str = "1.0.0",
        capabilities: Optional[List[str]] = None,
        history_size: int = 100,
        state_probe: Optional[Callable[[], dict]] = None,
        warnings_probe: Optional[Callable[[], List[str]]] = None,
    ):
        self.name = name
        self.version = version
        self.capabilities = capabilities or []
        self._specs: Dict[str, ToolSpec] = {}
        self._handlers: Dict[str, Handler] = {}
        self._operations: Deque[OperationRecord] = deque(maxlen=max(100, history_size))
        self._state_probe = state_probe
        self._warnings_probe = warnings_probe

    def register(
        self,
        name: str,
        description: str,
        handler: Handler,
        parameters: Optional[dict] = None,
        returns: Optional[dict] = None,
    ) -> ToolSpec:
        """Add an operation to the table."""
        if name in self._specs:
            raise ValueError(f"Operation '{name}' already registered on '{self.name}'")
        spec = ToolSpec(
            name=name,
            description=description,
            parameters=parameters or params_schema(),
            returns=returns or {},
        )
        self._specs[name] = spec
        self._handlers[name] = handler
        return spec

    def list_tools(self) -> List[ToolSpec]:
        return list(self._specs.values())

    def get_spec(self, name: str) -> ToolSpec:
        spec = self._specs.get(name)
        if spec is None:
            raise UnknownOperation(
                f"Tool '{name}' not found on '{self.name}'. "
                f"Available tools: {', '.join(self._specs)}"
            )
        return spec

    def execute(self, name: str, params: Optional[dict] = None) -> Any:
        """Validate, invoke, time and record one operation."""
        spec = self.get_spec(name)
        params = params or {}
        started_at = now_ms()
        start = time.monotonic()

        try:
            validate_params(spec, params)
            try:
                result = to_payload(self._handlers[name](params))
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid parameters for '{name}': {e.errors()[0]['msg']}") from e
        except Exception as e:
            duration = (time.monotonic() - start) * 1000
            self._record(started_at, name, params, None, f"{type(e).__name__}: {e}", duration)
            logger.warning(
                "tool_failed",
                server=self.name,
                tool=name,
                error=str(e),
                duration_ms=round(duration, 3),
            )
            raise

        duration = (time.monotonic() - start) * 1000
        self._record(started_at, name, params, result, None, duration)
        logger.debug("tool_completed", server=self.name, tool=name, duration_ms=round(duration, 3))
        return result

    def _record(
        self,
        timestamp: int,
        method: str,
        params: dict,
        result: Any,
        error: Optional[str],
        duration_ms: float,
    ) -> None:
        self._operations.append(OperationRecord(
            timestamp=timestamp,
            method=method,
            params=to_payload(params),
            result=result,
            error=error,
            duration_ms=round(duration_ms, 3),
        ))

    @property
    def operations(self) -> List[OperationRecord]:
        """Recorded invocations, oldest first."""
        return list(self._operations)

    def get_server_info(self) -> ServerInfo:
        return ServerInfo(name=self.name, version=self.version, capabilities=self.capabilities)

    def get_debug_info(self, last: int = 10) -> DebugInfo:
        return DebugInfo(
            server_name=self.name,
            last_operations=self.operations[-last:],
            current_state=self._state_probe() if self._state_probe else {},
            warnings=self._warnings_probe() if self._warnings_probe else [],
        )

    def get_performance_metrics(self) -> dict:
        ops = self._operations
        total = len(ops)
        average = sum(op.duration_ms for op in ops) / total if total else 0.0
        return {
            "total_operations": total,
            "failed_operations": sum(1 for op in ops if op.error is not None),
            "average_response_ms": round(average, 3),
        }


class ToolRegistry:
    """Maps subsystem names to their tool servers."""

    def __init__(self):
        self._servers: Dict[str, ToolServer] = {}

    def register_server(self, server: ToolServer) -> None:
        if server.name in self._servers:
            raise ValueError(f"Server '{server.name}' already registered")
        self._servers[server.name] = server

    def get_server(self, name: str) -> ToolServer:
        server = self._servers.get(name)
        if server is None:
            raise UnknownOperation(
                f"Server '{name}' not found. Available servers: {', '.join(self._servers)}"
            )
        return server

    def list_servers(self) -> List[str]:
        return list(self._servers)

    def servers(self) -> List[ToolServer]:
        return list(self._servers.values())

    def execute(self, subsystem: str, operation: str, params: Optional[dict] = None) -> Any:
        return self.get_server(subsystem).execute(operation, params)

    def all_tools(self) -> Dict[str, List[ToolSpec]]:
        return {name: server.list_tools() for name, server in self._servers.items()}
