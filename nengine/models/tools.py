"""Tool-call contract — operation specs, invocation records, batches."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ToolSpec(BaseModel):
    """Declared shape of one operation exposed by a tool server."""

    name: str
    description: str
    parameters: Dict[str, Any] = {"type": "object", "properties": {}}
    returns: Dict[str, Any] = {}

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required", []))


class OperationRecord(BaseModel):
    """One timed invocation kept in a server's diagnostic ring buffer."""

    timestamp: int                          # Unix milliseconds
    method: str
    params: Dict[str, Any] = {}
    result: Any = None
    error: Optional[str] = None             # Set instead of result on failure
    duration_ms: float


class ToolCall(BaseModel):
    """Transport envelope: {subsystem, operation, params}."""

    subsystem: str
    operation: str
    params: Dict[str, Any] = {}


class BatchResult(BaseModel):
    results: List[Any] = []                 # None in the slot of a failed call
    errors: List[str] = []
    duration_ms: float


class ServerInfo(BaseModel):
    name: str
    version: str = "1.0.0"
    capabilities: List[str] = []


class DebugInfo(BaseModel):
    server_name: str
    last_operations: List[OperationRecord] = []
    current_state: Dict[str, Any] = {}
    warnings: List[str] = []
