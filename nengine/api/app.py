"""
Narrative Engine API — FastAPI wrapper around the tool-call envelope.

Endpoints are coroutines so every request runs on the event loop thread,
one at a time, together with the periodic transcript flush.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from nengine.errors import (
    EngineError,
    IncompatibleSaveError,
    NotFoundError,
    PersistenceError,
    UnknownOperation,
    ValidationError,
)
from nengine.models.config import ENGINE_VERSION, EngineConfig
from nengine.models.narrative import ContextCurationParams
from nengine.models.tools import ToolCall
from nengine.narrative.history import TranscriptFlusher
from nengine.observability.logging import setup_logging
from nengine.orchestrator.manager import Orchestrator, build_engine
from nengine.tools.registry import to_payload

ERROR_STATUS = [
    (UnknownOperation, 404),
    (NotFoundError, 404),
    (ValidationError, 422),
    (IncompatibleSaveError, 409),
    (PersistenceError, 500),
]


def status_for(error: EngineError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


# --- Request Models ---

class BatchRequest(BaseModel):
    calls: List[ToolCall]


# --- Application Factory ---

def create_app(
    orchestrator: Optional[Orchestrator] = None,
    config: Optional[EngineConfig] = None,
    run_flusher: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    config = config or (orchestrator.config if orchestrator else EngineConfig.from_env())
    setup_logging(config.log_level, config.log_format)
    engine = orchestrator or build_engine(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop_event = asyncio.Event()
        task = None
        if run_flusher:
            flusher = TranscriptFlusher(engine.history, config.flush_interval_seconds)
            task = asyncio.create_task(flusher.run_async(stop_event))
        try:
            yield
        finally:
            stop_event.set()
            if task is not None:
                await task
            engine.shutdown()

    app = FastAPI(
        title="Narrative Engine API",
        description="Tool-call transport for the narrative engine",
        version=ENGINE_VERSION,
        lifespan=lifespan,
    )
    app.state.orchestrator = engine
    app.state.config = config

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        return JSONResponse(status_code=status_for(exc), content={"error": str(exc)})

    # === TOOL CALLS ===

    @app.post("/tools/batch")
    async def execute_batch(req: BatchRequest):
        return engine.execute_batch(req.calls)

    @app.post("/tools")
    async def execute_envelope(call: ToolCall):
        return {"result": engine.execute_tool(call.subsystem, call.operation, call.params)}

    @app.post("/tools/{subsystem}/{operation}")
    async def execute_tool(subsystem: str, operation: str, params: Dict[str, Any] = Body(default={})):
        return {"result": engine.execute_tool(subsystem, operation, params)}

    @app.get("/tools")
    async def list_tools():
        return to_payload(engine.all_tools())

    @app.get("/servers")
    async def list_servers():
        return engine.list_servers()

    # === CONTEXT ===

    @app.post("/context/{kind}")
    async def assemble_context(kind: str, params: Dict[str, Any] = Body(default={})):
        return engine.assemble_context(kind, params)

    @app.post("/curated-context")
    async def build_curated_context(params: ContextCurationParams):
        return engine.build_context(params)

    @app.delete("/curated-context")
    async def purge_context(context_id: Optional[str] = None):
        return engine.purge_context(context_id)

    # === SESSION ===

    @app.post("/session/resume")
    async def resume():
        return engine.resume()

    # === DIAGNOSTICS ===

    @app.get("/status")
    async def system_status():
        return to_payload(engine.system_status())

    @app.get("/health")
    async def health_check():
        return engine.health_check()

    @app.get("/diagnostics")
    async def debug_info():
        return to_payload(engine.debug_info())

    return app
