"""Engine configuration."""

import os
from typing import Optional

from pydantic import BaseModel, Field


ENV_PREFIX = "NENGINE_"
ENGINE_VERSION = "0.1.0"


class EngineConfig(BaseModel):
    """Configuration for one play session."""

    game_path: str = "."
    save_path: str = "./game-state"
    starting_room: str = "start"
    game_id: str = "unknown"
    game_version: str = "0.0.0"
    engine_version: str = ENGINE_VERSION

    transcript_ceiling: int = Field(gt=0, default=1000)
    transcript_persist_every: int = Field(gt=0, default=10)
    transcript_file: str = "narrative-transcript.json"
    context_cache_ceiling: int = Field(gt=0, default=50)
    operation_history_size: int = Field(ge=100, default=100)
    flush_interval_seconds: float = Field(gt=0, default=30)

    log_level: str = "INFO"
    log_format: str = "console"             # "console" | "json"

    @classmethod
    def from_env(cls, environ: Optional[dict] = None, **overrides) -> "EngineConfig":
        """Build a config from NENGINE_* variables, then apply overrides."""
        environ = os.environ if environ is None else environ
        values = {}
        for field_name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is not None:
                values[field_name] = raw
        values.update(overrides)
        return cls.model_validate(values)
