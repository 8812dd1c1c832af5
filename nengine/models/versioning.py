"""Commit Store and save-compatibility models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class FileChanges(BaseModel):
    """Tracked-file differences between a commit and its parent."""

    added: List[str] = []
    modified: List[str] = []
    removed: List[str] = []


class Commit(BaseModel):
    """An immutable, content-addressed snapshot reference."""

    model_config = {"frozen": True}

    hash: str
    branch: str
    message: str
    timestamp: int                          # Unix milliseconds
    parent: Optional[str] = None
    changes: FileChanges = FileChanges()


class CommitDiff(BaseModel):
    from_commit: str
    to_commit: str
    from_message: str
    to_message: str
    changes: FileChanges = FileChanges()


class GameSaveMetadata(BaseModel):
    """
    One record per save lineage, written to `.meta.json` on every commit.
    `content_hash` is the compatibility key.
    """

    content_hash: str
    game_version: str
    game_id: str
    last_commit: str = ""
    last_played: str = ""                   # ISO timestamp
    current_branch: str = "main"
    turn_count: int = 0
    player_name: Optional[str] = None
    playtime: Optional[float] = None        # Seconds
    engine_version: Optional[str] = None
    created_at: Optional[str] = None


class CompatibilityResult(BaseModel):
    compatible: bool
    reason: str                             # no_save_metadata | content_match | content_changed
    current_hash: str
    saved_hash: Optional[str] = None
    checked_at: datetime
