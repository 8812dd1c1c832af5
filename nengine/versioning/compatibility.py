"""
Save Compatibility Checker — fingerprints game content and compares it
against the fingerprint recorded in a save's metadata.

Behavioral Contract:
- The content hash covers a fixed, ordered list of files. A missing file
  contributes a `[MISSING]` marker so the hash stays deterministic.
- Compatible iff the current hash and the saved hash are byte-equal.
- The cached variant only rehashes when a tracked file's modification
  stamp or the number of present files changes.
"""

import hashlib
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pydantic
import structlog

from nengine.errors import PersistenceError
from nengine.models.versioning import CompatibilityResult, GameSaveMetadata

logger = structlog.get_logger(__name__)

CONTENT_FILES = (
    "game.yaml",
    "content/world.yaml",
    "content/characters.yaml",
    "content/items.yaml",
)
MISSING_MARKER = b"[MISSING]"
METADATA_FILE = ".meta.json"

NO_SAVE_METADATA = "no_save_metadata"
CONTENT_MATCH = "content_match"
CONTENT_CHANGED = "content_changed"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContentHasher:
    """Computes content fingerprints and reads/writes save metadata."""

    def __init__(self, content_files: Tuple[str, ...] = CONTENT_FILES):
        self.content_files = tuple(content_files)

    def generate_content_hash(self, game_path: str) -> str:
        """SHA-256 over every content file, in order, with per-file markers."""
        root = Path(game_path)
        chunks = []
        for name in self.content_files:
            path = root / name
            header = f"--- {name} ---\n".encode("utf-8")
            try:
                body = path.read_bytes()
            except FileNotFoundError:
                body = MISSING_MARKER
            except OSError as e:
                raise PersistenceError(f"Cannot read content file {path}: {e}") from e
            chunks.append(header + body)
        return hashlib.sha256(b"\n".join(chunks)).hexdigest()

    @staticmethod
    def compare_hashes(current_hash: str, saved_hash: Optional[str]) -> bool:
        return saved_hash is not None and current_hash == saved_hash

    def check_compatibility(
        self,
        current_hash: str,
        saved: Optional[GameSaveMetadata],
    ) -> CompatibilityResult:
        if saved is None:
            reason = NO_SAVE_METADATA
            compatible = False
        elif self.compare_hashes(current_hash, saved.content_hash):
            reason = CONTENT_MATCH
            compatible = True
        else:
            reason = CONTENT_CHANGED
            compatible = False

        return CompatibilityResult(
            compatible=compatible,
            reason=reason,
            current_hash=current_hash,
            saved_hash=saved.content_hash if saved else None,
            checked_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def load_metadata(save_path: str) -> Optional[GameSaveMetadata]:
        """Read `.meta.json` from a save directory. None if absent."""
        path = Path(save_path) / METADATA_FILE
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot read {path}: {e}") from e
        try:
            return GameSaveMetadata.model_validate_json(raw)
        except pydantic.ValidationError as e:
            raise PersistenceError(f"Corrupt save metadata in {path}") from e

    @staticmethod
    def save_metadata(save_path: str, metadata: GameSaveMetadata) -> None:
        path = Path(save_path) / METADATA_FILE
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_text(metadata.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Cannot write {path}: {e}") from e

    def create_metadata(
        self,
        game_path: str,
        game_id: str,
        game_version: str,
        engine_version: Optional[str] = None,
        last_commit: str = "",
        current_branch: str = "main",
        turn_count: int = 0,
    ) -> GameSaveMetadata:
        now = _utcnow_iso()
        return GameSaveMetadata(
            content_hash=self.generate_content_hash(game_path),
            game_version=game_version,
            game_id=game_id,
            last_commit=last_commit,
            last_played=now,
            current_branch=current_branch,
            turn_count=turn_count,
            engine_version=engine_version,
            created_at=now,
        )

    def migrate_old_save(
        self,
        save_path: str,
        game_path: str,
        game_id: str,
        game_version: str,
        engine_version: Optional[str] = None,
        last_commit: str = "",
        current_branch: str = "main",
    ) -> GameSaveMetadata:
        """
        Stamp a save that predates metadata with the current content hash.
        The save is trusted as-is; no compatibility check is possible.
        """
        metadata = self.create_metadata(
            game_path,
            game_id=game_id,
            game_version=game_version,
            engine_version=engine_version,
            last_commit=last_commit,
            current_branch=current_branch,
        )
        self.save_metadata(save_path, metadata)
        logger.info("save_migrated", save_path=str(save_path), content_hash=metadata.content_hash[:12])
        return metadata

    def get_content_file_stats(self, game_path: str) -> List[dict]:
        """Existence, size and mtime of each tracked content file."""
        stats = []
        for name in self.content_files:
            path = Path(game_path) / name
            try:
                st = path.stat()
                stats.append({
                    "file": name,
                    "exists": True,
                    "size": st.st_size,
                    "modified": datetime.fromtimestamp(st.st_mtime, timezone.utc).isoformat(),
                })
            except FileNotFoundError:
                stats.append({"file": name, "exists": False, "size": None, "modified": None})
        return stats


class CachedContentHasher(ContentHasher):
    """Rehashes only when tracked files change on disk."""

    def __init__(self, content_files: Tuple[str, ...] = CONTENT_FILES):
        super().__init__(content_files)
        self._cache: Dict[str, Tuple[str, Dict[str, Optional[Tuple[int, int]]]]] = {}

    def _stamps(self, game_path: str) -> Dict[str, Optional[Tuple[int, int]]]:
        stamps = {}
        for name in self.content_files:
            try:
                st = (Path(game_path) / name).stat()
                stamps[name] = (st.st_mtime_ns, st.st_size)
            except FileNotFoundError:
                stamps[name] = None
        return stamps

    def get_content_hash(self, game_path: str) -> str:
        key = str(Path(game_path).resolve())
        stamps = self._stamps(game_path)
        cached = self._cache.get(key)
        if cached is not None:
            cached_hash, cached_stamps = cached
            present = sum(1 for s in stamps.values() if s is not None)
            cached_present = sum(1 for s in cached_stamps.values() if s is not None)
            if present == cached_present and stamps == cached_stamps:
                return cached_hash

        content_hash = self.generate_content_hash(game_path)
        self._cache[key] = (content_hash, stamps)
        logger.debug("content_hash_computed", game_path=key, content_hash=content_hash[:12])
        return content_hash

    def clear_cache(self, game_path: Optional[str] = None) -> None:
        if game_path is None:
            self._cache.clear()
        else:
            self._cache.pop(str(Path(game_path).resolve()), None)
