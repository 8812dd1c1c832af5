"""
Commit Store — content-addressed, branchable history of state snapshots.

The working directory holds one `state_<unixMillis>.json` per checkpoint
and a `.meta.json` with the save metadata. Every tracked file version is
stored as a blob keyed by its SHA-256; a commit records the full tree
(file name -> blob hash) plus its parent, and its own hash is the SHA-256
of that record.

Behavioral Contract:
- Commits are immutable. Branch pointers and HEAD are the only mutable refs.
- Write-then-commit: snapshot files are fully written and hashed before the
  commit row and branch pointer are updated in a single transaction.
- A failed save leaves every existing commit and branch pointer untouched
  and raises PersistenceError.
- A plain load with no snapshot file returns None instead of raising.
"""

import hashlib
import json
import os
import re
import sqlite3
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import structlog

from nengine.errors import NotFoundError, PersistenceError, ValidationError
from nengine.models.versioning import Commit, CommitDiff, FileChanges, GameSaveMetadata

logger = structlog.get_logger(__name__)

STATE_PREFIX = "state_"
STATE_SUFFIX = ".json"
META_FILE = ".meta.json"
README_FILE = "README.md"
STORE_DIR = ".nengine"
STORE_DB = "objects.db"

README_TEXT = (
    "# Narrative Engine Game State\n\n"
    "This directory contains the versioned game state.\n"
)

_BRANCH_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._\-/]*$")


def is_snapshot_file(name: str) -> bool:
    return name.startswith(STATE_PREFIX) and name.endswith(STATE_SUFFIX)


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _diff_trees(old: Dict[str, str], new: Dict[str, str]) -> FileChanges:
    return FileChanges(
        added=sorted(n for n in new if n not in old),
        modified=sorted(n for n in new if n in old and old[n] != new[n]),
        removed=sorted(n for n in old if n not in new),
    )


class CommitStore:
    """
    Version-control layer for one save lineage.
    Objects live in SQLite under `<repo>/.nengine/`, files in `<repo>/`.
    """

    def __init__(self, repo_path: str = "./game-state", default_branch: str = "main"):
        self.repo_path = Path(repo_path).resolve()
        self.default_branch = default_branch
        try:
            (self.repo_path / STORE_DIR).mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.repo_path / STORE_DIR / STORE_DB), check_same_thread=False
            )
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(f"Cannot open commit store at {self.repo_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        self._init_schema()
        self.init()

    def _init_schema(self) -> None:
        """Create the object tables if they don't exist."""
        try:
            with self._conn:
                self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS blobs (
                        hash TEXT PRIMARY KEY,
                        content BLOB NOT NULL
                    )
                """)
                self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS commits (
                        hash TEXT PRIMARY KEY,
                        parent TEXT,
                        branch TEXT NOT NULL,
                        message TEXT NOT NULL,
                        timestamp INTEGER NOT NULL,
                        tree_json TEXT NOT NULL,
                        changes_json TEXT NOT NULL
                    )
                """)
                self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS refs (
                        name TEXT PRIMARY KEY,
                        commit_hash TEXT NOT NULL
                    )
                """)
                self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS head (
                        id INTEGER PRIMARY KEY CHECK (id = 1),
                        branch TEXT,
                        commit_hash TEXT
                    )
                """)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot initialise commit store schema: {e}") from e

    # --- Repository lifecycle ---

    def init(self) -> Optional[str]:
        """
        Create the baseline commit on an empty repository.
        Returns its hash, or None if the repository already has history.
        """
        row = self._conn.execute("SELECT COUNT(*) AS cnt FROM refs").fetchone()
        if row["cnt"] > 0:
            return None

        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO head (id, branch, commit_hash) VALUES (1, ?, NULL)",
                (self.default_branch,),
            )
        files = {README_FILE: README_TEXT.encode("utf-8")}
        self._write_files(files)
        sha = self._commit("Initial commit", files)
        logger.info("repository_initialised", repo=str(self.repo_path), commit=sha[:12])
        return sha

    def close(self) -> None:
        self._conn.close()

    # --- HEAD and refs ---

    def _head(self) -> Tuple[Optional[str], Optional[str]]:
        """(branch, commit). Branch is None when HEAD is detached."""
        row = self._conn.execute("SELECT branch, commit_hash FROM head WHERE id = 1").fetchone()
        if row is None:
            return self.default_branch, None
        if row["branch"] is not None:
            return row["branch"], self._ref(row["branch"])
        return None, row["commit_hash"]

    def _ref(self, branch: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT commit_hash FROM refs WHERE name = ?", (branch,)
        ).fetchone()
        return row["commit_hash"] if row else None

    @property
    def head_commit(self) -> Optional[str]:
        return self._head()[1]

    def current_branch(self) -> Optional[str]:
        """Checked-out branch name, or None when HEAD is detached."""
        return self._head()[0]

    def list_branches(self) -> List[str]:
        rows = self._conn.execute("SELECT name FROM refs ORDER BY name").fetchall()
        return [r["name"] for r in rows]

    def resolve_commit(self, ref: str) -> str:
        """Resolve a branch name, full hash or unique hash prefix."""
        branch_tip = self._ref(ref)
        if branch_tip:
            return branch_tip
        row = self._conn.execute("SELECT hash FROM commits WHERE hash = ?", (ref,)).fetchone()
        if row:
            return row["hash"]
        if len(ref) >= 4:
            rows = self._conn.execute(
                "SELECT hash FROM commits WHERE hash LIKE ? LIMIT 2", (f"{ref}%",)
            ).fetchall()
            if len(rows) == 1:
                return rows[0]["hash"]
        raise NotFoundError(f"Commit or branch '{ref}' not found")

    # --- Objects ---

    def _tree(self, commit_hash: Optional[str]) -> Dict[str, str]:
        if commit_hash is None:
            return {}
        row = self._conn.execute(
            "SELECT tree_json FROM commits WHERE hash = ?", (commit_hash,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Commit '{commit_hash}' not found")
        return json.loads(row["tree_json"])

    def _blob(self, blob_hash: str) -> bytes:
        row = self._conn.execute(
            "SELECT content FROM blobs WHERE hash = ?", (blob_hash,)
        ).fetchone()
        if row is None:
            raise PersistenceError(f"Blob '{blob_hash}' missing from object store")
        return bytes(row["content"])

    def _row_to_commit(self, row: sqlite3.Row) -> Commit:
        return Commit(
            hash=row["hash"],
            branch=row["branch"],
            message=row["message"],
            timestamp=row["timestamp"],
            parent=row["parent"],
            changes=FileChanges.model_validate_json(row["changes_json"]),
        )

    def get_commit(self, ref: str) -> Commit:
        sha = self.resolve_commit(ref)
        row = self._conn.execute("SELECT * FROM commits WHERE hash = ?", (sha,)).fetchone()
        return self._row_to_commit(row)

    # --- Working directory ---

    def _write_files(self, files: Dict[str, bytes]) -> Dict[str, Optional[bytes]]:
        """
        Write files atomically. Returns the previous contents (None for new
        files) so a failed commit can restore the working directory.
        """
        previous: Dict[str, Optional[bytes]] = {}
        for name, content in files.items():
            path = self.repo_path / name
            tmp = path.with_name(path.name + ".tmp")
            try:
                previous[name] = path.read_bytes() if path.exists() else None
                tmp.write_bytes(content)
                os.replace(tmp, path)
            except OSError as e:
                tmp.unlink(missing_ok=True)
                previous.pop(name, None)
                self._restore_files(previous)
                raise PersistenceError(f"Failed to write {name}: {e}") from e
        return previous

    def _restore_files(self, previous: Dict[str, Optional[bytes]]) -> None:
        for name, content in previous.items():
            path = self.repo_path / name
            try:
                if content is None:
                    path.unlink(missing_ok=True)
                else:
                    path.write_bytes(content)
            except OSError as e:
                logger.error("working_copy_restore_failed", file=name, error=str(e))

    def _materialize(self, target_tree: Dict[str, str]) -> None:
        """Make the working directory match a commit's tree."""
        current_tree = self._tree(self.head_commit)
        try:
            for name in current_tree:
                if name not in target_tree:
                    (self.repo_path / name).unlink(missing_ok=True)
            for name, blob_hash in target_tree.items():
                path = self.repo_path / name
                content = self._blob(blob_hash)
                if path.exists() and path.read_bytes() == content:
                    continue
                tmp = path.with_name(path.name + ".tmp")
                tmp.write_bytes(content)
                os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Checkout failed: {e}") from e

    def _set_head(self, branch: Optional[str], commit_hash: Optional[str]) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO head (id, branch, commit_hash) VALUES (1, ?, ?)",
                (branch, None if branch else commit_hash),
            )

    # --- Commits ---

    def _commit(self, message: str, files: Dict[str, bytes]) -> str:
        """Record already-written files as a new commit on HEAD."""
        branch, parent = self._head()
        parent_tree = self._tree(parent)
        tree = dict(parent_tree)
        blobs = []
        for name, content in files.items():
            blob_hash = _sha256(content)
            tree[name] = blob_hash
            blobs.append((blob_hash, content))

        timestamp = int(time.time() * 1000)
        label = branch or "HEAD"
        record = json.dumps(
            {
                "parent": parent,
                "tree": tree,
                "message": message,
                "timestamp": timestamp,
                "branch": label,
            },
            sort_keys=True,
        ).encode("utf-8")
        sha = _sha256(record)
        changes = _diff_trees(parent_tree, tree)

        try:
            with self._conn:
                self._conn.executemany(
                    "INSERT OR IGNORE INTO blobs (hash, content) VALUES (?, ?)", blobs
                )
                self._conn.execute(
                    """
                    INSERT INTO commits (hash, parent, branch, message, timestamp, tree_json, changes_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        sha,
                        parent,
                        label,
                        message,
                        timestamp,
                        json.dumps(tree, sort_keys=True),
                        changes.model_dump_json(),
                    ),
                )
                if branch:
                    self._conn.execute(
                        "INSERT OR REPLACE INTO refs (name, commit_hash) VALUES (?, ?)",
                        (branch, sha),
                    )
                else:
                    self._conn.execute(
                        "UPDATE head SET commit_hash = ? WHERE id = 1", (sha,)
                    )
        except sqlite3.Error as e:
            raise PersistenceError(f"Commit failed: {e}") from e
        return sha

    def _next_snapshot_name(self) -> str:
        stamp = int(time.time() * 1000)
        tracked = self._tree(self.head_commit)
        while True:
            name = f"{STATE_PREFIX}{stamp}{STATE_SUFFIX}"
            if name not in tracked and not (self.repo_path / name).exists():
                return name
            stamp += 1

    def save_state(
        self,
        message: str,
        snapshot: dict,
        metadata: Optional[GameSaveMetadata] = None,
    ) -> str:
        """
        Write a new snapshot file (and metadata), commit both, return the hash.
        """
        name = self._next_snapshot_name()
        files = {name: json.dumps(snapshot, indent=2).encode("utf-8")}
        if metadata is not None:
            files[META_FILE] = metadata.model_dump_json(indent=2).encode("utf-8")

        previous = self._write_files(files)
        try:
            sha = self._commit(message, files)
        except PersistenceError:
            self._restore_files(previous)
            raise

        logger.info("state_committed", commit=sha[:12], file=name, message=message)
        return sha

    def write_metadata(self, metadata: GameSaveMetadata) -> None:
        """Update the working copy of `.meta.json` without committing."""
        self._write_files({META_FILE: metadata.model_dump_json(indent=2).encode("utf-8")})

    def load_state(self, ref: Optional[str] = None) -> Optional[dict]:
        """
        Check out `ref` if given, then return the newest snapshot by file
        name. Returns None when no snapshot exists.
        """
        if ref:
            self.checkout(ref)

        try:
            names = sorted(
                (p.name for p in self.repo_path.iterdir() if is_snapshot_file(p.name)),
                reverse=True,
            )
        except OSError as e:
            raise PersistenceError(f"Cannot list {self.repo_path}: {e}") from e
        if not names:
            return None

        try:
            return json.loads((self.repo_path / names[0]).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read snapshot {names[0]}: {e}") from e

    def checkout(self, ref: str) -> None:
        """Check out a branch by name, or detach HEAD at a commit."""
        if self._ref(ref):
            self.switch_branch(ref)
            return
        sha = self.resolve_commit(ref)
        self._materialize(self._tree(sha))
        self._set_head(None, sha)
        logger.info("head_detached", commit=sha[:12])

    # --- Branching ---

    def create_branch(self, name: str, from_commit: Optional[str] = None) -> None:
        """Create a branch at `from_commit` (default HEAD) and check it out."""
        if not _BRANCH_NAME.match(name or "") or ".." in name:
            raise ValidationError(f"Invalid branch name: '{name}'")
        if self._ref(name):
            raise ValidationError(f"Branch '{name}' already exists")

        base = self.resolve_commit(from_commit) if from_commit else self.head_commit
        if base is None:
            raise NotFoundError("Cannot branch from an empty repository")

        self._materialize(self._tree(base))
        with self._conn:
            self._conn.execute(
                "INSERT INTO refs (name, commit_hash) VALUES (?, ?)", (name, base)
            )
            self._conn.execute(
                "INSERT OR REPLACE INTO head (id, branch, commit_hash) VALUES (1, ?, NULL)",
                (name,),
            )
        logger.info("branch_created", branch=name, commit=base[:12])

    def switch_branch(self, name: str) -> None:
        tip = self._ref(name)
        if tip is None:
            raise NotFoundError(f"Branch '{name}' not found")
        self._materialize(self._tree(tip))
        self._set_head(name, tip)
        logger.info("branch_switched", branch=name, commit=tip[:12])

    # --- History ---

    def get_history(self, branch: Optional[str] = None, limit: int = 10) -> List[Commit]:
        """Commits reachable from `branch` (default HEAD), newest first."""
        if branch:
            sha = self._ref(branch)
            if sha is None:
                raise NotFoundError(f"Branch '{branch}' not found")
        else:
            sha = self.head_commit

        history: List[Commit] = []
        while sha and len(history) < limit:
            row = self._conn.execute("SELECT * FROM commits WHERE hash = ?", (sha,)).fetchone()
            if row is None:
                break
            history.append(self._row_to_commit(row))
            sha = row["parent"]
        return history

    def cherry_pick(self, commits: List[str]) -> List[str]:
        """
        Replay the snapshot files each commit introduced onto HEAD, one new
        commit per picked commit. Metadata files stay branch-local. The
        replayed snapshot is written under a fresh name so it becomes the
        newest snapshot on the current branch.
        """
        created = []
        for ref in commits:
            source = self.get_commit(ref)
            tree = self._tree(source.hash)
            parent_tree = self._tree(source.parent)
            picked = [
                name for name, blob_hash in sorted(tree.items())
                if is_snapshot_file(name) and parent_tree.get(name) != blob_hash
            ]
            if not picked:
                logger.info("cherry_pick_empty", commit=source.hash[:12])
                continue

            files = {}
            for name in picked:
                files[self._next_snapshot_name_after(files)] = self._blob(tree[name])

            previous = self._write_files(files)
            try:
                sha = self._commit(f"Cherry-pick: {source.message}", files)
            except PersistenceError:
                self._restore_files(previous)
                raise
            created.append(sha)
            logger.info("cherry_picked", source=source.hash[:12], commit=sha[:12])
        return created

    def _next_snapshot_name_after(self, pending: Dict[str, bytes]) -> str:
        name = self._next_snapshot_name()
        while name in pending:
            stamp = int(name[len(STATE_PREFIX):-len(STATE_SUFFIX)]) + 1
            name = f"{STATE_PREFIX}{stamp}{STATE_SUFFIX}"
        return name

    def get_diff(self, from_ref: str, to_ref: str) -> CommitDiff:
        source = self.get_commit(from_ref)
        target = self.get_commit(to_ref)
        return CommitDiff(
            from_commit=source.hash,
            to_commit=target.hash,
            from_message=source.message,
            to_message=target.message,
            changes=_diff_trees(self._tree(source.hash), self._tree(target.hash)),
        )
