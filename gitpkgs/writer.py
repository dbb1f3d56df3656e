"""Row-at-a-time writer for commits, dependency changes and snapshots."""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any

from .branches import get_max_position
from .database import Database
from .models import ChangeInfo, CommitInfo, ManifestInfo, SnapshotInfo

_INSERT_COMMIT = """
INSERT INTO commits (sha, message, author_name, author_email, committed_at,
                     has_dependency_changes, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""

_INSERT_BRANCH_COMMIT = """
INSERT INTO branch_commits (branch_id, commit_id, position)
VALUES (?, ?, ?)
"""

_INSERT_MANIFEST = """
INSERT INTO manifests (path, ecosystem, kind, created_at, updated_at)
VALUES (?, ?, ?, ?, ?)
"""

_INSERT_CHANGE = """
INSERT INTO dependency_changes (commit_id, manifest_id, name, ecosystem, purl,
                                change_type, requirement, previous_requirement,
                                dependency_type, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_INSERT_SNAPSHOT = """
INSERT INTO dependency_snapshots (commit_id, manifest_id, name, ecosystem, purl,
                                  requirement, dependency_type, integrity,
                                  created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


class Writer:
    """Writes commits and their dependency data for one branch, one row at a time."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self.branch_id = 0
        self.position = 0
        self._manifest_cache: dict[str, int] = {}
        self._closed = False

    def __enter__(self) -> "Writer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Stop accepting writes; the database itself stays open."""
        self._closed = True

    def _execute(self, sql: str, *args: Any):
        if self._closed:
            raise RuntimeError("writer is closed")
        return self.db.execute(sql, *args)

    def create_branch(self, name: str) -> None:
        """Record a new branch and write to it from now on."""
        now = datetime.now()
        cursor = self._execute(
            "INSERT INTO branches (name, created_at, updated_at) VALUES (?, ?, ?)",
            name,
            now,
            now,
        )
        self.branch_id = int(cursor.lastrowid)

    def use_branch(self, branch_id: int) -> None:
        """Continue writing to an existing branch after its last position."""
        self.branch_id = branch_id
        self.position = get_max_position(self.db, branch_id)

    def update_branch_last_sha(self, sha: str) -> None:
        """Remember the last commit analysed on the current branch."""
        self._execute(
            "UPDATE branches SET last_analyzed_sha = ?, updated_at = ? WHERE id = ?",
            sha,
            datetime.now(),
            self.branch_id,
        )

    def insert_commit(self, info: CommitInfo, has_changes: bool) -> tuple[int, bool]:
        """Store a commit and link it to the branch.

        Returns (commit id, was new); a commit already stored for another
        branch is only linked, and reported as not new.
        """
        existing = self._execute("SELECT id FROM commits WHERE sha = ?", info.sha).fetchone()
        if existing is not None:
            commit_id = int(existing["id"])
            self.position += 1
            self._execute(_INSERT_BRANCH_COMMIT, self.branch_id, commit_id, self.position)
            return commit_id, False

        now = datetime.now()
        cursor = self._execute(
            _INSERT_COMMIT,
            info.sha,
            info.message,
            info.author_name,
            info.author_email,
            info.committed_at,
            1 if has_changes else 0,
            now,
            now,
        )
        commit_id = int(cursor.lastrowid)
        self.position += 1
        self._execute(_INSERT_BRANCH_COMMIT, self.branch_id, commit_id, self.position)
        return commit_id, True

    def _manifest_id(self, info: ManifestInfo) -> int:
        cached = self._manifest_cache.get(info.path)
        if cached is not None:
            return cached
        now = datetime.now()
        cursor = self._execute(_INSERT_MANIFEST, info.path, info.ecosystem, info.kind, now, now)
        manifest_id = int(cursor.lastrowid)
        self._manifest_cache[info.path] = manifest_id
        return manifest_id

    def insert_change(self, commit_id: int, manifest: ManifestInfo, change: ChangeInfo) -> None:
        """Store one dependency change made by a commit."""
        manifest_id = self._manifest_id(manifest)
        now = datetime.now()
        self._execute(
            _INSERT_CHANGE,
            commit_id,
            manifest_id,
            change.name,
            change.ecosystem,
            change.purl,
            change.change_type,
            change.requirement,
            change.previous_requirement,
            change.dependency_type,
            now,
            now,
        )

    def insert_snapshot(
        self, commit_id: int, manifest: ManifestInfo, snapshot: SnapshotInfo
    ) -> None:
        """Store one snapshot entry for a commit."""
        manifest_id = self._manifest_id(manifest)
        now = datetime.now()
        self._execute(
            _INSERT_SNAPSHOT,
            commit_id,
            manifest_id,
            snapshot.name,
            snapshot.ecosystem,
            snapshot.purl,
            snapshot.requirement,
            snapshot.dependency_type,
            snapshot.integrity,
            now,
            now,
        )

    def begin_transaction(self) -> AbstractContextManager[Database]:
        """Return a context manager that wraps writes in one transaction."""
        if self._closed:
            raise RuntimeError("writer is closed")
        return self.db.transaction()