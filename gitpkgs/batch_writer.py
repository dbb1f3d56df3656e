"""Buffered writer that stores commits and dependency data in batches."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from .branches import get_max_position
from .database import Database
from .models import ChangeInfo, CommitInfo, ManifestInfo, SnapshotInfo

DEFAULT_BATCH_SIZE = 500
DEFAULT_SNAPSHOT_INTERVAL = 100
MAX_SQL_VARIABLES = 999  # SQLite's default limit

_T = TypeVar("_T")


@dataclass
class _PendingCommit:
    info: CommitInfo
    has_changes: bool
    position: int


@dataclass
class _PendingChange:
    sha: str
    manifest: ManifestInfo
    change: ChangeInfo


@dataclass
class _PendingSnapshot:
    sha: str
    manifest: ManifestInfo
    snapshot: SnapshotInfo


def _chunks(items: Sequence[_T], columns: int) -> Iterator[Sequence[_T]]:
    size = max(1, MAX_SQL_VARIABLES // columns)
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _multi_insert(db: Database, prefix: str, rows: Sequence[tuple[Any, ...]], columns: int) -> None:
    row_placeholder = "(" + ",".join("?" * columns) + ")"
    for batch in _chunks(rows, columns):
        sql = prefix + " VALUES " + ",".join(row_placeholder for _ in batch)
        db.execute(sql, *(value for row in batch for value in row))


class BatchWriter:
    """Collects commits, changes and snapshots and writes them in transactions."""

    def __init__(
        self,
        db: Database,
        batch_size: int = DEFAULT_BATCH_SIZE,
        snapshot_interval: int = DEFAULT_SNAPSHOT_INTERVAL,
    ) -> None:
        self.db = db
        self.batch_size = batch_size
        self.snapshot_interval = snapshot_interval
        self.branch_id = 0
        self.position = 0
        self.dep_commit_count = 0
        self.last_sha = ""
        self._manifest_cache: dict[str, int] = {}
        self._pending_commits: list[_PendingCommit] = []
        self._pending_changes: list[_PendingChange] = []
        self._pending_snapshots: list[_PendingSnapshot] = []

    def create_branch(self, name: str) -> None:
        """Record a new branch and write to it from now on."""
        now = datetime.now()
        cursor = self.db.execute(
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

    def add_commit(self, info: CommitInfo, has_changes: bool) -> None:
        """Queue a commit at the next position on the branch."""
        self.position += 1
        self._pending_commits.append(_PendingCommit(info, has_changes, self.position))
        self.last_sha = info.sha

    def add_change(self, sha: str, manifest: ManifestInfo, change: ChangeInfo) -> None:
        """Queue a dependency change made by commit sha."""
        self._pending_changes.append(_PendingChange(sha, manifest, change))

    def should_store_snapshot(self) -> bool:
        """Tell whether a snapshot is due; call after incrementing the count."""
        return self.dep_commit_count % self.snapshot_interval == 0

    def increment_dep_commit_count(self) -> None:
        """Count one more commit that changed dependencies."""
        self.dep_commit_count += 1

    def add_snapshot(self, sha: str, manifest: ManifestInfo, snapshot: SnapshotInfo) -> None:
        """Queue a snapshot entry for commit sha."""
        self._pending_snapshots.append(_PendingSnapshot(sha, manifest, snapshot))

    def should_flush(self) -> bool:
        """Tell whether enough commits are queued to write a batch."""
        return len(self._pending_commits) >= self.batch_size

    def flush(self) -> None:
        """Write everything queued in one transaction, then clear the queues."""
        if not self._pending_commits:
            return
        now = datetime.now()
        with self.db.transaction():
            self._insert_commits(now)
            commit_ids = self._commit_ids()
            self._insert_branch_commits(commit_ids)
            self._ensure_manifests(now)
            self._insert_changes(commit_ids, now)
            self._insert_snapshots(commit_ids, now)
        self._pending_commits.clear()
        self._pending_changes.clear()
        self._pending_snapshots.clear()

    def _insert_commits(self, now: datetime) -> None:
        rows = [
            (
                pending.info.sha,
                pending.info.message,
                pending.info.author_name,
                pending.info.author_email,
                pending.info.committed_at,
                1 if pending.has_changes else 0,
                now,
                now,
            )
            for pending in self._pending_commits
        ]
        _multi_insert(
            self.db,
            "INSERT INTO commits (sha, message, author_name, author_email, committed_at,"
            " has_dependency_changes, created_at, updated_at)",
            rows,
            8,
        )

    def _commit_ids(self) -> dict[str, int]:
        shas = [pending.info.sha for pending in self._pending_commits]
        result: dict[str, int] = {}
        for batch in _chunks(shas, 1):
            placeholders = ",".join("?" for _ in batch)
            rows = self.db.query_all(
                f"SELECT sha, id FROM commits WHERE sha IN ({placeholders})", *batch
            )
            result.update((row["sha"], int(row["id"])) for row in rows)
        return result

    def _insert_branch_commits(self, commit_ids: dict[str, int]) -> None:
        rows = [
            (self.branch_id, commit_ids.get(pending.info.sha), pending.position)
            for pending in self._pending_commits
        ]
        _multi_insert(
            self.db,
            "INSERT INTO branch_commits (branch_id, commit_id, position)",
            rows,
            3,
        )

    def _ensure_manifests(self, now: datetime) -> None:
        manifests: dict[str, ManifestInfo] = {}
        for change in self._pending_changes:
            manifests[change.manifest.path] = change.manifest
        for snapshot in self._pending_snapshots:
            manifests[snapshot.manifest.path] = snapshot.manifest

        to_insert = [
            (manifest.path, manifest.ecosystem, manifest.kind, now, now)
            for path, manifest in manifests.items()
            if path not in self._manifest_cache
        ]
        if not to_insert:
            return
        _multi_insert(
            self.db,
            "INSERT OR IGNORE INTO manifests (path, ecosystem, kind, created_at, updated_at)",
            to_insert,
            5,
        )

        paths = list(manifests)
        for batch in _chunks(paths, 1):
            placeholders = ",".join("?" for _ in batch)
            rows = self.db.query_all(
                f"SELECT path, id FROM manifests WHERE path IN ({placeholders})", *batch
            )
            for row in rows:
                self._manifest_cache[row["path"]] = int(row["id"])

    def _insert_changes(self, commit_ids: dict[str, int], now: datetime) -> None:
        rows = [
            (
                commit_ids.get(pending.sha),
                self._manifest_cache.get(pending.manifest.path),
                pending.change.name,
                pending.change.ecosystem,
                pending.change.purl,
                pending.change.change_type,
                pending.change.requirement,
                pending.change.previous_requirement,
                pending.change.dependency_type,
                now,
                now,
            )
            for pending in self._pending_changes
        ]
        _multi_insert(
            self.db,
            "INSERT INTO dependency_changes (commit_id, manifest_id, name, ecosystem, purl,"
            " change_type, requirement, previous_requirement, dependency_type,"
            " created_at, updated_at)",
            rows,
            11,
        )

    def _insert_snapshots(self, commit_ids: dict[str, int], now: datetime) -> None:
        rows = [
            (
                commit_ids.get(pending.sha),
                self._manifest_cache.get(pending.manifest.path),
                pending.snapshot.name,
                pending.snapshot.ecosystem,
                pending.snapshot.purl,
                pending.snapshot.requirement,
                pending.snapshot.dependency_type,
                pending.snapshot.integrity,
                now,
                now,
            )
            for pending in self._pending_snapshots
        ]
        _multi_insert(
            self.db,
            "INSERT INTO dependency_snapshots (commit_id, manifest_id, name, ecosystem, purl,"
            " requirement, dependency_type, integrity, created_at, updated_at)",
            rows,
            10,
        )

    def update_branch_last_sha(self, sha: str) -> None:
        """Remember the last commit analysed on the current branch."""
        self.db.execute(
            "UPDATE branches SET last_analyzed_sha = ?, updated_at = ? WHERE id = ?",
            sha,
            datetime.now(),
            self.branch_id,
        )

    def has_pending_snapshots(self, sha: str) -> bool:
        """Tell whether a snapshot for sha is queued but not yet written."""
        return any(pending.sha == sha for pending in self._pending_snapshots)