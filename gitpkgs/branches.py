"""Branch bookkeeping and dependency lookups at points in a branch's history."""

from __future__ import annotations

from typing import Any, Optional

from .database import Database, NotFoundError
from .models import BranchInfo, Change, Dependency, SnapshotInfo


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def get_branch(db: Database, name: str) -> BranchInfo:
    """Return the tracked branch called name."""
    row = db.query_one(
        "SELECT id, name, last_analyzed_sha FROM branches WHERE name = ?", name
    )
    if row is None:
        raise NotFoundError(f'branch "{name}" not found')
    return BranchInfo(
        id=row["id"],
        name=row["name"],
        last_analyzed_sha=_text(row["last_analyzed_sha"]),
    )


def get_default_branch(db: Database) -> BranchInfo:
    """Return the first branch that was recorded."""
    row = db.query_one(
        "SELECT id, name, last_analyzed_sha FROM branches ORDER BY id LIMIT 1"
    )
    if row is None:
        raise NotFoundError("no branches recorded")
    last_sha = _text(row["last_analyzed_sha"])
    return BranchInfo(
        id=row["id"], name=row["name"], last_analyzed_sha=last_sha, last_sha=last_sha
    )


def get_branches(db: Database) -> list[BranchInfo]:
    """Return every branch, ordered by name, with its commit count."""
    rows = db.query_all(
        """
        SELECT b.id, b.name, b.last_analyzed_sha, COUNT(bc.id) AS commit_count
        FROM branches b
        LEFT JOIN branch_commits bc ON bc.branch_id = b.id
        GROUP BY b.id, b.name, b.last_analyzed_sha
        ORDER BY b.name
        """
    )
    return [
        BranchInfo(
            id=row["id"],
            name=row["name"],
            last_analyzed_sha=_text(row["last_analyzed_sha"]),
            last_sha=_text(row["last_analyzed_sha"]),
            commit_count=row["commit_count"],
        )
        for row in rows
    ]


def remove_branch(db: Database, name: str) -> None:
    """Forget a branch and its commit links; shared commits are kept."""
    row = db.query_one("SELECT id FROM branches WHERE name = ?", name)
    if row is None:
        raise NotFoundError(f'branch "{name}" not found')
    branch_id = row["id"]
    db.execute("DELETE FROM branch_commits WHERE branch_id = ?", branch_id)
    db.execute("DELETE FROM branches WHERE id = ?", branch_id)


def get_last_snapshot(db: Database, branch_id: int) -> dict[str, SnapshotInfo]:
    """Return the latest stored snapshot of a branch, keyed by "path:name"."""
    row = db.query_one(
        """
        SELECT ds.commit_id
        FROM dependency_snapshots ds
        JOIN branch_commits bc ON bc.commit_id = ds.commit_id
        WHERE bc.branch_id = ?
        ORDER BY bc.position DESC
        LIMIT 1
        """,
        branch_id,
    )
    if row is None:
        return {}

    rows = db.query_all(
        """
        SELECT m.path, ds.name, ds.ecosystem, ds.purl, ds.requirement,
               ds.dependency_type, ds.integrity
        FROM dependency_snapshots ds
        JOIN manifests m ON m.id = ds.manifest_id
        WHERE ds.commit_id = ?
        """,
        row["commit_id"],
    )
    result: dict[str, SnapshotInfo] = {}
    for item in rows:
        info = SnapshotInfo(
            manifest_path=item["path"],
            name=item["name"],
            ecosystem=_text(item["ecosystem"]),
            purl=_text(item["purl"]),
            requirement=_text(item["requirement"]),
            dependency_type=_text(item["dependency_type"]),
            integrity=_text(item["integrity"]),
        )
        result[f"{info.manifest_path}:{info.name}"] = info
    return result


def get_max_position(db: Database, branch_id: int) -> int:
    """Return the highest commit position on a branch, or 0 when it has none."""
    row = db.query_one(
        "SELECT MAX(position) FROM branch_commits WHERE branch_id = ?", branch_id
    )
    if row is None or row[0] is None:
        return 0
    return int(row[0])


def _dependencies_for_commit(db: Database, commit_id: int) -> list[Dependency]:
    rows = db.query_all(
        """
        SELECT ds.name, ds.ecosystem, ds.purl, ds.requirement, ds.dependency_type,
               ds.integrity, m.path, m.kind
        FROM dependency_snapshots ds
        JOIN manifests m ON m.id = ds.manifest_id
        WHERE ds.commit_id = ?
        ORDER BY m.path, ds.name
        """,
        commit_id,
    )
    return [
        Dependency(
            name=row["name"],
            ecosystem=_text(row["ecosystem"]),
            purl=_text(row["purl"]),
            requirement=_text(row["requirement"]),
            dependency_type=_text(row["dependency_type"]),
            integrity=_text(row["integrity"]),
            manifest_path=row["path"],
            manifest_kind=_text(row["kind"]),
        )
        for row in rows
    ]


def _first_value(db: Database, sql: str, *args: Any) -> Optional[Any]:
    row = db.query_one(sql, *args)
    return None if row is None else row[0]


def get_dependencies_at_commit(db: Database, sha: str) -> list[Dependency]:
    """Return the dependencies of the most recent snapshot at or before sha."""
    commit_id = _first_value(
        db,
        """
        SELECT ds.commit_id
        FROM dependency_snapshots ds
        JOIN commits c ON c.id = ds.commit_id
        JOIN branch_commits bc ON bc.commit_id = c.id
        WHERE c.sha <= ?
        ORDER BY bc.position DESC
        LIMIT 1
        """,
        sha,
    )
    if commit_id is None:
        return []
    return _dependencies_for_commit(db, commit_id)


def get_dependencies_at_ref(db: Database, ref: str, branch_id: int) -> list[Dependency]:
    """Return the dependencies in effect at commit ref on a branch."""
    commit_id = _first_value(
        db,
        """
        SELECT c.id
        FROM commits c
        JOIN branch_commits bc ON bc.commit_id = c.id
        WHERE c.sha = ? AND bc.branch_id = ?
        """,
        ref,
        branch_id,
    )
    if commit_id is None:
        return []

    snapshot_commit_id = _first_value(
        db,
        """
        SELECT ds.commit_id
        FROM dependency_snapshots ds
        JOIN branch_commits bc ON bc.commit_id = ds.commit_id
        JOIN branch_commits target_bc ON target_bc.commit_id = ?
        WHERE bc.branch_id = ? AND bc.position <= target_bc.position
        GROUP BY ds.commit_id
        ORDER BY bc.position DESC
        LIMIT 1
        """,
        commit_id,
        branch_id,
    )
    if snapshot_commit_id is None:
        return []
    return _dependencies_for_commit(db, snapshot_commit_id)


def get_latest_dependencies(db: Database, branch_id: int) -> list[Dependency]:
    """Return the dependencies of the latest snapshot on a branch."""
    commit_id = _first_value(
        db,
        """
        SELECT ds.commit_id
        FROM dependency_snapshots ds
        JOIN branch_commits bc ON bc.commit_id = ds.commit_id
        WHERE bc.branch_id = ?
        ORDER BY bc.position DESC
        LIMIT 1
        """,
        branch_id,
    )
    if commit_id is None:
        return []
    return _dependencies_for_commit(db, commit_id)


def get_commit_id(db: Database, sha: str) -> int:
    """Return the database id of the commit with this sha."""
    commit_id = _first_value(db, "SELECT id FROM commits WHERE sha = ?", sha)
    if commit_id is None:
        raise NotFoundError(f"commit {sha} not found")
    return int(commit_id)


def _change_from_row(row: Any) -> Change:
    return Change(
        name=row["name"],
        ecosystem=_text(row["ecosystem"]),
        purl=_text(row["purl"]),
        change_type=row["change_type"],
        requirement=_text(row["requirement"]),
        previous_requirement=_text(row["previous_requirement"]),
        dependency_type=_text(row["dependency_type"]),
        manifest_path=row["path"],
    )


def get_changes_for_commit(db: Database, sha: str) -> list[Change]:
    """Return the dependency changes made by one commit."""
    rows = db.query_all(
        """
        SELECT dc.name, dc.ecosystem, dc.purl, dc.change_type, dc.requirement,
               dc.previous_requirement, dc.dependency_type, m.path
        FROM dependency_changes dc
        JOIN commits c ON c.id = dc.commit_id
        JOIN manifests m ON m.id = dc.manifest_id
        WHERE c.sha = ?
        ORDER BY m.path, dc.name
        """,
        sha,
    )
    return [_change_from_row(row) for row in rows]


def get_changes_for_commits(db: Database, shas: list[str]) -> dict[str, list[Change]]:
    """Return the changes of several commits at once, grouped by sha."""
    if not shas:
        return {}
    placeholders = ",".join("?" for _ in shas)
    rows = db.query_all(
        f"""
        SELECT c.sha, dc.name, dc.ecosystem, dc.purl, dc.change_type, dc.requirement,
               dc.previous_requirement, dc.dependency_type, m.path
        FROM dependency_changes dc
        JOIN commits c ON c.id = dc.commit_id
        JOIN manifests m ON m.id = dc.manifest_id
        WHERE c.sha IN ({placeholders})
        ORDER BY c.sha, m.path, dc.name
        """,
        *shas,
    )
    result: dict[str, list[Change]] = {}
    for row in rows:
        result.setdefault(row["sha"], []).append(_change_from_row(row))
    return result