"""Summary statistics over the recorded dependency history of a branch."""

from __future__ import annotations

import sqlite3
from typing import Any

from .branches import get_default_branch
from .database import Database, NotFoundError
from .models import AuthorStats, DatabaseInfo, NameCount, Stats, StatsOptions

_DEFAULT_TOP_LIMIT = 10

_COUNTED_TABLES = (
    "branches",
    "commits",
    "branch_commits",
    "manifests",
    "dependency_changes",
    "dependency_snapshots",
)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _filters(options: StatsOptions) -> tuple[str, list[Any]]:
    clause = ""
    args: list[Any] = []
    if options.ecosystem:
        clause += " AND dc.ecosystem = ?"
        args.append(options.ecosystem)
    if options.since:
        clause += " AND c.committed_at >= ?"
        args.append(options.since)
    if options.until:
        clause += " AND c.committed_at <= ?"
        args.append(options.until)
    return clause, args


_CHANGES_ON_BRANCH = """
    FROM dependency_changes dc
    JOIN commits c ON c.id = dc.commit_id
    JOIN branch_commits bc ON bc.commit_id = c.id
    WHERE bc.branch_id = ?
"""


def get_stats(db: Database, options: StatsOptions) -> Stats:
    """Return commit, dependency and change counts for a branch."""
    stats = Stats()

    row = db.query_one(
        """
        SELECT b.name, bc.commit_id
        FROM branches b
        LEFT JOIN branch_commits bc ON bc.branch_id = b.id
        WHERE b.id = ?
        ORDER BY bc.position DESC
        LIMIT 1
        """,
        options.branch_id,
    )
    if row is None:
        raise NotFoundError(f"branch {options.branch_id} not found")
    stats.branch = _text(row[0])
    latest_commit_id = row[1]

    count_row = db.query_one(
        "SELECT COUNT(*) FROM branch_commits WHERE branch_id = ?", options.branch_id
    )
    stats.commits_analyzed = int(count_row[0])

    clause, extra = _filters(options)
    count_row = db.query_one(
        """
        SELECT COUNT(DISTINCT c.id)
        FROM commits c
        JOIN branch_commits bc ON bc.commit_id = c.id
        JOIN dependency_changes dc ON dc.commit_id = c.id
        WHERE bc.branch_id = ?
        """
        + clause,
        options.branch_id,
        *extra,
    )
    stats.commits_with_changes = int(count_row[0])

    if latest_commit_id is not None:
        count_row = db.query_one(
            "SELECT COUNT(*) FROM dependency_snapshots WHERE commit_id = ?",
            latest_commit_id,
        )
        stats.current_deps = int(count_row[0])
        for eco_row in db.query_all(
            """
            SELECT ecosystem, COUNT(*)
            FROM dependency_snapshots
            WHERE commit_id = ?
            GROUP BY ecosystem
            """,
            latest_commit_id,
        ):
            if eco_row[0]:
                stats.deps_by_ecosystem[eco_row[0]] = int(eco_row[1])

    for type_row in db.query_all(
        "SELECT dc.change_type, COUNT(*)" + _CHANGES_ON_BRANCH + clause
        + " GROUP BY dc.change_type",
        options.branch_id,
        *extra,
    ):
        count = int(type_row[1])
        stats.changes_by_type[type_row[0]] = count
        stats.total_changes += count

    limit = options.limit or _DEFAULT_TOP_LIMIT

    stats.top_changed = [
        NameCount(name=_text(item[0]), count=int(item[1]))
        for item in db.query_all(
            "SELECT dc.name, COUNT(*) AS cnt" + _CHANGES_ON_BRANCH + clause
            + " GROUP BY dc.name ORDER BY cnt DESC LIMIT ?",
            options.branch_id,
            *extra,
            limit,
        )
    ]

    stats.top_authors = [
        NameCount(name=_text(item[0]), count=int(item[1]))
        for item in db.query_all(
            "SELECT c.author_name, COUNT(DISTINCT dc.id) AS cnt" + _CHANGES_ON_BRANCH
            + clause + " GROUP BY c.author_name ORDER BY cnt DESC LIMIT ?",
            options.branch_id,
            *extra,
            limit,
        )
    ]

    return stats


def get_author_stats(db: Database, options: StatsOptions) -> list[AuthorStats]:
    """Return per-author commit and change counts, most changes first."""
    clause, extra = _filters(options)
    query = (
        """
        SELECT c.author_name, c.author_email,
               COUNT(DISTINCT c.id) AS commits,
               COUNT(dc.id) AS changes,
               SUM(CASE WHEN dc.change_type = 'added' THEN 1 ELSE 0 END) AS added,
               SUM(CASE WHEN dc.change_type = 'modified' THEN 1 ELSE 0 END) AS modified,
               SUM(CASE WHEN dc.change_type = 'removed' THEN 1 ELSE 0 END) AS removed
        FROM commits c
        JOIN branch_commits bc ON bc.commit_id = c.id
        JOIN dependency_changes dc ON dc.commit_id = c.id
        WHERE bc.branch_id = ?
        """
        + clause
        + " GROUP BY c.author_name, c.author_email ORDER BY changes DESC"
    )
    args: list[Any] = [options.branch_id, *extra]
    if options.limit > 0:
        query += " LIMIT ?"
        args.append(options.limit)

    return [
        AuthorStats(
            name=_text(row["author_name"]),
            email=_text(row["author_email"]),
            commits=int(row["commits"]),
            changes=int(row["changes"]),
            by_type={
                "added": int(row["added"] or 0),
                "modified": int(row["modified"] or 0),
                "removed": int(row["removed"] or 0),
            },
        )
        for row in db.query_all(query, *args)
    ]


def get_database_info(db: Database) -> DatabaseInfo:
    """Return the schema version, default branch, row counts and ecosystems."""
    info = DatabaseInfo(path=db.path, schema_version=db.schema_version())

    try:
        branch = get_default_branch(db)
    except NotFoundError:
        pass
    else:
        info.branch_name = branch.name
        info.last_analyzed_sha = branch.last_analyzed_sha

    for table in _COUNTED_TABLES:
        try:
            row = db.query_one(f"SELECT COUNT(*) FROM {table}")
        except sqlite3.Error:
            continue
        info.row_counts[table] = int(row[0])

    try:
        rows = db.query_all(
            """
            SELECT DISTINCT ecosystem FROM dependency_changes
            WHERE ecosystem IS NOT NULL AND ecosystem != ''
            UNION
            SELECT DISTINCT ecosystem FROM dependency_snapshots
            WHERE ecosystem IS NOT NULL AND ecosystem != ''
            """
        )
    except sqlite3.Error:
        rows = []
    info.ecosystems = [row[0] for row in rows if row[0]]

    return info