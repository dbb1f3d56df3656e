"""SQLite storage: opening, creating and describing the package database."""

from __future__ import annotations

import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

SCHEMA_VERSION = 5


def _typed(kind: str, *names: str) -> tuple[str, ...]:
    return tuple(f"{name} {kind}" for name in names)


_ID = "id INTEGER PRIMARY KEY"
_STAMPS = _typed("DATETIME", "created_at", "updated_at")
_COMMIT_REF = "commit_id INTEGER REFERENCES commits(id)"
_MANIFEST_REF = "manifest_id INTEGER REFERENCES manifests(id)"

# Each table as its ordered column definitions.
_TABLES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("schema_info", ("version INTEGER NOT NULL",)),
    ("branches", (_ID, "name TEXT NOT NULL", "last_analyzed_sha TEXT", *_STAMPS)),
    (
        "commits",
        (
            _ID,
            "sha TEXT NOT NULL",
            *_typed("TEXT", "message", "author_name", "author_email"),
            "committed_at DATETIME",
            "has_dependency_changes INTEGER DEFAULT 0",
            *_STAMPS,
        ),
    ),
    (
        "branch_commits",
        (_ID, "branch_id INTEGER REFERENCES branches(id)", _COMMIT_REF, "position INTEGER"),
    ),
    ("manifests", (_ID, "path TEXT NOT NULL", *_typed("TEXT", "ecosystem", "kind"), *_STAMPS)),
    (
        "dependency_changes",
        (
            _ID,
            _COMMIT_REF,
            _MANIFEST_REF,
            "name TEXT NOT NULL",
            *_typed("TEXT", "ecosystem", "purl"),
            "change_type TEXT NOT NULL",
            *_typed("TEXT", "requirement", "previous_requirement", "dependency_type"),
            *_STAMPS,
        ),
    ),
    (
        "dependency_snapshots",
        (
            _ID,
            _COMMIT_REF,
            _MANIFEST_REF,
            "name TEXT NOT NULL",
            *_typed("TEXT", "ecosystem", "purl", "requirement", "dependency_type", "integrity"),
            *_STAMPS,
        ),
    ),
    (
        "packages",
        (
            _ID,
            *_typed("TEXT NOT NULL", "purl", "ecosystem", "name"),
            *_typed(
                "TEXT",
                "latest_version",
                "license",
                "description",
                "homepage",
                "repository_url",
                "supplier_name",
                "supplier_type",
                "source",
            ),
            *_typed("DATETIME", "enriched_at", "vulns_synced_at"),
            *_STAMPS,
        ),
    ),
    (
        "versions",
        (
            _ID,
            *_typed("TEXT NOT NULL", "purl", "package_purl"),
            "license TEXT",
            "published_at DATETIME",
            *_typed("TEXT", "integrity", "source"),
            "enriched_at DATETIME",
            *_STAMPS,
        ),
    ),
    (
        "vulnerabilities",
        (
            "id TEXT PRIMARY KEY",
            *_typed("TEXT", "aliases", "severity"),
            "cvss_score REAL",
            *_typed("TEXT", "cvss_vector", "refs", "summary", "details"),
            *_typed("DATETIME", "published_at", "withdrawn_at", "modified_at"),
            "fetched_at DATETIME NOT NULL",
        ),
    ),
    (
        "vulnerability_packages",
        (
            _ID,
            "vulnerability_id TEXT NOT NULL REFERENCES vulnerabilities(id)",
            *_typed("TEXT NOT NULL", "ecosystem", "package_name"),
            *_typed("TEXT", "affected_versions", "fixed_versions"),
        ),
    ),
)

# Each index as (name, table, indexed columns, unique).
_INDEXES: tuple[tuple[str, str, str, bool], ...] = (
    ("idx_branches_name", "branches", "name", True),
    ("idx_commits_sha", "commits", "sha", True),
    ("idx_branch_commits_unique", "branch_commits", "branch_id, commit_id", True),
    ("idx_branch_commits_position", "branch_commits", "branch_id, position DESC", False),
    ("idx_manifests_path", "manifests", "path", False),
    *(
        (f"idx_dependency_changes_{column}", "dependency_changes", column, False)
        for column in ("name", "ecosystem", "purl")
    ),
    ("idx_dependency_changes_commit_name", "dependency_changes", "commit_id, name", False),
    ("idx_snapshots_unique", "dependency_snapshots", "commit_id, manifest_id, name", True),
    *(
        (f"idx_dependency_snapshots_{column}", "dependency_snapshots", column, False)
        for column in ("name", "ecosystem", "purl")
    ),
    ("idx_packages_purl", "packages", "purl", True),
    ("idx_packages_ecosystem_name", "packages", "ecosystem, name", False),
    ("idx_versions_purl", "versions", "purl", True),
    ("idx_versions_package_purl", "versions", "package_purl", False),
    (
        "idx_vuln_packages_ecosystem_name",
        "vulnerability_packages",
        "ecosystem, package_name",
        False,
    ),
    ("idx_vuln_packages_vuln_id", "vulnerability_packages", "vulnerability_id", False),
    (
        "idx_vuln_packages_unique",
        "vulnerability_packages",
        "vulnerability_id, ecosystem, package_name",
        True,
    ),
)

_BULK_WRITE_PRAGMAS = {"synchronous": "OFF", "journal_mode": "WAL", "cache_size": "-64000"}
_READ_PRAGMAS = {"synchronous": "NORMAL", "journal_mode": "WAL"}


def _schema_script() -> str:
    statements = [
        f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(columns)});"
        for table, columns in _TABLES
    ]
    statements.extend(
        f"CREATE {'UNIQUE ' if unique else ''}INDEX IF NOT EXISTS {name} ON {table}({columns});"
        for name, table, columns, unique in _INDEXES
    )
    return "\n".join(statements)


class NotFoundError(LookupError):
    """Raised when a looked-up row does not exist."""


def _adapt(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, bool):
        return int(value)
    return value


class Database:
    """An open connection to the package database."""

    def __init__(self, path: str, connection: sqlite3.Connection) -> None:
        self.path = path
        self.connection = connection
        self.connection.row_factory = sqlite3.Row

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the connection."""
        self.connection.close()

    def execute(self, sql: str, *args: Any) -> sqlite3.Cursor:
        """Run one statement and return its cursor."""
        return self.connection.execute(sql, tuple(_adapt(arg) for arg in args))

    def query_one(self, sql: str, *args: Any) -> Optional[sqlite3.Row]:
        """Return the first row of a query, or None when there is none."""
        return self.execute(sql, *args).fetchone()

    def query_all(self, sql: str, *args: Any) -> list[sqlite3.Row]:
        """Return every row of a query."""
        return self.execute(sql, *args).fetchall()

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Run the enclosed statements in one transaction, rolled back on error."""
        self.connection.execute("BEGIN")
        try:
            yield self
        except BaseException:
            self.connection.execute("ROLLBACK")
            raise
        self.connection.execute("COMMIT")

    def _apply_pragmas(self, settings: dict[str, str]) -> None:
        for key, value in settings.items():
            self.connection.execute(f"PRAGMA {key} = {value}").fetchall()

    def optimize_for_bulk_writes(self) -> None:
        """Trade durability for speed while indexing."""
        self._apply_pragmas(_BULK_WRITE_PRAGMAS)

    def optimize_for_reads(self) -> None:
        """Restore settings suited to normal use."""
        self._apply_pragmas(_READ_PRAGMAS)

    def create_schema(self) -> None:
        """Create every table and index and record the schema version."""
        self.optimize_for_bulk_writes()
        self.connection.executescript(_schema_script())
        self.execute("INSERT INTO schema_info (version) VALUES (?)", SCHEMA_VERSION)
        self.optimize_for_reads()

    def schema_version(self) -> int:
        """Return the stored schema version."""
        row = self.query_one("SELECT version FROM schema_info LIMIT 1")
        if row is None:
            raise NotFoundError("schema version not recorded")
        return int(row[0])


def exists(path: str | os.PathLike[str]) -> bool:
    """Tell whether a database file exists at path."""
    return os.path.exists(path)


def open_database(path: str | os.PathLike[str]) -> Database:
    """Open the database at path, creating an empty file if needed."""
    connection = sqlite3.connect(os.fspath(path), isolation_level=None)
    db = Database(os.fspath(path), connection)
    try:
        db.optimize_for_reads()
    except sqlite3.Error:
        connection.close()
        raise
    return db


def create(path: str | os.PathLike[str]) -> Database:
    """Create a fresh database at path, replacing any existing one."""
    if exists(path):
        os.remove(path)
    db = open_database(path)
    try:
        db.create_schema()
    except BaseException:
        db.close()
        raise
    return db