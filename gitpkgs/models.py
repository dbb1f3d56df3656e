"""Record types shared by the database layer and their JSON representation."""

from __future__ import annotations

import dataclasses
from dataclasses import field, make_dataclass
from datetime import datetime
from typing import Any, Optional

_OMIT = {"omitempty": True}

_FieldSpec = list[tuple]


def _required(name: str, kind: type = str) -> _FieldSpec:
    return [(name, kind)]


def _text(*names: str) -> _FieldSpec:
    return [(name, str, field(default="")) for name in names]


def _optional_text(*names: str) -> _FieldSpec:
    return [(name, str, field(default="", metadata=_OMIT)) for name in names]


def _ints(*names: str) -> _FieldSpec:
    return [(name, int, field(default=0)) for name in names]


def _counts(*names: str) -> _FieldSpec:
    return [(name, dict[str, int], field(default_factory=dict)) for name in names]


def _items(kind: Any, *names: str, omit: bool = False) -> _FieldSpec:
    metadata = _OMIT if omit else {}
    return [
        (name, list[kind], field(default_factory=list, metadata=metadata))
        for name in names
    ]


def _moments(*names: str) -> _FieldSpec:
    return [(name, Optional[datetime], field(default=None)) for name in names]


def _record(name: str, doc: str, *groups: _FieldSpec) -> type:
    fields = [spec for group in groups for spec in group]
    return make_dataclass(
        name, fields, namespace={"__doc__": doc, "__module__": __name__}
    )


_AUTHOR = ("author_name", "author_email")
_FILTERS = ("since", "until")

CommitInfo = _record(
    "CommitInfo",
    "A commit as it is written to the database.",
    _required("sha"),
    _text("message", *_AUTHOR),
    _moments("committed_at"),
)

ManifestInfo = _record(
    "ManifestInfo",
    "A manifest or lockfile path with its ecosystem and kind.",
    _required("path"),
    _text("ecosystem", "kind"),
)

ChangeInfo = _record(
    "ChangeInfo",
    "A dependency change as it is written to the database.",
    _text(
        "manifest_path", "name", "ecosystem", "purl", "change_type",
        "requirement", "previous_requirement", "dependency_type",
    ),
)

SnapshotInfo = _record(
    "SnapshotInfo",
    "One dependency entry of a stored snapshot.",
    _text(
        "manifest_path", "name", "ecosystem", "purl",
        "requirement", "dependency_type", "integrity",
    ),
)

BranchInfo = _record(
    "BranchInfo",
    "A tracked branch.",
    _required("id", int),
    _required("name"),
    _text("last_analyzed_sha"),
    _optional_text("last_sha"),
    _ints("commit_count"),
)

Dependency = _record(
    "Dependency",
    "A dependency present at some commit.",
    _required("name"),
    _text("ecosystem", "purl", "requirement", "dependency_type"),
    _optional_text("integrity"),
    _text("manifest_path", "manifest_kind"),
)

Change = _record(
    "Change",
    "A dependency change read back from the database.",
    _required("name"),
    _text("ecosystem", "purl", "change_type", "requirement"),
    _optional_text("previous_requirement"),
    _text("dependency_type", "manifest_path"),
)

CommitWithChanges = _record(
    "CommitWithChanges",
    "A commit together with the dependency changes it made.",
    _required("sha"),
    _text("message", *_AUTHOR, "committed_at"),
    _items(Change, "changes"),
)

LogOptions = _record(
    "LogOptions",
    "Filters for listing commits with dependency changes.",
    _required("branch_id", int),
    _text("ecosystem", "author", *_FILTERS),
    _ints("limit"),
)

HistoryEntry = _record(
    "HistoryEntry",
    "One change in the history of a package.",
    _required("sha"),
    _text(
        "message", *_AUTHOR, "committed_at", "name",
        "ecosystem", "change_type", "requirement",
    ),
    _optional_text("previous_requirement"),
    _text("manifest_path"),
)

HistoryOptions = _record(
    "HistoryOptions",
    "Filters for package history.",
    _required("branch_id", int),
    _text("package_name", "ecosystem", "author", *_FILTERS),
)

BlameEntry = _record(
    "BlameEntry",
    "The commit that introduced a current dependency.",
    _required("name"),
    _text("ecosystem", "requirement", "manifest_path", "sha", *_AUTHOR, "committed_at"),
)

WhyResult = _record(
    "WhyResult",
    "The first commit that added a package.",
    _required("name"),
    _text("ecosystem", "manifest_path", "sha", "message", *_AUTHOR, "committed_at"),
)

SearchResult = _record(
    "SearchResult",
    "A current dependency matching a search pattern.",
    _required("name"),
    _text(
        "ecosystem", "requirement", "first_seen",
        "last_changed", "added_in", "manifest_kind",
    ),
)

NameCount = _record(
    "NameCount",
    "A name paired with a count.",
    _required("name"),
    _ints("count"),
)

Stats = _record(
    "Stats",
    "Summary statistics for a branch.",
    _text("branch"),
    _ints("commits_analyzed", "commits_with_changes", "current_deps"),
    _counts("deps_by_ecosystem"),
    _ints("total_changes"),
    _counts("changes_by_type"),
    _items(NameCount, "top_changed", "top_authors"),
)

AuthorStats = _record(
    "AuthorStats",
    "Dependency change counts for one author.",
    _text("name", "email"),
    _ints("commits", "changes"),
    _counts("by_type"),
)

StatsOptions = _record(
    "StatsOptions",
    "Filters for statistics queries.",
    _required("branch_id", int),
    _text("ecosystem", *_FILTERS),
    _ints("limit"),
)

StaleEntry = _record(
    "StaleEntry",
    "A lockfile dependency and how long since it last changed.",
    _required("name"),
    _text("ecosystem", "requirement", "manifest_path", "last_changed"),
    _ints("days_since"),
)

DatabaseInfo = _record(
    "DatabaseInfo",
    "Facts about a database file and its contents.",
    _required("path"),
    _ints("size_bytes", "schema_version"),
    _text("branch_name", "last_analyzed_sha"),
    _counts("row_counts"),
    _items(str, "ecosystems"),
)

Vulnerability = _record(
    "Vulnerability",
    "A stored vulnerability record.",
    _required("id"),
    _items(str, "aliases", omit=True),
    _text("severity"),
    [("cvss_score", float, field(default=0.0))],
    _optional_text("cvss_vector"),
    _items(str, "references", omit=True),
    _text("summary"),
    _optional_text("details"),
    _text("published_at"),
    _optional_text("withdrawn_at"),
    _text("modified_at", "fetched_at"),
)

VulnerabilityPackage = _record(
    "VulnerabilityPackage",
    "A package affected by a vulnerability.",
    _required("vulnerability_id"),
    _text("ecosystem", "package_name", "affected_versions", "fixed_versions"),
)

VulnSyncStatus = _record(
    "VulnSyncStatus",
    "When vulnerabilities were last synced for a package.",
    _required("ecosystem"),
    _required("package_name"),
    _text("synced_at"),
    _ints("vuln_count"),
)

CachedPackage = _record(
    "CachedPackage",
    "Cached enrichment data for a package.",
    _required("purl"),
    _text("ecosystem", "name", "latest_version", "license"),
    _moments("enriched_at"),
)

CachedVersion = _record(
    "CachedVersion",
    "Cached data for one version of a package.",
    _required("purl"),
    _text("package_purl", "license"),
    _moments("published_at"),
)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _convert(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_json_dict(value)
    if isinstance(value, (list, tuple)):
        return [_convert(item) for item in value]
    if isinstance(value, dict):
        return {key: _convert(item) for key, item in value.items()}
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def to_json_dict(record: Any) -> dict[str, Any]:
    """Return a JSON-ready dict of a record, dropping empty optional fields."""
    if not dataclasses.is_dataclass(record) or isinstance(record, type):
        raise TypeError(f"expected a record instance, got {type(record).__name__}")
    result: dict[str, Any] = {}
    for item in dataclasses.fields(record):
        value = getattr(record, item.name)
        if item.metadata.get("omitempty") and _is_empty(value):
            continue
        result[item.name] = _convert(value)
    return result