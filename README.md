# gitpkgs

`gitpkgs` keeps a record of how the dependencies of a git repository change
over time. Commits, the dependency changes they made and periodic snapshots
of the full dependency set are stored in a SQLite database that lives in the
repository's `.git` directory, and can be read back per branch and per
commit.

It needs Python 3.10 or later and a `git` executable on the `PATH`. It has no
third-party runtime dependencies.

## Reading a repository

`gitpkgs.repository` reads a repository by running `git`.

```python
from gitpkgs.repository import open_repository

repo = open_repository(".")
print(repo.work_dir, repo.git_dir)
print(repo.current_branch())          # e.g. "main"; RepositoryError when HEAD is detached
print(repo.database_path())           # <work dir>/.git/pkgs.sqlite3

head_sha = repo.resolve_revision("HEAD")
commit = repo.commit_object(head_sha)
print(commit.author_name, commit.committed_at, commit.message)

for c in repo.log(head_sha):          # newest committer time first
    print(c.sha, c.message.splitlines()[0])

print(repo.file_at_commit(commit, "README.md"))
print(repo.tree_at_commit(commit))    # {path: blob sha}
```

Failures from `git` are raised as `RepositoryError`.

## The database

```python
from gitpkgs.database import create, exists, open_database

path = repo.database_path()
db = open_database(path) if exists(path) else create(path)
print(db.schema_version())            # 5
```

`create` removes any file already at the path and writes the full schema.
`open_database` opens an existing file. A `Database` is a context manager
that closes its connection on exit; `execute`, `query_one` and `query_all`
run SQL directly, and `transaction()` wraps statements in one transaction
that is rolled back if an exception escapes.

## Writing history

`Writer` writes one row at a time. `insert_commit` returns the commit's id
and whether it was newly stored; a commit already stored for another branch
is only linked to the current one.

```python
from datetime import datetime, timezone

from gitpkgs.models import ChangeInfo, CommitInfo, ManifestInfo, SnapshotInfo
from gitpkgs.writer import Writer

manifest = ManifestInfo(path="package.json", ecosystem="npm", kind="manifest")

with Writer(db) as writer:
    writer.create_branch("main")
    commit_id, was_new = writer.insert_commit(
        CommitInfo(
            sha="0" * 40,
            message="Add lodash",
            author_name="Test User",
            author_email="test@example.com",
            committed_at=datetime.now(timezone.utc),
        ),
        True,
    )
    writer.insert_change(
        commit_id,
        manifest,
        ChangeInfo(manifest_path="package.json", name="lodash", ecosystem="npm",
                   purl="pkg:npm/lodash", change_type="added", requirement="^4.17.21"),
    )
    writer.insert_snapshot(
        commit_id,
        manifest,
        SnapshotInfo(manifest_path="package.json", name="lodash", ecosystem="npm",
                     requirement="^4.17.21"),
    )
    writer.update_branch_last_sha("0" * 40)
```

`BatchWriter` queues the same data and writes it with multi-row inserts in a
single transaction on each `flush()`. `should_flush()` tells when
`batch_size` commits (500 by default) are queued, and
`increment_dep_commit_count()` with `should_store_snapshot()` tells when a
snapshot is due every `snapshot_interval` commits (100 by default).
`use_branch(branch_id)` continues an existing branch after its last position.

## Reading history back

```python
from gitpkgs.branches import (
    get_branches, get_changes_for_commit, get_default_branch, get_latest_dependencies,
)
from gitpkgs.models import StatsOptions, to_json_dict
from gitpkgs.stats import get_author_stats, get_database_info, get_stats

branch = get_default_branch(db)

for dep in get_latest_dependencies(db, branch.id):
    print(dep.manifest_path, dep.name, dep.requirement)

for change in get_changes_for_commit(db, "0" * 40):
    print(change.change_type, change.name, change.requirement)

print([b.name for b in get_branches(db)])
print(get_stats(db, StatsOptions(branch_id=branch.id)))
print(get_author_stats(db, StatsOptions(branch_id=branch.id)))
print(to_json_dict(get_database_info(db)))
```

`gitpkgs.branches` also offers `get_branch`, `remove_branch`,
`get_last_snapshot`, `get_max_position`, `get_dependencies_at_commit`,
`get_dependencies_at_ref`, `get_commit_id` and `get_changes_for_commits`.
Lookups of a single branch or commit that does not exist raise
`gitpkgs.database.NotFoundError`.

Every record is a dataclass in `gitpkgs.models`; `to_json_dict` turns one
into a plain dictionary with the same field names, leaving out empty
optional fields.

## Package metadata cache

`gitpkgs.cache` stores enrichment data for packages and versions
(`save_package_enrichment`, `save_versions`) and reads back only entries
newer than a given `timedelta` (`get_cached_packages`,
`get_cached_versions`).

## What it does not do

- There is no command-line program; everything is used from Python.
- It does not find or parse manifests and lockfiles, and does not walk a
  branch's commits to work out dependency changes: the caller supplies the
  commits, changes and snapshots to store.
- It has no queries for package history, blame, "why was this added",
  search or stale dependencies beyond what is listed above.
- It does not look up or store vulnerability data; the vulnerability tables
  are created by the schema but nothing in the package reads or writes them.