import pytest

from gitpkgs.branches import (
    get_branch,
    get_branches,
    get_changes_for_commit,
    get_changes_for_commits,
    get_commit_id,
    get_default_branch,
    get_dependencies_at_commit,
    get_dependencies_at_ref,
    get_last_snapshot,
    get_latest_dependencies,
    get_max_position,
    remove_branch,
)
from gitpkgs.database import NotFoundError, create


@pytest.fixture
def db(tmp_path):
    database = create(tmp_path / "pkgs.sqlite3")
    yield database
    database.close()


def add_branch(db, name, last_sha=None):
    return db.execute(
        "INSERT INTO branches (name, last_analyzed_sha) VALUES (?, ?)", name, last_sha
    ).lastrowid


def add_commit(db, sha, committed_at="2024-01-01 00:00:00"):
    return db.execute(
        "INSERT INTO commits (sha, message, committed_at) VALUES (?, ?, ?)",
        sha,
        "message",
        committed_at,
    ).lastrowid


def link(db, branch_id, commit_id, position):
    db.execute(
        "INSERT INTO branch_commits (branch_id, commit_id, position) VALUES (?, ?, ?)",
        branch_id,
        commit_id,
        position,
    )


def add_manifest(db, path, ecosystem="npm", kind="manifest"):
    return db.execute(
        "INSERT INTO manifests (path, ecosystem, kind) VALUES (?, ?, ?)",
        path,
        ecosystem,
        kind,
    ).lastrowid


def add_snapshot(db, commit_id, manifest_id, name, requirement="1.0.0",
                 ecosystem="npm", integrity=None):
    db.execute(
        "INSERT INTO dependency_snapshots (commit_id, manifest_id, name, ecosystem, "
        "purl, requirement, dependency_type, integrity) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        commit_id,
        manifest_id,
        name,
        ecosystem,
        None if ecosystem is None else f"pkg:{ecosystem}/{name}",
        requirement,
        "runtime",
        integrity,
    )


def add_change(db, commit_id, manifest_id, name, change_type="added",
               requirement="1.0.0", previous=None, ecosystem="npm"):
    db.execute(
        "INSERT INTO dependency_changes (commit_id, manifest_id, name, ecosystem, purl, "
        "change_type, requirement, previous_requirement, dependency_type) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        commit_id,
        manifest_id,
        name,
        ecosystem,
        f"pkg:{ecosystem}/{name}",
        change_type,
        requirement,
        previous,
        "runtime",
    )


def test_get_branch_returns_stored_fields(db):
    branch_id = add_branch(db, "main", "abc123")
    info = get_branch(db, "main")
    assert info.id == branch_id
    assert info.name == "main"
    assert info.last_analyzed_sha == "abc123"
    assert info.last_sha == ""


def test_get_branch_null_sha_is_empty(db):
    add_branch(db, "main")
    assert get_branch(db, "main").last_analyzed_sha == ""


def test_get_branch_missing_raises(db):
    with pytest.raises(NotFoundError):
        get_branch(db, "main")


def test_get_default_branch_is_first_recorded(db):
    first = add_branch(db, "zeta", "deadbeef")
    add_branch(db, "alpha")
    info = get_default_branch(db)
    assert info.id == first
    assert info.name == "zeta"
    assert info.last_sha == info.last_analyzed_sha == "deadbeef"


def test_get_default_branch_without_branches_raises(db):
    with pytest.raises(NotFoundError):
        get_default_branch(db)


def test_get_branches_orders_by_name_and_counts_commits(db):
    add_branch(db, "zeta")
    alpha = add_branch(db, "alpha")
    commits = [add_commit(db, "a" * 40), add_commit(db, "b" * 40)]
    for position, commit_id in enumerate(commits, start=1):
        link(db, alpha, commit_id, position)

    branches = get_branches(db)
    assert [b.name for b in branches] == ["alpha", "zeta"]
    assert branches[0].commit_count == len(commits)
    assert branches[1].commit_count == 0


def test_get_branches_empty(db):
    assert get_branches(db) == []


def test_remove_branch_keeps_commits(db):
    branch_id = add_branch(db, "feature")
    commit_id = add_commit(db, "c" * 40)
    link(db, branch_id, commit_id, 1)

    remove_branch(db, "feature")

    assert get_branches(db) == []
    assert db.query_one("SELECT COUNT(*) FROM branch_commits")[0] == 0
    assert get_commit_id(db, "c" * 40) == commit_id


def test_remove_missing_branch_raises(db):
    with pytest.raises(NotFoundError, match="ghost"):
        remove_branch(db, "ghost")


def test_get_max_position(db):
    branch_id = add_branch(db, "main")
    assert get_max_position(db, branch_id) == 0
    for position, sha in ((1, "a"), (5, "b"), (3, "c")):
        link(db, branch_id, add_commit(db, sha * 40), position)
    assert get_max_position(db, branch_id) == 5


def test_get_last_snapshot_uses_latest_snapshot(db):
    branch_id = add_branch(db, "main")
    manifest = add_manifest(db, "package.json")
    first = add_commit(db, "a" * 40)
    second = add_commit(db, "b" * 40)
    link(db, branch_id, first, 1)
    link(db, branch_id, second, 2)
    add_snapshot(db, first, manifest, "lodash", "1.0.0")
    add_snapshot(db, second, manifest, "lodash", "2.0.0", integrity="sha512-abc")
    add_snapshot(db, second, manifest, "express", "4.18.2")

    snapshot = get_last_snapshot(db, branch_id)
    assert set(snapshot) == {"package.json:lodash", "package.json:express"}
    lodash = snapshot["package.json:lodash"]
    assert lodash.requirement == "2.0.0"
    assert lodash.manifest_path == "package.json"
    assert lodash.name == "lodash"
    assert lodash.integrity == "sha512-abc"
    assert lodash.purl == "pkg:npm/lodash"


def test_get_last_snapshot_empty_without_snapshots(db):
    branch_id = add_branch(db, "main")
    link(db, branch_id, add_commit(db, "a" * 40), 1)
    assert get_last_snapshot(db, branch_id) == {}


def test_get_last_snapshot_null_columns_become_empty(db):
    branch_id = add_branch(db, "main")
    manifest = add_manifest(db, "Gemfile")
    commit_id = add_commit(db, "a" * 40)
    link(db, branch_id, commit_id, 1)
    add_snapshot(db, commit_id, manifest, "rails", ecosystem=None)

    info = get_last_snapshot(db, branch_id)["Gemfile:rails"]
    assert info.ecosystem == ""
    assert info.purl == ""
    assert info.integrity == ""


def test_get_latest_dependencies_sorted_by_path_then_name(db):
    branch_id = add_branch(db, "main")
    npm = add_manifest(db, "package.json", "npm", "manifest")
    gem = add_manifest(db, "Gemfile.lock", "gem", "lockfile")
    commit_id = add_commit(db, "a" * 40)
    link(db, branch_id, commit_id, 1)
    add_snapshot(db, commit_id, npm, "lodash")
    add_snapshot(db, commit_id, npm, "express")
    add_snapshot(db, commit_id, gem, "rails", ecosystem="gem")

    deps = get_latest_dependencies(db, branch_id)
    keys = [(d.manifest_path, d.name) for d in deps]
    assert keys == sorted(keys)
    assert len(deps) == 3
    kinds = {d.name: d.manifest_kind for d in deps}
    assert kinds["rails"] == "lockfile"
    assert kinds["lodash"] == "manifest"


def test_get_latest_dependencies_none(db):
    branch_id = add_branch(db, "main")
    assert get_latest_dependencies(db, branch_id) == []


def test_get_dependencies_at_ref_uses_snapshot_at_or_before(db):
    branch_id = add_branch(db, "main")
    manifest = add_manifest(db, "package.json")
    c1 = add_commit(db, "1" * 40)
    c2 = add_commit(db, "2" * 40)
    c3 = add_commit(db, "3" * 40)
    for position, commit_id in enumerate((c1, c2, c3), start=1):
        link(db, branch_id, commit_id, position)
    add_snapshot(db, c1, manifest, "lodash", "1.0.0")
    add_snapshot(db, c3, manifest, "lodash", "3.0.0")

    at_second = get_dependencies_at_ref(db, "2" * 40, branch_id)
    assert [d.requirement for d in at_second] == ["1.0.0"]
    at_third = get_dependencies_at_ref(db, "3" * 40, branch_id)
    assert [d.requirement for d in at_third] == ["3.0.0"]


def test_get_dependencies_at_unknown_ref_is_empty(db):
    branch_id = add_branch(db, "main")
    assert get_dependencies_at_ref(db, "f" * 40, branch_id) == []


def test_get_dependencies_at_commit(db):
    branch_id = add_branch(db, "main")
    manifest = add_manifest(db, "package.json")
    first = add_commit(db, "a" * 40)
    second = add_commit(db, "b" * 40)
    link(db, branch_id, first, 1)
    link(db, branch_id, second, 2)
    add_snapshot(db, first, manifest, "lodash", "1.0.0")
    add_snapshot(db, second, manifest, "lodash", "2.0.0")

    assert [d.requirement for d in get_dependencies_at_commit(db, "b" * 40)] == ["2.0.0"]
    assert [d.requirement for d in get_dependencies_at_commit(db, "a" * 40)] == ["1.0.0"]
    assert get_dependencies_at_commit(db, "0" * 40) == []


def test_get_commit_id(db):
    commit_id = add_commit(db, "a" * 40)
    assert get_commit_id(db, "a" * 40) == commit_id
    with pytest.raises(NotFoundError):
        get_commit_id(db, "b" * 40)


def test_get_changes_for_commit_ordered(db):
    commit_id = add_commit(db, "a" * 40)
    npm = add_manifest(db, "package.json")
    gem = add_manifest(db, "Gemfile", "gem")
    add_change(db, commit_id, npm, "lodash", "modified", "2.0.0", previous="1.0.0")
    add_change(db, commit_id, npm, "express")
    add_change(db, commit_id, gem, "rails", ecosystem="gem")

    changes = get_changes_for_commit(db, "a" * 40)
    keys = [(c.manifest_path, c.name) for c in changes]
    assert keys == sorted(keys)
    lodash = next(c for c in changes if c.name == "lodash")
    assert lodash.change_type == "modified"
    assert lodash.previous_requirement == "1.0.0"
    express = next(c for c in changes if c.name == "express")
    assert express.previous_requirement == ""


def test_get_changes_for_commits_groups_by_sha(db):
    manifest = add_manifest(db, "package.json")
    first = add_commit(db, "a" * 40)
    second = add_commit(db, "b" * 40)
    add_change(db, first, manifest, "lodash")
    add_change(db, second, manifest, "express")
    add_change(db, second, manifest, "jest")

    grouped = get_changes_for_commits(db, ["a" * 40, "b" * 40, "c" * 40])
    assert set(grouped) == {"a" * 40, "b" * 40}
    assert [c.name for c in grouped["a" * 40]] == ["lodash"]
    assert [c.name for c in grouped["b" * 40]] == ["express", "jest"]


def test_get_changes_for_commits_empty_input(db):
    assert get_changes_for_commits(db, []) == {}