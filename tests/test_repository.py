import os
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from gitpkgs.repository import RepositoryError, open_repository


def git(repo_dir, *args):
    completed = subprocess.run(
        ["git", *args], cwd=repo_dir, check=True, capture_output=True, text=True
    )
    return completed.stdout.strip()


@pytest.fixture
def repo_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))
    path = tmp_path / "repo"
    path.mkdir()
    git(path, "init", "--initial-branch=main")
    git(path, "config", "user.email", "test@example.com")
    git(path, "config", "user.name", "Test User")
    git(path, "config", "commit.gpgsign", "false")
    return path


def add_file(repo_dir, path, content):
    full = Path(repo_dir) / path
    full.parent.mkdir(parents=True, exist_ok=True)
    full.write_text(content)
    git(repo_dir, "add", path)


def commit(repo_dir, message):
    git(repo_dir, "commit", "-m", message)
    return git(repo_dir, "rev-parse", "HEAD")


def test_opens_existing_repository(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    commit(repo_dir, "Initial commit")

    repo = open_repository(repo_dir)
    assert os.path.realpath(repo.work_dir) == os.path.realpath(repo_dir)
    assert os.path.realpath(repo.git_dir) == os.path.realpath(repo_dir / ".git")


def test_opens_from_subdirectory(repo_dir):
    add_file(repo_dir, "src/main.txt", "x")
    commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir / "src")
    assert os.path.realpath(repo.work_dir) == os.path.realpath(repo_dir)


def test_returns_error_for_non_repo(tmp_path, monkeypatch):
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))
    plain = tmp_path / "plain"
    plain.mkdir()
    with pytest.raises(RepositoryError, match="opening repository"):
        open_repository(plain)


def test_returns_error_for_missing_path(tmp_path):
    with pytest.raises(RepositoryError):
        open_repository(tmp_path / "missing")


def test_database_path(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)
    expected = os.path.realpath(repo_dir / ".git" / "pkgs.sqlite3")
    assert os.path.realpath(repo.database_path()) == expected


def test_current_branch(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)
    assert repo.current_branch() == "main"


def test_head_reference(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    sha = commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)
    assert repo.head() == ("refs/heads/main", sha)


def test_current_branch_detached_raises(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    sha = commit(repo_dir, "Initial commit")
    git(repo_dir, "checkout", "--detach")
    repo = open_repository(repo_dir)
    assert repo.head() == ("HEAD", sha)
    with pytest.raises(RepositoryError, match="HEAD is not a branch"):
        repo.current_branch()


def test_resolve_revision(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    sha = commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)
    assert repo.resolve_revision("HEAD") == sha
    assert repo.resolve_revision("main") == sha
    assert repo.resolve_revision(sha) == sha


def test_resolve_unknown_revision_raises(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)
    with pytest.raises(RepositoryError):
        repo.resolve_revision("no-such-branch")


def test_commit_object(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    sha = commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)

    c = repo.commit_object(repo.resolve_revision(sha))
    assert c.sha == sha
    assert c.author_name == "Test User"
    assert c.author_email == "test@example.com"
    assert "Initial commit" in c.message
    assert c.parents == ()


def test_commit_object_dates_and_parents(repo_dir, monkeypatch):
    add_file(repo_dir, "README.md", "# Test")
    first = commit(repo_dir, "First commit")
    monkeypatch.setenv("GIT_AUTHOR_DATE", "2005-04-07T22:13:13+0200")
    monkeypatch.setenv("GIT_COMMITTER_DATE", "2005-04-07T22:13:13+0200")
    add_file(repo_dir, "file.txt", "content")
    second = commit(repo_dir, "Second commit")

    c = open_repository(repo_dir).commit_object(second)
    expected = datetime(2005, 4, 7, 22, 13, 13, tzinfo=timezone(timedelta(hours=2)))
    assert c.committed_at == expected
    assert c.authored_at == expected
    assert c.parents == (first,)


def test_commit_object_unknown_sha_raises(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)
    with pytest.raises(RepositoryError):
        repo.commit_object("0" * 40)


def test_file_at_commit(repo_dir):
    add_file(repo_dir, "README.md", "# Test Project")
    sha = commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)
    c = repo.commit_object(repo.resolve_revision(sha))
    assert repo.file_at_commit(c, "README.md") == "# Test Project"


def test_file_at_commit_sees_old_contents(repo_dir):
    add_file(repo_dir, "file.txt", "content")
    old = commit(repo_dir, "First")
    add_file(repo_dir, "file.txt", "updated content")
    commit(repo_dir, "Second")
    repo = open_repository(repo_dir)
    assert repo.file_at_commit(repo.commit_object(old), "file.txt") == "content"


def test_file_at_commit_missing_raises(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    sha = commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)
    with pytest.raises(RepositoryError):
        repo.file_at_commit(repo.commit_object(sha), "nope.txt")


def test_tree_at_commit_lists_files(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    add_file(repo_dir, "src/app.txt", "app")
    sha = commit(repo_dir, "Initial commit")
    repo = open_repository(repo_dir)
    tree = repo.tree_at_commit(repo.commit_object(sha))
    assert set(tree) == {"README.md", "src/app.txt"}
    assert tree["README.md"] == git(repo_dir, "rev-parse", f"{sha}:README.md")


def test_log(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    first = commit(repo_dir, "First commit")
    add_file(repo_dir, "file.txt", "content")
    second = commit(repo_dir, "Second commit")
    add_file(repo_dir, "file.txt", "updated content")
    third = commit(repo_dir, "Third commit")

    repo = open_repository(repo_dir)
    commits = list(repo.log(repo.resolve_revision("HEAD")))
    assert len(commits) == 3
    assert [c.sha for c in commits] == [third, second, first]
    assert "Second commit" in commits[1].message


def test_log_from_earlier_commit(repo_dir):
    add_file(repo_dir, "README.md", "# Test")
    first = commit(repo_dir, "First commit")
    add_file(repo_dir, "file.txt", "content")
    second = commit(repo_dir, "Second commit")
    add_file(repo_dir, "file.txt", "updated content")
    commit(repo_dir, "Third commit")

    repo = open_repository(repo_dir)
    assert [c.sha for c in repo.log(second)] == [second, first]