"""Read access to a git repository through the git command."""

from __future__ import annotations

import io
import os
import re
import subprocess
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

DATABASE_FILE = "pkgs.sqlite3"

_BRANCH_PREFIX = "refs/heads/"
_SIGNATURE = re.compile(
    r"^(?P<name>.*?) ?<(?P<email>[^>]*)> (?P<seconds>-?\d+) (?P<offset>[+-]\d{4})$"
)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class RepositoryError(Exception):
    """Raised when git cannot answer a question about the repository."""


@dataclass(frozen=True)
class Commit:
    """A commit object read from the repository."""

    sha: str
    tree: str
    parents: tuple[str, ...]
    author_name: str
    author_email: str
    authored_at: datetime
    committer_name: str
    committer_email: str
    committed_at: datetime
    message: str


def _git(cwd: str, *args: str, stdin: Optional[bytes] = None) -> bytes:
    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=cwd,
            input=stdin,
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        raise RepositoryError(f"running git: {exc}") from exc
    if completed.returncode != 0:
        message = completed.stderr.decode("utf-8", errors="replace").strip()
        raise RepositoryError(message or f"git {args[0]} failed")
    return completed.stdout


def _parse_signature(value: str) -> tuple[str, str, datetime]:
    match = _SIGNATURE.match(value)
    if match is None:
        return value, "", _EPOCH
    offset = match["offset"]
    sign = -1 if offset[0] == "-" else 1
    delta = timedelta(hours=int(offset[1:3]), minutes=int(offset[3:5]))
    when = datetime.fromtimestamp(int(match["seconds"]), timezone(sign * delta))
    return match["name"], match["email"], when


def _parse_commit(sha: str, raw: bytes) -> Commit:
    text = raw.decode("utf-8", errors="replace")
    header, _, message = text.partition("\n\n")
    tree = ""
    parents: list[str] = []
    author = committer = ("", "", _EPOCH)
    for line in header.split("\n"):
        if line.startswith(" "):
            continue
        key, _, value = line.partition(" ")
        if key == "tree":
            tree = value
        elif key == "parent":
            parents.append(value)
        elif key == "author":
            author = _parse_signature(value)
        elif key == "committer":
            committer = _parse_signature(value)
    return Commit(
        sha=sha,
        tree=tree,
        parents=tuple(parents),
        author_name=author[0],
        author_email=author[1],
        authored_at=author[2],
        committer_name=committer[0],
        committer_email=committer[1],
        committed_at=committer[2],
        message=message,
    )


class Repository:
    """A git working tree and the location of its metadata."""

    def __init__(self, work_dir: str, git_dir: str) -> None:
        self.work_dir = work_dir
        self.git_dir = git_dir

    def _git(self, *args: str, stdin: Optional[bytes] = None) -> bytes:
        return _git(self.work_dir, *args, stdin=stdin)

    def database_path(self) -> str:
        """Return where the package database lives for this repository."""
        return os.path.join(self.git_dir, DATABASE_FILE)

    def head(self) -> tuple[str, str]:
        """Return HEAD as (reference name, commit sha); the name is "HEAD" when detached."""
        sha = self._git("rev-parse", "--verify", "HEAD").decode().strip()
        try:
            name = self._git("symbolic-ref", "-q", "HEAD").decode().strip()
        except RepositoryError:
            name = "HEAD"
        return name, sha

    def current_branch(self) -> str:
        """Return the short name of the checked-out branch."""
        name, _ = self.head()
        if not name.startswith(_BRANCH_PREFIX):
            raise RepositoryError("HEAD is not a branch")
        return name[len(_BRANCH_PREFIX):]

    def resolve_revision(self, rev: str) -> str:
        """Return the commit sha that a revision names."""
        try:
            out = self._git("rev-parse", "--verify", f"{rev}^{{commit}}")
        except RepositoryError as exc:
            raise RepositoryError(f"resolving revision {rev!r}: {exc}") from exc
        return out.decode().strip()

    def commit_object(self, sha: str) -> Commit:
        """Read one commit object."""
        try:
            raw = self._git("cat-file", "commit", sha)
        except RepositoryError as exc:
            raise RepositoryError(f"reading commit {sha}: {exc}") from exc
        return _parse_commit(sha, raw)

    def log(self, start: str) -> Iterator[Commit]:
        """Yield the commits reachable from start, newest committer time first."""
        shas = self._git("rev-list", "--date-order", start).decode().split()
        if not shas:
            return
        request = ("\n".join(shas) + "\n").encode()
        stream = io.BytesIO(self._git("cat-file", "--batch", stdin=request))
        for _ in shas:
            fields = stream.readline().decode().split()
            if len(fields) != 3 or fields[1] != "commit":
                raise RepositoryError(f"unexpected object in history: {' '.join(fields)}")
            raw = stream.read(int(fields[2]))
            stream.read(1)
            yield _parse_commit(fields[0], raw)

    def tree_at_commit(self, commit: Commit) -> dict[str, str]:
        """Return every file in a commit's tree, mapped to its blob sha."""
        out = self._git("ls-tree", "-r", "-z", commit.tree)
        files: dict[str, str] = {}
        for entry in out.split(b"\0"):
            if not entry:
                continue
            meta, _, path = entry.partition(b"\t")
            _mode, kind, blob = meta.decode().split()
            if kind == "blob":
                files[path.decode("utf-8", errors="replace")] = blob
        return files

    def file_at_commit(self, commit: Commit, path: str) -> str:
        """Return the contents of a file as it was at a commit."""
        try:
            data = self._git("cat-file", "blob", f"{commit.sha}:{path}")
        except RepositoryError as exc:
            raise RepositoryError(f"reading {path} at {commit.sha}: {exc}") from exc
        return data.decode("utf-8", errors="replace")


def open_repository(path: Union[str, "os.PathLike[str]"]) -> Repository:
    """Open the repository containing path."""
    try:
        out = _git(os.fspath(path), "rev-parse", "--show-toplevel")
    except RepositoryError as exc:
        raise RepositoryError(f"opening repository: {exc}") from exc
    work_dir = out.decode().strip()
    if not work_dir:
        raise RepositoryError("opening repository: no working tree")
    work_dir = os.path.normpath(work_dir)
    return Repository(work_dir, os.path.join(work_dir, ".git"))