"""Git repository functionality for fuxi."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import (
    AmbiguousReferenceError,
    GitError,
    NetworkFailureError,
    NetworkTimeoutError,
    UnknownReferenceError,
)

logger = logging.getLogger(__name__)

REMOTE_NAME = "origin"
LATEST = "latest"
# Seconds a fetch, pull or push may take before it is abandoned.
NETWORK_TIMEOUT = 120
HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
# Separates fields in `git log` output; cannot appear in a commit subject.
FIELD_SEP = "\x1f"
# git output that means the remote could not be reached.
TRANSPORT_ERROR_RE = re.compile(
    r"could not read from remote|unable to access|could not resolve host"
    r"|does not appear to be a git repository|connection (?:refused|reset|timed out)"
    r"|early eof|the remote end hung up",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Commit:
    """A commit in the backup repository; each one is a backup."""

    hash: str
    message: str
    timestamp: datetime

    @property
    def short_hash(self) -> str:
        """Return the abbreviated hash."""
        return self.hash[:7]


@dataclass(frozen=True)
class TreeEntry:
    """A file stored in a commit."""

    mode: str
    object_id: str
    path: PurePosixPath


def match_reference(reference: str, commits: Iterable[Commit]) -> Commit:
    """Find the single commit whose hash starts with ``reference``.

    Raises:
        AmbiguousReferenceError: If several commits share the prefix.
        UnknownReferenceError: If no commit matches.
    """
    if not reference or not HEX_RE.match(reference):
        raise UnknownReferenceError(reference)
    prefix = reference.lower()
    matches: Dict[str, Commit] = {}
    for commit in commits:
        if commit.hash.startswith(prefix):
            matches[commit.hash] = commit
    if not matches:
        raise UnknownReferenceError(reference)
    if len(matches) > 1:
        raise AmbiguousReferenceError(reference, sorted(matches))
    return next(iter(matches.values()))


class GitRepository:
    """Represents the git repository that stores backups.

    This class wraps the ``git`` command line for the operations fuxi needs:
    initialization, staging and committing, talking to the ``origin`` remote,
    and reading history and stored content back.

    Attributes:
        path (Path): Path to the local clone.
        branch (str): Branch that backups are committed to.
    """

    def __init__(self, path: Path, branch: str = "main"):
        """Initialize repository."""
        self.path = Path(path).expanduser().absolute()
        self.name = self.path.name
        self.branch = branch

    def __str__(self) -> str:
        """Return string representation."""
        return f"GitRepository({self.path})"

    def __repr__(self) -> str:
        """Return string representation."""
        return self.__str__()

    def is_repo(self) -> bool:
        """Check if the path exists and is the top level of a git repository."""
        if not self.path.is_dir():
            return False
        try:
            toplevel = self._run_git("rev-parse", "--show-toplevel")
        except GitError:
            return False
        return Path(toplevel).resolve() == self.path.resolve()

    def _run_git(
        self,
        *args: str,
        timeout: Optional[float] = None,
        network: bool = False,
    ) -> str:
        """Run a git command and return its stripped output."""
        output = self._run_git_raw(*args, timeout=timeout, network=network)
        return output.decode("utf-8", errors="surrogateescape").strip()

    def _run_git_raw(
        self,
        *args: str,
        timeout: Optional[float] = None,
        network: bool = False,
    ) -> bytes:
        """Run a git command and return its raw output."""
        command = " ".join(["git", *args])
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["GIT_LITERAL_PATHSPECS"] = "1"
        logger.debug("Running %s in %s", command, self.path)
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=True,
                check=True,
                timeout=timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise NetworkTimeoutError(
                f"Git command timed out after {timeout} seconds", command=command
            ) from e
        except subprocess.CalledProcessError as e:
            output = (e.stderr or e.stdout or b"").decode("utf-8", errors="replace").strip()
            error_cls = NetworkFailureError if network else GitError
            raise error_cls("Git command failed", command=command, output=output) from e
        return result.stdout

    def init(self, remote_url: Optional[str] = None) -> None:
        """Initialize the repository if needed and point ``origin`` at the remote.

        Creates the directory, runs ``git init`` with :attr:`branch` as the
        initial branch, and adds or updates the ``origin`` remote. Running it
        on an existing repository only updates the remote.
        """
        if not self.path.exists():
            self.path.mkdir(parents=True)

        if not self.is_repo():
            self._run_git("init")
            self._run_git("symbolic-ref", "HEAD", f"refs/heads/{self.branch}")
            logger.info("Initialized git repository at %s", self.path)

        if remote_url:
            if self.has_remote():
                self._run_git("remote", "set-url", REMOTE_NAME, remote_url)
            else:
                self._run_git("remote", "add", REMOTE_NAME, remote_url)

    def has_remote(self) -> bool:
        """Check if the ``origin`` remote is configured."""
        return REMOTE_NAME in self._run_git("remote").splitlines()

    def has_commits(self) -> bool:
        """Check if the current branch has at least one commit."""
        try:
            self._run_git("rev-parse", "--verify", "--quiet", "HEAD")
            return True
        except GitError:
            return False

    def add(self, paths: Sequence[str], ignore_removal: bool = False) -> None:
        """Stage paths.

        Args:
            paths: Paths relative to the repository root.
            ignore_removal: Stage new and modified files only; files deleted
                from the working tree stay in the index.
        """
        args = ["add"]
        if ignore_removal:
            args.append("--ignore-removal")
        self._run_git(*args, "--", *paths)

    def add_all(self) -> None:
        """Stage every change in the working tree, deletions included."""
        self._run_git("add", "--all")

    def _status(self) -> List[str]:
        # Not stripped: the leading column is the index status.
        output = self._run_git_raw("status", "--porcelain").decode("utf-8", errors="replace")
        return [line for line in output.splitlines() if line]

    def has_pending_changes(self) -> bool:
        """Check if the working tree or index differs from HEAD."""
        return bool(self._status())

    def has_staged_changes(self) -> bool:
        """Check if the index holds changes that a commit would record."""
        return any(line[0] not in " ?" for line in self._status())

    def commit(self, message: str) -> str:
        """Commit staged changes and return the new commit hash."""
        self._run_git("commit", "-m", message)
        return self.rev_parse("HEAD")

    def rev_parse(self, ref: str) -> str:
        """Resolve a ref to a full commit hash."""
        return self._run_git("rev-parse", "--verify", f"{ref}^{{commit}}")

    def try_rev_parse(self, ref: str) -> Optional[str]:
        """Resolve a ref, returning None if it does not exist."""
        try:
            return self.rev_parse(ref)
        except GitError:
            return None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Check if ``ancestor`` is reachable from ``descendant``."""
        try:
            self._run_git("merge-base", "--is-ancestor", ancestor, descendant)
            return True
        except GitError:
            return False

    @property
    def remote_branch(self) -> str:
        """Return the remote-tracking ref for :attr:`branch`."""
        return f"{REMOTE_NAME}/{self.branch}"

    def push(self) -> None:
        """Push :attr:`branch` to ``origin``."""
        self._run_git(
            "push",
            "--set-upstream",
            REMOTE_NAME,
            self.branch,
            timeout=NETWORK_TIMEOUT,
            network=True,
        )

    def fetch(self) -> None:
        """Fetch from ``origin``."""
        self._run_git("fetch", REMOTE_NAME, timeout=NETWORK_TIMEOUT, network=True)

    def pull(self) -> None:
        """Pull :attr:`branch` from ``origin`` into the local clone.

        Raises:
            NetworkFailureError: If the remote cannot be reached.
            GitError: If the merge itself fails, for example on a conflict or
                local changes that would be overwritten.
        """
        try:
            self._run_git(
                "pull",
                "--no-edit",
                "--no-rebase",
                REMOTE_NAME,
                self.branch,
                timeout=NETWORK_TIMEOUT,
                network=True,
            )
        except NetworkTimeoutError:
            raise
        except NetworkFailureError as e:
            if TRANSPORT_ERROR_RE.search(e.output):
                raise
            raise GitError("Git pull failed", command=e.command, output=e.output) from e

    def log(self, all_refs: bool = False) -> List[Commit]:
        """List commits, newest first.

        Args:
            all_refs: Include commits reachable from any ref, such as
                remote-tracking branches, not just HEAD.
        """
        if not all_refs and not self.has_commits():
            return []
        args = ["log", f"--format=%H{FIELD_SEP}%ct{FIELD_SEP}%s"]
        if all_refs:
            args.append("--all")
        try:
            output = self._run_git(*args)
        except GitError:
            # A repository without any commit has nothing to log.
            if not self.has_commits():
                return []
            raise
        commits = []
        for line in output.splitlines():
            commit_hash, timestamp, message = line.split(FIELD_SEP, 2)
            commits.append(
                Commit(
                    hash=commit_hash,
                    message=message,
                    timestamp=datetime.fromtimestamp(int(timestamp)),
                )
            )
        return commits

    def latest(self) -> Optional[str]:
        """Return the newest commit of the tracked branch, local or remote.

        When the local branch and its remote-tracking branch have diverged,
        the local head wins.
        """
        local = self.try_rev_parse("HEAD")
        remote = self.try_rev_parse(self.remote_branch)
        if local is None or remote is None:
            return local or remote
        if local == remote or self.is_ancestor(remote, local):
            return local
        if self.is_ancestor(local, remote):
            return remote
        logger.warning(
            "Local branch %s and %s have diverged; using the local head",
            self.branch,
            self.remote_branch,
        )
        return local

    def resolve_ref(self, token: str) -> str:
        """Resolve a backup reference to a full commit hash.

        Args:
            token: ``latest``, an unambiguous hash prefix, or a full hash.

        Raises:
            AmbiguousReferenceError: If several commits match the prefix.
            UnknownReferenceError: If nothing matches.
        """
        if token == LATEST:
            latest = self.latest()
            if latest is None:
                raise UnknownReferenceError(token)
            return latest
        return match_reference(token, self.log(all_refs=True)).hash

    def ls_tree(self, commit: str, path: PurePosixPath) -> List[TreeEntry]:
        """List the files stored under ``path`` in ``commit``, sorted by path."""
        output = self._run_git_raw("ls-tree", "-r", "-z", "--full-tree", commit, "--", str(path))
        entries = []
        for record in output.decode("utf-8", errors="surrogateescape").split("\0"):
            if not record:
                continue
            meta, entry_path = record.split("\t", 1)
            mode, object_type, object_id = meta.split()
            if object_type != "blob":
                continue
            entries.append(
                TreeEntry(mode=mode, object_id=object_id, path=PurePosixPath(entry_path))
            )
        entries.sort(key=lambda entry: str(entry.path))
        return entries

    def read_blob(self, object_id: str) -> bytes:
        """Return the content of a stored file."""
        return self._run_git_raw("cat-file", "blob", object_id)
