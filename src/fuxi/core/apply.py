"""Apply functionality for fuxi.

Applying a backup resolves a reference to a commit, plans one action per file
stored under the active profile in that commit, and, unless it is a dry run,
writes the stored content back to the original locations. The plan is the
same in both modes; a dry run only skips the writes.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from .backup import open_repository
from .config import Config, Profile
from .errors import ErrorKind, GitError
from .paths import profile_root, to_source
from .privileged import ConfirmSudo, should_retry, sudo_copy
from .repository import GitRepository, TreeEntry

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = "100755"
SYMLINK_MODE = "120000"


class ActionType(str, Enum):
    """What applying a stored file does to its destination."""

    CREATE = "create"
    OVERWRITE = "overwrite"
    NOOP = "no-op"


@dataclass
class ApplyAction:
    """A planned (and possibly performed) write of one stored file."""

    repo_path: PurePosixPath
    destination: Path
    action: ActionType
    object_id: str
    mode: str = "100644"
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        """Whether the action succeeded (always True before it runs)."""
        return self.error is None


@dataclass
class ApplyReport:
    """Summary of an apply run."""

    reference: str
    commit: str
    dry_run: bool
    actions: List[ApplyAction] = field(default_factory=list)

    @property
    def failures(self) -> List[ApplyAction]:
        """Actions that could not be performed."""
        return [action for action in self.actions if not action.ok]

    @property
    def failed(self) -> bool:
        """Whether any file failed to apply."""
        return bool(self.failures)


def git_blob_hash(data: bytes, algorithm: str = "sha1") -> str:
    """Return the object id git assigns to a blob with this content."""
    digest = hashlib.new(algorithm)
    digest.update(b"blob %d\0" % len(data))
    digest.update(data)
    return digest.hexdigest()


def plan_action(destination: Path, object_id: str) -> ActionType:
    """Decide what writing a stored blob to ``destination`` would do."""
    if not os.path.lexists(destination):
        return ActionType.CREATE
    if not destination.is_file():
        return ActionType.OVERWRITE
    try:
        data = destination.read_bytes()
    except OSError:
        return ActionType.OVERWRITE
    algorithm = "sha256" if len(object_id) == 64 else "sha1"
    if git_blob_hash(data, algorithm) == object_id:
        return ActionType.NOOP
    return ActionType.OVERWRITE


def write_file(destination: Path, content: bytes, executable: bool = False) -> None:
    """Write ``content`` to ``destination``, creating parent directories."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(content)
    if executable:
        destination.chmod(destination.stat().st_mode | 0o111)


class ApplyManager:
    """Restores files from a backup commit to their original locations."""

    def __init__(
        self,
        config: Config,
        repo: Optional[GitRepository] = None,
        console: Optional[Console] = None,
        confirm_sudo: Optional[ConfirmSudo] = None,
    ) -> None:
        """Initialize apply manager.

        Args:
            config: Loaded configuration.
            repo: Backup repository. If None, opens the configured one.
            console: Rich console for output.
            confirm_sudo: Asked before retrying a write that failed with a
                permission error. If None, such writes simply fail.
        """
        self.config = config
        self.repo = repo or open_repository(config)
        self.console = console or Console()
        self.confirm_sudo = confirm_sudo

    def resolve(self, reference: str) -> str:
        """Fetch from the remote and resolve ``reference`` to a commit hash.

        Raises:
            NetworkFailureError: If the fetch fails.
            AmbiguousReferenceError: If a prefix matches several commits.
            UnknownReferenceError: If nothing matches.
        """
        if self.repo.has_remote():
            self.console.print("Fetching from remote...")
            self.repo.fetch()
        else:
            logger.warning("No remote configured for %s; using local history", self.repo.path)
        commit = self.repo.resolve_ref(reference)
        logger.debug("Resolved %s to %s", reference, commit)
        return commit

    def plan(self, profile: Profile, commit: str) -> List[ApplyAction]:
        """Plan one action per file stored under the profile in ``commit``.

        Actions are ordered by repository path.
        """
        actions: List[ApplyAction] = []
        entries: List[TreeEntry] = self.repo.ls_tree(commit, profile_root(profile.name))
        for entry in entries:
            if entry.mode == SYMLINK_MODE:
                logger.warning("Skipping symbolic link stored at %s", entry.path)
                continue
            try:
                destination = to_source(profile.name, entry.path)
            except ValueError as e:
                logger.warning("Skipping %s: %s", entry.path, e)
                continue
            actions.append(
                ApplyAction(
                    repo_path=entry.path,
                    destination=destination,
                    action=plan_action(destination, entry.object_id),
                    object_id=entry.object_id,
                    mode=entry.mode,
                )
            )
        return actions

    def _write(self, action: ApplyAction) -> None:
        """Write a stored file to its destination.

        A permission error is retried once through sudo if the user agrees.
        """
        content = self.repo.read_blob(action.object_id)
        executable = action.mode == EXECUTABLE_MODE
        try:
            write_file(action.destination, content, executable)
        except PermissionError as e:
            if not should_retry(self.confirm_sudo, action.repo_path, action.destination, e):
                raise
            with tempfile.TemporaryDirectory() as staging_dir:
                staged = Path(staging_dir) / action.destination.name
                write_file(staged, content, executable)
                staged.chmod(staged.stat().st_mode | 0o644)
                sudo_copy(staged, action.destination)

    def apply(self, reference: str, dry_run: bool = False) -> ApplyReport:
        """Apply a backup to the filesystem.

        Args:
            reference: ``latest``, a commit hash prefix, or a full hash.
            dry_run: Plan and report without touching the filesystem or the
                local clone.

        Returns:
            ApplyReport: The ordered action list. After a real run, failed
            actions carry their error; the remaining files are still applied.

        Raises:
            NoActiveProfileError: If no profile is active.
            NetworkFailureError: If fetching or pulling fails.
            AmbiguousReferenceError: If a prefix matches several commits.
            UnknownReferenceError: If nothing matches.
        """
        profile = self.config.active()
        commit = self.resolve(reference)
        report = ApplyReport(reference=reference, commit=commit, dry_run=dry_run)
        report.actions = self.plan(profile, commit)

        if not dry_run and self.repo.has_remote():
            if self.repo.try_rev_parse(self.repo.remote_branch) is not None:
                self.console.print("Pulling from remote...")
                self.repo.pull()

        if not report.actions:
            self.console.print(
                f"[yellow]No files stored for profile '{profile.name}' in {commit[:7]}"
            )

        for action in report.actions:
            if dry_run:
                self.console.print(
                    f"\\[Dry Run] Would {action.action.value}: {escape(str(action.destination))}"
                )
                continue
            if action.action == ActionType.NOOP:
                self.console.print(f"Unchanged: {escape(str(action.destination))}")
                continue
            try:
                self._write(action)
                self.console.print(
                    f"[green]Applied ({action.action.value}): {escape(str(action.destination))}"
                )
            except (OSError, GitError) as e:
                action.error = ErrorKind.PARTIAL_COPY_FAILURE
                action.message = str(e)
                logger.error("Error applying %s: %s", action.destination, e)
                self.console.print(
                    f"[red]Error applying {escape(str(action.destination))}: {escape(str(e))}"
                )

        return report
