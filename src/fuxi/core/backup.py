"""Backup functionality for fuxi.

This module copies the paths tracked by the active profile into the backup
repository, at the locations given by :mod:`fuxi.core.paths`, and commits
the result. Directory copies are additive: files removed from a tracked
directory stay in the repository until they are deleted there by hand.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from .config import Config, PathKind, Profile, TrackedPath
from .errors import ConfigMissingError, ErrorKind, NetworkFailureError
from .paths import to_repo_relative
from .privileged import ConfirmSudo, should_retry, sudo_copy
from .repository import GitRepository

logger = logging.getLogger(__name__)

# Files to exclude when copying tracked directories
EXCLUDED_FILES = [".DS_Store", "Thumbs.db", "desktop.ini", "__pycache__"]


@dataclass
class CopyResult:
    """Outcome of copying one tracked path into the repository."""

    tracked: TrackedPath
    files: List[Path] = field(default_factory=list)
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        """Whether the tracked path was copied."""
        return self.error is None


@dataclass
class BackupReport:
    """Summary of a backup run."""

    profile: str
    results: List[CopyResult] = field(default_factory=list)
    commit: Optional[str] = None
    pushed: bool = False
    push_error: Optional[str] = None

    @property
    def failures(self) -> List[CopyResult]:
        """Tracked paths that could not be copied."""
        return [result for result in self.results if not result.ok]

    @property
    def nothing_to_back_up(self) -> bool:
        """Whether the run found no change to commit."""
        return self.commit is None

    @property
    def failed(self) -> bool:
        """Whether every tracked path failed to copy."""
        return bool(self.results) and len(self.failures) == len(self.results)


def default_message() -> str:
    """Return the commit message used when none is given."""
    return f"Backup {datetime.now().strftime('%Y%m%d-%H%M%S')}"


def open_repository(config: Config) -> GitRepository:
    """Return the configured backup repository.

    Raises:
        ConfigMissingError: If no repository is configured or the configured
            path is not a git repository.
    """
    settings = config.require_repository()
    repo = GitRepository(settings.local_path, branch=settings.branch)
    if not repo.is_repo():
        raise ConfigMissingError(
            f"Backup repository {settings.local_path} is not a git repository. "
            "Please run 'fuxi init' first"
        )
    return repo


class BackupManager:
    """Backs up the active profile's tracked paths into the repository.

    Attributes:
        config (Config): Loaded configuration.
        repo (GitRepository): The backup repository.
        console (Console): Rich console for output.
        confirm_sudo (Optional[ConfirmSudo]): Asked before retrying a copy
            that failed with a permission error; None never retries.
    """

    def __init__(
        self,
        config: Config,
        repo: Optional[GitRepository] = None,
        console: Optional[Console] = None,
        confirm_sudo: Optional[ConfirmSudo] = None,
    ):
        """Initialize the backup manager.

        Args:
            config: Loaded configuration.
            repo: Backup repository. If None, opens the configured one.
            console: Rich console for output. If None, creates a new console.
            confirm_sudo: Prompt callback for privileged retries.
        """
        self.config = config
        self.repo = repo or open_repository(config)
        self.console = console or Console()
        self.confirm_sudo = confirm_sudo
        self._repo_root = self.repo.path.resolve()

    def _in_repository(self, path: Path) -> bool:
        """Check if a path is the backup repository or lies inside it."""
        resolved = path.resolve()
        return resolved == self._repo_root or self._repo_root in resolved.parents

    def _copy_file(self, profile: Profile, source: Path) -> Path:
        """Copy one file to its mapped location and return the destination."""
        destination = self.repo.path / to_repo_relative(profile.name, source)
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(source, destination)
        except PermissionError as e:
            if not should_retry(self.confirm_sudo, source, destination, e):
                raise
            sudo_copy(source, destination)
        return destination

    def _directory_files(self, source: Path) -> List[Path]:
        """List the files under a tracked directory.

        Excluded names and the backup repository itself are skipped.
        """
        files = []
        for root, dirs, filenames in os.walk(source):
            dirs[:] = sorted(
                d
                for d in dirs
                if d not in EXCLUDED_FILES and not self._in_repository(Path(root) / d)
            )
            for filename in sorted(filenames):
                if filename not in EXCLUDED_FILES:
                    files.append(Path(root) / filename)
        return files

    def backup_path(self, profile: Profile, tracked: TrackedPath) -> CopyResult:
        """Copy a single tracked path into the repository.

        Files overwrite whatever is stored at the destination. Directories are
        copied file by file, so every stored file maps back to its source.
        A source that no longer exists, whose kind changed since it was added,
        or that lies inside the backup repository, is reported as a failure
        and nothing is copied for it.
        """
        result = CopyResult(tracked=tracked)
        source = tracked.source

        if not source.exists():
            result.error = ErrorKind.PARTIAL_COPY_FAILURE
            result.message = f"Source path does not exist: {source}"
            return result

        if self._in_repository(source):
            result.error = ErrorKind.INVALID_PATH
            result.message = f"{source} is inside the backup repository {self.repo.path}"
            return result

        actual = PathKind.of(source)
        if actual != tracked.kind:
            result.error = ErrorKind.PARTIAL_COPY_FAILURE
            result.message = (
                f"{source} was added as a {tracked.kind.value} but is now a {actual.value}"
            )
            return result

        sources = [source] if tracked.kind == PathKind.FILE else self._directory_files(source)
        for file_path in sources:
            try:
                self._copy_file(profile, file_path)
                result.files.append(file_path)
            except OSError as e:
                logger.error("Error backing up %s: %s", file_path, e)
                result.error = ErrorKind.PARTIAL_COPY_FAILURE
                result.message = f"Error backing up {file_path}: {e}"
        return result

    def backup(self, message: Optional[str] = None, push: bool = False) -> BackupReport:
        """Back up the active profile.

        Copies every tracked path, stages the changes, and commits them unless
        nothing changed. A push failure is recorded on the report; the local
        commit is kept.

        Args:
            message: Commit message. Defaults to ``Backup <timestamp>``.
            push: Push the commit to ``origin`` afterwards.

        Returns:
            BackupReport: What was copied, committed and pushed.

        Raises:
            NoActiveProfileError: If no profile is active.
        """
        profile = self.config.active()
        report = BackupReport(profile=profile.name)

        if not profile.paths:
            self.console.print(f"[yellow]No paths configured for profile '{profile.name}'")

        for tracked in profile.paths:
            result = self.backup_path(profile, tracked)
            report.results.append(result)
            if result.ok:
                self.console.print(f"[green]Backed up: {escape(str(tracked.source))}")
            else:
                logger.warning("%s", result.message)
                self.console.print(f"[red]Error: {escape(result.message)}")

        self.repo.add(["."], ignore_removal=True)
        if not self.repo.has_staged_changes():
            logger.info("No changes staged in %s", self.repo.path)
            self.console.print("[yellow]Nothing to back up")
        else:
            report.commit = self.repo.commit(message or default_message())
            self.console.print(f"[bold]Backup created: {report.commit[:7]}")

        if push:
            try:
                self.repo.push()
                report.pushed = True
                self.console.print("[green]Backup pushed successfully")
            except NetworkFailureError as e:
                report.push_error = str(e)
                logger.error("Push failed: %s", e)
                self.console.print(f"[red]Error during push: {escape(str(e))}")
        elif report.commit:
            self.console.print("Save the backup to the remote with 'fuxi save'.")

        return report

