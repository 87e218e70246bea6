"""Save functionality for fuxi.

Saving commits whatever is pending in the backup repository, independent of
the tracked paths, and pushes it. It is meant for edits made directly inside
the repository clone, and for pushing backups taken without ``--push``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from rich.console import Console

from .backup import open_repository
from .config import Config
from .repository import GitRepository

logger = logging.getLogger(__name__)

DEFAULT_SAVE_MESSAGE = "Save configuration"
CONFIRM_PROMPT = "The backup repository has uncommitted changes. Commit and push them?"


@dataclass
class SaveReport:
    """Summary of a save run."""

    commit: Optional[str] = None
    pushed: bool = False
    cancelled: bool = False
    nothing_to_save: bool = False


class SaveManager:
    """Commits and pushes pending changes in the backup repository."""

    def __init__(
        self,
        config: Config,
        repo: Optional[GitRepository] = None,
        console: Optional[Console] = None,
    ):
        """Initialize the save manager."""
        self.config = config
        self.repo = repo or open_repository(config)
        self.console = console or Console()

    def save(
        self,
        message: Optional[str] = None,
        force: bool = False,
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> SaveReport:
        """Commit pending changes and push.

        Args:
            message: Commit message. Defaults to ``Save configuration``.
            force: Skip the confirmation prompt.
            confirm: Called with a prompt when there are pending changes and
                ``force`` is not set; returning False cancels the save. If
                None, pending changes are saved without asking.

        Returns:
            SaveReport: What was committed and pushed.

        Raises:
            NetworkFailureError: If the push fails.
        """
        report = SaveReport()
        pending = self.repo.has_pending_changes()

        if pending:
            if not force and confirm is not None and not confirm(CONFIRM_PROMPT):
                logger.info("Save cancelled by user")
                self.console.print("Save cancelled.")
                report.cancelled = True
                return report
            self.repo.add_all()
            report.commit = self.repo.commit(message or DEFAULT_SAVE_MESSAGE)
            self.console.print(f"[bold]Committed changes: {report.commit[:7]}")
        elif not self.repo.has_commits():
            self.console.print("[yellow]Nothing to save")
            report.nothing_to_save = True
            return report
        else:
            self.console.print("No changes to commit.")

        self.console.print("Pushing to remote...")
        self.repo.push()
        report.pushed = True
        self.console.print("[green]Configuration saved successfully!")
        return report
