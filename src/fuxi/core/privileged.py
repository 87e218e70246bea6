"""Privileged file copies for fuxi.

Tracked system files such as ``/etc/hosts`` are often readable or writable
only by root. When a copy fails with a permission error the engines can ask
the user whether to retry it through ``sudo``; the retry is never automatic.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Called with a prompt; returns True to retry with sudo.
ConfirmSudo = Callable[[str], bool]


def sudo_available() -> bool:
    """Check if the platform supports ``sudo`` retries."""
    return os.name == "posix"


def sudo_prompt(source: object, destination: Path, error: OSError) -> str:
    """Return the question asked before a privileged retry."""
    return f"Failed to copy {source} -> {destination}: {error}. Retry with sudo?"


def should_retry(
    confirm: Optional[ConfirmSudo], source: object, destination: Path, error: OSError
) -> bool:
    """Ask whether a copy that failed with ``error`` should be retried with sudo."""
    if confirm is None or not sudo_available():
        return False
    return confirm(sudo_prompt(source, destination, error))


def sudo_copy(source: Path, destination: Path) -> None:
    """Copy a file with ``sudo``, creating the parent directory first.

    Raises:
        PermissionError: If either sudo command fails.
    """
    commands = [
        ["sudo", "mkdir", "-p", str(destination.parent)],
        ["sudo", "cp", "-a", str(source), str(destination)],
    ]
    for command in commands:
        logger.debug("Running %s", " ".join(command))
        try:
            subprocess.run(command, check=True, capture_output=True)
        except subprocess.CalledProcessError as e:
            output = (e.stderr or b"").decode("utf-8", errors="replace").strip()
            raise PermissionError(f"{' '.join(command[:2])} failed: {output}") from e
        except OSError as e:
            raise PermissionError(f"Cannot run sudo: {e}") from e
    logger.info("Copied %s to %s with sudo", source, destination)
