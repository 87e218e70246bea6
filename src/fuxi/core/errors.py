"""Error types for fuxi.

Every failure that reaches the user carries an :class:`ErrorKind`. Commands
catch :class:`FuxiError` at the CLI boundary and print its message; per-item
failures (a single path or file) are recorded on result objects instead of
being raised.
"""

from __future__ import annotations

from enum import Enum
from typing import List


class ErrorKind(str, Enum):
    """Taxonomy of user-visible failures."""

    CONFIG_MISSING = "ConfigMissing"
    CONFIG_CORRUPT = "ConfigCorrupt"
    DUPLICATE_PROFILE = "DuplicateProfile"
    UNKNOWN_PROFILE = "UnknownProfile"
    PATH_NOT_FOUND = "PathNotFound"
    PATH_NOT_TRACKED = "PathNotTracked"
    DUPLICATE_PATH = "DuplicatePath"
    INVALID_PATH = "InvalidPath"
    NO_ACTIVE_PROFILE = "NoActiveProfile"
    AMBIGUOUS_REFERENCE = "AmbiguousReference"
    UNKNOWN_REFERENCE = "UnknownReference"
    NETWORK_FAILURE = "NetworkFailure"
    NETWORK_TIMEOUT = "NetworkTimeout"
    WRITE_FAILED = "WriteFailed"
    PARTIAL_COPY_FAILURE = "PartialCopyFailure"
    GIT_FAILURE = "GitFailure"


class FuxiError(Exception):
    """Base class for fuxi errors."""

    kind: ErrorKind = ErrorKind.GIT_FAILURE

    def __init__(self, message: str) -> None:
        """Initialize error."""
        super().__init__(message)
        self.message = message


class ConfigMissingError(FuxiError):
    """Configuration file or repository settings are missing."""

    kind = ErrorKind.CONFIG_MISSING


class ConfigCorruptError(FuxiError):
    """Configuration file cannot be parsed or fails validation."""

    kind = ErrorKind.CONFIG_CORRUPT


class DuplicateProfileError(FuxiError):
    """A profile with the same name already exists."""

    kind = ErrorKind.DUPLICATE_PROFILE


class UnknownProfileError(FuxiError):
    """The named profile does not exist."""

    kind = ErrorKind.UNKNOWN_PROFILE


class NoActiveProfileError(FuxiError):
    """No profile is currently active."""

    kind = ErrorKind.NO_ACTIVE_PROFILE


class AmbiguousReferenceError(FuxiError):
    """A commit prefix matches more than one commit."""

    kind = ErrorKind.AMBIGUOUS_REFERENCE

    def __init__(self, reference: str, candidates: List[str]) -> None:
        """Initialize error."""
        super().__init__(
            f"Backup reference '{reference}' is ambiguous: "
            + ", ".join(c[:12] for c in candidates)
        )
        self.reference = reference
        self.candidates = candidates


class UnknownReferenceError(FuxiError):
    """A backup reference matches no commit."""

    kind = ErrorKind.UNKNOWN_REFERENCE

    def __init__(self, reference: str) -> None:
        """Initialize error."""
        super().__init__(f"Backup ID or commit hash '{reference}' not found")
        self.reference = reference


class WriteFailedError(FuxiError):
    """Persisting state to disk failed."""

    kind = ErrorKind.WRITE_FAILED


class GitError(FuxiError):
    """A git command failed."""

    kind = ErrorKind.GIT_FAILURE

    def __init__(self, message: str, command: str = "", output: str = "") -> None:
        """Initialize error."""
        super().__init__(message)
        self.command = command
        self.output = output

    def __str__(self) -> str:
        """Return the message followed by git's own output, if any."""
        if self.output:
            return f"{self.message}: {self.output}"
        return self.message


class NetworkFailureError(GitError):
    """A git command that talks to the remote failed."""

    kind = ErrorKind.NETWORK_FAILURE


class NetworkTimeoutError(NetworkFailureError):
    """A git command that talks to the remote did not finish in time."""

    kind = ErrorKind.NETWORK_TIMEOUT
