"""Configuration management for fuxi.

The configuration holds the backup repository, the profiles and the paths
tracked by each profile. It is loaded once per command into a :class:`Config`
value, mutated in memory, and written back by :class:`ConfigStore` in a
single atomic replace.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import click
import yaml

from .errors import (
    ConfigCorruptError,
    ConfigMissingError,
    DuplicateProfileError,
    ErrorKind,
    NoActiveProfileError,
    UnknownProfileError,
    WriteFailedError,
)

logger = logging.getLogger(__name__)

APP_NAME = "fuxi"
CONFIG_FILE_NAME = "config.yaml"
DEFAULT_BRANCH = "main"


def default_config_path() -> Path:
    """Return the config file path inside the per-user config directory."""
    return Path(click.get_app_dir(APP_NAME)) / CONFIG_FILE_NAME


def normalize_path(path: Union[str, Path]) -> Path:
    """Expand ``~`` and make a path absolute without resolving symlinks."""
    normalized = os.path.abspath(os.path.expanduser(str(path)))
    # POSIX keeps a leading "//" as a distinct root; fold it into "/".
    if os.name != "nt" and normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return Path(normalized)


class PathKind(str, Enum):
    """Shape of a tracked path, fixed when the path is added."""

    FILE = "file"
    DIRECTORY = "directory"

    @classmethod
    def of(cls, path: Path) -> "PathKind":
        """Return the kind of an existing filesystem entry."""
        return cls.DIRECTORY if path.is_dir() else cls.FILE


@dataclass(frozen=True)
class TrackedPath:
    """A file or directory registered for backup."""

    source: Path
    kind: PathKind


@dataclass
class Profile:
    """A named, ordered set of tracked paths."""

    name: str
    paths: List[TrackedPath] = field(default_factory=list)

    def find(self, source: Path) -> Optional[TrackedPath]:
        """Return the tracked entry for ``source``, if any."""
        for tracked in self.paths:
            if tracked.source == source:
                return tracked
        return None


@dataclass
class Repository:
    """The backup repository: a GitHub ``owner/name`` or git URL and a local clone."""

    remote: str
    local_path: Path
    branch: str = DEFAULT_BRANCH

    @property
    def remote_url(self) -> str:
        """Return the URL used for the ``origin`` remote."""
        remote = self.remote
        if "://" in remote or remote.startswith(("git@", "/", ".", "file:")):
            return remote
        return f"https://github.com/{remote}.git"


@dataclass
class PathResult:
    """Outcome of adding or removing a single path."""

    path: Path
    error: Optional[ErrorKind] = None
    message: str = ""
    kind: Optional[PathKind] = None

    @property
    def ok(self) -> bool:
        """Whether the path was processed successfully."""
        return self.error is None


def validate_profile_name(name: str) -> None:
    """Reject names that cannot serve as a repository directory."""
    if not name or not name.strip():
        raise ValueError("Profile name must not be empty")
    if "/" in name or "\\" in name or name in (".", ".."):
        raise ValueError(f"Invalid profile name: '{name}'")


@dataclass
class Config:
    """Configuration state for fuxi."""

    repository: Optional[Repository] = None
    active_profile: Optional[str] = None
    profiles: List[Profile] = field(default_factory=list)

    def profile(self, name: str) -> Profile:
        """Get a profile by name."""
        for profile in self.profiles:
            if profile.name == name:
                return profile
        raise UnknownProfileError(f"Profile '{name}' does not exist")

    def has_profile(self, name: str) -> bool:
        """Check whether a profile exists."""
        return any(profile.name == name for profile in self.profiles)

    def active(self) -> Profile:
        """Get the active profile."""
        if self.active_profile is None:
            raise NoActiveProfileError(
                "No profile selected. Create one with 'fuxi profile create' "
                "or select one with 'fuxi profile switch'"
            )
        return self.profile(self.active_profile)

    def require_repository(self) -> Repository:
        """Get the backup repository settings."""
        if self.repository is None:
            raise ConfigMissingError(
                "Backup repository is not set. Please run 'fuxi init' first"
            )
        return self.repository

    def in_repository(self, path: Path) -> bool:
        """Check if a path is the backup repository or lies inside it."""
        if self.repository is None:
            return False
        root = self.repository.local_path.resolve()
        resolved = path.resolve()
        return resolved == root or root in resolved.parents

    def create_profile(self, name: str) -> Profile:
        """Create a profile; the first profile ever created becomes active."""
        validate_profile_name(name)
        if self.has_profile(name):
            raise DuplicateProfileError(f"Profile '{name}' already exists")
        profile = Profile(name=name)
        self.profiles.append(profile)
        if self.active_profile is None:
            self.active_profile = name
        logger.debug("Created profile %s (active=%s)", name, self.active_profile)
        return profile

    def switch_profile(self, name: str) -> None:
        """Make a profile active."""
        self.profile(name)
        self.active_profile = name

    def delete_profile(self, name: str) -> None:
        """Delete a profile.

        Deleting the active profile leaves no profile active; the user has to
        switch to another one explicitly.
        """
        profile = self.profile(name)
        self.profiles.remove(profile)
        if self.active_profile == name:
            self.active_profile = None

    def add_paths(self, profile_name: str, paths: Iterable[Union[str, Path]]) -> List[PathResult]:
        """Track paths under a profile.

        Each path is validated and recorded independently.

        Args:
            profile_name: Profile to add the paths to.
            paths: Paths to track. ``~`` is expanded and relative paths are
                made absolute.

        Returns:
            One :class:`PathResult` per input path, in input order.

        Raises:
            UnknownProfileError: If the profile does not exist. Nothing is
                recorded in that case.
        """
        profile = self.profile(profile_name)
        results: List[PathResult] = []
        for raw in paths:
            source = normalize_path(raw)
            if source == Path(source.anchor):
                results.append(
                    PathResult(source, ErrorKind.INVALID_PATH, "Cannot track a filesystem root")
                )
            elif not source.exists():
                results.append(
                    PathResult(source, ErrorKind.PATH_NOT_FOUND, "Path does not exist")
                )
            elif self.in_repository(source):
                results.append(
                    PathResult(
                        source, ErrorKind.INVALID_PATH, "Path is inside the backup repository"
                    )
                )
            elif profile.find(source) is not None:
                results.append(
                    PathResult(source, ErrorKind.DUPLICATE_PATH, "Path already exists")
                )
            else:
                kind = PathKind.of(source)
                profile.paths.append(TrackedPath(source=source, kind=kind))
                results.append(PathResult(source, kind=kind))
        return results

    def remove_paths(
        self, profile_name: str, paths: Iterable[Union[str, Path]]
    ) -> List[PathResult]:
        """Stop tracking paths under a profile.

        Raises:
            UnknownProfileError: If the profile does not exist.
        """
        profile = self.profile(profile_name)
        results: List[PathResult] = []
        for raw in paths:
            source = normalize_path(raw)
            tracked = profile.find(source)
            if tracked is None:
                results.append(PathResult(source, ErrorKind.PATH_NOT_TRACKED, "Path not found"))
                continue
            profile.paths.remove(tracked)
            results.append(PathResult(source, kind=tracked.kind))
        return results

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the on-disk representation."""
        data: Dict[str, Any] = {
            "repository": None,
            "active_profile": self.active_profile,
            "profiles": [
                {
                    "name": profile.name,
                    "paths": [
                        {"source": str(tracked.source), "kind": tracked.kind.value}
                        for tracked in profile.paths
                    ],
                }
                for profile in self.profiles
            ],
        }
        if self.repository is not None:
            data["repository"] = {
                "remote": self.repository.remote,
                "local_path": str(self.repository.local_path),
                "branch": self.repository.branch,
            }
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        """Build a configuration from its on-disk representation.

        Raises:
            ValueError: If the data does not have the expected shape.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("Configuration must be a dictionary")

        repository = None
        repo_data = data.get("repository")
        if repo_data is not None:
            if not isinstance(repo_data, dict):
                raise ValueError("repository must be a dictionary")
            for key in ("remote", "local_path"):
                if not isinstance(repo_data.get(key), str):
                    raise ValueError(f"repository {key} must be a string")
            branch = repo_data.get("branch", DEFAULT_BRANCH)
            if not isinstance(branch, str):
                raise ValueError("repository branch must be a string")
            repository = Repository(
                remote=repo_data["remote"],
                local_path=Path(repo_data["local_path"]),
                branch=branch,
            )

        profiles_data = data.get("profiles") or []
        if not isinstance(profiles_data, list):
            raise ValueError("profiles must be a list")
        profiles: List[Profile] = []
        seen = set()
        for entry in profiles_data:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                raise ValueError("each profile must be a dictionary with a name")
            name = entry["name"]
            if name in seen:
                raise ValueError(f"profile {name} is defined more than once")
            seen.add(name)
            paths_data = entry.get("paths") or []
            if not isinstance(paths_data, list):
                raise ValueError(f"profile {name} paths must be a list")
            paths: List[TrackedPath] = []
            for path_entry in paths_data:
                if not isinstance(path_entry, dict) or not isinstance(
                    path_entry.get("source"), str
                ):
                    raise ValueError(f"profile {name} path entries must have a source")
                try:
                    kind = PathKind(path_entry.get("kind"))
                except ValueError:
                    raise ValueError(
                        f"profile {name} path {path_entry['source']} has an invalid kind"
                    ) from None
                paths.append(TrackedPath(source=Path(path_entry["source"]), kind=kind))
            profiles.append(Profile(name=name, paths=paths))

        active = data.get("active_profile")
        if active is not None and (not isinstance(active, str) or active not in seen):
            raise ValueError(f"active_profile {active} is not a defined profile")

        return cls(repository=repository, active_profile=active, profiles=profiles)


class ConfigStore:
    """Reads and writes the configuration file."""

    def __init__(self, path: Optional[Path] = None) -> None:
        """Initialize the store.

        Args:
            path: Configuration file. Defaults to ``config.yaml`` inside the
                per-user config directory.
        """
        self.path = Path(path) if path is not None else default_config_path()

    def exists(self) -> bool:
        """Check if the configuration file exists."""
        return self.path.is_file()

    def load(self) -> Config:
        """Load configuration from file.

        Raises:
            ConfigMissingError: If the file does not exist.
            ConfigCorruptError: If the file is not valid YAML or has the wrong
                shape.
        """
        if not self.exists():
            raise ConfigMissingError(f"Configuration file {self.path} does not exist")
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            config = Config.from_dict(data)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigCorruptError(f"Error loading config file {self.path}: {e}") from e
        except OSError as e:
            raise ConfigCorruptError(f"Error reading config file {self.path}: {e}") from e
        logger.debug("Loaded configuration from %s", self.path)
        return config

    def load_or_default(self) -> Config:
        """Load configuration, starting empty if the file does not exist yet."""
        if not self.exists():
            logger.debug("No configuration at %s, using defaults", self.path)
            return Config()
        return self.load()

    def save(self, config: Config) -> None:
        """Write configuration atomically.

        The new content goes to a temporary file in the same directory which
        then replaces the config file, so readers see either the old or the
        new state.

        Raises:
            WriteFailedError: If the file cannot be written.
        """
        content = yaml.safe_dump(config.to_dict(), sort_keys=False, allow_unicode=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, self.path)
            except BaseException:
                try:
                    os.unlink(temp_path)
                except OSError as cleanup_error:
                    logger.debug("Failed to clean up %s: %s", temp_path, cleanup_error)
                raise
        except OSError as e:
            raise WriteFailedError(f"Failed to write {self.path}: {e}") from e
        logger.debug("Saved configuration to %s", self.path)
