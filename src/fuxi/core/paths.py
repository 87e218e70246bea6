"""Mapping between tracked filesystem paths and repository locations.

Content for profile ``P`` and source path ``S`` is stored at::

    <P>/<segment of S>/<segment of S>/...

Every segment, the profile name included, is percent-encoded so that any
character a filesystem allows survives the trip through git, and a ``.git``
segment never looks like a nested repository. Segments are kept whole, so two
distinct sources can never share a repository location.

Example:
    ```python
    to_repo_relative("main", "/home/u/.config/git/config")
    # PurePosixPath('main/home/u/.config/git/config')
    to_source("main", PurePosixPath("main/home/u/.config/git/config"))
    # PosixPath('/home/u/.config/git/config')
    ```
"""

from __future__ import annotations

import os
from pathlib import Path, PurePath, PurePosixPath
from typing import List, Union
from urllib.parse import quote, unquote

# Characters left readable in encoded segments. Everything else outside
# ASCII letters, digits and "_.-~" is percent-encoded.
SAFE_CHARS = " !#$&'()+,;=@[]^`{}"
NESTED_REPO_SEGMENT = ".git"

PathLike = Union[str, PurePath]


def encode_segment(segment: str) -> str:
    """Encode a single path segment for storage in the repository."""
    encoded = quote(segment, safe=SAFE_CHARS, encoding="utf-8", errors="surrogateescape")
    if encoded.lower() == NESTED_REPO_SEGMENT:
        encoded = "%2E" + encoded[1:]
    return encoded


def decode_segment(segment: str) -> str:
    """Decode a segment produced by :func:`encode_segment`."""
    decoded = unquote(segment, encoding="utf-8", errors="surrogateescape")
    if not decoded or decoded in (".", "..") or "/" in decoded or "\0" in decoded:
        raise ValueError(f"Invalid repository path segment: {segment!r}")
    return decoded


def profile_root(profile_name: str) -> PurePosixPath:
    """Return the repository directory holding a profile's content."""
    return PurePosixPath(encode_segment(profile_name))


def to_repo_relative(profile_name: str, source_path: PathLike) -> PurePosixPath:
    """Map an absolute source path to its location inside the repository.

    Args:
        profile_name: Name of the profile the path belongs to.
        source_path: Absolute filesystem path.

    Returns:
        Repository-relative POSIX path, starting with the profile namespace.

    Raises:
        ValueError: If the path is relative or is a filesystem root.
    """
    source = PurePath(source_path)
    if not source.is_absolute():
        raise ValueError(f"Tracked paths must be absolute: {source}")

    parts = list(source.parts)
    anchor = parts.pop(0)
    if not parts:
        raise ValueError(f"Cannot track a filesystem root: {source}")

    segments = [encode_segment(profile_name)]
    # Windows anchors look like "C:\\"; the drive gets its own segment.
    drive = anchor.rstrip("\\/")
    if drive:
        segments.append(encode_segment(drive))
    segments.extend(encode_segment(part) for part in parts)
    return PurePosixPath(*segments)


def to_source(profile_name: str, repo_relative_path: PathLike) -> Path:
    """Map a repository-relative path back to the original source path.

    This is the exact inverse of :func:`to_repo_relative`.

    Raises:
        ValueError: If the path is not inside the profile namespace.
    """
    parts = PurePosixPath(repo_relative_path).parts
    if len(parts) < 2 or parts[0] != encode_segment(profile_name):
        raise ValueError(
            f"{repo_relative_path} is not inside the namespace of profile '{profile_name}'"
        )

    segments: List[str] = [decode_segment(part) for part in parts[1:]]
    if os.name == "nt":
        drive = segments.pop(0)
        if not segments:
            raise ValueError(f"Cannot map {repo_relative_path} to a filesystem root")
        return Path(drive + "\\", *segments)
    return Path("/", *segments)
