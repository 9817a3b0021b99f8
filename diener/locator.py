"""Manifest discovery for directory trees.

The walker prunes directories before descending into them, so hidden
directories and build output never cost a traversal on large checkouts.
"""

from __future__ import annotations

import logging
import os
import typing as typ
from pathlib import Path

from diener.manifest import MANIFEST_NAME

LOGGER = logging.getLogger(__name__)

BUILD_OUTPUT_DIRS: typ.Final[frozenset[str]] = frozenset({"target"})

DirectoryFilter = typ.Callable[[str], bool]

__all__ = [
    "BUILD_OUTPUT_DIRS",
    "DirectoryFilter",
    "find_manifests",
    "is_hidden",
    "resolve_root",
    "skip_hidden_and_build_output",
]


def is_hidden(name: str) -> bool:
    """Return ``True`` for dot-prefixed entry names.

    Examples
    --------
    >>> is_hidden(".git")
    True
    >>> is_hidden("crates")
    False
    """
    return name.startswith(".")


def skip_hidden_and_build_output(name: str) -> bool:
    """Return ``True`` for hidden directories and Cargo build output.

    Examples
    --------
    >>> skip_hidden_and_build_output("target")
    True
    >>> skip_hidden_and_build_output("src")
    False
    """
    return is_hidden(name) or name in BUILD_OUTPUT_DIRS


def _log_walk_error(error: OSError) -> None:
    LOGGER.debug("Skipping unreadable entry %s: %s", error.filename, error)


def find_manifests(
    root: Path,
    filename: str = MANIFEST_NAME,
    *,
    skip: DirectoryFilter = is_hidden,
    follow_links: bool = True,
) -> typ.Iterator[Path]:
    """Yield every file called ``filename`` beneath ``root``.

    Parameters
    ----------
    root : Path
        Directory to search. The root itself is never pruned.
    filename : str, default "Cargo.toml"
        Exact file name to match.
    skip : DirectoryFilter, default is_hidden
        Predicate over directory names; a ``True`` result prunes the whole
        subtree before it is entered.
    follow_links : bool, default True
        Descend into symlinked directories. Directories already visited are
        not walked twice, so link cycles terminate.

    Yields
    ------
    Path
        Manifest paths in a deterministic, sorted walk order. Entries that
        cannot be read are logged at debug level and skipped.
    """
    visited: set[tuple[int, int]] = set()
    for dirpath, dirnames, filenames in os.walk(
        root, onerror=_log_walk_error, followlinks=follow_links
    ):
        try:
            stat = Path(dirpath).stat()
        except OSError as error:
            _log_walk_error(error)
            dirnames[:] = []
            continue
        identity = (stat.st_dev, stat.st_ino)
        if identity in visited:
            dirnames[:] = []
            continue
        visited.add(identity)

        dirnames[:] = sorted(name for name in dirnames if not skip(name))
        if filename in filenames:
            candidate = Path(dirpath) / filename
            if candidate.is_file():
                yield candidate


def resolve_root(path: Path | None) -> Path:
    """Return the directory a run operates on, defaulting to the cwd.

    Raises
    ------
    SystemExit
        Raised when ``path`` is not an existing directory.
    """
    root = Path.cwd() if path is None else Path(path)
    if not root.is_dir():
        message = f"Path '{root}' is not a directory."
        raise SystemExit(message)
    return root
