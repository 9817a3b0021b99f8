"""Exception hierarchy shared by the manifest rewriting layers.

Library code raises these exceptions for failures that are scoped to a single
manifest or dependency entry. The run drivers decide which of them are logged
and skipped and which abort the whole invocation; run-level preconditions are
reported with :class:`SystemExit` directly.
"""

from __future__ import annotations

__all__ = [
    "DienerError",
    "GitUrlError",
    "ManifestError",
    "MetadataError",
    "VersionResolutionError",
]


class DienerError(Exception):
    """Base class for recoverable manifest rewriting failures."""


class ManifestError(DienerError):
    """A manifest could not be read, parsed, or has an unexpected shape."""


class GitUrlError(DienerError, ValueError):
    """A ``git`` dependency source could not be parsed as a repository URL."""


class VersionResolutionError(DienerError):
    """A concrete version could not be resolved for a package."""


class MetadataError(DienerError):
    """``cargo metadata`` failed or returned an unusable document."""
