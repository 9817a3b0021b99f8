"""Packages that a version rewrite must leave alone.

The exclusion list is a TOML document whose ``[diener_exclude]`` table maps
dependency keys to inline tables, mirroring how the dependencies are declared::

    [diener_exclude]
    sp-core = { version = "7.0.0" }
    codec = { package = "parity-scale-codec", version = "3" }

An inline ``package`` field names the crate actually excluded.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import typing as typ
from pathlib import Path

from tomlkit.items import InlineTable

from diener.errors import ManifestError
from diener.manifest import effective_name, read_manifest

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

EXCLUDE_MARKER: typ.Final[str] = "diener_exclude"

__all__ = [
    "EXCLUDE_MARKER",
    "ExclusionSet",
    "exclusions_from_document",
    "load_exclusions",
]


@dc.dataclass(frozen=True)
class ExclusionSet:
    """Read-only set of excluded package names."""

    packages: frozenset[str] = frozenset()

    def __contains__(self, package: object) -> bool:
        """Return ``True`` when ``package`` is excluded."""
        return package in self.packages

    def __len__(self) -> int:
        """Return the number of excluded packages."""
        return len(self.packages)


def exclusions_from_document(document: TOMLDocument) -> ExclusionSet:
    """Collect exclusions from every top-level table keyed by the marker.

    Examples
    --------
    >>> from diener.manifest import parse_manifest
    >>> doc = parse_manifest('[diener_exclude]\\ncodec = { package = "parity-scale-codec" }\\n')
    >>> "parity-scale-codec" in exclusions_from_document(doc)
    True
    """
    packages: set[str] = set()
    for key, table in document.items():
        if EXCLUDE_MARKER not in key or not isinstance(table, cabc.Mapping):
            continue
        if isinstance(table, InlineTable):
            continue
        for name, entry in table.items():
            if isinstance(entry, InlineTable):
                packages.add(effective_name(name, entry))
    return ExclusionSet(frozenset(packages))


def load_exclusions(path: Path | None) -> ExclusionSet:
    """Load the exclusion list at ``path``; ``None`` yields an empty set.

    Raises
    ------
    SystemExit
        Raised when the file cannot be read or parsed. Exclusions are consumed
        before any manifest is touched, so this aborts the run.
    """
    if path is None:
        return ExclusionSet()
    try:
        document = read_manifest(Path(path))
    except ManifestError as error:
        message = f"Failed trying to open exclude toml file: {error}"
        raise SystemExit(message) from error
    return exclusions_from_document(document)
