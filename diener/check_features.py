"""Audit ``default-features = false`` dependencies against the ``std`` feature.

A ``no_std`` capable crate usually disables default features of its
dependencies and re-enables them through its own ``std`` feature. A
dependency that opts out of its defaults but is never named by ``std`` is
almost always an oversight; this module reports those.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import typing as typ
from pathlib import Path

from tomlkit.items import InlineTable

from diener.errors import DienerError, ManifestError
from diener.locator import find_manifests, resolve_root
from diener.manifest import read_manifest

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

LOGGER = logging.getLogger(__name__)

STD_FEATURE: typ.Final[str] = "std"
DEFAULT_FEATURES_KEYS: typ.Final[tuple[str, ...]] = (
    "default-features",
    "default_features",
)

__all__ = [
    "FeatureFinding",
    "check_features",
    "check_manifest",
    "non_default_features_deps",
    "std_feature_crates",
]


@dc.dataclass(frozen=True)
class FeatureFinding:
    """A dependency without default features that ``std`` never enables."""

    manifest: Path
    dependency: str

    def __str__(self) -> str:
        return (
            f"{self.manifest}: {self.dependency} has `default-features = false` "
            f"but is not present in feature `{STD_FEATURE}`"
        )


def _table(document: TOMLDocument, key: str) -> cabc.Mapping[str, typ.Any]:
    table = document.get(key)
    if table is None:
        message = f"No '{key}' section found in `Cargo.toml`"
        raise ManifestError(message)
    if isinstance(table, InlineTable) or not isinstance(table, cabc.Mapping):
        message = f"Failed to parse '{key}' section in `Cargo.toml` as table"
        raise ManifestError(message)
    return table


def non_default_features_deps(document: TOMLDocument) -> list[str]:
    """Return ``[dependencies]`` keys declared with ``default-features = false``.

    Only inline entries are considered.

    Raises
    ------
    ManifestError
        Raised when ``[dependencies]`` is missing or not a table.
    """
    dependencies = _table(document, "dependencies")
    found = []
    for name, entry in dependencies.items():
        if not isinstance(entry, InlineTable):
            continue
        for key in DEFAULT_FEATURES_KEYS:
            if entry.get(key) is False:
                found.append(name)
                break
    return found


def _feature_crate(feature: str) -> str:
    crate = feature.split("/", 1)[0]
    return crate.removeprefix("dep:").removesuffix("?")


def std_feature_crates(document: TOMLDocument) -> set[str]:
    """Return the crate names the ``std`` feature refers to.

    ``"serde/std"``, ``"serde?/std"`` and ``"dep:serde"`` all name ``serde``.

    Raises
    ------
    ManifestError
        Raised when ``[features]`` or its ``std`` entry is missing or
        malformed.
    """
    features = _table(document, "features")
    std = features.get(STD_FEATURE)
    if std is None:
        message = f"No '{STD_FEATURE}' feature in `Cargo.toml`"
        raise ManifestError(message)
    if not isinstance(std, list):
        message = f"Failed to parse '{STD_FEATURE}' feature in `Cargo.toml` as array"
        raise ManifestError(message)
    return {_feature_crate(str(value)) for value in std if isinstance(value, str)}


def check_manifest(manifest: Path) -> list[FeatureFinding]:
    """Return the findings for one manifest.

    Raises
    ------
    ManifestError
        Raised when the manifest is unreadable or lacks the sections checked.
    """
    document = read_manifest(manifest)
    candidates = non_default_features_deps(document)
    std_crates = std_feature_crates(document)
    return [
        FeatureFinding(manifest, dependency)
        for dependency in candidates
        if dependency not in std_crates
    ]


def check_features(root: Path | None) -> list[FeatureFinding]:
    """Check every ``Cargo.toml`` below ``root``.

    Manifests that cannot be checked are reported at debug level and skipped.

    Raises
    ------
    SystemExit
        Raised when ``root`` is not a directory.
    """
    root = resolve_root(root)
    findings: list[FeatureFinding] = []
    for manifest in find_manifests(root):
        try:
            findings.extend(check_manifest(manifest))
        except DienerError as error:
            LOGGER.debug("Failed to check %s: %s", manifest, error)
    return findings
