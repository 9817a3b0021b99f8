"""Unify every package below a directory into one workspace.

The unifier walks the tree once to index package names, refuses to continue
when two manifests declare the same name, lists every package as a member of
the root manifest's ``[workspace]``, and finally turns each dependency on an
in-tree package into a relative ``path`` dependency.
"""

from __future__ import annotations

import collections.abc as cabc
import logging
import os
import typing as typ
from pathlib import Path

import tomlkit
from tomlkit.items import Array, InlineTable

from diener.errors import ManifestError
from diener.locator import find_manifests, resolve_root, skip_hidden_and_build_output
from diener.manifest import (
    MANIFEST_NAME,
    package_name,
    read_manifest,
    write_manifest_with_newline,
)
from diener.rewrite import (
    CollapseToPath,
    RewriteContext,
    RewriteRequest,
    rewrite_manifests,
)

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

LOGGER = logging.getLogger(__name__)

PackageIndex = dict[str, Path]

__all__ = [
    "PackageIndex",
    "build_package_index",
    "discover_manifests",
    "update_workspace_members",
    "workspace_members",
    "workspacify",
]


def _collision_report(duplicates: cabc.Mapping[str, list[Path]]) -> str:
    lines = ["Found packages with the same name:"]
    for name, manifests in sorted(duplicates.items()):
        paths = ", ".join(str(manifest) for manifest in manifests)
        lines.append(f"  {name}: {paths}")
    return "\n".join(lines)


def discover_manifests(root: Path) -> list[Path]:
    """Return the manifests below ``root`` considered by the unifier."""
    return list(
        find_manifests(root, skip=skip_hidden_and_build_output, follow_links=False)
    )


def build_package_index(
    root: Path, manifests: cabc.Iterable[Path] | None = None
) -> PackageIndex:
    """Map every package name below ``root`` to its manifest.

    ``manifests`` replaces the directory walk when the caller already has the
    discovered manifests.

    Hidden directories and ``target`` are pruned and symlinks are not
    followed. Manifests that cannot be parsed are skipped with a warning, as
    are virtual manifests without ``[package].name``.

    Raises
    ------
    SystemExit
        Raised when two manifests declare the same package name. The message
        lists every manifest of every collision.
    """
    if manifests is None:
        manifests = discover_manifests(root)
    found: dict[str, list[Path]] = {}
    for manifest in manifests:
        try:
            document = read_manifest(manifest)
        except ManifestError as error:
            LOGGER.warning("Skipping %s: %s", manifest, error)
            continue
        name = package_name(document)
        if name is None:
            LOGGER.debug("Skipping %s: no package name", manifest)
            continue
        found.setdefault(name, []).append(manifest)

    duplicates = {name: paths for name, paths in found.items() if len(paths) > 1}
    if duplicates:
        raise SystemExit(_collision_report(duplicates))
    return {name: paths[0] for name, paths in found.items()}


def workspace_members(root: Path, index: PackageIndex) -> list[str]:
    """Return member paths relative to ``root``, sorted by absolute path.

    Examples
    --------
    >>> workspace_members(Path("/ws"), {"b": Path("/ws/b/Cargo.toml"),
    ...                                 "ws": Path("/ws/Cargo.toml")})
    ['.', 'b']
    """
    directories = sorted(
        Path(os.path.abspath(manifest)).parent for manifest in index.values()
    )
    absolute_root = os.path.abspath(root)
    return [
        Path(os.path.relpath(directory, absolute_root)).as_posix()
        for directory in directories
    ]


def _workspace_table(document: TOMLDocument) -> cabc.MutableMapping[str, typ.Any]:
    workspace = document.get("workspace")
    if workspace is None:
        document["workspace"] = tomlkit.table()
        workspace = document["workspace"]
    if isinstance(workspace, InlineTable) or not isinstance(
        workspace, cabc.MutableMapping
    ):
        message = "`workspace` in the root manifest isn't a toml table!"
        raise SystemExit(message)
    return typ.cast("cabc.MutableMapping[str, typ.Any]", workspace)


def _members_array(members: cabc.Iterable[str]) -> Array:
    rebuilt_members = tomlkit.array()
    rebuilt_members.extend(members)
    rebuilt_members.multiline(multiline=True)
    return rebuilt_members


def update_workspace_members(root: Path, index: PackageIndex) -> Path:
    """Replace ``[workspace].members`` of the root manifest with every package.

    The root ``Cargo.toml`` is created when it does not exist. Members are
    written one per line.

    Raises
    ------
    SystemExit
        Raised when the root manifest cannot be read or written, or its
        ``workspace`` key is not a table.
    """
    manifest = root / MANIFEST_NAME
    if manifest.exists():
        try:
            document = read_manifest(manifest)
        except ManifestError as error:
            message = f"Failed to read root manifest: {error}"
            raise SystemExit(message) from error
    else:
        LOGGER.info("Creating %s", manifest)
        document = tomlkit.document()

    workspace = _workspace_table(document)
    workspace["members"] = _members_array(workspace_members(root, index))

    try:
        write_manifest_with_newline(document, manifest)
    except OSError as error:
        message = f"Failed to write root manifest {manifest}: {error}"
        raise SystemExit(message) from error
    return manifest


def workspacify(root: Path | None) -> list[Path]:
    """Turn the tree below ``root`` into a single workspace.

    Parameters
    ----------
    root : Path | None
        Workspace root; the cwd when ``None``.

    Returns
    -------
    list[Path]
        Manifests whose dependencies were rewritten. The root manifest is
        always written but only listed when its own dependencies changed.

    Raises
    ------
    SystemExit
        Raised for an invalid root, package name collisions (before any file
        is written), or an unwritable root manifest.
    """
    root = resolve_root(root)
    manifests = discover_manifests(root)
    index = build_package_index(root, manifests)
    LOGGER.info("Found %d packages below %s", len(index), root)
    update_workspace_members(root, index)

    request = RewriteRequest(CollapseToPath(index))
    return rewrite_manifests(manifests, request, RewriteContext())
