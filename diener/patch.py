"""Compose ``[patch.<target>]`` sections from another workspace's members.

Every member of the workspace given by ``--crates-to-patch`` gets an inline
entry in the ``[patch.<target>]`` table of the workspace being patched. The
entry points at the member's local directory by default, or at a git branch or
commit when requested. This is the non-deprecated equivalent of path overrides
in ``.cargo/config``.

Example
-------
>>> from pathlib import Path
>>> from diener.metadata import WorkspacePackage
>>> add_patches_for_packages(  # doctest: +SKIP
...     Path("Cargo.toml"),
...     CratesIoTarget(),
...     [WorkspacePackage("sp-core", Path("/src/sdk/sp-core/Cargo.toml"))],
...     PointToPath(),
... )
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import typing as typ
from pathlib import Path

import tomlkit
from tomlkit.items import InlineTable

from diener.errors import ManifestError, MetadataError
from diener.manifest import (
    MANIFEST_NAME,
    Field,
    build_inline_table,
    drop_fields,
    fields_equal,
    inline_fields,
    read_manifest,
    upsert_field,
    write_manifest,
)
from diener.metadata import WorkspaceMetadata, load_workspace_metadata

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

    from diener.metadata import WorkspacePackage

LOGGER = logging.getLogger(__name__)

DEFAULT_GIT_TARGET: typ.Final[str] = "https://github.com/paritytech/polkadot-sdk"
CRATES_IO: typ.Final[str] = "crates-io"

MetadataLoader = typ.Callable[[Path], WorkspaceMetadata]

__all__ = [
    "CRATES_IO",
    "DEFAULT_GIT_TARGET",
    "CratesIoTarget",
    "CustomTarget",
    "GitTarget",
    "PatchOptions",
    "PatchTarget",
    "PointTo",
    "PointToGitBranch",
    "PointToGitCommit",
    "PointToPath",
    "add_patches_for_packages",
    "patch_fields",
    "patch_target_from_options",
    "point_to_from_options",
    "run_patch",
    "workspace_root_manifest",
]


@dc.dataclass(frozen=True)
class CratesIoTarget:
    """Patch crates resolved from crates.io."""

    @property
    def key(self) -> str:
        """Key of the table below ``[patch]``."""
        return CRATES_IO


@dc.dataclass(frozen=True)
class GitTarget:
    """Patch crates resolved from the git repository ``url``."""

    url: str = DEFAULT_GIT_TARGET

    @property
    def key(self) -> str:
        """Key of the table below ``[patch]``."""
        return self.url


@dc.dataclass(frozen=True)
class CustomTarget:
    """Patch a source identified by an arbitrary ``name`` (e.g. a registry)."""

    name: str

    @property
    def key(self) -> str:
        """Key of the table below ``[patch]``."""
        return self.name


PatchTarget = CratesIoTarget | GitTarget | CustomTarget


@dc.dataclass(frozen=True)
class PointToPath:
    """Point patches at the local package directories."""


@dc.dataclass(frozen=True)
class PointToGitBranch:
    """Point patches at ``branch`` of ``repository``."""

    repository: str
    branch: str


@dc.dataclass(frozen=True)
class PointToGitCommit:
    """Point patches at ``commit`` of ``repository``."""

    repository: str
    commit: str


PointTo = PointToPath | PointToGitBranch | PointToGitCommit


def patch_target_from_options(*, target: str | None, crates: bool) -> PatchTarget:
    """Select the patch target from ``--target`` / ``--crates``.

    Examples
    --------
    >>> patch_target_from_options(target=None, crates=True).key
    'crates-io'
    >>> patch_target_from_options(target=None, crates=False).key
    'https://github.com/paritytech/polkadot-sdk'
    """
    if target is not None and crates:
        message = "`--target` and `--crates` cannot be used together."
        raise SystemExit(message)
    if target is not None:
        return CustomTarget(target)
    if crates:
        return CratesIoTarget()
    return GitTarget()


def point_to_from_options(
    point_to_git: str | None,
    point_to_git_branch: str | None,
    point_to_git_commit: str | None,
) -> PointTo:
    """Validate the ``--point-to-git*`` options.

    Raises
    ------
    SystemExit
        Raised when the options are inconsistent.
    """
    if point_to_git_branch is not None and point_to_git_commit is not None:
        message = (
            "`--point-to-git-branch` and `--point-to-git-commit` cannot be used "
            "together."
        )
        raise SystemExit(message)
    if point_to_git is None:
        if point_to_git_branch is not None or point_to_git_commit is not None:
            message = (
                "`--point-to-git-branch` and `--point-to-git-commit` require "
                "`--point-to-git`."
            )
            raise SystemExit(message)
        return PointToPath()
    if point_to_git_branch is not None:
        return PointToGitBranch(point_to_git, point_to_git_branch)
    if point_to_git_commit is not None:
        return PointToGitCommit(point_to_git, point_to_git_commit)
    message = (
        "`--point-to-git-branch` or `--point-to-git-commit` are required when "
        "`--point-to-git` is passed!"
    )
    raise SystemExit(message)


def patch_fields(
    fields: cabc.Iterable[Field], package: WorkspacePackage, point_to: PointTo
) -> list[Field]:
    """Return the fields of ``package``'s patch entry for ``point_to``.

    Fields of a conflicting source kind are dropped; unrelated fields such as
    ``features`` are kept.
    """
    if isinstance(point_to, PointToPath):
        updated = drop_fields(fields, {"git", "branch", "rev", "tag"})
        return upsert_field(updated, "path", str(package.directory))
    if isinstance(point_to, PointToGitBranch):
        updated = drop_fields(fields, {"path", "rev", "tag"})
        updated = upsert_field(updated, "git", point_to.repository)
        return upsert_field(updated, "branch", point_to.branch)
    if isinstance(point_to, PointToGitCommit):
        updated = drop_fields(fields, {"path", "branch", "tag"})
        updated = upsert_field(updated, "git", point_to.repository)
        return upsert_field(updated, "rev", point_to.commit)
    typ.assert_never(point_to)


def _ensure_table(
    parent: cabc.MutableMapping[str, typ.Any], key: str, *, super_table: bool
) -> cabc.MutableMapping[str, typ.Any]:
    """Return ``parent[key]``, creating a plain (non-inline) table if absent."""
    existing = parent.get(key)
    if existing is None:
        parent[key] = tomlkit.table(is_super_table=super_table)
        existing = parent[key]
    if isinstance(existing, InlineTable) or not isinstance(
        existing, cabc.MutableMapping
    ):
        message = f"`{key}` table in the manifest isn't a toml table!"
        raise SystemExit(message)
    return typ.cast("cabc.MutableMapping[str, typ.Any]", existing)


def _add_patch_entry(
    target_table: cabc.MutableMapping[str, typ.Any],
    package: WorkspacePackage,
    point_to: PointTo,
) -> None:
    LOGGER.info("Adding patch for `%s`.", package.name)
    existing = target_table.get(package.name)
    if existing is None:
        target_table[package.name] = build_inline_table(
            patch_fields((), package, point_to)
        )
        return
    if not isinstance(existing, InlineTable):
        message = f"Patch entry for `{package.name}` isn't an inline table!"
        raise SystemExit(message)
    fields = patch_fields(inline_fields(existing), package, point_to)
    if not fields_equal(existing, fields):
        target_table[package.name] = build_inline_table(fields)


def compose_patch_section(
    document: TOMLDocument,
    target: PatchTarget,
    packages: cabc.Iterable[WorkspacePackage],
    point_to: PointTo,
) -> None:
    """Add or update one ``[patch.<target>]`` entry per package in ``document``."""
    patch_table = _ensure_table(document, "patch", super_table=True)
    target_table = _ensure_table(patch_table, target.key, super_table=False)
    for package in packages:
        _add_patch_entry(target_table, package, point_to)


def add_patches_for_packages(
    cargo_toml: Path,
    target: PatchTarget,
    packages: cabc.Iterable[WorkspacePackage],
    point_to: PointTo,
) -> None:
    """Patch ``packages`` into ``cargo_toml`` and rewrite the whole file.

    Raises
    ------
    SystemExit
        Raised when the manifest cannot be read, parsed, or written, or when
        the existing patch tables have an unexpected shape.
    """
    cargo_toml = Path(cargo_toml)
    try:
        document = read_manifest(cargo_toml)
    except ManifestError as error:
        message = f"Failed to read manifest at {cargo_toml}: {error}"
        raise SystemExit(message) from error

    compose_patch_section(document, target, packages, point_to)

    try:
        write_manifest(document, cargo_toml)
    except OSError as error:
        message = f"Failed to write manifest to {cargo_toml}: {error}"
        raise SystemExit(message) from error


def workspace_root_manifest(
    path: Path, *, metadata_loader: MetadataLoader = load_workspace_metadata
) -> Path:
    """Return the manifest to patch for ``path``.

    A path naming a ``Cargo.toml`` is used as is; any other path is resolved
    to the root manifest of the workspace containing it.
    """
    if path.name == MANIFEST_NAME:
        return path
    try:
        return metadata_loader(path).root_manifest
    except MetadataError as error:
        message = f"Failed to get cargo metadata for workspace: {error}"
        raise SystemExit(message) from error


@dc.dataclass(frozen=True)
class PatchOptions:
    """Command-line choices for the ``patch`` run."""

    crates_to_patch: Path
    path: Path | None = None
    point_to_git: str | None = None
    point_to_git_branch: str | None = None
    point_to_git_commit: str | None = None
    target: str | None = None
    crates: bool = False


def run_patch(
    options: PatchOptions,
    *,
    metadata_loader: MetadataLoader = load_workspace_metadata,
) -> Path:
    """Add a patch entry for every member of ``options.crates_to_patch``.

    Returns
    -------
    Path
        The manifest that received the patch section.
    """
    target = patch_target_from_options(target=options.target, crates=options.crates)
    point_to = point_to_from_options(
        options.point_to_git,
        options.point_to_git_branch,
        options.point_to_git_commit,
    )
    if options.path is None:
        path = Path.cwd()
    elif not options.path.exists():
        message = f"Given --path=`{options.path}` does not exist!"
        raise SystemExit(message)
    else:
        path = options.path

    cargo_toml = workspace_root_manifest(path, metadata_loader=metadata_loader)
    try:
        members = metadata_loader(options.crates_to_patch).members
    except MetadataError as error:
        message = f"Failed to get cargo metadata for workspace: {error}"
        raise SystemExit(message) from error

    add_patches_for_packages(cargo_toml, target, members, point_to)
    return cargo_toml
