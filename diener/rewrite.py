"""Rewrite policies applied to inline dependency entries.

A run is described by one immutable :class:`RewriteRequest`: a :class:`Scope`
selecting the dependency family, a :data:`Target` naming the single mutation
to apply, and optionally a replacement git URL. The target is a closed union:

* :class:`PinTag`, :class:`PinBranch`, :class:`PinRev` pin git dependencies to
  a ref, clearing any previous ref and ``workspace`` inheritance.
* :class:`PinVersion` pins dependencies to a registry version resolved through
  a :class:`~diener.versions.VersionResolver`, dropping ``git`` and ``path``.
* :class:`CollapseToPath` turns dependencies on packages inside the tree into
  relative ``path`` dependencies for workspace unification.

Only entries written as single-line inline tables inside a table whose key
contains ``dependencies`` are considered. Other shapes are left as they are.
A rewritten entry replaces the old one only when its fields actually differ,
so re-running the same request is a no-op.

Example
-------
>>> from diener.manifest import parse_manifest, render_manifest
>>> document = parse_manifest(
...     '[dependencies]\\n'
...     'dep = { git = "https://example.com/org/substrate", branch = "old" }\\n'
... )
>>> request = RewriteRequest(PinTag("v2.0"), scope=Scope.SUBSTRATE)
>>> rewrite_document(document, request, RewriteContext())
1
>>> print(render_manifest(document), end="")
[dependencies]
dep = { git = "https://example.com/org/substrate", tag = "v2.0" }
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import os
import sys
import typing as typ
from pathlib import Path

from tomlkit.items import InlineTable

from diener.classifier import Scope, git_repository, matches_scope
from diener.errors import DienerError
from diener.exclusions import ExclusionSet
from diener.manifest import (
    Field,
    build_inline_table,
    dependency_tables,
    drop_fields,
    effective_name,
    field_names,
    fields_equal,
    inline_fields,
    read_manifest,
    upsert_field,
    write_manifest,
)

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

    from diener.versions import VersionResolver, VersionSource

LOGGER = logging.getLogger(__name__)

GIT_REF_FIELDS: typ.Final[frozenset[str]] = frozenset({"tag", "branch", "rev"})
SOURCE_FIELDS: typ.Final[tuple[str, ...]] = ("git", "path", "version")
WORKSPACE_FIELD: typ.Final[str] = "workspace"

DEPENDENCY_KEY_ORDER: typ.Final[dict[str, int]] = {
    "package": 0,
    "git": 10,
    "path": 10,
    "version": 30,
    "branch": 30,
    "tag": 30,
    "rev": 30,
    "default-features": 40,
    "features": 50,
    "optional": 60,
}

__all__ = [
    "DEPENDENCY_KEY_ORDER",
    "CollapseToPath",
    "PinBranch",
    "PinRev",
    "PinTag",
    "PinVersion",
    "RewriteContext",
    "RewriteRequest",
    "Target",
    "dependency_key_order",
    "describe_target",
    "rewrite_dependency",
    "rewrite_document",
    "rewrite_manifest",
    "rewrite_manifests",
]


@dc.dataclass(frozen=True)
class PinTag:
    """Pin git dependencies to ``tag``."""

    tag: str

    @property
    def ref(self) -> tuple[str, str]:
        """Field name and value inserted into the entry."""
        return ("tag", self.tag)


@dc.dataclass(frozen=True)
class PinBranch:
    """Pin git dependencies to ``branch``."""

    branch: str

    @property
    def ref(self) -> tuple[str, str]:
        """Field name and value inserted into the entry."""
        return ("branch", self.branch)


@dc.dataclass(frozen=True)
class PinRev:
    """Pin git dependencies to the commit ``rev``."""

    rev: str

    @property
    def ref(self) -> tuple[str, str]:
        """Field name and value inserted into the entry."""
        return ("rev", self.rev)


@dc.dataclass(frozen=True)
class PinVersion:
    """Pin dependencies to a registry version taken from ``source``."""

    source: VersionSource


@dc.dataclass(frozen=True)
class CollapseToPath:
    """Point dependencies on in-tree packages at their directories.

    ``packages`` maps package names to the path of their manifest.
    """

    packages: cabc.Mapping[str, Path]


Target = PinTag | PinBranch | PinRev | PinVersion | CollapseToPath


@dc.dataclass(frozen=True)
class RewriteRequest:
    """Immutable description of one rewrite run."""

    target: Target
    scope: Scope = Scope.ALL
    git: str | None = None


@dc.dataclass(frozen=True)
class RewriteContext:
    """Run-scoped collaborators shared by every manifest of a run."""

    resolver: VersionResolver | None = None
    exclusions: ExclusionSet = dc.field(default_factory=ExclusionSet)


def describe_target(target: Target) -> str:
    """Return a short human-readable description of ``target``.

    Examples
    --------
    >>> describe_target(PinTag("v1.0"))
    'tag=v1.0'
    """
    if isinstance(target, (PinTag, PinBranch, PinRev)):
        field, value = target.ref
        return f"{field}={value}"
    if isinstance(target, PinVersion):
        return f"version from {target.source}"
    if isinstance(target, CollapseToPath):
        return "path"
    typ.assert_never(target)


def dependency_key_order(key: str) -> int:
    """Return the canonical sort rank of a dependency field.

    Examples
    --------
    >>> sorted(["optional", "path", "package", "features"], key=dependency_key_order)
    ['package', 'path', 'features', 'optional']
    """
    return DEPENDENCY_KEY_ORDER.get(key, sys.maxsize)


def _pin_ref(
    entry: InlineTable,
    fields: list[Field],
    request: RewriteRequest,
    ref: tuple[str, str],
) -> list[Field] | None:
    if git_repository(entry) is None:
        return None
    if not matches_scope(entry, request.scope):
        return None

    updated = drop_fields(fields, {*GIT_REF_FIELDS, WORKSPACE_FIELD})
    if request.git is not None:
        updated = upsert_field(updated, "git", request.git)
    field, value = ref
    return upsert_field(updated, field, value)


def _pin_version(
    package: str,
    fields: list[Field],
    context: RewriteContext,
) -> list[Field] | None:
    names = field_names(fields)
    first_source = next(
        (index for index, name in enumerate(names) if name in SOURCE_FIELDS), None
    )
    if first_source is None:
        LOGGER.debug("Skipping '%s': no git, path or version source", package)
        return None
    if context.resolver is None:
        message = "a version rewrite requires a version resolver"
        raise DienerError(message)

    version = context.resolver.resolve(package)
    removed = {"git", "path", WORKSPACE_FIELD, *GIT_REF_FIELDS}
    position = sum(1 for name in names[:first_source] if name not in removed)
    updated = drop_fields(fields, removed)
    return upsert_field(updated, "version", version, position=position)


def _collapse_to_path(
    package: str,
    fields: list[Field],
    target: CollapseToPath,
    manifest: Path | None,
) -> list[Field] | None:
    dependency_manifest = target.packages.get(package)
    if dependency_manifest is None:
        return None
    if manifest is None:
        message = "collapsing to a path requires the manifest location"
        raise DienerError(message)

    relative = os.path.relpath(dependency_manifest.parent, manifest.parent)
    updated = drop_fields(
        fields, {"git", "version", WORKSPACE_FIELD, *GIT_REF_FIELDS}
    )
    updated = upsert_field(updated, "path", Path(relative).as_posix())
    ranked = sorted(
        zip(field_names(updated), updated, strict=True),
        key=lambda pair: dependency_key_order(pair[0]),
    )
    return [field for _, field in ranked]


def rewrite_dependency(
    name: str,
    entry: InlineTable,
    request: RewriteRequest,
    context: RewriteContext,
    *,
    manifest: Path | None = None,
) -> list[Field] | None:
    """Return the rewritten fields of ``entry`` or ``None`` to leave it alone.

    Parameters
    ----------
    name : str
        Key the dependency is declared under.
    entry : InlineTable
        The dependency's inline table. It is not mutated.
    request : RewriteRequest
        Scope and target of the run.
    context : RewriteContext
        Version resolver and exclusions shared across the run.
    manifest : Path, optional
        Manifest containing the entry; required by :class:`CollapseToPath`.

    Raises
    ------
    VersionResolutionError
        Propagated from the resolver for :class:`PinVersion` targets.
    """
    package = effective_name(name, entry)
    if package in context.exclusions:
        LOGGER.debug("Skipping update for the excluded package '%s'", package)
        return None

    fields = inline_fields(entry)
    target = request.target
    if isinstance(target, (PinTag, PinBranch, PinRev)):
        return _pin_ref(entry, fields, request, target.ref)
    if isinstance(target, PinVersion):
        return _pin_version(package, fields, context)
    if isinstance(target, CollapseToPath):
        return _collapse_to_path(package, fields, target, manifest)
    typ.assert_never(target)


def rewrite_document(
    document: TOMLDocument,
    request: RewriteRequest,
    context: RewriteContext,
    *,
    manifest: Path | None = None,
) -> int:
    """Apply ``request`` to every eligible dependency in ``document``.

    Returns
    -------
    int
        Number of entries that changed.
    """
    changed = 0
    for section, table in dependency_tables(document):
        for name, value in list(table.items()):
            if not isinstance(value, InlineTable):
                continue
            fields = rewrite_dependency(
                name, value, request, context, manifest=manifest
            )
            if fields is None or fields_equal(value, fields):
                continue
            table[name] = build_inline_table(fields)
            changed += 1
            LOGGER.debug(
                "Updated: %s <= %s in [%s]",
                describe_target(request.target),
                name,
                ".".join(section),
            )
    return changed


def rewrite_manifest(
    manifest: Path, request: RewriteRequest, context: RewriteContext
) -> bool:
    """Rewrite ``manifest`` in place, returning ``True`` when it changed.

    The file is written only after every entry was processed, so a failure
    part-way through leaves it untouched.
    """
    LOGGER.info("Processing: %s", manifest)
    document = read_manifest(manifest)
    if not rewrite_document(document, request, context, manifest=manifest):
        return False
    write_manifest(document, manifest)
    return True


def rewrite_manifests(
    manifests: cabc.Iterable[Path],
    request: RewriteRequest,
    context: RewriteContext,
) -> list[Path]:
    """Rewrite each manifest, logging and skipping the ones that fail.

    Returns
    -------
    list[Path]
        Manifests that were modified.
    """
    rewritten: list[Path] = []
    for manifest in manifests:
        try:
            changed = rewrite_manifest(manifest, request, context)
        except (DienerError, OSError) as error:
            LOGGER.error("Failed to rewrite %s: %s", manifest, error)
            continue
        if changed:
            rewritten.append(manifest)
    return rewritten
