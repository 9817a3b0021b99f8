"""The ``update`` run: repoint a dependency family across a tree.

:class:`UpdateOptions` carries the raw command-line choices and validates them
into a :class:`~diener.rewrite.RewriteRequest`; :func:`run_update` builds the
run-scoped exclusion set and version resolver, then rewrites every
``Cargo.toml`` below the root. Per-file failures are logged and skipped.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ
from contextlib import ExitStack
from pathlib import Path

from diener.classifier import Scope
from diener.exclusions import load_exclusions
from diener.fetch import HttpFetcher
from diener.locator import find_manifests, resolve_root
from diener.rewrite import (
    PinBranch,
    PinRev,
    PinTag,
    PinVersion,
    RewriteContext,
    RewriteRequest,
    rewrite_manifests,
)
from diener.versions import VersionResolver, parse_version_source, requires_network

if typ.TYPE_CHECKING:
    from diener.fetch import TextFetcher

LOGGER = logging.getLogger(__name__)

__all__ = ["UpdateOptions", "run_update"]


@dc.dataclass(frozen=True)
class UpdateOptions:
    """Command-line choices for the ``update`` run.

    Parameters
    ----------
    path : Path | None
        Directory searched for ``Cargo.toml`` files; the cwd when omitted.
    substrate, polkadot, cumulus, beefy : bool
        Restrict ref rewrites to one dependency family.
    all_dependencies : bool
        Rewrite every git dependency regardless of its repository.
    git : str | None
        Replacement ``git`` URL for the selected family.
    branch, rev, tag : str | None
        The ref dependencies are pinned to; exactly one target may be given.
    version : str | None
        ``latest``, a URL of a ``Cargo.lock`` or a local ``Cargo.lock`` path.
    exclude : Path | None
        TOML file with a ``[diener_exclude]`` table of packages to skip.
    """

    path: Path | None = None
    substrate: bool = False
    polkadot: bool = False
    cumulus: bool = False
    beefy: bool = False
    all_dependencies: bool = False
    git: str | None = None
    branch: str | None = None
    rev: str | None = None
    tag: str | None = None
    version: str | None = None
    exclude: Path | None = None

    def _selected_scopes(self) -> list[Scope]:
        flags = (
            (Scope.SUBSTRATE, self.substrate),
            (Scope.POLKADOT, self.polkadot),
            (Scope.CUMULUS, self.cumulus),
            (Scope.BEEFY, self.beefy),
            (Scope.ALL, self.all_dependencies),
        )
        return [scope for scope, selected in flags if selected]

    def into_request(self) -> RewriteRequest:
        """Validate the options and build the immutable rewrite request.

        Raises
        ------
        SystemExit
            Raised for missing or mutually exclusive options.

        Examples
        --------
        >>> UpdateOptions(substrate=True, tag="v1.0").into_request()
        RewriteRequest(target=PinTag(tag='v1.0'), scope=<Scope.SUBSTRATE: 'substrate'>, git=None)
        """
        targets = [
            option
            for option, value in (
                ("branch", self.branch),
                ("rev", self.rev),
                ("tag", self.tag),
                ("version", self.version),
            )
            if value is not None
        ]
        if not targets:
            message = "You need to pass `--branch`, `--tag`, `--rev` or `--version`."
            raise SystemExit(message)
        if len(targets) > 1:
            formatted = ", ".join(f"`--{option}`" for option in targets)
            message = f"Only one of {formatted} may be given."
            raise SystemExit(message)

        scopes = self._selected_scopes()
        if self.version is not None:
            if self.git is not None:
                message = "`--git` cannot be used together with `--version`."
                raise SystemExit(message)
            if scopes and scopes != [Scope.ALL]:
                LOGGER.warning("Family flags are ignored by `--version`")
            return RewriteRequest(PinVersion(parse_version_source(self.version)))

        if not scopes:
            message = (
                "You must specify one of `--substrate`, `--polkadot`, `--cumulus`, "
                "`--beefy` or `--all`."
            )
            raise SystemExit(message)
        if len(scopes) > 1:
            formatted = ", ".join(f"`--{scope.value}`" for scope in scopes)
            message = f"Only one of {formatted} may be given."
            raise SystemExit(message)
        scope = scopes[0]
        if scope is Scope.ALL and self.git is not None:
            message = (
                "You need to pass `--substrate`, `--polkadot`, `--cumulus` or "
                "`--beefy` for `--git`."
            )
            raise SystemExit(message)

        if self.branch is not None:
            target: PinTag | PinBranch | PinRev = PinBranch(self.branch)
        elif self.rev is not None:
            target = PinRev(self.rev)
        else:
            target = PinTag(typ.cast("str", self.tag))
        return RewriteRequest(target, scope=scope, git=self.git)


def run_update(
    root: Path | None,
    request: RewriteRequest,
    *,
    exclude: Path | None = None,
    fetcher: TextFetcher | None = None,
) -> list[Path]:
    """Apply ``request`` to every ``Cargo.toml`` beneath ``root``.

    Parameters
    ----------
    root : Path | None
        Directory to search; the cwd when ``None``.
    request : RewriteRequest
        Validated rewrite description.
    exclude : Path | None, optional
        Exclusion list loaded once before any manifest is touched.
    fetcher : TextFetcher | None, optional
        Remote text collaborator for network version sources. An
        :class:`~diener.fetch.HttpFetcher` is created when one is needed and
        none is supplied.

    Returns
    -------
    list[Path]
        Manifests that were modified.

    Raises
    ------
    SystemExit
        Raised when ``root`` is not a directory or the exclusion list is
        unreadable.
    """
    root = resolve_root(root)
    exclusions = load_exclusions(exclude)
    with ExitStack() as stack:
        resolver = None
        target = request.target
        if isinstance(target, PinVersion):
            if fetcher is None and requires_network(target.source):
                fetcher = stack.enter_context(HttpFetcher())
            resolver = VersionResolver(target.source, fetcher=fetcher)
        context = RewriteContext(resolver=resolver, exclusions=exclusions)
        return rewrite_manifests(find_manifests(root), request, context)
