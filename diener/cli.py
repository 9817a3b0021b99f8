"""Command-line interface for diener.

Every option may also be supplied through the environment as
``DIENER_<COMMAND>_<OPTION>``, for example ``DIENER_UPDATE_PATH``; explicit
arguments take precedence.

Examples
--------
Point every substrate dependency at a branch::

    diener update --substrate --branch my-dev-branch

Pin everything to the versions of a published lock file::

    diener update --version https://example.com/Cargo.lock

Patch the polkadot-sdk crates with a local checkout::

    diener patch --crates-to-patch ../polkadot-sdk
"""

from __future__ import annotations

import logging
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import App, Parameter

from diener import __version__
from diener.check_features import check_features as run_check_features
from diener.config import configure_logging
from diener.patch import PatchOptions, run_patch
from diener.update import UpdateOptions, run_update
from diener.workspacify import workspacify as run_workspacify

LOGGER = logging.getLogger(__name__)

app = App(
    name="diener",
    version=__version__,
    help="Rewrite dependency declarations across Cargo.toml files.",
    config=cyclopts.config.Env("DIENER_", command=True),
)

__all__ = ["app", "main"]


def _flag(*names: str) -> Parameter:
    return Parameter(name=names, negative=())


@app.command(version_flags=[])
def update(
    *,
    path: typ.Annotated[Path | None, Parameter(name="--path")] = None,
    substrate: typ.Annotated[bool, _flag("--substrate", "-s")] = False,
    polkadot: typ.Annotated[bool, _flag("--polkadot", "-p")] = False,
    cumulus: typ.Annotated[bool, _flag("--cumulus", "-c")] = False,
    beefy: typ.Annotated[bool, _flag("--beefy", "-b")] = False,
    all_dependencies: typ.Annotated[bool, _flag("--all", "-a")] = False,
    git: typ.Annotated[str | None, Parameter(name="--git")] = None,
    branch: typ.Annotated[str | None, Parameter(name="--branch")] = None,
    rev: typ.Annotated[str | None, Parameter(name="--rev")] = None,
    tag: typ.Annotated[str | None, Parameter(name="--tag")] = None,
    version: typ.Annotated[str | None, Parameter(name="--version")] = None,
    exclude: typ.Annotated[Path | None, Parameter(name="--exclude")] = None,
) -> None:
    """Update the source of dependencies in every ``Cargo.toml``.

    Parameters
    ----------
    path : Path | None, optional
        Directory searched for ``Cargo.toml`` files; the cwd by default.
    substrate : bool, optional
        Only alter substrate dependencies.
    polkadot : bool, optional
        Only alter polkadot dependencies.
    cumulus : bool, optional
        Only alter cumulus dependencies.
    beefy : bool, optional
        Only alter BEEFY dependencies.
    all_dependencies : bool, optional
        Alter every git dependency.
    git : str | None, optional
        Replacement git repository URL for the selected family.
    branch : str | None, optional
        Branch to pin the dependencies to.
    rev : str | None, optional
        Commit to pin the dependencies to.
    tag : str | None, optional
        Tag to pin the dependencies to.
    version : str | None, optional
        ``latest`` for crates.io, or the URL or path of a ``Cargo.lock``
        providing the versions.
    exclude : Path | None, optional
        TOML file with a ``[diener_exclude]`` table of packages to skip.
    """
    options = UpdateOptions(
        path=path,
        substrate=substrate,
        polkadot=polkadot,
        cumulus=cumulus,
        beefy=beefy,
        all_dependencies=all_dependencies,
        git=git,
        branch=branch,
        rev=rev,
        tag=tag,
        version=version,
        exclude=exclude,
    )
    rewritten = run_update(options.path, options.into_request(), exclude=exclude)
    LOGGER.info("Updated %d manifest(s)", len(rewritten))


@app.command
def patch(
    *,
    crates_to_patch: typ.Annotated[Path, Parameter(name="--crates-to-patch")],
    path: typ.Annotated[Path | None, Parameter(name="--path")] = None,
    point_to_git: typ.Annotated[str | None, Parameter(name="--point-to-git")] = None,
    point_to_git_branch: typ.Annotated[
        str | None, Parameter(name="--point-to-git-branch")
    ] = None,
    point_to_git_commit: typ.Annotated[
        str | None, Parameter(name="--point-to-git-commit")
    ] = None,
    target: typ.Annotated[str | None, Parameter(name="--target")] = None,
    crates: typ.Annotated[bool, _flag("--crates")] = False,
) -> None:
    """Add ``[patch]`` entries for every crate of another workspace.

    Parameters
    ----------
    crates_to_patch : Path
        Workspace whose member crates are patched in.
    path : Path | None, optional
        Workspace, or ``Cargo.toml``, that receives the patch section; the
        cwd by default.
    point_to_git : str | None, optional
        Point the patches at this git repository instead of local paths.
    point_to_git_branch : str | None, optional
        Branch used with ``--point-to-git``.
    point_to_git_commit : str | None, optional
        Commit used with ``--point-to-git``.
    target : str | None, optional
        Custom patch target, e.g. a registry name.
    crates : bool, optional
        Patch crates.io instead of the polkadot-sdk git repository.
    """
    run_patch(
        PatchOptions(
            crates_to_patch=crates_to_patch,
            path=path,
            point_to_git=point_to_git,
            point_to_git_branch=point_to_git_branch,
            point_to_git_commit=point_to_git_commit,
            target=target,
            crates=crates,
        )
    )


@app.command
def workspacify(
    *,
    path: typ.Annotated[Path | None, Parameter(name="--path")] = None,
) -> None:
    """Make every crate below ``--path`` a member of one workspace."""
    run_workspacify(path)


@app.command(name="check-features")
def check_features(
    *,
    path: typ.Annotated[Path | None, Parameter(name="--path")] = None,
) -> None:
    """Report ``default-features = false`` dependencies missing from ``std``."""
    for finding in run_check_features(path):
        print(finding)


def main() -> None:
    """Configure logging and dispatch to the selected command."""
    configure_logging()
    LOGGER.info("Running diener v%s", __version__)
    app()


if __name__ == "__main__":
    main()
