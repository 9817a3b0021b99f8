"""Workspace membership as reported by ``cargo metadata``.

The patch composer needs the member packages of another workspace and the
root manifest of the workspace being patched. Both come from
``cargo metadata --no-deps``, run through :mod:`plumbum` inside the directory
of interest so no network access is required for local workspaces.
"""

from __future__ import annotations

import dataclasses as dc
import json
import logging
import typing as typ
from pathlib import Path

from plumbum import local
from plumbum.commands import CommandNotFound
from plumbum.commands.processes import ProcessTimedOut

from diener.config import resolve_timeout
from diener.errors import MetadataError

LOGGER = logging.getLogger(__name__)

DEFAULT_METADATA_TIMEOUT_SECS: typ.Final[int] = 300
METADATA_TIMEOUT_ENV: typ.Final[str] = "DIENER_METADATA_TIMEOUT_SECS"
METADATA_COMMAND: typ.Final[tuple[str, ...]] = (
    "metadata",
    "--format-version",
    "1",
    "--no-deps",
)

__all__ = [
    "DEFAULT_METADATA_TIMEOUT_SECS",
    "METADATA_TIMEOUT_ENV",
    "WorkspaceMetadata",
    "WorkspacePackage",
    "load_workspace_metadata",
    "parse_metadata",
]


@dc.dataclass(frozen=True)
class WorkspacePackage:
    """A workspace member and the manifest declaring it."""

    name: str
    manifest_path: Path

    @property
    def directory(self) -> Path:
        """Directory holding the package, without the manifest file name."""
        if self.manifest_path.name == "Cargo.toml":
            return self.manifest_path.parent
        return self.manifest_path


@dc.dataclass(frozen=True)
class WorkspaceMetadata:
    """Resolved root and members of one cargo workspace."""

    workspace_root: Path
    members: tuple[WorkspacePackage, ...]

    @property
    def root_manifest(self) -> Path:
        """The workspace ``Cargo.toml``."""
        return self.workspace_root / "Cargo.toml"


def parse_metadata(text: str) -> WorkspaceMetadata:
    """Build :class:`WorkspaceMetadata` from ``cargo metadata`` JSON output.

    Members keep the order of ``workspace_members``.

    Raises
    ------
    MetadataError
        Raised when the output is not the expected JSON document.
    """
    try:
        payload = json.loads(text)
        packages = {package["id"]: package for package in payload["packages"]}
        members = tuple(
            WorkspacePackage(
                name=packages[member_id]["name"],
                manifest_path=Path(packages[member_id]["manifest_path"]),
            )
            for member_id in payload["workspace_members"]
        )
        workspace_root = Path(payload["workspace_root"])
    except (json.JSONDecodeError, KeyError, TypeError) as error:
        message = f"unexpected cargo metadata output: {error}"
        raise MetadataError(message) from error
    return WorkspaceMetadata(workspace_root=workspace_root, members=members)


def load_workspace_metadata(
    directory: Path, *, timeout_secs: int | None = None
) -> WorkspaceMetadata:
    """Run ``cargo metadata`` in ``directory`` and parse the result.

    Parameters
    ----------
    directory : Path
        Any directory inside the workspace.
    timeout_secs : int | None, optional
        Command timeout; ``DIENER_METADATA_TIMEOUT_SECS`` or
        :data:`DEFAULT_METADATA_TIMEOUT_SECS` when omitted.

    Raises
    ------
    MetadataError
        Raised when cargo is missing, times out, fails, or prints garbage.
    """
    timeout = resolve_timeout(
        timeout_secs,
        env_var=METADATA_TIMEOUT_ENV,
        default=DEFAULT_METADATA_TIMEOUT_SECS,
    )
    try:
        cargo_metadata = local["cargo"][METADATA_COMMAND]
        with local.cwd(directory):
            return_code, stdout, stderr = cargo_metadata.run(
                retcode=None,
                timeout=timeout,
            )
    except CommandNotFound as error:
        message = "cargo not found on PATH; unable to read workspace metadata"
        raise MetadataError(message) from error
    except ProcessTimedOut as error:
        message = f"cargo metadata timed out after {timeout} seconds in {directory}"
        raise MetadataError(message) from error

    if return_code != 0:
        diagnostics = (stderr or stdout or "").strip()
        detail = f": {diagnostics}" if diagnostics else ""
        message = (
            f"Failed to get cargo metadata for workspace {directory} "
            f"(exit code {return_code}){detail}"
        )
        raise MetadataError(message)
    return parse_metadata(stdout)
