"""Tests for reading workspace membership via ``cargo metadata``."""

from __future__ import annotations

import typing as typ
from pathlib import Path

import pytest
from plumbum.commands import CommandNotFound
from plumbum.commands.processes import ProcessTimedOut

from diener.errors import MetadataError
from diener.metadata import (
    DEFAULT_METADATA_TIMEOUT_SECS,
    METADATA_TIMEOUT_ENV,
    WorkspacePackage,
    load_workspace_metadata,
    parse_metadata,
)

MetadataJson = typ.Callable[[Path, typ.Iterable[str]], str]
Installer = typ.Callable[..., typ.Any]


class TestParseMetadata:
    """Tests for :func:`diener.metadata.parse_metadata`."""

    def test_members_follow_workspace_order(
        self, tmp_path: Path, metadata_json: MetadataJson
    ) -> None:
        """Members should keep the ``workspace_members`` order."""
        metadata = parse_metadata(metadata_json(tmp_path, ["zeta", "alpha"]))

        assert [member.name for member in metadata.members] == ["zeta", "alpha"]
        assert metadata.workspace_root == tmp_path
        assert metadata.root_manifest == tmp_path / "Cargo.toml"

    def test_package_directory(self, tmp_path: Path) -> None:
        """The directory should drop the manifest file name."""
        package = WorkspacePackage("a", tmp_path / "a" / "Cargo.toml")

        assert package.directory == tmp_path / "a"

    @pytest.mark.parametrize("text", ["not json", "{}", '{"packages": []}'])
    def test_rejects_unexpected_output(self, text: str) -> None:
        """Garbage output should raise :class:`MetadataError`."""
        with pytest.raises(MetadataError, match="unexpected cargo metadata"):
            parse_metadata(text)


class TestLoadWorkspaceMetadata:
    """Tests for :func:`diener.metadata.load_workspace_metadata`."""

    def test_runs_cargo_in_directory(
        self,
        tmp_path: Path,
        metadata_json: MetadataJson,
        patch_local_runner: Installer,
    ) -> None:
        """Cargo should run in the workspace with the default timeout."""
        output = metadata_json(tmp_path, ["a"])
        fake_local = patch_local_runner(lambda args, timeout: (0, output, ""))

        metadata = load_workspace_metadata(tmp_path)

        assert [member.name for member in metadata.members] == ["a"]
        assert fake_local.cwd_calls == [tmp_path]
        assert fake_local.invocations == [
            (
                ["cargo", "metadata", "--format-version", "1", "--no-deps"],
                DEFAULT_METADATA_TIMEOUT_SECS,
            )
        ]

    def test_timeout_from_environment(
        self,
        tmp_path: Path,
        metadata_json: MetadataJson,
        patch_local_runner: Installer,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """``DIENER_METADATA_TIMEOUT_SECS`` should override the default."""
        monkeypatch.setenv(METADATA_TIMEOUT_ENV, "7")
        output = metadata_json(tmp_path, [])
        fake_local = patch_local_runner(lambda args, timeout: (0, output, ""))

        load_workspace_metadata(tmp_path)

        assert fake_local.invocations[0][1] == 7

    def test_non_zero_exit_reports_diagnostics(
        self, tmp_path: Path, patch_local_runner: Installer
    ) -> None:
        """Cargo failures should carry the exit code and stderr."""
        patch_local_runner(
            lambda args, timeout: (101, "", "error: could not find `Cargo.toml`")
        )

        with pytest.raises(MetadataError, match=r"exit code 101\): error"):
            load_workspace_metadata(tmp_path)

    def test_missing_cargo(
        self, tmp_path: Path, patch_local_runner: Installer
    ) -> None:
        """A missing cargo binary should be reported clearly."""

        def run(args: list[str], timeout: int | None) -> tuple[int, str, str]:
            raise CommandNotFound("cargo", [])

        patch_local_runner(run)

        with pytest.raises(MetadataError, match="cargo not found"):
            load_workspace_metadata(tmp_path)

    def test_timeout(self, tmp_path: Path, patch_local_runner: Installer) -> None:
        """Timeouts should be reported with the configured limit."""

        def run(args: list[str], timeout: int | None) -> tuple[int, str, str]:
            message = "Process did not terminate within 3 seconds"
            raise ProcessTimedOut(message, args)

        patch_local_runner(run)

        with pytest.raises(MetadataError, match="timed out after 3 seconds"):
            load_workspace_metadata(tmp_path, timeout_secs=3)
