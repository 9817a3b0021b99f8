"""Tests for update option validation and the update run."""

from __future__ import annotations

import logging
import typing as typ

import pytest

from diener.classifier import Scope
from diener.errors import VersionResolutionError
from diener.rewrite import PinBranch, PinRev, PinTag, PinVersion, RewriteRequest
from diener.update import UpdateOptions, run_update
from diener.versions import CRATES_IO_API, CratesIo, LockUrl

if typ.TYPE_CHECKING:
    from pathlib import Path

SUBSTRATE = "https://github.com/paritytech/substrate"
LOCK_URL = "https://example.com/Cargo.lock"


class TestUpdateOptions:
    """Tests for :meth:`diener.update.UpdateOptions.into_request`."""

    @pytest.mark.parametrize(
        ("options", "expected"),
        [
            (
                UpdateOptions(substrate=True, tag="v1"),
                RewriteRequest(PinTag("v1"), scope=Scope.SUBSTRATE),
            ),
            (
                UpdateOptions(polkadot=True, branch="dev", git="https://x/polkadot"),
                RewriteRequest(
                    PinBranch("dev"), scope=Scope.POLKADOT, git="https://x/polkadot"
                ),
            ),
            (
                UpdateOptions(all_dependencies=True, rev="abc"),
                RewriteRequest(PinRev("abc"), scope=Scope.ALL),
            ),
            (
                UpdateOptions(version="latest"),
                RewriteRequest(PinVersion(CratesIo())),
            ),
        ],
    )
    def test_builds_requests(
        self, options: UpdateOptions, expected: RewriteRequest
    ) -> None:
        """Valid option sets should produce the matching request."""
        assert options.into_request() == expected

    def test_requires_a_target(self) -> None:
        """One of the target options must be given."""
        with pytest.raises(SystemExit, match="You need to pass"):
            UpdateOptions(substrate=True).into_request()

    def test_targets_are_mutually_exclusive(self) -> None:
        """Two targets at once should be rejected."""
        with pytest.raises(SystemExit, match="`--branch`, `--tag`"):
            UpdateOptions(substrate=True, branch="a", tag="b").into_request()

    def test_requires_a_scope_for_refs(self) -> None:
        """Ref targets need a family or ``--all``."""
        with pytest.raises(SystemExit, match="You must specify one of"):
            UpdateOptions(tag="v1").into_request()

    def test_scopes_are_mutually_exclusive(self) -> None:
        """Two family flags at once should be rejected."""
        with pytest.raises(SystemExit, match="`--substrate`, `--cumulus`"):
            UpdateOptions(substrate=True, cumulus=True, tag="v1").into_request()

    def test_git_conflicts_with_version(self) -> None:
        """A git URL cannot be combined with a version pin."""
        with pytest.raises(SystemExit, match="cannot be used together"):
            UpdateOptions(version="latest", git="https://x/substrate").into_request()

    def test_git_requires_a_family(self) -> None:
        """A git URL is only meaningful for one family."""
        options = UpdateOptions(all_dependencies=True, git="https://x/y", tag="v1")

        with pytest.raises(SystemExit, match="for `--git`"):
            options.into_request()

    def test_version_ignores_family_flags(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Family flags are ignored for version pins, with a warning."""
        with caplog.at_level(logging.WARNING, logger="diener.update"):
            request = UpdateOptions(substrate=True, version="latest").into_request()

        assert request.scope is Scope.ALL
        assert "ignored" in caplog.text


class TestRunUpdate:
    """Integration tests for :func:`diener.update.run_update`."""

    def test_rewrites_every_manifest(
        self,
        write_tree: typ.Callable[[dict[str, str]], Path],
        package_manifest: typ.Callable[..., str],
    ) -> None:
        """All matching manifests below the root should be rewritten."""
        dependency = f'sp-core = {{ git = "{SUBSTRATE}", branch = "master" }}\n'
        root = write_tree(
            {
                "a/Cargo.toml": package_manifest("a", dependency),
                "b/Cargo.toml": package_manifest("b", dependency),
                "c/Cargo.toml": package_manifest("c", 'serde = "1"\n'),
                ".hidden/Cargo.toml": package_manifest("h", dependency),
            }
        )

        changed = run_update(root, RewriteRequest(PinTag("v1"), scope=Scope.SUBSTRATE))

        assert changed == [root / "a" / "Cargo.toml", root / "b" / "Cargo.toml"]
        assert 'tag = "v1"' in (root / "a" / "Cargo.toml").read_text(encoding="utf-8")
        assert 'branch = "master"' in (root / ".hidden" / "Cargo.toml").read_text(
            encoding="utf-8"
        )

    def test_version_lookups_are_cached_across_manifests(
        self,
        write_tree: typ.Callable[[dict[str, str]], Path],
        package_manifest: typ.Callable[..., str],
        make_fetcher: typ.Callable[..., typ.Any],
        crates_io_body: typ.Callable[[str], str],
    ) -> None:
        """Ten manifests using ``foo`` should trigger a single lookup."""
        root = write_tree(
            {
                f"crate{index}/Cargo.toml": package_manifest(
                    f"crate{index}", 'foo = { version = "0.1" }\n'
                )
                for index in range(10)
            }
        )
        fetcher = make_fetcher({f"{CRATES_IO_API}/foo": crates_io_body("0.9.0")})

        changed = run_update(
            root, RewriteRequest(PinVersion(CratesIo())), fetcher=fetcher
        )

        assert len(changed) == 10
        assert fetcher.calls == [f"{CRATES_IO_API}/foo"]

    def test_unreachable_lock_is_fetched_once(
        self,
        write_tree: typ.Callable[[dict[str, str]], Path],
        package_manifest: typ.Callable[..., str],
    ) -> None:
        """A failing lock source costs one request and leaves files alone."""
        original = package_manifest("crate", 'foo = { version = "0.1" }\n')
        root = write_tree(
            {f"crate{index}/Cargo.toml": original for index in range(10)}
        )
        calls: list[str] = []

        class UnavailableFetcher:
            def fetch_text(self, url: str) -> str:
                calls.append(url)
                message = f"failed to fetch {url}: 503 Service Unavailable"
                raise VersionResolutionError(message)

        changed = run_update(
            root,
            RewriteRequest(PinVersion(LockUrl(LOCK_URL))),
            fetcher=UnavailableFetcher(),
        )

        assert changed == []
        assert calls == [LOCK_URL]
        assert (root / "crate3" / "Cargo.toml").read_text(encoding="utf-8") == original

    def test_exclusions_are_honoured(
        self,
        write_tree: typ.Callable[[dict[str, str]], Path],
        package_manifest: typ.Callable[..., str],
        make_fetcher: typ.Callable[..., typ.Any],
        crates_io_body: typ.Callable[[str], str],
    ) -> None:
        """Excluded packages should never be resolved or rewritten."""
        root = write_tree(
            {
                "a/Cargo.toml": package_manifest(
                    "a", 'foo = { version = "0.1" }\nbar = { version = "0.1" }\n'
                ),
                "exclude.toml": '[diener_exclude]\nbar = { version = "0.1" }\n',
            }
        )
        fetcher = make_fetcher({f"{CRATES_IO_API}/foo": crates_io_body("0.9.0")})

        run_update(
            root,
            RewriteRequest(PinVersion(CratesIo())),
            exclude=root / "exclude.toml",
            fetcher=fetcher,
        )

        text = (root / "a" / "Cargo.toml").read_text(encoding="utf-8")
        assert 'foo = { version = "0.9.0" }\n' in text
        assert 'bar = { version = "0.1" }\n' in text
        assert fetcher.calls == [f"{CRATES_IO_API}/foo"]

    def test_root_must_be_a_directory(self, tmp_path: Path) -> None:
        """A missing root should abort the run."""
        with pytest.raises(SystemExit, match="is not a directory"):
            run_update(tmp_path / "missing", RewriteRequest(PinTag("v1")))
