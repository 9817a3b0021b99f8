"""Shared fixtures and helper fakes for diener tests."""

from __future__ import annotations

import contextlib
import dataclasses as dc
import json
import os
import typing as typ
from pathlib import Path

import pytest

from diener import metadata as metadata_module

if typ.TYPE_CHECKING:
    import collections.abc as cabc

RunCallable = typ.Callable[[list[str], int | None], tuple[int, str, str]]
TreeWriter = typ.Callable[[dict[str, str]], Path]


@pytest.fixture
def write_tree(tmp_path: Path) -> TreeWriter:
    """Write ``{relative path: contents}`` below ``tmp_path``."""

    def _write(files: dict[str, str]) -> Path:
        for relative, contents in files.items():
            target = tmp_path / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(contents, encoding="utf-8")
        return tmp_path

    return _write


def _package_manifest(name: str, dependencies: str = "") -> str:
    """Return a minimal package manifest with a ``[dependencies]`` body."""
    return (
        "[package]\n"
        f'name = "{name}"\n'
        'version = "0.1.0"\n'
        "\n"
        "[dependencies]\n"
        f"{dependencies}"
    )


@dc.dataclass
class CountingFetcher:
    """Serve canned bodies by URL and count every request."""

    responses: dict[str, str]
    calls: list[str] = dc.field(default_factory=list)

    def fetch_text(self, url: str) -> str:
        """Record ``url`` and return its canned body."""
        self.calls.append(url)
        return self.responses[url]


def _crates_io_body(version: str) -> str:
    """Return a crates.io API response advertising ``version``."""
    return json.dumps({"crate": {"max_version": version}})


def _metadata_json(root: Path, members: cabc.Iterable[str]) -> str:
    """Return ``cargo metadata`` output for ``members`` below ``root``."""
    packages = [
        {
            "id": f"{name} 0.1.0 (path+file://{root / name})",
            "name": name,
            "manifest_path": str(root / name / "Cargo.toml"),
        }
        for name in members
    ]
    return json.dumps(
        {
            "packages": packages,
            "workspace_members": [package["id"] for package in packages],
            "workspace_root": str(root),
        }
    )


class FakeCargoInvocation:
    """Record a cargo invocation and proxy execution to the fake runner."""

    def __init__(self, local: FakeLocal, args: list[str]) -> None:
        """Store the invocation context for later assertions."""
        self._local = local
        self._args = ["cargo", *args]

    def run(
        self, *, retcode: object | None, timeout: int | None
    ) -> tuple[int, str, str]:
        """Record an invocation and delegate to the configured callable."""
        self._local.invocations.append((self._args, timeout))
        return self._local.run_callable(self._args, timeout)


class FakeCargo:
    """Proxy indexing calls into ``FakeCargoInvocation`` instances."""

    def __init__(self, local: FakeLocal) -> None:
        """Initialise the cargo proxy for a fake local environment."""
        self._local = local

    def __getitem__(self, args: object) -> FakeCargoInvocation:
        """Return an invocation wrapper for the provided command arguments."""
        extras = list(args) if isinstance(args, (list, tuple)) else [str(args)]
        return FakeCargoInvocation(self._local, extras)


class FakeLocal:
    """Mimic plumbum's ``local`` for ``cargo metadata`` tests."""

    def __init__(self, run_callable: RunCallable) -> None:
        """Store the callable that will service fake local invocations."""
        self.run_callable = run_callable
        self.cwd_calls: list[Path] = []
        self.invocations: list[tuple[list[str], int | None]] = []

    def __getitem__(self, command: str) -> FakeCargo:
        """Return a ``FakeCargo`` proxy for the ``cargo`` command."""
        if command != "cargo":
            msg = (
                f"FakeLocal only understands the 'cargo' command, received {command!r}"
            )
            raise RuntimeError(msg)
        return FakeCargo(self)

    def cwd(self, path: Path) -> contextlib.AbstractContextManager[None]:
        """Record the working directory change for later assertions."""
        self.cwd_calls.append(path)
        return contextlib.nullcontext()


@pytest.fixture
def patch_local_runner(
    monkeypatch: pytest.MonkeyPatch,
) -> typ.Callable[[RunCallable], FakeLocal]:
    """Install a ``FakeLocal`` around the provided callable."""

    def _install(run_callable: RunCallable) -> FakeLocal:
        fake_local = FakeLocal(run_callable)
        monkeypatch.setattr(metadata_module, "local", fake_local)
        return fake_local

    return _install


@pytest.fixture(autouse=True)
def _clear_diener_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ``DIENER_*`` settings of the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("DIENER_"):
            monkeypatch.delenv(name)


@pytest.fixture
def package_manifest() -> typ.Callable[..., str]:
    """Provide the minimal package manifest builder."""
    return _package_manifest


@pytest.fixture
def crates_io_body() -> typ.Callable[[str], str]:
    """Provide the crates.io response builder."""
    return _crates_io_body


@pytest.fixture
def metadata_json() -> typ.Callable[[Path, cabc.Iterable[str]], str]:
    """Provide the ``cargo metadata`` output builder."""
    return _metadata_json


@pytest.fixture
def make_fetcher() -> typ.Callable[[dict[str, str]], CountingFetcher]:
    """Provide a factory for counting fake fetchers."""
    return CountingFetcher
