"""Resolve symbolic version requests to concrete crate versions.

Three sources are supported: the newest release on crates.io, a remote
``Cargo.lock`` addressed by URL, and a local ``Cargo.lock`` file. Every lookup
goes through a :class:`VersionCache` owned by the run, so each distinct package
is resolved at most once and a lock document is fetched or read only once.
"""

from __future__ import annotations

import dataclasses as dc
import json
import logging
import tomllib
import typing as typ
from pathlib import Path

from diener.errors import VersionResolutionError

if typ.TYPE_CHECKING:
    from diener.fetch import TextFetcher

LOGGER = logging.getLogger(__name__)

CRATES_IO_API: typ.Final[str] = "https://crates.io/api/v1/crates"
LOCK_FILE_NAME: typ.Final[str] = "Cargo.lock"
LATEST: typ.Final[str] = "latest"

__all__ = [
    "CRATES_IO_API",
    "LATEST",
    "LOCK_FILE_NAME",
    "CratesIo",
    "LockFile",
    "LockUrl",
    "VersionCache",
    "VersionResolver",
    "VersionSource",
    "lock_versions",
    "parse_version_source",
    "requires_network",
]


@dc.dataclass(frozen=True)
class CratesIo:
    """Use the highest version published on crates.io."""


@dc.dataclass(frozen=True)
class LockUrl:
    """Read versions from a ``Cargo.lock`` served at ``url``."""

    url: str


@dc.dataclass(frozen=True)
class LockFile:
    """Read versions from a local ``Cargo.lock``."""

    path: Path


VersionSource = CratesIo | LockUrl | LockFile


def parse_version_source(value: str) -> VersionSource:
    """Interpret the ``--version`` option.

    Raises
    ------
    SystemExit
        Raised when ``value`` is neither ``latest``, an ``http(s)`` URL nor an
        existing file named ``Cargo.lock``.

    Examples
    --------
    >>> parse_version_source("latest")
    CratesIo()
    >>> parse_version_source("https://example.com/Cargo.lock")
    LockUrl(url='https://example.com/Cargo.lock')
    """
    if value.startswith(("http://", "https://")):
        return LockUrl(value)
    path = Path(value)
    if path.is_file() and path.name == LOCK_FILE_NAME:
        return LockFile(path)
    if value == LATEST:
        return CratesIo()
    message = f"Invalid 'version' source: {value}"
    raise SystemExit(message)


def requires_network(source: VersionSource) -> bool:
    """Return ``True`` when resolving from ``source`` needs HTTP access."""
    return isinstance(source, (CratesIo, LockUrl))


@dc.dataclass
class VersionCache:
    """Run-scoped memo of resolved versions and the lock document body.

    Failed lookups are remembered too, so a package missing from the source
    or an unreachable lock file costs one fetch per run rather than one per
    manifest.
    """

    versions: dict[str, str] = dc.field(default_factory=dict)
    failures: dict[str, VersionResolutionError] = dc.field(default_factory=dict)
    lock_body: str | None = None
    lock_index: dict[str, str] | None = None
    lock_error: VersionResolutionError | None = None


def lock_versions(body: str) -> dict[str, str]:
    """Map package names to versions recorded in a ``Cargo.lock`` body.

    When a package is locked at several versions the first entry wins.

    Examples
    --------
    >>> lock_versions('[[package]]\\nname = "foo"\\nversion = "1.2.3"\\n')
    {'foo': '1.2.3'}
    """
    try:
        data = tomllib.loads(body)
    except tomllib.TOMLDecodeError as error:
        message = f"failed to parse Cargo.lock: {error}"
        raise VersionResolutionError(message) from error

    index: dict[str, str] = {}
    packages = data.get("package", [])
    if not isinstance(packages, list):
        return index
    for package in packages:
        if not isinstance(package, dict):
            continue
        name = package.get("name")
        version = package.get("version")
        if isinstance(name, str) and isinstance(version, str):
            index.setdefault(name, version)
    return index


class VersionResolver:
    """Resolve package versions from one :data:`VersionSource`."""

    def __init__(
        self,
        source: VersionSource,
        *,
        fetcher: TextFetcher | None = None,
        cache: VersionCache | None = None,
    ) -> None:
        """Bind the resolver to ``source`` and its collaborators."""
        self.source = source
        self.cache = cache if cache is not None else VersionCache()
        self._fetcher = fetcher

    def resolve(self, package: str) -> str:
        """Return the version ``package`` should be pinned to.

        Raises
        ------
        VersionResolutionError
            Raised when the package is unknown to the source or the source
            cannot be fetched.
        """
        cached = self.cache.versions.get(package)
        if cached is not None:
            return cached
        failure = self.cache.failures.get(package)
        if failure is not None:
            raise failure

        try:
            version = self._resolve_uncached(package)
        except VersionResolutionError as error:
            self.cache.failures[package] = error
            raise
        self.cache.versions[package] = version
        return version

    def _resolve_uncached(self, package: str) -> str:
        source = self.source
        if isinstance(source, CratesIo):
            return self._latest_from_crates_io(package)
        if isinstance(source, LockUrl):
            return self._from_lock(package, origin=source.url)
        if isinstance(source, LockFile):
            return self._from_lock(package, origin=str(source.path))
        typ.assert_never(source)

    def _require_fetcher(self) -> TextFetcher:
        if self._fetcher is None:
            message = "no fetcher configured for a network version source"
            raise VersionResolutionError(message)
        return self._fetcher

    def _latest_from_crates_io(self, package: str) -> str:
        body = self._require_fetcher().fetch_text(f"{CRATES_IO_API}/{package}")
        LOGGER.debug("crates.io plain response: %s", body)
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as error:
            message = f"error trying to JSON parse the crates.io response: {body}"
            raise VersionResolutionError(message) from error

        crate = payload.get("crate") if isinstance(payload, dict) else None
        version = crate.get("max_version") if isinstance(crate, dict) else None
        if not isinstance(version, str):
            message = f"package '{package}' not found on crates.io"
            raise VersionResolutionError(message)
        return version

    def _lock_body(self) -> str:
        if self.cache.lock_body is not None:
            return self.cache.lock_body

        source = self.source
        if isinstance(source, LockUrl):
            body = self._require_fetcher().fetch_text(source.url)
        elif isinstance(source, LockFile):
            try:
                body = source.path.read_text(encoding="utf-8")
            except OSError as error:
                message = f"failed to read {source.path}: {error}"
                raise VersionResolutionError(message) from error
        else:  # pragma: no cover - callers only reach this for lock sources
            message = f"{source!r} is not a lock file source"
            raise VersionResolutionError(message)
        self.cache.lock_body = body
        return body

    def _lock_index(self) -> dict[str, str]:
        if self.cache.lock_error is not None:
            raise self.cache.lock_error
        if self.cache.lock_index is None:
            try:
                self.cache.lock_index = lock_versions(self._lock_body())
            except VersionResolutionError as error:
                self.cache.lock_error = error
                raise
        return self.cache.lock_index

    def _from_lock(self, package: str, *, origin: str) -> str:
        lock_index = self._lock_index()
        version = lock_index.get(package)
        if version is None:
            message = f"package '{package}' not found in Cargo.lock ({origin})"
            raise VersionResolutionError(message)
        return version
