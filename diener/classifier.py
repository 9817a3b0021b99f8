"""Classify dependency entries by the upstream repository they come from.

A :class:`Scope` selects which git dependencies a ref rewrite touches. Family
scopes compare the base name of the entry's ``git`` URL with the repository
name of a known upstream; :data:`Scope.ALL` accepts every entry.
"""

from __future__ import annotations

import collections.abc as cabc
import enum
import logging
import re
import typing as typ
from urllib.parse import urlsplit

from diener.errors import GitUrlError

LOGGER = logging.getLogger(__name__)

_SCP_LIKE = re.compile(r"^(?:[\w.+-]+@)?[\w.-]+:(?!//)(?P<path>.+)$")
_URL_SCHEMES: typ.Final[frozenset[str]] = frozenset(
    {"http", "https", "ssh", "git", "git+ssh", "git+https", "file"}
)

__all__ = [
    "FAMILY_REPOSITORIES",
    "Scope",
    "git_repository",
    "matches_scope",
    "repository_name",
]


class Scope(enum.Enum):
    """Dependency families a rewrite can be restricted to."""

    ALL = "all"
    SUBSTRATE = "substrate"
    POLKADOT = "polkadot"
    CUMULUS = "cumulus"
    BEEFY = "beefy"

    @property
    def repository(self) -> str | None:
        """Repository base name for the family, ``None`` for :data:`ALL`."""
        return FAMILY_REPOSITORIES.get(self)


FAMILY_REPOSITORIES: typ.Final[dict[Scope, str]] = {
    Scope.SUBSTRATE: "substrate",
    Scope.POLKADOT: "polkadot",
    Scope.CUMULUS: "cumulus",
    Scope.BEEFY: "grandpa-bridge-gadget",
}


def repository_name(url: str) -> str:
    """Return the repository base name of a git source.

    Handles scheme URLs (``https://``, ``ssh://``, ``git://``, ``file://``),
    scp-like ``git@host:org/repo.git`` locators and plain local paths.

    Raises
    ------
    GitUrlError
        Raised when ``url`` is empty, contains whitespace, uses an unsupported
        scheme, or has no path component to take a name from.

    Examples
    --------
    >>> repository_name("https://github.com/paritytech/substrate")
    'substrate'
    >>> repository_name("git@github.com:paritytech/polkadot.git")
    'polkadot'
    """
    candidate = url.strip()
    if not candidate or any(char.isspace() for char in candidate):
        message = f"invalid git url: {url!r}"
        raise GitUrlError(message)

    if "://" in candidate:
        parts = urlsplit(candidate)
        if parts.scheme.lower() not in _URL_SCHEMES:
            message = f"unsupported git url scheme {parts.scheme!r} in {url!r}"
            raise GitUrlError(message)
        if parts.scheme.lower() != "file" and not parts.netloc:
            message = f"git url {url!r} has no host"
            raise GitUrlError(message)
        path = parts.path
    elif match := _SCP_LIKE.match(candidate):
        path = match["path"]
    else:
        path = candidate

    segments = [segment for segment in path.split("/") if segment]
    name = segments[-1].removesuffix(".git") if segments else ""
    if not name:
        message = f"git url {url!r} does not name a repository"
        raise GitUrlError(message)
    return name


def git_repository(entry: cabc.Mapping[str, typ.Any]) -> str | None:
    """Return the repository name of ``entry``'s ``git`` field.

    ``None`` is returned when the entry has no ``git`` string or when the URL
    cannot be parsed; such entries never match a ref rewrite.
    """
    git = entry.get("git")
    if not isinstance(git, str):
        return None
    try:
        return repository_name(git)
    except GitUrlError as error:
        LOGGER.debug("Ignoring dependency with unparseable git source: %s", error)
        return None


def matches_scope(entry: cabc.Mapping[str, typ.Any], scope: Scope) -> bool:
    """Return ``True`` when ``entry`` belongs to ``scope``.

    Examples
    --------
    >>> matches_scope({"git": "https://example.com/org/substrate"}, Scope.SUBSTRATE)
    True
    >>> matches_scope({"git": "https://example.com/org/polkadot"}, Scope.SUBSTRATE)
    False
    >>> matches_scope({"version": "1"}, Scope.SUBSTRATE)
    False
    >>> matches_scope({"version": "1"}, Scope.ALL)
    True
    """
    if scope is Scope.ALL:
        return True
    return git_repository(entry) == scope.repository
