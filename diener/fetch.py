"""Remote text retrieval used by version resolution."""

from __future__ import annotations

import logging
import typing as typ

import httpx

from diener.config import resolve_timeout
from diener.errors import VersionResolutionError

if typ.TYPE_CHECKING:
    from types import TracebackType

LOGGER = logging.getLogger(__name__)

USER_AGENT: typ.Final[str] = "diener_crawler (https://github.com/bkchr/diener)"
DEFAULT_HTTP_TIMEOUT_SECS: typ.Final[int] = 30
HTTP_TIMEOUT_ENV: typ.Final[str] = "DIENER_HTTP_TIMEOUT_SECS"

__all__ = [
    "DEFAULT_HTTP_TIMEOUT_SECS",
    "HTTP_TIMEOUT_ENV",
    "USER_AGENT",
    "HttpFetcher",
    "TextFetcher",
    "resolve_http_timeout",
]


class TextFetcher(typ.Protocol):
    """Protocol for collaborators that return the body of a URL as text."""

    def fetch_text(self, url: str) -> str:
        """Return the response body for ``url``."""
        ...


def resolve_http_timeout(timeout_secs: int | None = None) -> int:
    """Return the HTTP timeout, consulting ``DIENER_HTTP_TIMEOUT_SECS``."""
    return resolve_timeout(
        timeout_secs, env_var=HTTP_TIMEOUT_ENV, default=DEFAULT_HTTP_TIMEOUT_SECS
    )


class HttpFetcher:
    """Blocking :mod:`httpx` fetcher that identifies itself to crates.io."""

    def __init__(
        self,
        *,
        timeout_secs: int | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Create the fetcher, building a client unless one is supplied."""
        if client is None:
            client = httpx.Client(
                timeout=resolve_http_timeout(timeout_secs),
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            )
        self._client = client

    def fetch_text(self, url: str) -> str:
        """Return the body of ``url``.

        Raises
        ------
        VersionResolutionError
            Raised for transport failures and non-success status codes.
        """
        LOGGER.debug("Fetching %s", url)
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as error:
            message = f"failed to fetch {url}: {error}"
            raise VersionResolutionError(message) from error
        return response.text

    def close(self) -> None:
        """Release the underlying connection pool."""
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        """Return the fetcher for use in a ``with`` block."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close the client when the block exits."""
        self.close()
