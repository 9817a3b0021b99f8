"""Environment-driven settings and logging setup.

Explicit arguments always win; the ``DIENER_*`` environment variables are the
fallback, and the module constants are the final default.
"""

from __future__ import annotations

import logging
import os
import typing as typ

LOGGER = logging.getLogger(__name__)

LOG_LEVEL_ENV: typ.Final[str] = "DIENER_LOG_LEVEL"
DEFAULT_LOG_LEVEL: typ.Final[str] = "INFO"
LOG_FORMAT: typ.Final[str] = "[%(asctime)s %(levelname)s %(name)s] %(message)s"

__all__ = [
    "DEFAULT_LOG_LEVEL",
    "LOG_LEVEL_ENV",
    "configure_logging",
    "resolve_log_level",
    "resolve_timeout",
]


def resolve_timeout(timeout_secs: int | None, *, env_var: str, default: int) -> int:
    """Return a timeout in seconds.

    The value prioritises the explicit ``timeout_secs`` argument. When that is
    omitted, ``env_var`` is consulted before falling back to ``default``.

    Raises
    ------
    SystemExit
        Raised when the environment value is not a positive integer.

    Examples
    --------
    >>> resolve_timeout(5, env_var="DIENER_UNSET_TIMEOUT", default=30)
    5
    """
    if timeout_secs is not None:
        return timeout_secs

    env_value = os.environ.get(env_var)
    if env_value is None:
        return default

    try:
        resolved = int(env_value)
    except ValueError as err:
        LOGGER.exception("%s must be an integer", env_var)
        message = f"{env_var} must be an integer"
        raise SystemExit(message) from err
    if resolved <= 0:
        message = f"{env_var} must be a positive integer"
        raise SystemExit(message)
    return resolved


def resolve_log_level(level: str | None = None) -> int:
    """Translate a level name from ``level`` or ``DIENER_LOG_LEVEL``.

    Examples
    --------
    >>> resolve_log_level("debug") == logging.DEBUG
    True
    """
    name = (level or os.environ.get(LOG_LEVEL_ENV) or DEFAULT_LOG_LEVEL).upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        message = f"{LOG_LEVEL_ENV} must be one of DEBUG, INFO, WARNING, ERROR"
        raise SystemExit(message)
    return resolved


def configure_logging(level: str | None = None) -> None:
    """Install the process-wide log handler at the resolved level."""
    logging.basicConfig(level=resolve_log_level(level), format=LOG_FORMAT)
