"""Rewrite dependency declarations across ``Cargo.toml`` files."""

from __future__ import annotations

__version__ = "0.5.0"

__all__ = ["__version__"]
