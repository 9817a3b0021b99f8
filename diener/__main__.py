"""Allow ``python -m diener``."""

from __future__ import annotations

from diener.cli import main

if __name__ == "__main__":
    main()
