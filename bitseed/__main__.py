"""Run the bitseed command line with ``python -m bitseed``."""

from __future__ import annotations

from bitseed.cli.main import main

if __name__ == "__main__":
    main()
