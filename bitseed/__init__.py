"""bitseed - BitTorrent tracker and seed server."""

from __future__ import annotations

__version__ = "0.1.0"
