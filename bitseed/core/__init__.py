"""Core BitTorrent components.

- Bencoding (encoding/decoding)
- The file shared by a torrent
- Torrent metadata
"""

from __future__ import annotations

from bitseed.core.bencode import decode, encode
from bitseed.core.file import SeedFile
from bitseed.core.torrent import Torrent

__all__ = ["SeedFile", "Torrent", "decode", "encode"]
