"""Seed peer and seed server."""

from bitseed.seeder.client import PeerClient
from bitseed.seeder.peer import SeedPeer, generate_peer_id
from bitseed.seeder.server import SeedServer

__all__ = ["PeerClient", "SeedPeer", "SeedServer", "generate_peer_id"]
