"""Tests for the HTTP announce endpoint."""

from __future__ import annotations

import threading
import urllib.request
from urllib.parse import quote_from_bytes

import pytest

from bitseed.bencode import decode
from bitseed.models import TrackerConfig
from bitseed.persistence import InMemoryPersistence
from bitseed.tracker_server_http import create_http_tracker, parse_announce_query

pytestmark = [pytest.mark.unit, pytest.mark.tracker]

INFO_HASH = bytes(range(236, 256))


@pytest.fixture
def http_tracker():
    server = create_http_tracker(
        InMemoryPersistence(),
        TrackerConfig(host="127.0.0.1", port=0, interval=45),
    )
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    yield f"http://{host}:{port}"
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


def get(url: str):
    with urllib.request.urlopen(url, timeout=5) as response:
        return response.status, response.headers["Content-Type"], response.read()


def announce_url(base: str, peer_id: bytes, **extra: str) -> str:
    query = {
        "info_hash": quote_from_bytes(INFO_HASH),
        "peer_id": quote_from_bytes(peer_id),
        "port": "6881",
        "uploaded": "0",
        "downloaded": "0",
        "left": "10",
        **extra,
    }
    return f"{base}/announce?" + "&".join(f"{k}={v}" for k, v in query.items())


class TestParseAnnounceQuery:
    """Tests for parse_announce_query."""

    def test_binary_values_kept(self):
        parsed = parse_announce_query("info_hash=%00%FF%20a&port=1")
        assert parsed == {"info_hash": b"\x00\xff a", "port": b"1"}

    def test_blank_values_kept(self):
        assert parse_announce_query("event=&compact=1") == {"event": b"", "compact": b"1"}

    def test_first_value_wins(self):
        assert parse_announce_query("port=1&port=2") == {"port": b"1"}


class TestHttpTracker:
    """Tests against a live loopback server."""

    def test_announce(self, http_tracker, make_peer_id):
        status, content_type, body = get(announce_url(http_tracker, make_peer_id(1)))
        assert status == 200
        assert content_type == "text/plain"
        assert decode(body) == {
            b"interval": 45,
            b"complete": 0,
            b"incomplete": 0,
            b"peers": [],
        }

    def test_peers_use_remote_address(self, http_tracker, make_peer_id):
        get(announce_url(http_tracker, make_peer_id(1), port="7000"))
        _, _, body = get(announce_url(http_tracker, make_peer_id(2)))
        assert decode(body)[b"peers"] == [
            {b"peer id": make_peer_id(1), b"ip": b"127.0.0.1", b"port": 7000}
        ]

    def test_failure_is_200(self, http_tracker):
        status, _, body = get(f"{http_tracker}/announce?port=1")
        assert status == 200
        assert decode(body)[b"failure reason"].startswith(b"Invalid get parameters")

    def test_unknown_path(self, http_tracker):
        status, _, body = get(f"{http_tracker}/scrape")
        assert status == 200
        assert decode(body) == {b"failure reason": b"Unknown endpoint."}
