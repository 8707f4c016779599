"""HTTP tracker server (BEP 3 style) for bitseed.

Serves the announce endpoint on top of ``Tracker.announce``. Every
request is answered with status 200 and a Bencoded body; failures are
reported through ``failure reason``.
"""

from __future__ import annotations

import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from bitseed.tracker import Tracker, announce_failure

if TYPE_CHECKING:
    from bitseed.models import TrackerConfig
    from bitseed.persistence.base import Persistence

logger = logging.getLogger(__name__)


def parse_announce_query(query: str) -> dict[str, bytes]:
    """Percent-decode a query string keeping binary values byte-exact.

    Repeated keys keep their first value.
    """
    parsed = parse_qs(query, keep_blank_values=True, encoding="latin-1")
    return {key: values[0].encode("latin-1") for key, values in parsed.items()}


class AnnounceHandler(BaseHTTPRequestHandler):
    tracker: Tracker
    announce_path = "/announce"
    interval = 60

    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path != self.announce_path:
            body = announce_failure("Unknown endpoint.")
        else:
            params: dict[str, Any] = parse_announce_query(parsed.query)
            body = self.tracker.announce(params, self.client_address[0], self.interval)

        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):  # noqa: A002
        logger.debug("%s - %s", self.address_string(), format % args)


def create_http_tracker(
    persistence: Persistence,
    config: TrackerConfig,
) -> ThreadingHTTPServer:
    """Bind an HTTP tracker for ``config`` without starting it."""
    handler = type(
        "BoundAnnounceHandler",
        (AnnounceHandler,),
        {
            "tracker": Tracker(persistence),
            "announce_path": config.announce_path,
            "interval": config.interval,
        },
    )
    server = ThreadingHTTPServer((config.host, config.port), handler)
    server.daemon_threads = True
    return server


def run_http_tracker(persistence: Persistence, config: TrackerConfig) -> None:
    server = create_http_tracker(persistence, config)
    host, port = server.server_address[:2]
    logger.info("Tracker listening on http://%s:%d%s", host, port, config.announce_path)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Tracker interrupted")
    finally:
        server.server_close()
