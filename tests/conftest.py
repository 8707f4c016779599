"""Pytest configuration and shared fixtures for bitseed tests."""

from __future__ import annotations

import logging
import os
import random

import pytest

from bitseed.config import reset_config
from bitseed.core.torrent import Torrent
from bitseed.persistence import InMemoryPersistence, SqlitePersistence


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("integration", "marks tests as integration tests"),
        ("unit", "marks tests as unit tests"),
        ("property", "marks tests as property-based tests"),
        ("bencode", "marks tests as bencode codec tests"),
        ("core", "marks tests as torrent metadata tests"),
        ("tracker", "marks tests as tracker tests"),
        ("peer", "marks tests as peer protocol tests"),
        ("seeder", "marks tests as seed server tests"),
        ("persistence", "marks tests as persistence backend tests"),
        ("supervisor", "marks tests as worker supervisor tests"),
        ("cli", "marks tests as CLI tests"),
        ("config", "marks tests as configuration tests"),
        ("observability", "marks tests as logging tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _clean_bitseed_env(monkeypatch):
    """Keep BITSEED_* variables of the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("BITSEED_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    # setup_logging() detaches the package logger from the root logger.
    package_logger = logging.getLogger("bitseed")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def cleanup_config():
    """Forget the global configuration between tests."""
    yield
    reset_config()


@pytest.fixture(autouse=True)
def seed_rng() -> None:
    """Deterministically seed RNGs to make tests reproducible."""
    random.seed(int(os.environ.get("BITSEED_TEST_SEED", "123456")))


@pytest.fixture
def file_data() -> bytes:
    """Deterministic content spanning several pieces with a short last piece."""
    return bytes(random.randrange(256) for _ in range(10 * 1024 + 123))


@pytest.fixture
def sample_file(tmp_path, file_data):
    path = tmp_path / "sample.bin"
    path.write_bytes(file_data)
    return path


@pytest.fixture
def piece_length() -> int:
    return 1024


@pytest.fixture
def torrent(sample_file, piece_length):
    t = Torrent.from_file(sample_file, piece_length)
    yield t
    t.close()


@pytest.fixture
def memory_persistence():
    return InMemoryPersistence()


@pytest.fixture
def sqlite_persistence(tmp_path):
    persistence = SqlitePersistence(tmp_path / "bitseed.db")
    yield persistence
    persistence.close()


@pytest.fixture(params=["memory", "sqlite"])
def persistence(request, tmp_path):
    """Every persistence backend."""
    if request.param == "memory":
        yield InMemoryPersistence()
        return
    backend = SqlitePersistence(tmp_path / "bitseed.db")
    yield backend
    backend.close()


@pytest.fixture
def make_peer_id():
    """Factory of distinct 20-byte peer ids."""

    def _make(n: int) -> bytes:
        return f"-TS0001-{n:012d}".encode()

    return _make
