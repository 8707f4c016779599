"""Pydantic models for bitseed.

Provides validated configuration sections, wire protocol enums and the
records exchanged with persistence backends.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class MessageType(int, Enum):
    """Type byte of a length-prefixed peer wire message."""

    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    NOT_INTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8


class AnnounceStatus(str, Enum):
    """Download status of an announced peer."""

    INCOMPLETE = "incomplete"
    COMPLETE = "complete"


class PersistenceBackend(str, Enum):
    """Available persistence backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class AnnouncedPeer(BaseModel):
    """Peer entry returned to announcing clients."""

    peer_id: bytes = Field(..., description="Peer ID")
    ip: str = Field(..., description="Address peers should connect to")
    port: int = Field(..., ge=0, le=65535, description="Peer port number")

    def __str__(self) -> str:
        """String representation of the peer."""
        return f"{self.ip}:{self.port}"


class PeerStats(BaseModel):
    """Seeder/leecher counts of a torrent."""

    complete: int = Field(default=0, ge=0, description="Number of seeders")
    incomplete: int = Field(default=0, ge=0, description="Number of leechers")


class TorrentSummary(BaseModel):
    """Active torrent as listed for the self-announce loop."""

    info_hash: bytes = Field(..., min_length=20, max_length=20)
    length: int = Field(..., ge=0, description="File length in bytes")


class AnnounceRecord(BaseModel):
    """One announce, keyed by ``(info_hash, peer_id)``."""

    info_hash: bytes
    peer_id: bytes
    ip: str
    port: int = Field(..., ge=0, le=65535)
    uploaded: int = Field(default=0, ge=0)
    downloaded: int = Field(default=0, ge=0)
    left: int = Field(default=0, ge=0)
    status: AnnounceStatus = AnnounceStatus.INCOMPLETE
    expires_at: float = Field(..., description="Unix timestamp of logical expiry")

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class TrackerConfig(BaseModel):
    """HTTP announce endpoint configuration."""

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=6969, ge=0, le=65535, description="Listen port")
    announce_path: str = Field(default="/announce", description="Announce URL path")
    interval: int = Field(
        default=60,
        ge=1,
        description="Announce interval handed to clients in seconds",
    )

    @field_validator("announce_path")
    @classmethod
    def validate_announce_path(cls, v):
        """Announce path must be absolute."""
        if not v.startswith("/"):
            msg = "Announce path must start with '/'"
            raise ValueError(msg)
        return v


class SeederConfig(BaseModel):
    """Seed peer and seed server configuration."""

    internal_address: str = Field(
        default="127.0.0.1",
        description="Address the listening socket binds to",
    )
    external_address: str = Field(
        default="127.0.0.1",
        description="Address announced to the tracker",
    )
    port: int = Field(default=6881, ge=0, le=65535, description="Listen port")
    peer_workers: int = Field(
        default=5,
        ge=1,
        le=256,
        description="Accept loops sharing the listening socket",
    )
    seeders_stop_seeding: int = Field(
        default=0,
        ge=0,
        description="Stop serving a torrent once this many other seeders exist (0 = never)",
    )
    stop_after_iterations: int = Field(
        default=20,
        ge=1,
        description="Connections (or announce rounds) before a worker restarts",
    )
    announce_interval: int = Field(
        default=30,
        ge=1,
        description="Self-announce interval in seconds",
    )
    listen_backlog: int = Field(default=5, ge=1, description="Listen backlog")
    accept_poll_interval: float = Field(
        default=1.0,
        gt=0.0,
        description="Seconds a blocked accept waits before re-checking the stop flag",
    )
    read_timeout: float | None = Field(
        default=None,
        gt=0.0,
        description="Idle peer read timeout in seconds (None = wait forever)",
    )


class SupervisorConfig(BaseModel):
    """Worker supervisor configuration."""

    poll_interval: float = Field(
        default=0.5,
        gt=0.0,
        le=60.0,
        description="Seconds between shutdown checks while waiting for workers",
    )
    restart_delay: float = Field(
        default=0.0,
        ge=0.0,
        le=3600.0,
        description="Pause before a guarded slot is respawned",
    )


class TorrentConfig(BaseModel):
    """Torrent creation defaults."""

    piece_length: int = Field(
        default=262144,
        gt=0,
        description="Default piece length in bytes",
    )


class PersistenceConfig(BaseModel):
    """Persistence backend configuration."""

    backend: PersistenceBackend = Field(
        default=PersistenceBackend.SQLITE,
        description="Storage backend",
    )
    database: str = Field(default="bitseed.db", description="SQLite database path")


class ObservabilityConfig(BaseModel):
    """Logging destinations and format."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Rotating log file; unset disables file logging")
    console: bool = Field(default=True, description="Log to the console")
    structured_logging: bool = Field(
        default=False,
        description="Use structured JSON logging",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Bind a correlation id when logging is configured",
    )


class Config(BaseModel):
    """Root of ``bitseed.toml``: one field per section."""

    tracker: TrackerConfig = Field(
        default_factory=TrackerConfig,
        description="Tracker configuration",
    )
    seeder: SeederConfig = Field(
        default_factory=SeederConfig,
        description="Seeder configuration",
    )
    supervisor: SupervisorConfig = Field(
        default_factory=SupervisorConfig,
        description="Supervisor configuration",
    )
    torrent: TorrentConfig = Field(
        default_factory=TorrentConfig,
        description="Torrent creation configuration",
    )
    persistence: PersistenceConfig = Field(
        default_factory=PersistenceConfig,
        description="Persistence configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Logging settings",
    )
