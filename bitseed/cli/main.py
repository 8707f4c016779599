"""Command line interface for bitseed.

Commands:
- create-torrent: hash a file, register it and write its .torrent file
- tracker: run the HTTP announce endpoint
- seed: run the seed server (seed peer + self-announce)
- deactivate: stop serving and announcing a torrent
- config: inspect the effective configuration
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from bitseed import __version__
from bitseed.bencode import decode, encode
from bitseed.cli.config_commands import config as config_group
from bitseed.config import ConfigManager, init_config
from bitseed.exceptions import BitseedError
from bitseed.logging_config import setup_logging
from bitseed.models import LogLevel, PersistenceBackend
from bitseed.persistence import create_persistence
from bitseed.seeder.peer import SeedPeer
from bitseed.seeder.server import SeedServer
from bitseed.tracker import Tracker
from bitseed.tracker_server_http import run_http_tracker

logger = logging.getLogger(__name__)


def _get_config_from_context(ctx: click.Context) -> ConfigManager:
    """Get the ConfigManager prepared by the ``cli`` group."""
    obj = ctx.find_root().obj or {}
    if obj.get("config_manager") is not None:
        return obj["config_manager"]
    return init_config(obj.get("config"))


def _warn_memory_backend(cm: ConfigManager, console: Console) -> None:
    if cm.config.persistence.backend == PersistenceBackend.MEMORY:
        console.print(
            "[yellow]Warning: the memory backend is not shared with other "
            "bitseed processes[/yellow]"
        )


def _torrent_table(torrent_bytes: bytes, output: Path) -> Table:
    info: dict[bytes, Any] = decode(torrent_bytes)[b"info"]
    table = Table(title="Torrent created")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Name", info[b"name"].decode("utf-8", "replace"))
    table.add_row("Length", str(info[b"length"]))
    table.add_row("Piece length", str(info[b"piece length"]))
    table.add_row("Pieces", str(len(info[b"pieces"]) // 20))
    table.add_row("Info hash", hashlib.sha1(encode(info)).hexdigest())
    table.add_row("Output", str(output))
    return table


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (-v: info, -vv: debug)",
)
@click.version_option(__version__, prog_name="bitseed")
@click.pass_context
def cli(ctx, config, verbose):
    """Bitseed - BitTorrent tracker and seed server."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    try:
        config_manager = init_config(config)
    except BitseedError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj["config_manager"] = config_manager

    if verbose:
        cfg = config_manager.config
        cfg.observability.log_level = LogLevel.DEBUG if verbose > 1 else LogLevel.INFO
        setup_logging(cfg.observability)


cli.add_command(config_group)


@cli.command("create-torrent")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--tracker",
    "-t",
    "trackers",
    multiple=True,
    required=True,
    help="Announce URL to embed; repeat for an announce-list",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output torrent file path (default: <file>.torrent)",
)
@click.option("--piece-length", type=int, help="Piece length in bytes")
@click.option("--name", type=str, help="Name stored in the torrent (default: file name)")
@click.pass_context
def create_torrent(
    ctx: click.Context,
    file_path: Path,
    trackers: tuple[str, ...],
    output: Path | None,
    piece_length: int | None,
    name: str | None,
) -> None:
    """Hash FILE_PATH, register it for seeding and write its .torrent file.

    Examples:
        bitseed create-torrent movie.mkv -t http://tracker.example.com:6969/announce

    """
    console = Console()
    cm = _get_config_from_context(ctx)
    _warn_memory_backend(cm, console)

    if output is None:
        output = file_path.with_name(f"{file_path.name}.torrent")
    if piece_length is None:
        piece_length = cm.config.torrent.piece_length

    persistence = create_persistence(cm.config.persistence)
    try:
        torrent_bytes = Tracker(persistence).create_torrent(
            list(trackers),
            file_path,
            piece_length=piece_length,
            name=name,
        )
    except BitseedError as e:
        logger.debug("Failed to create torrent", exc_info=True)
        raise click.ClickException(str(e)) from e
    finally:
        persistence.close()

    output.write_bytes(torrent_bytes)
    console.print(_torrent_table(torrent_bytes, output))


@cli.command()
@click.option("--host", type=str, help="Bind address")
@click.option("--port", type=int, help="Listen port")
@click.option("--interval", type=int, help="Announce interval handed to clients (s)")
@click.pass_context
def tracker(ctx: click.Context, host: str | None, port: int | None, interval: int | None) -> None:
    """Run the HTTP announce endpoint."""
    console = Console()
    cm = _get_config_from_context(ctx)
    _warn_memory_backend(cm, console)

    tracker_config = cm.config.tracker.model_copy(
        update={
            key: value
            for key, value in {"host": host, "port": port, "interval": interval}.items()
            if value is not None
        }
    )
    console.print(
        f"[green]Tracker on http://{tracker_config.host}:{tracker_config.port}"
        f"{tracker_config.announce_path}[/green]"
    )

    persistence = create_persistence(cm.config.persistence)
    try:
        run_http_tracker(persistence, tracker_config)
    except OSError as e:
        raise click.ClickException(f"Cannot start tracker: {e}") from e
    finally:
        persistence.close()


@cli.command()
@click.option("--port", type=int, help="Listen port")
@click.option("--internal-address", type=str, help="Address the listening socket binds to")
@click.option("--external-address", type=str, help="Address announced to the tracker")
@click.option("--workers", type=int, help="Number of accept loops")
@click.option(
    "--seeders-stop-seeding",
    type=int,
    help="Stop serving a torrent once this many other seeders exist (0 = never)",
)
@click.pass_context
def seed(
    ctx: click.Context,
    port: int | None,
    internal_address: str | None,
    external_address: str | None,
    workers: int | None,
    seeders_stop_seeding: int | None,
) -> None:
    """Run the seed server until interrupted."""
    console = Console()
    cm = _get_config_from_context(ctx)
    cfg = cm.config
    _warn_memory_backend(cm, console)

    persistence = create_persistence(cfg.persistence)
    peer = SeedPeer(
        persistence,
        cfg.seeder,
        poll_interval=cfg.supervisor.poll_interval,
        restart_delay=cfg.supervisor.restart_delay,
    )
    if port is not None:
        peer.set_port(port)
    if internal_address is not None:
        peer.set_internal_address(internal_address)
    if external_address is not None:
        peer.set_external_address(external_address)
    if workers is not None:
        peer.set_peer_workers(workers)
    if seeders_stop_seeding is not None:
        peer.set_seeders_stop_seeding(seeders_stop_seeding)

    server = SeedServer(
        peer,
        persistence,
        announce_interval=cfg.seeder.announce_interval,
        stop_after_iterations=cfg.seeder.stop_after_iterations,
        poll_interval=cfg.supervisor.poll_interval,
        restart_delay=cfg.supervisor.restart_delay,
    )
    console.print(
        f"[green]Seeding on {peer.internal_address}:{peer.port}, "
        f"announced as {peer.external_address}:{peer.port}[/green]"
    )
    try:
        server.start()
    except BitseedError as e:
        raise click.ClickException(str(e)) from e
    finally:
        persistence.close()
    console.print("[yellow]Seed server stopped[/yellow]")


@cli.command()
@click.argument("info_hash")
@click.pass_context
def deactivate(ctx: click.Context, info_hash: str) -> None:
    """Stop serving and announcing the torrent with hex INFO_HASH."""
    console = Console()
    try:
        raw = bytes.fromhex(info_hash)
    except ValueError:
        raw = b""
    if len(raw) != 20:
        msg = f"Invalid info hash: {info_hash}"
        raise click.BadParameter(msg, param_hint="INFO_HASH")

    cm = _get_config_from_context(ctx)
    persistence = create_persistence(cm.config.persistence)
    try:
        found = persistence.deactivate_torrent(raw)
    finally:
        persistence.close()

    if not found:
        msg = f"Unknown torrent: {info_hash}"
        raise click.ClickException(msg)
    console.print(f"[green]Deactivated torrent {info_hash.lower()}[/green]")


def main() -> None:
    """Entry point for the ``bitseed`` script."""
    cli()


if __name__ == "__main__":
    main()
