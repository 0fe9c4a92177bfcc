#!/usr/bin/env python3
"""
roomdrop CLI

Command-line interface for the room-based file relay.

Usage:
    roomdrop serve                      # Run the relay server
    roomdrop send FILE [--room TOKEN]   # Send a file to a room
    roomdrop receive TOKEN              # Join a room and save incoming files
    roomdrop history                    # List past transfers
    roomdrop config                     # Show effective configuration
"""

import asyncio
import json
import logging
from pathlib import Path

import aiofiles
import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import EXAMPLE_CONFIG, load_config
from .errors import ReassemblyError, SendFailed
from .peer import (
    FileSource, PeerClient, Reassembler, ReceivedFile, TransferRecord,
    WebSocketTransport, new_room_token, new_transfer_id,
)
from .storage import DIRECTION_RECEIVED, DIRECTION_SENT, open_history

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(path_type=Path),
              default='roomdrop.json', help='Config file (JSON)')
@click.option('--data-dir', type=click.Path(path_type=Path), default=None,
              help='Data directory (history database)')
@click.option('--relay', 'relay_url', default=None, help='Relay WebSocket URL')
@click.pass_context
def cli(ctx, verbose, config_path, data_dir, relay_url):
    """roomdrop - send a file to another peer through a room on a relay."""
    config = load_config(config_path)
    if data_dir:
        config.data_dir = data_dir
    if relay_url:
        config.relay_url = relay_url
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default=None, help='Interface to bind')
@click.option('--port', type=int, default=None, help='Port to listen on')
@click.pass_context
def serve(ctx, host, port):
    """Run the relay server."""
    config = ctx.obj['config']
    if host:
        config.host = host
    if port:
        config.port = port

    from .api import run_relay_server

    console.print(Panel.fit(
        f"[bold green]Relay Starting[/bold green]\n\n"
        f"WebSocket: [cyan]ws://{config.host}:{config.port}/ws[/cyan]\n"
        f"Health: [cyan]http://{config.host}:{config.port}/ping[/cyan]",
        title="roomdrop relay"
    ))

    try:
        asyncio.run(run_relay_server(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Relay stopped[/yellow]")


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--room', '-r', default=None, help='Room token (generated if omitted)')
@click.option('--wait-for-peer', is_flag=True,
              help='Wait until another peer joins the room before sending')
@click.option('--max-size', type=int, default=None, help='Refuse files larger than this (bytes)')
@click.option('--allow-type', 'allowed_types', multiple=True,
              help='Only send files of this MIME type (repeatable)')
@click.pass_context
def send(ctx, file_path, room, wait_for_peer, max_size, allowed_types):
    """Send a file to the other members of a room."""
    config = ctx.obj['config']
    source = FileSource.from_path(file_path, block_size=config.chunk_size)

    if allowed_types and source.mime_type not in allowed_types:
        raise click.ClickException(
            f"{file_path.name} is {source.mime_type}, allowed: {', '.join(allowed_types)}"
        )
    if max_size is not None and source.size > max_size:
        raise click.ClickException(
            f"{file_path.name} is {format_size(source.size)}, limit is {format_size(max_size)}"
        )

    room = room or new_room_token()

    async def run():
        transport = WebSocketTransport(config.relay_url, max_frame_bytes=config.max_frame_bytes)
        client = PeerClient(transport, chunk_size=config.chunk_size)
        peer_arrived = asyncio.Event()

        async def on_peer(message):
            peer_arrived.set()

        client.on_peer_joined(on_peer)

        await transport.connect()
        receiver = asyncio.create_task(transport.run())
        history = await open_history(config.history_path)

        try:
            await client.join_room(room)
            console.print(f"Room: [bold green]{room}[/bold green] (share this with the receiver)")

            if wait_for_peer:
                console.print("[dim]Waiting for a peer to join...[/dim]")
                await peer_arrived.wait()

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                console=console,
            ) as progress:
                task = progress.add_task(f"Sending {file_path.name}", total=100)

                def update_progress(p):
                    progress.update(task, completed=p.progress_percent)

                transfer_id = new_transfer_id()
                await history.start_transfer(
                    transfer_id, DIRECTION_SENT, room,
                    name=source.name, size=source.size, mime_type=source.mime_type,
                )
                try:
                    result = await client.send_file(
                        source, room,
                        transfer_id=transfer_id,
                        progress_callback=update_progress,
                    )
                except SendFailed as e:
                    await history.finish_transfer(
                        transfer_id, DIRECTION_SENT, 'failed', detail=e.reason
                    )
                    raise click.ClickException(str(e))

            await history.finish_transfer(
                transfer_id, DIRECTION_SENT, 'completed',
                bytes_count=result.sent_bytes, chunks=result.sent_chunks,
            )
            console.print(
                f"[green]✓ Sent {result.sent_chunks} chunks "
                f"({format_size(result.sent_bytes)}) as {result.transfer_id}[/green]"
            )
        finally:
            await history.close()
            await transport.close()
            receiver.cancel()

    asyncio.run(run())


@cli.command()
@click.argument('room')
@click.option('--output-dir', '-o', type=click.Path(file_okay=False, path_type=Path),
              default='.', help='Where to save received files')
@click.option('--keep-open', is_flag=True, help='Keep receiving after the first file')
@click.pass_context
def receive(ctx, room, output_dir, keep_open):
    """Join a room and save the files sent to it."""
    config = ctx.obj['config']

    async def run():
        transport = WebSocketTransport(config.relay_url, max_frame_bytes=config.max_frame_bytes)
        reassembler = Reassembler(
            max_transfer_bytes=config.max_transfer_bytes,
            idle_timeout=config.idle_timeout,
        )
        client = PeerClient(
            transport, reassembler,
            chunk_size=config.chunk_size,
            eviction_interval=config.eviction_interval,
        )
        history = await open_history(config.history_path)
        done = asyncio.Event()
        errors = []

        async def on_started(record: TransferRecord):
            await history.start_transfer(
                record.transfer_id, DIRECTION_RECEIVED, room,
                name=record.name, size=record.size, mime_type=record.mime_type,
            )

        async def on_failed(record: TransferRecord):
            console.print(f"[red]✗ {record.name or record.transfer_id}: "
                          f"{record.failure_reason}[/red]")
            await history.finish_transfer(
                record.transfer_id, DIRECTION_RECEIVED, 'failed',
                bytes_count=record.received_bytes, detail=record.failure_reason,
            )

        async def on_ready(record: TransferRecord):
            # chunks may have arrived before the metadata
            await on_started(record)
            try:
                received = reassembler.retrieve(record.transfer_id)
            except ReassemblyError as e:
                errors.append(str(e))
                console.print(f"[red]✗ {e}[/red]")
                await history.finish_transfer(
                    record.transfer_id, DIRECTION_RECEIVED, record.state.value, detail=str(e)
                )
                if not keep_open:
                    done.set()
                return

            try:
                path = await save_received_file(received, output_dir)
            except OSError as e:
                errors.append(f"Could not save {received.name or received.transfer_id}: {e}")
                console.print(f"[red]✗ {errors[-1]}[/red]")
                await history.finish_transfer(
                    record.transfer_id, DIRECTION_RECEIVED, 'failed', detail=str(e)
                )
                done.set()
                return

            console.print(f"[green]✓ Saved {path} ({format_size(received.size)})[/green]")
            await history.finish_transfer(
                record.transfer_id, DIRECTION_RECEIVED, 'completed',
                bytes_count=received.size, chunks=record.expected_chunks,
            )
            if not keep_open:
                done.set()

        async def on_peer(message):
            console.print(f"[dim]Peer {message.peer_id} joined[/dim]")

        client.on_transfer_started(on_started)
        client.on_transfer_failed(on_failed)
        client.on_file_ready(on_ready)
        client.on_peer_joined(on_peer)

        await transport.connect()
        receiver = asyncio.create_task(transport.run())
        client.start_eviction()

        try:
            await client.join_room(room)
            console.print(f"Joined room [bold green]{room}[/bold green]. Waiting for files...")

            closed = asyncio.create_task(transport.wait_closed())
            finished = asyncio.create_task(done.wait())
            await asyncio.wait({closed, finished}, return_when=asyncio.FIRST_COMPLETED)
            closed.cancel()
            finished.cancel()

            if not done.is_set():
                raise click.ClickException("Connection to relay lost")
            if errors:
                raise click.ClickException(errors[-1])
        finally:
            client.stop_eviction()
            await transport.close()
            receiver.cancel()
            await history.close()

    asyncio.run(run())


@cli.command()
@click.option('--limit', '-n', default=20, help='Number of transfers to show')
@click.pass_context
def history(ctx, limit):
    """List past transfers."""
    config = ctx.obj['config']

    async def run():
        db = await open_history(config.history_path)
        try:
            rows = await db.list_recent(limit)
        finally:
            await db.close()

        if not rows:
            console.print("[yellow]No transfers yet[/yellow]")
            return

        table = Table(title="Transfers")
        table.add_column("Direction")
        table.add_column("Name", style="cyan")
        table.add_column("Size", justify="right", style="yellow")
        table.add_column("Room", style="green")
        table.add_column("Status")
        table.add_column("Started")

        for row in rows:
            status_style = 'green' if row['status'] == 'completed' else 'red'
            table.add_row(
                row['direction'],
                row['name'] or '-',
                format_size(row['size']) if row['size'] is not None else '-',
                row['room_token'],
                f"[{status_style}]{row['status']}[/{status_style}]",
                str(row['started_at']),
            )

        console.print(table)

    asyncio.run(run())


@cli.command('config')
@click.option('--example', is_flag=True, help='Print an example config file')
@click.pass_context
def show_config(ctx, example):
    """Show the effective configuration."""
    if example:
        click.echo(EXAMPLE_CONFIG.strip())
        return
    click.echo(json.dumps(ctx.obj['config'].to_dict(), indent=2))


async def save_received_file(received: ReceivedFile, output_dir: Path) -> Path:
    """Write a received file, never outside output_dir and never over an existing file."""
    output_dir.mkdir(parents=True, exist_ok=True)
    name = Path(received.name or '').name or f"{received.transfer_id}.bin"
    path = output_dir / name
    counter = 1
    while path.exists():
        path = output_dir / f"{Path(name).stem} ({counter}){Path(name).suffix}"
        counter += 1

    async with aiofiles.open(path, 'wb') as f:
        await f.write(received.data)
    return path


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()
