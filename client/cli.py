#!/usr/bin/env python3

from __future__ import annotations
import time
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from shared.config import TransportConfig, load_config
from shared.log import configure_root_logging, get_logger
from shared.transport import (
    Destination,
    PeerClosed,
    TransportError,
    open_datagram,
    open_stream,
)

app = typer.Typer(help="netsock client CLI")
console = Console()
logger = get_logger(__name__)


def _config(config_path: Optional[str], timeout: Optional[float]) -> TransportConfig:
    config = load_config(config_path)
    configure_root_logging(config.log_level)
    return config.with_overrides(receive_timeout=timeout)


def _destination(host: str, port: int) -> Destination:
    try:
        return Destination.from_host(host, port)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def udp_ping(destination: Destination, message: bytes, config: TransportConfig, count: int = 1) -> list:
    """
    Send `count` datagrams to `destination` and wait for each echo.

    Returns:
        One (rtt_seconds or None, Datagram or None, error kind or None) tuple per ping
    """
    rows = []
    with open_datagram(config) as handle:
        handle.bind(0).unwrap()
        for _ in range(count):
            started = time.monotonic()
            sent = handle.send_datagram(destination, message)
            if not sent.ok:
                rows.append((None, None, sent.kind))
                continue
            reply = handle.receive_datagram(config.max_datagram)
            if not reply.ok:
                rows.append((None, None, reply.kind))
                continue
            rows.append((time.monotonic() - started, reply.value, None))
    return rows


def tcp_exchange(destination: Destination, payload: bytes, config: TransportConfig) -> bytes:
    """
    Send one frame on a fresh connection and read back a frame of the same size.

    Raises:
        TransportError: when connect, send or receive fails
    """
    with open_stream(config) as handle:
        handle.connect(destination).unwrap()
        handle.send_stream(payload).unwrap()
        result = handle.receive_stream(len(payload))
        if isinstance(result, PeerClosed):
            logger.warning(f"{destination} closed after {result.count}/{len(payload)} bytes")
        return result.unwrap()


@app.command()
def ping(
    host: str = typer.Argument(..., help="IPv4 address of the echo server"),
    port: int = typer.Argument(..., min=1, max=65535),
    message: str = typer.Option("ping", help="Datagram payload"),
    count: int = typer.Option(1, min=1, help="Number of datagrams"),
    timeout: float = typer.Option(2.0, min=0, help="Seconds to wait for each echo"),
    config_path: Optional[str] = typer.Option(None, "--config", help="YAML config file"),
):
    """Send UDP datagrams and report each echo."""
    config = _config(config_path, timeout)
    destination = _destination(host, port)
    try:
        rows = udp_ping(destination, message.encode(), config, count)
    except TransportError as e:
        console.print(f"[red]{e.kind.value}[/]: {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"UDP ping {destination}")
    table.add_column("#")
    table.add_column("From")
    table.add_column("Bytes")
    table.add_column("RTT (ms)")
    failures = 0
    for index, (rtt, datagram, kind) in enumerate(rows, start=1):
        if datagram is None:
            failures += 1
            table.add_row(str(index), "-", "-", f"[red]{kind.value}[/]")
            continue
        table.add_row(str(index), str(datagram.sender), str(len(datagram.data)), f"{rtt * 1000:.2f}")
    console.print(table)
    if failures:
        raise typer.Exit(code=1)


@app.command()
def send(
    host: str = typer.Argument(..., help="IPv4 address of the echo server"),
    port: int = typer.Argument(..., min=1, max=65535),
    message: str = typer.Argument(..., help="Frame to send; the reply must be the same length"),
    timeout: float = typer.Option(5.0, min=0, help="Seconds to wait for the reply"),
    config_path: Optional[str] = typer.Option(None, "--config", help="YAML config file"),
):
    """Send one TCP frame and print the echoed frame."""
    config = _config(config_path, timeout)
    destination = _destination(host, port)
    try:
        reply = tcp_exchange(destination, message.encode(), config)
    except TransportError as e:
        console.print(f"[red]{e.kind.value}[/]: {e}")
        raise typer.Exit(code=1)
    if len(reply) < len(message.encode()):
        console.print(f"[yellow]Short read[/]: peer closed after {len(reply)} bytes")
        raise typer.Exit(code=1)
    console.print(f"[bold cyan]{destination}[/] -> {reply.decode(errors='replace')}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
