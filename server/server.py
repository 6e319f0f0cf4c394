#!/usr/bin/env python3
"""
Echo servers built on socket handles.

TCP: one listening handle, one thread per accepted connection. Each thread
reads fixed-size frames with receive_stream and writes them straight back
until the peer closes, the idle timeout fires, or the connection fails.

UDP: one bound handle that answers every datagram to its sender.
"""

from __future__ import annotations

import threading
from typing import Optional, Set

import typer
from rich.console import Console

from shared.config import TransportConfig, load_config
from shared.log import LoggerSink, configure_root_logging, get_logger
from shared.transport import (
    Destination,
    ErrorKind,
    HandleState,
    PeerClosed,
    SocketHandle,
)

logger = get_logger(__name__)

DEFAULT_PORT = 9000
DEFAULT_FRAME_SIZE = 1024
ACCEPT_BACKOFF = 0.05
ACCEPT_BACKOFF_MAX = 1.0

# accept() failures that will not clear up by retrying
_FATAL_ACCEPT_KINDS = (ErrorKind.BAD_SOCKET, ErrorKind.ILLEGAL_OPERATION)


def _wake_destination(config: TransportConfig, port: int) -> Destination:
    """Address a local client can reach a server bound to config.bind_host on."""
    if config.bind_host in ("", "0.0.0.0"):
        return Destination.loopback(port)
    return Destination.from_host(config.bind_host, port)


class TCPEchoServer:
    """Thread-per-connection echo server for fixed-size frames."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        frame_size: int = DEFAULT_FRAME_SIZE,
        config: Optional[TransportConfig] = None,
    ):
        self.port = port
        self.frame_size = frame_size
        self.config = config or TransportConfig()
        self.sink = LoggerSink(logger)
        self.listener: Optional[SocketHandle] = None
        self.frames_echoed = 0
        self._stopping = threading.Event()
        self._workers: Set[threading.Thread] = set()
        self._lock = threading.Lock()

    @property
    def bound_port(self) -> Optional[int]:
        return self.listener.local_port() if self.listener else None

    def start(self) -> None:
        """Bind and listen. Raises TransportError when either step fails."""
        listener = SocketHandle.create(self.config, self.sink)
        try:
            listener.initialize_stream().unwrap()
            listener.bind(self.port).unwrap()
            listener.listen().unwrap()
        except Exception:
            listener.dispose()
            raise
        self.listener = listener
        logger.info(f"TCP echo server listening on port {self.bound_port} (frame={self.frame_size})")

    def serve_forever(self) -> None:
        if self.listener is None:
            self.start()
        backoff = ACCEPT_BACKOFF
        try:
            while not self._stopping.is_set():
                result = self.listener.accept_connection()
                if not result.ok:
                    if result.kind in _FATAL_ACCEPT_KINDS:
                        logger.error(f"Accept loop giving up: {result.kind.value}")
                        break
                    # e.g. EMFILE; wait for descriptors to free up
                    self._stopping.wait(backoff)
                    backoff = min(backoff * 2, ACCEPT_BACKOFF_MAX)
                    continue
                backoff = ACCEPT_BACKOFF
                connection = result.value
                if self._stopping.is_set():
                    connection.dispose()
                    break
                self._spawn(connection)
        finally:
            self.listener.dispose()

    def _spawn(self, connection: SocketHandle) -> None:
        worker = threading.Thread(
            target=self._handle_connection,
            args=(connection,),
            name=f"echo-{connection.peer}",
            daemon=True,
        )
        with self._lock:
            self._workers.add(worker)
        worker.start()

    def _handle_connection(self, connection: SocketHandle) -> None:
        peer = connection.peer
        frames = 0
        try:
            with connection:
                while True:
                    result = connection.receive_stream(self.frame_size)
                    if isinstance(result, PeerClosed):
                        if result.count:
                            logger.info(f"{peer} closed mid-frame ({result.count}/{self.frame_size} bytes)")
                        break
                    if not result.ok:
                        break
                    if not connection.send_stream(result.value).ok:
                        break
                    frames += 1
        finally:
            logger.info(f"Connection {peer} finished after {frames} frame(s)")
            with self._lock:
                self.frames_echoed += frames
                self._workers.discard(threading.current_thread())

    def stop(self, timeout: float = 2.0) -> None:
        """Stop accepting and wait up to `timeout` for connection threads."""
        self._stopping.set()
        port = self.bound_port
        if port is not None:
            # accept() has no cancellation; wake it with a throwaway connection
            with SocketHandle.create() as poke:
                if poke.initialize_stream().ok:
                    poke.connect(_wake_destination(self.config, port))
        with self._lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout)


class UDPEchoServer:
    """Answers each datagram with the same payload, back to its sender."""

    def __init__(self, port: int = DEFAULT_PORT, config: Optional[TransportConfig] = None):
        self.port = port
        self.config = config or TransportConfig()
        self.sink = LoggerSink(logger)
        self.handle: Optional[SocketHandle] = None
        self.datagrams_echoed = 0
        self._stopping = threading.Event()

    @property
    def bound_port(self) -> Optional[int]:
        return self.handle.local_port() if self.handle else None

    def start(self) -> None:
        handle = SocketHandle.create(self.config, self.sink)
        try:
            handle.initialize_datagram().unwrap()
            handle.bind(self.port).unwrap()
        except Exception:
            handle.dispose()
            raise
        self.handle = handle
        logger.info(f"UDP echo server bound to port {self.bound_port}")

    def serve_forever(self) -> None:
        if self.handle is None:
            self.start()
        try:
            while not self._stopping.is_set():
                result = self.handle.receive_datagram()
                if not result.ok:
                    if result.kind in (ErrorKind.TIMEOUT, ErrorKind.CONNECTION_REFUSED):
                        continue
                    break
                if self._stopping.is_set():
                    break
                datagram = result.value
                if self.handle.send_datagram(datagram.sender, datagram.data).ok:
                    self.datagrams_echoed += 1
        finally:
            logger.info(f"UDP echo server stopping after {self.datagrams_echoed} datagram(s)")
            self.handle.dispose()

    def stop(self) -> None:
        self._stopping.set()
        port = self.bound_port
        if port is not None:
            with SocketHandle.create() as poke:
                if poke.initialize_datagram().ok:
                    poke.send_datagram(_wake_destination(self.config, port), b"")


# ========================================
#           CLI
# ========================================

app = typer.Typer(help="netsock echo servers")
console = Console()


def _config(config_path: Optional[str], timeout: Optional[float]) -> TransportConfig:
    config = load_config(config_path)
    configure_root_logging(config.log_level)
    return config.with_overrides(receive_timeout=timeout)


@app.command()
def tcp(
    port: int = typer.Option(DEFAULT_PORT, min=0, max=65535, help="Port to listen on (0 = ephemeral)"),
    frame_size: int = typer.Option(DEFAULT_FRAME_SIZE, min=1, help="Bytes per echoed frame"),
    timeout: Optional[float] = typer.Option(None, min=0, help="Idle receive timeout per connection, seconds"),
    config_path: Optional[str] = typer.Option(None, "--config", help="YAML config file"),
):
    """Run the thread-per-connection TCP echo server."""
    server = TCPEchoServer(port, frame_size, _config(config_path, timeout))
    server.start()
    console.print(f"[bold green]TCP echo[/] on port {server.bound_port}, frame {frame_size} bytes")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        server.stop()


@app.command()
def udp(
    port: int = typer.Option(DEFAULT_PORT, min=0, max=65535, help="Port to bind (0 = ephemeral)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="YAML config file"),
):
    """Run the UDP echo server."""
    server = UDPEchoServer(port, _config(config_path, None))
    server.start()
    console.print(f"[bold green]UDP echo[/] on port {server.bound_port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        server.stop()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
