"""
Socket handle: one OS transport endpoint plus the last normalized error.

A handle goes UNINITIALIZED -> OPEN -> CLOSED -> RELEASED. It is opened
exactly once as TCP (initialize_stream) or UDP (initialize_datagram), may be
bound and given a receive timeout while open, and is closed and released
exactly once. Every operation returns a Result (Ok / PeerClosed / Err); on
failure the same ErrorKind is stored in `last_error` and reported to the
module logger and, if one was given, the LogSink.

Handles do no locking. One thread owns a handle at a time.

Usage:
    with SocketHandle.create() as server:
        server.initialize_stream().unwrap()
        server.bind(9000).unwrap()
        peer = server.accept_connection().unwrap()
        frame = peer.receive_stream(512)
"""

from __future__ import annotations

import errno
import socket
import struct
import sys
import warnings
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, FrozenSet, Iterator, Optional

from shared.config import TransportConfig
from shared.log import LogSink, get_logger, log_transport_event
from shared.transport.destination import Destination
from shared.transport.errors import ErrorKind, translate_exception
from shared.transport.result import Datagram, Err, Ok, PeerClosed, Result

logger = get_logger(__name__)

# Largest stream read accepted; keeps the remaining-bytes arithmetic in range
MAX_STREAM_READ = 2**31 - 1

SocketFactory = Callable[[int, int], socket.socket]


class SocketKind(str, Enum):
    STREAM = "stream"
    DATAGRAM = "datagram"


class HandleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    OPEN = "open"
    CLOSED = "closed"
    RELEASED = "released"


# Kinds each operation may report; anything else collapses to UNKNOWN
_INIT_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.PERMISSION_DENIED,
    ErrorKind.OUT_OF_MEMORY,
})
_BIND_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.PERMISSION_DENIED,
    ErrorKind.ADDRESS_IN_USE,
    ErrorKind.ILLEGAL_OPERATION,
    ErrorKind.BAD_SOCKET,
})
_TIMEOUT_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.BAD_SOCKET,
    ErrorKind.ILLEGAL_OPERATION,
})
_CLOSE_KINDS: FrozenSet[ErrorKind] = frozenset({ErrorKind.BAD_SOCKET})
_CONNECT_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.CONNECTION_REFUSED,
    ErrorKind.DESTINATION_UNREACHABLE,
    ErrorKind.CONNECTION_RESET,
    ErrorKind.ADDRESS_NOT_AVAILABLE,
    ErrorKind.ILLEGAL_OPERATION,
    ErrorKind.BAD_SOCKET,
    ErrorKind.TIMEOUT,
})
_ACCEPT_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.BAD_SOCKET,
    ErrorKind.ILLEGAL_OPERATION,
    ErrorKind.PERMISSION_DENIED,
})
_SEND_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.BAD_SOCKET,
    ErrorKind.ILLEGAL_OPERATION,
    ErrorKind.OUT_OF_MEMORY,
    ErrorKind.TIMEOUT,
})
_RECV_STREAM_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.BAD_SOCKET,
    ErrorKind.ILLEGAL_OPERATION,
    ErrorKind.OUT_OF_MEMORY,
    ErrorKind.CONNECTION_REFUSED,
    ErrorKind.TIMEOUT,
})
_RECV_DATAGRAM_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.BAD_SOCKET,
    ErrorKind.OUT_OF_MEMORY,
    ErrorKind.CONNECTION_REFUSED,
    ErrorKind.TIMEOUT,
})


def _timeval(seconds: float) -> bytes:
    """Pack a receive timeout the way SO_RCVTIMEO expects it."""
    if sys.platform == "win32":
        return struct.pack("I", int(seconds * 1000))
    whole = int(seconds)
    micros = int(round((seconds - whole) * 1_000_000))
    if micros >= 1_000_000:
        whole, micros = whole + 1, micros - 1_000_000
    if seconds > 0 and whole == 0 and micros == 0:
        micros = 1  # an all-zero timeval would mean "block forever"
    return struct.pack("ll", whole, micros)


def _as_view(buffer: Any) -> Optional[memoryview]:
    if buffer is None or isinstance(buffer, str):
        return None
    try:
        return memoryview(buffer).cast("B")
    except (TypeError, ValueError):
        return None


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class SocketHandle:
    """In-process record owning one TCP or UDP endpoint."""

    def __init__(
        self,
        config: Optional[TransportConfig] = None,
        sink: Optional[LogSink] = None,
        *,
        socket_factory: SocketFactory = socket.socket,
    ):
        self.config = config or TransportConfig()
        self.sink = sink
        self._socket_factory = socket_factory
        self._sock: Optional[socket.socket] = None
        self.kind: Optional[SocketKind] = None
        self.state = HandleState.UNINITIALIZED
        self.last_error: Optional[ErrorKind] = None
        self.bound = False
        self.listening = False
        self.peer: Optional[Destination] = None
        self.receive_timeout: Optional[float] = None

    @classmethod
    def create(
        cls,
        config: Optional[TransportConfig] = None,
        sink: Optional[LogSink] = None,
        **kwargs: Any,
    ) -> SocketHandle:
        """Allocate an uninitialized handle. Allocation failure raises MemoryError."""
        return cls(config, sink, **kwargs)

    @classmethod
    def _adopt(cls, sock: socket.socket, parent: SocketHandle, peer: Destination) -> SocketHandle:
        child = cls(parent.config, parent.sink, socket_factory=parent._socket_factory)
        child._sock = sock
        child.kind = SocketKind.STREAM
        child.state = HandleState.OPEN
        child.bound = True
        child.peer = peer
        return child

    # ========================================
    #           SCOPED OWNERSHIP
    # ========================================

    def __enter__(self) -> SocketHandle:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.dispose()

    def dispose(self) -> None:
        """Close if still open, then release. Safe on any state."""
        if self.state is HandleState.OPEN:
            self.close()
        if self.state is not HandleState.RELEASED:
            self.release()

    def __del__(self, *, _warn: Callable[..., None] = warnings.warn) -> None:
        sock = getattr(self, "_sock", None)
        if sock is not None and getattr(self, "state", None) is HandleState.OPEN:
            _warn(f"unclosed socket handle {self!r}", ResourceWarning, source=self)
            sock.close()

    def __repr__(self) -> str:
        kind = self.kind.value if self.kind else "-"
        return f"<SocketHandle {kind} {self.state.value} fd={self.fileno}>"

    @property
    def fileno(self) -> int:
        if self._sock is None:
            return -1
        try:
            return self._sock.fileno()
        except OSError:
            return -1

    # ========================================
    #           ERROR REPORTING
    # ========================================

    def _fail(
        self,
        operation: str,
        kind: ErrorKind,
        raw_errno: Optional[int] = None,
        detail: str = "",
        data: bytes = b"",
    ) -> Err:
        self.last_error = kind
        message = f"{operation} failed: {detail or kind.value}"
        log_transport_event(
            logger, "warning", message,
            fd=self.fileno,
            kind=kind.value,
            peer=str(self.peer) if self.peer else None,
        )
        if self.sink is not None:
            self.sink.log(message, raw_errno or 0)
        return Err(kind, raw_errno, data, detail)

    def _fail_from(
        self,
        operation: str,
        exc: BaseException,
        allowed: FrozenSet[ErrorKind],
        data: bytes = b"",
    ) -> Err:
        kind = translate_exception(exc)
        if kind not in allowed:
            kind = ErrorKind.UNKNOWN
        return self._fail(operation, kind, getattr(exc, "errno", None), str(exc), data)

    def _misuse(self, operation: str, detail: str) -> Err:
        return self._fail(operation, ErrorKind.ILLEGAL_OPERATION, errno.EINVAL, detail)

    def _check_open(self, operation: str, kind: Optional[SocketKind] = None) -> Optional[Err]:
        if self.state is HandleState.CLOSED:
            return self._fail(operation, ErrorKind.BAD_SOCKET, errno.EBADF, "handle is closed")
        if self.state is not HandleState.OPEN:
            return self._misuse(operation, f"handle is {self.state.value}")
        if kind is not None and self.kind is not kind:
            return self._misuse(operation, f"requires a {kind.value} socket, handle is {self.kind.value}")
        return None

    # ========================================
    #           LIFECYCLE
    # ========================================

    def initialize_stream(self) -> Result:
        """Open the endpoint as a TCP socket."""
        return self._initialize(SocketKind.STREAM, socket.SOCK_STREAM)

    def initialize_datagram(self) -> Result:
        """Open the endpoint as a UDP socket."""
        return self._initialize(SocketKind.DATAGRAM, socket.SOCK_DGRAM)

    def _initialize(self, kind: SocketKind, sock_type: int) -> Result:
        operation = f"initialize {kind.value}"
        if self.state is not HandleState.UNINITIALIZED:
            return self._misuse(operation, f"handle is already {self.state.value}")
        try:
            sock = self._socket_factory(socket.AF_INET, sock_type)
        except (OSError, MemoryError) as e:
            return self._fail_from(operation, e, _INIT_KINDS)

        # Blocking mode; receive deadlines come only from SO_RCVTIMEO
        sock.settimeout(None)
        self._sock = sock
        self.kind = kind
        self.state = HandleState.OPEN
        logger.debug(f"Opened {kind.value} socket fd={self.fileno}")

        if self.config.receive_timeout:
            result = self.attach_receive_timeout(self.config.receive_timeout)
            if not result.ok:
                sock.close()
                self._sock = None
                self.kind = None
                self.state = HandleState.UNINITIALIZED
                return result
        return Ok()

    def bind(self, port: int) -> Result:
        """
        Bind to `port` on config.bind_host. Port 0 asks the OS for an ephemeral port.

        Returns:
            Ok(bound_port) on success
        """
        err = self._check_open("bind")
        if err:
            return err
        if self.bound:
            return self._misuse("bind", "handle is already bound")
        if not _is_count(port) or not 0 <= port <= 0xFFFF:
            return self._misuse("bind", f"port out of range: {port!r}")
        try:
            self._sock.bind((self.config.bind_host, port))
            bound_port = self._sock.getsockname()[1]
        except OSError as e:
            return self._fail_from("bind", e, _BIND_KINDS)
        self.bound = True
        logger.debug(f"Bound fd={self.fileno} to {self.config.bind_host}:{bound_port}")
        return Ok(bound_port)

    def local_port(self) -> Optional[int]:
        """Locally bound port, or None when the handle is not open."""
        if self.state is not HandleState.OPEN:
            return None
        try:
            return self._sock.getsockname()[1]
        except OSError:
            return None

    def attach_receive_timeout(self, seconds: Optional[float]) -> Result:
        """
        Bound every following receive to `seconds`; 0 or None blocks forever again.

        Only receives are affected. Send, connect and accept keep blocking.
        """
        err = self._check_open("attach timeout")
        if err:
            return err
        if seconds is None:
            seconds = 0
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds < 0:
            return self._misuse("attach timeout", f"invalid timeout: {seconds!r}")
        try:
            self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVTIMEO, _timeval(seconds))
        except OSError as e:
            return self._fail_from("attach timeout", e, _TIMEOUT_KINDS)
        self.receive_timeout = seconds or None
        return Ok()

    def close(self) -> Result:
        """Release the OS endpoint. A second close is reported, not performed."""
        if self.state is HandleState.CLOSED:
            return self._fail("close", ErrorKind.BAD_SOCKET, errno.EBADF, "handle is already closed")
        if self.state is not HandleState.OPEN:
            return self._misuse("close", f"handle is {self.state.value}")
        sock, fd = self._sock, self.fileno
        self.state = HandleState.CLOSED
        self._sock = None
        try:
            sock.close()
        except OSError as e:
            return self._fail_from("close", e, _CLOSE_KINDS)
        logger.debug(f"Closed fd={fd}")
        return Ok()

    def release(self) -> Result:
        """Drop the in-process record. Must follow close (or a failed initialize)."""
        if self.state is HandleState.OPEN:
            return self._misuse("release", "handle must be closed before release")
        if self.state is HandleState.RELEASED:
            return self._misuse("release", "handle is already released")
        self.state = HandleState.RELEASED
        self._sock = None
        self.peer = None
        return Ok()

    # ========================================
    #           CONNECTION ESTABLISHMENT
    # ========================================

    def connect(self, destination: Destination) -> Result:
        """Connect a stream handle; succeeds once the handshake completes."""
        err = self._check_open("connect", SocketKind.STREAM)
        if err:
            return err
        if destination is None:
            return self._misuse("connect", "destination is required")
        try:
            self._sock.connect(destination.sockaddr)
        except OSError as e:
            return self._fail_from(f"connect to {destination}", e, _CONNECT_KINDS)
        self.peer = destination
        logger.debug(f"Connected fd={self.fileno} to {destination}")
        return Ok()

    def listen(self, backlog: Optional[int] = None) -> Result:
        """Put a bound stream handle into passive mode."""
        err = self._check_open("listen", SocketKind.STREAM)
        if err:
            return err
        if not self.bound:
            return self._misuse("listen", "handle must be bound before listening")
        if backlog is None:
            backlog = self.config.backlog
        try:
            if backlog is None:
                self._sock.listen()
            else:
                self._sock.listen(backlog)
        except OSError as e:
            return self._fail_from("listen", e, _ACCEPT_KINDS)
        self.listening = True
        logger.debug(f"Listening on fd={self.fileno} port={self.local_port()}")
        return Ok()

    def accept_connection(self) -> Result:
        """
        Block until a peer connects.

        Returns:
            Ok(SocketHandle) for the new connection; this handle keeps listening
        """
        err = self._check_open("accept", SocketKind.STREAM)
        if err:
            return err
        if not self.bound:
            return self._misuse("accept", "handle must be bound before accepting")
        if not self.listening:
            result = self.listen()
            if not result.ok:
                return result
        while True:
            try:
                sock, addr = self._sock.accept()
            except BlockingIOError:
                # Linux also applies SO_RCVTIMEO to accept(); keep waiting
                continue
            except OSError as e:
                return self._fail_from("accept", e, _ACCEPT_KINDS)
            break
        peer = Destination.from_sockaddr(addr)
        child = type(self)._adopt(sock, self, peer)
        # Some platforms copy SO_RCVTIMEO to the accepted socket; make it explicit either way
        result = child.attach_receive_timeout(self.receive_timeout)
        if not result.ok:
            child.dispose()
            return result
        logger.debug(f"Accepted {peer} on fd={child.fileno}")
        return Ok(child)

    # ========================================
    #           TRANSFER
    # ========================================

    def send_stream(self, buffer: Any) -> Result:
        """
        Send the whole buffer on a connected stream handle.

        One sendall() call: the kernel accepts every byte or the call fails.

        Returns:
            Ok(bytes_sent)
        """
        err = self._check_open("send", SocketKind.STREAM)
        if err:
            return err
        view = _as_view(buffer)
        if view is None:
            return self._misuse("send", "a bytes-like buffer is required")
        try:
            self._sock.sendall(view)
        except OSError as e:
            return self._fail_from("send", e, _SEND_KINDS)
        return Ok(len(view))

    def send_datagram(self, destination: Destination, buffer: Any) -> Result:
        """
        Send `buffer` as a single datagram to `destination`.

        Returns:
            Ok(bytes_sent)
        """
        err = self._check_open("sendto", SocketKind.DATAGRAM)
        if err:
            return err
        if destination is None:
            return self._misuse("sendto", "destination is required")
        view = _as_view(buffer)
        if view is None:
            return self._misuse("sendto", "a bytes-like buffer is required")
        if len(view) > self.config.max_datagram:
            return self._fail(
                f"sendto {destination}", ErrorKind.ILLEGAL_OPERATION, errno.EMSGSIZE,
                f"{len(view)} bytes exceeds one datagram ({self.config.max_datagram})",
            )
        try:
            sent = self._sock.sendto(view, destination.sockaddr)
        except OSError as e:
            return self._fail_from(f"sendto {destination}", e, _SEND_KINDS)
        return Ok(sent)

    def receive_stream(self, length: int) -> Result:
        """
        Read exactly `length` bytes from a connected stream handle.

        Loops over recv_into until the frame is complete, the peer closes, or
        a call fails.

        Returns:
            Ok(data) with len(data) == length,
            PeerClosed(data) when the peer closed first (len(data) < length),
            Err(kind, data=partial) on a transport error
        """
        err = self._check_open("recv", SocketKind.STREAM)
        if err:
            return err
        if not _is_count(length) or not 0 <= length <= MAX_STREAM_READ:
            return self._misuse("recv", f"length must be in 0..{MAX_STREAM_READ}, got {length!r}")
        if length == 0:
            return Ok(b"")
        try:
            buffer = bytearray(length)
        except MemoryError as e:
            return self._fail_from("recv", e, _RECV_STREAM_KINDS)

        view = memoryview(buffer)
        received = 0
        while received < length:
            try:
                count = self._sock.recv_into(view[received:], length - received)
            except InterruptedError:
                continue
            except OSError as e:
                return self._fail_from("recv", e, _RECV_STREAM_KINDS, data=bytes(view[:received]))
            if count == 0:
                logger.debug(f"Peer {self.peer} closed fd={self.fileno} after {received}/{length} bytes")
                return PeerClosed(bytes(view[:received]))
            received += count
        return Ok(bytes(buffer))

    def receive_datagram(self, capacity: Optional[int] = None) -> Result:
        """
        Receive one datagram of at most `capacity` bytes (default config.max_datagram).

        An interrupted call is retried instead of reported. EINTR is transient
        by OS contract, so the retry is unbounded unless
        config.interrupt_retries sets a limit.

        Returns:
            Ok(Datagram(data, sender))
        """
        err = self._check_open("recvfrom", SocketKind.DATAGRAM)
        if err:
            return err
        if capacity is None:
            capacity = self.config.max_datagram
        if not _is_count(capacity) or capacity <= 0:
            return self._misuse("recvfrom", f"capacity must be positive, got {capacity!r}")

        limit = self.config.interrupt_retries
        interrupts = 0
        while True:
            try:
                data, addr = self._sock.recvfrom(capacity)
            except InterruptedError as e:
                interrupts += 1
                if limit is not None and interrupts > limit:
                    return self._fail_from("recvfrom", e, _RECV_DATAGRAM_KINDS)
                continue
            except (OSError, MemoryError) as e:
                return self._fail_from("recvfrom", e, _RECV_DATAGRAM_KINDS)
            break
        return Ok(Datagram(data, Destination.from_sockaddr(addr)))


# ========================================
#           SCOPED CONSTRUCTORS
# ========================================

@contextmanager
def open_stream(
    config: Optional[TransportConfig] = None,
    sink: Optional[LogSink] = None,
) -> Iterator[SocketHandle]:
    """Yield an initialized TCP handle that is closed and released on exit."""
    with SocketHandle.create(config, sink) as handle:
        handle.initialize_stream().unwrap()
        yield handle


@contextmanager
def open_datagram(
    config: Optional[TransportConfig] = None,
    sink: Optional[LogSink] = None,
) -> Iterator[SocketHandle]:
    """Yield an initialized UDP handle that is closed and released on exit."""
    with SocketHandle.create(config, sink) as handle:
        handle.initialize_datagram().unwrap()
        yield handle
