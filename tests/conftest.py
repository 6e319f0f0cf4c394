import socket
import threading
from typing import Any, Callable, List, Optional

import pytest


class DummySocket:
    """Scriptable stand-in for socket.socket.

    `recv_chunks` feeds recv_into (bytes or an exception per call; an empty
    list means the peer closed). `datagrams` feeds recvfrom with
    (data, addr) tuples or exceptions. `accept_results` feeds accept the same
    way.
    """

    def __init__(self, family: int = socket.AF_INET, type: int = socket.SOCK_STREAM) -> None:
        self.family = family
        self.type = type
        self.recv_chunks: List[Any] = []
        self.datagrams: List[Any] = []
        self.sent: List[bytes] = []
        self.sent_to: List[tuple] = []
        self.send_error: Optional[BaseException] = None
        self.bind_error: Optional[BaseException] = None
        self.options: dict = {}
        self.address = ("0.0.0.0", 0)
        self.closed = False
        self.timeout: Any = "unset"
        self.recv_calls = 0
        self.accept_results: List[Any] = []
        self.accept_calls = 0
        self.backlog: Optional[int] = None

    def settimeout(self, value: Optional[float]) -> None:
        self.timeout = value

    def fileno(self) -> int:
        return -1 if self.closed else 99

    def setsockopt(self, level: int, option: int, value: Any) -> None:
        self.options[(level, option)] = value

    def bind(self, address: tuple) -> None:
        if self.bind_error is not None:
            raise self.bind_error
        self.address = (address[0], address[1] or 40000)

    def getsockname(self) -> tuple:
        return self.address

    def sendall(self, data: Any) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(bytes(data))

    def sendto(self, data: Any, address: tuple) -> int:
        if self.send_error is not None:
            raise self.send_error
        self.sent_to.append((bytes(data), address))
        return len(data)

    def listen(self, backlog: Optional[int] = None) -> None:
        self.backlog = backlog

    def accept(self) -> tuple:
        self.accept_calls += 1
        item = self.accept_results.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def recv_into(self, view: memoryview, nbytes: int) -> int:
        self.recv_calls += 1
        if not self.recv_chunks:
            return 0
        item = self.recv_chunks.pop(0)
        if isinstance(item, BaseException):
            raise item
        count = min(len(item), nbytes)
        view[:count] = item[:count]
        if len(item) > count:
            self.recv_chunks.insert(0, item[count:])
        return count

    def recvfrom(self, size: int) -> tuple:
        self.recv_calls += 1
        item = self.datagrams.pop(0)
        if isinstance(item, BaseException):
            raise item
        data, address = item
        return data[:size], address

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def dummy_socket() -> DummySocket:
    return DummySocket()


@pytest.fixture
def dummy_handle(dummy_socket):
    """Factory for handles whose OS socket is `dummy_socket`."""
    from shared.transport import SocketHandle

    created = []

    def make(kind: str = "stream", **kwargs: Any) -> SocketHandle:
        handle = SocketHandle.create(socket_factory=lambda *_: dummy_socket, **kwargs)
        if kind == "stream":
            handle.initialize_stream().unwrap()
        else:
            handle.initialize_datagram().unwrap()
        created.append(handle)
        return handle

    yield make
    for handle in created:
        handle.dispose()


@pytest.fixture
def run_in_thread():
    """Run a callable in a thread; joins and re-raises its exception at teardown."""
    threads = []

    def start(target: Callable[[], Any]) -> threading.Thread:
        errors: List[BaseException] = []

        def wrapper() -> None:
            try:
                target()
            except BaseException as e:  # surfaced in the test thread below
                errors.append(e)

        thread = threading.Thread(target=wrapper, daemon=True)
        thread.errors = errors  # type: ignore[attr-defined]
        thread.start()
        threads.append(thread)
        return thread

    yield start
    for thread in threads:
        thread.join(5)
        assert not thread.is_alive(), "helper thread did not finish"
        if thread.errors:  # type: ignore[attr-defined]
            raise thread.errors[0]  # type: ignore[attr-defined]


@pytest.fixture
def listening_stream():
    """A bound, listening TCP handle on an ephemeral port."""
    from shared.transport import SocketHandle

    with SocketHandle.create() as handle:
        handle.initialize_stream().unwrap()
        handle.bind(0).unwrap()
        handle.listen().unwrap()
        yield handle
