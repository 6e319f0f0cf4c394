import errno
import socket

import pytest

from shared.transport.errors import ErrorKind, TransportError, translate, translate_exception


@pytest.mark.parametrize(
    "code, kind",
    [
        (errno.EACCES, ErrorKind.PERMISSION_DENIED),
        (errno.EPERM, ErrorKind.PERMISSION_DENIED),
        (errno.ENOMEM, ErrorKind.OUT_OF_MEMORY),
        (errno.EINVAL, ErrorKind.ILLEGAL_OPERATION),
        (errno.EISCONN, ErrorKind.ILLEGAL_OPERATION),
        (errno.ENOTCONN, ErrorKind.ILLEGAL_OPERATION),
        (errno.EMSGSIZE, ErrorKind.ILLEGAL_OPERATION),
        (errno.EBADF, ErrorKind.BAD_SOCKET),
        (errno.ENOTSOCK, ErrorKind.BAD_SOCKET),
        (errno.EADDRINUSE, ErrorKind.ADDRESS_IN_USE),
        (errno.EADDRNOTAVAIL, ErrorKind.ADDRESS_NOT_AVAILABLE),
        (errno.ECONNREFUSED, ErrorKind.CONNECTION_REFUSED),
        (errno.ECONNRESET, ErrorKind.CONNECTION_RESET),
        (errno.ENETUNREACH, ErrorKind.DESTINATION_UNREACHABLE),
        (errno.EHOSTUNREACH, ErrorKind.DESTINATION_UNREACHABLE),
        (errno.ENETDOWN, ErrorKind.DESTINATION_UNREACHABLE),
        (errno.EINPROGRESS, ErrorKind.TIMEOUT),
        (errno.EIO, ErrorKind.UNKNOWN),
    ],
)
def test_translate_known_codes(code, kind):
    assert translate(code) is kind


def test_translate_would_block_is_timeout():
    assert translate(errno.EAGAIN) is ErrorKind.TIMEOUT
    assert translate(errno.EWOULDBLOCK) is ErrorKind.TIMEOUT


def test_translate_unrecognized_is_unknown():
    assert translate(None) is ErrorKind.UNKNOWN
    assert translate(-12345) is ErrorKind.UNKNOWN
    assert translate(errno.EINTR) is ErrorKind.UNKNOWN


def test_translate_exception():
    assert translate_exception(ConnectionRefusedError(errno.ECONNREFUSED, "refused")) is ErrorKind.CONNECTION_REFUSED
    assert translate_exception(BlockingIOError(errno.EAGAIN, "again")) is ErrorKind.TIMEOUT
    assert translate_exception(socket.timeout("timed out")) is ErrorKind.TIMEOUT
    assert translate_exception(MemoryError()) is ErrorKind.OUT_OF_MEMORY
    assert translate_exception(OSError("no errno")) is ErrorKind.UNKNOWN
    assert translate_exception(RuntimeError("boom")) is ErrorKind.UNKNOWN


def test_transport_error_carries_kind():
    e = TransportError(ErrorKind.BAD_SOCKET, "closed", errno.EBADF)
    assert e.kind is ErrorKind.BAD_SOCKET
    assert e.errno == errno.EBADF
    assert str(e) == "closed"
