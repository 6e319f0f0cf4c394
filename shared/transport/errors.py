"""
Error taxonomy for the socket transport layer.

Every failure coming out of the OS is folded into one of the eleven
ErrorKind values below, so callers can branch on a small closed set instead
of platform-specific errno values.
"""

from __future__ import annotations

import errno
import socket
from enum import Enum
from typing import Dict, Optional


class ErrorKind(str, Enum):
    """Normalized failure categories exposed in place of raw OS codes."""

    UNKNOWN = "UNKNOWN"
    OUT_OF_MEMORY = "OUT_OF_MEMORY"
    ILLEGAL_OPERATION = "ILLEGAL_OPERATION"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    DESTINATION_UNREACHABLE = "DESTINATION_UNREACHABLE"
    ADDRESS_IN_USE = "ADDRESS_IN_USE"
    BAD_SOCKET = "BAD_SOCKET"
    CONNECTION_RESET = "CONNECTION_RESET"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    ADDRESS_NOT_AVAILABLE = "ADDRESS_NOT_AVAILABLE"
    TIMEOUT = "TIMEOUT"


class TransportError(Exception):
    """Raised when a failed result is unwrapped."""

    def __init__(self, kind: ErrorKind, message: str = "", raw_errno: Optional[int] = None):
        self.kind = kind
        self.errno = raw_errno
        super().__init__(message or kind.value)


# ========================================
#           ERRNO TRANSLATION
# ========================================

_ERRNO_NAMES: Dict[str, ErrorKind] = {
    "EACCES": ErrorKind.PERMISSION_DENIED,
    "EPERM": ErrorKind.PERMISSION_DENIED,
    "ENOMEM": ErrorKind.OUT_OF_MEMORY,
    "ENOBUFS": ErrorKind.OUT_OF_MEMORY,
    "EINVAL": ErrorKind.ILLEGAL_OPERATION,
    "EISCONN": ErrorKind.ILLEGAL_OPERATION,
    "ENOTCONN": ErrorKind.ILLEGAL_OPERATION,
    "EOPNOTSUPP": ErrorKind.ILLEGAL_OPERATION,
    "EMSGSIZE": ErrorKind.ILLEGAL_OPERATION,
    "EBADF": ErrorKind.BAD_SOCKET,
    "ENOTSOCK": ErrorKind.BAD_SOCKET,
    "EADDRINUSE": ErrorKind.ADDRESS_IN_USE,
    "EADDRNOTAVAIL": ErrorKind.ADDRESS_NOT_AVAILABLE,
    "ECONNREFUSED": ErrorKind.CONNECTION_REFUSED,
    "ECONNRESET": ErrorKind.CONNECTION_RESET,
    "ENETUNREACH": ErrorKind.DESTINATION_UNREACHABLE,
    "EHOSTUNREACH": ErrorKind.DESTINATION_UNREACHABLE,
    "ENETDOWN": ErrorKind.DESTINATION_UNREACHABLE,
    "EINPROGRESS": ErrorKind.TIMEOUT,
    "EIO": ErrorKind.UNKNOWN,
    # Winsock spells these differently; only present on Windows builds
    "WSAEACCES": ErrorKind.PERMISSION_DENIED,
    "WSAENOBUFS": ErrorKind.OUT_OF_MEMORY,
    "WSAEINVAL": ErrorKind.ILLEGAL_OPERATION,
    "WSAEISCONN": ErrorKind.ILLEGAL_OPERATION,
    "WSAENOTCONN": ErrorKind.ILLEGAL_OPERATION,
    "WSAEOPNOTSUPP": ErrorKind.ILLEGAL_OPERATION,
    "WSAEMSGSIZE": ErrorKind.ILLEGAL_OPERATION,
    "WSAEBADF": ErrorKind.BAD_SOCKET,
    "WSAENOTSOCK": ErrorKind.BAD_SOCKET,
    "WSAEADDRINUSE": ErrorKind.ADDRESS_IN_USE,
    "WSAEADDRNOTAVAIL": ErrorKind.ADDRESS_NOT_AVAILABLE,
    "WSAECONNREFUSED": ErrorKind.CONNECTION_REFUSED,
    "WSAECONNRESET": ErrorKind.CONNECTION_RESET,
    "WSAENETUNREACH": ErrorKind.DESTINATION_UNREACHABLE,
    "WSAEHOSTUNREACH": ErrorKind.DESTINATION_UNREACHABLE,
    "WSAENETDOWN": ErrorKind.DESTINATION_UNREACHABLE,
    "WSAEINPROGRESS": ErrorKind.TIMEOUT,
}

_WOULD_BLOCK_NAMES = ("EAGAIN", "EWOULDBLOCK", "WSAEWOULDBLOCK")


def _build_table() -> Dict[int, ErrorKind]:
    table: Dict[int, ErrorKind] = {}
    for name, kind in _ERRNO_NAMES.items():
        code = getattr(errno, name, None)
        if code is not None:
            table.setdefault(code, kind)
    return table


ERRNO_TABLE: Dict[int, ErrorKind] = _build_table()
WOULD_BLOCK_CODES = frozenset(
    getattr(errno, name) for name in _WOULD_BLOCK_NAMES if hasattr(errno, name)
)


def translate(raw_code: Optional[int]) -> ErrorKind:
    """
    Map a raw OS error code onto an ErrorKind.

    The mapping is total: anything not in the table is UNKNOWN. A
    would-block code always wins and becomes TIMEOUT, because an expired
    SO_RCVTIMEO surfaces as EAGAIN/EWOULDBLOCK rather than a distinct error.

    Args:
        raw_code: errno value, or None when the failure carried none

    Returns:
        The normalized error kind
    """
    if raw_code is None:
        return ErrorKind.UNKNOWN
    kind = ERRNO_TABLE.get(raw_code, ErrorKind.UNKNOWN)
    if raw_code in WOULD_BLOCK_CODES:
        kind = ErrorKind.TIMEOUT
    return kind


def translate_exception(exc: BaseException) -> ErrorKind:
    """Map an exception raised by a socket call onto an ErrorKind."""
    if isinstance(exc, MemoryError):
        return ErrorKind.OUT_OF_MEMORY
    if isinstance(exc, socket.timeout) and getattr(exc, "errno", None) is None:
        return ErrorKind.TIMEOUT
    if isinstance(exc, OSError):
        return translate(exc.errno)
    return ErrorKind.UNKNOWN
