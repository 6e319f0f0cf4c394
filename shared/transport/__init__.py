"""Blocking TCP/UDP socket handles with normalized errors."""

from shared.transport.destination import Destination
from shared.transport.errors import ErrorKind, TransportError, translate, translate_exception
from shared.transport.handle import (
    MAX_STREAM_READ,
    HandleState,
    SocketHandle,
    SocketKind,
    open_datagram,
    open_stream,
)
from shared.transport.result import Datagram, Err, Ok, PeerClosed, Result

__all__ = [
    "MAX_STREAM_READ",
    "Datagram",
    "Destination",
    "Err",
    "ErrorKind",
    "HandleState",
    "Ok",
    "PeerClosed",
    "Result",
    "SocketHandle",
    "SocketKind",
    "TransportError",
    "open_datagram",
    "open_stream",
    "translate",
    "translate_exception",
]
