from __future__ import annotations

import socket
import struct
from dataclasses import dataclass
from typing import Tuple

LOOPBACK = "127.0.0.1"


@dataclass(frozen=True)
class Destination:
    """
    Network identity of a remote peer.

    `address` is the packed 4-byte IPv4 address in network byte order and is
    treated as opaque; `port` is the transport port as a plain integer.
    """

    address: bytes
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.address, (bytes, bytearray)) or len(self.address) != 4:
            raise ValueError(f"IPv4 address must be 4 bytes, got {self.address!r}")
        if not isinstance(self.port, int) or not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"Port must be in 0..65535, got {self.port!r}")
        if isinstance(self.address, bytearray):
            object.__setattr__(self, "address", bytes(self.address))

    @classmethod
    def from_host(cls, host: str, port: int) -> Destination:
        """Build a destination from dotted-quad text such as '10.0.0.7'."""
        try:
            packed = socket.inet_aton(host)
        except OSError:
            raise ValueError(f"Not an IPv4 address: {host!r}")
        return cls(packed, port)

    @classmethod
    def from_sockaddr(cls, sockaddr: Tuple[str, int]) -> Destination:
        host, port = sockaddr[0], sockaddr[1]
        return cls.from_host(host, port)

    @classmethod
    def loopback(cls, port: int) -> Destination:
        return cls.from_host(LOOPBACK, port)

    @property
    def host(self) -> str:
        return socket.inet_ntoa(self.address)

    @property
    def sockaddr(self) -> Tuple[str, int]:
        return (self.host, self.port)

    @property
    def wire_port(self) -> bytes:
        """Port as it appears on the wire (2 bytes, network order)."""
        return struct.pack("!H", self.port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"
