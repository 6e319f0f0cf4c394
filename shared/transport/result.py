"""
Result union returned by every transport operation.

    Ok(value)            the operation succeeded
    PeerClosed(data)     stream receive stopped early on an orderly peer close
    Err(kind, ...)       the operation failed; kind is always a mapped ErrorKind

The failure and its kind travel together, so there is no separate error
register to read (and read stale) after the fact.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from shared.transport.destination import Destination
from shared.transport.errors import ErrorKind, TransportError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None  # type: ignore[assignment]

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class PeerClosed:
    """Short read: the peer closed the stream before the full length arrived."""

    data: bytes = b""

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> None:
        """Always None; an orderly close is not an error."""
        return None

    @property
    def count(self) -> int:
        return len(self.data)

    def unwrap(self) -> bytes:
        return self.data


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    errno: Optional[int] = None
    data: bytes = b""
    detail: str = ""

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise TransportError(self.kind, self.detail or self.kind.value, self.errno)


@dataclass(frozen=True)
class Datagram:
    data: bytes
    sender: Destination


Result = Union[Ok[T], PeerClosed, Err]
