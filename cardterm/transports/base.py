"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol


class SerialLink(Protocol):
    def open(self) -> None:
        """Open the underlying port."""

    def write(self, data: bytes) -> None:
        """Write all bytes or raise a transport error."""

    def read(self, size: int = 1) -> bytes:
        """Read up to `size` bytes, returning fewer on timeout."""

    def read_available(self) -> bytes:
        """Return whatever is already buffered without blocking."""

    def close(self) -> None:
        """Close the port; safe to call more than once."""


class CardConnection(Protocol):
    def connect(self) -> None: ...

    def transmit(self, apdu: list[int]) -> tuple[list[int], int, int]: ...

    def disconnect(self) -> None: ...


class CardReader(Protocol):
    def createConnection(self) -> CardConnection: ...
