"""CRT dispenser frame protocol and ACK/ENQ command channel."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import reduce

from cardterm.core.errors import ProtocolError, TransportError
from cardterm.core.model import CardStatus
from cardterm.transports.base import SerialLink

STX = 0x02
ETX = 0x03
ENQ = 0x05
ACK = 0x06

DISPENSE = "DC"
RETRACT = "CP"
STATUS = "AP"

STATUS_SIGNATURE = bytes([STX, ord("S"), ord("F")])
STATUS_RESPONSE_SIZE = 16
_PRE_EMPTY_OFFSET, _PRE_EMPTY_MASK = 5, 0x01
_EMPTY_OFFSET, _EMPTY_MASK = 6, 0x08

LOGGER = logging.getLogger(__name__)


def checksum(data: bytes) -> int:
    return reduce(lambda acc, byte: acc ^ byte, data, 0)


@dataclass(frozen=True)
class Frame:
    """Bytes between STX and ETX; the envelope and checksum are added on encode."""

    body: bytes

    @classmethod
    def command(cls, code: str) -> Frame:
        if len(code) != 2 or not code.isascii():
            raise ValueError(f"Command code must be two ASCII characters, got {code!r}")
        return cls(code.encode("ascii"))

    @classmethod
    def position(cls, position: int) -> Frame:
        if not 0 <= position <= 9:
            raise ValueError(f"Position must be a single digit, got {position}")
        return cls(b"FC" + bytes([0x30 + position]))

    def encode(self) -> bytes:
        head = bytes([STX]) + self.body + bytes([ETX])
        return head + bytes([checksum(head)])


def decode_status(response: bytes) -> CardStatus:
    if len(response) <= _EMPTY_OFFSET or not response.startswith(STATUS_SIGNATURE):
        raise ProtocolError(f"Malformed status response: {response.hex(' ') or '<empty>'}")
    if response[_EMPTY_OFFSET] & _EMPTY_MASK:
        return CardStatus.EMPTY
    if response[_PRE_EMPTY_OFFSET] & _PRE_EMPTY_MASK:
        return CardStatus.PRE_EMPTY
    return CardStatus.HAS_CARD


class CommandChannel:
    """Host side of the dispenser handshake over one serial link."""

    def __init__(
        self,
        link: SerialLink,
        *,
        settle_s: float = 0.1,
        drain_s: float = 0.4,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.link = link
        self.settle_s = settle_s
        self.drain_s = drain_s
        self._sleep = sleep

    def open(self) -> None:
        self.link.open()

    def close(self) -> None:
        self.link.close()

    def send_frame(self, code: str) -> None:
        self._write_frame(Frame.command(code))

    def _write_frame(self, frame: Frame) -> None:
        payload = frame.encode()
        LOGGER.debug("-> %s", payload.hex(" "))
        self.link.write(payload)

    def await_ack(self) -> bool:
        try:
            reply = self.link.read(1)
        except TransportError as exc:
            LOGGER.warning("No ACK from dispenser: %s", exc)
            return False
        if reply != bytes([ACK]):
            LOGGER.warning("No ACK from dispenser (got %s)", reply.hex() or "nothing")
            return False
        return True

    def _enquire(self) -> None:
        self._sleep(self.settle_s)
        self.link.write(bytes([ENQ]))
        self._sleep(self.drain_s)

    def _drain(self) -> None:
        trailing = self.link.read_available()
        if trailing:
            LOGGER.debug("<- %s (drained)", trailing.hex(" "))

    def _execute(self, frame: Frame) -> bool:
        self._write_frame(frame)
        if not self.await_ack():
            return False
        self._enquire()
        self._drain()
        return True

    def execute_with_enq(self, code: str) -> bool:
        acked = self._execute(Frame.command(code))
        LOGGER.info("Command %s %s", code, "acknowledged" if acked else "not acknowledged")
        return acked

    def execute_position_command(self, position: int) -> bool:
        acked = self._execute(Frame.position(position))
        LOGGER.info(
            "Position %d %s", position, "acknowledged" if acked else "not acknowledged"
        )
        return acked

    def query_status(self) -> CardStatus:
        self.send_frame(STATUS)
        if not self.await_ack():
            raise ProtocolError("Dispenser did not acknowledge status request")
        self._enquire()
        response = self.link.read(STATUS_RESPONSE_SIZE)
        LOGGER.debug("<- %s", response.hex(" "))
        return decode_status(response)
