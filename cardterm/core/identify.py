"""Interchangeable strategies for identifying the card staged in the dispenser."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Protocol

from cardterm.core.errors import ReaderServiceError
from cardterm.core.model import RfidReadResult
from cardterm.core.reader_match import rank_readers
from cardterm.core.rfid import decode_wiegand26, format_uid, is_card_end, parse_burst
from cardterm.core.settings import TerminalSettings
from cardterm.transports.base import CardReader, SerialLink
from cardterm.transports.pcsc import connection_errors, list_readers
from cardterm.transports.serial_port import SerialPortTransport

GET_UID_APDUS: tuple[tuple[int, ...], ...] = (
    (0xFF, 0xCA, 0x00, 0x00, 0x00),
    (0xFF, 0xCA, 0x00, 0x00, 0x04),
)
_SW_SUCCESS = (0x90, 0x00)

LOGGER = logging.getLogger(__name__)


class CardIdentifier(Protocol):
    card_end: bool

    def open(self) -> None: ...

    def identify(self) -> RfidReadResult | None:
        """Read the staged card within a bounded window; `None` if unreadable.

        Sets `card_end` when the reader reported that the hopper ran out.
        """

    def close(self) -> None: ...


class SerialBurstIdentifier:
    """Collects the text a serial RFID reader emits when a card enters its field.

    Capture starts with the first non-empty chunk and ends once the line has
    been quiet for `idle_s` and at least `window_s` has passed since capture
    began, so readers that split one report into several bursts are read whole.
    Readers that repeat the report while the card stays in the field never go
    quiet; `max_capture_s` after the first chunk ends capture regardless.
    """

    def __init__(
        self,
        link: SerialLink,
        *,
        window_s: float,
        idle_s: float,
        first_byte_timeout_s: float | None,
        max_capture_s: float,
        poll_s: float = 0.02,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.link = link
        self.window_s = window_s
        self.idle_s = idle_s
        self.first_byte_timeout_s = first_byte_timeout_s
        self.max_capture_s = max_capture_s
        self.poll_s = poll_s
        self.card_end = False
        self._clock = clock
        self._sleep = sleep

    def open(self) -> None:
        self.link.open()

    def close(self) -> None:
        self.link.close()

    def _first_chunk(self) -> bytes:
        deadline = (
            None if self.first_byte_timeout_s is None else self._clock() + self.first_byte_timeout_s
        )
        while True:
            chunk = self.link.read_available()
            if chunk:
                return chunk
            if deadline is not None and self._clock() >= deadline:
                return b""
            self._sleep(self.poll_s)

    def capture(self) -> str:
        first = self._first_chunk()
        if not first:
            return ""
        buffer = bytearray(first)
        started = last_data = self._clock()
        while True:
            chunk = self.link.read_available()
            now = self._clock()
            if chunk:
                buffer.extend(chunk)
                last_data = now
            elif now - last_data >= self.idle_s and now - started >= self.window_s:
                break
            if now - started >= self.max_capture_s:
                LOGGER.info("RFID reader still sending after %ss, capture cut off", self.max_capture_s)
                break
            self._sleep(self.poll_s)
        return buffer.decode("ascii", errors="replace")

    def identify(self) -> RfidReadResult | None:
        self.card_end = False
        text = self.capture()
        if not text:
            LOGGER.info("RFID reader sent nothing")
            return None
        if is_card_end(text):
            LOGGER.warning("RFID reader reports no card: hopper empty")
            self.card_end = True
            return None
        identifier = parse_burst(text)
        if identifier is None:
            LOGGER.info("RFID burst has no card number: %r", text)
            return None
        return RfidReadResult(identifier=identifier, raw=text)


class PcscIdentifier:
    """Reads the UID through a PC/SC contactless reader."""

    def __init__(
        self,
        *,
        reader_hint: str | None,
        timeout_s: float,
        poll_s: float = 0.1,
        readers: Callable[[], Sequence[CardReader]] = list_readers,
        no_card_errors: Callable[[], tuple[type[Exception], ...]] = connection_errors,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.reader_hint = reader_hint
        self.timeout_s = timeout_s
        self.poll_s = poll_s
        self.card_end = False
        self._readers = readers
        self._no_card_errors = no_card_errors
        self._clock = clock
        self._sleep = sleep

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def _read_uid(self, reader: CardReader, no_card: tuple[type[Exception], ...]) -> bytes | None:
        connection = reader.createConnection()
        try:
            connection.connect()
        except no_card as exc:
            LOGGER.debug("No card on %s: %s", reader, exc)
            return None
        try:
            for apdu in GET_UID_APDUS:
                try:
                    data, sw1, sw2 = connection.transmit(list(apdu))
                except no_card as exc:
                    LOGGER.debug("GET UID failed on %s: %s", reader, exc)
                    continue
                if (sw1, sw2) == _SW_SUCCESS and data:
                    return bytes(data)
            return None
        finally:
            try:
                connection.disconnect()
            except no_card as exc:
                LOGGER.debug("Disconnect from %s failed: %s", reader, exc)

    def _candidates(self) -> list[CardReader]:
        try:
            available = self._readers()
        except ReaderServiceError as exc:
            LOGGER.warning("No PC/SC readers available: %s", exc)
            return []
        return rank_readers(available, self.reader_hint)

    def identify(self) -> RfidReadResult | None:
        candidates = self._candidates()
        if not candidates:
            LOGGER.warning("No PC/SC readers found")
            return None
        LOGGER.info("PC/SC readers: %s", ", ".join(str(r) for r in candidates))
        no_card = self._no_card_errors()

        deadline = self._clock() + self.timeout_s
        while True:
            for reader in candidates:
                uid = self._read_uid(reader, no_card)
                if uid is None:
                    continue
                wiegand = decode_wiegand26(uid)
                return RfidReadResult(
                    identifier=format_uid(uid),
                    facility=wiegand.facility if wiegand else None,
                    card_number=wiegand.card_number if wiegand else None,
                    reader=str(reader),
                )
            if self._clock() >= deadline:
                return None
            self._sleep(self.poll_s)


def identifier_for(settings: TerminalSettings) -> CardIdentifier:
    if settings.rfid_mode == "pcsc":
        return PcscIdentifier(
            reader_hint=settings.reader_hint,
            timeout_s=settings.pcsc_timeout_ms / 1000,
        )
    first_byte_ms = settings.rfid_first_byte_timeout_ms
    return SerialBurstIdentifier(
        SerialPortTransport(
            settings.rfid_port,
            baudrate=settings.baudrate,
            timeout_s=settings.serial_timeout_ms / 1000,
        ),
        window_s=settings.rfid_window_ms / 1000,
        idle_s=settings.rfid_idle_ms / 1000,
        first_byte_timeout_s=None if first_byte_ms is None else first_byte_ms / 1000,
        max_capture_s=settings.rfid_max_capture_ms / 1000,
    )
