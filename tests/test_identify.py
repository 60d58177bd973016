from __future__ import annotations

import pytest

from cardterm.core.errors import ReaderServiceError, TransportConnectError
from cardterm.core.identify import PcscIdentifier, SerialBurstIdentifier, identifier_for
from cardterm.core.settings import TerminalSettings


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class ScheduledLink:
    """Serial double that releases each chunk once the fake clock reaches its time."""

    def __init__(self, clock: FakeClock, chunks: list[tuple[float, bytes]]) -> None:
        self.clock = clock
        self.chunks = list(chunks)
        self.opened = False
        self.closed = False

    def open(self) -> None:
        self.opened = True

    def write(self, data: bytes) -> None:
        raise AssertionError("RFID link is read-only")

    def read(self, size: int = 1) -> bytes:
        return self.read_available()[:size]

    def read_available(self) -> bytes:
        ready = [data for at, data in self.chunks if at <= self.clock.now]
        self.chunks = [(at, data) for at, data in self.chunks if at > self.clock.now]
        return b"".join(ready)

    def close(self) -> None:
        self.closed = True


def _burst(clock: FakeClock, chunks, *, window_s=1.0, idle_s=0.3, first_byte_timeout_s=5.0, max_capture_s=5.0):
    return SerialBurstIdentifier(
        ScheduledLink(clock, chunks),
        window_s=window_s,
        idle_s=idle_s,
        first_byte_timeout_s=first_byte_timeout_s,
        max_capture_s=max_capture_s,
        clock=clock,
        sleep=clock.sleep,
    )


def test_burst_spanning_pause_is_read_whole() -> None:
    clock = FakeClock()
    identifier = _burst(clock, [(0.2, b"HID[26bit] 0123"), (0.9, b" 045678\r\n")])

    result = identifier.identify()

    assert result is not None
    assert result.identifier == "045678"
    assert result.facility is None
    assert "HID[26bit]" in result.raw


def test_idle_gap_alone_ends_capture_when_window_elapsed() -> None:
    clock = FakeClock()
    identifier = _burst(clock, [(0.0, b"HID[26bit] 0123"), (0.9, b" 045678")], window_s=0.0)

    result = identifier.identify()

    assert result is not None
    assert result.identifier == "0123"
    assert clock.now < 0.9


def test_capture_is_bounded_by_window_and_idle() -> None:
    clock = FakeClock()
    identifier = _burst(clock, [(0.0, b"0001234")], window_s=1.0, idle_s=0.3)

    assert identifier.capture() == "0001234"
    assert 1.0 <= clock.now < 1.1


def test_silent_reader_times_out() -> None:
    clock = FakeClock()
    identifier = _burst(clock, [], first_byte_timeout_s=2.0)

    assert identifier.identify() is None
    assert clock.now >= 2.0


def test_no_card_burst_reports_card_end() -> None:
    clock = FakeClock()
    identifier = _burst(clock, [(0.0, b"No Card\r\n")])

    assert identifier.identify() is None
    assert identifier.card_end is True


def test_card_end_resets_on_next_read() -> None:
    clock = FakeClock()
    identifier = _burst(clock, [(0.0, b"No Card\r\n"), (5.0, b"HID[26bit] 0123 045678\r\n")])
    identifier.identify()

    result = identifier.identify()

    assert result is not None
    assert result.identifier == "045678"
    assert identifier.card_end is False


def test_unreadable_burst_is_not_card_end() -> None:
    clock = FakeClock()
    identifier = _burst(clock, [(0.0, b"HID[26bit]\r\n")])

    assert identifier.identify() is None
    assert identifier.card_end is False


class RepeatingLink(ScheduledLink):
    """Reader that re-sends its report every poll while the card sits in the field."""

    def read_available(self) -> bytes:
        return b"0001234\r\n"


def test_reader_that_never_goes_quiet_is_cut_off() -> None:
    clock = FakeClock()
    identifier = SerialBurstIdentifier(
        RepeatingLink(clock, []),
        window_s=1.2,
        idle_s=0.25,
        first_byte_timeout_s=7.0,
        max_capture_s=3.0,
        clock=clock,
        sleep=clock.sleep,
    )

    result = identifier.identify()

    assert result is not None
    assert result.identifier == "0001234"
    assert 3.0 <= clock.now < 3.1


class NoCardError(Exception):
    pass


class FakeConnection:
    def __init__(self, replies, *, present: bool = True) -> None:
        self.replies = list(replies)
        self.present = present
        self.sent: list[list[int]] = []
        self.disconnected = 0

    def connect(self) -> None:
        if not self.present:
            raise NoCardError("no card in field")

    def transmit(self, apdu):
        self.sent.append(apdu)
        return self.replies.pop(0)

    def disconnect(self) -> None:
        self.disconnected += 1


class FakeReader:
    def __init__(self, name: str, connection: FakeConnection) -> None:
        self.name = name
        self.connection = connection

    def __str__(self) -> str:
        return self.name

    def createConnection(self) -> FakeConnection:
        return self.connection


UID = [0xAB, 0x12, 0x34, 0x56]


def _pcsc(readers, *, hint=None, timeout_s=1.0):
    clock = FakeClock()
    identifier = PcscIdentifier(
        reader_hint=hint,
        timeout_s=timeout_s,
        readers=readers if callable(readers) else lambda: readers,
        no_card_errors=lambda: (NoCardError,),
        clock=clock,
        sleep=clock.sleep,
    )
    return identifier, clock


def test_pcsc_falls_back_to_second_get_uid_variant() -> None:
    connection = FakeConnection([([], 0x6A, 0x81), (UID, 0x90, 0x00)])
    identifier, _ = _pcsc([FakeReader("ACS ACR122U PICC Interface 0", connection)])

    result = identifier.identify()

    assert result is not None
    assert result.identifier == "AB123456"
    assert (result.facility, result.card_number) == (86, 9320)
    assert result.reader == "ACS ACR122U PICC Interface 0"
    assert connection.sent == [[0xFF, 0xCA, 0x00, 0x00, 0x00], [0xFF, 0xCA, 0x00, 0x00, 0x04]]
    assert connection.disconnected == 1


def test_pcsc_short_uid_has_no_wiegand_fields() -> None:
    connection = FakeConnection([([0x04, 0xA2, 0x3C], 0x90, 0x00)])
    identifier, _ = _pcsc([FakeReader("Contactless 0", connection)])

    result = identifier.identify()

    assert result is not None
    assert result.identifier == "04A23C"
    assert result.facility is None and result.card_number is None


def test_pcsc_hinted_reader_is_tried_first() -> None:
    first = FakeConnection([([0x01, 0x02, 0x03, 0x04], 0x90, 0x00)])
    hinted = FakeConnection([(UID, 0x90, 0x00)])
    identifier, _ = _pcsc(
        [FakeReader("Reader A", first), FakeReader("Kiosk Desk Reader", hinted)],
        hint="kiosk",
    )

    result = identifier.identify()

    assert result is not None
    assert result.reader == "Kiosk Desk Reader"
    assert first.sent == []


def test_pcsc_without_readers_yields_nothing() -> None:
    identifier, _ = _pcsc([])
    assert identifier.identify() is None


def test_pcsc_service_down_counts_as_no_readers() -> None:
    def stopped_service():
        raise ReaderServiceError("PC/SC service unavailable: Failed to establish context")

    identifier, _ = _pcsc(stopped_service)

    assert identifier.identify() is None
    assert identifier.card_end is False


def test_pcsc_missing_library_is_a_hard_failure() -> None:
    def not_installed():
        raise TransportConnectError("PC/SC identification requires 'pyscard'")

    identifier, _ = _pcsc(not_installed)

    with pytest.raises(TransportConnectError):
        identifier.identify()


def test_pcsc_unexpected_reader_error_propagates() -> None:
    class BrokenConnection(FakeConnection):
        def connect(self) -> None:
            raise TypeError("connect() missing protocol")

    identifier, _ = _pcsc([FakeReader("PICC 0", BrokenConnection([]))])

    with pytest.raises(TypeError):
        identifier.identify()


def test_pcsc_gives_up_after_timeout() -> None:
    identifier, clock = _pcsc([FakeReader("PICC 0", FakeConnection([], present=False))], timeout_s=0.5)

    assert identifier.identify() is None
    assert clock.now >= 0.5


def test_identifier_for_selects_strategy() -> None:
    assert isinstance(identifier_for(TerminalSettings()), SerialBurstIdentifier)

    pcsc = identifier_for(TerminalSettings(rfid_mode="pcsc", reader_hint="ACR", pcsc_timeout_ms=2500))
    assert isinstance(pcsc, PcscIdentifier)
    assert pcsc.reader_hint == "ACR"
    assert pcsc.timeout_s == 2.5

    serial = identifier_for(TerminalSettings(rfid_max_capture_ms=4000))
    assert serial.max_capture_s == 4.0
