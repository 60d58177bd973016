"""Serial transport implementation using pyserial."""

from __future__ import annotations

import serial

from cardterm.core.errors import (
    TransportConnectError,
    TransportSendError,
    TransportTimeoutError,
)


class SerialPortTransport:
    """8N1 serial link with bounded read and write timeouts."""

    def __init__(
        self,
        port: str,
        *,
        baudrate: int = 9600,
        timeout_s: float = 1.0,
        write_timeout_s: float = 1.0,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.timeout_s = timeout_s
        self.write_timeout_s = write_timeout_s
        self._serial: serial.Serial | None = None

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout_s,
                write_timeout=self.write_timeout_s,
            )
        except (serial.SerialException, ValueError) as exc:
            raise TransportConnectError(f"Could not open serial port {self.port}: {exc}") from exc

    def _require_open(self) -> serial.Serial:
        if self._serial is None or not self._serial.is_open:
            raise TransportConnectError(f"Serial port {self.port} is not open")
        return self._serial

    def write(self, data: bytes) -> None:
        port = self._require_open()
        try:
            port.write(data)
            port.flush()
        except serial.SerialTimeoutException as exc:
            raise TransportTimeoutError(f"Write to {self.port} timed out") from exc
        except (serial.SerialException, OSError) as exc:
            raise TransportSendError(f"Write to {self.port} failed: {exc}") from exc

    def read(self, size: int = 1) -> bytes:
        port = self._require_open()
        try:
            return port.read(size)
        except (serial.SerialException, OSError) as exc:
            raise TransportSendError(f"Read from {self.port} failed: {exc}") from exc

    def read_available(self) -> bytes:
        port = self._require_open()
        try:
            # posix in_waiting is a bare ioctl: an unplugged adapter raises OSError
            waiting = port.in_waiting
            return port.read(waiting) if waiting else b""
        except (serial.SerialException, OSError) as exc:
            raise TransportSendError(f"Read from {self.port} failed: {exc}") from exc

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            if self._serial.is_open:
                self._serial.close()
        finally:
            self._serial = None
