"""Terminal session: the issue -> confirm -> complete lifecycle.

A `TerminalSession` owns the device lock and the single pending operation.
`issue_card` stages a card and identifies it; the card then stays in the slot
holding the lock until `confirm` (or the confirmation timeout) dispenses or
retracts it. Every exit path releases the lock exactly once through
`DeviceLease.release`.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from contextlib import ExitStack, closing
from typing import Any

from cardterm.core.errors import (
    CardTerminalError,
    NoPendingOperationError,
    OperationMismatchError,
    OperationPendingError,
    TransportError,
)
from cardterm.core.identify import CardIdentifier, identifier_for
from cardterm.core.model import CardStatus, ConfirmResult, IssueResult, RfidReadResult, SessionState
from cardterm.core.protocol import DISPENSE, RETRACT, CommandChannel
from cardterm.core.settings import TerminalSettings, load_settings
from cardterm.transports.serial_port import SerialPortTransport

LOGGER = logging.getLogger(__name__)


def serial_channel(settings: TerminalSettings) -> CommandChannel:
    timeout_s = settings.serial_timeout_ms / 1000
    link = SerialPortTransport(
        settings.crt_port,
        baudrate=settings.baudrate,
        timeout_s=timeout_s,
        write_timeout_s=timeout_s,
    )
    return CommandChannel(link)


def _spawn_daemon(target: Callable[..., None], *args: Any) -> None:
    threading.Thread(target=target, args=args, daemon=True, name="cardterm-retract").start()


class DeviceLease:
    """Exclusive use of the dispenser for one lifecycle."""

    def __init__(self, lock: threading.Lock, *, on_release: Callable[[], None]) -> None:
        self._lock = lock
        self._on_release = on_release
        self._guard = threading.Lock()
        self._released = False
        self.settings: TerminalSettings | None = None
        self.channel: CommandChannel | None = None
        self.identifier: CardIdentifier | None = None

    @property
    def released(self) -> bool:
        return self._released

    def attach(
        self,
        settings: TerminalSettings,
        channel: CommandChannel,
        identifier: CardIdentifier,
    ) -> None:
        self.settings = settings
        self.channel = channel
        self.identifier = identifier
        channel.open()
        identifier.open()

    def retract(self) -> None:
        """Best-effort return of the card to the hopper."""
        if self.channel is None:
            return
        try:
            self.channel.execute_with_enq(RETRACT)
        except (TransportError, OSError) as exc:
            LOGGER.error("Retract failed: %s", exc)

    def release(self) -> None:
        with self._guard:
            if self._released:
                return
            self._released = True
        try:
            for device in (self.identifier, self.channel):
                if device is None:
                    continue
                try:
                    device.close()
                except (TransportError, OSError) as exc:
                    LOGGER.warning("Closing %s failed: %s", type(device).__name__, exc)
        finally:
            self._on_release()
            self._lock.release()


class PendingOperation:
    """A staged and identified card waiting for an allow/deny decision."""

    def __init__(
        self,
        read: RfidReadResult,
        lease: DeviceLease,
        *,
        timeout_s: float,
        operation_id: str | None = None,
        created_at: float | None = None,
    ) -> None:
        self.operation_id = operation_id or uuid.uuid4().hex
        self.read = read
        self.lease = lease
        self.timeout_s = timeout_s
        self.created_at = time.time() if created_at is None else created_at
        self._claim_lock = threading.Lock()
        self._completed = False
        self._timer: Any = None

    @property
    def completed(self) -> bool:
        return self._completed

    def matches(self, operation_id: str) -> bool:
        return operation_id.lower() == self.operation_id.lower()

    def arm(self, timer: Any) -> None:
        self._timer = timer
        timer.daemon = True
        timer.start()

    def cancel_timeout(self) -> None:
        if self._timer is not None:
            self._timer.cancel()

    def claim(self) -> bool:
        """Mark the operation completed; only the first caller gets True."""
        with self._claim_lock:
            if self._completed:
                return False
            self._completed = True
            return True


class TerminalSession:
    def __init__(
        self,
        *,
        settings_loader: Callable[[], TerminalSettings] = load_settings,
        channel_factory: Callable[[TerminalSettings], CommandChannel] = serial_channel,
        identifier_factory: Callable[[TerminalSettings], CardIdentifier] = identifier_for,
        timer_factory: Callable[..., Any] = threading.Timer,
        spawn: Callable[..., None] = _spawn_daemon,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings_loader = settings_loader
        self._channel_factory = channel_factory
        self._identifier_factory = identifier_factory
        self._timer_factory = timer_factory
        self._spawn = spawn
        self._sleep = sleep
        self._clock = clock
        self._device_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._pending: PendingOperation | None = None
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pending(self) -> PendingOperation | None:
        return self._pending

    @property
    def device_busy(self) -> bool:
        return self._device_lock.locked()

    def _set_state(self, state: SessionState) -> None:
        with self._state_lock:
            self._state = state

    def _reject_if_pending(self) -> None:
        with self._state_lock:
            pending = self._pending
            if pending is not None and not pending.completed:
                raise OperationPendingError(pending.operation_id)

    def _acquire(self) -> DeviceLease:
        self._device_lock.acquire()
        self._set_state(SessionState.STAGING)
        return DeviceLease(self._device_lock, on_release=lambda: self._set_state(SessionState.IDLE))

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    def issue_card(self) -> IssueResult:
        started = self._clock()
        self._reject_if_pending()
        lease = self._acquire()
        attempts = 0
        card_end = False
        with ExitStack() as cleanup:
            cleanup.callback(lease.release)
            try:
                settings = self._settings_loader()
                lease.attach(
                    settings,
                    self._channel_factory(settings),
                    self._identifier_factory(settings),
                )
                read: RfidReadResult | None = None
                while read is None and not card_end and attempts < settings.stage_attempts:
                    attempts += 1
                    LOGGER.info("Staging card (attempt %d/%d)", attempts, settings.stage_attempts)
                    lease.channel.execute_position_command(settings.read_position)
                    read = lease.identifier.identify()
                    card_end = lease.identifier.card_end
                    if read is None:
                        LOGGER.info("Card not identified, returning it")
                        lease.channel.execute_with_enq(RETRACT)
            except (CardTerminalError, OSError) as exc:
                LOGGER.error("Issue failed: %s", exc)
                lease.retract()
                return IssueResult(
                    success=False,
                    elapsed_ms=self._elapsed_ms(started),
                    attempts=attempts,
                    error=str(exc),
                    fault=True,
                    card_end=card_end,
                )
            except Exception:
                LOGGER.exception("Issue failed unexpectedly")
                lease.retract()
                raise

            if read is None:
                return IssueResult(
                    success=False,
                    elapsed_ms=self._elapsed_ms(started),
                    attempts=attempts,
                    error="Card hopper empty" if card_end else "UID not received",
                    card_end=card_end,
                )

            operation = self._park(read, lease, settings)
            cleanup.pop_all()

        return IssueResult(
            success=True,
            elapsed_ms=self._elapsed_ms(started),
            attempts=attempts,
            read=read,
            operation_id=operation.operation_id,
            timeout_s=operation.timeout_s,
        )

    def _park(
        self,
        read: RfidReadResult,
        lease: DeviceLease,
        settings: TerminalSettings,
    ) -> PendingOperation:
        operation = PendingOperation(read, lease, timeout_s=settings.confirm_timeout_sec)
        with self._state_lock:
            self._pending = operation
            self._state = SessionState.AWAITING_CONFIRMATION
        operation.arm(self._timer_factory(operation.timeout_s, self._expire, args=(operation,)))
        LOGGER.info(
            "Card %s staged as operation %s, awaiting confirmation for %ss",
            read.identifier,
            operation.operation_id,
            operation.timeout_s,
        )
        return operation

    def _claim(self, operation_id: str) -> PendingOperation:
        with self._state_lock:
            operation = self._pending
            if operation is None or operation.completed:
                raise NoPendingOperationError("No pending operation")
            if not operation.matches(operation_id):
                raise OperationMismatchError(operation_id, operation.operation_id)
            if not operation.claim():
                raise NoPendingOperationError("No pending operation")
            self._pending = None
            self._state = SessionState.RESOLVING
        operation.cancel_timeout()
        return operation

    def confirm(self, operation_id: str, allow: bool) -> ConfirmResult:
        operation = self._claim(operation_id)
        lease = operation.lease
        identifier = operation.read.identifier
        with ExitStack() as cleanup:
            cleanup.callback(lease.release)
            try:
                if not allow:
                    LOGGER.info("Operation %s denied, returning card %s", operation.operation_id, identifier)
                    lease.channel.execute_with_enq(RETRACT)
                    return ConfirmResult(action="returned", identifier=identifier)
                LOGGER.info("Operation %s allowed, dispensing card %s", operation.operation_id, identifier)
                lease.channel.execute_with_enq(DISPENSE)
            except Exception as exc:
                LOGGER.error("Resolving operation %s failed: %s", operation.operation_id, exc)
                lease.retract()
                raise
            cleanup.pop_all()

        self._spawn(self._retract_after_dispense, operation)
        return ConfirmResult(action="dispensed", identifier=identifier)

    def _retract_after_dispense(self, operation: PendingOperation) -> None:
        lease = operation.lease
        try:
            self._sleep(lease.settings.dispense_retract_delay_sec)
            lease.channel.execute_with_enq(RETRACT)
        except (TransportError, OSError):
            LOGGER.exception("Retract after dispensing operation %s failed", operation.operation_id)
        finally:
            lease.release()
        LOGGER.info("Operation %s complete", operation.operation_id)

    def _expire(self, operation: PendingOperation) -> None:
        with self._state_lock:
            if not operation.claim():
                LOGGER.debug("Operation %s already resolved", operation.operation_id)
                return
            if self._pending is operation:
                self._pending = None
            self._state = SessionState.RESOLVING
        LOGGER.warning(
            "Operation %s not confirmed within %ss, returning card",
            operation.operation_id,
            operation.timeout_s,
        )
        lease = operation.lease
        try:
            lease.channel.execute_with_enq(RETRACT)
        except (TransportError, OSError):
            LOGGER.exception("Retract after timeout of operation %s failed", operation.operation_id)
        finally:
            lease.release()

    def card_status(self) -> CardStatus:
        with self._device_lock:
            settings = self._settings_loader()
            channel = self._channel_factory(settings)
            with closing(channel):
                channel.open()
                status = channel.query_status()
        LOGGER.info("Card status: %s", status.name)
        return status
