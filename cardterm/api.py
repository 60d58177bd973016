"""Stable public API for embedding the card terminal in other programs.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from functools import partial
from pathlib import Path

from cardterm.core.errors import (
    CardTerminalError,
    NoPendingOperationError,
    OperationMismatchError,
    OperationPendingError,
    ProtocolError,
    SettingsLoadError,
    SettingsValidationError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
    WorkflowError,
)
from cardterm.core.model import CardStatus, ConfirmResult, IssueResult, RfidReadResult, SessionState
from cardterm.core.protocol import Frame
from cardterm.core.rfid import Wiegand26, decode_wiegand26, parse_burst
from cardterm.core.settings import TerminalSettings, load_settings
from cardterm.core.session import TerminalSession

__all__ = [
    "CardTerminalError",
    "NoPendingOperationError",
    "OperationMismatchError",
    "OperationPendingError",
    "ProtocolError",
    "SettingsLoadError",
    "SettingsValidationError",
    "TransportConnectError",
    "TransportError",
    "TransportSendError",
    "TransportTimeoutError",
    "WorkflowError",
    "CardStatus",
    "ConfirmResult",
    "IssueResult",
    "RfidReadResult",
    "SessionState",
    "Frame",
    "Wiegand26",
    "decode_wiegand26",
    "parse_burst",
    "TerminalSettings",
    "load_settings",
    "TerminalSession",
    "open_terminal",
]


def open_terminal(config_dir: Path | None = None) -> TerminalSession:
    """Build a session whose settings are re-read from `config_dir` on every request."""
    return TerminalSession(settings_loader=partial(load_settings, config_dir))
