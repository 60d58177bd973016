"""Core data models used across protocol, session, and HTTP layers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum


class CardStatus(IntEnum):
    EMPTY = 0
    PRE_EMPTY = 1
    HAS_CARD = 2


class SessionState(str, Enum):
    IDLE = "idle"
    STAGING = "staging"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RESOLVING = "resolving"


@dataclass(frozen=True)
class RfidReadResult:
    """Identity of the card currently staged in the dispenser."""

    identifier: str
    facility: int | None = None
    card_number: int | None = None
    reader: str | None = None
    raw: str | None = None

    @property
    def is_hex_uid(self) -> bool:
        return self.reader is not None


@dataclass(frozen=True)
class IssueResult:
    success: bool
    elapsed_ms: int
    attempts: int
    read: RfidReadResult | None = None
    operation_id: str | None = None
    timeout_s: float | None = None
    error: str | None = None
    fault: bool = False
    card_end: bool = False


@dataclass(frozen=True)
class ConfirmResult:
    action: str
    identifier: str | None
