"""Decoding of RFID reader output into card identifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass

NO_CARD_SENTINEL = "no card"

_LINE_BREAK_RE = re.compile(r"[\r\n]+")
_TAG_RE = re.compile(r"\[[^\]]*\]")
_DIGITS_RE = re.compile(r"\d+")

_WIEGAND_MASK = (1 << 26) - 1


@dataclass(frozen=True)
class Wiegand26:
    facility: int
    card_number: int


def normalize_burst(text: str) -> str:
    return _LINE_BREAK_RE.sub(" ", text).strip()


def is_card_end(text: str) -> bool:
    """True when the reader reports that no card reached its field."""
    return NO_CARD_SENTINEL in normalize_burst(text).lower()


def parse_burst(text: str) -> str | None:
    """Extract the card number from a serial reader burst.

    Readers prefix their own type tag and preamble digits, so the last digit
    run after dropping bracketed tags is the card value.
    """
    normalized = normalize_burst(text)
    if not normalized or is_card_end(normalized):
        return None
    runs = _DIGITS_RE.findall(_TAG_RE.sub(" ", normalized))
    return runs[-1] if runs else None


def format_uid(uid: bytes) -> str:
    return uid.hex().upper()


def decode_wiegand26(uid: bytes) -> Wiegand26 | None:
    """Decode an HID 26-bit credential carried in the first four UID bytes."""
    if len(uid) < 4:
        return None
    bits = (int.from_bytes(uid[:4], "big") >> 7) & _WIEGAND_MASK
    return Wiegand26(facility=(bits >> 16) & 0xFF, card_number=bits & 0xFFFF)
