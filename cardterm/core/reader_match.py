"""Ranking of PC/SC readers by how likely they are to hold the staged card."""

from __future__ import annotations

from collections.abc import Sequence

from cardterm.transports.base import CardReader

CONTACTLESS_HINTS = ("picc", "contactless", "acr122", "omnikey", "cl")


def _name_contains(reader_name: str, token: str) -> bool:
    return token.lower() in reader_name.lower()


def match_score(reader_name: str, hint: str | None = None) -> int:
    if hint and _name_contains(reader_name, hint):
        return 2
    if any(_name_contains(reader_name, token) for token in CONTACTLESS_HINTS):
        return 1
    return 0


def rank_readers(readers: Sequence[CardReader], hint: str | None = None) -> list[CardReader]:
    # sorted() is stable, so enumeration order breaks ties
    return sorted(readers, key=lambda reader: match_score(str(reader), hint), reverse=True)
