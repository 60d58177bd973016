"""PC/SC reader access via pyscard."""

from __future__ import annotations

from cardterm.core.errors import ReaderServiceError, TransportConnectError
from cardterm.transports.base import CardReader

_MISSING_PYSCARD = "PC/SC identification requires 'pyscard'. Install the 'pcsc' extra and retry."


def list_readers() -> list[CardReader]:
    """Return readers attached to the system card service.

    pyscard establishes the PC/SC context on enumeration, so a stopped service
    surfaces here as `ReaderServiceError` rather than at import time.
    """
    try:
        from smartcard.Exceptions import SmartcardException  # type: ignore
        from smartcard.pcsc.PCSCExceptions import BaseSCardException  # type: ignore
        from smartcard.System import readers  # type: ignore
    except ImportError as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(_MISSING_PYSCARD) from exc

    try:
        return list(readers())
    except (SmartcardException, BaseSCardException) as exc:
        raise ReaderServiceError(f"PC/SC service unavailable: {exc}") from exc


def connection_errors() -> tuple[type[Exception], ...]:
    """Exceptions pyscard raises when no card answers on a reader."""
    try:
        from smartcard.Exceptions import CardConnectionException, NoCardException  # type: ignore
    except ImportError as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(_MISSING_PYSCARD) from exc
    return (CardConnectionException, NoCardException)
