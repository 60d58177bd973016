"""Domain-specific errors for cardterm."""


class CardTerminalError(Exception):
    """Base error for cardterm."""


class SettingsLoadError(CardTerminalError):
    """Raised when a configuration file cannot be read."""


class SettingsValidationError(CardTerminalError):
    """Raised when configuration does not conform to schema or semantics."""


class TransportError(CardTerminalError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when a serial port or card reader cannot be opened."""


class ReaderServiceError(TransportConnectError):
    """Raised when the system card service cannot enumerate readers."""


class TransportSendError(TransportError):
    """Raised when writing to or reading from a device fails."""


class TransportTimeoutError(TransportError):
    """Raised when a bounded device write times out."""


class ProtocolError(CardTerminalError):
    """Raised when the dispenser answers with a missing ACK or malformed frame."""


class WorkflowError(CardTerminalError):
    """Base error for issue/confirm requests that do not fit the current state."""


class OperationPendingError(WorkflowError):
    """Raised when a card is already staged and awaiting confirmation."""

    def __init__(self, operation_id: str) -> None:
        super().__init__(f"Operation {operation_id} is already pending")
        self.operation_id = operation_id


class NoPendingOperationError(WorkflowError):
    """Raised when a confirm request arrives with nothing left to resolve."""


class OperationMismatchError(WorkflowError):
    """Raised when a confirm request names a different operation."""

    def __init__(self, requested_id: str, operation_id: str) -> None:
        super().__init__(
            f"Operation id '{requested_id}' does not match pending operation"
        )
        self.requested_id = requested_id
        self.operation_id = operation_id
