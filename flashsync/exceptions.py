from typing import Optional


class FlashsyncError(Exception):
    """Base exception for flashsync errors."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception


class AnkiConnectError(FlashsyncError):
    """Raised when an AnkiConnect request fails or returns an error."""

    pass


class AnkiConnectionError(AnkiConnectError):
    """Raised when Anki cannot be reached at the start of a sync pass."""

    pass


class RemoteOperationError(AnkiConnectError):
    """Indicates that a single sub-request of a batch came back with an
    error."""

    pass


class ResponseShapeError(AnkiConnectError):
    """Indicates a batch response whose structure does not match the
    request envelope."""

    pass


class DocumentWriteError(FlashsyncError):
    """Raised when a rewritten document cannot be written back."""

    pass


class SettingsError(FlashsyncError):
    """Raised for a missing, unreadable or invalid settings file."""

    pass


class StateStoreError(FlashsyncError):
    """Base exception for sync-state persistence errors."""

    pass


class StateConnectionError(StateStoreError):
    """Raised for errors connecting to the state database."""

    pass


class SchemaInitializationError(StateStoreError):
    """Raised for errors during state database schema setup."""

    pass
