"""Exception hierarchy for sftpbridge."""

from __future__ import annotations

from typing import Optional


class SFTPBridgeError(Exception):
    """Base class for all errors raised by sftpbridge."""


class FileOperationError(SFTPBridgeError):
    """Exception raised for file operation errors."""


class EndpointConnectionError(SFTPBridgeError):
    """Raised when an endpoint session cannot be opened or used."""


class TransferCancelledException(SFTPBridgeError):
    """Exception raised when a transfer is cancelled."""


class TransferError(SFTPBridgeError):
    """A primitive operation failed while executing a paste.

    ``path`` names the offending file or directory and ``message`` carries
    the text reported by the endpoint session.
    """

    def __init__(self, path: str, message: str, operation: Optional[str] = None) -> None:
        self.path = path
        self.message = message
        self.operation = operation
        if operation:
            text = f"{operation} failed: {message}"
        else:
            text = message
        super().__init__(text)


class StaleSessionError(TransferError):
    """An endpoint id no longer resolves to a live session."""

    MESSAGE = "connection not established"

    def __init__(self, endpoint_id: str) -> None:
        self.endpoint_id = endpoint_id
        super().__init__(endpoint_id, f"{self.MESSAGE}: {endpoint_id}")


class UnsupportedOperationError(SFTPBridgeError):
    """The requested transfer topology is deliberately not implemented."""
