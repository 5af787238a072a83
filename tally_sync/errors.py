"""
Exception hierarchy for Tally Sync.

Every error raised by the package derives from TallySyncError so the worker
can catch failures of a single table without swallowing programming errors.
"""
from __future__ import annotations
from typing import Optional


class TallySyncError(Exception):
    """Base class for all Tally Sync errors."""
    pass


class TallyConnectionError(TallySyncError):
    """Raised when connection to Tally fails."""
    pass


class ConnectionTimeout(TallyConnectionError):
    """Raised when Tally does not answer within the request timeout."""
    pass


class ConnectionRefused(TallyConnectionError):
    """Raised when the Tally listener cannot be reached at all."""
    pass


class ProtocolError(TallySyncError):
    """Raised when a response is not well-formed XML or has an unexpected shape."""
    pass


class TallyResponseError(ProtocolError):
    """Raised when Tally returns an error envelope (LINEERROR, STATUS 0)."""
    pass


class UnknownTableError(TallySyncError, ValueError):
    """Raised when a table name is not in the catalog."""
    pass


class CryptoError(TallySyncError):
    pass


class KeyFormatError(CryptoError):
    """Raised when the public key is neither PEM nor base64 DER."""
    pass


class EncryptionError(CryptoError):
    """Raised when encryption is attempted without a key or with oversized input."""
    pass


class AuthExpired(TallySyncError):
    """Raised when a stored token has passed its expiry."""
    pass


class HttpError(TallySyncError):
    """Raised when the backend answers with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
