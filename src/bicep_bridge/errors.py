"""Error taxonomy for the Bicep bridge.

Every error raised by this package derives from ``BicepError`` so callers can
catch the whole family in one place.
"""

from typing import Any


class BicepError(Exception):
    """Base class for all bridge errors."""


class BicepConnectionError(BicepError, ConnectionError):
    """The subprocess could not be started, or the channel to it broke."""


class MalformedVersionError(BicepError, ValueError):
    """A version string could not be parsed."""

    def __init__(self, version: str, reason: str | None = None):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Malformed version string {version!r}{detail}")
        self.version = version


class UnsupportedVersionError(BicepError):
    """The Bicep CLI reports a version below a required minimum."""

    def __init__(self, message: str, *, minimum: str, actual: str | None = None):
        super().__init__(message)
        self.minimum = minimum
        self.actual = actual


class DisposedError(BicepError):
    """An operation was attempted after (or during) teardown."""


class ProtocolError(BicepError):
    """The subprocess sent a malformed frame or an unexpected payload."""


class RemoteError(BicepError):
    """The Bicep CLI answered a request with a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        return f"{self.message} (code {self.code})"
