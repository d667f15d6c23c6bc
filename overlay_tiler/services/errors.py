from __future__ import annotations


class TilerError(Exception):
    """Base class for failures raised while resolving an overlay tile."""


class InvalidGeometryError(TilerError, ValueError):
    """Raised when an overlay or tile request cannot be projected onto the tile grid."""


class SourceUnavailableError(TilerError):
    """Raised when the image store cannot supply the original overlay image."""

    def __init__(self, message: str, *, locator: object | None = None) -> None:
        super().__init__(message)
        self.locator = locator


class SourceNotFoundError(SourceUnavailableError):
    """Raised when the requested source image does not exist."""


class SourceAccessDeniedError(SourceUnavailableError):
    """Raised when the image store refuses access to the source image."""


class SourceTransientError(TilerError):
    """Raised for network or storage failures that a caller may retry."""


class DecodeFailureError(TilerError):
    """Raised when the fetched bytes cannot be decoded as an image."""
