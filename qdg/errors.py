"""Error types raised by the QDG persistence and validation layers."""

from __future__ import annotations

from typing import Iterable, List, Optional


class QdgError(Exception):
    """Base class for all QDG errors."""


class ValidationError(QdgError, ValueError):
    """Raised for malformed input, out-of-range settings or incomplete task analyses."""

    def __init__(self, message: str, errors: Optional[Iterable[str]] = None):
        self.errors: List[str] = list(errors) if errors else [message]
        super().__init__(message)


class StorageError(QdgError):
    """Raised when a directory, write or verification step fails."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
