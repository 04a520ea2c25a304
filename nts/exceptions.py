"""Exceptions raised while building a non-technical summary document."""

from __future__ import annotations

from typing import Optional


class SummaryError(Exception):
    """Base exception for summary rendering errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class MalformedNodeError(SummaryError):
    """A tree node has neither usable children nor text."""

    pass


class MergeConflictError(SummaryError):
    """A requested cell merge is out of range or overlaps another merge."""

    pass


class SerializationError(SummaryError):
    """The finished document could not be written to bytes."""

    pass
