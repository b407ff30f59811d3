"""Error kinds raised by the estimation core.

All of them are fatal and propagate to the caller; the CLI turns them into
exit code 2.
"""

from __future__ import annotations

from typing import Optional


class AfmixError(Exception):
    """Base class for afmix errors."""


class MalformedPileup(AfmixError, ValueError):
    """Raised when a pileup record or one of its read probability rows is invalid."""

    def __init__(self, message: str, *, locus: Optional[str] = None, read_index: Optional[int] = None) -> None:
        if locus is not None:
            message = f"{message} (locus {locus})"
        super().__init__(message)
        self.locus = locus
        self.read_index = read_index


class NonMonotonicLocus(AfmixError, RuntimeError):
    """Raised when the estimate stream is not in increasing genomic order."""

    def __init__(self, message: str, *, previous: Optional[str] = None, current: Optional[str] = None) -> None:
        super().__init__(message)
        self.previous = previous
        self.current = current


class InvalidConfiguration(AfmixError, ValueError):
    """Raised when caller configuration values are out of range."""
