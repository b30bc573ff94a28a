"""bloomgrid.errors

Exception hierarchy for the pipeline.

Only configuration problems and missing input files stop a run (SystemExit,
raised where they are detected). The conditions below are raised by the
low-level helpers and caught by the stage loaders, which drop the offending
row and count it in Diagnostics.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BloomgridError(Exception):
    """Base class for all bloomgrid errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ParseError(BloomgridError, ValueError):
    """Malformed composite key, month name, or date."""


class OutOfDomainError(BloomgridError, ValueError):
    """Coordinate falls outside the grid extent."""


class MissingJoinKeyError(BloomgridError, KeyError):
    """A join produced rows it should not have (duplicate or missing keys)."""

    # KeyError quotes its argument in str(); keep the plain message.
    def __str__(self) -> str:
        return BloomgridError.__str__(self)


class ExternalFetchFailure(BloomgridError, RuntimeError):
    """A species range boundary could not be obtained from the provider."""
