"""Error types raised by the scanning pipeline.

Every error here is fatal to a run: the pipeline stops at the first one and the
CLI reports it with a usage reminder.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class IndelScanError(RuntimeError):
    """Base class for all indelscan failures."""


class InputOpenError(IndelScanError):
    """Raised when the alignment file cannot be opened or read."""

    def __init__(self, message: str, *, path: str | Path) -> None:
        super().__init__(message)
        self.path = str(path)


class DecodeError(IndelScanError):
    """Raised when an alignment record is malformed."""

    def __init__(self, message: str, *, read_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.read_id = read_id


class UnmappedReadError(IndelScanError):
    """Raised for a record with no valid reference placement."""

    def __init__(self, read_id: str) -> None:
        super().__init__(f"unmapped read: {read_id}")
        self.read_id = read_id


class OutputWriteError(IndelScanError):
    """Raised when a report file cannot be created or written."""

    def __init__(self, message: str, *, path: str | Path) -> None:
        super().__init__(message)
        self.path = str(path)
