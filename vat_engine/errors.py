"""
Error taxonomy for the VAT return engine.

Every failure a command can produce is one of these types. They are raised
to the caller as recoverable errors; nothing in the engine terminates the
process.
"""

from __future__ import annotations

from typing import Optional


class VatEngineError(Exception):
    """Base error for all engine operations."""


class ValidationError(VatEngineError):
    """Input failed validation (bad period order, negative amounts, ...)."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class OverlapError(VatEngineError):
    """Period collides with an already filed return."""

    def __init__(self, conflicting_id: str, period: str):
        self.conflicting_id = conflicting_id
        self.period = period
        super().__init__(
            f"Period overlaps filed return '{conflicting_id}' ({period})"
        )


class NotFoundError(VatEngineError):
    """Unknown return, transaction or vendor id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class InvalidTransitionError(VatEngineError):
    """Illegal lifecycle move, e.g. editing a filed return."""

    def __init__(self, return_id: str, status: str, action: str):
        self.return_id = return_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} return '{return_id}' in status {status}"
        )


class UnsupportedFormatError(VatEngineError):
    """Requested export format is not implemented."""

    def __init__(self, fmt: str, supported: Optional[list[str]] = None):
        self.format = fmt
        self.supported = list(supported or [])
        message = f"Unsupported export format: {fmt!r}"
        if self.supported:
            message += f" (supported: {', '.join(self.supported)})"
        super().__init__(message)


class ConflictError(VatEngineError):
    """Write was based on a stale revision of the return."""

    def __init__(self, return_id: str, expected: int, actual: int):
        self.return_id = return_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Return '{return_id}' is at revision {actual}, "
            f"expected {expected}"
        )


class DataSourceError(VatEngineError):
    """Loading or saving the backing collections failed."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Data source {source}: {reason}")
