"""Typed failures raised by stores and services.

Each error carries a ``kind`` string that the rollback engine copies into
``RollbackResult.error_kind`` and the HTTP layer maps to a status code.
"""

from typing import Literal

ErrorKind = Literal[
    "not_found",
    "precondition",
    "invalid_change_type",
    "storage",
    "unexpected",
]


class EdgeLedgerError(Exception):
    """Base class for all known EdgeLedger failures."""

    kind: ErrorKind = "unexpected"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(EdgeLedgerError):
    """A history entry or connection does not exist."""

    kind: ErrorKind = "not_found"


class PreconditionError(EdgeLedgerError):
    """Current state does not have the shape the requested change needs."""

    kind: ErrorKind = "precondition"


class InvalidChangeTypeError(EdgeLedgerError):
    """A ledger entry carries a change type this engine cannot invert."""

    kind: ErrorKind = "invalid_change_type"


class StorageError(EdgeLedgerError):
    """The storage backend failed to execute a query."""

    kind: ErrorKind = "storage"
