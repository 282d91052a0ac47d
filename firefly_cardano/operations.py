"""Operation records tracked by the connector."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

_SUCCEEDED = "Succeeded"
_PENDING = "Pending"
_FAILED = "Failed"
_KINDS = frozenset({_SUCCEEDED, _PENDING, _FAILED})


@dataclass(frozen=True)
class OperationStatus:
    """The state of an operation; only a failed status carries a message."""

    kind: str
    error_message: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in _KINDS:
            raise ValueError(f"unrecognized status {self.kind}")
        if (self.kind == _FAILED) != (self.error_message is not None):
            raise ValueError("only a failed status carries an error message")

    @classmethod
    def succeeded(cls) -> "OperationStatus":
        return cls(_SUCCEEDED)

    @classmethod
    def pending(cls) -> "OperationStatus":
        return cls(_PENDING)

    @classmethod
    def failed(cls, message: str) -> "OperationStatus":
        return cls(_FAILED, str(message))

    def name(self) -> str:
        """The status name as stored and reported."""
        return self.kind


@dataclass
class Operation:
    """A deploy or invoke request and what became of it."""

    id: str
    status: OperationStatus
    tx_id: Optional[str] = None
    contract_address: Optional[str] = None


@dataclass(frozen=True)
class OperationUpdate:
    """A snapshot of an operation, identified by a sortable update id."""

    update_id: str
    operation: Operation