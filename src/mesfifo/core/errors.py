from __future__ import annotations

from enum import Enum
from typing import Any


class SchedulerErrorKind(str, Enum):
    OWNERSHIP_MISMATCH = "ownership_mismatch"
    INVALID_STATE = "invalid_state"
    PREDECESSOR_BLOCKED = "predecessor_blocked"
    SUBSTATION_UNAVAILABLE = "substation_unavailable"
    TRANSACTION_FAILURE = "transaction_failure"


class SchedulerError(Exception):
    """Business failure of a scheduler operation.

    `message` keeps the operator-facing text, `context` the structured details
    (ids, statuses, blocking predecessors) for callers that need more than a
    string.
    """

    kind: SchedulerErrorKind = SchedulerErrorKind.TRANSACTION_FAILURE

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "context": dict(self.context)}


class OwnershipMismatch(SchedulerError):
    kind = SchedulerErrorKind.OWNERSHIP_MISMATCH


class InvalidState(SchedulerError):
    kind = SchedulerErrorKind.INVALID_STATE


class PredecessorBlocked(SchedulerError):
    kind = SchedulerErrorKind.PREDECESSOR_BLOCKED


class SubstationUnavailable(SchedulerError):
    kind = SchedulerErrorKind.SUBSTATION_UNAVAILABLE


class TransactionFailure(SchedulerError):
    kind = SchedulerErrorKind.TRANSACTION_FAILURE


class MaterialNotFoundError(LookupError):
    def __init__(self, material_code: str) -> None:
        super().__init__(f"Material {material_code} not found")
        self.material_code = material_code
