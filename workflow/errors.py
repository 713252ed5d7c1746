"""
Structured, recoverable errors raised by workflow commands.

Every failure a caller can provoke is one of five kinds.  None of them is
fatal and none is retried; the presentation layer shows `kind` and
`message` to the user.
"""
from typing import Optional

from pydantic import ValidationError

NOT_FOUND          = "NotFound"
INVALID_STATE      = "InvalidState"
FORBIDDEN          = "Forbidden"
VALIDATION_FAILED  = "ValidationFailed"
INSUFFICIENT_STOCK = "InsufficientStock"


class WorkflowError(Exception):
    kind: str = "WorkflowError"

    def __init__(self, message: str, *, entity_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        payload = {"error": self.kind, "message": self.message}
        if self.entity_id:
            payload["entity_id"] = self.entity_id
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class NotFound(WorkflowError):
    """Referenced entity id does not exist."""
    kind = NOT_FOUND


class InvalidState(WorkflowError):
    """Operation not legal from the entity's current status (including replays)."""
    kind = INVALID_STATE


class Forbidden(WorkflowError):
    """Acting role may not trigger this operation."""
    kind = FORBIDDEN


class ValidationFailed(WorkflowError):
    """Missing or inconsistent input."""
    kind = VALIDATION_FAILED


class InsufficientStock(WorkflowError):
    """Stock on hand cannot cover the requested quantity."""
    kind = INSUFFICIENT_STOCK


def describe_validation_error(exc: ValidationError) -> str:
    """One line per pydantic error, e.g. 'items.0.quantity: Input should be ...'."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)
