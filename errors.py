"""Error taxonomy shared by the order pipeline, services and routes.

Every error carries a ``kind`` (stable identifier returned to callers) and a
human-readable ``message``.  Several validation problems can be raised at once
through :class:`ErrorList`, which keeps them ordered and distinct.
"""

from __future__ import annotations

from typing import Iterable


class PipelineError(Exception):
    """Base class for all domain errors."""

    kind = "PipelineError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}

    def __eq__(self, other):
        if not isinstance(other, PipelineError):
            return NotImplemented
        return (self.kind, self.message) == (other.kind, other.message)

    def __hash__(self):
        return hash((self.kind, self.message))


class NotFound(PipelineError):
    """A referenced collective, tier, member or host does not exist."""

    kind = "NotFound"
    status_code = 404


class Unauthorized(PipelineError):
    """The actor lacks the relationship to the collective the action needs."""

    kind = "Unauthorized"
    status_code = 401


class ValidationFailed(PipelineError):
    kind = "ValidationFailed"
    status_code = 400


class CapacityExceeded(PipelineError):
    kind = "CapacityExceeded"
    status_code = 409


class PaymentError(PipelineError):
    """The payment gateway declined the charge or could not be reached."""

    kind = "PaymentError"
    status_code = 402


class ErrorList(Exception):
    """Several errors detected in one pass, before any mutation."""

    def __init__(self, errors: Iterable[PipelineError]):
        distinct: list[PipelineError] = []
        for error in errors:
            if error not in distinct:
                distinct.append(error)
        super().__init__("; ".join(e.message for e in distinct))
        self.errors = distinct

    @property
    def status_code(self) -> int:
        return self.errors[0].status_code if self.errors else 400

    def to_dict(self) -> dict:
        return {"errors": [e.to_dict() for e in self.errors]}


def raise_if_any(errors: list[PipelineError]) -> None:
    """Raise *errors* as an :class:`ErrorList` when the list is non-empty."""
    if errors:
        raise ErrorList(errors)
