"""Payroll item state machine with transition validation."""

from __future__ import annotations

from payroll_calc.calculators.errors import PayrollCalculationError
from payroll_calc.calculators.types import PayrollItemStatus


class InvalidTransitionError(PayrollCalculationError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PayrollItemStateMachine:
    """State machine for employee payroll item status transitions.

    Allowed transitions:
    - pending_approval → active (approve)
    - pending_approval → cancelled
    - active → suspended
    - active → cancelled
    - active → completed (lifetime garnishment total met)
    - suspended → active (resume)
    - suspended → cancelled
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollItemStatus.PENDING_APPROVAL: [PayrollItemStatus.ACTIVE, PayrollItemStatus.CANCELLED],
        PayrollItemStatus.ACTIVE: [
            PayrollItemStatus.SUSPENDED,
            PayrollItemStatus.CANCELLED,
            PayrollItemStatus.COMPLETED,
        ],
        PayrollItemStatus.SUSPENDED: [PayrollItemStatus.ACTIVE, PayrollItemStatus.CANCELLED],
        PayrollItemStatus.CANCELLED: [],  # Terminal state
        PayrollItemStatus.COMPLETED: [],  # Terminal state
    }

    # Statuses whose items take part in payroll calculation
    CALCULATION_ALLOWED = {PayrollItemStatus.ACTIVE}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            reason = "terminal status" if cls.is_terminal(from_status) else None
            raise InvalidTransitionError(_value(from_status), _value(to_status), reason)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.VALID_TRANSITIONS and not cls.VALID_TRANSITIONS[status]

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        """Check if an item in this status is included in payroll."""
        return status in cls.CALCULATION_ALLOWED

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])


def _value(status: str) -> str:
    return status.value if isinstance(status, PayrollItemStatus) else status
