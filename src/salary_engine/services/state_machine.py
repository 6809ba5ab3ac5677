"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum


class PayrollStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    error_kind = "InvalidTransition"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = getattr(from_status, "value", from_status)
        self.to_status = getattr(to_status, "value", to_status)
        self.reason = reason
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - DRAFT → PENDING_APPROVAL (submit)
    - DRAFT → PROCESSING (approve directly)
    - PENDING_APPROVAL → PROCESSING (approve)
    - PROCESSING → COMPLETED
    - PROCESSING → FAILED
    - DRAFT / PENDING_APPROVAL → FAILED (abandoned before processing)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollStatus.DRAFT: [
            PayrollStatus.PENDING_APPROVAL,
            PayrollStatus.PROCESSING,
            PayrollStatus.FAILED,
        ],
        PayrollStatus.PENDING_APPROVAL: [PayrollStatus.PROCESSING, PayrollStatus.FAILED],
        PayrollStatus.PROCESSING: [PayrollStatus.COMPLETED, PayrollStatus.FAILED],
        PayrollStatus.COMPLETED: [],  # Terminal state
        PayrollStatus.FAILED: [],  # Terminal state
    }

    # Statuses from which an approval starts processing
    APPROVABLE = {PayrollStatus.DRAFT, PayrollStatus.PENDING_APPROVAL}

    TERMINAL = {PayrollStatus.COMPLETED, PayrollStatus.FAILED}

    # Statuses that occupy an (organization, period) slot
    BLOCKS_PERIOD = {
        PayrollStatus.DRAFT,
        PayrollStatus.PENDING_APPROVAL,
        PayrollStatus.PROCESSING,
        PayrollStatus.COMPLETED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_approve(cls, status: str) -> bool:
        return status in cls.APPROVABLE

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def blocks_period(cls, status: str) -> bool:
        """Check if a run in this status prevents another run for its period."""
        return status in cls.BLOCKS_PERIOD

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def final_status(
        cls, total: int, failed: int, failure_threshold: float, aborted: bool = False
    ) -> PayrollStatus:
        """Decide the outcome of a processed run.

        The run fails when it was aborted or when the share of failed
        employees exceeds the threshold (0.0 means any failure).
        """
        if aborted:
            return PayrollStatus.FAILED
        if total == 0:
            return PayrollStatus.COMPLETED
        if failed / total > failure_threshold:
            return PayrollStatus.FAILED
        return PayrollStatus.COMPLETED
