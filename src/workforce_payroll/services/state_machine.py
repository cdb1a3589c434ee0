"""Payroll run state machine."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from workforce_payroll.exceptions import StateConflictError

if TYPE_CHECKING:
    from workforce_payroll.models import PayrollRun


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    FINALIZED = "finalized"


class InvalidTransitionError(StateConflictError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, current_state=from_status)


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft → finalized

    finalized is terminal; reversal is an administrative action outside
    the engine.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT: [PayrollRunStatus.FINALIZED],
        PayrollRunStatus.FINALIZED: [],
    }

    # Statuses where items may be recalculated or edited
    ITEMS_MUTABLE = {PayrollRunStatus.DRAFT}

    # Statuses where the run may be deleted
    DELETABLE = {PayrollRunStatus.DRAFT}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_modify_items(cls, status: str) -> bool:
        return status in cls.ITEMS_MUTABLE

    @classmethod
    def can_delete(cls, status: str) -> bool:
        return status in cls.DELETABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def require_items_mutable(cls, run: PayrollRun, action: str) -> None:
        """Raise StateConflictError if the run's items are locked."""
        if not cls.can_modify_items(run.status):
            raise StateConflictError(
                f"Cannot {action}: payroll run {run.payroll_run_id} is {run.status}",
                current_state=run.status,
            )

    @classmethod
    def validate_run_for_finalize(cls, run: PayrollRun, review_clear_required: bool) -> list[str]:
        """Return blocking problems for finalizing the run (empty if none)."""
        errors: list[str] = []
        if not cls.can_transition(run.status, PayrollRunStatus.FINALIZED):
            errors.append(f"Cannot transition from '{run.status}' to 'finalized'")
            return errors
        if not run.items:
            errors.append("Payroll run has no items")
        if review_clear_required:
            flagged = [i for i in run.items if i.review_flags]
            if flagged:
                errors.append(f"{len(flagged)} item(s) still carry review flags")
        return errors
