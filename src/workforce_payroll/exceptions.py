"""Error taxonomy for the payroll engine.

Validation and state-conflict errors are surfaced to callers. Configuration
and profile gaps degrade to defaults and surface as review flags instead of
being raised out of a computation.
"""

from __future__ import annotations

from typing import Any


class PayrollError(Exception):
    """Base exception for payroll engine errors."""

    code = "payroll_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PayrollError):
    """Malformed or missing scope/period input, rejected before computation."""

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class NotFoundError(PayrollError):
    """Referenced run, item, employee or claim does not exist."""

    code = "not_found"

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} {identifier} not found",
            {"resource": resource, "identifier": str(identifier)},
        )
        self.resource = resource
        self.identifier = identifier


class ConfigurationMissingError(PayrollError):
    """No tenant policy or statutory table found.

    Never propagated out of the policy resolver: it is caught there, logged,
    and replaced with documented defaults.
    """

    code = "configuration_missing"

    def __init__(self, scope: str, message: str | None = None):
        super().__init__(message or f"No payroll configuration found for {scope}", {"scope": scope})
        self.scope = scope


class ExternalDataUnavailableError(PayrollError):
    """An external lookup (e.g. delivery counts) failed or timed out."""

    code = "external_data_unavailable"

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}", {"source": source})
        self.source = source


class StateConflictError(PayrollError):
    """Operation not permitted in the current run, item or claim state."""

    code = "state_conflict"

    def __init__(self, message: str, current_state: str | None = None):
        super().__init__(message, {"current_state": current_state} if current_state else None)
        self.current_state = current_state


class ArithmeticInvariantViolation(PayrollError):
    """A computed item broke a money invariant. Indicates an engine defect."""

    code = "arithmetic_invariant_violation"

    def __init__(self, invariant: str, expected: Any, actual: Any, item_ref: Any = None):
        super().__init__(
            f"Invariant {invariant} violated for item {item_ref}: "
            f"expected {expected}, got {actual}",
            {
                "invariant": invariant,
                "expected": str(expected),
                "actual": str(actual),
                "item": str(item_ref) if item_ref is not None else None,
            },
        )
        self.invariant = invariant
        self.expected = expected
        self.actual = actual


class BasicPayUnresolvedError(PayrollError):
    """No basic pay could be resolved for an employee in a period."""

    code = "basic_pay_unresolved"

    def __init__(self, employee_id: Any, period: str):
        super().__init__(
            f"No basic pay resolvable for employee {employee_id} in {period}",
            {"employee_id": str(employee_id), "period": period},
        )
        self.employee_id = employee_id


class ProfileIncompleteWarning(UserWarning):
    """Employee eligibility profile was missing fields; defaults were applied."""
