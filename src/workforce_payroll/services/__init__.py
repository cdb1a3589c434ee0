"""Payroll services."""

from workforce_payroll.services.bank_export_service import (
    BankExportService,
    BankTransferRow,
    render_bank_file,
)
from workforce_payroll.services.claim_linking_service import ClaimLinkingService
from workforce_payroll.services.outstation_service import OutstationService
from workforce_payroll.services.payroll_run_service import (
    CreateRunResult,
    ItemAdjustment,
    PayrollRunService,
    RecalcSummary,
    SkippedEmployee,
)
from workforce_payroll.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)
from workforce_payroll.services.statutory_service import StatutoryService

__all__ = [
    "BankExportService",
    "BankTransferRow",
    "ClaimLinkingService",
    "CreateRunResult",
    "InvalidTransitionError",
    "ItemAdjustment",
    "OutstationService",
    "PayrollRunService",
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "RecalcSummary",
    "SkippedEmployee",
    "StatutoryService",
    "render_bank_file",
]
