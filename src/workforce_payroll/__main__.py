"""Payroll engine command line interface.

Provides operational tools for:
- Creating, recalculating, finalizing and deleting payroll runs
- Bank transfer export for finalized runs
- Outstation allowance checks and flag inference
- Schema creation for local setups

Usage:
    python -m workforce_payroll create-run --company-id X --year 2024 --month 3
    python -m workforce_payroll recalc --run-id X
    python -m workforce_payroll finalize --run-id X --actor ops
    python -m workforce_payroll export-bank --run-id X --output transfers.csv
    python -m workforce_payroll outstation --employee-id X --start 2024-03-01 --end 2024-03-31
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import Any, Awaitable, Callable
from uuid import UUID

from workforce_payroll.calculators.policy_resolver import PolicyResolver
from workforce_payroll.config import get_settings
from workforce_payroll.database import create_all, get_session
from workforce_payroll.exceptions import PayrollError
from workforce_payroll.providers import HttpActivitySource
from workforce_payroll.services import (
    BankExportService,
    OutstationService,
    PayrollRunService,
    render_bank_file,
)

logger = logging.getLogger("workforce_payroll")


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


class PayrollCli:
    """Payroll engine Command Line Interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()
        self.settings = get_settings()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m workforce_payroll",
            description="Payroll engine operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # create-run command
        create = subparsers.add_parser("create-run", help="Create a draft payroll run")
        create.add_argument("--company-id", type=parse_uuid, required=True, help="Company ID")
        create.add_argument("--department-id", type=parse_uuid, help="Restrict to one department")
        create.add_argument("--year", type=int, required=True, help="Period year")
        create.add_argument("--month", type=int, required=True, help="Period month (1-12)")
        create.add_argument("--actor", type=str, help="Who is creating the run")

        # recalc command
        recalc = subparsers.add_parser("recalc", help="Recalculate a draft run or one item")
        target = recalc.add_mutually_exclusive_group(required=True)
        target.add_argument("--run-id", type=parse_uuid, help="Recalculate every item of a run")
        target.add_argument("--item-id", type=parse_uuid, help="Recalculate a single item")
        recalc.add_argument("--actor", type=str, help="Who is recalculating")

        # finalize command
        finalize = subparsers.add_parser("finalize", help="Finalize a draft run")
        finalize.add_argument("--run-id", type=parse_uuid, required=True, help="Payroll run ID")
        finalize.add_argument("--actor", type=str, help="Who is finalizing the run")

        # delete-run command
        delete = subparsers.add_parser("delete-run", help="Delete a draft run")
        delete.add_argument("--run-id", type=parse_uuid, required=True, help="Payroll run ID")
        delete.add_argument("--actor", type=str, help="Who is deleting the run")

        # export-bank command
        export = subparsers.add_parser("export-bank", help="Export bank transfers as CSV")
        export.add_argument("--run-id", type=parse_uuid, required=True, help="Payroll run ID")
        export.add_argument(
            "--output",
            type=str,
            help="Output file path (default: stdout)",
        )

        # outstation command
        outstation = subparsers.add_parser(
            "outstation",
            help="Compute outstation allowance for an employee",
        )
        outstation.add_argument("--employee-id", type=parse_uuid, required=True, help="Employee ID")
        outstation.add_argument("--start", type=parse_date, required=True, help="First day (ISO)")
        outstation.add_argument("--end", type=parse_date, required=True, help="Last day (ISO)")
        outstation.add_argument(
            "--infer-flags",
            action="store_true",
            help="Infer missing outstation flags before computing",
        )

        # init-db command
        subparsers.add_parser("init-db", help="Create database tables")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "create-run": self._cmd_create_run,
            "recalc": self._cmd_recalc,
            "finalize": self._cmd_finalize,
            "delete-run": self._cmd_delete_run,
            "export-bank": self._cmd_export_bank,
            "outstation": self._cmd_outstation,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return asyncio.run(handler(parsed))
        except PayrollError as e:
            print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
            return 2

    def _activity_source(self) -> HttpActivitySource | None:
        if not self.settings.activity_source_configured:
            logger.warning("ACTIVITY_API_URL not set; outstation days will be excluded")
            return None
        return HttpActivitySource(
            self.settings.activity_api_url,
            api_key=self.settings.activity_api_key,
            timeout=self.settings.activity_api_timeout_seconds,
        )

    async def _close(self, source: HttpActivitySource | None) -> None:
        if source is not None:
            await source.aclose()

    async def _cmd_create_run(self, args: argparse.Namespace) -> int:
        """Create a draft payroll run."""
        source = self._activity_source()
        try:
            async with get_session() as session:
                service = PayrollRunService(
                    session, source, self.settings.activity_api_timeout_seconds
                )
                result = await service.create_run(
                    args.company_id,
                    args.year,
                    args.month,
                    department_id=args.department_id,
                    actor=args.actor,
                )
        finally:
            await self._close(source)

        _print_json(
            {
                "payroll_run_id": result.run.payroll_run_id,
                "period": result.run.period_label,
                "status": result.run.status,
                "items": len(result.items),
                "total_net": result.run.total_net,
                "has_review_flags": result.run.has_review_flags,
                "carried_forward": result.carried_forward,
                "skipped": [
                    {"employee_number": s.employee_number, "reason": s.reason}
                    for s in result.skipped
                ],
            }
        )
        return 0

    async def _cmd_recalc(self, args: argparse.Namespace) -> int:
        """Recalculate a run or a single item."""
        source = self._activity_source()
        try:
            async with get_session() as session:
                service = PayrollRunService(
                    session, source, self.settings.activity_api_timeout_seconds
                )
                if args.item_id:
                    item = await service.recalc_item(args.item_id)
                    _print_json(
                        {
                            "payroll_item_id": item.payroll_item_id,
                            "gross": item.gross,
                            "net_pay": item.net_pay,
                            "review_flags": item.review_flags,
                        }
                    )
                else:
                    summary = await service.recalc_all(args.run_id, actor=args.actor)
                    _print_json({"recalculated": summary.recalculated, "total": summary.total})
        finally:
            await self._close(source)
        return 0

    async def _cmd_finalize(self, args: argparse.Namespace) -> int:
        """Finalize a draft run."""
        source = self._activity_source()
        try:
            async with get_session() as session:
                service = PayrollRunService(
                    session, source, self.settings.activity_api_timeout_seconds
                )
                run = await service.finalize_run(args.run_id, actor=args.actor)
        finally:
            await self._close(source)

        _print_json(
            {
                "payroll_run_id": run.payroll_run_id,
                "status": run.status,
                "finalized_at": run.finalized_at,
                "total_gross": run.total_gross,
                "total_net": run.total_net,
                "total_employer_cost": run.total_employer_cost,
            }
        )
        return 0

    async def _cmd_delete_run(self, args: argparse.Namespace) -> int:
        """Delete a draft run."""
        async with get_session() as session:
            await PayrollRunService(session).delete_run(args.run_id, actor=args.actor)
        print(f"Deleted payroll run {args.run_id}")
        return 0

    async def _cmd_export_bank(self, args: argparse.Namespace) -> int:
        """Write the bank transfer file for a finalized run."""
        async with get_session() as session:
            rows = await BankExportService(session).export_rows(args.run_id)
            run = await PayrollRunService(session).get_run(args.run_id)
            resolved = await PolicyResolver(session).resolve_policy(
                run.company_id, run.department_id
            )

        content = render_bank_file(rows, resolved.config.bank_export)
        if args.output:
            with open(args.output, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            print(f"Wrote {len(rows)} row(s) to {args.output}")
        else:
            sys.stdout.write(content)
        return 0

    async def _cmd_outstation(self, args: argparse.Namespace) -> int:
        """Compute outstation allowance for an employee."""
        source = self._activity_source()
        try:
            async with get_session() as session:
                service = OutstationService(
                    session, source, self.settings.activity_api_timeout_seconds
                )
                inferred = 0
                if args.infer_flags:
                    inferred = await service.infer_outstation_flags(
                        args.employee_id, args.start, args.end
                    )
                result = await service.compute_outstation_allowance(
                    args.employee_id, args.start, args.end
                )
        finally:
            await self._close(source)

        _print_json(
            {
                "employee_id": args.employee_id,
                "inferred_flags": inferred,
                "qualifying_days": [
                    {
                        "day": p.day,
                        "next_day": p.next_day,
                        "distance_km": p.distance_km,
                        "deliveries": p.deliveries,
                    }
                    for p in result.qualifying_pairs
                ],
                "excluded": [
                    {"day": e.day, "next_day": e.next_day, "reason": e.reason}
                    for e in result.excluded
                ],
                "total_allowance": result.total_allowance,
            }
        )
        return 0

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create database tables."""
        await create_all()
        print("Database tables created")
        return 0


def main() -> int:
    """Main entry point."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = PayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
