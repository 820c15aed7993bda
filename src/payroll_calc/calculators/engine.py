"""Payroll calculation engine - main orchestrator."""

from __future__ import annotations

import calendar
import dataclasses
import hashlib
import json
import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable
from uuid import UUID

from payroll_calc.calculators.errors import EmployeeNotFoundError
from payroll_calc.calculators.garnishments import GarnishmentEngine
from payroll_calc.calculators.line_builder import LineItemBuilder
from payroll_calc.calculators.statutory import StatutoryDeductionCalculator
from payroll_calc.calculators.templates import TemplateCalculator
from payroll_calc.calculators.types import (
    BatchError,
    BatchResult,
    BatchSummary,
    CalculationMethod,
    CalculationOptions,
    CalculationResult,
    Employee,
    EmployeeCalculationContext,
    GarnishmentResult,
    PayrollItemKind,
    TemplateType,
)
from payroll_calc.config import Settings, get_settings

if TYPE_CHECKING:
    from payroll_calc.sources import PayrollDataSource

logger = logging.getLogger(__name__)

# Item amounts not already derived from the prorated gross
PRORATED_ITEM_METHODS = frozenset({CalculationMethod.FIXED_AMOUNT, CalculationMethod.PERCENTAGE_OF_BASIC})


class PayrollEngine:
    """Main payroll calculation engine.

    Calculation pipeline (stable order per employee):
    1) Gross salary, prorated for partial months and partial employment
    2) Company templates (allowances, deductions, employer contributions)
    3) Employee-specific items
    4) Statutory deductions for the employee's jurisdiction
    5) Disposable income = gross + allowances - statutory - voluntary
    6) Garnishments against disposable income (priority order)
    7) Net = gross + allowances - (voluntary + statutory + garnished)
    8) Validate line signs, fingerprint inputs

    Calculation is pure: nothing is written back. Garnished-to-date
    counters are committed separately with ``apply_garnishment_result``.
    """

    def __init__(
        self,
        data_source: PayrollDataSource,
        settings: Settings | None = None,
        max_workers: int | None = None,
    ):
        self.data_source = data_source
        self.settings = settings or get_settings()
        self.max_workers = max_workers or self.settings.batch_max_workers
        self.template_calculator = TemplateCalculator()
        self.statutory_calculator = StatutoryDeductionCalculator()
        self.garnishment_engine = GarnishmentEngine(
            child_support_ceiling_percent=self.settings.child_support_ceiling_percent,
            template_calculator=self.template_calculator,
        )

    def calculate_employee_payroll(
        self,
        employee: Employee,
        period_start: date,
        period_end: date,
        options: CalculationOptions | None = None,
    ) -> CalculationResult:
        """Calculate pay for a single employee over a period."""
        ctx = EmployeeCalculationContext(
            employee=employee,
            period_start=period_start,
            period_end=period_end,
            options=options or CalculationOptions(),
        )
        as_of = ctx.as_of_date
        source = self.data_source

        # 1) Gross salary
        ctx.gross = self.calculate_gross_salary(employee, period_start, period_end)
        ctx.lines.append(
            LineItemBuilder.create_salary_line(
                ctx.gross,
                employee.employee_id,
                details={"base_salary": employee.base_salary},
            )
        )

        allowances = Decimal("0")
        voluntary = Decimal("0")
        employer_contributions = Decimal("0")
        item_statutory = Decimal("0")

        # 2) Company templates
        company_templates = [
            t for t in source.get_company_templates(employee.company_id) if t.is_effective_at(as_of)
        ]
        for template in sorted(company_templates, key=lambda t: t.code):
            calc = self.template_calculator.calculate_template(
                template,
                employee,
                ctx.gross,
                as_of,
                manual_amount=ctx.options.manual_amounts.get(template.code),
            )
            ctx.errors.extend(calc.errors)
            if not calc.applicable:
                continue

            if template.template_type == TemplateType.ALLOWANCE:
                if calc.amount:
                    ctx.lines.append(LineItemBuilder.create_allowance_line(
                        template.code, template.name, calc.amount, template.template_id, calc.details
                    ))
                    allowances += calc.amount
            elif template.template_type == TemplateType.DEDUCTION:
                if calc.amount:
                    ctx.lines.append(LineItemBuilder.create_deduction_line(
                        template.code, template.name, calc.amount, template.template_id, calc.details
                    ))
                    voluntary += calc.amount
            else:
                if calc.employer_amount:
                    ctx.lines.append(LineItemBuilder.create_employer_contribution_line(
                        template.code,
                        template.name,
                        calc.employer_amount,
                        calc.employee_amount,
                        template.template_id,
                        calc.details,
                    ))
                    employer_contributions += calc.employer_amount
                if calc.employee_amount:
                    # Employee match is paid by the employee out of net pay
                    ctx.lines.append(LineItemBuilder.create_deduction_line(
                        f"{template.code}_EMPLOYEE",
                        f"{template.name} (employee match)",
                        calc.employee_amount,
                        template.template_id,
                        {"employer_contribution": template.code},
                    ))
                    voluntary += calc.employee_amount

        # 3) Employee-specific items
        items = [
            i
            for i in source.get_employee_items(employee.employee_id)
            if i.kind != PayrollItemKind.GARNISHMENT and i.is_effective_for(as_of)
        ]
        item_proration = self.employment_proration(employee, period_start, period_end)
        for item in sorted(items, key=lambda i: (i.sequence, i.code)):
            calc = self.template_calculator.calculate_item(item, employee, ctx.gross, as_of)
            ctx.errors.extend(calc.errors)
            if item_proration is not None and item.calculation_method in PRORATED_ITEM_METHODS:
                calc.amount = LineItemBuilder.round_to_cents(calc.amount * item_proration)
                calc.details["proration_factor"] = LineItemBuilder.round_rate(item_proration)
            if not calc.amount:
                continue

            if item.kind == PayrollItemKind.ALLOWANCE:
                ctx.lines.append(LineItemBuilder.create_allowance_line(
                    item.code, item.name, calc.amount, item.item_id, calc.details
                ))
                allowances += calc.amount
            elif item.kind == PayrollItemKind.DEDUCTION:
                ctx.lines.append(LineItemBuilder.create_deduction_line(
                    item.code, item.name, calc.amount, item.item_id, calc.details
                ))
                voluntary += calc.amount
            elif item.kind == PayrollItemKind.BENEFIT:
                ctx.lines.append(LineItemBuilder.create_employer_contribution_line(
                    item.code, item.name, calc.amount, source_id=item.item_id, details=calc.details
                ))
                employer_contributions += calc.amount
            elif item.kind == PayrollItemKind.STATUTORY:
                ctx.lines.append(LineItemBuilder.create_statutory_line(
                    item.code, item.name, calc.amount, Decimal("0"), item.item_id, calc.details
                ))
                item_statutory += calc.amount

        # 4) Statutory deductions
        templates = (
            source.get_deduction_templates(employee.jurisdiction_id)
            if employee.jurisdiction_id is not None
            else []
        )
        configurations = source.get_company_configurations(employee.company_id)
        statutory = self.statutory_calculator.calculate_for_employee(
            employee,
            ctx.gross,
            as_of,
            templates,
            configurations,
            include_employer_paid_taxable_benefits=ctx.options.include_employer_paid_taxable_benefits,
        )
        ctx.errors.extend(statutory.errors)
        for deduction in statutory.deductions:
            ctx.lines.append(LineItemBuilder.create_statutory_line(
                deduction.code,
                deduction.name,
                deduction.employee_amount,
                deduction.employer_amount,
                deduction.template_id,
                {"deduction_type": deduction.deduction_type, "paid_by": deduction.paid_by},
            ))
        total_statutory = statutory.total_employee_deductions + item_statutory
        employer_contributions += statutory.total_employer_contributions

        # 5) Disposable income
        disposable = ctx.gross + allowances - total_statutory - voluntary

        # 6) Garnishments
        garnishments = self.garnishment_engine.calculate(
            employee, source.get_garnishments(employee.employee_id), disposable, as_of
        )
        ctx.errors.extend(garnishments.errors)
        for applied in garnishments.garnishments:
            ctx.lines.append(LineItemBuilder.create_garnishment_line(
                applied.garnishment_type.value.upper(),
                applied.name,
                applied.amount,
                applied.item_id,
                {
                    "court_order_number": applied.court_order_number,
                    "priority": applied.priority,
                    "garnished_to_date": str(applied.garnished_to_date),
                },
            ))

        # 7) Net
        ctx.net = LineItemBuilder.calculate_net_from_lines(ctx.lines)

        # 8) Validate and fingerprint
        ctx.errors.extend(LineItemBuilder.validate_line_signs(ctx.lines))

        inputs_fingerprint = self._compute_inputs_fingerprint(
            {
                "employee": employee,
                "period_start": period_start,
                "period_end": period_end,
                "options": ctx.options,
                "company_templates": sorted(company_templates, key=lambda t: str(t.template_id)),
                "employee_items": sorted(items, key=lambda i: str(i.item_id)),
                "garnishments": sorted(
                    source.get_garnishments(employee.employee_id), key=lambda i: str(i.item_id)
                ),
                "deduction_templates": sorted(templates, key=lambda t: str(t.template_id)),
                "configurations": sorted(configurations, key=lambda c: str(c.configuration_id)),
            }
        )
        calculation_id = self._generate_calculation_id(
            employee.employee_id, period_start, period_end, inputs_fingerprint
        )

        return CalculationResult(
            employee_id=employee.employee_id,
            calculation_id=calculation_id,
            period_start=period_start,
            period_end=period_end,
            basic_salary=employee.base_salary,
            gross_salary=ctx.gross,
            total_allowances=LineItemBuilder.round_to_cents(allowances),
            total_voluntary_deductions=LineItemBuilder.round_to_cents(voluntary),
            total_statutory_deductions=LineItemBuilder.round_to_cents(total_statutory),
            total_garnishments=garnishments.total_garnished,
            total_employer_contributions=LineItemBuilder.round_to_cents(employer_contributions),
            total_deductions=LineItemBuilder.round_to_cents(
                voluntary + total_statutory + garnishments.total_garnished
            ),
            disposable_income=LineItemBuilder.round_to_cents(disposable),
            net_salary=ctx.net,
            lines=ctx.lines,
            statutory=statutory,
            garnishments=garnishments,
            errors=ctx.errors,
            inputs_fingerprint=inputs_fingerprint,
        )

    def calculate_batch_payroll(
        self,
        employees: Iterable[Employee],
        period_start: date,
        period_end: date,
        options: CalculationOptions | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Calculate payroll for many employees.

        Employees run on a thread pool with at most twice the worker count
        in flight. A failure for one employee is recorded and the batch
        continues. Setting ``cancel_event`` stops dispatching new employees;
        those already running finish and are included.
        """
        employees = list(employees)
        options = options or CalculationOptions()
        outcomes: dict[int, CalculationResult | Exception] = {}
        in_flight: dict[Future[CalculationResult], int] = {}
        max_in_flight = self.max_workers * 2
        dispatched = 0
        cancelled = False

        def collect(done: Iterable[Future[CalculationResult]]) -> None:
            for future in done:
                index = in_flight.pop(future)
                exc = future.exception()
                outcomes[index] = exc if exc is not None else future.result()

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for index, employee in enumerate(employees):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                while len(in_flight) >= max_in_flight:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    collect(done)
                future = executor.submit(
                    self.calculate_employee_payroll, employee, period_start, period_end, options
                )
                in_flight[future] = index
                dispatched += 1

            done, _ = wait(in_flight)
            collect(done)

        result = self._merge_batch(employees, outcomes, period_start, period_end)
        result.cancelled = cancelled
        result.summary.skipped_employees = len(employees) - dispatched

        logger.info(
            "Batch payroll %s to %s: %d employees, %d successful, %d failed, %d skipped",
            period_start,
            period_end,
            result.summary.total_employees,
            result.summary.successful_calculations,
            result.summary.failed_calculations,
            result.summary.skipped_employees,
        )
        return result

    def calculate_garnishments(
        self, employee_id: UUID, disposable_income: Decimal, as_of_date: date
    ) -> GarnishmentResult:
        """Run an employee's garnishments against a disposable income.

        Raises:
            EmployeeNotFoundError: If the data source has no such employee.
        """
        employee = self.data_source.get_employee(employee_id)
        if employee is None:
            raise EmployeeNotFoundError(employee_id)
        return self.garnishment_engine.calculate(
            employee,
            self.data_source.get_garnishments(employee_id),
            disposable_income,
            as_of_date,
        )

    @classmethod
    def calculate_gross_salary(
        cls, employee: Employee, period_start: date, period_end: date
    ) -> Decimal:
        """Base salary, prorated by day when the period is shorter than its month.

        An employee hired or terminated inside the period is paid for the
        days employed only.
        """
        days_in_month = calendar.monthrange(period_start.year, period_start.month)[1]
        days_in_period = (period_end - period_start).days + 1
        if days_in_period >= days_in_month:
            gross = employee.base_salary
        else:
            gross = employee.base_salary / days_in_month * days_in_period
        proration = cls.employment_proration(employee, period_start, period_end)
        if proration is not None:
            gross = gross * proration
        return LineItemBuilder.round_to_cents(gross)

    @staticmethod
    def needs_proration(employee: Employee, period_start: date, period_end: date) -> bool:
        """True when the employee was hired or terminated inside the period."""
        return any(
            boundary is not None and period_start <= boundary <= period_end
            for boundary in (employee.hire_date, employee.termination_date)
        )

    @staticmethod
    def working_days(employee: Employee, period_start: date, period_end: date) -> int:
        """Days of the period the employee was employed, inclusive."""
        start = max(period_start, employee.hire_date or period_start)
        end = min(period_end, employee.termination_date or period_end)
        return max(0, (end - start).days + 1)

    @classmethod
    def employment_proration(
        cls, employee: Employee, period_start: date, period_end: date
    ) -> Decimal | None:
        """Share of the period worked, or None when no proration applies."""
        if not cls.needs_proration(employee, period_start, period_end):
            return None
        days_in_period = (period_end - period_start).days + 1
        return Decimal(cls.working_days(employee, period_start, period_end)) / Decimal(days_in_period)

    def _merge_batch(
        self,
        employees: list[Employee],
        outcomes: dict[int, CalculationResult | Exception],
        period_start: date,
        period_end: date,
    ) -> BatchResult:
        """Fold per-employee outcomes into a batch result, in input order."""
        summary = BatchSummary(total_employees=len(employees))
        batch = BatchResult(
            period_start=period_start,
            period_end=period_end,
            summary=summary,
            results={},
        )

        for index in sorted(outcomes):
            employee = employees[index]
            outcome = outcomes[index]

            if isinstance(outcome, Exception):
                logger.error(
                    "Payroll calculation failed for employee %s (period %s): %s",
                    employee.employee_id,
                    period_start,
                    outcome,
                    exc_info=outcome,
                )
                summary.failed_calculations += 1
                batch.errors.append(
                    BatchError(
                        employee_id=employee.employee_id,
                        employee_name=employee.display_name,
                        errors=[f"Calculation failed: {outcome}"],
                        fatal=True,
                    )
                )
                continue

            if not outcome.success:
                batch.errors.append(
                    BatchError(
                        employee_id=employee.employee_id,
                        employee_name=employee.display_name,
                        errors=list(outcome.errors),
                        fatal=False,
                        result=outcome,
                    )
                )

            batch.results[employee.employee_id] = outcome
            summary.successful_calculations += 1
            summary.total_gross_salary += outcome.gross_salary
            summary.total_net_salary += outcome.net_salary
            summary.total_statutory_deductions += outcome.total_statutory_deductions
            summary.total_employer_contributions += outcome.total_employer_contributions
            summary.total_garnishments += outcome.total_garnishments

        return batch

    def _generate_calculation_id(
        self,
        employee_id: UUID,
        period_start: date,
        period_end: date,
        inputs_fingerprint: str,
    ) -> UUID:
        """Generate deterministic calculation ID."""
        data = {
            "employee_id": str(employee_id),
            "period_start": str(period_start),
            "period_end": str(period_end),
            "engine_version": self.settings.engine_version,
            "inputs_fingerprint": inputs_fingerprint,
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return UUID(bytes=hash_bytes[:16])

    def _compute_inputs_fingerprint(self, inputs_data: dict[str, Any]) -> str:
        """Compute fingerprint of all inputs used in calculation."""
        json_str = json.dumps(inputs_data, sort_keys=True, default=_canonical)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]


def _canonical(value: Any) -> Any:
    """JSON fallback giving a stable representation of domain values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    if isinstance(value, Enum):
        return value.value
    return str(value)
