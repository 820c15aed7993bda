"""Garnishment prioritisation under legal caps and lifetime limits."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable, Mapping
from uuid import UUID

from payroll_calc.calculators.errors import ValidationError
from payroll_calc.calculators.line_builder import LineItemBuilder
from payroll_calc.calculators.templates import TemplateCalculator
from payroll_calc.calculators.types import (
    AppliedGarnishment,
    CalculationMethod,
    Employee,
    EmployeePayrollItem,
    GarnishmentResult,
    GarnishmentType,
    PayrollItemKind,
    PayrollItemStatus,
)
from payroll_calc.services.state_machine import InvalidTransitionError

if TYPE_CHECKING:
    from payroll_calc.services.counter_store import GarnishmentCounterStore

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

# Lower number = paid first
DEFAULT_PRIORITIES: dict[str, int] = {
    GarnishmentType.CHILD_SUPPORT: 1,
    GarnishmentType.TAX_LEVY: 2,
    GarnishmentType.STUDENT_LOAN: 3,
    GarnishmentType.BANKRUPTCY: 4,
    GarnishmentType.WAGE_GARNISHMENT: 5,
    GarnishmentType.OTHER: 6,
}
UNKNOWN_TYPE_PRIORITY = 5

# Percent of disposable income when the item sets no maximum_percentage
LEGAL_LIMITS: dict[str, Decimal] = {
    GarnishmentType.WAGE_GARNISHMENT: Decimal("25"),
    GarnishmentType.CHILD_SUPPORT: Decimal("50"),
    GarnishmentType.TAX_LEVY: Decimal("15"),
    GarnishmentType.STUDENT_LOAN: Decimal("15"),
    GarnishmentType.BANKRUPTCY: Decimal("25"),
    GarnishmentType.OTHER: Decimal("25"),
}
DEFAULT_LEGAL_LIMIT = Decimal("25")
CHILD_SUPPORT_CEILING = Decimal("60")


def default_priority(garnishment_type: str) -> int:
    return DEFAULT_PRIORITIES.get(garnishment_type, UNKNOWN_TYPE_PRIORITY)


def validate_garnishment(data: Mapping[str, Any]) -> None:
    """Validate the fields of a garnishment before it is created.

    Raises:
        ValidationError: On a missing or invalid field.
    """
    for required in ("garnishment_type", "calculation_method"):
        if not data.get(required):
            raise ValidationError(required, "required field missing")

    garnishment_type = data["garnishment_type"]
    if garnishment_type not in {t.value for t in GarnishmentType}:
        raise ValidationError("garnishment_type", f"invalid garnishment type {garnishment_type!r}")

    method = data["calculation_method"]
    if method not in {m.value for m in CalculationMethod}:
        raise ValidationError("calculation_method", f"invalid calculation method {method!r}")

    if method in (CalculationMethod.FIXED_AMOUNT, CalculationMethod.MANUAL) and data.get("amount") is None:
        raise ValidationError("amount", f"amount is required for {method}")

    if method in (
        CalculationMethod.PERCENTAGE_OF_SALARY,
        CalculationMethod.PERCENTAGE_OF_BASIC,
    ) and data.get("percentage") is None:
        raise ValidationError("percentage", f"percentage is required for {method}")

    maximum = data.get("maximum_percentage")
    if maximum is not None and Decimal(str(maximum)) > HUNDRED:
        raise ValidationError("maximum_percentage", "maximum percentage cannot exceed 100%")


class GarnishmentEngine:
    """Applies an employee's garnishments to disposable income.

    Garnishments run one at a time in priority order. Each sees the pool
    already reduced by those before it: percentage methods and the legal
    cap are computed against the remaining pool, not the original
    disposable income. The engine never mutates items; the returned
    result is committed with ``apply_garnishment_result``.
    """

    def __init__(
        self,
        child_support_ceiling_percent: Decimal = CHILD_SUPPORT_CEILING,
        template_calculator: TemplateCalculator | None = None,
    ):
        self.child_support_ceiling_percent = child_support_ceiling_percent
        self.template_calculator = template_calculator or TemplateCalculator()

    def active_garnishments(
        self, items: Iterable[EmployeePayrollItem], as_of_date: date
    ) -> list[EmployeePayrollItem]:
        """Active, effective, not fully garnished items in payment order."""
        active = [
            item
            for item in items
            if item.kind == PayrollItemKind.GARNISHMENT
            and item.garnishment is not None
            and item.is_effective_for(as_of_date)
            and not item.garnishment.is_fully_garnished
        ]
        return sorted(active, key=lambda item: (self.priority_of(item), item.sequence))

    @staticmethod
    def priority_of(item: EmployeePayrollItem) -> int:
        details = item.garnishment
        if details is None:
            return UNKNOWN_TYPE_PRIORITY
        if details.priority_order is not None:
            return details.priority_order
        return default_priority(details.garnishment_type)

    def legal_limit_percentage(self, item: EmployeePayrollItem) -> Decimal:
        """Cap on the garnishment as a percent of the available pool."""
        details = item.garnishment
        if details is None:
            return DEFAULT_LEGAL_LIMIT
        configured = details.maximum_percentage
        if details.garnishment_type == GarnishmentType.CHILD_SUPPORT:
            base = configured if configured is not None else LEGAL_LIMITS[GarnishmentType.CHILD_SUPPORT]
            return min(base, self.child_support_ceiling_percent)
        if configured is not None:
            return configured
        return LEGAL_LIMITS.get(details.garnishment_type, DEFAULT_LEGAL_LIMIT)

    def max_allowable(self, item: EmployeePayrollItem, available: Decimal) -> Decimal:
        return LineItemBuilder.round_to_cents(
            available * self.legal_limit_percentage(item) / HUNDRED
        )

    def breakdown(
        self,
        item: EmployeePayrollItem,
        employee: Employee,
        available: Decimal,
        as_of_date: date,
        errors: list[str] | None = None,
    ) -> dict[str, Any]:
        """Detailed calculation of one garnishment against an available pool.

        Raises:
            ValidationError: If the item lacks input its method requires.
        """
        errors = errors if errors is not None else []
        details = item.garnishment
        calculated = self._raw_amount(item, employee, available, as_of_date, errors)
        max_allowable = self.max_allowable(item, available)

        final = min(calculated, max_allowable)
        remaining_total = details.remaining_total if details else None
        if remaining_total is not None:
            final = min(final, remaining_total)
        final = LineItemBuilder.round_to_cents(max(Decimal("0"), final))

        return {
            "disposable_income": available,
            "calculated_amount": calculated,
            "max_allowable_amount": max_allowable,
            "final_amount": final,
            "garnishment_type": details.garnishment_type.value if details else None,
            "calculation_method": item.calculation_method.value,
            "percentage_used": (
                LineItemBuilder.round_rate(final / available * HUNDRED)
                if available > 0
                else Decimal("0")
            ),
            "legal_limit_percentage": self.legal_limit_percentage(item),
            "remaining_total": remaining_total,
            "is_limited_by_legal": calculated > max_allowable,
            "is_limited_by_remaining": remaining_total is not None and calculated > remaining_total,
        }

    def summary(
        self, item: EmployeePayrollItem, employee: Employee | None = None
    ) -> dict[str, Any]:
        """Reporting view of one garnishment order.

        Raises:
            ValidationError: If the item is not a garnishment.
        """
        details = item.garnishment
        if details is None:
            raise ValidationError(item.code, "item is not a garnishment")
        return {
            "item_id": item.item_id,
            "employee_id": item.employee_id,
            "employee_name": employee.display_name if employee is not None else "Unknown",
            "type": details.garnishment_type.value,
            "authority": details.garnishment_authority,
            "court_order": details.court_order_number,
            "start_date": item.effective_from,
            "end_date": item.effective_to,
            "total_amount": details.total_amount_to_garnish,
            "amount_garnished": details.amount_garnished_to_date,
            "remaining_amount": details.remaining_total,
            "status": item.status.value,
            "priority": self.priority_of(item),
            "calculation_method": item.calculation_method.value,
            "amount": item.amount,
            "percentage": item.percentage,
            "maximum_percentage": details.maximum_percentage,
            "legal_limit_percentage": self.legal_limit_percentage(item),
            "legal_reference": details.legal_reference,
            "is_active": item.status == PayrollItemStatus.ACTIVE,
        }

    def calculate(
        self,
        employee: Employee,
        items: Iterable[EmployeePayrollItem],
        disposable_income: Decimal,
        as_of_date: date,
    ) -> GarnishmentResult:
        """Run all of an employee's garnishments against disposable income."""
        remaining = disposable_income
        total = Decimal("0")
        applied: list[AppliedGarnishment] = []
        errors: list[str] = []

        for item in self.active_garnishments(items, as_of_date):
            details = item.garnishment
            try:
                breakdown = self.breakdown(item, employee, remaining, as_of_date, errors)
            except ValidationError as e:
                logger.warning("Skipping garnishment %s for employee %s: %s",
                               item.item_id, employee.employee_id, e)
                errors.append(f"Garnishment {item.name}: {e}")
                continue

            amount = breakdown["final_amount"]
            if amount <= 0:
                continue

            garnished_to_date = details.amount_garnished_to_date + amount
            applied.append(
                AppliedGarnishment(
                    item_id=item.item_id,
                    name=item.name,
                    garnishment_type=details.garnishment_type,
                    amount=amount,
                    priority=self.priority_of(item),
                    court_order_number=details.court_order_number,
                    authority=details.garnishment_authority,
                    garnished_to_date=garnished_to_date,
                    total_amount_to_garnish=details.total_amount_to_garnish,
                    completes_order=(
                        details.total_amount_to_garnish is not None
                        and garnished_to_date >= details.total_amount_to_garnish
                    ),
                    breakdown=breakdown,
                )
            )
            total += amount
            remaining -= amount

        return GarnishmentResult(
            total_garnished=LineItemBuilder.round_to_cents(total),
            remaining_disposable_income=LineItemBuilder.round_to_cents(remaining),
            garnishments=applied,
            errors=errors,
        )

    def _raw_amount(
        self,
        item: EmployeePayrollItem,
        employee: Employee,
        available: Decimal,
        as_of_date: date,
        errors: list[str],
    ) -> Decimal:
        method = item.calculation_method
        if method in (CalculationMethod.FIXED_AMOUNT, CalculationMethod.MANUAL):
            if item.amount is None:
                raise ValidationError(item.code, f"{method.value} requires an amount")
            return item.amount
        if method == CalculationMethod.PERCENTAGE_OF_SALARY:
            if item.percentage is None:
                raise ValidationError(item.code, "percentage_of_salary requires a percentage")
            return available * item.percentage / HUNDRED
        if method == CalculationMethod.PERCENTAGE_OF_BASIC:
            if item.percentage is None:
                raise ValidationError(item.code, "percentage_of_basic requires a percentage")
            return employee.base_salary * item.percentage / HUNDRED
        if method == CalculationMethod.FORMULA:
            if not item.formula_expression:
                raise ValidationError(item.code, "formula requires an expression")
            # gross_salary binds to the remaining pool
            return self.template_calculator.evaluate_formula(
                item.code, item.formula_expression, employee, available, as_of_date, errors
            )
        raise ValidationError(item.code, f"unsupported calculation method {method!r}")


def apply_garnishment_result(
    result: GarnishmentResult, store: GarnishmentCounterStore
) -> dict[UUID, Decimal]:
    """Commit applied garnishments to the counter store.

    Each increment is atomic and capped at the order's lifetime total, so
    committing two results computed from the same snapshot cannot push an
    order past its total. Items whose lifetime total is reached move from
    active to completed; an order that cannot complete (suspended, say)
    is logged and the remaining items are still committed. Returns the
    new garnished-to-date total per item.
    """
    totals: dict[UUID, Decimal] = {}
    for applied in result.garnishments:
        new_total = store.increment(applied.item_id, applied.amount)
        totals[applied.item_id] = new_total
        if applied.total_amount_to_garnish is None or new_total < applied.total_amount_to_garnish:
            continue
        try:
            store.mark_completed(applied.item_id)
        except InvalidTransitionError as e:
            logger.warning("Garnishment %s reached its total but was not completed: %s",
                           applied.item_id, e)
            continue
        logger.info(
            "Garnishment %s completed at %s of %s",
            applied.item_id,
            new_total,
            applied.total_amount_to_garnish,
        )
    return totals
