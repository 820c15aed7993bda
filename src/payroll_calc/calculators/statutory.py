"""Statutory deduction calculation using rule-based template payloads."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable
from uuid import UUID

from payroll_calc.calculators import company_config
from payroll_calc.calculators.errors import BracketDataError, PayrollCalculationError
from payroll_calc.calculators.line_builder import LineItemBuilder
from payroll_calc.calculators.types import (
    CompanyDeductionConfiguration,
    DeductionTemplate,
    Employee,
    PayFrequency,
    StatutoryLine,
    StatutoryMethod,
    StatutoryResult,
    TaxBracket,
    TemplateCalculation,
)

logger = logging.getLogger(__name__)

INCOME_TAX_TYPE = "income_tax"
INCOME_TAX_CODE = "PAYE"

# Stands in for the employee and company of a preview
PREVIEW_ID = UUID(int=0)

# Bracket boundaries may leave a one-unit gap (0-360000, 360001-...)
MAX_BRACKET_GAP = Decimal("1")


def cap_salary(
    gross_salary: Decimal,
    minimum_salary: Decimal | None,
    maximum_salary: Decimal | None,
) -> Decimal:
    """Clamp a salary into [minimum_salary or 0, maximum_salary or unbounded]."""
    capped = gross_salary
    if maximum_salary is not None and capped > maximum_salary:
        capped = maximum_salary
    return max(capped, minimum_salary if minimum_salary is not None else Decimal("0"))


def _to_decimal(value: Any, template_code: str, field_name: str, raw: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise BracketDataError(template_code, f"'{field_name}' must be a number", raw)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BracketDataError(template_code, f"'{field_name}' is not a number: {value!r}", raw) from None


def parse_brackets(template_code: str, raw: Any, value_key: str) -> list[TaxBracket]:
    """Parse a bracket list from a rules payload, sorted by lower bound.

    ``value_key`` is ``"rate"`` for progressive brackets and ``"amount"``
    for salary-band brackets.
    """
    if not isinstance(raw, list):
        raise BracketDataError(template_code, "brackets must be a list", raw)
    if not raw:
        raise BracketDataError(template_code, "no brackets configured", raw)

    brackets: list[TaxBracket] = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise BracketDataError(template_code, f"bracket {i} is not an object", raw)
        for key in ("min", value_key):
            if key not in entry:
                raise BracketDataError(template_code, f"bracket {i} is missing '{key}'", raw)

        min_amount = _to_decimal(entry["min"], template_code, "min", raw)
        max_amount = (
            _to_decimal(entry["max"], template_code, "max", raw)
            if entry.get("max") is not None
            else None
        )
        if max_amount is not None and max_amount <= min_amount:
            raise BracketDataError(
                template_code, f"bracket {i} has max {max_amount} <= min {min_amount}", raw
            )
        value = _to_decimal(entry[value_key], template_code, value_key, raw)
        if value_key == "rate":
            brackets.append(TaxBracket(min_amount=min_amount, max_amount=max_amount, rate=value))
        else:
            brackets.append(TaxBracket(min_amount=min_amount, max_amount=max_amount, amount=value))

    brackets.sort(key=lambda b: b.min_amount)

    for prev, cur in zip(brackets, brackets[1:]):
        if prev.max_amount is None:
            raise BracketDataError(
                template_code, f"open-ended bracket at {prev.min_amount} is not the last", raw
            )
        if cur.min_amount < prev.max_amount:
            raise BracketDataError(
                template_code,
                f"brackets overlap: {prev.min_amount}-{prev.max_amount} and {cur.min_amount}",
                raw,
            )
    return brackets


def validate_progressive_brackets(template_code: str, brackets: list[TaxBracket], raw: Any) -> None:
    """Progressive brackets must be contiguous and end with an open bracket."""
    for prev, cur in zip(brackets, brackets[1:]):
        if prev.max_amount is not None and cur.min_amount - prev.max_amount > MAX_BRACKET_GAP:
            raise BracketDataError(
                template_code, f"gap between {prev.max_amount} and {cur.min_amount}", raw
            )
    if brackets[-1].max_amount is not None:
        raise BracketDataError(template_code, "top bracket must have no upper limit", raw)


@dataclass
class _ProgressiveTax:
    tax: Decimal
    bracket_calculations: list[dict[str, Any]]


class DeductionTemplateCalculator:
    """Calculates the employee/employer split for one deduction template.

    Template rules payloads:
    {
        "brackets": [
            {"min": 0, "max": 5000, "rate": 0.0},
            {"min": 5000, "max": 20000, "rate": 0.1},
            {"min": 20000, "max": null, "rate": 0.2}
        ],
        "rebates": {"primary": 1500, "secondary": 800},
        "apply_rebates": ["primary"],   // default ["primary"]
        "annualize": false,             // progressive only
        "amount": 25                    // flat_amount
    }
    """

    DEFAULT_REBATES = ("primary",)

    def calculate(
        self,
        template: DeductionTemplate,
        gross_salary: Decimal,
        pay_frequency: PayFrequency = PayFrequency.MONTHLY,
        minimum_salary: Decimal | None = None,
        maximum_salary: Decimal | None = None,
    ) -> TemplateCalculation:
        """Calculate the template's deduction for a gross salary.

        ``minimum_salary`` and ``maximum_salary`` replace the template's
        own caps when given (company overrides).

        Raises:
            BracketDataError: If the bracket configuration is malformed.
        """
        min_cap = minimum_salary if minimum_salary is not None else template.minimum_salary
        max_cap = maximum_salary if maximum_salary is not None else template.maximum_salary
        capped = cap_salary(gross_salary, min_cap, max_cap)

        employee_rate = template.employee_rate or Decimal("0")
        employer_rate = template.employer_rate or Decimal("0")
        trace: dict[str, Any] = {
            "method": template.calculation_method.value,
            "gross_salary": gross_salary,
            "salary_used": capped,
            "employee_rate": employee_rate,
            "employer_rate": employer_rate,
            "minimum_salary": min_cap,
            "maximum_salary": max_cap,
        }

        method = template.calculation_method
        if method == StatutoryMethod.PERCENTAGE:
            employee_amount = capped * employee_rate
            employer_amount = capped * employer_rate

        elif method == StatutoryMethod.PROGRESSIVE_BRACKET:
            employee_amount = self._calculate_progressive(template, capped, pay_frequency, trace)
            employer_amount = capped * employer_rate

        elif method == StatutoryMethod.SALARY_BRACKET:
            employee_amount = self._calculate_salary_bracket(template, capped, trace)
            employer_amount = capped * employer_rate

        elif method == StatutoryMethod.FLAT_AMOUNT:
            employee_amount = _to_decimal(
                template.rules.get("amount", 0), template.code, "amount", template.rules
            )
            employer_amount = Decimal("0")
            trace["flat_amount"] = employee_amount

        else:
            raise PayrollCalculationError(
                f"Unsupported calculation method {method!r} on template '{template.code}'"
            )

        return TemplateCalculation(
            employee_amount=LineItemBuilder.round_to_cents(employee_amount),
            employer_amount=LineItemBuilder.round_to_cents(employer_amount),
            trace=trace,
            employer_covers_employee_portion=template.employer_covers_employee_portion,
            is_taxable_if_employer_paid=template.is_taxable_if_employer_paid,
        )

    def _calculate_progressive(
        self,
        template: DeductionTemplate,
        salary: Decimal,
        pay_frequency: PayFrequency,
        trace: dict[str, Any],
    ) -> Decimal:
        raw = template.rules.get("brackets")
        brackets = parse_brackets(template.code, raw, "rate")
        validate_progressive_brackets(template.code, brackets, raw)

        rebate_total, rebates_applied = self._rebates(template)

        if template.rules.get("annualize"):
            periods = Decimal(pay_frequency.periods_per_year)
            annual_salary = salary * periods
            result = self._progressive_tax(annual_salary, brackets)
            annual_tax = max(Decimal("0"), result.tax - rebate_total)
            tax = annual_tax / periods
            trace.update(
                {
                    "annualized": True,
                    "periods_per_year": pay_frequency.periods_per_year,
                    "annual_salary": annual_salary,
                    "annual_tax_before_rebates": result.tax,
                    "annual_tax": annual_tax,
                }
            )
        else:
            result = self._progressive_tax(salary, brackets)
            tax = max(Decimal("0"), result.tax - rebate_total)
            trace["tax_before_rebates"] = result.tax

        trace["bracket_calculations"] = result.bracket_calculations
        trace["rebates_applied"] = rebates_applied
        return tax

    @staticmethod
    def _progressive_tax(salary: Decimal, brackets: list[TaxBracket]) -> _ProgressiveTax:
        """Sum marginal tax over sorted brackets.

        A bracket starts where the previous one ends, so income inside a
        tolerated gap (5000 to 5001 for 0-5000, 5001-...) is taxed at the
        next bracket's rate.
        """
        total = Decimal("0")
        calculations: list[dict[str, Any]] = []
        previous_max: Decimal | None = None
        for bracket in brackets:
            lower = bracket.min_amount if previous_max is None else min(bracket.min_amount, previous_max)
            previous_max = bracket.max_amount
            if salary <= lower:
                continue
            upper = salary if bracket.max_amount is None else min(bracket.max_amount, salary)
            taxable = upper - lower
            tax = taxable * bracket.rate
            total += tax
            calculations.append(
                {
                    "min": bracket.min_amount,
                    "max": bracket.max_amount,
                    "rate": bracket.rate,
                    "taxable_amount": taxable,
                    "tax": tax,
                }
            )
        return _ProgressiveTax(total, calculations)

    def _rebates(self, template: DeductionTemplate) -> tuple[Decimal, dict[str, Decimal]]:
        rebates = template.rules.get("rebates")
        if not rebates:
            return Decimal("0"), {}
        if not isinstance(rebates, dict):
            value = _to_decimal(rebates, template.code, "rebates", rebates)
            return value, {"rebate": value}

        names = template.rules.get("apply_rebates", self.DEFAULT_REBATES)
        applied: dict[str, Decimal] = {}
        for name in names:
            if name in rebates:
                applied[name] = _to_decimal(rebates[name], template.code, f"rebates.{name}", rebates)
        return sum(applied.values(), Decimal("0")), applied

    def _calculate_salary_bracket(
        self, template: DeductionTemplate, salary: Decimal, trace: dict[str, Any]
    ) -> Decimal:
        brackets = parse_brackets(template.code, template.rules.get("brackets"), "amount")
        for bracket in brackets:
            if bracket.min_amount <= salary and (
                bracket.max_amount is None or salary <= bracket.max_amount
            ):
                trace["bracket_used"] = {
                    "min": bracket.min_amount,
                    "max": bracket.max_amount,
                    "amount": bracket.amount,
                }
                return bracket.amount
        trace["bracket_used"] = None
        return Decimal("0")


class StatutoryDeductionCalculator:
    """Runs every mandatory statutory template for an employee's jurisdiction."""

    def __init__(self, template_calculator: DeductionTemplateCalculator | None = None):
        self.template_calculator = template_calculator or DeductionTemplateCalculator()

    def calculate_for_employee(
        self,
        employee: Employee,
        gross_salary: Decimal,
        as_of_date: date,
        templates: Iterable[DeductionTemplate],
        configurations: Iterable[CompanyDeductionConfiguration] = (),
        include_employer_paid_taxable_benefits: bool = False,
    ) -> StatutoryResult:
        """Calculate all statutory deductions for an employee.

        A template whose brackets are malformed contributes nothing and
        is recorded in ``errors``; the remaining templates still run.
        """
        result = StatutoryResult()
        if employee.jurisdiction_id is None:
            result.errors.append("No tax jurisdiction configured for employee")
            return result

        configurations = list(configurations)
        applicable = self.applicable_templates(employee, templates, as_of_date)
        taxable_benefit_amount = Decimal("0")

        for template in applicable:
            try:
                calc = self.calculate_template(
                    employee, template, gross_salary, as_of_date, configurations
                )
            except PayrollCalculationError as e:
                logger.exception(
                    "Error calculating statutory deduction %s for employee %s",
                    template.code,
                    employee.employee_id,
                )
                result.errors.append(f"Failed to calculate {template.name}: {e}")
                continue

            result.deductions.append(
                StatutoryLine(
                    template_id=template.template_id,
                    code=template.code,
                    name=template.name,
                    deduction_type=template.deduction_type,
                    employee_amount=calc.employee_amount,
                    employer_amount=calc.employer_amount,
                    paid_by="employer" if calc.employer_covers_employee_portion else "employee",
                    is_taxable=calc.is_taxable_if_employer_paid,
                    trace=calc.trace,
                )
            )
            result.total_employee_deductions += calc.employee_amount
            result.total_employer_contributions += calc.employer_amount

            if calc.employer_covers_employee_portion and calc.is_taxable_if_employer_paid:
                benefit = (
                    calc.original_employee_amount
                    if calc.original_employee_amount is not None
                    else calc.employee_amount
                )
                taxable_benefit_amount += benefit
                result.taxable_benefits.append(
                    {
                        "name": template.name,
                        "code": template.code,
                        "amount": benefit,
                        "reason": "employer_paid_deduction",
                    }
                )

        if include_employer_paid_taxable_benefits and taxable_benefit_amount > 0:
            self._recalculate_with_taxable_benefits(
                employee, result, applicable, gross_salary, taxable_benefit_amount,
                as_of_date, configurations,
            )

        return result

    def preview_calculations(
        self,
        jurisdiction_id: UUID,
        gross_salary: Decimal,
        templates: Iterable[DeductionTemplate],
        as_of_date: date,
        company_id: UUID | None = None,
        configurations: Iterable[CompanyDeductionConfiguration] = (),
        pay_frequency: PayFrequency = PayFrequency.MONTHLY,
        basic_salary: Decimal | None = None,
    ) -> StatutoryResult:
        """Statutory deductions for a salary, without a stored employee.

        Company configurations apply only when ``company_id`` is given.
        """
        placeholder = Employee(
            employee_id=PREVIEW_ID,
            base_salary=basic_salary if basic_salary is not None else gross_salary,
            hire_date=None,
            company_id=company_id if company_id is not None else PREVIEW_ID,
            pay_frequency=pay_frequency,
            jurisdiction_id=jurisdiction_id,
        )
        return self.calculate_for_employee(
            placeholder,
            gross_salary,
            as_of_date,
            templates,
            configurations if company_id is not None else (),
        )

    def calculate_template(
        self,
        employee: Employee,
        template: DeductionTemplate,
        gross_salary: Decimal,
        as_of_date: date,
        configurations: Iterable[CompanyDeductionConfiguration] = (),
    ) -> TemplateCalculation:
        """Calculate one template, applying the company's configuration if any."""
        config = self.find_configuration(employee, template, configurations, as_of_date)
        calculator = self.template_calculator

        if config is None:
            calc = calculator.calculate(template, gross_salary, employee.pay_frequency)
            if calc.employer_covers_employee_portion:
                company_config.apply_employer_cover(calc)
            return calc

        min_cap = company_config.effective_minimum_salary(config, template)
        max_cap = company_config.effective_maximum_salary(config, template)
        capped = cap_salary(gross_salary, min_cap, max_cap)
        base_calc = calculator.calculate(
            template, capped, employee.pay_frequency, minimum_salary=min_cap, maximum_salary=max_cap
        )
        return company_config.apply_company_config(config, template, base_calc, capped)

    def calculate_by_type(
        self,
        employee: Employee,
        deduction_type: str,
        gross_salary: Decimal,
        as_of_date: date,
        templates: Iterable[DeductionTemplate],
        configurations: Iterable[CompanyDeductionConfiguration] = (),
    ) -> StatutoryLine | None:
        """Calculate the first applicable template of one deduction type.

        Returns None if no template of that type applies or it fails.
        """
        template = next(
            (
                t
                for t in self.applicable_templates(employee, templates, as_of_date)
                if t.deduction_type == deduction_type
            ),
            None,
        )
        if template is None:
            return None

        try:
            calc = self.calculate_template(
                employee, template, gross_salary, as_of_date, configurations
            )
        except PayrollCalculationError:
            logger.exception(
                "Error calculating %s for employee %s", deduction_type, employee.employee_id
            )
            return None

        return StatutoryLine(
            template_id=template.template_id,
            code=template.code,
            name=template.name,
            deduction_type=template.deduction_type,
            employee_amount=calc.employee_amount,
            employer_amount=calc.employer_amount,
            paid_by="employer" if calc.employer_covers_employee_portion else "employee",
            is_taxable=calc.is_taxable_if_employer_paid,
            trace=calc.trace,
        )

    def calculate_year_to_date(self, employee: Employee, year: int) -> dict[str, Any]:
        """Year-to-date totals.

        Payroll history is held by the caller's storage layer, so this
        returns the zeroed structure a history-backed implementation fills.
        """
        zero = Decimal("0")
        return {
            "year": year,
            "employee_id": employee.employee_id,
            "ytd_totals": {
                "gross_salary": zero,
                "total_employee_deductions": zero,
                "total_employer_contributions": zero,
            },
            "deduction_breakdown": {
                "income_tax": zero,
                "unemployment_insurance": zero,
                "social_security": zero,
                "health_insurance": zero,
                "pension": zero,
            },
            "periods_processed": 0,
            "last_calculation_date": None,
        }

    @staticmethod
    def validate_jurisdiction_configuration(
        required_codes: Iterable[str], templates: Iterable[DeductionTemplate]
    ) -> dict[str, Any]:
        """Check that every mandatory deduction code has an active template."""
        configured = sorted({t.code for t in templates if t.is_active})
        missing = sorted(set(required_codes) - set(configured))
        return {
            "valid": not missing,
            "configured_deductions": configured,
            "missing_deductions": missing,
            "warnings": (
                [f"Missing mandatory deduction templates: {', '.join(missing)}"] if missing else []
            ),
        }

    @staticmethod
    def applicable_templates(
        employee: Employee, templates: Iterable[DeductionTemplate], as_of_date: date
    ) -> list[DeductionTemplate]:
        """Active mandatory templates of the employee's jurisdiction, in a stable order."""
        return sorted(
            (
                t
                for t in templates
                if t.jurisdiction_id == employee.jurisdiction_id
                and t.is_mandatory
                and t.is_effective_at(as_of_date)
            ),
            key=lambda t: (t.deduction_type, t.code),
        )

    @staticmethod
    def find_configuration(
        employee: Employee,
        template: DeductionTemplate,
        configurations: Iterable[CompanyDeductionConfiguration],
        as_of_date: date,
    ) -> CompanyDeductionConfiguration | None:
        return next(
            (
                c
                for c in configurations
                if c.company_id == employee.company_id
                and c.template_id == template.template_id
                and c.is_effective_at(as_of_date)
            ),
            None,
        )

    def _recalculate_with_taxable_benefits(
        self,
        employee: Employee,
        result: StatutoryResult,
        templates: list[DeductionTemplate],
        gross_salary: Decimal,
        taxable_benefit_amount: Decimal,
        as_of_date: date,
        configurations: list[CompanyDeductionConfiguration],
    ) -> None:
        """Recalculate income tax on gross plus employer-paid taxable benefits."""
        index = next(
            (
                i
                for i, d in enumerate(result.deductions)
                if d.deduction_type == INCOME_TAX_TYPE or d.code == INCOME_TAX_CODE
            ),
            None,
        )
        if index is None:
            return

        line = result.deductions[index]
        template = next(t for t in templates if t.template_id == line.template_id)
        adjusted_gross = gross_salary + taxable_benefit_amount
        try:
            calc = self.calculate_template(
                employee, template, adjusted_gross, as_of_date, configurations
            )
        except PayrollCalculationError as e:
            logger.exception("Error recalculating %s with taxable benefits", template.code)
            result.errors.append(f"Failed to recalculate {template.name}: {e}")
            return

        result.total_employee_deductions += calc.employee_amount - line.employee_amount
        result.total_employer_contributions += calc.employer_amount - line.employer_amount
        line.employee_amount = calc.employee_amount
        line.employer_amount = calc.employer_amount
        line.trace = {
            **calc.trace,
            "taxable_benefits_included": taxable_benefit_amount,
            "adjusted_gross_salary": adjusted_gross,
        }
