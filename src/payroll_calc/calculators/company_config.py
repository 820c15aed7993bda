"""Company-level overrides of statutory deduction templates.

A company may override a template's rates and salary caps, and may
choose to pay the employee's share itself. Effective values resolve as
override, then template default, then zero (rates) or no cap (caps).
"""

from __future__ import annotations

from decimal import Decimal

from payroll_calc.calculators.line_builder import LineItemBuilder
from payroll_calc.calculators.types import (
    CompanyDeductionConfiguration,
    DeductionTemplate,
    TemplateCalculation,
)


def effective_employee_rate(
    config: CompanyDeductionConfiguration, template: DeductionTemplate
) -> Decimal:
    if config.employee_rate_override is not None:
        return config.employee_rate_override
    return template.employee_rate if template.employee_rate is not None else Decimal("0")


def effective_employer_rate(
    config: CompanyDeductionConfiguration, template: DeductionTemplate
) -> Decimal:
    if config.employer_rate_override is not None:
        return config.employer_rate_override
    return template.employer_rate if template.employer_rate is not None else Decimal("0")


def effective_minimum_salary(
    config: CompanyDeductionConfiguration, template: DeductionTemplate
) -> Decimal | None:
    if config.minimum_salary_override is not None:
        return config.minimum_salary_override
    return template.minimum_salary


def effective_maximum_salary(
    config: CompanyDeductionConfiguration, template: DeductionTemplate
) -> Decimal | None:
    if config.maximum_salary_override is not None:
        return config.maximum_salary_override
    return template.maximum_salary


def apply_employer_cover(calc: TemplateCalculation) -> TemplateCalculation:
    """Move the employee share onto the employer."""
    calc.original_employee_amount = calc.employee_amount
    calc.employer_amount = calc.employer_amount + calc.employee_amount
    calc.employee_amount = Decimal("0.00")
    calc.employer_covers_employee_portion = True
    return calc


def apply_company_config(
    config: CompanyDeductionConfiguration,
    template: DeductionTemplate,
    base_calc: TemplateCalculation,
    capped_salary: Decimal,
) -> TemplateCalculation:
    """Apply a company's overrides on top of a template calculation.

    ``base_calc`` must already have been computed against
    ``capped_salary`` using the effective caps. A rate override replaces
    the template amounts outright; it is not added to them.
    """
    employee_amount = base_calc.employee_amount
    employer_amount = base_calc.employer_amount

    employee_rate = effective_employee_rate(config, template)
    employer_rate = effective_employer_rate(config, template)

    if config.has_rate_override:
        employee_amount = LineItemBuilder.round_to_cents(capped_salary * employee_rate)
        employer_amount = LineItemBuilder.round_to_cents(capped_salary * employer_rate)

    trace = dict(base_calc.trace)
    trace["company_configuration"] = {
        "configuration_id": str(config.configuration_id),
        "employer_covers_employee_portion": config.employer_covers_employee_portion,
        "is_taxable_if_employer_paid": config.is_taxable_if_employer_paid,
        "employee_rate_override": config.employee_rate_override,
        "employer_rate_override": config.employer_rate_override,
        "effective_employee_rate": employee_rate,
        "effective_employer_rate": employer_rate,
        "minimum_salary": effective_minimum_salary(config, template),
        "maximum_salary": effective_maximum_salary(config, template),
    }

    calc = TemplateCalculation(
        employee_amount=employee_amount,
        employer_amount=employer_amount,
        trace=trace,
        is_taxable_if_employer_paid=config.is_taxable_if_employer_paid,
    )
    if config.employer_covers_employee_portion:
        apply_employer_cover(calc)
    return calc
