"""Company template and employee item amount calculation."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from payroll_calc.calculators import expression
from payroll_calc.calculators.errors import (
    FormulaArithmeticError,
    UnsafeExpressionError,
    ValidationError,
)
from payroll_calc.calculators.line_builder import LineItemBuilder
from payroll_calc.calculators.types import (
    CalculationMethod,
    CompanyPayrollTemplate,
    Employee,
    EmployeePayrollItem,
    ItemCalculation,
    MatchLogic,
    TemplateType,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def clamp_amount(
    amount: Decimal, minimum: Decimal | None, maximum: Decimal | None
) -> Decimal:
    """Clamp an amount into [minimum, maximum], either bound optional."""
    if minimum is not None and amount < minimum:
        amount = minimum
    if maximum is not None and amount > maximum:
        amount = maximum
    return amount


def floor_at_zero(code: str, amount: Decimal, errors: list[str]) -> Decimal:
    """Lines never carry a negative amount; a negative result becomes 0."""
    if amount >= 0:
        return amount
    logger.warning("Negative amount %s calculated for %s, using 0", amount, code)
    errors.append(f"{code}: calculated amount {amount} is negative, using 0")
    return Decimal("0")


class TemplateCalculator:
    """Computes one allowance, deduction or employer contribution line.

    Amount by calculation method:
    - fixed_amount: configured amount
    - percentage_of_salary: gross salary x percentage / 100
    - percentage_of_basic: base salary x percentage / 100
    - formula: restricted expression over basic_salary, gross_salary
      and years_of_service
    - manual: caller-supplied amount (company templates default to 0)

    Formula failures are logged and recovered to 0, as are negative
    results. A missing required input raises ValidationError, which
    blocks that one line only.
    """

    def is_applicable(self, template: CompanyPayrollTemplate, employee: Employee) -> bool:
        """Check the template's eligibility rules against the employee."""
        if not template.is_active:
            return False

        rules = template.eligibility
        if rules.departments and employee.department_id not in rules.departments:
            return False
        if rules.positions and employee.position_id not in rules.positions:
            return False
        if rules.employment_types and employee.employment_type not in rules.employment_types:
            return False
        if rules.min_salary is not None and employee.base_salary < rules.min_salary:
            return False
        if rules.max_salary is not None and employee.base_salary > rules.max_salary:
            return False
        return True

    def calculate_template(
        self,
        template: CompanyPayrollTemplate,
        employee: Employee,
        gross_salary: Decimal,
        as_of_date: date,
        manual_amount: Decimal | None = None,
    ) -> ItemCalculation:
        """Calculate a company template for one employee.

        Employer contributions carry the employer amount in
        ``employer_amount`` and any employee match in ``employee_amount``;
        other template types carry the line amount in ``amount``.
        """
        calc = ItemCalculation(
            source_id=template.template_id,
            code=template.code,
            name=template.name,
            amount=Decimal("0.00"),
            details={
                "template_type": template.template_type.value,
                "calculation_method": template.calculation_method.value,
                "is_taxable": template.is_taxable,
            },
        )

        if not self.is_applicable(template, employee):
            calc.applicable = False
            calc.amount = Decimal("0.00")
            calc.employer_amount = Decimal("0.00")
            calc.employee_amount = Decimal("0.00")
            calc.details["reason"] = "not_applicable"
            return calc

        if template.calculation_method == CalculationMethod.MANUAL:
            raw = manual_amount if manual_amount is not None else Decimal("0")
        else:
            try:
                raw = self._amount_by_method(
                    template.code,
                    template.calculation_method,
                    template.default_amount,
                    template.default_percentage,
                    template.formula_expression,
                    employee,
                    gross_salary,
                    as_of_date,
                    calc.errors,
                )
            except ValidationError as e:
                logger.warning("Skipping template %s for employee %s: %s",
                               template.code, employee.employee_id, e)
                calc.errors.append(str(e))
                raw = Decimal("0")

        clamped = clamp_amount(raw, template.minimum_amount, template.maximum_amount)
        amount = LineItemBuilder.round_to_cents(floor_at_zero(template.code, clamped, calc.errors))
        calc.details["calculated_amount"] = raw

        if template.template_type == TemplateType.EMPLOYER_CONTRIBUTION:
            calc.employer_amount = amount
            calc.employee_amount = floor_at_zero(
                f"{template.code}_EMPLOYEE",
                self._employee_match(template, employee, gross_salary, amount),
                calc.errors,
            )
            calc.amount = calc.employer_amount
            calc.details["match_logic"] = (
                template.match_logic.value
                if template.has_employee_match and template.match_logic
                else None
            )
        else:
            calc.amount = amount
        return calc

    def calculate_item(
        self,
        item: EmployeePayrollItem,
        employee: Employee,
        gross_salary: Decimal,
        as_of_date: date,
    ) -> ItemCalculation:
        """Calculate an employee-specific payroll item.

        Items not effective on ``as_of_date`` (or not active) yield 0.
        """
        calc = ItemCalculation(
            source_id=item.item_id,
            code=item.code,
            name=item.name,
            amount=Decimal("0.00"),
            details={
                "kind": item.kind.value,
                "calculation_method": item.calculation_method.value,
            },
        )
        if not item.is_effective_for(as_of_date):
            calc.applicable = False
            calc.details["reason"] = "not_effective"
            return calc

        if item.calculation_method == CalculationMethod.MANUAL:
            raw = item.amount if item.amount is not None else Decimal("0")
        else:
            try:
                raw = self._amount_by_method(
                    item.code,
                    item.calculation_method,
                    item.amount,
                    item.percentage,
                    item.formula_expression,
                    employee,
                    gross_salary,
                    as_of_date,
                    calc.errors,
                )
            except ValidationError as e:
                logger.warning("Skipping payroll item %s for employee %s: %s",
                               item.item_id, employee.employee_id, e)
                calc.errors.append(str(e))
                raw = Decimal("0")

        calc.amount = LineItemBuilder.round_to_cents(floor_at_zero(item.code, raw, calc.errors))
        return calc

    def evaluate_formula(
        self,
        code: str,
        formula: str,
        employee: Employee,
        gross_salary: Decimal,
        as_of_date: date,
        errors: list[str],
    ) -> Decimal:
        """Evaluate a formula, recovering unsafe or failing expressions to 0."""
        bindings = {
            "basic_salary": employee.base_salary,
            "gross_salary": gross_salary,
            "years_of_service": employee.years_of_service(as_of_date),
        }
        try:
            return expression.evaluate(formula, bindings)
        except (UnsafeExpressionError, FormulaArithmeticError) as e:
            logger.error("Formula evaluation error for %s: %s", code, e)
            errors.append(f"{code}: {e}")
            return Decimal("0")

    def _amount_by_method(
        self,
        code: str,
        method: CalculationMethod,
        amount: Decimal | None,
        percentage: Decimal | None,
        formula: str | None,
        employee: Employee,
        gross_salary: Decimal,
        as_of_date: date,
        errors: list[str],
    ) -> Decimal:
        if method == CalculationMethod.FIXED_AMOUNT:
            if amount is None:
                raise ValidationError(code, "fixed_amount requires an amount")
            return amount

        if method in (CalculationMethod.PERCENTAGE_OF_SALARY, CalculationMethod.PERCENTAGE_OF_BASIC):
            if percentage is None:
                raise ValidationError(code, f"{method.value} requires a percentage")
            base = (
                gross_salary
                if method == CalculationMethod.PERCENTAGE_OF_SALARY
                else employee.base_salary
            )
            return base * percentage / HUNDRED

        if method == CalculationMethod.FORMULA:
            if not formula:
                raise ValidationError(code, "formula requires an expression")
            return self.evaluate_formula(code, formula, employee, gross_salary, as_of_date, errors)

        raise ValidationError(code, f"unsupported calculation method {method!r}")

    def _employee_match(
        self,
        template: CompanyPayrollTemplate,
        employee: Employee,
        gross_salary: Decimal,
        employer_amount: Decimal,
    ) -> Decimal:
        """Employee contribution matching an employer contribution."""
        if not template.has_employee_match or template.match_logic is None:
            return Decimal("0.00")

        base = (
            employee.base_salary
            if template.calculation_method == CalculationMethod.PERCENTAGE_OF_BASIC
            else gross_salary
        )
        percentage = template.employee_match_percentage or Decimal("0")

        if template.match_logic == MatchLogic.EQUAL:
            return employer_amount
        if template.match_logic == MatchLogic.PERCENTAGE:
            match = base * percentage / HUNDRED
        elif template.employee_match_amount is not None:
            match = template.employee_match_amount
        else:
            match = base * percentage / HUNDRED

        # Same bounds as the employer amount
        return LineItemBuilder.round_to_cents(
            clamp_amount(match, template.minimum_amount, template.maximum_amount)
        )
