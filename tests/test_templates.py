"""Tests for company template and employee item calculation."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_calc.calculators.templates import TemplateCalculator, clamp_amount
from payroll_calc.calculators.types import (
    CalculationMethod,
    EligibilityRules,
    MatchLogic,
    PayrollItemKind,
    PayrollItemStatus,
    TemplateType,
)

AS_OF = date(2024, 1, 1)
GROSS = Decimal("10000.00")


@pytest.fixture
def calculator():
    return TemplateCalculator()


class TestCalculationMethods:
    """Amount by calculation method."""

    def test_fixed_amount(self, calculator, employee, make_company_template):
        template = make_company_template()

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.applicable is True
        assert calc.amount == Decimal("500.00")
        assert calc.errors == []

    def test_percentage_of_salary_uses_prorated_gross(
        self, calculator, employee, make_company_template
    ):
        template = make_company_template(
            calculation_method=CalculationMethod.PERCENTAGE_OF_SALARY,
            default_percentage=Decimal("10"),
        )

        calc = calculator.calculate_template(template, employee, Decimal("4838.71"), AS_OF)

        assert calc.amount == Decimal("483.87")

    def test_percentage_of_basic_ignores_proration(
        self, calculator, employee, make_company_template
    ):
        template = make_company_template(
            calculation_method=CalculationMethod.PERCENTAGE_OF_BASIC,
            default_percentage=Decimal("10"),
        )

        calc = calculator.calculate_template(template, employee, Decimal("4838.71"), AS_OF)

        assert calc.amount == Decimal("1000.00")

    def test_formula(self, calculator, employee, make_company_template):
        """Hired 2015-03-01, so 8 full years at 2024-01-01."""
        template = make_company_template(
            calculation_method=CalculationMethod.FORMULA,
            formula_expression="{basic_salary} * 0.05 + {years_of_service} * 100",
        )

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("1300.00")

    def test_manual_uses_supplied_amount(self, calculator, employee, make_company_template):
        template = make_company_template(calculation_method=CalculationMethod.MANUAL)

        supplied = calculator.calculate_template(
            template, employee, GROSS, AS_OF, manual_amount=Decimal("750")
        )
        missing = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert supplied.amount == Decimal("750.00")
        assert missing.amount == Decimal("0.00")


class TestClamping:
    def test_maximum(self, calculator, employee, make_company_template):
        template = make_company_template(
            calculation_method=CalculationMethod.PERCENTAGE_OF_BASIC,
            default_percentage=Decimal("10"),
            maximum_amount=Decimal("800"),
        )

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("800.00")
        assert calc.details["calculated_amount"] == Decimal("1000")

    def test_minimum(self, calculator, employee, make_company_template):
        template = make_company_template(minimum_amount=Decimal("1500"))

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("1500.00")

    def test_clamp_amount(self):
        assert clamp_amount(Decimal("5"), Decimal("10"), None) == Decimal("10")
        assert clamp_amount(Decimal("50"), None, Decimal("20")) == Decimal("20")
        assert clamp_amount(Decimal("15"), Decimal("10"), Decimal("20")) == Decimal("15")


class TestEligibility:
    """Templates outside their eligibility yield a zero, non-applicable result."""

    def test_inactive(self, calculator, employee, make_company_template):
        template = make_company_template(is_active=False)

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.applicable is False
        assert calc.amount == Decimal("0.00")
        assert calc.details["reason"] == "not_applicable"

    @pytest.mark.parametrize(
        "rules",
        [
            EligibilityRules(departments=frozenset({uuid4()})),
            EligibilityRules(positions=frozenset({uuid4()})),
            EligibilityRules(employment_types=frozenset({"contract"})),
            EligibilityRules(min_salary=Decimal("20000")),
            EligibilityRules(max_salary=Decimal("5000")),
        ],
    )
    def test_not_eligible(self, calculator, employee, make_company_template, rules):
        template = make_company_template(eligibility=rules)

        assert calculator.is_applicable(template, employee) is False

    def test_eligible(self, calculator, make_employee, make_company_template):
        department_id = uuid4()
        employee = make_employee(department_id=department_id)
        template = make_company_template(
            eligibility=EligibilityRules(
                departments=frozenset({department_id}),
                employment_types=frozenset({"full_time"}),
                min_salary=Decimal("5000"),
                max_salary=Decimal("10000"),
            )
        )

        assert calculator.is_applicable(template, employee) is True


class TestRecoverableErrors:
    """Bad input zeroes the one line and records why."""

    def test_unsafe_formula(self, calculator, employee, make_company_template):
        template = make_company_template(
            code="BONUS",
            calculation_method=CalculationMethod.FORMULA,
            formula_expression="{basic_salary} * 0.1; DROP",
        )

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("0.00")
        assert len(calc.errors) == 1
        assert calc.errors[0].startswith("BONUS: Unsafe formula expression")

    def test_division_by_zero(self, calculator, employee, make_company_template):
        template = make_company_template(
            code="BONUS",
            calculation_method=CalculationMethod.FORMULA,
            formula_expression="{basic_salary} / 0",
        )

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("0.00")
        assert "division by zero" in calc.errors[0]

    def test_missing_fixed_amount(self, calculator, employee, make_company_template):
        template = make_company_template(default_amount=None)

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("0.00")
        assert calc.errors == ["TRANSPORT: fixed_amount requires an amount"]

    def test_missing_percentage(self, calculator, employee, make_company_template):
        template = make_company_template(
            calculation_method=CalculationMethod.PERCENTAGE_OF_SALARY, default_percentage=None
        )

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.errors == ["TRANSPORT: percentage_of_salary requires a percentage"]

    def test_negative_formula_floored(self, calculator, make_employee, make_company_template):
        """A new hire's long-service formula goes negative and becomes 0."""
        new_hire = make_employee(hire_date=date(2023, 6, 1))
        template = make_company_template(
            code="LONG_SERVICE",
            calculation_method=CalculationMethod.FORMULA,
            formula_expression="({years_of_service} - 3) * 100",
        )

        calc = calculator.calculate_template(template, new_hire, GROSS, AS_OF)

        assert calc.amount == Decimal("0.00")
        assert calc.details["calculated_amount"] == Decimal("-300")
        assert calc.errors == ["LONG_SERVICE: calculated amount -300 is negative, using 0"]

    def test_negative_item_floored(self, calculator, employee, make_item):
        item = make_item(
            employee,
            code="ADJUSTMENT",
            calculation_method=CalculationMethod.FORMULA,
            formula_expression="{years_of_service} * -10",
        )

        calc = calculator.calculate_item(item, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("0.00")
        assert calc.errors == ["ADJUSTMENT: calculated amount -80 is negative, using 0"]


class TestEmployeeMatch:
    """Employee match on employer contributions."""

    def _contribution(self, make_company_template, **overrides):
        data = {
            "code": "PROVIDENT",
            "name": "Provident fund",
            "template_type": TemplateType.EMPLOYER_CONTRIBUTION,
            "default_amount": Decimal("300"),
            "has_employee_match": True,
        }
        data.update(overrides)
        return make_company_template(**data)

    def test_equal(self, calculator, employee, make_company_template):
        template = self._contribution(make_company_template, match_logic=MatchLogic.EQUAL)

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.employer_amount == Decimal("300.00")
        assert calc.employee_amount == Decimal("300.00")
        assert calc.amount == Decimal("300.00")
        assert calc.total_amount == Decimal("600.00")

    def test_percentage_of_gross(self, calculator, employee, make_company_template):
        template = self._contribution(
            make_company_template,
            match_logic=MatchLogic.PERCENTAGE,
            employee_match_percentage=Decimal("5"),
        )

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.employee_amount == Decimal("500.00")

    def test_percentage_match_clamped(self, calculator, employee, make_company_template):
        template = self._contribution(
            make_company_template,
            match_logic=MatchLogic.PERCENTAGE,
            employee_match_percentage=Decimal("5"),
            maximum_amount=Decimal("400"),
        )

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.employer_amount == Decimal("300.00")
        assert calc.employee_amount == Decimal("400.00")

    def test_custom_amount(self, calculator, employee, make_company_template):
        template = self._contribution(
            make_company_template,
            match_logic=MatchLogic.CUSTOM,
            employee_match_amount=Decimal("150"),
        )

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.employee_amount == Decimal("150.00")

    def test_no_match(self, calculator, employee, make_company_template):
        template = self._contribution(make_company_template, has_employee_match=False)

        calc = calculator.calculate_template(template, employee, GROSS, AS_OF)

        assert calc.employer_amount == Decimal("300.00")
        assert calc.employee_amount == Decimal("0.00")


class TestEmployeeItems:
    def test_percentage_item(self, calculator, employee, make_item):
        item = make_item(
            employee,
            calculation_method=CalculationMethod.PERCENTAGE_OF_SALARY,
            amount=None,
            percentage=Decimal("5"),
        )

        calc = calculator.calculate_item(item, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("500.00")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"status": PayrollItemStatus.SUSPENDED},
            {"status": PayrollItemStatus.PENDING_APPROVAL},
            {"effective_from": date(2024, 2, 1)},
            {"effective_to": date(2023, 12, 31)},
        ],
    )
    def test_not_effective(self, calculator, employee, make_item, overrides):
        item = make_item(employee, **overrides)

        calc = calculator.calculate_item(item, employee, GROSS, AS_OF)

        assert calc.applicable is False
        assert calc.amount == Decimal("0.00")

    def test_manual_item(self, calculator, employee, make_item):
        item = make_item(
            employee,
            kind=PayrollItemKind.ALLOWANCE,
            calculation_method=CalculationMethod.MANUAL,
            amount=Decimal("99.999"),
        )

        calc = calculator.calculate_item(item, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("100.00")

    def test_formula_item_unsafe(self, calculator, employee, make_item):
        item = make_item(
            employee,
            code="OVERTIME",
            calculation_method=CalculationMethod.FORMULA,
            formula_expression="{gross_salary} * hours",
        )

        calc = calculator.calculate_item(item, employee, GROSS, AS_OF)

        assert calc.amount == Decimal("0.00")
        assert calc.errors[0].startswith("OVERTIME:")
