"""Property-based tests for calculation invariants.

These use hypothesis to generate salaries, bounds and garnishment sets
and check the invariants hold for all of them, not just the worked
examples in the unit tests.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from payroll_calc.calculators.garnishments import GarnishmentEngine
from payroll_calc.calculators.line_builder import LineItemBuilder
from payroll_calc.calculators.statutory import DeductionTemplateCalculator
from payroll_calc.calculators.templates import TemplateCalculator, clamp_amount
from payroll_calc.calculators.types import (
    CalculationMethod,
    CompanyPayrollTemplate,
    DeductionTemplate,
    Employee,
    EmployeePayrollItem,
    GarnishmentDetails,
    GarnishmentType,
    MatchLogic,
    PayrollItemKind,
    StatutoryMethod,
    TemplateType,
)

AS_OF = date(2024, 1, 1)

money = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("1000000"), places=2, allow_nan=False
)

PAYE = DeductionTemplate(
    template_id=uuid4(),
    jurisdiction_id=uuid4(),
    code="PAYE",
    name="Pay As You Earn",
    deduction_type="income_tax",
    calculation_method=StatutoryMethod.PROGRESSIVE_BRACKET,
    rules={
        "brackets": [
            {"min": 0, "max": 5000, "rate": "0"},
            {"min": 5000, "max": 20000, "rate": "0.10"},
            {"min": 20000, "max": None, "rate": "0.20"},
        ]
    },
)


def _employee(base_salary: Decimal) -> Employee:
    return Employee(
        employee_id=uuid4(),
        base_salary=base_salary,
        hire_date=date(2020, 1, 1),
        company_id=uuid4(),
    )


def _garnishment(employee: Employee, garnishment_type: GarnishmentType, amount: Decimal):
    return EmployeePayrollItem(
        item_id=uuid4(),
        employee_id=employee.employee_id,
        code=garnishment_type.value.upper(),
        name=garnishment_type.value,
        kind=PayrollItemKind.GARNISHMENT,
        calculation_method=CalculationMethod.FIXED_AMOUNT,
        amount=amount,
        garnishment=GarnishmentDetails(garnishment_type=garnishment_type),
    )


class TestClampingProperties:
    @given(amount=money, low=money, high=money)
    def test_result_within_bounds(self, amount, low, high):
        """Clamped amounts never leave [min, max] when min <= max."""
        low, high = min(low, high), max(low, high)

        result = clamp_amount(amount, low, high)

        assert low <= result <= high

    @given(amount=money)
    def test_unbounded_is_identity(self, amount):
        assert clamp_amount(amount, None, None) == amount


class TestProgressiveTaxProperties:
    @given(a=money, b=money)
    def test_monotonic(self, a, b):
        """More salary never means less tax."""
        calculator = DeductionTemplateCalculator()
        low, high = min(a, b), max(a, b)

        assert (
            calculator.calculate(PAYE, low).employee_amount
            <= calculator.calculate(PAYE, high).employee_amount
        )

    @given(salary=money)
    def test_bounded_by_top_rate(self, salary):
        tax = DeductionTemplateCalculator().calculate(PAYE, salary).employee_amount

        assert Decimal("0") <= tax <= LineItemBuilder.round_to_cents(salary * Decimal("0.20"))

    @given(salary=money)
    def test_deterministic(self, salary):
        calculator = DeductionTemplateCalculator()

        assert calculator.calculate(PAYE, salary) == calculator.calculate(PAYE, salary)


class TestEmployeeMatchProperties:
    @given(amount=money, gross=money)
    def test_equal_match_mirrors_employer(self, amount, gross):
        template = CompanyPayrollTemplate(
            template_id=uuid4(),
            company_id=uuid4(),
            code="PROVIDENT",
            name="Provident fund",
            template_type=TemplateType.EMPLOYER_CONTRIBUTION,
            calculation_method=CalculationMethod.FIXED_AMOUNT,
            default_amount=amount,
            has_employee_match=True,
            match_logic=MatchLogic.EQUAL,
        )

        calc = TemplateCalculator().calculate_template(template, _employee(gross), gross, AS_OF)

        assert calc.employee_amount == calc.employer_amount


class TestGarnishmentProperties:
    @settings(max_examples=50)
    @given(
        disposable=money,
        orders=st.lists(
            st.tuples(st.sampled_from(list(GarnishmentType)), money), min_size=1, max_size=6
        ),
    )
    def test_never_exceeds_disposable_income(self, disposable, orders):
        employee = _employee(Decimal("10000"))
        items = [_garnishment(employee, t, amount) for t, amount in orders]

        result = GarnishmentEngine().calculate(employee, items, disposable, AS_OF)

        assert result.total_garnished <= disposable
        assert result.remaining_disposable_income >= 0
        assert result.total_garnished == sum(
            (g.amount for g in result.garnishments), Decimal("0")
        )

    @settings(max_examples=50)
    @given(
        disposable=money,
        orders=st.lists(
            st.tuples(st.sampled_from(list(GarnishmentType)), money), min_size=1, max_size=6
        ),
    )
    def test_each_within_legal_limit_of_its_pool(self, disposable, orders):
        employee = _employee(Decimal("10000"))
        items = [_garnishment(employee, t, amount) for t, amount in orders]
        engine = GarnishmentEngine()

        result = engine.calculate(employee, items, disposable, AS_OF)

        for applied in result.garnishments:
            breakdown = applied.breakdown
            assert applied.amount <= breakdown["max_allowable_amount"]
            assert applied.amount <= breakdown["disposable_income"]
