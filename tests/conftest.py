"""Pytest fixtures for payroll calculation tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from payroll_calc.calculators.types import (
    CalculationMethod,
    CompanyDeductionConfiguration,
    CompanyPayrollTemplate,
    DeductionTemplate,
    Employee,
    EmployeePayrollItem,
    GarnishmentDetails,
    GarnishmentType,
    PayFrequency,
    PayrollItemKind,
    PayrollItemStatus,
    StatutoryMethod,
    TemplateType,
)
from payroll_calc.config import Settings
from payroll_calc.database import create_schema, create_session_factory, get_engine

# In-memory SQLite shared across threads for the counter store tests
TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"

PAYE_BRACKETS = [
    {"min": 0, "max": 5000, "rate": "0"},
    {"min": 5000, "max": 20000, "rate": "0.10"},
    {"min": 20000, "max": None, "rate": "0.20"},
]


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        engine_version="1.0.0-test",
        batch_max_workers=2,
        default_pay_frequency="monthly",
        child_support_ceiling_percent=Decimal("60"),
        debug=False,
    )


@pytest.fixture
def company_id() -> UUID:
    return uuid4()


@pytest.fixture
def jurisdiction_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_employee(company_id: UUID, jurisdiction_id: UUID) -> Callable[..., Employee]:
    """Factory for employees in the test company and jurisdiction."""

    def factory(**overrides: Any) -> Employee:
        data: dict[str, Any] = {
            "employee_id": uuid4(),
            "base_salary": Decimal("10000.00"),
            "hire_date": date(2015, 3, 1),
            "company_id": company_id,
            "pay_frequency": PayFrequency.MONTHLY,
            "jurisdiction_id": jurisdiction_id,
            "employment_type": "full_time",
            "name": "Alex Doe",
        }
        data.update(overrides)
        return Employee(**data)

    return factory


@pytest.fixture
def employee(make_employee: Callable[..., Employee]) -> Employee:
    return make_employee()


@pytest.fixture
def make_deduction_template(jurisdiction_id: UUID) -> Callable[..., DeductionTemplate]:
    """Factory for statutory templates; defaults to a percentage template."""

    def factory(**overrides: Any) -> DeductionTemplate:
        data: dict[str, Any] = {
            "template_id": uuid4(),
            "jurisdiction_id": jurisdiction_id,
            "code": "UIF",
            "name": "Unemployment Insurance Fund",
            "deduction_type": "unemployment_insurance",
            "calculation_method": StatutoryMethod.PERCENTAGE,
            "employee_rate": Decimal("0.01"),
            "employer_rate": Decimal("0.01"),
        }
        data.update(overrides)
        return DeductionTemplate(**data)

    return factory


@pytest.fixture
def paye_template(make_deduction_template: Callable[..., DeductionTemplate]) -> DeductionTemplate:
    """Progressive income tax: 0% to 5000, 10% to 20000, 20% above."""
    return make_deduction_template(
        code="PAYE",
        name="Pay As You Earn",
        deduction_type="income_tax",
        calculation_method=StatutoryMethod.PROGRESSIVE_BRACKET,
        employee_rate=Decimal("0"),
        employer_rate=Decimal("0"),
        rules={"brackets": PAYE_BRACKETS},
    )


@pytest.fixture
def make_configuration(company_id: UUID) -> Callable[..., CompanyDeductionConfiguration]:
    def factory(template: DeductionTemplate, **overrides: Any) -> CompanyDeductionConfiguration:
        data: dict[str, Any] = {
            "configuration_id": uuid4(),
            "company_id": company_id,
            "template_id": template.template_id,
        }
        data.update(overrides)
        return CompanyDeductionConfiguration(**data)

    return factory


@pytest.fixture
def make_company_template(company_id: UUID) -> Callable[..., CompanyPayrollTemplate]:
    """Factory for company templates; defaults to a fixed allowance of 500."""

    def factory(**overrides: Any) -> CompanyPayrollTemplate:
        data: dict[str, Any] = {
            "template_id": uuid4(),
            "company_id": company_id,
            "code": "TRANSPORT",
            "name": "Transport allowance",
            "template_type": TemplateType.ALLOWANCE,
            "calculation_method": CalculationMethod.FIXED_AMOUNT,
            "default_amount": Decimal("500.00"),
        }
        data.update(overrides)
        return CompanyPayrollTemplate(**data)

    return factory


@pytest.fixture
def make_item() -> Callable[..., EmployeePayrollItem]:
    """Factory for employee items; defaults to an active fixed deduction."""

    def factory(employee: Employee, **overrides: Any) -> EmployeePayrollItem:
        data: dict[str, Any] = {
            "item_id": uuid4(),
            "employee_id": employee.employee_id,
            "code": "LOAN",
            "name": "Staff loan repayment",
            "kind": PayrollItemKind.DEDUCTION,
            "calculation_method": CalculationMethod.FIXED_AMOUNT,
            "amount": Decimal("200.00"),
            "status": PayrollItemStatus.ACTIVE,
            "effective_from": date(2023, 1, 1),
        }
        data.update(overrides)
        return EmployeePayrollItem(**data)

    return factory


@pytest.fixture
def make_garnishment() -> Callable[..., EmployeePayrollItem]:
    """Factory for active garnishment orders."""

    def factory(
        employee: Employee,
        garnishment_type: GarnishmentType = GarnishmentType.WAGE_GARNISHMENT,
        *,
        priority_order: int | None = None,
        maximum_percentage: Decimal | None = None,
        total_amount_to_garnish: Decimal | None = None,
        amount_garnished_to_date: Decimal = Decimal("0"),
        **overrides: Any,
    ) -> EmployeePayrollItem:
        data: dict[str, Any] = {
            "item_id": uuid4(),
            "employee_id": employee.employee_id,
            "code": garnishment_type.value.upper(),
            "name": f"{garnishment_type.value} order",
            "kind": PayrollItemKind.GARNISHMENT,
            "calculation_method": CalculationMethod.FIXED_AMOUNT,
            "amount": Decimal("1000.00"),
            "status": PayrollItemStatus.ACTIVE,
            "effective_from": date(2023, 1, 1),
            "garnishment": GarnishmentDetails(
                garnishment_type=garnishment_type,
                priority_order=priority_order,
                maximum_percentage=maximum_percentage,
                total_amount_to_garnish=total_amount_to_garnish,
                amount_garnished_to_date=amount_garnished_to_date,
                court_order_number="CO-2023-001",
                garnishment_authority="District Court",
            ),
        }
        data.update(overrides)
        return EmployeePayrollItem(**data)

    return factory


@pytest.fixture
def session_factory() -> Iterator[sessionmaker[Session]]:
    """Session factory over a fresh in-memory database."""
    engine = get_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield create_session_factory(engine)
    engine.dispose()
