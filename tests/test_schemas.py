"""Tests for record schemas and the in-memory data source."""

from decimal import Decimal
from uuid import uuid4

import pydantic
import pytest

from payroll_calc.calculators.types import (
    GarnishmentType,
    PayFrequency,
    PayrollItemKind,
    PayrollItemStatus,
    TemplateType,
)
from payroll_calc.config import get_settings
from payroll_calc.schemas import CompanyPayrollTemplateRecord, EmployeeRecord
from payroll_calc.sources import InMemoryDataSource


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    monkeypatch.setenv("DEFAULT_PAY_FREQUENCY", "bi_weekly")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def records():
    company_id = str(uuid4())
    employee_id = str(uuid4())
    jurisdiction_id = str(uuid4())
    department_id = str(uuid4())
    return {
        "employees": [
            {
                "employee_id": employee_id,
                "company_id": company_id,
                "base_salary": "12000.00",
                "hire_date": "2019-06-01",
                "jurisdiction_id": jurisdiction_id,
                "department_id": department_id,
            }
        ],
        "deduction_templates": [
            {
                "template_id": str(uuid4()),
                "jurisdiction_id": jurisdiction_id,
                "code": "PAYE",
                "name": "Pay As You Earn",
                "deduction_type": "income_tax",
                "calculation_method": "progressive_bracket",
                "rules": {"brackets": [{"min": 0, "max": None, "rate": "0.1"}]},
            }
        ],
        "company_templates": [
            {
                "template_id": str(uuid4()),
                "company_id": company_id,
                "code": "TRANSPORT",
                "name": "Transport allowance",
                "template_type": "allowance",
                "calculation_method": "fixed_amount",
                "default_amount": "500",
                "eligibility_rules": {"departments": [department_id]},
            }
        ],
        "employee_items": [
            {
                "item_id": str(uuid4()),
                "employee_id": employee_id,
                "code": "LOAN",
                "name": "Staff loan",
                "kind": "deduction",
                "calculation_method": "fixed_amount",
                "amount": "200",
            }
        ],
        "garnishments": [
            {
                "item_id": str(uuid4()),
                "employee_id": employee_id,
                "name": "Child support order",
                "garnishment_type": "child_support",
                "calculation_method": "fixed_amount",
                "amount": "1000",
                "total_amount_to_garnish": "12000",
                "court_order_number": "CO-1",
                "unexpected_column": "ignored",
            }
        ],
    }


class TestFromRecords:
    def test_builds_domain_objects(self, records):
        source = InMemoryDataSource.from_records(records)

        employee = source.employees[0]
        assert employee.base_salary == Decimal("12000.00")
        assert source.get_employee(employee.employee_id) == employee
        assert len(source.get_deduction_templates(employee.jurisdiction_id)) == 1
        assert len(source.get_company_templates(employee.company_id)) == 1

    def test_default_pay_frequency_from_settings(self, records):
        source = InMemoryDataSource.from_records(records)

        assert source.employees[0].pay_frequency == PayFrequency.BI_WEEKLY

    def test_explicit_pay_frequency_kept(self, records):
        records["employees"][0]["pay_frequency"] = "weekly"

        source = InMemoryDataSource.from_records(records)

        assert source.employees[0].pay_frequency == PayFrequency.WEEKLY

    def test_garnishments_split_from_items(self, records):
        source = InMemoryDataSource.from_records(records)
        employee_id = source.employees[0].employee_id

        items = source.get_employee_items(employee_id)
        garnishments = source.get_garnishments(employee_id)

        assert [i.kind for i in items] == [PayrollItemKind.DEDUCTION]
        assert len(garnishments) == 1
        order = garnishments[0]
        assert order.kind == PayrollItemKind.GARNISHMENT
        assert order.code == "GARNISHMENT"
        assert order.status == PayrollItemStatus.PENDING_APPROVAL
        assert order.garnishment.garnishment_type == GarnishmentType.CHILD_SUPPORT
        assert order.garnishment.remaining_total == Decimal("12000")

    def test_eligibility_lists_become_sets(self, records):
        source = InMemoryDataSource.from_records(records)

        template = source.company_templates[0]
        assert template.template_type == TemplateType.ALLOWANCE
        assert template.eligibility.departments == frozenset({source.employees[0].department_id})

    def test_unknown_employee(self, records):
        source = InMemoryDataSource.from_records(records)

        assert source.get_employee(uuid4()) is None


class TestRecordValidation:
    def test_negative_salary_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            EmployeeRecord(employee_id=uuid4(), company_id=uuid4(), base_salary=Decimal("-1"))

    def test_percentage_over_hundred_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            CompanyPayrollTemplateRecord(
                template_id=uuid4(),
                company_id=uuid4(),
                code="X",
                name="X",
                template_type="allowance",
                calculation_method="percentage_of_salary",
                default_percentage=Decimal("150"),
            )

    def test_unknown_method_rejected(self, records):
        records["employee_items"][0]["calculation_method"] = "guess"

        with pytest.raises(pydantic.ValidationError):
            InMemoryDataSource.from_records(records)
