"""Data source boundary: where the engine reads its input records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol
from uuid import UUID

from payroll_calc.calculators.types import (
    CompanyDeductionConfiguration,
    CompanyPayrollTemplate,
    DeductionTemplate,
    Employee,
    EmployeePayrollItem,
    PayFrequency,
    PayrollItemKind,
)
from payroll_calc.config import get_settings
from payroll_calc.schemas import PayrollRecords


class PayrollDataSource(Protocol):
    """Read-only access to the records a payroll calculation needs.

    Implementations scope every lookup to the given company, employee or
    jurisdiction; the engine never filters across tenants itself.
    """

    def get_employee(self, employee_id: UUID) -> Employee | None: ...

    def get_company_templates(self, company_id: UUID) -> list[CompanyPayrollTemplate]: ...

    def get_employee_items(self, employee_id: UUID) -> list[EmployeePayrollItem]: ...

    def get_garnishments(self, employee_id: UUID) -> list[EmployeePayrollItem]: ...

    def get_deduction_templates(self, jurisdiction_id: UUID) -> list[DeductionTemplate]: ...

    def get_company_configurations(
        self, company_id: UUID
    ) -> list[CompanyDeductionConfiguration]: ...


@dataclass
class InMemoryDataSource:
    """Data source over in-memory lists of domain records."""

    employees: list[Employee] = field(default_factory=list)
    deduction_templates: list[DeductionTemplate] = field(default_factory=list)
    company_configurations: list[CompanyDeductionConfiguration] = field(default_factory=list)
    company_templates: list[CompanyPayrollTemplate] = field(default_factory=list)
    employee_items: list[EmployeePayrollItem] = field(default_factory=list)

    @classmethod
    def from_records(cls, records: Mapping[str, Any] | PayrollRecords) -> InMemoryDataSource:
        """Build a data source from plain dict records.

        Employees without a pay frequency get the configured default.

        Raises:
            pydantic.ValidationError: If a record is malformed.
        """
        default_frequency = PayFrequency(get_settings().default_pay_frequency)
        parsed = (
            records
            if isinstance(records, PayrollRecords)
            else PayrollRecords.model_validate(records)
        )
        return cls(
            employees=[r.to_domain(default_frequency) for r in parsed.employees],
            deduction_templates=[r.to_domain() for r in parsed.deduction_templates],
            company_configurations=[r.to_domain() for r in parsed.company_configurations],
            company_templates=[r.to_domain() for r in parsed.company_templates],
            employee_items=[r.to_domain() for r in parsed.employee_items]
            + [r.to_domain() for r in parsed.garnishments],
        )

    def get_employee(self, employee_id: UUID) -> Employee | None:
        return next((e for e in self.employees if e.employee_id == employee_id), None)

    def get_company_templates(self, company_id: UUID) -> list[CompanyPayrollTemplate]:
        return [t for t in self.company_templates if t.company_id == company_id]

    def get_employee_items(self, employee_id: UUID) -> list[EmployeePayrollItem]:
        return [
            i
            for i in self.employee_items
            if i.employee_id == employee_id and i.kind != PayrollItemKind.GARNISHMENT
        ]

    def get_garnishments(self, employee_id: UUID) -> list[EmployeePayrollItem]:
        return [
            i
            for i in self.employee_items
            if i.employee_id == employee_id and i.kind == PayrollItemKind.GARNISHMENT
        ]

    def get_deduction_templates(self, jurisdiction_id: UUID) -> list[DeductionTemplate]:
        return [t for t in self.deduction_templates if t.jurisdiction_id == jurisdiction_id]

    def get_company_configurations(
        self, company_id: UUID
    ) -> list[CompanyDeductionConfiguration]:
        return [c for c in self.company_configurations if c.company_id == company_id]
