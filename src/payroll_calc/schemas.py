"""Pydantic schemas for the plain records the data source is built from."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from payroll_calc.calculators.types import (
    CalculationMethod,
    CompanyDeductionConfiguration,
    CompanyPayrollTemplate,
    DeductionTemplate,
    EligibilityRules,
    Employee,
    EmployeePayrollItem,
    GarnishmentDetails,
    GarnishmentType,
    MatchLogic,
    PayFrequency,
    PayrollItemKind,
    PayrollItemStatus,
    StatutoryMethod,
    TemplateType,
)


class RecordBase(BaseModel):
    """Base record schema."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")


# ============================================================================
# Employees
# ============================================================================


class EmployeeRecord(RecordBase):
    """Employee as supplied by the storage layer."""

    employee_id: UUID
    company_id: UUID
    base_salary: Decimal = Field(ge=0)
    hire_date: date | None = None
    pay_frequency: PayFrequency | None = None
    jurisdiction_id: UUID | None = None
    department_id: UUID | None = None
    position_id: UUID | None = None
    employment_type: str | None = None
    name: str | None = None
    termination_date: date | None = None

    def to_domain(self, default_pay_frequency: PayFrequency = PayFrequency.MONTHLY) -> Employee:
        data = self.model_dump()
        data["pay_frequency"] = self.pay_frequency or default_pay_frequency
        return Employee(**data)


# ============================================================================
# Statutory deductions
# ============================================================================


class DeductionTemplateRecord(RecordBase):
    """Statutory deduction template for a tax jurisdiction."""

    template_id: UUID
    jurisdiction_id: UUID
    code: str
    name: str
    deduction_type: str
    calculation_method: StatutoryMethod
    # Bracket payloads are validated by the calculator, not here
    rules: dict[str, Any] = Field(default_factory=dict)
    minimum_salary: Decimal | None = None
    maximum_salary: Decimal | None = None
    employee_rate: Decimal = Decimal("0")
    employer_rate: Decimal = Decimal("0")
    effective_from: date | None = None
    effective_to: date | None = None
    is_mandatory: bool = True
    is_active: bool = True
    employer_covers_employee_portion: bool = False
    is_taxable_if_employer_paid: bool = False

    def to_domain(self) -> DeductionTemplate:
        return DeductionTemplate(**self.model_dump())


class CompanyDeductionConfigurationRecord(RecordBase):
    """Company override of a statutory deduction template."""

    configuration_id: UUID
    company_id: UUID
    template_id: UUID
    employee_rate_override: Decimal | None = None
    employer_rate_override: Decimal | None = None
    minimum_salary_override: Decimal | None = None
    maximum_salary_override: Decimal | None = None
    employer_covers_employee_portion: bool = False
    is_taxable_if_employer_paid: bool = False
    effective_from: date | None = None
    effective_to: date | None = None
    is_active: bool = True

    def to_domain(self) -> CompanyDeductionConfiguration:
        return CompanyDeductionConfiguration(**self.model_dump())


# ============================================================================
# Company templates
# ============================================================================


class EligibilityRulesRecord(RecordBase):
    """Eligibility allow-lists; an empty list means no restriction."""

    departments: list[UUID] = Field(default_factory=list)
    positions: list[UUID] = Field(default_factory=list)
    employment_types: list[str] = Field(default_factory=list)
    min_salary: Decimal | None = None
    max_salary: Decimal | None = None

    def to_domain(self) -> EligibilityRules:
        return EligibilityRules(
            departments=frozenset(self.departments),
            positions=frozenset(self.positions),
            employment_types=frozenset(self.employment_types),
            min_salary=self.min_salary,
            max_salary=self.max_salary,
        )


class CompanyPayrollTemplateRecord(RecordBase):
    """Company-wide allowance, deduction or employer contribution."""

    template_id: UUID
    company_id: UUID
    code: str
    name: str
    template_type: TemplateType
    calculation_method: CalculationMethod
    default_amount: Decimal | None = None
    default_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    formula_expression: str | None = None
    minimum_amount: Decimal | None = None
    maximum_amount: Decimal | None = None
    eligibility_rules: EligibilityRulesRecord = Field(default_factory=EligibilityRulesRecord)
    is_active: bool = True
    is_taxable: bool = True
    effective_from: date | None = None
    effective_to: date | None = None
    has_employee_match: bool = False
    match_logic: MatchLogic | None = None
    employee_match_amount: Decimal | None = None
    employee_match_percentage: Decimal | None = Field(default=None, ge=0, le=100)

    def to_domain(self) -> CompanyPayrollTemplate:
        data = self.model_dump(exclude={"eligibility_rules"})
        return CompanyPayrollTemplate(eligibility=self.eligibility_rules.to_domain(), **data)


# ============================================================================
# Employee items
# ============================================================================


class EmployeePayrollItemRecord(RecordBase):
    """Employee-specific allowance, deduction, benefit or statutory item."""

    item_id: UUID
    employee_id: UUID
    code: str
    name: str
    kind: PayrollItemKind
    calculation_method: CalculationMethod
    amount: Decimal | None = None
    percentage: Decimal | None = Field(default=None, ge=0, le=100)
    formula_expression: str | None = None
    status: PayrollItemStatus = PayrollItemStatus.ACTIVE
    effective_from: date | None = None
    effective_to: date | None = None
    sequence: int = 0

    def to_domain(self) -> EmployeePayrollItem:
        return EmployeePayrollItem(**self.model_dump())


class GarnishmentRecord(RecordBase):
    """Court or agency garnishment order against an employee."""

    item_id: UUID
    employee_id: UUID
    name: str
    code: str = "GARNISHMENT"
    garnishment_type: GarnishmentType
    calculation_method: CalculationMethod
    amount: Decimal | None = None
    percentage: Decimal | None = Field(default=None, ge=0, le=100)
    formula_expression: str | None = None
    status: PayrollItemStatus = PayrollItemStatus.PENDING_APPROVAL
    effective_from: date | None = None
    effective_to: date | None = None
    sequence: int = 0
    priority_order: int | None = None
    maximum_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    total_amount_to_garnish: Decimal | None = Field(default=None, ge=0)
    amount_garnished_to_date: Decimal = Field(default=Decimal("0"), ge=0)
    court_order_number: str | None = None
    garnishment_authority: str | None = None
    legal_reference: str | None = None

    def to_domain(self) -> EmployeePayrollItem:
        return EmployeePayrollItem(
            item_id=self.item_id,
            employee_id=self.employee_id,
            code=self.code,
            name=self.name,
            kind=PayrollItemKind.GARNISHMENT,
            calculation_method=self.calculation_method,
            amount=self.amount,
            percentage=self.percentage,
            formula_expression=self.formula_expression,
            status=self.status,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            sequence=self.sequence,
            garnishment=GarnishmentDetails(
                garnishment_type=self.garnishment_type,
                priority_order=self.priority_order,
                maximum_percentage=self.maximum_percentage,
                total_amount_to_garnish=self.total_amount_to_garnish,
                amount_garnished_to_date=self.amount_garnished_to_date,
                court_order_number=self.court_order_number,
                garnishment_authority=self.garnishment_authority,
                legal_reference=self.legal_reference,
            ),
        )


class PayrollRecords(RecordBase):
    """Every record a payroll calculation reads, grouped by kind."""

    employees: list[EmployeeRecord] = Field(default_factory=list)
    deduction_templates: list[DeductionTemplateRecord] = Field(default_factory=list)
    company_configurations: list[CompanyDeductionConfigurationRecord] = Field(default_factory=list)
    company_templates: list[CompanyPayrollTemplateRecord] = Field(default_factory=list)
    employee_items: list[EmployeePayrollItemRecord] = Field(default_factory=list)
    garnishments: list[GarnishmentRecord] = Field(default_factory=list)
