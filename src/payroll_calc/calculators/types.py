"""Type definitions for calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class PayFrequency(str, Enum):
    """How often an employee is paid."""

    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"

    @property
    def periods_per_year(self) -> int:
        return {
            PayFrequency.WEEKLY: 52,
            PayFrequency.BI_WEEKLY: 26,
            PayFrequency.MONTHLY: 12,
            PayFrequency.QUARTERLY: 4,
            PayFrequency.ANNUALLY: 1,
        }[self]


class StatutoryMethod(str, Enum):
    """Calculation methods for statutory deduction templates."""

    PERCENTAGE = "percentage"
    PROGRESSIVE_BRACKET = "progressive_bracket"
    SALARY_BRACKET = "salary_bracket"
    FLAT_AMOUNT = "flat_amount"


class CalculationMethod(str, Enum):
    """Calculation methods for company templates and employee items."""

    FIXED_AMOUNT = "fixed_amount"
    PERCENTAGE_OF_SALARY = "percentage_of_salary"
    PERCENTAGE_OF_BASIC = "percentage_of_basic"
    FORMULA = "formula"
    MANUAL = "manual"


class TemplateType(str, Enum):
    """Company payroll template types."""

    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"
    EMPLOYER_CONTRIBUTION = "employer_contribution"


class MatchLogic(str, Enum):
    """How an employee match is derived from an employer contribution."""

    EQUAL = "equal"
    PERCENTAGE = "percentage"
    CUSTOM = "custom"


class PayrollItemKind(str, Enum):
    """Variants of an employee-specific payroll item."""

    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"
    BENEFIT = "benefit"
    STATUTORY = "statutory"
    GARNISHMENT = "garnishment"


class PayrollItemStatus(str, Enum):
    """Employee payroll item status values."""

    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class GarnishmentType(str, Enum):
    """Kinds of court or agency garnishment orders."""

    CHILD_SUPPORT = "child_support"
    TAX_LEVY = "tax_levy"
    STUDENT_LOAN = "student_loan"
    BANKRUPTCY = "bankruptcy"
    WAGE_GARNISHMENT = "wage_garnishment"
    OTHER = "other"


class LineType(str, Enum):
    """Pay line item types."""

    SALARY = "SALARY"
    ALLOWANCE = "ALLOWANCE"
    DEDUCTION = "DEDUCTION"
    STATUTORY = "STATUTORY"
    GARNISHMENT = "GARNISHMENT"
    EMPLOYER_CONTRIBUTION = "EMPLOYER_CONTRIBUTION"


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class Employee:
    """Employee record supplied by the caller's storage layer."""

    employee_id: UUID
    base_salary: Decimal
    hire_date: date | None
    company_id: UUID
    pay_frequency: PayFrequency = PayFrequency.MONTHLY
    jurisdiction_id: UUID | None = None
    department_id: UUID | None = None
    position_id: UUID | None = None
    employment_type: str | None = None
    name: str | None = None
    termination_date: date | None = None

    def years_of_service(self, as_of: date) -> int:
        """Whole years between hire date and as_of (0 if unknown or future)."""
        if self.hire_date is None or as_of < self.hire_date:
            return 0
        years = as_of.year - self.hire_date.year
        if (as_of.month, as_of.day) < (self.hire_date.month, self.hire_date.day):
            years -= 1
        return years

    @property
    def display_name(self) -> str:
        return self.name or str(self.employee_id)


@dataclass(frozen=True)
class TaxBracket:
    """Bracket for progressive or salary-band deductions."""

    min_amount: Decimal
    max_amount: Decimal | None  # None = no upper limit
    rate: Decimal = Decimal("0")  # As decimal, e.g., 0.20 for 20%
    amount: Decimal = Decimal("0")  # Fixed amount for salary_bracket


@dataclass(frozen=True)
class DeductionTemplate:
    """Statutory deduction rule for a tax jurisdiction.

    The rules payload is method specific:
    {
        "brackets": [{"min": 0, "max": 5000, "rate": 0.0}, ...],
        "rebates": {"primary": 1500},
        "apply_rebates": ["primary"],      // optional
        "amount": 25,                      // flat_amount
        "annualize": false                 // progressive_bracket
    }
    """

    template_id: UUID
    jurisdiction_id: UUID
    code: str
    name: str
    deduction_type: str
    calculation_method: StatutoryMethod
    rules: dict[str, Any] = field(default_factory=dict)
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

    def is_effective_at(self, as_of: date) -> bool:
        return self.is_active and _in_range(as_of, self.effective_from, self.effective_to)


@dataclass(frozen=True)
class CompanyDeductionConfiguration:
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

    @property
    def has_rate_override(self) -> bool:
        return self.employee_rate_override is not None or self.employer_rate_override is not None

    def is_effective_at(self, as_of: date) -> bool:
        return self.is_active and _in_range(as_of, self.effective_from, self.effective_to)


@dataclass(frozen=True)
class EligibilityRules:
    """Allow-lists and salary range restricting who a template applies to."""

    departments: frozenset[UUID] = frozenset()
    positions: frozenset[UUID] = frozenset()
    employment_types: frozenset[str] = frozenset()
    min_salary: Decimal | None = None
    max_salary: Decimal | None = None


@dataclass(frozen=True)
class CompanyPayrollTemplate:
    """Company-wide allowance, deduction or employer contribution."""

    template_id: UUID
    company_id: UUID
    code: str
    name: str
    template_type: TemplateType
    calculation_method: CalculationMethod
    default_amount: Decimal | None = None
    default_percentage: Decimal | None = None  # 0-100
    formula_expression: str | None = None
    minimum_amount: Decimal | None = None
    maximum_amount: Decimal | None = None
    eligibility: EligibilityRules = field(default_factory=EligibilityRules)
    is_active: bool = True
    is_taxable: bool = True
    effective_from: date | None = None
    effective_to: date | None = None

    # Employer contribution match
    has_employee_match: bool = False
    match_logic: MatchLogic | None = None
    employee_match_amount: Decimal | None = None
    employee_match_percentage: Decimal | None = None  # 0-100

    def is_effective_at(self, as_of: date) -> bool:
        return _in_range(as_of, self.effective_from, self.effective_to)


@dataclass(frozen=True)
class GarnishmentDetails:
    """Court-order data carried only by the garnishment variant."""

    garnishment_type: GarnishmentType
    priority_order: int | None = None
    maximum_percentage: Decimal | None = None  # 0-100
    total_amount_to_garnish: Decimal | None = None
    amount_garnished_to_date: Decimal = Decimal("0")
    court_order_number: str | None = None
    garnishment_authority: str | None = None
    legal_reference: str | None = None

    @property
    def remaining_total(self) -> Decimal | None:
        if self.total_amount_to_garnish is None:
            return None
        return max(Decimal("0"), self.total_amount_to_garnish - self.amount_garnished_to_date)

    @property
    def is_fully_garnished(self) -> bool:
        remaining = self.remaining_total
        return remaining is not None and remaining <= 0


@dataclass(frozen=True)
class EmployeePayrollItem:
    """Employee-specific payroll line.

    ``kind`` tags the variant; ``garnishment`` is set only when
    ``kind`` is GARNISHMENT.
    """

    item_id: UUID
    employee_id: UUID
    code: str
    name: str
    kind: PayrollItemKind
    calculation_method: CalculationMethod
    amount: Decimal | None = None
    percentage: Decimal | None = None  # 0-100
    formula_expression: str | None = None
    status: PayrollItemStatus = PayrollItemStatus.ACTIVE
    effective_from: date | None = None
    effective_to: date | None = None
    sequence: int = 0  # Creation order, used as a stable tie-break
    garnishment: GarnishmentDetails | None = None

    def is_effective_for(self, as_of: date) -> bool:
        return self.status == PayrollItemStatus.ACTIVE and _in_range(
            as_of, self.effective_from, self.effective_to
        )


def _in_range(as_of: date, start: date | None, end: date | None) -> bool:
    if start is not None and as_of < start:
        return False
    if end is not None and as_of > end:
        return False
    return True


# =============================================================================
# Outputs
# =============================================================================


@dataclass
class LineCandidate:
    """A calculated pay line before persistence."""

    line_type: LineType
    amount: Decimal  # Final amount (signed per conventions)
    code: str | None = None
    name: str | None = None

    # Employer side (employer contributions, statutory employer share)
    employer_amount: Decimal = Decimal("0")

    # Traceability
    source_id: UUID | None = None
    explanation: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "line_type": self.line_type.value,
            "code": self.code,
            "source_id": str(self.source_id) if self.source_id else None,
            "amount": str(self.amount),
            "employer_amount": str(self.employer_amount),
        }


@dataclass
class TemplateCalculation:
    """Employee/employer split for one statutory template."""

    employee_amount: Decimal
    employer_amount: Decimal
    trace: dict[str, Any] = field(default_factory=dict)
    employer_covers_employee_portion: bool = False
    is_taxable_if_employer_paid: bool = False
    original_employee_amount: Decimal | None = None


@dataclass
class StatutoryLine:
    """Statutory deduction result for one template."""

    template_id: UUID
    code: str
    name: str
    deduction_type: str
    employee_amount: Decimal
    employer_amount: Decimal
    paid_by: str  # 'employee' | 'employer'
    is_taxable: bool
    trace: dict[str, Any]


@dataclass
class StatutoryResult:
    """All statutory deductions for one employee."""

    total_employee_deductions: Decimal = Decimal("0")
    total_employer_contributions: Decimal = Decimal("0")
    deductions: list[StatutoryLine] = field(default_factory=list)
    taxable_benefits: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class ItemCalculation:
    """Computed amount for one company template or employee item."""

    source_id: UUID
    code: str
    name: str
    amount: Decimal
    applicable: bool = True
    employer_amount: Decimal = Decimal("0")
    employee_amount: Decimal = Decimal("0")
    details: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def total_amount(self) -> Decimal:
        return self.employer_amount + self.employee_amount


@dataclass
class AppliedGarnishment:
    """A garnishment taken from this period's disposable income."""

    item_id: UUID
    name: str
    garnishment_type: GarnishmentType
    amount: Decimal
    priority: int
    court_order_number: str | None
    authority: str | None
    garnished_to_date: Decimal  # Including this amount
    total_amount_to_garnish: Decimal | None
    completes_order: bool
    breakdown: dict[str, Any] = field(default_factory=dict)


@dataclass
class GarnishmentResult:
    """Outcome of running all garnishments against disposable income."""

    total_garnished: Decimal
    remaining_disposable_income: Decimal
    garnishments: list[AppliedGarnishment] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class CalculationOptions:
    """Per-call knobs for the payroll orchestrator."""

    # Manual company template amounts keyed by template code
    manual_amounts: dict[str, Decimal] = field(default_factory=dict)
    include_employer_paid_taxable_benefits: bool = False


@dataclass
class EmployeeCalculationContext:
    """Context for calculating a single employee's pay."""

    employee: Employee
    period_start: date
    period_end: date
    options: CalculationOptions = field(default_factory=CalculationOptions)

    # Will be populated during calculation
    gross: Decimal = Decimal("0")
    net: Decimal = Decimal("0")
    lines: list[LineCandidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def as_of_date(self) -> date:
        return self.period_start

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


@dataclass
class CalculationResult:
    """Result of calculating pay for one employee."""

    employee_id: UUID
    calculation_id: UUID
    period_start: date
    period_end: date
    basic_salary: Decimal
    gross_salary: Decimal
    total_allowances: Decimal
    total_voluntary_deductions: Decimal
    total_statutory_deductions: Decimal
    total_garnishments: Decimal
    total_employer_contributions: Decimal
    total_deductions: Decimal
    disposable_income: Decimal
    net_salary: Decimal
    lines: list[LineCandidate]
    statutory: StatutoryResult
    garnishments: GarnishmentResult
    errors: list[str]
    inputs_fingerprint: str

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def lines_of(self, line_type: LineType) -> list[LineCandidate]:
        return [line for line in self.lines if line.line_type == line_type]


@dataclass
class BatchSummary:
    """Totals across a batch payroll run."""

    total_employees: int = 0
    successful_calculations: int = 0
    failed_calculations: int = 0
    skipped_employees: int = 0
    total_gross_salary: Decimal = Decimal("0")
    total_net_salary: Decimal = Decimal("0")
    total_statutory_deductions: Decimal = Decimal("0")
    total_employer_contributions: Decimal = Decimal("0")
    total_garnishments: Decimal = Decimal("0")


@dataclass
class BatchError:
    """Errors recorded against one employee in a batch."""

    employee_id: UUID
    employee_name: str
    errors: list[str]
    fatal: bool
    result: CalculationResult | None = None  # Also in BatchResult.results when not fatal


@dataclass
class BatchResult:
    """Result of calculating a batch of employees."""

    period_start: date
    period_end: date
    summary: BatchSummary
    results: dict[UUID, CalculationResult]  # employee_id -> result
    errors: list[BatchError] = field(default_factory=list)
    cancelled: bool = False
