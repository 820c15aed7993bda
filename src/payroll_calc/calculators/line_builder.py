"""Line item builder with idempotent hashing."""

from __future__ import annotations

import hashlib
import json
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from payroll_calc.calculators.types import LineCandidate, LineType


class LineItemBuilder:
    """Builds line items with deterministic hashing for idempotency.

    Sign conventions (non-negotiable):
    - SALARY: positive
    - ALLOWANCE: positive
    - DEDUCTION (voluntary): negative
    - STATUTORY (employee share): negative
    - GARNISHMENT: negative
    - EMPLOYER_CONTRIBUTION: positive (cost to company, not in net)

    Rounding:
    - Currency to 2 decimals, half away from zero
    - Rates to 4 decimals
    """

    RATE_PRECISION = Decimal("0.0001")  # 4 decimal places for rates
    OUTPUT_PRECISION = Decimal("0.01")  # 2 decimal places for currency

    NET_EXCLUDED = frozenset({LineType.EMPLOYER_CONTRIBUTION})
    POSITIVE_TYPES = frozenset({LineType.SALARY, LineType.ALLOWANCE, LineType.EMPLOYER_CONTRIBUTION})
    NEGATIVE_TYPES = frozenset({LineType.DEDUCTION, LineType.STATUTORY, LineType.GARNISHMENT})

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places (cents)."""
        return amount.quantize(LineItemBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def round_rate(rate: Decimal) -> Decimal:
        """Round a rate to 4 decimal places."""
        return rate.quantize(LineItemBuilder.RATE_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def compute_line_hash(line: LineCandidate) -> str:
        """Compute deterministic hash for a line item."""
        canonical = line.to_canonical_dict()
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def create_salary_line(
        amount: Decimal,
        employee_id: UUID,
        explanation: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> LineCandidate:
        """Create the gross salary line (positive amount)."""
        return LineCandidate(
            line_type=LineType.SALARY,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            code="SALARY",
            name="Basic salary",
            source_id=employee_id,
            explanation=explanation,
            details=details or {},
        )

    @staticmethod
    def create_allowance_line(
        code: str,
        name: str,
        amount: Decimal,
        source_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> LineCandidate:
        """Create an allowance line item (positive amount)."""
        return LineCandidate(
            line_type=LineType.ALLOWANCE,
            amount=LineItemBuilder.round_to_cents(abs(amount)),  # Ensure positive
            code=code,
            name=name,
            source_id=source_id,
            explanation=f"{code}: {name}",
            details=details or {},
        )

    @staticmethod
    def create_deduction_line(
        code: str,
        name: str,
        amount: Decimal,
        source_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> LineCandidate:
        """Create a voluntary deduction line item (negative amount)."""
        return LineCandidate(
            line_type=LineType.DEDUCTION,
            amount=-LineItemBuilder.round_to_cents(abs(amount)),  # Ensure negative
            code=code,
            name=name,
            source_id=source_id,
            explanation=f"{code}: {name}",
            details=details or {},
        )

    @staticmethod
    def create_statutory_line(
        code: str,
        name: str,
        employee_amount: Decimal,
        employer_amount: Decimal,
        source_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> LineCandidate:
        """Create a statutory deduction line (employee share negative)."""
        return LineCandidate(
            line_type=LineType.STATUTORY,
            amount=-LineItemBuilder.round_to_cents(abs(employee_amount)),  # Ensure negative
            employer_amount=LineItemBuilder.round_to_cents(abs(employer_amount)),
            code=code,
            name=name,
            source_id=source_id,
            explanation=f"Statutory {code}",
            details=details or {},
        )

    @staticmethod
    def create_garnishment_line(
        code: str,
        name: str,
        amount: Decimal,
        source_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> LineCandidate:
        """Create a garnishment line item (negative amount)."""
        return LineCandidate(
            line_type=LineType.GARNISHMENT,
            amount=-LineItemBuilder.round_to_cents(abs(amount)),  # Ensure negative
            code=code,
            name=name,
            source_id=source_id,
            explanation=f"Garnishment: {name}",
            details=details or {},
        )

    @staticmethod
    def create_employer_contribution_line(
        code: str,
        name: str,
        employer_amount: Decimal,
        employee_amount: Decimal = Decimal("0"),
        source_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> LineCandidate:
        """Create an employer contribution line (positive, liability only).

        The employee match, if any, is carried as a separate DEDUCTION line
        by the caller; ``employee_amount`` here is informational.
        """
        return LineCandidate(
            line_type=LineType.EMPLOYER_CONTRIBUTION,
            amount=LineItemBuilder.round_to_cents(abs(employer_amount)),  # Ensure positive
            employer_amount=LineItemBuilder.round_to_cents(abs(employer_amount)),
            code=code,
            name=name,
            source_id=source_id,
            explanation=f"Employer contribution {code}",
            details={**(details or {}), "employee_match": str(employee_amount)},
        )

    @staticmethod
    def calculate_net_from_lines(lines: list[LineCandidate]) -> Decimal:
        """Calculate net pay from line items.

        NET = Σ(SALARY) + Σ(ALLOWANCE) + Σ(DEDUCTION) + Σ(STATUTORY) + Σ(GARNISHMENT)

        Note: EMPLOYER_CONTRIBUTION is excluded from net (it's a company cost).
        """
        net = Decimal("0")
        for line in lines:
            if line.line_type not in LineItemBuilder.NET_EXCLUDED:
                net += line.amount
        return LineItemBuilder.round_to_cents(net)

    @staticmethod
    def calculate_gross_from_lines(lines: list[LineCandidate]) -> Decimal:
        """Calculate gross salary from line items (SALARY lines only)."""
        gross = Decimal("0")
        for line in lines:
            if line.line_type == LineType.SALARY:
                gross += line.amount
        return LineItemBuilder.round_to_cents(gross)

    @staticmethod
    def validate_line_signs(lines: list[LineCandidate]) -> list[str]:
        """Validate that all line items have correct signs.

        Returns list of error messages (empty if all valid).
        """
        errors: list[str] = []

        for i, line in enumerate(lines):
            if line.line_type in LineItemBuilder.POSITIVE_TYPES:
                if line.amount < 0:
                    errors.append(
                        f"Line {i} ({line.line_type.value}) has negative amount {line.amount}, expected positive"
                    )
            elif line.line_type in LineItemBuilder.NEGATIVE_TYPES:
                if line.amount > 0:
                    errors.append(
                        f"Line {i} ({line.line_type.value}) has positive amount {line.amount}, expected negative"
                    )

        return errors

    @staticmethod
    def sum_by_type(lines: list[LineCandidate]) -> dict[LineType, Decimal]:
        """Sum absolute line amounts by type."""
        totals: dict[LineType, Decimal] = {lt: Decimal("0") for lt in LineType}
        for line in lines:
            totals[line.line_type] += abs(line.amount)
        return totals
