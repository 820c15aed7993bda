"""Calculation error hierarchy."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class PayrollCalculationError(Exception):
    """Base exception for all calculation errors."""


class ValidationError(PayrollCalculationError):
    """Raised when a payroll item is missing input its method requires."""

    def __init__(self, code: str, message: str):
        self.code = code
        super().__init__(f"{code}: {message}")


class UnsafeExpressionError(PayrollCalculationError):
    """Raised when a formula contains characters outside the whitelist."""

    def __init__(self, expression: str):
        self.expression = expression
        super().__init__(f"Unsafe formula expression: {expression!r}")


class FormulaArithmeticError(PayrollCalculationError, ArithmeticError):
    """Raised when a formula cannot be evaluated (division by zero, bad syntax)."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Cannot evaluate {expression!r}: {reason}")


class BracketDataError(PayrollCalculationError):
    """Raised when a template's bracket configuration is malformed."""

    def __init__(self, template_code: str, reason: str, brackets: Any = None):
        self.template_code = template_code
        self.reason = reason
        self.brackets = brackets
        super().__init__(f"Invalid brackets for template '{template_code}': {reason}")


class EmployeeNotFoundError(PayrollCalculationError):
    """Raised when the data source has no record for an employee."""

    def __init__(self, employee_id: UUID):
        self.employee_id = employee_id
        super().__init__(f"Employee {employee_id} not found")


class CounterNotFoundError(PayrollCalculationError):
    """Raised when a garnished-to-date counter has not been registered."""

    def __init__(self, item_id: UUID):
        self.item_id = item_id
        super().__init__(f"No garnishment counter registered for item {item_id}")
