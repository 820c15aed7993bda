"""Payroll calculation engine."""

from payroll_calc.calculators.engine import PayrollEngine
from payroll_calc.calculators.garnishments import GarnishmentEngine, apply_garnishment_result
from payroll_calc.calculators.line_builder import LineItemBuilder
from payroll_calc.calculators.statutory import (
    DeductionTemplateCalculator,
    StatutoryDeductionCalculator,
)
from payroll_calc.calculators.templates import TemplateCalculator
from payroll_calc.calculators.types import CalculationResult

__all__ = [
    "PayrollEngine",
    "CalculationResult",
    "DeductionTemplateCalculator",
    "GarnishmentEngine",
    "LineItemBuilder",
    "StatutoryDeductionCalculator",
    "TemplateCalculator",
    "apply_garnishment_result",
]
