"""Tests for restricted formula evaluation."""

from decimal import Decimal

import pytest

from payroll_calc.calculators import expression
from payroll_calc.calculators.errors import FormulaArithmeticError, UnsafeExpressionError


class TestEvaluate:
    """Arithmetic over numbers and placeholders."""

    def test_operator_precedence(self):
        """Multiplication binds tighter than addition."""
        assert expression.evaluate("2 + 3 * 4") == Decimal("14")

    def test_parentheses(self):
        assert expression.evaluate("(2 + 3) * 4") == Decimal("20")

    def test_unary_minus(self):
        assert expression.evaluate("-(2 + 3)") == Decimal("-5")
        assert expression.evaluate("10 - -2") == Decimal("12")

    def test_decimal_literals(self):
        assert expression.evaluate("0.5 * .5") == Decimal("0.25")

    def test_left_associative_subtraction_and_division(self):
        assert expression.evaluate("10 - 4 - 3") == Decimal("3")
        assert expression.evaluate("100 / 5 / 2") == Decimal("10")

    def test_placeholders_are_substituted(self):
        """Bound placeholders are replaced with their decimal values."""
        result = expression.evaluate(
            "{basic_salary} * 0.05 + {years_of_service} * 100",
            {"basic_salary": Decimal("10000.00"), "years_of_service": 8},
        )
        assert result == Decimal("1300.0000")

    def test_division_by_zero(self):
        """Division by zero raises an arithmetic error, not ZeroDivisionError."""
        with pytest.raises(FormulaArithmeticError) as exc_info:
            expression.evaluate("{gross_salary} / 0", {"gross_salary": Decimal("100")})
        assert isinstance(exc_info.value, ArithmeticError)
        assert "division by zero" in str(exc_info.value)


class TestUnsafeExpressions:
    """Anything outside the arithmetic whitelist is rejected before parsing."""

    @pytest.mark.parametrize(
        "formula",
        [
            "{basic_salary} * 0.1; DROP TABLE employees",
            "__import__('os').system('ls')",
            "basic_salary * 2",
            "",
        ],
    )
    def test_rejected(self, formula):
        with pytest.raises(UnsafeExpressionError):
            expression.evaluate(formula, {"basic_salary": Decimal("1000")})

    def test_unbound_placeholder_rejected(self):
        """Placeholders without a binding stay in the text and fail the whitelist."""
        with pytest.raises(UnsafeExpressionError):
            expression.evaluate("{bonus} * 2", {"basic_salary": Decimal("1000")})


class TestMalformedSyntax:
    """Whitelisted text that does not parse."""

    @pytest.mark.parametrize("formula", ["2 +", "(2 + 3", "2 3", "2 ** 8", "()", "   ", "1..2"])
    def test_malformed(self, formula):
        with pytest.raises(FormulaArithmeticError):
            expression.evaluate(formula)


class TestSubstitute:
    def test_integer_binding(self):
        assert expression.substitute("{years_of_service} * 100", {"years_of_service": 8}) == "8 * 100"

    def test_decimal_binding_keeps_scale(self):
        assert expression.substitute("{x}", {"x": Decimal("1234.50")}) == "1234.50"

    def test_unbound_left_in_place(self):
        assert expression.substitute("{x} + {y}", {"x": 1}) == "1 + {y}"


class TestTokenize:
    def test_numbers_and_operators(self):
        assert expression.tokenize("12.5*(3 - .25)") == ["12.5", "*", "(", "3", "-", ".25", ")"]
