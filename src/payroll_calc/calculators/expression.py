"""Restricted arithmetic formula evaluation.

Formulas are plain arithmetic over numbers with named placeholders:

    "{basic_salary} * 0.05 + {years_of_service} * 100"

Placeholders are substituted with decimal text, the result is checked
against a character whitelist, then tokenized and parsed into a small
AST which is evaluated with Decimal arithmetic. There are no names,
calls or assignment in the grammar:

    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := ('+' | '-') factor | NUMBER | '(' expr ')'
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping, Union

from payroll_calc.calculators.errors import FormulaArithmeticError, UnsafeExpressionError

SAFE_EXPRESSION = re.compile(r"^[0-9+\-*/().\s]+$")
PLACEHOLDER = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")
TOKEN = re.compile(r"\s*(?:(\d+\.\d*|\.\d+|\d+)|(.))")


@dataclass(frozen=True)
class Number:
    value: Decimal


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: Node


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: Node
    right: Node


Node = Union[Number, UnaryOp, BinaryOp]


def substitute(expression: str, bindings: Mapping[str, Decimal | int]) -> str:
    """Replace bound {name} placeholders with their values as text.

    Unbound placeholders are left in place and fail the whitelist check.
    """

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in bindings:
            return match.group(0)
        return format(Decimal(str(bindings[name])), "f")

    return PLACEHOLDER.sub(replace, expression)


def tokenize(expression: str) -> list[str]:
    """Split a whitelisted expression into number and operator tokens."""
    tokens: list[str] = []
    for number, op in TOKEN.findall(expression):
        if number:
            tokens.append(number)
        elif op.strip():
            tokens.append(op)
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, tokens: list[str], expression: str):
        self.tokens = tokens
        self.expression = expression
        self.pos = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise FormulaArithmeticError(self.expression, "empty expression")
        node = self._expr()
        if self.pos != len(self.tokens):
            raise FormulaArithmeticError(
                self.expression, f"unexpected token {self.tokens[self.pos]!r}"
            )
        return node

    def _peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> str:
        token = self._peek()
        if token is None:
            raise FormulaArithmeticError(self.expression, "unexpected end of expression")
        self.pos += 1
        return token

    def _expr(self) -> Node:
        node = self._term()
        while self._peek() in ("+", "-"):
            op = self._take()
            node = BinaryOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._factor()
        while self._peek() in ("*", "/"):
            op = self._take()
            node = BinaryOp(op, node, self._factor())
        return node

    def _factor(self) -> Node:
        token = self._take()
        if token in ("+", "-"):
            return UnaryOp(token, self._factor())
        if token == "(":
            node = self._expr()
            if self._take() != ")":
                raise FormulaArithmeticError(self.expression, "unbalanced parentheses")
            return node
        try:
            return Number(Decimal(token))
        except InvalidOperation:
            raise FormulaArithmeticError(self.expression, f"unexpected token {token!r}") from None


def parse(expression: str) -> Node:
    """Parse a whitelisted expression into an AST."""
    return _Parser(tokenize(expression), expression).parse()


def evaluate_node(node: Node, expression: str = "") -> Decimal:
    """Evaluate an AST node with Decimal arithmetic."""
    if isinstance(node, Number):
        return node.value
    if isinstance(node, UnaryOp):
        value = evaluate_node(node.operand, expression)
        return -value if node.op == "-" else value

    left = evaluate_node(node.left, expression)
    right = evaluate_node(node.right, expression)
    if node.op == "+":
        return left + right
    if node.op == "-":
        return left - right
    if node.op == "*":
        return left * right
    if right == 0:
        raise FormulaArithmeticError(expression, "division by zero")
    return left / right


def evaluate(expression: str, bindings: Mapping[str, Decimal | int] | None = None) -> Decimal:
    """Evaluate a formula with placeholder bindings.

    Raises:
        UnsafeExpressionError: If the substituted text has characters
            outside digits, ``+ - * / ( ) .`` and whitespace.
        FormulaArithmeticError: On division by zero or malformed syntax.
    """
    substituted = substitute(expression, bindings or {})
    if not SAFE_EXPRESSION.match(substituted):
        raise UnsafeExpressionError(substituted)
    return evaluate_node(parse(substituted), substituted)
