"""Restricted arithmetic evaluator for FORMULA components.

Grammar:
    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/") unary)*
    unary   := ("+" | "-") unary | primary
    primary := NUMBER | IDENTIFIER | "(" expr ")"

Identifiers resolve against a caller-supplied scope only. There are no
function calls, attribute access or string values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation, localcontext
from typing import Mapping, Union

from salary_engine.calculators.errors import (
    FormulaEvaluationError,
    FormulaSyntaxError,
    UnknownIdentifierError,
)

BASIC_SALARY = "basicSalary"
MAX_DEPTH = 64
MAX_TOKENS = 512

_TOKEN_RE = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d*)?|\.\d+)|(?P<ident>[A-Za-z_][A-Za-z0-9_]*)|(?P<op>[-+*/()]))"
)


@dataclass(frozen=True)
class _Token:
    kind: str  # number, ident, op, end
    text: str
    position: int


# ===== AST =====


@dataclass(frozen=True)
class Number:
    value: Decimal


@dataclass(frozen=True)
class Name:
    identifier: str


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: Node


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: Node
    right: Node


Node = Union[Number, Name, UnaryOp, BinaryOp]


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    length = len(expression)
    while pos < length:
        if expression[pos:].strip() == "":
            break
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            offset = pos + (len(expression[pos:]) - len(expression[pos:].lstrip()))
            raise FormulaSyntaxError(
                expression, offset, f"Unexpected character {expression[offset]!r}"
            )
        kind = match.lastgroup or "op"
        tokens.append(_Token(kind, match.group(kind), match.start(kind)))
        pos = match.end()
    tokens.append(_Token("end", "", length))
    return tokens


class _Parser:
    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = _tokenize(expression)
        if len(self.tokens) - 1 > MAX_TOKENS:
            raise FormulaSyntaxError(
                expression,
                self.tokens[MAX_TOKENS].position,
                f"Formula is too long (more than {MAX_TOKENS} tokens)",
            )
        self.pos = 0
        self.depth = 0

    @property
    def current(self) -> _Token:
        return self.tokens[self.pos]

    def _error(self, message: str) -> FormulaSyntaxError:
        return FormulaSyntaxError(self.expression, self.current.position, message)

    def _advance(self) -> _Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def parse(self) -> Node:
        if self.current.kind == "end":
            raise self._error("Empty formula")
        node = self._expr()
        if self.current.kind != "end":
            raise self._error(f"Unexpected token {self.current.text!r}")
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self.current.kind == "op" and self.current.text in "+-":
            op = self._advance().text
            node = BinaryOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self.current.kind == "op" and self.current.text in "*/":
            op = self._advance().text
            node = BinaryOp(op, node, self._unary())
        return node

    def _unary(self) -> Node:
        if self.current.kind == "op" and self.current.text in "+-":
            op = self._advance().text
            self._enter()
            try:
                return UnaryOp(op, self._unary())
            finally:
                self.depth -= 1
        return self._primary()

    def _primary(self) -> Node:
        token = self.current
        if token.kind == "number":
            self._advance()
            return Number(Decimal(token.text))
        if token.kind == "ident":
            self._advance()
            if self.current.kind == "op" and self.current.text == "(":
                raise self._error(f"Function calls are not supported ({token.text})")
            return Name(token.text)
        if token.kind == "op" and token.text == "(":
            self._advance()
            self._enter()
            try:
                node = self._expr()
            finally:
                self.depth -= 1
            if not (self.current.kind == "op" and self.current.text == ")"):
                raise self._error("Expected ')'")
            self._advance()
            return node
        if token.kind == "end":
            raise self._error("Unexpected end of formula")
        raise self._error(f"Unexpected token {token.text!r}")

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise self._error("Formula is nested too deeply")


def _collect_identifiers(node: Node, into: set[str]) -> None:
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, Name):
            into.add(current.identifier)
        elif isinstance(current, UnaryOp):
            stack.append(current.operand)
        elif isinstance(current, BinaryOp):
            stack.append(current.left)
            stack.append(current.right)


def identifier_for(name: str) -> str:
    """Identifier form of a component name ("House Rent" -> "House_Rent")."""
    return re.sub(r"\W", "_", name.strip())


@dataclass(frozen=True)
class Formula:
    """A parsed formula, reusable across evaluations."""

    expression: str
    root: Node

    @classmethod
    def parse(cls, expression: str) -> Formula:
        """Parse an expression, raising FormulaSyntaxError on failure."""
        return cls(expression=expression, root=_Parser(expression).parse())

    @property
    def identifiers(self) -> frozenset[str]:
        names: set[str] = set()
        _collect_identifiers(self.root, names)
        return frozenset(names)

    def check_scope(self, names: set[str] | frozenset[str]) -> None:
        """Raise UnknownIdentifierError for the first name outside scope."""
        for identifier in sorted(self.identifiers):
            if identifier not in names:
                raise UnknownIdentifierError(identifier, self.expression)

    def evaluate(self, scope: Mapping[str, Decimal]) -> Decimal:
        """Evaluate against a scope of identifier -> value."""
        with localcontext() as ctx:
            ctx.prec = 28
            ctx.traps[DivisionByZero] = True
            ctx.traps[InvalidOperation] = True
            return self._eval(self.root, scope)

    def _eval(self, node: Node, scope: Mapping[str, Decimal]) -> Decimal:
        if isinstance(node, Number):
            return node.value
        if isinstance(node, Name):
            try:
                return scope[node.identifier]
            except KeyError:
                raise UnknownIdentifierError(node.identifier, self.expression) from None
        if isinstance(node, UnaryOp):
            value = self._eval(node.operand, scope)
            return -value if node.op == "-" else value

        left = self._eval(node.left, scope)
        right = self._eval(node.right, scope)
        if node.op == "+":
            return left + right
        if node.op == "-":
            return left - right
        if node.op == "*":
            return left * right
        try:
            return left / right
        except (DivisionByZero, InvalidOperation):
            raise FormulaEvaluationError(
                f"Division by zero in formula {self.expression!r}"
            ) from None


def evaluate_formula(expression: str, scope: Mapping[str, Decimal]) -> Decimal:
    """Parse and evaluate in one call."""
    return Formula.parse(expression).evaluate(scope)
