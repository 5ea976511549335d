"""
Glossary Formulas

Parses glossary definitions such as ``revenue / cost`` into a small
expression tree. A definition that is not an arithmetic expression over
identifiers (e.g. "Return on ad spend") is treated as prose and yields
``None``.

Grammar:
    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := '-' factor | NUMBER | NAME | AGG '(' (expr | '*') ')' | '(' expr ')'
"""

import re
from dataclasses import dataclass
from typing import Union

AGGREGATES = frozenset({"SUM", "AVG", "MIN", "MAX", "COUNT"})

_TOKEN = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d+)?)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?)"
    r"|(?P<op>[-+*/()]))"
)


@dataclass(frozen=True)
class Number:
    value: str


@dataclass(frozen=True)
class Column:
    name: str


@dataclass(frozen=True)
class Aggregate:
    function: str
    argument: Union["Expr", None]  # None means COUNT(*)


@dataclass(frozen=True)
class Negate:
    operand: "Expr"


@dataclass(frozen=True)
class BinaryOp:
    operator: str
    left: "Expr"
    right: "Expr"


Expr = Union[Number, Column, Aggregate, Negate, BinaryOp]


class _FormulaSyntaxError(Exception):
    pass


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens = []
    position = 0
    stripped = text.rstrip()
    while position < len(stripped):
        match = _TOKEN.match(stripped, position)
        if match is None or match.end() == position:
            raise _FormulaSyntaxError(f"Unexpected character at {position}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: list[tuple[str, str]]):
        self.tokens = tokens
        self.index = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def take(self, value: str | None = None) -> tuple[str, str]:
        token = self.peek()
        if token is None or (value is not None and token[1] != value):
            raise _FormulaSyntaxError(f"Expected {value or 'token'}")
        self.index += 1
        return token

    def parse(self) -> Expr:
        expr = self.expr()
        if self.peek() is not None:
            raise _FormulaSyntaxError("Trailing tokens")
        return expr

    def expr(self) -> Expr:
        node = self.term()
        while (token := self.peek()) and token[1] in ("+", "-"):
            self.take()
            node = BinaryOp(token[1], node, self.term())
        return node

    def term(self) -> Expr:
        node = self.factor()
        while (token := self.peek()) and token[1] in ("*", "/"):
            self.take()
            node = BinaryOp(token[1], node, self.factor())
        return node

    def factor(self) -> Expr:
        kind, value = self.take()
        if value == "-":
            return Negate(self.factor())
        if value == "(":
            node = self.expr()
            self.take(")")
            return node
        if kind == "number":
            return Number(value)
        if kind == "name":
            following = self.peek()
            if value.upper() in AGGREGATES and following and following[1] == "(":
                self.take("(")
                if value.upper() == "COUNT" and self.peek() and self.peek()[1] == "*":
                    self.take("*")
                    argument = None
                else:
                    argument = self.expr()
                self.take(")")
                return Aggregate(value.upper(), argument)
            return Column(value)
        raise _FormulaSyntaxError(f"Unexpected '{value}'")


def parse_formula(text: str) -> Expr | None:
    """Parse a glossary definition; return None when it is not a formula."""
    try:
        tokens = _tokenize(text)
        if not tokens:
            return None
        expr = _Parser(tokens).parse()
    except _FormulaSyntaxError:
        return None
    if not formula_columns(expr) and not _has_count_star(expr):
        return None
    return expr


def formula_columns(expr: Expr) -> list[str]:
    """Column names referenced by a formula, in order of appearance."""
    if isinstance(expr, Column):
        return [expr.name]
    if isinstance(expr, Aggregate):
        return formula_columns(expr.argument) if expr.argument is not None else []
    if isinstance(expr, Negate):
        return formula_columns(expr.operand)
    if isinstance(expr, BinaryOp):
        left = formula_columns(expr.left)
        return left + [c for c in formula_columns(expr.right) if c not in left]
    return []


def has_aggregate(expr: Expr) -> bool:
    if isinstance(expr, Aggregate):
        return True
    if isinstance(expr, Negate):
        return has_aggregate(expr.operand)
    if isinstance(expr, BinaryOp):
        return has_aggregate(expr.left) or has_aggregate(expr.right)
    return False


def _has_count_star(expr: Expr) -> bool:
    if isinstance(expr, Aggregate):
        return expr.argument is None
    if isinstance(expr, Negate):
        return _has_count_star(expr.operand)
    if isinstance(expr, BinaryOp):
        return _has_count_star(expr.left) or _has_count_star(expr.right)
    return False


_ALIAS_SANITIZER = re.compile(r"[^a-z0-9_]+")


def metric_alias(term: str) -> str:
    """Identifier-safe metric name for a glossary term ("Cost per Click" -> "cost_per_click")."""
    alias = _ALIAS_SANITIZER.sub("_", term.strip().lower()).strip("_")
    if not alias or alias[0].isdigit():
        alias = f"m_{alias}"
    return alias
