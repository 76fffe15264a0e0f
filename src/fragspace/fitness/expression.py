"""Minimal arithmetic expressions over named variables.

Grammar::

    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := ('+' | '-') factor | NUMBER | NAME | '(' expr ')'

An expression may be wrapped in ``${...}``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from ..errors import ConfigurationError, DescriptorResolutionError


class ExpressionSyntaxError(ConfigurationError):
    pass


_TOKEN_RE = re.compile(
    r"\s*(?:(?P<num>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)|(?P<name>[A-Za-z_][A-Za-z0-9_]*)|(?P<op>[-+*/()]))"
)

Resolver = Mapping[str, float] | Callable[[str], float]


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    pos: int


def tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    end = len(text.rstrip())
    while pos < end:
        m = _TOKEN_RE.match(text, pos)
        if m is None or m.end() == pos:
            raise ExpressionSyntaxError(f"Unexpected character at {pos} in '{text}'")
        kind = m.lastgroup
        tokens.append(_Token(kind, m.group(kind), m.start(kind)))
        pos = m.end()
    return tokens


# AST nodes are plain tuples: ("num", value), ("var", name), ("neg", node),
# (op, left, right) with op in "+-*/".
Node = tuple


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.i = 0

    def _peek(self) -> _Token | None:
        return self.tokens[self.i] if self.i < len(self.tokens) else None

    def _take(self) -> _Token:
        tok = self._peek()
        if tok is None:
            raise ExpressionSyntaxError(f"Unexpected end of expression '{self.text}'")
        self.i += 1
        return tok

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionSyntaxError("Empty expression")
        node = self._expr()
        tok = self._peek()
        if tok is not None:
            raise ExpressionSyntaxError(f"Unexpected '{tok.text}' at {tok.pos} in '{self.text}'")
        return node

    def _expr(self) -> Node:
        node = self._term()
        while (tok := self._peek()) is not None and tok.text in ("+", "-"):
            self.i += 1
            node = (tok.text, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._factor()
        while (tok := self._peek()) is not None and tok.text in ("*", "/"):
            self.i += 1
            node = (tok.text, node, self._factor())
        return node

    def _factor(self) -> Node:
        tok = self._take()
        if tok.text == "-":
            return ("neg", self._factor())
        if tok.text == "+":
            return self._factor()
        if tok.kind == "num":
            return ("num", float(tok.text))
        if tok.kind == "name":
            return ("var", tok.text)
        if tok.text == "(":
            node = self._expr()
            close = self._take()
            if close.text != ")":
                raise ExpressionSyntaxError(f"Expected ')' at {close.pos} in '{self.text}'")
            return node
        raise ExpressionSyntaxError(f"Unexpected '{tok.text}' at {tok.pos} in '{self.text}'")


def _divide(a: float, b: float) -> float:
    if b == 0.0:
        if a == 0.0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


class Expression:
    """Parsed arithmetic expression; evaluate against a mapping or a lookup callable."""

    def __init__(self, text: str, tree: Node) -> None:
        self.text = text
        self._tree = tree
        self.variables = frozenset(self._names(tree))

    @classmethod
    def parse(cls, text: str) -> Expression:
        body = text.strip()
        if body.startswith("${") and body.endswith("}"):
            body = body[2:-1]
        return cls(text, _Parser(body).parse())

    @staticmethod
    def _names(node: Node) -> set[str]:
        if node[0] == "var":
            return {node[1]}
        if node[0] == "num":
            return set()
        return set().union(*(Expression._names(child) for child in node[1:]))

    def evaluate(self, variables: Resolver) -> float:
        if callable(variables):
            lookup = variables
        else:

            def lookup(name: str) -> float:
                try:
                    return variables[name]
                except KeyError:
                    raise DescriptorResolutionError(name) from None

        return self._eval(self._tree, lookup)

    def _eval(self, node: Node, lookup: Callable[[str], float]) -> float:
        op = node[0]
        if op == "num":
            return node[1]
        if op == "var":
            return float(lookup(node[1]))
        if op == "neg":
            return -self._eval(node[1], lookup)
        a = self._eval(node[1], lookup)
        b = self._eval(node[2], lookup)
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        return _divide(a, b)

    def __repr__(self) -> str:
        return f"Expression({self.text!r})"
