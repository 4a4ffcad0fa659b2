# conditions.py
"""
Conditions over matrix axis bindings.

A condition is a small, introspectable predicate: it can report which axes it
reads (so a definition can be rejected at load time when it names an axis the
job does not declare) and it can be evaluated against a concrete binding.

Two ways to build one:

    axis("rust") == "nightly"
    parse_condition("matrix.rust == 'nightly' && matrix.os != 'windows'")
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .errors import InvalidDefinition


def _text(value: Any) -> str:
    # YAML booleans are spelled true/false in `if:` expressions
    return str(value).lower() if isinstance(value, bool) else str(value)


def _same(a: Any, b: Any) -> bool:
    # YAML and the DSL disagree on scalar types ("1.70" vs 1.7); compare loosely
    return a == b or _text(a) == _text(b)


class Condition:
    """Base class. Subclasses implement axes() and evaluate()."""

    def axes(self) -> frozenset[str]:
        raise NotImplementedError

    def evaluate(self, binding: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    def __and__(self, other: "Condition") -> "Condition":
        return AllOf((self, other))

    def __or__(self, other: "Condition") -> "Condition":
        return AnyOf((self, other))

    def __invert__(self) -> "Condition":
        return Not(self)


@dataclass(frozen=True)
class AxisEquals(Condition):
    axis: str
    value: Any

    def axes(self) -> frozenset[str]:
        return frozenset([self.axis])

    def evaluate(self, binding: Mapping[str, Any]) -> bool:
        return self.axis in binding and _same(binding[self.axis], self.value)

    def __str__(self) -> str:
        return f"matrix.{self.axis} == {self.value!r}"


@dataclass(frozen=True)
class AxisNotEquals(Condition):
    axis: str
    value: Any

    def axes(self) -> frozenset[str]:
        return frozenset([self.axis])

    def evaluate(self, binding: Mapping[str, Any]) -> bool:
        return not (self.axis in binding and _same(binding[self.axis], self.value))

    def __str__(self) -> str:
        return f"matrix.{self.axis} != {self.value!r}"


@dataclass(frozen=True)
class AxisIn(Condition):
    axis: str
    values: Tuple[Any, ...]

    def axes(self) -> frozenset[str]:
        return frozenset([self.axis])

    def evaluate(self, binding: Mapping[str, Any]) -> bool:
        if self.axis not in binding:
            return False
        return any(_same(binding[self.axis], v) for v in self.values)

    def __str__(self) -> str:
        return f"matrix.{self.axis} in {list(self.values)!r}"


@dataclass(frozen=True)
class AllOf(Condition):
    conditions: Tuple[Condition, ...]

    def axes(self) -> frozenset[str]:
        return frozenset().union(*(c.axes() for c in self.conditions))

    def evaluate(self, binding: Mapping[str, Any]) -> bool:
        return all(c.evaluate(binding) for c in self.conditions)

    def __str__(self) -> str:
        return "(" + " && ".join(str(c) for c in self.conditions) + ")"


@dataclass(frozen=True)
class AnyOf(Condition):
    conditions: Tuple[Condition, ...]

    def axes(self) -> frozenset[str]:
        return frozenset().union(*(c.axes() for c in self.conditions))

    def evaluate(self, binding: Mapping[str, Any]) -> bool:
        return any(c.evaluate(binding) for c in self.conditions)

    def __str__(self) -> str:
        return "(" + " || ".join(str(c) for c in self.conditions) + ")"


@dataclass(frozen=True)
class Not(Condition):
    condition: Condition

    def axes(self) -> frozenset[str]:
        return self.condition.axes()

    def evaluate(self, binding: Mapping[str, Any]) -> bool:
        return not self.condition.evaluate(binding)

    def __str__(self) -> str:
        return f"!{self.condition}"


def evaluate(condition: Optional[Condition], binding: Mapping[str, Any]) -> bool:
    """Absent condition means 'always run'."""
    if condition is None:
        return True
    return condition.evaluate(binding)


def validate_axes(condition: Optional[Condition], declared: Iterable[str], *, job: str) -> None:
    """Raise InvalidDefinition if the condition reads an axis the job does not declare."""
    if condition is None:
        return
    unknown = sorted(condition.axes() - set(declared))
    if unknown:
        raise InvalidDefinition(
            f"condition references undeclared axis: {', '.join(unknown)}",
            job=job,
            details={"condition": str(condition), "declared": sorted(declared)},
        )


# ---------------------------------------------------------------------
# DSL sugar
# ---------------------------------------------------------------------

class AxisRef:
    """
    Example:
        job("bench", sh(...), axes={"rust": [...]}, when=axis("rust") == "nightly")
    """
    def __init__(self, name: str):
        self.name = name

    def __eq__(self, value: Any) -> Condition:  # type: ignore[override]
        return AxisEquals(self.name, value)

    def __ne__(self, value: Any) -> Condition:  # type: ignore[override]
        return AxisNotEquals(self.name, value)

    def isin(self, values: Iterable[Any]) -> Condition:
        return AxisIn(self.name, tuple(values))

    __hash__ = None  # type: ignore[assignment]


def axis(name: str) -> AxisRef:
    return AxisRef(name)


# ---------------------------------------------------------------------
# Expression parser (the `if:` form used in CI documents)
# ---------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<op>==|!=|&&|\|\||!|\(|\))
      | (?P<str>'[^']*'|"[^"]*")
      | (?P<word>[A-Za-z0-9_.\-+]+)
    )
    """,
    re.VERBOSE,
)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise InvalidDefinition(
                f"cannot parse condition at offset {pos}",
                details={"condition": text},
            )
        pos = m.end()
        if m.group("op"):
            tokens.append(("op", m.group("op")))
        elif m.group("str") is not None:
            tokens.append(("lit", m.group("str")[1:-1]))
        else:
            tokens.append(("word", m.group("word")))
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _error(self, message: str) -> InvalidDefinition:
        return InvalidDefinition(message, details={"condition": self.text})

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, op: str) -> bool:
        tok = self._peek()
        if tok == ("op", op):
            self.pos += 1
            return True
        return False

    def parse(self) -> Condition:
        if not self.tokens:
            raise self._error("empty condition")
        cond = self._or()
        if self._peek() is not None:
            raise self._error(f"unexpected token {self._peek()[1]!r}")
        return cond

    def _or(self) -> Condition:
        parts = [self._and()]
        while self._accept("||"):
            parts.append(self._and())
        return parts[0] if len(parts) == 1 else AnyOf(tuple(parts))

    def _and(self) -> Condition:
        parts = [self._unary()]
        while self._accept("&&"):
            parts.append(self._unary())
        return parts[0] if len(parts) == 1 else AllOf(tuple(parts))

    def _unary(self) -> Condition:
        if self._accept("!"):
            return Not(self._unary())
        if self._accept("("):
            inner = self._or()
            if not self._accept(")"):
                raise self._error("missing ')'")
            return inner
        return self._comparison()

    def _operand(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None or tok[0] == "op":
            raise self._error("expected an axis reference or a value")
        self.pos += 1
        kind, text = tok
        if kind == "word" and text.startswith("matrix."):
            return "axis", text[len("matrix."):]
        return "value", text

    def _comparison(self) -> Condition:
        left = self._operand()
        tok = self._peek()
        if tok not in (("op", "=="), ("op", "!=")):
            raise self._error("expected '==' or '!=' after operand")
        self.pos += 1
        right = self._operand()

        if left[0] == "axis" and right[0] == "value":
            name, value = left[1], right[1]
        elif left[0] == "value" and right[0] == "axis":
            name, value = right[1], left[1]
        else:
            raise self._error("a comparison needs exactly one 'matrix.<axis>' side")
        if not name:
            raise self._error("empty axis name")

        if tok[1] == "==":
            return AxisEquals(name, value)
        return AxisNotEquals(name, value)


def parse_condition(text: str) -> Condition:
    """
    Parse a CI-document condition such as "matrix.rust == 'nightly'".

    A surrounding "${{ ... }}" is accepted and stripped.
    Raises InvalidDefinition on malformed input.
    """
    expr = text.strip()
    if expr.startswith("${{") and expr.endswith("}}"):
        expr = expr[3:-2].strip()
    return _Parser(expr).parse()
