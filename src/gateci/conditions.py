# conditions.py
"""
Run conditions as data.

A condition is a small tree of predicates over the Trigger Context
(event kind, branch, ref) combined with AND / OR / NOT. Conditions are
validated when the workflow is loaded; `evaluate` is then pure and total.

Expression strings in the GitHub Actions style are parsed into the same tree:

    github.ref != 'refs/heads/staging'
    event_kind == 'push' && (branch == 'main' || matches(ref, 'refs/tags/v*'))
"""
from __future__ import annotations

import glob
import re
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, List, Tuple

from .errors import ConditionError

FIELDS = ("event_kind", "branch", "ref")

FIELD_ALIASES = {
    "event_kind": "event_kind",
    "branch": "branch",
    "ref": "ref",
    "github.event_name": "event_kind",
    "github.ref_name": "branch",
    "github.ref": "ref",
}

OPERATORS = ("==", "!=")


@dataclass(frozen=True)
class Always:
    value: bool = True


@dataclass(frozen=True)
class Compare:
    field: str
    op: str
    value: str


@dataclass(frozen=True)
class Match:
    """Glob match (fnmatch, case-sensitive) of a context field."""
    field: str
    pattern: str


@dataclass(frozen=True)
class AllOf:
    terms: Tuple[Any, ...]


@dataclass(frozen=True)
class AnyOf:
    terms: Tuple[Any, ...]


@dataclass(frozen=True)
class Not:
    term: Any


ALWAYS = Always(True)
NEVER = Always(False)


def all_of(*terms) -> AllOf:
    return AllOf(tuple(terms))


def any_of(*terms) -> AnyOf:
    return AnyOf(tuple(terms))


def evaluate(condition, context) -> bool:
    if isinstance(condition, Always):
        return condition.value
    if isinstance(condition, Compare):
        actual = getattr(context, condition.field)
        if condition.op == "==":
            return actual == condition.value
        return actual != condition.value
    if isinstance(condition, Match):
        return fnmatchcase(getattr(context, condition.field), condition.pattern)
    if isinstance(condition, AllOf):
        return all(evaluate(t, context) for t in condition.terms)
    if isinstance(condition, AnyOf):
        return any(evaluate(t, context) for t in condition.terms)
    if isinstance(condition, Not):
        return not evaluate(condition.term, context)
    # validate_condition rejects anything else before we get here
    raise ConditionError(f"Unknown condition node: {condition!r}")


def validate_condition(condition, job: str | None = None) -> None:
    """Reject nodes, fields and operators `evaluate` would not understand."""
    if isinstance(condition, Always):
        return
    if isinstance(condition, (Compare, Match)):
        if condition.field not in FIELDS:
            raise ConditionError(
                f"Condition references undefined context field {condition.field!r}",
                job=job,
                details={"known_fields": ", ".join(FIELDS)},
            )
        if isinstance(condition, Compare) and condition.op not in OPERATORS:
            raise ConditionError(f"Unsupported operator {condition.op!r}", job=job)
        operand = condition.value if isinstance(condition, Compare) else condition.pattern
        if not isinstance(operand, str):
            raise ConditionError(
                f"Condition on {condition.field!r} must compare against a string, got {operand!r}",
                job=job,
            )
        return
    if isinstance(condition, (AllOf, AnyOf)):
        if not condition.terms:
            raise ConditionError("Empty AND/OR condition", job=job)
        for t in condition.terms:
            validate_condition(t, job)
        return
    if isinstance(condition, Not):
        validate_condition(condition.term, job)
        return
    raise ConditionError(f"Not a condition: {condition!r}", job=job)


# ---------------------------------------------------------------------
# Expression parser
# ---------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<op>==|!=|&&|\|\||!|\(|\)|,)
      | '(?P<str>(?:[^']|'')*)'
      | (?P<name>[A-Za-z_][A-Za-z0-9_.\-]*)
    )
    """,
    re.VERBOSE,
)

_WRAPPER_RE = re.compile(r"^\s*\$\{\{(.*)\}\}\s*$", re.DOTALL)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ConditionError(
                f"Unexpected character in condition at offset {pos}",
                details={"expression": text},
            )
        if m.group("op") is not None:
            tokens.append(("op", m.group("op")))
        elif m.group("str") is not None:
            tokens.append(("str", m.group("str").replace("''", "'")))
        else:
            tokens.append(("name", m.group("name")))
        pos = m.end()
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def fail(self, message: str) -> ConditionError:
        return ConditionError(message, details={"expression": self.text})

    def peek(self) -> Tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> Tuple[str, str]:
        tok = self.peek()
        if tok is None:
            raise self.fail("Unexpected end of condition")
        self.pos += 1
        return tok

    def expect(self, kind: str, value: str | None = None) -> str:
        k, v = self.take()
        if k != kind or (value is not None and v != value):
            raise self.fail(f"Expected {value or kind}, got {v!r}")
        return v

    def parse(self):
        node = self.or_expr()
        if self.peek() is not None:
            raise self.fail(f"Unexpected token {self.peek()[1]!r}")
        return node

    def or_expr(self):
        terms = [self.and_expr()]
        while self.peek() == ("op", "||"):
            self.take()
            terms.append(self.and_expr())
        return terms[0] if len(terms) == 1 else AnyOf(tuple(terms))

    def and_expr(self):
        terms = [self.unary()]
        while self.peek() == ("op", "&&"):
            self.take()
            terms.append(self.unary())
        return terms[0] if len(terms) == 1 else AllOf(tuple(terms))

    def unary(self):
        if self.peek() == ("op", "!"):
            self.take()
            return Not(self.unary())
        return self.primary()

    def field(self) -> str:
        name = self.expect("name")
        if name not in FIELD_ALIASES:
            raise ConditionError(
                f"Condition references undefined context field {name!r}",
                details={"expression": self.text, "known_fields": ", ".join(FIELD_ALIASES)},
            )
        return FIELD_ALIASES[name]

    def primary(self):
        tok = self.peek()
        if tok == ("op", "("):
            self.take()
            node = self.or_expr()
            self.expect("op", ")")
            return node
        if tok is not None and tok[0] == "name":
            name = tok[1]
            if name in ("true", "false"):
                self.take()
                return Always(name == "true")
            if name in ("matches", "startsWith"):
                self.take()
                self.expect("op", "(")
                field = self.field()
                self.expect("op", ",")
                arg = self.expect("str")
                self.expect("op", ")")
                pattern = arg if name == "matches" else glob.escape(arg) + "*"
                return Match(field, pattern)
            field = self.field()
            op_tok = self.take()
            if op_tok[0] != "op" or op_tok[1] not in OPERATORS:
                raise self.fail(f"Expected == or != after {name}, got {op_tok[1]!r}")
            value = self.expect("str")
            return Compare(field, op_tok[1], value)
        raise self.fail(f"Unexpected token {tok[1]!r}" if tok else "Empty condition")


def parse_condition(text: str):
    """Parse an expression string into a validated condition tree."""
    m = _WRAPPER_RE.match(text)
    if m:
        text = m.group(1)
    node = _Parser(text.strip()).parse()
    validate_condition(node)
    return node


def as_condition(value, job: str | None = None):
    """Accept None, bool, an expression string or a condition node."""
    if value is None:
        return ALWAYS
    if isinstance(value, bool):
        return Always(value)
    if isinstance(value, str):
        try:
            return parse_condition(value)
        except ConditionError as e:
            e.job = job
            raise
    validate_condition(value, job)
    return value
