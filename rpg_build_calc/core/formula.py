"""
RPG Build Calculator - Formula Evaluator
========================================
Safe evaluation of the arithmetic formulas found in weapon, job and skill
tables.

Grammar (whitespace ignored, function names case-insensitive):

    expr     := term (('+' | '-') term)*
    term     := unary (('*' | '/') unary)*
    unary    := ('-' | '+') unary | power
    power    := primary ('^' unary)?
    primary  := NUMBER | PLACEHOLDER | NAME '(' args ')' | NAME | '(' expr ')'

NAME is a whole identifier including dotted segments, so ``UserPower``,
``Power`` and ``BaseDamage.Sword`` are distinct tokens and a short name can
never clobber part of a longer one. PLACEHOLDER is ``<Name>`` and is resolved
from the context with a default (``<Level>`` -> SkillLevel/Level or 1).

Formulas are parsed into an immutable tree and evaluated by walking it.
Nothing but arithmetic is ever executed.

Example:
    >>> evaluate_formula("round(WeaponAttackPower * 1.5)", {"WeaponAttackPower": 101})
    152.0
"""

import logging
import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from .stat_math import round_down, round_down_to, round_up, round_up_to, round_to

logger = logging.getLogger(__name__)

Number = Union[int, float]
Context = Mapping[str, Number]


class FormulaEvaluationError(ValueError):
    """A formula could not be reduced to a finite number."""

    def __init__(self, formula: str, reason: str = ""):
        message = f"Failed to evaluate formula: {formula!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.formula = formula
        self.reason = reason


# =============================================================================
# PLACEHOLDERS & FUNCTIONS
# =============================================================================

# placeholder -> (context keys tried in order, default)
PLACEHOLDER_SOURCES: Dict[str, Tuple[Tuple[str, ...], Number]] = {
    'Level': (('SkillLevel', 'Level'), 1),
    'AgilityFactor': (('Agility',), 0),
    'PowerFactor': (('Power',), 0),
    'MagicFactor': (('Magic',), 0),
}


def _round_call(fn: Callable[[float, int], float]) -> Callable[..., float]:
    def call(value: float, decimals: float = 0) -> float:
        return fn(value, int(decimals))
    return call


# name -> (callable, min args, max args or None for variadic)
FUNCTIONS: Dict[str, Tuple[Callable[..., float], int, Optional[int]]] = {
    'round': (_round_call(round_to), 1, 2),
    'roundup': (_round_call(round_up_to), 1, 2),
    'rounddown': (_round_call(round_down_to), 1, 2),
    'floor': (round_down, 1, 1),
    'ceil': (round_up, 1, 1),
    'max': (lambda *values: max(values), 1, None),
    'min': (lambda *values: min(values), 1, None),
    'abs': (abs, 1, 1),
    'sqrt': (math.sqrt, 1, 1),
    'pow': (math.pow, 2, 2),
    'ln': (math.log, 1, 1),
    'log': (math.log, 1, 1),
    'exp': (math.exp, 1, 1),
}


def resolve_placeholder(name: str, context: Context) -> Number:
    """Value substituted for ``<name>``."""
    if name in PLACEHOLDER_SOURCES:
        keys, default = PLACEHOLDER_SOURCES[name]
        for key in keys:
            value = context.get(key)
            if value:
                return value
        return default
    if name in context:
        return context[name]
    raise KeyError(name)


# =============================================================================
# SYNTAX TREE
# =============================================================================

class _EvalFailure(Exception):
    """Internal: carries a reason up to evaluate_formula()."""


@dataclass(frozen=True)
class Num:
    value: float

    def evaluate(self, context: Context) -> float:
        return self.value


@dataclass(frozen=True)
class Var:
    name: str

    def evaluate(self, context: Context) -> float:
        value = context.get(self.name)
        if value is None:
            raise _EvalFailure(f"unknown variable '{self.name}'")
        return value


@dataclass(frozen=True)
class Placeholder:
    name: str

    def evaluate(self, context: Context) -> float:
        try:
            return resolve_placeholder(self.name, context)
        except KeyError:
            raise _EvalFailure(f"unresolved placeholder '<{self.name}>'") from None


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: 'Node'

    def evaluate(self, context: Context) -> float:
        value = self.operand.evaluate(context)
        return -value if self.op == '-' else value


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: 'Node'
    right: 'Node'

    def evaluate(self, context: Context) -> float:
        a = self.left.evaluate(context)
        b = self.right.evaluate(context)
        if self.op == '+':
            return a + b
        if self.op == '-':
            return a - b
        if self.op == '*':
            return a * b
        if self.op == '/':
            if b == 0:
                raise _EvalFailure("division by zero")
            return a / b
        return math.pow(a, b)


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple['Node', ...]

    def evaluate(self, context: Context) -> float:
        fn, _, _ = FUNCTIONS[self.name]
        values = [arg.evaluate(context) for arg in self.args]
        try:
            return fn(*values)
        except (ValueError, OverflowError) as e:
            raise _EvalFailure(f"{self.name}() {e}") from e


Node = Union[Num, Var, Placeholder, UnaryOp, BinaryOp, Call]


# =============================================================================
# TOKENIZER & PARSER
# =============================================================================

_TOKEN_RE = re.compile(r"""
    (?P<ws>\s+)
  | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<placeholder><\s*[^\W\d]\w*\s*>)
  | (?P<name>[^\W\d]\w*(?:\.\w+)*)
  | (?P<op>[-+*/^(),])
""", re.VERBOSE)


def tokenize(formula: str) -> List[Tuple[str, str]]:
    """Split a formula into (kind, text) tokens. Rejects any other character."""
    tokens = []
    pos = 0
    while pos < len(formula):
        match = _TOKEN_RE.match(formula, pos)
        if not match:
            raise FormulaEvaluationError(formula, f"unexpected character {formula[pos]!r} at {pos}")
        kind = match.lastgroup
        if kind != 'ws':
            tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser over the token list."""

    def __init__(self, formula: str):
        self.formula = formula
        self.tokens = tokenize(formula)
        self.pos = 0

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _peek_text(self) -> Optional[str]:
        token = self._peek()
        return token[1] if token else None

    def _advance(self) -> Tuple[str, str]:
        token = self._peek()
        if token is None:
            self._fail("unexpected end of formula")
        self.pos += 1
        return token

    def _expect(self, text: str) -> None:
        kind, value = self._advance()
        if value != text:
            self._fail(f"expected {text!r}, found {value!r}")

    def _fail(self, reason: str):
        raise FormulaEvaluationError(self.formula, reason)

    def parse(self) -> Node:
        if not self.tokens:
            self._fail("empty formula")
        node = self._expr()
        if self._peek() is not None:
            self._fail(f"unexpected token {self._peek_text()!r}")
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self._peek_text() in ('+', '-'):
            op = self._advance()[1]
            node = BinaryOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self._peek_text() in ('*', '/'):
            op = self._advance()[1]
            node = BinaryOp(op, node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._peek_text() in ('-', '+'):
            op = self._advance()[1]
            return UnaryOp(op, self._unary())
        return self._power()

    def _power(self) -> Node:
        base = self._primary()
        if self._peek_text() == '^':
            self._advance()
            return BinaryOp('^', base, self._unary())
        return base

    def _primary(self) -> Node:
        kind, text = self._advance()
        if kind == 'number':
            return Num(float(text))
        if kind == 'placeholder':
            return Placeholder(text[1:-1].strip())
        if kind == 'name':
            if self._peek_text() == '(':
                return self._call(text)
            return Var(text)
        if text == '(':
            node = self._expr()
            self._expect(')')
            return node
        self._fail(f"unexpected token {text!r}")

    def _call(self, name: str) -> Node:
        key = name.lower()
        if key not in FUNCTIONS:
            self._fail(f"unknown function '{name}'")
        self._expect('(')
        args = []
        if self._peek_text() != ')':
            args.append(self._expr())
            while self._peek_text() == ',':
                self._advance()
                args.append(self._expr())
        self._expect(')')

        _, min_args, max_args = FUNCTIONS[key]
        if len(args) < min_args or (max_args is not None and len(args) > max_args):
            self._fail(f"{name}() takes {min_args}-{max_args or 'n'} arguments, got {len(args)}")
        return Call(key, tuple(args))


@lru_cache(maxsize=1024)
def parse_formula(formula: str) -> Node:
    """Parse ``formula`` into a syntax tree. Raises FormulaEvaluationError."""
    return _Parser(formula).parse()


def _walk(node: Node):
    yield node
    if isinstance(node, UnaryOp):
        yield from _walk(node.operand)
    elif isinstance(node, BinaryOp):
        yield from _walk(node.left)
        yield from _walk(node.right)
    elif isinstance(node, Call):
        for arg in node.args:
            yield from _walk(arg)


def formula_variables(formula: str) -> Set[str]:
    """Names of the variables a formula reads (placeholders excluded)."""
    return {node.name for node in _walk(parse_formula(formula)) if isinstance(node, Var)}


# =============================================================================
# EVALUATION
# =============================================================================

def evaluate_formula(formula: Union[str, Number], context: Optional[Context] = None) -> float:
    """
    Evaluate a formula string against a variable context.

    A plain number is returned unchanged, so table fields that hold either a
    literal or a formula can be passed straight through.

    Raises:
        FormulaEvaluationError: on invalid syntax, an unknown name, a math
            domain error or a non-finite result.
    """
    if isinstance(formula, bool):
        raise FormulaEvaluationError(str(formula), "not a formula")
    if isinstance(formula, (int, float)):
        return float(formula)
    if not isinstance(formula, str):
        raise FormulaEvaluationError(repr(formula), "not a formula")

    context = context or {}
    tree = parse_formula(formula.strip())
    try:
        result = tree.evaluate(context)
    except _EvalFailure as e:
        raise FormulaEvaluationError(formula, str(e)) from None
    except (ValueError, OverflowError, TypeError) as e:
        raise FormulaEvaluationError(formula, str(e)) from None

    if not isinstance(result, (int, float)) or not math.isfinite(result):
        raise FormulaEvaluationError(formula, f"non-finite result {result!r}")
    return float(result)


def try_evaluate_formula(
    formula: Union[str, Number, None],
    context: Optional[Context] = None,
    default: float = 0.0,
    label: str = "formula",
) -> float:
    """
    evaluate_formula() for non-critical values.

    Missing formulas and evaluation failures both yield ``default``; a
    failure is logged as a warning.
    """
    if formula is None or formula == "":
        return default
    try:
        return evaluate_formula(formula, context)
    except FormulaEvaluationError as e:
        logger.warning("%s fell back to %s: %s", label, default, e)
        return default
