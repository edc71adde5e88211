"""Resolution formulas written as text over particle kinematics.

Formulas use the ROOT-like syntax found in detector descriptions, e.g.
`sqrt(0.01^2 * E + 0.005^2 * E^2)`, where `^` is exponentiation. The text is
parsed once with the `ast` module, checked against a whitelist of node types,
names and functions, and compiled into nested closures that are evaluated for
every particle.
"""

from __future__ import annotations

import ast
import math
import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from .errors import EvaluationError, ParseError
from .models import Kinematic

Evaluator = Callable[[Mapping[str, float]], float]

DEFAULT_VARIABLES: tuple[str, ...] = tuple(k.symbol for k in Kinematic)

# name -> (callable, min args, max args)
_FUNCTIONS: dict[str, tuple[Callable[..., float], int, int]] = {
    "sqrt": (math.sqrt, 1, 1),
    "sin": (math.sin, 1, 1),
    "cos": (math.cos, 1, 1),
    "tan": (math.tan, 1, 1),
    "asin": (math.asin, 1, 1),
    "acos": (math.acos, 1, 1),
    "atan": (math.atan, 1, 1),
    "atan2": (math.atan2, 2, 2),
    "exp": (math.exp, 1, 1),
    "log": (math.log, 1, 2),
    "log10": (math.log10, 1, 1),
    "abs": (abs, 1, 1),
    "pow": (math.pow, 2, 2),
    "min": (min, 2, 8),
    "max": (max, 2, 8),
}

_CONSTANTS: dict[str, float] = {"pi": math.pi}

_BINARY_OPS: dict[type, Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    # math.pow raises on negative bases with fractional exponents instead of
    # returning a complex number.
    ast.Pow: math.pow,
}

_UNARY_OPS: dict[type, Callable[[float], float]] = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


@dataclass(frozen=True)
class FormulaExpression:
    """Immutable, reusable arithmetic expression over named kinematic variables.

    `variables` lists the recognised symbols; any other name in `text` is a
    `ParseError`. `evaluate` raises `EvaluationError` only when the
    expression is mathematically undefined for the given inputs.
    """

    text: str
    variables: tuple[str, ...] = DEFAULT_VARIABLES
    used_variables: frozenset[str] = field(init=False, compare=False)
    _evaluator: Evaluator = field(init=False, repr=False, compare=False)
    _constant: float | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.text, str) or not self.text.strip():
            raise ParseError("Formula text must be a non-empty string.")
        object.__setattr__(self, "variables", tuple(self.variables))
        source = self.text.strip().replace("^", "**")
        try:
            tree = ast.parse(source, mode="eval")
        except SyntaxError as exc:
            raise ParseError(f"Cannot parse formula '{self.text}': {exc.msg}") from exc
        except (RecursionError, MemoryError) as exc:
            raise ParseError(f"Formula '{self.text[:40]}...' is nested too deeply.") from exc
        used: set[str] = set()
        try:
            evaluator = _compile(tree.body, frozenset(self.variables), used, self.text)
        except RecursionError as exc:
            raise ParseError(f"Formula '{self.text[:40]}...' is nested too deeply.") from exc
        object.__setattr__(self, "used_variables", frozenset(used))
        object.__setattr__(self, "_evaluator", evaluator)
        constant: float | None = None
        if not used:
            try:
                constant = self._run({})
            except EvaluationError:
                constant = None
        object.__setattr__(self, "_constant", constant)

    @property
    def is_constant(self) -> bool:
        return self._constant is not None

    @property
    def is_zero(self) -> bool:
        """True for expressions that are identically zero, such as `"0"`."""
        return self._constant == 0.0

    def evaluate(self, particle: Any) -> float:
        """Evaluate at a particle's kinematics (anything exposing `kinematic_values()`)."""
        if self._constant is not None:
            return self._constant
        return self._run(particle.kinematic_values())

    def evaluate_values(self, values: Mapping[str, float]) -> float:
        """Evaluate with explicit `{symbol: value}` inputs."""
        if self._constant is not None:
            return self._constant
        return self._run(values)

    def _run(self, values: Mapping[str, float]) -> float:
        try:
            result = float(self._evaluator(values))
        except KeyError as exc:
            raise EvaluationError(f"No value supplied for variable {exc} in '{self.text}'.") from exc
        except (ValueError, ZeroDivisionError, OverflowError) as exc:
            raise EvaluationError(f"Formula '{self.text}' is undefined: {exc}") from exc
        if not math.isfinite(result):
            raise EvaluationError(f"Formula '{self.text}' evaluated to {result}.")
        return result

    def __str__(self) -> str:
        return self.text


def as_formula(value: "FormulaExpression | str | float", variables: Iterable[str] = DEFAULT_VARIABLES) -> FormulaExpression:
    """Coerce text or a number into a `FormulaExpression`."""
    if isinstance(value, FormulaExpression):
        return value
    if isinstance(value, bool):
        raise ParseError(f"Formula must be text or a number, got {value!r}.")
    if isinstance(value, (int, float)):
        return FormulaExpression(repr(float(value)), tuple(variables))
    return FormulaExpression(value, tuple(variables))


def _compile(node: ast.AST, variables: frozenset[str], used: set[str], text: str) -> Evaluator:
    """Internal helper: turn one whitelisted AST node into a closure."""
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise ParseError(f"Unsupported literal {node.value!r} in formula '{text}'.")
        const = float(node.value)
        return lambda values: const
    if isinstance(node, ast.Name):
        name = node.id
        if name in variables:
            used.add(name)
            return lambda values: values[name]
        if name in _CONSTANTS:
            const = _CONSTANTS[name]
            return lambda values: const
        raise ParseError(f"Unknown symbol '{name}' in formula '{text}'.")
    if isinstance(node, ast.BinOp):
        op = _BINARY_OPS.get(type(node.op))
        if op is None:
            raise ParseError(f"Unsupported operator in formula '{text}'.")
        left = _compile(node.left, variables, used, text)
        right = _compile(node.right, variables, used, text)
        return lambda values: op(left(values), right(values))
    if isinstance(node, ast.UnaryOp):
        unary = _UNARY_OPS.get(type(node.op))
        if unary is None:
            raise ParseError(f"Unsupported operator in formula '{text}'.")
        operand = _compile(node.operand, variables, used, text)
        return lambda values: unary(operand(values))
    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
            raise ParseError(f"Unknown function in formula '{text}'.")
        if node.keywords:
            raise ParseError(f"Keyword arguments are not allowed in formula '{text}'.")
        func, min_args, max_args = _FUNCTIONS[node.func.id]
        if not min_args <= len(node.args) <= max_args:
            raise ParseError(
                f"Function '{node.func.id}' takes {min_args}..{max_args} arguments in formula '{text}'."
            )
        args = [_compile(arg, variables, used, text) for arg in node.args]
        return lambda values: func(*(arg(values) for arg in args))
    raise ParseError(f"Unsupported syntax '{type(node).__name__}' in formula '{text}'.")
