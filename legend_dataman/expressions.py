"""Compile small boolean/arithmetic expressions into predicates over named fields.

Two syntaxes are supported:

* `python`: `abs(x) < 3 and not isnan(e_cal)`
* `legacy`: `(abs(x) < 3) & ~isnan(e_cal)`, where `&`, `|` and `~`
  are the logical operators

Only a small set of operations is allowed and expressions are evaluated
elementwise with numpy, so a predicate works on a single row of scalars
as well as on whole columns.
"""
from __future__ import annotations

import ast
import operator
from functools import lru_cache, reduce
from typing import Any, Callable, Dict, List, Mapping, Type

import numpy as np

from .errors import PropertyNotFoundError


SYNTAXES = ("python", "legacy")

FUNCTIONS: Dict[str, Callable] = {
    "abs": np.abs,
    "sqrt": np.sqrt,
    "exp": np.exp,
    "log": np.log,
    "log10": np.log10,
    "isnan": np.isnan,
    "isinf": np.isinf,
    "isfinite": np.isfinite,
    "min": np.minimum,
    "max": np.maximum,
}
"""Functions that can be called in expressions."""

_BINOPS: Dict[Type[ast.operator], Callable] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_LOGICAL_BINOPS: Dict[Type[ast.operator], Callable] = {
    ast.BitAnd: np.logical_and,
    ast.BitOr: np.logical_or,
}

_CMPOPS: Dict[Type[ast.cmpop], Callable] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping) or hasattr(obj, "dtype"):
        try:
            return obj[name]
        except (KeyError, ValueError) as e:
            raise PropertyNotFoundError(name) from e
    try:
        return getattr(obj, name)
    except AttributeError as e:
        raise PropertyNotFoundError(name) from e


class Predicate:
    """Compiled expression, call it with a mapping of field values."""

    def __init__(self, expr: str, syntax: str = "python"):
        if syntax not in SYNTAXES:
            raise ValueError(f"Unknown expression syntax: {syntax}")
        self.expr = expr
        self.syntax = syntax
        try:
            self._tree = ast.parse(expr.strip(), mode="eval").body
        except SyntaxError as e:
            raise ValueError(f"Invalid expression {expr!r}: {e.msg}") from e
        self._names: List[str] = []
        self._check(self._tree)

    def __repr__(self):
        return f"Predicate({self.expr!r}, syntax={self.syntax!r})"

    @property
    def fields(self) -> List[str]:
        """Names of the fields used by the expression."""
        return list(dict.fromkeys(self._names))

    def _unsupported(self, node: ast.AST, what: str = ""):
        what = what or type(node).__name__
        msg = f"Unsupported in {self.syntax} expression {self.expr!r}: {what}"
        return ValueError(msg)

    def _check(self, node: ast.AST):
        legacy = self.syntax == "legacy"
        if isinstance(node, ast.Constant):
            if not isinstance(node.value, (bool, int, float, str)):
                raise self._unsupported(node, repr(node.value))
        elif isinstance(node, ast.Name):
            if node.id not in FUNCTIONS:
                self._names.append(node.id)
        elif isinstance(node, ast.Attribute):
            if node.attr.startswith("_"):
                raise self._unsupported(node, f"private attribute {node.attr}")
            self._check(node.value)
        elif isinstance(node, ast.Subscript):
            self._check(node.value)
            self._check(node.slice)
        elif isinstance(node, ast.BoolOp):
            if legacy:
                raise self._unsupported(node, "'and'/'or' (use '&'/'|')")
            for v in node.values:
                self._check(v)
        elif isinstance(node, ast.BinOp):
            op = type(node.op)
            if op in _LOGICAL_BINOPS and not legacy:
                raise self._unsupported(node, "'&'/'|' (use 'and'/'or')")
            if op not in _BINOPS and op not in _LOGICAL_BINOPS:
                raise self._unsupported(node, op.__name__)
            self._check(node.left)
            self._check(node.right)
        elif isinstance(node, ast.UnaryOp):
            op = type(node.op)
            if op is ast.Not and legacy:
                raise self._unsupported(node, "'not' (use '~')")
            if op is ast.Invert and not legacy:
                raise self._unsupported(node, "'~' (use 'not')")
            self._check(node.operand)
        elif isinstance(node, ast.Compare):
            for op in node.ops:
                if type(op) not in _CMPOPS:
                    raise self._unsupported(node, type(op).__name__)
            self._check(node.left)
            for c in node.comparators:
                self._check(c)
        elif isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
                raise self._unsupported(node, ast.unparse(node.func))
            if node.keywords:
                raise self._unsupported(node, "keyword arguments")
            for a in node.args:
                self._check(a)
        elif isinstance(node, ast.IfExp):
            for n in (node.test, node.body, node.orelse):
                self._check(n)
        else:
            raise self._unsupported(node)

    def _eval(self, node: ast.AST, row: Any) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            return _field(row, node.id)
        if isinstance(node, ast.Attribute):
            return _field(self._eval(node.value, row), node.attr)
        if isinstance(node, ast.Subscript):
            return self._eval(node.value, row)[self._eval(node.slice, row)]
        if isinstance(node, ast.BoolOp):
            f = np.logical_and if isinstance(node.op, ast.And) else np.logical_or
            return reduce(f, (self._eval(v, row) for v in node.values))
        if isinstance(node, ast.BinOp):
            op = type(node.op)
            f = _BINOPS.get(op) or _LOGICAL_BINOPS[op]
            return f(self._eval(node.left, row), self._eval(node.right, row))
        if isinstance(node, ast.UnaryOp):
            val = self._eval(node.operand, row)
            if isinstance(node.op, (ast.Not, ast.Invert)):
                return np.logical_not(val)
            return operator.neg(val) if isinstance(node.op, ast.USub) else val
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, row)
            result = None
            for op, c in zip(node.ops, node.comparators):
                right = self._eval(c, row)
                r = _CMPOPS[type(op)](left, right)
                result = r if result is None else np.logical_and(result, r)
                left = right
            return result
        if isinstance(node, ast.Call):
            args = [self._eval(a, row) for a in node.args]
            return FUNCTIONS[node.func.id](*args)
        if isinstance(node, ast.IfExp):
            return np.where(
                self._eval(node.test, row),
                self._eval(node.body, row),
                self._eval(node.orelse, row),
            )
        raise self._unsupported(node)

    def __call__(self, row: Any) -> Any:
        return self._eval(self._tree, row)


@lru_cache(maxsize=None)
def compile_predicate(expr: str, syntax: str = "python") -> Predicate:
    """Compile an expression (compiled expressions are cached)."""
    return Predicate(expr, syntax)
