"""Restricted expression evaluation for decision nodes.

Expressions are parsed with ``ast`` and walked by a small evaluator that
only knows literals, names, comparisons, boolean logic, basic arithmetic,
subscripts, dict attribute access and conditional expressions. Calls,
lambdas, comprehensions and everything else are rejected.

    input.score >= 10 and status != "failed"
    "urgent" in input.text
"""

from __future__ import annotations

import ast
import operator
from typing import Any, Callable, Dict, List, Mapping

MAX_EXPRESSION_LENGTH = 500

_COMPARE: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BINARY: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_UNARY: Dict[type, Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_NAMED_CONSTANTS = {"true": True, "false": False, "null": None, "none": None}

_FORBIDDEN = {
    ast.Call: "function calls are not allowed",
    ast.Lambda: "lambda expressions are not allowed",
    ast.ListComp: "comprehensions are not allowed",
    ast.SetComp: "comprehensions are not allowed",
    ast.DictComp: "comprehensions are not allowed",
    ast.GeneratorExp: "comprehensions are not allowed",
    ast.Await: "await expressions are not allowed",
    ast.Starred: "star expressions are not allowed",
    ast.NamedExpr: "assignment expressions are not allowed",
}


class ExpressionError(Exception):
    """Raised when an expression is invalid or cannot be evaluated."""


def _parse(expression: str) -> ast.Expression:
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError("expression cannot be empty")
    expression = expression.strip()
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError(
            f"expression too long ({len(expression)} chars, max {MAX_EXPRESSION_LENGTH})"
        )
    try:
        return ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"invalid syntax: {e.msg}") from e


def validate_expression(expression: str) -> List[str]:
    """Return problems with ``expression`` without evaluating it."""
    try:
        tree = _parse(expression)
    except ExpressionError as e:
        return [str(e)]
    problems = []
    for node in ast.walk(tree):
        reason = _FORBIDDEN.get(type(node))
        if reason and reason not in problems:
            problems.append(reason)
    return problems


def evaluate(expression: str, variables: Mapping[str, Any]) -> Any:
    """Evaluate ``expression`` against ``variables``.

    Raises:
        ExpressionError: If the expression is invalid or evaluation fails
    """
    tree = _parse(expression)
    try:
        return _Evaluator(variables).visit(tree.body)
    except ExpressionError:
        raise
    except Exception as e:
        raise ExpressionError(f"evaluation failed: {e}") from e


class _Evaluator:
    def __init__(self, variables: Mapping[str, Any]):
        self.variables = variables

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            reason = _FORBIDDEN.get(type(node), f"unsupported syntax: {type(node).__name__}")
            raise ExpressionError(reason)
        return method(node)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.variables:
            return self.variables[node.id]
        lowered = node.id.lower()
        if lowered in _NAMED_CONSTANTS:
            return _NAMED_CONSTANTS[lowered]
        raise ExpressionError(f"unknown variable '{node.id}'")

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not _COMPARE[type(op)](left, right):
                return False
            left = right
        return True

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        func = _UNARY.get(type(node.op))
        if func is None:
            raise ExpressionError(f"unsupported operator: {type(node.op).__name__}")
        return func(self.visit(node.operand))

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        func = _BINARY.get(type(node.op))
        if func is None:
            raise ExpressionError(f"unsupported operator: {type(node.op).__name__}")
        return func(self.visit(node.left), self.visit(node.right))

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        container = self.visit(node.value)
        key = self.visit(node.slice)
        try:
            return container[key]
        except (KeyError, IndexError, TypeError) as e:
            raise ExpressionError(f"cannot index with {key!r}: {e}") from e

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        container = self.visit(node.value)
        if not isinstance(container, Mapping):
            raise ExpressionError("attribute access is only supported on objects")
        if node.attr not in container:
            raise ExpressionError(f"key '{node.attr}' not found")
        return container[node.attr]

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_List(self, node: ast.List) -> List[Any]:
        return [self.visit(item) for item in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.visit(item) for item in node.elts)

    def visit_Dict(self, node: ast.Dict) -> Dict[Any, Any]:
        return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values)}
