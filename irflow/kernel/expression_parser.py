"""Safe expression parser for node ``condition`` expressions.

A DAG node may carry a ``condition`` such as
``"nodes.extract.status == 'completed' and nodes.extract.ir.pages > 0"``.
The engine compiles it once and evaluates it against the run context just
before the node would start; a false result skips the node.

Uses Python's AST module with a strict whitelist:
- comparisons: ==, !=, <, >, <=, >=, in, not in, is, is not
- boolean operators: and, or, not
- attribute access and subscripts for data extraction
- literals and simple arithmetic
- NO function calls, imports, or arbitrary code execution

Examples
--------
Basic usage::

    from irflow.kernel.expression_parser import compile_condition

    pred = compile_condition("config.mode == 'strict'")
    pred({"config": {"mode": "strict"}})  # True

    pred = compile_condition("nodes.ocr.ir.confidence >= 0.8")
    pred({"nodes": {"ocr": {"ir": {"confidence": 0.93}}}})  # True
"""

from __future__ import annotations

import ast
import operator
from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Any

from irflow.kernel.exceptions import IrflowError
from irflow.kernel.logging import get_logger

__all__ = ["ExpressionError", "compile_condition"]

logger = get_logger(__name__)

Predicate = Callable[[Mapping[str, Any]], bool]


class ExpressionError(IrflowError):
    """Raised when a condition expression is empty, malformed or unsafe."""

    code = "expression_error"

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Expression error in '{expression}': {reason}")


_COMPARE_OPS: dict[type[ast.cmpop], Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_UNARY_OPS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_BIN_OPS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_ALLOWED_NODES = (
    ast.Expression,
    ast.Compare,
    ast.BoolOp,
    ast.UnaryOp,
    ast.BinOp,
    ast.Attribute,
    ast.Subscript,
    ast.Name,
    ast.Constant,
    ast.Load,
    ast.Tuple,
    ast.List,
    ast.And,
    ast.Or,
    *_COMPARE_OPS,
    *_UNARY_OPS,
    *_BIN_OPS,
)


def _validate_ast(node: ast.AST, expression: str) -> None:
    """Reject any node outside the whitelist.

    Raises
    ------
    ExpressionError
        If the tree contains a call or any other disallowed construct
    """
    if isinstance(node, ast.Call):
        raise ExpressionError(expression, "Function calls are not allowed in conditions")
    if not isinstance(node, _ALLOWED_NODES):
        raise ExpressionError(expression, f"Disallowed expression type: {type(node).__name__}")
    for child in ast.iter_child_nodes(node):
        _validate_ast(child, expression)


def _lookup(current: Any, key: Any) -> Any:
    if current is None:
        return None
    if isinstance(current, Mapping):
        return current.get(key)
    if isinstance(current, (list, tuple)) and isinstance(key, int):
        return current[key] if -len(current) <= key < len(current) else None
    return None


def _evaluate(node: ast.AST, context: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        return context.get(node.id)

    if isinstance(node, ast.Attribute):
        return _lookup(_evaluate(node.value, context), node.attr)

    if isinstance(node, ast.Subscript):
        return _lookup(_evaluate(node.value, context), _evaluate(node.slice, context))

    if isinstance(node, ast.Compare):
        left = _evaluate(node.left, context)
        for op, comparator in zip(node.ops, node.comparators, strict=True):
            right = _evaluate(comparator, context)
            try:
                if not _COMPARE_OPS[type(op)](left, right):
                    return False
            except TypeError:
                # Comparisons against missing (None) values are simply false
                return False
            left = right
        return True

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            return all(_evaluate(v, context) for v in node.values)
        return any(_evaluate(v, context) for v in node.values)

    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand, context))

    if isinstance(node, ast.BinOp):
        return _BIN_OPS[type(node.op)](
            _evaluate(node.left, context), _evaluate(node.right, context)
        )

    if isinstance(node, ast.List):
        return [_evaluate(elt, context) for elt in node.elts]

    if isinstance(node, ast.Tuple):
        return tuple(_evaluate(elt, context) for elt in node.elts)

    raise ExpressionError(ast.unparse(node), f"Unsupported AST node: {type(node).__name__}")


@lru_cache(maxsize=256)
def compile_condition(expression: str) -> Predicate:
    """Compile a condition string into a safe predicate.

    Parameters
    ----------
    expression : str
        Expression such as ``"nodes.a.status == 'completed'"``

    Returns
    -------
    Callable[[Mapping[str, Any]], bool]
        Predicate evaluated against a context mapping; names that do not
        resolve evaluate to ``None``.

    Raises
    ------
    ExpressionError
        If the expression is empty, has a syntax error or uses a disallowed
        construct

    Examples
    --------
    >>> pred = compile_condition("run.origin in ['api', 'cli']")
    >>> pred({"run": {"origin": "cli"}})
    True
    """
    if not expression or not expression.strip():
        raise ExpressionError(expression, "Expression cannot be empty")

    expression = expression.strip()

    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(expression, f"Syntax error: {e.msg}") from e

    _validate_ast(tree, expression)

    def predicate(context: Mapping[str, Any]) -> bool:
        try:
            return bool(_evaluate(tree.body, context))
        except (ArithmeticError, TypeError, ValueError) as e:
            logger.warning("Condition '{}' evaluation failed: {}", expression, e)
            return False

    return predicate
