# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Safe Condition Evaluator

Provides AST-based safe evaluation of edge conditions. Two forms are accepted:

- Expression strings written in the editor's syntax, e.g.
  "{context.cpf_valid} === true && {context.score} >= 7".
  Placeholders are bound as variables (never spliced into source) and the
  JS-style operators are translated before the expression is parsed.
- JSON Logic rules, either as a dict or as a JSON string:
  {"and": [{"===": [{"var": "cpf_valid"}, true]}, {">=": [{"var": "score"}, 7]}]}

Nothing is ever passed to eval(). A missing context key is an error, not False.
"""

import ast
import json
import operator
from typing import Dict, Any, List, Tuple, Union

from .exceptions import ConditionEvaluationError


def _js_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__


def strict_equals(left: Any, right: Any) -> bool:
    """=== semantics: values of different types are never equal (1 !== true)"""
    return _js_type(left) == _js_type(right) and left == right


def strict_not_equals(left: Any, right: Any) -> bool:
    return not strict_equals(left, right)


# Allowed operators for safe evaluation
SAFE_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.And: operator.and_,
    ast.Or: operator.or_,
    ast.Not: operator.not_,
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
    # === and !== are translated to `is` / `is not`
    ast.Is: strict_equals,
    ast.IsNot: strict_not_equals,
}


# Allowed functions for safe evaluation
SAFE_FUNCTIONS = {
    'len': len,
    'str': str,
    'int': int,
    'float': float,
    'bool': bool,
    'abs': abs,
    'min': min,
    'max': max,
}


JS_LITERALS = {
    "true": "True",
    "false": "False",
    "null": "None",
    "undefined": "None",
}

JS_OPERATORS = [
    ("===", " is "),
    ("!==", " is not "),
    ("&&", " and "),
    ("||", " or "),
    ("==", "=="),
    ("!=", "!="),
    (">=", ">="),
    ("<=", "<="),
]

PLACEHOLDER_VAR = "__placeholder_{}"


class SafeEvaluator(ast.NodeVisitor):
    """
    AST-based safe evaluator for boolean expressions.

    Restricts evaluation to:
    - Basic arithmetic and comparison operators
    - Logical operators (and, or, not)
    - Safe built-in functions (len, str, int, etc.)
    - Variable references from provided context, including dotted
      attribute access and subscripts on dicts and lists
    """

    def __init__(self, variables: Dict[str, Any]):
        self.variables = variables

    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_Constant(self, node):
        return node.value

    def visit_Name(self, node):
        if node.id in self.variables:
            return self.variables[node.id]
        elif node.id in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[node.id]
        else:
            raise ConditionEvaluationError(f"Undefined variable: {node.id}")

    def visit_Attribute(self, node):
        value = self.visit(node.value)
        if isinstance(value, dict):
            if node.attr not in value:
                raise ConditionEvaluationError(f"Missing context key: {node.attr}")
            return value[node.attr]
        raise ConditionEvaluationError(f"Attribute access not allowed: {node.attr}")

    def visit_Subscript(self, node):
        value = self.visit(node.value)
        key = self.visit(node.slice)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError):
            raise ConditionEvaluationError(f"Missing context key: {key!r}")

    def visit_List(self, node):
        return [self.visit(element) for element in node.elts]

    def visit_Tuple(self, node):
        return tuple(self.visit(element) for element in node.elts)

    def visit_BinOp(self, node):
        left = self.visit(node.left)
        right = self.visit(node.right)
        op_type = type(node.op)

        if op_type not in SAFE_OPERATORS:
            raise ConditionEvaluationError(f"Operator not allowed: {op_type.__name__}")

        return SAFE_OPERATORS[op_type](left, right)

    def visit_UnaryOp(self, node):
        operand = self.visit(node.operand)
        op_type = type(node.op)

        if op_type not in SAFE_OPERATORS:
            raise ConditionEvaluationError(f"Operator not allowed: {op_type.__name__}")

        return SAFE_OPERATORS[op_type](operand)

    def visit_Compare(self, node):
        left = self.visit(node.left)

        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            op_type = type(op)

            if op_type not in SAFE_OPERATORS:
                raise ConditionEvaluationError(f"Operator not allowed: {op_type.__name__}")

            result = SAFE_OPERATORS[op_type](left, right)

            if not result:
                return False

            left = right

        return True

    def visit_BoolOp(self, node):
        # Short-circuit like the source language does
        if isinstance(node.op, ast.And):
            result = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        elif isinstance(node.op, ast.Or):
            result = False
            for value in node.values:
                result = self.visit(value)
                if result:
                    return result
            return result
        raise ConditionEvaluationError(f"Boolean operator not allowed: {type(node.op).__name__}")

    def visit_Call(self, node):
        func = self.visit(node.func)

        if func not in SAFE_FUNCTIONS.values():
            raise ConditionEvaluationError(f"Function not allowed: {getattr(node.func, 'id', 'unknown')}")

        args = [self.visit(arg) for arg in node.args]
        kwargs = {kw.arg: self.visit(kw.value) for kw in node.keywords}

        return func(*args, **kwargs)

    def generic_visit(self, node):
        raise ConditionEvaluationError(f"AST node type not allowed: {type(node).__name__}")


# =============================================================================
# PATH LOOKUP
# =============================================================================

_MISSING = object()


def lookup_path(context: Dict[str, Any], path: str, default: Any = _MISSING) -> Any:
    """
    Resolve a dotted path against the execution context.

    "context.a.b" and "a.b" both read context["a"]["b"];
    "node.<id>.x" reads the output of node <id>.

    Raises ConditionEvaluationError when the path does not resolve and no
    default was given.
    """
    parts = [part for part in path.strip().split(".") if part]
    if parts and parts[0] == "context":
        parts = parts[1:]
    elif parts and parts[0] in ("node", "nodes") and len(parts) > 1:
        nodes = context.get("nodes") or {}
        node_entry = nodes.get(parts[1])
        if isinstance(node_entry, dict):
            value: Any = node_entry.get("output", {})
            return _walk(value, parts[2:], path, default)
        if default is not _MISSING:
            return default
        raise ConditionEvaluationError(f"Missing context key: {path}")

    return _walk(context, parts, path, default)


def _walk(value: Any, parts: List[str], path: str, default: Any) -> Any:
    for part in parts:
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            if default is not _MISSING:
                return default
            raise ConditionEvaluationError(f"Missing context key: {path}")
    return value


# =============================================================================
# EXPRESSION TRANSLATION
# =============================================================================

def translate_expression(expression: str) -> Tuple[str, List[str]]:
    """
    Translate an editor expression into Python expression syntax.

    Placeholders ({context.x}, {{x}}) become variables named
    __placeholder_N; the returned list holds their paths in order.
    String literals are copied untouched.
    """
    out: List[str] = []
    paths: List[str] = []
    i = 0
    n = len(expression)

    while i < n:
        ch = expression[i]

        # String literal
        if ch in ("'", '"'):
            end = i + 1
            while end < n and expression[end] != ch:
                if expression[end] == "\\":
                    end += 1
                end += 1
            if end >= n:
                raise ConditionEvaluationError(f"Unterminated string literal in: {expression}")
            out.append(expression[i:end + 1])
            i = end + 1
            continue

        # Placeholder
        if ch == "{":
            double = expression.startswith("{{", i)
            close = expression.find("}}" if double else "}", i)
            if close == -1:
                raise ConditionEvaluationError(f"Unterminated placeholder in: {expression}")
            path = expression[i + (2 if double else 1):close].strip()
            if not path:
                raise ConditionEvaluationError(f"Empty placeholder in: {expression}")
            out.append(f" {PLACEHOLDER_VAR.format(len(paths))} ")
            paths.append(path)
            i = close + (2 if double else 1)
            continue

        # Identifier (JS literals)
        if ch.isalpha() or ch == "_":
            end = i
            while end < n and (expression[end].isalnum() or expression[end] == "_"):
                end += 1
            word = expression[i:end]
            out.append(JS_LITERALS.get(word, word))
            i = end
            continue

        # Operators
        for js_op, py_op in JS_OPERATORS:
            if expression.startswith(js_op, i):
                out.append(py_op)
                i += len(js_op)
                break
        else:
            if ch == "!":
                out.append(" not ")
            else:
                out.append(ch)
            i += 1

    return "".join(out), paths


def _parse(expression: str) -> Tuple[ast.Expression, List[str]]:
    source, paths = translate_expression(expression)
    try:
        return ast.parse(source.strip(), mode="eval"), paths
    except SyntaxError as e:
        raise ConditionEvaluationError(f"Invalid condition syntax: {e.msg}")


def _as_json_logic(condition: Union[str, Dict[str, Any]]):
    if isinstance(condition, dict):
        return condition
    stripped = condition.strip()
    if stripped.startswith("{") and not stripped.startswith("{{"):
        try:
            parsed = json.loads(stripped)
        except ValueError:
            return None
        if isinstance(parsed, dict):
            return parsed
    return None


def check_condition_syntax(condition: Union[str, Dict[str, Any]]) -> None:
    """
    Validate condition syntax without evaluating it.

    Raises ConditionEvaluationError for malformed expressions or unknown
    JSON Logic operators.
    """
    rule = _as_json_logic(condition)
    if rule is not None:
        _check_json_logic(rule)
        return
    _parse(condition)


# =============================================================================
# JSON LOGIC
# =============================================================================

def _json_var(data: Dict[str, Any], args: Any) -> Any:
    if isinstance(args, list):
        path = args[0] if args else ""
        if len(args) > 1:
            return lookup_path(data, str(path), default=args[1])
    else:
        path = args
    if path in ("", None):
        return data
    return lookup_path(data, str(path))


def _json_in(needle: Any, haystack: Any) -> bool:
    if isinstance(haystack, (list, str)):
        return needle in haystack
    return False


JSON_LOGIC_BINARY = {
    "===": strict_equals,
    "==": operator.eq,
    "!==": strict_not_equals,
    "!=": operator.ne,
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "in": _json_in,
}

JSON_LOGIC_OPERATORS = set(JSON_LOGIC_BINARY) | {"and", "or", "!", "!!", "var"}


def _check_json_logic(rule: Any) -> None:
    if isinstance(rule, list):
        for item in rule:
            _check_json_logic(item)
        return
    if not isinstance(rule, dict) or not rule:
        return
    if len(rule) != 1:
        raise ConditionEvaluationError("JSON Logic rule must have exactly one operator")
    op, args = next(iter(rule.items()))
    if op not in JSON_LOGIC_OPERATORS:
        raise ConditionEvaluationError(f"Unsupported JSON Logic operator: {op}")
    if op != "var":
        _check_json_logic(args)


def apply_json_logic(rule: Any, data: Dict[str, Any]) -> Any:
    """Apply a JSON Logic rule to data"""
    if isinstance(rule, list):
        return [apply_json_logic(item, data) for item in rule]
    if not isinstance(rule, dict) or not rule:
        return rule
    if len(rule) != 1:
        raise ConditionEvaluationError("JSON Logic rule must have exactly one operator")

    op, args = next(iter(rule.items()))

    if op == "var":
        return _json_var(data, args)

    values = args if isinstance(args, list) else [args]

    if op == "and":
        result = True
        for value in values:
            result = apply_json_logic(value, data)
            if not result:
                return result
        return result
    if op == "or":
        result = False
        for value in values:
            result = apply_json_logic(value, data)
            if result:
                return result
        return result
    if op == "!":
        return not apply_json_logic(values[0] if values else None, data)
    if op == "!!":
        return bool(apply_json_logic(values[0] if values else None, data))

    if op in JSON_LOGIC_BINARY:
        if len(values) != 2:
            raise ConditionEvaluationError(f"Operator '{op}' expects 2 arguments, got {len(values)}")
        left, right = (apply_json_logic(value, data) for value in values)
        try:
            return JSON_LOGIC_BINARY[op](left, right)
        except TypeError as e:
            raise ConditionEvaluationError(f"Cannot apply '{op}': {e}")

    raise ConditionEvaluationError(f"Unsupported JSON Logic operator: {op}")


# =============================================================================
# ENTRY POINT
# =============================================================================

def evaluate_condition(condition: Union[str, Dict[str, Any]], context: Dict[str, Any]) -> bool:
    """
    Safely evaluate an edge condition against the execution context.

    Args:
        condition: Expression string or JSON Logic rule
        context: Execution context (global keys plus "nodes" outputs)

    Returns:
        Boolean result of evaluation

    Raises:
        ConditionEvaluationError: If the condition is malformed, uses
            unsafe operations or references a missing context key

    Examples:
        >>> evaluate_condition("{context.cpf_valid} === true", {"cpf_valid": True})
        True
        >>> evaluate_condition({">=": [{"var": "score"}, 7]}, {"score": 5})
        False
    """
    rule = _as_json_logic(condition)
    if rule is not None:
        return bool(apply_json_logic(rule, context))

    tree, paths = _parse(condition)

    variables: Dict[str, Any] = {key: value for key, value in context.items() if isinstance(key, str)}
    variables["context"] = context
    for index, path in enumerate(paths):
        variables[PLACEHOLDER_VAR.format(index)] = lookup_path(context, path)

    evaluator = SafeEvaluator(variables)
    try:
        return bool(evaluator.visit(tree))
    except ConditionEvaluationError:
        raise
    except (TypeError, ValueError, ZeroDivisionError) as e:
        raise ConditionEvaluationError(f"Condition evaluation failed: {e}")
