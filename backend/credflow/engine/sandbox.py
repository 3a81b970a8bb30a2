# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Function Node Sandbox

Restricted AST-walking interpreter for the custom code of function nodes.

The code is a small Python subset: assignments, if/for, expressions,
comprehensions, lambdas and calls to an allow-list of utilities. There is
no import, no attribute starting with an underscore, no def/class/while
and no access to builtins beyond SAFE_BUILTINS. Every evaluated AST node
costs one operation; the run fails when the operation budget or the
deadline is exhausted.

The value of `result` (or of a top-level `return`) is the node output.
"""

import ast
import operator
import time
from functools import reduce as _reduce
from typing import Any, Callable, Dict, List, Optional

from .exceptions import SandboxError


BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

COMPARE_OPERATORS = {
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

UNARY_OPERATORS = {
    ast.Not: operator.not_,
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

ALLOWED_METHODS = {
    str: {"upper", "lower", "strip", "lstrip", "rstrip", "split", "replace",
          "startswith", "endswith", "join", "title", "capitalize", "isdigit", "zfill"},
    list: {"append", "extend", "index", "count", "insert", "pop"},
    dict: {"get", "keys", "values", "items", "update", "pop", "setdefault"},
}

MAX_POWER_EXPONENT = 1000
MAX_RANGE = 100000


class _Return(Exception):
    def __init__(self, value: Any):
        self.value = value


# =============================================================================
# UTILITIES
# =============================================================================

def _key_func(key: Any) -> Callable[[Any], Any]:
    if callable(key):
        return key
    return lambda item: item.get(key) if isinstance(item, dict) else None


def util_map(func: Callable, items: List[Any]) -> List[Any]:
    return [func(item) for item in items]


def util_filter(func: Callable, items: List[Any]) -> List[Any]:
    return [item for item in items if func(item)]


def util_find(func: Callable, items: List[Any]) -> Any:
    return next((item for item in items if func(item)), None)


def util_reduce(func: Callable, items: List[Any], initial: Any = None) -> Any:
    return _reduce(func, items, initial)


def util_group_by(items: List[Any], key: Any) -> Dict[Any, List[Any]]:
    groups: Dict[Any, List[Any]] = {}
    key_of = _key_func(key)
    for item in items:
        groups.setdefault(key_of(item), []).append(item)
    return groups


def util_sort_by(items: List[Any], key: Any, reverse: bool = False) -> List[Any]:
    return sorted(items, key=_key_func(key), reverse=reverse)


def util_uniq(items: List[Any]) -> List[Any]:
    seen: List[Any] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def util_pick(data: Dict[str, Any], keys: List[str]) -> Dict[str, Any]:
    return {key: data[key] for key in keys if key in data}


def util_omit(data: Dict[str, Any], keys: List[str]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key not in keys}


def util_range(*args: int) -> List[int]:
    values = range(*args)
    if len(values) > MAX_RANGE:
        raise SandboxError(f"range() larger than {MAX_RANGE} not allowed")
    return list(values)


UTILITIES: Dict[str, Callable] = {
    "map": util_map,
    "filter": util_filter,
    "find": util_find,
    "reduce": util_reduce,
    "group_by": util_group_by,
    "groupBy": util_group_by,
    "sort_by": util_sort_by,
    "sortBy": util_sort_by,
    "uniq": util_uniq,
    "pick": util_pick,
    "omit": util_omit,
    "range": util_range,
}

SAFE_BUILTINS: Dict[str, Callable] = {
    "len": len,
    "sum": sum,
    "min": min,
    "max": max,
    "abs": abs,
    "round": round,
    "sorted": sorted,
    "reversed": lambda items: list(reversed(items)),
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "list": list,
    "dict": dict,
    "enumerate": lambda items: list(enumerate(items)),
    "zip": lambda *items: list(zip(*items)),
    "any": any,
    "all": all,
}


# =============================================================================
# INTERPRETER
# =============================================================================

class _Lambda:
    """User lambda - evaluated by the interpreter that created it"""

    def __init__(self, interpreter: "SandboxInterpreter", node: ast.Lambda, scope: Dict[str, Any]):
        self.interpreter = interpreter
        self.node = node
        self.scope = scope

    def __call__(self, *args: Any) -> Any:
        params = [arg.arg for arg in self.node.args.args]
        if len(args) != len(params):
            raise SandboxError(f"lambda expects {len(params)} arguments, got {len(args)}")
        local = dict(self.scope)
        local.update(zip(params, args))
        return self.interpreter.eval_expr(self.node.body, local)


class SandboxInterpreter:
    """Executes one parsed program with a budget and a deadline"""

    def __init__(self, max_operations: int, timeout: float, logs: List[str]):
        self.max_operations = max_operations
        self.deadline = time.monotonic() + timeout
        self.timeout = timeout
        self.operations = 0
        self.logs = logs

    def _tick(self) -> None:
        self.operations += 1
        if self.operations > self.max_operations:
            raise SandboxError(f"Operation budget exceeded ({self.max_operations})")
        if self.operations % 256 == 0 and time.monotonic() > self.deadline:
            raise SandboxError(f"Execution timed out after {self.timeout}s")

    def _log(self, *values: Any) -> None:
        self.logs.append(" ".join(str(value) for value in values))

    # -- statements --

    def run(self, program: ast.Module, scope: Dict[str, Any]) -> Any:
        try:
            self.exec_block(program.body, scope)
        except _Return as r:
            return r.value
        return scope.get("result")

    def exec_block(self, statements: List[ast.stmt], scope: Dict[str, Any]) -> None:
        for statement in statements:
            self.exec_stmt(statement, scope)

    def exec_stmt(self, node: ast.stmt, scope: Dict[str, Any]) -> None:
        self._tick()
        if isinstance(node, ast.Assign):
            value = self.eval_expr(node.value, scope)
            for target in node.targets:
                self.assign(target, value, scope)
        elif isinstance(node, ast.AugAssign):
            op = BINARY_OPERATORS.get(type(node.op))
            if op is None:
                raise SandboxError(f"Operator not allowed: {type(node.op).__name__}")
            current = self.eval_expr(self._as_load(node.target), scope)
            self.assign(node.target, op(current, self.eval_expr(node.value, scope)), scope)
        elif isinstance(node, ast.Expr):
            self.eval_expr(node.value, scope)
        elif isinstance(node, ast.If):
            if self.eval_expr(node.test, scope):
                self.exec_block(node.body, scope)
            else:
                self.exec_block(node.orelse, scope)
        elif isinstance(node, ast.For):
            iterable = self.eval_expr(node.iter, scope)
            for item in iterable:
                self.assign(node.target, item, scope)
                self.exec_block(node.body, scope)
        elif isinstance(node, ast.Return):
            raise _Return(self.eval_expr(node.value, scope) if node.value else None)
        elif isinstance(node, ast.Pass):
            return
        else:
            raise SandboxError(f"Statement not allowed: {type(node).__name__}")

    def _as_load(self, target: ast.expr) -> ast.expr:
        if isinstance(target, ast.Name):
            return ast.Name(id=target.id, ctx=ast.Load())
        if isinstance(target, ast.Subscript):
            return ast.Subscript(value=target.value, slice=target.slice, ctx=ast.Load())
        raise SandboxError(f"Assignment target not allowed: {type(target).__name__}")

    def assign(self, target: ast.expr, value: Any, scope: Dict[str, Any]) -> None:
        if isinstance(target, ast.Name):
            if target.id.startswith("_"):
                raise SandboxError(f"Name not allowed: {target.id}")
            scope[target.id] = value
        elif isinstance(target, ast.Subscript):
            container = self.eval_expr(target.value, scope)
            if not isinstance(container, (dict, list)):
                raise SandboxError("Item assignment only allowed on dicts and lists")
            container[self.eval_expr(target.slice, scope)] = value
        elif isinstance(target, (ast.Tuple, ast.List)):
            values = list(value)
            if len(values) != len(target.elts):
                raise SandboxError("Unpacking length mismatch")
            for element, item in zip(target.elts, values):
                self.assign(element, item, scope)
        else:
            raise SandboxError(f"Assignment target not allowed: {type(target).__name__}")

    # -- expressions --

    def eval_expr(self, node: ast.expr, scope: Dict[str, Any]) -> Any:
        self._tick()
        method = getattr(self, f"_eval_{type(node).__name__}", None)
        if method is None:
            raise SandboxError(f"Expression not allowed: {type(node).__name__}")
        return method(node, scope)

    def _eval_Constant(self, node: ast.Constant, scope):
        return node.value

    def _eval_Name(self, node: ast.Name, scope):
        if node.id.startswith("_"):
            raise SandboxError(f"Name not allowed: {node.id}")
        if node.id in scope:
            return scope[node.id]
        if node.id in UTILITIES:
            return UTILITIES[node.id]
        if node.id in SAFE_BUILTINS:
            return SAFE_BUILTINS[node.id]
        if node.id == "log":
            return self._log
        raise SandboxError(f"Undefined name: {node.id}")

    def _eval_Attribute(self, node: ast.Attribute, scope):
        if node.attr.startswith("_"):
            raise SandboxError(f"Attribute not allowed: {node.attr}")
        value = self.eval_expr(node.value, scope)
        if isinstance(value, dict) and node.attr in value:
            return value[node.attr]
        for kind, methods in ALLOWED_METHODS.items():
            if isinstance(value, kind) and node.attr in methods:
                return getattr(value, node.attr)
        raise SandboxError(f"Attribute not allowed: {node.attr}")

    def _eval_Subscript(self, node: ast.Subscript, scope):
        value = self.eval_expr(node.value, scope)
        if isinstance(node.slice, ast.Slice):
            lower = self.eval_expr(node.slice.lower, scope) if node.slice.lower else None
            upper = self.eval_expr(node.slice.upper, scope) if node.slice.upper else None
            return value[lower:upper]
        return value[self.eval_expr(node.slice, scope)]

    def _eval_List(self, node: ast.List, scope):
        return [self.eval_expr(element, scope) for element in node.elts]

    def _eval_Tuple(self, node: ast.Tuple, scope):
        return tuple(self.eval_expr(element, scope) for element in node.elts)

    def _eval_Set(self, node: ast.Set, scope):
        return {self.eval_expr(element, scope) for element in node.elts}

    def _eval_Dict(self, node: ast.Dict, scope):
        result = {}
        for key, value in zip(node.keys, node.values):
            if key is None:
                result.update(self.eval_expr(value, scope))
            else:
                result[self.eval_expr(key, scope)] = self.eval_expr(value, scope)
        return result

    def _eval_JoinedStr(self, node: ast.JoinedStr, scope):
        parts = []
        for value in node.values:
            if isinstance(value, ast.FormattedValue):
                parts.append(str(self.eval_expr(value.value, scope)))
            else:
                parts.append(str(self.eval_expr(value, scope)))
        return "".join(parts)

    def _eval_BinOp(self, node: ast.BinOp, scope):
        op = BINARY_OPERATORS.get(type(node.op))
        if op is None:
            raise SandboxError(f"Operator not allowed: {type(node.op).__name__}")
        left = self.eval_expr(node.left, scope)
        right = self.eval_expr(node.right, scope)
        if isinstance(node.op, ast.Pow) and isinstance(right, (int, float)) and abs(right) > MAX_POWER_EXPONENT:
            raise SandboxError("Exponent too large")
        if isinstance(node.op, ast.Mult):
            for sequence, count in ((left, right), (right, left)):
                if isinstance(sequence, (str, list)) and isinstance(count, int) and count > MAX_RANGE:
                    raise SandboxError("Sequence repetition too large")
        return op(left, right)

    def _eval_UnaryOp(self, node: ast.UnaryOp, scope):
        op = UNARY_OPERATORS.get(type(node.op))
        if op is None:
            raise SandboxError(f"Operator not allowed: {type(node.op).__name__}")
        return op(self.eval_expr(node.operand, scope))

    def _eval_BoolOp(self, node: ast.BoolOp, scope):
        if isinstance(node.op, ast.And):
            result = True
            for value in node.values:
                result = self.eval_expr(value, scope)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.eval_expr(value, scope)
            if result:
                return result
        return result

    def _eval_Compare(self, node: ast.Compare, scope):
        left = self.eval_expr(node.left, scope)
        for op, comparator in zip(node.ops, node.comparators):
            func = COMPARE_OPERATORS.get(type(op))
            if func is None:
                raise SandboxError(f"Operator not allowed: {type(op).__name__}")
            right = self.eval_expr(comparator, scope)
            if not func(left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node: ast.IfExp, scope):
        if self.eval_expr(node.test, scope):
            return self.eval_expr(node.body, scope)
        return self.eval_expr(node.orelse, scope)

    def _eval_Lambda(self, node: ast.Lambda, scope):
        if node.args.vararg or node.args.kwarg or node.args.kwonlyargs or node.args.defaults:
            raise SandboxError("Only simple positional lambda arguments are allowed")
        return _Lambda(self, node, scope)

    def _eval_Call(self, node: ast.Call, scope):
        func = self.eval_expr(node.func, scope)
        if not callable(func):
            raise SandboxError("Object is not callable")
        args = []
        for arg in node.args:
            if isinstance(arg, ast.Starred):
                args.extend(self.eval_expr(arg.value, scope))
            else:
                args.append(self.eval_expr(arg, scope))
        kwargs = {}
        for keyword in node.keywords:
            if keyword.arg is None:
                raise SandboxError("**kwargs not allowed")
            kwargs[keyword.arg] = self.eval_expr(keyword.value, scope)
        return func(*args, **kwargs)

    def _comprehension(self, generators: List[ast.comprehension], scope: Dict[str, Any], emit: Callable) -> None:
        if not generators:
            emit(scope)
            return
        first, rest = generators[0], generators[1:]
        if first.is_async:
            raise SandboxError("Async comprehensions not allowed")
        for item in self.eval_expr(first.iter, scope):
            local = dict(scope)
            self.assign(first.target, item, local)
            if all(self.eval_expr(condition, local) for condition in first.ifs):
                self._comprehension(rest, local, emit)

    def _eval_ListComp(self, node: ast.ListComp, scope):
        result: List[Any] = []
        self._comprehension(node.generators, scope, lambda local: result.append(self.eval_expr(node.elt, local)))
        return result

    def _eval_GeneratorExp(self, node: ast.GeneratorExp, scope):
        result: List[Any] = []
        self._comprehension(node.generators, scope, lambda local: result.append(self.eval_expr(node.elt, local)))
        return result

    def _eval_SetComp(self, node: ast.SetComp, scope):
        result = set()
        self._comprehension(node.generators, scope, lambda local: result.add(self.eval_expr(node.elt, local)))
        return result

    def _eval_DictComp(self, node: ast.DictComp, scope):
        result: Dict[Any, Any] = {}

        def emit(local):
            result[self.eval_expr(node.key, local)] = self.eval_expr(node.value, local)

        self._comprehension(node.generators, scope, emit)
        return result


def compile_function(code: str) -> ast.Module:
    """
    Parse function node code.

    Raises SandboxError if the code is empty or not valid syntax.
    """
    if not code or not code.strip():
        raise SandboxError("Function code is required")
    try:
        return ast.parse(code, mode="exec")
    except SyntaxError as e:
        raise SandboxError(f"Invalid function syntax: {e.msg} (line {e.lineno})")


def run_function(
    code: str,
    variables: Dict[str, Any],
    timeout: float = 5.0,
    max_operations: int = 100000,
    logs: Optional[List[str]] = None
) -> Any:
    """
    Run function node code against variables.

    Args:
        code: Program text
        variables: Names visible to the program (e.g. context, input)
        timeout: Hard wall-clock limit in seconds
        max_operations: Maximum number of evaluated AST nodes
        logs: Receives lines written with log(...)

    Returns:
        Value of `result` or of the top-level return statement

    Raises:
        SandboxError: On rejected constructs, budget/timeout exhaustion or
            runtime errors inside the program
    """
    program = compile_function(code)
    interpreter = SandboxInterpreter(max_operations, timeout, logs if logs is not None else [])
    try:
        return interpreter.run(program, dict(variables))
    except SandboxError:
        raise
    except (ArithmeticError, LookupError, TypeError, ValueError, AttributeError) as e:
        raise SandboxError(f"{type(e).__name__}: {e}")
