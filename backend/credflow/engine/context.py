# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Context Store

Mutable key-value bag shared by every step of one execution.

Writes are last-write-wins. Concurrent branches writing the same key
race; node outputs are also kept under nodes.<id>.output so a branch's
result is never lost even when the global key is overwritten.
"""

import copy
import re
from typing import Dict, Any, List, Optional

from .conditions import lookup_path
from .exceptions import ConditionEvaluationError


NODES_KEY = "nodes"

# {{path}} or {path}; path is dotted identifiers
TEMPLATE_PATTERN = re.compile(r"\{\{\s*([\w\-\.]+)\s*\}\}|\{\s*([\w\-\.]+)\s*\}")

SENSITIVE_KEYS = (
    "password", "senha", "token", "secret", "apikey", "api_key",
    "authorization", "credential", "private_key",
)

REDACTED = "***"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower().replace("-", "_")
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def redact(value: Any) -> Any:
    """Deep copy of value with sensitive keys masked"""
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_sensitive(k) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    return copy.deepcopy(value)


def strip_sensitive(value: Any) -> Any:
    """Deep copy of value with sensitive keys removed"""
    if isinstance(value, dict):
        return {
            k: strip_sensitive(v)
            for k, v in value.items()
            if not (isinstance(k, str) and _is_sensitive(k))
        }
    if isinstance(value, list):
        return [strip_sensitive(item) for item in value]
    return copy.deepcopy(value)


class ContextStore:
    """
    Execution context for a workflow run.

    Tracks:
    - Global key-value data seeded from the execution input
    - Per-node outputs under nodes.<node_id>.output
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._data.setdefault(NODES_KEY, {})

    @classmethod
    def from_export(cls, exported: Dict[str, Any]) -> "ContextStore":
        return cls(exported)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def merge(self, patch: Dict[str, Any]) -> None:
        """Shallow merge - last write wins per top-level key"""
        for key, value in (patch or {}).items():
            if key == NODES_KEY:
                continue
            self._data[key] = value

    def merge_node_output(self, node_id: str, output: Dict[str, Any]) -> None:
        """Record a node's output and merge it into the global namespace"""
        self._data[NODES_KEY][node_id] = {"output": copy.deepcopy(output or {})}
        self.merge(output or {})

    def get_node_output(self, node_id: str) -> Dict[str, Any]:
        return self._data[NODES_KEY].get(node_id, {}).get("output", {})

    def as_dict(self) -> Dict[str, Any]:
        """Live view - callers must not mutate it"""
        return self._data

    def export(self) -> Dict[str, Any]:
        """Deep copy suitable for persistence"""
        return copy.deepcopy(self._data)

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy with sensitive values masked, for checkpoints and read models"""
        return redact(self._data)

    def lookup(self, path: str) -> Any:
        """
        Resolve a dotted path (context.a.b, node.<id>.x, a.b).

        Raises ConditionEvaluationError if the path does not resolve.
        """
        return lookup_path(self._data, path)

    def resolve(self, template: Any) -> Any:
        """
        Render {context.path} / {{path}} placeholders in a string.

        A template that is a single placeholder returns the raw value
        (keeping its type). Unresolvable placeholders are left verbatim.
        """
        if not isinstance(template, str):
            return template

        whole = TEMPLATE_PATTERN.fullmatch(template.strip())
        if whole:
            path = whole.group(1) or whole.group(2)
            try:
                return self.lookup(path)
            except ConditionEvaluationError:
                return template

        def replace(match: "re.Match") -> str:
            path = match.group(1) or match.group(2)
            try:
                value = self.lookup(path)
            except ConditionEvaluationError:
                return match.group(0)
            return "" if value is None else str(value)

        return TEMPLATE_PATTERN.sub(replace, template)

    def resolve_object(self, value: Any) -> Any:
        """Resolve placeholders recursively through dicts and lists"""
        if isinstance(value, dict):
            return {k: self.resolve_object(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve_object(item) for item in value]
        return self.resolve(value)

    def missing_keys(self, keys: List[str]) -> List[str]:
        missing = []
        for key in keys:
            try:
                value = self.lookup(key)
            except ConditionEvaluationError:
                missing.append(key)
                continue
            if value is None or value == "":
                missing.append(key)
        return missing
