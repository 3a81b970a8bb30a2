# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tests for the safe condition evaluator
"""

import pytest

from credflow.engine.conditions import (
    apply_json_logic,
    check_condition_syntax,
    evaluate_condition,
    lookup_path,
    translate_expression,
)
from credflow.engine.exceptions import ConditionEvaluationError


CONTEXT = {
    "cpf_valid": True,
    "score": 8,
    "status": "aprovado",
    "documentos": ["rg", "crm"],
    "medico": {"crm": {"uf": "SP", "numero": "12345"}},
    "nodes": {"ocr": {"output": {"ocrConfidence": 92.5}}},
}


class TestExpressions:

    @pytest.mark.parametrize("expression, expected", [
        ("{context.cpf_valid} === true", True),
        ("{context.cpf_valid} === true && {context.score} >= 7", True),
        ("{context.score} < 7 || {context.status} == 'aprovado'", True),
        ("!{context.cpf_valid}", False),
        ("{context.status} !== 'reprovado'", True),
        ("{context.medico.crm.uf} == \"SP\"", True),
        ("{{score}} > 5", True),
        ("{node.ocr.ocrConfidence} >= 90", True),
        ("'crm' in {context.documentos}", True),
        ("len(documentos) == 2", True),
        ("score * 2 == 16", True),
        ("medico.crm.numero == '12345'", True),
        ("{context.medico} != null", True),
        ("false", False),
    ])
    def test_evaluates(self, expression, expected):
        assert evaluate_condition(expression, CONTEXT) is expected

    @pytest.mark.parametrize("expression, value, expected", [
        ("{context.flag} === true", 1, False),
        ("{context.flag} === false", 0, False),
        ("{context.flag} !== true", 1, True),
        ("{context.flag} === true", True, True),
        ("{context.flag} == true", 1, True),
        ("{context.flag} === 7", 7.0, True),
        ("{context.flag} === '7'", 7, False),
    ])
    def test_strict_equality_compares_types(self, expression, value, expected):
        assert evaluate_condition(expression, {"flag": value}) is expected

    def test_placeholder_values_are_not_spliced_into_source(self):
        """A context string that looks like code stays a string"""
        context = {"nome": "__import__('os').system('ls')"}
        assert evaluate_condition("{context.nome} == 'x'", context) is False

    def test_operators_inside_strings_untouched(self):
        source, paths = translate_expression("{context.status} == 'a && b'")
        assert "'a && b'" in source
        assert paths == ["context.status"]

    def test_missing_key_is_an_error(self):
        with pytest.raises(ConditionEvaluationError, match="Missing context key"):
            evaluate_condition("{context.score_final} >= 7", CONTEXT)

    def test_missing_nested_key_is_an_error(self):
        with pytest.raises(ConditionEvaluationError, match="Missing context key"):
            evaluate_condition("medico.endereco == 'x'", CONTEXT)

    @pytest.mark.parametrize("expression", [
        "__import__('os')",
        "open('/etc/passwd')",
        "[x for x in documentos]",
        "lambda: 1",
        "score.__class__",
    ])
    def test_unsafe_constructs_rejected(self, expression):
        with pytest.raises(ConditionEvaluationError):
            evaluate_condition(expression, CONTEXT)

    def test_type_errors_wrapped(self):
        with pytest.raises(ConditionEvaluationError, match="Condition evaluation failed"):
            evaluate_condition("{context.status} > 3", CONTEXT)

    def test_syntax_error(self):
        with pytest.raises(ConditionEvaluationError, match="Invalid condition syntax"):
            check_condition_syntax("{context.score} >=")


class TestJsonLogic:

    def test_dict_rule(self):
        rule = {"and": [{"===": [{"var": "cpf_valid"}, True]}, {">=": [{"var": "score"}, 7]}]}
        assert evaluate_condition(rule, CONTEXT) is True

    @pytest.mark.parametrize("rule, expected", [
        ({"===": [{"var": "flag"}, True]}, False),
        ({"!==": [{"var": "flag"}, True]}, True),
        ({"==": [{"var": "flag"}, True]}, True),
        ({"===": [{"var": "flag"}, 1.0]}, True),
    ])
    def test_strict_equality_compares_types(self, rule, expected):
        assert evaluate_condition(rule, {"flag": 1}) is expected

    def test_json_string_rule(self):
        assert evaluate_condition('{"<": [{"var": "score"}, 5]}', CONTEXT) is False

    def test_nested_var_and_default(self):
        assert apply_json_logic({"var": "medico.crm.uf"}, CONTEXT) == "SP"
        assert apply_json_logic({"var": ["medico.rqe", "none"]}, CONTEXT) == "none"

    def test_in_and_negation(self):
        assert evaluate_condition({"in": ["rg", {"var": "documentos"}]}, CONTEXT) is True
        assert evaluate_condition({"!": [{"var": "cpf_valid"}]}, CONTEXT) is False
        assert evaluate_condition({"!!": [{"var": "status"}]}, CONTEXT) is True

    def test_or_short_circuits(self):
        """The second operand would fail on the missing key"""
        rule = {"or": [{"var": "cpf_valid"}, {"var": "ausente"}]}
        assert evaluate_condition(rule, CONTEXT) is True

    def test_missing_var(self):
        with pytest.raises(ConditionEvaluationError):
            evaluate_condition({"==": [{"var": "ausente"}, 1]}, CONTEXT)

    def test_unknown_operator(self):
        with pytest.raises(ConditionEvaluationError, match="Unsupported JSON Logic operator"):
            evaluate_condition({"regex": ["a", "b"]}, CONTEXT)

    def test_arity(self):
        with pytest.raises(ConditionEvaluationError, match="expects 2 arguments"):
            evaluate_condition({"==": [1]}, CONTEXT)


class TestLookupPath:

    def test_prefixes(self):
        assert lookup_path(CONTEXT, "context.score") == 8
        assert lookup_path(CONTEXT, "score") == 8
        assert lookup_path(CONTEXT, "node.ocr.ocrConfidence") == 92.5
        assert lookup_path(CONTEXT, "documentos.1") == "crm"

    def test_default(self):
        assert lookup_path(CONTEXT, "node.missing.x", default=None) is None
        with pytest.raises(ConditionEvaluationError):
            lookup_path(CONTEXT, "node.missing.x")
