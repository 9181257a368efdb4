"""Tests for node condition expressions."""

import pytest

from irflow.kernel.expression_parser import ExpressionError, compile_condition


class TestComparisons:
    def test_equality_on_nested_attribute(self) -> None:
        pred = compile_condition("nodes.ocr.status == 'completed'")
        assert pred({"nodes": {"ocr": {"status": "completed"}}}) is True
        assert pred({"nodes": {"ocr": {"status": "failed"}}}) is False

    def test_numeric_comparison_on_ir(self) -> None:
        pred = compile_condition("nodes.ocr.ir.confidence >= 0.8")
        assert pred({"nodes": {"ocr": {"ir": {"confidence": 0.93}}}}) is True
        assert pred({"nodes": {"ocr": {"ir": {"confidence": 0.5}}}}) is False

    def test_membership(self) -> None:
        pred = compile_condition("run.origin in ['api', 'cli']")
        assert pred({"run": {"origin": "cli"}}) is True
        assert pred({"run": {"origin": "schedule"}}) is False

    def test_chained_comparison(self) -> None:
        pred = compile_condition("0 < config.pages <= 10")
        assert pred({"config": {"pages": 3}}) is True
        assert pred({"config": {"pages": 11}}) is False

    def test_subscript_access(self) -> None:
        pred = compile_condition("nodes['ocr'].ir.pages[0] == 'cover'")
        assert pred({"nodes": {"ocr": {"ir": {"pages": ["cover", "body"]}}}}) is True


class TestBooleanLogic:
    def test_and_or_not(self) -> None:
        pred = compile_condition("config.strict and not config.draft or config.force")
        assert pred({"config": {"strict": True, "draft": False}}) is True
        assert pred({"config": {"strict": True, "draft": True}}) is False
        assert pred({"config": {"force": True}}) is True


class TestMissingValues:
    def test_unknown_names_resolve_to_none(self) -> None:
        pred = compile_condition("nodes.missing.status == 'completed'")
        assert pred({}) is False

    def test_ordering_against_none_is_false(self) -> None:
        pred = compile_condition("nodes.ocr.ir.pages > 2")
        assert pred({"nodes": {}}) is False

    def test_is_none(self) -> None:
        assert compile_condition("config.mode is None")({"config": {}}) is True

    def test_arithmetic_error_is_false(self) -> None:
        assert compile_condition("config.a / config.b > 1")({"config": {"a": 1, "b": 0}}) is False


class TestRejected:
    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "   ",
            "nodes.a.status ==",
            "len(nodes) > 1",
            "__import__('os')",
            "[x for x in nodes]",
            "lambda: 1",
        ],
    )
    def test_invalid_expressions_raise(self, expression: str) -> None:
        with pytest.raises(ExpressionError):
            compile_condition(expression)

    def test_calls_have_a_clear_message(self) -> None:
        with pytest.raises(ExpressionError, match="Function calls are not allowed"):
            compile_condition("print(1)")

    def test_compiled_predicates_are_cached(self) -> None:
        assert compile_condition("config.x == 1") is compile_condition("config.x == 1")
