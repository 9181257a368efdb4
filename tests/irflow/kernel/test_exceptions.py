"""Tests for the irflow exception hierarchy."""

import pytest

from irflow.kernel.exceptions import (
    ConfigurationError,
    ConflictError,
    CycleDetectedError,
    DuplicateNodeKeyError,
    ExecutionFailure,
    InvalidGraphError,
    InvalidTransitionError,
    IrflowError,
    NotFoundError,
    UnresolvedStepError,
    ValidationFailure,
)


class TestHierarchy:
    """Every error is catchable as IrflowError and carries a stable code."""

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (ConflictError("pipeline_version", "v1", "duplicate_label", "taken"), "conflict"),
            (NotFoundError("step_version", "abc"), "not_found"),
            (InvalidGraphError("bad"), "invalid_graph"),
            (CycleDetectedError(["a", "b", "a"]), "cycle_detected"),
            (DuplicateNodeKeyError("a"), "duplicate_node_key"),
            (UnresolvedStepError("a", "missing"), "unresolved_step"),
            (ValidationFailure("schema", "not an object"), "validation_failure"),
            (ExecutionFailure("ocr", "boom"), "execution_failure"),
            (
                InvalidTransitionError("step_run", "s1", "completed", "running"),
                "invalid_transition",
            ),
            (ConfigurationError("engine", "bad"), "configuration_error"),
        ],
    )
    def test_code_and_base(self, error: IrflowError, code: str) -> None:
        assert isinstance(error, IrflowError)
        assert error.code == code
        assert error.to_dict()["code"] == code
        assert error.to_dict()["message"] == str(error)

    def test_graph_errors_are_invalid_graph(self) -> None:
        for error in (
            CycleDetectedError(["a", "a"]),
            DuplicateNodeKeyError("a"),
            UnresolvedStepError("a", "x"),
        ):
            assert isinstance(error, InvalidGraphError)


class TestMessages:
    def test_conflict_reason_in_dict(self) -> None:
        error = ConflictError(
            "ir_schema", "1.0", "active_version", "cannot delete an active schema"
        )
        assert error.to_dict()["reason"] == "active_version"
        assert "cannot delete an active schema" in str(error)

    def test_not_found_lists_available(self) -> None:
        error = NotFoundError("pipeline_version", "v9", ["v1", "v2"])
        assert "Pipeline Version 'v9' not found" in str(error)
        assert "v1, v2" in str(error)

    def test_not_found_truncates_long_lists(self) -> None:
        error = NotFoundError("step_version", "x", [f"v{i}" for i in range(8)])
        assert "and 3 more" in str(error)

    def test_cycle_path(self) -> None:
        error = CycleDetectedError(["a", "b", "a"])
        assert error.cycle == ["a", "b", "a"]
        assert "a -> b -> a" in str(error)

    def test_validation_failure_keeps_errors(self) -> None:
        errors = [{"path": "/pages", "message": "required", "validator": "required"}]
        error = ValidationFailure("ir", "1 violation", errors=errors)
        assert error.errors == errors
        assert error.value is None

    def test_execution_failure_keeps_cause(self) -> None:
        cause = RuntimeError("disk full")
        error = ExecutionFailure("ocr", "disk full", cause)
        assert error.node_key == "ocr"
        assert error.cause is cause
        assert str(error) == "Step 'ocr' failed: disk full"
