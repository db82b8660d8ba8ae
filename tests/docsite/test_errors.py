"""Tests for the error hierarchy, Problem Details, canonical codes and logging helpers."""

from __future__ import annotations

import json
import logging

import pytest

from docsite._shared.error_codes import format_error_message, get_error_code
from docsite._shared.logging import (
    CorrelationContext,
    JsonFormatter,
    get_correlation_id,
    get_logger,
    with_fields,
)
from docsite._shared.problem_details import render_problem, tool_timeout_problem_details
from docsite.errors import (
    BuildError,
    ClearError,
    CopyError,
    DocsiteError,
    FetchError,
    PipelineStage,
    ResolutionError,
)


@pytest.mark.parametrize(
    ("error_type", "exit_code", "stage"),
    [
        (ResolutionError, 10, PipelineStage.STAGE_DEPENDENCIES),
        (FetchError, 11, PipelineStage.STAGE_DEPENDENCIES),
        (ClearError, 20, PipelineStage.CLEAR),
        (CopyError, 21, PipelineStage.STAGE_STATIC),
        (BuildError, 22, PipelineStage.BUILD_DOCS),
    ],
)
def test_exit_codes_and_stages(error_type: type[DocsiteError], exit_code: int, stage: PipelineStage) -> None:
    error = error_type("failed")
    assert error.exit_code == exit_code
    assert error.stage is stage
    assert get_error_code(error.operator_code).stage == stage.value


def test_operator_code_follows_stage() -> None:
    error = CopyError("copy failed", stage=PipelineStage.STAGE_COMPILED)
    assert error.operator_code == "DOCSITE-ASM-003"
    header = format_error_message(error.operator_code, error.message).splitlines()[0]
    assert header == "[ERROR DOCSITE-ASM-003] (stage-compiled) copy failed"
    assert BuildError("x", operator_code="DOCSITE-BLD-002").operator_code == "DOCSITE-BLD-002"


def test_problem_details_payload() -> None:
    cause = OSError("disk full")
    error = CopyError(
        "copy failed",
        stage=PipelineStage.STAGE_COMPILED,
        cause=cause,
        context={"destination": "/srv/site/rustdoc", "files": ("a", "b")},
    )
    problem = error.to_problem_details()

    assert problem["type"] == "https://docsite.dev/problems/copy-failed"
    assert problem["title"] == "CopyError"
    assert problem["detail"] == "copy failed"
    assert problem["stage"] == "stage-compiled"
    assert problem["instance"] == "urn:docsite:stage:stage-compiled"
    assert problem["files"] == ["a", "b"]
    assert error.__cause__ is cause
    assert json.loads(render_problem(problem)) == problem


def test_error_string_names_stage_and_cause() -> None:
    error = BuildError("compiler crashed", cause=RuntimeError("x"))
    assert str(error) == "BuildError[build-docs]: compiler crashed (caused by: RuntimeError)"


def test_context_cannot_override_standard_members() -> None:
    problem = FetchError("down", context={"code": "other", "status": 1}).to_problem_details()
    assert problem["code"] == "fetch-failed"
    assert problem["status"] == 503


def test_tool_timeout_problem() -> None:
    problem = tool_timeout_problem_details(["cargo", "doc"], timeout=5.0)
    assert problem["status"] == 504
    assert problem["timeout"] == 5.0
    assert problem["command"] == ["cargo", "doc"]
    assert problem["instance"] == "urn:tool:cargo:timeout"


def test_format_error_message() -> None:
    message = format_error_message("DOCSITE-BLD-001", "Compiler exited with status 101", details="tail")
    lines = message.splitlines()
    assert lines[0] == "[ERROR DOCSITE-BLD-001] (build-docs) Compiler exited with status 101"
    assert lines[1] == "tail"
    assert lines[2].startswith("Hint: ")
    assert format_error_message("UNKNOWN", "oops") == "[ERROR UNKNOWN] oops"


class TestLogging:
    """Structured logging helpers."""

    def test_fields_and_correlation_id_reach_the_record(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = with_fields(get_logger("docsite.test"), operation="clear", output_dir="/srv")
        with caplog.at_level(logging.INFO, logger="docsite.test"), CorrelationContext("run-7"):
            logger.info("Output tree cleared", extra={"removed": 2})

        record = caplog.records[-1]
        assert record.operation == "clear"
        assert record.output_dir == "/srv"
        assert record.removed == 2
        assert record.status == "success"
        assert record.correlation_id == "run-7"
        assert get_correlation_id() is None

    def test_error_level_sets_error_status(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="docsite.test"):
            get_logger("docsite.test").error("boom")
        assert caplog.records[-1].status == "error"
        assert caplog.records[-1].operation == "unknown"

    def test_json_formatter(self) -> None:
        record = logging.LogRecord("docsite.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.operation = "publish"
        record.unserialisable = object()
        payload = json.loads(JsonFormatter().format(record))
        assert payload["message"] == "hello world"
        assert payload["operation"] == "publish"
        assert payload["level"] == "INFO"
        assert "unserialisable" not in payload
