"""Typed exception hierarchy for the publishing pipeline.

Every stage failure is fatal. Each exception records the stage that failed, a
stable :class:`ErrorCode`, the process exit status the CLI should use, and an
optional context mapping, and converts itself into RFC 9457 Problem Details.

Examples
--------
>>> from docsite.errors import BuildError, ErrorCode, PipelineStage
>>> error = BuildError("cargo exited with code 101", context={"returncode": 101})
>>> error.code is ErrorCode.BUILD_FAILED
True
>>> error.stage is PipelineStage.BUILD_DOCS
True
>>> error.to_problem_details()["status"]
500
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import ClassVar, cast

from docsite._shared.problem_details import (
    BASE_TYPE_URI,
    JsonValue,
    ProblemDetailsDict,
    ProblemDetailsParams,
    build_problem_details,
)

__all__ = [
    "BuildError",
    "ClearError",
    "CopyError",
    "DocsiteError",
    "ErrorCode",
    "FetchError",
    "PipelineStage",
    "ResolutionError",
]

_STANDARD_MEMBERS = frozenset({"type", "title", "status", "detail", "instance"})


class PipelineStage(StrEnum):
    """Named steps of a pipeline run, in execution order."""

    STAGE_DEPENDENCIES = "stage-dependencies"
    CLEAR = "clear"
    STAGE_STATIC = "stage-static"
    BUILD_DOCS = "build-docs"
    STAGE_COMPILED = "stage-compiled"


class ErrorCode(StrEnum):
    """Stable error codes used in Problem Details ``type`` URIs."""

    RESOLUTION_FAILED = "resolution-failed"
    FETCH_FAILED = "fetch-failed"
    CLEAR_FAILED = "clear-failed"
    COPY_FAILED = "copy-failed"
    BUILD_FAILED = "build-failed"


class DocsiteError(Exception):
    """Base exception for every pipeline failure.

    Parameters
    ----------
    message : str
        Human-readable error message.
    stage : PipelineStage | None, optional
        Stage that failed. Defaults to the class-level stage.
    cause : BaseException | None, optional
        Underlying exception, stored as ``__cause__``.
    context : Mapping[str, object] | None, optional
        Extra structured details, merged into the Problem Details payload.
    operator_code : str | None, optional
        Canonical operator code. Defaults to the code registered for ``stage``.
    """

    code: ClassVar[ErrorCode]
    default_stage: ClassVar[PipelineStage]
    exit_code: ClassVar[int] = 1
    default_operator_code: ClassVar[str] = ""
    stage_operator_codes: ClassVar[Mapping[PipelineStage, str]] = {}
    http_status: ClassVar[int] = 500

    def __init__(
        self,
        message: str,
        *,
        stage: PipelineStage | None = None,
        cause: BaseException | None = None,
        context: Mapping[str, object] | None = None,
        operator_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.operator_code = operator_code or self.stage_operator_codes.get(
            self.stage, self.default_operator_code
        )
        self.context: dict[str, object] = dict(context) if context else {}
        if cause is not None:
            self.__cause__ = cause

    def to_problem_details(self, instance: str | None = None) -> ProblemDetailsDict:
        """Convert the error to an RFC 9457 Problem Details payload.

        Parameters
        ----------
        instance : str | None, optional
            URI identifying the occurrence. Defaults to a stage URN.

        Returns
        -------
        ProblemDetailsDict
            Payload with ``code``, ``stage`` and any context extensions.
        """
        extensions: dict[str, JsonValue] = {
            "code": self.code.value,
            "stage": self.stage.value,
        }
        for key, value in self.context.items():
            if key in _STANDARD_MEMBERS:
                continue
            extensions.setdefault(key, cast("JsonValue", _jsonable(value)))
        return build_problem_details(
            ProblemDetailsParams(
                type=f"{BASE_TYPE_URI}/{self.code.value}",
                title=self.__class__.__name__,
                status=self.http_status,
                detail=self.message,
                instance=instance or f"urn:docsite:stage:{self.stage.value}",
                extensions=extensions,
            )
        )

    def __str__(self) -> str:
        base = f"{self.__class__.__name__}[{self.stage.value}]: {self.message}"
        if self.__cause__ is not None:
            base += f" (caused by: {type(self.__cause__).__name__})"
        return base


class ResolutionError(DocsiteError):
    """A manifest constraint could not be satisfied, or the manifest is malformed."""

    code = ErrorCode.RESOLUTION_FAILED
    default_stage = PipelineStage.STAGE_DEPENDENCIES
    exit_code = 10
    default_operator_code = "DOCSITE-STG-001"
    http_status = 422


class FetchError(DocsiteError):
    """A resolved dependency (or the package index) could not be retrieved."""

    code = ErrorCode.FETCH_FAILED
    default_stage = PipelineStage.STAGE_DEPENDENCIES
    exit_code = 11
    default_operator_code = "DOCSITE-STG-002"
    http_status = 503


class ClearError(DocsiteError):
    """The output tree root is missing, not a directory, or not writable."""

    code = ErrorCode.CLEAR_FAILED
    default_stage = PipelineStage.CLEAR
    exit_code = 20
    default_operator_code = "DOCSITE-ASM-001"


class CopyError(DocsiteError):
    """Static assets or compiled output could not be copied into the output tree."""

    code = ErrorCode.COPY_FAILED
    default_stage = PipelineStage.STAGE_STATIC
    exit_code = 21
    default_operator_code = "DOCSITE-ASM-002"
    stage_operator_codes: ClassVar[Mapping[PipelineStage, str]] = {
        PipelineStage.STAGE_COMPILED: "DOCSITE-ASM-003",
    }


class BuildError(DocsiteError):
    """The documentation compiler failed or produced no output."""

    code = ErrorCode.BUILD_FAILED
    default_stage = PipelineStage.BUILD_DOCS
    exit_code = 22
    default_operator_code = "DOCSITE-BLD-001"


def _jsonable(value: object) -> object:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Mapping):
        return {str(key): _jsonable(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return str(value)
