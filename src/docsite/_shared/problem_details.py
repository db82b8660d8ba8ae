"""Problem Details helpers for RFC 9457 compliance.

Failures surfaced by the pipeline, the subprocess runner and the settings
loader are all described with the same Problem Details payload so the CLI can
print a single machine-readable document on stderr.

Examples
--------
>>> from docsite._shared.problem_details import (
...     ProblemDetailsParams,
...     build_problem_details,
...     render_problem,
... )
>>> problem = build_problem_details(
...     ProblemDetailsParams(
...         type="https://docsite.dev/problems/build-failed",
...         title="Documentation build failed",
...         status=500,
...         detail="cargo exited with code 101",
...         instance="urn:docsite:stage:build-docs",
...         extensions={"returncode": 101},
...     )
... )
>>> assert "build-failed" in render_problem(problem)
"""

# pylint: disable=redefined-builtin

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

__all__ = [
    "BASE_TYPE_URI",
    "JsonPrimitive",
    "JsonValue",
    "ProblemDetailsDict",
    "ProblemDetailsParams",
    "ToolProblemDetailsParams",
    "build_problem_details",
    "build_tool_problem_details",
    "coerce_optional_dict",
    "render_problem",
    "tool_disallowed_problem_details",
    "tool_failure_problem_details",
    "tool_missing_problem_details",
    "tool_timeout_problem_details",
]

BASE_TYPE_URI = "https://docsite.dev/problems"

JsonPrimitive = str | int | float | bool | None
JsonValue = JsonPrimitive | list["JsonValue"] | dict[str, "JsonValue"]

ProblemDetailsDict = dict[str, JsonValue]


def coerce_optional_dict(
    mapping: Mapping[str, JsonValue] | None,
) -> dict[str, JsonValue] | None:
    """Return ``mapping`` as a ``dict`` when non-empty, otherwise ``None``."""
    if mapping is None:
        return None
    materialised = {str(key): value for key, value in mapping.items()}
    if not materialised:
        return None
    return materialised


@dataclass(frozen=True, slots=True)
class ProblemDetailsParams:
    """Core fields required to build a Problem Details payload."""

    type: str
    title: str
    status: int
    detail: str
    instance: str
    extensions: Mapping[str, JsonValue] | None = None


def build_problem_details(params: ProblemDetailsParams) -> ProblemDetailsDict:
    """Build an RFC 9457 Problem Details payload.

    Extension members are merged at the top level of the payload, after the
    five standard members.

    Parameters
    ----------
    params : ProblemDetailsParams
        Structured fields describing the problem.

    Returns
    -------
    ProblemDetailsDict
        Problem Details payload.
    """
    payload: ProblemDetailsDict = {
        "type": params.type,
        "title": params.title,
        "status": params.status,
        "detail": params.detail,
        "instance": params.instance,
    }
    extensions = coerce_optional_dict(params.extensions)
    if extensions:
        payload.update(extensions)
    return payload


@dataclass(frozen=True, slots=True)
class ToolProblemDetailsParams:
    """Inputs describing a subprocess failure."""

    category: str
    command: Sequence[str]
    status: int
    title: str
    detail: str
    instance_suffix: str
    extensions: Mapping[str, JsonValue] | None = None


def build_tool_problem_details(params: ToolProblemDetailsParams) -> ProblemDetailsDict:
    """Return a Problem Details payload describing a subprocess failure."""
    command_list = [str(part) for part in params.command]
    tool_name = Path(command_list[0]).name if command_list else "<unknown>"
    merged_extensions: dict[str, JsonValue] = {"command": list(command_list)}
    additional_extensions = coerce_optional_dict(params.extensions)
    if additional_extensions:
        merged_extensions.update(additional_extensions)
    return build_problem_details(
        ProblemDetailsParams(
            type=f"{BASE_TYPE_URI}/{params.category}",
            title=params.title,
            status=params.status,
            detail=params.detail,
            instance=f"urn:tool:{tool_name}:{params.instance_suffix}",
            extensions=merged_extensions,
        )
    )


def tool_timeout_problem_details(
    command: Sequence[str],
    *,
    timeout: float | None,
) -> ProblemDetailsDict:
    """Return Problem Details describing a subprocess timeout.

    Parameters
    ----------
    command : Sequence[str]
        Command that timed out.
    timeout : float | None
        Timeout duration in seconds.

    Returns
    -------
    ProblemDetailsDict
        Problem Details payload.
    """
    if command and timeout is not None:
        detail = f"Command '{command[0]}' timed out after {timeout} seconds"
    elif command:
        detail = f"Command '{command[0]}' timed out"
    else:
        detail = "Command timed out"
    extensions: dict[str, JsonValue] = {}
    if timeout is not None:
        extensions["timeout"] = timeout
    return build_tool_problem_details(
        ToolProblemDetailsParams(
            category="tool-timeout",
            command=command,
            status=504,
            title="Tool execution timed out",
            detail=detail,
            instance_suffix="timeout",
            extensions=coerce_optional_dict(extensions),
        )
    )


def tool_missing_problem_details(
    command: Sequence[str],
    *,
    executable: str,
    detail: str,
) -> ProblemDetailsDict:
    """Return Problem Details describing an executable that could not be found."""
    return build_tool_problem_details(
        ToolProblemDetailsParams(
            category="tool-missing",
            command=command or [executable],
            status=500,
            title="Executable not found",
            detail=detail,
            instance_suffix="missing",
        )
    )


def tool_disallowed_problem_details(
    command: Sequence[str],
    *,
    executable: Path,
    allowlist: Sequence[str],
) -> ProblemDetailsDict:
    """Return Problem Details describing an executable rejected by the allow list."""
    return build_tool_problem_details(
        ToolProblemDetailsParams(
            category="tool-exec-disallowed",
            command=command,
            status=403,
            title="Executable not allowed",
            detail=f"Executable '{executable}' is not permitted by DOCSITE_EXEC_ALLOWLIST",
            instance_suffix="disallowed",
            extensions={"allowlist": list(allowlist)},
        )
    )


def tool_failure_problem_details(
    command: Sequence[str],
    *,
    returncode: int,
    detail: str,
) -> ProblemDetailsDict:
    """Return Problem Details describing a non-zero exit code.

    Parameters
    ----------
    command : Sequence[str]
        Command that failed.
    returncode : int
        Non-zero exit code.
    detail : str
        Detailed error message, usually the tail of stderr.

    Returns
    -------
    ProblemDetailsDict
        Problem Details payload.
    """
    return build_tool_problem_details(
        ToolProblemDetailsParams(
            category="tool-failure",
            command=command,
            status=500,
            title="Tool returned a non-zero exit code",
            detail=detail,
            instance_suffix=f"exit-{returncode}",
            extensions={"returncode": returncode},
        )
    )


def render_problem(problem: ProblemDetailsDict) -> str:
    """Render Problem Details as a compact JSON string (no trailing newline)."""
    return json.dumps(problem, default=str)
