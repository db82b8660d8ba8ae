"""Process execution adapter for external documentation tools.

Every subprocess the pipeline starts goes through :class:`ProcessRunner`, which
applies the executable allow list, builds a sanitised environment, enforces a
timeout and records metrics for the run. Failures to *start* or *finish* a
process raise :class:`ToolExecutionError` carrying Problem Details; a non-zero
exit code is reported on the returned :class:`ToolRunResult` unless
``check=True``.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Callable, Mapping, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from docsite._shared.logging import get_logger
from docsite._shared.metrics import ToolRunObservation, observe_tool_run
from docsite._shared.problem_details import (
    tool_disallowed_problem_details,
    tool_failure_problem_details,
    tool_missing_problem_details,
    tool_timeout_problem_details,
)
from docsite._shared.settings import get_settings

if TYPE_CHECKING:
    from docsite._shared.logging import StructuredLoggerAdapter
    from docsite._shared.problem_details import ProblemDetailsDict
    from docsite._shared.settings import PipelineSettings

Command = Sequence[str]
ObservationFactory = Callable[
    [Sequence[str], Path | None, float | None], AbstractContextManager[ToolRunObservation]
]

LOGGER = get_logger(__name__)


@dataclass(slots=True)
class ToolRunResult:
    """Structured result from invoking a subprocess."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool


class ToolExecutionError(RuntimeError):
    """Raised when a subprocess cannot be run to completion.

    Parameters
    ----------
    message : str
        Human-readable error message.
    command : Sequence[str]
        Command that failed.
    returncode : int | None, optional
        Process exit code if available.
    streams : tuple[str, str] | None, optional
        ``(stdout, stderr)`` tuple if available.
    problem : ProblemDetailsDict | None, optional
        RFC 9457 Problem Details payload.
    """

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str],
        returncode: int | None = None,
        streams: tuple[str, str] | None = None,
        problem: ProblemDetailsDict | None = None,
    ) -> None:
        super().__init__(message)
        self.command: tuple[str, ...] = tuple(command)
        self.returncode = returncode
        self.stdout, self.stderr = streams if streams is not None else ("", "")
        self.problem = problem


@runtime_checkable
class AllowListPolicy(Protocol):
    """Protocol for enforcing executable allow-list checks."""

    def resolve(self, executable: str, command: Command) -> Path: ...


@dataclass(slots=True, frozen=True)
class AllowListEnforcer:
    """Allow-list policy backed by :class:`PipelineSettings`."""

    settings_loader: Callable[[], PipelineSettings] = get_settings

    def resolve(self, executable: str, command: Command) -> Path:
        """Resolve ``executable`` to an absolute, allow-listed path.

        Raises
        ------
        ToolExecutionError
            When the executable cannot be found on ``PATH`` or is not allowed.
        """
        candidate = Path(executable)
        if candidate.is_absolute():
            self.ensure_permitted(candidate, command)
            return candidate

        resolved = shutil.which(executable)
        if resolved is None:
            detail = f"Executable '{executable}' could not be resolved to an absolute path"
            problem = tool_missing_problem_details(
                command=command, executable=executable, detail=detail
            )
            raise ToolExecutionError(detail, command=command, problem=problem)

        resolved_path = Path(resolved)
        self.ensure_permitted(resolved_path, command)
        return resolved_path

    def ensure_permitted(self, executable: Path, command: Command) -> None:
        settings = self.settings_loader()
        if settings.is_allowed(executable):
            return
        problem = tool_disallowed_problem_details(
            command=command,
            executable=executable,
            allowlist=settings.exec_allowlist,
        )
        message = f"Executable '{executable}' is not permitted by DOCSITE_EXEC_ALLOWLIST"
        LOGGER.warning(
            message,
            extra={"executable": executable.as_posix(), "command": list(command)},
        )
        raise ToolExecutionError(message, command=command, problem=problem)


@runtime_checkable
class EnvironmentPolicy(Protocol):
    """Protocol describing how subprocess environments are constructed."""

    def build(self, overrides: Mapping[str, str] | None) -> dict[str, str]: ...


@dataclass(slots=True, frozen=True)
class SanitisedEnvironment:
    """Environment policy that whitelists baseline variables and applies overrides."""

    allowed_keys: frozenset[str] = frozenset(
        {
            "HOME",
            "PATH",
            "LANG",
            "LC_ALL",
            "LC_CTYPE",
            "TMPDIR",
            "TZ",
            "SYSTEMROOT",
        }
    )
    allowed_prefixes: tuple[str, ...] = ("CARGO_", "RUST", "CI")

    def build(self, overrides: Mapping[str, str] | None) -> dict[str, str]:
        baseline = {
            key: value
            for key, value in os.environ.items()
            if key in self.allowed_keys or key.startswith(self.allowed_prefixes)
        }
        if overrides:
            baseline.update(overrides)
        return {key: str(value) for key, value in baseline.items()}


def _default_observer_factory(
    command: Sequence[str],
    cwd: Path | None,
    timeout: float | None,
) -> AbstractContextManager[ToolRunObservation]:
    return observe_tool_run(command, cwd=cwd, timeout=timeout)


@dataclass(slots=True)
class ProcessRunner:
    """Facade that executes documentation tools under shared policies."""

    allowlist: AllowListPolicy = field(default_factory=AllowListEnforcer)
    environment: EnvironmentPolicy = field(default_factory=SanitisedEnvironment)
    observer_factory: ObservationFactory = field(default=_default_observer_factory)
    logger: StructuredLoggerAdapter = field(default_factory=lambda: get_logger(__name__))

    @classmethod
    def for_settings(cls, settings: PipelineSettings) -> ProcessRunner:
        """Return a runner whose allow list and observability follow ``settings``."""

        def _observer(
            command: Sequence[str], cwd: Path | None, timeout: float | None
        ) -> AbstractContextManager[ToolRunObservation]:
            return observe_tool_run(
                command,
                cwd=cwd,
                timeout=timeout,
                metrics_enabled=settings.metrics_enabled,
                tracing_enabled=settings.tracing_enabled,
            )

        return cls(
            allowlist=AllowListEnforcer(settings_loader=lambda: settings),
            observer_factory=_observer,
        )

    def run(
        self,
        command: Command,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        check: bool = False,
    ) -> ToolRunResult:
        """Execute ``command`` under the configured policies.

        Raises
        ------
        ToolExecutionError
            When the command is empty, disallowed, missing, times out, or (with
            ``check=True``) exits non-zero.
        """
        if not command:
            message = "Command must contain at least one argument"
            raise ToolExecutionError(message, command=[])

        executable = self.allowlist.resolve(command[0], command)
        final_command = (str(executable), *command[1:])
        sanitised_env = self.environment.build(env)

        with self.observer_factory(final_command, cwd, timeout) as observation:
            try:
                completed = subprocess.run(  # noqa: S603 - executable resolved through the allow list
                    final_command,
                    cwd=str(cwd) if cwd else None,
                    env=sanitised_env,
                    text=True,
                    capture_output=True,
                    timeout=timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                observation.failure("timeout", timed_out=True)
                problem = tool_timeout_problem_details(command=command, timeout=timeout)
                message = "Subprocess timed out"
                raise ToolExecutionError(
                    message,
                    command=command,
                    streams=(_decode_stream(exc.stdout), _decode_stream(exc.stderr)),
                    problem=problem,
                ) from exc
            except OSError as exc:
                observation.failure("spawn_failed")
                problem = tool_missing_problem_details(
                    command=command, executable=command[0], detail=str(exc)
                )
                message = "Executable could not be started"
                raise ToolExecutionError(message, command=command, problem=problem) from exc

            result = ToolRunResult(
                command=final_command,
                returncode=completed.returncode,
                stdout=completed.stdout,
                stderr=completed.stderr,
                duration_seconds=observation.duration_seconds(),
                timed_out=False,
            )

            if completed.returncode == 0:
                observation.success(completed.returncode)
            else:
                observation.failure("non_zero_exit", returncode=completed.returncode)

            if check and completed.returncode != 0:
                problem = tool_failure_problem_details(
                    command=command,
                    returncode=completed.returncode,
                    detail=completed.stderr.strip() or "Unknown failure",
                )
                message = "Subprocess returned a non-zero exit status"
                raise ToolExecutionError(
                    message,
                    command=command,
                    returncode=completed.returncode,
                    streams=(completed.stdout, completed.stderr),
                    problem=problem,
                )

            return result


def _decode_stream(stream: object) -> str:
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    if stream is None:
        return ""
    return str(stream)


__all__ = [
    "AllowListEnforcer",
    "AllowListPolicy",
    "EnvironmentPolicy",
    "ProcessRunner",
    "SanitisedEnvironment",
    "ToolExecutionError",
    "ToolRunResult",
]
