"""Prometheus metrics and OpenTelemetry spans for pipeline work.

Two observation helpers are provided: :func:`observe_tool_run` wraps a single
subprocess invocation and :func:`observe_stage` wraps one pipeline stage. Both
record a counter and a duration histogram, log the outcome with structured
fields, and open a span through the OpenTelemetry API (a no-op unless an SDK
is configured by the host process). Metrics are registered once at import time
on the default Prometheus registry.
"""

from __future__ import annotations

import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Final

from opentelemetry import trace
from prometheus_client import Counter, Histogram

from docsite._shared.logging import get_logger, with_fields

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from docsite._shared.logging import StructuredLoggerAdapter

__all__: Final[list[str]] = [
    "FETCHES_TOTAL",
    "STAGE_DURATION_SECONDS",
    "STAGE_RUNS_TOTAL",
    "TOOL_DURATION_SECONDS",
    "TOOL_FAILURES_TOTAL",
    "TOOL_RUNS_TOTAL",
    "StageObservation",
    "ToolRunObservation",
    "observe_stage",
    "observe_tool_run",
]

LOGGER = get_logger(__name__)
TRACER = trace.get_tracer("docsite")

TOOL_RUNS_TOTAL: Final = Counter(
    "docsite_tool_runs_total",
    "Total documentation tool subprocess invocations",
    labelnames=["tool", "status"],
)
TOOL_FAILURES_TOTAL: Final = Counter(
    "docsite_tool_failures_total",
    "Count of documentation tool failures grouped by reason",
    labelnames=["tool", "reason"],
)
TOOL_DURATION_SECONDS: Final = Histogram(
    "docsite_tool_duration_seconds",
    "Documentation tool subprocess duration in seconds",
    labelnames=["tool", "status"],
)
STAGE_RUNS_TOTAL: Final = Counter(
    "docsite_stage_runs_total",
    "Pipeline stage executions grouped by outcome",
    labelnames=["stage", "status"],
)
STAGE_DURATION_SECONDS: Final = Histogram(
    "docsite_stage_duration_seconds",
    "Pipeline stage duration in seconds",
    labelnames=["stage", "status"],
)
FETCHES_TOTAL: Final = Counter(
    "docsite_fetches_total",
    "Dependency artifacts retrieved into the cache",
    labelnames=["scheme", "status"],
)


@dataclass(slots=True)
class ToolRunObservation:
    """Captures runtime details for a single subprocess invocation."""

    command: Sequence[str]
    cwd: Path | None
    timeout: float | None
    tool: str = field(init=False)
    status: str = field(default="success", init=False)
    failure_reason: str | None = field(default=None, init=False)
    returncode: int | None = field(default=None, init=False)
    timed_out: bool = field(default=False, init=False)
    start_time: float = field(default_factory=time.monotonic, init=False)
    metrics_enabled: bool = True

    def __post_init__(self) -> None:
        self.tool = Path(self.command[0]).name if self.command else "<unknown>"

    def success(self, returncode: int) -> None:
        """Record successful completion with ``returncode``."""
        self.status = "success"
        self.returncode = returncode
        self.failure_reason = None
        self.timed_out = False

    def failure(
        self,
        reason: str,
        *,
        returncode: int | None = None,
        timed_out: bool = False,
    ) -> None:
        """Record failed completion with context metadata."""
        self.status = "error"
        self.failure_reason = reason
        self.returncode = returncode
        self.timed_out = timed_out

    def duration_seconds(self) -> float:
        """Return the elapsed duration in seconds."""
        return time.monotonic() - self.start_time


@contextmanager
def observe_tool_run(
    command: Sequence[str],
    *,
    cwd: Path | None,
    timeout: float | None,
    metrics_enabled: bool = True,
    tracing_enabled: bool = True,
) -> Iterator[ToolRunObservation]:
    """Record metrics, logs and a span for a subprocess invocation.

    Exceptions raised inside the block are recorded as failures and re-raised.

    Yields
    ------
    ToolRunObservation
        Mutable observation the caller marks as success or failure.
    """
    observation = ToolRunObservation(
        command=command,
        cwd=cwd,
        timeout=timeout,
        metrics_enabled=metrics_enabled,
    )
    logger = with_fields(
        LOGGER,
        operation="tool-run",
        tool=observation.tool,
        command=[str(part) for part in command],
        cwd=str(cwd) if cwd else None,
        timeout_seconds=timeout,
    )
    span_context = (
        TRACER.start_as_current_span(
            f"docsite.tool.{observation.tool}",
            attributes={
                "tool": observation.tool,
                "cwd": str(cwd) if cwd else "",
                "timeout_s": timeout if timeout is not None else -1.0,
            },
        )
        if tracing_enabled
        else nullcontext()
    )
    with span_context:
        try:
            yield observation
        except Exception:
            if observation.status == "success":
                observation.failure("exception")
            _record_tool_run(observation, logger)
            raise
        else:
            _record_tool_run(observation, logger)


def _record_tool_run(observation: ToolRunObservation, logger: StructuredLoggerAdapter) -> None:
    duration = observation.duration_seconds()
    status = observation.status
    if observation.metrics_enabled:
        TOOL_RUNS_TOTAL.labels(tool=observation.tool, status=status).inc()
        TOOL_DURATION_SECONDS.labels(tool=observation.tool, status=status).observe(duration)
    extra: dict[str, object] = {
        "duration_ms": duration * 1000,
        "status": status,
        "returncode": observation.returncode,
        "timed_out": observation.timed_out,
    }
    if status == "error":
        reason = observation.failure_reason or "unknown"
        if observation.metrics_enabled:
            TOOL_FAILURES_TOTAL.labels(tool=observation.tool, reason=reason).inc()
        extra["reason"] = reason
        logger.error("Tool run failed", extra=extra)
    else:
        logger.info("Tool run succeeded", extra=extra)


@dataclass(slots=True)
class StageObservation:
    """Outcome of one pipeline stage."""

    stage: str
    status: str = field(default="success", init=False)
    error_type: str | None = field(default=None, init=False)
    start_time: float = field(default_factory=time.monotonic, init=False)

    def duration_seconds(self) -> float:
        """Return the elapsed duration in seconds."""
        return time.monotonic() - self.start_time


@contextmanager
def observe_stage(
    stage: str,
    *,
    metrics_enabled: bool = True,
    tracing_enabled: bool = True,
    **fields: object,
) -> Iterator[StageObservation]:
    """Wrap a pipeline stage with metrics, a span and start/finish logs.

    Yields
    ------
    StageObservation
        Observation for the running stage.
    """
    observation = StageObservation(stage=stage)
    logger = with_fields(LOGGER, operation=stage, **fields)
    span_context = (
        TRACER.start_as_current_span(f"docsite.stage.{stage}")
        if tracing_enabled
        else nullcontext()
    )
    logger.info("Stage started", extra={"status": "started"})
    with span_context:
        try:
            yield observation
        except Exception as exc:
            observation.status = "error"
            observation.error_type = exc.__class__.__name__
            _record_stage(observation, logger, metrics_enabled=metrics_enabled)
            raise
        else:
            _record_stage(observation, logger, metrics_enabled=metrics_enabled)


def _record_stage(
    observation: StageObservation,
    logger: StructuredLoggerAdapter,
    *,
    metrics_enabled: bool,
) -> None:
    duration = observation.duration_seconds()
    if metrics_enabled:
        STAGE_RUNS_TOTAL.labels(stage=observation.stage, status=observation.status).inc()
        STAGE_DURATION_SECONDS.labels(stage=observation.stage, status=observation.status).observe(
            duration
        )
    extra: dict[str, object] = {"status": observation.status, "duration_ms": duration * 1000}
    if observation.status == "error":
        extra["error_type"] = observation.error_type
        logger.error("Stage failed", extra=extra)
    else:
        logger.info("Stage completed", extra=extra)
