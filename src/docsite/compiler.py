"""Invocation of the external documentation compiler.

The compiler is opaque: it is run with a fixed command (by default
``cargo doc --no-deps --lib``, documenting only the first-party library and
none of its dependencies) inside the source tree, with the dependency cache
exported through an environment variable. Its contract is a directory of
generated files at a configured location.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from docsite._shared.error_codes import format_error_message
from docsite._shared.logging import get_logger, with_fields
from docsite._shared.process import ProcessRunner, ToolExecutionError
from docsite.errors import BuildError

if TYPE_CHECKING:
    from docsite._shared.settings import PipelineSettings
    from docsite.cache import DependencyCache

__all__ = ["DocCompiler"]

LOGGER = get_logger(__name__)

_STDERR_TAIL_LINES = 40


def _tail(text: str, lines: int = _STDERR_TAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


@dataclass(slots=True)
class DocCompiler:
    """Run the documentation compiler for one source tree."""

    command: tuple[str, ...]
    output_dir: Path
    cache_env_var: str
    timeout: float
    runner: ProcessRunner = field(default_factory=ProcessRunner)

    @classmethod
    def from_settings(
        cls, settings: PipelineSettings, *, runner: ProcessRunner | None = None
    ) -> DocCompiler:
        return cls(
            command=settings.compiler_command,
            output_dir=settings.compiler_output,
            cache_env_var=settings.cache_env_var,
            timeout=settings.build_timeout_seconds,
            runner=runner or ProcessRunner.for_settings(settings),
        )

    def build(self, source_tree: Path, cache: DependencyCache) -> Path:
        """Compile documentation and return the generated output directory.

        Parameters
        ----------
        source_tree : Path
            Directory the compiler runs in.
        cache : DependencyCache
            Populated cache; its root is exported as ``cache_env_var``.

        Returns
        -------
        Path
            Directory holding the compiled documentation.

        Raises
        ------
        BuildError
            When the source tree is missing, the compiler cannot run, exits
            non-zero, times out, or leaves no output directory behind.
        """
        logger = with_fields(
            LOGGER,
            operation="build-docs",
            command=list(self.command),
            source_tree=str(source_tree),
        )
        if not source_tree.is_dir():
            message = f"Source tree does not exist: {source_tree}"
            raise BuildError(message, context={"source_tree": str(source_tree)})

        env = {self.cache_env_var: str(cache.root.resolve())}
        try:
            result = self.runner.run(
                self.command,
                cwd=source_tree,
                env=env,
                timeout=self.timeout,
            )
        except ToolExecutionError as exc:
            context: dict[str, object] = {"command": list(exc.command)}
            if exc.problem is not None:
                context["tool_problem"] = exc.problem
            if exc.stderr:
                context["stderr"] = _tail(exc.stderr)
            raise BuildError(str(exc), cause=exc, context=context) from exc

        if result.returncode != 0:
            stderr_tail = _tail(result.stderr or result.stdout)
            logger.error(
                format_error_message(
                    "DOCSITE-BLD-001",
                    f"Compiler exited with status {result.returncode}",
                    details=stderr_tail,
                ),
                extra={"returncode": result.returncode},
            )
            message = f"Documentation compiler exited with status {result.returncode}"
            raise BuildError(
                message,
                context={
                    "command": list(self.command),
                    "returncode": result.returncode,
                    "stderr": stderr_tail,
                },
            )

        output_dir = self.output_dir if self.output_dir.is_absolute() else source_tree / self.output_dir
        if not output_dir.is_dir():
            message = f"Documentation compiler produced no output at {output_dir}"
            raise BuildError(message, context={"output_dir": str(output_dir)})

        logger.info(
            "Documentation compiled",
            extra={"output_dir": str(output_dir), "duration_ms": result.duration_seconds * 1000},
        )
        return output_dir
