"""Artifact Assembler: merge static assets and compiled docs into the served tree.

The assembler runs four ordered steps, each fatal on failure:

1. ``clear`` empties the output root,
2. ``stage_static`` copies the static asset set into it,
3. ``build_docs`` runs the documentation compiler,
4. ``stage_compiled`` copies the compiled output under the reserved subpath.

There is no rollback. After any failure the output tree is in an undefined
state and must not be served.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from docsite._shared.logging import get_logger, with_fields
from docsite._shared.metrics import observe_stage
from docsite.errors import ClearError, CopyError, PipelineStage

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from docsite._shared.metrics import StageObservation
    from docsite.cache import DependencyCache
    from docsite.compiler import DocCompiler

__all__ = ["ArtifactAssembler", "AssemblyResult", "snapshot_tree"]

LOGGER = get_logger(__name__)


def snapshot_tree(root: Path) -> frozenset[str]:
    """Return the POSIX-style relative paths of every file below ``root``."""
    if not root.is_dir():
        return frozenset()
    return frozenset(
        path.relative_to(root).as_posix()
        for path in root.rglob("*")
        if path.is_file() or path.is_symlink()
    )


@dataclass(frozen=True, slots=True)
class AssemblyResult:
    """Files present in the output tree after a successful assembly."""

    output_dir: Path
    static_files: frozenset[str]
    compiled_files: frozenset[str]

    @property
    def files(self) -> frozenset[str]:
        return self.static_files | self.compiled_files


@dataclass(slots=True)
class ArtifactAssembler:
    """Produce the output tree from static assets and freshly compiled docs.

    Parameters
    ----------
    output_dir : Path
        Output tree root. Must already exist.
    static_dir : Path
        Static asset set, copied verbatim.
    reserved_subpath : str
        Relative location of the compiled documentation inside ``output_dir``.
    compiler : DocCompiler
        Compiler invoked in the build step.
    metrics_enabled, tracing_enabled : bool, optional
        Observe each step with Prometheus metrics and an OpenTelemetry span.
    """

    output_dir: Path
    static_dir: Path
    reserved_subpath: str
    compiler: DocCompiler
    metrics_enabled: bool = True
    tracing_enabled: bool = True

    @property
    def reserved_root(self) -> str:
        """First path component of the reserved subpath."""
        return PurePosixPath(self.reserved_subpath).parts[0]

    @property
    def compiled_destination(self) -> Path:
        return self.output_dir.joinpath(*PurePosixPath(self.reserved_subpath).parts)

    def clear(self) -> int:
        """Remove every entry below the output root and return how many were removed.

        Raises
        ------
        ClearError
            When the root is missing, is not a writable directory, or an entry
            cannot be removed.
        """
        root = self.output_dir
        if not root.exists():
            message = f"Output directory does not exist: {root}"
            raise ClearError(message, context={"output_dir": str(root)})
        if not root.is_dir():
            message = f"Output path is not a directory: {root}"
            raise ClearError(message, context={"output_dir": str(root)})
        if not os.access(root, os.W_OK | os.X_OK):
            message = f"Output directory is not writable: {root}"
            raise ClearError(message, context={"output_dir": str(root)})
        removed = 0
        try:
            for entry in sorted(root.iterdir()):
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                removed += 1
        except OSError as exc:
            message = f"Output directory could not be cleared: {root}"
            raise ClearError(message, cause=exc, context={"output_dir": str(root)}) from exc
        LOGGER.info(
            "Output tree cleared",
            extra={"operation": PipelineStage.CLEAR.value, "output_dir": str(root), "removed": removed},
        )
        return removed

    def stage_static(self) -> frozenset[str]:
        """Copy the static asset set into the output root.

        Returns
        -------
        frozenset[str]
            Relative paths of the copied files.

        Raises
        ------
        CopyError
            When the static directory is missing, an entry collides with the
            reserved subpath, or copying fails.
        """
        source = self.static_dir
        if not source.is_dir():
            message = f"Static asset directory does not exist: {source}"
            raise CopyError(message, context={"static_dir": str(source)})
        if (source / self.reserved_root).exists():
            message = (
                f"Static asset '{self.reserved_root}' collides with the reserved subpath "
                f"'{self.reserved_subpath}'"
            )
            raise CopyError(
                message,
                context={"static_dir": str(source), "reserved_subpath": self.reserved_subpath},
            )
        try:
            shutil.copytree(source, self.output_dir, symlinks=True, dirs_exist_ok=True)
        except (OSError, shutil.Error) as exc:
            message = f"Static assets could not be copied from {source}"
            raise CopyError(message, cause=exc, context={"static_dir": str(source)}) from exc
        files = snapshot_tree(source)
        LOGGER.info(
            "Static assets staged",
            extra={
                "operation": PipelineStage.STAGE_STATIC.value,
                "static_dir": str(source),
                "file_count": len(files),
            },
        )
        return files

    def build_docs(self, source_tree: Path, cache: DependencyCache) -> Path:
        """Compile first-party documentation; see :meth:`DocCompiler.build`."""
        return self.compiler.build(source_tree, cache)

    def stage_compiled(self, compiled_dir: Path) -> frozenset[str]:
        """Copy the compiled documentation under the reserved subpath.

        Returns
        -------
        frozenset[str]
            Output-relative paths of the copied files.

        Raises
        ------
        CopyError
            When the destination already exists or copying fails.
        """
        destination = self.compiled_destination
        context = {"compiled_dir": str(compiled_dir), "destination": str(destination)}
        if destination.exists():
            message = f"Reserved subpath already populated: {destination}"
            raise CopyError(message, stage=PipelineStage.STAGE_COMPILED, context=context)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(compiled_dir, destination, symlinks=True)
        except (OSError, shutil.Error) as exc:
            message = f"Compiled documentation could not be copied from {compiled_dir}"
            raise CopyError(
                message, stage=PipelineStage.STAGE_COMPILED, cause=exc, context=context
            ) from exc
        prefix = PurePosixPath(self.reserved_subpath)
        files = frozenset((prefix / rel).as_posix() for rel in snapshot_tree(compiled_dir))
        LOGGER.info(
            "Compiled documentation staged",
            extra={
                "operation": PipelineStage.STAGE_COMPILED.value,
                "destination": str(destination),
                "file_count": len(files),
            },
        )
        return files

    def assemble(self, source_tree: Path, cache: DependencyCache) -> AssemblyResult:
        """Run clear, stage-static, build-docs and stage-compiled in order.

        Raises
        ------
        ClearError, CopyError, BuildError
            From the failing step; later steps are not attempted.
        """
        logger = with_fields(LOGGER, operation="assemble", output_dir=str(self.output_dir))
        with self._observe(PipelineStage.CLEAR):
            self.clear()
        with self._observe(PipelineStage.STAGE_STATIC):
            static_files = self.stage_static()
        with self._observe(PipelineStage.BUILD_DOCS, source_tree=str(source_tree)):
            compiled_dir = self.build_docs(source_tree, cache)
        with self._observe(PipelineStage.STAGE_COMPILED):
            compiled_files = self.stage_compiled(compiled_dir)
        result = AssemblyResult(
            output_dir=self.output_dir,
            static_files=static_files,
            compiled_files=compiled_files,
        )
        logger.info("Output tree assembled", extra={"file_count": len(result.files)})
        return result

    def _observe(self, stage: PipelineStage, **fields: object) -> AbstractContextManager[StageObservation]:
        return observe_stage(
            stage.value,
            metrics_enabled=self.metrics_enabled,
            tracing_enabled=self.tracing_enabled,
            output_dir=str(self.output_dir),
            **fields,
        )
