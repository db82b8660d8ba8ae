"""End-to-end publishing run: stage dependencies, then assemble the output tree.

Stages run strictly in order and the first failure aborts the run. The
:class:`~docsite.errors.DocsiteError` raised by the failing stage propagates to
the caller unchanged; the CLI maps it to an exit status.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING

from docsite._shared.logging import CorrelationContext, get_logger, with_fields
from docsite._shared.metrics import observe_stage
from docsite.assembler import ArtifactAssembler, AssemblyResult
from docsite.cache import DependencyCache
from docsite.compiler import DocCompiler
from docsite.errors import BuildError, PipelineStage
from docsite.fetcher import ArtifactFetcher
from docsite.manifest import load_manifest
from docsite.registry import load_index
from docsite.stager import DependencyStager, StageResult

if TYPE_CHECKING:
    import httpx

    from docsite._shared.process import ProcessRunner
    from docsite._shared.settings import PipelineSettings

__all__ = ["PipelineResult", "assemble_site", "run_pipeline", "stage_dependencies"]

LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Outcome of a complete publishing run."""

    correlation_id: str
    staging: StageResult
    assembly: AssemblyResult

    def summary(self) -> dict[str, object]:
        """Return a JSON-serialisable summary of the run."""
        return {
            "correlation_id": self.correlation_id,
            "manifest_digest": self.staging.resolution.manifest_digest,
            "dependencies": list(self.staging.resolution.identities),
            "fetched": list(self.staging.fetched),
            "reused": list(self.staging.reused),
            "lock": str(self.staging.lock_path),
            "output_dir": str(self.assembly.output_dir),
            "files": sorted(self.assembly.files),
        }


def stage_dependencies(
    settings: PipelineSettings,
    *,
    client: httpx.Client | None = None,
) -> StageResult:
    """Load the manifest and make every resolved dependency present in the cache.

    Parameters
    ----------
    settings : PipelineSettings
        Paths, index location and timeouts.
    client : httpx.Client | None, optional
        HTTP client shared by index and artifact retrieval.

    Returns
    -------
    StageResult
        Resolution and cache activity.

    Raises
    ------
    ResolutionError
        When the manifest is malformed or a constraint cannot be satisfied.
    FetchError
        When the index or an artifact cannot be retrieved.
    """
    with observe_stage(
        PipelineStage.STAGE_DEPENDENCIES.value,
        metrics_enabled=settings.metrics_enabled,
        tracing_enabled=settings.tracing_enabled,
        manifest=str(settings.manifest_path),
    ):
        manifest = load_manifest(settings.manifest_path)
        fetcher = ArtifactFetcher(
            timeout=settings.fetch_timeout_seconds,
            client=client,
            metrics_enabled=settings.metrics_enabled,
        )
        stager = DependencyStager(
            cache=DependencyCache(settings.cache_dir),
            index_loader=partial(
                load_index,
                settings.index_location,
                timeout=settings.fetch_timeout_seconds,
                client=client,
            ),
            fetcher=fetcher,
        )
        try:
            return stager.stage(manifest)
        finally:
            fetcher.close()


def _require_staged(settings: PipelineSettings, cache: DependencyCache) -> None:
    manifest = load_manifest(settings.manifest_path)
    resolution = cache.read_lock(manifest.digest)
    missing = cache.missing(resolution.dependencies) if resolution is not None else []
    if resolution is not None and not missing:
        return
    message = f"Dependencies are not staged for manifest {settings.manifest_path}"
    raise BuildError(
        message,
        operator_code="DOCSITE-BLD-002",
        context={
            "manifest": str(settings.manifest_path),
            "manifest_digest": manifest.digest,
            "cache": str(cache.root),
            "missing": [dep.identity for dep in missing],
        },
    )


def assemble_site(
    settings: PipelineSettings,
    *,
    runner: ProcessRunner | None = None,
) -> AssemblyResult:
    """Clear the output tree, copy static assets, compile and copy the docs.

    The dependency cache must already be populated by :func:`stage_dependencies`
    for the current manifest; otherwise nothing in the output tree is touched.

    Raises
    ------
    ResolutionError
        When the manifest cannot be loaded.
    BuildError
        When the manifest has no lock in the cache or a locked entry is missing,
        or when the compiler fails.
    ClearError, CopyError
        From the failing step.
    """
    cache = DependencyCache(settings.cache_dir)
    _require_staged(settings, cache)
    assembler = ArtifactAssembler(
        output_dir=settings.output_dir,
        static_dir=settings.static_dir,
        reserved_subpath=settings.reserved_subpath,
        compiler=DocCompiler.from_settings(settings, runner=runner),
        metrics_enabled=settings.metrics_enabled,
        tracing_enabled=settings.tracing_enabled,
    )
    return assembler.assemble(settings.source_dir, cache)


def run_pipeline(
    settings: PipelineSettings,
    *,
    client: httpx.Client | None = None,
    runner: ProcessRunner | None = None,
    correlation_id: str | None = None,
) -> PipelineResult:
    """Run the whole pipeline under one correlation id.

    Parameters
    ----------
    settings : PipelineSettings
        Validated configuration.
    client : httpx.Client | None, optional
        HTTP client for remote index and artifacts.
    runner : ProcessRunner | None, optional
        Process runner for the compiler. Built from ``settings`` when omitted.
    correlation_id : str | None, optional
        Identifier attached to every log record of the run. Generated when omitted.

    Returns
    -------
    PipelineResult
        Staging and assembly outcomes.

    Raises
    ------
    DocsiteError
        The first stage failure; no later stage runs.
    """
    run_id = correlation_id or uuid.uuid4().hex
    with CorrelationContext(run_id):
        logger = with_fields(LOGGER, operation="publish", output_dir=str(settings.output_dir))
        logger.info("Publishing run started")
        staging = stage_dependencies(settings, client=client)
        assembly = assemble_site(settings, runner=runner)
        result = PipelineResult(correlation_id=run_id, staging=staging, assembly=assembly)
        logger.info(
            "Publishing run completed",
            extra={"file_count": len(assembly.files), "fetched": list(staging.fetched)},
        )
        return result
