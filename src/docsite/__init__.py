"""Documentation publishing pipeline.

The pipeline stages the documentation artifacts of declared dependencies into
a content-addressed cache, compiles first-party documentation against that
cache, and assembles a static output tree from hand-written assets plus the
compiled output.
"""

from __future__ import annotations

from docsite.assembler import ArtifactAssembler, AssemblyResult
from docsite.cache import DependencyCache
from docsite.compiler import DocCompiler
from docsite.errors import (
    BuildError,
    ClearError,
    CopyError,
    DocsiteError,
    ErrorCode,
    FetchError,
    PipelineStage,
    ResolutionError,
)
from docsite.manifest import Manifest, Requirement, load_manifest
from docsite.pipeline import PipelineResult, assemble_site, run_pipeline, stage_dependencies
from docsite.registry import PackageIndex, load_index
from docsite.resolver import Resolution, ResolvedDependency, resolve
from docsite.stager import DependencyStager, StageResult

__all__ = [
    "ArtifactAssembler",
    "AssemblyResult",
    "BuildError",
    "ClearError",
    "CopyError",
    "DependencyCache",
    "DependencyStager",
    "DocCompiler",
    "DocsiteError",
    "ErrorCode",
    "FetchError",
    "Manifest",
    "PackageIndex",
    "PipelineResult",
    "PipelineStage",
    "Requirement",
    "Resolution",
    "ResolutionError",
    "ResolvedDependency",
    "StageResult",
    "assemble_site",
    "load_index",
    "load_manifest",
    "resolve",
    "run_pipeline",
    "stage_dependencies",
]
