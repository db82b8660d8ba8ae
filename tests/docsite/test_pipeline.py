"""End-to-end tests for docsite.pipeline."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

import pytest

from docsite._shared.logging import get_correlation_id
from docsite._shared.settings import PipelineSettings
from docsite.assembler import snapshot_tree
from docsite.cache import DependencyCache
from docsite.errors import BuildError, ClearError, ResolutionError
from docsite.pipeline import assemble_site, run_pipeline, stage_dependencies

if TYPE_CHECKING:
    from tests.docsite.conftest import Project


def test_publish_produces_static_and_first_party_docs(
    project: Project, make_settings: Callable[..., PipelineSettings]
) -> None:
    (project.output_dir / "sentinel.txt").write_text("stale")

    result = run_pipeline(make_settings(), correlation_id="run-1")

    files = snapshot_tree(project.output_dir)
    assert files == result.assembly.files
    assert "sentinel.txt" not in files
    assert {"index.html", "css/site.css", "rustdoc/libfoo/index.html"} <= files
    assert not any(part.startswith(("libbar", "libbaz")) for f in files for part in PurePosixPath(f).parts)
    assert result.staging.resolution.identities == ("libbar@1.1.0", "libbaz@0.3.0")
    assert result.correlation_id == "run-1"
    assert get_correlation_id() is None


def test_compiler_sees_staged_dependencies(
    project: Project, make_settings: Callable[..., PipelineSettings]
) -> None:
    run_pipeline(make_settings())
    deps = (project.output_dir / "rustdoc" / "libfoo" / "deps.txt").read_text().splitlines()
    assert deps == ["libbar", "libbaz"]


def test_second_run_is_a_cache_hit_with_identical_output(
    project: Project, make_settings: Callable[..., PipelineSettings]
) -> None:
    settings = make_settings()
    first = run_pipeline(settings)
    second = run_pipeline(settings)

    assert first.staging.fetched == ("libbar@1.1.0", "libbaz@0.3.0")
    assert second.staging.fetched == ()
    assert second.staging.lock_reused
    assert first.assembly.files == second.assembly.files


def test_summary_is_json_serialisable(project: Project, make_settings: Callable[..., PipelineSettings]) -> None:
    summary = run_pipeline(make_settings(), correlation_id="run-2").summary()
    decoded = json.loads(json.dumps(summary))
    assert decoded["correlation_id"] == "run-2"
    assert decoded["dependencies"] == ["libbar@1.1.0", "libbaz@0.3.0"]
    assert "rustdoc/libfoo/index.html" in decoded["files"]


def test_resolution_failure_stops_before_assembly(
    project: Project, make_settings: Callable[..., PipelineSettings]
) -> None:
    (project.output_dir / "sentinel.txt").write_text("stale")
    project.write_manifest({"libbar": ">=9"})

    with pytest.raises(ResolutionError):
        run_pipeline(make_settings())

    assert (project.output_dir / "sentinel.txt").exists()
    assert not project.cache_dir.exists()


def test_build_failure_keeps_staged_cache(
    project: Project, make_settings: Callable[..., PipelineSettings]
) -> None:
    settings = make_settings(compiler_command=project.compiler_command("fail"))
    with pytest.raises(BuildError):
        run_pipeline(settings)
    assert DependencyCache(project.cache_dir).identities() == ("libbar@1.1.0", "libbaz@0.3.0")


def test_missing_output_root(project: Project, make_settings: Callable[..., PipelineSettings]) -> None:
    settings = make_settings(output_dir=project.root / "not-created")
    with pytest.raises(ClearError):
        run_pipeline(settings)


def test_assemble_refuses_a_partially_staged_cache(
    project: Project, make_settings: Callable[..., PipelineSettings]
) -> None:
    settings = make_settings()
    staged = stage_dependencies(settings)
    cache = DependencyCache(project.cache_dir)
    libbaz = staged.resolution.dependencies[1]
    (cache.entry_dir(libbaz) / "entry.json").unlink()
    (project.output_dir / "sentinel.txt").write_text("previous release")

    with pytest.raises(BuildError) as exc_info:
        assemble_site(settings)

    error = exc_info.value
    assert error.operator_code == "DOCSITE-BLD-002"
    assert error.context["missing"] == ["libbaz@0.3.0"]
    assert (project.output_dir / "sentinel.txt").exists()
