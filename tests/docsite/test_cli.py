"""Tests for the docsite command line interface."""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from docsite import cli

if TYPE_CHECKING:
    from click.testing import Result

    from tests.docsite.conftest import Project

runner = CliRunner()


@pytest.fixture(autouse=True)
def _environment(project: Project, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    monkeypatch.setenv("DOCSITE_INDEX_LOCATION", str(project.index_path))
    monkeypatch.setenv("DOCSITE_CACHE_DIR", str(project.cache_dir))
    monkeypatch.setenv("DOCSITE_SOURCE_DIR", str(project.source_dir))
    monkeypatch.setenv("DOCSITE_STATIC_DIR", str(project.static_dir))
    monkeypatch.setenv("DOCSITE_COMPILER_COMMAND", " ".join(project.compiler_command()))
    monkeypatch.setenv("DOCSITE_EXEC_ALLOWLIST", f"{sys.executable},python*")
    monkeypatch.setenv("DOCSITE_METRICS_ENABLED", "false")
    monkeypatch.setenv("DOCSITE_TRACING_ENABLED", "false")


def _invoke(project: Project, *args: str) -> Result:
    base = ["--manifest", str(project.manifest_path), "--output-dir", str(project.output_dir)]
    return runner.invoke(cli.app, [*base, *args])


def _problem(result: Result) -> dict[str, object]:
    for line in result.output.splitlines():
        if line.startswith("{") and '"type"' in line:
            return json.loads(line)
    pytest.fail(f"no Problem Details document in output: {result.output!r}")


def test_publish_prints_summary(project: Project) -> None:
    result = _invoke(project, "publish")

    assert result.exit_code == 0, result.output
    summary = json.loads(result.stdout)
    assert summary["dependencies"] == ["libbar@1.1.0", "libbaz@0.3.0"]
    assert "rustdoc/libfoo/index.html" in summary["files"]
    assert (project.output_dir / "rustdoc" / "libfoo" / "index.html").is_file()


def test_stage_then_assemble(project: Project) -> None:
    staged = _invoke(project, "stage")
    assert staged.exit_code == 0, staged.output
    assert json.loads(staged.stdout)["fetched"] == ["libbar@1.1.0", "libbaz@0.3.0"]

    assembled = _invoke(project, "assemble")
    assert assembled.exit_code == 0, assembled.output
    assert "index.html" in json.loads(assembled.stdout)["files"]


def test_resolution_failure_exit_code(project: Project) -> None:
    project.write_manifest({"libbar": ">=9"})
    result = _invoke(project, "stage")

    assert result.exit_code == 10
    problem = _problem(result)
    assert str(problem["type"]).endswith("/resolution-failed")
    assert problem["stage"] == "stage-dependencies"


def test_build_failure_exit_code(project: Project, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCSITE_COMPILER_COMMAND", " ".join(project.compiler_command("fail")))
    result = _invoke(project, "publish")

    assert result.exit_code == 22
    problem = _problem(result)
    assert problem["code"] == "build-failed"
    assert problem["returncode"] == 101


def test_clear_failure_exit_code(project: Project) -> None:
    assert _invoke(project, "stage").exit_code == 0
    result = runner.invoke(
        cli.app,
        ["--manifest", str(project.manifest_path), "--output-dir", str(project.root / "absent"), "assemble"],
    )
    assert result.exit_code == 20
    assert _problem(result)["stage"] == "clear"


def test_assemble_requires_staged_dependencies(project: Project) -> None:
    (project.output_dir / "index.html").write_text("previous release")

    result = _invoke(project, "assemble")

    assert result.exit_code == 22
    problem = _problem(result)
    assert problem["stage"] == "build-docs"
    assert problem["missing"] == []
    assert (project.output_dir / "index.html").read_text() == "previous release"
    assert not (project.output_dir / "rustdoc").exists()


def test_assemble_after_manifest_change_requires_staging(project: Project) -> None:
    assert _invoke(project, "stage").exit_code == 0
    project.write_manifest({"libbar": "1.0.0"})

    result = _invoke(project, "assemble")

    assert result.exit_code == 22
    assert list(project.output_dir.iterdir()) == []


def test_invalid_settings_exit_code(project: Project) -> None:
    result = _invoke(project, "--reserved-subpath", "../escape", "publish")

    assert result.exit_code == 2
    assert str(_problem(result)["type"]).endswith("/settings-invalid")
