"""Shared fixtures: a throwaway project with an index, static assets and a fake compiler."""

from __future__ import annotations

import hashlib
import json
import sys
import textwrap
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from docsite._shared.settings import PipelineSettings, reset_settings_cache

FAKE_COMPILER = textwrap.dedent(
    """
    import os
    import pathlib
    import sys
    import time

    mode = sys.argv[1] if len(sys.argv) > 1 else "ok"
    if mode == "fail":
        sys.stderr.write("error[E0425]: cannot find value `undefined` in this scope\\n")
        sys.exit(101)
    if mode == "sleep":
        time.sleep(30)
    cache = os.environ.get("DOCSITE_DEPENDENCY_CACHE")
    if not cache or not pathlib.Path(cache).is_dir():
        sys.stderr.write("dependency cache was not exported\\n")
        sys.exit(3)
    if mode == "silent":
        sys.exit(0)
    doc = pathlib.Path("target") / "doc"
    crate = doc / "libfoo"
    crate.mkdir(parents=True, exist_ok=True)
    (crate / "index.html").write_text("<h1>libfoo</h1>")
    entries = pathlib.Path(cache) / "entries"
    deps = sorted(p.name for p in entries.iterdir()) if entries.is_dir() else []
    (crate / "deps.txt").write_text("\\n".join(deps))
    (doc / "search-index.js").write_text("var searchIndex = {};")
    """
)


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@dataclass(slots=True)
class Project:
    """Paths of a fake first-party project and its package index."""

    root: Path
    index_path: Path
    manifest_path: Path
    static_dir: Path
    source_dir: Path
    output_dir: Path
    cache_dir: Path
    compiler_script: Path
    packages: dict[str, dict[str, dict[str, str]]] = field(default_factory=dict)

    def publish(self, name: str, version: str, content: bytes | None = None) -> str:
        """Add an artifact to the index and return its digest."""
        payload = content if content is not None else f"{name} {version} docs".encode()
        artifact = self.index_path.parent / "artifacts" / f"{name}-{version}.tar.gz"
        artifact.parent.mkdir(parents=True, exist_ok=True)
        artifact.write_bytes(payload)
        digest = sha256_of(payload)
        self.packages.setdefault(name, {})[version] = {
            "url": f"artifacts/{artifact.name}",
            "sha256": digest,
        }
        self.write_index()
        return digest

    def write_index(self) -> None:
        self.index_path.write_text(json.dumps({"packages": self.packages}, indent=2))

    def write_manifest(self, dependencies: dict[str, str], *, package: str = "libfoo") -> Path:
        lines = ["[package]", f'name = "{package}"', "", "[dependencies]"]
        lines.extend(f'{name} = "{constraint}"' for name, constraint in dependencies.items())
        self.manifest_path.write_text("\n".join(lines) + "\n")
        return self.manifest_path

    def compiler_command(self, mode: str = "ok") -> tuple[str, ...]:
        return (sys.executable, str(self.compiler_script), mode)


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    reset_settings_cache()


@pytest.fixture
def project(tmp_path: Path) -> Project:
    index_dir = tmp_path / "index"
    index_dir.mkdir()
    static_dir = tmp_path / "static"
    (static_dir / "css").mkdir(parents=True)
    (static_dir / "index.html").write_text("<h1>Project</h1>")
    (static_dir / "css" / "site.css").write_text("body { margin: 0; }")
    source_dir = tmp_path / "src"
    source_dir.mkdir()
    (source_dir / "Cargo.toml").write_text('[package]\nname = "libfoo"\n')
    output_dir = tmp_path / "public"
    output_dir.mkdir()
    compiler_script = tmp_path / "fake_compiler.py"
    compiler_script.write_text(FAKE_COMPILER)

    proj = Project(
        root=tmp_path,
        index_path=index_dir / "index.json",
        manifest_path=tmp_path / "docsite.toml",
        static_dir=static_dir,
        source_dir=source_dir,
        output_dir=output_dir,
        cache_dir=tmp_path / "cache",
        compiler_script=compiler_script,
    )
    proj.publish("libbar", "1.0.0")
    proj.publish("libbar", "1.1.0")
    proj.publish("libbar", "2.0.0rc1")
    proj.publish("libbaz", "0.3.0")
    proj.write_manifest({"libbar": ">=1.0,<2", "libbaz": "*"})
    return proj


@pytest.fixture
def make_settings(project: Project) -> Callable[..., PipelineSettings]:
    def factory(**overrides: object) -> PipelineSettings:
        values: dict[str, object] = {
            "manifest_path": project.manifest_path,
            "index_location": str(project.index_path),
            "cache_dir": project.cache_dir,
            "source_dir": project.source_dir,
            "static_dir": project.static_dir,
            "output_dir": project.output_dir,
            "compiler_command": project.compiler_command(),
            "exec_allowlist": (sys.executable, "python*"),
            "build_timeout_seconds": 60.0,
            "metrics_enabled": False,
            "tracing_enabled": False,
        }
        values.update(overrides)
        return PipelineSettings(**values)  # type: ignore[arg-type]

    return factory
