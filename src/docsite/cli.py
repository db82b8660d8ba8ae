"""Command line interface for the documentation publishing pipeline.

``docsite stage`` populates the dependency cache, ``docsite assemble`` rebuilds
the output tree from an already populated cache, and ``docsite publish`` runs
both. On success a JSON summary is printed on stdout; on failure an RFC 9457
Problem Details document is written to stderr and the process exits with the
failing stage's status.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Annotated, TypeVar

import typer

from docsite._shared.error_codes import format_error_message
from docsite._shared.logging import CorrelationContext, get_logger, setup_logging, with_fields
from docsite._shared.problem_details import render_problem
from docsite._shared.settings import PipelineSettings, SettingsError, load_settings
from docsite.errors import DocsiteError
from docsite.pipeline import assemble_site, run_pipeline, stage_dependencies

__all__ = ["app", "main"]

LOGGER = get_logger(__name__)

SETTINGS_EXIT_CODE = 2

T = TypeVar("T")

app = typer.Typer(
    help="Stage documentation dependencies and assemble the published site.",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def configure(
    ctx: typer.Context,
    manifest: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Dependency manifest (TOML or JSON).", metavar="PATH"),
    ] = None,
    index: Annotated[
        str | None,
        typer.Option("--index", help="Package index path or http(s) URL.", metavar="LOCATION"),
    ] = None,
    cache_dir: Annotated[
        Path | None,
        typer.Option("--cache-dir", help="Dependency cache root.", metavar="DIR"),
    ] = None,
    source_dir: Annotated[
        Path | None,
        typer.Option("--source-dir", help="Source tree passed to the compiler.", metavar="DIR"),
    ] = None,
    static_dir: Annotated[
        Path | None,
        typer.Option("--static-dir", help="Static asset directory.", metavar="DIR"),
    ] = None,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Output tree served to readers.", metavar="DIR"),
    ] = None,
    reserved_subpath: Annotated[
        str | None,
        typer.Option("--reserved-subpath", help="Location of compiled docs in the output tree."),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Logging threshold (DEBUG, INFO, WARNING, ...)."),
    ] = None,
) -> None:
    """Collect option overrides; values left unset fall back to ``DOCSITE_*`` variables."""
    ctx.obj = {
        "manifest_path": manifest,
        "index_location": index,
        "cache_dir": cache_dir,
        "source_dir": source_dir,
        "static_dir": static_dir,
        "output_dir": output_dir,
        "reserved_subpath": reserved_subpath,
        "log_level": log_level,
    }


def _settings(ctx: typer.Context) -> PipelineSettings:
    overrides = dict(ctx.obj or {})
    try:
        settings = load_settings(**overrides)
    except SettingsError as exc:
        LOGGER.error(  # noqa: TRY400
            format_error_message("DOCSITE-CFG-001", str(exc)),
            extra={"operation": "configure", "status": "error"},
        )
        typer.echo(render_problem(exc.problem), err=True)
        raise typer.Exit(code=SETTINGS_EXIT_CODE) from exc
    setup_logging(settings.log_level)
    return settings


def _run(command: str, action: Callable[[], T], summarize: Callable[[T], dict[str, object]]) -> None:
    logger = with_fields(LOGGER, operation=command)
    try:
        outcome = action()
    except DocsiteError as exc:
        logger.error(  # noqa: TRY400
            format_error_message(exc.operator_code, exc.message),
            extra={"status": "error", "stage": exc.stage.value, "error_code": exc.code.value},
        )
        typer.echo(render_problem(exc.to_problem_details()), err=True)
        raise typer.Exit(code=exc.exit_code) from exc
    typer.echo(json.dumps(summarize(outcome), indent=2, sort_keys=True))


@app.command()
def stage(ctx: typer.Context) -> None:
    """Resolve the manifest and fetch every missing dependency into the cache.

    Raises
    ------
    typer.Exit
        With the failing stage's exit status.
    """
    settings = _settings(ctx)
    with CorrelationContext(uuid.uuid4().hex):
        _run(
            "stage",
            lambda: stage_dependencies(settings),
            lambda result: {
                "manifest_digest": result.resolution.manifest_digest,
                "dependencies": list(result.resolution.identities),
                "fetched": list(result.fetched),
                "reused": list(result.reused),
                "lock": str(result.lock_path),
            },
        )


@app.command()
def assemble(ctx: typer.Context) -> None:
    """Clear the output tree, copy static assets, compile docs and copy them in.

    Raises
    ------
    typer.Exit
        With the failing stage's exit status.
    """
    settings = _settings(ctx)
    with CorrelationContext(uuid.uuid4().hex):
        _run(
            "assemble",
            lambda: assemble_site(settings),
            lambda result: {
                "output_dir": str(result.output_dir),
                "files": sorted(result.files),
            },
        )


@app.command()
def publish(ctx: typer.Context) -> None:
    """Stage dependencies and assemble the site in one run.

    Raises
    ------
    typer.Exit
        With the failing stage's exit status.
    """
    settings = _settings(ctx)
    _run("publish", lambda: run_pipeline(settings), lambda result: result.summary())


def main() -> None:
    """Console-script entry point."""
    app()


if __name__ == "__main__":  # pragma: no cover - manual execution entrypoint
    main()
