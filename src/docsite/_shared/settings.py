"""Typed settings for the documentation publishing pipeline.

Configuration is loaded from ``DOCSITE_*`` environment variables through
``pydantic_settings.BaseSettings``; keyword overrides (typically CLI flags) take
precedence over the environment. Validation errors are surfaced as
:class:`SettingsError` carrying an RFC 9457 Problem Details payload so callers
can fail fast with a structured report.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from fnmatch import fnmatch
from pathlib import Path, PurePosixPath
from typing import Annotated, Final

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from docsite._shared.problem_details import (
    BASE_TYPE_URI,
    JsonValue,
    ProblemDetailsDict,
    ProblemDetailsParams,
    build_problem_details,
)

__all__: Final[list[str]] = [
    "PipelineSettings",
    "SettingsError",
    "get_settings",
    "load_settings",
    "reset_settings_cache",
]

DEFAULT_COMPILER_COMMAND: Final[tuple[str, ...]] = ("cargo", "doc", "--no-deps", "--lib")
DEFAULT_EXEC_ALLOWLIST: Final[tuple[str, ...]] = (
    "cargo",
    "rustdoc",
    "python*",
    "sphinx-build",
    "pdoc",
    "true",
    "false",
)


class SettingsError(RuntimeError):
    """Raised when pipeline settings fail validation."""

    def __init__(
        self,
        message: str,
        *,
        problem: ProblemDetailsDict,
        errors: Sequence[dict[str, JsonValue]],
    ) -> None:
        super().__init__(message)
        self.problem = problem
        self.errors: tuple[dict[str, JsonValue], ...] = tuple(errors)


def _split_tokens(value: object, *, field_name: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(part).strip() for part in value if str(part).strip())
    message = f"{field_name} must be a comma-separated string or sequence"
    raise TypeError(message)


class PipelineSettings(BaseSettings):
    """Runtime configuration for staging, building and assembling the site."""

    model_config = SettingsConfigDict(env_prefix="DOCSITE_", case_sensitive=False, extra="ignore")

    manifest_path: Path = Field(
        default=Path("docsite.toml"),
        description="Dependency manifest (TOML or JSON).",
    )
    index_location: str = Field(
        default="index.json",
        description="Package index as a filesystem path or http(s) URL.",
    )
    cache_dir: Path = Field(
        default=Path(".docsite") / "cache",
        description="Root of the content-addressed dependency cache.",
    )
    source_dir: Path = Field(
        default=Path(),
        description="Source tree handed to the documentation compiler.",
    )
    static_dir: Path = Field(
        default=Path("doc"),
        description="Static asset set copied verbatim into the output tree.",
    )
    output_dir: Path = Field(
        default=Path("public"),
        description="Output tree served by the static file server.",
    )
    reserved_subpath: str = Field(
        default="rustdoc",
        description="Fixed location of the compiled documentation inside the output tree.",
    )
    compiler_command: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_COMPILER_COMMAND,
        description="Documentation compiler invocation (first-party, library-only).",
    )
    compiler_output: Path = Field(
        default=Path("target") / "doc",
        description="Compiler output directory, relative to source_dir.",
    )
    cache_env_var: str = Field(
        default="DOCSITE_DEPENDENCY_CACHE",
        description=(
            "Environment variable exposing the cache root to the compiler. Stock cargo doc "
            "does not read the default name; a wrapper compiler_command or build script must "
            "consume it, or set this to a variable the compiler already reads."
        ),
    )
    build_timeout_seconds: float = Field(default=900.0, gt=0)
    fetch_timeout_seconds: float = Field(default=60.0, gt=0)
    exec_allowlist: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_EXEC_ALLOWLIST,
        description="Glob patterns for executables the pipeline may run.",
    )
    metrics_enabled: bool = True
    tracing_enabled: bool = True
    log_level: str = "INFO"

    @field_validator("compiler_command", mode="before")
    @classmethod
    def _normalise_command(cls, value: object) -> tuple[str, ...]:
        if isinstance(value, str):
            tokens = tuple(value.split())
        else:
            tokens = _split_tokens(value, field_name="compiler_command")
        if not tokens:
            message = "compiler_command must contain at least the executable"
            raise ValueError(message)
        return tokens

    @field_validator("exec_allowlist", mode="before")
    @classmethod
    def _normalise_allowlist(cls, value: object) -> tuple[str, ...]:
        return _split_tokens(value, field_name="exec_allowlist")

    @field_validator("reserved_subpath")
    @classmethod
    def _check_reserved_subpath(cls, value: str) -> str:
        candidate = PurePosixPath(value.strip().strip("/"))
        if not candidate.parts or candidate.parts == (".",):
            message = "reserved_subpath must not be empty"
            raise ValueError(message)
        if ".." in candidate.parts or value.startswith("/"):
            message = "reserved_subpath must be a relative path without '..'"
            raise ValueError(message)
        return candidate.as_posix()

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            message = f"Unknown log level: {value}"
            raise ValueError(message)
        return level

    def is_allowed(self, executable: Path) -> bool:
        """Return ``True`` when ``executable`` matches the configured allow list.

        Absolute patterns must match the full path; other patterns are matched
        against the executable's basename.
        """
        candidate = executable.name
        absolute = str(executable)
        for pattern in self.exec_allowlist:
            if Path(pattern).is_absolute():
                if absolute == pattern:
                    return True
                continue
            if fnmatch(candidate, pattern):
                return True
        return False


def load_settings(
    settings_factory: Callable[[], PipelineSettings] | None = None,
    **overrides: object,
) -> PipelineSettings:
    """Instantiate settings with structured error handling.

    Parameters
    ----------
    settings_factory : Callable[[], PipelineSettings] | None, optional
        Zero-argument factory. When omitted, :class:`PipelineSettings` is built
        from the environment plus ``overrides``.
    **overrides : object
        Field values that take precedence over the environment. ``None`` values
        are ignored so unset CLI flags fall through to the environment.

    Returns
    -------
    PipelineSettings
        Validated settings instance.

    Raises
    ------
    SettingsError
        Raised when validation fails.
    """
    explicit = {key: value for key, value in overrides.items() if value is not None}
    factory = settings_factory or (lambda: PipelineSettings(**explicit))  # type: ignore[arg-type]
    try:
        return factory()
    except ValidationError as exc:
        error_dicts = tuple(_as_error_dict(err) for err in exc.errors())
        problem = build_problem_details(
            ProblemDetailsParams(
                type=f"{BASE_TYPE_URI}/settings-invalid",
                title="Invalid pipeline settings",
                status=500,
                detail="Failed to load docsite configuration",
                instance="urn:docsite:settings:invalid",
                extensions={"errors": list(error_dicts)},
            )
        )
        message = "Failed to load docsite settings"
        raise SettingsError(message, problem=problem, errors=error_dicts) from exc


_SETTINGS_CACHE: dict[str, PipelineSettings] = {}


def get_settings() -> PipelineSettings:
    """Return the process-wide settings loaded from the environment."""
    cached = _SETTINGS_CACHE.get("default")
    if cached is None:
        cached = load_settings()
        _SETTINGS_CACHE["default"] = cached
    return cached


def reset_settings_cache() -> None:
    """Forget the cached settings so the next :func:`get_settings` reloads them."""
    _SETTINGS_CACHE.clear()


def _as_error_dict(error: object) -> dict[str, JsonValue]:
    if isinstance(error, Mapping):
        return {str(key): _to_jsonable(value) for key, value in error.items()}
    return {"detail": _to_jsonable(error)}


def _to_jsonable(value: object) -> JsonValue:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Mapping):
        return {str(key): _to_jsonable(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, Path):
        return value.as_posix()
    return repr(value)
