"""Dependency manifest loading.

A manifest declares the first-party package and its dependency constraints.
Two on-disk formats are accepted:

TOML, in the familiar ``[package]`` / ``[dependencies]`` layout::

    [package]
    name = "libfoo"

    [dependencies]
    libbar = "1.0"                      # exact pin
    libbaz = { version = ">=2,<3" }     # range

JSON, either the same two sections or a flat ``{"name": "constraint"}``
mapping.

The loaded :class:`Manifest` is immutable and carries a SHA-256 digest of its
canonical content, used as the dependency cache's lock key.
"""

from __future__ import annotations

import hashlib
import json
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TypeGuard

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from docsite._shared.logging import get_logger
from docsite.errors import ResolutionError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

__all__ = [
    "Manifest",
    "Requirement",
    "is_valid_name",
    "load_manifest",
    "manifest_from_mapping",
    "parse_constraint",
]

LOGGER = get_logger(__name__)

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?$")


def is_valid_name(name: object) -> TypeGuard[str]:
    """Return ``True`` when ``name`` is usable as a dependency name and cache path segment."""
    return isinstance(name, str) and _NAME_PATTERN.match(name) is not None


def parse_constraint(raw: str) -> SpecifierSet:
    """Parse a version constraint.

    ``"*"`` or an empty string accepts any version; a bare version such as
    ``"1.0"`` is an exact pin; anything else is a PEP 440 specifier set.

    Raises
    ------
    ResolutionError
        When ``raw`` is neither a version nor a valid specifier set.
    """
    text = raw.strip()
    if text in {"", "*"}:
        return SpecifierSet()
    if text[0].isdigit():
        try:
            Version(text)
        except InvalidVersion as exc:
            message = f"Invalid version constraint: {raw!r}"
            raise ResolutionError(message, cause=exc, context={"constraint": raw}) from exc
        return SpecifierSet(f"=={text}")
    try:
        return SpecifierSet(text)
    except InvalidSpecifier as exc:
        message = f"Invalid version constraint: {raw!r}"
        raise ResolutionError(message, cause=exc, context={"constraint": raw}) from exc


@dataclass(frozen=True, slots=True)
class Requirement:
    """One declared dependency: a package name and its version constraint."""

    name: str
    constraint: SpecifierSet

    def allows(self, version: Version) -> bool:
        """Return ``True`` when ``version`` satisfies the constraint.

        Prereleases are only accepted when the constraint itself names one.
        """
        return self.constraint.contains(version, prereleases=None)

    def __str__(self) -> str:
        return f"{self.name}{self.constraint or ' (any)'}"


@dataclass(frozen=True, slots=True)
class Manifest:
    """Immutable dependency declaration for one project revision."""

    package: str | None
    requirements: tuple[Requirement, ...]
    source: Path | None = None

    @property
    def digest(self) -> str:
        """SHA-256 over the canonical (sorted, whitespace-free) manifest content."""
        canonical = {
            "package": self.package,
            "dependencies": [[req.name, str(req.constraint)] for req in self.requirements],
        }
        encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    @property
    def names(self) -> tuple[str, ...]:
        """Declared dependency names in sorted order."""
        return tuple(req.name for req in self.requirements)


def _requirement(name: object, raw_constraint: object) -> Requirement:
    if not is_valid_name(name):
        message = f"Invalid dependency name: {name!r}"
        raise ResolutionError(message, context={"dependency": str(name)})
    if isinstance(raw_constraint, dict):
        raw_constraint = raw_constraint.get("version", "*")
    if not isinstance(raw_constraint, str):
        message = f"Constraint for {name!r} must be a string"
        raise ResolutionError(message, context={"dependency": name})
    return Requirement(name=name, constraint=parse_constraint(raw_constraint))


def _requirements(entries: Iterable[tuple[object, object]]) -> tuple[Requirement, ...]:
    seen: dict[str, Requirement] = {}
    for name, raw_constraint in entries:
        requirement = _requirement(name, raw_constraint)
        key = requirement.name.lower()
        if key in seen:
            message = f"Dependency declared twice: {requirement.name!r}"
            raise ResolutionError(message, context={"dependency": requirement.name})
        seen[key] = requirement
    return tuple(sorted(seen.values(), key=lambda req: req.name.lower()))


def manifest_from_mapping(data: Mapping[str, object], *, source: Path | None = None) -> Manifest:
    """Build a :class:`Manifest` from already-parsed TOML or JSON data.

    Raises
    ------
    ResolutionError
        When the structure is malformed.
    """
    if "dependencies" in data or "package" in data:
        package_section = data.get("package") or {}
        dependencies = data.get("dependencies") or {}
        if not isinstance(package_section, dict) or not isinstance(dependencies, dict):
            message = "Manifest sections 'package' and 'dependencies' must be tables"
            raise ResolutionError(message, context={"manifest": str(source)})
        package = package_section.get("name")
        if package is not None and not isinstance(package, str):
            message = "Manifest package name must be a string"
            raise ResolutionError(message, context={"manifest": str(source)})
        return Manifest(
            package=package,
            requirements=_requirements(dependencies.items()),
            source=source,
        )

    # Tables other than ``{version = ...}`` mean a sectioned manifest without dependencies.
    foreign = sorted(
        str(key) for key, value in data.items() if isinstance(value, dict) and "version" not in value
    )
    if not foreign:
        return Manifest(package=None, requirements=_requirements(data.items()), source=source)
    if len(foreign) != len(data):
        message = f"Manifest mixes dependency entries with unrelated tables: {', '.join(foreign)}"
        raise ResolutionError(message, context={"manifest": str(source), "tables": foreign})
    LOGGER.debug(
        "Manifest declares no dependency section",
        extra={"operation": "load-manifest", "manifest": str(source), "tables": foreign},
    )
    return Manifest(package=None, requirements=(), source=source)


def load_manifest(path: Path) -> Manifest:
    """Read and validate the manifest at ``path``.

    ``.json`` files are parsed as JSON; everything else as TOML.

    Raises
    ------
    ResolutionError
        When the file is missing, unparsable or structurally invalid.
    """
    try:
        raw = path.read_bytes()
    except OSError as exc:
        message = f"Manifest could not be read: {path}"
        raise ResolutionError(message, cause=exc, context={"manifest": str(path)}) from exc
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(raw.decode("utf-8"))
        else:
            data = tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        message = f"Manifest is not well-formed: {path}"
        raise ResolutionError(message, cause=exc, context={"manifest": str(path)}) from exc
    if not isinstance(data, dict):
        message = f"Manifest must contain a mapping: {path}"
        raise ResolutionError(message, context={"manifest": str(path)})
    manifest = manifest_from_mapping(data, source=path)
    LOGGER.debug(
        "Manifest loaded",
        extra={
            "operation": "load-manifest",
            "manifest": str(path),
            "package": manifest.package,
            "dependency_count": len(manifest.requirements),
            "digest": manifest.digest,
        },
    )
    return manifest
