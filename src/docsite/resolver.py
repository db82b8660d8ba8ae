"""Deterministic dependency resolution."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from packaging.version import InvalidVersion, Version

from docsite.errors import ResolutionError
from docsite.manifest import is_valid_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docsite.manifest import Manifest
    from docsite.registry import PackageIndex

__all__ = ["ResolvedDependency", "Resolution", "resolve"]


@dataclass(frozen=True, slots=True)
class ResolvedDependency:
    """A dependency pinned to one concrete version and artifact."""

    name: str
    version: str
    url: str
    sha256: str

    @property
    def identity(self) -> str:
        """Cache identity, ``name@version``."""
        return f"{self.name}@{self.version}"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version, "url": self.url, "sha256": self.sha256}


@dataclass(frozen=True, slots=True)
class Resolution:
    """The resolved dependency set of one manifest, sorted by name."""

    manifest_digest: str
    dependencies: tuple[ResolvedDependency, ...]

    @classmethod
    def build(cls, manifest_digest: str, dependencies: Iterable[ResolvedDependency]) -> Resolution:
        ordered = tuple(sorted(dependencies, key=lambda dep: dep.name.lower()))
        return cls(manifest_digest=manifest_digest, dependencies=ordered)

    @property
    def identities(self) -> tuple[str, ...]:
        return tuple(dep.identity for dep in self.dependencies)

    def to_json(self) -> str:
        """Serialise as the lock document written to the cache."""
        payload = {
            "manifest_digest": self.manifest_digest,
            "dependencies": [dep.to_dict() for dep in self.dependencies],
        }
        return json.dumps(payload, indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_json(cls, text: str) -> Resolution:
        """Parse a lock document produced by :meth:`to_json`.

        Every entry must name a valid dependency and a parseable version, since
        both become cache path segments.

        Raises
        ------
        ValueError
            When the document is not a valid lock.
        """
        data = json.loads(text)
        if not isinstance(data, dict) or not isinstance(data.get("dependencies"), list):
            message = "Lock document must contain a 'dependencies' list"
            raise ValueError(message)  # noqa: TRY004 - invalid document, not a type misuse
        return cls.build(
            str(data.get("manifest_digest", "")),
            [_locked_dependency(item) for item in data["dependencies"]],
        )


def _locked_dependency(item: object) -> ResolvedDependency:
    if not isinstance(item, dict):
        message = f"Lock entry must be an object, got {type(item).__name__}"
        raise ValueError(message)  # noqa: TRY004 - invalid document, not a type misuse
    name, version = item.get("name"), item.get("version")
    url, sha256 = item.get("url"), item.get("sha256")
    if not is_valid_name(name):
        message = f"Lock entry has an invalid dependency name: {name!r}"
        raise ValueError(message)
    try:
        canonical = str(Version(str(version)))
    except InvalidVersion as exc:
        message = f"Lock entry {name!r} has an invalid version: {version!r}"
        raise ValueError(message) from exc
    if canonical != version or not isinstance(url, str) or not isinstance(sha256, str):
        message = f"Lock entry {name!r} is incomplete or not canonical"
        raise ValueError(message)
    return ResolvedDependency(name=name, version=canonical, url=url, sha256=sha256)


def resolve(manifest: Manifest, index: PackageIndex) -> Resolution:
    """Pin every manifest requirement to the newest matching index version.

    Resolution is a pure function of the manifest and the index: the newest
    version satisfying each constraint wins, and prereleases are considered
    only when the constraint names one.

    Parameters
    ----------
    manifest : Manifest
        Declared requirements.
    index : PackageIndex
        Published versions.

    Returns
    -------
    Resolution
        Resolved set, sorted by name.

    Raises
    ------
    ResolutionError
        When a package is unknown or no published version satisfies its constraint.
    """
    resolved: list[ResolvedDependency] = []
    for requirement in manifest.requirements:
        candidates = index.candidates(requirement.name)
        match = next((entry for entry in candidates if requirement.allows(entry.version)), None)
        if match is None:
            available = [str(entry.version) for entry in candidates]
            message = (
                f"No version of {requirement.name!r} satisfies "
                f"{str(requirement.constraint) or '*'!r}"
            )
            raise ResolutionError(
                message,
                context={
                    "dependency": requirement.name,
                    "constraint": str(requirement.constraint),
                    "available": available,
                },
            )
        resolved.append(
            ResolvedDependency(
                name=requirement.name,
                version=str(match.version),
                url=match.url,
                sha256=match.sha256,
            )
        )
    return Resolution.build(manifest.digest, resolved)
