"""Dependency Stager: populate the cache for a manifest before any build runs."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from docsite._shared.logging import get_logger, with_fields
from docsite.cache import DependencyCache
from docsite.errors import FetchError
from docsite.fetcher import ArtifactFetcher
from docsite.manifest import Manifest
from docsite.registry import PackageIndex
from docsite.resolver import Resolution, resolve

__all__ = ["DependencyStager", "StageResult"]

LOGGER = get_logger(__name__)

IndexLoader = Callable[[], PackageIndex]


@dataclass(frozen=True, slots=True)
class StageResult:
    """Outcome of a staging run."""

    resolution: Resolution
    fetched: tuple[str, ...]
    reused: tuple[str, ...]
    lock_path: Path
    lock_reused: bool

    @property
    def cache_hit(self) -> bool:
        """``True`` when nothing had to be fetched."""
        return not self.fetched


@dataclass(slots=True)
class DependencyStager:
    """Resolve a manifest and make every resolved dependency present in the cache.

    Parameters
    ----------
    cache : DependencyCache
        Destination cache.
    index_loader : Callable[[], PackageIndex]
        Loads the package index. Only called when the manifest has no lock.
    fetcher : ArtifactFetcher
        Retrieves missing artifacts.
    """

    cache: DependencyCache
    index_loader: IndexLoader
    fetcher: ArtifactFetcher

    def stage(self, manifest: Manifest) -> StageResult:
        """Ensure every dependency declared by ``manifest`` is cached.

        A manifest whose digest already has a lock reuses the locked versions
        without consulting the index. Otherwise the index is resolved first,
        so a :class:`~docsite.errors.ResolutionError` leaves the cache
        untouched. Missing entries are fetched inside one cache transaction;
        any failure discards every entry staged by this run.

        Returns
        -------
        StageResult
            Resolution, fetched and reused identities, and the lock path.

        Raises
        ------
        ResolutionError
            When a constraint cannot be satisfied.
        FetchError
            When an artifact (or the index) cannot be retrieved or stored.
        """
        logger = with_fields(
            LOGGER,
            operation="stage-dependencies",
            manifest_digest=manifest.digest,
            package=manifest.package,
        )
        resolution = self.cache.read_lock(manifest.digest)
        lock_reused = resolution is not None
        if resolution is None:
            if manifest.requirements:
                resolution = resolve(manifest, self.index_loader())
            else:
                resolution = Resolution.build(manifest.digest, ())
            logger.info(
                "Manifest resolved",
                extra={"dependencies": list(resolution.identities)},
            )
        else:
            logger.info(
                "Reusing locked resolution",
                extra={"dependencies": list(resolution.identities)},
            )

        missing = self.cache.missing(resolution.dependencies)
        missing_ids = {dep.identity for dep in missing}
        reused = tuple(identity for identity in resolution.identities if identity not in missing_ids)

        if missing:
            try:
                with self.cache.transaction() as txn:
                    self.fetcher.fetch_all((dep, txn.path_for(dep)) for dep in missing)
            except OSError as exc:
                message = "Dependency cache could not be updated"
                raise FetchError(message, cause=exc, context={"cache": str(self.cache.root)}) from exc

        try:
            if lock_reused:
                lock_path = self.cache.lock_path(manifest.digest)
            else:
                lock_path = self.cache.write_lock(resolution)
        except OSError as exc:
            message = "Lock file could not be written"
            raise FetchError(message, cause=exc, context={"cache": str(self.cache.root)}) from exc

        result = StageResult(
            resolution=resolution,
            fetched=tuple(dep.identity for dep in missing),
            reused=reused,
            lock_path=lock_path,
            lock_reused=lock_reused,
        )
        logger.info(
            "Dependencies staged",
            extra={"fetched": list(result.fetched), "reused": list(result.reused)},
        )
        return result
