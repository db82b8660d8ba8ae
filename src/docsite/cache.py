"""Content-addressed dependency cache.

Layout under the cache root::

    entries/<name>/<version>/<artifact>     verified artifact bytes
    entries/<name>/<version>/entry.json     identity, source URL and digest
    locks/<manifest-digest>.json            resolution recorded for a manifest
    .staging-<token>/                       in-flight transaction (never read)

An entry exists only once its directory has been renamed into place, so a
reader never observes a partially fetched artifact.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from docsite._shared.logging import get_logger, with_fields
from docsite.resolver import Resolution, ResolvedDependency

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

__all__ = ["DependencyCache", "StagingTransaction"]

LOGGER = get_logger(__name__)

ENTRY_METADATA = "entry.json"


@dataclass(slots=True)
class StagingTransaction:
    """Private directory collecting new entries until they are committed."""

    root: Path
    staged: dict[str, tuple[ResolvedDependency, Path]] = field(default_factory=dict)

    def path_for(self, dependency: ResolvedDependency) -> Path:
        """Return (and create) the staging directory for ``dependency``."""
        target = self.root / dependency.name / dependency.version
        target.mkdir(parents=True, exist_ok=True)
        self.staged[dependency.identity] = (dependency, target)
        return target


@dataclass(frozen=True, slots=True)
class DependencyCache:
    """Directory-backed store keyed by ``name@version``."""

    root: Path

    @property
    def entries_dir(self) -> Path:
        return self.root / "entries"

    @property
    def locks_dir(self) -> Path:
        return self.root / "locks"

    def entry_dir(self, dependency: ResolvedDependency) -> Path:
        return self.entries_dir / dependency.name / dependency.version

    def contains(self, dependency: ResolvedDependency) -> bool:
        """Return ``True`` when a committed entry with the expected digest exists."""
        metadata_path = self.entry_dir(dependency) / ENTRY_METADATA
        if not metadata_path.is_file():
            return False
        try:
            metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return False
        return isinstance(metadata, dict) and metadata.get("sha256") == dependency.sha256

    def missing(self, dependencies: Iterable[ResolvedDependency]) -> list[ResolvedDependency]:
        return [dep for dep in dependencies if not self.contains(dep)]

    def identities(self) -> tuple[str, ...]:
        """Return every committed ``name@version`` in sorted order."""
        if not self.entries_dir.is_dir():
            return ()
        found = [
            f"{version_dir.parent.name}@{version_dir.name}"
            for version_dir in self.entries_dir.glob("*/*")
            if (version_dir / ENTRY_METADATA).is_file()
        ]
        return tuple(sorted(found))

    def lock_path(self, manifest_digest: str) -> Path:
        return self.locks_dir / f"{manifest_digest}.json"

    def read_lock(self, manifest_digest: str) -> Resolution | None:
        """Return the recorded resolution for ``manifest_digest``, if any.

        A corrupt lock is logged and treated as absent.
        """
        path = self.lock_path(manifest_digest)
        if not path.is_file():
            return None
        try:
            resolution = Resolution.from_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning(
                "Ignoring unreadable lock file",
                extra={"operation": "read-lock", "lock": str(path), "error_detail": str(exc)},
            )
            return None
        if resolution.manifest_digest != manifest_digest:
            LOGGER.warning(
                "Ignoring lock file recorded for a different manifest",
                extra={"operation": "read-lock", "lock": str(path)},
            )
            return None
        return resolution

    def write_lock(self, resolution: Resolution) -> Path:
        """Atomically record ``resolution`` under its manifest digest."""
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        path = self.lock_path(resolution.manifest_digest)
        fd, tmp_name = tempfile.mkstemp(dir=self.locks_dir, prefix=".lock-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(resolution.to_json())
            Path(tmp_name).replace(path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path

    @contextmanager
    def transaction(self) -> Iterator[StagingTransaction]:
        """Stage new entries and commit them all, or none, on exit.

        Any exception raised inside the block discards the staging directory
        and propagates; committed entries are never modified.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        staging_root = self.root / f".staging-{uuid.uuid4().hex}"
        staging_root.mkdir()
        txn = StagingTransaction(root=staging_root)
        try:
            yield txn
            self._commit(txn)
        finally:
            shutil.rmtree(staging_root, ignore_errors=True)

    def _commit(self, txn: StagingTransaction) -> None:
        for identity, (dependency, staged_dir) in sorted(txn.staged.items()):
            destination = self.entry_dir(dependency)
            logger = with_fields(LOGGER, operation="commit-entry", identity=identity)
            if self.contains(dependency):
                logger.debug("Entry already committed; discarding staged copy")
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            if destination.exists():
                shutil.rmtree(destination)
            staged_dir.replace(destination)
            logger.debug("Entry committed", extra={"path": str(destination)})
