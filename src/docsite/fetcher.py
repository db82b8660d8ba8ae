"""Artifact retrieval with digest verification.

Remote artifacts are streamed through :mod:`httpx`; ``file://`` URLs and plain
paths are copied from the local filesystem. Either way the bytes are hashed
while they are written and the entry is rejected when the SHA-256 digest does
not match the index.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO
from urllib.parse import unquote, urlparse

import httpx

from docsite._shared.logging import get_logger, with_fields
from docsite._shared.metrics import FETCHES_TOTAL
from docsite.cache import ENTRY_METADATA
from docsite.errors import FetchError
from docsite.registry import is_remote

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docsite.resolver import ResolvedDependency

__all__ = ["ArtifactFetcher", "FetchedArtifact"]

LOGGER = get_logger(__name__)

_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True, slots=True)
class FetchedArtifact:
    """An artifact written into a staging directory."""

    identity: str
    path: Path
    size_bytes: int


def _artifact_name(url: str, dependency: ResolvedDependency) -> str:
    name = Path(unquote(urlparse(url).path)).name
    return name or f"{dependency.name}-{dependency.version}.artifact"


def _local_path(url: str) -> Path:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(url)


@dataclass(slots=True)
class ArtifactFetcher:
    """Retrieve artifacts into staging directories.

    Parameters
    ----------
    timeout : float
        Network timeout in seconds for remote artifacts.
    client : httpx.Client | None, optional
        Client used for remote artifacts. A client owned by the fetcher is
        created lazily when omitted and closed by :meth:`close`.
    metrics_enabled : bool, optional
        Record ``docsite_fetches_total``. Defaults to ``True``.
    """

    timeout: float
    client: httpx.Client | None = None
    metrics_enabled: bool = True
    _owned_client: httpx.Client | None = field(default=None, init=False, repr=False)

    def fetch(self, dependency: ResolvedDependency, destination: Path) -> FetchedArtifact:
        """Fetch ``dependency`` into ``destination`` and write its metadata.

        Raises
        ------
        FetchError
            On transport errors, HTTP error statuses, missing files, storage
            errors or digest mismatches.
        """
        scheme = "http" if is_remote(dependency.url) else "file"
        logger = with_fields(
            LOGGER, operation="fetch", identity=dependency.identity, url=dependency.url
        )
        target = destination / _artifact_name(dependency.url, dependency)
        start = time.monotonic()
        try:
            with target.open("wb") as sink:
                if scheme == "http":
                    digest, size = self._download(dependency.url, sink)
                else:
                    digest, size = _copy_local(_local_path(dependency.url), sink)
        except httpx.HTTPError as exc:
            self._count(scheme, "error")
            message = f"Could not download {dependency.identity} from {dependency.url}"
            raise FetchError(message, cause=exc, context={"identity": dependency.identity}) from exc
        except OSError as exc:
            self._count(scheme, "error")
            message = f"Could not store {dependency.identity} from {dependency.url}"
            raise FetchError(message, cause=exc, context={"identity": dependency.identity}) from exc

        if digest != dependency.sha256:
            self._count(scheme, "digest_mismatch")
            message = f"Digest mismatch for {dependency.identity}"
            raise FetchError(
                message,
                context={
                    "identity": dependency.identity,
                    "expected_sha256": dependency.sha256,
                    "actual_sha256": digest,
                },
            )

        metadata = {**dependency.to_dict(), "artifact": target.name, "size_bytes": size}
        try:
            (destination / ENTRY_METADATA).write_text(
                json.dumps(metadata, indent=2, sort_keys=True) + "\n", encoding="utf-8"
            )
        except OSError as exc:
            self._count(scheme, "error")
            message = f"Could not record metadata for {dependency.identity}"
            raise FetchError(message, cause=exc, context={"identity": dependency.identity}) from exc

        self._count(scheme, "success")
        logger.info(
            "Artifact fetched",
            extra={"size_bytes": size, "duration_ms": (time.monotonic() - start) * 1000},
        )
        return FetchedArtifact(identity=dependency.identity, path=target, size_bytes=size)

    def fetch_all(
        self, dependencies: Iterable[tuple[ResolvedDependency, Path]]
    ) -> list[FetchedArtifact]:
        """Fetch each ``(dependency, destination)`` pair in order, stopping at the first failure."""
        return [self.fetch(dependency, destination) for dependency, destination in dependencies]

    def close(self) -> None:
        """Close the client created by this fetcher, if any."""
        if self._owned_client is not None:
            self._owned_client.close()
            self._owned_client = None

    def _http(self) -> httpx.Client:
        if self.client is not None:
            return self.client
        if self._owned_client is None:
            self._owned_client = httpx.Client(timeout=self.timeout, follow_redirects=True)
        return self._owned_client

    def _download(self, url: str, sink: BinaryIO) -> tuple[str, int]:
        hasher = hashlib.sha256()
        size = 0
        with self._http().stream("GET", url, timeout=self.timeout) as response:
            response.raise_for_status()
            for chunk in response.iter_bytes(_CHUNK_SIZE):
                hasher.update(chunk)
                sink.write(chunk)
                size += len(chunk)
        return hasher.hexdigest(), size

    def _count(self, scheme: str, status: str) -> None:
        if self.metrics_enabled:
            FETCHES_TOTAL.labels(scheme=scheme, status=status).inc()


def _copy_local(source: Path, sink: BinaryIO) -> tuple[str, int]:
    hasher = hashlib.sha256()
    size = 0
    with source.open("rb") as stream:
        for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
            sink.write(chunk)
            size += len(chunk)
    return hasher.hexdigest(), size
