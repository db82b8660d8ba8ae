"""Package index access.

The index is a JSON document listing every published version of every package
together with the artifact location and its SHA-256 digest::

    {
      "packages": {
        "libbar": {
          "1.0.0": {"url": "artifacts/libbar-1.0.0.tar.gz", "sha256": "..."},
          "1.1.0": {"url": "https://mirror.example/libbar-1.1.0.tar.gz", "sha256": "..."}
        }
      }
    }

Relative artifact URLs are resolved against the index location, so a local
index directory can be moved as a unit.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urljoin, urlparse

import httpx
from packaging.version import InvalidVersion, Version

from docsite._shared.logging import get_logger
from docsite.errors import FetchError, ResolutionError

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "IndexEntry",
    "PackageIndex",
    "is_remote",
    "load_index",
]

LOGGER = get_logger(__name__)


def is_remote(location: str) -> bool:
    """Return ``True`` for ``http``/``https`` locations."""
    return urlparse(location).scheme in {"http", "https"}


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """One published version of a package."""

    name: str
    version: Version
    url: str
    sha256: str


@dataclass(frozen=True, slots=True)
class PackageIndex:
    """In-memory view of the package index."""

    location: str
    packages: Mapping[str, tuple[IndexEntry, ...]]

    def candidates(self, name: str) -> tuple[IndexEntry, ...]:
        """Return the published versions of ``name``, newest first.

        Raises
        ------
        ResolutionError
            When the index does not know ``name``.
        """
        entries = self.packages.get(name.lower())
        if entries is None:
            message = f"Package {name!r} is not present in the index"
            raise ResolutionError(message, context={"dependency": name, "index": self.location})
        return entries

    @classmethod
    def from_mapping(cls, data: Mapping[str, object], *, location: str) -> PackageIndex:
        """Build an index from parsed JSON.

        Raises
        ------
        ResolutionError
            When the document structure or a version string is invalid.
        """
        raw_packages = data.get("packages")
        if not isinstance(raw_packages, dict):
            message = "Package index must contain a 'packages' object"
            raise ResolutionError(message, context={"index": location})
        packages: dict[str, tuple[IndexEntry, ...]] = {}
        for name, versions in raw_packages.items():
            if not isinstance(versions, dict):
                message = f"Index entry for {name!r} must map versions to artifacts"
                raise ResolutionError(message, context={"index": location})
            entries = [_entry(str(name), raw_version, meta, location) for raw_version, meta in versions.items()]
            entries.sort(key=lambda entry: entry.version, reverse=True)
            packages[str(name).lower()] = tuple(entries)
        return cls(location=location, packages=packages)


def _entry(name: str, raw_version: str, meta: object, location: str) -> IndexEntry:
    try:
        version = Version(raw_version)
    except InvalidVersion as exc:
        message = f"Index lists an invalid version for {name!r}: {raw_version!r}"
        raise ResolutionError(message, cause=exc, context={"index": location}) from exc
    if not isinstance(meta, dict) or not isinstance(meta.get("url"), str):
        message = f"Index entry {name}@{raw_version} must provide a 'url'"
        raise ResolutionError(message, context={"index": location})
    sha256 = meta.get("sha256")
    if not isinstance(sha256, str) or len(sha256) != 64:  # noqa: PLR2004 - hex SHA-256 length
        message = f"Index entry {name}@{raw_version} must provide a hex 'sha256'"
        raise ResolutionError(message, context={"index": location})
    return IndexEntry(
        name=name,
        version=version,
        url=_absolute_url(meta["url"], location),
        sha256=sha256.lower(),
    )


def _absolute_url(url: str, location: str) -> str:
    if is_remote(url) or urlparse(url).scheme == "file":
        return url
    if is_remote(location):
        return urljoin(location, url)
    candidate = Path(url)
    if candidate.is_absolute():
        return candidate.as_posix()
    return (Path(location).resolve().parent / candidate).as_posix()


def load_index(location: str, *, timeout: float, client: httpx.Client | None = None) -> PackageIndex:
    """Load the package index from a local path or an ``http(s)`` URL.

    Parameters
    ----------
    location : str
        Filesystem path or URL of the index document.
    timeout : float
        Network timeout in seconds for remote indexes.
    client : httpx.Client | None, optional
        Client to reuse for remote indexes. Defaults to a short-lived client.

    Returns
    -------
    PackageIndex
        Parsed index.

    Raises
    ------
    FetchError
        When the index cannot be retrieved.
    ResolutionError
        When the index document is malformed.
    """
    if is_remote(location):
        try:
            if client is not None:
                response = client.get(location, timeout=timeout)
            else:
                with httpx.Client(timeout=timeout, follow_redirects=True) as owned:
                    response = owned.get(location)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            message = f"Package index could not be retrieved: {location}"
            raise FetchError(message, cause=exc, context={"index": location}) from exc
        text = response.text
    else:
        try:
            text = Path(location).read_text(encoding="utf-8")
        except OSError as exc:
            message = f"Package index could not be read: {location}"
            raise FetchError(message, cause=exc, context={"index": location}) from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        message = f"Package index is not valid JSON: {location}"
        raise ResolutionError(message, cause=exc, context={"index": location}) from exc
    if not isinstance(data, dict):
        message = f"Package index must be a JSON object: {location}"
        raise ResolutionError(message, context={"index": location})
    index = PackageIndex.from_mapping(data, location=location)
    LOGGER.info(
        "Package index loaded",
        extra={"operation": "load-index", "index": location, "package_count": len(index.packages)},
    )
    return index
