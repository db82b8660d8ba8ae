"""Canonical operator-facing error codes for the publishing pipeline.

Each code maps to a short title and a remediation hint. The CLI prints the
formatted message so that a failed run names both the failing stage and what
to check next.

Examples
--------
>>> from docsite._shared.error_codes import format_error_message
>>> message = format_error_message("DOCSITE-BLD-001", "Documentation compiler failed")
>>> "DOCSITE-BLD-001" in message
True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

__all__ = [
    "CANONICAL_ERROR_CODES",
    "CanonicalErrorCode",
    "format_error_message",
    "get_error_code",
]


@dataclass(frozen=True, slots=True)
class CanonicalErrorCode:
    """Metadata describing a canonical error code."""

    code: str
    title: str
    stage: str
    remediation: str

    def format(self, message: str, *, details: str | None = None) -> str:
        """Return a formatted terminal message for ``message``.

        Parameters
        ----------
        message
            Human-readable failure description.
        details
            Optional additional context appended on separate lines.
        """
        header = f"[ERROR {self.code}] ({self.stage}) {message}"
        suffix = f"Hint: {self.remediation}" if self.remediation else ""
        return "\n".join(part for part in (header, details, suffix) if part)


def _code(code: str, **kwargs: str) -> CanonicalErrorCode:
    return CanonicalErrorCode(code=code, **kwargs)


CANONICAL_ERROR_CODES: Final[dict[str, CanonicalErrorCode]] = {
    "DOCSITE-CFG-001": _code(
        "DOCSITE-CFG-001",
        title="Invalid configuration",
        stage="configure",
        remediation="Check the DOCSITE_* environment variables and CLI flags listed above.",
    ),
    "DOCSITE-STG-001": _code(
        "DOCSITE-STG-001",
        title="Dependency resolution failed",
        stage="stage-dependencies",
        remediation="Relax the manifest constraint or publish the missing version to the index.",
    ),
    "DOCSITE-STG-002": _code(
        "DOCSITE-STG-002",
        title="Dependency fetch failed",
        stage="stage-dependencies",
        remediation="Verify the index URLs and digests; the cache was left unchanged.",
    ),
    "DOCSITE-ASM-001": _code(
        "DOCSITE-ASM-001",
        title="Output tree could not be cleared",
        stage="clear",
        remediation="Create the output directory and make sure it is writable.",
    ),
    "DOCSITE-ASM-002": _code(
        "DOCSITE-ASM-002",
        title="Copy into output tree failed",
        stage="stage-static",
        remediation="Check the static asset directory and that no static entry uses the reserved subpath.",
    ),
    "DOCSITE-ASM-003": _code(
        "DOCSITE-ASM-003",
        title="Compiled documentation could not be copied",
        stage="stage-compiled",
        remediation="Check the compiler output directory and free space under the output tree.",
    ),
    "DOCSITE-BLD-002": _code(
        "DOCSITE-BLD-002",
        title="Dependencies not staged",
        stage="build-docs",
        remediation="Run `docsite stage` for this manifest before `docsite assemble`.",
    ),
    "DOCSITE-BLD-001": _code(
        "DOCSITE-BLD-001",
        title="Documentation compiler failed",
        stage="build-docs",
        remediation="Inspect the compiler stderr captured above and fix the reported source errors.",
    ),
}


def get_error_code(code: str) -> CanonicalErrorCode:
    """Return metadata for ``code``.

    Raises
    ------
    KeyError
        When ``code`` is not registered.
    """
    return CANONICAL_ERROR_CODES[code]


def format_error_message(code: str, message: str, *, details: str | None = None) -> str:
    """Format ``message`` with the canonical header and remediation for ``code``.

    Unknown codes fall back to a bare ``[ERROR <code>]`` header.
    """
    entry = CANONICAL_ERROR_CODES.get(code)
    if entry is None:
        header = f"[ERROR {code}] {message}"
        return f"{header}\n{details}" if details else header
    return entry.format(message, details=details)
