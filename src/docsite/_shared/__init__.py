"""Cross-cutting helpers: logging, settings, Problem Details, metrics and process execution."""
