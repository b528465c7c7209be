"""Cross-cutting infrastructure: logging, queue connection, locks."""
