"""Cross-cutting platform concerns: configuration, logging, metrics."""
