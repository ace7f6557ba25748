"""Cross-cutting utilities: error types and structured logging."""
