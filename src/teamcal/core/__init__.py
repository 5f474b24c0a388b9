"""Cross-cutting runtime support: logging, telemetry, metrics."""
