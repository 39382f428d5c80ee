"""Observability helpers (Prometheus counters and action reporting)."""
